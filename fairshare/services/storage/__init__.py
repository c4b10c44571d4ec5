"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
SQLite is the durable backend; the in-memory backend serves tests and
local development. Both are swappable behind the interfaces.
"""

from fairshare.services.storage.interface import (
    AuditStorageInterface,
    ConflictError,
    ConnectionError,
    DuplicateError,
    ExpenseLedgerInterface,
    GroupStorageInterface,
    NotFoundError,
    PaymentStorageInterface,
    StorageError,
    UserStorageInterface,
)
from fairshare.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryDatabase,
    InMemoryExpenseLedger,
    InMemoryGroupStorage,
    InMemoryPaymentStorage,
    InMemoryUserStorage,
)
from fairshare.services.storage.sqlite import (
    SQLiteAuditStorage,
    SQLiteClient,
    SQLiteExpenseLedger,
    SQLiteGroupStorage,
    SQLitePaymentStorage,
    SQLiteUserStorage,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "ExpenseLedgerInterface",
    "GroupStorageInterface",
    "PaymentStorageInterface",
    "UserStorageInterface",
    # Exceptions
    "ConflictError",
    "ConnectionError",
    "DuplicateError",
    "NotFoundError",
    "StorageError",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryDatabase",
    "InMemoryExpenseLedger",
    "InMemoryGroupStorage",
    "InMemoryPaymentStorage",
    "InMemoryUserStorage",
    # SQLite implementation
    "SQLiteAuditStorage",
    "SQLiteClient",
    "SQLiteExpenseLedger",
    "SQLiteGroupStorage",
    "SQLitePaymentStorage",
    "SQLiteUserStorage",
]
