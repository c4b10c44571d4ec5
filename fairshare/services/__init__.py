"""Services package."""

from fairshare.services.storage import (
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    ExpenseLedgerInterface,
    GroupStorageInterface,
    InMemoryDatabase,
    NotFoundError,
    PaymentStorageInterface,
    SQLiteClient,
    StorageError,
    UserStorageInterface,
)

__all__ = [
    # Storage services
    "AuditStorageInterface",
    "ConnectionError",
    "DuplicateError",
    "ExpenseLedgerInterface",
    "GroupStorageInterface",
    "InMemoryDatabase",
    "NotFoundError",
    "PaymentStorageInterface",
    "SQLiteClient",
    "StorageError",
    "UserStorageInterface",
]
