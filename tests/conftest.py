"""Shared fixtures: in-memory and SQLite storage, seeded users and groups."""

from decimal import Decimal

import pytest

from fairshare.audit import AuditLogger
from fairshare.config import get_settings
from fairshare.models.group import ExpenseGroup, GroupMember, MemberRole, SplitMethod, User
from fairshare.services.storage import (
    InMemoryAuditStorage,
    InMemoryDatabase,
    InMemoryExpenseLedger,
    InMemoryGroupStorage,
    InMemoryPaymentStorage,
    InMemoryUserStorage,
    SQLiteAuditStorage,
    SQLiteClient,
    SQLiteExpenseLedger,
    SQLiteGroupStorage,
    SQLitePaymentStorage,
    SQLiteUserStorage,
)


@pytest.fixture(autouse=True)
def fresh_settings():
    """Reload settings around every test so monkeypatched env vars apply."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def memory_db():
    return InMemoryDatabase()


@pytest.fixture
def users(memory_db):
    return InMemoryUserStorage(memory_db)


@pytest.fixture
def groups(memory_db):
    return InMemoryGroupStorage(memory_db)


@pytest.fixture
def ledger(memory_db):
    return InMemoryExpenseLedger(memory_db)


@pytest.fixture
def payments(memory_db):
    return InMemoryPaymentStorage(memory_db)


@pytest.fixture
def audit_storage(memory_db):
    return InMemoryAuditStorage(memory_db)


@pytest.fixture
def audit_logger(audit_storage):
    return AuditLogger(audit_storage)


@pytest.fixture
async def sqlite_client(tmp_path):
    client = SQLiteClient(path=str(tmp_path / "fairshare.db"))
    await client.initialize()
    return client


@pytest.fixture
def sqlite_storages(sqlite_client):
    """All SQLite storages over one database file."""
    return {
        "users": SQLiteUserStorage(sqlite_client),
        "groups": SQLiteGroupStorage(sqlite_client),
        "ledger": SQLiteExpenseLedger(sqlite_client),
        "payments": SQLitePaymentStorage(sqlite_client),
        "audit": SQLiteAuditStorage(sqlite_client),
    }


async def make_user(user_storage, email: str, income: str = "0", name: str = None) -> User:
    """Save a user with the given email and monthly income."""
    return await user_storage.save_user(
        User(email=email, name=name, monthly_income=Decimal(income))
    )


async def make_group(
    group_storage,
    admin: User,
    *others: User,
    split_method: SplitMethod = SplitMethod.EQUAL,
    name: str = "Flat 4B",
) -> ExpenseGroup:
    """Create a group with admin as its first admin and others as members."""
    group = ExpenseGroup(name=name, split_method=split_method, created_by=admin.id)
    await group_storage.create_group(group, GroupMember(
        group_id=group.id,
        user_id=admin.id,
        role=MemberRole.ADMIN,
        monthly_income=admin.monthly_income,
    ))
    for user in others:
        await group_storage.add_member(GroupMember(
            group_id=group.id,
            user_id=user.id,
            monthly_income=user.monthly_income,
        ))
    return group
