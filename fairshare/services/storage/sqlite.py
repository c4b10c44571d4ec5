"""
SQLite Storage Implementation

DESIGN DECISION: SQLite is the durable backend because:
1. Multi-row writes (an expense with its splits) need real transactions
2. Settling a split needs a conditional UPDATE that cannot double-apply
3. Deleting a group must cascade to everything under it
4. No server to run; a single file is enough for a household or a flat

TRADEOFFS:
- One writer at a time (BEGIN IMMEDIATE serializes writes, readers continue)
- Decimals are stored as TEXT so amounts round-trip exactly

The implementation follows the abstract interface, so a server database
can replace it later without changing business logic.
"""

import json
import sqlite3
from contextlib import asynccontextmanager
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import AsyncIterator, Optional
from uuid import UUID

import aiosqlite
from tenacity import AsyncRetrying, retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from fairshare.config import get_settings
from fairshare.models.audit import AuditEvent
from fairshare.models.expense import ExpenseSplit, GroupExpense, UserSplitEntry
from fairshare.models.group import (
    ExpenseGroup,
    GroupInvitation,
    GroupMember,
    InvitationStatus,
    MemberRole,
    MembershipChange,
    User,
    UserSummary,
)
from fairshare.models.invoice import Invoice, InvoiceStatus, Payment
from fairshare.models.types import utcnow
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


# Column mappings, in table order
USER_COLUMNS = ["id", "email", "name", "monthly_income", "created_at", "updated_at"]

GROUP_COLUMNS = [
    "id",
    "name",
    "description",
    "currency",
    "split_method",
    "created_by",
    "created_at",
    "updated_at",
]

MEMBER_COLUMNS = ["id", "group_id", "user_id", "role", "monthly_income", "joined_at"]

INVITATION_COLUMNS = [
    "id",
    "group_id",
    "invited_by",
    "email",
    "status",
    "created_at",
    "responded_at",
]

EXPENSE_COLUMNS = [
    "id",
    "group_id",
    "paid_by",
    "description",
    "amount",
    "currency",
    "expense_date",
    "category",
    "is_recurring",
    "recurrence_interval",
    "recurrence_day",
    "next_occurrence",
    "invoice_id",
    "notes",
    "created_at",
    "updated_at",
]

SPLIT_COLUMNS = ["id", "expense_id", "user_id", "amount_owed", "is_paid", "paid_at", "created_at"]

INVOICE_COLUMNS = [
    "id",
    "user_id",
    "vendor_name",
    "amount",
    "currency",
    "invoice_date",
    "invoice_number",
    "description",
    "category",
    "status",
    "created_at",
    "updated_at",
]

PAYMENT_COLUMNS = [
    "id",
    "user_id",
    "invoice_id",
    "payment_date",
    "payment_type",
    "amount_paid",
    "status",
    "notes",
    "created_at",
    "updated_at",
]

AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "entity_type",
    "entity_id",
    "actor_id",
    "correlation_id",
    "description",
    "details_json",
    "error_message",
]

SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    email TEXT NOT NULL UNIQUE,
    name TEXT,
    monthly_income TEXT NOT NULL DEFAULT '0',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS expense_groups (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    description TEXT,
    currency TEXT NOT NULL,
    split_method TEXT NOT NULL CHECK (split_method IN ('equal', 'proportional')),
    created_by TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS group_members (
    id TEXT PRIMARY KEY,
    group_id TEXT NOT NULL REFERENCES expense_groups(id) ON DELETE CASCADE,
    user_id TEXT NOT NULL REFERENCES users(id),
    role TEXT NOT NULL CHECK (role IN ('admin', 'member')),
    monthly_income TEXT NOT NULL DEFAULT '0',
    joined_at TEXT NOT NULL,
    UNIQUE (group_id, user_id)
);

CREATE TABLE IF NOT EXISTS group_invitations (
    id TEXT PRIMARY KEY,
    group_id TEXT NOT NULL REFERENCES expense_groups(id) ON DELETE CASCADE,
    invited_by TEXT NOT NULL,
    email TEXT NOT NULL,
    status TEXT NOT NULL CHECK (status IN ('pending', 'accepted', 'rejected')),
    created_at TEXT NOT NULL,
    responded_at TEXT
);

CREATE TABLE IF NOT EXISTS group_expenses (
    id TEXT PRIMARY KEY,
    group_id TEXT NOT NULL REFERENCES expense_groups(id) ON DELETE CASCADE,
    paid_by TEXT NOT NULL,
    description TEXT NOT NULL,
    amount TEXT NOT NULL,
    currency TEXT NOT NULL,
    expense_date TEXT NOT NULL,
    category TEXT,
    is_recurring INTEGER NOT NULL DEFAULT 0,
    recurrence_interval TEXT,
    recurrence_day INTEGER,
    next_occurrence TEXT,
    invoice_id TEXT,
    notes TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS expense_splits (
    id TEXT PRIMARY KEY,
    expense_id TEXT NOT NULL REFERENCES group_expenses(id) ON DELETE CASCADE,
    user_id TEXT NOT NULL,
    amount_owed TEXT NOT NULL,
    is_paid INTEGER NOT NULL DEFAULT 0,
    paid_at TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS invoices (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    vendor_name TEXT NOT NULL,
    amount TEXT NOT NULL,
    currency TEXT NOT NULL,
    invoice_date TEXT NOT NULL,
    invoice_number TEXT,
    description TEXT,
    category TEXT,
    status TEXT NOT NULL CHECK (status IN ('pending', 'partial', 'paid')),
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS payments (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    invoice_id TEXT REFERENCES invoices(id) ON DELETE SET NULL,
    payment_date TEXT NOT NULL,
    payment_type TEXT NOT NULL,
    amount_paid TEXT NOT NULL,
    status TEXT NOT NULL,
    notes TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS audit_events (
    event_id TEXT PRIMARY KEY,
    timestamp TEXT NOT NULL,
    event_type TEXT NOT NULL,
    severity TEXT NOT NULL,
    entity_type TEXT,
    entity_id TEXT,
    actor_id TEXT,
    correlation_id TEXT,
    description TEXT NOT NULL,
    details_json TEXT,
    error_message TEXT
);

CREATE INDEX IF NOT EXISTS idx_members_user ON group_members(user_id);
CREATE INDEX IF NOT EXISTS idx_invitations_email ON group_invitations(email, status);
CREATE INDEX IF NOT EXISTS idx_expenses_group ON group_expenses(group_id);
CREATE INDEX IF NOT EXISTS idx_splits_expense ON expense_splits(expense_id);
CREATE INDEX IF NOT EXISTS idx_splits_user ON expense_splits(user_id, is_paid);
CREATE INDEX IF NOT EXISTS idx_invoices_user ON invoices(user_id);
CREATE INDEX IF NOT EXISTS idx_payments_user ON payments(user_id);
CREATE INDEX IF NOT EXISTS idx_payments_invoice ON payments(invoice_id);
CREATE INDEX IF NOT EXISTS idx_audit_entity ON audit_events(entity_type, entity_id);
"""

UNPAID_SPLITS_SQL = """
SELECT COUNT(*) FROM expense_splits s
JOIN group_expenses e ON e.id = s.expense_id
WHERE e.group_id = ? AND s.user_id = ? AND s.is_paid = 0
  AND CAST(s.amount_owed AS REAL) > 0
"""


def _to_db(value):
    """Convert a model attribute to a value SQLite stores losslessly."""
    if value is None:
        return None
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


def _values(model, columns: list[str]) -> tuple:
    return tuple(_to_db(getattr(model, column)) for column in columns)


def _insert_sql(table: str, columns: list[str]) -> str:
    placeholders = ", ".join("?" for _ in columns)
    return f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})"


def _integrity_error(e: sqlite3.IntegrityError, what: str) -> StorageError:
    if "FOREIGN KEY" in str(e):
        return NotFoundError(f"Referenced entity missing for {what}: {e}")
    return DuplicateError(f"Duplicate {what}: {e}")


def _summary(user_id, email: Optional[str], name: Optional[str]) -> Optional[UserSummary]:
    if email is None:
        return None
    return UserSummary(id=user_id, email=email, name=name)


class SQLiteClient:
    """
    Low-level SQLite wrapper.

    Opens one connection per operation so concurrent requests never share
    transaction state. Foreign keys are enabled on every connection.
    """

    def __init__(self, path: Optional[str] = None, timeout: Optional[float] = None):
        self._settings = get_settings().database
        self.path = path or self._settings.path
        self.timeout = timeout or self._settings.timeout_seconds

    async def initialize(self) -> None:
        """
        Create the schema if it doesn't exist.

        Retried with backoff; a locked or unreachable file raises
        ConnectionError once attempts are exhausted.
        """
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self._settings.connect_retries),
            wait=wait_exponential(multiplier=1, min=2, max=10),
            retry=retry_if_exception_type(ConnectionError),
            reraise=True,
        ):
            with attempt:
                try:
                    async with aiosqlite.connect(self.path, timeout=self.timeout) as conn:
                        await conn.executescript(SCHEMA)
                        await conn.commit()
                except sqlite3.Error as e:
                    raise ConnectionError(f"Failed to initialize database {self.path}: {e}")

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[aiosqlite.Connection]:
        """Autocommit connection for reads and single-statement writes."""
        try:
            conn = await aiosqlite.connect(self.path, timeout=self.timeout, isolation_level=None)
        except sqlite3.Error as e:
            raise ConnectionError(f"Could not open database {self.path}: {e}")
        try:
            conn.row_factory = aiosqlite.Row
            await conn.execute("PRAGMA foreign_keys = ON")
            yield conn
        finally:
            await conn.close()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """
        Write transaction. Commits on success, rolls back on any error.

        BEGIN IMMEDIATE takes the write lock up front, so concurrent
        writers queue on the busy timeout instead of failing mid-way.
        """
        async with self.connection() as conn:
            await conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                await conn.rollback()
                raise
            else:
                await conn.commit()


class SQLiteUserStorage(UserStorageInterface):
    """User profiles stored in SQLite."""

    def __init__(self, client: SQLiteClient):
        self._client = client

    async def get_user(self, user_id: UUID) -> Optional[User]:
        try:
            async with self._client.connection() as conn:
                cursor = await conn.execute("SELECT * FROM users WHERE id = ?", (str(user_id),))
                row = await cursor.fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to get user: {e}")
        return User.model_validate(dict(row)) if row else None

    async def get_user_by_email(self, email: str) -> Optional[User]:
        try:
            async with self._client.connection() as conn:
                cursor = await conn.execute(
                    "SELECT * FROM users WHERE email = ?", (email.lower(),)
                )
                row = await cursor.fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to get user by email: {e}")
        return User.model_validate(dict(row)) if row else None

    async def save_user(self, user: User) -> User:
        try:
            async with self._client.transaction() as conn:
                await conn.execute(_insert_sql("users", USER_COLUMNS), _values(user, USER_COLUMNS))
        except sqlite3.IntegrityError as e:
            raise _integrity_error(e, "user")
        except sqlite3.Error as e:
            raise StorageError(f"Failed to save user: {e}")
        return user

    async def update_user(
        self,
        user_id: UUID,
        name: Optional[str] = None,
        monthly_income: Optional[Decimal] = None,
    ) -> User:
        assignments = ["updated_at = ?"]
        params: list = [utcnow().isoformat()]
        if name is not None:
            assignments.append("name = ?")
            params.append(name)
        if monthly_income is not None:
            assignments.append("monthly_income = ?")
            params.append(str(monthly_income))
        params.append(str(user_id))

        try:
            async with self._client.transaction() as conn:
                cursor = await conn.execute(
                    f"UPDATE users SET {', '.join(assignments)} WHERE id = ?", params
                )
                if cursor.rowcount == 0:
                    raise NotFoundError(f"User not found: {user_id}")
        except sqlite3.Error as e:
            raise StorageError(f"Failed to update user: {e}")
        return await self.get_user(user_id)


class SQLiteGroupStorage(GroupStorageInterface):
    """Groups, memberships and invitations stored in SQLite."""

    MEMBER_SELECT = (
        "SELECT m.*, u.email AS user_email, u.name AS user_name "
        "FROM group_members m LEFT JOIN users u ON u.id = m.user_id"
    )

    def __init__(self, client: SQLiteClient):
        self._client = client

    def _row_to_member(self, row) -> GroupMember:
        data = {column: row[column] for column in MEMBER_COLUMNS}
        member = GroupMember.model_validate(data)
        member.user = _summary(member.user_id, row["user_email"], row["user_name"])
        return member

    async def create_group(self, group: ExpenseGroup, creator: GroupMember) -> ExpenseGroup:
        try:
            async with self._client.transaction() as conn:
                await conn.execute(
                    _insert_sql("expense_groups", GROUP_COLUMNS), _values(group, GROUP_COLUMNS)
                )
                await conn.execute(
                    _insert_sql("group_members", MEMBER_COLUMNS), _values(creator, MEMBER_COLUMNS)
                )
        except sqlite3.IntegrityError as e:
            raise _integrity_error(e, "group")
        except sqlite3.Error as e:
            raise StorageError(f"Failed to create group: {e}")
        return group

    async def get_group(self, group_id: UUID) -> Optional[ExpenseGroup]:
        try:
            async with self._client.connection() as conn:
                cursor = await conn.execute(
                    "SELECT * FROM expense_groups WHERE id = ?", (str(group_id),)
                )
                row = await cursor.fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to get group: {e}")
        return ExpenseGroup.model_validate(dict(row)) if row else None

    async def update_group(self, group: ExpenseGroup) -> ExpenseGroup:
        updated = group.model_copy(update={"updated_at": utcnow()})
        try:
            async with self._client.transaction() as conn:
                cursor = await conn.execute(
                    """
                    UPDATE expense_groups
                    SET name = ?, description = ?, currency = ?, split_method = ?, updated_at = ?
                    WHERE id = ?
                    """,
                    _values(updated, ["name", "description", "currency", "split_method", "updated_at", "id"]),
                )
                if cursor.rowcount == 0:
                    raise NotFoundError(f"Group not found: {group.id}")
        except sqlite3.Error as e:
            raise StorageError(f"Failed to update group: {e}")
        return updated

    async def delete_group(self, group_id: UUID) -> bool:
        try:
            async with self._client.transaction() as conn:
                cursor = await conn.execute(
                    "DELETE FROM expense_groups WHERE id = ?", (str(group_id),)
                )
                return cursor.rowcount > 0
        except sqlite3.Error as e:
            raise StorageError(f"Failed to delete group: {e}")

    async def list_groups_for_user(self, user_id: UUID) -> list[tuple[ExpenseGroup, GroupMember]]:
        try:
            async with self._client.connection() as conn:
                cursor = await conn.execute(
                    f"""
                    {self.MEMBER_SELECT}
                    JOIN expense_groups g ON g.id = m.group_id
                    WHERE m.user_id = ?
                    ORDER BY g.name COLLATE NOCASE
                    """,
                    (str(user_id),),
                )
                member_rows = await cursor.fetchall()
                cursor = await conn.execute(
                    """
                    SELECT g.* FROM expense_groups g
                    JOIN group_members m ON m.group_id = g.id
                    WHERE m.user_id = ?
                    """,
                    (str(user_id),),
                )
                group_rows = await cursor.fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to list groups: {e}")

        groups = {row["id"]: ExpenseGroup.model_validate(dict(row)) for row in group_rows}
        return [(groups[row["group_id"]], self._row_to_member(row)) for row in member_rows]

    async def get_membership(self, group_id: UUID, user_id: UUID) -> Optional[GroupMember]:
        try:
            async with self._client.connection() as conn:
                cursor = await conn.execute(
                    f"{self.MEMBER_SELECT} WHERE m.group_id = ? AND m.user_id = ?",
                    (str(group_id), str(user_id)),
                )
                row = await cursor.fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to get membership: {e}")
        return self._row_to_member(row) if row else None

    async def list_members(self, group_id: UUID) -> list[GroupMember]:
        try:
            async with self._client.connection() as conn:
                cursor = await conn.execute(
                    f"{self.MEMBER_SELECT} WHERE m.group_id = ? ORDER BY m.joined_at",
                    (str(group_id),),
                )
                rows = await cursor.fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to list members: {e}")
        return [self._row_to_member(row) for row in rows]

    async def add_member(self, member: GroupMember) -> GroupMember:
        try:
            async with self._client.transaction() as conn:
                await conn.execute(
                    _insert_sql("group_members", MEMBER_COLUMNS), _values(member, MEMBER_COLUMNS)
                )
        except sqlite3.IntegrityError as e:
            raise _integrity_error(e, "membership")
        except sqlite3.Error as e:
            raise StorageError(f"Failed to add member: {e}")
        return await self.get_membership(member.group_id, member.user_id)

    async def remove_member_guarded(
        self,
        group_id: UUID,
        user_id: UUID,
        delete_group_if_last: bool,
    ) -> MembershipChange:
        try:
            async with self._client.transaction() as conn:
                role = await self._member_role(conn, group_id, user_id)
                if role is None:
                    return MembershipChange.NOT_A_MEMBER

                cursor = await conn.execute(UNPAID_SPLITS_SQL, (str(group_id), str(user_id)))
                if (await cursor.fetchone())[0] > 0:
                    return MembershipChange.UNPAID_SPLITS

                member_count, admin_count = await self._member_counts(conn, group_id)
                if role == MemberRole.ADMIN.value and admin_count == 1 and member_count > 1:
                    return MembershipChange.LAST_ADMIN

                if member_count == 1 and delete_group_if_last:
                    await conn.execute("DELETE FROM expense_groups WHERE id = ?", (str(group_id),))
                    return MembershipChange.GROUP_DELETED
                await conn.execute(
                    "DELETE FROM group_members WHERE group_id = ? AND user_id = ?",
                    (str(group_id), str(user_id)),
                )
                return MembershipChange.APPLIED
        except sqlite3.Error as e:
            raise StorageError(f"Failed to remove member: {e}")

    async def update_member_role_guarded(
        self,
        group_id: UUID,
        user_id: UUID,
        role: MemberRole,
    ) -> MembershipChange:
        try:
            async with self._client.transaction() as conn:
                current = await self._member_role(conn, group_id, user_id)
                if current is None:
                    return MembershipChange.NOT_A_MEMBER
                if current == MemberRole.ADMIN.value and role != MemberRole.ADMIN:
                    _, admin_count = await self._member_counts(conn, group_id)
                    if admin_count == 1:
                        return MembershipChange.LAST_ADMIN
                await conn.execute(
                    "UPDATE group_members SET role = ? WHERE group_id = ? AND user_id = ?",
                    (role.value, str(group_id), str(user_id)),
                )
                return MembershipChange.APPLIED
        except sqlite3.Error as e:
            raise StorageError(f"Failed to update member role: {e}")

    async def _member_role(self, conn, group_id: UUID, user_id: UUID) -> Optional[str]:
        cursor = await conn.execute(
            "SELECT role FROM group_members WHERE group_id = ? AND user_id = ?",
            (str(group_id), str(user_id)),
        )
        row = await cursor.fetchone()
        return row["role"] if row else None

    async def _member_counts(self, conn, group_id: UUID) -> tuple[int, int]:
        cursor = await conn.execute(
            """
            SELECT COUNT(*) AS members,
                   COALESCE(SUM(CASE WHEN role = 'admin' THEN 1 ELSE 0 END), 0) AS admins
            FROM group_members WHERE group_id = ?
            """,
            (str(group_id),),
        )
        row = await cursor.fetchone()
        return row["members"], row["admins"]

    async def update_member_income(self, user_id: UUID, monthly_income: Decimal) -> int:
        try:
            async with self._client.transaction() as conn:
                cursor = await conn.execute(
                    "UPDATE group_members SET monthly_income = ? WHERE user_id = ?",
                    (str(monthly_income), str(user_id)),
                )
                return cursor.rowcount
        except sqlite3.Error as e:
            raise StorageError(f"Failed to update member income: {e}")

    async def save_invitation(self, invitation: GroupInvitation) -> GroupInvitation:
        try:
            async with self._client.transaction() as conn:
                await conn.execute(
                    _insert_sql("group_invitations", INVITATION_COLUMNS),
                    _values(invitation, INVITATION_COLUMNS),
                )
        except sqlite3.IntegrityError as e:
            raise _integrity_error(e, "invitation")
        except sqlite3.Error as e:
            raise StorageError(f"Failed to save invitation: {e}")
        return invitation

    async def get_invitation(self, invitation_id: UUID) -> Optional[GroupInvitation]:
        try:
            async with self._client.connection() as conn:
                cursor = await conn.execute(
                    "SELECT * FROM group_invitations WHERE id = ?", (str(invitation_id),)
                )
                row = await cursor.fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to get invitation: {e}")
        return GroupInvitation.model_validate(dict(row)) if row else None

    async def find_pending_invitation(self, group_id: UUID, email: str) -> Optional[GroupInvitation]:
        try:
            async with self._client.connection() as conn:
                cursor = await conn.execute(
                    """
                    SELECT * FROM group_invitations
                    WHERE group_id = ? AND email = ? AND status = ?
                    """,
                    (str(group_id), email.lower(), InvitationStatus.PENDING.value),
                )
                row = await cursor.fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to find invitation: {e}")
        return GroupInvitation.model_validate(dict(row)) if row else None

    async def list_pending_invitations(self, email: str) -> list[GroupInvitation]:
        try:
            async with self._client.connection() as conn:
                cursor = await conn.execute(
                    """
                    SELECT * FROM group_invitations
                    WHERE email = ? AND status = ?
                    ORDER BY created_at DESC
                    """,
                    (email.lower(), InvitationStatus.PENDING.value),
                )
                rows = await cursor.fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to list invitations: {e}")
        return [GroupInvitation.model_validate(dict(row)) for row in rows]

    async def update_invitation_status(
        self,
        invitation_id: UUID,
        status: InvitationStatus,
        responded_at: datetime,
    ) -> GroupInvitation:
        try:
            async with self._client.transaction() as conn:
                cursor = await conn.execute(
                    "UPDATE group_invitations SET status = ?, responded_at = ? WHERE id = ?",
                    (status.value, responded_at.isoformat(), str(invitation_id)),
                )
                if cursor.rowcount == 0:
                    raise NotFoundError(f"Invitation not found: {invitation_id}")
        except sqlite3.Error as e:
            raise StorageError(f"Failed to update invitation: {e}")
        return await self.get_invitation(invitation_id)


class SQLiteExpenseLedger(ExpenseLedgerInterface):
    """Group expenses and splits stored in SQLite."""

    EXPENSE_SELECT = (
        "SELECT e.*, u.email AS payer_email, u.name AS payer_name "
        "FROM group_expenses e LEFT JOIN users u ON u.id = e.paid_by"
    )
    SPLIT_SELECT = (
        "SELECT s.*, u.email AS user_email, u.name AS user_name "
        "FROM expense_splits s LEFT JOIN users u ON u.id = s.user_id"
    )

    def __init__(self, client: SQLiteClient):
        self._client = client

    def _row_to_split(self, row) -> ExpenseSplit:
        split = ExpenseSplit.model_validate({column: row[column] for column in SPLIT_COLUMNS})
        split.user = _summary(split.user_id, row["user_email"], row["user_name"])
        return split

    def _row_to_expense(self, row, splits: list[ExpenseSplit]) -> GroupExpense:
        expense = GroupExpense.model_validate({column: row[column] for column in EXPENSE_COLUMNS})
        expense.payer = _summary(expense.paid_by, row["payer_email"], row["payer_name"])
        expense.splits = splits
        return expense

    async def insert_expense_with_splits(
        self,
        expense: GroupExpense,
        splits: list[ExpenseSplit],
    ) -> GroupExpense:
        if not splits:
            raise ValueError("An expense needs at least one split")

        try:
            async with self._client.transaction() as conn:
                cursor = await conn.execute(
                    "SELECT user_id FROM group_members WHERE group_id = ?",
                    (str(expense.group_id),),
                )
                member_ids = {row["user_id"] for row in await cursor.fetchall()}
                departed = [str(s.user_id) for s in splits if str(s.user_id) not in member_ids]
                if departed:
                    raise ConflictError(f"Split users are no longer members: {departed}")
                await conn.execute(
                    _insert_sql("group_expenses", EXPENSE_COLUMNS),
                    _values(expense, EXPENSE_COLUMNS),
                )
                await conn.executemany(
                    _insert_sql("expense_splits", SPLIT_COLUMNS),
                    [_values(split, SPLIT_COLUMNS) for split in splits],
                )
        except sqlite3.IntegrityError as e:
            raise _integrity_error(e, "expense")
        except sqlite3.Error as e:
            raise StorageError(f"Failed to save expense: {e}")

        return await self.get_expense(expense.id)

    async def get_expense(self, expense_id: UUID) -> Optional[GroupExpense]:
        try:
            async with self._client.connection() as conn:
                cursor = await conn.execute(
                    f"{self.EXPENSE_SELECT} WHERE e.id = ?", (str(expense_id),)
                )
                row = await cursor.fetchone()
                if row is None:
                    return None
                cursor = await conn.execute(
                    f"{self.SPLIT_SELECT} WHERE s.expense_id = ? ORDER BY s.created_at",
                    (str(expense_id),),
                )
                split_rows = await cursor.fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to get expense: {e}")
        return self._row_to_expense(row, [self._row_to_split(r) for r in split_rows])

    async def list_expenses(self, group_id: UUID) -> list[GroupExpense]:
        try:
            async with self._client.connection() as conn:
                cursor = await conn.execute(
                    f"""
                    {self.EXPENSE_SELECT}
                    WHERE e.group_id = ?
                    ORDER BY e.expense_date DESC, e.created_at DESC
                    """,
                    (str(group_id),),
                )
                expense_rows = await cursor.fetchall()
                cursor = await conn.execute(
                    f"""
                    {self.SPLIT_SELECT}
                    JOIN group_expenses e ON e.id = s.expense_id
                    WHERE e.group_id = ?
                    ORDER BY s.created_at
                    """,
                    (str(group_id),),
                )
                split_rows = await cursor.fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to list expenses: {e}")

        splits_by_expense: dict[str, list[ExpenseSplit]] = {}
        for row in split_rows:
            splits_by_expense.setdefault(row["expense_id"], []).append(self._row_to_split(row))
        return [
            self._row_to_expense(row, splits_by_expense.get(row["id"], []))
            for row in expense_rows
        ]

    async def get_split(self, split_id: UUID, expense_id: UUID) -> Optional[ExpenseSplit]:
        try:
            async with self._client.connection() as conn:
                cursor = await conn.execute(
                    f"{self.SPLIT_SELECT} WHERE s.id = ? AND s.expense_id = ?",
                    (str(split_id), str(expense_id)),
                )
                row = await cursor.fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to get split: {e}")
        return self._row_to_split(row) if row else None

    async def mark_split_paid(
        self,
        split_id: UUID,
        expense_id: UUID,
        paid_at: datetime,
    ) -> Optional[ExpenseSplit]:
        try:
            async with self._client.transaction() as conn:
                cursor = await conn.execute(
                    """
                    UPDATE expense_splits
                    SET is_paid = 1, paid_at = ?
                    WHERE id = ? AND expense_id = ? AND is_paid = 0
                    """,
                    (paid_at.isoformat(), str(split_id), str(expense_id)),
                )
                updated = cursor.rowcount
        except sqlite3.Error as e:
            raise StorageError(f"Failed to mark split paid: {e}")

        if updated == 0:
            return None
        return await self.get_split(split_id, expense_id)

    async def count_unpaid_splits(self, group_id: UUID, user_id: UUID) -> int:
        try:
            async with self._client.connection() as conn:
                cursor = await conn.execute(UNPAID_SPLITS_SQL, (str(group_id), str(user_id)))
                row = await cursor.fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to count unpaid splits: {e}")
        return row[0]

    async def list_user_split_entries(self, user_id: UUID) -> list[UserSplitEntry]:
        try:
            async with self._client.connection() as conn:
                cursor = await conn.execute(
                    """
                    SELECT s.*, u.email AS user_email, u.name AS user_name,
                           e.group_id AS entry_group_id,
                           e.description AS entry_description,
                           e.expense_date AS entry_date,
                           e.category AS entry_category
                    FROM expense_splits s
                    JOIN group_expenses e ON e.id = s.expense_id
                    LEFT JOIN users u ON u.id = s.user_id
                    WHERE s.user_id = ?
                    ORDER BY e.expense_date DESC
                    """,
                    (str(user_id),),
                )
                rows = await cursor.fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to list user splits: {e}")

        return [
            UserSplitEntry(
                split=self._row_to_split(row),
                group_id=row["entry_group_id"],
                description=row["entry_description"],
                expense_date=row["entry_date"],
                category=row["entry_category"],
            )
            for row in rows
        ]


class SQLitePaymentStorage(PaymentStorageInterface):
    """Invoices and payments stored in SQLite."""

    def __init__(self, client: SQLiteClient):
        self._client = client

    async def save_invoice(self, invoice: Invoice) -> Invoice:
        try:
            async with self._client.transaction() as conn:
                await conn.execute(
                    _insert_sql("invoices", INVOICE_COLUMNS), _values(invoice, INVOICE_COLUMNS)
                )
        except sqlite3.IntegrityError as e:
            raise _integrity_error(e, "invoice")
        except sqlite3.Error as e:
            raise StorageError(f"Failed to save invoice: {e}")
        return invoice

    async def get_invoice(self, invoice_id: UUID) -> Optional[Invoice]:
        try:
            async with self._client.connection() as conn:
                cursor = await conn.execute(
                    "SELECT * FROM invoices WHERE id = ?", (str(invoice_id),)
                )
                row = await cursor.fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to get invoice: {e}")
        return Invoice.model_validate(dict(row)) if row else None

    async def list_invoices(
        self,
        user_id: UUID,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[Invoice]:
        query = "SELECT * FROM invoices WHERE user_id = ?"
        params: list = [str(user_id)]
        if date_from:
            query += " AND invoice_date >= ?"
            params.append(date_from.isoformat())
        if date_to:
            query += " AND invoice_date <= ?"
            params.append(date_to.isoformat())
        query += " ORDER BY created_at DESC"

        try:
            async with self._client.connection() as conn:
                cursor = await conn.execute(query, params)
                rows = await cursor.fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to list invoices: {e}")
        return [Invoice.model_validate(dict(row)) for row in rows]

    async def update_invoice_status(self, invoice_id: UUID, status: InvoiceStatus) -> Invoice:
        try:
            async with self._client.transaction() as conn:
                cursor = await conn.execute(
                    "UPDATE invoices SET status = ?, updated_at = ? WHERE id = ?",
                    (status.value, utcnow().isoformat(), str(invoice_id)),
                )
                if cursor.rowcount == 0:
                    raise NotFoundError(f"Invoice not found: {invoice_id}")
        except sqlite3.Error as e:
            raise StorageError(f"Failed to update invoice status: {e}")
        return await self.get_invoice(invoice_id)

    async def save_payment(self, payment: Payment) -> Payment:
        try:
            async with self._client.transaction() as conn:
                await conn.execute(
                    _insert_sql("payments", PAYMENT_COLUMNS), _values(payment, PAYMENT_COLUMNS)
                )
        except sqlite3.IntegrityError as e:
            raise _integrity_error(e, "payment")
        except sqlite3.Error as e:
            raise StorageError(f"Failed to save payment: {e}")
        return payment

    async def list_payments(self, user_id: UUID) -> list[Payment]:
        try:
            async with self._client.connection() as conn:
                cursor = await conn.execute(
                    "SELECT * FROM payments WHERE user_id = ? ORDER BY created_at DESC",
                    (str(user_id),),
                )
                rows = await cursor.fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to list payments: {e}")
        return [Payment.model_validate(dict(row)) for row in rows]

    async def list_payments_for_invoice(self, invoice_id: UUID) -> list[Payment]:
        try:
            async with self._client.connection() as conn:
                cursor = await conn.execute(
                    "SELECT * FROM payments WHERE invoice_id = ? ORDER BY created_at DESC",
                    (str(invoice_id),),
                )
                rows = await cursor.fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to list invoice payments: {e}")
        return [Payment.model_validate(dict(row)) for row in rows]


class SQLiteAuditStorage(AuditStorageInterface):
    """Append-only audit log stored in SQLite."""

    def __init__(self, client: SQLiteClient):
        self._client = client

    def _row_to_event(self, row) -> AuditEvent:
        details_json = row["details_json"]
        return AuditEvent(
            event_id=row["event_id"],
            timestamp=row["timestamp"],
            event_type=row["event_type"],
            severity=row["severity"],
            entity_type=row["entity_type"],
            entity_id=row["entity_id"],
            actor_id=row["actor_id"],
            correlation_id=row["correlation_id"],
            description=row["description"],
            details=json.loads(details_json) if details_json else {},
            error_message=row["error_message"],
        )

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def append_event(self, event: AuditEvent) -> bool:
        try:
            async with self._client.transaction() as conn:
                await conn.execute(_insert_sql("audit_events", AUDIT_COLUMNS), event.to_row())
            return True
        except sqlite3.Error as e:
            raise StorageError(f"Failed to log audit event: {e}")

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        try:
            async with self._client.connection() as conn:
                cursor = await conn.execute(
                    """
                    SELECT * FROM audit_events
                    WHERE entity_type = ? AND entity_id = ?
                    ORDER BY timestamp
                    """,
                    (entity_type, str(entity_id)),
                )
                rows = await cursor.fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to get audit events: {e}")
        return [self._row_to_event(row) for row in rows]

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        try:
            async with self._client.connection() as conn:
                cursor = await conn.execute(
                    "SELECT * FROM audit_events ORDER BY timestamp DESC LIMIT ?", (limit,)
                )
                rows = await cursor.fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to get recent audit events: {e}")
        return [self._row_to_event(row) for row in rows]
