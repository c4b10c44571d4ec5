"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Run against SQLite or any transactional relational store
2. Use in-memory storage for testing
3. Keep business logic decoupled from storage implementation

The interface is intentionally simple - we're not building a full ORM.
Just the keyed queries the split engine and its flows need.

The store must provide two guarantees:
- insert_expense_with_splits is all-or-nothing
- mark_split_paid is a conditional update (update-where-unpaid), so two
  concurrent settlements of the same split cannot both succeed
"""

from abc import ABC, abstractmethod
from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

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
)
from fairshare.models.invoice import Invoice, InvoiceStatus, Payment


class UserStorageInterface(ABC):
    """Local user profiles keyed by the identity provider's user id."""

    @abstractmethod
    async def get_user(self, user_id: UUID) -> Optional[User]:
        pass

    @abstractmethod
    async def get_user_by_email(self, email: str) -> Optional[User]:
        pass

    @abstractmethod
    async def save_user(self, user: User) -> User:
        """
        Insert a new user profile.

        Raises:
            DuplicateError: If the id or email is already taken
        """
        pass

    @abstractmethod
    async def update_user(
        self,
        user_id: UUID,
        name: Optional[str] = None,
        monthly_income: Optional[Decimal] = None,
    ) -> User:
        """
        Update profile fields that are not None.

        Raises:
            NotFoundError: If the user doesn't exist
        """
        pass


class GroupStorageInterface(ABC):
    """
    Groups, memberships and invitations.

    Membership rows are joined with user display fields on read.
    """

    @abstractmethod
    async def create_group(self, group: ExpenseGroup, creator: GroupMember) -> ExpenseGroup:
        """
        Create a group together with its first (admin) member.

        Both rows land or neither does.
        """
        pass

    @abstractmethod
    async def get_group(self, group_id: UUID) -> Optional[ExpenseGroup]:
        pass

    @abstractmethod
    async def update_group(self, group: ExpenseGroup) -> ExpenseGroup:
        """
        Raises:
            NotFoundError: If the group doesn't exist
        """
        pass

    @abstractmethod
    async def delete_group(self, group_id: UUID) -> bool:
        """
        Delete a group, cascading to members, expenses, splits and invitations.

        Returns:
            True if a group was deleted
        """
        pass

    @abstractmethod
    async def list_groups_for_user(self, user_id: UUID) -> list[tuple[ExpenseGroup, GroupMember]]:
        """Groups the user belongs to, with the user's membership row."""
        pass

    @abstractmethod
    async def get_membership(self, group_id: UUID, user_id: UUID) -> Optional[GroupMember]:
        pass

    @abstractmethod
    async def list_members(self, group_id: UUID) -> list[GroupMember]:
        """Members ordered by joined_at, with user display fields."""
        pass

    @abstractmethod
    async def add_member(self, member: GroupMember) -> GroupMember:
        """
        Raises:
            DuplicateError: If the user is already a member
        """
        pass

    @abstractmethod
    async def remove_member_guarded(
        self,
        group_id: UUID,
        user_id: UUID,
        delete_group_if_last: bool,
    ) -> MembershipChange:
        """
        Remove a member, re-checking the leave rules in the same write.

        Checked in order: membership, unpaid splits in the group, and
        whether the member is the only admin while others remain. When
        the member is the last one and delete_group_if_last is set, the
        whole group is deleted instead.

        Returns:
            APPLIED, GROUP_DELETED, or the rule that blocked the removal
            (NOT_A_MEMBER, UNPAID_SPLITS, LAST_ADMIN)
        """
        pass

    @abstractmethod
    async def update_member_role_guarded(
        self,
        group_id: UUID,
        user_id: UUID,
        role: MemberRole,
    ) -> MembershipChange:
        """
        Change a member's role unless that demotes the group's only admin.

        Returns:
            APPLIED, NOT_A_MEMBER or LAST_ADMIN
        """
        pass

    @abstractmethod
    async def update_member_income(self, user_id: UUID, monthly_income: Decimal) -> int:
        """
        Set the declared income on every membership of a user.

        Returns:
            Number of memberships updated
        """
        pass

    @abstractmethod
    async def save_invitation(self, invitation: GroupInvitation) -> GroupInvitation:
        pass

    @abstractmethod
    async def get_invitation(self, invitation_id: UUID) -> Optional[GroupInvitation]:
        pass

    @abstractmethod
    async def find_pending_invitation(self, group_id: UUID, email: str) -> Optional[GroupInvitation]:
        pass

    @abstractmethod
    async def list_pending_invitations(self, email: str) -> list[GroupInvitation]:
        pass

    @abstractmethod
    async def update_invitation_status(
        self,
        invitation_id: UUID,
        status: InvitationStatus,
        responded_at: datetime,
    ) -> GroupInvitation:
        """
        Raises:
            NotFoundError: If the invitation doesn't exist
        """
        pass


class ExpenseLedgerInterface(ABC):
    """
    Group expenses and their splits.

    Append-only apart from the single unpaid -> paid transition of a split.
    """

    @abstractmethod
    async def insert_expense_with_splits(
        self,
        expense: GroupExpense,
        splits: list[ExpenseSplit],
    ) -> GroupExpense:
        """
        Persist an expense and all of its splits atomically.

        A partially written expense (expense row without splits) must
        never be observable.

        Returns:
            The stored expense with its splits embedded

        Raises:
            StorageError: If the write fails (nothing is persisted)
            ConflictError: If a split belongs to a user who is no longer a
                member of the group (nothing is persisted)
            ValueError: If splits is empty
        """
        pass

    @abstractmethod
    async def get_expense(self, expense_id: UUID) -> Optional[GroupExpense]:
        """Expense with its splits embedded."""
        pass

    @abstractmethod
    async def list_expenses(self, group_id: UUID) -> list[GroupExpense]:
        """
        All expenses of a group, newest expense_date first.

        Splits are embedded; payer and split users carry display fields.
        """
        pass

    @abstractmethod
    async def get_split(self, split_id: UUID, expense_id: UUID) -> Optional[ExpenseSplit]:
        pass

    @abstractmethod
    async def mark_split_paid(
        self,
        split_id: UUID,
        expense_id: UUID,
        paid_at: datetime,
    ) -> Optional[ExpenseSplit]:
        """
        Conditionally settle a split.

        Equivalent to UPDATE ... SET is_paid = true WHERE id = ? AND
        expense_id = ? AND is_paid = false.

        Returns:
            The updated split, or None if no unpaid row matched
        """
        pass

    @abstractmethod
    async def count_unpaid_splits(self, group_id: UUID, user_id: UUID) -> int:
        """
        Number of unpaid splits the user holds within the group.

        Shares that rounded to 0.00 owe nothing and are not counted.
        """
        pass

    @abstractmethod
    async def list_user_split_entries(self, user_id: UUID) -> list[UserSplitEntry]:
        """Every split of a user across all groups, joined with expense fields."""
        pass


class PaymentStorageInterface(ABC):
    """Personal invoices and payment records."""

    @abstractmethod
    async def save_invoice(self, invoice: Invoice) -> Invoice:
        pass

    @abstractmethod
    async def get_invoice(self, invoice_id: UUID) -> Optional[Invoice]:
        pass

    @abstractmethod
    async def list_invoices(
        self,
        user_id: UUID,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[Invoice]:
        """Invoices of a user, newest first."""
        pass

    @abstractmethod
    async def update_invoice_status(self, invoice_id: UUID, status: InvoiceStatus) -> Invoice:
        """
        Raises:
            NotFoundError: If the invoice doesn't exist
        """
        pass

    @abstractmethod
    async def save_payment(self, payment: Payment) -> Payment:
        pass

    @abstractmethod
    async def list_payments(self, user_id: UUID) -> list[Payment]:
        """Payments of a user, newest first."""
        pass

    @abstractmethod
    async def list_payments_for_invoice(self, invoice_id: UUID) -> list[Payment]:
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        """Events for one entity in chronological order."""
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Most recent events, newest first."""
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ConflictError(StorageError):
    """A guarded write found the state it depends on already changed."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
