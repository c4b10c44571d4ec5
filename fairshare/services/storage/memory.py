"""
In-Memory Storage Implementation

Used for tests and local development. All state lives in one
InMemoryDatabase shared by the per-interface storages, mirroring how the
relational backend shares one database file.

Every read-modify-write runs under a single lock with no await between
the check and the write, so conditional updates behave like a row-level
compare-and-set even when requests run on different threads.

Stored models are copied on the way in and out; callers never hold a
reference into the store.
"""

import threading
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
    UserSummary,
)
from fairshare.models.invoice import Invoice, InvoiceStatus, Payment
from fairshare.models.types import utcnow
from fairshare.services.storage.interface import (
    AuditStorageInterface,
    ConflictError,
    DuplicateError,
    ExpenseLedgerInterface,
    GroupStorageInterface,
    NotFoundError,
    PaymentStorageInterface,
    UserStorageInterface,
)


class InMemoryDatabase:
    """Process-local tables guarded by one lock."""

    def __init__(self):
        self.lock = threading.RLock()
        self.users: dict[UUID, User] = {}
        self.groups: dict[UUID, ExpenseGroup] = {}
        self.members: dict[UUID, GroupMember] = {}
        self.invitations: dict[UUID, GroupInvitation] = {}
        self.expenses: dict[UUID, GroupExpense] = {}
        self.splits: dict[UUID, ExpenseSplit] = {}
        self.invoices: dict[UUID, Invoice] = {}
        self.payments: dict[UUID, Payment] = {}
        self.audit_events: list[AuditEvent] = []

    def user_summary(self, user_id: UUID) -> Optional[UserSummary]:
        user = self.users.get(user_id)
        if user is None:
            return None
        return UserSummary(id=user.id, email=user.email, name=user.name)

    def find_member(self, group_id: UUID, user_id: UUID) -> Optional[GroupMember]:
        for member in self.members.values():
            if member.group_id == group_id and member.user_id == user_id:
                return member
        return None

    def group_members(self, group_id: UUID) -> list[GroupMember]:
        return [m for m in self.members.values() if m.group_id == group_id]

    def unpaid_split_count(self, group_id: UUID, user_id: UUID) -> int:
        return sum(
            1
            for s in self.splits.values()
            if s.user_id == user_id
            and not s.is_paid
            and s.amount_owed > 0
            and self.expenses[s.expense_id].group_id == group_id
        )

    def drop_group(self, group_id: UUID) -> bool:
        """Delete a group and everything hanging off it. Caller holds the lock."""
        if self.groups.pop(group_id, None) is None:
            return False
        self.members = {k: m for k, m in self.members.items() if m.group_id != group_id}
        self.invitations = {k: i for k, i in self.invitations.items() if i.group_id != group_id}
        expense_ids = {e.id for e in self.expenses.values() if e.group_id == group_id}
        self.expenses = {k: e for k, e in self.expenses.items() if k not in expense_ids}
        self.splits = {k: s for k, s in self.splits.items() if s.expense_id not in expense_ids}
        return True


class InMemoryUserStorage(UserStorageInterface):
    """User profiles kept in memory."""

    def __init__(self, db: Optional[InMemoryDatabase] = None):
        self._db = db or InMemoryDatabase()

    async def get_user(self, user_id: UUID) -> Optional[User]:
        with self._db.lock:
            user = self._db.users.get(user_id)
            return user.model_copy(deep=True) if user else None

    async def get_user_by_email(self, email: str) -> Optional[User]:
        with self._db.lock:
            for user in self._db.users.values():
                if user.email == email.lower():
                    return user.model_copy(deep=True)
            return None

    async def save_user(self, user: User) -> User:
        with self._db.lock:
            if user.id in self._db.users:
                raise DuplicateError(f"User already exists: {user.id}")
            if any(u.email == user.email for u in self._db.users.values()):
                raise DuplicateError(f"Email already registered: {user.email}")
            self._db.users[user.id] = user.model_copy(deep=True)
            return user.model_copy(deep=True)

    async def update_user(
        self,
        user_id: UUID,
        name: Optional[str] = None,
        monthly_income: Optional[Decimal] = None,
    ) -> User:
        with self._db.lock:
            user = self._db.users.get(user_id)
            if user is None:
                raise NotFoundError(f"User not found: {user_id}")
            updates = {"updated_at": utcnow()}
            if name is not None:
                updates["name"] = name
            if monthly_income is not None:
                updates["monthly_income"] = monthly_income
            updated = user.model_copy(update=updates)
            self._db.users[user_id] = updated
            return updated.model_copy(deep=True)


class InMemoryGroupStorage(GroupStorageInterface):
    """Groups, memberships and invitations kept in memory."""

    def __init__(self, db: Optional[InMemoryDatabase] = None):
        self._db = db or InMemoryDatabase()

    def _with_user(self, member: GroupMember) -> GroupMember:
        return member.model_copy(update={"user": self._db.user_summary(member.user_id)}, deep=True)

    async def create_group(self, group: ExpenseGroup, creator: GroupMember) -> ExpenseGroup:
        with self._db.lock:
            if group.id in self._db.groups:
                raise DuplicateError(f"Group already exists: {group.id}")
            self._db.groups[group.id] = group.model_copy(deep=True)
            self._db.members[creator.id] = creator.model_copy(update={"user": None}, deep=True)
            return group.model_copy(deep=True)

    async def get_group(self, group_id: UUID) -> Optional[ExpenseGroup]:
        with self._db.lock:
            group = self._db.groups.get(group_id)
            return group.model_copy(deep=True) if group else None

    async def update_group(self, group: ExpenseGroup) -> ExpenseGroup:
        with self._db.lock:
            if group.id not in self._db.groups:
                raise NotFoundError(f"Group not found: {group.id}")
            updated = group.model_copy(update={"updated_at": utcnow()}, deep=True)
            self._db.groups[group.id] = updated
            return updated.model_copy(deep=True)

    async def delete_group(self, group_id: UUID) -> bool:
        with self._db.lock:
            return self._db.drop_group(group_id)

    async def list_groups_for_user(self, user_id: UUID) -> list[tuple[ExpenseGroup, GroupMember]]:
        with self._db.lock:
            results = []
            for member in self._db.members.values():
                if member.user_id != user_id:
                    continue
                group = self._db.groups.get(member.group_id)
                if group is not None:
                    results.append((group.model_copy(deep=True), self._with_user(member)))
            results.sort(key=lambda pair: pair[0].name.lower())
            return results

    async def get_membership(self, group_id: UUID, user_id: UUID) -> Optional[GroupMember]:
        with self._db.lock:
            member = self._db.find_member(group_id, user_id)
            return self._with_user(member) if member else None

    async def list_members(self, group_id: UUID) -> list[GroupMember]:
        with self._db.lock:
            members = [
                self._with_user(m) for m in self._db.members.values() if m.group_id == group_id
            ]
            members.sort(key=lambda m: m.joined_at)
            return members

    async def add_member(self, member: GroupMember) -> GroupMember:
        with self._db.lock:
            if member.group_id not in self._db.groups:
                raise NotFoundError(f"Group not found: {member.group_id}")
            if self._db.find_member(member.group_id, member.user_id):
                raise DuplicateError(f"User {member.user_id} is already a member")
            self._db.members[member.id] = member.model_copy(update={"user": None}, deep=True)
            return self._with_user(member)

    async def remove_member_guarded(
        self,
        group_id: UUID,
        user_id: UUID,
        delete_group_if_last: bool,
    ) -> MembershipChange:
        with self._db.lock:
            member = self._db.find_member(group_id, user_id)
            if member is None:
                return MembershipChange.NOT_A_MEMBER
            if self._db.unpaid_split_count(group_id, user_id) > 0:
                return MembershipChange.UNPAID_SPLITS

            members = self._db.group_members(group_id)
            admins = [m for m in members if m.is_admin]
            if member.is_admin and len(admins) == 1 and len(members) > 1:
                return MembershipChange.LAST_ADMIN

            if len(members) == 1 and delete_group_if_last:
                self._db.drop_group(group_id)
                return MembershipChange.GROUP_DELETED
            del self._db.members[member.id]
            return MembershipChange.APPLIED

    async def update_member_role_guarded(
        self,
        group_id: UUID,
        user_id: UUID,
        role: MemberRole,
    ) -> MembershipChange:
        with self._db.lock:
            member = self._db.find_member(group_id, user_id)
            if member is None:
                return MembershipChange.NOT_A_MEMBER
            if member.is_admin and role != MemberRole.ADMIN:
                admins = [m for m in self._db.group_members(group_id) if m.is_admin]
                if len(admins) == 1:
                    return MembershipChange.LAST_ADMIN
            self._db.members[member.id] = member.model_copy(update={"role": role})
            return MembershipChange.APPLIED

    async def update_member_income(self, user_id: UUID, monthly_income: Decimal) -> int:
        with self._db.lock:
            count = 0
            for key, member in list(self._db.members.items()):
                if member.user_id == user_id:
                    self._db.members[key] = member.model_copy(update={"monthly_income": monthly_income})
                    count += 1
            return count

    async def save_invitation(self, invitation: GroupInvitation) -> GroupInvitation:
        with self._db.lock:
            if invitation.group_id not in self._db.groups:
                raise NotFoundError(f"Group not found: {invitation.group_id}")
            self._db.invitations[invitation.id] = invitation.model_copy(deep=True)
            return invitation.model_copy(deep=True)

    async def get_invitation(self, invitation_id: UUID) -> Optional[GroupInvitation]:
        with self._db.lock:
            invitation = self._db.invitations.get(invitation_id)
            return invitation.model_copy(deep=True) if invitation else None

    async def find_pending_invitation(self, group_id: UUID, email: str) -> Optional[GroupInvitation]:
        with self._db.lock:
            for invitation in self._db.invitations.values():
                if (
                    invitation.group_id == group_id
                    and invitation.email == email.lower()
                    and invitation.status == InvitationStatus.PENDING
                ):
                    return invitation.model_copy(deep=True)
            return None

    async def list_pending_invitations(self, email: str) -> list[GroupInvitation]:
        with self._db.lock:
            pending = [
                i.model_copy(deep=True)
                for i in self._db.invitations.values()
                if i.email == email.lower() and i.status == InvitationStatus.PENDING
            ]
            pending.sort(key=lambda i: i.created_at, reverse=True)
            return pending

    async def update_invitation_status(
        self,
        invitation_id: UUID,
        status: InvitationStatus,
        responded_at: datetime,
    ) -> GroupInvitation:
        with self._db.lock:
            invitation = self._db.invitations.get(invitation_id)
            if invitation is None:
                raise NotFoundError(f"Invitation not found: {invitation_id}")
            updated = invitation.model_copy(update={"status": status, "responded_at": responded_at})
            self._db.invitations[invitation_id] = updated
            return updated.model_copy(deep=True)


class InMemoryExpenseLedger(ExpenseLedgerInterface):
    """Group expenses and splits kept in memory."""

    def __init__(self, db: Optional[InMemoryDatabase] = None):
        self._db = db or InMemoryDatabase()

    def _split_view(self, split: ExpenseSplit) -> ExpenseSplit:
        return split.model_copy(update={"user": self._db.user_summary(split.user_id)}, deep=True)

    def _expense_view(self, expense: GroupExpense) -> GroupExpense:
        splits = [
            self._split_view(s) for s in self._db.splits.values() if s.expense_id == expense.id
        ]
        splits.sort(key=lambda s: s.created_at)
        return expense.model_copy(
            update={"payer": self._db.user_summary(expense.paid_by), "splits": splits},
            deep=True,
        )

    async def insert_expense_with_splits(
        self,
        expense: GroupExpense,
        splits: list[ExpenseSplit],
    ) -> GroupExpense:
        if not splits:
            raise ValueError("An expense needs at least one split")
        with self._db.lock:
            if expense.group_id not in self._db.groups:
                raise NotFoundError(f"Group not found: {expense.group_id}")
            if expense.id in self._db.expenses:
                raise DuplicateError(f"Expense already exists: {expense.id}")
            member_ids = {m.user_id for m in self._db.group_members(expense.group_id)}
            departed = [s.user_id for s in splits if s.user_id not in member_ids]
            if departed:
                raise ConflictError(f"Split users are no longer members: {departed}")
            self._db.expenses[expense.id] = expense.model_copy(
                update={"splits": [], "payer": None}, deep=True
            )
            for split in splits:
                self._db.splits[split.id] = split.model_copy(update={"user": None}, deep=True)
            return self._expense_view(self._db.expenses[expense.id])

    async def get_expense(self, expense_id: UUID) -> Optional[GroupExpense]:
        with self._db.lock:
            expense = self._db.expenses.get(expense_id)
            return self._expense_view(expense) if expense else None

    async def list_expenses(self, group_id: UUID) -> list[GroupExpense]:
        with self._db.lock:
            expenses = [
                self._expense_view(e) for e in self._db.expenses.values() if e.group_id == group_id
            ]
            expenses.sort(key=lambda e: (e.expense_date, e.created_at), reverse=True)
            return expenses

    async def get_split(self, split_id: UUID, expense_id: UUID) -> Optional[ExpenseSplit]:
        with self._db.lock:
            split = self._db.splits.get(split_id)
            if split is None or split.expense_id != expense_id:
                return None
            return self._split_view(split)

    async def mark_split_paid(
        self,
        split_id: UUID,
        expense_id: UUID,
        paid_at: datetime,
    ) -> Optional[ExpenseSplit]:
        with self._db.lock:
            split = self._db.splits.get(split_id)
            if split is None or split.expense_id != expense_id or split.is_paid:
                return None
            updated = split.model_copy(update={"is_paid": True, "paid_at": paid_at})
            self._db.splits[split_id] = updated
            return self._split_view(updated)

    async def count_unpaid_splits(self, group_id: UUID, user_id: UUID) -> int:
        with self._db.lock:
            return self._db.unpaid_split_count(group_id, user_id)

    async def list_user_split_entries(self, user_id: UUID) -> list[UserSplitEntry]:
        with self._db.lock:
            entries = []
            for split in self._db.splits.values():
                if split.user_id != user_id:
                    continue
                expense = self._db.expenses[split.expense_id]
                entries.append(UserSplitEntry(
                    split=self._split_view(split),
                    group_id=expense.group_id,
                    description=expense.description,
                    expense_date=expense.expense_date,
                    category=expense.category,
                ))
            entries.sort(key=lambda e: e.expense_date, reverse=True)
            return entries


class InMemoryPaymentStorage(PaymentStorageInterface):
    """Invoices and payments kept in memory."""

    def __init__(self, db: Optional[InMemoryDatabase] = None):
        self._db = db or InMemoryDatabase()

    async def save_invoice(self, invoice: Invoice) -> Invoice:
        with self._db.lock:
            if invoice.id in self._db.invoices:
                raise DuplicateError(f"Invoice already exists: {invoice.id}")
            self._db.invoices[invoice.id] = invoice.model_copy(deep=True)
            return invoice.model_copy(deep=True)

    async def get_invoice(self, invoice_id: UUID) -> Optional[Invoice]:
        with self._db.lock:
            invoice = self._db.invoices.get(invoice_id)
            return invoice.model_copy(deep=True) if invoice else None

    async def list_invoices(
        self,
        user_id: UUID,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[Invoice]:
        with self._db.lock:
            invoices = []
            for invoice in self._db.invoices.values():
                if invoice.user_id != user_id:
                    continue
                if date_from and invoice.invoice_date < date_from:
                    continue
                if date_to and invoice.invoice_date > date_to:
                    continue
                invoices.append(invoice.model_copy(deep=True))
            invoices.sort(key=lambda i: i.created_at, reverse=True)
            return invoices

    async def update_invoice_status(self, invoice_id: UUID, status: InvoiceStatus) -> Invoice:
        with self._db.lock:
            invoice = self._db.invoices.get(invoice_id)
            if invoice is None:
                raise NotFoundError(f"Invoice not found: {invoice_id}")
            updated = invoice.model_copy(update={"status": status, "updated_at": utcnow()})
            self._db.invoices[invoice_id] = updated
            return updated.model_copy(deep=True)

    async def save_payment(self, payment: Payment) -> Payment:
        with self._db.lock:
            if payment.id in self._db.payments:
                raise DuplicateError(f"Payment already exists: {payment.id}")
            self._db.payments[payment.id] = payment.model_copy(deep=True)
            return payment.model_copy(deep=True)

    async def list_payments(self, user_id: UUID) -> list[Payment]:
        with self._db.lock:
            payments = [
                p.model_copy(deep=True) for p in self._db.payments.values() if p.user_id == user_id
            ]
            payments.sort(key=lambda p: p.created_at, reverse=True)
            return payments

    async def list_payments_for_invoice(self, invoice_id: UUID) -> list[Payment]:
        with self._db.lock:
            payments = [
                p.model_copy(deep=True)
                for p in self._db.payments.values()
                if p.invoice_id == invoice_id
            ]
            payments.sort(key=lambda p: p.created_at, reverse=True)
            return payments


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only audit log kept in memory."""

    def __init__(self, db: Optional[InMemoryDatabase] = None):
        self._db = db or InMemoryDatabase()

    async def append_event(self, event: AuditEvent) -> bool:
        with self._db.lock:
            self._db.audit_events.append(event.model_copy(deep=True))
            return True

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        with self._db.lock:
            events = [
                e.model_copy(deep=True)
                for e in self._db.audit_events
                if e.entity_type == entity_type and e.entity_id == entity_id
            ]
            events.sort(key=lambda e: e.timestamp)
            return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        with self._db.lock:
            events = sorted(self._db.audit_events, key=lambda e: e.timestamp, reverse=True)
            return [e.model_copy(deep=True) for e in events[:limit]]
