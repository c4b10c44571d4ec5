"""
Main Orchestrator for Fairshare

This module ties together all the components and defines the
end-to-end flows for:
1. Profiles (resolve caller → provision on first sight → update income)
2. Groups (create → invite → accept/reject → change roles → leave/delete)
3. Group expenses (validate → split → persist atomically → settle splits)
4. Personal invoices and payments (record → reconcile invoice status)
5. Reports (dashboard and group summaries)

DESIGN DECISION: The orchestrator enforces the boundaries:
- Every group operation is authorized by the membership authority first
- No expense is persisted without its full set of splits
- A split is settled exactly once
- Every state change is audited

This is the "glue" that ensures the system works correctly
even when individual components might behave unexpectedly.
"""

from datetime import date
from decimal import Decimal
from typing import NamedTuple, Optional
from uuid import UUID

from fairshare.audit import AuditLogger
from fairshare.config import get_settings
from fairshare.errors import (
    AuthenticationRequiredError,
    ForbiddenError,
    ResourceNotFoundError,
    StateConflictError,
)
from fairshare.groups import MemberNotFoundError, MembershipAuthority
from fairshare.invoices import InvoiceNotFoundError, InvoiceReconciler
from fairshare.models.audit import AuditEventType
from fairshare.models.expense import (
    ExpenseCreateRequest,
    ExpenseSplit,
    GroupExpense,
    MarkSplitPaidRequest,
    MarkSplitPaidResult,
    SplitParticipant,
)
from fairshare.models.group import (
    ExpenseGroup,
    GroupCreateRequest,
    GroupInvitation,
    GroupMember,
    GroupUpdateRequest,
    GroupWithRole,
    InvitationStatus,
    MemberRole,
    MembershipChange,
    ProfileUpdateRequest,
    User,
)
from fairshare.models.invoice import (
    Invoice,
    InvoiceCreateRequest,
    Payment,
    PaymentCreateRequest,
    PaymentStatus,
)
from fairshare.models.report import DashboardSummary, GroupSummary
from fairshare.models.types import utcnow
from fairshare.recurrence import next_occurrence
from fairshare.reports import ReportExecutor
from fairshare.services.storage import (
    ConflictError,
    DuplicateError,
    ExpenseLedgerInterface,
    GroupStorageInterface,
    InMemoryAuditStorage,
    InMemoryDatabase,
    InMemoryExpenseLedger,
    InMemoryGroupStorage,
    InMemoryPaymentStorage,
    InMemoryUserStorage,
    PaymentStorageInterface,
    SQLiteAuditStorage,
    SQLiteClient,
    SQLiteExpenseLedger,
    SQLiteGroupStorage,
    SQLitePaymentStorage,
    SQLiteUserStorage,
    UserStorageInterface,
)
from fairshare.splits import SplitEngine, compute_splits, uses_equal_fallback
from fairshare.validation import ExpenseRequestValidator


class UserNotFoundError(ResourceNotFoundError):
    default_message = "User not found"


class GroupNotFoundError(ResourceNotFoundError):
    default_message = "Group not found"


class ExpenseNotFoundError(ResourceNotFoundError):
    default_message = "Expense not found"


class InvitationNotFoundError(ResourceNotFoundError):
    default_message = "Invitation not found"


class InvitationAlreadyProcessedError(StateConflictError):
    default_message = "This invitation has already been processed"


class AlreadyMemberError(StateConflictError):
    default_message = "This user is already a member of this group"


class PendingInvitationExistsError(StateConflictError):
    default_message = "This user already has a pending invitation"


class MembershipChangedError(StateConflictError):
    default_message = "Group membership changed while saving the expense, please retry"


class ProfileUpdateResult(NamedTuple):
    """
    Updated profile plus the outcome of income propagation.

    memberships_updated is None when propagation failed.
    """

    user: User
    memberships_updated: Optional[int]


class ProfileFlow:
    """
    Orchestrates caller resolution and profile updates.

    Identity is asserted upstream; the first request of an unknown user
    id provisions a local profile from the asserted email and name.
    """

    def __init__(
        self,
        users: UserStorageInterface,
        groups: GroupStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._users = users
        self._groups = groups
        self._audit_logger = audit_logger or AuditLogger()

    async def resolve_caller(
        self,
        user_id: UUID,
        email: Optional[str] = None,
        name: Optional[str] = None,
    ) -> User:
        """
        Load the caller's profile, provisioning it on first sight.

        Raises:
            AuthenticationRequiredError: Unknown user and no email asserted
        """
        user = await self._users.get_user(user_id)
        if user is not None:
            return user

        if not email:
            raise AuthenticationRequiredError("Unknown user; an email is required on first sign-in")

        try:
            return await self._users.save_user(User(id=user_id, email=email, name=name))
        except DuplicateError:
            # Concurrent first request provisioned it already
            user = await self._users.get_user(user_id)
            if user is None:
                raise
            return user

    async def update_profile(
        self,
        user_id: UUID,
        request: ProfileUpdateRequest,
    ) -> ProfileUpdateResult:
        """
        Update name and income.

        A new income is copied onto every group membership of the user.
        That copy is best effort: the profile update stands even if it fails.
        """
        if await self._users.get_user(user_id) is None:
            raise UserNotFoundError()

        user = await self._users.update_user(
            user_id,
            name=request.name,
            monthly_income=request.monthly_income,
        )
        await self._audit_logger.log_entity_event(
            event_type=AuditEventType.PROFILE_UPDATED,
            entity_type="user",
            entity_id=user_id,
            actor_id=user_id,
            description="Profile updated",
            details=request.model_dump(mode="json", exclude_none=True),
        )

        if request.monthly_income is None:
            return ProfileUpdateResult(user=user, memberships_updated=0)

        try:
            updated = await self._groups.update_member_income(user_id, request.monthly_income)
        except Exception as e:
            await self._audit_logger.log_income_propagation_failed(
                user_id=user_id,
                error_message=str(e),
            )
            return ProfileUpdateResult(user=user, memberships_updated=None)

        return ProfileUpdateResult(user=user, memberships_updated=updated)


class GroupFlow:
    """
    Orchestrates group lifecycle, membership and invitations.

    Flow:
    1. Create → creator becomes the first admin (atomically)
    2. Invite → any member invites an email
    3. Accept/Reject → only the invited email may respond, once
    4. Role change → admins only, never demoting the last admin
    5. Leave → no unpaid splits, never stranding other members without an admin
    """

    def __init__(
        self,
        groups: GroupStorageInterface,
        ledger: ExpenseLedgerInterface,
        users: UserStorageInterface,
        authority: Optional[MembershipAuthority] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._groups = groups
        self._ledger = ledger
        self._users = users
        self._authority = authority or MembershipAuthority(groups, ledger)
        self._audit_logger = audit_logger or AuditLogger()
        self._settings = get_settings().app

    async def _get_group(self, group_id: UUID) -> ExpenseGroup:
        group = await self._groups.get_group(group_id)
        if group is None:
            raise GroupNotFoundError()
        return group

    async def create_group(self, caller: User, request: GroupCreateRequest) -> GroupWithRole:
        group = ExpenseGroup(
            name=request.name,
            description=request.description,
            currency=request.currency or self._settings.default_currency,
            split_method=request.split_method or self._settings.default_split_method,
            created_by=caller.id,
        )
        creator = GroupMember(
            group_id=group.id,
            user_id=caller.id,
            role=MemberRole.ADMIN,
            monthly_income=caller.monthly_income,
        )

        created = await self._groups.create_group(group, creator)
        await self._audit_logger.log_group_created(
            group_id=created.id,
            name=created.name,
            split_method=created.split_method.value,
            actor_id=caller.id,
        )
        return GroupWithRole(**created.model_dump(), role=MemberRole.ADMIN, member_count=1)

    async def list_groups(self, user_id: UUID) -> list[GroupWithRole]:
        results = []
        for group, membership in await self._groups.list_groups_for_user(user_id):
            members = await self._groups.list_members(group.id)
            results.append(GroupWithRole(
                **group.model_dump(),
                role=membership.role,
                member_count=len(members),
            ))
        return results

    async def get_group(self, group_id: UUID, user_id: UUID) -> GroupWithRole:
        group = await self._get_group(group_id)
        membership = await self._authority.require_member(group_id, user_id)
        members = await self._groups.list_members(group_id)
        return GroupWithRole(**group.model_dump(), role=membership.role, member_count=len(members))

    async def update_group(
        self,
        group_id: UUID,
        user_id: UUID,
        request: GroupUpdateRequest,
    ) -> ExpenseGroup:
        group = await self._get_group(group_id)
        await self._authority.require_admin(group_id, user_id)

        changes = request.model_dump(exclude_none=True)
        if not changes:
            return group

        updated = await self._groups.update_group(
            ExpenseGroup.model_validate({**group.model_dump(), **changes})
        )
        await self._audit_logger.log_entity_event(
            event_type=AuditEventType.GROUP_UPDATED,
            entity_type="group",
            entity_id=group_id,
            actor_id=user_id,
            description=f"Group updated: {updated.name}",
            details=request.model_dump(mode="json", exclude_none=True),
        )
        return updated

    async def delete_group(self, group_id: UUID, user_id: UUID) -> None:
        await self._get_group(group_id)
        await self._authority.require_admin(group_id, user_id)
        await self._groups.delete_group(group_id)
        await self._audit_logger.log_group_deleted(
            group_id=group_id,
            actor_id=user_id,
            reason="deleted by admin",
        )

    async def list_members(self, group_id: UUID, user_id: UUID) -> list[GroupMember]:
        await self._get_group(group_id)
        await self._authority.require_member(group_id, user_id)
        return await self._groups.list_members(group_id)

    async def change_member_role(
        self,
        group_id: UUID,
        actor_id: UUID,
        target_user_id: UUID,
        role: MemberRole,
    ) -> GroupMember:
        await self._get_group(group_id)
        await self._authority.require_admin(group_id, actor_id)

        target = await self._groups.get_membership(group_id, target_user_id)
        if target is None:
            raise MemberNotFoundError()
        if target.role == role:
            return target

        updated = await self._authority.change_role(group_id, target_user_id, role)
        await self._audit_logger.log_membership_changed(
            event_type=AuditEventType.MEMBER_ROLE_CHANGED,
            group_id=group_id,
            user_id=target_user_id,
            actor_id=actor_id,
            details={"old_role": target.role.value, "new_role": role.value},
        )
        return updated

    async def leave_group(self, group_id: UUID, user_id: UUID) -> bool:
        """
        Remove the caller from the group.

        Returns:
            True if the group itself was deleted because nobody was left
        """
        await self._get_group(group_id)
        outcome = await self._authority.leave(
            group_id,
            user_id,
            delete_group_if_last=self._settings.delete_group_when_last_member_leaves,
        )

        if outcome == MembershipChange.GROUP_DELETED:
            await self._audit_logger.log_group_deleted(
                group_id=group_id,
                actor_id=user_id,
                reason="last member left",
            )
            return True

        await self._audit_logger.log_membership_changed(
            event_type=AuditEventType.MEMBER_LEFT,
            group_id=group_id,
            user_id=user_id,
            actor_id=user_id,
        )
        return False

    async def invite(self, group_id: UUID, caller: User, email: str) -> GroupInvitation:
        await self._get_group(group_id)
        await self._authority.require_member(group_id, caller.id)
        email = email.strip().lower()

        if await self._groups.find_pending_invitation(group_id, email):
            raise PendingInvitationExistsError()

        invitee = await self._users.get_user_by_email(email)
        if invitee and await self._groups.get_membership(group_id, invitee.id):
            raise AlreadyMemberError()

        invitation = await self._groups.save_invitation(GroupInvitation(
            group_id=group_id,
            invited_by=caller.id,
            email=email,
        ))
        await self._audit_logger.log_invitation(
            event_type=AuditEventType.INVITATION_SENT,
            invitation_id=invitation.id,
            group_id=group_id,
            email=email,
            actor_id=caller.id,
        )
        return invitation

    async def list_invitations(self, caller: User) -> list[GroupInvitation]:
        return await self._groups.list_pending_invitations(caller.email)

    async def _get_pending_invitation_for(self, invitation_id: UUID, caller: User) -> GroupInvitation:
        invitation = await self._groups.get_invitation(invitation_id)
        if invitation is None:
            raise InvitationNotFoundError()
        if invitation.email != caller.email:
            raise ForbiddenError("This invitation is not for you")
        if invitation.status != InvitationStatus.PENDING:
            raise InvitationAlreadyProcessedError()
        return invitation

    async def accept_invitation(self, invitation_id: UUID, caller: User) -> GroupMember:
        """
        Join the group with the caller's profile income.

        Raises:
            AlreadyMemberError: Caller already belongs to the group
                (the invitation is still marked accepted)
        """
        invitation = await self._get_pending_invitation_for(invitation_id, caller)

        if await self._groups.get_membership(invitation.group_id, caller.id):
            await self._groups.update_invitation_status(
                invitation_id, InvitationStatus.ACCEPTED, utcnow()
            )
            raise AlreadyMemberError("You are already a member of this group")

        try:
            member = await self._groups.add_member(GroupMember(
                group_id=invitation.group_id,
                user_id=caller.id,
                role=MemberRole.MEMBER,
                monthly_income=caller.monthly_income,
            ))
        except DuplicateError:
            raise AlreadyMemberError("You are already a member of this group")

        await self._groups.update_invitation_status(invitation_id, InvitationStatus.ACCEPTED, utcnow())

        await self._audit_logger.log_invitation(
            event_type=AuditEventType.INVITATION_ACCEPTED,
            invitation_id=invitation_id,
            group_id=invitation.group_id,
            email=caller.email,
            actor_id=caller.id,
        )
        await self._audit_logger.log_membership_changed(
            event_type=AuditEventType.MEMBER_JOINED,
            group_id=invitation.group_id,
            user_id=caller.id,
            actor_id=caller.id,
        )
        return member

    async def reject_invitation(self, invitation_id: UUID, caller: User) -> GroupInvitation:
        await self._get_pending_invitation_for(invitation_id, caller)
        invitation = await self._groups.update_invitation_status(
            invitation_id, InvitationStatus.REJECTED, utcnow()
        )
        await self._audit_logger.log_invitation(
            event_type=AuditEventType.INVITATION_REJECTED,
            invitation_id=invitation_id,
            group_id=invitation.group_id,
            email=caller.email,
            actor_id=caller.id,
        )
        return invitation


class ExpenseFlow:
    """
    Orchestrates group expenses.

    Flow:
    1. Authorize → caller must be a member; the caller is the payer
    2. Validate → semantic checks on the request
    3. Split → one share per current member, payer's share pre-paid
    4. Persist → expense and splits in one atomic write
    5. Settle → members mark their split paid, exactly once
    """

    def __init__(
        self,
        groups: GroupStorageInterface,
        ledger: ExpenseLedgerInterface,
        authority: MembershipAuthority,
        split_engine: SplitEngine,
        validator: Optional[ExpenseRequestValidator] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._groups = groups
        self._ledger = ledger
        self._authority = authority
        self._split_engine = split_engine
        self._validator = validator or ExpenseRequestValidator()
        self._audit_logger = audit_logger or AuditLogger()

    async def create_expense(
        self,
        group_id: UUID,
        caller_id: UUID,
        request: ExpenseCreateRequest,
    ) -> GroupExpense:
        group = await self._groups.get_group(group_id)
        if group is None:
            raise GroupNotFoundError()
        await self._authority.require_member(group_id, caller_id)

        result = await self._validator.validate_expense(request, caller_id)
        self._validator.ensure_valid(result)

        members = await self._groups.list_members(group_id)
        participants = [
            SplitParticipant(user_id=m.user_id, monthly_income=m.monthly_income)
            for m in members
        ]
        computed = compute_splits(request.amount, caller_id, participants, group.split_method)
        if uses_equal_fallback(participants, group.split_method):
            await self._audit_logger.log_split_fallback_equal(member_count=len(participants))

        upcoming: Optional[date] = None
        if request.is_recurring and request.recurrence_interval:
            upcoming = next_occurrence(request.expense_date, request.recurrence_interval)

        expense = GroupExpense(
            group_id=group_id,
            paid_by=caller_id,
            description=request.description,
            amount=request.amount,
            currency=group.currency,
            expense_date=request.expense_date,
            category=request.category,
            is_recurring=request.is_recurring,
            recurrence_interval=request.recurrence_interval,
            recurrence_day=request.recurrence_day,
            next_occurrence=upcoming,
            invoice_id=request.invoice_id,
            notes=request.notes,
        )
        splits = [
            ExpenseSplit(expense_id=expense.id, **split.model_dump())
            for split in computed
        ]

        try:
            stored = await self._ledger.insert_expense_with_splits(expense, splits)
        except ConflictError:
            # A member left between listing members and the write
            raise MembershipChangedError()
        await self._audit_logger.log_expense_created(
            expense_id=stored.id,
            group_id=group_id,
            amount=str(stored.amount),
            split_count=len(splits),
            actor_id=caller_id,
        )
        return stored

    async def list_expenses(self, group_id: UUID, caller_id: UUID) -> list[GroupExpense]:
        if await self._groups.get_group(group_id) is None:
            raise GroupNotFoundError()
        await self._authority.require_member(group_id, caller_id)
        return await self._ledger.list_expenses(group_id)

    async def mark_split_paid(
        self,
        group_id: UUID,
        expense_id: UUID,
        caller_id: UUID,
        request: MarkSplitPaidRequest,
    ) -> MarkSplitPaidResult:
        if await self._groups.get_group(group_id) is None:
            raise GroupNotFoundError()
        await self._authority.require_member(group_id, caller_id)

        expense = await self._ledger.get_expense(expense_id)
        if expense is None or expense.group_id != group_id:
            raise ExpenseNotFoundError()

        return await self._split_engine.mark_split_paid(
            split_id=request.split_id,
            expense_id=expense_id,
            recorded_by=caller_id,
            expense_description=expense.description,
        )


class InvoiceFlow:
    """
    Orchestrates personal invoices and payments.

    Recording a completed payment against an invoice re-derives the
    invoice status from all of its payments.
    """

    def __init__(
        self,
        payments: PaymentStorageInterface,
        reconciler: Optional[InvoiceReconciler] = None,
        validator: Optional[ExpenseRequestValidator] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._payments = payments
        self._audit_logger = audit_logger or AuditLogger()
        self._reconciler = reconciler or InvoiceReconciler(payments, self._audit_logger)
        self._validator = validator or ExpenseRequestValidator(payments)
        self._settings = get_settings().app

    async def create_invoice(self, user_id: UUID, request: InvoiceCreateRequest) -> Invoice:
        self._validator.ensure_valid(self._validator.validate_invoice(request))

        invoice = await self._payments.save_invoice(Invoice(
            user_id=user_id,
            vendor_name=request.vendor_name,
            amount=request.amount,
            currency=request.currency or self._settings.default_currency,
            invoice_date=request.invoice_date,
            invoice_number=request.invoice_number,
            description=request.description,
            category=request.category,
        ))
        await self._audit_logger.log_entity_event(
            event_type=AuditEventType.INVOICE_CREATED,
            entity_type="invoice",
            entity_id=invoice.id,
            actor_id=user_id,
            description=f"Invoice created: {invoice.vendor_name} {invoice.amount}",
        )
        return invoice

    async def list_invoices(
        self,
        user_id: UUID,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[Invoice]:
        return await self._payments.list_invoices(user_id, date_from, date_to)

    async def get_invoice(self, invoice_id: UUID, user_id: UUID) -> Invoice:
        invoice = await self._payments.get_invoice(invoice_id)
        if invoice is None or invoice.user_id != user_id:
            raise InvoiceNotFoundError()
        return invoice

    async def create_payment(self, user_id: UUID, request: PaymentCreateRequest) -> Payment:
        result = await self._validator.validate_payment(request, user_id)
        self._validator.ensure_valid(result)

        payment = await self._payments.save_payment(Payment(
            user_id=user_id,
            invoice_id=request.invoice_id,
            payment_date=request.payment_date,
            payment_type=request.payment_type,
            amount_paid=request.amount_paid,
            status=request.status,
            notes=request.notes,
        ))
        await self._audit_logger.log_payment_recorded(
            payment_id=payment.id,
            amount=str(payment.amount_paid),
            invoice_id=payment.invoice_id,
            actor_id=user_id,
        )

        if payment.invoice_id is not None and payment.status == PaymentStatus.COMPLETED:
            await self._reconciler.reconcile_invoice_status(payment.invoice_id)

        return payment

    async def list_payments(self, user_id: UUID) -> list[Payment]:
        return await self._payments.list_payments(user_id)


class ReportFlow:
    """Orchestrates dashboard and group summaries."""

    def __init__(
        self,
        executor: ReportExecutor,
        groups: GroupStorageInterface,
        authority: MembershipAuthority,
    ):
        self._executor = executor
        self._groups = groups
        self._authority = authority

    async def dashboard(self, caller: User, today: Optional[date] = None) -> DashboardSummary:
        return await self._executor.dashboard_summary(
            caller.id,
            monthly_income=caller.monthly_income or Decimal("0"),
            today=today,
        )

    async def group_summary(self, group_id: UUID, caller_id: UUID) -> GroupSummary:
        group = await self._groups.get_group(group_id)
        if group is None:
            raise GroupNotFoundError()
        await self._authority.require_member(group_id, caller_id)
        return await self._executor.group_summary(group_id, group.currency)


class AppComponents(NamedTuple):
    """Everything the HTTP layer needs, sharing one set of storage clients."""

    profile_flow: ProfileFlow
    group_flow: GroupFlow
    expense_flow: ExpenseFlow
    invoice_flow: InvoiceFlow
    report_flow: ReportFlow
    audit_logger: AuditLogger
    sqlite_client: Optional[SQLiteClient]

    async def initialize(self) -> None:
        """Create the database schema when running on SQLite."""
        if self.sqlite_client is not None:
            await self.sqlite_client.initialize()


def create_app_components(
    backend: Optional[str] = None,
    database_path: Optional[str] = None,
) -> AppComponents:
    """
    Factory function to create all application components.

    Args:
        backend: "sqlite" or "memory". Defaults to the configured backend.
                 Use "memory" for tests and local experiments.
        database_path: SQLite file to use instead of the configured one

    Returns:
        AppComponents; call initialize() before serving requests
    """
    backend = backend or get_settings().database.backend
    sqlite_client = None

    if backend == "memory":
        db = InMemoryDatabase()
        users = InMemoryUserStorage(db)
        groups = InMemoryGroupStorage(db)
        ledger = InMemoryExpenseLedger(db)
        payments = InMemoryPaymentStorage(db)
        audit_storage = InMemoryAuditStorage(db)
    elif backend == "sqlite":
        sqlite_client = SQLiteClient(path=database_path)
        users = SQLiteUserStorage(sqlite_client)
        groups = SQLiteGroupStorage(sqlite_client)
        ledger = SQLiteExpenseLedger(sqlite_client)
        payments = SQLitePaymentStorage(sqlite_client)
        audit_storage = SQLiteAuditStorage(sqlite_client)
    else:
        raise ValueError(f"Unknown storage backend: {backend}")

    audit_logger = AuditLogger(audit_storage)
    authority = MembershipAuthority(groups, ledger)
    validator = ExpenseRequestValidator(payments)

    return AppComponents(
        profile_flow=ProfileFlow(users, groups, audit_logger),
        group_flow=GroupFlow(groups, ledger, users, authority, audit_logger),
        expense_flow=ExpenseFlow(
            groups,
            ledger,
            authority,
            SplitEngine(ledger, payments, audit_logger),
            validator,
            audit_logger,
        ),
        invoice_flow=InvoiceFlow(
            payments,
            InvoiceReconciler(payments, audit_logger),
            validator,
            audit_logger,
        ),
        report_flow=ReportFlow(ReportExecutor(payments, ledger, groups), groups, authority),
        audit_logger=audit_logger,
        sqlite_client=sqlite_client,
    )
