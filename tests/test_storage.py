"""
Storage contract tests.

Every test runs against both the in-memory and the SQLite backend, so
the two stay interchangeable behind the interfaces.
"""

import asyncio
from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from fairshare.models.audit import AuditEventBuilder
from fairshare.models.expense import ExpenseSplit, GroupExpense, RecurrenceInterval
from fairshare.models.group import (
    GroupInvitation,
    GroupMember,
    InvitationStatus,
    MemberRole,
    MembershipChange,
)
from fairshare.models.invoice import Invoice, InvoiceStatus, Payment, PaymentType
from fairshare.services.storage import (
    ConflictError,
    DuplicateError,
    InMemoryAuditStorage,
    InMemoryDatabase,
    InMemoryExpenseLedger,
    InMemoryGroupStorage,
    InMemoryPaymentStorage,
    InMemoryUserStorage,
    NotFoundError,
    SQLiteAuditStorage,
    SQLiteClient,
    SQLiteExpenseLedger,
    SQLiteGroupStorage,
    SQLitePaymentStorage,
    SQLiteUserStorage,
)

from conftest import make_group, make_user


@pytest.fixture(params=["memory", "sqlite"])
async def store(request, tmp_path):
    """Storages for one backend, keyed by concern."""
    if request.param == "memory":
        db = InMemoryDatabase()
        return {
            "users": InMemoryUserStorage(db),
            "groups": InMemoryGroupStorage(db),
            "ledger": InMemoryExpenseLedger(db),
            "payments": InMemoryPaymentStorage(db),
            "audit": InMemoryAuditStorage(db),
        }

    client = SQLiteClient(path=str(tmp_path / "contract.db"))
    await client.initialize()
    return {
        "users": SQLiteUserStorage(client),
        "groups": SQLiteGroupStorage(client),
        "ledger": SQLiteExpenseLedger(client),
        "payments": SQLitePaymentStorage(client),
        "audit": SQLiteAuditStorage(client),
    }


def new_expense(group, payer, amount="90.00", **fields) -> GroupExpense:
    return GroupExpense(
        group_id=group.id,
        paid_by=payer.id,
        description="Internet",
        amount=Decimal(amount),
        currency=group.currency,
        expense_date=fields.pop("expense_date", date(2024, 5, 1)),
        **fields,
    )


class TestUserStorage:
    """Tests for user profiles."""

    async def test_save_and_get(self, store):
        """Test a profile round trip including income."""
        user = await make_user(store["users"], "Ana@Example.com", income="1234.56", name="Ana")

        loaded = await store["users"].get_user(user.id)
        assert loaded.email == "ana@example.com"
        assert loaded.name == "Ana"
        assert loaded.monthly_income == Decimal("1234.56")

        by_email = await store["users"].get_user_by_email("ANA@example.com")
        assert by_email.id == user.id

    async def test_duplicate_email(self, store):
        """Test that emails are unique."""
        await make_user(store["users"], "ana@example.com")
        with pytest.raises(DuplicateError):
            await make_user(store["users"], "ana@example.com")

    async def test_update_user(self, store):
        """Test a partial profile update."""
        user = await make_user(store["users"], "ana@example.com", name="Ana")

        updated = await store["users"].update_user(user.id, monthly_income=Decimal("2000"))
        assert updated.name == "Ana"
        assert updated.monthly_income == Decimal("2000")

        with pytest.raises(NotFoundError):
            await store["users"].update_user(uuid4(), name="Nobody")


class TestGroupStorage:
    """Tests for groups, memberships and invitations."""

    async def test_create_group_adds_creator(self, store):
        """Test the creator membership is written with the group."""
        ana = await make_user(store["users"], "ana@example.com", income="3000")
        group = await make_group(store["groups"], ana)

        members = await store["groups"].list_members(group.id)
        assert len(members) == 1
        assert members[0].user_id == ana.id
        assert members[0].role == MemberRole.ADMIN
        assert members[0].monthly_income == Decimal("3000")
        assert members[0].user.email == "ana@example.com"

    async def test_membership_is_unique(self, store):
        """Test that a user can't join the same group twice."""
        ana = await make_user(store["users"], "ana@example.com")
        group = await make_group(store["groups"], ana)

        with pytest.raises(DuplicateError):
            await store["groups"].add_member(GroupMember(group_id=group.id, user_id=ana.id))

    async def test_add_member_to_missing_group(self, store):
        """Test that memberships need an existing group."""
        ana = await make_user(store["users"], "ana@example.com")
        with pytest.raises(NotFoundError):
            await store["groups"].add_member(GroupMember(group_id=uuid4(), user_id=ana.id))

    async def test_list_groups_for_user(self, store):
        """Test groups come back sorted by name with the user's role."""
        ana = await make_user(store["users"], "ana@example.com")
        bo = await make_user(store["users"], "bo@example.com")
        await make_group(store["groups"], ana, bo, name="Trip")
        await make_group(store["groups"], bo, ana, name="Flat")

        listed = await store["groups"].list_groups_for_user(ana.id)

        assert [g.name for g, _ in listed] == ["Flat", "Trip"]
        assert [m.role for _, m in listed] == [MemberRole.MEMBER, MemberRole.ADMIN]

    async def test_role_change_and_removal(self, store):
        """Test updating a role and removing a member."""
        ana = await make_user(store["users"], "ana@example.com")
        bo = await make_user(store["users"], "bo@example.com")
        group = await make_group(store["groups"], ana, bo)

        outcome = await store["groups"].update_member_role_guarded(group.id, bo.id, MemberRole.ADMIN)
        assert outcome == MembershipChange.APPLIED
        assert (await store["groups"].get_membership(group.id, bo.id)).role == MemberRole.ADMIN

        removed = await store["groups"].remove_member_guarded(group.id, bo.id, delete_group_if_last=True)
        assert removed == MembershipChange.APPLIED
        again = await store["groups"].remove_member_guarded(group.id, bo.id, delete_group_if_last=True)
        assert again == MembershipChange.NOT_A_MEMBER
        assert await store["groups"].get_membership(group.id, bo.id) is None

    async def test_guarded_removal_rechecks_rules(self, store):
        """Test removal is refused for debtors and the only admin."""
        ana = await make_user(store["users"], "ana@example.com")
        bo = await make_user(store["users"], "bo@example.com")
        group = await make_group(store["groups"], ana, bo)
        expense = new_expense(group, ana)
        await store["ledger"].insert_expense_with_splits(expense, [
            ExpenseSplit(expense_id=expense.id, user_id=ana.id, amount_owed=Decimal("45"), is_paid=True),
            ExpenseSplit(expense_id=expense.id, user_id=bo.id, amount_owed=Decimal("45")),
        ])

        groups = store["groups"]
        assert await groups.remove_member_guarded(group.id, bo.id, True) == MembershipChange.UNPAID_SPLITS
        assert await groups.remove_member_guarded(group.id, ana.id, True) == MembershipChange.LAST_ADMIN
        assert len(await groups.list_members(group.id)) == 2

    async def test_guarded_removal_of_last_member(self, store):
        """Test the last member's removal deletes the group only when asked."""
        ana = await make_user(store["users"], "ana@example.com")
        kept = await make_group(store["groups"], ana, name="Kept")
        dropped = await make_group(store["groups"], ana, name="Dropped")

        outcome = await store["groups"].remove_member_guarded(kept.id, ana.id, delete_group_if_last=False)
        assert outcome == MembershipChange.APPLIED
        assert await store["groups"].get_group(kept.id) is not None

        outcome = await store["groups"].remove_member_guarded(dropped.id, ana.id, delete_group_if_last=True)
        assert outcome == MembershipChange.GROUP_DELETED
        assert await store["groups"].get_group(dropped.id) is None

    async def test_guarded_role_change_keeps_an_admin(self, store):
        """Test the only admin can't be demoted."""
        ana = await make_user(store["users"], "ana@example.com")
        bo = await make_user(store["users"], "bo@example.com")
        group = await make_group(store["groups"], ana, bo)

        groups = store["groups"]
        assert await groups.update_member_role_guarded(group.id, ana.id, MemberRole.MEMBER) == MembershipChange.LAST_ADMIN
        assert await groups.update_member_role_guarded(group.id, uuid4(), MemberRole.ADMIN) == MembershipChange.NOT_A_MEMBER
        assert (await groups.get_membership(group.id, ana.id)).role == MemberRole.ADMIN

    async def test_update_member_income_touches_every_group(self, store):
        """Test income propagation across memberships."""
        ana = await make_user(store["users"], "ana@example.com")
        bo = await make_user(store["users"], "bo@example.com")
        first = await make_group(store["groups"], ana, bo, name="A")
        second = await make_group(store["groups"], bo, ana, name="B")

        count = await store["groups"].update_member_income(ana.id, Decimal("4200"))

        assert count == 2
        for group in (first, second):
            membership = await store["groups"].get_membership(group.id, ana.id)
            assert membership.monthly_income == Decimal("4200")
        untouched = await store["groups"].get_membership(first.id, bo.id)
        assert untouched.monthly_income == Decimal("0")

    async def test_invitations(self, store):
        """Test finding, listing and answering invitations."""
        ana = await make_user(store["users"], "ana@example.com")
        group = await make_group(store["groups"], ana)

        invitation = await store["groups"].save_invitation(GroupInvitation(
            group_id=group.id,
            invited_by=ana.id,
            email="Bo@Example.com",
        ))

        found = await store["groups"].find_pending_invitation(group.id, "bo@example.com")
        assert found.id == invitation.id
        pending = await store["groups"].list_pending_invitations("bo@example.com")
        assert [i.id for i in pending] == [invitation.id]

        answered = await store["groups"].update_invitation_status(
            invitation.id, InvitationStatus.REJECTED, datetime.now(timezone.utc)
        )
        assert answered.status == InvitationStatus.REJECTED
        assert answered.responded_at is not None
        assert await store["groups"].list_pending_invitations("bo@example.com") == []

    async def test_delete_group_cascades(self, store):
        """Test that deleting a group removes everything under it."""
        ana = await make_user(store["users"], "ana@example.com")
        bo = await make_user(store["users"], "bo@example.com")
        group = await make_group(store["groups"], ana, bo)
        await store["groups"].save_invitation(GroupInvitation(
            group_id=group.id, invited_by=ana.id, email="cy@example.com"
        ))
        expense = new_expense(group, ana)
        await store["ledger"].insert_expense_with_splits(expense, [
            ExpenseSplit(expense_id=expense.id, user_id=ana.id, amount_owed=Decimal("45"), is_paid=True),
            ExpenseSplit(expense_id=expense.id, user_id=bo.id, amount_owed=Decimal("45")),
        ])

        assert await store["groups"].delete_group(group.id) is True

        assert await store["groups"].get_group(group.id) is None
        assert await store["groups"].list_members(group.id) == []
        assert await store["groups"].list_pending_invitations("cy@example.com") == []
        assert await store["ledger"].get_expense(expense.id) is None
        assert await store["ledger"].list_user_split_entries(bo.id) == []
        assert await store["groups"].delete_group(group.id) is False


class TestExpenseLedger:
    """Tests for expenses and splits."""

    async def test_insert_expense_with_splits(self, store):
        """Test an expense comes back with its splits and payer."""
        ana = await make_user(store["users"], "ana@example.com", name="Ana")
        bo = await make_user(store["users"], "bo@example.com")
        group = await make_group(store["groups"], ana, bo)
        expense = new_expense(
            group,
            ana,
            is_recurring=True,
            recurrence_interval=RecurrenceInterval.MONTHLY,
            next_occurrence=date(2024, 6, 1),
        )

        stored = await store["ledger"].insert_expense_with_splits(expense, [
            ExpenseSplit(expense_id=expense.id, user_id=ana.id, amount_owed=Decimal("45.00"), is_paid=True),
            ExpenseSplit(expense_id=expense.id, user_id=bo.id, amount_owed=Decimal("45.00")),
        ])

        assert stored.amount == Decimal("90.00")
        assert stored.payer.name == "Ana"
        assert stored.recurrence_interval == RecurrenceInterval.MONTHLY
        assert stored.next_occurrence == date(2024, 6, 1)
        assert sorted(s.amount_owed for s in stored.splits) == [Decimal("45.00"), Decimal("45.00")]
        assert {s.user_id: s.is_paid for s in stored.splits} == {ana.id: True, bo.id: False}

    async def test_expense_without_splits_rejected(self, store):
        """Test that an expense can't be stored with zero splits."""
        ana = await make_user(store["users"], "ana@example.com")
        group = await make_group(store["groups"], ana)

        with pytest.raises(ValueError):
            await store["ledger"].insert_expense_with_splits(new_expense(group, ana), [])

    async def test_expense_for_missing_group(self, store):
        """Test that expenses need an existing group."""
        ana = await make_user(store["users"], "ana@example.com")
        group = await make_group(store["groups"], ana)
        await store["groups"].delete_group(group.id)
        expense = new_expense(group, ana)

        with pytest.raises(NotFoundError):
            await store["ledger"].insert_expense_with_splits(expense, [
                ExpenseSplit(expense_id=expense.id, user_id=ana.id, amount_owed=Decimal("90"), is_paid=True)
            ])

    async def test_expense_for_departed_member_conflicts(self, store):
        """Test splits can't be written for someone who already left."""
        ana = await make_user(store["users"], "ana@example.com")
        bo = await make_user(store["users"], "bo@example.com")
        group = await make_group(store["groups"], ana, bo)
        await store["groups"].remove_member_guarded(group.id, bo.id, delete_group_if_last=True)
        expense = new_expense(group, ana)

        with pytest.raises(ConflictError):
            await store["ledger"].insert_expense_with_splits(expense, [
                ExpenseSplit(expense_id=expense.id, user_id=ana.id, amount_owed=Decimal("45"), is_paid=True),
                ExpenseSplit(expense_id=expense.id, user_id=bo.id, amount_owed=Decimal("45")),
            ])

        assert await store["ledger"].get_expense(expense.id) is None

    async def test_zero_share_is_not_debt(self, store):
        """Test that an unpaid 0.00 share doesn't count as unpaid."""
        ana = await make_user(store["users"], "ana@example.com")
        bo = await make_user(store["users"], "bo@example.com")
        group = await make_group(store["groups"], ana, bo)
        expense = new_expense(group, ana, amount="0.01")
        await store["ledger"].insert_expense_with_splits(expense, [
            ExpenseSplit(expense_id=expense.id, user_id=ana.id, amount_owed=Decimal("0.01"), is_paid=True),
            ExpenseSplit(expense_id=expense.id, user_id=bo.id, amount_owed=Decimal("0.00")),
        ])

        assert await store["ledger"].count_unpaid_splits(group.id, bo.id) == 0
        outcome = await store["groups"].remove_member_guarded(group.id, bo.id, delete_group_if_last=True)
        assert outcome == MembershipChange.APPLIED

    async def test_list_expenses_newest_first(self, store):
        """Test expenses are ordered by date, newest first."""
        ana = await make_user(store["users"], "ana@example.com")
        group = await make_group(store["groups"], ana)
        for day in (3, 1, 2):
            expense = new_expense(group, ana, expense_date=date(2024, 5, day))
            await store["ledger"].insert_expense_with_splits(expense, [
                ExpenseSplit(expense_id=expense.id, user_id=ana.id, amount_owed=Decimal("90"), is_paid=True)
            ])

        listed = await store["ledger"].list_expenses(group.id)
        assert [e.expense_date.day for e in listed] == [3, 2, 1]

    async def test_mark_split_paid_is_conditional(self, store):
        """Test that only the first settlement succeeds."""
        ana = await make_user(store["users"], "ana@example.com")
        bo = await make_user(store["users"], "bo@example.com")
        group = await make_group(store["groups"], ana, bo)
        expense = new_expense(group, ana)
        split = ExpenseSplit(expense_id=expense.id, user_id=bo.id, amount_owed=Decimal("45"))
        await store["ledger"].insert_expense_with_splits(expense, [
            ExpenseSplit(expense_id=expense.id, user_id=ana.id, amount_owed=Decimal("45"), is_paid=True),
            split,
        ])
        assert await store["ledger"].count_unpaid_splits(group.id, bo.id) == 1

        now = datetime.now(timezone.utc)
        settled = await store["ledger"].mark_split_paid(split.id, expense.id, now)
        assert settled.is_paid is True
        assert settled.paid_at is not None

        assert await store["ledger"].mark_split_paid(split.id, expense.id, now) is None
        assert await store["ledger"].mark_split_paid(split.id, uuid4(), now) is None
        assert await store["ledger"].count_unpaid_splits(group.id, bo.id) == 0

    async def test_concurrent_mark_split_paid(self, store):
        """Test that concurrent conditional updates have one winner."""
        ana = await make_user(store["users"], "ana@example.com")
        bo = await make_user(store["users"], "bo@example.com")
        group = await make_group(store["groups"], ana, bo)
        expense = new_expense(group, ana)
        split = ExpenseSplit(expense_id=expense.id, user_id=bo.id, amount_owed=Decimal("45"))
        await store["ledger"].insert_expense_with_splits(expense, [
            ExpenseSplit(expense_id=expense.id, user_id=ana.id, amount_owed=Decimal("45"), is_paid=True),
            split,
        ])

        now = datetime.now(timezone.utc)
        results = await asyncio.gather(*(
            store["ledger"].mark_split_paid(split.id, expense.id, now) for _ in range(4)
        ))

        assert sum(1 for r in results if r is not None) == 1

    async def test_user_split_entries(self, store):
        """Test a user's splits come back with expense context."""
        ana = await make_user(store["users"], "ana@example.com")
        bo = await make_user(store["users"], "bo@example.com")
        group = await make_group(store["groups"], ana, bo)
        expense = new_expense(group, ana, category="utilities")
        await store["ledger"].insert_expense_with_splits(expense, [
            ExpenseSplit(expense_id=expense.id, user_id=ana.id, amount_owed=Decimal("45"), is_paid=True),
            ExpenseSplit(expense_id=expense.id, user_id=bo.id, amount_owed=Decimal("45")),
        ])

        entries = await store["ledger"].list_user_split_entries(bo.id)

        assert len(entries) == 1
        assert entries[0].group_id == group.id
        assert entries[0].description == "Internet"
        assert entries[0].category == "utilities"
        assert entries[0].split.amount_owed == Decimal("45")


class TestPaymentStorage:
    """Tests for invoices and payments."""

    async def test_invoice_round_trip_and_filters(self, store):
        """Test saving invoices and filtering by date."""
        user_id = uuid4()
        for day in (1, 15, 28):
            await store["payments"].save_invoice(Invoice(
                user_id=user_id,
                vendor_name=f"Vendor {day}",
                amount=Decimal("100.10"),
                invoice_date=date(2024, 5, day),
            ))
        await store["payments"].save_invoice(Invoice(
            user_id=uuid4(),
            vendor_name="Someone else",
            amount=Decimal("5"),
            invoice_date=date(2024, 5, 15),
        ))

        everything = await store["payments"].list_invoices(user_id)
        assert len(everything) == 3
        assert all(inv.amount == Decimal("100.10") for inv in everything)

        middle = await store["payments"].list_invoices(
            user_id, date_from=date(2024, 5, 10), date_to=date(2024, 5, 20)
        )
        assert [inv.vendor_name for inv in middle] == ["Vendor 15"]

    async def test_update_invoice_status(self, store):
        """Test writing a derived status."""
        invoice = await store["payments"].save_invoice(Invoice(
            user_id=uuid4(),
            vendor_name="UTE",
            amount=Decimal("10"),
            invoice_date=date(2024, 5, 1),
        ))

        updated = await store["payments"].update_invoice_status(invoice.id, InvoiceStatus.PAID)
        assert updated.status == InvoiceStatus.PAID

        with pytest.raises(NotFoundError):
            await store["payments"].update_invoice_status(uuid4(), InvoiceStatus.PAID)

    async def test_payments_by_user_and_invoice(self, store):
        """Test listing payments per user and per invoice."""
        user_id = uuid4()
        invoice = await store["payments"].save_invoice(Invoice(
            user_id=user_id,
            vendor_name="UTE",
            amount=Decimal("10"),
            invoice_date=date(2024, 5, 1),
        ))
        await store["payments"].save_payment(Payment(
            user_id=user_id,
            invoice_id=invoice.id,
            payment_date=date(2024, 5, 2),
            payment_type=PaymentType.CARD,
            amount_paid=Decimal("4"),
        ))
        await store["payments"].save_payment(Payment(
            user_id=user_id,
            payment_date=date(2024, 5, 3),
            payment_type=PaymentType.GROUP_EXPENSE,
            amount_paid=Decimal("6"),
            notes="Shared expense payment",
        ))

        assert len(await store["payments"].list_payments(user_id)) == 2
        for_invoice = await store["payments"].list_payments_for_invoice(invoice.id)
        assert [p.amount_paid for p in for_invoice] == [Decimal("4")]


class TestAuditStorage:
    """Tests for the audit log."""

    async def test_append_and_query(self, store):
        """Test events can be read back by entity and recency."""
        split_id = uuid4()
        actor = uuid4()
        await store["audit"].append_event(AuditEventBuilder.split_paid(
            split_id=split_id, expense_id=uuid4(), amount="10.00", actor_id=actor
        ))
        await store["audit"].append_event(AuditEventBuilder.payment_audit_failed(
            split_id=split_id, error_message="boom", actor_id=actor
        ))

        events = await store["audit"].get_events_by_entity("split", split_id)
        assert len(events) == 2
        assert events[0].details["amount"] == "10.00"
        assert events[1].error_message == "boom"

        recent = await store["audit"].get_recent_events(limit=1)
        assert len(recent) == 1


class TestSQLiteTransactions:
    """SQLite-specific atomicity checks."""

    async def test_failed_split_insert_rolls_back_expense(self, sqlite_storages):
        """Test that a rejected split leaves no half-written expense."""
        ana = await make_user(sqlite_storages["users"], "ana@example.com")
        group = await make_group(sqlite_storages["groups"], ana)
        expense = new_expense(group, ana)
        split = ExpenseSplit(expense_id=expense.id, user_id=ana.id, amount_owed=Decimal("90"), is_paid=True)

        with pytest.raises(DuplicateError):
            await sqlite_storages["ledger"].insert_expense_with_splits(expense, [split, split])

        assert await sqlite_storages["ledger"].get_expense(expense.id) is None
        assert await sqlite_storages["ledger"].list_expenses(group.id) == []

    async def test_concurrent_admin_removals_keep_an_admin(self, sqlite_storages):
        """Test two admins leaving at once can't strand the group."""
        ana = await make_user(sqlite_storages["users"], "ana@example.com")
        bo = await make_user(sqlite_storages["users"], "bo@example.com")
        cy = await make_user(sqlite_storages["users"], "cy@example.com")
        group = await make_group(sqlite_storages["groups"], ana, bo, cy)
        groups = sqlite_storages["groups"]
        await groups.update_member_role_guarded(group.id, bo.id, MemberRole.ADMIN)

        outcomes = await asyncio.gather(
            groups.remove_member_guarded(group.id, ana.id, delete_group_if_last=True),
            groups.remove_member_guarded(group.id, bo.id, delete_group_if_last=True),
        )

        assert sorted(outcomes) == sorted([MembershipChange.APPLIED, MembershipChange.LAST_ADMIN])
        remaining = await groups.list_members(group.id)
        assert len(remaining) == 2
        assert sum(1 for m in remaining if m.is_admin) == 1

    async def test_schema_initialization_is_idempotent(self, sqlite_client, sqlite_storages):
        """Test that initializing an existing database keeps its data."""
        ana = await make_user(sqlite_storages["users"], "ana@example.com")

        await sqlite_client.initialize()

        assert (await sqlite_storages["users"].get_user(ana.id)).email == "ana@example.com"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
