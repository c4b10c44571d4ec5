"""Tests for dashboard and group reports."""

from datetime import date
from decimal import Decimal

import pytest

from fairshare.models.expense import ExpenseSplit, GroupExpense
from fairshare.models.invoice import Invoice, Payment, PaymentStatus, PaymentType
from fairshare.reports import ReportExecutor

from conftest import make_group, make_user


TODAY = date(2024, 5, 20)


async def add_expense(ledger, group, payer, amount, day, shares):
    """Store an expense with explicit (user, amount, is_paid) shares."""
    expense = GroupExpense(
        group_id=group.id,
        paid_by=payer.id,
        description="Shared",
        amount=Decimal(amount),
        currency=group.currency,
        expense_date=day,
    )
    splits = [
        ExpenseSplit(expense_id=expense.id, user_id=user.id, amount_owed=Decimal(owed), is_paid=paid)
        for user, owed, paid in shares
    ]
    return await ledger.insert_expense_with_splits(expense, splits)


@pytest.fixture
async def household(users, groups, ledger, payments):
    """Ana, Bo and Cy share a flat; Ana also has a personal invoice."""
    ana = await make_user(users, "ana@example.com", income="3000")
    bo = await make_user(users, "bo@example.com", income="1000")
    cy = await make_user(users, "cy@example.com")
    group = await make_group(groups, ana, bo, cy)

    await add_expense(ledger, group, bo, "300", date(2024, 5, 15), [
        (ana, "100", False), (bo, "100", True), (cy, "100", True),
    ])
    await add_expense(ledger, group, ana, "90", date(2024, 3, 1), [
        (ana, "30", True), (bo, "30", False), (cy, "30", False),
    ])

    invoice = await payments.save_invoice(Invoice(
        user_id=ana.id,
        vendor_name="UTE",
        amount=Decimal("1000"),
        invoice_date=date(2024, 5, 10),
    ))
    await payments.save_payment(Payment(
        user_id=ana.id,
        invoice_id=invoice.id,
        payment_date=date(2024, 5, 11),
        payment_type=PaymentType.TRANSFER,
        amount_paid=Decimal("400"),
    ))
    await payments.save_payment(Payment(
        user_id=ana.id,
        invoice_id=invoice.id,
        payment_date=date(2024, 5, 12),
        payment_type=PaymentType.CARD,
        amount_paid=Decimal("100"),
        status=PaymentStatus.PENDING,
    ))
    return {"ana": ana, "bo": bo, "cy": cy, "group": group}


class TestDashboardSummary:
    """Tests for ReportExecutor.dashboard_summary."""

    async def test_totals(self, household, payments, ledger, groups):
        """Test invoice, payment and share totals."""
        executor = ReportExecutor(payments, ledger, groups)

        summary = await executor.dashboard_summary(household["ana"].id, Decimal("3000"), today=TODAY)

        assert summary.total_invoices == 1
        assert summary.pending_invoices == 1
        assert summary.total_group_splits == 2
        assert summary.pending_group_splits == 1
        assert summary.total_expenses == Decimal("1130")
        assert summary.total_paid == Decimal("400")
        assert summary.total_pending == Decimal("700")

    async def test_current_month_budget(self, household, payments, ledger, groups):
        """Test the current month against declared income."""
        executor = ReportExecutor(payments, ledger, groups)

        summary = await executor.dashboard_summary(household["ana"].id, Decimal("3000"), today=TODAY)

        assert summary.current_month_expenses == Decimal("1100")
        assert summary.remaining_budget == Decimal("1900")
        assert summary.percentage_used == 36.7

    async def test_monthly_and_daily_buckets(self, household, payments, ledger, groups):
        """Test that every month and day in the window is present."""
        executor = ReportExecutor(payments, ledger, groups)

        summary = await executor.dashboard_summary(household["ana"].id, Decimal("3000"), today=TODAY)

        assert [m.month for m in summary.monthly_data] == [
            "2023-12", "2024-01", "2024-02", "2024-03", "2024-04", "2024-05",
        ]
        by_month = {m.month: m for m in summary.monthly_data}
        assert by_month["2024-03"].expenses == Decimal("30")
        assert by_month["2024-04"].expenses == Decimal("0")
        assert by_month["2024-05"].balance == Decimal("1900")

        assert len(summary.daily_data) == 30
        assert summary.daily_data[0].day == date(2024, 4, 21)
        assert summary.daily_data[-1].day == TODAY
        by_day = {d.day: d.amount for d in summary.daily_data}
        assert by_day[date(2024, 5, 10)] == Decimal("1000")
        assert by_day[date(2024, 5, 15)] == Decimal("100")
        assert by_day[date(2024, 5, 16)] == Decimal("0")

    async def test_no_income(self, household, payments, ledger, groups):
        """Test that zero income reports zero percentage."""
        executor = ReportExecutor(payments, ledger, groups)

        summary = await executor.dashboard_summary(household["cy"].id, Decimal("0"), today=TODAY)

        assert summary.percentage_used == 0.0
        assert summary.total_invoices == 0
        assert summary.total_pending == Decimal("30")

    async def test_amounts_render_as_numbers(self, household, payments, ledger, groups):
        """Test the JSON form of the summary."""
        executor = ReportExecutor(payments, ledger, groups)

        summary = await executor.dashboard_summary(household["ana"].id, Decimal("3000"), today=TODAY)
        dumped = summary.model_dump(mode="json")

        assert dumped["total_pending"] == 700.0
        assert dumped["monthly_data"][-1]["month"] == "2024-05"


class TestGroupSummary:
    """Tests for ReportExecutor.group_summary."""

    async def test_member_balances(self, household, payments, ledger, groups):
        """Test owed, settled and outstanding per member."""
        executor = ReportExecutor(payments, ledger, groups)
        group = household["group"]

        summary = await executor.group_summary(group.id, group.currency)

        assert summary.expense_count == 2
        assert summary.total_amount == Decimal("390")
        assert summary.outstanding_amount == Decimal("160")

        balances = {b.user_id: b for b in summary.members}
        ana = balances[household["ana"].id]
        assert ana.total_owed == Decimal("130")
        assert ana.total_settled == Decimal("30")
        assert ana.outstanding == Decimal("100")
        assert ana.paid_up_front == Decimal("90")
        assert ana.user.email == "ana@example.com"

        bo = balances[household["bo"].id]
        assert bo.outstanding == Decimal("30")
        assert bo.paid_up_front == Decimal("300")

    async def test_empty_group(self, users, groups, ledger, payments):
        """Test a group with no expenses."""
        ana = await make_user(users, "ana@example.com")
        group = await make_group(groups, ana)
        executor = ReportExecutor(payments, ledger, groups)

        summary = await executor.group_summary(group.id, group.currency)

        assert summary.expense_count == 0
        assert summary.total_amount == Decimal("0")
        assert len(summary.members) == 1


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
