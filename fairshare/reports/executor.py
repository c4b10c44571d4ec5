"""
Report Execution Engine

DESIGN DECISION: Reports are DETERMINISTIC.
Every number is computed from stored invoices, payments and splits at
request time. Nothing is cached, estimated or projected.

GUARANTEES:
- Only aggregates real data from storage
- Decimal arithmetic throughout; amounts become floats only in JSON
- Empty months and days are present with zero totals
"""

from datetime import date, timedelta
from decimal import Decimal
from typing import Optional
from uuid import UUID

from dateutil.relativedelta import relativedelta

from fairshare.models.invoice import InvoiceStatus, PaymentStatus
from fairshare.models.report import (
    DailyTotal,
    DashboardSummary,
    GroupSummary,
    MemberBalance,
    MonthlyTotal,
)
from fairshare.services.storage import (
    ExpenseLedgerInterface,
    GroupStorageInterface,
    PaymentStorageInterface,
)


MONTHS_IN_DASHBOARD = 6
DAYS_IN_DASHBOARD = 30

ZERO = Decimal("0")


class ReportExecutor:
    """Computes dashboard and group aggregates from storage."""

    def __init__(
        self,
        payments: PaymentStorageInterface,
        ledger: ExpenseLedgerInterface,
        groups: GroupStorageInterface,
    ):
        self._payments = payments
        self._ledger = ledger
        self._groups = groups

    async def dashboard_summary(
        self,
        user_id: UUID,
        monthly_income: Decimal,
        today: Optional[date] = None,
    ) -> DashboardSummary:
        """
        Per-user totals over personal invoices and group shares.

        Args:
            user_id: Whose data to aggregate
            monthly_income: Declared income from the user's profile
            today: Reference day for the monthly and daily windows
        """
        today = today or date.today()

        invoices = await self._payments.list_invoices(user_id)
        payments = await self._payments.list_payments(user_id)
        entries = await self._ledger.list_user_split_entries(user_id)

        completed = [p for p in payments if p.status == PaymentStatus.COMPLETED]
        total_paid = sum((p.amount_paid for p in completed), ZERO)

        # Unpaid balance per invoice, never negative
        paid_by_invoice: dict[UUID, Decimal] = {}
        for payment in completed:
            if payment.invoice_id is not None:
                paid_by_invoice[payment.invoice_id] = (
                    paid_by_invoice.get(payment.invoice_id, ZERO) + payment.amount_paid
                )
        invoice_balance = sum(
            (max(ZERO, inv.amount - paid_by_invoice.get(inv.id, ZERO)) for inv in invoices),
            ZERO,
        )

        total_invoices = sum((inv.amount for inv in invoices), ZERO)
        total_shares = sum((e.split.amount_owed for e in entries), ZERO)
        pending_shares = sum((e.split.amount_owed for e in entries if not e.split.is_paid), ZERO)

        # Spend keyed by day, from invoices and group shares
        spend_by_day: dict[date, Decimal] = {}
        for invoice in invoices:
            spend_by_day[invoice.invoice_date] = spend_by_day.get(invoice.invoice_date, ZERO) + invoice.amount
        for entry in entries:
            spend_by_day[entry.expense_date] = spend_by_day.get(entry.expense_date, ZERO) + entry.split.amount_owed

        monthly_data = self._monthly_totals(spend_by_day, monthly_income, today)
        daily_data = [
            DailyTotal(day=day, amount=spend_by_day.get(day, ZERO))
            for day in (today - timedelta(days=offset) for offset in range(DAYS_IN_DASHBOARD - 1, -1, -1))
        ]

        current_month_expenses = monthly_data[-1].expenses
        if monthly_income > 0:
            percentage_used = round(float(current_month_expenses / monthly_income * 100), 1)
        else:
            percentage_used = 0.0

        return DashboardSummary(
            total_invoices=len(invoices),
            pending_invoices=sum(1 for inv in invoices if inv.status == InvoiceStatus.PENDING),
            total_group_splits=len(entries),
            pending_group_splits=sum(1 for e in entries if not e.split.is_paid),
            total_expenses=total_invoices + total_shares,
            total_paid=total_paid,
            total_pending=invoice_balance + pending_shares,
            monthly_income=monthly_income,
            current_month_expenses=current_month_expenses,
            remaining_budget=monthly_income - current_month_expenses,
            percentage_used=percentage_used,
            monthly_data=monthly_data,
            daily_data=daily_data,
        )

    def _monthly_totals(
        self,
        spend_by_day: dict[date, Decimal],
        monthly_income: Decimal,
        today: date,
    ) -> list[MonthlyTotal]:
        """Oldest month first, current month last."""
        first_of_month = today.replace(day=1)
        months = [
            first_of_month - relativedelta(months=offset)
            for offset in range(MONTHS_IN_DASHBOARD - 1, -1, -1)
        ]

        totals = {month.strftime("%Y-%m"): ZERO for month in months}
        for day, amount in spend_by_day.items():
            key = day.strftime("%Y-%m")
            if key in totals:
                totals[key] += amount

        return [
            MonthlyTotal(
                month=key,
                expenses=amount,
                income=monthly_income,
                balance=monthly_income - amount,
            )
            for key, amount in totals.items()
        ]

    async def group_summary(self, group_id: UUID, currency: str) -> GroupSummary:
        """Totals for one group and the balance of every current member."""
        expenses = await self._ledger.list_expenses(group_id)
        members = await self._groups.list_members(group_id)

        balances = {
            m.user_id: {"user": m.user, "owed": ZERO, "settled": ZERO, "paid": ZERO}
            for m in members
        }
        outstanding_amount = ZERO

        for expense in expenses:
            if expense.paid_by in balances:
                balances[expense.paid_by]["paid"] += expense.amount
            for split in expense.splits:
                if not split.is_paid:
                    outstanding_amount += split.amount_owed
                balance = balances.get(split.user_id)
                if balance is None:
                    continue
                balance["owed"] += split.amount_owed
                if split.is_paid:
                    balance["settled"] += split.amount_owed

        return GroupSummary(
            group_id=group_id,
            currency=currency,
            expense_count=len(expenses),
            total_amount=sum((e.amount for e in expenses), ZERO),
            outstanding_amount=outstanding_amount,
            members=[
                MemberBalance(
                    user_id=user_id,
                    user=b["user"],
                    total_owed=b["owed"],
                    total_settled=b["settled"],
                    outstanding=b["owed"] - b["settled"],
                    paid_up_front=b["paid"],
                )
                for user_id, b in balances.items()
            ],
        )
