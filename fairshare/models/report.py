"""
Report Models

Aggregates computed deterministically from stored invoices, payments
and group splits. Nothing here is estimated.
"""

from datetime import date, datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from fairshare.models.group import UserSummary
from fairshare.models.types import Money, utcnow


class MonthlyTotal(BaseModel):
    """Spend for one calendar month against declared income."""

    month: str = Field(..., pattern=r"^\d{4}-\d{2}$")
    expenses: Money
    income: Money
    balance: Money


class DailyTotal(BaseModel):
    """Spend for one calendar day."""

    day: date
    amount: Money


class DashboardSummary(BaseModel):
    """Per-user dashboard aggregates over invoices, payments and group shares."""

    generated_at: datetime = Field(default_factory=utcnow)

    total_invoices: int = Field(ge=0)
    pending_invoices: int = Field(ge=0)
    total_group_splits: int = Field(ge=0)
    pending_group_splits: int = Field(ge=0)

    total_expenses: Money = Field(description="Invoices plus group shares")
    total_paid: Money = Field(description="Completed personal payments")
    total_pending: Money = Field(description="Unpaid invoice balance plus unpaid group shares")

    monthly_income: Money
    current_month_expenses: Money
    remaining_budget: Money
    percentage_used: float = Field(description="Share of income spent this month, in percent")

    monthly_data: list[MonthlyTotal] = Field(default_factory=list)
    daily_data: list[DailyTotal] = Field(default_factory=list)


class MemberBalance(BaseModel):
    """What one member owes and has settled inside a group."""

    user_id: UUID
    user: Optional[UserSummary] = None
    total_owed: Money
    total_settled: Money
    outstanding: Money
    paid_up_front: Money = Field(description="Sum of expenses this member paid for the group")


class GroupSummary(BaseModel):
    """Group-level totals."""

    group_id: UUID
    currency: str
    expense_count: int = Field(ge=0)
    total_amount: Money
    outstanding_amount: Money
    members: list[MemberBalance] = Field(default_factory=list)
