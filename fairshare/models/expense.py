"""
Group Expense and Split Models

An expense belongs to exactly one group and is paid in full up front by
one member. It is divided into one split per member.

CRITICAL:
- An expense and its splits are created together; zero splits is invalid
- Splits sum exactly to the expense amount
- The payer's split is created already paid, all others unpaid
- A split moves unpaid -> paid exactly once; there is no "unpay"
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from fairshare.models.group import UserSummary
from fairshare.models.invoice import Payment
from fairshare.models.types import Money, utcnow


class RecurrenceInterval(str, Enum):
    """How often a recurring expense repeats."""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class SplitParticipant(BaseModel):
    """A member as seen by the split engine: id and declared income."""
    model_config = ConfigDict(frozen=True)

    user_id: UUID
    monthly_income: Money = Field(default=Decimal("0"), ge=0)


class ComputedSplit(BaseModel):
    """One member's share of a new expense, before it is persisted."""

    user_id: UUID
    amount_owed: Money = Field(..., ge=0)
    is_paid: bool = False
    paid_at: Optional[datetime] = None


class ExpenseSplit(BaseModel):
    """A persisted share of an expense."""

    id: UUID = Field(default_factory=uuid4)
    expense_id: UUID
    user_id: UUID
    amount_owed: Money = Field(..., ge=0)
    is_paid: bool = False
    paid_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)

    # Populated join for display
    user: Optional[UserSummary] = None


class GroupExpense(BaseModel):
    """An expense shared by a group."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    group_id: UUID
    paid_by: UUID = Field(
        ...,
        description="Member who paid the full amount up front"
    )
    description: str = Field(..., min_length=1, max_length=500)
    amount: Money = Field(..., gt=0, decimal_places=2)
    currency: str = Field(
        ...,
        min_length=3,
        max_length=3,
        description="Inherited from the group"
    )
    expense_date: date
    category: Optional[str] = Field(default=None, max_length=100)

    # Recurrence
    is_recurring: bool = False
    recurrence_interval: Optional[RecurrenceInterval] = None
    recurrence_day: Optional[int] = Field(default=None, ge=1, le=31)
    next_occurrence: Optional[date] = Field(
        default=None,
        description="Advisory date of the next occurrence"
    )

    invoice_id: Optional[UUID] = None
    notes: Optional[str] = Field(default=None, max_length=1000)

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    # Populated joins
    payer: Optional[UserSummary] = None
    splits: list[ExpenseSplit] = Field(default_factory=list)


class UserSplitEntry(BaseModel):
    """A user's split joined with the expense fields reports need."""

    split: ExpenseSplit
    group_id: UUID
    description: str
    expense_date: date
    category: Optional[str] = None


# =============================================================================
# REQUEST / RESPONSE MODELS
# =============================================================================

class ExpenseCreateRequest(BaseModel):
    """Input for creating a group expense. The caller is the payer."""
    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    description: str = Field(..., min_length=1, max_length=500)
    amount: Money = Field(..., gt=0, decimal_places=2)
    expense_date: date
    category: Optional[str] = Field(default=None, max_length=100)
    is_recurring: bool = False
    recurrence_interval: Optional[RecurrenceInterval] = None
    recurrence_day: Optional[int] = Field(default=None, ge=1, le=31)
    invoice_id: Optional[UUID] = None
    notes: Optional[str] = Field(default=None, max_length=1000)


class MarkSplitPaidRequest(BaseModel):
    """Input for settling a split."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    split_id: UUID = Field(..., alias="splitId")


class MarkSplitPaidResult(BaseModel):
    """
    Outcome of settling a split.

    payment is None when the best-effort audit row could not be written;
    the split is still settled and the message says so.
    """

    split: ExpenseSplit
    payment: Optional[Payment] = None
    message: str

    @property
    def audit_recorded(self) -> bool:
        return self.payment is not None
