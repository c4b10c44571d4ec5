"""
Personal Invoice and Payment Models

Invoices are individual (non-group) bills. Payments accumulate against
an invoice until it is fully paid. Group split settlements are also
recorded as payments, without an invoice.
"""

from datetime import date, datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from fairshare.models.types import Money, utcnow


class InvoiceStatus(str, Enum):
    """
    Invoice settlement status.

    Derived from completed payments versus the invoice amount,
    never set by hand.
    """
    PENDING = "pending"
    PARTIAL = "partial"
    PAID = "paid"


class PaymentType(str, Enum):
    """How a payment was made."""
    CASH = "cash"
    CARD = "card"
    TRANSFER = "transfer"
    CHECK = "check"
    OTHER = "other"
    GROUP_EXPENSE = "group_expense"  # Settlement of a group split


class PaymentStatus(str, Enum):
    """Payment processing status. Only COMPLETED counts toward an invoice."""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class Invoice(BaseModel):
    """A personal invoice."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: UUID
    vendor_name: str = Field(..., min_length=1, max_length=200)
    amount: Money = Field(..., gt=0, decimal_places=2)
    currency: str = Field(default="UYU", min_length=3, max_length=3)
    invoice_date: date
    invoice_number: Optional[str] = Field(default=None, max_length=50)
    description: Optional[str] = Field(default=None, max_length=1000)
    category: Optional[str] = Field(default=None, max_length=100)
    status: InvoiceStatus = InvoiceStatus.PENDING
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("currency")
    @classmethod
    def uppercase_currency(cls, v: str) -> str:
        return v.upper()


class Payment(BaseModel):
    """
    A payment record.

    For group split settlements invoice_id is None and notes carry a
    loose reference to the split instead of a foreign key. A split whose
    share rounded to 0.00 still settles, so group-expense payments may be
    zero; every other payment must be positive.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: UUID
    invoice_id: Optional[UUID] = None
    payment_date: date
    payment_type: PaymentType
    amount_paid: Money = Field(..., ge=0, decimal_places=2)
    status: PaymentStatus = PaymentStatus.COMPLETED
    notes: Optional[str] = Field(default=None, max_length=1000)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode='after')
    def validate_amount(self) -> 'Payment':
        """Only group-expense settlements may record a zero amount."""
        if self.amount_paid == 0 and self.payment_type != PaymentType.GROUP_EXPENSE:
            raise ValueError("Payment amount must be greater than zero")
        return self


# =============================================================================
# REQUEST MODELS
# =============================================================================

class InvoiceCreateRequest(BaseModel):
    """Input for creating an invoice."""
    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    vendor_name: str = Field(..., min_length=1, max_length=200)
    amount: Money = Field(..., gt=0, decimal_places=2)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    invoice_date: date
    invoice_number: Optional[str] = Field(default=None, max_length=50)
    description: Optional[str] = Field(default=None, max_length=1000)
    category: Optional[str] = Field(default=None, max_length=100)


class PaymentCreateRequest(BaseModel):
    """Input for recording a personal payment."""
    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    invoice_id: Optional[UUID] = None
    payment_date: date
    payment_type: PaymentType = PaymentType.OTHER
    amount_paid: Money = Field(..., gt=0, decimal_places=2)
    status: PaymentStatus = PaymentStatus.COMPLETED
    notes: Optional[str] = Field(default=None, max_length=1000)
