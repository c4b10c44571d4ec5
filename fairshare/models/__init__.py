"""
Data Models Package

This package contains all Pydantic models used in Fairshare.
All data flowing through the system must conform to these schemas.
"""

from fairshare.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from fairshare.models.expense import (
    ComputedSplit,
    ExpenseCreateRequest,
    ExpenseSplit,
    GroupExpense,
    MarkSplitPaidRequest,
    MarkSplitPaidResult,
    RecurrenceInterval,
    SplitParticipant,
    UserSplitEntry,
)
from fairshare.models.group import (
    ExpenseGroup,
    GroupCreateRequest,
    GroupInvitation,
    GroupMember,
    GroupUpdateRequest,
    GroupWithRole,
    InvitationCreateRequest,
    InvitationStatus,
    MemberRole,
    MemberRoleUpdateRequest,
    MembershipChange,
    ProfileUpdateRequest,
    SplitMethod,
    User,
    UserSummary,
)
from fairshare.models.invoice import (
    Invoice,
    InvoiceCreateRequest,
    InvoiceStatus,
    Payment,
    PaymentCreateRequest,
    PaymentStatus,
    PaymentType,
)
from fairshare.models.report import (
    DailyTotal,
    DashboardSummary,
    GroupSummary,
    MemberBalance,
    MonthlyTotal,
)
from fairshare.models.types import CURRENCY_QUANTUM, Money, utcnow
from fairshare.models.validation import ValidationIssue, ValidationResult

__all__ = [
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
    # Expense models
    "ComputedSplit",
    "ExpenseCreateRequest",
    "ExpenseSplit",
    "GroupExpense",
    "MarkSplitPaidRequest",
    "MarkSplitPaidResult",
    "RecurrenceInterval",
    "SplitParticipant",
    "UserSplitEntry",
    # Group models
    "ExpenseGroup",
    "GroupCreateRequest",
    "GroupInvitation",
    "GroupMember",
    "GroupUpdateRequest",
    "GroupWithRole",
    "InvitationCreateRequest",
    "InvitationStatus",
    "MemberRole",
    "MemberRoleUpdateRequest",
    "MembershipChange",
    "ProfileUpdateRequest",
    "SplitMethod",
    "User",
    "UserSummary",
    # Invoice models
    "Invoice",
    "InvoiceCreateRequest",
    "InvoiceStatus",
    "Payment",
    "PaymentCreateRequest",
    "PaymentStatus",
    "PaymentType",
    # Report models
    "DailyTotal",
    "DashboardSummary",
    "GroupSummary",
    "MemberBalance",
    "MonthlyTotal",
    # Shared types
    "CURRENCY_QUANTUM",
    "Money",
    "utcnow",
    # Validation models
    "ValidationIssue",
    "ValidationResult",
]
