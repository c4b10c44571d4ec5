"""
Group and Membership Models

A group shares expenses among its members. Each member declares a
monthly income inside the group, which drives proportional splits.

INVARIANTS (enforced by the membership authority, not the models):
- Every group has at least one admin at all times
- A member can only leave with no unpaid split in the group
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from fairshare.models.types import Money, utcnow


class SplitMethod(str, Enum):
    """
    How a group divides each expense.

    DESIGN DECISION: The method belongs to the group, not the expense, and
    applies uniformly to every expense created while it is set.
    """
    EQUAL = "equal"
    PROPORTIONAL = "proportional"


class MemberRole(str, Enum):
    """Role of a user inside a group."""
    ADMIN = "admin"
    MEMBER = "member"


class InvitationStatus(str, Enum):
    """Lifecycle of a group invitation."""
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class MembershipChange(str, Enum):
    """
    Outcome of a guarded membership write.

    The storage re-checks the membership rules inside the same write that
    applies the change and reports which rule, if any, blocked it.
    """
    APPLIED = "applied"
    GROUP_DELETED = "group_deleted"
    NOT_A_MEMBER = "not_a_member"
    UNPAID_SPLITS = "unpaid_splits"
    LAST_ADMIN = "last_admin"


class User(BaseModel):
    """
    A user profile.

    Identity itself is issued by the external identity provider;
    this is the local profile keyed by the provider's user id.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(
        default_factory=uuid4,
        description="User id asserted by the identity provider"
    )
    email: str = Field(
        ...,
        min_length=3,
        max_length=320,
        description="Email address (lower-cased)"
    )
    name: Optional[str] = Field(
        default=None,
        max_length=200,
    )
    monthly_income: Money = Field(
        default=Decimal("0"),
        ge=0,
        description="Declared monthly income, copied into new memberships"
    )
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("email")
    @classmethod
    def lowercase_email(cls, v: str) -> str:
        return v.lower()


class UserSummary(BaseModel):
    """Display fields joined onto members, splits and expenses."""

    id: UUID
    email: str
    name: Optional[str] = None


class ExpenseGroup(BaseModel):
    """A group of users sharing expenses."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    name: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Display name"
    )
    description: Optional[str] = Field(
        default=None,
        max_length=500,
    )
    currency: str = Field(
        default="UYU",
        min_length=3,
        max_length=3,
        description="Currency label (never converted)"
    )
    split_method: SplitMethod = Field(
        default=SplitMethod.EQUAL,
        description="Split method applied to every expense"
    )
    created_by: UUID = Field(
        ...,
        description="User who created the group"
    )
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("currency")
    @classmethod
    def uppercase_currency(cls, v: str) -> str:
        return v.upper()


class GroupMember(BaseModel):
    """A (group, user) pairing with a role and a per-group income."""

    id: UUID = Field(default_factory=uuid4)
    group_id: UUID
    user_id: UUID
    role: MemberRole = MemberRole.MEMBER
    monthly_income: Money = Field(
        default=Decimal("0"),
        ge=0,
        description="Monthly income declared for this group"
    )
    joined_at: datetime = Field(default_factory=utcnow)

    # Populated join for display
    user: Optional[UserSummary] = None

    @property
    def is_admin(self) -> bool:
        return self.role == MemberRole.ADMIN


class GroupWithRole(ExpenseGroup):
    """A group as seen by one of its members."""

    role: MemberRole
    member_count: int = Field(ge=0)


class GroupInvitation(BaseModel):
    """Invitation of an email address into a group."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    group_id: UUID
    invited_by: UUID
    email: str = Field(..., min_length=3, max_length=320)
    status: InvitationStatus = InvitationStatus.PENDING
    created_at: datetime = Field(default_factory=utcnow)
    responded_at: Optional[datetime] = None

    @field_validator("email")
    @classmethod
    def lowercase_email(cls, v: str) -> str:
        return v.lower()


# =============================================================================
# REQUEST MODELS
# =============================================================================

class GroupCreateRequest(BaseModel):
    """Input for creating a group."""
    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    split_method: Optional[SplitMethod] = None


class GroupUpdateRequest(BaseModel):
    """
    Partial update of a group's settings.

    Changing split_method or currency only affects expenses created
    afterwards. Stored expenses keep their splits and their currency label.
    """
    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    split_method: Optional[SplitMethod] = None


class ProfileUpdateRequest(BaseModel):
    """Partial update of the caller's profile."""
    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    name: Optional[str] = Field(default=None, max_length=200)
    monthly_income: Optional[Decimal] = Field(default=None, ge=0, decimal_places=2)


class MemberRoleUpdateRequest(BaseModel):
    """Change of a member's role."""
    model_config = ConfigDict(extra="ignore")

    role: MemberRole


class InvitationCreateRequest(BaseModel):
    """Invite an email address into a group."""
    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    email: str = Field(..., min_length=3, max_length=320, pattern=r"^[^@\s]+@[^@\s]+$")
