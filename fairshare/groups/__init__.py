"""Group membership rules."""

from fairshare.groups.authority import (
    HasUnpaidDebtError,
    LeaveAssessment,
    MemberNotFoundError,
    MembershipAuthority,
    SoleAdminError,
)

__all__ = [
    "HasUnpaidDebtError",
    "LeaveAssessment",
    "MemberNotFoundError",
    "MembershipAuthority",
    "SoleAdminError",
]
