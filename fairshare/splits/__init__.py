"""Split computation and settlement."""

from fairshare.splits.engine import (
    AlreadyPaidError,
    NoMembersError,
    SplitEngine,
    SplitNotFoundError,
    compute_splits,
    resolve_split_method,
    uses_equal_fallback,
)

__all__ = [
    "AlreadyPaidError",
    "NoMembersError",
    "SplitEngine",
    "SplitNotFoundError",
    "compute_splits",
    "resolve_split_method",
    "uses_equal_fallback",
]
