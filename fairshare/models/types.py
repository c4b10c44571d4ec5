"""Shared field types for Fairshare models."""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Annotated

from pydantic import PlainSerializer

# Smallest currency unit we track. Currency is a label, never converted,
# so a single quantum applies to every group.
CURRENCY_QUANTUM = Decimal("0.01")

# Amounts stay Decimal in Python and render as JSON numbers.
Money = Annotated[
    Decimal,
    PlainSerializer(lambda v: float(v), return_type=float, when_used="json"),
]


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)
