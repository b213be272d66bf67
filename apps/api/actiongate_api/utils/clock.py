"""Time helpers.

All persisted timestamps are naive UTC so they compare cleanly on every
backend (SQLite drops tzinfo on the way in).
"""

from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Current time as naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: Optional[datetime]) -> datetime:
    """Normalize an optional datetime to naive UTC, defaulting to now."""
    if value is None:
        return utcnow()
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value
