"""Timezone helpers.

All engine timestamps are timezone-aware UTC. SQLite drops tzinfo on
round-trip, so values read back from storage pass through ``as_utc``.
"""

from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes and convert aware ones to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def hour_distance(a: int, b: int) -> int:
    """Distance between two hours of the day on the 24-hour clock (0-12)."""
    d = abs(a - b) % 24
    return min(d, 24 - d)
