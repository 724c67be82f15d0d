"""
Timezone helpers.

All expiry timestamps are stored and compared in UTC. Some drivers
(SQLite) hand back naive datetimes, so values read from the store go
through to_utc() before any in-memory comparison.
"""

from datetime import datetime, timezone
from typing import Optional

UTC = timezone.utc


def utc_now() -> datetime:
    """
    Get current time in UTC (timezone-aware).

    Always use this instead of datetime.utcnow() which returns
    naive datetime.
    """
    return datetime.now(UTC)


def to_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Convert a datetime to aware UTC. Naive values are assumed to be UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def is_past(dt: Optional[datetime], now: Optional[datetime] = None) -> bool:
    """True if dt is set and not after now."""
    if dt is None:
        return False
    return to_utc(dt) <= (now or utc_now())
