"""
UTC timezone utilities
All stored timestamps are UTC-aware and truncated to millisecond precision,
which is what MongoDB persists, so both storage backends return identical values.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional, Union

ONE_MS = timedelta(milliseconds=1)


def utcnow() -> datetime:
    """Current UTC datetime, millisecond precision"""
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=(now.microsecond // 1000) * 1000)


def ensure_utc(dt: Optional[Union[str, datetime]]) -> Optional[datetime]:
    """
    Ensure datetime is UTC aware.

    - If None, returns None
    - If string, parses as ISO format (handles 'Z' suffix)
    - If naive datetime, assumes it's UTC and adds timezone
    - If aware datetime, converts to UTC
    """
    if dt is None:
        return None

    if isinstance(dt, str):
        dt = datetime.fromisoformat(dt.replace("Z", "+00:00"))

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def from_unix(ts: Optional[Union[int, float]]) -> Optional[datetime]:
    """Convert a unix timestamp in seconds (payment processor format) to UTC"""
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc)


def advance(previous: Optional[datetime], now: Optional[datetime] = None) -> datetime:
    """Return ``now`` or, if that does not move past ``previous``, previous + 1ms."""
    now = now or utcnow()
    if previous is not None:
        previous = ensure_utc(previous)
        if now <= previous:
            return previous + ONE_MS
    return now
