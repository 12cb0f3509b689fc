"""Centralized datetime utilities for consistent timezone handling.

All functions return naive UTC datetimes for database compatibility
(SQLAlchemy models store naive UTC).
"""

from datetime import UTC, datetime, timedelta


def utc_now() -> datetime:
    """Get current UTC time as naive datetime."""
    return datetime.now(UTC).replace(tzinfo=None)


def get_cutoff(seconds: int = 0, hours: int = 0, days: int = 0) -> datetime:
    """Get cutoff datetime for filtering queries.

    Args:
        seconds: Seconds to subtract from now
        hours: Hours to subtract from now
        days: Days to subtract from now

    Returns:
        Naive UTC datetime representing the cutoff point
    """
    delta = timedelta(seconds=seconds, hours=hours, days=days)
    return utc_now() - delta


def to_naive_utc(dt: datetime) -> datetime:
    """Convert a datetime to naive UTC.

    Args:
        dt: Datetime to convert (can be aware or naive)

    Returns:
        Naive UTC datetime for database compatibility
    """
    if dt.tzinfo is None:
        # Already naive, assume it's UTC
        return dt
    return dt.astimezone(UTC).replace(tzinfo=None)


def duration_ms(started_at: datetime, finished_at: datetime) -> int:
    """Milliseconds between two timestamps, clamped at zero."""
    elapsed = to_naive_utc(finished_at) - to_naive_utc(started_at)
    return max(0, int(elapsed.total_seconds() * 1000))
