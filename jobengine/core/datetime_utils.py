"""Centralized datetime utilities for consistent timezone handling.

All functions return naive UTC datetimes for database compatibility
(SQLAlchemy models store naive UTC). Timezone-aware values only exist
transiently, e.g. while evaluating a cron expression in a schedule's
wall-clock time.

Usage:
    from jobengine.core.datetime_utils import utc_now, get_cutoff

    # Current time
    now = utc_now()

    # Get cutoff for queries
    cutoff = get_cutoff(minutes=60)
    failures = query.filter(Execution.created_at > cutoff)
"""

from datetime import UTC, datetime, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


def utc_now() -> datetime:
    """Get current UTC time as naive datetime.

    Returns naive datetime for database compatibility.
    Replaces deprecated datetime.utcnow().
    """
    return datetime.now(UTC).replace(tzinfo=None)


def get_cutoff(minutes: int = 0, hours: int = 0, days: int = 0, now: datetime | None = None) -> datetime:
    """Get cutoff datetime for filtering queries.

    Args:
        minutes: Minutes to subtract from now
        hours: Hours to subtract from now
        days: Days to subtract from now
        now: Reference instant (naive UTC), defaults to the current time

    Returns:
        Naive UTC datetime representing the cutoff point
    """
    delta = timedelta(minutes=minutes, hours=hours, days=days)
    return (now or utc_now()) - delta


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


def to_aware_utc(dt: datetime) -> datetime:
    """Attach UTC to a naive UTC datetime (aware values are converted)."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def is_valid_timezone(tz_name: str) -> bool:
    """Check if a timezone name is valid IANA identifier.

    Args:
        tz_name: Timezone string (e.g., "America/New_York")

    Returns:
        True if valid IANA timezone
    """
    try:
        ZoneInfo(tz_name)
        return True
    except (ZoneInfoNotFoundError, KeyError, ValueError):
        return False


def minutes_between(start: datetime, end: datetime) -> int:
    """Whole minutes elapsed between two naive UTC datetimes, rounded."""
    return round((end - start).total_seconds() / 60)
