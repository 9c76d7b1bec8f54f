"""
Centralized datetime utilities.

All timestamps are handled as timezone-aware UTC. SQLite (used in tests)
returns naive datetimes, so values read back from the database go through
ensure_utc before any comparison.
"""

from datetime import datetime, timedelta, timezone


def utc_now() -> datetime:
    """
    Get current UTC time as timezone-aware datetime.

    Returns:
        datetime: Current time in UTC with timezone info
    """
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime | None) -> datetime | None:
    """
    Ensure datetime is UTC timezone-aware.

    Converts naive datetime (assumed to be UTC) to timezone-aware UTC.
    If datetime is already timezone-aware, converts to UTC.

    Args:
        dt: Datetime object (naive or aware) or None

    Returns:
        datetime | None: UTC timezone-aware datetime or None
    """
    if dt is None:
        return None

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)

    return dt.astimezone(timezone.utc)


def expires_after(seconds: int, start: datetime | None = None) -> datetime:
    """Return start (default now) plus the given number of seconds."""
    return (start or utc_now()) + timedelta(seconds=seconds)

