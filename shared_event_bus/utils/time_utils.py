"""
PURPOSE: Time helpers for envelope timestamps and event id generation.
"""

from datetime import datetime, timezone


def get_utc_now() -> datetime:
    """
    PURPOSE: Return the current UTC time as a timezone-aware datetime object.

    Returns:
        datetime: Current UTC time with timezone info.
    """
    return datetime.now(timezone.utc)


def to_epoch_millis(dt: datetime) -> int:
    """
    PURPOSE: Convert a datetime to integer milliseconds since the Unix epoch.

    Naive datetimes are treated as UTC.

    Args:
        dt: Datetime to convert.

    Returns:
        int: Milliseconds since 1970-01-01T00:00:00Z.
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)
