"""
Time Utilities

This module provides utilities for handling timestamps from different providers.

Different providers return timestamps in different formats:
- CoinGecko: milliseconds since epoch (e.g., 1704110400000)
- Yahoo Finance / CoinMarketCap web charts: seconds since epoch (e.g., 1704110400)
- Stooq / Frankfurter: calendar dates (e.g., "2024-01-01")
- We need: Python datetime objects in UTC, truncated to whole seconds

The utilities in this module normalize all timestamp formats into
consistent UTC datetime objects for use in our Pydantic schemas.
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Union


def to_utc_datetime(timestamp: Union[int, float]) -> datetime:
    """
    Convert a timestamp (seconds or milliseconds) to UTC datetime.

    Detection Logic:
        - If timestamp > 1e12 (1 trillion): Assumed to be milliseconds
        - Otherwise: Assumed to be seconds

    Args:
        timestamp: Unix timestamp in seconds or milliseconds

    Returns:
        datetime: Timezone-aware datetime object in UTC (second precision)

    Raises:
        ValueError: If timestamp is negative or invalid

    Examples:
        >>> to_utc_datetime(1704110400000)
        datetime.datetime(2024, 1, 1, 12, 0, tzinfo=datetime.timezone.utc)

        >>> to_utc_datetime(1704110400.5)
        datetime.datetime(2024, 1, 1, 12, 0, tzinfo=datetime.timezone.utc)
    """
    if timestamp < 0:
        raise ValueError(f"Timestamp cannot be negative: {timestamp}")

    # 1e12 separates seconds (~1.7 billion) from milliseconds (~1.7 trillion)
    if timestamp > 1e12:
        timestamp = timestamp / 1000.0

    try:
        return datetime.fromtimestamp(int(timestamp), tz=timezone.utc)
    except (OSError, OverflowError, ValueError) as e:
        raise ValueError(f"Invalid timestamp: {timestamp}. Error: {e}")


def ensure_utc(dt: datetime) -> datetime:
    """
    Return a timezone-aware UTC datetime truncated to whole seconds.

    Naive datetimes are assumed to already be in UTC.
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    else:
        dt = dt.astimezone(timezone.utc)
    return dt.replace(microsecond=0)


def start_of_day(day: date) -> datetime:
    """00:00:00 UTC of the given calendar day."""
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


def end_of_day(day: date) -> datetime:
    """23:59:59 UTC of the given calendar day."""
    return datetime.combine(day, time(23, 59, 59), tzinfo=timezone.utc)


def parse_utc_date(raw: str) -> datetime:
    """
    Parse a ``YYYY-MM-DD`` calendar date into midnight UTC.

    Raises:
        ValueError: If the string is not a valid ISO date
    """
    return start_of_day(date.fromisoformat(raw.strip()))


def floor_datetime(dt: datetime, step: timedelta) -> datetime:
    """
    Floor a UTC datetime to a multiple of ``step`` since the epoch.

    Example:
        >>> floor_datetime(datetime(2024, 1, 1, 12, 34, tzinfo=timezone.utc), timedelta(hours=1))
        datetime.datetime(2024, 1, 1, 12, 0, tzinfo=datetime.timezone.utc)
    """
    seconds = datetime_to_timestamp(dt)
    step_seconds = int(step.total_seconds())
    return datetime.fromtimestamp(seconds - seconds % step_seconds, tz=timezone.utc)


def datetime_to_timestamp(dt: datetime, milliseconds: bool = False) -> int:
    """
    Convert a datetime object to Unix timestamp.

    Args:
        dt: Datetime object (can be naive or timezone-aware)
        milliseconds: If True, return milliseconds; if False, return seconds

    Returns:
        int: Unix timestamp in seconds or milliseconds

    Notes:
        - If datetime is naive (no timezone), UTC is assumed
        - Result is always an integer (fractional seconds are truncated)
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)

    timestamp = int(dt.timestamp())

    if milliseconds:
        timestamp *= 1000

    return timestamp


def current_utc_datetime() -> datetime:
    """
    Get current UTC datetime, truncated to whole seconds.

    Example:
        >>> current_utc_datetime()
        datetime.datetime(2024, 1, 1, 12, 0, 0, tzinfo=datetime.timezone.utc)
    """
    return datetime.now(timezone.utc).replace(microsecond=0)
