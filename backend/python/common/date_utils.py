"""
Date utilities for sync windows and weekly reporting.

All stored datetimes are naive UTC.
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Tuple, Union


def utcnow() -> datetime:
    """Current time as a naive UTC datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: Union[date, datetime]) -> datetime:
    """
    Normalize a date or datetime to a naive UTC datetime.

    Date-only values become midnight; aware datetimes are converted to UTC.
    """
    if not isinstance(value, datetime):
        return datetime.combine(value, time.min)
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def get_week_boundaries(day: Union[date, datetime]) -> Tuple[datetime, datetime]:
    """
    Get the Monday-to-Sunday week containing a day.

    Args:
        day: Any date in the week

    Returns:
        Tuple of (monday 00:00:00, sunday 23:59:59.999)

    Example:
        >>> get_week_boundaries(date(2024, 6, 9))
        (datetime(2024, 6, 3, 0, 0), datetime(2024, 6, 9, 23, 59, 59, 999000))
    """
    if isinstance(day, datetime):
        day = day.date()
    # Sunday belongs to the week that started six days earlier
    offset = -6 if day.isoweekday() == 7 else 1 - day.isoweekday()
    monday = datetime.combine(day + timedelta(days=offset), time.min)
    sunday = monday + timedelta(days=6, hours=23, minutes=59, seconds=59, milliseconds=999)
    return monday, sunday


def get_sync_window(
    days_back: int = 90,
    days_forward: int = 180,
    now: Optional[datetime] = None
) -> Tuple[datetime, datetime]:
    """
    Get the event window a listing sync considers.

    Args:
        days_back: Number of days to look back (default: 90)
        days_forward: Number of days to look forward (default: 180)
        now: Reference time (defaults to utcnow)

    Returns:
        Tuple of (window_start, window_end)
    """
    now = now or utcnow()
    return now - timedelta(days=days_back), now + timedelta(days=days_forward)


def parse_date_string(date_str: str) -> date:
    """
    Parse a date string in YYYY-MM-DD format.

    Args:
        date_str: Date string in YYYY-MM-DD format (e.g., "2025-01-15")

    Returns:
        date object

    Raises:
        ValueError: If the string is not a valid date

    Example:
        >>> parse_date_string("2025-01-15")
        date(2025, 1, 15)
    """
    parts = date_str.strip()[:10].split('-')
    if len(parts) != 3:
        raise ValueError(f"Invalid date: {date_str!r} (expected YYYY-MM-DD)")
    return date(int(parts[0]), int(parts[1]), int(parts[2]))


def parse_time_string(time_str: str) -> time:
    """
    Parse HH:MM or HH:MM:SS.

    Raises:
        ValueError: If the string is not a valid time
    """
    parts = time_str.strip().split(':')
    if len(parts) not in (2, 3):
        raise ValueError(f"Invalid time: {time_str!r} (expected HH:MM[:SS])")
    return time(*(int(p) for p in parts))
