from __future__ import annotations

from datetime import datetime, time


def time_to_minutes(t: time, *, is_end_time: bool = False) -> int:
    """
    Convert time to minutes since midnight.

    Args:
        t: Time object.
        is_end_time: If True, treat time(0, 0) as 1440 (end of day).

    Returns:
        Minutes since midnight (0-1440).
    """
    minutes = t.hour * 60 + t.minute
    if is_end_time and minutes == 0:
        return 24 * 60
    return minutes


def is_valid_range(start: time, end: time) -> bool:
    """start < end, where an end of 00:00 means midnight at the end of the day."""
    return time_to_minutes(start) < time_to_minutes(end, is_end_time=True)


def format_hhmm(value: time | datetime) -> str:
    return f"{value.hour:02d}:{value.minute:02d}"


def parse_hhmm(value: str) -> time:
    """Parse 'HH:MM' or 'HH:MM:SS'; '24:00' is accepted as end-of-day (00:00)."""
    normalized = value.strip()
    if len(normalized) == 5:
        normalized += ":00"
    if normalized == "24:00:00":
        return time(0, 0)
    return datetime.strptime(normalized, "%H:%M:%S").time()
