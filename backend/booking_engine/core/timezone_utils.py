"""
Timezone utilities for the booking engine.

Sessions are stored in UTC. Templates and exceptions are wall-clock times in
the provider's timezone and are projected onto concrete dates here.
"""

from datetime import date, datetime, time, timedelta
from typing import TYPE_CHECKING, Optional

import pytz

from .config import settings

if TYPE_CHECKING:
    from ..models.provider import Provider


def get_provider_timezone(provider: Optional["Provider"]) -> pytz.BaseTzInfo:
    """
    Get a provider's timezone, falling back to the configured default.

    Args:
        provider: Provider row (may be None for background jobs)

    Returns:
        pytz timezone object
    """
    name = getattr(provider, "timezone", None) or settings.default_timezone
    return pytz.timezone(name)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Normalize a datetime to aware UTC.

    Naive values are assumed to already be UTC (SQLite drops tzinfo on read).
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return pytz.UTC.localize(dt)
    return dt.astimezone(pytz.UTC)


def localize_wall_time(
    tz: pytz.BaseTzInfo, on_date: date, wall_time: time, *, is_end_time: bool = False
) -> datetime:
    """
    Project a wall-clock time onto a date in the given timezone.

    With is_end_time, 00:00 means the following midnight.
    """
    target_date = on_date
    if is_end_time and wall_time == time(0, 0):
        target_date = on_date + timedelta(days=1)
    return tz.localize(datetime.combine(target_date, wall_time))


def day_bounds(tz: pytz.BaseTzInfo, on_date: date) -> tuple[datetime, datetime]:
    """Return the aware [midnight, next midnight) bounds of a local date."""
    start = tz.localize(datetime.combine(on_date, time(0, 0)))
    end = tz.localize(datetime.combine(on_date + timedelta(days=1), time(0, 0)))
    return start, end


def to_local(dt: datetime, tz: pytz.BaseTzInfo) -> datetime:
    """Convert a stored (UTC or naive-UTC) datetime into the given timezone."""
    return ensure_utc(dt).astimezone(tz)


def hours_until(target: datetime, now: Optional[datetime] = None) -> float:
    """Hours from now until target (negative once target has passed)."""
    current = ensure_utc(now) if now is not None else datetime.now(pytz.UTC)
    return (ensure_utc(target) - current).total_seconds() / 3600
