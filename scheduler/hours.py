"""Wall-clock helpers for operating hours.

Booking times are kept as naive datetimes on the facility's wall clock
(``Settings.local_timezone``). Operating hours compare each timestamp's own
minute-of-day, so a booking that crosses midnight is not understood and
overnight opening ranges are not supported.
"""
from datetime import datetime
from zoneinfo import ZoneInfo

from common.config import get_settings

MINUTES_PER_DAY = 24 * 60


def to_wall_clock(value: datetime, tz_name: str | None = None) -> datetime:
    """Return ``value`` as a naive datetime on the configured wall clock."""

    if value.tzinfo is None:
        return value
    zone = ZoneInfo(tz_name or get_settings().local_timezone)
    return value.astimezone(zone).replace(tzinfo=None)


def wall_clock_now(tz_name: str | None = None) -> datetime:
    zone = ZoneInfo(tz_name or get_settings().local_timezone)
    return datetime.now(zone).replace(tzinfo=None)


def minute_of_day(value: datetime) -> int:
    return value.hour * 60 + value.minute


def within_operating_hours(start: datetime, end: datetime, open_minute: int, close_minute: int) -> bool:
    """Both bounds are inclusive: starting at opening and ending at closing is allowed."""

    return minute_of_day(start) >= open_minute and minute_of_day(end) <= close_minute


def format_minute(minute: int) -> str:
    return f"{minute // 60:02d}:{minute % 60:02d}"
