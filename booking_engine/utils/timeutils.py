"""Time-zone aware calendar helpers shared by the resolvers and validators.

All engine arithmetic runs on timezone-aware datetimes. Naive inputs are
interpreted as wall-clock time in the configured scheduling zone. Day-of-week
numbers follow the 0 = Sunday convention used by availability patterns.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from functools import lru_cache
from typing import Iterator
from zoneinfo import ZoneInfo

from booking_engine.domain.models import Period


STORAGE_FORMAT = "%Y-%m-%dT%H:%M:%SZ"
SECONDS_PER_DAY = 24 * 60 * 60
ALL_TIME_START = datetime(1970, 1, 1, tzinfo=timezone.utc)
ALL_TIME_END = datetime(2100, 1, 1, tzinfo=timezone.utc)


@lru_cache(maxsize=64)
def get_zone(name: str) -> ZoneInfo:
    return ZoneInfo(name)


def ensure_aware(value: datetime, zone: ZoneInfo) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=zone)
    return value


def to_storage(value: datetime) -> str:
    if value.tzinfo is None:
        raise ValueError("Refusing to store a naive datetime")
    return value.astimezone(timezone.utc).strftime(STORAGE_FORMAT)


def from_storage(value: str) -> datetime:
    return datetime.strptime(value, STORAGE_FORMAT).replace(tzinfo=timezone.utc)


def sunday_weekday(value: date | datetime) -> int:
    """Return 0 for Sunday through 6 for Saturday."""
    return (value.weekday() + 1) % 7


def local_midnight(day: date, zone: ZoneInfo) -> datetime:
    return datetime.combine(day, time(0, 0), tzinfo=zone)


def at_wall_clock(day: date, clock: time, zone: ZoneInfo) -> datetime:
    """Anchor a wall-clock time on a calendar day in ``zone``."""
    return datetime.combine(day, clock, tzinfo=zone)


def day_bounds(value: datetime, zone: ZoneInfo) -> tuple[datetime, datetime]:
    """Half-open local calendar day containing ``value``."""
    local_day = value.astimezone(zone).date()
    return local_midnight(local_day, zone), local_midnight(local_day + timedelta(days=1), zone)


def week_bounds(value: datetime, zone: ZoneInfo) -> tuple[datetime, datetime]:
    """Half-open local week containing ``value``; weeks start on Sunday."""
    local_day = value.astimezone(zone).date()
    week_start = local_day - timedelta(days=sunday_weekday(local_day))
    return local_midnight(week_start, zone), local_midnight(week_start + timedelta(days=7), zone)


def month_bounds(value: datetime, zone: ZoneInfo) -> tuple[datetime, datetime]:
    local_day = value.astimezone(zone).date()
    month_start = local_day.replace(day=1)
    if month_start.month == 12:
        next_month = month_start.replace(year=month_start.year + 1, month=1)
    else:
        next_month = month_start.replace(month=month_start.month + 1)
    return local_midnight(month_start, zone), local_midnight(next_month, zone)


def period_bounds(period: Period, value: datetime, zone: ZoneInfo) -> tuple[datetime, datetime]:
    if period is Period.DAY:
        return day_bounds(value, zone)
    if period is Period.WEEK:
        return week_bounds(value, zone)
    if period is Period.MONTH:
        return month_bounds(value, zone)
    return ALL_TIME_START, ALL_TIME_END


def iter_local_days(range_start: datetime, range_end: datetime, zone: ZoneInfo) -> Iterator[date]:
    """Yield each local calendar day whose midnight falls before ``range_end``."""
    current = range_start.astimezone(zone).date()
    while local_midnight(current, zone) < range_end:
        yield current
        current += timedelta(days=1)


def seconds_since_midnight(clock: time) -> int:
    return clock.hour * 3600 + clock.minute * 60 + clock.second


def local_clock_span(start: datetime, end: datetime, zone: ZoneInfo) -> tuple[int, int]:
    """Wall-clock seconds-since-midnight for ``[start, end)`` on start's local day.

    An end that spills past local midnight is reported beyond 24h so it can
    never fit inside a same-day window.
    """
    local_start = start.astimezone(zone)
    local_end = end.astimezone(zone)
    start_seconds = seconds_since_midnight(local_start.time())
    day_offset = (local_end.date() - local_start.date()).days
    end_seconds = seconds_since_midnight(local_end.time()) + day_offset * SECONDS_PER_DAY
    return start_seconds, end_seconds


def format_clock(clock: time) -> str:
    return clock.strftime("%H:%M:%S")


def parse_clock(value: str) -> time:
    parts = value.split(":")
    if len(parts) == 2:
        parts.append("0")
    if len(parts) != 3 or not all(part.isdigit() for part in parts):
        raise ValueError(f"time of day must follow HH:MM[:SS], got {value!r}")
    hour, minute, second = (int(part) for part in parts)
    return time(hour, minute, second)


def whole_hours_between(earlier: datetime, later: datetime) -> int:
    """Whole hours from ``earlier`` to ``later``, truncated toward zero."""
    return int((later - earlier).total_seconds() / 3600)
