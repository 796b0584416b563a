"""Single-host availability resolution.

A host is bookable for ``[start, end)`` when the window sits inside one of
their active weekly patterns for that weekday (hosts with no pattern that
day are unrestricted), is not a company holiday, and the buffered window
clears both their calendar busy blocks and their existing slots.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Callable, Iterable, Optional, Sequence
from zoneinfo import ZoneInfo

from booking_engine.domain.constraints import validate_buffers, validate_duration, validate_stride
from booking_engine.domain.intervals import contains, expand, interval_overlaps
from booking_engine.domain.models import (
    AvailabilityPattern,
    AvailabilityResult,
    BusyBlock,
    Interval,
    Slot,
)
from booking_engine.repository.data_repository import SchedulingRepository
from booking_engine.utils.config import Settings, get_settings
from booking_engine.utils.logger import get_logger
from booking_engine.utils.timeutils import (
    at_wall_clock,
    ensure_aware,
    get_zone,
    iter_local_days,
    local_clock_span,
    seconds_since_midnight,
    sunday_weekday,
)


logger = get_logger(__name__)

Clock = Callable[[], datetime]

OUTSIDE_HOURS = "Outside of set availability hours"
CALENDAR_CONFLICT = "Conflicts with calendar event"
SLOT_CONFLICT = "Conflicts with existing slot"

# Existing slots are widened by their own event buffers, so occupancy is
# fetched with slack around the window being checked.
OCCUPANCY_LOOKAROUND = timedelta(days=1)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def slot_occupancy(slot: Slot) -> Interval:
    """An existing slot's footprint including its own event buffers."""
    return expand(
        Interval(slot.start_time, slot.end_time),
        slot.buffer_before_minutes,
        slot.buffer_after_minutes,
    )


def find_conflict(
    window: Interval,
    busy_blocks: Iterable[BusyBlock],
    slots: Iterable[Slot],
) -> Optional[str]:
    """Return the reason ``window`` cannot be used, or ``None`` when clear."""
    for block in busy_blocks:
        if interval_overlaps(window, Interval(block.start_time, block.end_time)):
            return CALENDAR_CONFLICT
    for slot in slots:
        if interval_overlaps(window, slot_occupancy(slot)):
            return SLOT_CONFLICT
    return None


class AvailabilityService:
    """Resolves availability for one host against patterns, busy time and slots."""

    def __init__(
        self,
        repository: Optional[SchedulingRepository] = None,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or SchedulingRepository(self._settings)
        self._clock = clock or _utc_now
        self._zone = get_zone(self._settings.scheduling_timezone)

    @property
    def zone(self) -> ZoneInfo:
        return self._zone

    def now(self) -> datetime:
        return ensure_aware(self._clock(), self._zone)

    def pattern_zone(self, pattern: AvailabilityPattern) -> ZoneInfo:
        return get_zone(pattern.timezone) if pattern.timezone else self._zone

    def patterns_for_instant(
        self,
        patterns: Sequence[AvailabilityPattern],
        instant: datetime,
    ) -> list[AvailabilityPattern]:
        """Patterns whose weekday matches ``instant`` in the pattern's own zone."""
        return [
            pattern
            for pattern in patterns
            if sunday_weekday(instant.astimezone(self.pattern_zone(pattern))) == pattern.day_of_week
        ]

    def within_patterns(
        self,
        day_patterns: Sequence[AvailabilityPattern],
        start: datetime,
        end: datetime,
    ) -> bool:
        for pattern in day_patterns:
            start_seconds, end_seconds = local_clock_span(start, end, self.pattern_zone(pattern))
            if contains(
                seconds_since_midnight(pattern.start_time),
                seconds_since_midnight(pattern.end_time),
                start_seconds,
                end_seconds,
            ):
                return True
        return False

    def check_availability(
        self,
        host_id: int,
        start: datetime,
        end: datetime,
        event_id: Optional[int] = None,
        buffer_before_minutes: int = 0,
        buffer_after_minutes: int = 0,
    ) -> AvailabilityResult:
        """Decide whether ``host_id`` can take ``[start, end)``."""
        validate_buffers(buffer_before_minutes, buffer_after_minutes)
        start = ensure_aware(start, self._zone)
        end = ensure_aware(end, self._zone)
        if start >= end:
            raise ValueError("start must be before end")

        holiday = self._repository.get_company_holiday(start.astimezone(self._zone).date())
        if holiday is not None:
            return AvailabilityResult(available=False, reason=f"Company holiday: {holiday.name}")

        window = expand(Interval(start, end), buffer_before_minutes, buffer_after_minutes)

        day_patterns = self.patterns_for_instant(self._repository.get_patterns(host_id), start)
        if day_patterns and not self.within_patterns(day_patterns, start, end):
            return AvailabilityResult(available=False, reason=OUTSIDE_HOURS)

        busy_blocks = self._repository.get_busy_blocks(host_id, window.start, window.end)
        slots = self._repository.get_slots(
            window.start - OCCUPANCY_LOOKAROUND,
            window.end + OCCUPANCY_LOOKAROUND,
            host_id=host_id,
            event_id=event_id,
        )
        reason = find_conflict(window, busy_blocks, slots)
        if reason is not None:
            logger.debug(
                "Host unavailable | host_id=%s | start=%s | reason=%s",
                host_id,
                start.isoformat(),
                reason,
            )
            return AvailabilityResult(available=False, reason=reason)
        return AvailabilityResult(available=True)

    def list_available_slots(
        self,
        host_id: int,
        duration_minutes: int,
        buffer_before_minutes: int,
        buffer_after_minutes: int,
        range_start: datetime,
        range_end: datetime,
        event_id: Optional[int] = None,
        stride_minutes: Optional[int] = None,
    ) -> list[Interval]:
        """Enumerate bookable starts inside the host's patterns.

        Candidates advance by a fixed stride from each pattern's start,
        independent of ``duration_minutes``; when the duration does not line
        up with the stride the tail of a window can go unused.
        """
        validate_duration(duration_minutes)
        validate_buffers(buffer_before_minutes, buffer_after_minutes)
        stride = stride_minutes if stride_minutes is not None else self._settings.slot_stride_minutes
        validate_stride(stride)
        range_start = ensure_aware(range_start, self._zone)
        range_end = ensure_aware(range_end, self._zone)

        patterns = self._repository.get_patterns(host_id)
        if not patterns:
            return []

        busy_blocks = self._repository.get_busy_blocks(
            host_id,
            range_start - OCCUPANCY_LOOKAROUND,
            range_end + OCCUPANCY_LOOKAROUND,
        )
        slots = self._repository.get_slots(
            range_start - OCCUPANCY_LOOKAROUND,
            range_end + OCCUPANCY_LOOKAROUND,
            host_id=host_id,
            event_id=event_id,
        )
        holidays = self.holiday_dates(range_start, range_end)

        now = self.now()
        duration = timedelta(minutes=duration_minutes)
        step = timedelta(minutes=stride)
        available: list[Interval] = []

        for day in iter_local_days(range_start, range_end, self._zone):
            if day in holidays:
                continue
            for pattern in patterns:
                if pattern.day_of_week != sunday_weekday(day):
                    continue
                zone = self.pattern_zone(pattern)
                candidate = at_wall_clock(day, pattern.start_time, zone)
                pattern_end = at_wall_clock(day, pattern.end_time, zone)
                while candidate + duration <= pattern_end:
                    if candidate >= now:
                        window = expand(
                            Interval(candidate, candidate + duration),
                            buffer_before_minutes,
                            buffer_after_minutes,
                        )
                        if find_conflict(window, busy_blocks, slots) is None:
                            available.append(Interval(candidate, candidate + duration))
                    candidate += step

        available.sort(key=lambda interval: interval.start)
        logger.info(
            "Available slots listed | host_id=%s | duration=%s | stride=%s | count=%s",
            host_id,
            duration_minutes,
            stride,
            len(available),
        )
        return available

    def stride_for_event(self, event_id: Optional[int]) -> int:
        """The event's start-time increment, or the configured stride without one."""
        if event_id is not None:
            event = self._repository.get_event(event_id)
            if event is not None:
                return event.start_time_increment
        return self._settings.slot_stride_minutes

    def holiday_dates(self, range_start: datetime, range_end: datetime) -> set[date]:
        holidays = self._repository.list_company_holidays(
            range_start.astimezone(self._zone).date(),
            range_end.astimezone(self._zone).date(),
        )
        return {holiday.holiday_date for holiday in holidays}
