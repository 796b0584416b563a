"""Availability for collective events, where every host must be free at once."""

from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Optional, Sequence

from booking_engine.domain.constraints import validate_duration, validate_stride
from booking_engine.domain.intervals import intersect_all
from booking_engine.domain.models import (
    AvailabilityPattern,
    AvailabilityResult,
    BusyBlock,
    CollectiveAvailabilityResult,
    Interval,
    Slot,
)
from booking_engine.repository.data_repository import SchedulingRepository
from booking_engine.services.availability_service import (
    OCCUPANCY_LOOKAROUND,
    AvailabilityService,
    find_conflict,
)
from booking_engine.utils.concurrency import fan_out
from booking_engine.utils.config import Settings, get_settings
from booking_engine.utils.logger import get_logger
from booking_engine.utils.timeutils import (
    at_wall_clock,
    ensure_aware,
    iter_local_days,
    sunday_weekday,
)


logger = get_logger(__name__)


class CollectiveAvailabilityService:
    """Intersects single-host availability across a set of hosts.

    Unlike the single-host resolver, a host without any pattern on a weekday
    closes that whole day for the group.
    """

    def __init__(
        self,
        availability_service: AvailabilityService,
        repository: Optional[SchedulingRepository] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or SchedulingRepository(self._settings)
        self._availability = availability_service

    def check_all(
        self,
        host_ids: Sequence[int],
        start: datetime,
        end: datetime,
        event_id: Optional[int] = None,
        buffer_before_minutes: int = 0,
        buffer_after_minutes: int = 0,
    ) -> CollectiveAvailabilityResult:
        """Available only when no host in ``host_ids`` reports a conflict."""

        def check(host_id: int) -> AvailabilityResult:
            return self._availability.check_availability(
                host_id,
                start,
                end,
                event_id=event_id,
                buffer_before_minutes=buffer_before_minutes,
                buffer_after_minutes=buffer_after_minutes,
            )

        results = fan_out(check, list(host_ids), self._settings.read_fanout_workers)
        unavailable_hosts: list[int] = []
        reasons: dict[int, str] = {}
        for host_id, result in zip(host_ids, results):
            if not result.available:
                unavailable_hosts.append(host_id)
                reasons[host_id] = result.reason or "Not available"

        if unavailable_hosts:
            logger.info(
                "Collective check failed | hosts=%s | unavailable=%s",
                list(host_ids),
                unavailable_hosts,
            )
        return CollectiveAvailabilityResult(
            available=not unavailable_hosts,
            unavailable_hosts=unavailable_hosts,
            reasons=reasons,
        )

    def common_windows(
        self,
        day: date,
        patterns_by_host: dict[int, list[AvailabilityPattern]],
        host_ids: Sequence[int],
    ) -> list[tuple[datetime, datetime]]:
        """Windows on ``day`` where every host has a pattern; empty if any host has none."""
        window_sets: list[list[tuple[datetime, datetime]]] = []
        weekday = sunday_weekday(day)
        for host_id in host_ids:
            windows = []
            for pattern in patterns_by_host.get(host_id, []):
                if pattern.day_of_week != weekday:
                    continue
                zone = self._availability.pattern_zone(pattern)
                windows.append(
                    (
                        at_wall_clock(day, pattern.start_time, zone),
                        at_wall_clock(day, pattern.end_time, zone),
                    )
                )
            if not windows:
                return []
            window_sets.append(windows)
        return intersect_all(window_sets)

    def list_all_available(
        self,
        host_ids: Sequence[int],
        duration_minutes: int,
        range_start: datetime,
        range_end: datetime,
        event_id: Optional[int] = None,
        stride_minutes: Optional[int] = None,
    ) -> list[Interval]:
        """Enumerate starts where every host is inside a pattern and conflict-free."""
        validate_duration(duration_minutes)
        stride = stride_minutes if stride_minutes is not None else self._settings.slot_stride_minutes
        validate_stride(stride)
        if not host_ids:
            return []

        zone = self._availability.zone
        range_start = ensure_aware(range_start, zone)
        range_end = ensure_aware(range_end, zone)
        lookup_start = range_start - OCCUPANCY_LOOKAROUND
        lookup_end = range_end + OCCUPANCY_LOOKAROUND

        patterns_by_host = self._repository.get_patterns_for_hosts(list(host_ids))

        def load_busy(host_id: int) -> list[BusyBlock]:
            return self._repository.get_busy_blocks(host_id, lookup_start, lookup_end)

        def load_slots(host_id: int) -> list[Slot]:
            return self._repository.get_slots(lookup_start, lookup_end, host_id=host_id, event_id=event_id)

        workers = self._settings.read_fanout_workers
        busy_by_host = dict(zip(host_ids, fan_out(load_busy, list(host_ids), workers)))
        slots_by_host = dict(zip(host_ids, fan_out(load_slots, list(host_ids), workers)))
        holidays = self._availability.holiday_dates(range_start, range_end)

        now = self._availability.now()
        duration = timedelta(minutes=duration_minutes)
        step = timedelta(minutes=stride)
        seen: set[datetime] = set()
        available: list[Interval] = []

        for day in iter_local_days(range_start, range_end, zone):
            if day in holidays:
                continue
            for window_start, window_end in self.common_windows(day, patterns_by_host, host_ids):
                candidate = window_start
                while candidate + duration <= window_end:
                    if candidate >= now and candidate not in seen:
                        interval = Interval(candidate, candidate + duration)
                        if all(
                            find_conflict(interval, busy_by_host[host_id], slots_by_host[host_id]) is None
                            for host_id in host_ids
                        ):
                            seen.add(candidate)
                            available.append(interval)
                    candidate += step

        available.sort(key=lambda interval: interval.start)
        logger.info(
            "Collective slots listed | hosts=%s | duration=%s | count=%s",
            list(host_ids),
            duration_minutes,
            len(available),
        )
        return available
