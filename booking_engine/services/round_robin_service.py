"""Round-robin host selection for multi-host events.

Three strategies share one eligibility filter (slot availability plus the
host's personal daily/weekly caps) and differ only in how they rank the
eligible hosts. The winning host is persisted with a compare-and-swap on the
event's rotation row; a lost race re-reads the row and selects again.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional, Sequence

from booking_engine.domain.constraints import validate_round_robin_config
from booking_engine.domain.errors import NotFoundError, StateConflictError
from booking_engine.domain.models import (
    DistributionStats,
    HostAssignment,
    HostShare,
    Period,
    RoundRobinState,
    Strategy,
)
from booking_engine.repository.data_repository import SchedulingRepository
from booking_engine.services.availability_service import AvailabilityService
from booking_engine.utils.concurrency import fan_out
from booking_engine.utils.config import Settings, get_settings
from booking_engine.utils.logger import get_logger
from booking_engine.utils.timeutils import (
    day_bounds,
    ensure_aware,
    period_bounds,
    sunday_weekday,
    week_bounds,
)


logger = get_logger(__name__)

PERIOD_WEEK_MULTIPLIERS = {
    Period.WEEK: 1,
    Period.MONTH: 4,
    Period.ALL_TIME: 52,
}


@dataclass(frozen=True)
class SelectionRequest:
    event_id: int
    start: datetime
    end: datetime
    period: Period
    host_ids: list[int]
    buffer_before_minutes: int = 0
    buffer_after_minutes: int = 0


@dataclass(frozen=True)
class Choice:
    host_id: int
    reason: str


class RoundRobinService:
    """Chooses which participating host receives the next booking."""

    def __init__(
        self,
        availability_service: AvailabilityService,
        repository: Optional[SchedulingRepository] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or SchedulingRepository(self._settings)
        self._availability = availability_service
        self._handlers: dict[
            Strategy,
            Callable[[SelectionRequest, Optional[RoundRobinState]], Optional[Choice]],
        ] = {
            Strategy.CYCLE: self._select_cycle,
            Strategy.LEAST_BOOKINGS: self._select_least_bookings,
            Strategy.AVAILABILITY_WEIGHTED: self._select_availability_weighted,
        }

    # --- Eligibility -----------------------------------------------------

    def within_personal_caps(self, host_id: int, start: datetime) -> bool:
        """True when the host is under both personal caps for ``start``'s day and week."""
        caps = self._repository.get_host_caps(host_id)
        if caps is None:
            return False
        zone = self._availability.zone
        day_start, day_end = day_bounds(start, zone)
        week_start, week_end = week_bounds(start, zone)
        daily = self._repository.count_bookings(day_start, day_end, host_id=host_id)
        weekly = self._repository.count_bookings(week_start, week_end, host_id=host_id)
        return daily < caps.max_daily and weekly < caps.max_weekly

    def is_eligible(self, host_id: int, request: SelectionRequest) -> bool:
        availability = self._availability.check_availability(
            host_id,
            request.start,
            request.end,
            buffer_before_minutes=request.buffer_before_minutes,
            buffer_after_minutes=request.buffer_after_minutes,
        )
        if not availability.available:
            logger.debug(
                "Host skipped | event_id=%s | host_id=%s | reason=%s",
                request.event_id,
                host_id,
                availability.reason,
            )
            return False
        if not self.within_personal_caps(host_id, request.start):
            logger.debug(
                "Host skipped | event_id=%s | host_id=%s | reason=personal cap reached",
                request.event_id,
                host_id,
            )
            return False
        return True

    def eligible_hosts(self, request: SelectionRequest) -> list[int]:
        flags = fan_out(
            lambda host_id: self.is_eligible(host_id, request),
            request.host_ids,
            self._settings.read_fanout_workers,
        )
        return [host_id for host_id, eligible in zip(request.host_ids, flags) if eligible]

    # --- Load measures ---------------------------------------------------

    def booking_counts(
        self,
        host_ids: Sequence[int],
        period: Period,
        reference: datetime,
    ) -> dict[int, int]:
        period_start, period_end = period_bounds(period, reference, self._availability.zone)
        return self._repository.count_bookings_by_host(host_ids, period_start, period_end)

    def available_hours(
        self,
        host_ids: Sequence[int],
        period: Period,
        reference: datetime,
    ) -> dict[int, float]:
        """Configured pattern hours per host, scaled to the counting period."""
        weekday = sunday_weekday(reference.astimezone(self._availability.zone))
        hours = {host_id: 0.0 for host_id in host_ids}
        for host_id, patterns in self._repository.get_patterns_for_hosts(list(host_ids)).items():
            for pattern in patterns:
                if period is Period.DAY:
                    multiplier = 1 if pattern.day_of_week == weekday else 0
                else:
                    multiplier = PERIOD_WEEK_MULTIPLIERS[period]
                hours[host_id] += pattern.hours * multiplier
        return hours

    # --- Strategies ------------------------------------------------------

    def _select_cycle(
        self,
        request: SelectionRequest,
        state: Optional[RoundRobinState],
    ) -> Optional[Choice]:
        host_ids = request.host_ids
        start_index = 0
        if state is not None and state.last_assigned_host_id in host_ids:
            start_index = (host_ids.index(state.last_assigned_host_id) + 1) % len(host_ids)

        for offset in range(len(host_ids)):
            index = (start_index + offset) % len(host_ids)
            if self.is_eligible(host_ids[index], request):
                return Choice(
                    host_id=host_ids[index],
                    reason=f"cycle (position {index + 1} of {len(host_ids)})",
                )
        return None

    def _select_least_bookings(
        self,
        request: SelectionRequest,
        state: Optional[RoundRobinState],
    ) -> Optional[Choice]:
        counts = self.booking_counts(request.host_ids, request.period, request.start)
        candidates = self.eligible_hosts(request)
        if not candidates:
            return None
        winner = min(candidates, key=lambda host_id: counts.get(host_id, 0))
        return Choice(
            host_id=winner,
            reason=f"least_bookings ({counts.get(winner, 0)} bookings in {request.period.value})",
        )

    def _select_availability_weighted(
        self,
        request: SelectionRequest,
        state: Optional[RoundRobinState],
    ) -> Optional[Choice]:
        counts = self.booking_counts(request.host_ids, request.period, request.start)
        hours = self.available_hours(request.host_ids, request.period, request.start)
        candidates = self.eligible_hosts(request)
        if not candidates:
            return None

        def utilization(host_id: int) -> float:
            host_hours = hours.get(host_id, 0.0)
            host_count = counts.get(host_id, 0)
            return host_count / host_hours if host_hours > 0 else float(host_count)

        winner = min(candidates, key=utilization)
        winner_count = counts.get(winner, 0)
        winner_hours = hours.get(winner, 0.0)
        if winner_hours > 0:
            utilized = int(utilization(winner) * 100 + 0.5)
        else:
            utilized = winner_count
        return Choice(
            host_id=winner,
            reason=(
                f"availability_weighted ({winner_count} bookings, "
                f"{winner_hours:.1f}h available, {utilized}% utilized)"
            ),
        )

    # --- Entry points ----------------------------------------------------

    def select_next_host(
        self,
        event_id: int,
        start: datetime,
        end: datetime,
        strategy: Strategy,
        period: Period,
        host_ids: Sequence[int],
        buffer_before_minutes: int = 0,
        buffer_after_minutes: int = 0,
    ) -> Optional[HostAssignment]:
        """Pick and record the host for ``[start, end)``; ``None`` means fully booked.

        A lost compare-and-set re-reads the state row and selects again. Only
        ``cycle`` depends on that row, so ``least_bookings`` and
        ``availability_weighted`` usually pick the same host on retry until
        the winner's booking row exists.
        """
        validate_round_robin_config(strategy, period, host_ids)
        if not host_ids:
            logger.warning("No hosts configured for round-robin | event_id=%s", event_id)
            return None

        zone = self._availability.zone
        request = SelectionRequest(
            event_id=event_id,
            start=ensure_aware(start, zone),
            end=ensure_aware(end, zone),
            period=period,
            host_ids=list(host_ids),
            buffer_before_minutes=buffer_before_minutes,
            buffer_after_minutes=buffer_after_minutes,
        )
        handler = self._handlers[strategy]
        max_attempts = max(1, self._settings.round_robin_max_attempts)

        for attempt in range(1, max_attempts + 1):
            state = self._repository.get_round_robin_state(event_id)
            choice = handler(request, state)
            if choice is None:
                logger.info(
                    "No eligible host | event_id=%s | strategy=%s | hosts=%s",
                    event_id,
                    strategy.value,
                    request.host_ids,
                )
                return None

            persisted = self._repository.compare_and_set_round_robin_state(
                event_id,
                choice.host_id,
                expected_version=state.version if state is not None else None,
                assigned_at=self._availability.now(),
            )
            if persisted:
                host = self._repository.get_host(choice.host_id)
                if host is None:
                    logger.error("Selected host vanished | event_id=%s | host_id=%s", event_id, choice.host_id)
                    return None
                logger.info(
                    "Host selected | event_id=%s | host_id=%s | reason=%s | attempt=%s",
                    event_id,
                    choice.host_id,
                    choice.reason,
                    attempt,
                )
                return HostAssignment(host_id=choice.host_id, host=host, reason=choice.reason)

            logger.warning(
                "Round-robin state changed concurrently; reselecting | event_id=%s | attempt=%s",
                event_id,
                attempt,
            )

        raise StateConflictError(
            f"Round-robin assignment for event {event_id} kept conflicting after {max_attempts} attempts"
        )

    def select_for_event(
        self,
        event_id: int,
        start: datetime,
        end: Optional[datetime] = None,
        strategy: Optional[Strategy] = None,
        period: Optional[Period] = None,
        host_ids: Optional[Sequence[int]] = None,
    ) -> Optional[HostAssignment]:
        """Select using the event's configuration; explicit arguments override it.

        Without ``host_ids`` the pool is the event's owner and hosts in join order.
        """
        event = self._repository.get_event(event_id)
        if event is None:
            raise NotFoundError(f"Event {event_id} not found")
        if end is None:
            end = ensure_aware(start, self._availability.zone) + timedelta(minutes=event.duration_minutes)
        if host_ids is None:
            host_ids = self._repository.list_participating_hosts(event_id)
        return self.select_next_host(
            event_id,
            start,
            end,
            strategy=strategy or event.strategy,
            period=period or event.period,
            host_ids=host_ids,
            buffer_before_minutes=event.buffer_before_minutes,
            buffer_after_minutes=event.buffer_after_minutes,
        )

    def get_distribution_stats(self, event_id: int) -> DistributionStats:
        """All-time share of assigned bookings per participating host."""
        if self._repository.get_event(event_id) is None:
            raise NotFoundError(f"Event {event_id} not found")
        host_ids = self._repository.list_participating_hosts(event_id)
        counts = self.booking_counts(host_ids, Period.ALL_TIME, self._availability.now())
        hosts = self._repository.get_hosts(host_ids)
        total = sum(counts.values())
        return DistributionStats(
            total_assignments=total,
            host_stats=[
                HostShare(
                    host_id=host_id,
                    host_name=hosts[host_id].name if host_id in hosts else "Unknown",
                    booking_count=counts.get(host_id, 0),
                    percentage=int(counts.get(host_id, 0) / total * 100 + 0.5) if total else 0,
                )
                for host_id in host_ids
            ],
        )
