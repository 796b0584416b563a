from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Sequence

from booking_engine.domain.constraints import resolve_constraints, summarize_constraints
from booking_engine.domain.errors import NotFoundError
from booking_engine.domain.models import (
    BookingConstraints,
    CheckResult,
    Event,
    FilteredSlot,
    Host,
    Interval,
    ValidationResult,
)
from booking_engine.repository.data_repository import SchedulingRepository
from booking_engine.utils.concurrency import run_parallel
from booking_engine.utils.config import Settings, get_settings
from booking_engine.utils.logger import get_logger
from booking_engine.utils.timeutils import (
    day_bounds,
    ensure_aware,
    get_zone,
    week_bounds,
    whole_hours_between,
)


logger = get_logger(__name__)

APPROVAL_WARNING = "This booking will require approval from the host before confirmation."
LAST_DAILY_SLOT_WARNING = "This is the host's last available slot for today."
WEEKLY_LIMIT_NEAR_WARNING = "The host is approaching their weekly meeting limit."


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class BookingConstraintService:
    """Validates a proposed booking start against event and host limits.

    Every check runs on each call; errors and warnings are accumulated rather
    than returned at the first failure. Storage-backed counts propagate
    ``UpstreamUnavailableError`` instead of defaulting to zero.
    """

    def __init__(
        self,
        repository: Optional[SchedulingRepository] = None,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or SchedulingRepository(self._settings)
        self._clock = clock or _utc_now
        self._zone = get_zone(self._settings.scheduling_timezone)

    def now(self) -> datetime:
        return ensure_aware(self._clock(), self._zone)

    # --- Individual checks -----------------------------------------------

    def validate_min_notice(self, start: datetime, min_notice_hours: int) -> CheckResult:
        now = self.now()
        start = ensure_aware(start, self._zone)
        if start < now + timedelta(hours=min_notice_hours):
            return CheckResult(
                valid=False,
                error=(
                    f"This slot requires {min_notice_hours} hours notice. "
                    f"The slot is only {whole_hours_between(now, start)} hours away."
                ),
            )
        return CheckResult(valid=True)

    def validate_booking_window(self, start: datetime, booking_window_days: int) -> CheckResult:
        start = ensure_aware(start, self._zone)
        if start > self.now() + timedelta(days=booking_window_days):
            return CheckResult(
                valid=False,
                error=f"Bookings can only be made up to {booking_window_days} days in advance.",
            )
        return CheckResult(valid=True)

    def validate_daily_limit(
        self,
        event_id: int,
        start: datetime,
        max_daily_bookings: Optional[int],
    ) -> CheckResult:
        if max_daily_bookings is None:
            return CheckResult(valid=True)
        day_start, day_end = day_bounds(ensure_aware(start, self._zone), self._zone)
        count = self._repository.count_bookings(day_start, day_end, event_id=event_id)
        return self._event_limit_result(count, max_daily_bookings, "daily")

    def validate_weekly_limit(
        self,
        event_id: int,
        start: datetime,
        max_weekly_bookings: Optional[int],
    ) -> CheckResult:
        if max_weekly_bookings is None:
            return CheckResult(valid=True)
        week_start, week_end = week_bounds(ensure_aware(start, self._zone), self._zone)
        count = self._repository.count_bookings(week_start, week_end, event_id=event_id)
        return self._event_limit_result(count, max_weekly_bookings, "weekly")

    @staticmethod
    def _event_limit_result(count: int, limit: int, label: str) -> CheckResult:
        if count >= limit:
            return CheckResult(
                valid=False,
                error=f"This event has reached its {label} booking limit of {limit}.",
            )
        return CheckResult(valid=True)

    def validate_host_limits(
        self,
        host_email: str,
        start: datetime,
        max_daily: int,
        max_weekly: int,
    ) -> CheckResult:
        """Compare the host's meetings across all their events with their caps."""
        start = ensure_aware(start, self._zone)
        day_start, day_end = day_bounds(start, self._zone)
        week_start, week_end = week_bounds(start, self._zone)
        daily_count, weekly_count = run_parallel(
            [
                lambda: self._repository.count_host_slots(host_email, day_start, day_end),
                lambda: self._repository.count_host_slots(host_email, week_start, week_end),
            ],
            self._settings.read_fanout_workers,
        )
        return self.host_limit_result(daily_count, weekly_count, max_daily, max_weekly)

    @staticmethod
    def host_limit_result(
        daily_count: int,
        weekly_count: int,
        max_daily: int,
        max_weekly: int,
    ) -> CheckResult:
        if daily_count >= max_daily:
            return CheckResult(valid=False, error="The host has reached their daily meeting limit.")
        if weekly_count >= max_weekly:
            return CheckResult(valid=False, error="The host has reached their weekly meeting limit.")

        warning = None
        if daily_count >= max_daily - 1:
            warning = LAST_DAILY_SLOT_WARNING
        elif weekly_count >= max_weekly - 2:
            warning = WEEKLY_LIMIT_NEAR_WARNING
        return CheckResult(valid=True, warning=warning)

    # --- Composite operations --------------------------------------------

    def resolve_host(self, event: Event, host: Optional[Host] = None) -> Optional[Host]:
        if host is not None:
            return host
        return self._repository.get_host_by_email(event.host_email)

    def get_constraints(self, event: Event, host: Optional[Host] = None) -> BookingConstraints:
        return resolve_constraints(event, self._settings, self.resolve_host(event, host))

    def load_event(self, event_id: int) -> Event:
        event = self._repository.get_event(event_id)
        if event is None:
            raise NotFoundError(f"Event {event_id} not found")
        return event

    def get_constraint_summary(self, event_id: int) -> tuple[BookingConstraints, list[str]]:
        constraints = self.get_constraints(self.load_event(event_id))
        return constraints, summarize_constraints(constraints)

    def validate_for_event(self, event_id: int, start: datetime) -> ValidationResult:
        return self.validate_all(self.load_event(event_id), start)

    def filter_for_event(self, event_id: int, slots: Sequence[Interval]) -> list[FilteredSlot]:
        return self.filter_slots(self.load_event(event_id), slots)

    def validate_all(
        self,
        event: Event,
        start: datetime,
        host: Optional[Host] = None,
    ) -> ValidationResult:
        """Run every check for ``start`` and collect all errors and warnings."""
        start = ensure_aware(start, self._zone)
        constraints = self.get_constraints(event, host)

        local_checks = [
            self.validate_min_notice(start, constraints.min_notice_hours),
            self.validate_booking_window(start, constraints.booking_window_days),
        ]
        storage_checks = run_parallel(
            [
                lambda: self.validate_daily_limit(event.event_id, start, constraints.max_daily_bookings),
                lambda: self.validate_weekly_limit(event.event_id, start, constraints.max_weekly_bookings),
                lambda: self.validate_host_limits(
                    event.host_email,
                    start,
                    constraints.host_max_daily,
                    constraints.host_max_weekly,
                ),
            ],
            self._settings.read_fanout_workers,
        )

        errors: list[str] = []
        warnings: list[str] = []
        for check in [*local_checks, *storage_checks]:
            if not check.valid and check.error:
                errors.append(check.error)
            if check.warning:
                warnings.append(check.warning)
        if constraints.require_approval:
            warnings.append(APPROVAL_WARNING)

        if errors:
            logger.info(
                "Booking constraints failed | event_id=%s | start=%s | errors=%s",
                event.event_id,
                start.isoformat(),
                len(errors),
            )
        return ValidationResult(valid=not errors, errors=errors, warnings=warnings)

    def filter_slots(
        self,
        event: Event,
        slots: Sequence[Interval],
        host: Optional[Host] = None,
    ) -> list[FilteredSlot]:
        """Keep the slots that pass every constraint, with their warnings attached."""
        host = self.resolve_host(event, host)
        constraints = resolve_constraints(event, self._settings, host)
        now = self.now()
        earliest = now + timedelta(hours=constraints.min_notice_hours)
        latest = now + timedelta(days=constraints.booking_window_days)

        survivors: list[FilteredSlot] = []
        for slot in slots:
            start = ensure_aware(slot.start, self._zone)
            if start < earliest or start > latest:
                continue
            validation = self.validate_all(event, start, host)
            if validation.valid:
                survivors.append(
                    FilteredSlot(start_time=start, end_time=slot.end, warnings=validation.warnings)
                )

        logger.info(
            "Slots filtered | event_id=%s | offered=%s | kept=%s",
            event.event_id,
            len(slots),
            len(survivors),
        )
        return survivors
