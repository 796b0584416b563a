from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

from booking_engine.domain.errors import NoCandidateError, NotFoundError
from booking_engine.domain.models import BookingDecision, Event, EventKind
from booking_engine.repository.data_repository import SchedulingRepository
from booking_engine.services.availability_service import AvailabilityService
from booking_engine.services.collective_service import CollectiveAvailabilityService
from booking_engine.services.constraint_service import BookingConstraintService
from booking_engine.services.round_robin_service import RoundRobinService
from booking_engine.utils.config import Settings, get_settings
from booking_engine.utils.logger import get_logger
from booking_engine.utils.timeutils import ensure_aware


logger = get_logger(__name__)

FULLY_BOOKED = "No host is available for this time. The event is fully booked."


class BookingGateService:
    """Answers "may this start be booked, and by whom" for one event.

    Constraint validation runs first; host resolution only happens for a
    start that already passes every constraint, so a rejected request never
    advances round-robin state.
    """

    def __init__(
        self,
        availability_service: AvailabilityService,
        collective_service: CollectiveAvailabilityService,
        round_robin_service: RoundRobinService,
        constraint_service: BookingConstraintService,
        repository: Optional[SchedulingRepository] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or SchedulingRepository(self._settings)
        self._availability = availability_service
        self._collective = collective_service
        self._round_robin = round_robin_service
        self._constraints = constraint_service

    def evaluate(
        self,
        event_id: int,
        start: datetime,
        end: Optional[datetime] = None,
        raise_when_full: bool = False,
    ) -> BookingDecision:
        event = self._repository.get_event(event_id)
        if event is None:
            raise NotFoundError(f"Event {event_id} not found")

        start = ensure_aware(start, self._availability.zone)
        if end is None:
            end = start + timedelta(minutes=event.duration_minutes)
        end = ensure_aware(end, self._availability.zone)

        validation = self._constraints.validate_all(event, start)
        if not validation.valid:
            return BookingDecision(
                allowed=False,
                errors=validation.errors,
                warnings=validation.warnings,
            )

        if event.kind is EventKind.ROUND_ROBIN:
            decision = self._evaluate_round_robin(event, start, end, validation.warnings)
        elif event.kind is EventKind.COLLECTIVE:
            decision = self._evaluate_collective(event, start, end, validation.warnings)
        else:
            decision = self._evaluate_one_on_one(event, start, end, validation.warnings)

        if not decision.allowed and raise_when_full:
            raise NoCandidateError("; ".join(decision.errors))
        logger.info(
            "Booking evaluated | event_id=%s | kind=%s | allowed=%s | host_id=%s",
            event.event_id,
            event.kind.value,
            decision.allowed,
            decision.assigned_host_id,
        )
        return decision

    def _evaluate_one_on_one(
        self,
        event: Event,
        start: datetime,
        end: datetime,
        warnings: list[str],
    ) -> BookingDecision:
        host = self._repository.get_host_by_email(event.host_email)
        if host is None:
            raise NotFoundError(f"No host registered for {event.host_email}")
        result = self._availability.check_availability(
            host.host_id,
            start,
            end,
            buffer_before_minutes=event.buffer_before_minutes,
            buffer_after_minutes=event.buffer_after_minutes,
        )
        if not result.available:
            return BookingDecision(
                allowed=False,
                errors=[result.reason or FULLY_BOOKED],
                warnings=warnings,
                unavailable_hosts=[host.host_id],
            )
        return BookingDecision(
            allowed=True,
            errors=[],
            warnings=warnings,
            assigned_host_id=host.host_id,
        )

    def _evaluate_round_robin(
        self,
        event: Event,
        start: datetime,
        end: datetime,
        warnings: list[str],
    ) -> BookingDecision:
        assignment = self._round_robin.select_for_event(event.event_id, start, end)
        if assignment is None:
            return BookingDecision(allowed=False, errors=[FULLY_BOOKED], warnings=warnings)
        return BookingDecision(
            allowed=True,
            errors=[],
            warnings=warnings,
            assigned_host_id=assignment.host_id,
            assignment_reason=assignment.reason,
        )

    def _evaluate_collective(
        self,
        event: Event,
        start: datetime,
        end: datetime,
        warnings: list[str],
    ) -> BookingDecision:
        host_ids = self._repository.list_participating_hosts(event.event_id)
        if not host_ids:
            return BookingDecision(allowed=False, errors=[FULLY_BOOKED], warnings=warnings)
        result = self._collective.check_all(
            host_ids,
            start,
            end,
            buffer_before_minutes=event.buffer_before_minutes,
            buffer_after_minutes=event.buffer_after_minutes,
        )
        if not result.available:
            return BookingDecision(
                allowed=False,
                errors=[
                    f"Host {host_id}: {result.reasons.get(host_id, 'Not available')}"
                    for host_id in result.unavailable_hosts
                ],
                warnings=warnings,
                unavailable_hosts=result.unavailable_hosts,
            )
        return BookingDecision(allowed=True, errors=[], warnings=warnings)
