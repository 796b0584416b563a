"""Controller layer for booking constraint validation and the booking gate."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Request, status
from pydantic import BaseModel, Field, model_validator

from booking_engine.controllers.dependencies import (
    get_booking_gate_service,
    get_constraint_service,
    to_http_exception,
)
from booking_engine.domain.constraints import validate_window
from booking_engine.domain.models import Interval
from booking_engine.services.booking_service import BookingGateService
from booking_engine.services.constraint_service import BookingConstraintService


router = APIRouter(tags=["bookings"])


class ValidateBookingRequest(BaseModel):
    event_id: int = Field(gt=0)
    start: datetime


class ValidationResponse(BaseModel):
    valid: bool
    errors: list[str]
    warnings: list[str]


class CandidateSlot(BaseModel):
    start_time: datetime
    end_time: datetime

    @model_validator(mode="after")
    def validate_slot_order(self) -> "CandidateSlot":
        validate_window(self.start_time, self.end_time, "start_time", "end_time")
        return self


class FilterSlotsRequest(BaseModel):
    event_id: int = Field(gt=0)
    slots: list[CandidateSlot]


class FilteredSlotResponse(BaseModel):
    start_time: datetime
    end_time: datetime
    warnings: list[str]


class FilterSlotsResponse(BaseModel):
    slots: list[FilteredSlotResponse]


class EvaluateBookingRequest(BaseModel):
    event_id: int = Field(gt=0)
    start: datetime
    end: Optional[datetime] = None
    raise_when_full: bool = False

    @model_validator(mode="after")
    def validate_window_order(self) -> "EvaluateBookingRequest":
        if self.end is not None:
            validate_window(self.start, self.end)
        return self


class BookingDecisionResponse(BaseModel):
    allowed: bool
    errors: list[str]
    warnings: list[str]
    assigned_host_id: Optional[int] = None
    assignment_reason: Optional[str] = None
    unavailable_hosts: list[int] = Field(default_factory=list)


class ConstraintsResponse(BaseModel):
    event_id: int
    min_notice_hours: int = Field(ge=0)
    booking_window_days: int = Field(gt=0)
    max_daily_bookings: Optional[int] = None
    max_weekly_bookings: Optional[int] = None
    require_approval: bool
    host_max_daily: int
    host_max_weekly: int
    summary: list[str]


class HealthResponse(BaseModel):
    status: str
    app_name: str
    version: str


@router.post(
    "/bookings/validate",
    response_model=ValidationResponse,
    status_code=status.HTTP_200_OK,
)
def validate_booking(
    payload: ValidateBookingRequest,
    service: BookingConstraintService = Depends(get_constraint_service),
) -> ValidationResponse:
    """Run every booking constraint; failures come back as ``errors``, not HTTP errors."""
    try:
        result = service.validate_for_event(payload.event_id, payload.start)
    except Exception as exc:
        raise to_http_exception(exc, "Failed to validate booking constraints") from exc
    return ValidationResponse(valid=result.valid, errors=result.errors, warnings=result.warnings)


@router.post(
    "/bookings/filter",
    response_model=FilterSlotsResponse,
    status_code=status.HTTP_200_OK,
)
def filter_slots(
    payload: FilterSlotsRequest,
    service: BookingConstraintService = Depends(get_constraint_service),
) -> FilterSlotsResponse:
    try:
        survivors = service.filter_for_event(
            payload.event_id,
            [Interval(slot.start_time, slot.end_time) for slot in payload.slots],
        )
    except Exception as exc:
        raise to_http_exception(exc, "Failed to filter slots") from exc
    return FilterSlotsResponse(
        slots=[
            FilteredSlotResponse(
                start_time=item.start_time,
                end_time=item.end_time,
                warnings=item.warnings,
            )
            for item in survivors
        ]
    )


@router.post(
    "/bookings/evaluate",
    response_model=BookingDecisionResponse,
    status_code=status.HTTP_200_OK,
)
def evaluate_booking(
    payload: EvaluateBookingRequest,
    service: BookingGateService = Depends(get_booking_gate_service),
) -> BookingDecisionResponse:
    try:
        decision = service.evaluate(
            payload.event_id,
            payload.start,
            payload.end,
            raise_when_full=payload.raise_when_full,
        )
    except Exception as exc:
        raise to_http_exception(exc, "Failed to evaluate booking") from exc
    return BookingDecisionResponse(
        allowed=decision.allowed,
        errors=decision.errors,
        warnings=decision.warnings,
        assigned_host_id=decision.assigned_host_id,
        assignment_reason=decision.assignment_reason,
        unavailable_hosts=decision.unavailable_hosts,
    )


@router.get(
    "/events/{event_id}/constraints",
    response_model=ConstraintsResponse,
    status_code=status.HTTP_200_OK,
)
def get_event_constraints(
    event_id: int,
    service: BookingConstraintService = Depends(get_constraint_service),
) -> ConstraintsResponse:
    try:
        constraints, summary = service.get_constraint_summary(event_id)
    except Exception as exc:
        raise to_http_exception(exc, "Failed to load event constraints") from exc
    return ConstraintsResponse(
        event_id=event_id,
        min_notice_hours=constraints.min_notice_hours,
        booking_window_days=constraints.booking_window_days,
        max_daily_bookings=constraints.max_daily_bookings,
        max_weekly_bookings=constraints.max_weekly_bookings,
        require_approval=constraints.require_approval,
        host_max_daily=constraints.host_max_daily,
        host_max_weekly=constraints.host_max_weekly,
        summary=summary,
    )


@router.get("/health", response_model=HealthResponse, status_code=status.HTTP_200_OK)
def health(request: Request) -> HealthResponse:
    settings = request.app.state.settings
    return HealthResponse(status="ok", app_name=settings.app_name, version=settings.app_version)
