"""HTTP controller layer for single-host, collective and round-robin availability."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field, field_validator, model_validator

from booking_engine.controllers.dependencies import (
    get_availability_service,
    get_collective_service,
    get_round_robin_service,
    to_http_exception,
)
from booking_engine.domain.constraints import validate_window
from booking_engine.domain.models import Interval, Period, Strategy
from booking_engine.services.availability_service import AvailabilityService
from booking_engine.services.collective_service import CollectiveAvailabilityService
from booking_engine.services.round_robin_service import RoundRobinService


router = APIRouter(tags=["availability"])


def _unique_host_ids(value: Optional[list[int]]) -> Optional[list[int]]:
    if value is None:
        return None
    if any(host_id <= 0 for host_id in value):
        raise ValueError("host_ids must be positive")
    if len(set(value)) != len(value):
        raise ValueError("host_ids must not contain duplicates")
    return value


class TimeWindowRequest(BaseModel):
    start: datetime
    end: datetime

    @model_validator(mode="after")
    def validate_window_order(self) -> "TimeWindowRequest":
        validate_window(self.start, self.end)
        return self


class AvailabilityCheckRequest(TimeWindowRequest):
    """Input DTO validated before entering service layer."""

    host_id: int = Field(gt=0)
    event_id: Optional[int] = Field(default=None, gt=0)
    buffer_before_minutes: int = Field(default=0, ge=0)
    buffer_after_minutes: int = Field(default=0, ge=0)


class AvailabilityCheckResponse(BaseModel):
    available: bool
    reason: Optional[str] = None


class SlotRangeRequest(BaseModel):
    duration_minutes: int = Field(gt=0)
    range_start: datetime
    range_end: datetime
    event_id: Optional[int] = Field(default=None, gt=0)
    stride_minutes: Optional[int] = Field(default=None, gt=0)

    @model_validator(mode="after")
    def validate_range_order(self) -> "SlotRangeRequest":
        validate_window(self.range_start, self.range_end, "range_start", "range_end")
        return self


class AvailableSlotsRequest(SlotRangeRequest):
    host_id: int = Field(gt=0)
    buffer_before_minutes: int = Field(default=0, ge=0)
    buffer_after_minutes: int = Field(default=0, ge=0)


class SlotResponse(BaseModel):
    start_time: datetime
    end_time: datetime


class AvailableSlotsResponse(BaseModel):
    slots: list[SlotResponse]


class CollectiveCheckRequest(TimeWindowRequest):
    host_ids: list[int] = Field(min_length=1)
    event_id: Optional[int] = Field(default=None, gt=0)
    buffer_before_minutes: int = Field(default=0, ge=0)
    buffer_after_minutes: int = Field(default=0, ge=0)

    @field_validator("host_ids")
    @classmethod
    def validate_host_ids(cls, value: list[int]) -> list[int]:
        return _unique_host_ids(value)


class CollectiveCheckResponse(BaseModel):
    available: bool
    unavailable_hosts: list[int]
    reasons: dict[int, str]


class CollectiveSlotsRequest(SlotRangeRequest):
    host_ids: list[int] = Field(min_length=1)

    @field_validator("host_ids")
    @classmethod
    def validate_host_ids(cls, value: list[int]) -> list[int]:
        return _unique_host_ids(value)


class RoundRobinSelectRequest(BaseModel):
    event_id: int = Field(gt=0)
    start: datetime
    end: Optional[datetime] = None
    strategy: Optional[Strategy] = None
    period: Optional[Period] = None
    host_ids: Optional[list[int]] = None

    @field_validator("host_ids")
    @classmethod
    def validate_host_ids(cls, value: Optional[list[int]]) -> Optional[list[int]]:
        return _unique_host_ids(value)

    @model_validator(mode="after")
    def validate_window_order(self) -> "RoundRobinSelectRequest":
        if self.end is not None:
            validate_window(self.start, self.end)
        return self


class HostAssignmentResponse(BaseModel):
    host_id: int
    host_name: str
    host_email: str
    reason: str


class RoundRobinSelectResponse(BaseModel):
    assigned: bool
    assignment: Optional[HostAssignmentResponse] = None


class HostShareResponse(BaseModel):
    host_id: int
    host_name: str
    booking_count: int = Field(ge=0)
    percentage: int = Field(ge=0, le=100)


class DistributionStatsResponse(BaseModel):
    total_assignments: int = Field(ge=0)
    host_stats: list[HostShareResponse]


def _slots_response(intervals: list[Interval]) -> AvailableSlotsResponse:
    return AvailableSlotsResponse(
        slots=[SlotResponse(start_time=item.start, end_time=item.end) for item in intervals]
    )


@router.post(
    "/availability/check",
    response_model=AvailabilityCheckResponse,
    status_code=status.HTTP_200_OK,
)
def check_availability(
    payload: AvailabilityCheckRequest,
    service: AvailabilityService = Depends(get_availability_service),
) -> AvailabilityCheckResponse:
    try:
        result = service.check_availability(
            payload.host_id,
            payload.start,
            payload.end,
            event_id=payload.event_id,
            buffer_before_minutes=payload.buffer_before_minutes,
            buffer_after_minutes=payload.buffer_after_minutes,
        )
    except Exception as exc:
        raise to_http_exception(exc, "Failed to check availability") from exc
    return AvailabilityCheckResponse(available=result.available, reason=result.reason)


@router.post(
    "/availability/slots",
    response_model=AvailableSlotsResponse,
    status_code=status.HTTP_200_OK,
)
def list_available_slots(
    payload: AvailableSlotsRequest,
    service: AvailabilityService = Depends(get_availability_service),
) -> AvailableSlotsResponse:
    """Enumerate bookable starts; an event's start-time increment is the default stride."""
    try:
        stride = payload.stride_minutes or service.stride_for_event(payload.event_id)
        intervals = service.list_available_slots(
            payload.host_id,
            payload.duration_minutes,
            payload.buffer_before_minutes,
            payload.buffer_after_minutes,
            payload.range_start,
            payload.range_end,
            event_id=payload.event_id,
            stride_minutes=stride,
        )
    except Exception as exc:
        raise to_http_exception(exc, "Failed to list available slots") from exc
    return _slots_response(intervals)


@router.post(
    "/collective/check",
    response_model=CollectiveCheckResponse,
    status_code=status.HTTP_200_OK,
)
def check_collective_availability(
    payload: CollectiveCheckRequest,
    service: CollectiveAvailabilityService = Depends(get_collective_service),
) -> CollectiveCheckResponse:
    try:
        result = service.check_all(
            payload.host_ids,
            payload.start,
            payload.end,
            event_id=payload.event_id,
            buffer_before_minutes=payload.buffer_before_minutes,
            buffer_after_minutes=payload.buffer_after_minutes,
        )
    except Exception as exc:
        raise to_http_exception(exc, "Failed to check collective availability") from exc
    return CollectiveCheckResponse(
        available=result.available,
        unavailable_hosts=result.unavailable_hosts,
        reasons=result.reasons,
    )


@router.post(
    "/collective/slots",
    response_model=AvailableSlotsResponse,
    status_code=status.HTTP_200_OK,
)
def list_collective_slots(
    payload: CollectiveSlotsRequest,
    service: CollectiveAvailabilityService = Depends(get_collective_service),
) -> AvailableSlotsResponse:
    """Enumerate group starts on the fixed stride; event increments do not apply here."""
    try:
        intervals = service.list_all_available(
            payload.host_ids,
            payload.duration_minutes,
            payload.range_start,
            payload.range_end,
            event_id=payload.event_id,
            stride_minutes=payload.stride_minutes,
        )
    except Exception as exc:
        raise to_http_exception(exc, "Failed to list collective slots") from exc
    return _slots_response(intervals)


@router.post(
    "/round_robin/select",
    response_model=RoundRobinSelectResponse,
    status_code=status.HTTP_200_OK,
)
def select_round_robin_host(
    payload: RoundRobinSelectRequest,
    service: RoundRobinService = Depends(get_round_robin_service),
) -> RoundRobinSelectResponse:
    """Pick and record the next host; ``assigned=false`` means fully booked."""
    try:
        assignment = service.select_for_event(
            payload.event_id,
            payload.start,
            payload.end,
            strategy=payload.strategy,
            period=payload.period,
            host_ids=payload.host_ids,
        )
    except Exception as exc:
        raise to_http_exception(exc, "Failed to select round-robin host") from exc
    if assignment is None:
        return RoundRobinSelectResponse(assigned=False)
    return RoundRobinSelectResponse(
        assigned=True,
        assignment=HostAssignmentResponse(
            host_id=assignment.host_id,
            host_name=assignment.host.name,
            host_email=assignment.host.email,
            reason=assignment.reason,
        ),
    )


@router.get(
    "/round_robin/{event_id}/stats",
    response_model=DistributionStatsResponse,
    status_code=status.HTTP_200_OK,
)
def get_round_robin_stats(
    event_id: int,
    service: RoundRobinService = Depends(get_round_robin_service),
) -> DistributionStatsResponse:
    try:
        stats = service.get_distribution_stats(event_id)
    except Exception as exc:
        raise to_http_exception(exc, "Failed to load round-robin distribution") from exc
    return DistributionStatsResponse(
        total_assignments=stats.total_assignments,
        host_stats=[
            HostShareResponse(
                host_id=share.host_id,
                host_name=share.host_name,
                booking_count=share.booking_count,
                percentage=share.percentage,
            )
            for share in stats.host_stats
        ],
    )
