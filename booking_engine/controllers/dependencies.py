"""Shared FastAPI dependency providers for controller layer."""

from __future__ import annotations

from typing import Any

from fastapi import HTTPException, Request, status

from booking_engine.domain.errors import (
    NoCandidateError,
    NotFoundError,
    PolicyViolation,
    UpstreamUnavailableError,
)
from booking_engine.services.availability_service import AvailabilityService
from booking_engine.services.booking_service import BookingGateService
from booking_engine.services.collective_service import CollectiveAvailabilityService
from booking_engine.services.constraint_service import BookingConstraintService
from booking_engine.services.round_robin_service import RoundRobinService
from booking_engine.utils.logger import get_logger


logger = get_logger(__name__)

RETRY_AFTER_SECONDS = "1"


def to_http_exception(exc: Exception, failure_detail: str) -> HTTPException:
    """Map service-layer failures onto HTTP status codes."""
    if isinstance(exc, (ValueError, PolicyViolation)):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, NoCandidateError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, UpstreamUnavailableError):
        logger.warning("Storage unavailable | detail=%s", exc)
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(exc),
            headers={"Retry-After": RETRY_AFTER_SECONDS},
        )
    logger.exception("Unexpected failure | detail=%s", failure_detail)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=failure_detail,
    )


def _service_from_state(request: Request, attribute: str, label: str) -> Any:
    service = getattr(request.app.state, attribute, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{label} service is not initialized",
        )
    return service


def get_availability_service(request: Request) -> AvailabilityService:
    return _service_from_state(request, "availability_service", "Availability")


def get_collective_service(request: Request) -> CollectiveAvailabilityService:
    return _service_from_state(request, "collective_service", "Collective availability")


def get_round_robin_service(request: Request) -> RoundRobinService:
    return _service_from_state(request, "round_robin_service", "Round-robin")


def get_constraint_service(request: Request) -> BookingConstraintService:
    return _service_from_state(request, "constraint_service", "Booking constraint")


def get_booking_gate_service(request: Request) -> BookingGateService:
    return _service_from_state(request, "booking_gate_service", "Booking gate")
