"""
app.py: FastAPI application factory and startup lifecycle.

This is the ASGI application object imported by uvicorn.
It wires all services, registers routers, and runs startup initialization.

Usage (via launcher):
    python main.py

Usage (direct uvicorn):
    uvicorn app:app --reload
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime
from typing import Callable, Optional

from fastapi import FastAPI

from booking_engine.controllers.availability_controller import router as availability_router
from booking_engine.controllers.booking_controller import router as booking_router
from booking_engine.repository.data_repository import SchedulingRepository
from booking_engine.services.availability_service import AvailabilityService
from booking_engine.services.booking_service import BookingGateService
from booking_engine.services.collective_service import CollectiveAvailabilityService
from booking_engine.services.constraint_service import BookingConstraintService
from booking_engine.services.round_robin_service import RoundRobinService
from booking_engine.utils.config import Settings, get_settings
from booking_engine.utils.logger import configure_logging, get_logger


logger = get_logger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> FastAPI:
    """
    Build and wire the FastAPI application.

    Instantiates all services with explicit dependency injection via app.state.
    Every dependency is traceable from this function; tests pass their own
    settings and a fixed clock.
    """
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    # --- Repository (one SQLite connection per call) ---
    repository = SchedulingRepository(settings)

    # --- Services (business logic, no direct DB access) ---
    availability_service = AvailabilityService(
        repository=repository,
        settings=settings,
        clock=clock,
    )
    collective_service = CollectiveAvailabilityService(
        availability_service,
        repository=repository,
        settings=settings,
    )
    round_robin_service = RoundRobinService(
        availability_service,
        repository=repository,
        settings=settings,
    )
    constraint_service = BookingConstraintService(
        repository=repository,
        settings=settings,
        clock=clock,
    )
    booking_gate_service = BookingGateService(
        availability_service,
        collective_service,
        round_robin_service,
        constraint_service,
        repository=repository,
        settings=settings,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Run startup initialization before accepting requests."""
        _startup(app)
        yield

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )

    # --- Routers ---
    app.include_router(availability_router)
    app.include_router(booking_router)

    # --- Inject services into app.state for dependency resolution ---
    app.state.settings = settings
    app.state.repository = repository
    app.state.availability_service = availability_service
    app.state.collective_service = collective_service
    app.state.round_robin_service = round_robin_service
    app.state.constraint_service = constraint_service
    app.state.booking_gate_service = booking_gate_service

    return app


def _startup(app: FastAPI) -> None:
    """
    Idempotent startup sequence. Safe to re-run on server restarts.

    Schema must exist before seeding; seeding is skipped when hosts exist.
    """
    settings: Settings = app.state.settings
    repository: SchedulingRepository = app.state.repository

    logger.info("Startup: initializing database schema | path=%s", repository.database_path)
    repository.initialize_database()

    if settings.seed_demo_data:
        logger.info("Startup: seeding demo hosts and events (skipped if Hosts table not empty)")
        repository.seed_demo_data()

    logger.info("Startup complete | timezone=%s", settings.scheduling_timezone)


# Module-level app object for uvicorn
app = create_app()
