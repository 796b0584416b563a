"""Domain-level validation and constraint resolution rules."""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Sequence

from booking_engine.domain.models import (
    AvailabilityPattern,
    BookingConstraints,
    Event,
    Host,
    Period,
    Strategy,
)
from booking_engine.utils.config import Settings


ALLOWED_START_TIME_INCREMENTS = (15, 30, 45, 60)


def validate_pattern(pattern: AvailabilityPattern) -> None:
    if not 0 <= pattern.day_of_week <= 6:
        raise ValueError("day_of_week must be between 0 (Sunday) and 6 (Saturday)")
    if pattern.start_time >= pattern.end_time:
        raise ValueError("pattern start_time must be before end_time")


def validate_buffers(buffer_before_minutes: int, buffer_after_minutes: int) -> None:
    if buffer_before_minutes < 0 or buffer_after_minutes < 0:
        raise ValueError("buffers must be >= 0 minutes")


def validate_duration(duration_minutes: int) -> None:
    if duration_minutes <= 0:
        raise ValueError("duration_minutes must be > 0")


def validate_stride(stride_minutes: int) -> None:
    if stride_minutes <= 0:
        raise ValueError("stride_minutes must be > 0")


def validate_window(
    start: datetime,
    end: datetime,
    start_label: str = "start",
    end_label: str = "end",
) -> None:
    if (start.tzinfo is None) != (end.tzinfo is None):
        raise ValueError(
            f"{start_label} and {end_label} must both carry a UTC offset or both omit it"
        )
    if start >= end:
        raise ValueError(f"{start_label} must be before {end_label}")


def validate_event(event: Event) -> None:
    validate_duration(event.duration_minutes)
    validate_buffers(event.buffer_before_minutes, event.buffer_after_minutes)
    if event.start_time_increment not in ALLOWED_START_TIME_INCREMENTS:
        raise ValueError("start_time_increment must be one of 15, 30, 45 or 60")
    if event.min_notice_hours is not None and event.min_notice_hours < 0:
        raise ValueError("min_notice_hours must be >= 0")
    if event.booking_window_days is not None and event.booking_window_days <= 0:
        raise ValueError("booking_window_days must be > 0")
    if event.max_daily_bookings is not None and event.max_daily_bookings <= 0:
        raise ValueError("max_daily_bookings must be > 0 when set")
    if event.max_weekly_bookings is not None and event.max_weekly_bookings <= 0:
        raise ValueError("max_weekly_bookings must be > 0 when set")


def validate_round_robin_config(
    strategy: Strategy,
    period: Period,
    host_ids: Sequence[int],
) -> None:
    if not isinstance(strategy, Strategy):
        raise ValueError(f"Unknown round-robin strategy: {strategy!r}")
    if not isinstance(period, Period):
        raise ValueError(f"Unknown round-robin period: {period!r}")
    if len(set(host_ids)) != len(host_ids):
        raise ValueError("host_ids must not contain duplicates")


def resolve_constraints(
    event: Event,
    settings: Settings,
    host: Optional[Host] = None,
) -> BookingConstraints:
    """Fill unset event and host limits with configured defaults."""
    return BookingConstraints(
        min_notice_hours=(
            event.min_notice_hours
            if event.min_notice_hours is not None
            else settings.default_min_notice_hours
        ),
        booking_window_days=(
            event.booking_window_days
            if event.booking_window_days is not None
            else settings.default_booking_window_days
        ),
        max_daily_bookings=event.max_daily_bookings,
        max_weekly_bookings=event.max_weekly_bookings,
        require_approval=event.require_approval,
        host_max_daily=(
            host.max_meetings_per_day
            if host is not None and host.max_meetings_per_day is not None
            else settings.default_host_max_daily
        ),
        host_max_weekly=(
            host.max_meetings_per_week
            if host is not None and host.max_meetings_per_week is not None
            else settings.default_host_max_weekly
        ),
    )


def _plural(count: int, word: str) -> str:
    return f"{count} {word}" if count == 1 else f"{count} {word}s"


def summarize_constraints(constraints: BookingConstraints) -> list[str]:
    """Human-readable lines shown next to a booking page."""
    summary: list[str] = []

    if constraints.min_notice_hours > 0:
        if constraints.min_notice_hours >= 24:
            days = constraints.min_notice_hours // 24
            summary.append(f"Book at least {_plural(days, 'day')} in advance")
        else:
            summary.append(f"Book at least {constraints.min_notice_hours} hours in advance")

    if constraints.booking_window_days < 365:
        summary.append(f"Book up to {constraints.booking_window_days} days ahead")

    if constraints.max_daily_bookings:
        summary.append(f"Max {_plural(constraints.max_daily_bookings, 'booking')} per day")

    if constraints.max_weekly_bookings:
        summary.append(f"Max {_plural(constraints.max_weekly_bookings, 'booking')} per week")

    if constraints.require_approval:
        summary.append("Requires host approval")

    return summary
