"""Domain models for availability resolution and host assignment."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import Optional


class Strategy(str, Enum):
    CYCLE = "cycle"
    LEAST_BOOKINGS = "least_bookings"
    AVAILABILITY_WEIGHTED = "availability_weighted"


class Period(str, Enum):
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    ALL_TIME = "all_time"


class HostRole(str, Enum):
    OWNER = "owner"
    HOST = "host"
    BACKUP = "backup"


ROTATION_ROLES = (HostRole.OWNER, HostRole.HOST)


class EventKind(str, Enum):
    ONE_ON_ONE = "one_on_one"
    ROUND_ROBIN = "round_robin"
    COLLECTIVE = "collective"


@dataclass(frozen=True)
class Interval:
    """Half-open ``[start, end)`` interval on a single timeline."""

    start: datetime
    end: datetime

    @property
    def duration(self) -> timedelta:
        return self.end - self.start


@dataclass(frozen=True)
class Host:
    host_id: int
    email: str
    name: str
    max_meetings_per_day: Optional[int] = None
    max_meetings_per_week: Optional[int] = None


@dataclass(frozen=True)
class HostCaps:
    max_daily: int
    max_weekly: int


@dataclass(frozen=True)
class AvailabilityPattern:
    """Recurring weekly window; ``day_of_week`` uses 0 = Sunday."""

    pattern_id: int
    host_id: int
    day_of_week: int
    start_time: time
    end_time: time
    is_active: bool = True
    timezone: Optional[str] = None

    @property
    def hours(self) -> float:
        start_minutes = self.start_time.hour * 60 + self.start_time.minute
        end_minutes = self.end_time.hour * 60 + self.end_time.minute
        return (end_minutes - start_minutes) / 60


@dataclass(frozen=True)
class BusyBlock:
    block_id: int
    host_id: int
    start_time: datetime
    end_time: datetime
    source: str


@dataclass(frozen=True)
class Slot:
    """Concrete interval on an event, carrying the event's buffers."""

    slot_id: int
    event_id: int
    start_time: datetime
    end_time: datetime
    assigned_host_id: Optional[int] = None
    is_cancelled: bool = False
    buffer_before_minutes: int = 0
    buffer_after_minutes: int = 0


@dataclass(frozen=True)
class Booking:
    booking_id: int
    slot_id: int
    email: str
    cancelled_at: Optional[datetime] = None


@dataclass(frozen=True)
class RoundRobinState:
    event_id: int
    last_assigned_host_id: Optional[int]
    last_assigned_at: Optional[datetime]
    assignment_count: int
    version: int


@dataclass(frozen=True)
class CompanyHoliday:
    holiday_date: date
    name: str


@dataclass(frozen=True)
class Event:
    event_id: int
    name: str
    host_email: str
    kind: EventKind = EventKind.ONE_ON_ONE
    duration_minutes: int = 30
    buffer_before_minutes: int = 0
    buffer_after_minutes: int = 0
    start_time_increment: int = 30
    min_notice_hours: Optional[int] = None
    booking_window_days: Optional[int] = None
    max_daily_bookings: Optional[int] = None
    max_weekly_bookings: Optional[int] = None
    require_approval: bool = False
    strategy: Strategy = Strategy.CYCLE
    period: Period = Period.WEEK


@dataclass(frozen=True)
class BookingConstraints:
    """Event constraint configuration with defaults resolved."""

    min_notice_hours: int
    booking_window_days: int
    max_daily_bookings: Optional[int]
    max_weekly_bookings: Optional[int]
    require_approval: bool
    host_max_daily: int
    host_max_weekly: int


@dataclass(frozen=True)
class AvailabilityResult:
    available: bool
    reason: Optional[str] = None


@dataclass(frozen=True)
class CollectiveAvailabilityResult:
    available: bool
    unavailable_hosts: list[int]
    reasons: dict[int, str]


@dataclass(frozen=True)
class HostAssignment:
    host_id: int
    host: Host
    reason: str


@dataclass(frozen=True)
class CheckResult:
    """Outcome of one constraint check."""

    valid: bool
    error: Optional[str] = None
    warning: Optional[str] = None


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class FilteredSlot:
    start_time: datetime
    end_time: datetime
    warnings: list[str]


@dataclass(frozen=True)
class HostShare:
    host_id: int
    host_name: str
    booking_count: int
    percentage: int


@dataclass(frozen=True)
class DistributionStats:
    total_assignments: int
    host_stats: list[HostShare]


@dataclass(frozen=True)
class BookingDecision:
    """Combined verdict of constraint validation and host resolution."""

    allowed: bool
    errors: list[str]
    warnings: list[str]
    assigned_host_id: Optional[int] = None
    assignment_reason: Optional[str] = None
    unavailable_hosts: list[int] = field(default_factory=list)
