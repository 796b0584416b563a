from __future__ import annotations

import sqlite3
from dataclasses import replace
from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

import pytest

from booking_engine.domain.errors import UpstreamUnavailableError
from booking_engine.repository.data_repository import SchedulingRepository
from booking_engine.services.availability_service import (
    CALENDAR_CONFLICT,
    OUTSIDE_HOURS,
    SLOT_CONFLICT,
    AvailabilityService,
)
from booking_engine.utils.config import get_settings


NEW_YORK = ZoneInfo("America/New_York")
MONDAY = date(2026, 6, 1)
NOW = datetime(2026, 5, 25, 9, 0, tzinfo=NEW_YORK)


def _build_test_settings(tmp_path, filename: str):
    get_settings.cache_clear()
    base = get_settings()
    return replace(
        base,
        database_path=tmp_path / filename,
        scheduling_timezone="America/New_York",
        slot_stride_minutes=30,
        read_fanout_workers=2,
    )


def _build_services(tmp_path, now: datetime = NOW) -> tuple[SchedulingRepository, AvailabilityService]:
    settings = _build_test_settings(tmp_path, "availability.db")
    repository = SchedulingRepository(settings)
    repository.initialize_database()
    service = AvailabilityService(repository=repository, settings=settings, clock=lambda: now)
    return repository, service


def at(hour: int, minute: int = 0, day: date = MONDAY, zone: ZoneInfo = NEW_YORK) -> datetime:
    return datetime.combine(day, time(hour, minute), tzinfo=zone)


def _host_with_hours(repository: SchedulingRepository, start: time, end: time) -> int:
    host_id = repository.create_host("host@example.com", "Host")
    repository.create_pattern(host_id, 1, start, end)
    return host_id


# --- Single-slot checks ---

def test_host_without_patterns_is_open_all_day(tmp_path) -> None:
    repository, service = _build_services(tmp_path)
    host_id = repository.create_host("open@example.com", "Open Host")

    result = service.check_availability(host_id, at(3), at(4))

    assert result.available
    assert result.reason is None


def test_pattern_on_another_weekday_leaves_day_open(tmp_path) -> None:
    repository, service = _build_services(tmp_path)
    host_id = repository.create_host("tuesday@example.com", "Tuesday Host")
    repository.create_pattern(host_id, 2, time(9, 0), time(17, 0))

    assert service.check_availability(host_id, at(6), at(7)).available


def test_slot_outside_pattern_is_rejected(tmp_path) -> None:
    repository, service = _build_services(tmp_path)
    host_id = _host_with_hours(repository, time(9, 0), time(17, 0))

    early = service.check_availability(host_id, at(8, 30), at(9, 30))
    inside = service.check_availability(host_id, at(9), at(10))
    flush_end = service.check_availability(host_id, at(16), at(17))

    assert not early.available
    assert early.reason == OUTSIDE_HOURS
    assert inside.available
    assert flush_end.available


def test_slot_crossing_midnight_never_fits_pattern(tmp_path) -> None:
    repository, service = _build_services(tmp_path)
    host_id = _host_with_hours(repository, time(20, 0), time(23, 59, 59))

    result = service.check_availability(host_id, at(23, 30), at(0, 30, day=MONDAY + timedelta(days=1)))

    assert not result.available
    assert result.reason == OUTSIDE_HOURS


def test_busy_block_conflicts_but_touching_edge_does_not(tmp_path) -> None:
    repository, service = _build_services(tmp_path)
    host_id = _host_with_hours(repository, time(9, 0), time(17, 0))
    repository.create_busy_block(host_id, at(10), at(11), "google_calendar")

    clash = service.check_availability(host_id, at(10, 30), at(11))
    after = service.check_availability(host_id, at(11), at(11, 30))

    assert clash.reason == CALENDAR_CONFLICT
    assert after.available


def test_existing_slot_buffers_apply_to_new_requests(tmp_path) -> None:
    repository, service = _build_services(tmp_path)
    host_id = _host_with_hours(repository, time(9, 0), time(17, 0))
    event_id = repository.create_event("Review", "host@example.com", buffer_before_minutes=15)
    repository.create_slot(event_id, at(10), at(11), assigned_host_id=host_id)

    buffered = service.check_availability(host_id, at(9), at(10), buffer_before_minutes=15)
    into_buffer = service.check_availability(host_id, at(9), at(10))
    clear = service.check_availability(host_id, at(9), at(9, 45))

    assert buffered.reason == SLOT_CONFLICT
    assert into_buffer.reason == SLOT_CONFLICT
    assert clear.available


def test_request_buffer_after_reaches_next_slot(tmp_path) -> None:
    repository, service = _build_services(tmp_path)
    host_id = _host_with_hours(repository, time(9, 0), time(17, 0))
    event_id = repository.create_event("Sync", "host@example.com")
    repository.create_slot(event_id, at(10), at(11))

    assert service.check_availability(host_id, at(9), at(10), buffer_after_minutes=10).reason == SLOT_CONFLICT
    assert service.check_availability(host_id, at(9), at(10)).available


def test_cancelled_slot_does_not_block(tmp_path) -> None:
    repository, service = _build_services(tmp_path)
    host_id = _host_with_hours(repository, time(9, 0), time(17, 0))
    event_id = repository.create_event("Sync", "host@example.com")
    slot_id = repository.create_slot(event_id, at(10), at(11), assigned_host_id=host_id)
    repository.cancel_slot(slot_id)

    assert service.check_availability(host_id, at(10), at(11)).available


def test_company_holiday_blocks_everyone(tmp_path) -> None:
    repository, service = _build_services(tmp_path)
    host_id = _host_with_hours(repository, time(9, 0), time(17, 0))
    repository.create_company_holiday(MONDAY, "Founders Day")

    result = service.check_availability(host_id, at(10), at(11))

    assert not result.available
    assert result.reason == "Company holiday: Founders Day"


def test_pattern_in_its_own_timezone(tmp_path) -> None:
    repository, service = _build_services(tmp_path)
    london = ZoneInfo("Europe/London")
    host_id = repository.create_host("london@example.com", "London Host")
    repository.create_pattern(host_id, 1, time(9, 0), time(17, 0), timezone_name="Europe/London")

    assert service.check_availability(host_id, at(9, zone=london), at(10, zone=london)).available
    assert service.check_availability(host_id, at(9), at(10)).available
    assert service.check_availability(host_id, at(13), at(14)).reason == OUTSIDE_HOURS


def test_inverted_window_raises(tmp_path) -> None:
    repository, service = _build_services(tmp_path)
    host_id = repository.create_host("host@example.com", "Host")

    with pytest.raises(ValueError):
        service.check_availability(host_id, at(11), at(10))


def test_storage_failure_fails_closed(tmp_path, monkeypatch) -> None:
    repository, service = _build_services(tmp_path)
    host_id = _host_with_hours(repository, time(9, 0), time(17, 0))

    def locked_connection():
        raise sqlite3.OperationalError("database is locked")

    monkeypatch.setattr(repository, "_connect", locked_connection)

    with pytest.raises(UpstreamUnavailableError):
        service.check_availability(host_id, at(10), at(11))


# --- Slot enumeration ---

def test_list_slots_walks_pattern_by_stride(tmp_path) -> None:
    repository, service = _build_services(tmp_path)
    host_id = _host_with_hours(repository, time(9, 0), time(11, 0))
    repository.create_busy_block(host_id, at(10), at(10, 30))

    slots = service.list_available_slots(host_id, 30, 0, 0, at(0), at(0, day=MONDAY + timedelta(days=1)))

    assert [slot.start for slot in slots] == [at(9), at(9, 30), at(10, 30)]
    assert all(slot.end - slot.start == timedelta(minutes=30) for slot in slots)


def test_stride_is_independent_of_duration(tmp_path) -> None:
    repository, service = _build_services(tmp_path)
    host_id = _host_with_hours(repository, time(9, 0), time(10, 0))

    slots = service.list_available_slots(host_id, 45, 0, 0, at(0), at(23))
    fine_grained = service.list_available_slots(host_id, 45, 0, 0, at(0), at(23), stride_minutes=15)

    assert [slot.start for slot in slots] == [at(9)]
    assert [slot.start for slot in fine_grained] == [at(9), at(9, 15)]


def test_list_slots_skips_past_starts(tmp_path) -> None:
    repository, service = _build_services(tmp_path, now=at(9, 40))
    host_id = _host_with_hours(repository, time(9, 0), time(11, 0))

    slots = service.list_available_slots(host_id, 30, 0, 0, at(0), at(23))

    assert [slot.start for slot in slots] == [at(10), at(10, 30)]


def test_list_slots_skips_holidays_and_needs_patterns(tmp_path) -> None:
    repository, service = _build_services(tmp_path)
    host_id = _host_with_hours(repository, time(9, 0), time(10, 0))
    open_host = repository.create_host("open@example.com", "Open Host")
    next_monday = MONDAY + timedelta(days=7)
    repository.create_company_holiday(MONDAY, "Founders Day")

    slots = service.list_available_slots(host_id, 30, 0, 0, at(0), at(0, day=next_monday + timedelta(days=1)))

    assert [slot.start for slot in slots] == [at(9, day=next_monday), at(9, 30, day=next_monday)]
    assert service.list_available_slots(open_host, 30, 0, 0, at(0), at(23)) == []


def test_list_slots_respects_request_buffers(tmp_path) -> None:
    repository, service = _build_services(tmp_path)
    host_id = _host_with_hours(repository, time(9, 0), time(11, 0))
    event_id = repository.create_event("Sync", "host@example.com")
    repository.create_slot(event_id, at(10), at(10, 30), assigned_host_id=host_id)

    slots = service.list_available_slots(host_id, 30, 0, 15, at(0), at(23))

    assert [slot.start for slot in slots] == [at(9), at(10, 30)]


def test_event_increment_sets_stride(tmp_path) -> None:
    repository, service = _build_services(tmp_path)
    event_id = repository.create_event("Quick chat", "host@example.com", start_time_increment=15)

    assert service.stride_for_event(event_id) == 15
    assert service.stride_for_event(None) == 30
