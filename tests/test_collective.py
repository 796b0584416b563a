from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from booking_engine.repository.data_repository import SchedulingRepository
from booking_engine.services.availability_service import (
    CALENDAR_CONFLICT,
    OUTSIDE_HOURS,
    AvailabilityService,
)
from booking_engine.services.collective_service import CollectiveAvailabilityService
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
        read_fanout_workers=3,
    )


def _build_services(tmp_path) -> tuple[SchedulingRepository, CollectiveAvailabilityService]:
    settings = _build_test_settings(tmp_path, "collective.db")
    repository = SchedulingRepository(settings)
    repository.initialize_database()
    availability = AvailabilityService(repository=repository, settings=settings, clock=lambda: NOW)
    collective = CollectiveAvailabilityService(availability, repository=repository, settings=settings)
    return repository, collective


def at(hour: int, minute: int = 0, day: date = MONDAY) -> datetime:
    return datetime.combine(day, time(hour, minute), tzinfo=NEW_YORK)


def _seed_pair(repository: SchedulingRepository) -> tuple[int, int]:
    first = repository.create_host("first@example.com", "First")
    second = repository.create_host("second@example.com", "Second")
    repository.create_pattern(first, 1, time(9, 0), time(12, 0))
    repository.create_pattern(second, 1, time(10, 0), time(14, 0))
    return first, second


def test_check_all_reports_every_unavailable_host(tmp_path) -> None:
    repository, collective = _build_services(tmp_path)
    first, second = _seed_pair(repository)
    repository.create_busy_block(second, at(9), at(9, 30))

    result = collective.check_all([first, second], at(9), at(9, 30))

    assert not result.available
    assert result.unavailable_hosts == [second]
    assert result.reasons == {second: OUTSIDE_HOURS}


def test_check_all_passes_when_everyone_is_free(tmp_path) -> None:
    repository, collective = _build_services(tmp_path)
    first, second = _seed_pair(repository)

    result = collective.check_all([first, second], at(10), at(11))

    assert result.available
    assert result.unavailable_hosts == []
    assert result.reasons == {}


def test_check_all_collects_calendar_reasons(tmp_path) -> None:
    repository, collective = _build_services(tmp_path)
    first, second = _seed_pair(repository)
    repository.create_busy_block(first, at(10, 30), at(11))

    result = collective.check_all([first, second], at(10), at(11))

    assert result.reasons == {first: CALENDAR_CONFLICT}


def test_list_all_available_uses_pattern_intersection(tmp_path) -> None:
    repository, collective = _build_services(tmp_path)
    first, second = _seed_pair(repository)
    repository.create_busy_block(second, at(11), at(11, 30))

    slots = collective.list_all_available([first, second], 30, at(0), at(23))

    assert [slot.start for slot in slots] == [at(10), at(10, 30), at(11, 30)]


def test_host_without_pattern_closes_the_day(tmp_path) -> None:
    repository, collective = _build_services(tmp_path)
    first, second = _seed_pair(repository)
    third = repository.create_host("third@example.com", "Third")

    assert collective.list_all_available([first, second, third], 30, at(0), at(23)) == []
    assert collective.check_all([first, second, third], at(10), at(11)).available


def test_collective_listing_is_order_independent(tmp_path) -> None:
    repository, collective = _build_services(tmp_path)
    first, second = _seed_pair(repository)
    end = at(0, day=MONDAY + timedelta(days=7))

    assert collective.list_all_available([first, second], 60, at(0), end) == (
        collective.list_all_available([second, first], 60, at(0), end)
    )


def test_existing_slot_of_any_host_blocks_the_group(tmp_path) -> None:
    repository, collective = _build_services(tmp_path)
    first, second = _seed_pair(repository)
    event_id = repository.create_event("Panel", "first@example.com", buffer_after_minutes=30)
    repository.create_slot(event_id, at(10), at(10, 30), assigned_host_id=first)

    slots = collective.list_all_available([first, second], 30, at(0), at(23))

    assert [slot.start for slot in slots] == [at(11), at(11, 30)]


def test_holiday_skips_collective_day(tmp_path) -> None:
    repository, collective = _build_services(tmp_path)
    first, second = _seed_pair(repository)
    repository.create_company_holiday(MONDAY, "Founders Day")

    assert collective.list_all_available([first, second], 30, at(0), at(23)) == []
