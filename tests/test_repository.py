from __future__ import annotations

import sqlite3
from dataclasses import replace
from datetime import date, datetime, time, timedelta, timezone

import pytest

from booking_engine.domain.errors import UpstreamUnavailableError
from booking_engine.domain.models import HostRole
from booking_engine.repository.data_repository import SchedulingRepository
from booking_engine.utils.config import get_settings


def _build_test_settings(tmp_path, filename: str):
    get_settings.cache_clear()
    base = get_settings()
    return replace(base, database_path=tmp_path / filename)


def _build_repository(tmp_path) -> SchedulingRepository:
    repository = SchedulingRepository(_build_test_settings(tmp_path, "repository.db"))
    repository.initialize_database()
    return repository


def utc(day: int, hour: int) -> datetime:
    return datetime(2026, 6, day, hour, tzinfo=timezone.utc)


def test_initialize_database_is_idempotent(tmp_path) -> None:
    repository = _build_repository(tmp_path)
    repository.initialize_database()

    with sqlite3.connect(repository.database_path) as conn:
        tables = {
            row[0]
            for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table';").fetchall()
        }
    assert {
        "Hosts",
        "AvailabilityPatterns",
        "BusyBlocks",
        "Events",
        "EventHosts",
        "Slots",
        "Bookings",
        "RoundRobinState",
        "CompanyHolidays",
    } <= tables


def test_stale_version_loses_compare_and_set(tmp_path) -> None:
    repository = _build_repository(tmp_path)
    host_a = repository.create_host("a@example.com", "A")
    host_b = repository.create_host("b@example.com", "B")
    event_id = repository.create_event("Demo", "a@example.com")

    assert repository.compare_and_set_round_robin_state(event_id, host_a, expected_version=None)
    assert not repository.compare_and_set_round_robin_state(event_id, host_b, expected_version=None)
    assert repository.compare_and_set_round_robin_state(event_id, host_b, expected_version=1)
    assert not repository.compare_and_set_round_robin_state(event_id, host_a, expected_version=1)

    state = repository.get_round_robin_state(event_id)
    assert state.last_assigned_host_id == host_b
    assert state.assignment_count == 2
    assert state.version == 2


def test_pattern_round_trip_and_inactive_filter(tmp_path) -> None:
    repository = _build_repository(tmp_path)
    host_id = repository.create_host("a@example.com", "A")
    repository.create_pattern(host_id, 1, time(9, 0), time(12, 30), timezone_name="Europe/London")
    repository.create_pattern(host_id, 2, time(9, 0), time(17, 0), is_active=False)

    patterns = repository.get_patterns(host_id)

    assert len(patterns) == 1
    assert patterns[0].start_time == time(9, 0)
    assert patterns[0].end_time == time(12, 30)
    assert patterns[0].timezone == "Europe/London"
    assert repository.get_patterns_for_hosts([host_id, 999]) == {host_id: patterns, 999: []}


def test_replace_busy_blocks_only_touches_synced_range(tmp_path) -> None:
    repository = _build_repository(tmp_path)
    host_id = repository.create_host("a@example.com", "A")
    repository.create_busy_block(host_id, utc(1, 14), utc(1, 15), "google_calendar")
    repository.create_busy_block(host_id, utc(1, 16), utc(1, 17), "manual")
    repository.create_busy_block(host_id, utc(10, 14), utc(10, 15), "google_calendar")

    written = repository.replace_busy_blocks(
        host_id,
        utc(1, 0),
        utc(2, 0),
        [(utc(1, 18), utc(1, 19))],
    )

    blocks = repository.get_busy_blocks(host_id, utc(1, 0), utc(11, 0))
    assert written == 1
    assert [(block.start_time, block.source) for block in blocks] == [
        (utc(1, 16), "manual"),
        (utc(1, 18), "google_calendar"),
        (utc(10, 14), "google_calendar"),
    ]


def test_participating_hosts_exclude_backups(tmp_path) -> None:
    repository = _build_repository(tmp_path)
    owner = repository.create_host("owner@example.com", "Owner")
    member = repository.create_host("member@example.com", "Member")
    backup = repository.create_host("backup@example.com", "Backup")
    event_id = repository.create_event("Demo", "owner@example.com")
    repository.add_event_host(event_id, owner, HostRole.OWNER)
    repository.add_event_host(event_id, backup, HostRole.BACKUP)
    repository.add_event_host(event_id, member, HostRole.HOST)

    assert repository.list_participating_hosts(event_id) == [owner, member]


def test_host_caps_default_and_unknown_host(tmp_path) -> None:
    repository = _build_repository(tmp_path)
    capped = repository.create_host("a@example.com", "A", max_meetings_per_day=2)

    caps = repository.get_host_caps(capped)

    assert caps.max_daily == 2
    assert caps.max_weekly == 30
    assert repository.get_host_caps(12345) is None
    assert repository.get_host_by_email("A@EXAMPLE.COM").host_id == capped


def test_count_bookings_requires_a_scope(tmp_path) -> None:
    repository = _build_repository(tmp_path)

    with pytest.raises(ValueError):
        repository.count_bookings(utc(1, 0), utc(2, 0))


def test_booking_counts_by_event_and_host(tmp_path) -> None:
    repository = _build_repository(tmp_path)
    host_id = repository.create_host("a@example.com", "A")
    event_id = repository.create_event("Demo", "a@example.com")
    live = repository.create_slot(event_id, utc(1, 14), utc(1, 15), assigned_host_id=host_id)
    cancelled = repository.create_slot(event_id, utc(1, 16), utc(1, 17), assigned_host_id=host_id)
    repository.create_booking(live, "guest@example.com")
    repository.cancel_booking(repository.create_booking(cancelled, "other@example.com"))

    assert repository.count_bookings(utc(1, 0), utc(2, 0), event_id=event_id) == 1
    assert repository.count_bookings(utc(1, 0), utc(2, 0), host_id=host_id) == 1
    assert repository.count_bookings(utc(1, 15), utc(2, 0), host_id=host_id) == 0
    assert repository.count_bookings_by_host([host_id, 77], utc(1, 0), utc(2, 0)) == {host_id: 1, 77: 0}
    assert repository.count_host_slots("A@example.com", utc(1, 0), utc(2, 0)) == 2


def test_company_holidays_listed_inclusively(tmp_path) -> None:
    repository = _build_repository(tmp_path)
    repository.create_company_holiday(date(2026, 7, 3), "Independence Day (observed)")
    repository.create_company_holiday(date(2026, 12, 25), "Christmas")

    holidays = repository.list_company_holidays(date(2026, 7, 3), date(2026, 7, 3) + timedelta(days=1))

    assert [holiday.name for holiday in holidays] == ["Independence Day (observed)"]
    assert repository.get_company_holiday(date(2026, 12, 25)).name == "Christmas"
    assert repository.get_company_holiday(date(2026, 12, 24)) is None


def test_seed_demo_data_runs_once(tmp_path) -> None:
    repository = _build_repository(tmp_path)
    repository.seed_demo_data()
    repository.seed_demo_data()

    with sqlite3.connect(repository.database_path) as conn:
        host_count = conn.execute("SELECT COUNT(*) FROM Hosts;").fetchone()[0]
        event_count = conn.execute("SELECT COUNT(*) FROM Events;").fetchone()[0]
    assert host_count == 3
    assert event_count == 3


def test_sqlite_errors_surface_as_upstream_unavailable(tmp_path) -> None:
    repository = _build_repository(tmp_path)
    host_id = repository.create_host("a@example.com", "A")

    with pytest.raises(UpstreamUnavailableError):
        repository.create_host("a@example.com", "Duplicate")
    with pytest.raises(UpstreamUnavailableError):
        repository.create_pattern(host_id, 1, time(17, 0), time(9, 0))
