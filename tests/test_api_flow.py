from __future__ import annotations

import sqlite3
from dataclasses import replace
from datetime import date, datetime, time
from zoneinfo import ZoneInfo

from fastapi.testclient import TestClient

from app import create_app
from booking_engine.domain.models import EventKind, HostRole, Strategy
from booking_engine.repository.data_repository import SchedulingRepository
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
        seed_demo_data=False,
        read_fanout_workers=2,
    )


def iso(hour: int, minute: int = 0) -> str:
    return datetime.combine(MONDAY, time(hour, minute), tzinfo=NEW_YORK).isoformat()


def _seed(repository: SchedulingRepository) -> dict[str, int]:
    repository.initialize_database()
    owner = repository.create_host("owner@example.com", "Owner")
    member = repository.create_host("member@example.com", "Member")
    for host_id in (owner, member):
        repository.create_pattern(host_id, 1, time(9, 0), time(12, 0))
    intro = repository.create_event(
        "Intro",
        "owner@example.com",
        start_time_increment=15,
        require_approval=True,
    )
    demo = repository.create_event(
        "Demo",
        "owner@example.com",
        kind=EventKind.ROUND_ROBIN,
        strategy=Strategy.CYCLE,
    )
    repository.add_event_host(demo, owner, HostRole.OWNER)
    repository.add_event_host(demo, member, HostRole.HOST)
    return {"owner": owner, "member": member, "intro": intro, "demo": demo}


def test_scheduling_end_to_end_flow(tmp_path):
    settings = _build_test_settings(tmp_path, "api_flow.db")
    app = create_app(settings=settings, clock=lambda: NOW)
    ids = _seed(app.state.repository)

    with TestClient(app) as client:
        health = client.get("/health")
        assert health.status_code == 200
        assert health.json()["status"] == "ok"

        check = client.post(
            "/availability/check",
            json={"host_id": ids["owner"], "start": iso(9), "end": iso(9, 30)},
        )
        assert check.status_code == 200
        assert check.json() == {"available": True, "reason": None}

        outside = client.post(
            "/availability/check",
            json={"host_id": ids["owner"], "start": iso(13), "end": iso(13, 30)},
        )
        assert outside.json()["reason"] == "Outside of set availability hours"

        slots = client.post(
            "/availability/slots",
            json={
                "host_id": ids["owner"],
                "event_id": ids["intro"],
                "duration_minutes": 30,
                "range_start": iso(0),
                "range_end": iso(23),
            },
        )
        assert slots.status_code == 200
        starts = [item["start_time"] for item in slots.json()["slots"]]
        assert len(starts) == 11
        assert datetime.fromisoformat(starts[1]) == datetime.fromisoformat(iso(9, 15))

        collective = client.post(
            "/collective/slots",
            json={
                "host_ids": [ids["owner"], ids["member"]],
                "duration_minutes": 60,
                "range_start": iso(0),
                "range_end": iso(23),
            },
        )
        assert len(collective.json()["slots"]) == 5

        first = client.post("/round_robin/select", json={"event_id": ids["demo"], "start": iso(10)})
        second = client.post("/round_robin/select", json={"event_id": ids["demo"], "start": iso(10)})
        assert first.json()["assignment"]["host_id"] == ids["owner"]
        assert second.json()["assignment"]["host_id"] == ids["member"]
        assert second.json()["assignment"]["reason"] == "cycle (position 2 of 2)"

        stats = client.get(f"/round_robin/{ids['demo']}/stats")
        assert stats.status_code == 200
        assert stats.json()["total_assignments"] == 0
        assert len(stats.json()["host_stats"]) == 2

        validation = client.post("/bookings/validate", json={"event_id": ids["intro"], "start": iso(10)})
        assert validation.status_code == 200
        assert validation.json()["valid"] is True
        assert validation.json()["warnings"] == [
            "This booking will require approval from the host before confirmation."
        ]

        decision = client.post("/bookings/evaluate", json={"event_id": ids["intro"], "start": iso(10)})
        assert decision.json()["allowed"] is True
        assert decision.json()["assigned_host_id"] == ids["owner"]

        filtered = client.post(
            "/bookings/filter",
            json={
                "event_id": ids["intro"],
                "slots": [
                    {"start_time": iso(10), "end_time": iso(10, 30)},
                    {"start_time": NOW.isoformat(), "end_time": iso(10, 30)},
                ],
            },
        )
        assert len(filtered.json()["slots"]) == 1

        constraints = client.get(f"/events/{ids['intro']}/constraints")
        assert constraints.status_code == 200
        assert constraints.json()["summary"] == [
            "Book at least 1 day in advance",
            "Book up to 60 days ahead",
            "Requires host approval",
        ]


def test_error_mapping(tmp_path, monkeypatch):
    settings = _build_test_settings(tmp_path, "api_errors.db")
    app = create_app(settings=settings, clock=lambda: NOW)
    ids = _seed(app.state.repository)

    with TestClient(app) as client:
        missing = client.get("/events/9999/constraints")
        assert missing.status_code == 404

        inverted = client.post(
            "/availability/check",
            json={"host_id": ids["owner"], "start": iso(10), "end": iso(9)},
        )
        assert inverted.status_code == 422

        full = client.post(
            "/bookings/evaluate",
            json={"event_id": ids["demo"], "start": iso(13), "raise_when_full": True},
        )
        assert full.status_code == 409

        def locked_connection():
            raise sqlite3.OperationalError("database is locked")

        monkeypatch.setattr(app.state.repository, "_connect", locked_connection)
        unavailable = client.post(
            "/availability/check",
            json={"host_id": ids["owner"], "start": iso(9), "end": iso(9, 30)},
        )
        assert unavailable.status_code == 503
        assert unavailable.headers["Retry-After"] == "1"


def test_missing_service_returns_503(tmp_path):
    settings = _build_test_settings(tmp_path, "api_missing.db")
    app = create_app(settings=settings, clock=lambda: NOW)
    app.state.round_robin_service = None

    with TestClient(app) as client:
        response = client.get("/round_robin/1/stats")

    assert response.status_code == 503


def test_collective_slots_keep_fixed_stride_for_incremented_event(tmp_path):
    settings = _build_test_settings(tmp_path, "api_collective_stride.db")
    app = create_app(settings=settings, clock=lambda: NOW)
    ids = _seed(app.state.repository)

    with TestClient(app) as client:
        response = client.post(
            "/collective/slots",
            json={
                "host_ids": [ids["owner"], ids["member"]],
                "event_id": ids["intro"],
                "duration_minutes": 30,
                "range_start": iso(0),
                "range_end": iso(23),
            },
        )

    assert response.status_code == 200
    starts = [datetime.fromisoformat(item["start_time"]) for item in response.json()["slots"]]
    assert starts == [datetime.fromisoformat(iso(hour, minute)) for hour in (9, 10, 11) for minute in (0, 30)]


def test_mixed_offset_windows_are_rejected(tmp_path):
    settings = _build_test_settings(tmp_path, "api_mixed_offsets.db")
    app = create_app(settings=settings, clock=lambda: NOW)
    ids = _seed(app.state.repository)
    naive_start = "2026-06-01T10:00:00"
    aware_end = "2026-06-01T10:30:00-04:00"

    with TestClient(app) as client:
        check = client.post(
            "/availability/check",
            json={"host_id": ids["owner"], "start": naive_start, "end": aware_end},
        )
        evaluate = client.post(
            "/bookings/evaluate",
            json={"event_id": ids["intro"], "start": naive_start, "end": aware_end},
        )
        slots = client.post(
            "/availability/slots",
            json={
                "host_id": ids["owner"],
                "duration_minutes": 30,
                "range_start": naive_start,
                "range_end": aware_end,
            },
        )
        naive_pair = client.post(
            "/availability/check",
            json={"host_id": ids["owner"], "start": naive_start, "end": "2026-06-01T10:30:00"},
        )

    assert check.status_code == 422
    assert evaluate.status_code == 422
    assert slots.status_code == 422
    assert naive_pair.status_code == 200
    assert naive_pair.json()["available"] is True
