#!/usr/bin/env python3
"""Validate local booking engine environment readiness."""

from __future__ import annotations

import importlib
import shutil
import sqlite3
import sys
import tempfile
from dataclasses import replace
from datetime import datetime, time, timedelta
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from booking_engine.repository.data_repository import SchedulingRepository
from booking_engine.services.availability_service import AvailabilityService
from booking_engine.utils.config import get_settings
from booking_engine.utils.timeutils import get_zone, sunday_weekday

SEPARATOR_LINE = "=" * 44


def _print_result(name: str, success: bool, detail: str = "") -> tuple[bool, str]:
    if success:
        return True, f"[PASS] {name}{detail}"
    return False, f"[FAIL] {name}: {detail}"


def main() -> int:
    results: list[str] = []
    all_passed = True
    temp_dir = tempfile.mkdtemp(prefix="booking-engine-env-")

    # CHECK 1: Python version >= 3.10
    if sys.version_info >= (3, 10):
        ok, line = _print_result("Python " + sys.version.split()[0], True)
    else:
        ok, line = _print_result(
            "Python version >= 3.10",
            False,
            f"found {sys.version.split()[0]}",
        )
    results.append(line)
    all_passed = all_passed and ok

    # CHECK 2: Required packages importable with versions
    package_specs = [
        ("fastapi", "fastapi"),
        ("uvicorn", "uvicorn"),
        ("pydantic", "pydantic"),
        ("httpx", "httpx"),
        ("pytest", "pytest"),
    ]
    import_errors: list[str] = []
    from importlib.metadata import PackageNotFoundError, version

    for module_name, dist_name in package_specs:
        try:
            importlib.import_module(module_name)
            version(dist_name)
        except (ImportError, PackageNotFoundError) as exc:
            import_errors.append(f"{module_name} ({exc})")
    if import_errors:
        ok, line = _print_result(
            "Required packages",
            False,
            "missing/unimportable -> " + "; ".join(import_errors),
        )
    else:
        ok, line = _print_result("Required packages: all importable", True)
    results.append(line)
    all_passed = all_passed and ok

    try:
        base_settings = get_settings()

        # CHECK 3: Scheduling time zone resolvable
        try:
            zone = get_zone(base_settings.scheduling_timezone)
            ok, line = _print_result("Scheduling timezone", True, f": {zone.key}")
        except Exception as exc:
            zone = None
            ok, line = _print_result("Scheduling timezone", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        temp_db_path = Path(temp_dir) / "booking_engine_validation.db"
        validation_settings = replace(base_settings, database_path=temp_db_path)
        repository = SchedulingRepository(validation_settings)

        # CHECK 4: Database initialization
        try:
            repository.initialize_database()
            ok, line = _print_result("Database initialization", True)
        except Exception as exc:
            ok, line = _print_result("Database initialization", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 5: Demo data seeding
        try:
            repository.seed_demo_data()
            with sqlite3.connect(temp_db_path) as conn:
                cursor = conn.cursor()
                cursor.execute("SELECT COUNT(*) FROM Hosts;")
                host_count = int(cursor.fetchone()[0])
                cursor.execute("SELECT COUNT(*) FROM Events;")
                event_count = int(cursor.fetchone()[0])
            if host_count != 3 or event_count != 3:
                raise RuntimeError(f"expected 3 hosts and 3 events, got {host_count}/{event_count}")
            ok, line = _print_result("Demo data: 3 hosts, 3 events", True)
        except Exception as exc:
            ok, line = _print_result("Demo data", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 6: End-to-end availability check on the next weekday
        if zone is not None:
            try:
                service = AvailabilityService(repository=repository, settings=validation_settings)
                day = datetime.now(zone).date() + timedelta(days=7)
                while sunday_weekday(day) not in range(1, 6):
                    day += timedelta(days=1)
                start = datetime.combine(day, time(14, 0), tzinfo=zone)
                result = service.check_availability(1, start, start + timedelta(minutes=30))
                if not result.available:
                    raise RuntimeError(f"expected availability, got {result.reason}")
                slots = service.list_available_slots(
                    1,
                    30,
                    0,
                    0,
                    datetime.combine(day, time(0, 0), tzinfo=zone),
                    datetime.combine(day + timedelta(days=1), time(0, 0), tzinfo=zone),
                )
                ok, line = _print_result("Availability resolution", True, f": {len(slots)} slots")
            except Exception as exc:
                ok, line = _print_result("Availability resolution", False, str(exc))
            results.append(line)
            all_passed = all_passed and ok

    finally:
        shutil.rmtree(temp_dir, ignore_errors=True)

    print(SEPARATOR_LINE)
    print(" Booking Engine Environment Validation")
    print(SEPARATOR_LINE)
    for line in results:
        print(f" {line}")
    print(SEPARATOR_LINE)
    if all_passed:
        print(" All checks passed. Environment is ready.")
        print(SEPARATOR_LINE)
        return 0
    print(" One or more checks failed.")
    print(SEPARATOR_LINE)
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
