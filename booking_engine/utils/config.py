"""Runtime configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    """Immutable settings snapshot.

    Tests build variants with ``dataclasses.replace`` instead of mutating
    the cached instance.
    """

    app_name: str
    app_version: str
    log_level: str
    database_path: Path
    database_timeout_seconds: float
    scheduling_timezone: str
    slot_stride_minutes: int
    read_fanout_workers: int
    round_robin_max_attempts: int
    default_min_notice_hours: int
    default_booking_window_days: int
    default_host_max_daily: int
    default_host_max_weekly: int
    seed_demo_data: bool


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return process-wide settings, read once from the environment."""
    return Settings(
        app_name=os.getenv("APP_NAME", "Booking Engine"),
        app_version=os.getenv("APP_VERSION", "1.0.0"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        database_path=Path(os.getenv("SCHEDULING_DB_PATH", "data/scheduling.db")),
        database_timeout_seconds=_env_float("DB_TIMEOUT_SECONDS", 5.0),
        scheduling_timezone=os.getenv("SCHEDULING_TIMEZONE", "America/New_York"),
        slot_stride_minutes=_env_int("SLOT_STRIDE_MINUTES", 30),
        read_fanout_workers=_env_int("READ_FANOUT_WORKERS", 4),
        round_robin_max_attempts=_env_int("ROUND_ROBIN_MAX_ATTEMPTS", 3),
        default_min_notice_hours=_env_int("DEFAULT_MIN_NOTICE_HOURS", 24),
        default_booking_window_days=_env_int("DEFAULT_BOOKING_WINDOW_DAYS", 60),
        default_host_max_daily=_env_int("DEFAULT_HOST_MAX_DAILY", 8),
        default_host_max_weekly=_env_int("DEFAULT_HOST_MAX_WEEKLY", 30),
        seed_demo_data=_env_bool("SEED_DEMO_DATA", False),
    )
