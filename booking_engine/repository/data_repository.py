"""Repository layer responsible for all database access."""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from datetime import date, datetime, time, timedelta, timezone
from pathlib import Path
from typing import Iterable, Iterator, Optional, Sequence

from booking_engine.domain.errors import UpstreamUnavailableError
from booking_engine.domain.models import (
    ROTATION_ROLES,
    AvailabilityPattern,
    BusyBlock,
    CompanyHoliday,
    Event,
    EventKind,
    Host,
    HostCaps,
    HostRole,
    Period,
    RoundRobinState,
    Slot,
    Strategy,
)
from booking_engine.utils.config import Settings, get_settings
from booking_engine.utils.logger import get_logger
from booking_engine.utils.timeutils import (
    format_clock,
    from_storage,
    get_zone,
    parse_clock,
    to_storage,
)


logger = get_logger(__name__)

_ROTATION_ROLE_VALUES = tuple(role.value for role in ROTATION_ROLES)

_SLOT_COLUMNS = """
    s.id,
    s.event_id,
    s.assigned_host_id,
    s.start_time,
    s.end_time,
    s.is_cancelled,
    e.buffer_before_minutes,
    e.buffer_after_minutes
"""


def _placeholders(values: Sequence[object]) -> str:
    return ",".join("?" for _ in values)


class SchedulingRepository:
    """Encapsulates SQLite access so the engine stays storage-agnostic.

    Every ``sqlite3.Error`` (lock timeouts included) is re-raised as
    :class:`UpstreamUnavailableError`; no read ever degrades into an empty
    or zero answer.
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._db_path = Path(self._settings.database_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def database_path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        connection = sqlite3.connect(
            self._db_path,
            timeout=self._settings.database_timeout_seconds,
        )
        connection.row_factory = sqlite3.Row
        connection.execute("PRAGMA foreign_keys = ON;")
        return connection

    @contextmanager
    def _session(self, operation: str) -> Iterator[sqlite3.Connection]:
        try:
            connection = self._connect()
        except sqlite3.Error as exc:
            raise UpstreamUnavailableError(f"{operation} failed: {exc}") from exc
        try:
            yield connection
            connection.commit()
        except sqlite3.Error as exc:
            connection.rollback()
            logger.error("Storage operation failed | operation=%s | error=%s", operation, exc)
            raise UpstreamUnavailableError(f"{operation} failed: {exc}") from exc
        finally:
            connection.close()

    def initialize_database(self) -> None:
        """Create all persistence artifacts before API startup."""
        with self._session("initialize_database") as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS Hosts (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    email TEXT NOT NULL UNIQUE,
                    name TEXT NOT NULL,
                    max_meetings_per_day INTEGER CHECK (max_meetings_per_day > 0),
                    max_meetings_per_week INTEGER CHECK (max_meetings_per_week > 0),
                    created_at DATETIME DEFAULT CURRENT_TIMESTAMP
                );

                CREATE TABLE IF NOT EXISTS AvailabilityPatterns (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    host_id INTEGER NOT NULL,
                    day_of_week INTEGER NOT NULL CHECK (day_of_week BETWEEN 0 AND 6),
                    start_time TEXT NOT NULL,
                    end_time TEXT NOT NULL,
                    is_active INTEGER NOT NULL DEFAULT 1 CHECK (is_active IN (0,1)),
                    timezone TEXT,
                    CHECK (start_time < end_time),
                    FOREIGN KEY (host_id) REFERENCES Hosts(id) ON DELETE CASCADE
                );

                CREATE TABLE IF NOT EXISTS BusyBlocks (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    host_id INTEGER NOT NULL,
                    start_time TEXT NOT NULL,
                    end_time TEXT NOT NULL,
                    source TEXT NOT NULL DEFAULT 'manual',
                    synced_at TEXT,
                    CHECK (start_time < end_time),
                    FOREIGN KEY (host_id) REFERENCES Hosts(id) ON DELETE CASCADE
                );

                CREATE TABLE IF NOT EXISTS Events (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    host_email TEXT NOT NULL,
                    kind TEXT NOT NULL DEFAULT 'one_on_one'
                        CHECK (kind IN ('one_on_one', 'round_robin', 'collective')),
                    duration_minutes INTEGER NOT NULL DEFAULT 30 CHECK (duration_minutes > 0),
                    buffer_before_minutes INTEGER NOT NULL DEFAULT 0,
                    buffer_after_minutes INTEGER NOT NULL DEFAULT 0,
                    start_time_increment INTEGER NOT NULL DEFAULT 30
                        CHECK (start_time_increment IN (15, 30, 45, 60)),
                    min_notice_hours INTEGER,
                    booking_window_days INTEGER,
                    max_daily_bookings INTEGER,
                    max_weekly_bookings INTEGER,
                    require_approval INTEGER NOT NULL DEFAULT 0,
                    round_robin_strategy TEXT NOT NULL DEFAULT 'cycle'
                        CHECK (round_robin_strategy IN ('cycle', 'least_bookings', 'availability_weighted')),
                    round_robin_period TEXT NOT NULL DEFAULT 'week'
                        CHECK (round_robin_period IN ('day', 'week', 'month', 'all_time'))
                );

                CREATE TABLE IF NOT EXISTS EventHosts (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    event_id INTEGER NOT NULL,
                    host_id INTEGER NOT NULL,
                    role TEXT NOT NULL DEFAULT 'host' CHECK (role IN ('owner', 'host', 'backup')),
                    created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                    UNIQUE (event_id, host_id),
                    FOREIGN KEY (event_id) REFERENCES Events(id) ON DELETE CASCADE,
                    FOREIGN KEY (host_id) REFERENCES Hosts(id) ON DELETE CASCADE
                );

                CREATE TABLE IF NOT EXISTS Slots (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    event_id INTEGER NOT NULL,
                    assigned_host_id INTEGER,
                    start_time TEXT NOT NULL,
                    end_time TEXT NOT NULL,
                    is_cancelled INTEGER NOT NULL DEFAULT 0 CHECK (is_cancelled IN (0,1)),
                    CHECK (start_time < end_time),
                    FOREIGN KEY (event_id) REFERENCES Events(id) ON DELETE CASCADE,
                    FOREIGN KEY (assigned_host_id) REFERENCES Hosts(id)
                );

                CREATE TABLE IF NOT EXISTS Bookings (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    slot_id INTEGER NOT NULL,
                    email TEXT NOT NULL,
                    cancelled_at TEXT,
                    created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                    FOREIGN KEY (slot_id) REFERENCES Slots(id) ON DELETE CASCADE
                );

                CREATE TABLE IF NOT EXISTS RoundRobinState (
                    event_id INTEGER PRIMARY KEY,
                    last_assigned_host_id INTEGER,
                    last_assigned_at TEXT,
                    assignment_count INTEGER NOT NULL DEFAULT 0,
                    version INTEGER NOT NULL DEFAULT 0,
                    FOREIGN KEY (event_id) REFERENCES Events(id) ON DELETE CASCADE,
                    FOREIGN KEY (last_assigned_host_id) REFERENCES Hosts(id)
                );

                CREATE TABLE IF NOT EXISTS CompanyHolidays (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    holiday_date TEXT NOT NULL UNIQUE,
                    name TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_patterns_host_day
                ON AvailabilityPatterns(host_id, day_of_week);

                CREATE INDEX IF NOT EXISTS idx_busy_blocks_host_range
                ON BusyBlocks(host_id, start_time, end_time);

                CREATE INDEX IF NOT EXISTS idx_slots_event_start
                ON Slots(event_id, start_time);

                CREATE INDEX IF NOT EXISTS idx_slots_assigned_host_start
                ON Slots(assigned_host_id, start_time);

                CREATE INDEX IF NOT EXISTS idx_bookings_slot
                ON Bookings(slot_id);
                """
            )
        logger.info("Database initialized at %s", self._db_path)

    # --- Hosts -----------------------------------------------------------

    @staticmethod
    def _row_to_host(row: sqlite3.Row) -> Host:
        return Host(
            host_id=int(row["id"]),
            email=str(row["email"]),
            name=str(row["name"]),
            max_meetings_per_day=(
                int(row["max_meetings_per_day"])
                if row["max_meetings_per_day"] is not None
                else None
            ),
            max_meetings_per_week=(
                int(row["max_meetings_per_week"])
                if row["max_meetings_per_week"] is not None
                else None
            ),
        )

    def create_host(
        self,
        email: str,
        name: str,
        max_meetings_per_day: Optional[int] = None,
        max_meetings_per_week: Optional[int] = None,
    ) -> int:
        with self._session("create_host") as conn:
            cursor = conn.execute(
                """
                INSERT INTO Hosts (email, name, max_meetings_per_day, max_meetings_per_week)
                VALUES (?, ?, ?, ?);
                """,
                (email, name, max_meetings_per_day, max_meetings_per_week),
            )
            return int(cursor.lastrowid)

    def get_host(self, host_id: int) -> Optional[Host]:
        with self._session("get_host") as conn:
            row = conn.execute("SELECT * FROM Hosts WHERE id = ?;", (host_id,)).fetchone()
            return self._row_to_host(row) if row is not None else None

    def get_host_by_email(self, email: str) -> Optional[Host]:
        with self._session("get_host_by_email") as conn:
            row = conn.execute(
                "SELECT * FROM Hosts WHERE lower(email) = lower(?);",
                (email,),
            ).fetchone()
            return self._row_to_host(row) if row is not None else None

    def get_hosts(self, host_ids: Sequence[int]) -> dict[int, Host]:
        if not host_ids:
            return {}
        with self._session("get_hosts") as conn:
            rows = conn.execute(
                f"SELECT * FROM Hosts WHERE id IN ({_placeholders(host_ids)});",
                tuple(host_ids),
            ).fetchall()
            return {int(row["id"]): self._row_to_host(row) for row in rows}

    def get_host_caps(self, host_id: int) -> Optional[HostCaps]:
        """Personal caps with configured defaults; ``None`` for unknown hosts."""
        host = self.get_host(host_id)
        if host is None:
            return None
        return HostCaps(
            max_daily=host.max_meetings_per_day or self._settings.default_host_max_daily,
            max_weekly=host.max_meetings_per_week or self._settings.default_host_max_weekly,
        )

    # --- Availability patterns ------------------------------------------

    def create_pattern(
        self,
        host_id: int,
        day_of_week: int,
        start_time: time,
        end_time: time,
        is_active: bool = True,
        timezone_name: Optional[str] = None,
    ) -> int:
        with self._session("create_pattern") as conn:
            cursor = conn.execute(
                """
                INSERT INTO AvailabilityPatterns (
                    host_id, day_of_week, start_time, end_time, is_active, timezone
                )
                VALUES (?, ?, ?, ?, ?, ?);
                """,
                (
                    host_id,
                    day_of_week,
                    format_clock(start_time),
                    format_clock(end_time),
                    int(is_active),
                    timezone_name,
                ),
            )
            return int(cursor.lastrowid)

    @staticmethod
    def _row_to_pattern(row: sqlite3.Row) -> AvailabilityPattern:
        return AvailabilityPattern(
            pattern_id=int(row["id"]),
            host_id=int(row["host_id"]),
            day_of_week=int(row["day_of_week"]),
            start_time=parse_clock(str(row["start_time"])),
            end_time=parse_clock(str(row["end_time"])),
            is_active=bool(row["is_active"]),
            timezone=row["timezone"],
        )

    def get_patterns(self, host_id: int) -> list[AvailabilityPattern]:
        """Return active patterns for a host ordered by weekday and start."""
        with self._session("get_patterns") as conn:
            rows = conn.execute(
                """
                SELECT * FROM AvailabilityPatterns
                WHERE host_id = ? AND is_active = 1
                ORDER BY day_of_week ASC, start_time ASC, id ASC;
                """,
                (host_id,),
            ).fetchall()
            return [self._row_to_pattern(row) for row in rows]

    def get_patterns_for_hosts(self, host_ids: Sequence[int]) -> dict[int, list[AvailabilityPattern]]:
        patterns: dict[int, list[AvailabilityPattern]] = {host_id: [] for host_id in host_ids}
        if not host_ids:
            return patterns
        with self._session("get_patterns_for_hosts") as conn:
            rows = conn.execute(
                f"""
                SELECT * FROM AvailabilityPatterns
                WHERE host_id IN ({_placeholders(host_ids)}) AND is_active = 1
                ORDER BY host_id ASC, day_of_week ASC, start_time ASC, id ASC;
                """,
                tuple(host_ids),
            ).fetchall()
        for row in rows:
            pattern = self._row_to_pattern(row)
            patterns[pattern.host_id].append(pattern)
        return patterns

    # --- Busy blocks -----------------------------------------------------

    def create_busy_block(
        self,
        host_id: int,
        start_time: datetime,
        end_time: datetime,
        source: str = "manual",
    ) -> int:
        with self._session("create_busy_block") as conn:
            cursor = conn.execute(
                """
                INSERT INTO BusyBlocks (host_id, start_time, end_time, source)
                VALUES (?, ?, ?, ?);
                """,
                (host_id, to_storage(start_time), to_storage(end_time), source),
            )
            return int(cursor.lastrowid)

    def replace_busy_blocks(
        self,
        host_id: int,
        range_start: datetime,
        range_end: datetime,
        blocks: Iterable[tuple[datetime, datetime]],
        source: str = "google_calendar",
    ) -> int:
        """Swap a host's synced blocks inside a range for a fresh calendar read."""
        synced_at = to_storage(datetime.now(timezone.utc))
        rows = [
            (host_id, to_storage(start), to_storage(end), source, synced_at)
            for start, end in blocks
        ]
        with self._session("replace_busy_blocks") as conn:
            conn.execute(
                """
                DELETE FROM BusyBlocks
                WHERE host_id = ?
                  AND source = ?
                  AND start_time >= ?
                  AND end_time <= ?;
                """,
                (host_id, source, to_storage(range_start), to_storage(range_end)),
            )
            conn.executemany(
                """
                INSERT INTO BusyBlocks (host_id, start_time, end_time, source, synced_at)
                VALUES (?, ?, ?, ?, ?);
                """,
                rows,
            )
        logger.info(
            "Busy blocks replaced | host_id=%s | source=%s | count=%s",
            host_id,
            source,
            len(rows),
        )
        return len(rows)

    def get_busy_blocks(
        self,
        host_id: int,
        range_start: datetime,
        range_end: datetime,
    ) -> list[BusyBlock]:
        """Return blocks overlapping ``[range_start, range_end)``."""
        with self._session("get_busy_blocks") as conn:
            rows = conn.execute(
                """
                SELECT id, host_id, start_time, end_time, source
                FROM BusyBlocks
                WHERE host_id = ?
                  AND start_time < ?
                  AND end_time > ?
                ORDER BY start_time ASC, id ASC;
                """,
                (host_id, to_storage(range_end), to_storage(range_start)),
            ).fetchall()
            return [
                BusyBlock(
                    block_id=int(row["id"]),
                    host_id=int(row["host_id"]),
                    start_time=from_storage(str(row["start_time"])),
                    end_time=from_storage(str(row["end_time"])),
                    source=str(row["source"]),
                )
                for row in rows
            ]

    # --- Events ----------------------------------------------------------

    def create_event(
        self,
        name: str,
        host_email: str,
        kind: EventKind = EventKind.ONE_ON_ONE,
        duration_minutes: int = 30,
        buffer_before_minutes: int = 0,
        buffer_after_minutes: int = 0,
        start_time_increment: int = 30,
        min_notice_hours: Optional[int] = None,
        booking_window_days: Optional[int] = None,
        max_daily_bookings: Optional[int] = None,
        max_weekly_bookings: Optional[int] = None,
        require_approval: bool = False,
        strategy: Strategy = Strategy.CYCLE,
        period: Period = Period.WEEK,
    ) -> int:
        with self._session("create_event") as conn:
            cursor = conn.execute(
                """
                INSERT INTO Events (
                    name,
                    host_email,
                    kind,
                    duration_minutes,
                    buffer_before_minutes,
                    buffer_after_minutes,
                    start_time_increment,
                    min_notice_hours,
                    booking_window_days,
                    max_daily_bookings,
                    max_weekly_bookings,
                    require_approval,
                    round_robin_strategy,
                    round_robin_period
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
                """,
                (
                    name,
                    host_email,
                    EventKind(kind).value,
                    duration_minutes,
                    buffer_before_minutes,
                    buffer_after_minutes,
                    start_time_increment,
                    min_notice_hours,
                    booking_window_days,
                    max_daily_bookings,
                    max_weekly_bookings,
                    int(require_approval),
                    Strategy(strategy).value,
                    Period(period).value,
                ),
            )
            return int(cursor.lastrowid)

    def get_event(self, event_id: int) -> Optional[Event]:
        with self._session("get_event") as conn:
            row = conn.execute("SELECT * FROM Events WHERE id = ?;", (event_id,)).fetchone()
        if row is None:
            return None
        return Event(
            event_id=int(row["id"]),
            name=str(row["name"]),
            host_email=str(row["host_email"]),
            kind=EventKind(row["kind"]),
            duration_minutes=int(row["duration_minutes"]),
            buffer_before_minutes=int(row["buffer_before_minutes"]),
            buffer_after_minutes=int(row["buffer_after_minutes"]),
            start_time_increment=int(row["start_time_increment"]),
            min_notice_hours=row["min_notice_hours"],
            booking_window_days=row["booking_window_days"],
            max_daily_bookings=row["max_daily_bookings"],
            max_weekly_bookings=row["max_weekly_bookings"],
            require_approval=bool(row["require_approval"]),
            strategy=Strategy(row["round_robin_strategy"]),
            period=Period(row["round_robin_period"]),
        )

    def add_event_host(
        self,
        event_id: int,
        host_id: int,
        role: HostRole = HostRole.HOST,
    ) -> int:
        with self._session("add_event_host") as conn:
            cursor = conn.execute(
                """
                INSERT INTO EventHosts (event_id, host_id, role)
                VALUES (?, ?, ?);
                """,
                (event_id, host_id, HostRole(role).value),
            )
            return int(cursor.lastrowid)

    def list_participating_hosts(self, event_id: int) -> list[int]:
        """Owner/host members in join order; backups never rotate."""
        with self._session("list_participating_hosts") as conn:
            rows = conn.execute(
                f"""
                SELECT host_id
                FROM EventHosts
                WHERE event_id = ?
                  AND role IN ({_placeholders(_ROTATION_ROLE_VALUES)})
                ORDER BY created_at ASC, id ASC;
                """,
                (event_id, *_ROTATION_ROLE_VALUES),
            ).fetchall()
            return [int(row["host_id"]) for row in rows]

    # --- Slots and bookings ---------------------------------------------

    def create_slot(
        self,
        event_id: int,
        start_time: datetime,
        end_time: datetime,
        assigned_host_id: Optional[int] = None,
    ) -> int:
        with self._session("create_slot") as conn:
            cursor = conn.execute(
                """
                INSERT INTO Slots (event_id, assigned_host_id, start_time, end_time)
                VALUES (?, ?, ?, ?);
                """,
                (event_id, assigned_host_id, to_storage(start_time), to_storage(end_time)),
            )
            return int(cursor.lastrowid)

    def cancel_slot(self, slot_id: int) -> None:
        with self._session("cancel_slot") as conn:
            conn.execute("UPDATE Slots SET is_cancelled = 1 WHERE id = ?;", (slot_id,))

    def get_slots(
        self,
        range_start: datetime,
        range_end: datetime,
        host_id: Optional[int] = None,
        event_id: Optional[int] = None,
    ) -> list[Slot]:
        """Return non-cancelled slots overlapping the range.

        A slot occupies a host when it is assigned to them, or when it is
        unassigned and the host owns or participates in the slot's event.
        """
        clauses = ["s.is_cancelled = 0", "s.start_time < ?", "s.end_time > ?"]
        params: list[object] = [to_storage(range_end), to_storage(range_start)]
        if event_id is not None:
            clauses.append("s.event_id = ?")
            params.append(event_id)
        if host_id is not None:
            clauses.append(
                f"""
                (
                    s.assigned_host_id = ?
                    OR (
                        s.assigned_host_id IS NULL
                        AND (
                            lower(e.host_email) = (SELECT lower(email) FROM Hosts WHERE id = ?)
                            OR EXISTS (
                                SELECT 1 FROM EventHosts AS eh
                                WHERE eh.event_id = s.event_id
                                  AND eh.host_id = ?
                                  AND eh.role IN ({_placeholders(_ROTATION_ROLE_VALUES)})
                            )
                        )
                    )
                )
                """
            )
            params.extend([host_id, host_id, host_id, *_ROTATION_ROLE_VALUES])

        with self._session("get_slots") as conn:
            rows = conn.execute(
                f"""
                SELECT {_SLOT_COLUMNS}
                FROM Slots AS s
                INNER JOIN Events AS e ON e.id = s.event_id
                WHERE {" AND ".join(clauses)}
                ORDER BY s.start_time ASC, s.id ASC;
                """,
                tuple(params),
            ).fetchall()
            return [
                Slot(
                    slot_id=int(row["id"]),
                    event_id=int(row["event_id"]),
                    start_time=from_storage(str(row["start_time"])),
                    end_time=from_storage(str(row["end_time"])),
                    assigned_host_id=(
                        int(row["assigned_host_id"])
                        if row["assigned_host_id"] is not None
                        else None
                    ),
                    is_cancelled=bool(row["is_cancelled"]),
                    buffer_before_minutes=int(row["buffer_before_minutes"]),
                    buffer_after_minutes=int(row["buffer_after_minutes"]),
                )
                for row in rows
            ]

    def create_booking(self, slot_id: int, email: str) -> int:
        with self._session("create_booking") as conn:
            cursor = conn.execute(
                "INSERT INTO Bookings (slot_id, email) VALUES (?, ?);",
                (slot_id, email),
            )
            return int(cursor.lastrowid)

    def cancel_booking(self, booking_id: int, cancelled_at: Optional[datetime] = None) -> None:
        stamp = to_storage(cancelled_at or datetime.now(timezone.utc))
        with self._session("cancel_booking") as conn:
            conn.execute(
                "UPDATE Bookings SET cancelled_at = ? WHERE id = ? AND cancelled_at IS NULL;",
                (stamp, booking_id),
            )

    def count_bookings(
        self,
        period_start: datetime,
        period_end: datetime,
        event_id: Optional[int] = None,
        host_id: Optional[int] = None,
    ) -> int:
        """Count live bookings whose slot starts in ``[period_start, period_end)``."""
        if event_id is None and host_id is None:
            raise ValueError("count_bookings requires event_id or host_id")
        clauses = ["b.cancelled_at IS NULL", "s.start_time >= ?", "s.start_time < ?"]
        params: list[object] = [to_storage(period_start), to_storage(period_end)]
        if event_id is not None:
            clauses.append("s.event_id = ?")
            params.append(event_id)
        if host_id is not None:
            clauses.append("s.assigned_host_id = ?")
            params.append(host_id)
        with self._session("count_bookings") as conn:
            row = conn.execute(
                f"""
                SELECT COUNT(*) AS count
                FROM Bookings AS b
                INNER JOIN Slots AS s ON s.id = b.slot_id
                WHERE {" AND ".join(clauses)};
                """,
                tuple(params),
            ).fetchone()
            return int(row["count"])

    def count_bookings_by_host(
        self,
        host_ids: Sequence[int],
        period_start: datetime,
        period_end: datetime,
    ) -> dict[int, int]:
        counts = {host_id: 0 for host_id in host_ids}
        if not host_ids:
            return counts
        with self._session("count_bookings_by_host") as conn:
            rows = conn.execute(
                f"""
                SELECT s.assigned_host_id AS host_id, COUNT(*) AS count
                FROM Bookings AS b
                INNER JOIN Slots AS s ON s.id = b.slot_id
                WHERE b.cancelled_at IS NULL
                  AND s.assigned_host_id IN ({_placeholders(host_ids)})
                  AND s.start_time >= ?
                  AND s.start_time < ?
                GROUP BY s.assigned_host_id;
                """,
                (*host_ids, to_storage(period_start), to_storage(period_end)),
            ).fetchall()
        for row in rows:
            counts[int(row["host_id"])] = int(row["count"])
        return counts

    def count_host_slots(
        self,
        host_email: str,
        period_start: datetime,
        period_end: datetime,
    ) -> int:
        """Count a host's live slots across every event they own or are assigned."""
        with self._session("count_host_slots") as conn:
            row = conn.execute(
                """
                SELECT COUNT(*) AS count
                FROM Slots AS s
                INNER JOIN Events AS e ON e.id = s.event_id
                LEFT JOIN Hosts AS h ON h.id = s.assigned_host_id
                WHERE s.is_cancelled = 0
                  AND s.start_time >= ?
                  AND s.start_time < ?
                  AND (
                      lower(h.email) = lower(?)
                      OR (s.assigned_host_id IS NULL AND lower(e.host_email) = lower(?))
                  );
                """,
                (to_storage(period_start), to_storage(period_end), host_email, host_email),
            ).fetchone()
            return int(row["count"])

    # --- Round-robin state ----------------------------------------------

    def get_round_robin_state(self, event_id: int) -> Optional[RoundRobinState]:
        with self._session("get_round_robin_state") as conn:
            row = conn.execute(
                "SELECT * FROM RoundRobinState WHERE event_id = ?;",
                (event_id,),
            ).fetchone()
        if row is None:
            return None
        return RoundRobinState(
            event_id=int(row["event_id"]),
            last_assigned_host_id=(
                int(row["last_assigned_host_id"])
                if row["last_assigned_host_id"] is not None
                else None
            ),
            last_assigned_at=(
                from_storage(str(row["last_assigned_at"]))
                if row["last_assigned_at"] is not None
                else None
            ),
            assignment_count=int(row["assignment_count"]),
            version=int(row["version"]),
        )

    def compare_and_set_round_robin_state(
        self,
        event_id: int,
        host_id: int,
        expected_version: Optional[int],
        assigned_at: Optional[datetime] = None,
    ) -> bool:
        """Record an assignment only if the row is still at ``expected_version``.

        ``expected_version=None`` means the caller saw no row; the insert then
        loses to any writer that created the row first. Returns ``False`` on a
        lost race so the caller can re-read and re-select.
        """
        stamp = to_storage(assigned_at or datetime.now(timezone.utc))
        with self._session("compare_and_set_round_robin_state") as conn:
            if expected_version is None:
                cursor = conn.execute(
                    """
                    INSERT INTO RoundRobinState (
                        event_id, last_assigned_host_id, last_assigned_at, assignment_count, version
                    )
                    VALUES (?, ?, ?, 1, 1)
                    ON CONFLICT(event_id) DO NOTHING;
                    """,
                    (event_id, host_id, stamp),
                )
            else:
                cursor = conn.execute(
                    """
                    UPDATE RoundRobinState
                    SET last_assigned_host_id = ?,
                        last_assigned_at = ?,
                        assignment_count = assignment_count + 1,
                        version = version + 1
                    WHERE event_id = ? AND version = ?;
                    """,
                    (host_id, stamp, event_id, expected_version),
                )
            return cursor.rowcount == 1

    # --- Company holidays -----------------------------------------------

    def create_company_holiday(self, holiday_date: date, name: str) -> int:
        with self._session("create_company_holiday") as conn:
            cursor = conn.execute(
                "INSERT INTO CompanyHolidays (holiday_date, name) VALUES (?, ?);",
                (holiday_date.isoformat(), name),
            )
            return int(cursor.lastrowid)

    def get_company_holiday(self, holiday_date: date) -> Optional[CompanyHoliday]:
        with self._session("get_company_holiday") as conn:
            row = conn.execute(
                "SELECT holiday_date, name FROM CompanyHolidays WHERE holiday_date = ?;",
                (holiday_date.isoformat(),),
            ).fetchone()
        if row is None:
            return None
        return CompanyHoliday(
            holiday_date=date.fromisoformat(str(row["holiday_date"])),
            name=str(row["name"]),
        )

    def list_company_holidays(self, start_date: date, end_date: date) -> list[CompanyHoliday]:
        """Holidays with ``start_date <= date <= end_date``."""
        with self._session("list_company_holidays") as conn:
            rows = conn.execute(
                """
                SELECT holiday_date, name
                FROM CompanyHolidays
                WHERE holiday_date >= ? AND holiday_date <= ?
                ORDER BY holiday_date ASC;
                """,
                (start_date.isoformat(), end_date.isoformat()),
            ).fetchall()
            return [
                CompanyHoliday(
                    holiday_date=date.fromisoformat(str(row["holiday_date"])),
                    name=str(row["name"]),
                )
                for row in rows
            ]

    # --- Demo data -------------------------------------------------------

    def seed_demo_data(self) -> None:
        """Seed a small demo team only when no hosts exist yet."""
        with self._session("seed_demo_data") as conn:
            row = conn.execute("SELECT COUNT(*) AS count FROM Hosts;").fetchone()
            if int(row["count"]) > 0:
                logger.info("Demo data already present; skipping seed")
                return

        hosts = [
            ("avery@example.com", "Avery Stone", 8, 30),
            ("blake@example.com", "Blake Ortiz", 6, 20),
            ("casey@example.com", "Casey Nguyen", None, None),
        ]
        host_ids = [self.create_host(*host) for host in hosts]
        for host_id in host_ids:
            for day_of_week in range(1, 6):
                self.create_pattern(host_id, day_of_week, time(9, 0), time(12, 0))
                self.create_pattern(host_id, day_of_week, time(13, 0), time(17, 0))

        owner_email = hosts[0][0]
        self.create_event("Intro call", owner_email, duration_minutes=30, buffer_after_minutes=10)
        round_robin_id = self.create_event(
            "Sales demo",
            owner_email,
            kind=EventKind.ROUND_ROBIN,
            duration_minutes=45,
            strategy=Strategy.LEAST_BOOKINGS,
            period=Period.WEEK,
        )
        collective_id = self.create_event(
            "Panel interview",
            owner_email,
            kind=EventKind.COLLECTIVE,
            duration_minutes=60,
            max_daily_bookings=2,
        )
        self.add_event_host(round_robin_id, host_ids[0], HostRole.OWNER)
        for host_id in host_ids[1:]:
            self.add_event_host(round_robin_id, host_id, HostRole.HOST)
        self.add_event_host(collective_id, host_ids[0], HostRole.OWNER)
        self.add_event_host(collective_id, host_ids[1], HostRole.HOST)

        zone = get_zone(self._settings.scheduling_timezone)
        tomorrow = datetime.now(zone).date() + timedelta(days=1)
        busy_start = datetime.combine(tomorrow, time(10, 0), tzinfo=zone)
        self.create_busy_block(host_ids[1], busy_start, busy_start + timedelta(hours=1), "google_calendar")
        logger.info("Demo data seeded | hosts=%s", len(host_ids))
