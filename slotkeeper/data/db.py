"""
Slotkeeper — SQLite stores.

ConnectionDB holds each host's linked calendars and enforces the
connection invariants at the mutation boundary. SchedulingDB holds hosts,
availability rules, event types and bookings.

Instants are stored as UTC ISO-8601 strings with a fixed microsecond
format so lexicographic order matches chronological order.
"""

from __future__ import annotations

import abc
import json
import logging
import sqlite3
import uuid
from collections import Counter
from datetime import date, datetime, timezone
from pathlib import Path
from zoneinfo import ZoneInfo

from slotkeeper.core.timeutil import get_zone
from slotkeeper.data.models import (
    BLOCKING_STATUSES,
    AvailabilityRule,
    Booking,
    BookingStatus,
    CalendarConnection,
    CalendarProvider,
    EventType,
    Host,
)
from slotkeeper.ports.store_port import NotFound, ValidationError

logger = logging.getLogger(__name__)


def _to_iso(dt: datetime) -> str:
    if dt.tzinfo is None:
        raise ValueError(f"naive datetime not allowed: {dt!r}")
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _from_iso(value: str | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromisoformat(value)


def _blocking_placeholders() -> tuple[str, list[str]]:
    statuses = [s.value for s in BLOCKING_STATUSES]
    return ", ".join("?" for _ in statuses), statuses


class _SQLiteStore(abc.ABC):
    """Shared connection handling for the SQLite-backed stores."""

    def __init__(self, db_path: str | None = None) -> None:
        if db_path is None:
            from slotkeeper.config import settings
            db_path = settings.DATABASE_PATH

        self._db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    @abc.abstractmethod
    def _init_db(self) -> None:
        """Create the store's tables if they do not exist."""


class ConnectionDB(_SQLiteStore):
    """SQLite-backed storage for calendar connections."""

    def __init__(
        self, db_path: str | None = None, max_connections: int | None = None,
    ) -> None:
        if max_connections is None:
            from slotkeeper.config import settings
            max_connections = settings.MAX_CALENDAR_CONNECTIONS
        self._max_connections = max_connections
        super().__init__(db_path)

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS calendar_connections (
                    id              TEXT    PRIMARY KEY,
                    host_id         TEXT    NOT NULL,
                    provider        TEXT    NOT NULL,
                    access_token    TEXT    NOT NULL,
                    refresh_token   TEXT,
                    expires_at      TEXT,
                    email           TEXT    NOT NULL,
                    is_primary      INTEGER NOT NULL DEFAULT 0,
                    check_conflicts INTEGER NOT NULL DEFAULT 1,
                    label           TEXT,
                    created_at      TEXT    NOT NULL,
                    UNIQUE (host_id, provider, email)
                )
            """)
        logger.debug("Calendar connections table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_connection(row: sqlite3.Row) -> CalendarConnection:
        return CalendarConnection(
            id=row["id"],
            host_id=row["host_id"],
            provider=CalendarProvider(row["provider"]),
            access_token=row["access_token"],
            refresh_token=row["refresh_token"],
            expires_at=_from_iso(row["expires_at"]),
            email=row["email"],
            is_primary=bool(row["is_primary"]),
            check_conflicts=bool(row["check_conflicts"]),
            label=row["label"],
            created_at=_from_iso(row["created_at"]),
        )

    def list_connections(
        self, host_id: str, check_conflicts: bool | None = None,
    ) -> list[CalendarConnection]:
        """Return a host's connections, oldest first, optionally filtered."""
        query = "SELECT * FROM calendar_connections WHERE host_id = ?"
        params: list = [host_id]
        if check_conflicts is not None:
            query += " AND check_conflicts = ?"
            params.append(int(check_conflicts))
        query += " ORDER BY created_at, rowid"

        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_connection(r) for r in rows]

    def get_connection(self, connection_id: str) -> CalendarConnection | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM calendar_connections WHERE id = ?", (connection_id,)
            ).fetchone()
        if row is None:
            return None
        return self._row_to_connection(row)

    def count_connections(self, host_id: str) -> int:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT COUNT(*) FROM calendar_connections WHERE host_id = ?",
                (host_id,),
            ).fetchone()
        return row[0]

    def upsert_connection(
        self,
        host_id: str,
        provider: CalendarProvider | str,
        email: str,
        access_token: str,
        refresh_token: str | None = None,
        expires_at: datetime | None = None,
        label: str | None = None,
    ) -> CalendarConnection:
        """Create a connection, or refresh the credentials of an existing one.

        Connections are keyed by (host, provider, email). A host's first
        connection becomes primary; a new connection beyond the limit raises
        ValidationError.
        """
        provider = CalendarProvider(provider)
        expires_iso = _to_iso(expires_at) if expires_at is not None else None

        with self._connect() as conn:
            existing = conn.execute(
                """
                SELECT id FROM calendar_connections
                WHERE host_id = ? AND provider = ? AND email = ?
                """,
                (host_id, provider.value, email),
            ).fetchone()

            if existing is not None:
                connection_id = existing["id"]
                conn.execute(
                    """
                    UPDATE calendar_connections
                    SET access_token = ?,
                        refresh_token = COALESCE(?, refresh_token),
                        expires_at = ?
                    WHERE id = ?
                    """,
                    (access_token, refresh_token, expires_iso, connection_id),
                )
                logger.info(
                    "Calendar connection %s credentials updated (%s <%s>)",
                    connection_id, provider.value, email,
                )
            else:
                count = conn.execute(
                    "SELECT COUNT(*) FROM calendar_connections WHERE host_id = ?",
                    (host_id,),
                ).fetchone()[0]
                if count >= self._max_connections:
                    raise ValidationError(
                        f"A host can connect at most {self._max_connections} calendars."
                    )

                connection_id = uuid.uuid4().hex
                conn.execute(
                    """
                    INSERT INTO calendar_connections
                        (id, host_id, provider, access_token, refresh_token,
                         expires_at, email, is_primary, check_conflicts,
                         label, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, 1, ?, ?)
                    """,
                    (
                        connection_id, host_id, provider.value, access_token,
                        refresh_token, expires_iso, email, int(count == 0),
                        label, _to_iso(datetime.now(timezone.utc)),
                    ),
                )
                logger.info(
                    "Calendar connection %s created for host %s (%s <%s>)",
                    connection_id, host_id, provider.value, email,
                )

        return self.get_connection(connection_id)

    def update_connection_tokens(
        self,
        connection_id: str,
        access_token: str,
        expires_at: datetime,
        refresh_token: str | None = None,
    ) -> None:
        """Persist refreshed credentials. Last write wins."""
        with self._connect() as conn:
            conn.execute(
                """
                UPDATE calendar_connections
                SET access_token = ?,
                    expires_at = ?,
                    refresh_token = COALESCE(?, refresh_token)
                WHERE id = ?
                """,
                (access_token, _to_iso(expires_at), refresh_token, connection_id),
            )
        logger.info("Tokens refreshed for calendar connection %s", connection_id)

    def update_settings(
        self,
        connection_id: str,
        label: str | None = None,
        check_conflicts: bool | None = None,
        is_primary: bool | None = None,
    ) -> CalendarConnection:
        """Update label / conflict checking / primary status of a connection.

        Raises:
            NotFound: the connection does not exist.
            ValidationError: the change would leave the host without a
                conflict-checked calendar or without a primary calendar.
        """
        connection = self.get_connection(connection_id)
        if connection is None:
            raise NotFound(f"Calendar connection {connection_id} not found")

        with self._connect() as conn:
            if check_conflicts is False:
                others = conn.execute(
                    """
                    SELECT COUNT(*) FROM calendar_connections
                    WHERE host_id = ? AND id != ? AND check_conflicts = 1
                    """,
                    (connection.host_id, connection_id),
                ).fetchone()[0]
                if others == 0:
                    raise ValidationError(
                        "Cannot disable conflict checking on the only calendar "
                        "with it enabled. At least one calendar must check for "
                        "conflicts."
                    )

            if is_primary is False and connection.is_primary:
                raise ValidationError(
                    "Cannot unset the primary calendar. Make another calendar "
                    "primary instead."
                )

            if is_primary:
                conn.execute(
                    "UPDATE calendar_connections SET is_primary = 0 WHERE host_id = ?",
                    (connection.host_id,),
                )

            assignments: list[str] = []
            params: list = []
            if label is not None:
                assignments.append("label = ?")
                params.append(label)
            if check_conflicts is not None:
                assignments.append("check_conflicts = ?")
                params.append(int(check_conflicts))
            if is_primary is not None:
                assignments.append("is_primary = ?")
                params.append(int(is_primary))

            if assignments:
                params.append(connection_id)
                conn.execute(
                    f"UPDATE calendar_connections SET {', '.join(assignments)} WHERE id = ?",
                    params,
                )

        logger.info(
            "Calendar connection %s settings updated (label=%r, check_conflicts=%s, is_primary=%s)",
            connection_id, label, check_conflicts, is_primary,
        )
        return self.get_connection(connection_id)

    def delete_connection(self, connection_id: str) -> CalendarConnection:
        """Disconnect a calendar, promoting the oldest remaining one if needed.

        Raises:
            NotFound: the connection does not exist.
            ValidationError: it is the host's only connection.
        """
        connection = self.get_connection(connection_id)
        if connection is None:
            raise NotFound(f"Calendar connection {connection_id} not found")

        with self._connect() as conn:
            total = conn.execute(
                "SELECT COUNT(*) FROM calendar_connections WHERE host_id = ?",
                (connection.host_id,),
            ).fetchone()[0]
            if total <= 1:
                raise ValidationError(
                    "Cannot disconnect the last calendar. You must have at "
                    "least one connected calendar."
                )

            conn.execute(
                "DELETE FROM calendar_connections WHERE id = ?", (connection_id,)
            )

            if connection.is_primary:
                next_primary = conn.execute(
                    """
                    SELECT id FROM calendar_connections
                    WHERE host_id = ?
                    ORDER BY created_at, rowid
                    LIMIT 1
                    """,
                    (connection.host_id,),
                ).fetchone()
                conn.execute(
                    "UPDATE calendar_connections SET is_primary = 1 WHERE id = ?",
                    (next_primary["id"],),
                )
                logger.info(
                    "Calendar connection %s promoted to primary for host %s",
                    next_primary["id"], connection.host_id,
                )

        logger.info("Calendar connection %s deleted", connection_id)
        return connection


class SchedulingDB(_SQLiteStore):
    """SQLite-backed storage for hosts, rules, event types and bookings."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS hosts (
                    id           TEXT PRIMARY KEY,
                    display_name TEXT NOT NULL,
                    timezone     TEXT NOT NULL DEFAULT 'UTC'
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS availability_rules (
                    id          INTEGER PRIMARY KEY AUTOINCREMENT,
                    host_id     TEXT    NOT NULL,
                    day_of_week INTEGER,
                    date        TEXT,
                    start_time  TEXT    NOT NULL,
                    end_time    TEXT    NOT NULL,
                    enabled     INTEGER NOT NULL DEFAULT 1
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS event_types (
                    id                 TEXT    PRIMARY KEY,
                    host_id            TEXT    NOT NULL,
                    title              TEXT    NOT NULL DEFAULT '',
                    duration_minutes   INTEGER NOT NULL,
                    buffer_before      INTEGER NOT NULL DEFAULT 0,
                    buffer_after       INTEGER NOT NULL DEFAULT 0,
                    min_notice_minutes INTEGER NOT NULL DEFAULT 0,
                    max_future_days    INTEGER NOT NULL DEFAULT 60,
                    daily_limit        INTEGER,
                    weekly_limit       INTEGER,
                    location_kind      TEXT    NOT NULL DEFAULT 'video',
                    is_collective      INTEGER NOT NULL DEFAULT 0,
                    collective_members TEXT    NOT NULL DEFAULT '[]',
                    active             INTEGER NOT NULL DEFAULT 1
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS bookings (
                    id            INTEGER PRIMARY KEY AUTOINCREMENT,
                    host_id       TEXT NOT NULL,
                    event_type_id TEXT NOT NULL,
                    start_time    TEXT NOT NULL,
                    end_time      TEXT NOT NULL,
                    status        TEXT NOT NULL DEFAULT 'CONFIRMED'
                )
            """)
        logger.debug("Scheduling tables initialized at %s", self._db_path)

    @staticmethod
    def _row_to_rule(row: sqlite3.Row) -> AvailabilityRule:
        return AvailabilityRule(
            id=row["id"],
            host_id=row["host_id"],
            day_of_week=row["day_of_week"],
            rule_date=date.fromisoformat(row["date"]) if row["date"] else None,
            start_time=row["start_time"],
            end_time=row["end_time"],
            enabled=bool(row["enabled"]),
        )

    @staticmethod
    def _row_to_event_type(row: sqlite3.Row) -> EventType:
        return EventType(
            id=row["id"],
            host_id=row["host_id"],
            title=row["title"],
            duration_minutes=row["duration_minutes"],
            buffer_before=row["buffer_before"],
            buffer_after=row["buffer_after"],
            min_notice_minutes=row["min_notice_minutes"],
            max_future_days=row["max_future_days"],
            daily_limit=row["daily_limit"],
            weekly_limit=row["weekly_limit"],
            location_kind=row["location_kind"],
            is_collective=bool(row["is_collective"]),
            collective_members=json.loads(row["collective_members"]),
            active=bool(row["active"]),
        )

    @staticmethod
    def _row_to_booking(row: sqlite3.Row) -> Booking:
        return Booking(
            id=row["id"],
            host_id=row["host_id"],
            event_type_id=row["event_type_id"],
            start=_from_iso(row["start_time"]),
            end=_from_iso(row["end_time"]),
            status=BookingStatus(row["status"]),
        )

    # -- hosts ---------------------------------------------------------------

    def add_host(self, host_id: str, display_name: str, timezone: str = "UTC") -> Host:
        get_zone(timezone)  # reject unknown zones up front
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO hosts (id, display_name, timezone) VALUES (?, ?, ?)",
                (host_id, display_name, timezone),
            )
        logger.info("Host added: %s '%s' (%s)", host_id, display_name, timezone)
        return Host(id=host_id, display_name=display_name, timezone=timezone)

    def get_host(self, host_id: str) -> Host | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM hosts WHERE id = ?", (host_id,)).fetchone()
        if row is None:
            return None
        return Host(id=row["id"], display_name=row["display_name"], timezone=row["timezone"])

    # -- availability rules --------------------------------------------------

    def add_availability_rule(
        self,
        host_id: str,
        start_time: str,
        end_time: str,
        day_of_week: int | None = None,
        rule_date: date | None = None,
        enabled: bool = True,
    ) -> AvailabilityRule:
        """Insert a weekday rule (day_of_week) or a date-specific override."""
        # Validates the day_of_week / date combination before touching the DB.
        AvailabilityRule(
            id=0, host_id=host_id, start_time=start_time, end_time=end_time,
            day_of_week=day_of_week, rule_date=rule_date, enabled=enabled,
        )
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO availability_rules
                    (host_id, day_of_week, date, start_time, end_time, enabled)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    host_id, day_of_week,
                    rule_date.isoformat() if rule_date else None,
                    start_time, end_time, int(enabled),
                ),
            )
            rule_id = cursor.lastrowid

        return AvailabilityRule(
            id=rule_id, host_id=host_id, start_time=start_time, end_time=end_time,
            day_of_week=day_of_week, rule_date=rule_date, enabled=enabled,
        )

    def replace_availability_rules(
        self, host_id: str, rules: list[dict],
    ) -> list[AvailabilityRule]:
        """Delete a host's rules and recreate them from plain dicts.

        Each dict has start_time, end_time, and either day_of_week or date
        (ISO string); enabled defaults to True.
        """
        with self._connect() as conn:
            conn.execute("DELETE FROM availability_rules WHERE host_id = ?", (host_id,))
        for r in rules:
            rule_date = r.get("date")
            if isinstance(rule_date, str):
                rule_date = date.fromisoformat(rule_date)
            self.add_availability_rule(
                host_id,
                r["start_time"],
                r["end_time"],
                day_of_week=None if rule_date else r.get("day_of_week"),
                rule_date=rule_date,
                enabled=r.get("enabled", True),
            )
        logger.info("Replaced availability for host %s (%d rules)", host_id, len(rules))
        return self.list_availability_rules(host_id, enabled_only=False)

    def init_default_availability(self, host_id: str) -> list[AvailabilityRule]:
        """Seed Monday–Friday 09:00–17:00."""
        return [
            self.add_availability_rule(host_id, "09:00", "17:00", day_of_week=day)
            for day in (1, 2, 3, 4, 5)
        ]

    def list_availability_rules(
        self, host_id: str, enabled_only: bool = True,
    ) -> list[AvailabilityRule]:
        query = "SELECT * FROM availability_rules WHERE host_id = ?"
        if enabled_only:
            query += " AND enabled = 1"
        query += " ORDER BY day_of_week, start_time, id"
        with self._connect() as conn:
            rows = conn.execute(query, (host_id,)).fetchall()
        return [self._row_to_rule(r) for r in rows]

    # -- event types ---------------------------------------------------------

    def add_event_type(self, event_type: EventType) -> EventType:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO event_types
                    (id, host_id, title, duration_minutes, buffer_before,
                     buffer_after, min_notice_minutes, max_future_days,
                     daily_limit, weekly_limit, location_kind, is_collective,
                     collective_members, active)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    event_type.id, event_type.host_id, event_type.title,
                    event_type.duration_minutes, event_type.buffer_before,
                    event_type.buffer_after, event_type.min_notice_minutes,
                    event_type.max_future_days, event_type.daily_limit,
                    event_type.weekly_limit, event_type.location_kind,
                    int(event_type.is_collective),
                    json.dumps(event_type.collective_members),
                    int(event_type.active),
                ),
            )
        logger.info(
            "Event type added: %s '%s' (%d min)",
            event_type.id, event_type.title, event_type.duration_minutes,
        )
        return event_type

    def get_event_type(self, event_type_id: str) -> EventType | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM event_types WHERE id = ?", (event_type_id,)
            ).fetchone()
        if row is None:
            return None
        return self._row_to_event_type(row)

    # -- bookings ------------------------------------------------------------

    def add_booking(
        self,
        host_id: str,
        event_type_id: str,
        start: datetime,
        end: datetime,
        status: BookingStatus | str = BookingStatus.CONFIRMED,
    ) -> Booking:
        if end <= start:
            raise ValueError("booking end must be after start")
        status = BookingStatus(status)
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO bookings (host_id, event_type_id, start_time, end_time, status)
                VALUES (?, ?, ?, ?, ?)
                """,
                (host_id, event_type_id, _to_iso(start), _to_iso(end), status.value),
            )
            booking_id = cursor.lastrowid
        return Booking(
            id=booking_id, host_id=host_id, event_type_id=event_type_id,
            start=start, end=end, status=status,
        )

    def list_busy_bookings(
        self, host_id: str, start: datetime, end: datetime,
    ) -> list[Booking]:
        """CONFIRMED/PENDING bookings of a host overlapping [start, end)."""
        placeholders, statuses = _blocking_placeholders()
        with self._connect() as conn:
            rows = conn.execute(
                f"""
                SELECT * FROM bookings
                WHERE host_id = ?
                  AND status IN ({placeholders})
                  AND start_time < ?
                  AND end_time > ?
                ORDER BY start_time
                """,
                [host_id, *statuses, _to_iso(end), _to_iso(start)],
            ).fetchall()
        return [self._row_to_booking(r) for r in rows]

    def count_bookings_by_day(
        self, event_type_id: str, start: datetime, end: datetime, timezone: str,
    ) -> dict[date, int]:
        """Count CONFIRMED/PENDING bookings per local date of `timezone`.

        Only bookings starting inside [start, end) are counted.
        """
        tz = ZoneInfo(timezone)
        placeholders, statuses = _blocking_placeholders()
        with self._connect() as conn:
            rows = conn.execute(
                f"""
                SELECT start_time FROM bookings
                WHERE event_type_id = ?
                  AND status IN ({placeholders})
                  AND start_time >= ?
                  AND start_time < ?
                """,
                [event_type_id, *statuses, _to_iso(start), _to_iso(end)],
            ).fetchall()
        counts = Counter(
            _from_iso(row["start_time"]).astimezone(tz).date() for row in rows
        )
        return dict(counts)
