"""Append-only decision event stores.

The event log is the source of truth. Patterns, mastery and profiles are
derived by scanning it. Two implementations of the store contract ship here:
an in-memory store for tests and embedding, and a SQLite-backed store.

Every ``query`` materializes its result before returning, so a scan sees a
snapshot taken when it starts even if events are appended meanwhile.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Iterable

from pydantic import BaseModel, ConfigDict

from .models import DecisionEvent, QueryFilters

logger = logging.getLogger(__name__)


class EventFilter(BaseModel):
    """Read-side filter. Fields combine with AND; None or empty means no constraint.

    ``start`` and ``end`` are inclusive epoch milliseconds.
    """

    model_config = ConfigDict(frozen=True)

    user_id: str | None = None
    game_id: str | None = None
    session_id: str | None = None
    start: int | None = None
    end: int | None = None
    r_types: frozenset[str] | None = None
    t_types: frozenset[str] | None = None

    @classmethod
    def from_query(cls, filters: QueryFilters) -> "EventFilter":
        """Translate analytics query filters into a store filter."""
        return cls(
            user_id=filters.user_id,
            game_id=filters.game_id,
            start=filters.date_range.start if filters.date_range else None,
            end=filters.date_range.end if filters.date_range else None,
            r_types=frozenset(filters.r_types) if filters.r_types else None,
            t_types=frozenset(filters.t_types) if filters.t_types else None,
        )

    def matches(self, event: DecisionEvent) -> bool:
        if self.user_id is not None and event.user_id != self.user_id:
            return False
        if self.game_id is not None and event.game_id != self.game_id:
            return False
        if self.session_id is not None and event.session_id != self.session_id:
            return False
        if self.start is not None and event.timestamp < self.start:
            return False
        if self.end is not None and event.timestamp > self.end:
            return False
        if self.r_types and event.r_type not in self.r_types:
            return False
        if self.t_types and event.t_type not in self.t_types:
            return False
        return True


def _ordered(events: Iterable[DecisionEvent]) -> list[DecisionEvent]:
    return sorted(events, key=lambda e: (e.timestamp, e.id))


class EventStore(ABC):
    """Durable append-only log of flushed decision events."""

    @abstractmethod
    def append_batch(self, events: list[DecisionEvent]) -> list[DecisionEvent]:
        """Append events. Returns the events appended."""

    @abstractmethod
    def query(self, event_filter: EventFilter | None = None) -> list[DecisionEvent]:
        """Return matching events in timestamp order."""

    def read_all(self) -> list[DecisionEvent]:
        return self.query(EventFilter())

    @abstractmethod
    def count(self) -> int:
        """Count events."""

    def fingerprint(self) -> tuple[int, str | None]:
        """Cheap corpus version: (event count, id of the newest event)."""
        events = self.read_all()
        return len(events), events[-1].id if events else None

    def close(self) -> None:
        """Release resources. No-op by default."""


class MemoryEventStore(EventStore):
    """Event store kept in a Python list. Thread-safe."""

    def __init__(self, events: Iterable[DecisionEvent] = ()):
        self._lock = threading.Lock()
        self._events: list[DecisionEvent] = list(events)

    def append_batch(self, events: list[DecisionEvent]) -> list[DecisionEvent]:
        with self._lock:
            self._events.extend(events)
        return events

    def query(self, event_filter: EventFilter | None = None) -> list[DecisionEvent]:
        with self._lock:
            snapshot = list(self._events)
        if event_filter is None:
            return _ordered(snapshot)
        return _ordered(e for e in snapshot if event_filter.matches(e))

    def count(self) -> int:
        with self._lock:
            return len(self._events)

    def clear(self) -> None:
        with self._lock:
            self._events.clear()


_COLUMNS = (
    "id, ts, user_id, session_id, game_id, position, available_actions, "
    "chosen_action, r_type, t_type, modal_operator, thinking_time_ms, metadata"
)


class SQLiteEventStore(EventStore):
    """Append-only event log backed by SQLite."""

    def __init__(self, db_path: Path, tolerant: bool = True):
        """Initialize event store.

        Args:
            db_path: Path to the database file (created if missing)
            tolerant: If True, skip malformed rows with warnings.
                      If False, raise on the first malformed row.
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.tolerant = tolerant
        self._conn: sqlite3.Connection | None = None
        # Sinks write from worker threads; one connection, serialized.
        self._lock = threading.RLock()
        self._init_db()

    def _get_conn(self) -> sqlite3.Connection:
        """Get or create database connection."""
        if self._conn is None:
            self._conn = sqlite3.connect(
                str(self.db_path), timeout=30.0, check_same_thread=False
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA busy_timeout=30000")
        return self._conn

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._lock:
            conn = self._get_conn()

            conn.execute("""
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY,
                    created_at TEXT DEFAULT (datetime('now'))
                )
            """)

            version = conn.execute("SELECT version FROM schema_version").fetchone()
            if version is None:
                conn.execute("INSERT INTO schema_version (version) VALUES (1)")

            conn.executescript("""
                CREATE TABLE IF NOT EXISTS decision_events (
                    id TEXT PRIMARY KEY,
                    ts INTEGER NOT NULL,
                    user_id TEXT NOT NULL,
                    session_id TEXT NOT NULL,
                    game_id TEXT NOT NULL,
                    position TEXT NOT NULL,
                    available_actions TEXT NOT NULL,
                    chosen_action TEXT NOT NULL,
                    r_type TEXT NOT NULL,
                    t_type TEXT NOT NULL,
                    modal_operator TEXT NOT NULL,
                    thinking_time_ms INTEGER NOT NULL,
                    metadata TEXT NOT NULL,
                    created_at TEXT DEFAULT (datetime('now'))
                );

                CREATE INDEX IF NOT EXISTS idx_decisions_ts ON decision_events(ts);
                CREATE INDEX IF NOT EXISTS idx_decisions_user ON decision_events(user_id);
                CREATE INDEX IF NOT EXISTS idx_decisions_game ON decision_events(game_id);
                CREATE INDEX IF NOT EXISTS idx_decisions_session ON decision_events(session_id);
            """)
            conn.commit()

    @staticmethod
    def _event_to_row(event: DecisionEvent) -> tuple:
        return (
            event.id,
            event.timestamp,
            event.user_id,
            event.session_id,
            event.game_id,
            event.position,
            json.dumps(list(event.available_actions)),
            event.chosen_action,
            event.r_type,
            event.t_type,
            event.modal_operator,
            event.thinking_time_ms,
            json.dumps(event.metadata, default=str),
        )

    @staticmethod
    def _row_to_event(row: sqlite3.Row) -> DecisionEvent:
        return DecisionEvent(
            id=row["id"],
            timestamp=row["ts"],
            user_id=row["user_id"],
            session_id=row["session_id"],
            game_id=row["game_id"],
            position=row["position"],
            available_actions=tuple(json.loads(row["available_actions"])),
            chosen_action=row["chosen_action"],
            r_type=row["r_type"],
            t_type=row["t_type"],
            modal_operator=row["modal_operator"],
            thinking_time_ms=row["thinking_time_ms"],
            metadata=json.loads(row["metadata"]),
        )

    def append(self, event: DecisionEvent) -> DecisionEvent:
        """Append a single event and commit."""
        self.append_batch([event])
        return event

    def append_batch(self, events: list[DecisionEvent]) -> list[DecisionEvent]:
        """Append multiple events with a single commit at the end."""
        if not events:
            return events

        with self._lock:
            conn = self._get_conn()
            # All or nothing: a failed batch must not ride along with the next commit
            with conn:
                conn.executemany(
                    f"INSERT INTO decision_events ({_COLUMNS}) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    [self._event_to_row(e) for e in events],
                )
        logger.debug(f"Appended {len(events)} events to {self.db_path}")
        return events

    def query(self, event_filter: EventFilter | None = None) -> list[DecisionEvent]:
        event_filter = event_filter or EventFilter()
        clauses: list[str] = []
        params: list = []

        for column, value in (
            ("user_id", event_filter.user_id),
            ("game_id", event_filter.game_id),
            ("session_id", event_filter.session_id),
        ):
            if value is not None:
                clauses.append(f"{column} = ?")
                params.append(value)

        if event_filter.start is not None:
            clauses.append("ts >= ?")
            params.append(event_filter.start)
        if event_filter.end is not None:
            clauses.append("ts <= ?")
            params.append(event_filter.end)

        for column, values in (("r_type", event_filter.r_types), ("t_type", event_filter.t_types)):
            if values:
                ordered = sorted(values)
                clauses.append(f"{column} IN ({', '.join('?' for _ in ordered)})")
                params.extend(ordered)

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        sql = f"SELECT {_COLUMNS} FROM decision_events {where} ORDER BY ts, id"

        with self._lock:
            rows = self._get_conn().execute(sql, params).fetchall()

        events = []
        skipped = 0
        for row in rows:
            try:
                events.append(self._row_to_event(row))
            except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
                if not self.tolerant:
                    raise ValueError(f"Malformed event {row['id']}: {e}") from e
                skipped += 1
                logger.warning(f"Skipping malformed event {row['id']}: {e}")

        if skipped:
            logger.warning(f"Loaded {len(events)} events, skipped {skipped} malformed rows")

        return events

    def count(self) -> int:
        with self._lock:
            return self._get_conn().execute("SELECT COUNT(*) FROM decision_events").fetchone()[0]

    def fingerprint(self) -> tuple[int, str | None]:
        with self._lock:
            row = self._get_conn().execute(
                "SELECT COUNT(*), (SELECT id FROM decision_events ORDER BY ts DESC, id DESC LIMIT 1) "
                "FROM decision_events"
            ).fetchone()
        return row[0], row[1]

    def close(self) -> None:
        """Close database connection.

        Forces a WAL checkpoint before closing so all changes land in the
        main database file.
        """
        with self._lock:
            if self._conn is not None:
                self._conn.execute("PRAGMA wal_checkpoint(TRUNCATE)")
                self._conn.close()
                self._conn = None

    def clear(self) -> None:
        """Delete every event. Used for testing."""
        with self._lock:
            conn = self._get_conn()
            conn.execute("DELETE FROM decision_events")
            conn.commit()
