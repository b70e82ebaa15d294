"""
SQLite Event Store - Append-only event log with idempotency

The event store is the source of truth for proposals, votes and alliances. It
provides:
- Append-only semantics (events never modified or deleted)
- Idempotency via command_id (same command = same events)
- Optimistic locking via stream versioning
- A global log position so read models can catch up incrementally

The stream version check doubles as the compare-and-swap that makes proposal
resolution happen at most once: the UNIQUE(stream_id, version) constraint
rejects the second of two writers that both observed the same version.
"""

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator

from polity.kernel.errors import (
    CommandIdempotencyViolation,
    EventStoreError,
    StreamVersionConflict,
)
from polity.kernel.events import Event
from polity.kernel.logging import get_logger
from polity.kernel.metrics import events_appended_total, stream_version_conflicts_total
from polity.kernel.retry import retry_on_sqlite_lock

logger = get_logger(__name__)

_EVENT_COLUMNS = """
    rowid AS position, event_id, stream_id, stream_type, version,
    command_id, event_type, occurred_at, actor_id, payload_json
"""


class SQLiteEventStore:
    """
    SQLite-based event store with append-only semantics

    Uses WAL (Write-Ahead Logging) mode for crash safety and concurrent
    readers. Every public call opens its own connection, so one store can be
    shared between threads.

    Schema:
    - events table: append-only event log (rowid is the global position)
    - Unique constraints: (stream_id, version)
    - Indices: stream, event_type, command_id
    """

    def __init__(self, db_path: str | Path, busy_timeout_seconds: float = 5.0) -> None:
        """
        Initialize event store with SQLite database

        Args:
            db_path: Path to SQLite database file
            busy_timeout_seconds: How long a writer waits on the file lock
        """
        self.db_path = Path(db_path)
        self.busy_timeout_seconds = busy_timeout_seconds
        self._initialize_schema()

    def _initialize_schema(self) -> None:
        """Create tables and indices if they don't exist"""
        with self._connect() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=NORMAL")

            conn.execute("""
                CREATE TABLE IF NOT EXISTS events (
                    event_id TEXT PRIMARY KEY,
                    stream_id TEXT NOT NULL,
                    stream_type TEXT NOT NULL,
                    version INTEGER NOT NULL,
                    command_id TEXT NOT NULL,
                    event_type TEXT NOT NULL,
                    occurred_at TEXT NOT NULL,
                    actor_id TEXT,
                    payload_json TEXT NOT NULL,

                    UNIQUE(stream_id, version)
                )
            """)

            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_events_stream "
                "ON events(stream_id, version)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_events_type ON events(event_type)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_events_command ON events(command_id)"
            )

            conn.commit()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database connections"""
        conn = sqlite3.connect(str(self.db_path), timeout=self.busy_timeout_seconds)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    @retry_on_sqlite_lock()
    def append(
        self,
        stream_id: str,
        expected_version: int,
        events: list[Event],
    ) -> list[Event]:
        """
        Append events to a stream with optimistic locking

        Args:
            stream_id: Aggregate identifier
            expected_version: Expected current stream version
            events: Events to append (must have sequential versions)

        Returns:
            The appended events (may be from previous execution if idempotent)

        Raises:
            StreamVersionConflict: If stream version doesn't match expected
            EventStoreError: On other database errors
        """
        if not events:
            return []

        # Same command replayed against this stream: return the original events
        first_command_id = events[0].command_id
        existing = [
            e for e in self._get_events_by_command_id(first_command_id)
            if e.stream_id == stream_id
        ]
        if existing:
            return existing

        return self._commit([(stream_id, expected_version, events)])

    @retry_on_sqlite_lock()
    def append_batch(self, appends: list[tuple[str, int, list[Event]]]) -> list[Event]:
        """
        Append to several streams in one transaction

        Every stream is checked against its expected version; if any check
        fails nothing is written. Used where one fact must guard more than
        one stream (an alliance activation guards the pair and both members).

        Args:
            appends: (stream_id, expected_version, events) per stream

        Returns:
            All appended events, in append order

        Raises:
            StreamVersionConflict: If any stream version doesn't match expected
            EventStoreError: On other database errors
        """
        return self._commit([a for a in appends if a[2]])

    def _commit(self, appends: list[tuple[str, int, list[Event]]]) -> list[Event]:
        if not appends:
            return []

        with self._connect() as conn:
            stream_id = appends[0][0]
            expected_version = appends[0][1]
            stream_type = appends[0][2][0].stream_type
            try:
                for stream_id, expected_version, events in appends:
                    stream_type = events[0].stream_type
                    current_version = self._get_stream_version(conn, stream_id)
                    if current_version != expected_version:
                        stream_version_conflicts_total.labels(stream_type=stream_type).inc()
                        raise StreamVersionConflict(stream_id, expected_version, current_version)
                    self._insert_events(conn, events)

                conn.commit()

            except sqlite3.IntegrityError as e:
                conn.rollback()
                error_msg = str(e).lower()

                # Another writer inserted the same stream version between our check and insert
                if "stream_id" in error_msg and "version" in error_msg:
                    stream_version_conflicts_total.labels(stream_type=stream_type).inc()
                    current = self._get_stream_version(conn, stream_id)
                    raise StreamVersionConflict(stream_id, expected_version, current) from e

                if "event_id" in error_msg:
                    raise CommandIdempotencyViolation(appends[0][2][0].command_id) from e

                raise EventStoreError(f"Failed to append events: {e}") from e

            except (StreamVersionConflict, sqlite3.OperationalError):
                conn.rollback()
                raise

            except Exception as e:
                conn.rollback()
                raise EventStoreError(f"Unexpected error appending events: {e}") from e

        appended = [event for _, _, events in appends for event in events]
        for event in appended:
            events_appended_total.labels(
                stream_type=event.stream_type, event_type=event.event_type
            ).inc()
        for stream_id, _, events in appends:
            logger.debug(
                "Events appended",
                stream_id=stream_id,
                stream_type=events[0].stream_type,
                count=len(events),
                new_version=events[-1].version,
            )
        return appended

    @staticmethod
    def _insert_events(conn: sqlite3.Connection, events: list[Event]) -> None:
        for event in events:
            conn.execute(
                """
                INSERT INTO events (
                    event_id, stream_id, stream_type, version,
                    command_id, event_type, occurred_at, actor_id, payload_json
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
                (
                    event.event_id,
                    event.stream_id,
                    event.stream_type,
                    event.version,
                    event.command_id,
                    event.event_type,
                    event.occurred_at.isoformat(),
                    event.actor_id,
                    json.dumps(event.payload),
                ),
            )

    def load_stream(self, stream_id: str) -> list[Event]:
        """
        Load all events for a stream in version order

        Args:
            stream_id: Aggregate identifier

        Returns:
            List of events in version order (empty if stream doesn't exist)
        """
        with self._connect() as conn:
            cursor = conn.execute(
                f"SELECT {_EVENT_COLUMNS} FROM events WHERE stream_id = ? ORDER BY version ASC",
                (stream_id,),
            )
            return [self._row_to_event(row) for row in cursor.fetchall()]

    def load_streams_with_prefix(self, stream_type: str, prefix: str) -> list[Event]:
        """
        Load every event of the given stream type whose stream id starts with prefix

        Used to read all vote streams of one proposal ("vote:<proposal_id>:").
        """
        with self._connect() as conn:
            cursor = conn.execute(
                f"""
                SELECT {_EVENT_COLUMNS} FROM events
                WHERE stream_type = ? AND substr(stream_id, 1, ?) = ?
                ORDER BY rowid ASC
            """,
                (stream_type, len(prefix), prefix),
            )
            return [self._row_to_event(row) for row in cursor.fetchall()]

    def load_all_events(
        self,
        after_position: int = 0,
        limit: int | None = None,
    ) -> list[Event]:
        """
        Load events in log order (for projection catch-up)

        Args:
            after_position: Only return events appended after this position
            limit: Maximum number of events to return, or None for all

        Returns:
            List of events in append order, each carrying its position
        """
        query = f"SELECT {_EVENT_COLUMNS} FROM events WHERE rowid > ? ORDER BY rowid ASC"
        params: tuple = (after_position,)
        if limit:
            query += " LIMIT ?"
            params = (after_position, limit)

        with self._connect() as conn:
            cursor = conn.execute(query, params)
            return [self._row_to_event(row) for row in cursor.fetchall()]

    def query_events(
        self,
        *,
        stream_type: str | None = None,
        event_type: str | None = None,
        from_time: datetime | None = None,
        to_time: datetime | None = None,
        limit: int | None = None,
    ) -> list[Event]:
        """
        Query events by various criteria

        Args:
            stream_type: Filter by stream type (e.g., "proposal", "vote")
            event_type: Filter by event type (e.g., "ProposalResolved")
            from_time: Events after this time (inclusive)
            to_time: Events before this time (inclusive)
            limit: Maximum number of events to return

        Returns:
            List of matching events in append order
        """
        conditions = []
        params: list = []

        if stream_type:
            conditions.append("stream_type = ?")
            params.append(stream_type)

        if event_type:
            conditions.append("event_type = ?")
            params.append(event_type)

        if from_time:
            conditions.append("occurred_at >= ?")
            params.append(from_time.isoformat())

        if to_time:
            conditions.append("occurred_at <= ?")
            params.append(to_time.isoformat())

        where_clause = " AND ".join(conditions) if conditions else "1=1"
        query = f"SELECT {_EVENT_COLUMNS} FROM events WHERE {where_clause} ORDER BY rowid ASC"

        if limit:
            query += " LIMIT ?"
            params.append(limit)

        with self._connect() as conn:
            cursor = conn.execute(query, params)
            return [self._row_to_event(row) for row in cursor.fetchall()]

    def get_stream_version(self, stream_id: str) -> int:
        """
        Get current version of a stream

        Returns:
            Current stream version (0 if stream doesn't exist)
        """
        with self._connect() as conn:
            return self._get_stream_version(conn, stream_id)

    def _get_stream_version(self, conn: sqlite3.Connection, stream_id: str) -> int:
        cursor = conn.execute(
            "SELECT MAX(version) FROM events WHERE stream_id = ?",
            (stream_id,),
        )
        row = cursor.fetchone()
        return row[0] if row[0] is not None else 0

    def _get_events_by_command_id(self, command_id: str) -> list[Event]:
        with self._connect() as conn:
            cursor = conn.execute(
                f"SELECT {_EVENT_COLUMNS} FROM events WHERE command_id = ? ORDER BY version ASC",
                (command_id,),
            )
            return [self._row_to_event(row) for row in cursor.fetchall()]

    def _row_to_event(self, row: sqlite3.Row) -> Event:
        return Event(
            event_id=row["event_id"],
            stream_id=row["stream_id"],
            stream_type=row["stream_type"],
            version=row["version"],
            command_id=row["command_id"],
            event_type=row["event_type"],
            occurred_at=datetime.fromisoformat(row["occurred_at"]),
            actor_id=row["actor_id"],
            payload=json.loads(row["payload_json"]),
            position=row["position"],
        )

    def count_events(self) -> int:
        """Get total number of events in store"""
        with self._connect() as conn:
            cursor = conn.execute("SELECT COUNT(*) FROM events")
            return cursor.fetchone()[0]

    def count_streams(self) -> int:
        """Get total number of distinct streams"""
        with self._connect() as conn:
            cursor = conn.execute("SELECT COUNT(DISTINCT stream_id) FROM events")
            return cursor.fetchone()[0]
