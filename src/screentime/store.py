"""SQLite event log and aggregate cache for the screen time tracker."""

from __future__ import annotations

import logging
import sqlite3
import time
from collections.abc import Callable
from datetime import date, datetime
from functools import wraps
from pathlib import Path
from typing import Any, Protocol, TypeVar

from screentime.errors import StorageUnavailable
from screentime.models import DayAggregate, Event

logger = logging.getLogger(__name__)

T = TypeVar("T")

SCHEMA = """
CREATE TABLE IF NOT EXISTS events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    day TEXT NOT NULL,
    start_at TEXT NOT NULL,
    end_at TEXT,
    subject TEXT NOT NULL,
    category TEXT NOT NULL,
    duration_minutes INTEGER
);

CREATE TABLE IF NOT EXISTS aggregates (
    day TEXT PRIMARY KEY,
    data TEXT NOT NULL,
    materialized_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_events_day ON events(day);
"""


def retry_on_unavailable(
    max_retries: int = 3,
    base_delay: float = 0.05,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Decorator for exponential backoff retry on locked or busy databases.

    Args:
        max_retries: Maximum number of attempts.
        base_delay: Base delay in seconds (doubles each retry).

    Returns:
        Decorated function that raises StorageUnavailable once attempts
        are exhausted.
    """

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            for attempt in range(max_retries):
                try:
                    return func(*args, **kwargs)
                except sqlite3.OperationalError as e:
                    if attempt < max_retries - 1:
                        delay = base_delay * (2**attempt)
                        logger.warning(
                            "Storage unavailable (attempt %d/%d), retrying in %.2fs: %s",
                            attempt + 1,
                            max_retries,
                            delay,
                            str(e),
                        )
                        time.sleep(delay)
                    else:
                        logger.error("Storage unavailable after %d attempts: %s", max_retries, str(e))
                        raise StorageUnavailable(str(e)) from e
            raise RuntimeError("Unexpected retry loop exit")

        return wrapper

    return decorator


class StoragePort(Protocol):
    """Persistence operations the tracker depends on."""

    def append_event(self, day: date, event: Event) -> int: ...

    def get_event(self, event_id: int) -> Event | None: ...

    def close_event(self, event_id: int, end: datetime, duration_minutes: int) -> bool: ...

    def list_events(self, first: date, last: date) -> list[Event]: ...

    def list_event_days(self) -> list[date]: ...

    def delete_events_before(self, day: date) -> int: ...

    def get_aggregate(self, day: date) -> DayAggregate | None: ...

    def put_aggregate(self, day: date, aggregate: DayAggregate) -> None: ...

    def list_aggregate_days(self) -> list[date]: ...

    def export_state(self) -> tuple[dict[date, list[Event]], dict[date, DayAggregate]]: ...

    def replace_state(
        self,
        events: dict[date, list[Event]],
        aggregates: dict[date, DayAggregate],
    ) -> None: ...


def _row_to_event(row: sqlite3.Row) -> Event:
    return Event(
        id=row["id"],
        subject=row["subject"],
        category=row["category"],
        start=datetime.fromisoformat(row["start_at"]),
        end=datetime.fromisoformat(row["end_at"]) if row["end_at"] else None,
        duration_minutes=row["duration_minutes"],
    )


def _event_params(day: date, event: Event) -> tuple[Any, ...]:
    return (
        day.isoformat(),
        event.start.isoformat(),
        event.end.isoformat() if event.end else None,
        event.subject,
        event.category,
        event.duration_minutes,
    )


class SqliteStore:
    """SQLite-backed event log and aggregate cache.

    Not thread-safe. Each thread should have its own SqliteStore instance.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        self._init_schema()

    def __enter__(self) -> "SqliteStore":
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        self.close()

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    @retry_on_unavailable()
    def _init_schema(self) -> None:
        """Initialize database schema."""
        self._conn.executescript(SCHEMA)
        self._conn.commit()

    @classmethod
    def open(cls, path: Path) -> SqliteStore:
        """Open or create a database at the given path."""
        try:
            conn = sqlite3.connect(path)
        except sqlite3.OperationalError as e:
            raise StorageUnavailable(f"Cannot open database {path}: {e}") from e
        conn.row_factory = sqlite3.Row
        return cls(conn)

    @classmethod
    def open_in_memory(cls) -> SqliteStore:
        """Create an in-memory database for testing."""
        conn = sqlite3.connect(":memory:")
        conn.row_factory = sqlite3.Row
        return cls(conn)

    @retry_on_unavailable()
    def append_event(self, day: date, event: Event) -> int:
        """Append an event to a day's log. Returns the new event ID."""
        with self._conn:
            cursor = self._conn.execute(
                """
                INSERT INTO events (day, start_at, end_at, subject, category, duration_minutes)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                _event_params(day, event),
            )
        return cursor.lastrowid

    @retry_on_unavailable()
    def get_event(self, event_id: int) -> Event | None:
        cursor = self._conn.execute("SELECT * FROM events WHERE id = ?", (event_id,))
        row = cursor.fetchone()
        return _row_to_event(row) if row else None

    @retry_on_unavailable()
    def close_event(self, event_id: int, end: datetime, duration_minutes: int) -> bool:
        """Set the end of a running event.

        Returns:
            True if a running event was closed, False if there was none.
        """
        with self._conn:
            cursor = self._conn.execute(
                """
                UPDATE events
                SET end_at = ?, duration_minutes = ?
                WHERE id = ? AND end_at IS NULL AND duration_minutes IS NULL
                """,
                (end.isoformat(), duration_minutes, event_id),
            )
        return cursor.rowcount > 0

    @retry_on_unavailable()
    def list_events(self, first: date, last: date) -> list[Event]:
        """Events for days first through last (inclusive), in insertion order."""
        cursor = self._conn.execute(
            "SELECT * FROM events WHERE day >= ? AND day <= ? ORDER BY day ASC, id ASC",
            (first.isoformat(), last.isoformat()),
        )
        return [_row_to_event(row) for row in cursor.fetchall()]

    @retry_on_unavailable()
    def list_event_days(self) -> list[date]:
        """Distinct days that still have raw events, ascending."""
        cursor = self._conn.execute("SELECT DISTINCT day FROM events ORDER BY day ASC")
        return [date.fromisoformat(row["day"]) for row in cursor.fetchall()]

    @retry_on_unavailable()
    def delete_events_before(self, day: date) -> int:
        """Delete raw events of days strictly before ``day``.

        Returns:
            Number of events removed.
        """
        with self._conn:
            cursor = self._conn.execute("DELETE FROM events WHERE day < ?", (day.isoformat(),))
        return cursor.rowcount

    @retry_on_unavailable()
    def get_aggregate(self, day: date) -> DayAggregate | None:
        cursor = self._conn.execute("SELECT data FROM aggregates WHERE day = ?", (day.isoformat(),))
        row = cursor.fetchone()
        return DayAggregate.model_validate_json(row["data"]) if row else None

    @retry_on_unavailable()
    def put_aggregate(self, day: date, aggregate: DayAggregate) -> None:
        """Replace the cached aggregate for a day in a single statement."""
        if aggregate.day != day:
            raise ValueError(f"Aggregate for {aggregate.day} cannot be stored under {day}")
        now = datetime.now().astimezone().isoformat()
        with self._conn:
            self._conn.execute(
                "INSERT OR REPLACE INTO aggregates (day, data, materialized_at) VALUES (?, ?, ?)",
                (day.isoformat(), aggregate.model_dump_json(), now),
            )

    @retry_on_unavailable()
    def list_aggregate_days(self) -> list[date]:
        cursor = self._conn.execute("SELECT day FROM aggregates ORDER BY day ASC")
        return [date.fromisoformat(row["day"]) for row in cursor.fetchall()]

    @retry_on_unavailable()
    def export_state(self) -> tuple[dict[date, list[Event]], dict[date, DayAggregate]]:
        """All events grouped by day and all cached aggregates."""
        events: dict[date, list[Event]] = {}
        for row in self._conn.execute("SELECT * FROM events ORDER BY day ASC, id ASC"):
            events.setdefault(date.fromisoformat(row["day"]), []).append(_row_to_event(row))

        aggregates = {
            date.fromisoformat(row["day"]): DayAggregate.model_validate_json(row["data"])
            for row in self._conn.execute("SELECT day, data FROM aggregates ORDER BY day ASC")
        }
        return events, aggregates

    @retry_on_unavailable()
    def replace_state(
        self,
        events: dict[date, list[Event]],
        aggregates: dict[date, DayAggregate],
    ) -> None:
        """Replace all stored events and aggregates in one transaction.

        On any failure the transaction rolls back and prior data is kept.
        """
        now = datetime.now().astimezone().isoformat()
        with self._conn:  # Automatic transaction handling (commits on success)
            self._conn.execute("DELETE FROM events")
            self._conn.execute("DELETE FROM aggregates")
            self._conn.executemany(
                """
                INSERT INTO events (day, start_at, end_at, subject, category, duration_minutes)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                [_event_params(day, event) for day, day_events in events.items() for event in day_events],
            )
            self._conn.executemany(
                "INSERT INTO aggregates (day, data, materialized_at) VALUES (?, ?, ?)",
                [(day.isoformat(), aggregate.model_dump_json(), now) for day, aggregate in aggregates.items()],
            )
        logger.info("Replaced stored state: %d event days, %d aggregates", len(events), len(aggregates))
