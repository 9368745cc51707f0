"""Tests for the SQLite event log and aggregate cache."""

import sqlite3
from datetime import date, datetime, timezone

import pytest

from screentime.errors import StorageUnavailable
from screentime.models import DayAggregate, EntityMinutes, Event
from screentime.store import SqliteStore, retry_on_unavailable

UTC = timezone.utc


def make_event(
    subject: str = "github.com",
    *,
    start: str = "2024-01-01T10:00:00+00:00",
    minutes: int | None = 1,
    category: str = "Work",
) -> Event:
    """Helper to create an Event for testing."""
    return Event(
        subject=subject,
        category=category,
        start=datetime.fromisoformat(start),
        duration_minutes=minutes,
    )


def make_aggregate(day: date, minutes: int = 30) -> DayAggregate:
    return DayAggregate(
        day=day,
        total_minutes=minutes,
        by_category={"Work": minutes, "Other": 0},
        top_entities=[EntityMinutes(subject="github.com", minutes=minutes)],
    )


class TestEvents:
    """Tests for the raw event log."""

    def test_append_and_list_in_insertion_order(self):
        store = SqliteStore.open_in_memory()
        day = date(2024, 1, 1)
        store.append_event(day, make_event("b.com"))
        store.append_event(day, make_event("a.com"))

        events = store.list_events(day, day)
        assert [e.subject for e in events] == ["b.com", "a.com"]
        assert events[0].start == datetime(2024, 1, 1, 10, 0, tzinfo=UTC)
        assert events[0].duration_minutes == 1

    def test_append_returns_increasing_ids(self):
        store = SqliteStore.open_in_memory()
        first = store.append_event(date(2024, 1, 1), make_event())
        second = store.append_event(date(2024, 1, 1), make_event())
        assert second > first
        assert store.get_event(first).id == first

    def test_get_missing_event(self):
        store = SqliteStore.open_in_memory()
        assert store.get_event(42) is None

    def test_list_events_by_day_range(self):
        store = SqliteStore.open_in_memory()
        for day in (1, 2, 3, 4):
            store.append_event(date(2024, 1, day), make_event(f"site{day}.com", start=f"2024-01-0{day}T10:00:00+00:00"))

        events = store.list_events(date(2024, 1, 2), date(2024, 1, 3))
        assert [e.subject for e in events] == ["site2.com", "site3.com"]
        assert store.list_event_days() == [date(2024, 1, d) for d in (1, 2, 3, 4)]

    def test_delete_events_before(self):
        store = SqliteStore.open_in_memory()
        store.append_event(date(2024, 1, 1), make_event())
        store.append_event(date(2024, 1, 1), make_event())
        store.append_event(date(2024, 1, 2), make_event(start="2024-01-02T10:00:00+00:00"))

        assert store.delete_events_before(date(2024, 1, 2)) == 2
        assert store.list_event_days() == [date(2024, 1, 2)]
        assert store.delete_events_before(date(2024, 1, 2)) == 0

    def test_close_running_event(self):
        store = SqliteStore.open_in_memory()
        running = Event.interval("notion.so", datetime(2024, 1, 1, 10, 0, tzinfo=UTC), category="Work")
        event_id = store.append_event(date(2024, 1, 1), running)
        assert store.get_event(event_id).is_running

        end = datetime(2024, 1, 1, 10, 45, tzinfo=UTC)
        assert store.close_event(event_id, end, 45) is True

        closed = store.get_event(event_id)
        assert closed.end == end
        assert closed.duration_minutes == 45
        assert store.close_event(event_id, end, 45) is False

    def test_close_event_ignores_finished_events(self):
        store = SqliteStore.open_in_memory()
        event_id = store.append_event(date(2024, 1, 1), make_event(minutes=5))
        assert store.close_event(event_id, datetime(2024, 1, 1, 11, tzinfo=UTC), 60) is False
        assert store.get_event(event_id).duration_minutes == 5


class TestAggregates:
    """Tests for the aggregate cache."""

    def test_put_and_get(self):
        store = SqliteStore.open_in_memory()
        day = date(2024, 1, 1)
        store.put_aggregate(day, make_aggregate(day))
        assert store.get_aggregate(day) == make_aggregate(day)

    def test_put_replaces(self):
        store = SqliteStore.open_in_memory()
        day = date(2024, 1, 1)
        store.put_aggregate(day, make_aggregate(day, 30))
        store.put_aggregate(day, make_aggregate(day, 45))
        assert store.get_aggregate(day).total_minutes == 45
        assert store.list_aggregate_days() == [day]

    def test_get_missing(self):
        store = SqliteStore.open_in_memory()
        assert store.get_aggregate(date(2024, 1, 1)) is None

    def test_put_under_wrong_day_raises(self):
        store = SqliteStore.open_in_memory()
        with pytest.raises(ValueError):
            store.put_aggregate(date(2024, 1, 2), make_aggregate(date(2024, 1, 1)))
        assert store.list_aggregate_days() == []


class BrokenAggregate:
    """Stands in for an aggregate that fails to serialize."""

    day = date(2024, 1, 3)

    def model_dump_json(self) -> str:
        raise RuntimeError("serialization failed")


class TestReplaceState:
    """Tests for export_state/replace_state."""

    def test_export_groups_events_by_day(self):
        store = SqliteStore.open_in_memory()
        store.append_event(date(2024, 1, 1), make_event("a.com"))
        store.append_event(date(2024, 1, 2), make_event("b.com", start="2024-01-02T10:00:00+00:00"))
        store.put_aggregate(date(2024, 1, 1), make_aggregate(date(2024, 1, 1)))

        events, aggregates = store.export_state()
        assert [e.subject for e in events[date(2024, 1, 1)]] == ["a.com"]
        assert [e.subject for e in events[date(2024, 1, 2)]] == ["b.com"]
        assert list(aggregates) == [date(2024, 1, 1)]

    def test_replace_state_swaps_everything(self):
        store = SqliteStore.open_in_memory()
        store.append_event(date(2024, 1, 1), make_event("old.com"))
        store.put_aggregate(date(2024, 1, 1), make_aggregate(date(2024, 1, 1)))

        new_day = date(2024, 2, 1)
        store.replace_state(
            {new_day: [make_event("new.com", start="2024-02-01T10:00:00+00:00")]},
            {new_day: make_aggregate(new_day)},
        )

        assert store.list_event_days() == [new_day]
        assert store.list_aggregate_days() == [new_day]
        assert store.list_events(new_day, new_day)[0].subject == "new.com"

    def test_replace_state_rolls_back_on_failure(self):
        """A failure part way through leaves prior data intact."""
        store = SqliteStore.open_in_memory()
        day = date(2024, 1, 1)
        store.append_event(day, make_event("old.com"))
        store.put_aggregate(day, make_aggregate(day))

        with pytest.raises(RuntimeError):
            store.replace_state(
                {date(2024, 1, 3): [make_event("new.com", start="2024-01-03T10:00:00+00:00")]},
                {date(2024, 1, 3): BrokenAggregate()},
            )

        assert [e.subject for e in store.list_events(day, day)] == ["old.com"]
        assert store.list_event_days() == [day]
        assert store.list_aggregate_days() == [day]


class TestRetry:
    """Tests for the retry decorator."""

    def test_succeeds_after_transient_failures(self):
        calls = []

        @retry_on_unavailable(max_retries=3, base_delay=0)
        def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise sqlite3.OperationalError("database is locked")
            return "ok"

        assert flaky() == "ok"
        assert len(calls) == 3

    def test_raises_storage_unavailable_when_exhausted(self):
        calls = []

        @retry_on_unavailable(max_retries=2, base_delay=0)
        def always_locked():
            calls.append(1)
            raise sqlite3.OperationalError("database is locked")

        with pytest.raises(StorageUnavailable, match="locked"):
            always_locked()
        assert len(calls) == 2

    def test_other_errors_are_not_retried(self):
        calls = []

        @retry_on_unavailable(max_retries=3, base_delay=0)
        def broken():
            calls.append(1)
            raise ValueError("bad input")

        with pytest.raises(ValueError):
            broken()
        assert len(calls) == 1


class TestPersistence:
    """Tests for on-disk databases."""

    def test_data_survives_reopen(self, tmp_path):
        db_path = tmp_path / "events.db"
        with SqliteStore.open(db_path) as store:
            store.append_event(date(2024, 1, 1), make_event())
            store.put_aggregate(date(2024, 1, 1), make_aggregate(date(2024, 1, 1)))

        with SqliteStore.open(db_path) as store:
            assert len(store.list_events(date(2024, 1, 1), date(2024, 1, 1))) == 1
            assert store.get_aggregate(date(2024, 1, 1)).total_minutes == 30

    def test_unopenable_path_raises(self, tmp_path):
        with pytest.raises(StorageUnavailable):
            SqliteStore.open(tmp_path / "missing" / "events.db")
