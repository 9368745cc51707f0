"""Screen time engine: recording, rollups, summaries and import/export."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Any

from pydantic import ValidationError

from screentime.aggregate import aggregate_day
from screentime.classify import classify, should_record_minute
from screentime.config import TrackerConfig
from screentime.errors import InvalidEvent, InvalidImport, SessionNotFound
from screentime.models import (
    SCHEMA_VERSION,
    DayAggregate,
    Event,
    ExportDocument,
    Summary,
    minutes_between,
    same_awareness,
)
from screentime.store import StoragePort
from screentime.summary import summarize
from screentime.timeutil import day_key, localize, range_for

logger = logging.getLogger(__name__)

# Nightly rollup runs at 02:00 to stay clear of midnight edge cases
ROLLUP_TIME = time(2, 0)


@dataclass
class RollupResult:
    """Outcome of one rollup run."""

    materialized: list[date] = field(default_factory=list)
    pruned_events: int = 0
    cutoff: date | None = None


def check_event(event: Event) -> None:
    """Reject events with an empty subject, negative duration or reversed interval.

    Raises:
        InvalidEvent: If the event is malformed.
    """
    if not event.subject.strip():
        raise InvalidEvent("Event subject must not be empty")
    if event.end is not None and not same_awareness(event.start, event.end):
        raise InvalidEvent("Event mixes naive and timezone-aware instants")
    if event.end is not None and event.end < event.start:
        raise InvalidEvent(f"Event ends ({event.end}) before it starts ({event.start})")
    if event.duration_minutes is not None and event.duration_minutes < 0:
        raise InvalidEvent(f"Event duration must not be negative: {event.duration_minutes}")


def next_rollup_time(now: datetime) -> datetime:
    """When the next nightly rollup should fire, in ``now``'s timezone."""
    return datetime.combine(now.date() + timedelta(days=1), ROLLUP_TIME, tzinfo=now.tzinfo)


class Tracker:
    """Aggregation engine over a storage port.

    All aggregation is re-derived from stored events; calling any operation
    again with the same stored state gives the same result.
    """

    def __init__(
        self,
        store: StoragePort,
        config: TrackerConfig | None = None,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the tracker.

        Args:
            store: Event log and aggregate cache.
            config: Engine settings (defaults if not provided).
            clock: Returns the current instant. Defaults to UTC now.
        """
        self._store = store
        self.config = config or TrackerConfig()
        self._tz = self.config.zone
        self._categories = self.config.category_names
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def now(self) -> datetime:
        return localize(self._clock(), self._tz)

    def today(self) -> date:
        return self.now().date()

    def classify(self, subject: str) -> str:
        return classify(subject, self.config.table)

    def _normalize(self, event: Event) -> Event:
        """Make the event's instants aware in the tracker timezone.

        Intervals get their duration re-derived from the localized ends.
        """
        start = localize(event.start, self._tz)
        update: dict[str, Any] = {"start": start, "end": None}
        if event.end is not None:
            update["end"] = localize(event.end, self._tz)
            update["duration_minutes"] = minutes_between(start, update["end"])
        return event.model_copy(update=update)

    def _refresh_cached(self, day: date) -> None:
        """Re-materialize a cached elapsed day after its events changed."""
        if day < self.today() and self._store.get_aggregate(day) is not None:
            self._store.put_aggregate(day, self.compute_day(day))
            logger.info("Re-materialized cached aggregate for %s", day)

    def record_event(self, event: Event) -> Event:
        """Validate an event and append it to its day's log.

        A late event for an already materialized day re-materializes that
        day, unless the day's raw events were pruned; then the cached
        aggregate is kept.

        Returns:
            The stored event with its assigned ID.

        Raises:
            InvalidEvent: If the event is malformed.
        """
        event = self._normalize(event)
        check_event(event)
        day = day_key(event.start, self._tz)
        pruned = (
            day < self.today()
            and self._store.get_aggregate(day) is not None
            and not self._store.list_events(day, day)
        )
        event_id = self._store.append_event(day, event)
        if pruned:
            logger.warning("Raw events for %s were pruned; cached aggregate is kept", day)
        else:
            self._refresh_cached(day)
        return event.model_copy(update={"id": event_id})

    def record_minute(
        self,
        subject: str,
        *,
        focused: bool,
        visible: bool,
        idle: bool,
        at: datetime | None = None,
    ) -> Event | None:
        """Record one minute on ``subject`` if the minute counts as screen time.

        Returns:
            The stored event, or None when the minute was skipped.
        """
        if not should_record_minute(focused, visible, idle):
            return None
        event = Event.minute(subject, at or self.now(), category=self.classify(subject))
        return self.record_event(event)

    def start_session(
        self,
        subject: str,
        *,
        category: str | None = None,
        at: datetime | None = None,
    ) -> Event:
        """Open a running interval session."""
        event = Event.interval(subject, at or self.now(), category=category or self.classify(subject))
        return self.record_event(event)

    def stop_session(self, event_id: int, *, at: datetime | None = None) -> Event:
        """Close a running session.

        If the session's day was materialized while it ran, the cached
        aggregate is rebuilt with the final duration.

        Raises:
            SessionNotFound: If no running session has this ID.
            InvalidEvent: If ``at`` precedes the session start.
        """
        event = self._store.get_event(event_id)
        if event is None or not event.is_running:
            raise SessionNotFound(f"No running session with id {event_id}")
        end = localize(at, self._tz) if at else self.now()
        if end < event.start:
            raise InvalidEvent(f"Session {event_id} cannot end before it starts")
        duration = minutes_between(event.start, end)
        if not self._store.close_event(event_id, end, duration):
            raise SessionNotFound(f"No running session with id {event_id}")
        self._refresh_cached(day_key(event.start, self._tz))
        return event.model_copy(update={"end": end, "duration_minutes": duration})

    def compute_day(self, day: date, *, live: bool = False) -> DayAggregate:
        """Aggregate a day from its raw events.

        A live aggregate counts running sessions up to now and must not be
        cached.
        """
        events = self._store.list_events(day, day)
        return aggregate_day(
            day,
            events,
            categories=self._categories,
            tz=self._tz,
            top_n=self.config.top_n,
            now=self.now() if live else None,
        )

    def get_day_aggregate(self, day: date, *, force_recompute: bool = False) -> DayAggregate:
        """Aggregate for a day.

        Elapsed days return the cached aggregate unless ``force_recompute``
        is set or none is cached. Today is always computed live.
        """
        if day >= self.today():
            return self.compute_day(day, live=True)
        if not force_recompute:
            cached = self._store.get_aggregate(day)
            if cached is not None:
                return cached
        return self.compute_day(day)

    def day_aggregate(self, day: date) -> DayAggregate | None:
        return self.get_day_aggregate(day)

    def get_summary(self, range_name: str, *, compare: bool = False) -> Summary:
        """Summarize a named range ("today", "7d" or "30d").

        Raises:
            InvalidRange: If ``range_name`` is unknown.
        """
        now = self.now()
        date_range = range_for(range_name, now, self._tz)
        return summarize(
            date_range,
            self,
            today=now.date(),
            categories=self._categories,
            tz=self._tz,
            include_previous=compare,
            minutes_per_day=self.config.minutes_per_considered_day,
            streak_lookback=self.config.streak_lookback_days,
        )

    def prune_events_before(self, cutoff_day: date) -> int:
        """Delete raw events of days before ``cutoff_day``. Returns the count."""
        removed = self._store.delete_events_before(cutoff_day)
        logger.info("Pruned %d events before %s", removed, cutoff_day)
        return removed

    def rollup(self, now: datetime | None = None) -> RollupResult:
        """Materialize elapsed days and prune events past the retention window.

        Every elapsed day with raw events and no cached aggregate is
        aggregated and cached. Raw events older than the retention window are
        then pruned, but never for a day whose aggregate is not cached. If a
        step fails, previously cached aggregates are untouched and the rollup
        can be re-run in full.
        """
        now = localize(now, self._tz) if now else self.now()
        today = now.date()
        result = RollupResult()

        cached = set(self._store.list_aggregate_days())
        for day in self._store.list_event_days():
            if day >= today or day in cached:
                continue
            self._store.put_aggregate(day, self.compute_day(day))
            cached.add(day)
            result.materialized.append(day)

        cutoff = today - timedelta(days=self.config.retention_days)
        for day in self._store.list_event_days():
            if day >= cutoff:
                break
            if day not in cached:
                logger.warning("Day %s has no cached aggregate; pruning stops there", day)
                cutoff = day
                break
        result.cutoff = cutoff
        result.pruned_events = self.prune_events_before(cutoff)

        logger.info(
            "Rollup materialized %d days, pruned %d events",
            len(result.materialized),
            result.pruned_events,
        )
        return result

    def export_document(self) -> dict[str, Any]:
        """Plain JSON-ready document of all events and aggregates."""
        events, aggregates = self._store.export_state()
        return {
            "schema_version": SCHEMA_VERSION,
            "exported_at": self.now().isoformat(),
            "events": {
                day.isoformat(): [event.model_dump(mode="json", exclude={"id"}) for event in day_events]
                for day, day_events in events.items()
            },
            "aggregates": {
                day.isoformat(): aggregate.model_dump(mode="json") for day, aggregate in aggregates.items()
            },
        }

    def import_document(self, document: Any) -> None:
        """Replace all stored state with an exported document.

        The whole document is validated before anything is written.

        Raises:
            InvalidImport: If the document is malformed. Stored data is
                left unchanged.
        """
        if not isinstance(document, dict):
            raise InvalidImport("Import document must be a JSON object")
        for key in ("events", "aggregates"):
            if not isinstance(document.get(key), dict):
                raise InvalidImport(f"Import document requires an '{key}' object")

        try:
            parsed = ExportDocument.model_validate(document)
        except ValidationError as e:
            raise InvalidImport(f"Invalid import document: {e}") from e

        if parsed.schema_version > SCHEMA_VERSION:
            raise InvalidImport(f"Unsupported schema version {parsed.schema_version}")

        events: dict[date, list[Event]] = {}
        for day, day_events in parsed.events.items():
            events[day] = []
            for event in day_events:
                event = self._normalize(event).model_copy(update={"id": None})
                try:
                    check_event(event)
                except InvalidEvent as e:
                    raise InvalidImport(f"Invalid event on {day}: {e}") from e
                if day_key(event.start, self._tz) != day:
                    raise InvalidImport(f"Event starting {event.start} is filed under {day}")
                events[day].append(event)

        aggregates: dict[date, DayAggregate] = {}
        for day, aggregate in parsed.aggregates.items():
            if aggregate.day != day:
                raise InvalidImport(f"Aggregate for {aggregate.day} is filed under {day}")
            # every known category must be present; missing ones are zero
            by_category = {name: 0 for name in self._categories}
            by_category.update(aggregate.by_category)
            aggregates[day] = aggregate.model_copy(update={"by_category": by_category})

        self._store.replace_state(events, aggregates)
        logger.info("Imported %d event days and %d aggregates", len(events), len(aggregates))
