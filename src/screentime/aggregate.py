"""Reduce a day's raw events into a DayAggregate."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date, datetime, tzinfo

from screentime.classify import DEFAULT_CATEGORY
from screentime.errors import DayMismatch
from screentime.models import DayAggregate, EntityMinutes, Event
from screentime.timeutil import UTC, day_key

DEFAULT_TOP_N = 10


def aggregate_day(
    day: date,
    events: Sequence[Event],
    *,
    categories: Sequence[str],
    tz: tzinfo = UTC,
    top_n: int = DEFAULT_TOP_N,
    now: datetime | None = None,
) -> DayAggregate:
    """Build the aggregate for ``day`` from its events.

    Running sessions contribute nothing to a finalized aggregate. Passing
    ``now`` produces a live preview instead, where running sessions count the
    time elapsed up to ``now``. Previews must not be cached.

    Args:
        day: Day key the events belong to.
        events: Every event of the day, in insertion order.
        categories: Full category set; every one appears in ``by_category``.
        tz: Tracker timezone used for day keys.
        top_n: Number of subjects kept in ``top_entities``.
        now: Current instant for a live preview, or None for a final rollup.

    Raises:
        DayMismatch: If an event starts on a different day.
    """
    by_category = {name: 0 for name in categories}
    # dicts keep first-insertion order, which is the tie-break for top entities
    by_subject: dict[str, int] = {}
    total = 0

    for event in events:
        event_day = day_key(event.start, tz)
        if event_day != day:
            raise DayMismatch(day, event_day)

        minutes = event.minutes(now)
        total += minutes
        category = event.category if event.category in by_category else DEFAULT_CATEGORY
        by_category[category] = by_category.get(category, 0) + minutes
        by_subject[event.subject] = by_subject.get(event.subject, 0) + minutes

    return DayAggregate(
        day=day,
        total_minutes=total,
        by_category=by_category,
        top_entities=top_entities(by_subject, top_n),
    )


def top_entities(minutes_by_subject: dict[str, int], limit: int) -> list[EntityMinutes]:
    """Highest-minute subjects, ties broken by first occurrence.

    Zero-minute subjects (running sessions in a final rollup) are left out.
    """
    ranked = sorted(
        (item for item in minutes_by_subject.items() if item[1] > 0),
        key=lambda item: -item[1],
    )
    return [EntityMinutes(subject=subject, minutes=minutes) for subject, minutes in ranked[:limit]]
