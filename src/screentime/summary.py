"""Compose DayAggregates across a date range into a Summary."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date, timedelta, tzinfo
from typing import Protocol

from screentime.models import DateRange, DayAggregate, EntityMinutes, Summary, Totals, percentage_change
from screentime.streak import streak
from screentime.timeutil import UTC, previous_period, range_days

# 16 waking hours
DEFAULT_MINUTES_PER_DAY = 16 * 60
DEFAULT_STREAK_LOOKBACK = 365

__all__ = [
    "DayAggregateSource",
    "focus_ratio",
    "merge_top_entity",
    "percentage_change",
    "streak_window",
    "summarize",
    "sum_totals",
]


class DayAggregateSource(Protocol):
    """Protocol for fetching one day's aggregate."""

    def day_aggregate(self, day: date) -> DayAggregate | None:
        """Aggregate for ``day``, or None if nothing was tracked."""
        ...


def sum_totals(days: Sequence[DayAggregate], categories: Sequence[str]) -> Totals:
    """Pointwise sum of day aggregates."""
    by_category = {name: 0 for name in categories}
    minutes = 0
    for day in days:
        minutes += day.total_minutes
        for category, value in day.by_category.items():
            by_category[category] = by_category.get(category, 0) + value
    return Totals(minutes=minutes, by_category=by_category)


def merge_top_entity(days: Sequence[DayAggregate]) -> EntityMinutes | None:
    """Subject with the most minutes across all days.

    Minutes are merged over every day's top entities, so a subject that is
    second every day can beat one that topped a single day. Ties go to the
    subject seen first.
    """
    merged: dict[str, int] = {}
    for day in days:
        for entity in day.top_entities:
            merged[entity.subject] = merged.get(entity.subject, 0) + entity.minutes
    if not merged:
        return None
    subject, minutes = max(merged.items(), key=lambda item: item[1])
    return EntityMinutes(subject=subject, minutes=minutes)


def focus_ratio(minutes: int, day_count: int, minutes_per_day: int = DEFAULT_MINUTES_PER_DAY) -> float:
    """Tracked minutes as a percentage of the considered daily budget.

    Rounded to 2 decimal places; 0 for an empty range.
    """
    if day_count == 0 or minutes_per_day <= 0:
        return 0.0
    return round(minutes / (day_count * minutes_per_day) * 100, 2)


def streak_window(
    source: DayAggregateSource,
    today: date,
    lookback: int = DEFAULT_STREAK_LOOKBACK,
) -> list[DayAggregate]:
    """Aggregates from today backward, stopping before the first inactive day."""
    window: list[DayAggregate] = []
    for offset in range(lookback):
        aggregate = source.day_aggregate(today - timedelta(days=offset))
        if aggregate is None or not aggregate.is_active:
            break
        window.append(aggregate)
    return window


def summarize(
    date_range: DateRange,
    source: DayAggregateSource,
    *,
    today: date,
    categories: Sequence[str],
    tz: tzinfo = UTC,
    include_previous: bool = False,
    minutes_per_day: int = DEFAULT_MINUTES_PER_DAY,
    streak_lookback: int = DEFAULT_STREAK_LOOKBACK,
) -> Summary:
    """Build a Summary covering every calendar day of ``date_range``.

    Days the source has nothing for are zero-filled, so ``days`` always spans
    the full calendar range. With ``include_previous``, the immediately
    preceding equal-length range is summarized too (without its own
    previous period) and attached as ``previous_period``.

    Args:
        date_range: Inclusive range of instants to summarize.
        source: Where day aggregates come from.
        today: Current day key, the anchor for the streak.
        categories: Full category set for zero-filling.
        tz: Tracker timezone used for day keys.
        include_previous: Attach a summary of the preceding period.
        minutes_per_day: Denominator of the focus ratio per day.
        streak_lookback: Maximum number of days the streak walks back.
    """
    days = [
        source.day_aggregate(day) or DayAggregate.empty(day, list(categories))
        for day in range_days(date_range, tz)
    ]
    totals = sum_totals(days, categories)

    previous = None
    if include_previous:
        previous = summarize(
            previous_period(date_range),
            source,
            today=today,
            categories=categories,
            tz=tz,
            include_previous=False,
            minutes_per_day=minutes_per_day,
            streak_lookback=streak_lookback,
        )

    return Summary(
        range=date_range,
        days=days,
        totals=totals,
        top_entity=merge_top_entity(days),
        focus_ratio=focus_ratio(totals.minutes, len(days), minutes_per_day),
        streak_days=streak(streak_window(source, today, streak_lookback), today),
        previous_period=previous,
    )
