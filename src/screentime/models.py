"""Data model for screen time events and their rollups."""

from __future__ import annotations

import math
from datetime import date, datetime, timezone

from pydantic import BaseModel, ConfigDict, Field, model_validator

SCHEMA_VERSION = 1


def minutes_between(start: datetime, end: datetime) -> int:
    """Whole minutes from start to end, rounded half-up.

    Negative when end precedes start. Aware instants are compared in UTC so
    that a DST change inside the interval is counted in real minutes.
    """
    if start.tzinfo is not None and end.tzinfo is not None:
        start, end = start.astimezone(timezone.utc), end.astimezone(timezone.utc)
    seconds = (end - start).total_seconds()
    return int(math.floor(seconds / 60 + 0.5))


def same_awareness(a: datetime, b: datetime) -> bool:
    """Whether both instants are naive or both are timezone-aware."""
    return (a.tzinfo is None) == (b.tzinfo is None)


def percentage_change(current: int | float, previous: int | float) -> float:
    """Percentage change from previous to current.

    A zero previous value reports 100 when current is positive, else 0.
    """
    if previous == 0:
        return 100.0 if current > 0 else 0.0
    return (current - previous) / previous * 100


class Event(BaseModel):
    """A tracked minute or interval.

    Minute events carry ``duration_minutes=1``. Interval events derive their
    duration from ``end - start``; an interval without ``end`` is still
    running and has no duration yet. When one end is naive and the other
    aware, the duration is derived after the tracker localizes both.
    """

    subject: str
    category: str = "Other"
    start: datetime
    end: datetime | None = None
    duration_minutes: int | None = None
    id: int | None = None

    @model_validator(mode="after")
    def _derive_duration(self) -> Event:
        if self.duration_minutes is None and self.end is not None and same_awareness(self.start, self.end):
            self.duration_minutes = minutes_between(self.start, self.end)
        return self

    @classmethod
    def minute(cls, subject: str, at: datetime, *, category: str = "Other") -> Event:
        """Create a one-minute event for the minute containing ``at``."""
        return cls(
            subject=subject,
            category=category,
            start=at.replace(second=0, microsecond=0),
            duration_minutes=1,
        )

    @classmethod
    def interval(
        cls,
        subject: str,
        start: datetime,
        end: datetime | None = None,
        *,
        category: str = "Other",
    ) -> Event:
        """Create an interval event, open-ended when ``end`` is None."""
        return cls(subject=subject, category=category, start=start, end=end)

    @property
    def is_running(self) -> bool:
        return self.end is None and self.duration_minutes is None

    def minutes(self, now: datetime | None = None) -> int:
        """Minutes this event contributes.

        Running events count 0 unless ``now`` is given, in which case they
        count the elapsed time up to ``now``.
        """
        if self.duration_minutes is not None:
            return self.duration_minutes
        if now is None:
            return 0
        return max(0, minutes_between(self.start, now))


class EntityMinutes(BaseModel):
    """Minutes spent on one subject."""

    model_config = ConfigDict(frozen=True)

    subject: str
    minutes: int


class DayAggregate(BaseModel):
    """Materialized per-day rollup of minutes by category and top subjects."""

    model_config = ConfigDict(frozen=True)

    day: date
    total_minutes: int = 0
    by_category: dict[str, int]
    top_entities: list[EntityMinutes] = Field(default_factory=list)

    @classmethod
    def empty(cls, day: date, categories: list[str]) -> DayAggregate:
        return cls(day=day, by_category={name: 0 for name in categories})

    @model_validator(mode="after")
    def _check_total(self) -> DayAggregate:
        category_sum = sum(self.by_category.values())
        if category_sum != self.total_minutes:
            raise ValueError(f"by_category sums to {category_sum}, not total_minutes {self.total_minutes}")
        return self

    @property
    def is_active(self) -> bool:
        return self.total_minutes > 0


class DateRange(BaseModel):
    """Inclusive range of instants."""

    model_config = ConfigDict(frozen=True)

    start: datetime
    end: datetime

    @property
    def is_empty(self) -> bool:
        return self.end < self.start


class Totals(BaseModel):
    minutes: int = 0
    by_category: dict[str, int] = Field(default_factory=dict)


class Summary(BaseModel):
    """Composed view over a date range. Never persisted."""

    range: DateRange
    days: list[DayAggregate]
    totals: Totals
    top_entity: EntityMinutes | None = None
    focus_ratio: float = 0.0
    streak_days: int = 0
    previous_period: Summary | None = None

    def minutes_change(self) -> float | None:
        """Percentage change in total minutes against the previous period."""
        if self.previous_period is None:
            return None
        return percentage_change(self.totals.minutes, self.previous_period.totals.minutes)


class ExportDocument(BaseModel):
    """Import/export document holding both persisted collections."""

    schema_version: int
    exported_at: datetime | None = None
    events: dict[date, list[Event]]
    aggregates: dict[date, DayAggregate]


Summary.model_rebuild()
