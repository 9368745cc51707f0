"""Consecutive active day counting."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date, timedelta

from screentime.models import DayAggregate


def streak(days: Sequence[DayAggregate], today: date) -> int:
    """Count consecutive active days ending at ``today``.

    Walks backward from today one day at a time. A day counts only if an
    aggregate for exactly that day is present with minutes tracked; the walk
    stops at the first missing or empty day. An empty today yields 0.
    """
    by_day = {aggregate.day: aggregate for aggregate in days}
    count = 0
    expected = today
    while True:
        aggregate = by_day.get(expected)
        if aggregate is None or not aggregate.is_active:
            return count
        count += 1
        expected -= timedelta(days=1)
