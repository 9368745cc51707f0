"""Day keys and named date ranges.

Every day boundary is computed in a single tracker timezone. Naive datetimes
are read as wall-clock time in that timezone; aware datetimes are converted
to it before truncation.
"""

from __future__ import annotations

from collections.abc import Iterator
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from screentime.errors import ConfigError, InvalidRange
from screentime.models import DateRange

UTC = timezone.utc

# Smallest representable step between instants
TICK = timedelta(microseconds=1)

# Days each rolling range reaches back from now; "today" starts at local midnight
RANGE_DAYS = {"today": 0, "7d": 7, "30d": 30}


def get_timezone(name: str) -> tzinfo:
    """Resolve an IANA timezone name."""
    if name.upper() == "UTC":
        return UTC
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ConfigError(f"Unknown timezone: {name}") from e


def localize(instant: datetime, tz: tzinfo = UTC) -> datetime:
    """Return ``instant`` as an aware datetime in ``tz``."""
    if instant.tzinfo is None:
        return instant.replace(tzinfo=tz)
    return instant.astimezone(tz)


def day_key(instant: datetime | date, tz: tzinfo = UTC) -> date:
    """Truncate an instant to its calendar date in ``tz``."""
    if isinstance(instant, datetime):
        return localize(instant, tz).date()
    return instant


def parse_day(value: str) -> date:
    """Parse a YYYY-MM-DD day key."""
    return date.fromisoformat(value)


def start_of_day(day: date, tz: tzinfo = UTC) -> datetime:
    return datetime.combine(day, time.min, tzinfo=tz)


def end_of_day(day: date, tz: tzinfo = UTC) -> datetime:
    return datetime.combine(day, time.max, tzinfo=tz)


def iter_days(first: date, last: date) -> Iterator[date]:
    """Yield every calendar day from first to last, inclusive."""
    day = first
    while day <= last:
        yield day
        day += timedelta(days=1)


def range_days(date_range: DateRange, tz: tzinfo = UTC) -> list[date]:
    """List the day keys a range touches. Empty when end precedes start."""
    if date_range.is_empty:
        return []
    return list(iter_days(day_key(date_range.start, tz), day_key(date_range.end, tz)))


def range_for(name: str, now: datetime, tz: tzinfo = UTC) -> DateRange:
    """Resolve a named range ending at ``now``.

    "today" starts at local midnight. "7d" and "30d" start exactly 7 or 30
    days before ``now``.

    Raises:
        InvalidRange: If ``name`` is not a known range.
    """
    if name not in RANGE_DAYS:
        raise InvalidRange(name)
    now = localize(now, tz)
    if name == "today":
        return DateRange(start=start_of_day(now.date(), tz), end=now)
    return DateRange(start=now - timedelta(days=RANGE_DAYS[name]), end=now)


def previous_period(date_range: DateRange) -> DateRange:
    """The equal-length range immediately before ``date_range``.

    The result ends one tick before the current range starts, so the two
    never overlap.
    """
    duration = date_range.end - date_range.start
    return DateRange(
        start=date_range.start - duration,
        end=date_range.start - TICK,
    )
