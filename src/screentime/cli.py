"""CLI entry point for the screen time tracker."""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import date, datetime
from pathlib import Path
from typing import Any

import click

from screentime.classify import classify, domain_from_url
from screentime.config import DEFAULT_DB_PATH, load_config
from screentime.errors import TrackerError
from screentime.models import DayAggregate, Event, Summary
from screentime.store import SqliteStore
from screentime.timeutil import day_key, parse_day
from screentime.tracker import Tracker


def format_minutes(minutes: int) -> str:
    """Format minutes as 'Xh Ym', 'Xh' or 'Ym'."""
    if minutes < 60:
        return f"{minutes}m"
    hours, remainder = divmod(minutes, 60)
    if remainder == 0:
        return f"{hours}h"
    return f"{hours}h {remainder}m"


def format_percentage_change(change: float) -> str:
    """Format a percentage change with sign and arrow (e.g., '↗ +25%')."""
    if change == 0:
        return "0%"
    sign = "+" if change > 0 else ""
    arrow = "↗" if change > 0 else "↘"
    return f"{arrow} {sign}{round(change)}%"


def format_date_range(first: date, last: date) -> str:
    """Format a day range for report headers.

    Returns:
        Formatted string like "Jan 20-26, 2025" or "Jan 28, 2025".
    """
    if first == last:
        return first.strftime("%b %d, %Y")
    if first.year == last.year and first.month == last.month:
        return f"{first.strftime('%b')} {first.day}-{last.day}, {first.year}"
    elif first.year == last.year:
        return f"{first.strftime('%b %d')} - {last.strftime('%b %d')}, {first.year}"
    else:
        return f"{first.strftime('%b %d, %Y')} - {last.strftime('%b %d, %Y')}"


def share_bar(minutes: int, total: int, width: int = 20) -> str:
    """Bracketed bar of a category's share of the total, then the percentage.

    Example: ``share_bar(45, 90, width=10)`` gives ``'[#####-----]  50%'``.
    """
    share = minutes / total if total > 0 else 0.0
    filled = min(width, int(share * width + 0.5))
    return f"[{'#' * filled}{'-' * (width - filled)}] {share * 100:3.0f}%"


def _parse_timestamp(ctx: click.Context, param: click.Parameter, value: str | None) -> datetime | None:
    if value is None:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        raise click.BadParameter(f"Invalid timestamp: {value}. Use ISO 8601.")


def db_option(func: Callable[..., Any]) -> Callable[..., Any]:
    return click.option(
        "--db",
        type=click.Path(path_type=Path),
        default=DEFAULT_DB_PATH,
        envvar="SCREENTIME_DB",
        help="Path to SQLite database",
    )(func)


def config_option(func: Callable[..., Any]) -> Callable[..., Any]:
    return click.option(
        "--config",
        "config_path",
        type=click.Path(path_type=Path, dir_okay=False),
        default=None,
        envvar="SCREENTIME_CONFIG",
        help="Path to JSON config file",
    )(func)


@contextmanager
def open_tracker(db: Path, config_path: Path | None) -> Iterator[Tracker]:
    """Open the store and yield a Tracker, reporting tracker errors on stderr."""
    try:
        config = load_config(config_path)
        # Ensure database directory exists
        db.parent.mkdir(parents=True, exist_ok=True)
        with SqliteStore.open(db) as store:
            yield Tracker(store, config)
    except TrackerError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
def main(verbose: bool) -> None:
    """Screen time tracker CLI."""
    if verbose:
        logging.basicConfig(level=logging.DEBUG)


@main.command("record")
@click.argument("subject")
@click.option("--at", callback=_parse_timestamp, help="ISO 8601 start time (default: now)")
@click.option("--minutes", type=int, help="Duration in minutes (default: 1)")
@click.option("--end", callback=_parse_timestamp, help="ISO 8601 end time for an interval")
@click.option("--category", help="Category (default: classified from SUBJECT)")
@db_option
@config_option
def record_command(
    subject: str,
    at: datetime | None,
    minutes: int | None,
    end: datetime | None,
    category: str | None,
    db: Path,
    config_path: Path | None,
) -> None:
    """Record time spent on SUBJECT.

    Records a single minute by default, or an interval with --minutes or --end.
    A full URL is reduced to its hostname.

    Example:
        screentime record github.com
        screentime record github.com --at 2025-01-25T10:00:00Z --minutes 30
    """
    if minutes is not None and end is not None:
        raise click.UsageError("Use either --minutes or --end, not both")
    if "://" in subject:
        subject = domain_from_url(subject)

    with open_tracker(db, config_path) as tracker:
        start = at or tracker.now()
        category = category or tracker.classify(subject)
        if end is not None:
            event = Event.interval(subject, start, end, category=category)
        elif minutes is not None:
            event = Event(subject=subject, category=category, start=start, duration_minutes=minutes)
        else:
            event = Event.minute(subject, start, category=category)
        stored = tracker.record_event(event)

    click.echo(f"Recorded {format_minutes(stored.minutes())} on {stored.subject} ({stored.category})")


@main.command("start")
@click.argument("subject")
@click.option("--category", help="Category (default: classified from SUBJECT)")
@db_option
@config_option
def start_command(subject: str, category: str | None, db: Path, config_path: Path | None) -> None:
    """Start a running session on SUBJECT."""
    with open_tracker(db, config_path) as tracker:
        event = tracker.start_session(subject, category=category)
    click.echo(f"Started session {event.id} on {event.subject} ({event.category})")


@main.command("stop")
@click.argument("event_id", type=int)
@db_option
@config_option
def stop_command(event_id: int, db: Path, config_path: Path | None) -> None:
    """Stop the running session EVENT_ID."""
    with open_tracker(db, config_path) as tracker:
        event = tracker.stop_session(event_id)
    click.echo(f"Stopped session {event_id} on {event.subject} after {format_minutes(event.minutes())}")


@main.command("day")
@click.argument("day_date", default="today")
@click.option("--recompute", is_flag=True, help="Recompute from raw events instead of the cache")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@db_option
@config_option
def day_command(
    day_date: str,
    recompute: bool,
    output_json: bool,
    db: Path,
    config_path: Path | None,
) -> None:
    """Show the aggregate for one day (YYYY-MM-DD, default: today)."""
    with open_tracker(db, config_path) as tracker:
        if day_date == "today":
            day = tracker.today()
        else:
            try:
                day = parse_day(day_date)
            except ValueError:
                click.echo(f"Invalid date format: {day_date}. Use YYYY-MM-DD.", err=True)
                sys.exit(1)
        aggregate = tracker.get_day_aggregate(day, force_recompute=recompute)

    if output_json:
        click.echo(aggregate.model_dump_json(indent=2))
    else:
        _output_human_day(aggregate)


@main.command("summary")
@click.argument("range_name", default="today")
@click.option("--compare", is_flag=True, help="Compare with the previous period")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@db_option
@config_option
def summary_command(
    range_name: str,
    compare: bool,
    output_json: bool,
    db: Path,
    config_path: Path | None,
) -> None:
    """Show a summary for RANGE_NAME (today, 7d or 30d)."""
    with open_tracker(db, config_path) as tracker:
        summary = tracker.get_summary(range_name, compare=compare)
        first = day_key(summary.range.start, tracker.config.zone)
        last = day_key(summary.range.end, tracker.config.zone)

    if output_json:
        click.echo(summary.model_dump_json(indent=2))
    else:
        _output_human_summary(range_name, format_date_range(first, last), summary)


@main.command("rollup")
@db_option
@config_option
def rollup_command(db: Path, config_path: Path | None) -> None:
    """Materialize elapsed days and prune old raw events."""
    with open_tracker(db, config_path) as tracker:
        result = tracker.rollup()
    click.echo(f"Materialized {len(result.materialized)} days, pruned {result.pruned_events} events")


@main.command("prune")
@click.option("--before", "before", required=True, help="Delete raw events before this day (YYYY-MM-DD)")
@db_option
@config_option
def prune_command(before: str, db: Path, config_path: Path | None) -> None:
    """Delete raw events before a day."""
    try:
        cutoff = parse_day(before)
    except ValueError:
        click.echo(f"Invalid date format: {before}. Use YYYY-MM-DD.", err=True)
        sys.exit(1)

    with open_tracker(db, config_path) as tracker:
        removed = tracker.prune_events_before(cutoff)
    click.echo(f"Pruned {removed} events")


@main.command("export")
@click.argument("output", type=click.File("w"), default="-")
@db_option
@config_option
def export_command(output: Any, db: Path, config_path: Path | None) -> None:
    """Export events and aggregates as JSON (default: stdout)."""
    with open_tracker(db, config_path) as tracker:
        document = tracker.export_document()
    output.write(json.dumps(document, indent=2) + "\n")


@main.command("import")
@click.argument("source", type=click.File("r"))
@db_option
@config_option
def import_command(source: Any, db: Path, config_path: Path | None) -> None:
    """Replace stored data with an exported JSON document.

    Nothing is changed if the document is invalid.
    """
    try:
        document = json.load(source)
    except json.JSONDecodeError as e:
        click.echo(f"Error: invalid JSON: {e}", err=True)
        sys.exit(1)

    with open_tracker(db, config_path) as tracker:
        tracker.import_document(document)
    click.echo(f"Imported {sum(len(v) for v in document['events'].values())} events")


@main.command("classify")
@click.argument("subject")
@config_option
def classify_command(subject: str, config_path: Path | None) -> None:
    """Print the category SUBJECT would be recorded under."""
    try:
        config = load_config(config_path)
    except TrackerError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    click.echo(classify(subject, config.table))


def _output_by_category(by_category: dict[str, int], total: int) -> None:
    for category, minutes in sorted(by_category.items(), key=lambda item: -item[1]):
        click.echo(f"  {category:<16} {format_minutes(minutes):>8}  {share_bar(minutes, total)}")


def _output_human_day(aggregate: DayAggregate) -> None:
    """Output human-readable day aggregate."""
    click.echo(f"Screen Time: {format_date_range(aggregate.day, aggregate.day)}")
    click.echo()

    if aggregate.total_minutes == 0:
        click.echo("No time tracked for this day.")
        return

    click.echo(f"Total: {format_minutes(aggregate.total_minutes)}")
    click.echo()
    click.echo("By Category:")
    _output_by_category(aggregate.by_category, aggregate.total_minutes)
    click.echo()
    click.echo("Top Sites:")
    for entity in aggregate.top_entities:
        click.echo(f"  {entity.subject:<30} {format_minutes(entity.minutes):>8}")


def _output_human_summary(range_name: str, header: str, summary: Summary) -> None:
    """Output human-readable summary."""
    click.echo(f"Screen Time ({range_name}): {header}")
    click.echo()

    if summary.totals.minutes == 0:
        click.echo("No time tracked for this period.")
        return

    total_line = f"Total: {format_minutes(summary.totals.minutes)}"
    change = summary.minutes_change()
    if change is not None:
        total_line += f" ({format_percentage_change(change)} vs previous period)"
    click.echo(total_line)
    click.echo(f"Focus: {summary.focus_ratio:.2f}%")
    click.echo(f"Streak: {summary.streak_days} day{'s' if summary.streak_days != 1 else ''}")
    if summary.top_entity is not None:
        click.echo(f"Top: {summary.top_entity.subject} ({format_minutes(summary.top_entity.minutes)})")
    click.echo()
    click.echo("By Category:")
    _output_by_category(summary.totals.by_category, summary.totals.minutes)


if __name__ == "__main__":
    main()
