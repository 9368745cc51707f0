"""Domain classification for tracked subjects."""

from __future__ import annotations

from collections.abc import Sequence
from urllib.parse import urlsplit

DEFAULT_CATEGORY = "Other"

# Ordered (category, patterns) table. First match wins.
CategoryTable = Sequence[tuple[str, Sequence[str]]]

DEFAULT_CATEGORY_TABLE: list[tuple[str, list[str]]] = [
    (
        "Entertainment",
        ["youtube.com", "netflix.com", "twitch.tv", "hulu.com", "disneyplus.com", "hbomax.com", "spotify.com"],
    ),
    (
        "Social",
        ["twitter.com", "x.com", "instagram.com", "tiktok.com", "reddit.com", "facebook.com", "linkedin.com", "discord.com"],
    ),
    (
        "Work",
        [
            "figma.com",
            "notion.so",
            "slack.com",
            "linear.app",
            "github.com",
            "stackoverflow.com",
            "jira.com",
            "confluence.com",
            "zoom.us",
            "teams.microsoft.com",
        ],
    ),
    (
        "Utilities",
        [
            "google.com",
            "gmail.com",
            "docs.google.com",
            "calendar.google.com",
            "drive.google.com",
            "maps.google.com",
            "weather.com",
            "wikipedia.org",
        ],
    ),
]


def classify(subject: str, table: CategoryTable = DEFAULT_CATEGORY_TABLE) -> str:
    """Map a subject to the first category whose pattern it contains.

    Matching is case-insensitive substring containment. Subjects that match
    nothing fall back to "Other".
    """
    lowered = subject.lower()
    for category, patterns in table:
        if any(pattern.lower() in lowered for pattern in patterns):
            return category
    return DEFAULT_CATEGORY


def categories(table: CategoryTable = DEFAULT_CATEGORY_TABLE) -> list[str]:
    """Ordered category set for a table, always ending with the fallback."""
    names: list[str] = []
    for category, _ in table:
        if category not in names:
            names.append(category)
    if DEFAULT_CATEGORY not in names:
        names.append(DEFAULT_CATEGORY)
    return names


def domain_from_url(url: str) -> str:
    """Extract the hostname from a URL, or "unknown" if there is none."""
    try:
        hostname = urlsplit(url).hostname
    except ValueError:
        return "unknown"
    return hostname or "unknown"


def should_record_minute(focused: bool, visible: bool, idle: bool) -> bool:
    """Whether the current minute counts as screen time.

    A minute counts only when the window has focus, the tab is visible and
    the user is not idle.
    """
    return focused and visible and not idle
