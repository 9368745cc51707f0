"""Exception types raised by the screen time engine."""

from __future__ import annotations


class TrackerError(Exception):
    """Base exception for tracker errors."""

    pass


class InvalidEvent(TrackerError):
    """Raised when an event has an empty subject or a negative duration."""

    pass


class DayMismatch(TrackerError):
    """Raised when an event is routed to a day bucket it does not belong to."""

    def __init__(self, expected: object, actual: object) -> None:
        super().__init__(f"Event belongs to {actual}, not {expected}")
        self.expected = expected
        self.actual = actual


class InvalidRange(TrackerError):
    """Raised for an unrecognized range name."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Unknown range '{name}'. Use one of: today, 7d, 30d")
        self.name = name


class InvalidImport(TrackerError):
    """Raised when an import document is malformed."""

    pass


class StorageUnavailable(TrackerError):
    """Raised when the backing store cannot be reached."""

    pass


class SessionNotFound(TrackerError):
    """Raised when stopping a session that does not exist."""

    pass


class ConfigError(TrackerError):
    """Raised when a config file cannot be loaded."""

    pass
