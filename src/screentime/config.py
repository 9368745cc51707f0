"""Tracker configuration."""

from __future__ import annotations

from datetime import tzinfo
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError, field_validator

from screentime.classify import DEFAULT_CATEGORY_TABLE, categories
from screentime.errors import ConfigError
from screentime.timeutil import get_timezone

DEFAULT_DB_PATH = Path.home() / ".local" / "share" / "screentime" / "events.db"


class CategoryRule(BaseModel):
    """One row of the classification table."""

    name: str
    patterns: list[str] = Field(default_factory=list)


def _default_rules() -> list[CategoryRule]:
    return [CategoryRule(name=name, patterns=list(patterns)) for name, patterns in DEFAULT_CATEGORY_TABLE]


class TrackerConfig(BaseModel):
    """Engine settings.

    ``categories`` is ordered; the first rule whose pattern matches a subject
    wins. Changing it only affects events recorded afterwards.
    """

    timezone: str = "UTC"
    top_n: int = Field(default=10, ge=1)
    minutes_per_considered_day: int = Field(default=16 * 60, gt=0)
    retention_days: int = Field(default=30, ge=0)
    streak_lookback_days: int = Field(default=365, ge=1)
    categories: list[CategoryRule] = Field(default_factory=_default_rules)

    @field_validator("timezone")
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        try:
            get_timezone(value)
        except ConfigError as e:
            raise ValueError(str(e)) from e
        return value

    @property
    def table(self) -> list[tuple[str, list[str]]]:
        return [(rule.name, rule.patterns) for rule in self.categories]

    @property
    def category_names(self) -> list[str]:
        return categories(self.table)

    @property
    def zone(self) -> tzinfo:
        return get_timezone(self.timezone)


def load_config(path: Path | None) -> TrackerConfig:
    """Load a JSON config file, or defaults when ``path`` is None.

    Raises:
        ConfigError: If the file cannot be read or fails validation.
    """
    if path is None:
        return TrackerConfig()
    try:
        return TrackerConfig.model_validate_json(path.read_text())
    except OSError as e:
        raise ConfigError(f"Cannot read config {path}: {e}") from e
    except ValidationError as e:
        raise ConfigError(f"Invalid config {path}: {e}") from e
