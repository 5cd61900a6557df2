"""
Configuration for cardcadence.

Two layers live here:

* ``SchedulerConfig`` - the algorithm parameters consumed by the scheduler and
  the queue builder. Immutable; per-deck overrides produce a new instance.
* ``Settings`` - process-level settings (database path, override file, log
  level), loaded from environment variables or a ``.env`` file.
"""
import logging
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .constants import (
    DEFAULT_EASE_FACTOR,
    DEFAULT_EASY_BONUS,
    DEFAULT_GRADUATING_INTERVAL,
    DEFAULT_HARD_MULTIPLIER,
    DEFAULT_INTERVAL_MULTIPLIER,
    DEFAULT_LEARNING_STEPS,
    DEFAULT_MAX_INTERVAL,
    DEFAULT_NEW_ITEMS_PER_DAY,
    DEFAULT_REVIEWS_PER_DAY,
    INTERVAL_LIMIT_DAYS,
    MINUTES_PER_DAY,
    MIN_EASE_FACTOR,
)
from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)


class SchedulerConfig(BaseModel):
    """Configuration for the step-ladder scheduler and study queue."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    learning_steps: Tuple[float, ...] = Field(
        default=DEFAULT_LEARNING_STEPS,
        description="Learning-step ladder, in minutes.",
    )
    graduating_interval: float = Field(
        default=DEFAULT_GRADUATING_INTERVAL,
        gt=0,
        le=INTERVAL_LIMIT_DAYS,
        description="Interval assigned on first graduation, in days.",
    )
    easy_bonus: float = Field(default=DEFAULT_EASY_BONUS, ge=1)
    # Applied directly to the interval on a Hard review.
    hard_multiplier: float = Field(default=DEFAULT_HARD_MULTIPLIER, gt=0)
    interval_multiplier: float = Field(
        default=DEFAULT_INTERVAL_MULTIPLIER, gt=0
    )
    max_interval: float = Field(
        default=DEFAULT_MAX_INTERVAL,
        gt=0,
        le=INTERVAL_LIMIT_DAYS,
        description="Hard cap on review intervals, in days.",
    )
    default_ease_factor: float = Field(
        default=DEFAULT_EASE_FACTOR, ge=MIN_EASE_FACTOR
    )
    new_items_per_day: int = Field(default=DEFAULT_NEW_ITEMS_PER_DAY, ge=0)
    reviews_per_day: int = Field(default=DEFAULT_REVIEWS_PER_DAY, ge=0)

    @field_validator("learning_steps")
    @classmethod
    def validate_steps_in_range(
        cls, steps: Tuple[float, ...]
    ) -> Tuple[float, ...]:
        for step in steps:
            if step <= 0:
                raise ValueError(
                    f"Learning step {step} must be a positive number of minutes."
                )
            if step > INTERVAL_LIMIT_DAYS * MINUTES_PER_DAY:
                raise ValueError(
                    f"Learning step {step} exceeds {INTERVAL_LIMIT_DAYS:g} days."
                )
        return steps

    def with_overrides(
        self, overrides: Optional[Mapping[str, Any]]
    ) -> "SchedulerConfig":
        """
        Return a new config with ``overrides`` applied on top of this one.

        Raises:
            ConfigurationError: If an override names an unknown field or
                fails validation.
        """
        if not overrides:
            return self
        data = self.model_dump()
        data.update(overrides)
        try:
            return SchedulerConfig.model_validate(data)
        except ValidationError as e:
            error_details = e.errors()[0]
            field = ".".join(map(str, error_details["loc"]))
            raise ConfigurationError(
                f"Invalid configuration override '{field}': {error_details['msg']}"
            ) from e


def load_config_file(path: Path) -> Dict[str, Any]:
    """
    Read scheduler overrides from a YAML file.

    An empty file yields no overrides.

    Raises:
        ConfigurationError: If the file is missing, unreadable, not valid
            YAML, or its top level is not a mapping.
    """
    try:
        content = Path(path).read_text(encoding="utf-8")
        raw = yaml.safe_load(content)
    except FileNotFoundError:
        raise ConfigurationError(f"Config file not found: {path}") from None
    except OSError as e:
        raise ConfigurationError(f"Could not read config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e

    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigurationError(
            f"Top level of {path} must be a mapping of configuration values."
        )
    logger.debug(f"Loaded {len(raw)} configuration overrides from {path}")
    return raw


def get_default_db_path() -> Path:
    """Returns the default path for the database file."""
    return Path.home() / ".cardcadence" / "cardcadence.db"


class Settings(BaseSettings):
    """
    Process settings, loaded from ``CARDCADENCE_*`` environment variables or
    a ``.env`` file.
    """

    model_config = SettingsConfigDict(
        env_prefix="CARDCADENCE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    db_path: Path = Field(default_factory=get_default_db_path)
    # Optional YAML file with user-wide scheduler overrides.
    config_file: Optional[Path] = None
    log_level: str = "WARNING"
    # When True, disables the guard that refuses to drop populated tables.
    # Never enable outside tests.
    testing_mode: bool = False

    def scheduler_config(self) -> SchedulerConfig:
        """Defaults merged with the user-wide override file, if any."""
        base = SchedulerConfig()
        if self.config_file is None:
            return base
        return base.with_overrides(load_config_file(self.config_file))


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
