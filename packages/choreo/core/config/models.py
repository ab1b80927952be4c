"""Configuration models for choreo."""

from __future__ import annotations

from pathlib import Path
from typing import Literal, Self

from pydantic import BaseModel, ConfigDict, Field, field_validator

from choreo.core.effects.easing import validate_easing
from choreo.core.utils.logging import DEFAULT_TEXT_FORMAT


class ConfigBase(BaseModel):
    """File-backed configuration with a per-class default location.

    Unknown keys are ignored so newer config files still load.
    """

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def default_path(cls) -> Path:
        raise NotImplementedError(f"{cls.__name__} must implement default_path()")

    @classmethod
    def load_or_default(cls, path: Path | str | None = None) -> Self:
        """Load and validate ``path`` (``default_path()`` when omitted).

        Raises:
            FileNotFoundError: If the file does not exist
            ValidationError: If the content is invalid
        """
        from choreo.core.config.loader import load_config

        return cls.model_validate(load_config(path if path is not None else cls.default_path()))


class LoggingConfig(BaseModel):
    """Settings passed to :func:`choreo.core.utils.logging.configure_logging`."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    format: str = DEFAULT_TEXT_FORMAT
    structured: bool = False
    filename: str | None = None


class PlaybackDefaults(BaseModel):
    """Defaults applied to every unit built by the unit factories.

    Attributes:
        min_duration: Floor for unit durations in ms (never below 0.01)
        time_scale: Real seconds per local ms for ClockEffectHost (0.001 is real time)
        frame_interval: Seconds between mutator frames
        forceful_commit: Retry failed result commits with force
        easing: Default easing name
    """

    model_config = ConfigDict(extra="forbid")

    min_duration: float = Field(default=0.01, ge=0.01)
    time_scale: float = Field(default=0.001, gt=0.0)
    frame_interval: float = Field(default=1 / 60, gt=0.0)
    forceful_commit: bool = False
    easing: str = "linear"

    @field_validator("easing")
    @classmethod
    def check_easing(cls, value: str) -> str:
        return validate_easing(value)


class AppConfig(ConfigBase):
    """Application-level configuration (``choreo.yaml``)."""

    playback: PlaybackDefaults = PlaybackDefaults()
    logging: LoggingConfig = LoggingConfig()

    @classmethod
    def default_path(cls) -> Path:
        return Path("choreo.yaml")

    @classmethod
    def load_or_default(cls, path: Path | str | None = None) -> Self:
        """Like :func:`~choreo.core.config.loader.load_app_config`.

        A missing file gives defaults and environment overrides are applied.
        """
        from choreo.core.config.loader import load_app_config

        return load_app_config(path)  # type: ignore[return-value]
