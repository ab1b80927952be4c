"""Pydantic models for unit and scheduler configuration, timing and status."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from choreo.core.effects.easing import validate_easing
from choreo.core.effects.enums import Composite, Direction

MIN_DURATION = 0.01


class UnitConfig(BaseModel):
    """Timing and behavior configuration for a unit.

    Times are in milliseconds. ``duration`` is clamped to :data:`MIN_DURATION` so the
    active phase is never zero-length.
    ``composite`` is not interpreted here; it is handed to the host at the start of
    every pass as ``host.composite``.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    duration: float = Field(default=500.0, ge=0.0)
    delay: float = Field(default=0.0, ge=0.0)
    end_delay: float = Field(default=0.0, ge=0.0)
    playback_rate: float = Field(default=1.0, gt=0.0)
    easing: str = "linear"
    composite: Composite = Composite.REPLACE
    starts_with_previous: bool = False
    starts_next_unit_too: bool = False
    commits_result: bool = True
    forceful_commit: bool = False

    @field_validator("duration")
    @classmethod
    def clamp_duration(cls, value: float) -> float:
        return max(value, MIN_DURATION)

    @field_validator("easing")
    @classmethod
    def check_easing(cls, value: str) -> str:
        return validate_easing(value)


class UnitTiming(BaseModel):
    """Timing view of a unit consumed by its scheduler."""

    model_config = ConfigDict(frozen=True)

    duration: float
    delay: float
    end_delay: float
    playback_rate: float
    compounded_playback_rate: float
    starts_with_previous: bool
    starts_next_unit_too: bool
    full_start_time: float
    active_start_time: float
    active_finish_time: float
    full_finish_time: float


class UnitStatus(BaseModel):
    model_config = ConfigDict(frozen=True)

    in_progress: bool
    is_running: bool
    is_paused: bool
    is_finished: bool
    direction: Direction

    @model_validator(mode="after")
    def check_flags(self) -> UnitStatus:
        if self.is_running and (not self.in_progress or self.is_paused):
            raise ValueError("is_running requires in_progress and not is_paused")
        if self.is_paused and (not self.in_progress or self.is_running):
            raise ValueError("is_paused requires in_progress and not is_running")
        return self


class SchedulerConfig(BaseModel):
    """Scheduler-level configuration.

    Attributes:
        description: Human-readable description used in errors and logs
        jump_tag: Tag an orchestrator can use to jump to this scheduler
        playback_rate: Rate multiplied into every unit's compounded rate
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    description: str = "<blank scheduler description>"
    jump_tag: str = ""
    playback_rate: float = Field(default=1.0, gt=0.0)


class SchedulerTiming(BaseModel):
    """Timing snapshot of a scheduler.

    Attributes:
        playback_rate: The scheduler's own rate
        compounded_playback_rate: Own rate times the parent's compounded rate
        full_finish_time: Finish time (ms) of the latest-finishing unit, 0 when empty
    """

    model_config = ConfigDict(frozen=True)

    playback_rate: float
    compounded_playback_rate: float
    full_finish_time: float


class SchedulerStatus(BaseModel):
    """Snapshot of a scheduler's playback flags."""

    model_config = ConfigDict(frozen=True)

    is_paused: bool
    is_running: bool
    in_progress: bool
    is_finished: bool
    was_played: bool
    was_rewound: bool
    using_finish: bool
    locked_structure: bool
