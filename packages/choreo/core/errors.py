"""Error types for choreo playback.

Every playback error carries an :class:`ErrorContext` describing where it was
raised (scheduler, unit, effect), rendered into the message the same way for
all error families.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class ErrorContext(BaseModel):
    """Structured location data attached to playback errors.

    Args:
        scheduler_description: Description of the owning scheduler (if any)
        jump_tag: Jump tag of the owning scheduler (if any)
        unit_id: Id of the unit involved (if any)
        unit_index: Position of the unit inside its scheduler (if known)
        kind: Unit kind name (entrance, exit, ...)
        effect_name: Name of the effect the unit plays
    """

    model_config = ConfigDict(frozen=True)

    scheduler_description: str | None = None
    jump_tag: str | None = None
    unit_id: int | None = None
    unit_index: int | None = None
    kind: str | None = None
    effect_name: str | None = None

    def describe(self) -> str:
        """Render the context as a compact location string."""
        parts: list[str] = []
        if self.scheduler_description is not None:
            scheduler = f"scheduler={self.scheduler_description!r}"
            if self.jump_tag:
                scheduler += f" tag={self.jump_tag!r}"
            parts.append(scheduler)
        if self.unit_id is not None:
            unit = f"unit#{self.unit_id}"
            if self.unit_index is not None:
                unit += f" (index {self.unit_index})"
            parts.append(unit)
        if self.kind is not None:
            parts.append(f"kind={self.kind}")
        if self.effect_name is not None:
            parts.append(f"effect={self.effect_name!r}")
        return " ".join(parts)


class ChoreoError(Exception):
    """Base exception for all playback errors.

    Attributes:
        message: Human-readable error description
        context: Location data (scheduler, unit, effect)
    """

    def __init__(self, message: str, *, context: ErrorContext | None = None) -> None:
        self.message = message
        self.context = context or ErrorContext()
        super().__init__(str(self))

    def __str__(self) -> str:
        """Format error for logging and display."""
        location = self.context.describe()
        if location:
            return f"{self.message} | {location}"
        return self.message


class StructuralError(ChoreoError):
    """Structure of a scheduler cannot be changed (locked, or unit owned elsewhere)."""


class OwnershipError(ChoreoError):
    """A unit's playback was driven directly while it belongs to a scheduler."""


class ConfigurationError(ChoreoError, ValueError):
    """Invalid direction, phase, position or effect arguments."""


class InvalidPhasePositionError(ConfigurationError):
    """Time position falls outside the phase it refers to."""


class LateSchedulingError(ConfigurationError):
    """Blockers were registered for a time position that has already passed."""


class InvalidEffectError(ConfigurationError):
    """Effect definition is malformed or missing from its bank."""


class EffectFinalizationError(ChoreoError):
    """The effect host could not persist the effect's end state."""


class InvalidEntranceError(ChoreoError):
    """An entrance was played on a target that is already presented."""


class InvalidExitError(ChoreoError):
    """An exit was played on a target that is not presented."""
