"""Time position resolution within a unit's phases.

Playing traverses delay -> active -> end delay; rewinding traverses end delay ->
active -> delay. A position names the same point of a phase whichever way the unit
travels: "beginning" is where the phase starts when playing, so ("backward",
"active", "20%") is reached when the rewind is 80% through the active phase.
Resolved local times are in unscaled milliseconds from the start of travel in the
given direction.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Union

from choreo.core.effects.enums import Direction, Phase
from choreo.core.errors import ConfigurationError, InvalidPhasePositionError

TimePosition = Union[float, int, str]

_PERCENT_PATTERN = re.compile(r"^\s*(-?\d+(?:\.\d+)?)\s*%\s*$")


def coerce_direction(direction: Any) -> Direction:
    """Convert a direction argument to :class:`Direction`.

    Raises:
        ConfigurationError: If the value is not a valid direction
    """
    try:
        return Direction(direction)
    except ValueError as e:
        raise ConfigurationError(
            f'Invalid direction "{direction}". Must be "forward" or "backward".'
        ) from e


def coerce_phase(phase: Any) -> Phase:
    """Convert a phase argument to :class:`Phase`.

    Raises:
        ConfigurationError: If the value is not a valid phase
    """
    try:
        return Phase(phase)
    except ValueError as e:
        raise ConfigurationError(
            f'Invalid phase "{phase}". Must be "delay", "active", "end_delay", or "whole".'
        ) from e


@dataclass(frozen=True)
class PhaseLayout:
    """Phase lengths of a unit's timeline in local (unscaled) milliseconds."""

    delay: float
    duration: float
    end_delay: float

    @property
    def total(self) -> float:
        return self.delay + self.duration + self.end_delay

    def phase_order(self, direction: Direction) -> list[tuple[Phase, float]]:
        """Phases with their lengths in the order they are traversed."""
        forward = [
            (Phase.DELAY, self.delay),
            (Phase.ACTIVE, self.duration),
            (Phase.END_DELAY, self.end_delay),
        ]
        return forward if direction is Direction.FORWARD else forward[::-1]

    def phase_span(self, direction: Direction, phase: Phase) -> tuple[float, float]:
        """Return ``(start, length)`` of a phase along the direction of travel."""
        if phase is Phase.WHOLE:
            return 0.0, self.total
        start = 0.0
        for current, length in self.phase_order(direction):
            if current is phase:
                return start, length
            start += length
        raise ConfigurationError(f'Invalid phase "{phase}".')

    def boundaries(self, direction: Direction) -> list[float]:
        """Local times at which each traversed phase ends."""
        ends: list[float] = []
        elapsed = 0.0
        for _, length in self.phase_order(direction):
            elapsed += length
            ends.append(elapsed)
        return ends

    def resolve(self, direction: Direction, phase: Phase, position: TimePosition) -> float:
        """Resolve a phase-relative position to a local time.

        Args:
            direction: Direction of travel
            phase: Phase the position refers to
            position: Offset in ms (negative counts back from the phase end),
                "beginning", "end", or a percentage string such as "25%"

        Returns:
            Local time (ms from the start of travel in ``direction``). For
            ``BACKWARD`` the forward offset ``x`` lands at ``start + length - x``.

        Raises:
            InvalidPhasePositionError: If the position falls outside the phase
            ConfigurationError: If the position cannot be parsed
        """
        start, length = self.phase_span(direction, phase)
        offset = phase_offset(position, length, phase)
        if direction is Direction.BACKWARD:
            return start + (length - offset)
        return start + offset


def phase_offset(position: TimePosition, length: float, phase: Phase | str = "phase") -> float:
    """Resolve ``position`` to an offset inside a phase of ``length`` ms."""
    phase_name = phase.value if isinstance(phase, Phase) else phase

    if isinstance(position, bool):
        raise ConfigurationError(f"Invalid time position {position!r}.")

    if isinstance(position, (int, float)):
        offset = float(position)
        if offset < 0:
            offset = length + offset
            if offset < 0:
                raise InvalidPhasePositionError(
                    f"Negative time position {position} for phase \"{phase_name}\" resulted in "
                    f"invalid time {offset} (i.e., {length} - {abs(position)}). "
                    f"Must be in the range [0, {length}]."
                )
        elif offset > length:
            raise InvalidPhasePositionError(
                f"Invalid time position {position} for phase \"{phase_name}\". "
                f"Must be in the range [0, {length}]."
            )
        return offset

    if isinstance(position, str):
        if position == "beginning":
            return 0.0
        if position == "end":
            return length
        match = _PERCENT_PATTERN.match(position)
        if match:
            percent = float(match.group(1))
            if percent < 0 or percent > 100:
                raise InvalidPhasePositionError(
                    f"Invalid time position {position}. Percentages must be in the range [0%, 100%]."
                )
            return length * percent / 100.0

    raise ConfigurationError(
        f"Invalid time position {position!r}. "
        'Must be a number, "beginning", "end", or a percentage such as "50%".'
    )
