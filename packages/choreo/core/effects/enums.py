"""Enumerations shared by effect hosts and playback structures."""

from __future__ import annotations

from enum import Enum


class Direction(str, Enum):
    """Direction of travel through a unit's timeline.

    Values:
        FORWARD: Play (delay -> active -> end delay)
        BACKWARD: Rewind (end delay -> active -> delay)
    """

    FORWARD = "forward"
    BACKWARD = "backward"

    @property
    def opposite(self) -> Direction:
        return Direction.BACKWARD if self is Direction.FORWARD else Direction.FORWARD


class Phase(str, Enum):
    """Phase of a unit's timeline.

    WHOLE spans all three phases and is used for offsets measured from the start
    of travel in a direction.
    """

    DELAY = "delay"
    ACTIVE = "active"
    END_DELAY = "end_delay"
    WHOLE = "whole"


class BuildFrequency(str, Enum):
    """How often an effect rebuilds its frame generators."""

    FIRST_PLAY = "first-play"
    EVERY_PLAY = "every-play"


class Composite(str, Enum):
    """How an effect's frames combine with the target's existing state."""

    REPLACE = "replace"
    ADD = "add"
    ACCUMULATE = "accumulate"
