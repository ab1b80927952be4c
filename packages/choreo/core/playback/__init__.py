"""Playback structures: units, kinds, schedulers and unit factories.

Example:
    >>> from choreo.core.effects import ClockEffectHost
    >>> from choreo.core.playback import Scheduler, create_unit_factories
    >>> factories = create_unit_factories()
    >>> scheduler = Scheduler(
    ...     [
    ...         factories.entrance(
    ...             ClockEffectHost("title"), "~fade-in", config={"duration": 400}, hide_now=True
    ...         ),
    ...         factories.emphasis(ClockEffectHost("subtitle"), "~highlight", ["gold"]),
    ...     ]
    ... )
    >>> await scheduler.play()
"""

from choreo.core.playback.factories import UnitFactories, create_unit_factories
from choreo.core.playback.kinds import (
    BUILTIN_KINDS,
    EMPHASIS,
    ENTRANCE,
    EXIT,
    MOTION,
    SCROLLER,
    TRANSITION,
    UnitKind,
)
from choreo.core.playback.models import (
    MIN_DURATION,
    SchedulerConfig,
    SchedulerStatus,
    SchedulerTiming,
    UnitConfig,
    UnitStatus,
    UnitTiming,
)
from choreo.core.playback.scheduler import PlaybackHooks, Scheduler
from choreo.core.playback.unit import Unit

__all__ = [
    # Structures
    "Unit",
    "Scheduler",
    "PlaybackHooks",
    # Factories
    "UnitFactories",
    "create_unit_factories",
    # Kinds
    "UnitKind",
    "BUILTIN_KINDS",
    "ENTRANCE",
    "EXIT",
    "EMPHASIS",
    "MOTION",
    "TRANSITION",
    "SCROLLER",
    # Models
    "MIN_DURATION",
    "UnitConfig",
    "UnitTiming",
    "UnitStatus",
    "SchedulerConfig",
    "SchedulerTiming",
    "SchedulerStatus",
]
