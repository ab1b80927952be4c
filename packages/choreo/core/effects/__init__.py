"""Effect hosts, effect generation shapes and preset banks."""

from choreo.core.effects.clock import ClockEffectHost
from choreo.core.effects.easing import EASINGS, ease
from choreo.core.effects.enums import BuildFrequency, Composite, Direction, Phase
from choreo.core.effects.generators import (
    CombinedEffect,
    EffectBank,
    EffectDefinition,
    Generation,
    KeyframesEffect,
    MutatorEffect,
    NoOpEffect,
    ResolvedGenerators,
    resolve_generation,
)
from choreo.core.effects.host import ComputedTiming, EffectHost
from choreo.core.effects.positions import PhaseLayout, TimePosition
from choreo.core.effects.presets import PRESET_BANKS

__all__ = [
    # Hosts
    "EffectHost",
    "ClockEffectHost",
    "ComputedTiming",
    # Timing
    "Direction",
    "Phase",
    "PhaseLayout",
    "TimePosition",
    # Easing
    "EASINGS",
    "ease",
    # Generation
    "BuildFrequency",
    "Composite",
    "EffectBank",
    "EffectDefinition",
    "Generation",
    "KeyframesEffect",
    "MutatorEffect",
    "CombinedEffect",
    "NoOpEffect",
    "ResolvedGenerators",
    "resolve_generation",
    "PRESET_BANKS",
]
