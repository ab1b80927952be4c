"""Preset effect banks, one per unit kind.

Preset names start with ``~`` so they never collide with user-registered effects.
"""

from __future__ import annotations

from collections.abc import Mapping
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from choreo.core.effects.generators import (
    EffectBank,
    EffectDefinition,
    KeyframesEffect,
    MutatorEffect,
    NoOpEffect,
)

if TYPE_CHECKING:
    from choreo.core.playback.unit import Unit


def _no_op(unit: Unit) -> NoOpEffect:
    return NoOpEffect()


def _fade_in(unit: Unit) -> KeyframesEffect:
    return KeyframesEffect(play=lambda: [{"opacity": 0.0}, {}])


def _fade_out(unit: Unit) -> KeyframesEffect:
    return KeyframesEffect(play=lambda: [{}, {"opacity": 0.0}])


def _highlight(unit: Unit, color: str = "default") -> KeyframesEffect:
    return KeyframesEffect(
        play=lambda: [{"highlight": None}, {"highlight": color}],
        rewind=lambda: [{"highlight": color}, {"highlight": None}],
    )


def _un_highlight(unit: Unit) -> KeyframesEffect:
    return KeyframesEffect(play=lambda: [{}, {"highlight": None}])


def _translate(unit: Unit, dx: float = 0.0, dy: float = 0.0) -> KeyframesEffect:
    return KeyframesEffect(
        play=lambda: [{"translate": (dx, dy)}],
        rewind=lambda: [{"translate": (-dx, -dy)}],
    )


def _from_frame(unit: Unit, frame: Mapping[str, Any]) -> KeyframesEffect:
    return KeyframesEffect(play=lambda: [dict(frame), {}])


def _to_frame(unit: Unit, frame: Mapping[str, Any]) -> KeyframesEffect:
    return KeyframesEffect(play=lambda: [{}, dict(frame)])


def _scroll(unit: Unit, start: float = 0.0, end: float = 0.0) -> MutatorEffect:
    def play():
        return lambda: unit.host.apply_frames([{"scroll": unit.compute_tween(start, end)}])

    def rewind():
        return lambda: unit.host.apply_frames([{"scroll": unit.compute_tween(end, start)}])

    return MutatorEffect(play=play, rewind=rewind)


PRESET_ENTRANCES: EffectBank = MappingProxyType(
    {
        "~appear": EffectDefinition(build=_no_op, immutable_config={"duration": 0}),
        "~fade-in": EffectDefinition(build=_fade_in),
    }
)

PRESET_EXITS: EffectBank = MappingProxyType(
    {
        "~disappear": EffectDefinition(build=_no_op, immutable_config={"duration": 0}),
        "~fade-out": EffectDefinition(build=_fade_out),
    }
)

PRESET_EMPHASES: EffectBank = MappingProxyType(
    {
        "~highlight": EffectDefinition(build=_highlight),
        "~un-highlight": EffectDefinition(build=_un_highlight),
    }
)

PRESET_MOTIONS: EffectBank = MappingProxyType(
    {
        "~translate": EffectDefinition(build=_translate),
    }
)

PRESET_TRANSITIONS: EffectBank = MappingProxyType(
    {
        "~from": EffectDefinition(build=_from_frame, default_config={"commits_result": False}),
        "~to": EffectDefinition(build=_to_frame),
    }
)

PRESET_SCROLLERS: EffectBank = MappingProxyType(
    {
        "~scroll": EffectDefinition(build=_scroll),
    }
)

PRESET_BANKS: Mapping[str, EffectBank] = MappingProxyType(
    {
        "entrance": PRESET_ENTRANCES,
        "exit": PRESET_EXITS,
        "emphasis": PRESET_EMPHASES,
        "motion": PRESET_MOTIONS,
        "transition": PRESET_TRANSITIONS,
        "scroller": PRESET_SCROLLERS,
    }
)
