"""Effect generation shapes.

An effect definition's ``build`` callable returns exactly one generation variant:

- :class:`KeyframesEffect`: frame lists applied to the host
- :class:`MutatorEffect`: a per-frame mutator driven by unit progress
- :class:`CombinedEffect`: both of the above
- :class:`NoOpEffect`: nothing to generate

The variant is resolved once when generators are built (missing rewind generators are
mirrored from the play generators) and consulted again at each phase boundary.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Union

from choreo.core.effects.enums import BuildFrequency
from choreo.core.errors import InvalidEffectError

if TYPE_CHECKING:
    from choreo.core.playback.unit import Unit

Frame = Mapping[str, Any]
KeyframesGenerator = Callable[[], Sequence[Frame]]
Mutator = Callable[[], None]
MutatorGenerator = Callable[[], Mutator]


@dataclass(frozen=True)
class KeyframesEffect:
    """Keyframe generators for playing and (optionally) rewinding."""

    play: KeyframesGenerator
    rewind: KeyframesGenerator | None = None


@dataclass(frozen=True)
class MutatorEffect:
    """Mutator generators for playing and (optionally) rewinding."""

    play: MutatorGenerator
    rewind: MutatorGenerator | None = None


@dataclass(frozen=True)
class CombinedEffect:
    keyframes: KeyframesEffect
    mutator: MutatorEffect


@dataclass(frozen=True)
class NoOpEffect:
    pass


Generation = Union[KeyframesEffect, MutatorEffect, CombinedEffect, NoOpEffect]


@dataclass(frozen=True)
class EffectDefinition:
    """Named effect registered in an effect bank.

    Attributes:
        build: Called as ``build(unit, *effect_options)``; returns a generation variant
        default_config: Config applied below the usage config
        immutable_config: Config that usage config cannot override
        build_frequency: Rebuild generators on the first play only, or on every play
    """

    build: Callable[..., Generation]
    default_config: Mapping[str, Any] = field(default_factory=dict)
    immutable_config: Mapping[str, Any] = field(default_factory=dict)
    build_frequency: BuildFrequency = BuildFrequency.FIRST_PLAY


EffectBank = Mapping[str, EffectDefinition]


@dataclass(frozen=True)
class ResolvedGenerators:
    """Flattened generators for one unit, with mirroring metadata."""

    keyframes_play: KeyframesGenerator | None = None
    keyframes_rewind: KeyframesGenerator | None = None
    keyframes_mirrored: bool = False
    mutator_play: MutatorGenerator | None = None
    mutator_rewind: MutatorGenerator | None = None
    mutator_mirrored: bool = False

    @property
    def no_keyframes(self) -> bool:
        return self.keyframes_play is None

    @property
    def no_mutator(self) -> bool:
        return self.mutator_play is None


def _keyframe_parts(effect: KeyframesEffect) -> dict[str, Any]:
    return {
        "keyframes_play": effect.play,
        "keyframes_rewind": effect.rewind or effect.play,
        "keyframes_mirrored": effect.rewind is None,
    }


def _mutator_parts(effect: MutatorEffect) -> dict[str, Any]:
    return {
        "mutator_play": effect.play,
        "mutator_rewind": effect.rewind or effect.play,
        "mutator_mirrored": effect.rewind is None,
    }


def resolve_generation(generation: Any) -> ResolvedGenerators:
    """Flatten a generation variant into play/rewind generators.

    Args:
        generation: Value returned by an effect definition's ``build``

    Returns:
        ResolvedGenerators with rewind generators mirrored where missing

    Raises:
        InvalidEffectError: If ``generation`` is not a generation variant or a
            required generator is not callable
    """
    if isinstance(generation, NoOpEffect):
        return ResolvedGenerators()

    if isinstance(generation, KeyframesEffect):
        _require_callables(generation.play, generation.rewind)
        return ResolvedGenerators(**_keyframe_parts(generation))

    if isinstance(generation, MutatorEffect):
        _require_callables(generation.play, generation.rewind)
        return ResolvedGenerators(**_mutator_parts(generation))

    if isinstance(generation, CombinedEffect):
        if not isinstance(generation.keyframes, KeyframesEffect) or not isinstance(
            generation.mutator, MutatorEffect
        ):
            raise InvalidEffectError(
                "CombinedEffect requires a KeyframesEffect and a MutatorEffect."
            )
        _require_callables(generation.keyframes.play, generation.keyframes.rewind)
        _require_callables(generation.mutator.play, generation.mutator.rewind)
        return ResolvedGenerators(
            **_keyframe_parts(generation.keyframes),
            **_mutator_parts(generation.mutator),
        )

    raise InvalidEffectError(
        f"Effect build returned {type(generation).__name__}; expected KeyframesEffect, "
        "MutatorEffect, CombinedEffect or NoOpEffect."
    )


def _require_callables(play: Any, rewind: Any) -> None:
    if not callable(play):
        raise InvalidEffectError("The play generator of an effect must be callable.")
    if rewind is not None and not callable(rewind):
        raise InvalidEffectError("The rewind generator of an effect must be callable.")


def build_generators(definition: EffectDefinition, unit: Unit, options: Sequence[Any]) -> ResolvedGenerators:
    """Run an effect definition's ``build`` for ``unit`` and resolve the result."""
    return resolve_generation(definition.build(unit, *options))
