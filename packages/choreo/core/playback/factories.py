"""Unit factories.

``create_unit_factories()`` returns one factory per built-in kind, each resolving
effects from the preset bank of that kind merged with any additional bank supplied
by the caller.

Example:
    >>> factories = create_unit_factories(
    ...     additional_banks={"emphasis": {"pulse": EffectDefinition(build=build_pulse)}},
    ... )
    >>> unit = factories.emphasis(host, "pulse", [2], {"duration": 300})
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any

from choreo.core.config.models import AppConfig, PlaybackDefaults
from choreo.core.effects.generators import EffectBank, EffectDefinition
from choreo.core.effects.host import EffectHost
from choreo.core.effects.presets import PRESET_BANKS
from choreo.core.errors import ConfigurationError, ErrorContext, InvalidEffectError
from choreo.core.playback.kinds import BUILTIN_KINDS, UnitKind
from choreo.core.playback.unit import Unit, build_unit

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UnitFactories:
    """Factories bound to a set of effect banks and playback defaults."""

    banks: Mapping[str, EffectBank]
    defaults: PlaybackDefaults

    def create_unit(
        self,
        kind: str | UnitKind,
        host: EffectHost,
        effect_name: str,
        effect_options: Sequence[Any] = (),
        config: Mapping[str, Any] | None = None,
    ) -> Unit:
        """Build a unit of ``kind`` playing ``effect_name`` on ``host``.

        Raises:
            ConfigurationError: If the kind is unknown
            InvalidEffectError: If the effect is not in the kind's bank
        """
        unit_kind = kind if isinstance(kind, UnitKind) else BUILTIN_KINDS.get(kind)
        if unit_kind is None:
            raise ConfigurationError(
                f'Unknown unit kind "{kind}". Must be one of: {", ".join(BUILTIN_KINDS)}.'
            )

        bank = self.banks.get(unit_kind.name, {})
        effect = bank.get(effect_name)
        if effect is None:
            raise InvalidEffectError(
                f'Invalid effect name "{effect_name}" for {unit_kind.name} units.',
                context=ErrorContext(kind=unit_kind.name, effect_name=effect_name),
            )
        if not isinstance(effect, EffectDefinition):
            raise InvalidEffectError(
                f'Effect "{effect_name}" is not an EffectDefinition.',
                context=ErrorContext(kind=unit_kind.name, effect_name=effect_name),
            )

        unit = build_unit(
            host,
            unit_kind,
            effect_name,
            effect,
            effect_options,
            config,
            base_config={
                "easing": self.defaults.easing,
                "forceful_commit": self.defaults.forceful_commit,
            },
            min_duration=self.defaults.min_duration,
        )
        logger.debug(f"Created {unit!r}")
        return unit

    def entrance(
        self,
        host: EffectHost,
        effect_name: str,
        effect_options: Sequence[Any] = (),
        config: Mapping[str, Any] | None = None,
        *,
        hide_now: bool = False,
    ) -> Unit:
        """Build an entrance unit. ``hide_now`` marks the target as not presented."""
        if hide_now:
            host.is_presented = False
        return self.create_unit("entrance", host, effect_name, effect_options, config)

    def exit(
        self,
        host: EffectHost,
        effect_name: str,
        effect_options: Sequence[Any] = (),
        config: Mapping[str, Any] | None = None,
    ) -> Unit:
        """Build an exit unit.

        Args:
            host: Host whose target the unit hides
            effect_name: Name in the exit bank
            effect_options: Positional options passed to the effect generator
            config: Per-unit config, highest precedence

        Returns:
            The new unit, not yet added to a scheduler
        """
        return self.create_unit("exit", host, effect_name, effect_options, config)

    def emphasis(
        self,
        host: EffectHost,
        effect_name: str,
        effect_options: Sequence[Any] = (),
        config: Mapping[str, Any] | None = None,
    ) -> Unit:
        """Build an emphasis unit. Arguments as in ``exit``.

        Returns:
            The new unit
        """
        return self.create_unit("emphasis", host, effect_name, effect_options, config)

    def motion(
        self,
        host: EffectHost,
        effect_name: str,
        effect_options: Sequence[Any] = (),
        config: Mapping[str, Any] | None = None,
    ) -> Unit:
        """Build a motion unit. Motion frames accumulate onto the target by default.

        Args:
            host: Host to animate
            effect_name: Name in the motion bank
            effect_options: Positional options passed to the effect generator
            config: Per-unit config, highest precedence

        Returns:
            The new unit
        """
        return self.create_unit("motion", host, effect_name, effect_options, config)

    def transition(
        self,
        host: EffectHost,
        effect_name: str,
        effect_options: Sequence[Any] = (),
        config: Mapping[str, Any] | None = None,
    ) -> Unit:
        """Build a transition unit. Arguments as in ``exit``.

        Returns:
            The new unit
        """
        return self.create_unit("transition", host, effect_name, effect_options, config)

    def scroller(
        self,
        host: EffectHost,
        effect_name: str,
        effect_options: Sequence[Any] = (),
        config: Mapping[str, Any] | None = None,
    ) -> Unit:
        """Build a scroller unit, usually driven by a mutator effect.

        Args:
            host: Host whose target scrolls
            effect_name: Name in the scroller bank
            effect_options: Positional options passed to the effect generator
            config: Per-unit config, highest precedence

        Returns:
            The new unit
        """
        return self.create_unit("scroller", host, effect_name, effect_options, config)


def create_unit_factories(
    additional_banks: Mapping[str, EffectBank] | None = None,
    *,
    include_presets: bool = True,
    app_config: AppConfig | None = None,
) -> UnitFactories:
    """Create unit factories.

    Args:
        additional_banks: Extra effects keyed by kind name; they override presets
            with the same name
        include_presets: Whether the preset banks are available
        app_config: Source of playback defaults (defaults to ``AppConfig()``)

    Returns:
        UnitFactories with one factory method per built-in kind

    Raises:
        ConfigurationError: If ``additional_banks`` names an unknown kind
    """
    banks: dict[str, dict[str, EffectDefinition]] = {
        name: dict(PRESET_BANKS[name]) if include_presets else {} for name in BUILTIN_KINDS
    }
    for kind_name, bank in (additional_banks or {}).items():
        if kind_name not in banks:
            raise ConfigurationError(
                f'Unknown unit kind "{kind_name}" in additional effect banks.'
            )
        overridden = set(bank) & set(banks[kind_name])
        if overridden:
            logger.debug(f"Additional {kind_name} effects override presets: {sorted(overridden)}")
        banks[kind_name].update(bank)

    defaults = (app_config or AppConfig()).playback
    return UnitFactories(
        banks=MappingProxyType({name: MappingProxyType(bank) for name, bank in banks.items()}),
        defaults=defaults,
    )
