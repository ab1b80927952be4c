"""Unit kind descriptors.

A kind is an immutable record selected by name when a unit is built. It contributes
config defaults, config that usage cannot override, and start/finish hooks for each
direction. Start hooks run when the delay phase ends, finish hooks when the active
phase ends.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from choreo.core.effects.enums import Composite
from choreo.core.errors import InvalidEntranceError, InvalidExitError

if TYPE_CHECKING:
    from choreo.core.playback.unit import Unit

KindHook = Callable[["Unit"], None]


def _no_hook(unit: Unit) -> None:
    pass


@dataclass(frozen=True)
class UnitKind:
    """Behavior shared by every unit of one kind.

    Attributes:
        name: Kind name (entrance, exit, ...)
        default_config: Config applied below effect defaults
        immutable_config: Config applied above everything else
        on_start_forward: Called when the delay phase ends while playing
        on_finish_forward: Called when the active phase ends while playing
        on_start_backward: Called when the end delay ends while rewinding
        on_finish_backward: Called when the active phase ends while rewinding
    """

    name: str
    default_config: Mapping[str, Any] = field(default_factory=dict)
    immutable_config: Mapping[str, Any] = field(default_factory=dict)
    on_start_forward: KindHook = _no_hook
    on_finish_forward: KindHook = _no_hook
    on_start_backward: KindHook = _no_hook
    on_finish_backward: KindHook = _no_hook

    def __post_init__(self) -> None:
        object.__setattr__(self, "default_config", MappingProxyType(dict(self.default_config)))
        object.__setattr__(self, "immutable_config", MappingProxyType(dict(self.immutable_config)))


# ----------------------------------------------------------------------
# Entrance / exit presence handling
# ----------------------------------------------------------------------


def _entrance_start_forward(unit: Unit) -> None:
    if unit.host.is_presented:
        raise InvalidEntranceError(
            "Cannot play an entrance on a target that is already presented.",
            context=unit.context(),
        )
    unit.host.is_presented = True


def _entrance_finish_backward(unit: Unit) -> None:
    unit.host.is_presented = False


def _exit_start_forward(unit: Unit) -> None:
    if not unit.host.is_presented:
        raise InvalidExitError(
            "Cannot play an exit on a target that is not presented.",
            context=unit.context(),
        )


def _exit_finish_forward(unit: Unit) -> None:
    unit.host.is_presented = False


def _exit_start_backward(unit: Unit) -> None:
    unit.host.is_presented = True


ENTRANCE = UnitKind(
    name="entrance",
    immutable_config={"commits_result": False},
    on_start_forward=_entrance_start_forward,
    on_finish_backward=_entrance_finish_backward,
)

EXIT = UnitKind(
    name="exit",
    immutable_config={"commits_result": False},
    on_start_forward=_exit_start_forward,
    on_finish_forward=_exit_finish_forward,
    on_start_backward=_exit_start_backward,
)

EMPHASIS = UnitKind(name="emphasis")

MOTION = UnitKind(name="motion", default_config={"composite": Composite.ACCUMULATE})

TRANSITION = UnitKind(name="transition")

SCROLLER = UnitKind(name="scroller", default_config={"commits_result": False})

BUILTIN_KINDS: Mapping[str, UnitKind] = MappingProxyType(
    {kind.name: kind for kind in (ENTRANCE, EXIT, EMPHASIS, MOTION, TRANSITION, SCROLLER)}
)
