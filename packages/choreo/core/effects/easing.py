"""Named easing curves backed by easing-functions.

Units map their linear active-phase progress through the curve named by their
``easing`` config before mutators read it.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from types import MappingProxyType
from typing import Any

from easing_functions import (
    BackEaseIn,
    BackEaseInOut,
    BackEaseOut,
    BounceEaseIn,
    BounceEaseOut,
    CubicEaseIn,
    CubicEaseInOut,
    CubicEaseOut,
    ElasticEaseIn,
    ElasticEaseInOut,
    ElasticEaseOut,
    QuadEaseIn,
    QuadEaseInOut,
    QuadEaseOut,
    SineEaseIn,
    SineEaseInOut,
    SineEaseOut,
)

EasingFn = Callable[[float], float]

_EASING_DEFAULTS: dict[str, float] = {
    "start": 0.0,
    "end": 1.0,
    "duration": 1.0,
}


def _make_easing(easing_cls: type[Any]) -> EasingFn:
    obj = easing_cls(**_EASING_DEFAULTS)
    return lambda t: obj.ease(t)


def _linear(t: float) -> float:
    return t


EASINGS: Mapping[str, EasingFn] = MappingProxyType(
    {
        "linear": _linear,
        "ease-in": _make_easing(CubicEaseIn),
        "ease-out": _make_easing(CubicEaseOut),
        "ease-in-out": _make_easing(CubicEaseInOut),
        "ease-in-sine": _make_easing(SineEaseIn),
        "ease-out-sine": _make_easing(SineEaseOut),
        "ease-in-out-sine": _make_easing(SineEaseInOut),
        "ease-in-quad": _make_easing(QuadEaseIn),
        "ease-out-quad": _make_easing(QuadEaseOut),
        "ease-in-out-quad": _make_easing(QuadEaseInOut),
        "ease-in-back": _make_easing(BackEaseIn),
        "ease-out-back": _make_easing(BackEaseOut),
        "ease-in-out-back": _make_easing(BackEaseInOut),
        "ease-in-elastic": _make_easing(ElasticEaseIn),
        "ease-out-elastic": _make_easing(ElasticEaseOut),
        "ease-in-out-elastic": _make_easing(ElasticEaseInOut),
        "ease-in-bounce": _make_easing(BounceEaseIn),
        "ease-out-bounce": _make_easing(BounceEaseOut),
    }
)


def validate_easing(name: str) -> str:
    """Return ``name`` if it is a known easing.

    Raises:
        ValueError: If the easing is unknown
    """
    if name not in EASINGS:
        raise ValueError(f'Unknown easing "{name}". Must be one of: {", ".join(EASINGS)}.')
    return name


def ease(name: str, progress: float) -> float:
    """Map linear ``progress`` (0..1) through the easing ``name``.

    The endpoints are pinned so that every curve starts at 0 and ends at 1.
    """
    if progress <= 0.0:
        return 0.0
    if progress >= 1.0:
        return 1.0
    return EASINGS[name](progress)
