"""Small numeric helpers shared by hosts, units and schedulers."""

from __future__ import annotations

from typing import TypeVar

Number = TypeVar("Number", int, float)


def clamp(value: Number, low: Number, high: Number) -> Number:
    """Snap ``value`` into ``[low, high]``."""
    return max(low, min(high, value))


def lerp(a: float, b: float, t: float) -> float:
    """Value ``t`` of the way from ``a`` to ``b``. ``t`` is not clamped."""
    return float(a) + (float(b) - float(a)) * t


def span_fraction(time: float, start: float, length: float) -> float:
    """How far ``time`` is through the span ``[start, start + length]``, in ``[0, 1]``.

    A zero-length span is a step: 0 before ``start`` and 1 from ``start`` on.
    """
    if length <= 0:
        return 1.0 if time >= start else 0.0
    return clamp((time - start) / length, 0.0, 1.0)
