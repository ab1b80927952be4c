"""Shared utilities for choreo."""

from choreo.core.utils.logging import configure_logging, get_logger, log_performance
from choreo.core.utils.math import clamp, lerp, span_fraction

__all__ = [
    "clamp",
    "configure_logging",
    "get_logger",
    "lerp",
    "log_performance",
    "span_fraction",
]
