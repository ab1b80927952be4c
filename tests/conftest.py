"""Shared pytest fixtures for choreo tests.

Hosts run on a compressed clock so that a 500 ms unit plays in about 50 ms.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest

from choreo.core.config.loader import clear_app_config_cache
from choreo.core.effects.clock import ClockEffectHost
from choreo.core.playback.factories import UnitFactories, create_unit_factories

FAST_TIME_SCALE = 0.0001

# ============================================================================
# Host Fixtures
# ============================================================================


class RecordingHost(ClockEffectHost):
    """Clock host that appends its name to a shared log on every commit."""

    def __init__(self, name: str, events: list[str], **kwargs: Any) -> None:
        super().__init__(name, **kwargs)
        self.events = events

    def commit_result(self, force: bool = False) -> None:
        self.events.append(self.name)
        super().commit_result(force)


@pytest.fixture
def events() -> list[str]:
    """Shared event log for recording hosts."""
    return []


@pytest.fixture
def make_host() -> Callable[..., ClockEffectHost]:
    """Factory for fast clock hosts."""

    def make(name: str = "host", **kwargs: Any) -> ClockEffectHost:
        kwargs.setdefault("time_scale", FAST_TIME_SCALE)
        kwargs.setdefault("frame_interval", 0.001)
        return ClockEffectHost(name, **kwargs)

    return make


@pytest.fixture
def make_recording_host(events: list[str]) -> Callable[..., RecordingHost]:
    """Factory for fast clock hosts that record commit order into ``events``."""

    def make(name: str, **kwargs: Any) -> RecordingHost:
        kwargs.setdefault("time_scale", FAST_TIME_SCALE)
        kwargs.setdefault("frame_interval", 0.001)
        return RecordingHost(name, events, **kwargs)

    return make


# ============================================================================
# Playback Fixtures
# ============================================================================


@pytest.fixture
def factories() -> UnitFactories:
    """Unit factories with preset banks and default playback settings."""
    return create_unit_factories()


# ============================================================================
# Config Fixtures
# ============================================================================


@pytest.fixture(autouse=True)
def _reset_app_config_cache(monkeypatch: pytest.MonkeyPatch):
    """Isolate tests from cached app config and environment overrides."""
    monkeypatch.delenv("CHOREO_TIME_SCALE", raising=False)
    monkeypatch.delenv("CHOREO_LOG_LEVEL", raising=False)
    monkeypatch.delenv("CHOREO_EASING", raising=False)
    clear_app_config_cache()
    yield
    clear_app_config_cache()
