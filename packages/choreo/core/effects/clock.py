"""Effect host driven by the asyncio event loop clock."""

from __future__ import annotations

import asyncio
import logging

from choreo.core.effects.host import EffectHost
from choreo.core.errors import EffectFinalizationError

logger = logging.getLogger(__name__)


class ClockEffectHost(EffectHost):
    """Effect host whose local time follows ``loop.time()``.

    The clock stops at every checkpoint it reaches and only runs while
    ``_advance_to`` is pending, so time spent waiting on blockers does not move
    the effect past its checkpoint.

    Args:
        name: Label used in logs
        time_scale: Real seconds per local millisecond (0.001 is real time)
        speed_factor: Extra multiplier on how fast this host runs
        rendered: Whether the target is rendered (non-forced commits need it)
        supports_forced_commit: Whether ``commit_result(force=True)`` can succeed
        frame_interval: Seconds between mutator frames

    Example:
        >>> host = ClockEffectHost(name="title", time_scale=0.0001)
        >>> host.set_timing(delay=0, duration=500, end_delay=0)
    """

    def __init__(
        self,
        name: str = "host",
        *,
        time_scale: float = 0.001,
        speed_factor: float = 1.0,
        rendered: bool = True,
        supports_forced_commit: bool = True,
        frame_interval: float = 1 / 60,
    ) -> None:
        if time_scale <= 0:
            raise ValueError(f"time_scale must be positive, got {time_scale}")
        if speed_factor <= 0:
            raise ValueError(f"speed_factor must be positive, got {speed_factor}")
        super().__init__()
        self.name = name
        self.time_scale = time_scale
        self.speed_factor = speed_factor
        self.rendered = rendered
        self.supports_forced_commit = supports_forced_commit
        self.frame_interval = frame_interval
        self.commit_attempts = 0

        self._position = 0.0
        self._anchor: float | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._wake: asyncio.Future[None] | None = None

    def __repr__(self) -> str:
        return f"ClockEffectHost({self.name!r})"

    # ------------------------------------------------------------------
    # Clock
    # ------------------------------------------------------------------

    def _speed(self) -> float:
        """Local milliseconds per real second."""
        return self.playback_rate * self.speed_factor / self.time_scale

    def _local_time(self) -> float:
        if self._anchor is None or self._loop is None:
            return self._position
        return self._position + (self._loop.time() - self._anchor) * self._speed()

    def _jump_to(self, local_time: float) -> None:
        self._position = local_time
        self._anchor = None

    def _sync_clock(self) -> None:
        if self._anchor is not None and self._loop is not None:
            self._position = self._local_time()
            self._anchor = self._loop.time()

    def _suspend(self) -> None:
        if self._anchor is not None:
            self._position = self._local_time()
            self._anchor = None
        self._interrupt()

    def _resume(self) -> None:
        self._interrupt()

    def _interrupt(self) -> None:
        if self._wake is not None and not self._wake.done():
            self._wake.set_result(None)

    def _reset_clock(self) -> None:
        self._position = 0.0
        self._anchor = None
        self._interrupt()

    async def _sleep(self, timeout: float | None) -> None:
        self._loop = asyncio.get_running_loop()
        self._wake = self._loop.create_future()
        try:
            await asyncio.wait({self._wake}, timeout=timeout)
        finally:
            self._wake = None

    async def _advance_to(self, stop_at: float) -> bool:
        self._loop = asyncio.get_running_loop()
        while True:
            if self._is_expediting:
                return True
            if self._retarget_pending:
                return False
            if self._suspended:
                await self._sleep(None)
                continue
            if self._anchor is None:
                self._anchor = self._loop.time()

            remaining = stop_at - self._local_time()
            if remaining <= 0:
                self._jump_to(stop_at)
                return True
            await self._sleep(remaining / self._speed())

    # ------------------------------------------------------------------
    # Effect content
    # ------------------------------------------------------------------

    def commit_result(self, force: bool = False) -> None:
        self.commit_attempts += 1
        if force:
            if not self.supports_forced_commit:
                raise EffectFinalizationError(
                    f"Forced commit is not supported by {self!r}."
                )
        elif not self.rendered:
            raise EffectFinalizationError(
                f"Cannot commit the effect result of {self!r}: the target is not rendered."
            )
        logger.debug(f"{self!r} committed {len(self.frames)} frame(s)")
        super().commit_result(force)
