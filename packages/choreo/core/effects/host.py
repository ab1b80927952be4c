"""Effect host base class.

The effect host is the boundary object that actually performs an effect. This base
class owns everything that is independent of how time passes:

- per-direction checkpoint segments (phase boundaries, time promises, blockers)
- the checkpoint loop driving one pass through the timeline
- roadblocks (pause the owner's root while pending) and integrity blocks
- phase-boundary hooks (``on_delay_finish``, ``on_active_finish``,
  ``on_end_delay_finish``)

Concrete hosts supply the clock through ``_advance_to``/``_local_time`` and the
``_suspend``/``_resume``/``_interrupt``/``_sync_clock``/``_reset_clock`` primitives.

Hook naming follows the order of travel, so while rewinding ``on_delay_finish``
fires once the leading end delay has been traversed.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import math
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field

from choreo.core.effects.enums import Composite, Direction, Phase
from choreo.core.effects.positions import (
    PhaseLayout,
    TimePosition,
    coerce_direction,
    coerce_phase,
)
from choreo.core.errors import ConfigurationError, LateSchedulingError
from choreo.core.utils.math import clamp, span_fraction

logger = logging.getLogger(__name__)

Blocker = Union[Awaitable[Any], Callable[[], Awaitable[Any]]]
Hook = Callable[[], None]
Frames = Sequence[Mapping[str, Any]]

_TIME_TOLERANCE = 1e-9


class ComputedTiming(BaseModel):
    """Snapshot of a host's playback position.

    Attributes:
        progress: Fraction (0..1) of the active phase traversed in ``direction``
        direction: Current direction of travel
        local_time: Local time in ms since travel started in ``direction``
    """

    model_config = ConfigDict(frozen=True)

    progress: float = Field(ge=0.0, le=1.0)
    direction: Direction
    local_time: float = Field(ge=0.0)


@dataclass
class Segment:
    """Checkpoint on a host's timeline for one direction of travel."""

    stop_at: float
    callbacks: list[Hook] = field(default_factory=list)
    roadblocks: list[Blocker] = field(default_factory=list)
    integrity_blocks: list[Blocker] = field(default_factory=list)
    boundary: int | None = None  # 0, 1, 2 -> which traversed phase ends here
    activated: bool = False
    completed: bool = False


def _same_time(a: float, b: float) -> bool:
    return math.isclose(a, b, rel_tol=0.0, abs_tol=_TIME_TOLERANCE)


def _resolver(future: asyncio.Future[None]) -> Hook:
    def resolve() -> None:
        if not future.done():
            future.set_result(None)

    return resolve


async def await_blockers(blockers: Iterable[Blocker]) -> None:
    """Await every blocker; zero-arg callables are invoked first."""
    awaitables = []
    for blocker in blockers:
        value = blocker() if callable(blocker) and not inspect.isawaitable(blocker) else blocker
        awaitables.append(asyncio.ensure_future(value))
    await asyncio.gather(*awaitables)


def _noop() -> None:
    pass


class EffectHost(ABC):
    """Abstract effect host with checkpoint-based phase tracking.

    A unit configures the host (``set_timing``, ``set_direction``,
    ``set_playback_rate``), registers hooks, then calls ``play()``. One pass walks
    the segments of the current direction in order. At each segment the host stops,
    awaits roadblocks (pausing the root through ``pause_for_roadblocks``), awaits
    integrity blocks, fires the boundary hook and time-promise callbacks, then moves
    on. Blockers are consumed by the pass that reaches them.

    Attributes:
        direction: Current direction of travel
        playback_rate: Rate applied to the host clock
        layout: Phase lengths in local milliseconds
        is_presented: Whether the effect target is currently presented
        frames: Frames most recently applied by the owning unit
        committed_frames: Frames persisted by the last successful commit
        frame_interval: Seconds between mutator frames
        composite: How frames combine with the target's existing state; set by
            the owning unit from its config before each pass
    """

    frame_interval: float = 1 / 60

    def __init__(self) -> None:
        self.direction = Direction.FORWARD
        self.playback_rate = 1.0
        self.layout = PhaseLayout(delay=0.0, duration=0.0, end_delay=0.0)
        self.is_presented = True
        self.frames: list[Mapping[str, Any]] = []
        self.frames_mirrored = False
        self.composite = Composite.REPLACE
        self.committed_frames: list[Mapping[str, Any]] | None = None

        self.on_delay_finish: Hook = _noop
        self.on_active_finish: Hook = _noop
        self.on_end_delay_finish: Hook = _noop
        self.on_error: Callable[[BaseException], None] = self._log_error
        self.pause_for_roadblocks: Hook = _noop
        self.unpause_from_roadblocks: Hook = _noop

        self._in_progress = False
        self._suspended = False
        self._is_finished = False
        self._is_expediting = False
        self._retarget_pending = False
        self._fully_finished: asyncio.Future[EffectHost] | None = None
        self._run_task: asyncio.Task[None] | None = None
        self._segments: dict[Direction, list[Segment]] = {
            direction: self._fresh_segments(direction) for direction in Direction
        }

    # ------------------------------------------------------------------
    # Clock primitives
    # ------------------------------------------------------------------

    @abstractmethod
    async def _advance_to(self, stop_at: float) -> bool:
        """Let the clock run until local time ``stop_at``.

        Must return ``True`` once reached, return promptly when expediting, and
        return ``False`` early when ``_retarget_pending`` is set.
        """

    @abstractmethod
    def _local_time(self) -> float:
        """Local time in ms along the current direction."""

    @abstractmethod
    def _jump_to(self, local_time: float) -> None:
        """Move the clock to ``local_time`` immediately."""

    @abstractmethod
    def _suspend(self) -> None:
        """Freeze the clock."""

    @abstractmethod
    def _resume(self) -> None:
        """Let a frozen clock run again."""

    @abstractmethod
    def _interrupt(self) -> None:
        """Wake a pending ``_advance_to`` so it re-evaluates its state."""

    def _sync_clock(self) -> None:
        """Fold elapsed time into the clock before a rate change."""

    def _reset_clock(self) -> None:
        """Return the clock to the start of travel."""

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def set_timing(self, delay: float, duration: float, end_delay: float) -> None:
        """Set phase lengths (ms). Resets all pending segments."""
        if self._in_progress:
            raise ConfigurationError("Cannot change phase timing while the host is in progress.")
        self.layout = PhaseLayout(delay=delay, duration=duration, end_delay=end_delay)
        self._segments = {direction: self._fresh_segments(direction) for direction in Direction}

    def set_direction(self, direction: Direction | str) -> None:
        """Set the direction of the next pass.

        Args:
            direction: Direction or its string name

        Raises:
            ConfigurationError: If the direction changes while a pass is in progress
        """
        direction = coerce_direction(direction)
        if self._in_progress:
            if direction is self.direction:
                return
            raise ConfigurationError("Cannot change direction while the host is in progress.")
        if direction is not self.direction:
            self.direction = direction
            self._reset_clock()

    def set_playback_rate(self, rate: float) -> None:
        if rate <= 0:
            raise ConfigurationError(f"Playback rate must be positive, got {rate}.")
        self._sync_clock()
        self.playback_rate = rate
        self._interrupt()

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    @property
    def in_progress(self) -> bool:
        return self._in_progress

    @property
    def is_suspended(self) -> bool:
        return self._suspended

    @property
    def is_finished(self) -> bool:
        return self._is_finished

    def get_computed_timing(self) -> ComputedTiming:
        """Current progress through the active phase and direction."""
        local_time = clamp(self._local_time(), 0.0, self.layout.total)
        start, length = self.layout.phase_span(self.direction, Phase.ACTIVE)
        progress = span_fraction(local_time, start, length)
        return ComputedTiming(progress=progress, direction=self.direction, local_time=local_time)

    # ------------------------------------------------------------------
    # Playback
    # ------------------------------------------------------------------

    def play(self) -> None:
        """Start a pass in the current direction, or resume a suspended one."""
        if self._suspended:
            self._suspended = False
            self._resume()
            return
        if self._in_progress:
            return
        self._in_progress = True
        if self._is_finished:
            self._is_finished = False
            self._fully_finished = None
        self._reset_clock()
        self._run_task = asyncio.get_running_loop().create_task(self._run())

    def pause(self) -> None:
        """Suspend the clock of an in-progress pass. Does nothing otherwise."""
        if self._in_progress and not self._suspended:
            self._suspended = True
            self._suspend()

    def finish(self) -> asyncio.Future[EffectHost]:
        """Fast-forward to the end of the pass. Blockers are still awaited.

        Returns:
            Future resolved with the host when the pass ends
        """
        if not self._is_expediting:
            self._is_expediting = True
            if not self._in_progress:
                self.play()
            else:
                self._interrupt()
        return self._finished_future()

    def cancel(self) -> None:
        """Drop transient playback state after a pass.

        Clears the suspended flag and rewinds the clock to the start of the
        current direction. Checkpoint segments are left untouched.
        """
        self._suspended = False
        self._reset_clock()

    def apply_frames(self, frames: Frames, mirrored: bool = False) -> None:
        self.frames = list(frames)
        self.frames_mirrored = mirrored

    def commit_result(self, force: bool = False) -> None:
        """Persist the effect's end state.

        Raises:
            EffectFinalizationError: If the end state cannot be persisted
        """
        self.committed_frames = list(self.frames)

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def generate_time_promise(
        self,
        direction: Direction | str,
        phase: Phase | str,
        position: TimePosition,
    ) -> asyncio.Future[None]:
        """Future resolved when travel in ``direction`` reaches ``position`` in ``phase``."""
        direction = coerce_direction(direction)
        phase = coerce_phase(phase)
        future: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        resolve = _resolver(future)

        if self._is_finished and self.direction is direction:
            resolve()
            return future

        stop_at = self.layout.resolve(direction, phase, position)
        segments = self._segments[direction]
        for index, segment in enumerate(segments):
            if _same_time(stop_at, segment.stop_at):
                if segment.completed:
                    resolve()
                else:
                    segment.callbacks.append(resolve)
                return future
            if stop_at < segment.stop_at:
                if self._already_passed(direction, segment, stop_at):
                    resolve()
                    return future
                segments.insert(index, Segment(stop_at=stop_at, callbacks=[resolve]))
                self._retarget_if_traveling(direction, segment)
                return future

        raise ConfigurationError(f"Time position {position!r} lies beyond the end of travel.")

    def add_roadblocks(
        self,
        direction: Direction | str,
        phase: Phase | str,
        position: TimePosition,
        blockers: Sequence[Blocker],
    ) -> None:
        self._add_awaiteds(direction, phase, position, "roadblock", blockers)

    def add_integrity_blocks(
        self,
        direction: Direction | str,
        phase: Phase | str,
        position: TimePosition,
        blockers: Sequence[Blocker],
    ) -> None:
        self._add_awaiteds(direction, phase, position, "integrity block", blockers)

    def _add_awaiteds(
        self,
        direction: Direction | str,
        phase: Phase | str,
        position: TimePosition,
        awaited_type: str,
        blockers: Sequence[Blocker],
    ) -> None:
        direction = coerce_direction(direction)
        phase = coerce_phase(phase)

        if self._is_finished and self.direction is direction:
            logger.warning(
                f"New {awaited_type}s for time position {position!r} will not be used "
                f"because the {direction.value} pass has already finished"
            )
            return

        stop_at = self.layout.resolve(direction, phase, position)
        segments = self._segments[direction]
        for index, segment in enumerate(segments):
            if _same_time(stop_at, segment.stop_at):
                if segment.completed:
                    raise LateSchedulingError(
                        f"The new {awaited_type}s for time position {position!r} could not be "
                        "scheduled because that time has already passed."
                    )
                target = segment
                break
            if stop_at < segment.stop_at:
                if self._already_passed(direction, segment, stop_at):
                    raise LateSchedulingError(
                        f"The new {awaited_type}s for time position {position!r} could not be "
                        "scheduled because that time has already passed."
                    )
                target = Segment(stop_at=stop_at)
                segments.insert(index, target)
                self._retarget_if_traveling(direction, segment)
                break
        else:
            raise ConfigurationError(f"Time position {position!r} lies beyond the end of travel.")

        if awaited_type == "roadblock":
            target.roadblocks.extend(blockers)
        else:
            target.integrity_blocks.extend(blockers)

    def _already_passed(self, direction: Direction, upcoming: Segment, stop_at: float) -> bool:
        if not upcoming.activated:
            return False
        return not (self._in_progress and self.direction is direction) or (
            stop_at <= self._local_time() + _TIME_TOLERANCE
        )

    def _retarget_if_traveling(self, direction: Direction, upcoming: Segment) -> None:
        if upcoming.activated and self._in_progress and self.direction is direction:
            self._retarget_pending = True
            self._interrupt()

    # ------------------------------------------------------------------
    # Checkpoint loop
    # ------------------------------------------------------------------

    def _fresh_segments(self, direction: Direction) -> list[Segment]:
        return [
            Segment(stop_at=stop_at, boundary=index)
            for index, stop_at in enumerate(self.layout.boundaries(direction))
        ]

    def _finished_future(self) -> asyncio.Future[EffectHost]:
        if self._fully_finished is None:
            self._fully_finished = asyncio.get_running_loop().create_future()
        return self._fully_finished

    async def _travel_to(self, stop_at: float) -> bool:
        if self._is_expediting:
            self._jump_to(stop_at)
            return True
        reached = await self._advance_to(stop_at)
        if self._is_expediting:
            self._jump_to(stop_at)
            return True
        if self._retarget_pending:
            self._retarget_pending = False
            return False
        return reached

    async def _run(self) -> None:
        direction = self.direction
        segments = self._segments[direction]
        roadblocked = False

        try:
            # lets callers register more awaiteds before the first stop
            await asyncio.sleep(0)

            while True:
                segment = next((s for s in segments if not s.completed), None)
                if segment is None:
                    break
                segment.activated = True

                if roadblocked:
                    self.unpause_from_roadblocks()
                    roadblocked = False

                if not await self._travel_to(segment.stop_at):
                    continue
                segment.completed = True

                if segment.roadblocks:
                    self.pause_for_roadblocks()
                    roadblocked = True
                    await await_blockers(segment.roadblocks)
                if segment.integrity_blocks:
                    await await_blockers(segment.integrity_blocks)

                if segment.boundary == 0:
                    self.on_delay_finish()
                elif segment.boundary == 1:
                    self.on_active_finish()
                for callback in segment.callbacks:
                    callback()

                await asyncio.sleep(0)

            if roadblocked:
                self.unpause_from_roadblocks()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Effect host pass ({direction.value}) failed: {e}")
            self._in_progress = False
            self._is_expediting = False
            self._segments[direction] = self._fresh_segments(direction)
            if roadblocked:
                self.unpause_from_roadblocks()
            if self._fully_finished is not None and not self._fully_finished.done():
                self._fully_finished.set_exception(e)
                # retrieved by whoever awaits finish(); avoid unretrieved warnings
                self._fully_finished.exception()
            self.on_error(e)
            return

        self._in_progress = False
        self._is_finished = True
        self._is_expediting = False
        self._segments[direction] = self._fresh_segments(direction)
        future = self._finished_future()
        if not future.done():
            future.set_result(self)
        self.on_end_delay_finish()

    @staticmethod
    def _log_error(error: BaseException) -> None:
        logger.error(f"Unhandled effect host error: {error}")
