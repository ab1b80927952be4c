"""Unit: the smallest schedulable item.

A unit drives one effect host through delay -> active -> end delay in a chosen
direction. It owns the effect's config and generators, wires the host's phase-boundary
hooks to kind hooks and effect generation, and reports completion through the
coroutine returned by :meth:`Unit.play` / :meth:`Unit.rewind`.

Units are created through the factories in :mod:`choreo.core.playback.factories`;
calling the constructor directly raises ``TypeError``.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections.abc import Callable, Mapping, Sequence
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from choreo.core.effects.easing import ease
from choreo.core.effects.enums import BuildFrequency, Direction, Phase
from choreo.core.effects.generators import (
    EffectDefinition,
    Mutator,
    ResolvedGenerators,
    build_generators,
)
from choreo.core.effects.host import Blocker, EffectHost
from choreo.core.effects.positions import TimePosition
from choreo.core.errors import (
    ChoreoError,
    ConfigurationError,
    EffectFinalizationError,
    ErrorContext,
    OwnershipError,
)
from choreo.core.playback.kinds import UnitKind
from choreo.core.playback.models import MIN_DURATION, UnitConfig, UnitStatus, UnitTiming
from choreo.core.utils.math import lerp

if TYPE_CHECKING:
    from choreo.core.playback.scheduler import Scheduler

logger = logging.getLogger(__name__)

_FACTORY_TOKEN = object()
_unit_ids = itertools.count()


class Unit:
    """Single effect with its own phase state machine.

    Config precedence (lowest first): base defaults, kind defaults, effect defaults,
    usage config, effect immutable config, kind immutable config.

    Attributes:
        id: Unique, monotonically increasing id
        parent: Owning scheduler (non-owning back-reference), if any
        host: Effect host performing the effect
        kind: Kind descriptor
        effect_name: Name of the effect in its bank
        config: Merged, validated config
        full_start_time: Start offset assigned by the owning scheduler's commit
        direction: Last direction the unit was played in
    """

    def __init__(
        self,
        host: EffectHost,
        kind: UnitKind,
        effect_name: str,
        effect: EffectDefinition,
        effect_options: Sequence[Any] = (),
        usage_config: Mapping[str, Any] | None = None,
        *,
        base_config: Mapping[str, Any] | None = None,
        min_duration: float = MIN_DURATION,
        _token: object = None,
    ) -> None:
        if _token is not _FACTORY_TOKEN:
            raise TypeError(
                "Illegal constructor. Units can only be created through the unit factories "
                "(see create_unit_factories())."
            )

        self.id = next(_unit_ids)
        self.parent: Scheduler | None = None
        self.host = host
        self.kind = kind
        self.effect_name = effect_name
        self.effect = effect
        self.effect_options = tuple(effect_options)

        merged: dict[str, Any] = {
            **(base_config or {}),
            **kind.default_config,
            **effect.default_config,
            **(usage_config or {}),
            **effect.immutable_config,
            **kind.immutable_config,
        }
        try:
            config = UnitConfig(**merged)
        except ValidationError as e:
            raise ConfigurationError(
                f"Invalid unit config: {e}", context=self.context()
            ) from e
        if config.duration < min_duration:
            config = config.model_copy(update={"duration": min_duration})
        self.config = config

        self.full_start_time = 0.0
        self.direction = Direction.FORWARD
        self.in_progress = False
        self.is_running = False
        self.is_paused = False
        self.is_finished = False

        self._first_run = True
        self._generators = ResolvedGenerators()
        self._future: asyncio.Future[Unit] | None = None
        self._mutator: Mutator | None = None
        self._mutator_task: asyncio.Task[None] | None = None

        host.set_timing(self.config.delay, self.config.duration, self.config.end_delay)

    def __repr__(self) -> str:
        return f"Unit(id={self.id}, kind={self.kind.name!r}, effect={self.effect_name!r})"

    # ------------------------------------------------------------------
    # Lineage
    # ------------------------------------------------------------------

    def set_lineage(self, parent: Scheduler) -> None:
        self.parent = parent

    def remove_lineage(self) -> None:
        self.parent = None

    def context(self) -> ErrorContext:
        """Error location data for this unit."""
        parent = self.parent
        if parent is None:
            return ErrorContext(
                unit_id=self.id,
                kind=self.kind.name,
                effect_name=self.effect_name,
            )
        index = parent.find_unit_index(self)
        return ErrorContext(
            scheduler_description=parent.config.description,
            jump_tag=parent.config.jump_tag or None,
            unit_id=self.id,
            unit_index=index if index >= 0 else None,
            kind=self.kind.name,
            effect_name=self.effect_name,
        )

    # ------------------------------------------------------------------
    # Timing
    # ------------------------------------------------------------------

    @property
    def compounded_playback_rate(self) -> float:
        parent_rate = self.parent.compounded_playback_rate if self.parent is not None else 1.0
        return self.config.playback_rate * parent_rate

    @property
    def active_start_time(self) -> float:
        return (self.full_start_time + self.config.delay) / self.config.playback_rate

    @property
    def active_finish_time(self) -> float:
        return (
            self.full_start_time + self.config.delay + self.config.duration
        ) / self.config.playback_rate

    @property
    def full_finish_time(self) -> float:
        return (
            self.full_start_time
            + self.config.delay
            + self.config.duration
            + self.config.end_delay
        ) / self.config.playback_rate

    def get_config(self) -> UnitConfig:
        return self.config

    def get_timing(self) -> UnitTiming:
        return UnitTiming(
            duration=self.config.duration,
            delay=self.config.delay,
            end_delay=self.config.end_delay,
            playback_rate=self.config.playback_rate,
            compounded_playback_rate=self.compounded_playback_rate,
            starts_with_previous=self.config.starts_with_previous,
            starts_next_unit_too=self.config.starts_next_unit_too,
            full_start_time=self.full_start_time,
            active_start_time=self.active_start_time,
            active_finish_time=self.active_finish_time,
            full_finish_time=self.full_finish_time,
        )

    def get_status(self) -> UnitStatus:
        return UnitStatus(
            in_progress=self.in_progress,
            is_running=self.is_running,
            is_paused=self.is_paused,
            is_finished=self.is_finished,
            direction=self.direction,
        )

    def get_effect_details(self) -> dict[str, Any]:
        return {
            "kind": self.kind.name,
            "effect_name": self.effect_name,
            "effect_options": self.effect_options,
            "build_frequency": self.effect.build_frequency,
        }

    def update_playback_rate(self, rate: float) -> Unit:
        """Set the unit's base playback rate and apply the compounded rate."""
        if rate <= 0:
            raise ConfigurationError(
                f"Playback rate must be positive, got {rate}.", context=self.context()
            )
        self.config = self.config.model_copy(update={"playback_rate": rate})
        self.use_compounded_playback_rate()
        return self

    def use_compounded_playback_rate(self) -> Unit:
        self.host.set_playback_rate(self.compounded_playback_rate)
        return self

    @property
    def progress(self) -> float:
        """Eased fraction (0..1) of the active phase done, as seen by mutators.

        While rewinding with a mutator mirrored from the play mutator, the linear
        fraction is reversed before easing so the play mutator retraces its own path.
        """
        timing = self.host.get_computed_timing()
        progress = timing.progress
        if timing.direction is Direction.BACKWARD and self._generators.mutator_mirrored:
            progress = 1.0 - progress
        return ease(self.config.easing, progress)

    def compute_tween(self, initial: float, final: float) -> float:
        """Value ``progress`` of the way from ``initial`` to ``final``."""
        return lerp(initial, final, self.progress)

    # ------------------------------------------------------------------
    # Playback
    # ------------------------------------------------------------------

    async def play(self, token: Scheduler | None = None) -> Unit:
        """Play forward; returns once the end delay has been traversed.

        Raises:
            OwnershipError: If the unit belongs to a scheduler other than ``token``
        """
        self._check_token(token, "play")
        return await self._animate(Direction.FORWARD)

    async def rewind(self, token: Scheduler | None = None) -> Unit:
        """Play backward; returns once the delay has been traversed."""
        self._check_token(token, "rewind")
        return await self._animate(Direction.BACKWARD)

    def pause(self, token: Scheduler | None = None) -> Unit:
        self._check_token(token, "pause")
        if not self.is_running:
            return self
        self.is_running = False
        self.is_paused = True
        self.host.pause()
        self._cancel_mutator_task()
        return self

    def unpause(self, token: Scheduler | None = None) -> Unit:
        self._check_token(token, "unpause")
        if not self.is_paused:
            return self
        self.is_running = True
        self.is_paused = False
        self.host.play()
        self._resume_mutator()
        return self

    async def finish(self, token: Scheduler | None = None) -> Unit:
        """Fast-forward to the end of the current (or next) pass.

        Does nothing while paused. If the unit is not in progress it is started in
        its last-known direction first. Roadblocks are still honored.
        """
        self._check_token(token, "finish")
        if self.is_paused:
            return self
        if not self.in_progress:
            future = self._begin(self.direction)
            self.host.finish()
            return await self._settle(future)
        self.host.finish()
        if self._future is None:
            return self
        return await asyncio.shield(self._future)

    def generate_time_promise(
        self,
        direction: Direction | str,
        phase: Phase | str,
        position: TimePosition,
    ) -> asyncio.Future[None]:
        """Future resolved when playback in ``direction`` reaches ``position`` in ``phase``.

        Args:
            direction: "forward" or "backward"
            phase: "delay", "active", "end_delay" or "whole"
            position: Offset in ms (negative counts back from the phase end),
                "beginning", "end" or a percentage such as "50%"
                measured from where the phase starts when playing, in both
                directions

        Raises:
            ConfigurationError: If an argument is invalid
        """
        return self._with_context(
            lambda: self.host.generate_time_promise(direction, phase, position)
        )

    def add_roadblocks(
        self,
        direction: Direction | str,
        phase: Phase | str,
        position: TimePosition,
        blockers: Sequence[Blocker],
    ) -> Unit:
        """Pause the unit's root at a point until every blocker resolves.

        Blockers are awaitables or zero-argument callables returning awaitables. A
        blocker that never resolves stalls playback indefinitely.
        """
        self._with_context(
            lambda: self.host.add_roadblocks(direction, phase, position, blockers)
        )
        return self

    def add_integrity_blocks(
        self,
        direction: Direction | str,
        phase: Phase | str,
        position: TimePosition,
        blockers: Sequence[Blocker],
    ) -> Unit:
        self._with_context(
            lambda: self.host.add_integrity_blocks(direction, phase, position, blockers)
        )
        return self

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _check_token(self, token: Scheduler | None, method: str) -> None:
        if self.parent is not None and token is not self.parent:
            raise OwnershipError(
                f"Cannot directly call {method}() on a unit that belongs to a scheduler. "
                "Drive the owning scheduler instead.",
                context=self.context(),
            )

    def _with_context(self, operation: Callable[[], Any]) -> Any:
        try:
            return operation()
        except ChoreoError as e:
            if e.context.unit_id is None:
                e.context = self.context()
            raise

    def _pause_root(self) -> None:
        if self.parent is not None:
            self.parent.pause()
        else:
            self.pause()

    def _unpause_root(self) -> None:
        if self.parent is not None:
            self.parent.unpause()
        else:
            self.unpause()

    async def _animate(self, direction: Direction) -> Unit:
        if self.in_progress:
            return self
        future = self._begin(direction)
        return await self._settle(future)

    async def _settle(self, future: asyncio.Future[Unit]) -> Unit:
        try:
            return await future
        except Exception:
            self._pause_root()
            raise

    def _begin(self, direction: Direction) -> asyncio.Future[Unit]:
        """Start a pass in ``direction``; the returned future settles when it ends."""
        if self._first_run or (
            direction is Direction.FORWARD
            and self.effect.build_frequency is BuildFrequency.EVERY_PLAY
        ):
            self._first_run = False
            self._generators = self._with_context(
                lambda: build_generators(self.effect, self, self.effect_options)
            )

        host = self.host
        host.set_direction(direction)
        self.direction = direction
        host.composite = self.config.composite
        host.apply_frames([])
        self.use_compounded_playback_rate()

        future: asyncio.Future[Unit] = asyncio.get_running_loop().create_future()
        self._future = future
        self.is_finished = False
        self.in_progress = True
        self.is_running = True

        host.on_delay_finish = self._guarded(future, lambda: self._on_delay_finish(direction, future))
        host.on_active_finish = self._guarded(future, lambda: self._on_active_finish(direction))
        host.on_end_delay_finish = self._guarded(future, lambda: self._on_end_delay_finish(future))
        host.on_error = lambda error: self._reject(future, error)
        host.pause_for_roadblocks = self._pause_root
        host.unpause_from_roadblocks = self._unpause_root

        logger.debug(f"{self!r} starting {direction.value}")
        parent = self.parent
        if parent is not None and parent.using_finish:
            host.finish()
        else:
            host.play()
        if parent is not None and parent.is_paused:
            self.pause(parent)
        return future

    def _guarded(self, future: asyncio.Future[Unit], hook: Callable[[], None]) -> Callable[[], None]:
        def guarded() -> None:
            try:
                hook()
            except Exception as e:
                self._reject(future, e)

        return guarded

    def _reject(self, future: asyncio.Future[Unit], error: BaseException) -> None:
        logger.error(f"{self!r} failed while playing {self.direction.value}: {error}")
        self._stop_mutator(final_frame=False)
        if not future.done():
            future.set_exception(error)

    def _on_delay_finish(self, direction: Direction, future: asyncio.Future[Unit]) -> None:
        generators = self._generators
        host = self.host
        if direction is Direction.FORWARD:
            self.kind.on_start_forward(self)
            frames = generators.keyframes_play() if generators.keyframes_play else []
            host.apply_frames(frames)
            mutator_generator = generators.mutator_play
        else:
            self.kind.on_start_backward(self)
            frames = generators.keyframes_rewind() if generators.keyframes_rewind else []
            host.apply_frames(frames, mirrored=generators.keyframes_mirrored)
            mutator_generator = generators.mutator_rewind

        if mutator_generator is not None:
            self._start_mutator(mutator_generator(), future)

    def _on_active_finish(self, direction: Direction) -> None:
        self._stop_mutator()
        if self.config.commits_result and not self._generators.no_keyframes:
            self._commit()
        if direction is Direction.FORWARD:
            self.kind.on_finish_forward(self)
        else:
            self.kind.on_finish_backward(self)

    def _on_end_delay_finish(self, future: asyncio.Future[Unit]) -> None:
        self.in_progress = False
        self.is_running = False
        self.is_paused = False
        self.host.cancel()
        self.is_finished = True
        logger.debug(f"{self!r} finished {self.direction.value}")
        if not future.done():
            future.set_result(self)

    def _commit(self) -> None:
        try:
            self.host.commit_result()
            return
        except EffectFinalizationError as e:
            if not self.config.forceful_commit:
                raise EffectFinalizationError(e.message, context=self.context()) from e
            logger.warning(f"{self!r} could not commit its result ({e.message}); forcing commit")

        try:
            self.host.commit_result(force=True)
        except EffectFinalizationError as e:
            raise EffectFinalizationError(
                f"Forced commit failed: {e.message}", context=self.context()
            ) from e

    def _start_mutator(self, mutator: Mutator, future: asyncio.Future[Unit]) -> None:
        self._mutator = mutator
        # a paused unit gets its frame loop on unpause
        if not self.is_paused:
            self._mutator_task = asyncio.get_running_loop().create_task(
                self._run_mutator(mutator, future)
            )

    def _resume_mutator(self) -> None:
        future = self._future
        if self._mutator is None or self._mutator_task is not None:
            return
        if future is None or future.done():
            return
        self._mutator_task = asyncio.get_running_loop().create_task(
            self._run_mutator(self._mutator, future)
        )

    async def _run_mutator(self, mutator: Mutator, future: asyncio.Future[Unit]) -> None:
        try:
            while not future.done() and self.host.get_computed_timing().progress < 1.0:
                mutator()
                await asyncio.sleep(self.host.frame_interval)
        except Exception as e:
            self._reject(future, e)

    def _cancel_mutator_task(self) -> None:
        if self._mutator_task is not None:
            self._mutator_task.cancel()
            self._mutator_task = None

    def _stop_mutator(self, final_frame: bool = True) -> None:
        """Stop the frame loop; by default call the mutator once more at full progress."""
        self._cancel_mutator_task()
        if self._mutator is not None:
            mutator, self._mutator = self._mutator, None
            if final_frame:
                mutator()


def build_unit(
    host: EffectHost,
    kind: UnitKind,
    effect_name: str,
    effect: EffectDefinition,
    effect_options: Sequence[Any] = (),
    usage_config: Mapping[str, Any] | None = None,
    *,
    base_config: Mapping[str, Any] | None = None,
    min_duration: float = MIN_DURATION,
) -> Unit:
    """Construct a unit. Used by the unit factories."""
    return Unit(
        host,
        kind,
        effect_name,
        effect,
        effect_options,
        usage_config,
        base_config=base_config,
        min_duration=min_duration,
        _token=_FACTORY_TOKEN,
    )
