"""Scheduler: ordered, synchronized playback of units.

``commit()`` assigns every unit a start offset from its adjacency flags and derives
the completion orderings used during playback. During ``play()`` and ``rewind()``
integrity blocks turn those orderings into guarantees: a unit cannot finish its
active phase before the unit ordered ahead of it, however the hosts jitter.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from choreo.core.effects.enums import Direction, Phase
from choreo.core.errors import ConfigurationError, ErrorContext, StructuralError
from choreo.core.playback.models import SchedulerConfig, SchedulerStatus, SchedulerTiming
from choreo.core.playback.unit import Unit
from choreo.core.utils.logging import get_logger, log_performance
from choreo.core.utils.math import clamp

logger = logging.getLogger(__name__)

_scheduler_ids = itertools.count()


def _noop() -> None:
    pass


@dataclass
class PlaybackHooks:
    """Callback pair run at a playback boundary and reverted when it is crossed back."""

    do: Callable[[], None] = field(default=_noop)
    undo: Callable[[], None] = field(default=_noop)


class Scheduler:
    """Ordered collection of units played and rewound in synchronization.

    Args:
        units: Units to add initially
        config: Scheduler config (or pass its fields as keyword arguments)

    Example:
        >>> factories = create_unit_factories()
        >>> scheduler = Scheduler(
        ...     [factories.entrance(host_a, "~fade-in"), factories.exit(host_b, "~fade-out")],
        ...     description="intro",
        ... )
        >>> await scheduler.play()
        >>> await scheduler.rewind()
    """

    def __init__(
        self,
        units: Iterable[Unit] = (),
        config: SchedulerConfig | None = None,
        **config_kwargs: Any,
    ) -> None:
        self.id = next(_scheduler_ids)
        self.config = config or SchedulerConfig(**config_kwargs)
        self._log = get_logger(__name__, scheduler=self.config.description, scheduler_id=self.id)

        self.is_paused = False
        self.is_running = False
        self.in_progress = False
        self.is_finished = False
        self.was_played = False
        self.was_rewound = False
        self.using_finish = False

        self.on_start = PlaybackHooks()
        self.on_finish = PlaybackHooks()

        self._units: list[Unit] = []
        self._in_progress_units: dict[int, Unit] = {}
        self._forward_groups: list[list[Unit]] = []
        self._active_finish_groups: list[list[Unit]] = []
        self._end_delay_finish_groups: list[list[Unit]] = []
        self._backward_active_finish_groups: list[list[Unit]] = []
        self._fully_finished: asyncio.Future[Scheduler] | None = None
        self._background_tasks: set[asyncio.Task[Any]] = set()

        self.add_units(units)

    def __repr__(self) -> str:
        return f"Scheduler(id={self.id}, description={self.config.description!r})"

    # ------------------------------------------------------------------
    # Status and timing
    # ------------------------------------------------------------------

    @property
    def locked_structure(self) -> bool:
        return self.in_progress or self.was_played

    @property
    def units(self) -> tuple[Unit, ...]:
        return tuple(self._units)

    @property
    def compounded_playback_rate(self) -> float:
        return self.config.playback_rate

    @property
    def forward_groups(self) -> list[list[Unit]]:
        return [list(group) for group in self._forward_groups]

    @property
    def active_finish_groups(self) -> list[list[Unit]]:
        return [list(group) for group in self._active_finish_groups]

    @property
    def end_delay_finish_groups(self) -> list[list[Unit]]:
        return [list(group) for group in self._end_delay_finish_groups]

    @property
    def backward_active_finish_groups(self) -> list[list[Unit]]:
        return [list(group) for group in self._backward_active_finish_groups]

    def get_status(self) -> SchedulerStatus:
        return SchedulerStatus(
            is_paused=self.is_paused,
            is_running=self.is_running,
            in_progress=self.in_progress,
            is_finished=self.is_finished,
            was_played=self.was_played,
            was_rewound=self.was_rewound,
            using_finish=self.using_finish,
            locked_structure=self.locked_structure,
        )

    def get_timing(self) -> SchedulerTiming:
        return SchedulerTiming(
            playback_rate=self.config.playback_rate,
            compounded_playback_rate=self.compounded_playback_rate,
            full_finish_time=max((unit.full_finish_time for unit in self._units), default=0.0),
        )

    def context(self) -> ErrorContext:
        return ErrorContext(
            scheduler_description=self.config.description,
            jump_tag=self.config.jump_tag or None,
        )

    def set_on_start(
        self,
        do: Callable[[], None] | None = None,
        undo: Callable[[], None] | None = None,
    ) -> Scheduler:
        """Set callbacks run when playing starts (``do``) and when rewinding ends (``undo``)."""
        self.on_start = PlaybackHooks(do=do or _noop, undo=undo or _noop)
        return self

    def set_on_finish(
        self,
        do: Callable[[], None] | None = None,
        undo: Callable[[], None] | None = None,
    ) -> Scheduler:
        """Set callbacks run when playing ends (``do``) and when rewinding starts (``undo``)."""
        self.on_finish = PlaybackHooks(do=do or _noop, undo=undo or _noop)
        return self

    def update_playback_rate(self, rate: float) -> Scheduler:
        if rate <= 0:
            raise ConfigurationError(
                f"Playback rate must be positive, got {rate}.", context=self.context()
            )
        self.config = self.config.model_copy(update={"playback_rate": rate})
        self.use_compounded_playback_rate()
        return self

    def use_compounded_playback_rate(self) -> Scheduler:
        for unit in list(self._in_progress_units.values()):
            unit.use_compounded_playback_rate()
        return self

    # ------------------------------------------------------------------
    # Structure
    # ------------------------------------------------------------------

    def _locked_error(self, method: str) -> StructuralError:
        return StructuralError(
            f"Cannot call {method}() while the scheduler's structure is locked. The structure "
            "is locked while it is in progress and after it has been played until it is "
            "fully rewound.",
            context=self.context(),
        )

    def add_units(self, units: Iterable[Unit], at_index: int | None = None) -> Scheduler:
        """Add units at the end (or at ``at_index``).

        Raises:
            StructuralError: If the structure is locked, an object is not a unit, or a
                unit already belongs to a scheduler
        """
        if self.locked_structure:
            raise self._locked_error("add_units")

        units = list(units)
        seen: set[int] = set()
        for unit in units:
            if not isinstance(unit, Unit):
                raise StructuralError(
                    f"At least one of the objects being added is not a Unit: {unit!r}",
                    context=self.context(),
                )
            if unit.parent is not None:
                raise StructuralError(
                    f"{unit!r} already belongs to a scheduler.", context=self.context()
                )
            if unit.id in seen:
                raise StructuralError(
                    f"{unit!r} was passed more than once.", context=self.context()
                )
            seen.add(unit.id)

        if at_index is None:
            self._units.extend(units)
        else:
            self._units[at_index:at_index] = units
        for unit in units:
            unit.set_lineage(self)
        return self

    def remove_units(self, units: Iterable[Unit]) -> Scheduler:
        """Remove units. If any unit is not part of the scheduler, nothing is removed."""
        if self.locked_structure:
            raise self._locked_error("remove_units")

        units = list(units)
        if any(self.find_unit_index(unit) == -1 for unit in units):
            logger.warning(
                f"At least one of the units being removed from {self!r} was not part of it; "
                "no units were removed"
            )
            return self

        for unit in units:
            self._units.remove(unit)
            unit.remove_lineage()
        return self

    def remove_units_at(self, start_index: int, end_index: int | None = None) -> list[Unit]:
        """Remove units in ``[start_index, end_index)`` (one unit if ``end_index`` is None)."""
        if self.locked_structure:
            raise self._locked_error("remove_units_at")

        if end_index is None:
            end_index = start_index + 1
        removed = self._units[start_index:end_index]
        del self._units[start_index:end_index]
        for unit in removed:
            unit.remove_lineage()
        return removed

    def find_unit_index(self, unit: Unit) -> int:
        """Index of ``unit`` in the scheduler, or -1."""
        for index, candidate in enumerate(self._units):
            if candidate is unit:
                return index
        return -1

    # ------------------------------------------------------------------
    # Commit
    # ------------------------------------------------------------------

    @log_performance
    def commit(self) -> Scheduler:
        """Assign start offsets and compute groupings from the adjacency flags.

        A unit joins the current group if it is first, sets ``starts_with_previous``,
        or follows a unit that sets ``starts_next_unit_too``; it then starts when its
        predecessor's active phase starts. Any other unit opens a new group starting
        at the latest finish time seen so far.
        """
        self._forward_groups = []
        self._active_finish_groups = []
        self._end_delay_finish_groups = []
        self._backward_active_finish_groups = []

        units = self._units
        if not units:
            return self

        max_finish_time = 0.0
        group: list[Unit] = []
        for i, unit in enumerate(units):
            previous = units[i - 1] if i > 0 else None
            joins_group = (
                previous is None
                or unit.config.starts_with_previous
                or previous.config.starts_next_unit_too
            )
            if joins_group:
                start_time = previous.active_start_time if previous is not None else 0.0
                group.append(unit)
            else:
                self._close_group(group)
                group = [unit]
                start_time = max_finish_time

            unit.full_start_time = start_time
            max_finish_time = max(max_finish_time, unit.full_finish_time)

        self._close_group(group)
        return self

    def _close_group(self, group: list[Unit]) -> None:
        order = {unit.id: index for index, unit in enumerate(group)}
        self._forward_groups.append(list(group))
        self._active_finish_groups.append(
            sorted(group, key=lambda u: (u.active_finish_time, order[u.id]))
        )
        end_delay_order = sorted(group, key=lambda u: (u.full_finish_time, order[u.id]))
        self._end_delay_finish_groups.append(end_delay_order)
        # descending active start; ties mirror the end-delay finish order
        self._backward_active_finish_groups.append(
            sorted(group, key=lambda u: (-u.active_start_time, -u.full_finish_time, -order[u.id]))
        )

    # ------------------------------------------------------------------
    # Playback
    # ------------------------------------------------------------------

    async def play(self) -> Scheduler:
        """Play every group in order; returns when the last group finishes.

        Raises:
            ChoreoError: Any error raised by a unit (the scheduler stays paused)
        """
        if self.in_progress:
            return self
        self._prepare_play()
        return await self._run_forward()

    async def rewind(self) -> Scheduler:
        """Rewind every group in reverse order, mirroring the forward timing."""
        if self.in_progress:
            return self
        if not self.was_played:
            self._log.debug("Not played yet; nothing to rewind")
            return self
        self._prepare_rewind()
        return await self._run_backward()

    def pause(self) -> Scheduler:
        """Pause every in-progress unit.

        Returns:
            The scheduler, for chaining. A no-op unless it is running.
        """
        if not self.is_running:
            return self
        self.is_running = False
        self.is_paused = True
        for unit in list(self._in_progress_units.values()):
            unit.pause(self)
        return self

    def unpause(self) -> Scheduler:
        """Resume the units paused by 'pause'.

        Returns:
            The scheduler, for chaining. A no-op unless it is paused.
        """
        if not self.is_paused:
            return self
        self.is_running = True
        self.is_paused = False
        for unit in list(self._in_progress_units.values()):
            unit.unpause(self)
        return self

    async def finish(self) -> Scheduler:
        """Fast-forward playback; returns once the scheduler has fully finished.

        Does nothing while paused or already finishing. If in progress, every running
        unit is finished and units started afterwards finish immediately. If not in
        progress and ready to play forward, playing starts in finishing mode. A
        scheduler that has already played forward stays where it is.
        """
        if self.using_finish or self.is_paused:
            return self

        if self.in_progress:
            self.using_finish = True
            fully_finished = self._get_fully_finished()
            await self.finish_in_progress_units()
        elif not self.was_played or self.was_rewound:
            self.using_finish = True
            self._prepare_play()
            fully_finished = self._get_fully_finished()
            self._spawn(self._run_forward())
        else:
            return self

        return await fully_finished

    async def finish_in_progress_units(self) -> Scheduler:
        """Finish the units currently running.

        Registered units whose pass has not begun yet are skipped; they check
        ``using_finish`` when they start.
        """
        running = [unit for unit in self._in_progress_units.values() if unit.in_progress]
        await asyncio.gather(*(unit.finish(self) for unit in running))
        return self

    # ------------------------------------------------------------------
    # Playback internals
    # ------------------------------------------------------------------

    def _get_fully_finished(self) -> asyncio.Future[Scheduler]:
        if self._fully_finished is None:
            self._fully_finished = asyncio.get_running_loop().create_future()
        return self._fully_finished

    def _handle_finish_state(self) -> None:
        if self.is_finished:
            self.is_finished = False
            self._fully_finished = None

    def _prepare_play(self) -> None:
        self.in_progress = True
        self.is_running = True
        self._handle_finish_state()
        self.commit()
        self.on_start.do()

        for group in self._active_finish_groups:
            for previous, unit in zip(group, group[1:]):
                unit.add_integrity_blocks(
                    Direction.FORWARD,
                    Phase.ACTIVE,
                    "end",
                    [self._reached(previous, Direction.FORWARD, Phase.ACTIVE, "end")],
                )

    def _prepare_rewind(self) -> None:
        self.in_progress = True
        self.is_running = True
        self._handle_finish_state()
        self.on_finish.undo()

        for group in self._backward_active_finish_groups:
            for previous, unit in zip(group, group[1:]):
                unit.add_integrity_blocks(
                    Direction.BACKWARD,
                    Phase.ACTIVE,
                    "beginning",
                    [self._reached(previous, Direction.BACKWARD, Phase.ACTIVE, "beginning")],
                )

    @staticmethod
    def _reached(
        unit: Unit, direction: Direction, phase: Phase, position: str
    ) -> Callable[[], Awaitable[None]]:
        return lambda: unit.generate_time_promise(direction, phase, position)

    def _start_unit(self, unit: Unit, direction: Direction) -> asyncio.Task[Unit]:
        self._in_progress_units[unit.id] = unit

        async def run() -> Unit:
            if direction is Direction.FORWARD:
                await unit.play(self)
            else:
                await unit.rewind(self)
            self._in_progress_units.pop(unit.id, None)
            return unit

        return asyncio.get_running_loop().create_task(run())

    async def _wait_for_point(
        self, point: Awaitable[None], tasks: list[asyncio.Task[Unit]]
    ) -> None:
        """Wait for ``point`` unless one of the running unit tasks fails first."""
        point_future = asyncio.ensure_future(point)
        pending: set[asyncio.Future[Any]] = {point_future, *tasks}
        while not point_future.done():
            done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
            for finished in done:
                if finished is not point_future and not finished.cancelled():
                    error = finished.exception()
                    if error is not None:
                        raise error
        point_future.result()

    async def _run_forward(self) -> Scheduler:
        try:
            for group in self._forward_groups:
                tasks = [self._start_unit(group[0], Direction.FORWARD)]
                for previous, unit in zip(group, group[1:]):
                    await self._wait_for_point(
                        previous.generate_time_promise(Direction.FORWARD, Phase.ACTIVE, "beginning"),
                        tasks,
                    )
                    tasks.append(self._start_unit(unit, Direction.FORWARD))
                await asyncio.gather(*tasks)
        except Exception as e:
            self._fail(e)
            raise

        self.in_progress = False
        self.is_running = False
        self.is_finished = True
        self.was_played = True
        self.was_rewound = False
        self.using_finish = False
        self._resolve_fully_finished()
        self.on_finish.do()
        self._log.debug("Finished playing")
        return self

    async def _run_backward(self) -> Scheduler:
        try:
            for group in reversed(self._end_delay_finish_groups):
                tasks = [self._start_unit(group[-1], Direction.BACKWARD)]
                for j in range(len(group) - 2, -1, -1):
                    current, following = group[j], group[j + 1]
                    await self._wait_for_point(self._rewind_start_point(current, following), tasks)
                    tasks.append(self._start_unit(current, Direction.BACKWARD))
                await asyncio.gather(*tasks)
        except Exception as e:
            self._fail(e)
            raise

        self.in_progress = False
        self.is_running = False
        self.is_finished = True
        self.was_played = False
        self.was_rewound = True
        self.using_finish = False
        self._resolve_fully_finished()
        self.on_start.undo()
        self._log.debug("Finished rewinding")
        return self

    @staticmethod
    def _rewind_start_point(current: Unit, following: Unit) -> asyncio.Future[None]:
        """Point in ``following``'s rewind at which ``current`` must start rewinding.

        If ``current`` was still running when ``following`` started, that is the
        moment ``following``'s rewind crosses ``current``'s forward finish time.
        Otherwise it is when ``following`` has finished rewinding entirely.
        """
        if current.full_finish_time > following.full_start_time:
            config = following.config
            total = config.delay + config.duration + config.end_delay
            rate = config.playback_rate
            # forward local time in following at which current finished playing
            position = current.full_finish_time * rate - following.full_start_time * rate
            position = clamp(position, 0.0, total)
            return following.generate_time_promise(Direction.BACKWARD, Phase.WHOLE, position)
        return following.generate_time_promise(Direction.BACKWARD, Phase.DELAY, "beginning")

    def _fail(self, error: Exception) -> None:
        logger.error(f"{self!r} stopped because a unit failed: {error}")
        self.pause()
        future = self._fully_finished
        if future is not None and not future.done():
            future.set_exception(error)
            # consumed by finish() when it is awaiting; avoid unretrieved warnings
            future.exception()

    def _resolve_fully_finished(self) -> None:
        future = self._get_fully_finished()
        if not future.done():
            future.set_result(self)

    def _spawn(self, coroutine: Awaitable[Any]) -> None:
        task = asyncio.ensure_future(coroutine)
        self._background_tasks.add(task)

        def done(finished: asyncio.Task[Any]) -> None:
            self._background_tasks.discard(finished)
            if not finished.cancelled() and finished.exception() is not None:
                logger.debug(f"{self!r} background playback ended with an error")

        task.add_done_callback(done)
