"""Tests for scheduler structure, commit groupings and synchronized playback."""

from __future__ import annotations

import asyncio
import logging

import pytest

from choreo.core.effects.generators import EffectDefinition, MutatorEffect
from choreo.core.errors import InvalidExitError, StructuralError
from choreo.core.playback.factories import create_unit_factories
from choreo.core.playback.scheduler import Scheduler

# ============================================================================
# Helpers
# ============================================================================


@pytest.fixture
def make_unit(factories, make_host):
    """Build a "~highlight" emphasis unit on a fresh fast host."""

    def make(name: str = "host", **config):
        return factories.emphasis(make_host(name), "~highlight", ["gold"], config)

    return make


@pytest.fixture
def make_recorded_unit(factories, make_recording_host):
    """Build a "~highlight" emphasis unit whose commits are recorded by host name."""

    def make(name: str, speed_factor: float = 1.0, **config):
        host = make_recording_host(name, speed_factor=speed_factor)
        return factories.emphasis(host, "~highlight", ["gold"], config)

    return make


def _status_snapshot(scheduler: Scheduler) -> dict:
    return scheduler.get_status().model_dump()


# ============================================================================
# Structure
# ============================================================================


class TestStructure:
    """Test adding, removing and locating units."""

    def test_add_units_sets_lineage(self, make_unit):
        first, second = make_unit(), make_unit()
        scheduler = Scheduler([first])

        scheduler.add_units([second], at_index=0)

        assert scheduler.units == (second, first)
        assert second.parent is scheduler
        assert scheduler.find_unit_index(first) == 1

    def test_add_unit_owned_elsewhere(self, make_unit):
        unit = make_unit()
        Scheduler([unit])

        with pytest.raises(StructuralError, match="already belongs"):
            Scheduler([unit])

    def test_add_non_unit(self):
        with pytest.raises(StructuralError, match="not a Unit"):
            Scheduler(["not a unit"])

    def test_add_duplicate_unit(self, make_unit):
        unit = make_unit()

        with pytest.raises(StructuralError, match="more than once"):
            Scheduler([unit, unit])
        assert unit.parent is None

    def test_remove_units(self, make_unit):
        first, second = make_unit(), make_unit()
        scheduler = Scheduler([first, second])

        scheduler.remove_units([first])

        assert scheduler.units == (second,)
        assert first.parent is None

    def test_remove_units_with_stranger_removes_nothing(self, make_unit, caplog):
        member, stranger = make_unit(), make_unit()
        scheduler = Scheduler([member])

        with caplog.at_level(logging.WARNING):
            scheduler.remove_units([member, stranger])

        assert scheduler.units == (member,)
        assert member.parent is scheduler
        assert "no units were removed" in caplog.text

    def test_remove_units_at(self, make_unit):
        units = [make_unit() for _ in range(4)]
        scheduler = Scheduler(units)

        removed = scheduler.remove_units_at(1, 3)

        assert removed == units[1:3]
        assert scheduler.units == (units[0], units[3])
        assert all(unit.parent is None for unit in removed)
        assert scheduler.remove_units_at(0) == [units[0]]

    def test_find_missing_unit(self, make_unit):
        assert Scheduler().find_unit_index(make_unit()) == -1


# ============================================================================
# Commit
# ============================================================================


class TestCommit:
    """Test start offsets and groupings computed from adjacency flags."""

    def test_sequential_units_start_at_previous_finish(self, make_unit):
        units = [
            make_unit(delay=10, duration=100, end_delay=5),
            make_unit(delay=0, duration=200, end_delay=20),
            make_unit(delay=30, duration=50),
        ]
        scheduler = Scheduler(units).commit()

        for previous, unit in zip(units, units[1:]):
            assert unit.full_start_time == previous.full_finish_time
        assert scheduler.forward_groups == [[unit] for unit in units]

    def test_grouped_units_share_anchor_start(self, make_unit):
        anchor = make_unit(duration=100)
        second = make_unit(duration=50, starts_with_previous=True)
        third = make_unit(duration=70, starts_with_previous=True)
        scheduler = Scheduler([make_unit(duration=40), anchor, second, third]).commit()

        assert anchor.full_start_time == 40
        assert second.full_start_time == anchor.full_start_time
        assert third.full_start_time == anchor.full_start_time
        assert scheduler.forward_groups[1] == [anchor, second, third]

    def test_starts_next_unit_too(self, make_unit):
        before = make_unit(duration=100)
        leader = make_unit(duration=50, starts_next_unit_too=True)
        follower = make_unit(duration=80)
        Scheduler([before, leader, follower]).commit()

        assert leader.full_start_time == 100
        assert follower.full_start_time == leader.full_start_time

    def test_grouped_unit_starts_at_previous_active_start(self, make_unit):
        anchor = make_unit(delay=40, duration=100)
        second = make_unit(duration=50, starts_with_previous=True)
        Scheduler([anchor, second]).commit()

        assert second.full_start_time == anchor.active_start_time == 40

    def test_new_group_starts_at_latest_finish(self, make_unit):
        long_unit = make_unit(duration=300)
        short_unit = make_unit(duration=100, starts_with_previous=True)
        later = make_unit(duration=50)
        Scheduler([long_unit, short_unit, later]).commit()

        assert later.full_start_time == 300

    def test_completion_orderings(self, make_unit):
        slow = make_unit(duration=300)
        fast = make_unit(duration=100, end_delay=500, starts_with_previous=True)
        scheduler = Scheduler([slow, fast]).commit()

        assert scheduler.active_finish_groups == [[fast, slow]]
        assert scheduler.end_delay_finish_groups == [[slow, fast]]

    def test_backward_tie_break_mirrors_end_delay_order(self, make_unit):
        short = make_unit(duration=100)
        long = make_unit(duration=200, starts_with_previous=True)
        scheduler = Scheduler([short, long]).commit()

        assert short.active_start_time == long.active_start_time
        assert scheduler.end_delay_finish_groups == [[short, long]]
        assert scheduler.backward_active_finish_groups == [[long, short]]

    def test_backward_tie_break_falls_back_to_reverse_insertion_order(self, make_unit):
        first = make_unit(duration=100)
        second = make_unit(duration=100, starts_with_previous=True)
        third = make_unit(duration=100, starts_with_previous=True)
        scheduler = Scheduler([first, second, third]).commit()

        assert scheduler.end_delay_finish_groups == [[first, second, third]]
        assert scheduler.backward_active_finish_groups == [[third, second, first]]

    def test_full_finish_time(self, make_unit):
        scheduler = Scheduler([make_unit(duration=100), make_unit(duration=250)]).commit()

        assert scheduler.get_timing().full_finish_time == 350

    def test_empty_scheduler(self):
        scheduler = Scheduler().commit()

        assert scheduler.forward_groups == []
        assert scheduler.get_timing().full_finish_time == 0


# ============================================================================
# Play and Rewind
# ============================================================================


class TestPlayback:
    """Test playing and rewinding in synchronization."""

    @pytest.mark.asyncio
    async def test_sequential_play_takes_total_duration(self, factories, make_host):
        time_scale = 0.0002
        units = [
            factories.emphasis(
                make_host(f"u{i}", time_scale=time_scale), "~highlight", (), {"duration": d}
            )
            for i, d in enumerate([100, 200, 300])
        ]
        scheduler = Scheduler(units)
        loop = asyncio.get_running_loop()

        started = loop.time()
        await scheduler.play()
        elapsed = loop.time() - started

        assert elapsed >= 600 * time_scale * 0.95
        assert scheduler.forward_groups == [[units[0]], [units[1]], [units[2]]]

    @pytest.mark.asyncio
    async def test_play_status(self, make_unit):
        scheduler = Scheduler([make_unit(duration=50), make_unit(duration=50)])

        assert await scheduler.play() is scheduler

        status = scheduler.get_status()
        assert status.was_played and status.is_finished
        assert not status.in_progress and not status.was_rewound
        assert status.locked_structure
        assert all(unit.is_finished for unit in scheduler.units)

    @pytest.mark.asyncio
    async def test_structure_locked_after_play(self, make_unit):
        unit = make_unit(duration=50)
        scheduler = Scheduler([unit])
        await scheduler.play()

        with pytest.raises(StructuralError, match="locked"):
            scheduler.add_units([make_unit()])
        with pytest.raises(StructuralError):
            scheduler.remove_units([unit])
        with pytest.raises(StructuralError):
            scheduler.remove_units_at(0)

    @pytest.mark.asyncio
    async def test_structure_locked_while_in_progress(self, make_unit):
        scheduler = Scheduler([make_unit(duration=300)])

        task = asyncio.create_task(scheduler.play())
        await asyncio.sleep(0.005)

        assert scheduler.get_status().locked_structure
        with pytest.raises(StructuralError):
            scheduler.add_units([make_unit()])
        await task

    @pytest.mark.asyncio
    async def test_rewind_returns_to_baseline(self, make_unit):
        scheduler = Scheduler(
            [make_unit(duration=50), make_unit(duration=80, starts_with_previous=True)]
        )
        await scheduler.play()

        assert await scheduler.rewind() is scheduler

        status = scheduler.get_status()
        assert not status.was_played
        assert status.was_rewound
        assert status.is_finished
        assert not status.locked_structure
        scheduler.add_units([make_unit()])
        assert len(scheduler.units) == 3

    @pytest.mark.asyncio
    async def test_rewind_before_play_is_noop(self, make_unit):
        scheduler = Scheduler([make_unit(duration=50)])
        before = _status_snapshot(scheduler)

        await scheduler.rewind()

        assert _status_snapshot(scheduler) == before

    @pytest.mark.asyncio
    async def test_play_and_rewind_hooks(self, make_unit):
        calls: list[str] = []
        scheduler = Scheduler([make_unit(duration=30)])
        scheduler.set_on_start(
            do=lambda: calls.append("start"), undo=lambda: calls.append("unstart")
        )
        scheduler.set_on_finish(
            do=lambda: calls.append("finish"), undo=lambda: calls.append("unfinish")
        )

        await scheduler.play()
        await scheduler.rewind()

        assert calls == ["start", "finish", "unfinish", "unstart"]

    @pytest.mark.asyncio
    async def test_play_while_in_progress_is_noop(self, make_unit):
        scheduler = Scheduler([make_unit(duration=200)])
        task = asyncio.create_task(scheduler.play())
        await asyncio.sleep(0.005)

        assert await scheduler.play() is scheduler
        assert scheduler.in_progress
        await task


class TestIntegrityOrdering:
    """Test that completion order holds even when hosts run early."""

    @pytest.mark.asyncio
    async def test_forward_active_finish_order(self, make_recorded_unit, events):
        first = make_recorded_unit("A", duration=100)
        second = make_recorded_unit("B", speed_factor=20, duration=200, starts_with_previous=True)
        scheduler = Scheduler([first, second])

        await scheduler.play()

        assert scheduler.active_finish_groups == [[first, second]]
        assert events == ["A", "B"]

    @pytest.mark.asyncio
    async def test_backward_active_finish_order(self, make_recorded_unit, events):
        first = make_recorded_unit("A", speed_factor=20, duration=100)
        second = make_recorded_unit("B", duration=200, starts_with_previous=True)
        scheduler = Scheduler([first, second])
        await scheduler.play()
        events.clear()

        await scheduler.rewind()

        assert scheduler.backward_active_finish_groups == [[second, first]]
        assert events == ["B", "A"]


# ============================================================================
# Pause and Finish
# ============================================================================


class TestPauseAndFinish:
    """Test pausing and fast-forwarding a scheduler."""

    @pytest.mark.asyncio
    async def test_pause_and_unpause(self, make_unit):
        scheduler = Scheduler([make_unit(duration=300), make_unit(duration=300)])
        task = asyncio.create_task(scheduler.play())
        await asyncio.sleep(0.005)

        scheduler.pause()

        assert scheduler.is_paused and not scheduler.is_running
        assert scheduler.units[0].is_paused
        frozen = scheduler.units[0].host.get_computed_timing().local_time
        await asyncio.sleep(0.02)
        assert scheduler.units[0].host.get_computed_timing().local_time == frozen

        scheduler.unpause()
        await asyncio.wait_for(task, timeout=2)
        assert scheduler.is_finished

    @pytest.mark.asyncio
    async def test_roadblock_pauses_whole_scheduler(self, make_unit):
        """A roadblock on one unit freezes its siblings until it clears."""
        first = make_unit("first", duration=1000)
        second = make_unit("second", duration=1000, starts_with_previous=True)
        scheduler = Scheduler([first, second])
        gate: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        first.add_roadblocks("forward", "active", "50%", [gate])

        task = asyncio.create_task(scheduler.play())
        await asyncio.sleep(0.08)

        assert scheduler.is_paused
        assert first.is_paused and second.is_paused
        frozen = second.host.get_computed_timing().local_time
        assert 0 < frozen < 1000
        await asyncio.sleep(0.02)
        assert second.host.get_computed_timing().local_time == frozen

        gate.set_result(None)
        await asyncio.wait_for(task, timeout=2)

        assert scheduler.is_finished
        assert not scheduler.is_paused
        assert not first.is_paused and not second.is_paused

    @pytest.mark.asyncio
    async def test_finish_while_paused_is_noop(self, make_unit):
        scheduler = Scheduler([make_unit(duration=300), make_unit(duration=300)])
        task = asyncio.create_task(scheduler.play())
        await asyncio.sleep(0.005)
        scheduler.pause()
        before = _status_snapshot(scheduler)

        assert await scheduler.finish() is scheduler

        assert _status_snapshot(scheduler) == before
        assert not scheduler.using_finish
        scheduler.unpause()
        await asyncio.wait_for(task, timeout=2)

    @pytest.mark.asyncio
    async def test_finish_fresh_scheduler_plays_in_finishing_mode(self, factories, make_host):
        units = [
            factories.emphasis(
                make_host(f"u{i}", time_scale=0.001), "~highlight", (), {"duration": 10_000}
            )
            for i in range(3)
        ]
        scheduler = Scheduler(units)

        assert await asyncio.wait_for(scheduler.finish(), timeout=2) is scheduler

        status = scheduler.get_status()
        assert status.was_played and status.is_finished
        assert not status.in_progress and not status.using_finish
        assert all(unit.is_finished for unit in units)

    @pytest.mark.asyncio
    async def test_finish_during_play(self, factories, make_host):
        units = [
            factories.emphasis(
                make_host(f"u{i}", time_scale=0.001), "~highlight", (), {"duration": 5_000}
            )
            for i in range(3)
        ]
        scheduler = Scheduler(units)
        task = asyncio.create_task(scheduler.play())
        await asyncio.sleep(0.01)

        await asyncio.wait_for(scheduler.finish(), timeout=2)

        assert await asyncio.wait_for(task, timeout=1) is scheduler
        assert scheduler.is_finished
        assert all(unit.is_finished for unit in units)

    @pytest.mark.asyncio
    async def test_finish_after_play_is_noop(self, make_unit):
        scheduler = Scheduler([make_unit(duration=30)])
        await scheduler.play()
        before = _status_snapshot(scheduler)

        await scheduler.finish()

        assert _status_snapshot(scheduler) == before


# ============================================================================
# Errors and Rates
# ============================================================================


class TestErrors:
    """Test error propagation out of scheduled units."""

    @pytest.mark.asyncio
    async def test_unit_error_pauses_scheduler(self, factories, make_host):
        host = make_host("title")
        host.is_presented = False
        unit = factories.exit(host, "~fade-out", config={"duration": 50})
        scheduler = Scheduler([unit], description="outro")

        with pytest.raises(InvalidExitError) as exc_info:
            await scheduler.play()

        assert scheduler.is_paused
        assert scheduler.in_progress
        assert "scheduler='outro'" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_error_in_later_unit_stops_playback(self, factories, make_host):
        hidden = make_host("hidden")
        hidden.is_presented = False
        first = factories.emphasis(make_host(), "~highlight", (), {"duration": 30})
        failing = factories.exit(hidden, "~fade-out", config={"duration": 30})
        never = factories.emphasis(make_host(), "~highlight", (), {"duration": 30})
        scheduler = Scheduler([first, failing, never])

        with pytest.raises(InvalidExitError):
            await scheduler.play()

        assert first.is_finished
        assert not never.in_progress and not never.is_finished

    @pytest.mark.asyncio
    async def test_failure_stops_frames_of_grouped_mutator(self, make_host):
        ticks: list[float] = []

        def build(unit):
            return MutatorEffect(play=lambda: lambda: ticks.append(unit.progress))

        factories = create_unit_factories({"scroller": {"ticker": EffectDefinition(build=build)}})
        hidden = make_host("hidden")
        hidden.is_presented = False
        ticker = factories.scroller(make_host("ticker"), "ticker", config={"duration": 1000})
        failing = factories.exit(
            hidden, "~fade-out", config={"duration": 30, "starts_with_previous": True}
        )
        scheduler = Scheduler([ticker, failing])

        with pytest.raises(InvalidExitError):
            await scheduler.play()
        assert ticker.is_paused
        frames_at_failure = len(ticks)
        await asyncio.sleep(0.03)

        assert len(ticks) == frames_at_failure


class TestPlaybackRate:
    """Test scheduler playback rate compounding."""

    def test_update_playback_rate(self, make_unit):
        unit = make_unit(playback_rate=2)
        scheduler = Scheduler([unit])

        scheduler.update_playback_rate(3)

        assert scheduler.get_timing().compounded_playback_rate == 3
        assert unit.get_timing().compounded_playback_rate == 6

    def test_non_positive_rate(self):
        with pytest.raises(ValueError):
            Scheduler().update_playback_rate(-1)

    @pytest.mark.asyncio
    async def test_rate_reaches_running_host(self, make_unit):
        unit = make_unit(duration=300)
        scheduler = Scheduler([unit])
        task = asyncio.create_task(scheduler.play())
        await asyncio.sleep(0.005)

        scheduler.update_playback_rate(4)

        assert unit.host.playback_rate == 4
        await asyncio.wait_for(task, timeout=2)
