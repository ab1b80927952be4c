"""Tests for the effect host checkpoint loop and the clock host."""

from __future__ import annotations

import asyncio
import logging
from unittest.mock import Mock

import pytest

from choreo.core.effects.clock import ClockEffectHost
from choreo.core.effects.enums import Direction
from choreo.core.errors import (
    ConfigurationError,
    EffectFinalizationError,
    LateSchedulingError,
)

# ============================================================================
# Configuration
# ============================================================================


class TestHostConfiguration:
    """Test timing, direction and rate configuration."""

    def test_invalid_clock_arguments(self):
        with pytest.raises(ValueError):
            ClockEffectHost(time_scale=0)
        with pytest.raises(ValueError):
            ClockEffectHost(speed_factor=-1)

    def test_fresh_host_timing(self, make_host):
        host = make_host()
        host.set_timing(10, 100, 0)

        timing = host.get_computed_timing()

        assert timing.local_time == 0
        assert timing.progress == 0
        assert timing.direction is Direction.FORWARD

    def test_non_positive_playback_rate(self, make_host):
        with pytest.raises(ConfigurationError):
            make_host().set_playback_rate(0)

    @pytest.mark.asyncio
    async def test_timing_locked_while_in_progress(self, make_host):
        host = make_host()
        host.set_timing(0, 100, 0)
        host.play()

        with pytest.raises(ConfigurationError):
            host.set_timing(0, 200, 0)
        with pytest.raises(ConfigurationError):
            host.set_direction("backward")
        host.set_direction("forward")

        await asyncio.wait_for(host.finish(), timeout=1)


# ============================================================================
# Time Promises
# ============================================================================


class TestTimePromises:
    """Test futures resolved at phase positions."""

    @pytest.mark.asyncio
    async def test_promise_resolves_at_position(self, make_host):
        host = make_host()
        host.set_timing(10, 100, 10)
        host.play()

        await asyncio.wait_for(host.generate_time_promise("forward", "active", "50%"), timeout=1)

        assert host.get_computed_timing().local_time >= 60
        assert host.in_progress

    @pytest.mark.asyncio
    async def test_promises_resolve_in_time_order(self, make_host):
        host = make_host()
        host.set_timing(0, 100, 0)
        order: list[str] = []
        late = host.generate_time_promise("forward", "active", "75%")
        early = host.generate_time_promise("forward", "active", "25%")
        late.add_done_callback(lambda _: order.append("late"))
        early.add_done_callback(lambda _: order.append("early"))

        host.play()
        await asyncio.wait_for(asyncio.gather(late, early), timeout=1)

        assert order == ["early", "late"]

    @pytest.mark.asyncio
    async def test_promise_for_passed_point_resolves_immediately(self, make_host):
        host = make_host()
        host.set_timing(0, 1000, 0)
        host.play()
        await asyncio.wait_for(host.generate_time_promise("forward", "active", "10%"), timeout=1)

        promise = host.generate_time_promise("forward", "active", "5%")

        assert promise.done()
        await asyncio.wait_for(host.finish(), timeout=1)

    @pytest.mark.asyncio
    async def test_promise_after_finished_pass_resolves_immediately(self, make_host):
        host = make_host()
        host.set_timing(0, 50, 0)
        await asyncio.wait_for(host.finish(), timeout=1)

        assert host.generate_time_promise("forward", "delay", "beginning").done()

    @pytest.mark.asyncio
    async def test_position_beyond_travel(self, make_host):
        host = make_host()
        host.set_timing(0, 50, 0)

        with pytest.raises(ConfigurationError):
            host.generate_time_promise("forward", "whole", 80)


# ============================================================================
# Roadblocks and Integrity Blocks
# ============================================================================


class TestBlockers:
    """Test blockers awaited at checkpoints."""

    @pytest.mark.asyncio
    async def test_roadblock_holds_playback(self, make_host):
        host = make_host()
        host.set_timing(0, 100, 0)
        host.pause_for_roadblocks = Mock()
        host.unpause_from_roadblocks = Mock()
        gate = asyncio.Event()
        host.add_roadblocks("forward", "active", "50%", [gate.wait])

        host.play()
        done = host.generate_time_promise("forward", "whole", "end")
        await asyncio.sleep(0.05)

        assert not done.done()
        host.pause_for_roadblocks.assert_called_once_with()
        host.unpause_from_roadblocks.assert_not_called()

        gate.set()
        await asyncio.wait_for(done, timeout=1)

        host.unpause_from_roadblocks.assert_called_once_with()

    @pytest.mark.asyncio
    async def test_integrity_block_does_not_pause_root(self, make_host):
        host = make_host()
        host.set_timing(0, 100, 0)
        host.pause_for_roadblocks = Mock()
        release: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        host.add_integrity_blocks("forward", "active", "end", [release])

        host.play()
        await asyncio.sleep(0.03)

        assert host.in_progress
        host.pause_for_roadblocks.assert_not_called()

        release.set_result(None)
        await asyncio.wait_for(host.finish(), timeout=1)
        assert host.is_finished

    @pytest.mark.asyncio
    async def test_late_scheduling_raises(self, make_host):
        host = make_host()
        host.set_timing(0, 1000, 0)
        host.play()
        await asyncio.wait_for(host.generate_time_promise("forward", "active", "50%"), timeout=1)

        with pytest.raises(LateSchedulingError):
            host.add_roadblocks("forward", "active", "50%", [lambda: asyncio.sleep(0)])
        with pytest.raises(LateSchedulingError):
            host.add_integrity_blocks("forward", "active", "25%", [lambda: asyncio.sleep(0)])

        await asyncio.wait_for(host.finish(), timeout=1)

    @pytest.mark.asyncio
    async def test_blockers_after_finished_pass_are_ignored(self, make_host, caplog):
        host = make_host()
        host.set_timing(0, 50, 0)
        await asyncio.wait_for(host.finish(), timeout=1)

        with caplog.at_level(logging.WARNING):
            host.add_roadblocks("forward", "active", "end", [lambda: asyncio.sleep(0)])

        assert "will not be used" in caplog.text


# ============================================================================
# Pause and Finish
# ============================================================================


class TestPauseAndFinish:
    """Test suspending and fast-forwarding the clock."""

    @pytest.mark.asyncio
    async def test_pause_freezes_clock(self, make_host):
        host = make_host()
        host.set_timing(0, 500, 0)
        host.play()
        await asyncio.sleep(0.01)

        host.pause()
        frozen = host.get_computed_timing().local_time
        await asyncio.sleep(0.02)

        assert host.is_suspended
        assert host.get_computed_timing().local_time == frozen

        host.play()
        await asyncio.wait_for(host.generate_time_promise("forward", "whole", "end"), timeout=1)
        assert not host.is_suspended

    @pytest.mark.asyncio
    async def test_finish_fast_forwards(self):
        host = ClockEffectHost(time_scale=0.001)
        host.set_timing(0, 10_000, 0)

        finished = await asyncio.wait_for(host.finish(), timeout=1)

        assert finished is host
        assert host.is_finished
        assert not host.in_progress

    @pytest.mark.asyncio
    async def test_hook_error_rejects_finish(self, make_host):
        host = make_host()
        host.set_timing(0, 50, 0)
        host.on_delay_finish = Mock(side_effect=RuntimeError("boom"))
        host.on_error = Mock()

        with pytest.raises(RuntimeError, match="boom"):
            await asyncio.wait_for(host.finish(), timeout=1)
        host.on_error.assert_called_once()
        assert isinstance(host.on_error.call_args.args[0], RuntimeError)
        assert not host.in_progress


# ============================================================================
# Effect Content
# ============================================================================


class TestCommitResult:
    """Test persisting the effect's end state."""

    def test_commit_stores_frames(self, make_host):
        host = make_host()
        host.apply_frames([{"opacity": 0.0}, {}])

        host.commit_result()

        assert host.committed_frames == [{"opacity": 0.0}, {}]
        assert host.commit_attempts == 1

    def test_unrendered_target_needs_force(self, make_host):
        host = make_host(rendered=False)

        with pytest.raises(EffectFinalizationError, match="not rendered"):
            host.commit_result()
        host.commit_result(force=True)

        assert host.commit_attempts == 2
        assert host.committed_frames == []

    def test_forced_commit_unsupported(self, make_host):
        host = make_host(rendered=False, supports_forced_commit=False)

        with pytest.raises(EffectFinalizationError, match="not supported"):
            host.commit_result(force=True)
        assert host.committed_frames is None
