"""
Tests for periodic.py: single-flight cycles, crash boundary and shutdown.
"""

import asyncio

import pytest

from session_bridge.periodic import PeriodicJob


class TestRunOnce:
    """Manual triggering."""

    @pytest.mark.asyncio
    async def test_returns_cycle_result(self):
        async def cycle():
            return 42

        job = PeriodicJob("test", 60, cycle)
        assert await job.run_once() == 42
        assert job.runs == 1

    @pytest.mark.asyncio
    async def test_overlapping_trigger_skipped(self):
        """A second trigger while a cycle is in flight is skipped."""
        release = asyncio.Event()
        started = asyncio.Event()

        async def cycle():
            started.set()
            await release.wait()
            return "done"

        job = PeriodicJob("test", 60, cycle)
        first = asyncio.create_task(job.run_once())
        await started.wait()
        assert job.busy

        assert await job.trigger() is None
        assert job.skipped_runs == 1

        release.set()
        assert await first == "done"
        assert job.runs == 1

    @pytest.mark.asyncio
    async def test_crash_is_contained(self):
        async def cycle():
            raise ValueError("bad cycle")

        job = PeriodicJob("test", 60, cycle)
        assert await job.run_once() is None
        assert job.last_error == "ValueError: bad cycle"


class TestLoop:
    """Background ticking."""

    @pytest.mark.asyncio
    async def test_ticks_until_stopped(self):
        count = 0

        async def cycle():
            nonlocal count
            count += 1

        job = PeriodicJob("test", 0.01, cycle)
        job.start()
        assert job.running
        await asyncio.sleep(0.1)
        await job.stop()

        assert not job.running
        assert count >= 2
        settled = count
        await asyncio.sleep(0.05)
        assert count == settled

    @pytest.mark.asyncio
    async def test_keeps_ticking_after_crash(self):
        calls = 0

        async def cycle():
            nonlocal calls
            calls += 1
            if calls == 1:
                raise RuntimeError("first one fails")

        job = PeriodicJob("test", 0.01, cycle)
        job.start()
        await asyncio.sleep(0.1)
        await job.stop()
        assert calls >= 2

    @pytest.mark.asyncio
    async def test_run_immediately(self):
        ran = asyncio.Event()

        async def cycle():
            ran.set()

        job = PeriodicJob("test", 3600, cycle, run_immediately=True)
        job.start()
        await asyncio.wait_for(ran.wait(), timeout=1)
        await job.stop()

    @pytest.mark.asyncio
    async def test_stop_waits_for_running_cycle(self):
        finished = False

        async def cycle():
            nonlocal finished
            await asyncio.sleep(0.05)
            finished = True

        job = PeriodicJob("test", 3600, cycle, run_immediately=True)
        job.start()
        await asyncio.sleep(0.01)
        await job.stop()
        assert finished

    @pytest.mark.asyncio
    async def test_stop_cancels_after_timeout(self):
        async def cycle():
            await asyncio.sleep(3600)

        job = PeriodicJob("test", 3600, cycle, run_immediately=True, stop_timeout_seconds=0.05)
        job.start()
        await asyncio.sleep(0.01)
        await job.stop()
        assert not job.running

    @pytest.mark.asyncio
    async def test_stop_before_start_is_noop(self):
        async def cycle():
            pass

        await PeriodicJob("test", 1, cycle).stop()
