"""Unit tests for scheduler.py — PeriodicTask."""

from __future__ import annotations

import asyncio

import pytest

from autotrader.scheduler import PeriodicTask


class TestRunOnce:
    @pytest.mark.asyncio
    async def test_counts_ticks(self):
        calls = []

        async def tick():
            calls.append(1)

        task = PeriodicTask("t", 60, tick)
        assert await task.run_once() is True
        assert task.ticks == 1
        assert calls == [1]

    @pytest.mark.asyncio
    async def test_overlapping_tick_is_skipped(self):
        release = asyncio.Event()

        async def slow_tick():
            await release.wait()

        task = PeriodicTask("t", 60, slow_tick)
        first = asyncio.create_task(task.run_once())
        await asyncio.sleep(0)
        assert task.in_flight is True

        assert await task.run_once() is False
        assert task.skipped == 1

        release.set()
        assert await first is True
        assert task.in_flight is False

    @pytest.mark.asyncio
    async def test_exception_is_contained(self):
        async def failing_tick():
            raise RuntimeError("boom")

        task = PeriodicTask("t", 60, failing_tick)
        assert await task.run_once() is True
        assert task.ticks == 0
        assert task.in_flight is False


class TestLoop:
    @pytest.mark.asyncio
    async def test_runs_repeatedly_until_stopped(self):
        calls = []

        async def tick():
            calls.append(1)

        task = PeriodicTask("t", 0.01, tick, run_immediately=True)
        task.start()
        await asyncio.sleep(0.1)
        await task.stop()

        count = len(calls)
        assert count >= 2
        assert task.is_running is False
        await asyncio.sleep(0.05)
        assert len(calls) == count

    @pytest.mark.asyncio
    async def test_second_start_is_ignored(self):
        async def tick():
            pass

        task = PeriodicTask("t", 60, tick)
        task.start()
        first = task._task
        task.start()
        assert task._task is first
        await task.stop()

    @pytest.mark.asyncio
    async def test_waits_interval_before_first_tick(self):
        calls = []

        async def tick():
            calls.append(1)

        task = PeriodicTask("t", 60, tick)
        task.start()
        await asyncio.sleep(0.05)
        assert calls == []
        await task.stop()

    @pytest.mark.asyncio
    async def test_stop_gives_in_flight_tick_grace(self):
        finished = []

        async def tick():
            await asyncio.sleep(0.05)
            finished.append(1)

        task = PeriodicTask("t", 60, tick, run_immediately=True)
        task.start()
        await asyncio.sleep(0.01)
        assert task.in_flight is True

        await task.stop(grace=1.0)
        assert finished == [1]

    @pytest.mark.asyncio
    async def test_stop_cancels_after_grace(self):
        finished = []

        async def tick():
            await asyncio.sleep(10)
            finished.append(1)

        task = PeriodicTask("t", 60, tick, run_immediately=True)
        task.start()
        await asyncio.sleep(0.01)

        await task.stop(grace=0.05)
        assert finished == []
        assert task.is_running is False

    @pytest.mark.asyncio
    async def test_stop_without_start(self):
        async def tick():
            pass

        task = PeriodicTask("t", 60, tick)
        await task.stop()
        assert task.is_running is False
