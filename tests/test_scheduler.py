# tests/test_scheduler.py
import asyncio

import pytest

from core.scheduler import PeriodicTask


@pytest.mark.asyncio
async def test_runs_repeatedly_until_stopped():
    calls = []
    task = PeriodicTask("counter", 0.01, lambda: calls.append(1))

    task.start()
    await asyncio.sleep(0.08)
    await task.stop()
    seen = len(calls)
    await asyncio.sleep(0.03)

    assert seen >= 2
    assert len(calls) == seen
    assert task.running is False


@pytest.mark.asyncio
async def test_failing_run_does_not_stop_the_loop():
    calls = []

    async def flaky():
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("first run fails")

    task = PeriodicTask("flaky", 0.01, flaky)
    task.start()
    await asyncio.sleep(0.08)
    await task.stop()

    assert len(calls) >= 2


@pytest.mark.asyncio
async def test_run_once_awaits_coroutines():
    async def tick():
        return 3

    assert await PeriodicTask("once", 60, tick).run_once() == 3
    assert await PeriodicTask("once", 60, lambda: 4).run_once() == 4


def test_interval_must_be_positive():
    with pytest.raises(ValueError):
        PeriodicTask("bad", 0, lambda: None)
