"""Unit tests for periodic background tasks."""
import asyncio

import pytest

from payoova.services.scheduler import PeriodicTask


@pytest.mark.asyncio
async def test_run_once_steps_without_timer():
    """Test run_once performs exactly one step and returns its result."""
    calls = []

    async def step():
        calls.append(1)
        return len(calls)

    task = PeriodicTask("test", 60, step)

    assert await task.run_once() == 1
    assert calls == [1]
    assert not task.running


@pytest.mark.asyncio
async def test_loop_survives_failing_steps():
    """Test a failing step is logged and the loop keeps going."""
    calls = []

    async def step():
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("temporary failure")

    task = PeriodicTask("test", 0.01, step)
    task.start()
    for _ in range(100):
        if len(calls) >= 3:
            break
        await asyncio.sleep(0.01)

    assert task.running
    await task.stop()

    assert not task.running
    assert len(calls) >= 3


@pytest.mark.asyncio
async def test_stop_is_prompt_and_idempotent():
    """Test stop interrupts the wait instead of sleeping out the interval."""
    async def step():
        return None

    task = PeriodicTask("test", 3600, step)
    task.start()
    task.start()
    await asyncio.sleep(0)

    await asyncio.wait_for(task.stop(), timeout=1)
    await task.stop()
    assert not task.running
