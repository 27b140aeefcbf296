import asyncio

import pytest

from workflow_engine.kernel.loop import PollingLoop


@pytest.mark.asyncio
async def test_loop_runs_until_stopped():
    calls = []

    async def body():
        calls.append(1)
        return False

    loop = PollingLoop("test", body, interval_seconds=0.01)
    loop.start()
    for _ in range(100):
        if len(calls) >= 3:
            break
        await asyncio.sleep(0.01)
    await loop.stop()

    assert len(calls) >= 3
    assert not loop.running


@pytest.mark.asyncio
async def test_stop_interrupts_long_sleep():
    async def body():
        return False

    loop = PollingLoop("sleepy", body, interval_seconds=3600)
    loop.start()
    await asyncio.sleep(0)
    await asyncio.wait_for(loop.stop(), timeout=1)
    assert not loop.running


@pytest.mark.asyncio
async def test_body_errors_are_logged_and_loop_continues():
    calls = []

    async def body():
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("boom")
        return False

    loop = PollingLoop("flaky", body, interval_seconds=0.01)
    assert await loop.run_once() is False
    assert await loop.run_once() is False
    assert len(calls) == 2


def test_interval_must_be_positive():
    async def body():
        return False

    with pytest.raises(ValueError):
        PollingLoop("bad", body, interval_seconds=0)
