"""Tests for the periodic job runner."""

import asyncio

import pytest

from ebay_invoicer.scheduling import PeriodicJob


@pytest.mark.asyncio
async def test_failing_run_is_recorded_and_next_run_proceeds():
    calls = {"n": 0}

    async def flaky():
        calls["n"] += 1
        if calls["n"] == 1:
            raise RuntimeError("temporary error")
        return "ok"

    job = PeriodicJob("flaky", 0, flaky)

    assert await job.run_once() is None
    assert job.last_error == "RuntimeError('temporary error')"

    assert await job.run_once() == "ok"
    assert job.last_error is None
    assert job.runs == 2


@pytest.mark.asyncio
async def test_job_runs_immediately_and_repeats_until_stopped():
    ran = asyncio.Event()
    calls = {"n": 0}

    async def tick():
        calls["n"] += 1
        if calls["n"] >= 3:
            ran.set()

    job = PeriodicJob("tick", 0.01, tick)
    job.start()
    await asyncio.wait_for(ran.wait(), timeout=2)
    await job.stop()

    assert calls["n"] >= 3
    assert job.status()["name"] == "tick"
    assert job.status()["runs"] >= 3
