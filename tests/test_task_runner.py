"""
Tests for the background task runner.
"""

import asyncio

import pytest

from services.task_runner import BackgroundTaskRunner


class TestBackgroundTaskRunner:

    @pytest.mark.asyncio
    async def test_submit_runs_detached(self):
        runner = BackgroundTaskRunner()
        done = []

        async def job(value):
            await asyncio.sleep(0.01)
            done.append(value)

        runner.submit(job, "a")
        assert done == []
        assert runner.pending == 1

        await runner.drain(timeout=1)

        assert done == ["a"]
        assert runner.pending == 0

    @pytest.mark.asyncio
    async def test_failure_is_contained(self):
        runner = BackgroundTaskRunner()

        async def boom():
            raise RuntimeError("boom")

        task = runner.submit(boom)
        await runner.drain(timeout=1)

        assert task.done()
        assert runner.pending == 0

    @pytest.mark.asyncio
    async def test_drain_timeout_cancels(self):
        runner = BackgroundTaskRunner()

        async def forever():
            await asyncio.sleep(60)

        task = runner.submit(forever)
        await runner.drain(timeout=0.01)

        assert task.cancelled()
        assert runner.pending == 0
