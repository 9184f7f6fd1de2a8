"""Tests for the polling loop guard."""

import asyncio

import pytest

from jobengine.jobs.base import PollingLoop

pytestmark = pytest.mark.asyncio


class BlockingLoop(PollingLoop):
    name = "blocking"

    def __init__(self, session_factory, settings):
        super().__init__(session_factory, settings)
        self.release = asyncio.Event()
        self.started = asyncio.Event()
        self.ticks = 0

    async def tick(self, now=None):
        self.ticks += 1
        self.started.set()
        await self.release.wait()
        return {"ticks": self.ticks}


class FailingLoop(PollingLoop):
    name = "failing"

    async def tick(self, now=None):
        raise RuntimeError("database went away")


class TestPollingLoop:
    async def test_overlapping_tick_is_skipped(self, session_factory, test_settings):
        """A tick started while the previous one runs is dropped, not queued."""
        loop = BlockingLoop(session_factory, test_settings)

        first = asyncio.create_task(loop.run_tick())
        await loop.started.wait()

        assert loop.busy is True
        assert await loop.run_tick() is None

        loop.release.set()
        assert await first == {"ticks": 1}
        assert loop.ticks == 1
        assert loop.busy is False

    async def test_tick_errors_are_swallowed(self, session_factory, test_settings):
        loop = FailingLoop(session_factory, test_settings)

        assert await loop.run_tick() is None
        assert loop.busy is False
