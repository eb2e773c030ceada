"""Unit tests for the pipeline event loop."""

import asyncio
from functools import partial

import pytest

from homechat.pipeline.runtime import EventLoop


class Recorder:
    """Handler that records events and chains follow-up commands."""

    def __init__(self):
        self.events = []
        self.follow_ups = {}

    def __call__(self, event):
        self.events.append(event)
        return self.follow_ups.pop(event, None)


async def emit(value):
    return value


async def emit_nothing():
    return None


async def explode():
    raise ValueError("boom")


class TestEventLoop:
    @pytest.mark.asyncio
    async def test_step_handles_one_event(self):
        handler = Recorder()
        loop = EventLoop(handler)
        loop.dispatch(partial(emit, "a"))

        assert await loop.step() == "a"
        assert handler.events == ["a"]

    @pytest.mark.asyncio
    async def test_follow_up_commands_are_dispatched(self):
        handler = Recorder()
        handler.follow_ups["a"] = [partial(emit, "b")]
        handler.follow_ups["b"] = [partial(emit, "c"), emit_nothing]
        loop = EventLoop(handler)
        loop.dispatch(partial(emit, "a"))

        await loop.run_until_idle()

        assert handler.events == ["a", "b", "c"]
        assert not loop.pending

    @pytest.mark.asyncio
    async def test_commands_returning_none_produce_no_event(self):
        handler = Recorder()
        loop = EventLoop(handler)
        loop.dispatch(emit_nothing, emit_nothing)

        await loop.run_until_idle()

        assert handler.events == []

    @pytest.mark.asyncio
    async def test_failing_command_is_logged_and_dropped(self, caplog):
        handler = Recorder()
        loop = EventLoop(handler)
        loop.dispatch(explode, partial(emit, "ok"))

        await loop.run_until_idle()

        assert handler.events == ["ok"]
        assert "Background command failed" in caplog.text

    @pytest.mark.asyncio
    async def test_shutdown_cancels_running_commands(self):
        handler = Recorder()
        loop = EventLoop(handler)
        never = asyncio.Event()

        async def wait_forever():
            await never.wait()
            return "late"

        loop.dispatch(wait_forever)
        await asyncio.sleep(0)
        assert loop.pending

        await loop.shutdown()

        assert not loop.pending
        assert handler.events == []
