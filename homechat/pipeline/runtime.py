"""
Event loop for the chat pipeline.

Commands are zero-argument coroutine functions run as background tasks.
Whatever a command returns (an event, or None for nothing) is queued, and
the handler processes queued events one at a time, returning any follow-up
commands. Session state is therefore only mutated inside the handler.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from typing import Any

logger = logging.getLogger(__name__)

Command = Callable[[], Awaitable[Any]]
Handler = Callable[[Any], Iterable[Command] | None]


class EventLoop:
    """
    Single consumer loop over events produced by background commands.

    Usage:
        loop = EventLoop(pipeline.handle)
        loop.dispatch(command)
        await loop.run_until_idle()
    """

    def __init__(self, handler: Handler):
        self._handler = handler
        self._queue: asyncio.Queue = asyncio.Queue()
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> bool:
        """True while commands are running or events are waiting."""
        return bool(self._tasks) or not self._queue.empty()

    def dispatch(self, *commands: Command) -> None:
        for command in commands:
            task = asyncio.create_task(self._run(command))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def step(self) -> Any:
        """Wait for one event, handle it, and dispatch its follow-up commands."""
        event = await self._queue.get()
        logger.debug(f"Handling {type(event).__name__}")
        commands = self._handler(event)
        if commands:
            self.dispatch(*commands)
        return event

    async def run_until_idle(self) -> None:
        """Process events until no command is running and the queue is empty."""
        while self.pending:
            if self._queue.empty():
                await asyncio.wait(set(self._tasks), return_when=asyncio.FIRST_COMPLETED)
                continue
            await self.step()

    async def shutdown(self) -> None:
        """Cancel running commands and drop queued events."""
        tasks = set(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        while not self._queue.empty():
            self._queue.get_nowait()

    async def _run(self, command: Command) -> None:
        try:
            event = await command()
        except Exception:
            logger.exception("Background command failed")
            return
        if event is not None:
            await self._queue.put(event)
