"""
Streaming token adapter.

Turns a model client's chunk iterator into a pull-based sequence of
TokenEvents. A producer task pumps chunks into a bounded queue; the
orchestrator asks for one event at a time. Closing the stream (directly or by
cancelling its token) makes next() return None, which is distinct from an
explicit done=True event.
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass

from homechat.llm.base import LLMError
from homechat.llm.models import StreamChunk
from homechat.pipeline.cancellation import CancelToken

logger = logging.getLogger(__name__)

_CLOSED = object()


@dataclass(frozen=True)
class TokenEvent:
    """One step of a token stream: a content piece, completion, or error."""

    content: str = ""
    done: bool = False
    error: str | None = None


class TokenStream:
    """
    Pull-based view over a model token stream.

    Usage:
        stream = TokenStream(await client.chat_stream(messages), token)
        while (event := await stream.next()) is not None:
            ...
    """

    def __init__(
        self,
        chunks: AsyncIterator[StreamChunk],
        token: CancelToken,
        buffer: int = 16,
    ):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max(buffer, 1))
        self._closed = False
        self._exhausted = False
        self._producer = asyncio.create_task(self._pump(chunks))
        token.add_callback(self.close)

    @property
    def closed(self) -> bool:
        return self._closed

    async def next(self) -> TokenEvent | None:
        """Return the next event, or None once the stream is closed or exhausted."""
        if self._exhausted:
            return None
        item = await self._queue.get()
        if item is _CLOSED:
            self._exhausted = True
            return None
        return item

    def close(self) -> None:
        """Stop the producer and discard undelivered events."""
        if self._closed:
            return
        self._closed = True
        self._producer.cancel()
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(_CLOSED)

    async def _pump(self, chunks: AsyncIterator[StreamChunk]) -> None:
        try:
            async for chunk in chunks:
                await self._queue.put(TokenEvent(content=chunk.content, done=chunk.done))
                if chunk.done:
                    break
        except LLMError as e:
            logger.warning(f"Token stream failed: {e}")
            await self._queue.put(TokenEvent(error=str(e)))
        except Exception as e:
            logger.exception("Unexpected error reading token stream")
            await self._queue.put(TokenEvent(error=f"stream error: {e}"))
        finally:
            aclose = getattr(chunks, "aclose", None)
            if aclose is not None:
                await aclose()
        await self._queue.put(_CLOSED)
