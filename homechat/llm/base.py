"""
Base Model Client

Abstract base class defining the interface the chat pipeline needs from a
model server: streamed chat, model listing, model pulls, and switching the
active model.
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Sequence

from homechat.llm.models import LLMMessage, PullChunk, StreamChunk

logger = logging.getLogger(__name__)


class LLMError(Exception):
    """Base exception for model client errors."""

    pass


class LLMConnectionError(LLMError):
    """The model server could not be reached."""

    pass


class LLMResponseError(LLMError):
    """The model server answered with an error status."""

    pass


class LLMStreamError(LLMError):
    """A streamed response was malformed or ended early."""

    pass


class PullReader(ABC):
    """Sequential reader over a model pull's progress feed."""

    @abstractmethod
    async def next(self) -> PullChunk | None:
        """
        Read the next progress update.

        Returns:
            The next PullChunk, or None once the feed is exhausted.

        Raises:
            LLMStreamError: If reading the feed fails.
        """
        pass  # pragma: no cover - abstract method

    @abstractmethod
    async def aclose(self) -> None:
        """Release the underlying connection."""
        pass  # pragma: no cover - abstract method


class BaseModelClient(ABC):
    """
    Abstract base class for model clients.

    Attributes:
        base_url: Server base URL
        timeout: Timeout in seconds for quick operations (listing, ping)
    """

    def __init__(self, base_url: str, model: str, timeout: float = 5.0):
        self.base_url = base_url.rstrip("/")
        self._model = model
        self._timeout = timeout

        logger.info(
            f"Initialized {self.__class__.__name__} for {self.base_url}",
            extra={"base_url": self.base_url, "model": model, "timeout": timeout},
        )

    @property
    def model(self) -> str:
        """The model used for the next chat request."""
        return self._model

    def set_model(self, model: str) -> None:
        """
        Switch the active model.

        In-flight streams keep the model they started with; the change applies
        to the next request. The caller is responsible for checking that the
        model exists.
        """
        logger.info(f"Switching model {self._model} -> {model}")
        self._model = model

    @property
    def timeout(self) -> float:
        """Timeout in seconds for quick server operations."""
        return self._timeout

    @abstractmethod
    async def chat_stream(self, messages: Sequence[LLMMessage]) -> AsyncIterator[StreamChunk]:
        """
        Start a streamed chat completion.

        The request is sent before this coroutine returns, so connection and
        HTTP status errors surface here rather than on first iteration.

        Returns:
            Async iterator of StreamChunk. The final chunk has done=True.

        Raises:
            LLMConnectionError: If the server is unreachable
            LLMResponseError: If the server rejects the request
        """
        pass  # pragma: no cover - abstract method

    @abstractmethod
    async def chat_complete(self, messages: Sequence[LLMMessage]) -> str:
        """Run a non-streamed chat completion and return the full text."""
        pass  # pragma: no cover - abstract method

    @abstractmethod
    async def list_models(self) -> list[str]:
        """Return the model names available on the server."""
        pass  # pragma: no cover - abstract method

    @abstractmethod
    async def pull_model(self, model: str) -> PullReader:
        """Start downloading a model and return a reader over its progress."""
        pass  # pragma: no cover - abstract method

    async def ping(self) -> None:
        """
        Check that the server is reachable and the active model is available.

        Raises:
            LLMError: With a user-facing explanation if not.
        """
        models = await self.list_models()
        if find_local_model(self.model, models) is None:
            raise LLMError(
                f"model {self.model!r} not found -- pull it with `ollama pull {self.model}`"
            )

    async def close(self) -> None:
        """Release client resources. The default holds none."""
        pass

    def _log_request(self, messages: Sequence[LLMMessage], stream: bool) -> None:
        """Log request details for debugging."""
        logger.debug(
            f"{self.__class__.__name__} request",
            extra={
                "model": self.model,
                "message_count": len(messages),
                "stream": stream,
            },
        )


def find_local_model(name: str, available: Sequence[str]) -> str | None:
    """
    Resolve name against locally available models.

    Ollama names carry an optional ":tag" suffix, so "llama3.2" matches
    "llama3.2:latest". Exact matches win over tag matches.
    """
    if name in available:
        return name
    for candidate in available:
        if candidate.startswith(name + ":"):
            return candidate
    return None
