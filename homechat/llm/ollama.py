"""
Ollama Model Client

Implementation of BaseModelClient for a local model server.
Chat and model listing use the OpenAI-compatible API under /v1 (Ollama,
llama.cpp, vLLM); model pulls use Ollama's native /api/pull endpoint.
"""

import json
import logging
from collections.abc import AsyncIterator, Sequence

import httpx
from pydantic import ValidationError

from homechat.llm.base import (
    BaseModelClient,
    LLMConnectionError,
    LLMResponseError,
    LLMStreamError,
    PullReader,
)
from homechat.llm.models import LLMMessage, PullChunk, StreamChunk

logger = logging.getLogger(__name__)

_SSE_PREFIX = "data: "
_SSE_DONE = "[DONE]"
_MAX_RAW_ERROR = 100


def clean_error_response(status_code: int, body: str) -> str:
    """
    Pull a human-readable message out of an error response body.

    Understands OpenAI-style {"error": {"message": ...}} and Ollama-style
    {"error": "..."} payloads. Short plain-text bodies are quoted as-is;
    anything else collapses to the status code.
    """
    body = body.strip()
    try:
        payload = json.loads(body)
    except ValueError:
        payload = None

    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and error.get("message"):
            return f"server error ({status_code}): {error['message']}"
        if isinstance(error, str) and error:
            return f"server error ({status_code}): {error}"

    if body and len(body) < _MAX_RAW_ERROR and "{" not in body:
        return f"server error ({status_code}): {body}"
    return f"server returned {status_code}"


class OllamaPullReader(PullReader):
    """Reads newline-delimited JSON progress from an open pull response."""

    def __init__(self, response: httpx.Response):
        self._response = response
        self._lines = response.aiter_lines()

    async def next(self) -> PullChunk | None:
        while True:
            try:
                line = await anext(self._lines)
            except StopAsyncIteration:
                return None
            except httpx.HTTPError as e:
                raise LLMStreamError(f"pull stream failed: {e}") from e

            line = line.strip()
            if not line:
                continue
            try:
                return PullChunk.model_validate_json(line)
            except ValidationError:
                logger.debug(f"Skipping malformed pull line: {line[:80]}")

    async def aclose(self) -> None:
        await self._response.aclose()


class OllamaClient(BaseModelClient):
    """
    Client for an Ollama (or other OpenAI-compatible) model server.

    Example:
        >>> client = OllamaClient("http://localhost:11434/v1", "qwen3")
        >>> async for chunk in await client.chat_stream(messages):
        ...     print(chunk.content, end="")
    """

    def __init__(
        self,
        base_url: str = "http://localhost:11434/v1",
        model: str = "qwen3",
        timeout: float = 5.0,
        temperature: float = 0.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Initialize the client.

        Args:
            base_url: OpenAI-compatible base URL, normally ending in /v1
            model: Model name used for chat requests
            timeout: Timeout for quick operations (listing, ping, connect)
            temperature: Sampling temperature for chat requests
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        super().__init__(base_url=base_url, model=model, timeout=timeout)
        self.temperature = temperature
        self.client = httpx.AsyncClient(timeout=httpx.Timeout(timeout), transport=transport)

    @property
    def server_url(self) -> str:
        """Server root for Ollama's native API (base URL without /v1)."""
        return self.base_url.removesuffix("/v1")

    async def chat_stream(self, messages: Sequence[LLMMessage]) -> AsyncIterator[StreamChunk]:
        self._log_request(messages, stream=True)
        payload = self._chat_payload(messages, stream=True)
        request = self.client.build_request(
            "POST",
            f"{self.base_url}/chat/completions",
            json=payload,
            timeout=httpx.Timeout(self.timeout, read=None),
        )
        response = await self._send(request, stream=True)
        return self._iter_sse(response)

    async def chat_complete(self, messages: Sequence[LLMMessage]) -> str:
        self._log_request(messages, stream=False)
        request = self.client.build_request(
            "POST",
            f"{self.base_url}/chat/completions",
            json=self._chat_payload(messages, stream=False),
            timeout=httpx.Timeout(self.timeout, read=None),
        )
        response = await self._send(request)
        try:
            data = response.json()
            return data["choices"][0]["message"]["content"] or ""
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise LLMResponseError(f"unexpected chat response: {e}") from e

    async def list_models(self) -> list[str]:
        request = self.client.build_request("GET", f"{self.base_url}/models")
        response = await self._send(request)
        try:
            data = response.json()
            return [entry["id"] for entry in data.get("data") or []]
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise LLMResponseError(f"unexpected model list: {e}") from e

    async def pull_model(self, model: str) -> OllamaPullReader:
        logger.info(f"Pulling model {model}", extra={"model": model, "server": self.server_url})
        request = self.client.build_request(
            "POST",
            f"{self.server_url}/api/pull",
            json={"name": model},
            timeout=httpx.Timeout(self.timeout, read=None),
        )
        response = await self._send(request, stream=True)
        return OllamaPullReader(response)

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self.client.aclose()

    def _chat_payload(self, messages: Sequence[LLMMessage], stream: bool) -> dict:
        return {
            "model": self.model,
            "messages": [{"role": msg.role, "content": msg.content} for msg in messages],
            "temperature": self.temperature,
            "stream": stream,
        }

    async def _send(self, request: httpx.Request, stream: bool = False) -> httpx.Response:
        """Send a request, mapping transport and status failures to LLM errors."""
        try:
            response = await self.client.send(request, stream=stream)
        except httpx.ConnectError as e:
            raise LLMConnectionError(
                f"cannot reach {self.base_url} -- start it with `ollama serve`"
            ) from e
        except httpx.TimeoutException as e:
            raise LLMConnectionError(f"timed out talking to {self.base_url}") from e
        except httpx.HTTPError as e:
            raise LLMConnectionError(f"request to {self.base_url} failed: {e}") from e

        if response.status_code >= 400:
            body = (await response.aread()).decode("utf-8", errors="replace")
            await response.aclose()
            message = clean_error_response(response.status_code, body)
            logger.warning(
                f"Model server request failed: {message}",
                extra={"url": str(request.url), "status": response.status_code},
            )
            raise LLMResponseError(message)
        return response

    async def _iter_sse(self, response: httpx.Response) -> AsyncIterator[StreamChunk]:
        """Decode an OpenAI-style server-sent event stream into chunks."""
        try:
            async for line in response.aiter_lines():
                if not line.startswith(_SSE_PREFIX):
                    continue
                data = line[len(_SSE_PREFIX):].strip()
                if data == _SSE_DONE:
                    yield StreamChunk(done=True)
                    return

                try:
                    event = json.loads(data)
                except ValueError as e:
                    raise LLMStreamError(f"malformed stream event: {data[:80]}") from e

                if event.get("error"):
                    error = event["error"]
                    message = error.get("message") if isinstance(error, dict) else str(error)
                    raise LLMStreamError(message or "stream error")

                choices = event.get("choices") or []
                if not choices:
                    continue
                choice = choices[0]
                content = (choice.get("delta") or {}).get("content") or ""
                if choice.get("finish_reason"):
                    yield StreamChunk(content=content, done=True)
                    return
                if content:
                    yield StreamChunk(content=content)
        except httpx.HTTPError as e:
            raise LLMStreamError(f"stream interrupted: {e}") from e
        finally:
            await response.aclose()

        raise LLMStreamError("stream ended before the response was complete")
