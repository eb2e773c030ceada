"""
Model server clients.

Exports the client interface, its error hierarchy, and the Ollama
implementation used by the chat pipeline.
"""

from homechat.llm.base import (
    BaseModelClient,
    LLMConnectionError,
    LLMError,
    LLMResponseError,
    LLMStreamError,
    PullReader,
    find_local_model,
)
from homechat.llm.models import UNKNOWN_PERCENT, LLMMessage, PullChunk, StreamChunk
from homechat.llm.ollama import OllamaClient, OllamaPullReader, clean_error_response

__all__ = [
    "BaseModelClient",
    "LLMConnectionError",
    "LLMError",
    "LLMMessage",
    "LLMResponseError",
    "LLMStreamError",
    "OllamaClient",
    "OllamaPullReader",
    "PullChunk",
    "PullReader",
    "StreamChunk",
    "UNKNOWN_PERCENT",
    "clean_error_response",
    "find_local_model",
]
