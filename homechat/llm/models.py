"""
LLM Request and Response Models

Pydantic models for talking to an OpenAI-compatible local model server
(chat turns, streamed tokens) and for Ollama's model pull progress feed.
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

UNKNOWN_PERCENT = -1.0
"""Sentinel fraction for progress updates that carry no byte totals."""


class LLMMessage(BaseModel):
    """Single message in an LLM conversation."""

    role: Literal["system", "user", "assistant"] = Field(
        ...,
        description="Message role"
    )
    content: str = Field(
        ...,
        description="Message content",
        min_length=1
    )

    model_config = ConfigDict(frozen=True)


class StreamChunk(BaseModel):
    """One streamed piece of a chat completion."""

    content: str = Field(
        default="",
        description="Chunk of generated text"
    )
    done: bool = Field(
        default=False,
        description="True on the chunk that completes the response"
    )

    model_config = ConfigDict(frozen=True)


class PullChunk(BaseModel):
    """A single progress update from the Ollama pull API."""

    status: str = Field(default="", description="Raw status reported by the server")
    digest: str = Field(default="", description="Layer digest being transferred")
    total: int = Field(default=0, ge=0, description="Total bytes of the current layer")
    completed: int = Field(default=0, ge=0, description="Bytes transferred so far")
    error: str = Field(default="", description="Error streamed inline by the server")

    model_config = ConfigDict(frozen=True, extra="ignore")

    @property
    def percent(self) -> float:
        """Completed fraction in [0, 1], or UNKNOWN_PERCENT without a total."""
        if self.total > 0:
            return self.completed / self.total
        return UNKNOWN_PERCENT
