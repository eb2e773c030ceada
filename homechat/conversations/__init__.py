"""Chat input persistence for prompt recall."""

from .store import ChatHistoryStore

__all__ = ["ChatHistoryStore"]
