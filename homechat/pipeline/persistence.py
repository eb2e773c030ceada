"""
Best-effort persistence for the chat session.

Input history and the last used model survive across sessions when storage
is available. Every error here is logged and dropped.
"""

import logging
from collections.abc import Callable

from homechat import settings_store
from homechat.conversations.store import ChatHistoryStore

logger = logging.getLogger(__name__)


class SessionPersistence:
    """Wraps the history store and the settings file behind swallow-and-log calls."""

    def __init__(
        self,
        history_store: ChatHistoryStore | None = None,
        save_last_model: Callable[[str], None] = settings_store.put_last_model,
    ):
        self.history_store = history_store
        self._save_last_model = save_last_model

    async def append_chat_input(self, text: str) -> None:
        if self.history_store is None:
            return
        try:
            await self.history_store.append_chat_input(text)
        except Exception as e:
            logger.warning(f"Failed to persist chat input: {e}")

    async def load_chat_history(self) -> list[str]:
        if self.history_store is None:
            return []
        try:
            return await self.history_store.load_chat_history()
        except Exception as e:
            logger.warning(f"Failed to load chat history: {e}")
            return []

    async def put_last_model(self, model: str) -> None:
        try:
            self._save_last_model(model)
        except Exception as e:
            logger.warning(f"Failed to persist last model {model}: {e}")
