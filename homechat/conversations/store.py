"""Storage utilities for persisted chat input history."""

from __future__ import annotations

import asyncpg

from homechat.config import get_settings

_CREATE_CHAT_INPUTS_TABLE = """
CREATE TABLE IF NOT EXISTS chat_inputs (
    id BIGSERIAL PRIMARY KEY,
    input TEXT NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now()
);
"""


class ChatHistoryStore:
    """Persist submitted chat inputs in the system database for recall."""

    def __init__(self, database_url: str | None = None, history_max: int | None = None) -> None:
        settings = get_settings()
        self._database_url = database_url or (
            str(settings.system_database.url) if settings.system_database.url else None
        )
        self._history_max = history_max or settings.chat.history_max
        self._pool: asyncpg.Pool | None = None

    async def initialize(self) -> None:
        if self._pool is None:
            if not self._database_url:
                raise ValueError("SYSTEM_DATABASE_URL must be set for chat history storage.")
            dsn = self._normalize_postgres_url(self._database_url)
            self._pool = await asyncpg.create_pool(dsn=dsn, min_size=1, max_size=2)
        await self._pool.execute(_CREATE_CHAT_INPUTS_TABLE)

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def append_chat_input(self, text: str) -> None:
        """
        Record a submitted input.

        Consecutive duplicates are collapsed and the table is trimmed to the
        newest history_max entries.
        """
        self._ensure_pool()
        last = await self._pool.fetchval(
            "SELECT input FROM chat_inputs ORDER BY id DESC LIMIT 1"
        )
        if last == text:
            return
        await self._pool.execute("INSERT INTO chat_inputs (input) VALUES ($1)", text)
        await self._pool.execute(
            """
            DELETE FROM chat_inputs
            WHERE id NOT IN (
                SELECT id FROM chat_inputs ORDER BY id DESC LIMIT $1
            )
            """,
            self._history_max,
        )

    async def load_chat_history(self) -> list[str]:
        """Return persisted inputs, oldest first."""
        self._ensure_pool()
        rows = await self._pool.fetch(
            """
            SELECT input FROM (
                SELECT id, input FROM chat_inputs ORDER BY id DESC LIMIT $1
            ) AS recent
            ORDER BY id ASC
            """,
            self._history_max,
        )
        return [str(row["input"]) for row in rows]

    def _ensure_pool(self) -> None:
        if self._pool is None:
            raise RuntimeError("ChatHistoryStore not initialized")

    @staticmethod
    def _normalize_postgres_url(url: str) -> str:
        if url.startswith("postgresql+asyncpg://"):
            return "postgresql://" + url[len("postgresql+asyncpg://") :]
        return url
