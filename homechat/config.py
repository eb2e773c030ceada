"""
Application Configuration

Pydantic-based settings management using environment variables.
Supports nested configuration, validation, and caching.

Usage:
    from homechat.config import get_settings

    settings = get_settings()
    print(settings.llm.base_url)
    print(settings.database.url)
"""

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Literal
from urllib.parse import urlparse

from dotenv import load_dotenv
from pydantic import AnyUrl, Field, PostgresDsn, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LLMSettings(BaseSettings):
    """Local model server configuration."""

    base_url: str = Field(
        default="http://localhost:11434/v1",
        description="OpenAI-compatible base URL of the model server (Ollama, llama.cpp, ...)",
    )
    model: str = Field(default="qwen3", description="Model name passed in chat requests")
    timeout: float = Field(
        default=5.0,
        gt=0,
        description="Timeout in seconds for quick server operations (ping, model listing)",
    )
    temperature: float = Field(
        default=0.0,
        ge=0.0,
        le=2.0,
        description="Sampling temperature (0.0 = deterministic)",
    )
    extra_context: str = Field(
        default="",
        description="Custom text appended to every system prompt",
    )

    model_config = SettingsConfigDict(
        env_prefix="LLM_",
        env_file=".env",
        extra="ignore",
    )

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        """Require an http(s) URL and drop trailing slashes."""
        parsed = urlparse(v)
        if parsed.scheme not in {"http", "https"} or not parsed.hostname:
            raise ValueError("LLM_BASE_URL must be an http(s) URL with a host.")
        return v.rstrip("/")


class DatabaseSettings(BaseSettings):
    """Target database configuration (the home data being queried)."""

    url: AnyUrl | None = Field(
        None,
        description="Target database connection URL",
    )
    pool_size: int = Field(
        default=5,
        gt=0,
        le=20,
        description="Database connection pool size",
    )
    query_timeout: int = Field(
        default=10,
        gt=0,
        description="Statement timeout for generated queries, in seconds",
    )
    max_rows: int = Field(
        default=200,
        gt=0,
        le=10000,
        description="Maximum rows returned from a generated query",
    )

    model_config = SettingsConfigDict(
        env_prefix="DATABASE_",
        env_file=".env",
        extra="ignore",
    )

    @field_validator("url", mode="before")
    @classmethod
    def normalize_url(cls, v: str | AnyUrl | None) -> str | AnyUrl | None:
        """Treat empty strings as missing."""
        if v == "":
            return None
        return v

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: AnyUrl | None) -> AnyUrl | None:
        """Validate supported database URL schemes."""
        if v is None:
            return v
        parsed = urlparse(str(v))
        scheme = parsed.scheme.split("+")[0].lower() if parsed.scheme else ""
        if scheme not in {"postgres", "postgresql"}:
            raise ValueError("DATABASE_URL must use the postgresql scheme.")
        if not parsed.hostname:
            raise ValueError("DATABASE_URL must include a host.")
        return v


class SystemDatabaseSettings(BaseSettings):
    """System database configuration (prompt history)."""

    url: PostgresDsn | None = Field(
        None,
        description="System PostgreSQL connection URL used for chat input history",
    )

    model_config = SettingsConfigDict(
        env_prefix="SYSTEM_DATABASE_",
        env_file=".env",
        extra="ignore",
    )

    @field_validator("url", mode="before")
    @classmethod
    def normalize_url(cls, v: str | PostgresDsn | None) -> str | PostgresDsn | None:
        """Treat empty strings as missing."""
        if v == "":
            return None
        return v


class ChatSettings(BaseSettings):
    """Chat pipeline behavior."""

    history_max: int = Field(
        default=200,
        gt=0,
        le=10000,
        description="Maximum persisted chat inputs kept for recall",
    )
    stream_buffer: int = Field(
        default=16,
        gt=0,
        le=1024,
        description="Tokens buffered between the model stream and the pipeline",
    )
    data_dump_max_rows: int = Field(
        default=500,
        gt=0,
        description="Maximum rows per table included in the fallback data dump",
    )

    model_config = SettingsConfigDict(
        env_prefix="CHAT_",
        env_file=".env",
        extra="ignore",
    )


class LoggingSettings(BaseSettings):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Application log level",
    )
    format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log message format",
    )
    date_format: str = Field(
        default="%Y-%m-%d %H:%M:%S",
        description="Log timestamp format",
    )
    file: Path | None = Field(
        default=None,
        description="Optional log file path (None = stderr only)",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        env_file=".env",
        extra="ignore",
    )

    def configure(self) -> None:
        """Configure Python logging with these settings."""
        handlers: list[logging.Handler] = [logging.StreamHandler()]

        if self.file:
            self.file.parent.mkdir(parents=True, exist_ok=True)
            handlers.append(logging.FileHandler(self.file))

        logging.basicConfig(
            level=getattr(logging, self.level),
            format=self.format,
            datefmt=self.date_format,
            handlers=handlers,
            force=True,
        )


class Settings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    Settings are nested by domain (llm, database, chat, logging).

    Environment Variables:
        LLM_*: Model server configuration (see LLMSettings)
        DATABASE_*: Target database configuration (see DatabaseSettings)
        SYSTEM_DATABASE_*: Prompt history database (see SystemDatabaseSettings)
        CHAT_*: Chat pipeline behavior (see ChatSettings)
        LOG_*: Logging configuration (see LoggingSettings)

    Example:
        >>> settings = get_settings()
        >>> settings.llm.model
        'qwen3'
    """

    llm: LLMSettings = Field(default_factory=LLMSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    system_database: SystemDatabaseSettings = Field(default_factory=SystemDatabaseSettings)
    chat: ChatSettings = Field(default_factory=ChatSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    def model_post_init(self, __context) -> None:
        """Configure logging and record what was loaded."""
        self.logging.configure()
        logger = logging.getLogger(__name__)
        logger.info(
            "Settings loaded",
            extra={
                "llm_base_url": self.llm.base_url,
                "llm_model": self.llm.model,
            },
        )


_DOTENV_PATH = Path(__file__).resolve().parents[1] / ".env"


def _apply_dotenv_precedence() -> None:
    env_source = os.getenv("HOMECHAT_ENV_SOURCE", "dotenv").lower()
    if env_source not in {"dotenv", "envfile", "file"}:
        return
    if _DOTENV_PATH.exists():
        load_dotenv(_DOTENV_PATH, override=True)


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings.

    Uses functools.lru_cache to ensure settings are loaded only once.

    Returns:
        Settings: Singleton settings instance
    """
    _apply_dotenv_precedence()
    return Settings()


def clear_settings_cache() -> None:
    """
    Clear the settings cache.

    Useful for testing when you need to reload settings with different
    environment variables.
    """
    get_settings.cache_clear()
