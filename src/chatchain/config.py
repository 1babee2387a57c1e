"""
Configuration management using pydantic-settings.

Loads configuration from environment variables and .env files.
Validates required fields and provides typed access to settings.
"""

from __future__ import annotations

import base64
import binascii
import json
from datetime import timedelta
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Required for `chatchain run`:
        TELEGRAM_BOT_TOKEN: Bot API token from @BotFather

    Required when BLOB_BACKEND is "gdrive":
        GDRIVE_CREDENTIALS: Base64-encoded service account JSON
        CHAINDUMP_DIR: Name of the Drive folder that holds conversation blobs

    Optional:
        BLOB_BACKEND: Where conversations are persisted (sqlite|gdrive|memory)
        BLOB_DB_PATH: SQLite database path for the sqlite backend
        IDLE_THRESHOLD_MINUTES: Idle time before a conversation is evicted
        PRUNE_INTERVAL_MINUTES: How often idle conversations are pruned
        POLL_TIMEOUT_SECONDS: Long-poll timeout for getUpdates
        MAX_CONCURRENT_HANDLERS: Maximum concurrently handled updates
        LOG_LEVEL: Logging level
        LOG_FILE: JSON Lines log file
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    TELEGRAM_BOT_TOKEN: str | None = Field(
        default=None, description="Telegram Bot API token"
    )

    # Persistence
    BLOB_BACKEND: Literal["sqlite", "gdrive", "memory"] = Field(
        default="sqlite", description="Blob store backend for conversation dumps"
    )
    BLOB_DB_PATH: Path = Field(
        default=Path(".cache/conversations.db"),
        description="SQLite database for the sqlite backend",
    )
    GDRIVE_CREDENTIALS: str | None = Field(
        default=None, description="Base64-encoded Google service account JSON"
    )
    CHAINDUMP_DIR: str | None = Field(
        default=None, description="Drive folder name holding conversation blobs"
    )

    # Cache lifecycle
    IDLE_THRESHOLD_MINUTES: float = Field(
        default=30.0, gt=0.0, description="Idle minutes before eviction"
    )
    PRUNE_INTERVAL_MINUTES: float = Field(
        default=15.0, gt=0.0, description="Minutes between prune runs"
    )

    # Front-end
    POLL_TIMEOUT_SECONDS: int = Field(
        default=30, ge=0, le=50, description="getUpdates long-poll timeout"
    )
    MAX_CONCURRENT_HANDLERS: int = Field(
        default=8, ge=1, le=64, description="Maximum concurrently handled updates"
    )

    # Logging
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    LOG_FILE: Path | None = Field(default=None, description="JSON Lines log file")

    @field_validator("GDRIVE_CREDENTIALS")
    @classmethod
    def validate_gdrive_credentials(cls, v: str | None) -> str | None:
        """Validate that GDRIVE_CREDENTIALS decodes to a JSON object."""
        if not v:
            return None
        try:
            decoded = json.loads(base64.b64decode(v, validate=True))
        except (binascii.Error, ValueError) as e:
            raise ValueError(
                "GDRIVE_CREDENTIALS must be base64-encoded service account JSON"
            ) from e
        if not isinstance(decoded, dict):
            raise ValueError("GDRIVE_CREDENTIALS must encode a JSON object")
        return v

    @model_validator(mode="after")
    def validate_gdrive_backend(self) -> Settings:
        """Ensure the Drive backend has everything it needs."""
        if self.BLOB_BACKEND == "gdrive":
            missing = [
                name
                for name in ("GDRIVE_CREDENTIALS", "CHAINDUMP_DIR")
                if not getattr(self, name)
            ]
            if missing:
                raise ValueError(
                    f"BLOB_BACKEND=gdrive requires: {', '.join(missing)}"
                )
        return self

    @property
    def idle_threshold(self) -> timedelta:
        return timedelta(minutes=self.IDLE_THRESHOLD_MINUTES)

    @property
    def prune_interval(self) -> timedelta:
        return timedelta(minutes=self.PRUNE_INTERVAL_MINUTES)

    def gdrive_service_account_info(self) -> dict[str, Any]:
        """Decode the service account JSON.

        Raises:
            ValueError: If GDRIVE_CREDENTIALS is not set.
        """
        if not self.GDRIVE_CREDENTIALS:
            raise ValueError("GDRIVE_CREDENTIALS not set")
        return json.loads(base64.b64decode(self.GDRIVE_CREDENTIALS))

    def ensure_directories(self) -> None:
        """Create the SQLite database directory if it doesn't exist."""
        if self.BLOB_BACKEND == "sqlite":
            self.BLOB_DB_PATH.parent.mkdir(parents=True, exist_ok=True)

    def redacted_display(self) -> dict[str, str | int | float | None]:
        """Return settings with secrets redacted for display."""
        def redact(value: str | None) -> str | None:
            if value is None:
                return None
            return f"{value[:8]}...{value[-4:]}" if len(value) > 12 else "***"

        return {
            "TELEGRAM_BOT_TOKEN": redact(self.TELEGRAM_BOT_TOKEN),
            "BLOB_BACKEND": self.BLOB_BACKEND,
            "BLOB_DB_PATH": str(self.BLOB_DB_PATH),
            "GDRIVE_CREDENTIALS": redact(self.GDRIVE_CREDENTIALS),
            "CHAINDUMP_DIR": self.CHAINDUMP_DIR,
            "IDLE_THRESHOLD_MINUTES": self.IDLE_THRESHOLD_MINUTES,
            "PRUNE_INTERVAL_MINUTES": self.PRUNE_INTERVAL_MINUTES,
            "POLL_TIMEOUT_SECONDS": self.POLL_TIMEOUT_SECONDS,
            "MAX_CONCURRENT_HANDLERS": self.MAX_CONCURRENT_HANDLERS,
            "LOG_LEVEL": self.LOG_LEVEL,
            "LOG_FILE": str(self.LOG_FILE) if self.LOG_FILE else None,
        }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings singleton.

    Returns:
        Settings instance loaded from environment.

    Raises:
        ValidationError: If settings are invalid.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache (useful for testing)."""
    get_settings.cache_clear()
