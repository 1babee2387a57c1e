"""
Custom exception hierarchy for chatchain.

All exceptions inherit from ChatChainError, which provides optional context
for structured error handling and logging.
"""

from __future__ import annotations

from typing import Any


class ChatChainError(Exception):
    """Base exception for all chatchain errors.

    Attributes:
        message: Human-readable error message.
        context: Optional structured context for logging/debugging.
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            ctx_str = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            return f"{self.message} ({ctx_str})"
        return self.message

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, context={self.context!r})"


class ConfigurationError(ChatChainError):
    """Raised when configuration is invalid or missing.

    Examples:
        - Missing TELEGRAM_BOT_TOKEN when starting the bot
        - Drive backend selected without credentials
        - Chaindump folder not present in Drive
    """

    pass


class BlobStoreError(ChatChainError):
    """Raised when a blob store operation fails at the transport level.

    Context should include:
        - backend: The store implementation (e.g., "sqlite", "gdrive")
        - key: The blob key being accessed
        - operation: get, put or delete
    """

    pass


class RetryExhaustedError(ChatChainError):
    """Raised when every attempt of a retried operation failed.

    Attributes:
        attempts: Number of attempts made.
        last_error: The exception raised by the final attempt.
    """

    def __init__(
        self,
        message: str,
        attempts: int,
        last_error: BaseException | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, context)
        self.attempts = attempts
        self.last_error = last_error


class CorruptPayloadError(ChatChainError):
    """Raised when a stored conversation blob cannot be decoded.

    Context should include:
        - chat_id: The conversation whose blob is unreadable
        - size: Payload size in bytes
    """

    pass


class GenerationExhaustedError(ChatChainError):
    """Raised when the model keeps producing blank output.

    Context should include:
        - chat_id: The conversation being generated for
        - attempts: Number of generation attempts made
    """

    pass


class TelegramError(ChatChainError):
    """Raised when the Telegram Bot API rejects a call or is unreachable.

    Context should include:
        - method: The Bot API method
        - error_code: Telegram error code if one was returned
    """

    pass
