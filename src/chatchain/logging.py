"""
Structured logging for chatchain.

Provides:
- Context variables for chat_id, command and update_id (using contextvars)
- JSONFormatter for machine-readable logs to file
- RichHandler for pretty console output
- ContextLogger wrapper that attaches context to all log calls
- setup_logging() that configures both file and console handlers
- Context manager log_context() for scoped context
- get_logger() factory
"""

from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Generator

from rich.console import Console
from rich.logging import RichHandler
from rich.text import Text

# Context variables for structured logging
_chat_id_var: ContextVar[int | None] = ContextVar("chat_id", default=None)
_command_var: ContextVar[str | None] = ContextVar("command", default=None)
_update_id_var: ContextVar[str | None] = ContextVar("update_id", default=None)


def get_chat_id() -> int | None:
    """Get the current chat ID from context."""
    return _chat_id_var.get()


def get_command() -> str | None:
    """Get the current bot command from context."""
    return _command_var.get()


def get_update_id() -> str | None:
    """Get the current update correlation ID from context."""
    return _update_id_var.get()


@contextmanager
def log_context(
    chat_id: int | None = None,
    command: str | None = None,
    update_id: str | None = None,
) -> Generator[None, None, None]:
    """Context manager for scoped logging context.

    Args:
        chat_id: Chat ID to set in context.
        command: Command name to set in context.
        update_id: Update correlation ID to set in context.

    Yields:
        None. Context variables are set for the duration of the context.
    """
    tokens = []
    if chat_id is not None:
        tokens.append((_chat_id_var, _chat_id_var.set(chat_id)))
    if command is not None:
        tokens.append((_command_var, _command_var.set(command)))
    if update_id is not None:
        tokens.append((_update_id_var, _update_id_var.set(update_id)))

    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


def _current_context() -> dict[str, Any]:
    context: dict[str, Any] = {}
    chat_id = get_chat_id()
    command = get_command()
    update_id = get_update_id()

    if chat_id is not None:
        context["chat_id"] = chat_id
    if command:
        context["command"] = command
    if update_id:
        context["update_id"] = update_id
    return context


class JSONFormatter(logging.Formatter):
    """JSON formatter for machine-readable log files.

    Produces JSON Lines format with structured context.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format a log record as JSON."""
        log_obj: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        log_obj.update(_current_context())

        # Add extra fields from the record
        if hasattr(record, "extra"):
            log_obj["extra"] = record.extra

        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_obj, default=str)


class ContextRichHandler(RichHandler):
    """Rich handler that includes context in console output."""

    def get_level_text(self, record: logging.LogRecord) -> Text:
        """Override to add context prefix."""
        level_text = super().get_level_text(record)

        parts: list[str] = []
        chat_id = get_chat_id()
        command = get_command()
        update_id = get_update_id()

        if update_id:
            # Last 8 chars of a uuid7 are the random tail
            parts.append(f"[dim]{update_id[-8:]}[/dim]")
        if chat_id is not None:
            parts.append(f"[cyan]{chat_id}[/cyan]")
        if command:
            parts.append(f"[magenta]/{command}[/magenta]")

        if parts:
            prefix = " ".join(parts)
            return Text.from_markup(f"{level_text} {prefix}")

        return level_text


class ContextLogger:
    """Logger wrapper that automatically attaches context to log calls.

    Wraps a standard logger; keyword arguments become structured fields.
    """

    def __init__(self, logger: logging.Logger) -> None:
        self._logger = logger

    @property
    def name(self) -> str:
        """Get the logger name."""
        return self._logger.name

    def _log(
        self,
        level: int,
        msg: str,
        *args: Any,
        exc_info: bool = False,
        **kwargs: Any,
    ) -> None:
        extra = kwargs.pop("extra", {})
        extra.update(_current_context())

        for key in list(kwargs.keys()):
            if key not in ("exc_info", "stack_info", "stacklevel"):
                extra[key] = kwargs.pop(key)

        self._logger.log(level, msg, *args, exc_info=exc_info, extra={"extra": extra})

    def debug(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log(logging.DEBUG, msg, *args, **kwargs)

    def info(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log(logging.INFO, msg, *args, **kwargs)

    def warning(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log(logging.WARNING, msg, *args, **kwargs)

    def error(self, msg: str, *args: Any, exc_info: bool = False, **kwargs: Any) -> None:
        self._log(logging.ERROR, msg, *args, exc_info=exc_info, **kwargs)

    def exception(self, msg: str, *args: Any, **kwargs: Any) -> None:
        """Log exception with traceback."""
        self._log(logging.ERROR, msg, *args, exc_info=True, **kwargs)


_console: Console | None = None
_setup_done: bool = False


def get_console() -> Console:
    """Get the global rich console."""
    global _console
    if _console is None:
        _console = Console(stderr=True)
    return _console


def setup_logging(
    log_level: str = "INFO",
    log_file: Path | None = None,
    console_output: bool = True,
) -> None:
    """Set up logging with JSON file handler and rich console handler.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_file: Path to log file. If None, only console logging is enabled.
        console_output: Whether to enable console output.
    """
    global _setup_done

    root_logger = logging.getLogger("chatchain")
    root_logger.setLevel(getattr(logging, log_level.upper()))
    root_logger.handlers.clear()

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
        file_handler.setFormatter(JSONFormatter())
        file_handler.setLevel(logging.DEBUG)
        root_logger.addHandler(file_handler)

    if console_output:
        rich_handler = ContextRichHandler(
            console=get_console(),
            show_time=True,
            show_path=False,
            rich_tracebacks=True,
            tracebacks_show_locals=False,
            markup=True,
        )
        rich_handler.setLevel(getattr(logging, log_level.upper()))
        root_logger.addHandler(rich_handler)

    root_logger.propagate = False

    # httpx logs every long-poll request at INFO
    for noisy_logger in ["httpx", "httpcore", "urllib3", "google.auth", "asyncio"]:
        logging.getLogger(noisy_logger).setLevel(logging.WARNING)

    _setup_done = True


def get_logger(name: str) -> ContextLogger:
    """Get a context-aware logger.

    Args:
        name: Logger name (usually __name__).

    Returns:
        ContextLogger wrapper around the standard logger.
    """
    if not _setup_done:
        setup_logging()

    if not name.startswith("chatchain"):
        name = f"chatchain.{name}"

    return ContextLogger(logging.getLogger(name))
