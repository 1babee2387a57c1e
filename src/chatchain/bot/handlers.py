"""
Update dispatcher for the Telegram front-end.

Turns one Telegram update into at most one cache call and one reply:

- /start, /help: static replies
- /speak [seed]: generate a phrase
- /toggle_learning: administrators only in groups
- /clear_data: chat creator only in groups
- any other text: fed to the chat's model
"""

from __future__ import annotations

from typing import Any

from chatchain.bot.telegram_client import TelegramClient
from chatchain.conversation.cache import ModelCache
from chatchain.exceptions import TelegramError
from chatchain.logging import get_logger, log_context
from chatchain.types import (
    COMMAND_FAILED,
    INSUFFICIENT_PERMISSIONS,
    ChatKind,
    MemberStatus,
    generate_id,
)

logger = get_logger(__name__)

START_MESSAGE = (
    "Hi! Add me to a group as an administrator to begin your Markov adventure.\n"
    "Want to know more? Use /help."
)

HELP_MESSAGE = (
    "You can use the following commands:\n\n"
    "/speak - generate a new phrase\n"
    "/speak &lt;words&gt; - continue from the last word\n"
    "/toggle_learning - enable / disable learning\n"
    "/clear_data - delete ALL data (irreversible!)"
)


def parse_command(text: str) -> tuple[str, str] | None:
    """Split "/cmd@bot args" into ("cmd", "args"); None for plain text."""
    if not text.startswith("/"):
        return None
    head, _, args = text.partition(" ")
    name = head[1:].split("@", 1)[0].lower()
    if not name:
        return None
    return name, args.strip()


class UpdateDispatcher:
    """Routes Telegram updates to the model cache."""

    def __init__(self, cache: ModelCache, client: TelegramClient) -> None:
        self.cache = cache
        self.client = client

    async def dispatch(self, update: dict[str, Any]) -> None:
        """Handle one update. Never raises for API or cache failures."""
        message = update.get("message")
        if not message or "text" not in message:
            return

        chat = message["chat"]
        chat_id = chat["id"]
        text = message["text"]
        parsed = parse_command(text)

        with log_context(
            chat_id=chat_id,
            command=parsed[0] if parsed else None,
            update_id=generate_id("upd"),
        ):
            if parsed is None:
                await self.cache.feed(chat_id, text)
                return

            command, args = parsed
            reply, parse_mode = await self._run_command(command, args, message)
            if reply is not None:
                await self._reply(chat_id, reply, parse_mode)

    async def _run_command(
        self, command: str, args: str, message: dict[str, Any]
    ) -> tuple[str | None, str | None]:
        chat_id = message["chat"]["id"]

        if command == "start":
            return START_MESSAGE, None
        if command == "help":
            return HELP_MESSAGE, "HTML"
        if command == "speak":
            return await self.cache.generate(chat_id, args), None
        if command == "toggle_learning":
            allowed = await self._is_allowed(message, admins_allowed=True)
            if allowed is None:
                return COMMAND_FAILED, None
            if not allowed:
                return INSUFFICIENT_PERMISSIONS, None
            return await self.cache.toggle_learning(chat_id), None
        if command == "clear_data":
            allowed = await self._is_allowed(message, admins_allowed=False)
            if allowed is None:
                return COMMAND_FAILED, None
            if not allowed:
                return INSUFFICIENT_PERMISSIONS, None
            return await self.cache.clear_data(chat_id), None

        logger.debug("Ignoring unknown command")
        return None, None

    async def _is_allowed(self, message: dict[str, Any], admins_allowed: bool) -> bool | None:
        """Check the sender's rights; None if the lookup failed."""
        chat = message["chat"]
        sender = message.get("from")

        if chat.get("type") == ChatKind.PRIVATE.value or sender is None:
            return True

        try:
            status = await self.client.get_chat_member_status(chat["id"], sender["id"])
        except (TelegramError, KeyError, ValueError) as e:
            logger.error("Permission lookup failed", error=str(e))
            return None

        if admins_allowed:
            return status.is_admin
        return status is MemberStatus.CREATOR

    async def _reply(self, chat_id: int, text: str, parse_mode: str | None) -> None:
        try:
            await self.client.send_message(chat_id, text, parse_mode=parse_mode)
        except TelegramError as e:
            logger.warning("Failed to send reply", error=str(e))
