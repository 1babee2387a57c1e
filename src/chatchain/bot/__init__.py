"""
Telegram front-end.

This package provides:
- TelegramClient (telegram_client.py): Bot API calls over httpx
- UpdateDispatcher (handlers.py): commands and permission checks
- BotRunner (runner.py): polling loop, pruning and shutdown
"""

from chatchain.bot.handlers import UpdateDispatcher
from chatchain.bot.runner import BotRunner
from chatchain.bot.telegram_client import TelegramClient

__all__ = ["BotRunner", "TelegramClient", "UpdateDispatcher"]
