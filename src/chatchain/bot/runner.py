"""
Bot runner: long-polling loop, idle pruning and graceful shutdown.

On SIGINT/SIGTERM the runner stops polling, waits for in-flight handlers,
lets the pruner finish its current pass, and drains the cache to the blob
store before returning. In-flight store calls are never cancelled.
"""

from __future__ import annotations

import asyncio
import signal
from datetime import timedelta
from typing import Any

from chatchain.bot.handlers import UpdateDispatcher
from chatchain.bot.telegram_client import TelegramClient
from chatchain.conversation.cache import ModelCache
from chatchain.exceptions import TelegramError
from chatchain.logging import get_logger

logger = get_logger(__name__)

POLL_ERROR_BACKOFF_SECONDS = 5.0


class BotRunner:
    """Runs the bot until asked to stop."""

    def __init__(
        self,
        client: TelegramClient,
        cache: ModelCache,
        prune_interval: timedelta = timedelta(minutes=15),
        poll_timeout: int = 30,
        max_concurrent_handlers: int = 8,
    ) -> None:
        self.client = client
        self.cache = cache
        self.dispatcher = UpdateDispatcher(cache, client)
        self.prune_interval = prune_interval
        self.poll_timeout = poll_timeout
        self._semaphore = asyncio.Semaphore(max_concurrent_handlers)
        self._handlers: set[asyncio.Task[None]] = set()
        self._stop = asyncio.Event()
        self._offset: int | None = None

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    def stop(self) -> None:
        """Request a graceful shutdown."""
        if not self._stop.is_set():
            logger.info("Shutdown requested")
            self._stop.set()

    def install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.stop)
            except NotImplementedError:
                # Windows event loops have no signal handler support
                signal.signal(sig, lambda *_: loop.call_soon_threadsafe(self.stop))

    async def run(self) -> int:
        """Poll until stopped, then drain the cache.

        Returns:
            Number of conversations that failed to persist on shutdown.
        """
        logger.info("Bot started", prune_interval=str(self.prune_interval))
        pruner = asyncio.create_task(self._prune_loop())

        try:
            await self._poll_loop()
        finally:
            self.stop()
            if self._handlers:
                await asyncio.gather(*self._handlers, return_exceptions=True)
            await pruner
            failures = await self.cache.drain_all()

        logger.info("Bot stopped", drain_failures=failures)
        return failures

    async def _poll_loop(self) -> None:
        while not self._stop.is_set():
            poll = asyncio.create_task(
                self.client.get_updates(offset=self._offset, timeout=self.poll_timeout)
            )
            stop = asyncio.create_task(self._stop.wait())
            done, _ = await asyncio.wait({poll, stop}, return_when=asyncio.FIRST_COMPLETED)

            if poll not in done:
                # Abandoning a getUpdates call loses nothing: unconfirmed updates are redelivered
                poll.cancel()
                await asyncio.gather(poll, return_exceptions=True)
                break
            stop.cancel()

            try:
                updates = poll.result()
            except TelegramError as e:
                logger.warning("Polling failed", error=str(e))
                await self._sleep(POLL_ERROR_BACKOFF_SECONDS)
                continue

            for update in updates:
                self._offset = update["update_id"] + 1
                await self._spawn(update)

    async def _spawn(self, update: dict[str, Any]) -> None:
        await self._semaphore.acquire()
        task = asyncio.create_task(self._handle(update))
        self._handlers.add(task)
        task.add_done_callback(self._handlers.discard)

    async def _handle(self, update: dict[str, Any]) -> None:
        try:
            await self.dispatcher.dispatch(update)
        except Exception:
            logger.exception("Unhandled error while handling update", update_id=update.get("update_id"))
        finally:
            self._semaphore.release()

    async def _prune_loop(self) -> None:
        interval = self.prune_interval.total_seconds()
        while not await self._sleep(interval):
            await self.cache.prune()

    async def _sleep(self, seconds: float) -> bool:
        """Sleep unless stopped first; True if stopping."""
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True
