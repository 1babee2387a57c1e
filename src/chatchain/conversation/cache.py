"""
Model cache: the resident set of conversations.

Each chat id moves through Absent -> Loading -> Resident -> Evicted. The first
operation on an absent id loads it from the blob store; a failed load leaves
the id absent and inserts nothing. Resident entries are evicted by an explicit
clear or by the idle prune, which persists before removing.

Every operation holds the lock for its chat id across the whole
resolve-and-mutate sequence, so operations on one id never interleave while
different ids proceed independently.
"""

from __future__ import annotations

import random
from datetime import datetime, timedelta

from chatchain.conversation.entry import Clock, ConversationEntry, blob_key
from chatchain.conversation.locks import KeyedLock
from chatchain.exceptions import GenerationExhaustedError, RetryExhaustedError
from chatchain.logging import get_logger, log_context
from chatchain.retry import DEFAULT_POLICY, RetryPolicy, aretry_call
from chatchain.storage.base import BlobStore
from chatchain.types import COMMAND_FAILED, DATABASE_CLEARED, ChatId, utc_now

logger = get_logger(__name__)

DEFAULT_IDLE_THRESHOLD = timedelta(minutes=30)


class ModelCache:
    """Keyed collection of conversation entries backed by a blob store."""

    def __init__(
        self,
        store: BlobStore,
        idle_threshold: timedelta = DEFAULT_IDLE_THRESHOLD,
        policy: RetryPolicy = DEFAULT_POLICY,
        clock: Clock = utc_now,
        rng: random.Random | None = None,
    ) -> None:
        """Initialize the cache.

        Args:
            store: Durable store for conversation blobs.
            idle_threshold: Entries idle longer than this are pruned.
            policy: Retry policy for every store call.
            clock: Source of the current UTC time.
            rng: Random source handed to newly created chains.
        """
        self.store = store
        self.idle_threshold = idle_threshold
        self.policy = policy
        self._clock = clock
        self._rng = rng
        self._entries: dict[ChatId, ConversationEntry] = {}
        self._locks = KeyedLock()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, chat_id: object) -> bool:
        return chat_id in self._entries

    def peek(self, chat_id: ChatId) -> ConversationEntry | None:
        """Return the resident entry without loading or touching it."""
        return self._entries.get(chat_id)

    async def _resolve(self, chat_id: ChatId) -> ConversationEntry:
        # Caller holds the lock for chat_id.
        entry = self._entries.get(chat_id)
        if entry is None:
            entry = await ConversationEntry.load(
                chat_id, self.store, policy=self.policy, clock=self._clock, rng=self._rng
            )
            self._entries[chat_id] = entry
        return entry

    async def feed(self, chat_id: ChatId, text: str) -> None:
        """Learn from a message. Best-effort: load failures are only logged."""
        with log_context(chat_id=chat_id):
            async with self._locks.hold(chat_id):
                try:
                    entry = await self._resolve(chat_id)
                except RetryExhaustedError as e:
                    logger.warning("Dropping message, conversation unavailable", error=str(e))
                    return
                entry.feed(text)

    async def generate(self, chat_id: ChatId, seed: str = "") -> str:
        """Generate a phrase for the chat, or the generic failure message."""
        with log_context(chat_id=chat_id):
            async with self._locks.hold(chat_id):
                try:
                    entry = await self._resolve(chat_id)
                except RetryExhaustedError as e:
                    logger.error("Conversation unavailable", error=str(e))
                    return COMMAND_FAILED

                try:
                    return entry.generate(seed)
                except GenerationExhaustedError as e:
                    logger.warning("Generation exhausted", error=str(e))
                    return COMMAND_FAILED

    async def toggle_learning(self, chat_id: ChatId) -> str:
        with log_context(chat_id=chat_id):
            async with self._locks.hold(chat_id):
                try:
                    entry = await self._resolve(chat_id)
                except RetryExhaustedError as e:
                    logger.error("Conversation unavailable", error=str(e))
                    return COMMAND_FAILED

                reply = entry.toggle_learning()
                logger.info("Toggled learning", is_learning=entry.is_learning)
                return reply

    async def clear_data(self, chat_id: ChatId) -> str:
        """Delete everything stored for the chat.

        A resident entry is cleared and dropped. For an absent id the blob is
        deleted directly, which is a no-op for chats never seen. If the delete
        fails, a resident entry stays cleared in memory and retries the delete
        on its next persist.
        """
        with log_context(chat_id=chat_id):
            async with self._locks.hold(chat_id):
                entry = self._entries.get(chat_id)
                try:
                    if entry is None:
                        key = blob_key(chat_id)
                        await aretry_call(
                            self.store.delete, key, description=f"delete {key}", policy=self.policy
                        )
                    else:
                        await entry.clear()
                        del self._entries[chat_id]
                except RetryExhaustedError as e:
                    logger.error("Failed to clear conversation", error=str(e))
                    return COMMAND_FAILED

                logger.info("Cleared conversation")
                return DATABASE_CLEARED

    async def prune(self, now: datetime | None = None) -> int:
        """Persist and evict entries idle longer than the threshold.

        Entries whose persist fails stay resident and are retried on the next
        prune.

        Returns:
            Number of entries evicted.
        """
        now = now or self._clock()
        candidates = [
            chat_id
            for chat_id, entry in self._entries.items()
            if entry.idle_for(now) > self.idle_threshold
        ]

        evicted = 0
        for chat_id in candidates:
            with log_context(chat_id=chat_id):
                async with self._locks.hold(chat_id):
                    entry = self._entries.get(chat_id)
                    # Touched or cleared while waiting for the lock
                    if entry is None or entry.idle_for(now) <= self.idle_threshold:
                        continue

                    error = await entry.persist()
                    if error is not None:
                        logger.error("Keeping idle conversation, persist failed", error=error)
                        continue

                    del self._entries[chat_id]
                    evicted += 1

        if candidates:
            logger.info(
                "Pruned idle conversations",
                evicted=evicted,
                candidates=len(candidates),
                resident=len(self._entries),
            )
        return evicted

    async def drain_all(self) -> int:
        """Persist every resident entry, typically at shutdown.

        Returns:
            Number of entries that failed to persist.
        """
        failures = 0
        for chat_id in list(self._entries):
            with log_context(chat_id=chat_id):
                async with self._locks.hold(chat_id):
                    entry = self._entries.get(chat_id)
                    if entry is None:
                        continue
                    error = await entry.persist()
                    if error is not None:
                        failures += 1
                        logger.error("Failed to persist conversation on drain", error=error)

        logger.info("Drained model cache", resident=len(self._entries), failures=failures)
        return failures
