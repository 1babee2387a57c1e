"""
Conversation entry: one chat's Markov chain plus its metadata.

An entry owns the load/save logic for its blob. Entries are only persisted
when explicitly asked to (idle prune and shutdown drain); nothing is written
implicitly when an entry goes out of scope.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable

import orjson
from pydantic import BaseModel, PositiveInt, ValidationError

from chatchain.exceptions import (
    ChatChainError,
    CorruptPayloadError,
    GenerationExhaustedError,
    RetryExhaustedError,
)
from chatchain.logging import get_logger
from chatchain.markov import MarkovChain
from chatchain.retry import DEFAULT_POLICY, RetryPolicy, aretry_call
from chatchain.storage.base import BlobStore
from chatchain.types import (
    LEARNING_DISABLED,
    LEARNING_ENABLED,
    NOTHING_LEARNT,
    ChatId,
    utc_now,
)

logger = get_logger(__name__)

PAYLOAD_VERSION = 1
MAX_GENERATION_ATTEMPTS = 10

Clock = Callable[[], datetime]


class StoredConversation(BaseModel):
    """Wire shape of a persisted conversation."""

    version: int
    chat_id: int
    is_learning: bool
    last_accessed: datetime
    chain: dict[str, dict[str, PositiveInt]]


def blob_key(chat_id: ChatId) -> str:
    return str(chat_id)


@dataclass
class ConversationEntry:
    """A resident conversation.

    Attributes:
        chat_id: Conversation identifier; the blob key is its string form.
        chain: The conversation's model, owned exclusively by this entry.
        is_learning: Whether fed text updates the chain.
        last_accessed: UTC time of the latest operation; strictly increasing.
        stale_blob: A clear failed to delete the stored blob, so the next
            persist must delete it.
    """

    chat_id: ChatId
    store: BlobStore
    chain: MarkovChain = field(default_factory=MarkovChain)
    is_learning: bool = True
    last_accessed: datetime = field(default_factory=utc_now)
    stale_blob: bool = False
    policy: RetryPolicy = DEFAULT_POLICY
    clock: Clock = utc_now

    @property
    def key(self) -> str:
        return blob_key(self.chat_id)

    @classmethod
    async def load(
        cls,
        chat_id: ChatId,
        store: BlobStore,
        policy: RetryPolicy = DEFAULT_POLICY,
        clock: Clock = utc_now,
        rng: random.Random | None = None,
    ) -> ConversationEntry:
        """Load a conversation from the store, or start a fresh one.

        A missing blob yields a fresh entry. An undecodable blob, or one stored
        for a different chat, is deleted and also yields a fresh entry. If that
        delete fails the fresh entry is marked stale so its next persist
        removes or replaces the blob.

        Raises:
            RetryExhaustedError: If the store stayed unreachable through every
                attempt. No entry is fabricated in that case.
        """
        key = blob_key(chat_id)
        data = await aretry_call(store.get, key, description=f"load {key}", policy=policy)

        stale_blob = False
        if data is not None:
            try:
                entry = cls.from_bytes(
                    data, store, chat_id=chat_id, policy=policy, clock=clock, rng=rng
                )
            except CorruptPayloadError as e:
                logger.warning("Discarding corrupt conversation blob", error=str(e))
                try:
                    await aretry_call(store.delete, key, description=f"delete {key}", policy=policy)
                except RetryExhaustedError as delete_error:
                    logger.error("Failed to delete corrupt blob", error=str(delete_error))
                    stale_blob = True
            else:
                entry.last_accessed = max(clock(), entry.last_accessed)
                logger.info("Loaded conversation", tokens=len(entry.chain))
                return entry

        return cls(
            chat_id=chat_id,
            store=store,
            chain=MarkovChain(rng=rng),
            last_accessed=clock(),
            stale_blob=stale_blob,
            policy=policy,
            clock=clock,
        )

    def to_bytes(self) -> bytes:
        stored = StoredConversation(
            version=PAYLOAD_VERSION,
            chat_id=self.chat_id,
            is_learning=self.is_learning,
            last_accessed=self.last_accessed,
            chain=self.chain.to_state(),
        )
        return orjson.dumps(stored.model_dump(mode="json"))

    @classmethod
    def from_bytes(
        cls,
        data: bytes,
        store: BlobStore,
        chat_id: ChatId | None = None,
        policy: RetryPolicy = DEFAULT_POLICY,
        clock: Clock = utc_now,
        rng: random.Random | None = None,
    ) -> ConversationEntry:
        """Decode a persisted conversation.

        Args:
            chat_id: Chat the blob was stored under; a payload for any other
                chat is rejected.

        Raises:
            CorruptPayloadError: If the payload is not a valid conversation.
        """
        try:
            stored = StoredConversation.model_validate(orjson.loads(data))
        except (orjson.JSONDecodeError, ValidationError) as e:
            raise CorruptPayloadError(
                "Conversation payload could not be decoded",
                context={"size": len(data), "error": str(e)[:200]},
            ) from e

        if stored.version != PAYLOAD_VERSION:
            raise CorruptPayloadError(
                "Unsupported conversation payload version",
                context={"chat_id": stored.chat_id, "version": stored.version},
            )

        if chat_id is not None and stored.chat_id != chat_id:
            raise CorruptPayloadError(
                "Conversation payload belongs to another chat",
                context={"chat_id": chat_id, "payload_chat_id": stored.chat_id},
            )

        return cls(
            chat_id=stored.chat_id,
            store=store,
            chain=MarkovChain.from_state(stored.chain, rng=rng),
            is_learning=stored.is_learning,
            last_accessed=stored.last_accessed,
            policy=policy,
            clock=clock,
        )

    def touch(self) -> None:
        now = self.clock()
        if now <= self.last_accessed:
            now = self.last_accessed + timedelta(microseconds=1)
        self.last_accessed = now

    def idle_for(self, now: datetime) -> timedelta:
        return now - self.last_accessed

    def feed(self, text: str) -> None:
        """Learn from text, one sequence per non-blank line."""
        self.touch()

        if not self.is_learning:
            return

        for line in text.splitlines():
            line = line.strip()
            if line:
                self.chain.feed_str(line)

    def generate(self, seed: str = "") -> str:
        """Generate a phrase, optionally continuing from the seed's last word.

        Raises:
            GenerationExhaustedError: If every attempt produced blank output.
        """
        self.touch()

        if self.chain.is_empty():
            return NOTHING_LEARNT

        words = seed.split()
        for _ in range(MAX_GENERATION_ATTEMPTS):
            tokens: list[str] = []
            if words:
                anchored = self.chain.generate_from(words[-1])
                if anchored:
                    tokens = [*words[:-1], *anchored]
            if not tokens:
                tokens = self.chain.generate()

            text = " ".join(tokens).strip()
            if text:
                return text

        raise GenerationExhaustedError(
            "Model produced only blank output",
            context={"chat_id": self.chat_id, "attempts": MAX_GENERATION_ATTEMPTS},
        )

    def toggle_learning(self) -> str:
        self.touch()
        self.is_learning = not self.is_learning
        return LEARNING_ENABLED if self.is_learning else LEARNING_DISABLED

    async def clear(self) -> None:
        """Forget everything learnt and delete the stored blob.

        Raises:
            RetryExhaustedError: If the blob could not be deleted. The entry is
                still cleared and remembers that its blob is stale.
        """
        self.chain.clear()
        self.is_learning = True
        self.touch()
        self.stale_blob = True

        await aretry_call(self.store.delete, self.key, description=f"delete {self.key}", policy=self.policy)
        self.stale_blob = False

    async def persist(self) -> str | None:
        """Write the entry to the store if it has learnt anything.

        An empty chain is never written; if its blob is known to be stale it is
        deleted instead.

        Returns:
            None on success, otherwise a description of the failure.
        """
        try:
            if not self.chain.is_empty():
                await aretry_call(
                    self.store.put,
                    self.key,
                    self.to_bytes(),
                    description=f"persist {self.key}",
                    policy=self.policy,
                )
                self.stale_blob = False
            elif self.stale_blob:
                await aretry_call(
                    self.store.delete,
                    self.key,
                    description=f"delete {self.key}",
                    policy=self.policy,
                )
                self.stale_blob = False
            else:
                return None
        except ChatChainError as e:
            return f"persist failed for chat {self.chat_id}: {e}"

        logger.debug("Persisted conversation", chat_id=self.chat_id)
        return None
