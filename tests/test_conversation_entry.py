"""
Tests for conversation entries.
"""

from __future__ import annotations

import random
from datetime import timedelta
from unittest.mock import patch

import orjson
import pytest

from chatchain.conversation import ConversationEntry
from chatchain.conversation.entry import PAYLOAD_VERSION, StoredConversation
from chatchain.exceptions import (
    CorruptPayloadError,
    GenerationExhaustedError,
    RetryExhaustedError,
)
from chatchain.markov import MarkovChain
from chatchain.types import LEARNING_DISABLED, LEARNING_ENABLED, NOTHING_LEARNT

from conftest import FAST_POLICY, FakeClock, FlakyBlobStore


def make_entry(store: FlakyBlobStore, clock: FakeClock, chat_id: int = 1) -> ConversationEntry:
    return ConversationEntry(
        chat_id=chat_id,
        store=store,
        chain=MarkovChain(rng=random.Random(0)),
        last_accessed=clock(),
        policy=FAST_POLICY,
        clock=clock,
    )


class TestConversationEntryLoad:
    """Test loading entries from the store."""

    @pytest.mark.asyncio
    async def test_missing_blob_gives_fresh_entry(
        self, store: FlakyBlobStore, clock: FakeClock
    ) -> None:
        """Test that an unseen chat starts empty with learning on."""
        entry = await ConversationEntry.load(5, store, policy=FAST_POLICY, clock=clock)

        assert entry.chat_id == 5
        assert entry.chain.is_empty()
        assert entry.is_learning
        assert entry.last_accessed == clock()

    @pytest.mark.asyncio
    async def test_loads_persisted_entry(self, store: FlakyBlobStore, clock: FakeClock) -> None:
        """Test that a persisted entry is restored."""
        original = make_entry(store, clock, chat_id=9)
        original.feed("hello world")
        original.toggle_learning()
        assert await original.persist() is None

        clock.advance(timedelta(hours=1))
        loaded = await ConversationEntry.load(9, store, policy=FAST_POLICY, clock=clock)

        assert loaded.chain == original.chain
        assert loaded.is_learning is False
        assert loaded.last_accessed == clock()

    @pytest.mark.asyncio
    async def test_corrupt_blob_is_deleted(self, store: FlakyBlobStore, clock: FakeClock) -> None:
        """Test that undecodable data is discarded and replaced by a fresh entry."""
        store.blobs["5"] = b"\x00not json at all"

        entry = await ConversationEntry.load(5, store, policy=FAST_POLICY, clock=clock)

        assert entry.chain.is_empty()
        assert "5" not in store.blobs

    @pytest.mark.asyncio
    async def test_wrong_shape_is_corrupt(self, store: FlakyBlobStore, clock: FakeClock) -> None:
        """Test that valid JSON with the wrong shape counts as corrupt."""
        store.blobs["5"] = orjson.dumps({"chain": "nope"})

        entry = await ConversationEntry.load(5, store, policy=FAST_POLICY, clock=clock)

        assert entry.chain.is_empty()
        assert "5" not in store.blobs

    @pytest.mark.asyncio
    async def test_payload_for_other_chat_is_corrupt(
        self, store: FlakyBlobStore, clock: FakeClock
    ) -> None:
        """Test that a blob holding another chat's payload is discarded."""
        other = make_entry(store, clock, chat_id=6)
        other.feed("six only")
        store.blobs["5"] = other.to_bytes()

        entry = await ConversationEntry.load(5, store, policy=FAST_POLICY, clock=clock)

        assert entry.chat_id == 5
        assert entry.key == "5"
        assert entry.chain.is_empty()
        assert "5" not in store.blobs
        assert "6" not in store.blobs

    @pytest.mark.asyncio
    @pytest.mark.parametrize("count", [0, -3])
    async def test_non_positive_counts_are_corrupt(
        self, store: FlakyBlobStore, clock: FakeClock, count: int
    ) -> None:
        """Test that transition counts below one are rejected on load."""
        payload = orjson.loads(make_entry(store, clock, chat_id=9).to_bytes())
        payload["chain"] = {"": {"a": count}, "a": {"": 1}}
        store.blobs["9"] = orjson.dumps(payload)

        entry = await ConversationEntry.load(9, store, policy=FAST_POLICY, clock=clock)

        assert entry.chain.is_empty()
        assert "9" not in store.blobs

    @pytest.mark.asyncio
    async def test_corrupt_blob_delete_failure_marks_stale(
        self, store: FlakyBlobStore, clock: FakeClock
    ) -> None:
        """Test that an undeletable corrupt blob still yields a fresh entry."""
        store.blobs["7"] = b"not json"
        store.fail_next("delete", 5)

        entry = await ConversationEntry.load(7, store, policy=FAST_POLICY, clock=clock)

        assert entry.chain.is_empty()
        assert entry.stale_blob
        assert "7" in store.blobs

        assert await entry.persist() is None
        assert "7" not in store.blobs
        assert not entry.stale_blob

    @pytest.mark.asyncio
    async def test_stale_corrupt_blob_replaced_by_new_data(
        self, store: FlakyBlobStore, clock: FakeClock
    ) -> None:
        """Test that learning after a failed delete overwrites the corrupt blob."""
        store.blobs["7"] = b"not json"
        store.fail_next("delete", 5)

        entry = await ConversationEntry.load(7, store, policy=FAST_POLICY, clock=clock)
        entry.feed("fresh start")

        assert await entry.persist() is None
        assert not entry.stale_blob
        restored = ConversationEntry.from_bytes(store.blobs["7"], store, chat_id=7)
        assert restored.chain == entry.chain

    @pytest.mark.asyncio
    async def test_store_outage_propagates(self, store: FlakyBlobStore, clock: FakeClock) -> None:
        """Test that a store outage is not mistaken for missing data."""
        store.blobs["7"] = make_entry(store, clock, chat_id=7).to_bytes()
        store.fail_next("get", 5)

        with pytest.raises(RetryExhaustedError):
            await ConversationEntry.load(7, store, policy=FAST_POLICY, clock=clock)

        assert store.calls["get"] == 5
        assert "7" in store.blobs

    @pytest.mark.asyncio
    async def test_transient_failure_recovers(
        self, store: FlakyBlobStore, clock: FakeClock
    ) -> None:
        """Test that a load succeeds when the store recovers within the attempts."""
        store.fail_next("get", 4)
        entry = await ConversationEntry.load(7, store, policy=FAST_POLICY, clock=clock)
        assert entry.chat_id == 7


class TestConversationEntrySerialization:
    """Test payload encoding."""

    def test_round_trip(self, store: FlakyBlobStore, clock: FakeClock) -> None:
        """Test that decode(encode(entry)) preserves every persisted field."""
        entry = make_entry(store, clock, chat_id=-100123)
        entry.feed("one two three\nfour five")
        entry.is_learning = False

        restored = ConversationEntry.from_bytes(entry.to_bytes(), store)

        assert restored.chat_id == entry.chat_id
        assert restored.is_learning is False
        assert restored.last_accessed == entry.last_accessed
        assert restored.chain.to_state() == entry.chain.to_state()

    def test_payload_matches_stored_model(self, store: FlakyBlobStore, clock: FakeClock) -> None:
        """Test that encoded entries validate against the stored schema."""
        entry = make_entry(store, clock, chat_id=4)
        entry.feed("a b")

        stored = StoredConversation.model_validate(orjson.loads(entry.to_bytes()))

        assert stored.version == PAYLOAD_VERSION
        assert stored.chat_id == 4
        assert stored.last_accessed == entry.last_accessed
        assert stored.chain == entry.chain.to_state()

    def test_mismatched_chat_id_rejected(self, store: FlakyBlobStore, clock: FakeClock) -> None:
        """Test that decoding under a different chat id fails."""
        data = make_entry(store, clock, chat_id=6).to_bytes()

        with pytest.raises(CorruptPayloadError):
            ConversationEntry.from_bytes(data, store, chat_id=5)

    def test_unknown_version_is_corrupt(self, store: FlakyBlobStore, clock: FakeClock) -> None:
        """Test that a payload from a future format is rejected."""
        payload = orjson.loads(make_entry(store, clock).to_bytes())
        payload["version"] = 99

        with pytest.raises(CorruptPayloadError):
            ConversationEntry.from_bytes(orjson.dumps(payload), store)


class TestConversationEntryFeed:
    """Test learning from text."""

    def test_each_line_is_a_sequence(self, store: FlakyBlobStore, clock: FakeClock) -> None:
        """Test that multi-line messages feed one sequence per non-blank line."""
        entry = make_entry(store, clock)
        entry.feed("  hello world  \n\n   \nhello there\n")

        assert entry.chain.stats()["sequences"] == 2
        assert entry.chain.to_state()["world"] == {"": 1}

    def test_feed_ignored_when_learning_disabled(
        self, store: FlakyBlobStore, clock: FakeClock
    ) -> None:
        """Test that disabled learning leaves the chain untouched."""
        entry = make_entry(store, clock)
        entry.feed("before")
        before = entry.chain.to_state()

        entry.toggle_learning()
        entry.feed("after the toggle")

        assert entry.chain.to_state() == before

    def test_last_accessed_strictly_increases(
        self, store: FlakyBlobStore, clock: FakeClock
    ) -> None:
        """Test that every operation advances last_accessed even on a frozen clock."""
        entry = make_entry(store, clock)
        stamps = [entry.last_accessed]

        entry.feed("a b")
        stamps.append(entry.last_accessed)
        entry.generate()
        stamps.append(entry.last_accessed)
        entry.toggle_learning()
        stamps.append(entry.last_accessed)

        assert all(a < b for a, b in zip(stamps, stamps[1:]))


class TestConversationEntryGenerate:
    """Test phrase generation."""

    def test_empty_chain_message(self, store: FlakyBlobStore, clock: FakeClock) -> None:
        """Test that an empty chain reports nothing learnt."""
        assert make_entry(store, clock).generate() == NOTHING_LEARNT
        assert make_entry(store, clock).generate("hello") == NOTHING_LEARNT

    def test_generates_learnt_phrase(self, store: FlakyBlobStore, clock: FakeClock) -> None:
        """Test that a single learnt line is reproduced."""
        entry = make_entry(store, clock)
        entry.feed("the only thing I know")
        assert entry.generate() == "the only thing I know"

    def test_seed_anchors_on_last_word(self, store: FlakyBlobStore, clock: FakeClock) -> None:
        """Test that earlier seed words are kept as a prefix."""
        entry = make_entry(store, clock)
        entry.feed("hello world")
        assert entry.generate("well hello") == "well hello world"

    def test_unknown_seed_falls_back(self, store: FlakyBlobStore, clock: FakeClock) -> None:
        """Test that an unseen seed falls back to unconstrained generation."""
        entry = make_entry(store, clock)
        entry.feed("hello world")
        assert entry.generate("zebra") == "hello world"

    def test_blank_output_exhausts_after_ten_attempts(
        self, store: FlakyBlobStore, clock: FakeClock
    ) -> None:
        """Test that persistent blank output is a typed failure after 10 attempts."""
        entry = make_entry(store, clock)
        entry.feed("hello world")

        with patch.object(entry.chain, "generate", return_value=[]) as mock_generate:
            with pytest.raises(GenerationExhaustedError):
                entry.generate()

        assert mock_generate.call_count == 10

    def test_blank_output_is_retried(self, store: FlakyBlobStore, clock: FakeClock) -> None:
        """Test that blank results are discarded until a real one appears."""
        entry = make_entry(store, clock)
        entry.feed("hello world")

        with patch.object(
            entry.chain, "generate", side_effect=[[], ["  "], ["hello", "world"]]
        ) as mock_generate:
            assert entry.generate() == "hello world"

        assert mock_generate.call_count == 3

    def test_seed_fallback_within_each_attempt(
        self, store: FlakyBlobStore, clock: FakeClock
    ) -> None:
        """Test that each attempt tries the anchor first, then unconstrained."""
        entry = make_entry(store, clock)
        entry.feed("hello world")

        with (
            patch.object(entry.chain, "generate_from", return_value=[]) as mock_from,
            patch.object(entry.chain, "generate", return_value=[]) as mock_generate,
        ):
            with pytest.raises(GenerationExhaustedError):
                entry.generate("hello")

        assert mock_from.call_count == 10
        assert mock_generate.call_count == 10


class TestConversationEntryToggle:
    """Test the learning toggle."""

    def test_toggle_is_involution(self, store: FlakyBlobStore, clock: FakeClock) -> None:
        """Test that two toggles restore the original state."""
        entry = make_entry(store, clock)

        assert entry.toggle_learning() == LEARNING_DISABLED
        assert entry.is_learning is False
        assert entry.toggle_learning() == LEARNING_ENABLED
        assert entry.is_learning is True


class TestConversationEntryPersistence:
    """Test persist and clear."""

    @pytest.mark.asyncio
    async def test_empty_entry_is_not_written(
        self, store: FlakyBlobStore, clock: FakeClock
    ) -> None:
        """Test that an empty chain never produces a blob."""
        entry = make_entry(store, clock)
        entry.toggle_learning()

        assert await entry.persist() is None
        assert store.blobs == {}
        assert store.calls["put"] == 0

    @pytest.mark.asyncio
    async def test_persist_failure_is_reported(
        self, store: FlakyBlobStore, clock: FakeClock
    ) -> None:
        """Test that exhausting put retries returns a description instead of raising."""
        entry = make_entry(store, clock, chat_id=3)
        entry.feed("something")
        store.fail_next("put", 5)

        error = await entry.persist()

        assert error is not None
        assert "3" in error
        assert store.blobs == {}

    @pytest.mark.asyncio
    async def test_clear_resets_and_deletes(
        self, store: FlakyBlobStore, clock: FakeClock
    ) -> None:
        """Test that clear empties the chain, re-enables learning and deletes the blob."""
        entry = make_entry(store, clock, chat_id=3)
        entry.feed("something")
        entry.toggle_learning()
        await entry.persist()
        assert "3" in store.blobs

        await entry.clear()

        assert entry.chain.is_empty()
        assert entry.is_learning
        assert "3" not in store.blobs

    @pytest.mark.asyncio
    async def test_failed_clear_deletes_on_next_persist(
        self, store: FlakyBlobStore, clock: FakeClock
    ) -> None:
        """Test that a stale blob left by a failed clear is deleted, not overwritten."""
        entry = make_entry(store, clock, chat_id=3)
        entry.feed("something")
        await entry.persist()
        store.fail_next("delete", 5)

        with pytest.raises(RetryExhaustedError):
            await entry.clear()

        assert entry.chain.is_empty()
        assert entry.stale_blob
        assert "3" in store.blobs

        assert await entry.persist() is None
        assert "3" not in store.blobs
        assert not entry.stale_blob
