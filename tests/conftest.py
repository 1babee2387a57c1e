"""
Pytest configuration and fixtures for chatchain tests.
"""

from __future__ import annotations

import os
import random
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Generator
from unittest.mock import patch

import pytest

from chatchain.config import Settings, clear_settings_cache
from chatchain.conversation import ModelCache
from chatchain.exceptions import BlobStoreError
from chatchain.retry import RetryPolicy
from chatchain.storage import InMemoryBlobStore

# No backoff delays in tests
FAST_POLICY = RetryPolicy(base_delay=0.0, jitter=0.0)


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> datetime:
        self.now += delta
        return self.now


class FlakyBlobStore(InMemoryBlobStore):
    """In-memory store that fails the next N calls of chosen operations."""

    backend = "flaky"

    def __init__(self) -> None:
        super().__init__()
        self.failures: dict[str, int] = {"get": 0, "put": 0, "delete": 0}
        self.calls: dict[str, int] = {"get": 0, "put": 0, "delete": 0}

    def fail_next(self, operation: str, times: int) -> None:
        self.failures[operation] = times

    def _maybe_fail(self, operation: str, key: str) -> None:
        self.calls[operation] += 1
        if self.failures[operation] > 0:
            self.failures[operation] -= 1
            raise BlobStoreError(
                "Simulated outage",
                context={"backend": self.backend, "key": key, "operation": operation},
            )

    async def get(self, key: str) -> bytes | None:
        self._maybe_fail("get", key)
        return await super().get(key)

    async def put(self, key: str, data: bytes) -> None:
        self._maybe_fail("put", key)
        await super().put(key, data)

    async def delete(self, key: str) -> None:
        self._maybe_fail("delete", key)
        await super().delete(key)


@pytest.fixture
def temp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test outputs."""
    return tmp_path


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> FlakyBlobStore:
    return FlakyBlobStore()


@pytest.fixture
def cache(store: FlakyBlobStore, clock: FakeClock) -> ModelCache:
    """A cache over a flaky in-memory store with no retry delays."""
    return ModelCache(
        store,
        idle_threshold=timedelta(minutes=30),
        policy=FAST_POLICY,
        clock=clock,
        rng=random.Random(42),
    )


@pytest.fixture
def mock_env_vars() -> Generator[dict[str, str], None, None]:
    """Provide mock environment variables for testing."""
    env_vars = {
        "TELEGRAM_BOT_TOKEN": "123456:test-fake-telegram-token",
        "BLOB_BACKEND": "memory",
        "IDLE_THRESHOLD_MINUTES": "10",
        "PRUNE_INTERVAL_MINUTES": "5",
        "LOG_LEVEL": "DEBUG",
    }

    with patch.dict(os.environ, env_vars, clear=False):
        clear_settings_cache()
        yield env_vars


@pytest.fixture
def mock_settings(mock_env_vars: dict[str, str]) -> Generator[Settings, None, None]:
    """Provide a Settings instance with mock configuration."""
    clear_settings_cache()
    from chatchain.config import get_settings

    yield get_settings()
    clear_settings_cache()


@pytest.fixture(autouse=True)
def reset_settings_cache() -> Generator[None, None, None]:
    """Automatically reset settings cache before and after each test."""
    clear_settings_cache()
    yield
    clear_settings_cache()
