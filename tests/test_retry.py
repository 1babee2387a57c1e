"""
Tests for the retry helpers.
"""

from __future__ import annotations

import pytest

from chatchain.exceptions import BlobStoreError, RetryExhaustedError
from chatchain.retry import MAX_ATTEMPTS, RetryPolicy, aretry_call, retry_call

FAST = RetryPolicy(base_delay=0.0, jitter=0.0)


class Flaky:
    """Callable that fails a fixed number of times before succeeding."""

    def __init__(self, failures: int, result: str = "ok") -> None:
        self.failures = failures
        self.result = result
        self.calls = 0

    def __call__(self, *args: object) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise BlobStoreError(f"failure {self.calls}")
        return self.result

    async def acall(self, *args: object) -> str:
        return self(*args)


class TestRetryPolicy:
    """Test the backoff schedule."""

    def test_default_attempts(self) -> None:
        """Test that five attempts are made by default."""
        assert RetryPolicy().max_attempts == MAX_ATTEMPTS == 5

    def test_delays_double(self) -> None:
        """Test that the base schedule doubles 2ms, 4ms, 8ms, 16ms before scaling."""
        policy = RetryPolicy(scale=1.0, jitter=0.0)
        assert policy.delays() == pytest.approx([0.002, 0.004, 0.008, 0.016])

    def test_scale_applies_to_every_delay(self) -> None:
        """Test that the scale factor multiplies the whole schedule."""
        policy = RetryPolicy(scale=50.0)
        assert policy.delays() == pytest.approx([0.1, 0.2, 0.4, 0.8])


class TestRetryCall:
    """Test the blocking variant."""

    def test_returns_first_success(self) -> None:
        """Test that the first successful result is returned."""
        fn = Flaky(failures=2)
        assert retry_call(fn, "key", policy=FAST) == "ok"
        assert fn.calls == 3

    def test_no_retry_on_success(self) -> None:
        """Test that a succeeding call is made exactly once."""
        fn = Flaky(failures=0)
        retry_call(fn, policy=FAST)
        assert fn.calls == 1

    def test_exhaustion_reports_last_error(self) -> None:
        """Test that exhausting attempts raises an aggregated error."""
        fn = Flaky(failures=10)

        with pytest.raises(RetryExhaustedError) as exc_info:
            retry_call(fn, policy=FAST, description="put 42")

        assert fn.calls == 5
        assert exc_info.value.attempts == 5
        assert isinstance(exc_info.value.last_error, BlobStoreError)
        assert "failure 5" in str(exc_info.value)
        assert "put 42" in str(exc_info.value)

    def test_custom_attempt_limit(self) -> None:
        """Test that a policy can lower the attempt limit."""
        fn = Flaky(failures=10)
        with pytest.raises(RetryExhaustedError):
            retry_call(fn, policy=RetryPolicy(max_attempts=2, base_delay=0.0, jitter=0.0))
        assert fn.calls == 2


class TestAsyncRetryCall:
    """Test the non-blocking variant."""

    @pytest.mark.asyncio
    async def test_returns_first_success(self) -> None:
        """Test that the coroutine is retried until it succeeds."""
        fn = Flaky(failures=4)
        assert await aretry_call(fn.acall, "key", policy=FAST) == "ok"
        assert fn.calls == 5

    @pytest.mark.asyncio
    async def test_exhaustion(self) -> None:
        """Test that five failures exhaust the retries."""
        fn = Flaky(failures=5)

        with pytest.raises(RetryExhaustedError) as exc_info:
            await aretry_call(fn.acall, policy=FAST)

        assert fn.calls == 5
        assert exc_info.value.attempts == 5
        assert isinstance(exc_info.value.__cause__, BlobStoreError)

    @pytest.mark.asyncio
    async def test_real_delays_are_short(self) -> None:
        """Test that a small real schedule completes quickly."""
        fn = Flaky(failures=1)
        policy = RetryPolicy(base_delay=0.001, scale=1.0, jitter=0.001)
        assert await aretry_call(fn.acall, policy=policy) == "ok"
