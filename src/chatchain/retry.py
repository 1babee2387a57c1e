"""
Retry helpers for fallible blob store and API calls.

Wraps tenacity with one project-wide policy: a bounded number of attempts,
exponential backoff doubling from a small base delay, and random jitter on
every wait. Two variants are provided:

- retry_call: blocks the calling thread between attempts
- aretry_call: suspends the calling task between attempts

Both return the first successful result or raise RetryExhaustedError carrying
the last error.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)
from tenacity.wait import wait_base

from chatchain.exceptions import RetryExhaustedError
from chatchain.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

MAX_ATTEMPTS = 5
BASE_DELAY_SECONDS = 0.002  # 2ms, 4ms, 8ms, 16ms before scaling
DELAY_SCALE = 50.0
JITTER_SECONDS = 0.05


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt limit and backoff schedule for retried operations."""

    max_attempts: int = MAX_ATTEMPTS
    base_delay: float = BASE_DELAY_SECONDS
    scale: float = DELAY_SCALE
    jitter: float = JITTER_SECONDS

    def wait_strategy(self) -> wait_base:
        """Exponential backoff plus uniform jitter."""
        backoff = wait_exponential(multiplier=self.base_delay * self.scale, exp_base=2)
        return backoff + wait_random(0, self.jitter)

    def delays(self) -> list[float]:
        """Backoff delays between attempts, without jitter."""
        return [
            self.base_delay * self.scale * 2**n for n in range(self.max_attempts - 1)
        ]


DEFAULT_POLICY = RetryPolicy()


def _log_before_sleep(description: str) -> Callable[[RetryCallState], None]:
    def before_sleep(state: RetryCallState) -> None:
        error = state.outcome.exception() if state.outcome else None
        logger.warning(
            "Retrying after failure",
            operation=description,
            attempt=state.attempt_number,
            sleep_seconds=round(state.next_action.sleep, 4) if state.next_action else None,
            error=str(error),
        )

    return before_sleep


def _exhausted(description: str, policy: RetryPolicy, err: RetryError) -> RetryExhaustedError:
    last_error = err.last_attempt.exception()
    return RetryExhaustedError(
        f"{description} failed after {policy.max_attempts} attempts: {last_error}",
        attempts=err.last_attempt.attempt_number,
        last_error=last_error,
        context={"operation": description},
    )


def retry_call(
    fn: Callable[..., T],
    *args: Any,
    description: str = "operation",
    policy: RetryPolicy = DEFAULT_POLICY,
    **kwargs: Any,
) -> T:
    """Call fn with retries, blocking between attempts.

    Args:
        fn: The fallible callable.
        description: Operation name used in logs and the aggregated error.
        policy: Attempt limit and backoff schedule.

    Returns:
        The first successful result.

    Raises:
        RetryExhaustedError: If every attempt raised.
    """
    retryer = Retrying(
        stop=stop_after_attempt(policy.max_attempts),
        wait=policy.wait_strategy(),
        retry=retry_if_exception_type(Exception),
        before_sleep=_log_before_sleep(description),
    )
    try:
        return retryer(fn, *args, **kwargs)
    except RetryError as e:
        raise _exhausted(description, policy, e) from e.last_attempt.exception()


async def aretry_call(
    fn: Callable[..., Awaitable[T]],
    *args: Any,
    description: str = "operation",
    policy: RetryPolicy = DEFAULT_POLICY,
    **kwargs: Any,
) -> T:
    """Await fn with retries, suspending the task between attempts.

    Args:
        fn: The fallible coroutine function.
        description: Operation name used in logs and the aggregated error.
        policy: Attempt limit and backoff schedule.

    Returns:
        The first successful result.

    Raises:
        RetryExhaustedError: If every attempt raised.
    """
    retryer = AsyncRetrying(
        stop=stop_after_attempt(policy.max_attempts),
        wait=policy.wait_strategy(),
        retry=retry_if_exception_type(Exception),
        before_sleep=_log_before_sleep(description),
    )
    try:
        return await retryer(fn, *args, **kwargs)
    except RetryError as e:
        raise _exhausted(description, policy, e) from e.last_attempt.exception()
