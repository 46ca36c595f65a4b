"""
Exponential backoff retry shared by the content generator and publisher.

Usage:
    policy = RetryPolicy(max_attempts=3, base_delay=1.0)
    result = await retry_async(lambda: provider.generate(prompt), policy)

    @with_retry(max_attempts=3)
    async def make_api_call():
        ...
"""
import asyncio
import functools
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from .errors import is_retryable

T = TypeVar("T")

SleepFunc = Callable[[float], Awaitable[None]]


@dataclass
class RetryPolicy:
    """Configuration for retry behavior with exponential backoff."""
    max_attempts: int = 3
    base_delay: float = 1.0           # Base delay in seconds
    max_delay: float = 60.0           # Cap for computed backoff
    multiplier: float = 2.0           # Exponential multiplier
    jitter: float = 0.0               # Random jitter factor (0-1)

    def backoff(self, attempt: int) -> float:
        """Delay before retrying after the given zero-based attempt."""
        delay = min(self.base_delay * (self.multiplier ** attempt), self.max_delay)
        if self.jitter:
            delay = delay * (1 + random.uniform(-self.jitter, self.jitter))
        return delay


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    policy: Optional[RetryPolicy] = None,
    *,
    retryable: Callable[[BaseException], bool] = is_retryable,
    delay_for: Optional[Callable[[BaseException, int], Optional[float]]] = None,
    on_retry: Optional[Callable[[BaseException, int, float], None]] = None,
    sleep: SleepFunc = asyncio.sleep,
) -> T:
    """
    Run ``operation`` until it succeeds or the attempts are exhausted.

    Args:
        operation: Zero-argument coroutine factory
        policy: Attempts and backoff shape
        retryable: Predicate deciding whether an error is worth another attempt
        delay_for: Optional override for the wait, e.g. a rate-limit reset time.
            Returning None falls back to exponential backoff.
        on_retry: Called with (error, attempt, delay) before each wait
        sleep: Injectable sleep, replaced in tests

    Returns:
        The operation result

    Raises:
        The last error when it is not retryable or attempts run out
    """
    policy = policy or RetryPolicy()

    for attempt in range(policy.max_attempts):
        try:
            return await operation()
        except Exception as e:
            if not retryable(e) or attempt == policy.max_attempts - 1:
                raise

            delay = delay_for(e, attempt) if delay_for else None
            if delay is None:
                delay = policy.backoff(attempt)
            if on_retry:
                on_retry(e, attempt + 1, delay)
            await sleep(delay)

    raise RuntimeError("retry_async called with max_attempts < 1")


def with_retry(
    max_attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    multiplier: float = 2.0,
    jitter: float = 0.0,
):
    """
    Decorator to add exponential backoff retry to an async function.

    Usage:
        @with_retry(max_attempts=3, base_delay=1.0)
        async def fetch_repo():
            ...
    """
    policy = RetryPolicy(
        max_attempts=max_attempts,
        base_delay=base_delay,
        max_delay=max_delay,
        multiplier=multiplier,
        jitter=jitter,
    )

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            return await retry_async(lambda: func(*args, **kwargs), policy)
        return wrapper
    return decorator
