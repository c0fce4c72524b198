"""Retry with exponential backoff."""

import asyncio
import logging
import random
from typing import Awaitable, Callable, Optional, TypeVar

from .circuit_breaker import CircuitOpenError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def compute_delay(attempt: int, base_delay: float, max_delay: float, jitter: bool) -> float:
    """Backoff delay after the given (0-based) failed attempt."""
    delay = min(base_delay * (2 ** attempt), max_delay)
    if jitter:
        delay *= 0.5 + random.random() * 0.5
    return delay


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 16.0,
    jitter: bool = True,
    retry_on: Optional[Callable[[BaseException], bool]] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Call ``fn`` until it succeeds, retrying up to ``max_retries`` times.

    An open circuit breaker is never retried, and ``retry_on`` can veto
    retrying any other error. The last error is re-raised once retrying stops.

    Args:
        fn: Zero-argument coroutine function
        max_retries: Retries after the first attempt
        base_delay: Delay in seconds after the first failure
        max_delay: Upper bound on a single delay
        jitter: Scale each delay by a random factor in [0.5, 1.0]
        retry_on: Predicate deciding whether an error is worth retrying
        sleep: Awaitable sleep function (injectable for tests)

    Returns:
        Result of the first successful call
    """
    attempt = 0
    while True:
        try:
            return await fn()
        except CircuitOpenError:
            raise
        except Exception as e:
            if attempt >= max_retries or (retry_on is not None and not retry_on(e)):
                raise
            delay = compute_delay(attempt, base_delay, max_delay, jitter)
            logger.debug(f"Attempt {attempt + 1} failed ({e}); retrying in {delay:.2f}s")
            attempt += 1
            await sleep(delay)
