"""
Retry with exponential backoff.

Used by every outbound call to a generation or speech provider.
"""

import asyncio
import random
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, TypeVar

from shared.errors import RetryableError
from shared.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

IDEMPOTENT_METHODS = frozenset({"GET", "HEAD", "OPTIONS", "PUT", "DELETE"})


def is_retryable_http_status(
    status: int,
    method: str = "GET",
    retry_429: bool = False,
    assume_idempotent: bool = False
) -> bool:
    """
    Decide whether an HTTP failure status is worth retrying.

    5xx responses are retried for idempotent methods only, unless the
    integration declares its calls safe to repeat. 429 is retried unless the
    integration treats it as exhausted quota.

    Args:
        status: HTTP status code
        method: HTTP method of the failed request
        retry_429: Whether 429 counts as transient load
        assume_idempotent: Treat non-idempotent methods as safe to repeat

    Returns:
        True if the request should be retried
    """
    if status == 429:
        return retry_429
    if status in (408, 425):
        return True
    if 500 <= status < 600:
        return assume_idempotent or method.upper() in IDEMPOTENT_METHODS
    return False


def default_retry_predicate(error: BaseException) -> bool:
    """Retry transient errors: RetryableError subclasses, timeouts and connection drops."""
    return isinstance(error, (RetryableError, asyncio.TimeoutError, ConnectionError))


def exponential_delay(base_delay: float, multiplier: float = 2.0, max_delay: float = 30.0) -> Callable[[int], float]:
    """Delay function: base_delay * multiplier ** (attempt - 1), capped."""
    def delay(attempt: int) -> float:
        return min(base_delay * (multiplier ** (attempt - 1)), max_delay)
    return delay


@dataclass
class RetryPolicy:
    """How many times to try, how long to wait, and which errors qualify."""

    max_attempts: int = 3
    base_delay: float = 2.0
    max_delay: float = 30.0
    multiplier: float = 2.0
    jitter: float = 0.5
    retry_on: Callable[[BaseException], bool] = default_retry_predicate
    delay_fn: Optional[Callable[[int], float]] = field(default=None)

    def delay_for(self, attempt: int) -> float:
        """Seconds to sleep after the given (1-based) failed attempt."""
        fn = self.delay_fn or exponential_delay(self.base_delay, self.multiplier, self.max_delay)
        delay = fn(attempt)
        if self.jitter > 0 and delay > 0:
            delay += random.uniform(0, self.jitter)
        return delay


async def retry_async(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    policy: Optional[RetryPolicy] = None,
    operation: Optional[str] = None,
    **kwargs: Any
) -> T:
    """
    Call an async function, retrying per policy.

    Args:
        func: Coroutine function to call
        policy: Retry policy (defaults to RetryPolicy())
        operation: Name used in log lines

    Returns:
        The function's result

    Raises:
        The last error when attempts are exhausted, or the first
        non-retryable error immediately
    """
    policy = policy or RetryPolicy()
    name = operation or getattr(func, "__name__", "operation")
    attempt = 0

    while True:
        attempt += 1
        try:
            return await func(*args, **kwargs)
        except Exception as e:
            if not policy.retry_on(e):
                raise
            if attempt >= policy.max_attempts:
                logger.error(
                    "Retries exhausted",
                    extra={"operation": name, "attempts": attempt, "error": str(e)}
                )
                raise
            delay = policy.delay_for(attempt)
            logger.warning(
                "Retrying after transient failure",
                extra={
                    "operation": name,
                    "attempt": attempt,
                    "max_attempts": policy.max_attempts,
                    "delay": round(delay, 2),
                    "error": str(e),
                }
            )
            await asyncio.sleep(delay)

