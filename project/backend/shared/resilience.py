"""
Integration guards.

One guard per external service composes the rate limiter, the circuit
breaker and retry with backoff into a single call path:
retry( limiter( breaker( call ) ) ).
"""

from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from shared.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from shared.config import settings
from shared.logging import get_logger
from shared.rate_limiter import TokenBucketLimiter
from shared.retry import RetryPolicy, retry_async

logger = get_logger(__name__)

T = TypeVar("T")

SPEECH = "openai"
VIDEO = "fal-video"
STORAGE = "artifact-store"


class IntegrationGuard:
    """Limiter, breaker and retry policy shared by every call to one service."""

    def __init__(
        self,
        name: str,
        limiter: TokenBucketLimiter,
        breaker: CircuitBreaker,
        retry_policy: RetryPolicy
    ):
        self.name = name
        self.limiter = limiter
        self.breaker = breaker
        self.retry_policy = retry_policy

    async def call(
        self,
        func: Callable[..., Awaitable[T]],
        *args: Any,
        operation: Optional[str] = None,
        **kwargs: Any
    ) -> T:
        """
        Call an external service through the guard.

        Each retry attempt queues on the limiter again and is counted by the
        breaker separately.
        """
        async def attempt() -> T:
            return await self.limiter.schedule(self.breaker.call, func, *args, **kwargs)

        return await retry_async(attempt, policy=self.retry_policy, operation=operation or self.name)

    def stats(self) -> Dict[str, Any]:
        return {
            "limiter": self.limiter.stats(),
            "breaker": self.breaker.stats(),
        }


def log_breaker_event(event: str, breaker: CircuitBreaker, payload: Dict[str, Any]) -> None:
    """Default listener: breaker state changes go to the log."""
    if event in ("open", "half_open", "close"):
        logger.warning(
            "Circuit breaker event",
            extra={"breaker": breaker.name, "event": event, **payload}
        )
    elif event == "failure":
        logger.debug("Circuit breaker recorded failure", extra={"breaker": breaker.name, **payload})


def _breaker_config(call_timeout: float) -> CircuitBreakerConfig:
    return CircuitBreakerConfig(
        error_threshold_percentage=settings.breaker_error_threshold_percentage,
        volume_threshold=settings.breaker_volume_threshold,
        rolling_window=settings.breaker_rolling_window_seconds,
        reset_timeout=settings.breaker_reset_timeout_seconds,
        call_timeout=call_timeout,
    )


def _retry_policy() -> RetryPolicy:
    return RetryPolicy(
        max_attempts=settings.retry_max_attempts,
        base_delay=settings.retry_base_delay,
        max_delay=settings.retry_max_delay,
    )


def build_guard(name: str) -> IntegrationGuard:
    """
    Build a guard for a known integration from settings.

    Args:
        name: One of SPEECH, VIDEO, STORAGE

    Returns:
        New IntegrationGuard
    """
    if name == SPEECH:
        limiter = TokenBucketLimiter(
            name,
            max_concurrent=settings.speech_max_concurrent,
            min_interval=settings.speech_min_interval,
            reservoir=settings.speech_reservoir,
            refresh_interval=settings.speech_refresh_interval,
        )
        breaker = CircuitBreaker(name, _breaker_config(settings.speech_timeout_seconds))
    elif name == VIDEO:
        limiter = TokenBucketLimiter(
            name,
            max_concurrent=settings.video_max_concurrent,
            min_interval=settings.video_min_interval,
            reservoir=settings.video_reservoir,
            refresh_interval=settings.video_refresh_interval,
        )
        breaker = CircuitBreaker(name, _breaker_config(settings.video_timeout_seconds))
    elif name == STORAGE:
        limiter = TokenBucketLimiter(name, max_concurrent=4, min_interval=0.0, reservoir=None)
        breaker = CircuitBreaker(name, _breaker_config(settings.download_timeout_seconds))
    else:
        raise ValueError(f"Unknown integration: {name}")
    breaker.add_listener(log_breaker_event)
    return IntegrationGuard(name, limiter, breaker, _retry_policy())


class GuardRegistry:
    """Lazily built guards, one per integration, shared by all jobs in a process."""

    def __init__(self, factory: Callable[[str], IntegrationGuard] = build_guard):
        self._factory = factory
        self._guards: Dict[str, IntegrationGuard] = {}

    def get(self, name: str) -> IntegrationGuard:
        if name not in self._guards:
            self._guards[name] = self._factory(name)
        return self._guards[name]

    def stats(self) -> Dict[str, Any]:
        return {name: guard.stats() for name, guard in self._guards.items()}


guard_registry = GuardRegistry()


def get_guard(name: str) -> IntegrationGuard:
    """Process-wide guard for an integration."""
    return guard_registry.get(name)
