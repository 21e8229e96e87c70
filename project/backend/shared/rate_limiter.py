"""
Outbound rate limiting.

Token-bucket (reservoir) limiter for calls to a third-party service. Excess
calls wait in FIFO order instead of being rejected.
"""

import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from shared.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class TokenBucketLimiter:
    """
    Limit concurrency, call spacing and per-interval volume for one service.

    Args:
        name: Service name used in logs and stats
        max_concurrent: Calls allowed in flight at once
        min_interval: Minimum seconds between two call starts
        reservoir: Calls allowed per refresh interval (None = unlimited)
        refresh_interval: Seconds after which the reservoir is refilled
        clock: Monotonic time source
    """

    def __init__(
        self,
        name: str,
        max_concurrent: int = 1,
        min_interval: float = 0.0,
        reservoir: Optional[int] = None,
        refresh_interval: float = 60.0,
        clock: Callable[[], float] = time.monotonic
    ):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        if reservoir is not None and reservoir < 1:
            raise ValueError("reservoir must be at least 1")
        self.name = name
        self.max_concurrent = max_concurrent
        self.min_interval = min_interval
        self.reservoir = reservoir
        self.refresh_interval = refresh_interval
        self._clock = clock

        self._tokens = reservoir
        self._last_refill = clock()
        self._last_start: Optional[float] = None
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._order = asyncio.Lock()

        self._running = 0
        self._queued = 0
        self._done = 0

    def _refill(self) -> None:
        if self.reservoir is None:
            return
        now = self._clock()
        elapsed = now - self._last_refill
        if elapsed >= self.refresh_interval:
            periods = int(elapsed // self.refresh_interval)
            self._last_refill += periods * self.refresh_interval
            self._tokens = self.reservoir

    async def _wait_for_token(self) -> None:
        if self.reservoir is None:
            return
        while True:
            self._refill()
            if self._tokens > 0:
                return
            wait = self._last_refill + self.refresh_interval - self._clock()
            logger.debug(
                "Reservoir empty, waiting for refill",
                extra={"limiter": self.name, "wait": round(wait, 3)}
            )
            await asyncio.sleep(max(wait, 0.001))

    async def _wait_for_spacing(self) -> None:
        if self._last_start is None or self.min_interval <= 0:
            return
        wait = self._last_start + self.min_interval - self._clock()
        if wait > 0:
            await asyncio.sleep(wait)

    async def acquire(self) -> None:
        """Wait until a call may start."""
        self._queued += 1
        try:
            await self._semaphore.acquire()
            try:
                # One waiter at a time consumes tokens, in arrival order
                async with self._order:
                    await self._wait_for_token()
                    await self._wait_for_spacing()
                    if self._tokens is not None:
                        self._tokens -= 1
                    self._last_start = self._clock()
            except BaseException:
                self._semaphore.release()
                raise
        finally:
            self._queued -= 1
        self._running += 1

    def release(self) -> None:
        """Mark a call started with acquire() as finished."""
        self._running -= 1
        self._done += 1
        self._semaphore.release()

    async def schedule(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Run a coroutine function once the limiter admits it."""
        await self.acquire()
        try:
            return await func(*args, **kwargs)
        finally:
            self.release()

    async def __aenter__(self) -> "TokenBucketLimiter":
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.release()

    def stats(self) -> Dict[str, Any]:
        """Running, queued and finished call counts."""
        self._refill()
        return {
            "name": self.name,
            "running": self._running,
            "queued": self._queued,
            "done": self._done,
            "reservoir": self._tokens,
        }
