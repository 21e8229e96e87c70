"""
Circuit breaker.

Per-integration breaker that opens when the error rate over a rolling window
crosses a threshold, fails fast while open, and lets trial calls through after
a cool-down. State changes and failures are emitted to listeners.
"""

import asyncio
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Tuple, TypeVar

from shared.errors import CircuitOpenError, TransientProviderError
from shared.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

BreakerListener = Callable[[str, "CircuitBreaker", Dict[str, Any]], None]


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


# Event emitted on entering each state
STATE_EVENTS = {
    CircuitState.OPEN: "open",
    CircuitState.HALF_OPEN: "half_open",
    CircuitState.CLOSED: "close",
}


@dataclass
class CircuitBreakerConfig:
    error_threshold_percentage: float = 50.0
    volume_threshold: int = 5  # Minimum calls in the window before the rate counts
    rolling_window: float = 10.0
    reset_timeout: float = 30.0
    call_timeout: Optional[float] = 10.0
    half_open_max_calls: int = 1


class CircuitBreaker:
    """
    Wrap calls to one external service.

    Events: "success", "failure", "timeout", "reject", "open", "half_open", "close".
    """

    def __init__(
        self,
        name: str,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._window: Deque[Tuple[float, bool]] = deque()
        self._opened_at: Optional[float] = None
        self._half_open_calls = 0
        self._listeners: List[BreakerListener] = []
        self._lock = asyncio.Lock()

        self._successes = 0
        self._failures = 0
        self._timeouts = 0
        self._rejects = 0

    @property
    def state(self) -> CircuitState:
        return self._state

    def add_listener(self, listener: BreakerListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: BreakerListener) -> None:
        self._listeners.remove(listener)

    def _emit(self, event: str, **payload: Any) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, self, payload)
            except Exception as e:
                logger.error(
                    "Circuit breaker listener failed",
                    exc_info=e,
                    extra={"breaker": self.name, "event": event}
                )

    def _transition_to(self, new_state: CircuitState) -> None:
        old_state = self._state
        if old_state == new_state:
            return
        self._state = new_state
        if new_state == CircuitState.OPEN:
            self._opened_at = self._clock()
        elif new_state == CircuitState.HALF_OPEN:
            self._half_open_calls = 0
        elif new_state == CircuitState.CLOSED:
            self._window.clear()
            self._opened_at = None
            self._half_open_calls = 0
        logger.info(
            "Circuit state changed",
            extra={"breaker": self.name, "from_state": old_state.value, "to_state": new_state.value}
        )
        self._emit(STATE_EVENTS[new_state], previous=old_state.value)

    def _prune(self, now: float) -> None:
        horizon = now - self.config.rolling_window
        while self._window and self._window[0][0] < horizon:
            self._window.popleft()

    def error_rate(self) -> float:
        """Failure percentage over the rolling window."""
        self._prune(self._clock())
        if not self._window:
            return 0.0
        failures = sum(1 for _, ok in self._window if not ok)
        return failures / len(self._window) * 100

    async def _admit(self) -> None:
        async with self._lock:
            if self._state == CircuitState.OPEN:
                elapsed = self._clock() - (self._opened_at or 0.0)
                if elapsed >= self.config.reset_timeout:
                    self._transition_to(CircuitState.HALF_OPEN)
                else:
                    self._rejects += 1
                    self._emit("reject")
                    raise CircuitOpenError(self.name, retry_after=self.config.reset_timeout - elapsed)
            if self._state == CircuitState.HALF_OPEN:
                if self._half_open_calls >= self.config.half_open_max_calls:
                    self._rejects += 1
                    self._emit("reject")
                    raise CircuitOpenError(self.name)
                self._half_open_calls += 1

    async def _record(self, ok: bool, error: Optional[BaseException] = None) -> None:
        async with self._lock:
            now = self._clock()
            if ok:
                self._successes += 1
                self._emit("success")
            else:
                self._failures += 1
                self._emit("failure", error=str(error) if error else None)

            if self._state == CircuitState.HALF_OPEN:
                self._transition_to(CircuitState.CLOSED if ok else CircuitState.OPEN)
                return

            self._window.append((now, ok))
            self._prune(now)
            if ok or self._state != CircuitState.CLOSED:
                return
            if len(self._window) >= self.config.volume_threshold:
                if self.error_rate() >= self.config.error_threshold_percentage:
                    self._transition_to(CircuitState.OPEN)

    async def call(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """
        Call through the breaker.

        Raises:
            CircuitOpenError: If the breaker rejects the call
            TransientProviderError: If the call exceeds call_timeout
        """
        await self._admit()
        try:
            if self.config.call_timeout:
                result = await asyncio.wait_for(func(*args, **kwargs), timeout=self.config.call_timeout)
            else:
                result = await func(*args, **kwargs)
        except asyncio.TimeoutError as e:
            self._timeouts += 1
            self._emit("timeout", timeout=self.config.call_timeout)
            await self._record(False, e)
            raise TransientProviderError(
                f"{self.name} call timed out after {self.config.call_timeout}s",
                provider=self.name,
                code="PROVIDER_TIMEOUT"
            ) from e
        except asyncio.CancelledError:
            self._release_trial()
            raise
        except Exception as e:
            await self._record(False, e)
            raise
        await self._record(True)
        return result

    def _release_trial(self) -> None:
        """A cancelled call gives its half-open slot back without counting as success or failure."""
        if self._state == CircuitState.HALF_OPEN and self._half_open_calls > 0:
            self._half_open_calls -= 1

    def stats(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "state": self._state.value,
            "successes": self._successes,
            "failures": self._failures,
            "timeouts": self._timeouts,
            "rejects": self._rejects,
            "error_rate": round(self.error_rate(), 2),
        }
