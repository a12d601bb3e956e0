"""Circuit breakers for venue calls.

One breaker per external dependency (quote API, swap submission, transaction
monitoring). A breaker counts failures inside a sliding window, opens when the
threshold is reached and rejects calls without touching the dependency until
its timeout elapses. The next call after the timeout is let through in
HALF_OPEN; enough successes close the breaker again, a single failure reopens
it.
"""

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, TypeVar

from hoparb.errors import HoparbError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    """Breaker state."""
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class CircuitBreakerError(HoparbError):
    """Raised when a call is rejected by an open breaker."""

    def __init__(self, name: str, state: CircuitState, retry_after: float = 0.0):
        super().__init__(
            f"Circuit breaker '{name}' is {state.value}, retry in {retry_after:.1f}s",
            code="CIRCUIT_OPEN",
            details={"breaker": name, "state": state.value, "retry_after": retry_after},
        )
        self.breaker_name = name
        self.state = state
        self.retry_after = retry_after


@dataclass(frozen=True)
class CircuitBreakerConfig:
    """Thresholds for a breaker. Times are in seconds."""
    failure_threshold: int = 5
    success_threshold: int = 3
    timeout: float = 30.0
    monitoring_window: float = 60.0


class CircuitBreaker:
    """Failure gate around a single external dependency.

    Counter updates run under a plain lock that is never held across an
    await, so each call outcome is applied in one critical section.
    """

    def __init__(
        self,
        name: str,
        config: Optional[CircuitBreakerConfig] = None,
        *,
        ignored_exceptions: tuple[type[BaseException], ...] = (),
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize breaker.

        Args:
            name: Dependency name used in logs and status
            config: Thresholds (defaults to CircuitBreakerConfig())
            ignored_exceptions: Exception types that pass through uncounted
            clock: Monotonic time source in seconds
        """
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._ignored = ignored_exceptions
        self._clock = clock
        self._lock = threading.Lock()

        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time: Optional[float] = None
        self.next_attempt_time: Optional[float] = None
        self._failures: deque[float] = deque()

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run operation through the breaker.

        Args:
            operation: Zero-argument callable returning an awaitable

        Returns:
            Whatever the operation returns

        Raises:
            CircuitBreakerError: Breaker is open and the timeout has not elapsed
        """
        self._before_call()
        try:
            result = await operation()
        except self._ignored:
            raise
        except Exception as e:
            self._on_failure(e)
            raise
        self._on_success()
        return result

    def can_execute(self) -> bool:
        """Whether a call would be let through right now. No side effects."""
        with self._lock:
            if self.state != CircuitState.OPEN:
                return True
            return self._clock() >= (self.next_attempt_time or 0.0)

    def force_state(self, state: CircuitState) -> None:
        """Operator override."""
        with self._lock:
            logger.warning(f"Circuit breaker '{self.name}' forced to {state.value}")
            self._transition(state)

    def reset(self) -> None:
        """Force CLOSED and clear failure history."""
        self.force_state(CircuitState.CLOSED)

    def get_status(self) -> dict[str, Any]:
        """Snapshot for health endpoints."""
        with self._lock:
            now = self._clock()
            window_start = now - self.config.monitoring_window
            until_next = 0.0
            if self.state == CircuitState.OPEN and self.next_attempt_time is not None:
                until_next = max(0.0, self.next_attempt_time - now)
            return {
                "name": self.name,
                "state": self.state.value,
                "failure_count": self.failure_count,
                "success_count": self.success_count,
                "failures_in_window": sum(1 for t in self._failures if t >= window_start),
                "next_attempt_time": self.next_attempt_time,
                "last_failure_time": self.last_failure_time,
                "time_until_next_attempt": until_next,
            }

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def _before_call(self) -> None:
        with self._lock:
            if self.state != CircuitState.OPEN:
                return
            now = self._clock()
            if self.next_attempt_time is not None and now < self.next_attempt_time:
                raise CircuitBreakerError(self.name, self.state, self.next_attempt_time - now)
            self._transition(CircuitState.HALF_OPEN)

    def _on_success(self) -> None:
        with self._lock:
            if self.state == CircuitState.HALF_OPEN:
                self.success_count += 1
                if self.success_count >= self.config.success_threshold:
                    self._transition(CircuitState.CLOSED)
            elif self.state == CircuitState.CLOSED:
                self.success_count += 1
                self.failure_count = 0
                self._failures.clear()

    def _on_failure(self, error: Exception) -> None:
        with self._lock:
            now = self._clock()
            self.last_failure_time = now
            self._failures.append(now)
            window_start = now - self.config.monitoring_window
            while self._failures and self._failures[0] < window_start:
                self._failures.popleft()
            self.failure_count = len(self._failures)

            logger.debug(f"Circuit breaker '{self.name}' recorded failure: {error}")

            if self.state == CircuitState.HALF_OPEN:
                self._transition(CircuitState.OPEN)
            elif self.state == CircuitState.CLOSED and self.failure_count >= self.config.failure_threshold:
                self._transition(CircuitState.OPEN)

    def _transition(self, state: CircuitState) -> None:
        """Apply a transition. Caller holds the lock."""
        previous = self.state
        self.state = state
        self.success_count = 0

        if state == CircuitState.OPEN:
            self.next_attempt_time = self._clock() + self.config.timeout
            logger.warning(
                f"Circuit breaker '{self.name}' OPEN after {self.failure_count} failures, "
                f"retry in {self.config.timeout}s"
            )
        elif state == CircuitState.HALF_OPEN:
            logger.info(f"Circuit breaker '{self.name}' HALF_OPEN, probing dependency")
        else:
            self.failure_count = 0
            self._failures.clear()
            self.next_attempt_time = None
            if previous != CircuitState.CLOSED:
                logger.info(f"Circuit breaker '{self.name}' CLOSED")


class CircuitBreakerRegistry:
    """Named breakers with bulk reset and health summary."""

    def __init__(self):
        self._breakers: dict[str, CircuitBreaker] = {}

    def register(self, breaker: CircuitBreaker) -> CircuitBreaker:
        self._breakers[breaker.name] = breaker
        return breaker

    def get(self, name: str) -> Optional[CircuitBreaker]:
        return self._breakers.get(name)

    def get_or_create(self, name: str, config: Optional[CircuitBreakerConfig] = None, **kwargs) -> CircuitBreaker:
        breaker = self._breakers.get(name)
        if breaker is None:
            breaker = self.register(CircuitBreaker(name, config, **kwargs))
        return breaker

    def get_all_status(self) -> dict[str, dict[str, Any]]:
        return {name: breaker.get_status() for name, breaker in self._breakers.items()}

    def reset_all(self) -> None:
        for breaker in self._breakers.values():
            breaker.reset()
        logger.info(f"Reset {len(self._breakers)} circuit breakers")

    def get_health_summary(self) -> dict[str, Any]:
        """Count breakers per state.

        healthy is false as soon as any breaker is open; critical means at
        least half of the breakers are open.
        """
        states = [b.state for b in self._breakers.values()]
        total = len(states)
        open_count = states.count(CircuitState.OPEN)
        half_open = states.count(CircuitState.HALF_OPEN)
        return {
            "total": total,
            "closed": states.count(CircuitState.CLOSED),
            "half_open": half_open,
            "open": open_count,
            "healthy": open_count == 0,
            "degraded": open_count > 0 or half_open > 0,
            "critical": open_count > 0 and open_count >= total / 2,
        }


# ======================
# Presets
# ======================

VENUE_API_BREAKER = "venue-api"
QUOTE_BREAKER = "quote"
SWAP_BREAKER = "swap-execution"
MONITOR_BREAKER = "transaction-monitor"

BREAKER_PRESETS: dict[str, CircuitBreakerConfig] = {
    VENUE_API_BREAKER: CircuitBreakerConfig(failure_threshold=5, success_threshold=3, timeout=30.0, monitoring_window=60.0),
    QUOTE_BREAKER: CircuitBreakerConfig(failure_threshold=3, success_threshold=2, timeout=15.0, monitoring_window=30.0),
    SWAP_BREAKER: CircuitBreakerConfig(failure_threshold=2, success_threshold=3, timeout=60.0, monitoring_window=120.0),
    MONITOR_BREAKER: CircuitBreakerConfig(failure_threshold=4, success_threshold=2, timeout=20.0, monitoring_window=45.0),
}

breaker_registry = CircuitBreakerRegistry()


def create_preset_breakers(
    registry: Optional[CircuitBreakerRegistry] = None,
    **kwargs,
) -> dict[str, CircuitBreaker]:
    """Register the standard venue breakers.

    Args:
        registry: Target registry (module default when None)
        **kwargs: Forwarded to CircuitBreaker (ignored_exceptions, clock)

    Returns:
        Mapping of preset name to breaker
    """
    registry = registry or breaker_registry
    return {
        name: registry.get_or_create(name, config, **kwargs)
        for name, config in BREAKER_PRESETS.items()
    }
