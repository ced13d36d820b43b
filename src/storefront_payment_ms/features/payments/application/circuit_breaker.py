"""Circuit breaker guarding calls to the payment gateway."""

import threading
import time
from enum import Enum
from typing import Any, Callable

import structlog

from storefront_payment_ms.shared.core.settings import get_settings

logger = structlog.get_logger(__name__)


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing, reject requests
    HALF_OPEN = "half_open"  # Testing recovery with a single trial call


class CircuitBreaker:
    """
    Consecutive-failure circuit breaker for one downstream dependency.

    States:
    - CLOSED: calls pass, failures are counted
    - OPEN: calls are refused until the recovery timeout elapses
    - HALF_OPEN: exactly one trial call is let through; its result closes
      or re-opens the circuit

    All state changes happen under a lock so the breaker can be shared by
    concurrent request handlers and the reconciliation task.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._clock = clock
        self._lock = threading.Lock()

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: float | None = None
        self._next_attempt_time = 0.0
        self._trial_in_flight = False

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return self._state

    @property
    def failure_count(self) -> int:
        with self._lock:
            return self._failure_count

    def allow_request(self) -> bool:
        """
        Decide whether a call may proceed.

        An OPEN breaker whose recovery timeout has elapsed moves to HALF_OPEN
        and admits the caller as the single trial.
        """
        with self._lock:
            if self._state == CircuitState.CLOSED:
                return True

            if self._state == CircuitState.OPEN:
                if self._clock() < self._next_attempt_time:
                    return False
                self._state = CircuitState.HALF_OPEN
                self._trial_in_flight = True
                logger.info("circuit_half_open", breaker=self.name)
                return True

            # HALF_OPEN
            if self._trial_in_flight:
                return False
            self._trial_in_flight = True
            return True

    def record_success(self) -> None:
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                logger.info("circuit_closed", breaker=self.name)
            self._state = CircuitState.CLOSED
            self._failure_count = 0
            self._trial_in_flight = False

    def record_failure(self) -> None:
        with self._lock:
            now = self._clock()
            self._last_failure_time = now

            if self._state == CircuitState.HALF_OPEN:
                self._failure_count = self.failure_threshold
                self._open(now)
                return

            self._failure_count += 1
            if self._state == CircuitState.CLOSED and self._failure_count >= self.failure_threshold:
                self._open(now)

    def release_trial(self) -> None:
        """Give back a HALF_OPEN trial slot whose call never completed."""
        with self._lock:
            self._trial_in_flight = False

    def _open(self, now: float) -> None:
        # Caller holds the lock
        self._state = CircuitState.OPEN
        self._next_attempt_time = now + self.recovery_timeout
        self._trial_in_flight = False
        logger.warning(
            "circuit_opened",
            breaker=self.name,
            failure_count=self._failure_count,
            recovery_timeout=self.recovery_timeout,
        )

    def retry_after(self) -> float | None:
        """Seconds until an OPEN breaker admits a trial call."""
        with self._lock:
            if self._state != CircuitState.OPEN:
                return None
            return max(0.0, self._next_attempt_time - self._clock())

    def snapshot(self) -> dict[str, Any]:
        """Current breaker state for diagnostics."""
        with self._lock:
            return {
                "name": self.name,
                "state": self._state.value,
                "failure_count": self._failure_count,
                "failure_threshold": self.failure_threshold,
                "recovery_timeout": self.recovery_timeout,
                "retry_after": (
                    max(0.0, self._next_attempt_time - self._clock())
                    if self._state == CircuitState.OPEN
                    else None
                ),
            }


class CircuitBreakerRegistry:
    """Creates one breaker per dependency key on first use."""

    def __init__(
        self,
        failure_threshold: int | None = None,
        recovery_timeout: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        settings = get_settings()
        self.failure_threshold = failure_threshold or settings.breaker_failure_threshold
        self.recovery_timeout = recovery_timeout or settings.breaker_recovery_timeout_seconds
        self._clock = clock
        self._breakers: dict[str, CircuitBreaker] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> CircuitBreaker:
        with self._lock:
            breaker = self._breakers.get(key)
            if breaker is None:
                breaker = CircuitBreaker(
                    key,
                    failure_threshold=self.failure_threshold,
                    recovery_timeout=self.recovery_timeout,
                    clock=self._clock,
                )
                self._breakers[key] = breaker
            return breaker

    def snapshot(self) -> list[dict[str, Any]]:
        with self._lock:
            breakers = list(self._breakers.values())
        return [b.snapshot() for b in breakers]
