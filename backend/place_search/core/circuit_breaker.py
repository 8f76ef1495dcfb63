"""
Circuit breaker for the language model and places provider.

- Opens when the error rate over a sliding window crosses the threshold
- While open, calls fail fast with CircuitBreakerOpenError (never retried)
- After open_duration_seconds one trial call is let through (half-open);
  its outcome closes or re-opens the circuit
"""
import time
from collections import deque
from enum import Enum
from threading import Lock
from typing import Any, Callable, Deque, Optional, Tuple

from place_search.core.logging import get_logger
from place_search.core.metrics import record_circuit_state

logger = get_logger(__name__)


class CircuitState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


_STATE_GAUGE_VALUES = {
    CircuitState.CLOSED: 0,
    CircuitState.HALF_OPEN: 1,
    CircuitState.OPEN: 2,
}


class CircuitBreakerOpenError(Exception):
    """Raised when the circuit is open and the call is rejected."""
    pass


class CircuitBreaker:
    """
    Error-rate circuit breaker.

    Configuration:
    - failure_threshold: error rate in [0, 1] that opens the circuit
    - time_window_seconds: sliding window the error rate is computed over
    - open_duration_seconds: how long to reject calls before probing
    - min_requests_for_threshold: calls needed in the window before opening
    """

    def __init__(
        self,
        name: str,
        failure_threshold: float = 0.5,
        time_window_seconds: float = 60,
        open_duration_seconds: float = 30,
        min_requests_for_threshold: int = 10,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.time_window_seconds = time_window_seconds
        self.open_duration_seconds = open_duration_seconds
        self.min_requests_for_threshold = min_requests_for_threshold
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._lock = Lock()
        self._request_history: Deque[Tuple[float, bool]] = deque()
        self._opened_at: Optional[float] = None
        self._trial_in_flight = False
        record_circuit_state(self.name, _STATE_GAUGE_VALUES[self._state])

    @property
    def state(self) -> CircuitState:
        with self._lock:
            self._update_state()
            return self._state

    def _set_state(self, state: CircuitState) -> None:
        self._state = state
        record_circuit_state(self.name, _STATE_GAUGE_VALUES[state])

    def _update_state(self) -> None:
        """Expire old history and move OPEN -> HALF_OPEN when due. Caller holds the lock."""
        now = self._clock()

        cutoff_time = now - self.time_window_seconds
        while self._request_history and self._request_history[0][0] < cutoff_time:
            self._request_history.popleft()

        if self._state == CircuitState.OPEN:
            if self._opened_at is not None and (now - self._opened_at) >= self.open_duration_seconds:
                self._set_state(CircuitState.HALF_OPEN)
                self._trial_in_flight = False
                logger.info("circuit_breaker_half_open", circuit_breaker=self.name)

        elif self._state == CircuitState.CLOSED:
            total = len(self._request_history)
            if total >= self.min_requests_for_threshold:
                failures = sum(1 for _, success in self._request_history if not success)
                error_rate = failures / total
                if error_rate >= self.failure_threshold:
                    self._open(now)
                    logger.warning(
                        "circuit_breaker_opened",
                        circuit_breaker=self.name,
                        error_rate=error_rate,
                        failures=failures,
                        total=total,
                    )

    def _open(self, now: float) -> None:
        self._set_state(CircuitState.OPEN)
        self._opened_at = now
        self._request_history.clear()

    def _before_call(self) -> None:
        with self._lock:
            self._update_state()
            if self._state == CircuitState.OPEN:
                raise CircuitBreakerOpenError(
                    f"Circuit breaker {self.name} is OPEN. Service unavailable."
                )
            if self._state == CircuitState.HALF_OPEN:
                if self._trial_in_flight:
                    raise CircuitBreakerOpenError(
                        f"Circuit breaker {self.name} is HALF_OPEN. Trial call already in flight."
                    )
                self._trial_in_flight = True

    def _record_result(self, success: bool) -> None:
        with self._lock:
            now = self._clock()
            if self._state == CircuitState.HALF_OPEN:
                self._trial_in_flight = False
                if success:
                    self._set_state(CircuitState.CLOSED)
                    self._opened_at = None
                    logger.info("circuit_breaker_closed", circuit_breaker=self.name)
                else:
                    self._open(now)
                    logger.warning("circuit_breaker_reopened", circuit_breaker=self.name)
            else:
                self._request_history.append((now, success))
                self._update_state()

    def call(self, func: Callable, *args, **kwargs) -> Any:
        """Execute a sync function with circuit breaker protection."""
        self._before_call()
        try:
            result = func(*args, **kwargs)
        except Exception:
            self._record_result(False)
            raise
        self._record_result(True)
        return result

    async def call_async(self, func: Callable, *args, **kwargs) -> Any:
        """Execute an async function with circuit breaker protection."""
        self._before_call()
        try:
            result = await func(*args, **kwargs)
        except BaseException:
            # cancellation (e.g. wait_for timeout) counts as a failed call
            self._record_result(False)
            raise
        self._record_result(True)
        return result

    def get_metrics(self) -> dict:
        """Snapshot for the health endpoint."""
        with self._lock:
            self._update_state()
            failures = sum(1 for _, success in self._request_history if not success)
            total = len(self._request_history)
            return {
                "name": self.name,
                "state": self._state.value,
                "recent_requests": total,
                "recent_failures": failures,
                "error_rate": failures / total if total > 0 else 0.0,
                "opened_at": self._opened_at,
            }
