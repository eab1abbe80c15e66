"""Circuit breaker for external APIs."""

import logging
import time
from enum import Enum
from typing import Callable

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    """Breaker state."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitOpenError(Exception):
    """Raised when a call is rejected by an open circuit."""

    def __init__(self, name: str, retry_in: float):
        self.name = name
        self.retry_in = retry_in
        super().__init__(f"Circuit '{name}' is open, retry in {retry_in:.1f}s")


class CircuitBreaker:
    """
    Consecutive-failure circuit breaker.

    CLOSED trips to OPEN once consecutive failures exceed `failure_threshold`.
    OPEN rejects every call until `reset_timeout` has passed, then moves to
    HALF_OPEN and admits at most `half_open_max_calls` trial calls. A trial success
    closes the circuit, a trial failure reopens it.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        reset_timeout: float = 30.0,
        half_open_max_calls: int = 3,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self.half_open_max_calls = half_open_max_calls
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._opened_at = 0.0
        self._half_open_calls = 0

        # Stats
        self._rejected = 0
        self._trips = 0

    @property
    def state(self) -> CircuitState:
        if (
            self._state == CircuitState.OPEN
            and self._clock() - self._opened_at >= self.reset_timeout
        ):
            self._state = CircuitState.HALF_OPEN
            self._half_open_calls = 0
            logger.info(f"Circuit '{self.name}' half-open, admitting trial calls")
        return self._state

    def before_call(self):
        """Admit or reject a call. Raises CircuitOpenError on rejection."""
        state = self.state
        if state == CircuitState.OPEN:
            self._rejected += 1
            retry_in = self.reset_timeout - (self._clock() - self._opened_at)
            raise CircuitOpenError(self.name, max(0.0, retry_in))
        if state == CircuitState.HALF_OPEN:
            if self._half_open_calls >= self.half_open_max_calls:
                self._rejected += 1
                raise CircuitOpenError(self.name, 0.0)
            self._half_open_calls += 1

    def release(self):
        """Give back a half-open slot to a call that ended without an outcome."""
        if self._state == CircuitState.HALF_OPEN and self._half_open_calls > 0:
            self._half_open_calls -= 1

    def record_success(self):
        if self._state != CircuitState.CLOSED:
            logger.info(f"Circuit '{self.name}' closed")
        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._half_open_calls = 0

    def record_failure(self):
        self._consecutive_failures += 1
        if self._state == CircuitState.HALF_OPEN:
            self._trip()
        elif (
            self._state == CircuitState.CLOSED
            and self._consecutive_failures > self.failure_threshold
        ):
            self._trip()

    def _trip(self):
        self._state = CircuitState.OPEN
        self._opened_at = self._clock()
        self._trips += 1
        logger.warning(
            f"Circuit '{self.name}' opened after {self._consecutive_failures} "
            f"consecutive failures"
        )

    def get_stats(self) -> dict:
        return {
            "state": self.state.value,
            "consecutive_failures": self._consecutive_failures,
            "trips": self._trips,
            "rejected": self._rejected,
        }
