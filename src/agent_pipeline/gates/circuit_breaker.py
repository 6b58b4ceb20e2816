"""Circuit breaker for repeated gate evaluation.

Stops a pipeline from hammering a checkpoint that keeps failing. After
`failure_threshold` consecutive failures the circuit opens and every call
is rejected until `reset_timeout_ms` has passed; then exactly one trial
call is let through (HALF_OPEN). A successful trial closes the circuit, a
failed one opens it again.
"""

import time
from enum import Enum
from typing import Any, Callable, Optional

from pydantic import BaseModel

from ..errors import CircuitOpenError


class CircuitState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class BreakerStats(BaseModel):
    """Snapshot of a breaker's counters."""
    state: CircuitState
    failure_count: int
    success_count: int
    last_failure_time: Optional[float] = None
    last_success_time: Optional[float] = None


def monotonic_ms() -> float:
    return time.monotonic() * 1000


class CircuitBreaker:
    """Wraps calls to one checkpoint.

    The clock is a zero-argument callable returning milliseconds, so tests
    can drive the OPEN -> HALF_OPEN transition without sleeping.
    """

    def __init__(
        self,
        failure_threshold: int = 3,
        reset_timeout_ms: float = 60_000,
        clock: Callable[[], float] = monotonic_ms,
        name: str = "",
    ):
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        self.failure_threshold = failure_threshold
        self.reset_timeout_ms = reset_timeout_ms
        self.name = name
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failures = 0
        self._successes = 0
        self._last_failure: Optional[float] = None
        self._last_success: Optional[float] = None

    @property
    def state(self) -> CircuitState:
        return self._state

    def retry_after_ms(self) -> Optional[float]:
        """Time left before an open circuit allows a trial call."""
        if self._state != CircuitState.OPEN or self._last_failure is None:
            return None
        return max(0.0, self.reset_timeout_ms - (self._clock() - self._last_failure))

    def call(
        self,
        fn: Callable[..., Any],
        *args: Any,
        is_failure: Optional[Callable[[Any], bool]] = None,
        **kwargs: Any,
    ) -> Any:
        """Run `fn` through the breaker.

        Args:
            fn: The guarded call
            is_failure: Optional predicate marking a returned value as a
                failure (the value is still returned to the caller)

        Raises:
            CircuitOpenError: If the circuit is open and the timeout has not elapsed
        """
        if self._state == CircuitState.OPEN:
            elapsed = self._clock() - (self._last_failure or 0)
            if elapsed >= self.reset_timeout_ms:
                self._state = CircuitState.HALF_OPEN
            else:
                raise CircuitOpenError(self.reset_timeout_ms - elapsed, self.name)

        try:
            result = fn(*args, **kwargs)
        except Exception:
            self._on_failure()
            raise

        if is_failure is not None and is_failure(result):
            self._on_failure()
        else:
            self._on_success()
        return result

    def _on_success(self) -> None:
        self._successes += 1
        self._last_success = self._clock()
        # A success also breaks a streak of failures while CLOSED
        self._state = CircuitState.CLOSED
        self._failures = 0

    def _on_failure(self) -> None:
        self._failures += 1
        self._last_failure = self._clock()

        if self._state == CircuitState.HALF_OPEN:
            self._state = CircuitState.OPEN
        elif self._failures >= self.failure_threshold:
            self._state = CircuitState.OPEN

    def stats(self) -> BreakerStats:
        return BreakerStats(
            state=self._state,
            failure_count=self._failures,
            success_count=self._successes,
            last_failure_time=self._last_failure,
            last_success_time=self._last_success,
        )

    def reset(self) -> None:
        """Force the circuit closed and forget past failures."""
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._last_failure = None
