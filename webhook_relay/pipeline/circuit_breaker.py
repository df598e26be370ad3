"""Circuit breaker for calls to the Core AI Service.

- CLOSED: calls pass through; consecutive failures are counted
- OPEN: after ``threshold`` failures, calls fail fast (execute returns False
  without invoking the action)
- HALF_OPEN: once ``timeout`` seconds have passed since the last failure,
  exactly one trial call is let through. Success closes the circuit and
  resets the count; failure keeps it open and restarts the timeout.

Exceptions raised by the action are recorded and then re-raised; the breaker
only short-circuits, it never swallows downstream errors.
State is process-local and resets on restart.
"""

from __future__ import annotations

import logging
import time
from enum import Enum
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 5
DEFAULT_TIMEOUT = 30.0


class CircuitState(str, Enum):
    """Circuit breaker state."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Consecutive-failure circuit breaker around an async action."""

    def __init__(
        self,
        threshold: int = DEFAULT_THRESHOLD,
        timeout: float = DEFAULT_TIMEOUT,
        name: str = "core-ai",
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.name = name
        self._threshold = threshold
        self._timeout = timeout
        self._clock = clock or time.time
        self.failure_count = 0
        self.last_failure_time = 0.0
        self.is_open = False
        self._trial_in_flight = False

    @property
    def state(self) -> CircuitState:
        if not self.is_open:
            return CircuitState.CLOSED
        if self._trial_in_flight or self._timeout_elapsed():
            return CircuitState.HALF_OPEN
        return CircuitState.OPEN

    def _timeout_elapsed(self) -> bool:
        return self._clock() - self.last_failure_time > self._timeout

    async def execute(self, action: Callable[[], Awaitable[Any]]) -> bool:
        """Run ``action`` unless the circuit is open.

        Returns:
            True if the action completed, False if the call was short-circuited.

        Raises:
            Whatever ``action`` raises, after counting it as a failure.
        """
        trial = False
        if self.is_open:
            if self._trial_in_flight or not self._timeout_elapsed():
                logger.debug("Circuit breaker %s open, failing fast", self.name)
                return False
            trial = True
            self._trial_in_flight = True
            logger.info("Circuit breaker %s half-open, attempting trial call", self.name)

        try:
            await action()
        except Exception:
            self._record_failure()
            raise
        finally:
            if trial:
                self._trial_in_flight = False

        self._record_success()
        return True

    def _record_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_time = self._clock()
        if not self.is_open and self.failure_count >= self._threshold:
            self.is_open = True
            logger.warning(
                "Circuit breaker %s OPEN after %d consecutive failures",
                self.name,
                self.failure_count,
            )

    def _record_success(self) -> None:
        if self.is_open:
            logger.info("Circuit breaker %s closed after successful trial", self.name)
        self.failure_count = 0
        self.is_open = False

    def status(self) -> dict[str, Any]:
        """Breaker state for monitoring."""
        return {
            "name": self.name,
            "state": self.state.value,
            "is_open": self.is_open,
            "failure_count": self.failure_count,
            "last_failure_time": self.last_failure_time or None,
            "threshold": self._threshold,
            "timeout": self._timeout,
        }
