"""Circuit breaker for the upstream provider.

Callers check ``can_request()`` before an attempt and report the outcome
with exactly one ``record_success()`` or ``record_failure()``.
"""

import math
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from tendergate.app.core.logging import get_logger

logger = get_logger(__name__)


class CircuitState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


@dataclass
class CircuitSnapshot:
    state: CircuitState
    consecutive_failures: int
    seconds_since_last_failure: Optional[float]


class CircuitBreaker:
    """Three-state breaker driven by consecutive failures.

    - CLOSED: requests flow; ``failure_threshold`` consecutive failures open it
    - OPEN: requests fail fast until ``reset_timeout`` has passed since the
      last failure, then the next ``can_request()`` moves to HALF_OPEN
    - HALF_OPEN: probe requests allowed; success closes, failure reopens
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        reset_timeout: float = 60.0,
        clock: Callable[[], float] = time.time,
    ):
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self._clock = clock

        self.state = CircuitState.CLOSED
        self.consecutive_failures = 0
        self.last_failure_at: Optional[float] = None

    def _transition(self, new_state: CircuitState, reason: str) -> None:
        if self.state is new_state:
            return
        logger.warning(f"Circuit {self.state.value} -> {new_state.value}: {reason}")
        self.state = new_state

    def record_success(self) -> None:
        self.consecutive_failures = 0
        if self.state is CircuitState.HALF_OPEN:
            self._transition(CircuitState.CLOSED, "service recovered")

    def record_failure(self) -> None:
        self.consecutive_failures += 1
        self.last_failure_at = self._clock()

        if self.state is CircuitState.HALF_OPEN:
            self._transition(CircuitState.OPEN, "probe failed")
        elif self.consecutive_failures >= self.failure_threshold:
            self._transition(
                CircuitState.OPEN,
                f"{self.consecutive_failures} consecutive failures",
            )

    def can_request(self) -> bool:
        """Return True if an attempt may be made now.

        Moves OPEN to HALF_OPEN once the cooldown has elapsed.
        """
        if self.state is CircuitState.CLOSED:
            return True

        if self.state is CircuitState.OPEN:
            if self._clock() - (self.last_failure_at or 0.0) >= self.reset_timeout:
                self._transition(CircuitState.HALF_OPEN, "cooldown elapsed, probing")
                return True
            return False

        return True

    def retry_after(self) -> int:
        """Seconds until an OPEN breaker will admit a probe (at least 1)."""
        if self.state is not CircuitState.OPEN or self.last_failure_at is None:
            return 0
        remaining = self.reset_timeout - (self._clock() - self.last_failure_at)
        return max(1, math.ceil(remaining))

    def get_state(self) -> CircuitSnapshot:
        since = None
        if self.last_failure_at is not None:
            since = self._clock() - self.last_failure_at
        return CircuitSnapshot(
            state=self.state,
            consecutive_failures=self.consecutive_failures,
            seconds_since_last_failure=since,
        )
