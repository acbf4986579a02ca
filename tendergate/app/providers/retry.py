"""Retry mechanism with exponential backoff for upstream calls.

This module provides a retry policy, an error classifier mapping arbitrary
exceptions onto the gateway's upstream error taxonomy, and an executor that
runs one logical call as several attempts while keeping the circuit breaker
informed.
"""

import asyncio
import random
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional

import httpx

from tendergate.app.core.logging import get_logger
from tendergate.app.exceptions import (
    GatewayException,
    UpstreamAuthFailed,
    UpstreamError,
    UpstreamInvalidRequest,
    UpstreamThrottled,
    UpstreamTimeout,
    UpstreamUnknown,
)

if TYPE_CHECKING:
    from tendergate.app.services.circuit_breaker import CircuitBreaker

logger = get_logger(__name__)

_THROTTLE_MARKERS = ("429", "quota", "rate limit")


@dataclass
class RetryPolicy:
    """Configuration for retry behavior with exponential backoff.

    Attributes:
        max_attempts: Total attempts per logical call, first one included (default: 3)
        base_delay: Initial delay between attempts in seconds (default: 1.0)
        max_delay: Maximum delay between attempts in seconds (default: 30.0)
        exponential_base: Base for exponential calculation (default: 2.0)
        jitter: Upper bound of the random delay added to throttle backoff (default: 1.0)

    Example:
        >>> policy = RetryPolicy(base_delay=1.0, jitter=0.0)
        >>> policy.calculate_delay(attempt=2, throttled=True)
        4.0
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    exponential_base: float = 2.0
    jitter: float = 1.0

    def calculate_delay(self, attempt: int, throttled: bool = True) -> float:
        """Calculate the wait after a failed attempt.

        Throttled attempts back off exponentially with jitter:
        ``min(base_delay * exponential_base ** attempt + U(0, jitter), max_delay)``.
        Other retryable failures wait a flat ``base_delay``.

        Args:
            attempt: The failed attempt number (0-indexed)
            throttled: Whether the failure was a throttle error

        Returns:
            Delay in seconds
        """
        if not throttled:
            return self.base_delay
        delay = self.base_delay * (self.exponential_base ** attempt)
        delay += random.uniform(0, self.jitter)
        return min(delay, self.max_delay)


def _status_of(exc: Exception) -> Optional[int]:
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code
    for attr in ("status", "status_code", "code"):
        value = getattr(exc, attr, None)
        if isinstance(value, int):
            return value
    return None


def classify_error(exc: Exception) -> UpstreamError:
    """Map an exception raised by an upstream attempt onto the taxonomy.

    The original message is preserved so it can be surfaced to the caller.
    """
    if isinstance(exc, UpstreamError):
        return exc

    message = str(exc) or type(exc).__name__
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, httpx.TimeoutException)):
        return UpstreamTimeout("Request timeout")

    status = _status_of(exc)
    lowered = message.lower()
    if status == 429 or any(marker in lowered for marker in _THROTTLE_MARKERS):
        return UpstreamThrottled(message)
    if status in (401, 403):
        return UpstreamAuthFailed(message)
    if status == 400:
        return UpstreamInvalidRequest(message)
    return UpstreamUnknown(message)


class RetryExecutor:
    """Runs one logical upstream call as up to ``max_attempts`` attempts.

    Circuit breaker reporting:
    - every throttled attempt records a failure, so sustained throttling
      opens the circuit before retries run out
    - other retryable failures record a single failure once attempts are
      exhausted
    - auth failures record a failure and stop
    - invalid requests prove the upstream is answering and record a success
    - a successful attempt records a success
    """

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        breaker: Optional["CircuitBreaker"] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.policy = policy or RetryPolicy()
        self.breaker = breaker
        self._sleep = sleep

    def _record_failure(self) -> None:
        if self.breaker is not None:
            self.breaker.record_failure()

    def _record_success(self) -> None:
        if self.breaker is not None:
            self.breaker.record_success()

    async def run(self, attempt_fn: Callable[[], Awaitable[Any]]) -> Any:
        """Execute ``attempt_fn`` with retries.

        Gateway admission errors raised inside an attempt (e.g. the daily
        limit) are not upstream failures and propagate untouched.

        Raises:
            UpstreamError: The last attempt's classified error
        """
        max_attempts = max(1, self.policy.max_attempts)
        last_error: Optional[UpstreamError] = None

        for attempt in range(max_attempts):
            try:
                result = await attempt_fn()
            except GatewayException as exc:
                if not isinstance(exc, UpstreamError):
                    raise
                error = exc
            except Exception as exc:
                error = classify_error(exc)
                error.__cause__ = exc
            else:
                self._record_success()
                return result

            last_error = error
            is_last = attempt == max_attempts - 1
            logger.warning(
                f"Upstream attempt {attempt + 1}/{max_attempts} failed: "
                f"{type(error).__name__}: {error.message}"
            )

            if not error.retryable:
                if isinstance(error, UpstreamInvalidRequest):
                    self._record_success()
                else:
                    self._record_failure()
                raise error

            throttled = isinstance(error, UpstreamThrottled)
            if throttled or is_last:
                self._record_failure()
            if is_last:
                break

            delay = self.policy.calculate_delay(attempt, throttled=throttled)
            logger.warning(f"Retrying in {delay:.2f}s")
            await self._sleep(delay)

        raise last_error
