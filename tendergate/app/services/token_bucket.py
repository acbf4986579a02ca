"""Token bucket limiter guarding the upstream call budget.

Refill is computed lazily from elapsed time whenever the state is
inspected; there is no background timer. A second, hard per-day cap
resets at local midnight.
"""

import asyncio
import math
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional

from tendergate.app.core.logging import get_logger
from tendergate.app.exceptions import DailyLimitExceeded

logger = get_logger(__name__)

# Float slack for refill arithmetic
_EPSILON = 1e-9


@dataclass
class RateLimitState:
    """Mutable bucket state. Owned by a single limiter."""
    tokens: float
    last_refill_at: float
    daily_count: int
    daily_reset_at: float


@dataclass
class RateLimitStatus:
    """Read-only projection of the limiter for observability."""
    available_tokens: int
    daily_remaining: int
    next_reset: str


class RateLimitStateStore(ABC):
    """Storage for limiter state.

    The in-memory store is enough for a single process; a shared store
    would let several instances draw from one budget.
    """

    @abstractmethod
    def load(self) -> Optional[RateLimitState]:
        pass

    @abstractmethod
    def save(self, state: RateLimitState) -> None:
        pass


class InMemoryStateStore(RateLimitStateStore):
    def __init__(self) -> None:
        self._state: Optional[RateLimitState] = None

    def load(self) -> Optional[RateLimitState]:
        return self._state

    def save(self, state: RateLimitState) -> None:
        self._state = state


def next_local_midnight(now: float) -> float:
    """Return the epoch timestamp of the next local midnight after ``now``."""
    current = datetime.fromtimestamp(now)
    midnight = datetime(current.year, current.month, current.day) + timedelta(days=1)
    return midnight.timestamp()


class TokenBucketLimiter:
    """Token bucket with a per-minute refill and a per-day hard cap.

    ``acquire()`` suspends the caller until a token is available. The daily
    cap is checked before waiting, so a caller never sleeps only to be
    rejected.

    Usage:
        limiter = TokenBucketLimiter(max_tokens=15, refill_rate=15 / 60)
        await limiter.acquire()
    """

    def __init__(
        self,
        max_tokens: int = 15,
        refill_rate: float = 15 / 60,
        max_per_day: int = 1000,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        store: Optional[RateLimitStateStore] = None,
    ):
        """Initialize the limiter.

        Args:
            max_tokens: Bucket capacity (burst size)
            refill_rate: Tokens added per second
            max_per_day: Hard cap on acquisitions per local day
            clock: Time source returning epoch seconds
            sleep: Awaitable sleep used while waiting for a token
            store: State store (in-memory by default)
        """
        if refill_rate <= 0:
            raise ValueError("refill_rate must be positive")
        self.max_tokens = max_tokens
        self.refill_rate = refill_rate
        self.max_per_day = max_per_day
        self._clock = clock
        self._sleep = sleep
        self._store = store if store is not None else InMemoryStateStore()

        if self._store.load() is None:
            now = self._clock()
            self._store.save(RateLimitState(
                tokens=float(max_tokens),
                last_refill_at=now,
                daily_count=0,
                daily_reset_at=next_local_midnight(now),
            ))

    @classmethod
    def per_minute(cls, requests_per_minute: int, max_per_day: int, **kwargs) -> "TokenBucketLimiter":
        """Build a limiter allowing ``requests_per_minute`` sustained calls."""
        return cls(
            max_tokens=requests_per_minute,
            refill_rate=requests_per_minute / 60,
            max_per_day=max_per_day,
            **kwargs,
        )

    def _project(self, state: RateLimitState, now: float) -> tuple[float, int, float]:
        """Compute (tokens, daily_count, daily_reset_at) as of ``now``."""
        elapsed = max(0.0, now - state.last_refill_at)
        tokens = min(float(self.max_tokens), state.tokens + elapsed * self.refill_rate)
        daily_count = state.daily_count
        daily_reset_at = state.daily_reset_at
        if now >= daily_reset_at:
            daily_count = 0
            daily_reset_at = next_local_midnight(now)
        return tokens, daily_count, daily_reset_at

    def _refill(self) -> RateLimitState:
        state = self._store.load()
        now = self._clock()
        tokens, daily_count, daily_reset_at = self._project(state, now)
        if daily_reset_at != state.daily_reset_at:
            logger.info("Daily upstream budget reset")
        state.tokens = tokens
        state.last_refill_at = now
        state.daily_count = daily_count
        state.daily_reset_at = daily_reset_at
        self._store.save(state)
        return state

    async def acquire(self) -> None:
        """Take one token, waiting for a refill if the bucket is empty.

        Raises:
            DailyLimitExceeded: If the daily cap is already reached
        """
        state = self._refill()

        if state.daily_count >= self.max_per_day:
            retry_after = max(1, math.ceil(state.daily_reset_at - self._clock()))
            raise DailyLimitExceeded(retry_after=retry_after)

        while state.tokens < 1 - _EPSILON:
            wait = (1 - state.tokens) / self.refill_rate
            logger.debug(f"Waiting {wait:.2f}s for rate limit token")
            await self._sleep(wait)
            state = self._refill()

        state.tokens = max(0.0, state.tokens - 1)
        state.daily_count += 1
        self._store.save(state)

    def get_status(self) -> RateLimitStatus:
        """Return a projection of the current state without mutating it."""
        state = self._store.load()
        tokens, daily_count, daily_reset_at = self._project(state, self._clock())
        return RateLimitStatus(
            available_tokens=math.floor(tokens),
            daily_remaining=self.max_per_day - daily_count,
            next_reset=datetime.fromtimestamp(daily_reset_at).astimezone().isoformat(),
        )
