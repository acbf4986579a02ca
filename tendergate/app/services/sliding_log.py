"""Sliding-log rate limiter keyed by caller.

Used where the allowance is small and the window long (e.g. PDF analysis,
a handful of requests per hour), so a token bucket's burst semantics are
not wanted.
"""

import math
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict


@dataclass
class SlidingLogDecision:
    allowed: bool
    remaining: int
    retry_after: int = 0


class SlidingLogLimiter:
    """Allow at most ``max_requests`` per ``window_seconds`` for each key.

    Each key keeps the timestamps of its admitted requests; timestamps older
    than the window are discarded on every check.
    """

    def __init__(
        self,
        max_requests: int,
        window_seconds: float,
        max_keys: int = 10000,
        clock: Callable[[], float] = time.time,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._max_keys = max_keys
        self._clock = clock
        self._log: Dict[str, Deque[float]] = {}

    def _prune(self, key: str, now: float) -> Deque[float]:
        entries = self._log.setdefault(key, deque())
        cutoff = now - self.window_seconds
        while entries and entries[0] <= cutoff:
            entries.popleft()
        return entries

    def hit(self, key: str) -> SlidingLogDecision:
        """Record a request for ``key`` if it fits in the window."""
        if len(self._log) > self._max_keys:
            self.cleanup()

        now = self._clock()
        entries = self._prune(key, now)

        if len(entries) >= self.max_requests:
            retry_after = max(1, math.ceil(entries[0] + self.window_seconds - now))
            return SlidingLogDecision(allowed=False, remaining=0, retry_after=retry_after)

        entries.append(now)
        return SlidingLogDecision(allowed=True, remaining=self.max_requests - len(entries))

    def cleanup(self) -> int:
        """Drop keys with no requests left in the window."""
        now = self._clock()
        empty = [key for key in list(self._log) if not self._prune(key, now)]
        for key in empty:
            del self._log[key]
        return len(empty)

    def __len__(self) -> int:
        return len(self._log)
