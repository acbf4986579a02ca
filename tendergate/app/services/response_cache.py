"""Response cache for upstream generations.

Provides a bounded LRU cache with TTL, keyed by a fingerprint of the
semantically relevant request fields. Storage is pluggable through
``CacheStore``; the in-memory store keeps entries in an OrderedDict whose
order is the recency order.
"""

import hashlib
import json
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Optional

from tendergate.app.core.logging import get_logger
from tendergate.app.providers.base import GenerationRequest

logger = get_logger(__name__)


@dataclass
class CacheEntry:
    """Cached upstream response."""
    key: str
    value: str
    stored_at: float


class CacheStore(ABC):
    """Abstract ordered key/value store backing the response cache.

    Implementations keep entries in recency order: ``touch`` moves a key to
    the most-recently-used end and ``pop_oldest`` removes from the other.
    """

    @abstractmethod
    def get(self, key: str) -> Optional[CacheEntry]:
        pass

    @abstractmethod
    def put(self, entry: CacheEntry) -> None:
        """Insert or overwrite an entry at the most-recently-used end."""
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        pass

    @abstractmethod
    def touch(self, key: str) -> None:
        pass

    @abstractmethod
    def pop_oldest(self) -> Optional[CacheEntry]:
        pass

    @abstractmethod
    def clear(self) -> None:
        pass

    @abstractmethod
    def __len__(self) -> int:
        pass

    @abstractmethod
    def __iter__(self) -> Iterator[CacheEntry]:
        pass


class InMemoryCacheStore(CacheStore):
    """OrderedDict-backed store. Data is lost when the process restarts."""

    def __init__(self) -> None:
        self._data: OrderedDict[str, CacheEntry] = OrderedDict()

    def get(self, key: str) -> Optional[CacheEntry]:
        return self._data.get(key)

    def put(self, entry: CacheEntry) -> None:
        self._data[entry.key] = entry
        self._data.move_to_end(entry.key)

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def touch(self, key: str) -> None:
        self._data.move_to_end(key)

    def pop_oldest(self) -> Optional[CacheEntry]:
        if not self._data:
            return None
        _, entry = self._data.popitem(last=False)
        return entry

    def clear(self) -> None:
        self._data.clear()

    def __len__(self) -> int:
        return len(self._data)

    def __iter__(self) -> Iterator[CacheEntry]:
        return iter(list(self._data.values()))


def generate_key(request: GenerationRequest) -> str:
    """Build a deterministic fingerprint of a generation request.

    Only fields that change the answer are included: prompt, contents,
    model, tools and generation config. Key order inside nested payloads
    does not matter.
    """
    key_data: dict[str, Any] = {
        "prompt": request.prompt or "",
        "contents": request.contents,
        "model": request.model or "",
        "tools": request.tools,
        "generation_config": request.generation_config,
    }
    raw = json.dumps(key_data, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


class ResponseCache:
    """Bounded LRU cache of upstream responses with TTL.

    Attributes:
        max_size: Maximum number of entries kept
        ttl: Entry lifetime in seconds
    """

    def __init__(
        self,
        max_size: int = 100,
        ttl: float = 300.0,
        store: Optional[CacheStore] = None,
        key_fn: Callable[[Any], str] = generate_key,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the cache.

        Args:
            max_size: Maximum number of entries
            ttl: Time-to-live in seconds
            store: Backing store (in-memory by default)
            key_fn: Fingerprint function applied to requests
            clock: Time source returning epoch seconds
        """
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self.ttl = ttl
        self._store = store if store is not None else InMemoryCacheStore()
        self._key_fn = key_fn
        self._clock = clock
        self.hits = 0
        self.misses = 0

    @staticmethod
    def is_cacheable(request: GenerationRequest) -> bool:
        """Tool-augmented requests (e.g. search grounding) answer with live
        data and are never cached."""
        return not request.tools

    def generate_key(self, request: Any) -> str:
        return self._key_fn(request)

    def get(self, request: Any) -> Optional[str]:
        """Return the cached value, or None if missing or expired."""
        key = self._key_fn(request)
        entry = self._store.get(key)
        if entry is None:
            self.misses += 1
            return None

        if self._clock() - entry.stored_at >= self.ttl:
            self._store.delete(key)
            self.misses += 1
            return None

        self._store.touch(key)
        self.hits += 1
        logger.debug("Cache hit")
        return entry.value

    def set(self, request: Any, value: str) -> None:
        """Store a value, evicting the least recently used entry when full."""
        key = self._key_fn(request)
        if self._store.get(key) is None and len(self._store) >= self.max_size:
            evicted = self._store.pop_oldest()
            if evicted is not None:
                logger.debug("Cache full, evicted least recently used entry")
        self._store.put(CacheEntry(key=key, value=value, stored_at=self._clock()))

    def cleanup_expired(self) -> int:
        """Remove all expired entries.

        Returns:
            Number of entries removed.
        """
        now = self._clock()
        expired = [e.key for e in self._store if now - e.stored_at >= self.ttl]
        for key in expired:
            self._store.delete(key)
        return len(expired)

    def clear(self) -> None:
        self._store.clear()

    def get_stats(self) -> dict[str, int]:
        return {
            "size": len(self._store),
            "max_size": self.max_size,
            "hits": self.hits,
            "misses": self.misses,
        }
