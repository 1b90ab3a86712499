"""
Result Cache

Bounded, time-expiring caches that short-circuit embedding and vector
search calls. One instance is built per cached concern at startup and
injected where needed.
"""

import hashlib
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Sequence

DEFAULT_TTL_MS = 180_000
EMBEDDING_CACHE_CAPACITY = 200
SEARCH_CACHE_CAPACITY = 300


@dataclass
class CacheEntry:
    """A cached value and its absolute expiry (monotonic seconds)"""
    value: Any
    expires_at: float


class ResultCache:
    """
    TTL cache with a fixed capacity.

    - get() treats expired keys as absent and drops them
    - a hit moves the key to the most-recent end; its expiry is unchanged
    - set() (re)inserts at the most-recent end with a fresh expiry and evicts
      from the oldest end once capacity is exceeded

    All operations hold a lock, so concurrent requests (event loop or worker
    threads) never observe a partially written entry.
    """

    def __init__(
        self,
        capacity: int,
        ttl_ms: int = DEFAULT_TTL_MS,
        clock: Callable[[], float] = time.monotonic,
        name: str = "cache",
    ):
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self.ttl_ms = ttl_ms
        self.name = name
        self._clock = clock
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            if self._clock() >= entry.expires_at:
                del self._entries[key]
                self._misses += 1
                return None
            self._entries.move_to_end(key)
            self._hits += 1
            return entry.value

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._entries.pop(key, None)
            self._entries[key] = CacheEntry(
                value=value,
                expires_at=self._clock() + self.ttl_ms / 1000.0,
            )
            if len(self._entries) > self.capacity:
                self._entries.popitem(last=False)

    def keys(self) -> list:
        """Keys from oldest to most recent (expired entries included)"""
        with self._lock:
            return list(self._entries.keys())

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._hits = 0
            self._misses = 0

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "name": self.name,
                "size": len(self._entries),
                "capacity": self.capacity,
                "ttl_ms": self.ttl_ms,
                "hits": self._hits,
                "misses": self._misses,
            }


def embedding_key(text: str) -> str:
    """Cache key for an embedding: length, first 64 chars and a digest of the full text."""
    digest = hashlib.sha1(text.encode("utf-8")).hexdigest()
    return f"emb:{len(text)}:{text[:64]}:{digest}"


def vector_fingerprint(vector: Sequence[float]) -> str:
    """Round each component to 5 decimals so float noise still hits."""
    return ",".join(f"{float(n):.5f}" for n in vector)


def search_key(
    vector: Sequence[float],
    dataset_id: str,
    similarity_threshold: float,
    max_chunks: int,
) -> str:
    return (
        f"search:{dataset_id}:{similarity_threshold}:{max_chunks}:"
        f"{vector_fingerprint(vector)}"
    )
