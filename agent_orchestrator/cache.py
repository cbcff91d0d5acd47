"""
Tiered cache-aside layer.

Expensive upstream lookups (embeddings, similarity search, web search, canon,
conversation history) are gated through ``TieredCache.get_or_compute``. Each
data class has its own time-to-live. Values are stored as JSON text, so a hit
always returns a fresh copy that cannot alias an object handed out earlier.
"""

import hashlib
import json
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

from .models import CacheConfig

logger = logging.getLogger(__name__)


class DataClass(str, Enum):
    """Cached data classes. The value is the key prefix."""

    SESSION = "session"
    KNOWLEDGE = "knowledge"
    WEB_SEARCH = "web-search"
    CANON = "canon"
    EMBEDDING = "embedding"


def hash_key(text: str) -> str:
    """Canonical key fragment for free text."""
    normalized = " ".join(text.lower().split())
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()[:32]


@dataclass
class CacheEntry:
    key: str
    serialized_value: str
    expires_at: float


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    evictions: int = 0
    expirations: int = 0
    invalidations: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "expirations": self.expirations,
            "invalidations": self.invalidations,
            "hit_rate": round(self.hit_rate, 4),
        }


class TieredCache:
    """
    Thread-safe in-process cache with per-data-class TTL.

    Concurrent writers to the same key race; the last writer wins. Two
    concurrent misses may both compute, which is acceptable for these reads.

    Args:
        config: TTLs per data class and the entry limit.
        clock: Returns the current time in seconds. Injected in tests.
    """

    def __init__(
        self,
        config: Optional[CacheConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._config = config or CacheConfig()
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = threading.RLock()
        self.stats = CacheStats()
        self._ttls = {
            DataClass.SESSION: self._config.session_ttl,
            DataClass.KNOWLEDGE: self._config.knowledge_ttl,
            DataClass.WEB_SEARCH: self._config.web_search_ttl,
            DataClass.CANON: self._config.canon_ttl,
            DataClass.EMBEDDING: self._config.embedding_ttl,
        }

    @staticmethod
    def make_key(data_class: DataClass, key: str) -> str:
        return f"{DataClass(data_class).value}:{key}"

    def ttl_for(self, data_class: DataClass) -> int:
        return self._ttls[DataClass(data_class)]

    def get(self, data_class: DataClass, key: str) -> Optional[Any]:
        """
        Return the cached value, or None on a miss.

        An entry whose expiry has passed is evicted before reporting the miss.
        """
        full_key = self.make_key(data_class, key)
        with self._lock:
            entry = self._entries.get(full_key)
            if entry is None:
                self.stats.misses += 1
                return None
            if self._clock() >= entry.expires_at:
                del self._entries[full_key]
                self.stats.expirations += 1
                self.stats.misses += 1
                return None
            self._entries.move_to_end(full_key)
            self.stats.hits += 1
            serialized = entry.serialized_value
        return json.loads(serialized)

    def set(
        self,
        data_class: DataClass,
        key: str,
        value: Any,
        ttl: Optional[int] = None,
    ) -> None:
        """Store a value, overwriting any existing entry for the key."""
        full_key = self.make_key(data_class, key)
        serialized = json.dumps(value)
        expires_at = self._clock() + (ttl if ttl is not None else self.ttl_for(data_class))
        with self._lock:
            self._entries[full_key] = CacheEntry(full_key, serialized, expires_at)
            self._entries.move_to_end(full_key)
            while len(self._entries) > self._config.max_entries:
                self._entries.popitem(last=False)
                self.stats.evictions += 1

    def get_or_compute(
        self,
        data_class: DataClass,
        key: str,
        compute: Callable[[], Any],
        ttl: Optional[int] = None,
    ) -> Any:
        """
        Cache-aside lookup.

        On a hit the cached value is returned without calling ``compute``. On a
        miss ``compute`` runs, its result is stored with the class TTL (or the
        override) and returned. Exceptions from ``compute`` propagate and
        nothing is stored.
        """
        cached = self.get(data_class, key)
        if cached is not None:
            logger.debug(f"Cache hit: {self.make_key(data_class, key)}")
            return cached
        value = compute()
        if value is not None:
            self.set(data_class, key, value, ttl=ttl)
        # Hand out a decoded copy so callers never share state with the entry.
        return json.loads(json.dumps(value))

    def invalidate(self, data_class: DataClass, key: str) -> bool:
        full_key = self.make_key(data_class, key)
        with self._lock:
            removed = self._entries.pop(full_key, None) is not None
            if removed:
                self.stats.invalidations += 1
        return removed

    def invalidate_class(self, data_class: DataClass, scope_key: str = "") -> int:
        """
        Delete every entry of a data class whose key starts with ``scope_key``.

        Returns:
            Number of entries removed
        """
        prefix = self.make_key(data_class, scope_key)
        with self._lock:
            doomed = [k for k in self._entries if k.startswith(prefix)]
            for k in doomed:
                del self._entries[k]
            self.stats.invalidations += len(doomed)
        if doomed:
            logger.debug(f"Invalidated {len(doomed)} cache entries under '{prefix}'")
        return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def snapshot(self) -> dict[str, Any]:
        """Stats plus entry count, for the health endpoint."""
        with self._lock:
            size = len(self._entries)
        return {"entries": size, **self.stats.to_dict()}
