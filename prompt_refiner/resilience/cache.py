"""LRU result cache with time-to-live expiry.

Memoizes refinement results keyed by a canonical fingerprint of the
request parameters.  Entries expire ``ttl`` seconds after insertion and
the least-recently-used entry is evicted when the cache is full.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from collections import OrderedDict
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    """A cached refinement and its bookkeeping."""

    value: str
    created_at: float
    hit_count: int = 0


class ResultCache:
    """Bounded, TTL-based memoization of refinement results.

    Args:
        max_size: Maximum number of entries kept.
        ttl:      Seconds an entry stays valid after insertion.
        clock:    Monotonic time source.
    """

    def __init__(
        self,
        max_size: int = 50,
        ttl: float = 3600.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self.ttl = ttl
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = threading.Lock()

    @staticmethod
    def generate_key(params: Mapping[str, Any]) -> str:
        """Canonical key for *params*, independent of insertion order."""
        return json.dumps(params, sort_keys=True, separators=(",", ":"), default=str)

    def get(self, key: str) -> str | None:
        """Return the cached value for *key*, or ``None`` on a miss."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._expired(entry):
                del self._entries[key]
                logger.debug("Cache entry expired")
                return None
            entry.hit_count += 1
            self._entries.move_to_end(key)
            logger.debug("Cache hit (hits=%d)", entry.hit_count)
            return entry.value

    def set(self, key: str, value: str) -> None:
        """Store *value*, evicting the least-recently-used entry when full."""
        with self._lock:
            if key in self._entries:
                del self._entries[key]
            elif len(self._entries) >= self.max_size:
                self._entries.popitem(last=False)
                logger.debug("Cache evicted least-recently-used entry")
            self._entries[key] = CacheEntry(value=value, created_at=self._clock())
            logger.debug("Cache set (size=%d)", len(self._entries))

    def has(self, key: str) -> bool:
        """Return ``True`` if *key* is cached and not expired.  Does not touch recency."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False
            if self._expired(entry):
                del self._entries[key]
                return False
            return True

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
        logger.info("Result cache cleared")

    def cleanup(self) -> int:
        """Drop every expired entry and return how many were removed."""
        with self._lock:
            expired = [key for key, entry in self._entries.items() if self._expired(entry)]
            for key in expired:
                del self._entries[key]
            remaining = len(self._entries)
        if expired:
            logger.debug("Cache cleanup removed %d entries (%d remaining)", len(expired), remaining)
        return len(expired)

    def stats(self) -> dict:
        with self._lock:
            return {"size": len(self._entries), "max_size": self.max_size, "ttl": self.ttl}

    def __len__(self) -> int:
        return len(self._entries)

    def _expired(self, entry: CacheEntry) -> bool:
        return self._clock() - entry.created_at > self.ttl
