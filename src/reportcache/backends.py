"""
Cache Entry Storage Backends
============================

The query cache keeps its entries in a backend. The in-memory backend is the
only one shipped: the cache is process-local by design and nothing outlives
the process.
"""

import logging
import math
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional

from cachetools import TLRUCache

from .error_handling import CacheCapacityError

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    """A stored query result."""

    key: str
    value: Any
    expires_at: Optional[float]  # clock seconds; None never expires
    created_at: float
    source: str = ""  # canonical (query, params) text the key was derived from
    query: str = ""
    params: Any = field(default_factory=dict)

    def ttl_remaining(self, now: float) -> Optional[float]:
        if self.expires_at is None:
            return None
        return max(0.0, self.expires_at - now)


def _time_to_use(key: str, entry: CacheEntry, now: float) -> float:
    return math.inf if entry.expires_at is None else entry.expires_at


class _ExpiringEntries(TLRUCache):
    """TLRUCache that keeps a running count of expired entries it dropped."""

    def __init__(self, timer: Callable[[], float]):
        # Unbounded: capacity is enforced by MemoryBackend without eviction
        super().__init__(maxsize=math.inf, ttu=_time_to_use, timer=timer)
        self.expired_count = 0

    def expire(self, time=None):
        expired = super().expire(time)
        self.expired_count += len(expired)
        return expired


class CacheBackend(ABC):
    """Abstract base class for cache entry storage.

    Backends own expiry: an entry past its ``expires_at`` is never returned
    and is dropped by the backend itself.
    """

    backend_type = "abstract"

    @property
    def expired_count(self) -> int:
        """Number of entries dropped because they expired."""
        return 0

    @abstractmethod
    def get_entry(self, key: str) -> Optional[CacheEntry]:
        """Get a live entry; expired entries are removed, never returned."""
        pass

    @abstractmethod
    def put_entry(self, entry: CacheEntry):
        """Store an entry, replacing any entry with the same key."""
        pass

    @abstractmethod
    def remove_entry(self, key: str) -> bool:
        """Remove a live entry; return whether it existed."""
        pass

    @abstractmethod
    def remove_where(self, predicate: Callable[[CacheEntry], bool]) -> List[str]:
        """Remove every entry matching predicate in one step; return their keys."""
        pass

    @abstractmethod
    def list_entries(self) -> List[CacheEntry]:
        """Snapshot of all live entries."""
        pass

    @abstractmethod
    def remove_expired(self, now: Optional[float] = None) -> int:
        """Remove expired entries and return count removed."""
        pass

    @abstractmethod
    def clear_all(self) -> int:
        """Remove all entries and return count removed."""
        pass

    @abstractmethod
    def count(self) -> int:
        """Number of live entries."""
        pass


class MemoryBackend(CacheBackend):
    """Entry store on a cachetools ``TLRUCache``.

    Each entry expires at its own ``expires_at`` (never, when it is None),
    measured on ``timer``, which must be the clock the owning cache stamps
    entries with. Every method takes the same re-entrant lock, so each
    operation, lazy expiry included, is atomic with respect to the map.
    Values are stored by reference, never copied.
    """

    backend_type = "memory"

    def __init__(
        self,
        max_entries: Optional[int] = None,
        timer: Callable[[], float] = time.monotonic,
    ):
        self._lock = threading.RLock()
        self._entries = _ExpiringEntries(timer)
        self.max_entries = max_entries

    @property
    def expired_count(self) -> int:
        with self._lock:
            return self._entries.expired_count

    def _live_entries(self) -> List[CacheEntry]:
        self._entries.expire()
        entries = []
        for key in list(self._entries.keys()):
            entry = self._entries.get(key)
            if entry is not None:
                entries.append(entry)
        return entries

    def get_entry(self, key: str) -> Optional[CacheEntry]:
        with self._lock:
            self._entries.expire()
            return self._entries.get(key)

    def put_entry(self, entry: CacheEntry):
        with self._lock:
            self._entries.expire()
            if (
                self.max_entries is not None
                and entry.key not in self._entries
                and len(self._entries) >= self.max_entries
            ):
                raise CacheCapacityError(
                    "Cache is full",
                    {"max_entries": self.max_entries, "cache_key": entry.key},
                )
            # An already expired entry is skipped, so drop what it replaces
            self._entries.pop(entry.key, None)
            self._entries[entry.key] = entry

    def remove_entry(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def remove_where(self, predicate: Callable[[CacheEntry], bool]) -> List[str]:
        # Linear in the number of stored entries
        with self._lock:
            matched = [entry.key for entry in self._live_entries() if predicate(entry)]
            for key in matched:
                self._entries.pop(key, None)
            return matched

    def list_entries(self) -> List[CacheEntry]:
        with self._lock:
            return self._live_entries()

    def remove_expired(self, now: Optional[float] = None) -> int:
        with self._lock:
            return len(self._entries.expire(now))

    def clear_all(self) -> int:
        with self._lock:
            self._entries.expire()
            count = len(self._entries)
            self._entries.clear()
            return count

    def count(self) -> int:
        with self._lock:
            self._entries.expire()
            return len(self._entries)


def create_backend(backend_type: str = "memory", **kwargs) -> CacheBackend:
    """Create a cache backend by name."""
    if backend_type == "memory":
        return MemoryBackend(**kwargs)
    raise ValueError(f"Unknown cache backend: {backend_type}")
