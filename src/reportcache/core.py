"""
In-Memory Query Result Cache
============================

This module provides the QueryCache: a TTL store for expensive read query
results, keyed by a digest of (query text, bind parameters), with hit/miss
statistics, substring-pattern invalidation and read-through helpers for
synchronous and asynchronous fetchers.

The cache never touches the database. It only stores what the caller's fetch
function returns, and a failing cache always degrades to a miss.
"""

import asyncio
import logging
import threading
import time
import weakref
from concurrent.futures import Future
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Generic,
    List,
    Optional,
    Tuple,
    TypeVar,
    Union,
)

from .backends import CacheBackend, CacheEntry, MemoryBackend
from .config import QueryCacheConfig
from .error_handling import (
    CacheReadError,
    CacheWriteError,
    ReportCacheError,
    cache_operation_context,
    log_cache_performance,
    with_error_handling,
)
from .keys import canonical_source, digest

logger = logging.getLogger(__name__)

V = TypeVar("V")

PATTERN_MATCH_MODES = ("source", "key")


class QueryCache(Generic[V]):
    """
    Process-local query result cache.

    Construct one instance at application startup and pass it to the services
    that need it. Every operation on the entry map is atomic; the fetch step of
    ``wrap``/``awrap`` runs without holding any cache lock.

    Example:
        >>> cache = QueryCache(3600)
        >>> cache.wrap("SELECT 1", {}, lambda: 42)
        42
        >>> cache.wrap("SELECT 1", {}, lambda: 99)
        42
    """

    def __init__(
        self,
        config_or_ttl: Optional[Union[QueryCacheConfig, int, float]] = None,
        backend: Optional[CacheBackend] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the query cache.

        Args:
            config_or_ttl: QueryCacheConfig, or a default TTL in seconds
            backend: Entry store (a MemoryBackend is created if None)
            clock: Monotonic time source in seconds
        """
        if isinstance(config_or_ttl, QueryCacheConfig):
            self.config = config_or_ttl
        elif config_or_ttl is None:
            self.config = QueryCacheConfig()
        elif isinstance(config_or_ttl, (int, float)) and not isinstance(
            config_or_ttl, bool
        ):
            self.config = QueryCacheConfig(default_ttl_seconds=config_or_ttl)
        else:
            raise TypeError(
                f"Expected QueryCacheConfig or TTL seconds, got {type(config_or_ttl)}"
            )

        self.backend = backend or MemoryBackend(
            max_entries=self.config.max_entries, timer=clock
        )
        self._clock = clock

        # Guards statistics and the in-flight maps; the backend has its own lock
        self._lock = threading.Lock()
        self._stats = {
            "hits": 0,
            "misses": 0,
            "sets": 0,
            "invalidations": 0,
        }
        self._inflight: Dict[str, Future] = {}
        self._async_inflight: Dict[Tuple[int, str], asyncio.Future] = {}

        self._stop_event = threading.Event()
        self._sweeper: Optional[threading.Thread] = None
        if self.config.enable_sweeper:
            self._start_sweeper()

        logger.info(
            f"Query cache initialized (ttl={self.config.default_ttl_seconds}s, "
            f"backend={self.backend.backend_type})"
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _record(self, stat: str, amount: int = 1):
        with self._lock:
            self._stats[stat] += amount

    def _resolve_ttl(self, ttl: Optional[float]) -> Optional[float]:
        """Return the effective TTL in seconds; None means never expire."""
        if ttl is None:
            return self.config.default_ttl_seconds
        if ttl < 0:
            raise ValueError(f"ttl must be non-negative, got {ttl}")
        if ttl == 0:
            return None
        return ttl

    @with_error_handling(error_type=CacheReadError)
    def _read_entry(self, key: str) -> Optional[CacheEntry]:
        # The backend drops expired entries under its own lock
        return self.backend.get_entry(key)

    @with_error_handling(error_type=CacheWriteError)
    def _write_entry(self, entry: CacheEntry):
        self.backend.put_entry(entry)

    def _lookup(self, query: str, params: Any) -> Tuple[bool, Any, Optional[str]]:
        """Counted lookup returning (found, value, key)."""
        try:
            key = digest(canonical_source(query, params))
        except ReportCacheError:
            self._record("misses")
            return False, None, None

        try:
            entry = self._read_entry(key)
        except ReportCacheError as e:
            logger.warning(f"Cache read failed for {key}, treating as miss: {e}")
            entry = None

        if entry is None:
            self._record("misses")
            logger.debug(f"Cache miss: {key}")
            return False, None, key

        self._record("hits")
        logger.debug(f"Cache hit: {key}")
        return True, entry.value, key

    def _peek(self, key: str) -> Tuple[bool, Any]:
        """Uncounted lookup of a live entry."""
        try:
            entry = self._read_entry(key)
        except ReportCacheError:
            return False, None
        if entry is None:
            return False, None
        return True, entry.value

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def get(self, query: str, params: Any = None, default: Optional[V] = None) -> Optional[V]:
        """
        Look up a cached result.

        Args:
            query: SQL text
            params: Bind parameters
            default: Returned on a miss

        Returns:
            The cached value, or ``default`` if absent or expired
        """
        found, value, _ = self._lookup(query, params)
        return value if found else default

    def contains(self, query: str, params: Any = None) -> bool:
        """Whether a live entry exists, without touching hit/miss counters."""
        try:
            key = digest(canonical_source(query, params))
        except ReportCacheError:
            return False
        found, _ = self._peek(key)
        return found

    def set(self, query: str, params: Any, value: V, ttl: Optional[float] = None) -> bool:
        """
        Store a result, replacing any existing entry for the same key.

        Args:
            query: SQL text
            params: Bind parameters
            value: Result to cache
            ttl: Seconds to live (None uses the default, 0 never expires)

        Returns:
            True if stored, False if the store rejected the entry
        """
        effective_ttl = self._resolve_ttl(ttl)

        try:
            source = canonical_source(query, params)
            key = digest(source)
            now = self._clock()
            entry = CacheEntry(
                key=key,
                value=value,
                expires_at=None if effective_ttl is None else now + effective_ttl,
                created_at=now,
                source=source,
                query=query,
                params=params if params is not None else {},
            )
            self._write_entry(entry)
        except ReportCacheError as e:
            logger.warning(f"Error setting cache: {e}")
            return False

        self._record("sets")
        logger.debug(f"Cache set successful: {key} (ttl={effective_ttl})")
        return True

    def invalidate(self, query: str, params: Any = None) -> bool:
        """
        Remove the entry for a query and its parameters.

        Returns:
            True if an entry was removed
        """
        try:
            key = digest(canonical_source(query, params))
        except ReportCacheError:
            return False

        try:
            removed = self.backend.remove_entry(key)
        except Exception as e:
            logger.error(f"Error invalidating cache entry {key}: {e}")
            return False

        if removed:
            self._record("invalidations")
            logger.debug(f"Cache invalidated: {key}")
        else:
            logger.debug(f"Cache entry {key} not found for invalidation")
        return removed

    def invalidate_pattern(self, pattern: str, match: str = "source") -> int:
        """
        Remove every entry containing ``pattern`` as a literal substring.

        This scans all stored entries, so it is O(n) in the cache size.

        Keys are digests, so an identifier such as an employee id practically
        never appears inside a key. The default ``match="source"`` therefore
        tests the canonical, un-hashed (query, params) text each key was
        derived from. ``match="key"`` tests the derived key itself.

        Args:
            pattern: Literal substring to look for
            match: "source" or "key"

        Returns:
            Number of entries removed
        """
        if match not in PATTERN_MATCH_MODES:
            raise ValueError(f"match must be one of {PATTERN_MATCH_MODES}, got {match!r}")

        if match == "source":
            predicate = lambda entry: pattern in entry.source  # noqa: E731
        else:
            predicate = lambda entry: pattern in entry.key  # noqa: E731

        try:
            with cache_operation_context("invalidate_pattern", pattern=pattern, match=match):
                removed_keys = self.backend.remove_where(predicate)
        except Exception as e:
            logger.error(f"Error invalidating cache pattern {pattern!r}: {e}")
            return 0

        if removed_keys:
            self._record("invalidations", len(removed_keys))
        logger.info(
            f"Cache pattern invalidated: {pattern!r} ({match}) removed {len(removed_keys)}"
        )
        return len(removed_keys)

    def clear(self) -> bool:
        """Remove every entry. Hit and miss counters are kept."""
        try:
            removed_count = self.backend.clear_all()
        except Exception as e:
            logger.error(f"Error clearing cache: {e}")
            return False

        logger.info(f"Cache cleared ({removed_count} entries)")
        return True

    @log_cache_performance
    def purge_expired(self) -> int:
        """Remove expired entries now and return how many were removed."""
        removed_count = self.backend.remove_expired(self._clock())
        if removed_count > 0:
            logger.info(f"Cleaned up {removed_count} expired cache entries")
        return removed_count

    def reset_stats(self):
        """Zero the hit and miss counters."""
        with self._lock:
            self._stats["hits"] = 0
            self._stats["misses"] = 0

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        with self._lock:
            stats: Dict[str, Any] = dict(self._stats)

        try:
            stats["keys"] = self.backend.count()
        except Exception as e:
            logger.warning(f"Could not count cache entries: {e}")
            stats["keys"] = 0
        stats["expired"] = self.backend.expired_count

        lookups = stats["hits"] + stats["misses"]
        stats["hit_rate"] = stats["hits"] / lookups if lookups > 0 else 0.0
        stats.update(
            {
                "default_ttl_seconds": self.config.default_ttl_seconds,
                "backend_type": self.backend.backend_type,
            }
        )
        return stats

    def list_entries(self) -> List[Dict[str, Any]]:
        """List stored entries with age and remaining TTL."""
        now = self._clock()
        return [
            {
                "cache_key": entry.key,
                "query": entry.query,
                "params": entry.params,
                "source": entry.source,
                "age_seconds": now - entry.created_at,
                "ttl_remaining": entry.ttl_remaining(now),
            }
            for entry in self.backend.list_entries()
        ]

    # ------------------------------------------------------------------
    # Read-through
    # ------------------------------------------------------------------

    def _fetch_and_store(
        self, query: str, params: Any, fetch: Callable[[], V], ttl: Optional[float]
    ) -> V:
        value = fetch()
        self.set(query, params, value, ttl)
        return value

    def wrap(
        self,
        query: str,
        params: Any,
        fetch: Callable[[], V],
        ttl: Optional[float] = None,
    ) -> V:
        """
        Return the cached result, or call ``fetch`` and cache what it returns.

        Exceptions raised by ``fetch`` propagate unchanged and nothing is
        stored. With single-flight enabled, threads missing on the same key at
        the same time wait for one shared fetch.

        Args:
            query: SQL text
            params: Bind parameters
            fetch: Zero-argument callable producing the result
            ttl: Seconds to live (None uses the default, 0 never expires)
        """
        self._resolve_ttl(ttl)

        found, value, key = self._lookup(query, params)
        if found:
            return value

        if key is None or not self.config.single_flight:
            return self._fetch_and_store(query, params, fetch, ttl)

        with self._lock:
            future = self._inflight.get(key)
            is_leader = future is None
            if is_leader:
                future = Future()
                self._inflight[key] = future

        if not is_leader:
            logger.debug(f"Waiting on in-flight fetch: {key}")
            return future.result()

        try:
            # Another leader may have stored it between our miss and our claim
            found, value = self._peek(key)
            if not found:
                value = self._fetch_and_store(query, params, fetch, ttl)
        except BaseException as e:
            future.set_exception(e)
            raise
        else:
            future.set_result(value)
            return value
        finally:
            with self._lock:
                self._inflight.pop(key, None)

    async def awrap(
        self,
        query: str,
        params: Any,
        fetch: Callable[[], Awaitable[V]],
        ttl: Optional[float] = None,
    ) -> V:
        """
        Asynchronous read-through; ``fetch`` is a zero-argument coroutine function.

        The fetch is awaited without holding any cache lock. With single-flight
        enabled, tasks of one event loop missing on the same key share a fetch.
        If the leading task is cancelled, a waiting task that was not cancelled
        itself claims the key again and runs its own ``fetch``.
        """
        self._resolve_ttl(ttl)

        found, value, key = self._lookup(query, params)
        if found:
            return value

        if key is None or not self.config.single_flight:
            value = await fetch()
            self.set(query, params, value, ttl)
            return value

        loop = asyncio.get_running_loop()
        inflight_key = (id(loop), key)
        while True:
            with self._lock:
                future = self._async_inflight.get(inflight_key)
                is_leader = future is None
                if is_leader:
                    future = loop.create_future()
                    self._async_inflight[inflight_key] = future

            if is_leader:
                break

            logger.debug(f"Awaiting in-flight fetch: {key}")
            try:
                return await asyncio.shield(future)
            except asyncio.CancelledError:
                if not future.cancelled():
                    # This task was cancelled, not the leader
                    raise
            logger.debug(f"In-flight fetch for {key} was cancelled, claiming it")

        try:
            found, value = self._peek(key)
            if not found:
                value = await fetch()
                self.set(query, params, value, ttl)
        except asyncio.CancelledError:
            future.cancel()
            raise
        except BaseException as e:
            future.set_exception(e)
            # Mark retrieved so an unwatched failure is not reported by asyncio
            future.exception()
            raise
        else:
            future.set_result(value)
            return value
        finally:
            with self._lock:
                self._async_inflight.pop(inflight_key, None)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _start_sweeper(self):
        interval = self.config.effective_sweep_interval
        cache_ref = weakref.ref(self)
        stop_event = self._stop_event

        def _sweep_loop():
            while not stop_event.wait(interval):
                cache = cache_ref()
                if cache is None:
                    return
                try:
                    cache.purge_expired()
                except Exception as e:
                    logger.warning(f"Background expiry sweep failed: {e}")
                del cache

        self._sweeper = threading.Thread(
            target=_sweep_loop, name="reportcache-sweeper", daemon=True
        )
        self._sweeper.start()
        logger.debug(f"Expiry sweeper started (every {interval}s)")

    def close(self):
        """Stop the background sweeper. Stored entries are kept."""
        self._stop_event.set()
        if self._sweeper is not None and self._sweeper is not threading.current_thread():
            self._sweeper.join(timeout=1.0)
        self._sweeper = None

    def __enter__(self) -> "QueryCache[V]":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def __len__(self) -> int:
        return self.backend.count()
