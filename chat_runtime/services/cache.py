# Copyright (c) 2026 Heureum AI. All rights reserved.

"""
In-memory TTL cache with approximate-LRU eviction and an async
single-flight wrapper.

Entries are checked lazily on read and swept by a periodic background
task started with ``start()``.  No external dependencies required.
"""
from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Generic, Mapping, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class CacheEntry(Generic[T]):
    """A stored value with its expiry and access statistics.

    Attributes:
        data (T): The cached value.
        timestamp (float): Clock reading when the value was stored.
        ttl (float): Lifetime in seconds.
        access_count (int): Number of successful reads.
        last_accessed (float): Clock reading of the latest read or write.
    """

    data: T
    timestamp: float
    ttl: float
    access_count: int = 0
    last_accessed: float = 0.0

    def is_expired(self, now: float) -> bool:
        """Whether the entry has outlived its TTL at ``now``."""
        return now - self.timestamp > self.ttl


class TTLCache(Generic[T]):
    """In-memory cache with TTL expiration and max-size eviction (LRU)."""

    def __init__(
        self,
        ttl: float = 300.0,
        max_size: int = 1000,
        cleanup_interval: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the TTL cache.

        Args:
            ttl (float): Default time-to-live in seconds.
            max_size (int): Maximum number of entries before the least
                recently accessed one is evicted.
            cleanup_interval (float): Seconds between background sweeps.
            clock (Callable[[], float]): Time source, injectable for tests.
        """
        self._ttl = ttl
        self._max_size = max_size
        self._cleanup_interval = cleanup_interval
        self._clock = clock
        self._store: Dict[str, CacheEntry[T]] = {}
        self._cleanup_task: Optional[asyncio.Task] = None

    @property
    def default_ttl(self) -> float:
        return self._ttl

    @property
    def max_size(self) -> int:
        return self._max_size

    def __len__(self) -> int:
        return len(self._store)

    @staticmethod
    def generate_key(params: Mapping[str, Any]) -> str:
        """Create a deterministic cache key from request parameters.

        Keys are sorted before hashing, so the same parameters in any
        insertion order produce the same key.

        Args:
            params (Mapping[str, Any]): JSON-serializable parameters.

        Returns:
            str: A SHA-256 hex digest of the sorted JSON encoding.
        """
        raw = json.dumps(params, sort_keys=True, default=str, ensure_ascii=False)
        return hashlib.sha256(raw.encode()).hexdigest()

    def set(self, key: str, value: T, ttl: Optional[float] = None) -> None:
        """Store a value. Evicts the least recently accessed entry when full.

        Args:
            key (str): The cache key under which to store the value.
            value (T): The value to cache.
            ttl (Optional[float]): Lifetime override in seconds.
        """
        now = self._clock()
        if key not in self._store and len(self._store) >= self._max_size:
            self._evict_oldest()
        self._store[key] = CacheEntry(
            data=value,
            timestamp=now,
            ttl=self._ttl if ttl is None else ttl,
            last_accessed=now,
        )

    def get(self, key: str) -> Optional[T]:
        """Return the cached value if present and not expired, else None.

        Args:
            key (str): The cache key to look up.

        Returns:
            Optional[T]: The cached value, or None if the key is missing or
                expired.
        """
        entry = self._store.get(key)
        if entry is None:
            return None
        now = self._clock()
        if entry.is_expired(now):
            del self._store[key]
            return None
        entry.access_count += 1
        entry.last_accessed = now
        return entry.data

    def has(self, key: str) -> bool:
        """Check whether a key is present and not expired."""
        return self.get(key) is not None

    def delete(self, key: str) -> bool:
        """Remove a key. Returns True if it was present."""
        return self._store.pop(key, None) is not None

    def clear(self) -> None:
        """Clear all cached entries."""
        self._store.clear()

    def cleanup(self) -> int:
        """Remove all expired entries.

        Returns:
            int: Number of entries removed.
        """
        now = self._clock()
        expired = [k for k, entry in self._store.items() if entry.is_expired(now)]
        for k in expired:
            del self._store[k]
        return len(expired)

    def get_stats(self) -> Dict[str, Any]:
        """Report size, expired count, total accesses and average age.

        Returns:
            Dict[str, Any]: Cache statistics. ``average_age`` is in seconds.
        """
        now = self._clock()
        entries = list(self._store.values())
        return {
            "size": len(entries),
            "max_size": self._max_size,
            "expired": sum(1 for e in entries if e.is_expired(now)),
            "total_accesses": sum(e.access_count for e in entries),
            "average_age": (
                sum(now - e.timestamp for e in entries) / len(entries) if entries else 0.0
            ),
        }

    def _evict_oldest(self) -> None:
        """Evict the entry with the oldest ``last_accessed``."""
        if not self._store:
            return
        oldest_key = min(self._store, key=lambda k: self._store[k].last_accessed)
        del self._store[oldest_key]

    def start(self) -> None:
        """Start the periodic background sweep on the running event loop."""
        if self._cleanup_task is not None and not self._cleanup_task.done():
            return
        self._cleanup_task = asyncio.get_running_loop().create_task(self._cleanup_loop())

    async def _cleanup_loop(self) -> None:
        """Sweep expired entries every ``cleanup_interval`` seconds."""
        while True:
            await asyncio.sleep(self._cleanup_interval)
            removed = self.cleanup()
            if removed:
                logger.debug("Swept %d expired cache entr(ies)", removed)

    async def aclose(self) -> None:
        """Stop the background sweep and drop all entries."""
        task, self._cleanup_task = self._cleanup_task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self.clear()


class AsyncCache(TTLCache[T]):
    """TTL cache with single-flight ``get_or_set`` for coroutine fetchers."""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._pending: Dict[str, asyncio.Future] = {}
        self._waiters: Dict[asyncio.Future, int] = {}

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def get_or_set(
        self,
        key: str,
        fetcher: Callable[[], Awaitable[T]],
        ttl: Optional[float] = None,
    ) -> T:
        """Return the cached value or fetch it once for all concurrent callers.

        Concurrent callers with the same key share a single fetch.  The
        result is cached on success; failures are not cached, so the next
        call retries.  Cancelling a caller leaves the shared fetch running
        for the others; once the last waiting caller is cancelled the fetch
        itself is cancelled.

        Args:
            key (str): The cache key.
            fetcher (Callable[[], Awaitable[T]]): Coroutine factory producing
                the value on a miss.
            ttl (Optional[float]): Lifetime override for the fetched value.

        Returns:
            T: The cached or freshly fetched value.
        """
        cached = self.get(key)
        if cached is not None:
            return cached

        pending = self._pending.get(key)
        if pending is None or pending.done():
            pending = asyncio.ensure_future(self._fetch(key, fetcher, ttl))
            self._pending[key] = pending
        self._waiters[pending] = self._waiters.get(pending, 0) + 1
        try:
            return await asyncio.shield(pending)
        finally:
            self._release(key, pending)

    def _release(self, key: str, pending: asyncio.Future) -> None:
        remaining = self._waiters.get(pending, 1) - 1
        if remaining > 0:
            self._waiters[pending] = remaining
            return
        self._waiters.pop(pending, None)
        if not pending.done():
            logger.debug("Cancelling fetch for %s: no callers left", key)
            pending.cancel()
            if self._pending.get(key) is pending:
                del self._pending[key]

    async def _fetch(
        self,
        key: str,
        fetcher: Callable[[], Awaitable[T]],
        ttl: Optional[float],
    ) -> T:
        try:
            result = await fetcher()
            self.set(key, result, ttl)
            return result
        finally:
            if self._pending.get(key) is asyncio.current_task():
                del self._pending[key]

    def clear_pending(self) -> None:
        """Forget in-flight fetches; running fetchers are left to finish."""
        self._pending.clear()

    async def aclose(self) -> None:
        self.clear_pending()
        await super().aclose()
