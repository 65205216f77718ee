# Copyright (c) 2026 Heureum AI. All rights reserved.

"""Tests for the TTL cache and the single-flight async cache."""

import asyncio

import pytest
from chat_runtime.services.cache import AsyncCache, CacheEntry, TTLCache


# ---------------------------------------------------------------------------
# TTLCache
# ---------------------------------------------------------------------------


class TestTTLCache:
    def test_value_expires_after_ttl(self, clock):
        """A 0.5 s entry is readable at once and gone after 0.6 s."""
        cache = TTLCache(ttl=0.5, clock=clock)
        cache.set("k", "v")
        assert cache.get("k") == "v"

        clock.advance(0.6)
        assert cache.get("k") is None
        assert len(cache) == 0

    def test_entry_alive_at_exact_ttl(self, clock):
        cache = TTLCache(ttl=1.0, clock=clock)
        cache.set("k", "v")
        clock.advance(1.0)
        assert cache.get("k") == "v"

    def test_per_entry_ttl_override(self, clock):
        cache = TTLCache(ttl=100, clock=clock)
        cache.set("short", 1, ttl=1)
        cache.set("long", 2)
        clock.advance(5)
        assert cache.get("short") is None
        assert cache.get("long") == 2

    def test_max_size_evicts_least_recently_accessed(self, clock):
        cache = TTLCache(ttl=100, max_size=2, clock=clock)
        cache.set("a", 1)
        clock.advance(1)
        cache.set("b", 2)
        clock.advance(1)
        cache.get("a")  # "b" is now the oldest access
        clock.advance(1)
        cache.set("c", 3)

        assert len(cache) == 2
        assert cache.get("b") is None
        assert cache.get("a") == 1
        assert cache.get("c") == 3

    def test_overwrite_does_not_evict(self, clock):
        cache = TTLCache(ttl=100, max_size=2, clock=clock)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("a", 10)
        assert len(cache) == 2
        assert cache.get("a") == 10
        assert cache.get("b") == 2

    def test_has_and_delete(self, clock):
        cache = TTLCache(clock=clock)
        cache.set("k", "v")
        assert cache.has("k")
        assert cache.delete("k") is True
        assert cache.delete("k") is False
        assert not cache.has("k")

    def test_cleanup_removes_only_expired(self, clock):
        cache = TTLCache(ttl=10, clock=clock)
        cache.set("old", 1)
        clock.advance(8)
        cache.set("new", 2)
        clock.advance(3)

        assert cache.cleanup() == 1
        assert cache.cleanup() == 0
        assert cache.get("new") == 2

    def test_stats(self, clock):
        cache = TTLCache(ttl=10, max_size=5, clock=clock)
        cache.set("a", 1)
        clock.advance(4)
        cache.get("a")
        cache.get("a")

        stats = cache.get_stats()
        assert stats["size"] == 1
        assert stats["max_size"] == 5
        assert stats["expired"] == 0
        assert stats["total_accesses"] == 2
        assert stats["average_age"] == pytest.approx(4.0)

    def test_empty_stats(self):
        stats = TTLCache().get_stats()
        assert stats["size"] == 0
        assert stats["average_age"] == 0.0


class TestCacheEntry:
    def test_is_expired(self):
        entry = CacheEntry(data="x", timestamp=100.0, ttl=5.0)
        assert not entry.is_expired(105.0)
        assert entry.is_expired(105.1)


class TestGenerateKey:
    def test_key_order_does_not_matter(self):
        first = TTLCache.generate_key({"modelId": "m", "temperature": 0.7, "maxTokens": 10})
        second = TTLCache.generate_key({"maxTokens": 10, "temperature": 0.7, "modelId": "m"})
        assert first == second

    def test_different_values_give_different_keys(self):
        assert TTLCache.generate_key({"a": 1}) != TTLCache.generate_key({"a": 2})


# ---------------------------------------------------------------------------
# Background sweep
# ---------------------------------------------------------------------------


class TestCleanupLoop:
    @pytest.mark.asyncio
    async def test_start_and_aclose(self, clock):
        cache = TTLCache(ttl=1, cleanup_interval=0.01, clock=clock)
        cache.set("k", "v")
        clock.advance(2)
        cache.start()
        await asyncio.sleep(0.05)
        assert len(cache) == 0

        cache.set("k", "v")
        await cache.aclose()
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self):
        cache = TTLCache(cleanup_interval=10)
        cache.start()
        task = cache._cleanup_task
        cache.start()
        assert cache._cleanup_task is task
        await cache.aclose()
        assert task.cancelled()


# ---------------------------------------------------------------------------
# AsyncCache
# ---------------------------------------------------------------------------


class TestAsyncCache:
    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_fetch(self):
        cache = AsyncCache(ttl=60)
        calls = 0
        release = asyncio.Event()

        async def fetcher():
            nonlocal calls
            calls += 1
            await release.wait()
            return "value"

        waiters = [asyncio.ensure_future(cache.get_or_set("k", fetcher)) for _ in range(5)]
        await asyncio.sleep(0)
        assert cache.pending_count == 1

        release.set()
        results = await asyncio.gather(*waiters)

        assert results == ["value"] * 5
        assert calls == 1
        assert cache.pending_count == 0
        assert cache.get("k") == "value"

    @pytest.mark.asyncio
    async def test_cached_value_skips_fetcher(self):
        cache = AsyncCache(ttl=60)
        cache.set("k", "cached")

        async def fetcher():
            raise AssertionError("fetcher must not run")

        assert await cache.get_or_set("k", fetcher) == "cached"

    @pytest.mark.asyncio
    async def test_failure_is_not_cached(self):
        cache = AsyncCache(ttl=60)
        attempts = 0

        async def flaky():
            nonlocal attempts
            attempts += 1
            if attempts == 1:
                raise RuntimeError("boom")
            return "ok"

        with pytest.raises(RuntimeError, match="boom"):
            await cache.get_or_set("k", flaky)
        assert cache.get("k") is None
        assert cache.pending_count == 0

        assert await cache.get_or_set("k", flaky) == "ok"
        assert attempts == 2

    @pytest.mark.asyncio
    async def test_ttl_override(self, clock):
        cache = AsyncCache(ttl=60, clock=clock)

        async def fetcher():
            return "v"

        await cache.get_or_set("k", fetcher, ttl=1)
        clock.advance(2)
        assert cache.get("k") is None

    @pytest.mark.asyncio
    async def test_cancelled_caller_does_not_cancel_fetch(self):
        cache = AsyncCache(ttl=60)
        release = asyncio.Event()

        async def fetcher():
            await release.wait()
            return "value"

        first = asyncio.ensure_future(cache.get_or_set("k", fetcher))
        second = asyncio.ensure_future(cache.get_or_set("k", fetcher))
        await asyncio.sleep(0)
        first.cancel()
        release.set()

        assert await second == "value"
        assert first.cancelled()
        assert cache.get("k") == "value"

    @pytest.mark.asyncio
    async def test_last_cancelled_caller_cancels_fetch(self):
        cache = AsyncCache(ttl=60)
        started = asyncio.Event()
        cancelled = asyncio.Event()

        async def fetcher():
            started.set()
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.set()
                raise
            return "value"

        first = asyncio.ensure_future(cache.get_or_set("k", fetcher))
        second = asyncio.ensure_future(cache.get_or_set("k", fetcher))
        await started.wait()

        first.cancel()
        await asyncio.gather(first, return_exceptions=True)
        assert not cancelled.is_set()
        assert cache.pending_count == 1

        second.cancel()
        await asyncio.gather(second, return_exceptions=True)
        await asyncio.wait_for(cancelled.wait(), timeout=1.0)
        assert cache.pending_count == 0
        assert cache.get("k") is None

        async def fresh():
            return "fresh"

        assert await cache.get_or_set("k", fresh) == "fresh"

    @pytest.mark.asyncio
    async def test_clear_pending(self):
        cache = AsyncCache(ttl=60)
        release = asyncio.Event()

        async def fetcher():
            await release.wait()
            return "value"

        waiter = asyncio.ensure_future(cache.get_or_set("k", fetcher))
        await asyncio.sleep(0)
        cache.clear_pending()
        assert cache.pending_count == 0

        release.set()
        assert await waiter == "value"
