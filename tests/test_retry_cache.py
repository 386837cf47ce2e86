"""Tests for RetryCounterCache: shared message retry accounting."""

from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor
from threading import Barrier

import pytest

from wasessions.whatsapp.retry_cache import (
    RetryCounterCache,
    get_retry_cache,
    reset_retry_cache,
)


class TestRetryCounterCacheBasics:
    """Basic RetryCounterCache functionality tests."""

    def test_get_unknown_returns_none(self) -> None:
        cache = RetryCounterCache()
        assert cache.get("msg-1") is None

    def test_set_and_get(self) -> None:
        cache = RetryCounterCache()
        cache.set("msg-1", 2)

        assert cache.get("msg-1") == 2
        assert len(cache) == 1

    def test_increment_starts_at_one(self) -> None:
        cache = RetryCounterCache()

        assert cache.increment("msg-1") == 1
        assert cache.increment("msg-1") == 2
        assert cache.get("msg-1") == 2

    def test_delete(self) -> None:
        cache = RetryCounterCache()
        cache.set("msg-1", 1)

        assert cache.delete("msg-1") is True
        assert cache.delete("msg-1") is False
        assert cache.get("msg-1") is None

    def test_clear_all(self) -> None:
        cache = RetryCounterCache()
        cache.set("a", 1)
        cache.set("b", 1)

        assert cache.clear_all() == 2
        assert len(cache) == 0

    @pytest.mark.parametrize("ttl", [0, -5])
    def test_invalid_ttl(self, ttl: float) -> None:
        with pytest.raises(ValueError):
            RetryCounterCache(ttl=ttl)


class TestRetryCounterCacheExpiry:
    """Entries disappear after the TTL."""

    def test_get_after_expiry(self) -> None:
        cache = RetryCounterCache(ttl=0.05)
        cache.set("msg-1", 3)

        time.sleep(0.1)

        assert cache.get("msg-1") is None
        assert len(cache) == 0

    def test_increment_after_expiry_restarts(self) -> None:
        cache = RetryCounterCache(ttl=0.05)
        cache.increment("msg-1")
        cache.increment("msg-1")

        time.sleep(0.1)

        assert cache.increment("msg-1") == 1

    def test_clear_expired(self) -> None:
        cache = RetryCounterCache(ttl=0.05)
        cache.set("old", 1)
        time.sleep(0.1)

        assert cache.clear_expired() == 1
        assert cache.clear_expired() == 0
        assert len(cache) == 0

    def test_write_sweeps_unread_expired_entries(self) -> None:
        """Entries that are never read again are dropped by a later write."""
        cache = RetryCounterCache(ttl=0.01)
        for i in range(1000):
            cache.set(f"msg-{i}", 1)

        time.sleep(0.05)
        cache.set("fresh", 1)

        assert len(cache) == 1
        assert cache.get("fresh") == 1

    def test_increment_sweeps_unread_expired_entries(self) -> None:
        cache = RetryCounterCache(ttl=0.01)
        for i in range(100):
            cache.increment(f"msg-{i}")

        time.sleep(0.05)
        cache.increment("fresh")

        assert len(cache) == 1


class TestRetryCounterCacheThreadSafety:
    """Concurrent increments are not lost."""

    def test_concurrent_increment(self) -> None:
        cache = RetryCounterCache()
        workers = 8
        per_worker = 200
        barrier = Barrier(workers)

        def work() -> None:
            barrier.wait()
            for _ in range(per_worker):
                cache.increment("msg-1")

        with ThreadPoolExecutor(max_workers=workers) as pool:
            for future in [pool.submit(work) for _ in range(workers)]:
                future.result()

        assert cache.get("msg-1") == workers * per_worker


class TestGlobalCache:
    """Tests for the process-wide singleton."""

    def test_singleton(self) -> None:
        assert get_retry_cache() is get_retry_cache()

    def test_reset(self) -> None:
        first = get_retry_cache()
        reset_retry_cache()
        assert get_retry_cache() is not first

    def test_first_ttl_wins(self) -> None:
        reset_retry_cache()
        cache = get_retry_cache(ttl=30)
        assert get_retry_cache(ttl=90).ttl == 30
        assert cache.ttl == 30
