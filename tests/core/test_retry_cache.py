"""
Tests for snapshot_spine.core.retry and snapshot_spine.core.cache.

Tests cover:
- Retry of transient errors only, bounded by total attempts
- Async retry path
- TTL expiry and LRU eviction of the in-memory cache
"""

import pytest

from snapshot_spine.core.cache import InMemoryCache
from snapshot_spine.core.errors import MissingIndexError, StoreUnavailableError
from snapshot_spine.core.retry import ExponentialBackoff, RetryPolicy


def _policy(max_retries=3, calls=None):
    delays = calls if calls is not None else []

    async def _async_sleep(delay):
        delays.append(delay)

    return RetryPolicy(
        ExponentialBackoff(max_retries=max_retries, base_delay=0.01, jitter=False),
        sleep=delays.append,
        async_sleep=_async_sleep,
    )


class TestRetryPolicy:
    """Tests for RetryPolicy."""

    def test_transient_error_retried_until_success(self):
        """Test a transient failure is retried and then succeeds."""
        attempts = []

        def flaky():
            attempts.append(1)
            if len(attempts) < 3:
                raise StoreUnavailableError("busy")
            return "ok"

        delays = []
        assert _policy(calls=delays).run(flaky) == "ok"
        assert len(attempts) == 3
        assert delays == [0.01, 0.02]

    def test_max_retries_counts_total_attempts(self):
        """Test max_retries=3 means three calls in total."""
        attempts = []

        def always_busy():
            attempts.append(1)
            raise StoreUnavailableError("busy")

        with pytest.raises(StoreUnavailableError):
            _policy().run(always_busy)
        assert len(attempts) == 3

    def test_structural_error_not_retried(self):
        """Test a missing index is raised on the first attempt."""
        attempts = []

        def missing_index():
            attempts.append(1)
            raise MissingIndexError("requires an index")

        with pytest.raises(MissingIndexError):
            _policy().run(missing_index)
        assert len(attempts) == 1

    def test_none_policy_never_retries(self):
        """Test RetryPolicy.none() fails immediately."""
        attempts = []

        def busy():
            attempts.append(1)
            raise StoreUnavailableError("busy")

        with pytest.raises(StoreUnavailableError):
            RetryPolicy.none().run(busy)
        assert len(attempts) == 1

    @pytest.mark.asyncio
    async def test_async_retry(self):
        """Test run_async retries transient failures."""
        attempts = []

        async def flaky():
            attempts.append(1)
            if len(attempts) < 2:
                raise ConnectionError("reset")
            return 7

        assert await _policy().run_async(flaky) == 7
        assert len(attempts) == 2


class TestInMemoryCache:
    """Tests for InMemoryCache."""

    def test_set_get(self):
        """Test a stored value is returned."""
        cache = InMemoryCache(max_size=2, default_ttl_seconds=60)
        cache.set("IN__en__2356__shampoo", {"volume": 500})
        assert cache.get("IN__en__2356__shampoo") == {"volume": 500}
        assert cache.exists("IN__en__2356__shampoo")

    def test_ttl_expiry(self):
        """Test entries expire after their TTL."""
        now = [1000.0]
        cache = InMemoryCache(default_ttl_seconds=10, time_fn=lambda: now[0])
        cache.set("k", "v")
        now[0] += 11
        assert cache.get("k") is None

    def test_lru_eviction(self):
        """Test the least recently used key is evicted at capacity."""
        cache = InMemoryCache(max_size=2, default_ttl_seconds=None)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.get("a")
        cache.set("c", 3)
        assert cache.get("b") is None
        assert cache.get("a") == 1
        assert cache.get("c") == 3

    def test_delete_and_clear(self):
        """Test delete and clear remove entries."""
        cache = InMemoryCache()
        cache.set("a", 1)
        cache.set("b", 2)
        cache.delete("a")
        assert cache.get("a") is None
        cache.clear()
        assert cache.size() == 0
