"""Tests for multical.core.cache — TTL store, capacity control and key helpers."""

import threading
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from multical.core.cache import (
    KEY_PREFIX,
    CacheStore,
    aggregated_key,
    date_range_key,
    events_key,
    make_key,
    safe_get,
    safe_set,
    search_key,
    sources_key,
)


# ---------------------------------------------------------------------------
# Tests for expiry
# ---------------------------------------------------------------------------


class TestCacheCoherence:
    def test_get_after_set_returns_value(self, cache):
        cache.set("k", [1, 2, 3], timedelta(minutes=5))
        assert cache.get("k") == [1, 2, 3]

    def test_expires_after_ttl(self, cache, clock):
        cache.set("k", "v", timedelta(minutes=5))
        clock.advance(5 * 60)
        assert cache.get("k") == "v"  # expiry is strictly after expires_at
        clock.advance(1)
        assert cache.get("k") is None
        assert cache.keys() == []

    def test_default_ttl(self, clock):
        store = CacheStore(default_ttl=timedelta(seconds=10), clock=clock)
        store.set("k", "v")
        clock.advance(11)
        assert store.get("k") is None

    def test_set_replaces_entry(self, cache):
        cache.set("k", "old")
        cache.set("k", "new")
        assert cache.get("k") == "new"
        assert len(cache) == 1

    def test_missing_key(self, cache):
        assert cache.get("nope") is None
        assert not cache.has("nope")

    def test_write_sweeps_expired_entries(self, cache, clock):
        cache.set("short", 1, timedelta(seconds=1))
        cache.set("long", 2, timedelta(hours=1))
        clock.advance(2)
        cache.set("other", 3)
        assert sorted(cache.keys()) == ["long", "other"]

    def test_non_positive_ttl_rejected(self, cache):
        with pytest.raises(ValueError):
            cache.set("k", "v", timedelta(seconds=-1))


# ---------------------------------------------------------------------------
# Tests for deletion and invalidation
# ---------------------------------------------------------------------------


class TestInvalidation:
    def test_delete(self, cache):
        cache.set("k", "v")
        assert cache.delete("k") is True
        assert cache.delete("k") is False

    def test_clear(self, cache):
        cache.set("a", 1)
        cache.set("b", 2)
        cache.clear()
        assert len(cache) == 0

    def test_invalidate_by_substring(self, cache):
        cache.set(events_key("sp_abc"), [])
        cache.set(aggregated_key(["sp_abc", "ex_def"]), [])
        cache.set(events_key("ex_def"), [])
        removed = cache.invalidate_by_substring("sp_abc")
        assert removed == 2
        assert cache.keys() == [events_key("ex_def")]


# ---------------------------------------------------------------------------
# Tests for capacity control
# ---------------------------------------------------------------------------


class TestCapacity:
    def test_evicts_oldest_quarter_when_over_capacity(self, clock):
        store = CacheStore(max_entries=8, clock=clock)
        for i in range(9):
            store.set(f"k{i}", i)
            clock.advance(1)
        # 9 entries > 8 → the oldest 9 // 4 = 2 go
        assert sorted(store.keys()) == [f"k{i}" for i in range(2, 9)]

    def test_optimize_sweeps_expired(self, cache, clock):
        cache.set("a", 1, timedelta(seconds=1))
        clock.advance(5)
        cache.optimize()
        assert cache.keys() == []

    def test_invalid_capacity(self):
        with pytest.raises(ValueError):
            CacheStore(max_entries=0)


# ---------------------------------------------------------------------------
# Tests for health / export
# ---------------------------------------------------------------------------


class TestHealth:
    def test_counts_expired_but_not_evicted(self, cache, clock):
        cache.set("a", 1, timedelta(seconds=1))
        cache.set("b", {"x": "y"}, timedelta(hours=1))
        clock.advance(2)
        health = cache.health()
        assert health.total_items == 2
        assert health.expired_items == 1
        assert health.memory_usage > 0
        assert health.hit_rate == 0.0
        assert not health.healthy

    def test_empty_cache_is_healthy(self, cache):
        health = cache.health()
        assert health.total_items == 0
        assert health.healthy

    def test_memory_usage_handles_non_json_values(self, cache):
        cache.set("when", datetime(2026, 1, 1, tzinfo=timezone.utc))
        assert cache.health().memory_usage > 0

    def test_export_skips_expired(self, cache, clock):
        cache.set("a", 1, timedelta(seconds=1))
        cache.set("b", 2, timedelta(hours=1))
        clock.advance(2)
        exported = cache.export()
        assert list(exported) == ["b"]
        assert exported["b"]["value"] == 2


# ---------------------------------------------------------------------------
# Tests for key helpers
# ---------------------------------------------------------------------------


class TestKeys:
    def test_prefix(self):
        assert make_key("events", "x") == f"{KEY_PREFIX}events-x"
        assert sources_key().startswith(KEY_PREFIX)

    def test_aggregated_key_is_order_independent(self):
        assert aggregated_key(["b", "a"]) == aggregated_key(["a", "b"])
        assert aggregated_key(["a", "a", "b"]) == aggregated_key(["a", "b"])

    def test_search_key_includes_sources(self):
        assert search_key("Sync", ["a"]) != search_key("Sync", ["b"])
        assert search_key(" sync ", ["a"]) == search_key("SYNC", ["a"])

    def test_date_range_key(self):
        start = datetime(2026, 1, 1, tzinfo=timezone.utc)
        end = datetime(2026, 2, 1, tzinfo=timezone.utc)
        assert date_range_key(start, end, ["b", "a"]) == date_range_key(start, end, ["a", "b"])
        assert date_range_key(start, end, ["a"]) != date_range_key(start, end + timedelta(days=1), ["a"])


# ---------------------------------------------------------------------------
# Tests for guarded access / thread safety
# ---------------------------------------------------------------------------


class TestGuardedAccess:
    def test_safe_get_swallows_cache_errors(self):
        broken = MagicMock()
        broken.get.side_effect = RuntimeError("boom")
        assert safe_get(broken, "k") is None

    def test_safe_set_swallows_cache_errors(self):
        broken = MagicMock()
        broken.set.side_effect = RuntimeError("boom")
        safe_set(broken, "k", "v")  # does not raise

    def test_concurrent_writers(self):
        store = CacheStore(max_entries=10_000)

        def writer(n):
            for i in range(200):
                store.set(f"{n}-{i}", i)

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(store) == 1000
