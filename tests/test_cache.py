"""Tests for the bounded expression cache and engine-level caching."""

import threading
import time

import pytest

from flowexpr.engine import ExpressionContext
from flowexpr.engine.cache import ExpressionCache


class TestExpressionCache:
    """Bounded store with insertion-order eviction and ttl."""

    def test_get_set(self):
        cache = ExpressionCache(max_size=10)
        cache.set("a", 1)

        assert cache.get("a") == 1
        assert "a" in cache
        assert len(cache) == 1

    def test_miss_returns_none_and_counts(self):
        cache = ExpressionCache()

        assert cache.get("missing") is None
        assert cache.stats.misses == 1
        assert cache.stats.hits == 0

    def test_evicts_least_recently_inserted(self):
        cache = ExpressionCache(max_size=2)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.get("a")  # reads do not refresh insertion order
        cache.set("c", 3)

        assert "a" not in cache
        assert cache.get("b") == 2
        assert cache.get("c") == 3
        assert cache.stats.evictions == 1

    def test_reinsert_refreshes_order(self):
        cache = ExpressionCache(max_size=2)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("a", 10)
        cache.set("c", 3)

        assert cache.get("a") == 10
        assert "b" not in cache

    def test_expired_entries_are_misses(self):
        cache = ExpressionCache(ttl_ms=1)
        cache.set("a", 1)
        time.sleep(0.02)

        assert cache.get("a") is None
        assert cache.stats.expirations == 1
        assert len(cache) == 0

    def test_no_ttl_never_expires(self):
        cache = ExpressionCache(ttl_ms=None)
        cache.set("a", 1)
        time.sleep(0.01)

        assert cache.get("a") == 1

    def test_delete_and_clear(self):
        cache = ExpressionCache()
        cache.set("a", 1)
        cache.set("b", 2)

        assert cache.delete("a") is True
        assert cache.delete("a") is False
        cache.clear()
        assert len(cache) == 0

    def test_invalid_max_size(self):
        with pytest.raises(ValueError, match="max_size"):
            ExpressionCache(max_size=0)

    def test_concurrent_writers_respect_bound(self):
        cache = ExpressionCache(max_size=50)

        def writer(offset: int) -> None:
            for i in range(200):
                cache.set(f"{offset}-{i}", i)

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(cache) == 50


class TestEngineCaching:
    """Result caching through ExpressionEngine.evaluate."""

    def test_second_evaluation_is_cached(self, engine):
        context = ExpressionContext(json={"a": 2})

        first = engine.evaluate("{{ $json.a * 10 }}", context)
        second = engine.evaluate("{{ $json.a * 10 }}", context)

        assert first.value == second.value == 20
        assert not first.cached
        assert second.cached
        assert second.execution_time_ms == 0.0

    def test_cache_key_includes_context(self, engine):
        first = engine.evaluate("{{ $json.a }}", {"json": {"a": 1}})
        second = engine.evaluate("{{ $json.a }}", {"json": {"a": 2}})

        assert first.value == 1
        assert second.value == 2
        assert not second.cached

    def test_whitespace_variants_share_entry(self, engine):
        context = ExpressionContext(json={"a": 1})
        engine.evaluate("{{ $json.a + 1 }}", context)

        result = engine.evaluate("{{ $json.a  +  1 }}", context)

        assert result.cached
        assert result.value == 2

    def test_failures_are_not_cached(self, engine):
        engine.evaluate("{{ $json.missing.deep }}", {"json": {}})
        result = engine.evaluate("{{ $json.missing.deep }}", {"json": {}})

        assert not result.success
        assert not result.cached

    def test_volatile_results_are_not_cached(self, engine):
        first = engine.evaluate("{{ $uuid() }}")
        second = engine.evaluate("{{ $uuid() }}")

        assert first.value != second.value
        assert not second.cached

    def test_cached_value_is_isolated_from_caller_mutation(self, engine):
        context = ExpressionContext(json={"tags": ["a"]})
        first = engine.evaluate("{{ $json.tags }}", context)
        first.value.append("mutated")

        second = engine.evaluate("{{ $json.tags }}", context)

        assert second.cached
        assert second.value == ["a"]

    def test_disabled_cache(self, make_engine):
        engine = make_engine(cache={"enabled": False})
        context = ExpressionContext(json={"a": 1})
        engine.evaluate("{{ $json.a }}", context)

        assert not engine.evaluate("{{ $json.a }}", context).cached
        assert engine.cache_stats()["size"] == 0

    def test_dependency_slicing_ignores_unrelated_roots(self, make_engine):
        engine = make_engine(cache={"dependencySlicing": True})
        engine.evaluate("{{ $json.a }}", {"json": {"a": 1}, "env": {"X": "1"}})

        result = engine.evaluate("{{ $json.a }}", {"json": {"a": 1}, "env": {"X": "2"}})

        assert result.cached

    def test_clear_cache(self, engine):
        context = ExpressionContext(json={"a": 1})
        engine.evaluate("{{ $json.a }}", context)
        engine.clear_cache()

        assert not engine.evaluate("{{ $json.a }}", context).cached
