"""Tests for the analytics engine."""

import pytest
import pytest_asyncio

from cachegraph.analytics.stats import TTLStats
from cachegraph.clock import ManualClock
from cachegraph.facade import GraphCache
from cachegraph.keys import CacheKey


def entries(*names: str) -> list[CacheKey]:
    return [CacheKey.entry(n) for n in names]


async def read_times(cache: GraphCache, key: str, times: int) -> None:
    for _ in range(times):
        await cache.get(key)


class TestTTLAnalytics:
    """Tests for TTL statistics over key sets."""

    @pytest.mark.asyncio
    async def test_ttl_map_skips_untimed(self, cache: GraphCache) -> None:
        await cache.set("a", 1, ttl=100)
        await cache.set("b", 1, ttl=50)
        await cache.forever("c", 1)

        ttls = await cache.analytics.ttl_map(["a", "b", "c", "missing"])

        assert ttls == {CacheKey.entry("a"): 100, CacheKey.entry("b"): 50}

    @pytest.mark.asyncio
    async def test_ttl_stats(self, cache: GraphCache) -> None:
        await cache.set("a", 1, ttl=100)
        await cache.set("b", 1, ttl=50)

        stats = await cache.analytics.ttl_stats(["a", "b", "missing"])

        assert stats == TTLStats(min=50, max=100, average=75.0, count=2)
        assert await cache.analytics.max_ttl_key(["a", "b"]) == CacheKey.entry("a")

    @pytest.mark.asyncio
    async def test_max_ttl_key_empty(self, cache: GraphCache) -> None:
        assert await cache.analytics.max_ttl_key(["missing"]) is None

    @pytest.mark.asyncio
    async def test_keys_with_ttl_below_includes_missing(self, cache: GraphCache) -> None:
        await cache.set("a", 1, ttl=100)
        await cache.set("b", 1, ttl=50)
        await cache.forever("c", 1)

        below = await cache.analytics.keys_with_ttl_below(["a", "b", "c", "missing"], 60)

        assert below == entries("b", "missing")

    @pytest.mark.asyncio
    async def test_keys_within_ttl_range(self, cache: GraphCache) -> None:
        await cache.set("a", 1, ttl=100)
        await cache.set("b", 1, ttl=50)
        assert await cache.analytics.keys_within_ttl_range(["a", "b"], 60, 200) == entries("a")

    @pytest.mark.asyncio
    async def test_combined_ttl_stats(self, cache: GraphCache) -> None:
        await cache.hierarchy.store_under_parent("p", "child", 1, ttl=10)
        await cache.tags.set_with_tags("tagged", 1, ttl=30, tags="t")

        stats = await cache.analytics.combined_ttl_stats(parents=["p"], tags=["t"])

        assert stats.count == 2
        assert stats.average == 20.0

    @pytest.mark.asyncio
    async def test_versioned_ttl_stats(self, cache: GraphCache) -> None:
        await cache.versions.set_with_version("r", "v1", 1, ttl=10)
        await cache.versions.set_with_version("r", "v2", 2, ttl=20)

        assert (await cache.analytics.versioned_ttl_stats(["r"])).max == 20


class TestKeyScores:
    """Tests for per-key scores."""

    @pytest.mark.asyncio
    async def test_weight_prefers_hot_short_keys(self, cache: GraphCache) -> None:
        await cache.set("hot", 1, ttl=100)
        await cache.set("cold", 1, ttl=50)
        await read_times(cache, "hot", 2)

        weights = await cache.analytics.compute_ttl_access_weight(["hot", "cold"])

        assert weights == {CacheKey.entry("hot"): 0.02, CacheKey.entry("cold"): 0.0}

    @pytest.mark.asyncio
    async def test_forecast_from_metadata(self, cache: GraphCache, clock: ManualClock) -> None:
        await cache.set("a", 1, ttl=100)
        clock.advance(30)

        forecast = await cache.analytics.forecast_ttl_decay(["a", "unknown"])

        assert forecast[CacheKey.entry("a")] == 70.0
        assert forecast[CacheKey.entry("unknown")] == cache.settings.default_ttl

    @pytest.mark.asyncio
    async def test_forecast_never_negative(self, cache: GraphCache, clock: ManualClock) -> None:
        await cache.set("a", 1, ttl=10)
        clock.advance(30)
        assert (await cache.analytics.forecast_ttl_decay(["a"]))[CacheKey.entry("a")] == 0.0

    @pytest.mark.asyncio
    async def test_time_window_decay(self, cache: GraphCache) -> None:
        await cache.set("a", 1, ttl=50)
        decay = await cache.analytics.time_window_decay(["a", "missing"], 100)
        assert decay == {CacheKey.entry("a"): 0.5, CacheKey.entry("missing"): 1.0}

    @pytest.mark.asyncio
    async def test_predictive_eviction_score(self, cache: GraphCache) -> None:
        """Frequently read keys score higher and are evicted later."""
        await cache.set("hot", 1, ttl=100)
        await cache.set("cold", 1, ttl=100)
        await read_times(cache, "hot", 5)

        scores = await cache.analytics.predictive_eviction_score(["hot", "cold"])

        assert scores[CacheKey.entry("hot")] > scores[CacheKey.entry("cold")]

    @pytest.mark.asyncio
    async def test_ttl_optimization(self, cache: GraphCache) -> None:
        await cache.hierarchy.store_under_parent("p", "short", 1, ttl=5)
        await cache.hierarchy.store_under_parent("p", "long", 1, ttl=1000)

        optimized = await cache.analytics.ttl_optimization(parents=["p"])

        assert optimized == {CacheKey.entry("short"): 305, CacheKey.entry("long"): 700}


class TestHierarchyAnalytics:
    """Tests for per-parent figures."""

    @pytest_asyncio.fixture
    async def family(self, cache: GraphCache) -> GraphCache:
        await cache.hierarchy.store_under_parent("p", "c1", 1, ttl=5)
        await cache.hierarchy.store_under_parent("p", "c2", 1, ttl=100)
        await cache.hierarchy.add_children("c1", ["g"])
        await read_times(cache, "c1", 10)
        return cache

    @pytest.mark.asyncio
    async def test_decay_and_health(self, family: GraphCache) -> None:
        decay = await family.analytics.hierarchical_decay(["p"])
        health = await family.analytics.hierarchical_health(["p"])

        assert decay == {CacheKey.entry("p"): 0.5}
        assert health == {CacheKey.entry("p"): 155.0}

    @pytest.mark.asyncio
    async def test_parent_analytics(self, family: GraphCache) -> None:
        stats = await family.analytics.parent_analytics("p")

        assert stats.child_count == 2
        assert stats.ttl_sum == 105
        assert stats.average_ttl == 52.5
        assert stats.total_access == 10
        assert await family.analytics.parent_ttl("p") == 105

    @pytest.mark.asyncio
    async def test_dependency_impact(self, family: GraphCache) -> None:
        assert await family.analytics.dependency_impact(["p"]) == {CacheKey.entry("p"): 3}

    @pytest.mark.asyncio
    async def test_alert_low_ttl(self, family: GraphCache) -> None:
        assert await family.analytics.alert_low_ttl(["p"], 10) == entries("c1")

    @pytest.mark.asyncio
    async def test_access_stats(self, family: GraphCache) -> None:
        await family.tags.tag("c1", "t")

        stats = await family.analytics.access_stats(parents=["p"], tags=["t"])

        assert stats == {"parents": {"p": 10}, "tags": {"t": 10}}


class TestTagAnalytics:
    """Tests for per-tag figures."""

    @pytest.mark.asyncio
    async def test_tag_stats(self, cache: GraphCache) -> None:
        await cache.tags.set_with_tags("a", 1, ttl=100, tags="t")
        await cache.tags.set_with_tags("b", 1, ttl=50, tags="t")
        await read_times(cache, "a", 3)

        stats = await cache.analytics.tag_stats("t")

        assert stats.count == 2
        assert stats.ttl_sum == 150
        assert stats.average_ttl == 75.0
        assert stats.total_access == 3
        assert stats.priority_score == pytest.approx(3 / 75)

    @pytest.mark.asyncio
    async def test_missing_member_counts_as_zero(self, cache: GraphCache) -> None:
        await cache.tags.set_with_tags("a", 1, ttl=100, tags="t")
        await cache.tags.tag("gone", "t")

        assert (await cache.analytics.tag_stats("t")).average_ttl == 50.0

    @pytest.mark.asyncio
    async def test_tag_priority_sorted(self, cache: GraphCache) -> None:
        await cache.tags.set_with_tags("hot", 1, ttl=10, tags="busy")
        await cache.tags.set_with_tags("cold", 1, ttl=10, tags="quiet")
        await read_times(cache, "hot", 4)

        priority = await cache.analytics.compute_tag_priority(["quiet", "busy"])

        assert list(priority) == ["busy", "quiet"]

    @pytest.mark.asyncio
    async def test_cross_tag_analytics(self, cache: GraphCache) -> None:
        await cache.tags.set_with_tags("a", 1, ttl=10, tags="t")
        await read_times(cache, "a", 5)

        stats = await cache.analytics.cross_tag_analytics(["t"])

        assert stats["t"].weighted_score == 0.5
        assert await cache.analytics.cross_tag_weight(["t"]) == {"t": 0.5}

    @pytest.mark.asyncio
    async def test_aggregate_tag_stats(self, cache: GraphCache) -> None:
        await cache.tags.tag_keys("x", ["a", "b"])
        await cache.tags.tag_keys("y", ["a"])

        stats = await cache.analytics.aggregate_tag_stats(["x", "y"])

        assert stats == {"total_keys": 3, "tag_details": {"x": 2, "y": 1}}

    @pytest.mark.asyncio
    async def test_average_ttl_per_tag(self, cache: GraphCache) -> None:
        await cache.tags.set_with_tags("a", 1, ttl=10, tags="t")
        await cache.tags.set_with_tags("b", 1, ttl=30, tags="t")

        assert await cache.analytics.average_ttl_per_tag(["t", "empty"]) == {"t": 20.0, "empty": 0.0}
