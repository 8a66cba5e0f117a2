"""Tests for Prometheus metrics."""

import pytest

from cachegraph.facade import GraphCache
from cachegraph.observability.metrics import (
    MetricsRegistry,
    get_metrics,
    record_eviction,
    record_invalidation,
    time_operation,
)


def sample(name: str, labels: dict[str, str] | None = None) -> float:
    value = get_metrics()._registry.get_sample_value(name, labels or {})
    return value or 0.0


class TestMetricsRegistry:
    """Tests for registry setup."""

    def test_initialize_is_idempotent(self) -> None:
        registry = MetricsRegistry()
        registry.initialize()
        first = registry.cache_hits_total
        registry.initialize()

        assert registry.cache_hits_total is first

    def test_separate_registries_do_not_collide(self) -> None:
        """Each MetricsRegistry owns its own CollectorRegistry."""
        MetricsRegistry().initialize()
        MetricsRegistry().initialize()

    def test_exposition_format(self) -> None:
        output = get_metrics().generate_latest()
        assert b"cachegraph_cache_hits_total" in output


class TestRecording:
    """Tests for the recording helpers."""

    @pytest.mark.asyncio
    async def test_hits_and_misses(self, cache: GraphCache) -> None:
        hits = sample("cachegraph_cache_hits_total", {"store": "memory"})
        misses = sample("cachegraph_cache_misses_total", {"store": "memory"})

        await cache.set("a", 1)
        await cache.get("a")
        await cache.get("missing")

        assert sample("cachegraph_cache_hits_total", {"store": "memory"}) == hits + 1
        assert sample("cachegraph_cache_misses_total", {"store": "memory"}) == misses + 1

    @pytest.mark.asyncio
    async def test_producer_calls(self, cache: GraphCache) -> None:
        before = sample("cachegraph_producer_calls_total", {"operation": "compute"})

        await cache.get_or_compute("a", lambda: 1)
        await cache.get_or_compute("a", lambda: 1)

        assert sample("cachegraph_producer_calls_total", {"operation": "compute"}) == before + 1

    @pytest.mark.asyncio
    async def test_cascade_counted(self, cache: GraphCache) -> None:
        before = sample("cachegraph_invalidated_keys_total", {"cause": "dependency"})
        await cache.dependencies.depends_on("b", "a")

        await cache.dependencies.invalidate_with_dependencies("a")

        assert sample("cachegraph_invalidated_keys_total", {"cause": "dependency"}) == before + 2

    def test_zero_counts_ignored(self) -> None:
        before = sample("cachegraph_evicted_keys_total", {"reason": "unit"})
        record_eviction("unit", 0)
        record_invalidation("unit", 0)
        assert sample("cachegraph_evicted_keys_total", {"reason": "unit"}) == before

    def test_time_operation_observes_on_error(self) -> None:
        labels = {"operation": "unit", "store": "memory"}
        before = sample("cachegraph_cache_operation_duration_seconds_count", labels)

        with pytest.raises(RuntimeError):
            with time_operation("unit"):
                raise RuntimeError("boom")

        assert sample("cachegraph_cache_operation_duration_seconds_count", labels) == before + 1
