"""Prometheus metrics for cachegraph.

Provides metrics collection and exposure:
- Cache metrics (hits, misses, producer calls, latency)
- Graph metrics (invalidated keys, evictions)
- Concurrency metrics (compare-and-swap conflicts)

Metrics live on a dedicated CollectorRegistry so several caches (and test
runs) in one process never collide on metric names.

Usage:
    from cachegraph.observability.metrics import get_metrics

    metrics = get_metrics()
    metrics.cache_hits_total.labels(store="memory").inc()
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest

from cachegraph.config import settings

logger = logging.getLogger(__name__)


@dataclass
class MetricsRegistry:
    """Registry for Prometheus metrics."""

    # Cache metrics
    cache_hits_total: Any = None
    cache_misses_total: Any = None
    producer_calls_total: Any = None
    cache_operation_duration_seconds: Any = None

    # Graph metrics
    invalidated_keys_total: Any = None
    evicted_keys_total: Any = None

    # Concurrency metrics
    cas_conflicts_total: Any = None

    # Internal state
    _initialized: bool = field(default=False, repr=False)
    _registry: Any = field(default=None, repr=False)

    def initialize(self) -> None:
        """Initialize Prometheus metrics."""
        if self._initialized:
            return

        if not settings.enable_metrics:
            logger.info("Metrics are disabled")
            self._initialized = True
            return

        self._registry = CollectorRegistry()

        self.cache_hits_total = Counter(
            "cachegraph_cache_hits_total",
            "Cache hits",
            ["store"],
            registry=self._registry,
        )

        self.cache_misses_total = Counter(
            "cachegraph_cache_misses_total",
            "Cache misses",
            ["store"],
            registry=self._registry,
        )

        self.producer_calls_total = Counter(
            "cachegraph_producer_calls_total",
            "Producer invocations on miss or refresh",
            ["operation"],
            registry=self._registry,
        )

        self.cache_operation_duration_seconds = Histogram(
            "cachegraph_cache_operation_duration_seconds",
            "Cache operation latency in seconds",
            ["operation", "store"],
            buckets=(0.0001, 0.0005, 0.001, 0.005, 0.01, 0.025, 0.05, 0.1),
            registry=self._registry,
        )

        self.invalidated_keys_total = Counter(
            "cachegraph_invalidated_keys_total",
            "Keys removed by cascading invalidation",
            ["cause"],
            registry=self._registry,
        )

        self.evicted_keys_total = Counter(
            "cachegraph_evicted_keys_total",
            "Keys removed by analytics-driven eviction",
            ["reason"],
            registry=self._registry,
        )

        self.cas_conflicts_total = Counter(
            "cachegraph_cas_conflicts_total",
            "Compare-and-swap writes lost to a concurrent writer",
            registry=self._registry,
        )

        self._initialized = True
        logger.info("Prometheus metrics initialized")

    def generate_latest(self) -> bytes:
        """Generate Prometheus metrics in exposition format."""
        if not settings.enable_metrics or self._registry is None:
            return b"# Metrics disabled\n"
        return generate_latest(self._registry)


# Global metrics registry
metrics_registry = MetricsRegistry()


def get_metrics() -> MetricsRegistry:
    """Get the global metrics registry.

    Initializes metrics on first access.
    """
    if not metrics_registry._initialized:
        metrics_registry.initialize()
    return metrics_registry


def record_cache_hit(store: str = "memory") -> None:
    """Record cache hit."""
    metrics = get_metrics()
    if metrics.cache_hits_total:
        metrics.cache_hits_total.labels(store=store).inc()


def record_cache_miss(store: str = "memory") -> None:
    """Record cache miss."""
    metrics = get_metrics()
    if metrics.cache_misses_total:
        metrics.cache_misses_total.labels(store=store).inc()


def record_producer_call(operation: str) -> None:
    """Record a producer invocation.

    Args:
        operation: Cache operation that called the producer (compute, refresh, ...)
    """
    metrics = get_metrics()
    if metrics.producer_calls_total:
        metrics.producer_calls_total.labels(operation=operation).inc()


def record_invalidation(cause: str, count: int = 1) -> None:
    """Record keys removed by a cascade.

    Args:
        cause: What triggered the cascade (dependency, tag, parent)
        count: Number of keys removed
    """
    metrics = get_metrics()
    if metrics.invalidated_keys_total and count:
        metrics.invalidated_keys_total.labels(cause=cause).inc(count)


def record_eviction(reason: str, count: int = 1) -> None:
    """Record keys removed by an eviction policy."""
    metrics = get_metrics()
    if metrics.evicted_keys_total and count:
        metrics.evicted_keys_total.labels(reason=reason).inc(count)


def record_cas_conflict() -> None:
    """Record a lost compare-and-swap."""
    metrics = get_metrics()
    if metrics.cas_conflicts_total:
        metrics.cas_conflicts_total.inc()


@contextmanager
def time_operation(operation: str, store: str = "memory") -> Iterator[None]:
    """Observe the duration of a cache operation.

    Args:
        operation: Cache operation (get, set, delete, ...)
        store: Store adapter label
    """
    start = time.perf_counter()
    try:
        yield
    finally:
        metrics = get_metrics()
        if metrics.cache_operation_duration_seconds:
            metrics.cache_operation_duration_seconds.labels(
                operation=operation,
                store=store,
            ).observe(time.perf_counter() - start)
