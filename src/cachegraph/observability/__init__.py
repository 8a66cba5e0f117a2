"""Observability for cachegraph: structured logging and Prometheus metrics."""

from cachegraph.observability.logging import (
    LogContext,
    configure_logging,
    get_logger,
)
from cachegraph.observability.metrics import (
    get_metrics,
    record_cache_hit,
    record_cache_miss,
    record_cas_conflict,
    record_eviction,
    record_invalidation,
    record_producer_call,
    time_operation,
)

__all__ = [
    "LogContext",
    "configure_logging",
    "get_logger",
    "get_metrics",
    "record_cache_hit",
    "record_cache_miss",
    "record_cas_conflict",
    "record_eviction",
    "record_invalidation",
    "record_producer_call",
    "time_operation",
]
