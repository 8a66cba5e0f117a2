"""TTL and access analytics for cachegraph."""

from cachegraph.analytics.engine import AnalyticsEngine, ParentStats, TagStats
from cachegraph.analytics.policy import DefaultScoringPolicy, ScoringPolicy
from cachegraph.analytics.stats import (
    TTLStats,
    percentile_threshold,
    select_bottom_percentile,
    select_top_percentile,
    top_n,
)

__all__ = [
    "AnalyticsEngine",
    "DefaultScoringPolicy",
    "ParentStats",
    "ScoringPolicy",
    "TTLStats",
    "TagStats",
    "percentile_threshold",
    "select_bottom_percentile",
    "select_top_percentile",
    "top_n",
]
