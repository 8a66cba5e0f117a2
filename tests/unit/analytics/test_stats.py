"""Tests for TTL statistics, percentile selection and scoring formulas."""

import pytest

from cachegraph.analytics.policy import DefaultScoringPolicy
from cachegraph.analytics.stats import (
    TTLStats,
    percentile_threshold,
    select_bottom_percentile,
    select_top_percentile,
    top_n,
)

TTLS = {"a": 10, "b": 20, "c": 30, "d": 40, "e": 50}


class TestTTLStats:
    """Tests for TTLStats."""

    def test_from_ttls(self) -> None:
        stats = TTLStats.from_ttls([10, 20, 30])
        assert stats == TTLStats(min=10, max=30, average=20.0, count=3)

    def test_empty(self) -> None:
        assert TTLStats.from_ttls([]) == TTLStats()

    def test_to_dict(self) -> None:
        assert TTLStats.from_ttls([5]).to_dict() == {"min": 5, "max": 5, "average": 5.0, "count": 1}


class TestPercentile:
    """Tests for percentile thresholds and selection."""

    def test_threshold_index(self) -> None:
        """Index is max(0, floor(n * p / 100) - 1) over ascending TTLs."""
        assert percentile_threshold(TTLS.values(), 20) == 10
        assert percentile_threshold(TTLS.values(), 60) == 30
        assert percentile_threshold(TTLS.values(), 100) == 50

    def test_threshold_small_percentile_uses_first(self) -> None:
        assert percentile_threshold(TTLS.values(), 1) == 10

    def test_threshold_empty(self) -> None:
        assert percentile_threshold([], 50) is None

    @pytest.mark.parametrize("percentile", [-1, 101])
    def test_percentile_out_of_range(self, percentile: float) -> None:
        with pytest.raises(ValueError, match="Percentile"):
            percentile_threshold([1], percentile)

    def test_bottom_selection(self) -> None:
        assert select_bottom_percentile(TTLS, 20) == ["a"]
        assert select_bottom_percentile(TTLS, 100) == ["a", "b", "c", "d", "e"]

    def test_bottom_selection_keeps_ties(self) -> None:
        assert select_bottom_percentile({"a": 10, "b": 10, "c": 30}, 10) == ["a", "b"]

    def test_top_selection(self) -> None:
        """Top selection sorts descending and keeps TTL >= threshold."""
        assert select_top_percentile(TTLS, 20) == ["e"]
        assert select_top_percentile(TTLS, 40) == ["e", "d"]

    def test_top_n(self) -> None:
        assert top_n({"a": 1.0, "b": 3.0, "c": 2.0}, 2) == ["b", "c"]
        assert top_n({"a": 1.0}, 0) == []


class TestDefaultScoringPolicy:
    """Tests for the default formulas."""

    policy = DefaultScoringPolicy()

    def test_weight(self) -> None:
        assert self.policy.weight(10, 5) == 2.0
        assert self.policy.weight(10, 0) == 10.0

    def test_weight_monotonic_in_access(self) -> None:
        """Higher access at equal TTL never lowers the weight."""
        weights = [self.policy.weight(access, 100) for access in range(0, 50)]
        assert weights == sorted(weights)

    def test_weight_monotonic_in_ttl(self) -> None:
        """Longer TTL at equal access never raises the weight."""
        weights = [self.policy.weight(10, ttl) for ttl in range(1, 50)]
        assert weights == sorted(weights, reverse=True)

    def test_decay(self) -> None:
        assert self.policy.decay(access=10, ttl=5) == 0.5
        assert self.policy.decay(access=1, ttl=100) == 0.0

    def test_health_and_predictive(self) -> None:
        assert self.policy.health(access=1, ttl=10, decay=0.5) == 20.0
        assert self.policy.health(access=1, ttl=10, decay=4.0) == 5.0
        assert self.policy.predictive(access=3, ttl=2, decay=2.0) == 1.0

    def test_window_decay(self) -> None:
        assert self.policy.window_decay(ttl=25, window=100) == 0.75
        assert self.policy.window_decay(ttl=200, window=100) == 0.0

    def test_adaptive_ttl(self) -> None:
        assert self.policy.adaptive_ttl(1000, 100) == 1200

    def test_scaled_ttl_never_zero(self) -> None:
        """Scaled TTLs stay positive; 0 would mean no expiration."""
        assert self.policy.scaled_ttl(1, 0, decay=1000.0) == 1
        assert self.policy.scaled_ttl(100, 100) == 200

    def test_optimized_ttl(self) -> None:
        assert self.policy.optimized_ttl(100) == 400
        assert self.policy.optimized_ttl(1000) == 700
        assert self.policy.optimized_ttl(600) == 300

    def test_optimized_ttl_custom_step(self) -> None:
        policy = DefaultScoringPolicy(optimization_pivot=10, optimization_step=100)
        assert policy.optimized_ttl(50) == 1

    def test_tag_priority(self) -> None:
        assert self.policy.tag_priority(100, 50.0) == 2.0
        assert self.policy.tag_priority(100, 0.0) == 100.0
