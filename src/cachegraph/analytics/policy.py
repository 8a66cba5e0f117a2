"""Scoring policies for refresh and eviction decisions.

The scores are heuristics: ratios and differences of remaining TTL, access
count and decay. ``ScoringPolicy`` isolates the formulas so they can be
replaced without touching the cascade or versioning code.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


class ScoringPolicy(ABC):
    """Abstract base class for scoring formulas."""

    @abstractmethod
    def weight(self, access: int, ttl: int) -> float:
        """Refresh priority of one key. Higher means refresh sooner."""
        ...

    @abstractmethod
    def decay(self, access: int, ttl: int) -> float:
        """Decay contribution of one child to its parent."""
        ...

    @abstractmethod
    def health(self, access: int, ttl: int, decay: float) -> float:
        """Health contribution of one child given its parent's decay."""
        ...

    @abstractmethod
    def predictive(self, access: int, ttl: int, decay: float) -> float:
        """Predicted-usage contribution of one child given its parent's decay."""
        ...

    @abstractmethod
    def eviction(self, access: int, ttl: int, forecast: float) -> float:
        """Predictive eviction score. Lower means evict first."""
        ...

    @abstractmethod
    def window_decay(self, ttl: int, window: int) -> float:
        """Fraction of a time window already consumed."""
        ...

    @abstractmethod
    def adaptive_ttl(self, base_ttl: int, access: int) -> int:
        """TTL grown stepwise with access count."""
        ...

    @abstractmethod
    def scaled_ttl(self, base_ttl: int, access: int, decay: float = 1.0) -> int:
        """TTL grown with access count and shrunk by decay."""
        ...

    @abstractmethod
    def optimized_ttl(self, ttl: int) -> int:
        """Recommended TTL for a key currently living ``ttl`` seconds."""
        ...

    @abstractmethod
    def tag_priority(self, total_access: int, average_ttl: float) -> float:
        """Recompute priority of a whole tag."""
        ...


@dataclass
class DefaultScoringPolicy(ScoringPolicy):
    """Formulas of the classic cache helper.

    Attributes:
        optimization_pivot: TTLs below this are lengthened, others shortened
        optimization_step: Seconds added or removed by the TTL optimisation
    """

    optimization_pivot: int = 600
    optimization_step: int = 300

    def weight(self, access: int, ttl: int) -> float:
        return access / max(1, ttl)

    def decay(self, access: int, ttl: int) -> float:
        # Grows when the remaining TTL is short relative to how often the key is read
        return max(0.0, 1 - ttl / max(1, access))

    def health(self, access: int, ttl: int, decay: float) -> float:
        return ttl * (access + 1) / max(1.0, decay)

    def predictive(self, access: int, ttl: int, decay: float) -> float:
        return (access + 1) / max(1.0, ttl * decay)

    def eviction(self, access: int, ttl: int, forecast: float) -> float:
        return (access + 1) / max(1.0, ttl * forecast)

    def window_decay(self, ttl: int, window: int) -> float:
        return max(0.0, (window - ttl) / max(1, window))

    def adaptive_ttl(self, base_ttl: int, access: int) -> int:
        # +10% per 50 reads
        return base_ttl + int(access / 50 * 0.1 * base_ttl)

    def scaled_ttl(self, base_ttl: int, access: int, decay: float = 1.0) -> int:
        return max(1, int(base_ttl * (1 + access / 100) / max(1.0, decay)))

    def optimized_ttl(self, ttl: int) -> int:
        if ttl < self.optimization_pivot:
            return ttl + self.optimization_step
        return max(1, ttl - self.optimization_step)

    def tag_priority(self, total_access: int, average_ttl: float) -> float:
        return total_access / max(1.0, average_ttl)
