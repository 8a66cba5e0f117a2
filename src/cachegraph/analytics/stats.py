"""TTL statistics and percentile selection."""

from __future__ import annotations

import math
from collections.abc import Hashable, Iterable, Mapping
from dataclasses import asdict, dataclass
from typing import Any, TypeVar

K = TypeVar("K", bound=Hashable)


@dataclass(frozen=True)
class TTLStats:
    """Summary of a set of remaining lifetimes."""

    min: int = 0
    max: int = 0
    average: float = 0.0
    count: int = 0

    @classmethod
    def from_ttls(cls, ttls: Iterable[int]) -> TTLStats:
        values = list(ttls)
        if not values:
            return cls()
        return cls(
            min=min(values),
            max=max(values),
            average=sum(values) / len(values),
            count=len(values),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _check_percentile(percentile: float) -> None:
    if not 0 <= percentile <= 100:
        raise ValueError(f"Percentile must be within [0, 100], got {percentile}")


def _threshold_index(count: int, percentile: float) -> int:
    return max(0, math.floor(count * percentile / 100) - 1)


def percentile_threshold(ttls: Iterable[int], percentile: float) -> int | None:
    """TTL at the given percentile of the ascending TTLs.

    Uses index ``max(0, floor(n * p / 100) - 1)``. Returns None for no TTLs.
    """
    _check_percentile(percentile)
    ordered = sorted(ttls)
    if not ordered:
        return None
    return ordered[_threshold_index(len(ordered), percentile)]


def select_bottom_percentile(ttls: Mapping[K, int], percentile: float) -> list[K]:
    """Keys whose TTL is at or below the percentile threshold, shortest first."""
    threshold = percentile_threshold(ttls.values(), percentile)
    if threshold is None:
        return []
    return [key for key, ttl in sorted(ttls.items(), key=lambda kv: kv[1]) if ttl <= threshold]


def select_top_percentile(ttls: Mapping[K, int], percentile: float) -> list[K]:
    """Keys whose TTL is at or above the threshold taken over descending TTLs."""
    _check_percentile(percentile)
    ordered = sorted(ttls.items(), key=lambda kv: kv[1], reverse=True)
    if not ordered:
        return []
    threshold = ordered[_threshold_index(len(ordered), percentile)][1]
    return [key for key, ttl in ordered if ttl >= threshold]


def top_n(scores: Mapping[K, float], n: int) -> list[K]:
    """The ``n`` highest-scoring keys; ties keep their original order."""
    ranked = sorted(scores.items(), key=lambda kv: kv[1], reverse=True)
    return [key for key, _ in ranked[: max(0, n)]]
