"""Analytics-driven cache maintenance.

Turns engine scores into actions: evicting keys, rescaling TTLs,
recomputing or preloading values, and promoting versions. Every operation
returns the keys it touched so callers can log or audit them.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from enum import Enum
from typing import TYPE_CHECKING

from cachegraph.analytics.engine import AnalyticsEngine
from cachegraph.analytics.policy import ScoringPolicy
from cachegraph.analytics.stats import select_bottom_percentile, select_top_percentile, top_n
from cachegraph.index.hierarchy import HierarchyIndex
from cachegraph.index.tags import TagIndex
from cachegraph.index.versions import VersionRegistry
from cachegraph.keys import CacheKey, KeyLike, KeySpace, as_key
from cachegraph.observability.logging import LogContext
from cachegraph.observability.metrics import record_eviction

if TYPE_CHECKING:
    from cachegraph.context import CacheContext, KeyProducer

logger = logging.getLogger(__name__)


class HierarchyScore(str, Enum):
    """Score used to decide whether a parent's children are cleaned up."""

    # Children cleared when decay is above the threshold
    DECAY = "decay"
    # Children cleared when health is below the threshold
    HEALTH = "health"
    # Children cleared when predicted usage is below the threshold
    PREDICTIVE = "predictive"


class Maintenance:
    """Eviction, TTL scaling, recompute and promotion driven by analytics."""

    def __init__(
        self,
        ctx: CacheContext,
        engine: AnalyticsEngine,
        tags: TagIndex,
        hierarchy: HierarchyIndex,
        versions: VersionRegistry,
    ) -> None:
        self.ctx = ctx
        self.engine = engine
        self.tags = tags
        self.hierarchy = hierarchy
        self.versions = versions

    @property
    def policy(self) -> ScoringPolicy:
        return self.engine.policy

    async def _evict(self, keys: Iterable[CacheKey], reason: str) -> list[CacheKey]:
        evicted = []
        for key in keys:
            await self.ctx.drop(key)
            evicted.append(key)
        record_eviction(reason, len(evicted))
        if evicted:
            logger.info(f"Evicted {len(evicted)} keys ({reason})")
        return evicted

    async def _recompute(
        self,
        keys: Iterable[CacheKey],
        producer: KeyProducer,
        ttl: int | None,
        operation: str,
    ) -> list[CacheKey]:
        written = []
        for key in keys:
            value = await self.ctx.compute(producer, key, operation=operation)
            await self.ctx.put(key, value, ttl)
            written.append(key)
        return written

    # -------------------------------------------------------------------------
    # Percentile eviction
    # -------------------------------------------------------------------------

    async def clear_below_percentile_ttl(
        self,
        parents: Iterable[KeyLike] = (),
        tags: Iterable[str] = (),
        percentile: float = 10.0,
    ) -> list[CacheKey]:
        """Evict the bottom ``percentile`` of keys in scope by remaining TTL.

        Keys without a TTL are never selected.
        """
        with LogContext(operation="clear_below_percentile_ttl"):
            ttls = await self.engine.ttl_map(await self.engine.scope_keys(parents, tags))
            return await self._evict(select_bottom_percentile(ttls, percentile), "percentile")

    async def clear_top_percentile_ttl(
        self,
        parents: Iterable[KeyLike] = (),
        tags: Iterable[str] = (),
        percentile: float = 10.0,
    ) -> list[CacheKey]:
        """Evict the top ``percentile`` of keys in scope by remaining TTL."""
        with LogContext(operation="clear_top_percentile_ttl"):
            ttls = await self.engine.ttl_map(await self.engine.scope_keys(parents, tags))
            return await self._evict(select_top_percentile(ttls, percentile), "percentile")

    async def refresh_bottom_percentile_ttl(
        self,
        parents: Iterable[KeyLike],
        tags: Iterable[str],
        percentile: float,
        producer: KeyProducer,
        ttl: int | None = None,
    ) -> list[CacheKey]:
        """Recompute the bottom ``percentile`` of keys in scope by remaining TTL."""
        ttls = await self.engine.ttl_map(await self.engine.scope_keys(parents, tags))
        return await self._recompute(
            select_bottom_percentile(ttls, percentile), producer, ttl, "refresh_bottom_percentile"
        )

    async def refresh_if_average_ttl_below(
        self,
        parents: Iterable[KeyLike],
        tags: Iterable[str],
        threshold: float,
        producer: KeyProducer,
        ttl: int | None = None,
    ) -> list[CacheKey]:
        """Recompute every key in scope when the average remaining TTL is below ``threshold``.

        The average covers keys that have a TTL and is 0 when none does, so a
        scope whose keys have all expired is recomputed.
        """
        parent_keys, tag_names = list(parents), list(tags)
        stats = await self.engine.combined_ttl_stats(parent_keys, tag_names)
        if stats.average >= threshold:
            return []
        keys = await self.engine.scope_keys(parent_keys, tag_names, include_versions=False)
        with LogContext(operation="refresh_if_average_ttl_below"):
            written = await self._recompute(keys, producer, ttl, "refresh_if_average_ttl_below")
            logger.info(f"Average TTL {stats.average:.1f}s, refreshed {len(written)} keys")
        return written

    # -------------------------------------------------------------------------
    # Score-based cleanup
    # -------------------------------------------------------------------------

    async def cleanup_low_value_keys(self, keys: Iterable[KeyLike], threshold: float) -> list[CacheKey]:
        """Evict keys whose access weight is below ``threshold``."""
        weights = await self.engine.compute_ttl_access_weight(keys)
        return await self._evict([k for k, w in weights.items() if w < threshold], "low_value")

    async def cleanup_low_value_tags(self, tags: Iterable[str], threshold: float) -> list[CacheKey]:
        evicted = []
        for tag in tags:
            evicted += await self.cleanup_low_value_keys(
                await self.tags.get_tagged_keys(tag), threshold
            )
        return evicted

    async def cleanup_hierarchy(
        self,
        parents: Iterable[KeyLike],
        threshold: float,
        by: HierarchyScore = HierarchyScore.DECAY,
    ) -> list[CacheKey]:
        """Evict all children of parents whose score crosses ``threshold``."""
        parent_keys = [as_key(p) for p in parents]
        if by is HierarchyScore.DECAY:
            scores = await self.engine.hierarchical_decay(parent_keys)
            doomed = [p for p, s in scores.items() if s > threshold]
        elif by is HierarchyScore.HEALTH:
            scores = await self.engine.hierarchical_health(parent_keys)
            doomed = [p for p, s in scores.items() if s < threshold]
        else:
            scores = await self.engine.hierarchical_predictive(parent_keys)
            doomed = [p for p, s in scores.items() if s < threshold]

        evicted = []
        for parent in doomed:
            evicted += await self._evict(await self.hierarchy.children(parent), f"hierarchy_{by.value}")
        return evicted

    async def cleanup_forecasted_expiries(self, keys: Iterable[KeyLike], threshold: int) -> list[CacheKey]:
        """Evict keys whose forecast lifetime is at most ``threshold`` seconds."""
        forecast = await self.engine.forecast_ttl_decay(keys)
        return await self._evict([k for k, f in forecast.items() if f <= threshold], "forecast")

    async def cleanup_hierarchy_forecasted_expiries(
        self, parents: Iterable[KeyLike], threshold: int
    ) -> list[CacheKey]:
        evicted = []
        for parent in parents:
            evicted += await self.cleanup_forecasted_expiries(
                await self.hierarchy.children(parent), threshold
            )
        return evicted

    async def evict_low_access(
        self,
        keys: Iterable[KeyLike],
        ttl_threshold: int = 600,
        access_threshold: int = 10,
    ) -> list[CacheKey]:
        """Evict keys that are both short-lived and rarely read."""
        doomed = []
        for key in keys:
            cache_key = as_key(key)
            ttl = await self.ctx.ttl(cache_key) or 0
            access = await self.ctx.metadata.access_count(cache_key)
            if ttl < ttl_threshold and access < access_threshold:
                doomed.append(cache_key)
        return await self._evict(doomed, "low_access")

    async def evict_predictive(self, tags: Iterable[str], threshold: float = 0.05) -> list[CacheKey]:
        """Evict tag members whose predictive eviction score is below ``threshold``."""
        evicted = []
        for tag in tags:
            scores = await self.engine.predictive_eviction_score(await self.tags.get_tagged_keys(tag))
            evicted += await self._evict([k for k, s in scores.items() if s < threshold], "predictive")
        return evicted

    async def clear_low_access_versions(
        self,
        parents: Iterable[KeyLike],
        tags: Iterable[str],
        threshold: int,
    ) -> list[CacheKey]:
        """Delete versioned keys in scope read fewer than ``threshold`` times."""
        doomed = []
        for key in await self.engine.scope_keys(parents, tags):
            if key.version is not None and await self.ctx.metadata.access_count(key) < threshold:
                doomed.append(key)
        for key in doomed:
            await self.versions.delete_version(key.name, key.version)  # type: ignore[arg-type]
        record_eviction("low_access", len(doomed))
        return doomed

    # -------------------------------------------------------------------------
    # TTL scaling
    # -------------------------------------------------------------------------

    async def adaptive_ttl_scale(self, key: KeyLike, base_ttl: int) -> int | None:
        """Rewrite ``key`` with a TTL grown by its access count.

        Returns the new TTL, or None if the key is missing.
        """
        cache_key = as_key(key)
        access = await self.ctx.metadata.access_count(cache_key)
        ttl = self.policy.adaptive_ttl(base_ttl, access)
        return ttl if await self.ctx.retime(cache_key, ttl) else None

    async def _scale(self, keys: Iterable[CacheKey], base_ttl: int, decay: float = 1.0) -> dict[CacheKey, int]:
        scaled = {}
        for key in keys:
            access = await self.ctx.metadata.access_count(key)
            ttl = self.policy.scaled_ttl(base_ttl, access, decay)
            if await self.ctx.retime(key, ttl):
                scaled[key] = ttl
        return scaled

    async def scale_tag_ttl(self, tag: str, base_ttl: int) -> dict[CacheKey, int]:
        """Rescale every member of ``tag`` in proportion to its access count."""
        return await self._scale(await self.tags.get_tagged_keys(tag), base_ttl)

    async def scale_hierarchy_ttl(
        self,
        parents: Iterable[KeyLike],
        base_ttl: int,
        use_decay: bool = False,
    ) -> dict[CacheKey, int]:
        """Rescale children by access count, optionally damped by the parent's decay."""
        scaled: dict[CacheKey, int] = {}
        for parent in parents:
            decay = 1.0
            if use_decay:
                decay = (await self.engine.hierarchical_decay([parent]))[as_key(parent)]
            scaled.update(await self._scale(await self.hierarchy.children(parent), base_ttl, decay))
        return scaled

    async def adjust_ttl_by_forecast(
        self, keys: Iterable[KeyLike], base_ttl: int | None = None
    ) -> dict[CacheKey, int]:
        """Rescale keys by access count, damped by their forecast lifetime."""
        base = self.ctx.ttl_or_default(base_ttl)
        forecast = await self.engine.forecast_ttl_decay(keys)
        adjusted: dict[CacheKey, int] = {}
        for key, remaining in forecast.items():
            adjusted.update(await self._scale([key], base, remaining))
        return adjusted

    async def compute_ttl_optimization(
        self, parents: Iterable[KeyLike] = (), tags: Iterable[str] = ()
    ) -> dict[CacheKey, int]:
        return await self.engine.ttl_optimization(parents, tags)

    async def apply_ttl_optimization(
        self,
        recommendations: Mapping[CacheKey, int],
        producer: KeyProducer,
    ) -> list[CacheKey]:
        """Apply recommended TTLs, recomputing keys that have gone missing."""
        applied = []
        for key, ttl in recommendations.items():
            if not await self.ctx.retime(key, ttl):
                value = await self.ctx.compute(producer, key, operation="apply_ttl_optimization")
                await self.ctx.put(key, value, ttl)
            applied.append(key)
        return applied

    # -------------------------------------------------------------------------
    # Recompute and preload
    # -------------------------------------------------------------------------

    async def recompute_top_weighted(
        self,
        keys: Iterable[KeyLike],
        n: int,
        producer: KeyProducer,
        ttl: int | None = None,
    ) -> list[CacheKey]:
        """Recompute the ``n`` keys with the highest access weight."""
        weights = await self.engine.compute_ttl_access_weight(keys)
        return await self._recompute(top_n(weights, n), producer, ttl, "recompute_top_weighted")

    async def recompute_top_weighted_per_tag(
        self,
        tags: Iterable[str],
        n: int,
        producer: KeyProducer,
        ttl: int | None = None,
    ) -> list[CacheKey]:
        written = []
        for tag in tags:
            written += await self.recompute_top_weighted(
                await self.tags.get_tagged_keys(tag), n, producer, ttl
            )
        return written

    async def preload(
        self,
        keys: Iterable[KeyLike],
        producer: KeyProducer,
        threshold: int | None = None,
        ttl: int | None = None,
    ) -> list[CacheKey]:
        """Recompute keys expiring within ``threshold`` seconds, missing ones included."""
        limit = self.ctx.settings.preload_ttl_threshold if threshold is None else threshold
        due = []
        for key in keys:
            cache_key = as_key(key)
            if (await self.ctx.ttl(cache_key) or 0) < limit:
                due.append(cache_key)
        return await self._recompute(due, producer, ttl, "preload")

    async def preload_top_across_tags(
        self,
        tags: Iterable[str],
        producer: KeyProducer,
        n: int = 3,
        ttl: int | None = None,
    ) -> list[CacheKey]:
        """Recompute the ``n`` highest-weighted members of each tag."""
        return await self.recompute_top_weighted_per_tag(tags, n, producer, ttl)

    # -------------------------------------------------------------------------
    # Version promotion
    # -------------------------------------------------------------------------

    async def promote_by_access(
        self,
        keys: Iterable[KeyLike],
        min_access: int | None = None,
        min_ttl: int | None = None,
    ) -> list[CacheKey]:
        """Promote versioned keys that are read often and still long-lived."""
        access_floor = (
            self.ctx.settings.promotion_access_threshold if min_access is None else min_access
        )
        ttl_floor = self.ctx.settings.promotion_ttl_threshold if min_ttl is None else min_ttl

        promoted = []
        for key in keys:
            cache_key = as_key(key)
            if cache_key.space is not KeySpace.VERSION or cache_key.version is None:
                continue
            access = await self.ctx.metadata.access_count(cache_key)
            ttl = await self.ctx.ttl(cache_key) or 0
            if access >= access_floor and ttl >= ttl_floor:
                await self.versions.promote_version(cache_key.name, cache_key.version)
                promoted.append(cache_key)
        return promoted

    async def promote_top_weighted_per_tag(self, tags: Iterable[str], n: int = 1) -> list[str]:
        """Promote the most accessed version of each tag's top weighted members.

        Returns the base keys that had a version promoted.
        """
        promoted = []
        for tag in tags:
            weights = await self.engine.compute_ttl_access_weight(await self.tags.get_tagged_keys(tag))
            for key in top_n(weights, n):
                base = key.name
                if await self.versions.promote_most_accessed_version(base) is not None:
                    promoted.append(base)
        return promoted
