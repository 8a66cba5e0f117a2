"""Analytics over TTLs and access metadata.

The engine reads (never writes) the store and the indexes and turns them
into statistics and scores. Scoring formulas come from a ``ScoringPolicy``.

Missing keys and keys without expiration have no TTL. Statistics skip them;
scores treat them as TTL 0.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Any

from cachegraph.analytics.policy import DefaultScoringPolicy, ScoringPolicy
from cachegraph.analytics.stats import TTLStats
from cachegraph.index.hierarchy import HierarchyIndex
from cachegraph.index.tags import TagIndex
from cachegraph.index.versions import VersionRegistry
from cachegraph.keys import CacheKey, KeyLike, KeySpace, as_key

if TYPE_CHECKING:
    from cachegraph.context import CacheContext

logger = logging.getLogger(__name__)


@dataclass
class TagStats:
    """Aggregate TTL and access figures for one tag."""

    tag: str
    count: int = 0
    ttl_sum: int = 0
    average_ttl: float = 0.0
    total_access: int = 0
    priority_score: float = 0.0
    weighted_score: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ParentStats:
    """Aggregate TTL and access figures for one parent."""

    parent: str
    child_count: int = 0
    ttl_sum: int = 0
    average_ttl: float = 0.0
    total_access: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class AnalyticsEngine:
    """Computes statistics and scores from TTLs and metadata."""

    def __init__(
        self,
        ctx: CacheContext,
        tags: TagIndex,
        hierarchy: HierarchyIndex,
        versions: VersionRegistry,
        policy: ScoringPolicy | None = None,
    ) -> None:
        self.ctx = ctx
        self.tags = tags
        self.hierarchy = hierarchy
        self.versions = versions
        self.policy = policy or DefaultScoringPolicy(
            optimization_pivot=ctx.settings.ttl_optimization_pivot,
            optimization_step=ctx.settings.ttl_optimization_step,
        )

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    async def _ttl_or_zero(self, key: CacheKey) -> int:
        return await self.ctx.ttl(key) or 0

    async def _access(self, key: CacheKey) -> int:
        return await self.ctx.metadata.access_count(key)

    async def scope_keys(
        self,
        parents: Iterable[KeyLike] = (),
        tags: Iterable[str] = (),
        include_versions: bool = True,
    ) -> list[CacheKey]:
        """Children of ``parents`` and members of ``tags``, deduplicated.

        With ``include_versions`` every registered version of a plain member
        is included as well.
        """
        found: dict[CacheKey, None] = {}
        for parent in parents:
            for child in await self.hierarchy.children(parent):
                found[child] = None
        for tag in tags:
            for key in await self.tags.get_tagged_keys(tag):
                found[key] = None

        if include_versions:
            for key in list(found):
                if key.space is KeySpace.ENTRY:
                    for version_key in await self.versions.version_keys(key.name):
                        found[version_key] = None
        return list(found)

    # -------------------------------------------------------------------------
    # TTL statistics
    # -------------------------------------------------------------------------

    async def time_to_live(self, key: KeyLike) -> int | None:
        """Remaining lifetime in seconds; None when missing or not expiring."""
        return await self.ctx.ttl(as_key(key))

    async def ttl_map(self, keys: Iterable[KeyLike]) -> dict[CacheKey, int]:
        """TTL of every key that has one."""
        result = {}
        for key in keys:
            cache_key = as_key(key)
            ttl = await self.ctx.ttl(cache_key)
            if ttl is not None:
                result[cache_key] = ttl
        return result

    async def ttl_stats(self, keys: Iterable[KeyLike]) -> TTLStats:
        return TTLStats.from_ttls((await self.ttl_map(keys)).values())

    async def average_ttl(self, keys: Iterable[KeyLike]) -> float:
        return (await self.ttl_stats(keys)).average

    async def min_ttl(self, keys: Iterable[KeyLike]) -> int:
        return (await self.ttl_stats(keys)).min

    async def max_ttl_key(self, keys: Iterable[KeyLike]) -> CacheKey | None:
        """Key with the longest remaining TTL; first one wins ties."""
        best: CacheKey | None = None
        best_ttl = -1
        for key, ttl in (await self.ttl_map(keys)).items():
            if ttl > best_ttl:
                best, best_ttl = key, ttl
        return best

    async def keys_with_ttl_below(self, keys: Iterable[KeyLike], threshold: int) -> list[CacheKey]:
        """Keys that are missing or expire in under ``threshold`` seconds."""
        return [
            as_key(key) for key in keys if await self.ctx.ttl_below(as_key(key), threshold)
        ]

    async def keys_within_ttl_range(
        self, keys: Iterable[KeyLike], min_ttl: int, max_ttl: int
    ) -> list[CacheKey]:
        return [key for key, ttl in (await self.ttl_map(keys)).items() if min_ttl <= ttl <= max_ttl]

    async def combined_ttl_stats(
        self, parents: Iterable[KeyLike] = (), tags: Iterable[str] = ()
    ) -> TTLStats:
        """TTL statistics over children of ``parents`` and members of ``tags``."""
        keys = await self.scope_keys(parents, tags, include_versions=False)
        return await self.ttl_stats(keys)

    async def versioned_ttl_stats(self, bases: Iterable[str]) -> TTLStats:
        """TTL statistics over every registered version of ``bases``."""
        keys: list[CacheKey] = []
        for base in bases:
            keys += await self.versions.version_keys(base)
        return await self.ttl_stats(keys)

    # -------------------------------------------------------------------------
    # Per-key scores
    # -------------------------------------------------------------------------

    async def compute_ttl_access_weight(self, keys: Iterable[KeyLike]) -> dict[CacheKey, float]:
        """Refresh weight per key: high access and short TTL rank first."""
        weights = {}
        for key in keys:
            cache_key = as_key(key)
            weights[cache_key] = self.policy.weight(
                await self._access(cache_key), await self._ttl_or_zero(cache_key)
            )
        return weights

    async def forecast_ttl_decay(self, keys: Iterable[KeyLike]) -> dict[CacheKey, float]:
        """Seconds left according to metadata rather than the live store.

        ``max(0, expiration - (now - created))``, with ``created`` defaulting
        to now and ``expiration`` to the default TTL.
        """
        now = self.ctx.clock.now()
        forecast = {}
        for key in keys:
            cache_key = as_key(key)
            meta = await self.ctx.metadata.get(cache_key)
            created = meta.created if meta and meta.created is not None else now
            expiration = (
                meta.expiration
                if meta and meta.expiration is not None
                else self.ctx.settings.default_ttl
            )
            forecast[cache_key] = max(0.0, expiration - (now - created))
        return forecast

    async def time_window_decay(self, keys: Iterable[KeyLike], window: int) -> dict[CacheKey, float]:
        return {
            as_key(key): self.policy.window_decay(await self._ttl_or_zero(as_key(key)), window)
            for key in keys
        }

    async def predictive_eviction_score(self, keys: Iterable[KeyLike]) -> dict[CacheKey, float]:
        """Eviction score per key; lower scores are evicted first."""
        cache_keys = [as_key(k) for k in keys]
        forecast = await self.forecast_ttl_decay(cache_keys)
        return {
            key: self.policy.eviction(
                await self._access(key), await self._ttl_or_zero(key), forecast[key]
            )
            for key in cache_keys
        }

    async def ttl_optimization(
        self, parents: Iterable[KeyLike] = (), tags: Iterable[str] = ()
    ) -> dict[CacheKey, int]:
        """Recommended TTL for every key in scope that has one."""
        keys = await self.scope_keys(parents, tags)
        return {key: self.policy.optimized_ttl(ttl) for key, ttl in (await self.ttl_map(keys)).items()}

    # -------------------------------------------------------------------------
    # Hierarchy scores
    # -------------------------------------------------------------------------

    async def _child_figures(self, parent: KeyLike) -> list[tuple[CacheKey, int, int]]:
        figures = []
        for child in await self.hierarchy.children(parent):
            figures.append((child, await self._access(child), await self._ttl_or_zero(child)))
        return figures

    async def hierarchical_decay(self, parents: Iterable[KeyLike]) -> dict[CacheKey, float]:
        """Sum of child decay per parent."""
        result = {}
        for parent in parents:
            figures = await self._child_figures(parent)
            result[as_key(parent)] = sum(self.policy.decay(a, t) for _, a, t in figures)
        return result

    async def hierarchical_health(self, parents: Iterable[KeyLike]) -> dict[CacheKey, float]:
        """Health per parent; low health means children expire before they are used."""
        result = {}
        for parent in parents:
            figures = await self._child_figures(parent)
            decay = sum(self.policy.decay(a, t) for _, a, t in figures)
            result[as_key(parent)] = sum(self.policy.health(a, t, decay) for _, a, t in figures)
        return result

    async def hierarchical_predictive(self, parents: Iterable[KeyLike]) -> dict[CacheKey, float]:
        """Predicted usage per parent."""
        result = {}
        for parent in parents:
            figures = await self._child_figures(parent)
            decay = sum(self.policy.decay(a, t) for _, a, t in figures)
            result[as_key(parent)] = sum(
                self.policy.predictive(a, t, decay) for _, a, t in figures
            )
        return result

    # -------------------------------------------------------------------------
    # Parent analytics
    # -------------------------------------------------------------------------

    async def parent_ttl(self, parent: KeyLike) -> int:
        """Sum of the children's remaining TTLs."""
        return sum([await self._ttl_or_zero(c) for c in await self.hierarchy.children(parent)])

    async def parent_analytics(self, parent: KeyLike) -> ParentStats:
        children = await self.hierarchy.children(parent)
        ttls = await self.ttl_map(children)
        total_access = sum([await self._access(c) for c in children])
        return ParentStats(
            parent=str(as_key(parent)),
            child_count=len(children),
            ttl_sum=sum(ttls.values()),
            average_ttl=sum(ttls.values()) / len(ttls) if ttls else 0.0,
            total_access=total_access,
        )

    async def parent_ttl_stats(self, parents: Iterable[KeyLike]) -> dict[CacheKey, TTLStats]:
        """Per-parent TTL statistics, counting missing children as TTL 0."""
        result = {}
        for parent in parents:
            ttls = [await self._ttl_or_zero(c) for c in await self.hierarchy.children(parent)]
            result[as_key(parent)] = TTLStats.from_ttls(ttls)
        return result

    async def dependency_impact(self, parents: Iterable[KeyLike]) -> dict[CacheKey, int]:
        """Children plus grandchildren per parent."""
        impact = {}
        for parent in parents:
            children = await self.hierarchy.children(parent)
            grandchildren = sum([len(await self.hierarchy.children(c)) for c in children])
            impact[as_key(parent)] = len(children) + grandchildren
        return impact

    async def dependency_weighted_ttl(self, parents: Iterable[KeyLike]) -> dict[CacheKey, float]:
        """Parent TTL plus half the children's TTL sum."""
        weighted = {}
        for parent in parents:
            parent_key = as_key(parent)
            weighted[parent_key] = await self._ttl_or_zero(parent_key) + 0.5 * await self.parent_ttl(
                parent_key
            )
        return weighted

    async def alert_low_ttl(self, parents: Iterable[KeyLike], threshold: int) -> list[CacheKey]:
        """Parents and children whose TTL is known and below ``threshold``."""
        alerts = []
        for parent in parents:
            parent_key = as_key(parent)
            for key in [parent_key, *await self.hierarchy.children(parent_key)]:
                ttl = await self.ctx.ttl(key)
                if ttl is not None and ttl < threshold:
                    alerts.append(key)
        return alerts

    async def access_stats(
        self, parents: Iterable[KeyLike] = (), tags: Iterable[str] = ()
    ) -> dict[str, dict[str, int]]:
        """Total access count per parent and per tag."""
        result: dict[str, dict[str, int]] = {"parents": {}, "tags": {}}
        for parent in parents:
            children = await self.hierarchy.children(parent)
            result["parents"][str(as_key(parent))] = sum([await self._access(c) for c in children])
        for tag in tags:
            keys = await self.tags.get_tagged_keys(tag)
            result["tags"][tag] = sum([await self._access(k) for k in keys])
        return result

    # -------------------------------------------------------------------------
    # Tag analytics
    # -------------------------------------------------------------------------

    async def tag_stats(self, tag: str) -> TagStats:
        """Count, TTL and access figures for one tag.

        Average TTL counts missing members as TTL 0.
        """
        keys = await self.tags.get_tagged_keys(tag)
        ttls = [await self._ttl_or_zero(k) for k in keys]
        total_access = sum([await self._access(k) for k in keys])
        average = sum(ttls) / len(ttls) if ttls else 0.0
        return TagStats(
            tag=tag,
            count=len(keys),
            ttl_sum=sum(ttls),
            average_ttl=average,
            total_access=total_access,
            priority_score=self.policy.tag_priority(total_access, average),
        )

    async def tag_analytics(self, tags: Iterable[str]) -> dict[str, TagStats]:
        return {tag: await self.tag_stats(tag) for tag in tags}

    async def cross_tag_analytics(self, tags: Iterable[str]) -> dict[str, TagStats]:
        """Tag statistics plus the summed access weight of each tag's members."""
        result = {}
        for tag in tags:
            stats = await self.tag_stats(tag)
            weights = await self.compute_ttl_access_weight(await self.tags.get_tagged_keys(tag))
            stats.weighted_score = sum(weights.values())
            result[tag] = stats
        return result

    async def compute_tag_priority(self, tags: Iterable[str]) -> dict[str, float]:
        """Priority score per tag, highest first."""
        scores = {tag: stats.priority_score for tag, stats in (await self.tag_analytics(tags)).items()}
        return dict(sorted(scores.items(), key=lambda kv: kv[1], reverse=True))

    async def cross_tag_weight(self, tags: Iterable[str]) -> dict[str, float]:
        """Summed member weight per tag, highest first."""
        scores = {tag: stats.weighted_score for tag, stats in (await self.cross_tag_analytics(tags)).items()}
        return dict(sorted(scores.items(), key=lambda kv: kv[1], reverse=True))

    async def aggregate_tag_stats(self, tags: Iterable[str]) -> dict[str, Any]:
        details = {tag: await self.tags.count_keys(tag) for tag in tags}
        return {"total_keys": sum(details.values()), "tag_details": details}

    async def cross_tag_ttl_stats(self, tags: Iterable[str]) -> dict[str, TTLStats]:
        """Per-tag TTL statistics, counting missing members as TTL 0."""
        result = {}
        for tag in tags:
            ttls = [await self._ttl_or_zero(k) for k in await self.tags.get_tagged_keys(tag)]
            result[tag] = TTLStats.from_ttls(ttls)
        return result

    async def average_ttl_per_tag(self, tags: Iterable[str]) -> dict[str, float]:
        return {tag: stats.average for tag, stats in (await self.cross_tag_ttl_stats(tags)).items()}
