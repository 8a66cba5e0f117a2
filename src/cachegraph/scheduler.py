"""Refresh scheduling.

Decides which keys should be refreshed and keeps the resulting
``RefreshTask``s. Timed execution belongs to an external scheduler that
calls ``due()`` / ``run_due()`` on its own cadence; ``run()`` offers a
simple in-process loop for deployments without one.

Persistent tasks also write a durable marker holding the last value, so
``restore_persistent()`` can bring them back after a bulk clear.

Example:
    scheduler = RefreshScheduler(cache)
    await scheduler.schedule_persistent("report", build_report, interval=300)

    # On every external tick
    await scheduler.run_due()
"""

from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from cachegraph.analytics.stats import top_n
from cachegraph.keys import CacheKey, KeyLike, as_key
from cachegraph.observability.logging import LogContext
from cachegraph.store.base import MISSING

if TYPE_CHECKING:
    from cachegraph.context import KeyProducer, Producer
    from cachegraph.facade import GraphCache

logger = logging.getLogger(__name__)


@dataclass
class RefreshTask:
    """A key to keep fresh and how to recompute it."""

    key: CacheKey
    producer: Producer
    ttl: int
    persistent: bool = False
    enabled: bool = True
    last_run: float | None = None
    runs: int = 0


class RefreshScheduler:
    """Keeps refresh tasks and runs the ones that are due."""

    def __init__(self, cache: GraphCache, check_interval: float = 60.0) -> None:
        self.cache = cache
        self.ctx = cache.ctx
        self.check_interval = check_interval
        self._tasks: dict[CacheKey, RefreshTask] = {}
        self._running = False

    # -------------------------------------------------------------------------
    # Registration
    # -------------------------------------------------------------------------

    async def _ensure(self, key: CacheKey, producer: Producer, ttl: int) -> Any:
        value = await self.ctx.read(key)
        if value is MISSING:
            value = await self.ctx.compute(producer, operation="schedule")
        await self.ctx.put(key, value, ttl)
        return value

    async def schedule_refresh(self, key: KeyLike, producer: Producer, interval: int) -> RefreshTask:
        """Compute ``key`` if missing, store it with TTL = ``interval`` and track it."""
        cache_key = as_key(key)
        await self._ensure(cache_key, producer, interval)
        task = RefreshTask(key=cache_key, producer=producer, ttl=interval)
        self._tasks[cache_key] = task
        logger.debug(f"Scheduled refresh of {cache_key} every {interval}s")
        return task

    async def schedule_persistent(self, key: KeyLike, producer: Producer, interval: int) -> RefreshTask:
        """Like ``schedule_refresh``, and also record a durable marker.

        The marker survives bulk clears of the cache store.
        """
        cache_key = as_key(key)
        value = await self._ensure(cache_key, producer, interval)
        await self.ctx.markers.put(cache_key.token(), value)
        task = RefreshTask(key=cache_key, producer=producer, ttl=interval, persistent=True)
        self._tasks[cache_key] = task
        logger.debug(f"Scheduled persistent refresh of {cache_key} every {interval}s")
        return task

    async def schedule_batch(
        self,
        pairs: Mapping[KeyLike, Producer],
        interval: int,
        persistent: bool = False,
    ) -> list[RefreshTask]:
        schedule = self.schedule_persistent if persistent else self.schedule_refresh
        return [await schedule(key, producer, interval) for key, producer in pairs.items()]

    async def _schedule_keys(
        self,
        keys: Iterable[CacheKey],
        producer: KeyProducer,
        interval: int,
    ) -> list[RefreshTask]:
        tasks = []
        for key in dict.fromkeys(keys):
            tasks.append(
                await self.schedule_persistent(key, functools.partial(producer, key), interval)
            )
        return tasks

    def tasks(self) -> list[RefreshTask]:
        return list(self._tasks.values())

    def get_task(self, key: KeyLike) -> RefreshTask | None:
        return self._tasks.get(as_key(key))

    def cancel(self, key: KeyLike) -> bool:
        """Stop tracking ``key``. The entry and its marker are left alone."""
        return self._tasks.pop(as_key(key), None) is not None

    # -------------------------------------------------------------------------
    # Durable markers
    # -------------------------------------------------------------------------

    async def persist(self, key: KeyLike) -> bool:
        """Record the current value of ``key`` as a durable marker."""
        cache_key = as_key(key)
        value = await self.ctx.read(cache_key)
        if value is MISSING:
            return False
        await self.ctx.markers.put(cache_key.token(), value)
        return True

    async def unpersist(self, key: KeyLike) -> None:
        await self.ctx.markers.delete(as_key(key).token())

    async def persisted_keys(self) -> list[CacheKey]:
        keys = []
        for token in await self.ctx.markers.keys():
            try:
                keys.append(CacheKey.from_token(token))
            except ValueError:
                logger.warning(f"Ignoring malformed marker {token!r}")
        return keys

    async def clear_persistent(self) -> list[CacheKey]:
        """Delete every marker together with its entry and task."""
        cleared = []
        for key in await self.persisted_keys():
            await self.ctx.markers.delete(key.token())
            await self.ctx.drop(key)
            self._tasks.pop(key, None)
            cleared.append(key)
        logger.info(f"Cleared {len(cleared)} persistent keys")
        return cleared

    async def restore_persistent(self, ttl: int | None = None) -> list[CacheKey]:
        """Write marker values back for persistent keys missing from the store.

        Restored entries use their task's interval, else ``ttl``, else the
        default TTL.
        """
        restored = []
        for key in await self.persisted_keys():
            if await self.ctx.exists(key):
                continue
            value = await self.ctx.markers.get(key.token())
            if value is MISSING:
                continue
            task = self._tasks.get(key)
            await self.ctx.put(key, value, task.ttl if task else ttl)
            restored.append(key)
        if restored:
            logger.info(f"Restored {len(restored)} persistent keys")
        return restored

    # -------------------------------------------------------------------------
    # Priority selection
    # -------------------------------------------------------------------------

    async def schedule_top_weighted(
        self,
        tags: Iterable[str],
        producer: KeyProducer,
        interval: int,
        n: int = 3,
    ) -> list[RefreshTask]:
        """Schedule the ``n`` highest-weighted members of each tag."""
        selected: list[CacheKey] = []
        for tag in tags:
            weights = await self.cache.analytics.compute_ttl_access_weight(
                await self.cache.tags.get_tagged_keys(tag)
            )
            selected += top_n(weights, n)
        return await self._schedule_keys(selected, producer, interval)

    async def _schedule_tags(
        self,
        ranked: Mapping[str, float],
        top_tags: int,
        producer: KeyProducer,
        interval: int,
    ) -> list[RefreshTask]:
        selected: list[CacheKey] = []
        for tag in top_n(ranked, top_tags):
            selected += await self.cache.tags.get_tagged_keys(tag)
        return await self._schedule_keys(selected, producer, interval)

    async def schedule_tag_priority(
        self,
        tags: Iterable[str],
        producer: KeyProducer,
        interval: int,
        top_tags: int = 2,
    ) -> list[RefreshTask]:
        """Schedule every member of the ``top_tags`` tags with the highest priority."""
        priority = await self.cache.analytics.compute_tag_priority(tags)
        return await self._schedule_tags(priority, top_tags, producer, interval)

    async def schedule_cross_tag_weighted(
        self,
        tags: Iterable[str],
        producer: KeyProducer,
        interval: int,
        top_tags: int = 2,
    ) -> list[RefreshTask]:
        """Schedule every member of the ``top_tags`` tags with the highest summed weight."""
        weights = await self.cache.analytics.cross_tag_weight(tags)
        return await self._schedule_tags(weights, top_tags, producer, interval)

    async def schedule_top_access(
        self,
        tags: Iterable[str],
        producer: KeyProducer,
        interval: int,
        n: int = 3,
    ) -> list[RefreshTask]:
        """Schedule every version of the ``n`` most read members of each tag.

        Members without registered versions are scheduled themselves.
        """
        selected: list[CacheKey] = []
        for tag in tags:
            keys = await self.cache.tags.get_tagged_keys(tag)
            access = await self.ctx.metadata.access_counts(keys)
            for key in top_n({k: float(v) for k, v in access.items()}, n):
                versions = await self.cache.versions.version_keys(key.name)
                selected += versions or [key]
        return await self._schedule_keys(selected, producer, interval)

    async def schedule_high_access(
        self,
        keys: Iterable[KeyLike],
        producer: KeyProducer,
        interval: int,
        threshold: int | None = None,
    ) -> list[RefreshTask]:
        """Schedule keys read more than ``threshold`` times."""
        limit = self.ctx.settings.high_access_threshold if threshold is None else threshold
        selected = []
        for key in keys:
            cache_key = as_key(key)
            if await self.ctx.metadata.access_count(cache_key) > limit:
                selected.append(cache_key)
        return await self._schedule_keys(selected, producer, interval)

    async def schedule_predicted_usage(
        self,
        keys: Iterable[KeyLike],
        producer: KeyProducer,
        interval: int,
        threshold: int | None = None,
    ) -> list[RefreshTask]:
        """Schedule keys whose recent access history is longer than ``threshold``."""
        limit = self.ctx.settings.predicted_usage_threshold if threshold is None else threshold
        selected = []
        for key in keys:
            cache_key = as_key(key)
            meta = await self.ctx.metadata.get(cache_key)
            if meta is not None and len(meta.access_history) > limit:
                selected.append(cache_key)
        return await self._schedule_keys(selected, producer, interval)

    async def schedule_hierarchy_by_decay(
        self,
        parents: Iterable[KeyLike],
        producer: KeyProducer,
        interval: int,
        threshold: float,
    ) -> list[RefreshTask]:
        """Schedule all children of parents whose decay exceeds ``threshold``."""
        decay = await self.cache.analytics.hierarchical_decay(parents)
        selected: list[CacheKey] = []
        for parent, score in decay.items():
            if score > threshold:
                selected += await self.cache.hierarchy.children(parent)
        return await self._schedule_keys(selected, producer, interval)

    async def schedule_hierarchy_by_health(
        self,
        parents: Iterable[KeyLike],
        producer: KeyProducer,
        interval: int,
        threshold: float | None = None,
    ) -> list[RefreshTask]:
        """Schedule all children of parents whose health is below ``threshold``."""
        limit = self.ctx.settings.health_refresh_threshold if threshold is None else threshold
        health = await self.cache.analytics.hierarchical_health(parents)
        selected: list[CacheKey] = []
        for parent, score in health.items():
            if score < limit:
                selected += await self.cache.hierarchy.children(parent)
        return await self._schedule_keys(selected, producer, interval)

    async def schedule_forecasted_expiry(
        self,
        keys: Iterable[KeyLike],
        producer: KeyProducer,
        interval: int,
        threshold: int,
    ) -> list[RefreshTask]:
        """Schedule keys forecast to expire within ``threshold`` seconds."""
        forecast = await self.cache.analytics.forecast_ttl_decay(keys)
        selected = [key for key, remaining in forecast.items() if remaining <= threshold]
        return await self._schedule_keys(selected, producer, interval)

    async def schedule_predictive_hierarchy(
        self,
        parents: Iterable[KeyLike],
        producer: KeyProducer,
        interval: int,
    ) -> list[RefreshTask]:
        """Schedule children forecast to expire before the next interval, or decaying fast.

        A child qualifies when its forecast lifetime is below ``interval`` or
        its parent's decay outweighs the child's access count.
        """
        selected: list[CacheKey] = []
        for parent in parents:
            parent_key = as_key(parent)
            children = await self.cache.hierarchy.children(parent_key)
            decay = (await self.cache.analytics.hierarchical_decay([parent_key]))[parent_key]
            forecast = await self.cache.analytics.forecast_ttl_decay(children)
            for child in children:
                access = await self.ctx.metadata.access_count(child)
                if forecast[child] < interval or decay / max(1, access) > 1:
                    selected.append(child)
        return await self._schedule_keys(selected, producer, interval)

    async def schedule_low_ttl(
        self,
        parents: Iterable[KeyLike],
        tags: Iterable[str],
        producer: KeyProducer,
        interval: int,
        threshold: int,
    ) -> list[RefreshTask]:
        """Schedule parents, children and tag members close to expiry."""
        parent_list = list(parents)
        selected = await self.cache.analytics.alert_low_ttl(parent_list, threshold)
        scope = await self.cache.analytics.scope_keys(parent_list, tags)
        selected += await self.cache.analytics.keys_with_ttl_below(scope, threshold)
        return await self._schedule_keys(selected, producer, interval)

    async def schedule_weighted(
        self,
        keys: Iterable[KeyLike],
        producer: KeyProducer,
        interval: int,
        threshold: float,
    ) -> list[RefreshTask]:
        """Schedule keys whose access weight is at least ``threshold``."""
        weights = await self.cache.analytics.compute_ttl_access_weight(keys)
        selected = [key for key, weight in weights.items() if weight >= threshold]
        return await self._schedule_keys(selected, producer, interval)

    async def schedule_dependency_refresh(
        self,
        key: KeyLike,
        producer: KeyProducer,
        interval: int,
    ) -> list[RefreshTask]:
        """Schedule ``key`` and every transitive dependent."""
        closure = await self.cache.dependencies.closure(key)
        tasks = []
        for member in closure:
            tasks.append(
                await self.schedule_refresh(member, functools.partial(producer, member), interval)
            )
        return tasks

    async def schedule_versioned(
        self,
        pairs: Mapping[str, int],
        producer: KeyProducer,
        interval: int,
        with_fallbacks: bool = False,
    ) -> list[RefreshTask]:
        """Schedule one version per base key, optionally with every lower version."""
        selected: list[CacheKey] = []
        for base, version in pairs.items():
            lowest = 1 if with_fallbacks else version
            selected += [CacheKey.versioned(base, v) for v in range(version, lowest - 1, -1)]
        return await self._schedule_keys(selected, producer, interval)

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    async def due(self, margin: int | None = None) -> list[RefreshTask]:
        """Enabled tasks whose entry is missing or expires within ``margin`` seconds."""
        limit = self.ctx.settings.refresh_margin if margin is None else margin
        return [
            task
            for task in list(self._tasks.values())
            if task.enabled and await self.ctx.ttl_below(task.key, limit)
        ]

    async def run_task(self, task: RefreshTask) -> Any:
        """Recompute one task under its key lock.

        Producer exceptions propagate; the entry keeps its old value.
        """
        async with self.ctx.locks.hold(f"refresh:{self.ctx.render(task.key)}"):
            value = await self.ctx.compute(task.producer, operation="refresh")
            await self.ctx.put(task.key, value, task.ttl)
            if task.persistent:
                await self.ctx.markers.put(task.key.token(), value)
            task.last_run = self.ctx.clock.now()
            task.runs += 1
        return value

    async def run_due(self, margin: int | None = None) -> list[CacheKey]:
        """Run every due task, one after another.

        Returns:
            Keys refreshed
        """
        refreshed = []
        with LogContext(operation="run_due"):
            for task in await self.due(margin):
                await self.run_task(task)
                refreshed.append(task.key)
            if refreshed:
                logger.info(f"Refreshed {len(refreshed)} keys")
        return refreshed

    async def run(self) -> None:
        """Run due tasks every ``check_interval`` seconds until stopped."""
        self._running = True
        logger.info("Refresh scheduler started")

        try:
            while self._running:
                for task in await self.due():
                    try:
                        await self.run_task(task)
                    except Exception as e:
                        logger.error(f"Failed to refresh {task.key}: {e}")

                await asyncio.sleep(self.check_interval)
        finally:
            self._running = False
            logger.info("Refresh scheduler stopped")

    def stop(self) -> None:
        self._running = False
