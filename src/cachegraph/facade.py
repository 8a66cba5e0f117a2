"""Cache facade.

``GraphCache`` is the single entry point applications use. It offers the
plain key-value operations (get/set/remember/pull/atomic update, ...) and
owns one instance of every index, the analytics engine, maintenance and
the refresh scheduler, all sharing one ``CacheContext``.

Example:
    cache = GraphCache(MemoryStore())

    user = await cache.get_or_compute("user:1", load_user, ttl=300)
    await cache.tags.tag("user:1", "users")
    await cache.dependencies.depends_on("user:1:feed", "user:1")
    await cache.dependencies.invalidate_with_dependencies("user:1")
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from cachegraph.analytics.engine import AnalyticsEngine
from cachegraph.analytics.policy import ScoringPolicy
from cachegraph.clock import Clock
from cachegraph.config import Settings
from cachegraph.context import CacheContext, KeyProducer, Producer
from cachegraph.index.dependencies import DependencyGraph
from cachegraph.index.hierarchy import HierarchyIndex
from cachegraph.index.records import MemberSet
from cachegraph.index.tags import TagIndex
from cachegraph.index.versions import VersionRegistry
from cachegraph.keys import CacheKey, KeyLike, KeySpace, as_key, parse_key
from cachegraph.locks import KeyLocks
from cachegraph.maintenance import Maintenance
from cachegraph.scheduler import RefreshScheduler
from cachegraph.store.base import MISSING, NO_EXPIRATION, StoreAdapter
from cachegraph.store.markers import MarkerStore

logger = logging.getLogger(__name__)


class GraphCache:
    """Tag, hierarchy, dependency and version aware cache."""

    def __init__(
        self,
        store: StoreAdapter,
        settings: Settings | None = None,
        clock: Clock | None = None,
        markers: MarkerStore | None = None,
        policy: ScoringPolicy | None = None,
        locks: KeyLocks | None = None,
    ) -> None:
        self.ctx = CacheContext(store, settings, clock, markers, locks)
        members = MemberSet(self.ctx)

        self.versions = VersionRegistry(self.ctx)
        self.tags = TagIndex(self.ctx, members)
        self.hierarchy = HierarchyIndex(self.ctx, self.versions, members)
        self.dependencies = DependencyGraph(self.ctx, self.versions, members)
        self.analytics = AnalyticsEngine(
            self.ctx, self.tags, self.hierarchy, self.versions, policy
        )
        self.maintenance = Maintenance(
            self.ctx, self.analytics, self.tags, self.hierarchy, self.versions
        )
        self.scheduler = RefreshScheduler(self)

    @property
    def settings(self) -> Settings:
        return self.ctx.settings

    @property
    def store(self) -> StoreAdapter:
        return self.ctx.store

    async def close(self) -> None:
        await self.ctx.store.close()

    # -------------------------------------------------------------------------
    # Basic operations
    # -------------------------------------------------------------------------

    async def get(self, key: KeyLike, default: Any = MISSING) -> Any:
        """Return the stored value, or ``default`` when absent."""
        value = await self.ctx.fetch(as_key(key))
        return default if value is MISSING else value

    async def has(self, key: KeyLike) -> bool:
        return await self.ctx.exists(as_key(key))

    async def set(self, key: KeyLike, value: Any, ttl: int | None = None) -> None:
        """Store a value. ``ttl=None`` uses the default TTL, 0 never expires."""
        await self.ctx.put(as_key(key), value, ttl)

    async def forever(self, key: KeyLike, value: Any) -> None:
        await self.ctx.put(as_key(key), value, NO_EXPIRATION)

    async def delete(self, key: KeyLike) -> None:
        """Delete an entry and its metadata. Index memberships are left alone."""
        await self.ctx.drop(as_key(key))

    async def add(self, key: KeyLike, value: Any, ttl: int | None = None) -> bool:
        """Store only if the key is absent. Returns True if it was stored."""
        cache_key = as_key(key)
        async with self.ctx.locks.hold(self.ctx.render(cache_key)):
            if await self.ctx.exists(cache_key):
                return False
            await self.ctx.put(cache_key, value, ttl)
            return True

    async def update_if_exists(self, key: KeyLike, value: Any, ttl: int | None = None) -> bool:
        """Overwrite only if the key is present. Returns True if it was stored."""
        cache_key = as_key(key)
        async with self.ctx.locks.hold(self.ctx.render(cache_key)):
            if not await self.ctx.exists(cache_key):
                return False
            await self.ctx.put(cache_key, value, ttl)
            return True

    async def pull(self, key: KeyLike) -> Any:
        """Read then delete. Returns ``MISSING`` if the key was absent."""
        cache_key = as_key(key)
        value = await self.ctx.fetch(cache_key)
        if value is not MISSING:
            await self.ctx.drop(cache_key)
        return value

    async def time_to_live(self, key: KeyLike) -> int | None:
        """Remaining seconds, or None for missing and non-expiring keys."""
        return await self.analytics.time_to_live(key)

    async def clear_all(self) -> int:
        """Delete every record under the key prefix. Durable markers survive."""
        removed = await self.ctx.store.clear(f"{self.ctx.prefix}:")
        logger.info(f"Cleared {removed} records under prefix {self.ctx.prefix!r}")
        return removed

    # -------------------------------------------------------------------------
    # Key enumeration
    # -------------------------------------------------------------------------

    async def all_keys(self) -> list[CacheKey]:
        """Every stored entry and version key under the prefix.

        Index records and metadata are not listed.
        """
        found = []
        for rendered in await self.ctx.store.keys(f"{self.ctx.prefix}:"):
            key = parse_key(rendered, self.ctx.prefix)
            if key is not None and key.space in (KeySpace.ENTRY, KeySpace.VERSION):
                found.append(key)
        return found

    async def count(self) -> int:
        return len(await self.all_keys())

    async def is_empty(self) -> bool:
        return await self.count() == 0

    async def clear_prefix(self, prefix: str) -> list[CacheKey]:
        """Delete every entry and version whose name starts with ``prefix``."""
        doomed = [key for key in await self.all_keys() if key.name.startswith(prefix)]
        for key in doomed:
            await self.ctx.drop(key)
        logger.info(f"Cleared {len(doomed)} keys starting with {prefix!r}")
        return doomed

    async def clear_older_than(self, age: float) -> list[CacheKey]:
        """Delete entries and versions created more than ``age`` seconds ago.

        Keys without a recorded creation time are kept.
        """
        threshold = self.ctx.clock.now() - age
        doomed = []
        for key in await self.all_keys():
            meta = await self.ctx.metadata.get(key)
            if meta is not None and meta.created is not None and meta.created < threshold:
                doomed.append(key)
        for key in doomed:
            await self.ctx.drop(key)
        return doomed

    # -------------------------------------------------------------------------
    # Compute on miss
    # -------------------------------------------------------------------------

    async def get_or_compute(self, key: KeyLike, producer: Producer, ttl: int | None = None) -> Any:
        """Return the stored value, computing and storing it on a miss.

        The producer runs at most once per call. Its exceptions propagate
        and nothing is stored.
        """
        cache_key = as_key(key)
        value = await self.ctx.fetch(cache_key)
        if value is not MISSING:
            return value

        value = await self.ctx.compute(producer, operation="compute")
        await self.ctx.put(cache_key, value, ttl)
        return value

    async def remember(self, key: KeyLike, producer: Producer, ttl: int | None = None) -> Any:
        return await self.get_or_compute(key, producer, ttl)

    async def remember_forever(self, key: KeyLike, producer: Producer) -> Any:
        return await self.get_or_compute(key, producer, NO_EXPIRATION)

    async def get_or_compute_many(
        self,
        pairs: Mapping[KeyLike, Producer],
        ttl: int | None = None,
    ) -> dict[KeyLike, Any]:
        return {key: await self.get_or_compute(key, producer, ttl) for key, producer in pairs.items()}

    async def get_or_fallback(self, key: KeyLike, fallback: Producer) -> Any:
        """Return the stored value or the fallback's result. Nothing is stored."""
        value = await self.ctx.fetch(as_key(key))
        if value is MISSING:
            return await self.ctx.compute(fallback, operation="fallback")
        return value

    async def get_or_fallback_key(self, key: KeyLike, fallback_key: KeyLike) -> Any:
        value = await self.ctx.fetch(as_key(key))
        if value is MISSING:
            return await self.ctx.fetch(as_key(fallback_key))
        return value

    async def get_first_available(self, keys: Iterable[KeyLike]) -> Any:
        """Value of the first present key, or ``MISSING``."""
        for key in keys:
            value = await self.ctx.fetch(as_key(key))
            if value is not MISSING:
                return value
        return MISSING

    # -------------------------------------------------------------------------
    # Batches
    # -------------------------------------------------------------------------

    async def get_many(self, keys: Iterable[KeyLike]) -> dict[KeyLike, Any]:
        """Values keyed as given; absent keys map to ``MISSING``."""
        return {key: await self.ctx.fetch(as_key(key)) for key in keys}

    async def set_many(self, items: Mapping[KeyLike, Any], ttl: int | None = None) -> None:
        for key, value in items.items():
            await self.ctx.put(as_key(key), value, ttl)

    async def delete_many(self, keys: Iterable[KeyLike]) -> None:
        for key in keys:
            await self.ctx.drop(as_key(key))

    async def delete_if(
        self,
        keys: Iterable[KeyLike],
        condition: Callable[[CacheKey, Any], bool],
    ) -> list[CacheKey]:
        """Delete present keys for which ``condition(key, value)`` holds."""
        deleted = []
        for key in keys:
            cache_key = as_key(key)
            value = await self.ctx.read(cache_key)
            if value is not MISSING and condition(cache_key, value):
                await self.ctx.drop(cache_key)
                deleted.append(cache_key)
        return deleted

    # -------------------------------------------------------------------------
    # Read-modify-write
    # -------------------------------------------------------------------------

    async def atomic_update(
        self,
        key: KeyLike,
        transform: Callable[[Any], Any],
        ttl: int | None = None,
    ) -> Any:
        """Apply ``transform(old) -> new`` atomically.

        ``old`` is ``MISSING`` when the key is absent; returning ``MISSING``
        deletes the key. Concurrent updates in one process are serialised
        by the key lock, and lost compare-and-swap races are retried.

        Raises:
            ConcurrentUpdateError: If ``cas_max_retries`` attempts all lost
        """
        cache_key = as_key(key)
        expires = self.ctx.ttl_or_default(ttl)
        value = await self.ctx.update(cache_key, transform, expires)

        if value is MISSING:
            await self.ctx.metadata.delete(cache_key)
        elif self.settings.track_metadata:
            await self.ctx.metadata.record_write(cache_key, expires)
        return value

    async def atomic_update_many(
        self,
        keys: Iterable[KeyLike],
        transform: Callable[[Any], Any],
        ttl: int | None = None,
    ) -> dict[KeyLike, Any]:
        """Atomic update of each key in turn; the batch itself is not atomic."""
        return {key: await self.atomic_update(key, transform, ttl) for key in keys}

    async def increment(self, key: KeyLike, amount: int = 1, ttl: int | None = None) -> int:
        """Add ``amount`` to a numeric value, starting from 0 when absent."""

        def add(current: Any) -> Any:
            return (0 if current is MISSING else current) + amount

        result: int = await self.atomic_update(key, add, ttl)
        return result

    async def decrement(self, key: KeyLike, amount: int = 1, ttl: int | None = None) -> int:
        return await self.increment(key, -amount, ttl)

    # -------------------------------------------------------------------------
    # Conditional writes
    # -------------------------------------------------------------------------

    async def store_if(
        self,
        key: KeyLike,
        value: Any,
        condition: Callable[[], bool],
        ttl: int | None = None,
    ) -> bool:
        if not condition():
            return False
        await self.ctx.put(as_key(key), value, ttl)
        return True

    async def store_if_exists(
        self,
        key: KeyLike,
        value: Any,
        exists_key: KeyLike,
        ttl: int | None = None,
    ) -> bool:
        """Store ``key`` only while ``exists_key`` is present."""
        if not await self.ctx.exists(as_key(exists_key)):
            return False
        await self.ctx.put(as_key(key), value, ttl)
        return True

    async def store_if_changed(self, key: KeyLike, value: Any, ttl: int | None = None) -> bool:
        cache_key = as_key(key)
        if await self.ctx.read(cache_key) == value:
            return False
        await self.ctx.put(cache_key, value, ttl)
        return True

    # -------------------------------------------------------------------------
    # Expiration and refresh
    # -------------------------------------------------------------------------

    async def update_expiration(self, key: KeyLike, ttl: int) -> bool:
        """Give a present entry a new lifetime. Returns False if it is missing."""
        return await self.ctx.retime(as_key(key), ttl)

    async def refresh_expiration(self, keys: Iterable[KeyLike], ttl: int) -> list[CacheKey]:
        refreshed = []
        for key in keys:
            cache_key = as_key(key)
            if await self.ctx.retime(cache_key, ttl):
                refreshed.append(cache_key)
        return refreshed

    async def refresh_if(
        self,
        key: KeyLike,
        producer: Producer,
        condition: Callable[[Any], bool],
        ttl: int | None = None,
    ) -> bool:
        """Recompute when the key is missing or ``condition(value)`` holds."""
        cache_key = as_key(key)
        value = await self.ctx.read(cache_key)
        if value is not MISSING and not condition(value):
            return False
        await self.ctx.put(cache_key, await self.ctx.compute(producer, operation="refresh"), ttl)
        return True

    async def refresh_many_if(
        self,
        keys: Iterable[KeyLike],
        producer: KeyProducer,
        condition: Callable[[Any], bool],
        ttl: int | None = None,
    ) -> list[CacheKey]:
        """Like ``refresh_if`` for several keys; ``producer`` receives the key."""
        refreshed = []
        for key in keys:
            cache_key = as_key(key)
            value = await self.ctx.read(cache_key)
            if value is not MISSING and not condition(value):
                continue
            fresh = await self.ctx.compute(producer, cache_key, operation="refresh")
            await self.ctx.put(cache_key, fresh, ttl)
            refreshed.append(cache_key)
        return refreshed

    async def refresh_if_ttl_below(
        self,
        keys: Iterable[KeyLike],
        producer: KeyProducer,
        threshold: int,
        ttl: int | None = None,
    ) -> list[CacheKey]:
        """Recompute keys that are missing or expire within ``threshold`` seconds."""
        refreshed = []
        for key in keys:
            cache_key = as_key(key)
            if not await self.ctx.ttl_below(cache_key, threshold):
                continue
            fresh = await self.ctx.compute(producer, cache_key, operation="refresh")
            await self.ctx.put(cache_key, fresh, ttl)
            refreshed.append(cache_key)
        return refreshed

    # -------------------------------------------------------------------------
    # Overview
    # -------------------------------------------------------------------------

    async def stats(self, tags: Iterable[str]) -> dict[str, Any]:
        """Member counts per tag and the number of distinct tagged keys."""
        by_tag = await self.tags.get_keys_by_tags(tags)
        distinct = {key for keys in by_tag.values() for key in keys}
        return {
            "total": len(distinct),
            "tags": {tag: len(keys) for tag, keys in by_tag.items()},
        }
