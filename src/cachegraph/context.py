"""Shared plumbing for the cache facade and its indexes.

Every component works on the same store adapter, settings, clock and lock
registry. ``CacheContext`` bundles them and provides the few primitives the
indexes build on: raw record access, tracked entry reads and writes, and a
compare-and-swap update loop.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable, Iterable
from typing import Any

from cachegraph.clock import Clock, SystemClock
from cachegraph.config import Settings
from cachegraph.config import settings as default_settings
from cachegraph.errors import ConcurrentUpdateError
from cachegraph.index.metadata import MetadataStore
from cachegraph.index.records import version_numbers
from cachegraph.keys import CacheKey, KeySpace
from cachegraph.locks import KeyLocks
from cachegraph.observability.metrics import (
    record_cache_hit,
    record_cache_miss,
    record_cas_conflict,
    record_producer_call,
    time_operation,
)
from cachegraph.store.base import MISSING, NO_EXPIRATION, StoreAdapter
from cachegraph.store.markers import MarkerStore, MemoryMarkerStore

logger = logging.getLogger(__name__)

# Computes a value; may be a plain callable or a coroutine function
Producer = Callable[[], Any]
# Computes the value of one key
KeyProducer = Callable[[CacheKey], Any]


async def resolve(result: Any) -> Any:
    """Await ``result`` if a coroutine function produced it."""
    if inspect.isawaitable(result):
        return await result
    return result


class CacheContext:
    """Store, settings and coordination state shared by all components."""

    def __init__(
        self,
        store: StoreAdapter,
        settings: Settings | None = None,
        clock: Clock | None = None,
        markers: MarkerStore | None = None,
        locks: KeyLocks | None = None,
    ) -> None:
        self.store = store
        self.settings = settings or default_settings
        self.clock = clock or SystemClock()
        self.markers = markers or MemoryMarkerStore()
        self.locks = locks or KeyLocks()
        self.metadata = MetadataStore(self)

    @property
    def prefix(self) -> str:
        return self.settings.key_prefix

    def render(self, key: CacheKey) -> str:
        return key.render(self.prefix)

    def ttl_or_default(self, ttl: int | None) -> int:
        """Resolve an optional TTL argument."""
        return self.settings.default_ttl if ttl is None else ttl

    # -------------------------------------------------------------------------
    # Raw access (index records, metadata)
    # -------------------------------------------------------------------------

    async def read(self, key: CacheKey) -> Any:
        return await self.store.get(self.render(key))

    async def write(self, key: CacheKey, value: Any, ttl: int = NO_EXPIRATION) -> None:
        await self.store.set(self.render(key), value, ttl)

    async def remove(self, key: CacheKey) -> None:
        await self.store.delete(self.render(key))

    async def ttl(self, key: CacheKey) -> int | None:
        return await self.store.time_to_live(self.render(key))

    async def update(
        self,
        key: CacheKey,
        fn: Callable[[Any], Any],
        ttl: int = NO_EXPIRATION,
    ) -> Any:
        """Read-modify-write ``key`` with compare-and-swap.

        ``fn`` receives the current value (``MISSING`` when absent) and
        returns the new one, possibly as an awaitable. Returning ``MISSING``
        deletes the key. ``fn`` runs again after every lost race, so it must
        not have side effects of its own.

        Raises:
            ConcurrentUpdateError: If every attempt lost against another writer
        """
        rendered = self.render(key)
        attempts = self.settings.cas_max_retries

        async with self.locks.hold(rendered):
            for _ in range(attempts):
                current, stamp = await self.store.get_with_stamp(rendered)
                new = await resolve(fn(current))

                if new is MISSING:
                    await self.store.delete(rendered)
                    return MISSING

                if await self.store.compare_and_set(rendered, new, ttl, stamp):
                    return new

                record_cas_conflict()

        logger.warning(f"Giving up on {key} after {attempts} conflicting writes")
        raise ConcurrentUpdateError(key, attempts)

    # -------------------------------------------------------------------------
    # Entries
    # -------------------------------------------------------------------------

    async def fetch(self, key: CacheKey) -> Any:
        """Read an entry, counting the hit or miss."""
        with time_operation("get", self.store.name):
            value = await self.read(key)

        if value is MISSING:
            record_cache_miss(self.store.name)
            return MISSING

        record_cache_hit(self.store.name)
        if self.settings.track_access:
            await self.metadata.record_access(key)
        return value

    async def put(self, key: CacheKey, value: Any, ttl: int | None = None) -> None:
        """Write an entry and record its write metadata."""
        expires = self.ttl_or_default(ttl)
        with time_operation("set", self.store.name):
            await self.write(key, value, expires)
        if self.settings.track_metadata:
            await self.metadata.record_write(key, expires)

    async def drop(self, key: CacheKey) -> None:
        """Delete an entry together with its metadata record.

        Dropping a version key also removes it from its base key's version
        set, so every eviction path keeps the registry in step.
        """
        with time_operation("delete", self.store.name):
            await self.remove(key)
        await self.metadata.delete(key)
        if key.space is KeySpace.VERSION and key.version is not None:
            await self.unregister_versions(key.name, [key.version])

    async def unregister_versions(self, base: str, versions: Iterable[int]) -> Any:
        """Remove versions from the version set of ``base``.

        The latest pointer falls back to the highest remaining version, or
        is deleted with the set once no version is left.

        Returns:
            The remaining versions, or ``MISSING`` when none are left
        """
        doomed = set(versions)

        def apply(current: Any) -> Any:
            kept = [v for v in version_numbers(current) if v not in doomed]
            return kept if kept else MISSING

        remaining = await self.update(CacheKey.version_set(base), apply)

        pointer = await self.read(CacheKey.version_pointer(base))
        if pointer in doomed:
            if remaining is MISSING:
                await self.remove(CacheKey.version_pointer(base))
            else:
                await self.write(CacheKey.version_pointer(base), max(remaining))
        return remaining

    async def retime(self, key: CacheKey, ttl: int) -> bool:
        """Rewrite an entry with a new lifetime. Returns False if it is missing."""
        value = await self.read(key)
        if value is MISSING:
            return False
        await self.put(key, value, ttl)
        return True

    async def exists(self, key: CacheKey) -> bool:
        return await self.read(key) is not MISSING

    async def ttl_below(self, key: CacheKey, threshold: int) -> bool:
        """True when ``key`` is missing or expires in under ``threshold`` seconds.

        Entries without expiration are never below a threshold.
        """
        ttl = await self.ttl(key)
        if ttl is None:
            return not await self.exists(key)
        return ttl < threshold

    async def compute(self, producer: Callable[..., Any], *args: Any, operation: str) -> Any:
        """Call a producer and await its result if needed.

        Producer exceptions propagate unchanged.
        """
        record_producer_call(operation)
        return await resolve(producer(*args))
