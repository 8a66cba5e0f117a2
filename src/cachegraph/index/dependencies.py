"""Dependency graph: cascading invalidation when upstream data changes.

Edges point from a dependency to its dependents. Both directions are
recorded: ``Dependents(dep)`` lists the keys depending on ``dep`` and
``Dependencies(key)`` lists what ``key`` depends on. The relation is kept
acyclic: an edge that would close a cycle is rejected when registered, and
a cycle found in existing data aborts a cascade before anything is deleted.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

from cachegraph.errors import CycleDetectedError
from cachegraph.index.graph import postorder, reaches
from cachegraph.index.records import MemberSet
from cachegraph.index.versions import VersionRegistry
from cachegraph.keys import CacheKey, KeyLike, KeySpace, as_key
from cachegraph.observability.logging import LogContext
from cachegraph.observability.metrics import record_invalidation

if TYPE_CHECKING:
    from cachegraph.context import CacheContext, KeyProducer

logger = logging.getLogger(__name__)


def _as_keys(keys: Iterable[KeyLike] | KeyLike) -> list[CacheKey]:
    if isinstance(keys, (str, CacheKey)):
        return [as_key(keys)]
    return [as_key(k) for k in keys]


class DependencyGraph:
    """Registers dependency edges and cascades invalidation along them."""

    def __init__(
        self,
        ctx: CacheContext,
        versions: VersionRegistry | None = None,
        members: MemberSet | None = None,
    ) -> None:
        self.ctx = ctx
        self.versions = versions or VersionRegistry(ctx)
        self.members = members or MemberSet(ctx)

    @property
    def limit(self) -> int:
        return self.ctx.settings.max_traversal

    # -------------------------------------------------------------------------
    # Edges
    # -------------------------------------------------------------------------

    async def dependents(self, key: KeyLike) -> list[CacheKey]:
        """Keys that directly depend on ``key``."""
        return await self.members.members(CacheKey.dependents(as_key(key)))

    async def dependencies(self, key: KeyLike) -> list[CacheKey]:
        """Keys that ``key`` directly depends on."""
        return await self.members.members(CacheKey.dependencies(as_key(key)))

    async def dependency_count(self, key: KeyLike) -> int:
        """Number of keys directly depending on ``key``."""
        return len(await self.dependents(key))

    async def _check(self, key: CacheKey, dependencies: list[CacheKey]) -> None:
        for dep in dependencies:
            if dep == key:
                raise CycleDetectedError([key, key])
            # dep -> key closes a cycle if dep is already downstream of key
            path = await reaches(key, dep, self.dependents, self.limit)
            if path is not None:
                raise CycleDetectedError(path + [key])

    async def depends_on(self, key: KeyLike, dependencies: Iterable[KeyLike] | KeyLike) -> None:
        """Register ``key`` as a dependent of each dependency.

        Raises:
            CycleDetectedError: On a self-dependency or an edge closing a cycle
        """
        cache_key = as_key(key)
        deps = _as_keys(dependencies)
        await self._check(cache_key, deps)

        for dep in deps:
            await self.members.add(CacheKey.dependents(dep), [cache_key])
        await self.members.add(CacheKey.dependencies(cache_key), deps)

    async def remove_dependency(self, key: KeyLike, dependency: KeyLike) -> None:
        cache_key, dep = as_key(key), as_key(dependency)
        await self.members.remove(CacheKey.dependents(dep), [cache_key])
        await self.members.remove(CacheKey.dependencies(cache_key), [dep])

    async def set_with_dependencies(
        self,
        key: KeyLike,
        value: Any,
        dependencies: Iterable[KeyLike] | KeyLike,
        ttl: int | None = None,
    ) -> None:
        """Write an entry and register its dependencies.

        Edges are validated before the entry is written, so a rejected
        dependency leaves the store untouched.
        """
        cache_key = as_key(key)
        deps = _as_keys(dependencies)
        await self._check(cache_key, deps)
        await self.ctx.put(cache_key, value, ttl)
        await self.depends_on(cache_key, deps)

    # -------------------------------------------------------------------------
    # Traversal
    # -------------------------------------------------------------------------

    async def closure(self, key: KeyLike) -> list[CacheKey]:
        """``key`` and everything downstream of it, in topological order.

        Each key comes after all of its dependencies within the closure.
        """
        order = await postorder([as_key(key)], self.dependents, self.limit)
        order.reverse()
        return order

    async def all_dependents(self, keys: Iterable[KeyLike]) -> list[CacheKey]:
        """Transitive dependents of ``keys``, excluding the keys themselves."""
        roots = _as_keys(keys)
        order = await postorder(roots, self.dependents, self.limit)
        order.reverse()
        return [k for k in order if k not in roots]

    # -------------------------------------------------------------------------
    # Cascades
    # -------------------------------------------------------------------------

    async def _unlink(self, key: CacheKey) -> None:
        """Remove every edge leaving ``key``."""
        for dependent in await self.dependents(key):
            await self.members.remove(CacheKey.dependencies(dependent), [key])
        await self.members.drop(CacheKey.dependents(key))

    async def _unlink_upstream(self, key: CacheKey) -> None:
        """Remove every edge arriving at ``key``."""
        for dependency in await self.dependencies(key):
            await self.members.remove(CacheKey.dependents(dependency), [key])
        await self.members.drop(CacheKey.dependencies(key))

    async def _detach(self, keys: list[CacheKey]) -> None:
        """Delete entries and every edge touching ``keys``."""
        for key in keys:
            await self.ctx.drop(key)
            await self._unlink(key)
            await self._unlink_upstream(key)

    async def invalidate_with_dependencies(self, key: KeyLike) -> list[CacheKey]:
        """Delete ``key`` and every transitive dependent.

        The closure is computed first; a cycle or an oversized closure
        raises before anything is deleted.

        Returns:
            The deleted keys in cascade order
        """
        with LogContext(operation="invalidate", subject=as_key(key)):
            doomed = await self.closure(key)
            await self._detach(doomed)
            record_invalidation("dependency", len(doomed))
            logger.info(f"Invalidated {len(doomed)} keys")
        return doomed

    async def invalidate_dependents(self, key: KeyLike) -> list[CacheKey]:
        """Delete every transitive dependent of ``key`` but keep ``key``."""
        root = as_key(key)
        with LogContext(operation="invalidate_dependents", subject=root):
            doomed = [k for k in await self.closure(root) if k != root]
            await self._unlink(root)
            await self._detach(doomed)
            record_invalidation("dependency", len(doomed))
            logger.info(f"Invalidated {len(doomed)} dependents")
        return doomed

    async def invalidate_versioned_chain(self, base: str, version: int) -> list[CacheKey]:
        """Delete ``version`` of ``base`` and the same version of every dependent.

        Dependency edges are followed between plain entries; the version
        number is applied to each entry's name. Edges are kept.
        """
        chain = await self.closure(CacheKey.entry(base))
        removed = []
        for key in chain:
            if key.space is not KeySpace.ENTRY:
                continue
            await self.versions.delete_version(key.name, version)
            removed.append(CacheKey.versioned(key.name, version))
        record_invalidation("dependency", len(removed))
        return removed

    async def recompute_dependents(
        self,
        key: KeyLike,
        producer: KeyProducer,
        ttl: int | None = None,
    ) -> list[CacheKey]:
        """Rewrite every transitive dependent with ``producer(dependent)``.

        Dependents are recomputed in topological order, so a key is only
        rewritten after everything it depends on within the cascade.
        """
        root = as_key(key)
        written = []
        for dependent in await self.closure(root):
            if dependent == root:
                continue
            value = await self.ctx.compute(producer, dependent, operation="recompute_dependents")
            await self.ctx.put(dependent, value, ttl)
            written.append(dependent)
        return written
