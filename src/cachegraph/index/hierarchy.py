"""Hierarchy index: parent keys owning ordered child lists.

Unlike tags, a hierarchy is a single directed relation: children can be
parents themselves, which is what the recursive operations walk. A child
may sit under several parents.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from typing import TYPE_CHECKING, Any

from cachegraph.index.graph import postorder
from cachegraph.index.records import MemberSet
from cachegraph.index.versions import VersionRegistry
from cachegraph.keys import CacheKey, KeyLike, as_key
from cachegraph.observability.logging import LogContext
from cachegraph.observability.metrics import record_invalidation
from cachegraph.store.base import MISSING

if TYPE_CHECKING:
    from cachegraph.context import CacheContext, KeyProducer

logger = logging.getLogger(__name__)


class HierarchyIndex:
    """Maps parent keys to their children."""

    def __init__(
        self,
        ctx: CacheContext,
        versions: VersionRegistry | None = None,
        members: MemberSet | None = None,
    ) -> None:
        self.ctx = ctx
        self.versions = versions or VersionRegistry(ctx)
        self.members = members or MemberSet(ctx)

    # -------------------------------------------------------------------------
    # Membership
    # -------------------------------------------------------------------------

    async def children(self, parent: KeyLike) -> list[CacheKey]:
        """Children of ``parent`` in insertion order."""
        return await self.members.members(CacheKey.children(as_key(parent)))

    async def add_children(self, parent: KeyLike, children: Iterable[KeyLike]) -> list[CacheKey]:
        """Register keys under ``parent``. Returns the newly added ones."""
        return await self.members.add(
            CacheKey.children(as_key(parent)),
            [as_key(child) for child in children],
        )

    async def remove_child(self, parent: KeyLike, child: KeyLike) -> bool:
        removed = await self.members.remove(CacheKey.children(as_key(parent)), [as_key(child)])
        return bool(removed)

    async def store_under_parent(
        self,
        parent: KeyLike,
        child: KeyLike,
        value: Any,
        ttl: int | None = None,
    ) -> None:
        """Write the child entry and register it under ``parent``."""
        child_key = as_key(child)
        await self.ctx.put(child_key, value, ttl)
        await self.add_children(parent, [child_key])

    async def store_child_with_version(
        self,
        parent: KeyLike,
        child: str,
        value: Any,
        version: int,
        ttl: int | None = None,
    ) -> CacheKey:
        """Store a version of ``child`` and register that version under ``parent``."""
        key = await self.versions.set_with_version(child, value, version, ttl)
        await self.add_children(parent, [key])
        return key

    async def descendants(self, parent: KeyLike) -> list[CacheKey]:
        """Every key below ``parent``, nearest first.

        Raises:
            CycleDetectedError: If the hierarchy loops back on itself
            TraversalLimitError: If the subtree exceeds ``max_traversal``
        """
        root = as_key(parent)
        order = await postorder([root], self.children, self.ctx.settings.max_traversal)
        order.reverse()
        return [key for key in order if key != root]

    # -------------------------------------------------------------------------
    # Clearing
    # -------------------------------------------------------------------------

    async def clear_parent(self, parent: KeyLike) -> int:
        """Delete every registered child, then the parent's child record."""
        parent_key = as_key(parent)
        with LogContext(operation="clear_parent", subject=parent_key):
            children = await self.children(parent_key)
            for child in children:
                await self.ctx.drop(child)
            await self.members.drop(CacheKey.children(parent_key))

            record_invalidation("parent", len(children))
            logger.info(f"Cleared parent {parent_key} ({len(children)} children)")
        return len(children)

    async def clear_parents(self, parents: Iterable[KeyLike]) -> int:
        total = 0
        for parent in parents:
            total += await self.clear_parent(parent)
        return total

    async def children_ttl_below(self, parents: Iterable[KeyLike], threshold: int) -> list[CacheKey]:
        """Children that are missing or expire in under ``threshold`` seconds."""
        low: list[CacheKey] = []
        for parent in parents:
            for child in await self.children(parent):
                if await self.ctx.ttl_below(child, threshold):
                    low.append(child)
        return low

    async def clear_children_ttl_below(
        self, parents: Iterable[KeyLike], threshold: int
    ) -> list[CacheKey]:
        low = await self.children_ttl_below(parents, threshold)
        for child in low:
            await self.ctx.drop(child)
        record_invalidation("parent", len(low))
        return low

    async def prune(self, parent: KeyLike) -> list[CacheKey]:
        """Drop children whose entries no longer exist."""
        parent_key = as_key(parent)
        dead = [c for c in await self.children(parent_key) if not await self.ctx.exists(c)]
        if dead:
            await self.members.remove(CacheKey.children(parent_key), dead)
        return dead

    # -------------------------------------------------------------------------
    # Recompute
    # -------------------------------------------------------------------------

    async def _rewrite(
        self,
        children: Iterable[CacheKey],
        producer: KeyProducer,
        ttl: int | None,
        operation: str,
    ) -> list[CacheKey]:
        written = []
        for child in children:
            value = await self.ctx.compute(producer, child, operation=operation)
            await self.ctx.put(child, value, ttl)
            written.append(child)
        return written

    async def recompute_children(
        self,
        parent: KeyLike,
        producer: KeyProducer,
        ttl: int | None = None,
    ) -> list[CacheKey]:
        """Rewrite every child with ``producer(child)``, regardless of TTL."""
        children = await self.children(parent)
        return await self._rewrite(children, producer, ttl, "recompute_children")

    async def recompute_children_recursively(
        self,
        parents: Iterable[KeyLike],
        producer: KeyProducer,
        ttl: int | None = None,
    ) -> list[CacheKey]:
        """Rewrite every descendant of ``parents``, each key once.

        The whole subtree is validated first, so a cycle aborts the call
        before anything is rewritten.
        """
        roots = [as_key(p) for p in parents]
        order = await postorder(roots, self.children, self.ctx.settings.max_traversal)
        order.reverse()
        targets = [key for key in order if key not in roots]
        return await self._rewrite(targets, producer, ttl, "recompute_children")

    async def refresh_children_if(
        self,
        parent: KeyLike,
        producer: KeyProducer,
        condition: Callable[[Any], bool],
        ttl: int | None = None,
    ) -> list[CacheKey]:
        """Refresh children that are missing or whose value satisfies ``condition``."""
        stale = []
        for child in await self.children(parent):
            value = await self.ctx.read(child)
            if value is MISSING or condition(value):
                stale.append(child)
        return await self._rewrite(stale, producer, ttl, "refresh_children")

    async def refresh_children_if_ttl_below(
        self,
        parent: KeyLike,
        producer: KeyProducer,
        threshold: int,
        ttl: int | None = None,
    ) -> list[CacheKey]:
        """Refresh children that are missing or expire in under ``threshold`` seconds."""
        stale = await self.children_ttl_below([parent], threshold)
        return await self._rewrite(stale, producer, ttl, "refresh_children")

    async def refresh_parents_if_any_child_ttl_below(
        self,
        parents: Iterable[KeyLike],
        producer: KeyProducer,
        threshold: int,
        ttl: int | None = None,
    ) -> list[CacheKey]:
        """Refresh all children of each parent that has at least one low child."""
        written: list[CacheKey] = []
        for parent in parents:
            children = await self.children(parent)
            for child in children:
                if await self.ctx.ttl_below(child, threshold):
                    written += await self._rewrite(children, producer, ttl, "refresh_children")
                    break
        return written

    async def recompute_children_if_parent_low_ttl(
        self,
        parent: KeyLike,
        threshold: int,
        producer: KeyProducer,
        ttl: int | None = None,
    ) -> list[CacheKey]:
        """Recompute all children when the parent entry itself is about to expire.

        A missing parent or one without expiration triggers nothing.
        """
        parent_ttl = await self.ctx.ttl(as_key(parent))
        if parent_ttl is None or parent_ttl >= threshold:
            return []
        return await self.recompute_children(parent, producer, ttl)
