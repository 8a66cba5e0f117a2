"""Tag index: many-to-many grouping of keys for bulk reads and clears."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

from cachegraph.index.records import MemberSet
from cachegraph.keys import CacheKey, KeyLike, as_key
from cachegraph.observability.logging import LogContext
from cachegraph.observability.metrics import record_invalidation

if TYPE_CHECKING:
    from cachegraph.context import CacheContext

logger = logging.getLogger(__name__)


class TagIndex:
    """Maps tag names to ordered sets of member keys.

    A tag record is created by the first ``tag()`` call and removed by
    ``clear_tag``, by untagging its last member, or by ``prune`` once every
    member has expired.
    """

    def __init__(self, ctx: CacheContext, members: MemberSet | None = None) -> None:
        self.ctx = ctx
        self.members = members or MemberSet(ctx)

    async def tag(self, key: KeyLike, tag: str) -> bool:
        """Add ``key`` to ``tag``. Idempotent.

        Returns:
            True if the key was not yet a member
        """
        added = await self.members.add(CacheKey.tag(tag), [as_key(key)])
        return bool(added)

    async def tag_many(self, key: KeyLike, tags: Iterable[str]) -> None:
        """Add one key to several tags."""
        for tag in tags:
            await self.tag(key, tag)

    async def tag_keys(self, tag: str, keys: Iterable[KeyLike]) -> list[CacheKey]:
        """Add several keys to one tag. Returns the newly added keys."""
        return await self.members.add(CacheKey.tag(tag), [as_key(k) for k in keys])

    async def untag(self, key: KeyLike, tag: str) -> bool:
        """Remove ``key`` from ``tag`` without touching its entry."""
        removed = await self.members.remove(CacheKey.tag(tag), [as_key(key)])
        return bool(removed)

    async def get_tagged_keys(self, tag: str) -> list[CacheKey]:
        """Members of ``tag``; empty for a tag that was never created."""
        return await self.members.members(CacheKey.tag(tag))

    async def get_keys_by_tags(self, tags: Iterable[str]) -> dict[str, list[CacheKey]]:
        return {tag: await self.get_tagged_keys(tag) for tag in tags}

    async def has_tag(self, key: KeyLike, tag: str) -> bool:
        return await self.members.contains(CacheKey.tag(tag), as_key(key))

    async def count_keys(self, tag: str) -> int:
        return len(await self.get_tagged_keys(tag))

    async def keys_with_ttl_below(self, tag: str, threshold: int) -> list[CacheKey]:
        """Members that are missing or expire in under ``threshold`` seconds."""
        return [
            key
            for key in await self.get_tagged_keys(tag)
            if await self.ctx.ttl_below(key, threshold)
        ]

    async def clear_tag(self, tag: str) -> int:
        """Delete every member entry, then the tag record.

        Returns:
            Number of member entries deleted
        """
        with LogContext(operation="clear_tag", subject=tag):
            keys = await self.get_tagged_keys(tag)
            for key in keys:
                await self.ctx.drop(key)
            await self.members.drop(CacheKey.tag(tag))

            record_invalidation("tag", len(keys))
            logger.info(f"Cleared tag {tag} ({len(keys)} keys)")
        return len(keys)

    async def clear_tags(self, tags: Iterable[str]) -> int:
        total = 0
        for tag in tags:
            total += await self.clear_tag(tag)
        return total

    async def clear_tags_if_ttl_below(self, tags: Iterable[str], threshold: int) -> list[CacheKey]:
        """Delete members of ``tags`` that expire in under ``threshold`` seconds.

        Tag records are kept; run ``prune`` to drop the deleted members.
        """
        deleted: list[CacheKey] = []
        for tag in tags:
            for key in await self.keys_with_ttl_below(tag, threshold):
                await self.ctx.drop(key)
                deleted.append(key)
        record_invalidation("tag", len(deleted))
        return deleted

    async def set_with_tags(
        self,
        key: KeyLike,
        value: Any,
        ttl: int | None = None,
        tags: Iterable[str] | str = (),
    ) -> None:
        """Write the entry, then register it under each tag.

        Every step is idempotent, so an interrupted call can be replayed.
        """
        cache_key = as_key(key)
        await self.ctx.put(cache_key, value, ttl)
        if isinstance(tags, str):
            tags = [tags]
        await self.tag_many(cache_key, tags)

    async def prune(self, tag: str) -> list[CacheKey]:
        """Drop members whose entries no longer exist.

        The tag record is deleted when no member survives.

        Returns:
            The members removed from the record
        """
        dead = [key for key in await self.get_tagged_keys(tag) if not await self.ctx.exists(key)]
        if dead:
            await self.members.remove(CacheKey.tag(tag), dead)
            logger.debug(f"Pruned {len(dead)} expired members from tag {tag}")
        return dead
