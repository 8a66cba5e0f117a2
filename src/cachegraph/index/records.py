"""Ordered key sets persisted as single store records.

Tag members, parent children and dependency edges are all stored the same
way: a non-expiring record holding a list of key tokens. Additions and
removals go through compare-and-swap so concurrent writers do not lose each
other's members, and both are idempotent, so replaying an interrupted
multi-step write is safe.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

from cachegraph.keys import CacheKey
from cachegraph.store.base import MISSING

if TYPE_CHECKING:
    from cachegraph.context import CacheContext

logger = logging.getLogger(__name__)


def _tokens(raw: Any) -> list[str]:
    if raw is MISSING or not isinstance(raw, list):
        return []
    return [token for token in raw if isinstance(token, str)]


def version_numbers(raw: Any) -> list[int]:
    """Sorted version numbers held by a version set record."""
    if raw is MISSING or not isinstance(raw, list):
        return []
    return sorted({int(v) for v in raw if isinstance(v, int) and v >= 1})


class MemberSet:
    """Insertion-ordered membership records."""

    def __init__(self, ctx: CacheContext) -> None:
        self.ctx = ctx

    async def members(self, record: CacheKey) -> list[CacheKey]:
        """Members of ``record``; empty when the record was never created."""
        members = []
        for token in _tokens(await self.ctx.read(record)):
            try:
                members.append(CacheKey.from_token(token))
            except ValueError:
                logger.warning(f"Skipping malformed member {token!r} in {record}")
        return members

    async def exists(self, record: CacheKey) -> bool:
        return await self.ctx.exists(record)

    async def contains(self, record: CacheKey, key: CacheKey) -> bool:
        return key.token() in _tokens(await self.ctx.read(record))

    async def add(self, record: CacheKey, keys: Iterable[CacheKey]) -> list[CacheKey]:
        """Append keys not yet present. Returns the keys actually added."""
        incoming = list(dict.fromkeys(keys))
        added: list[CacheKey] = []
        if not incoming:
            return added

        def apply(current: Any) -> list[str]:
            tokens = _tokens(current)
            present = set(tokens)
            added.clear()
            for key in incoming:
                token = key.token()
                if token not in present:
                    tokens.append(token)
                    present.add(token)
                    added.append(key)
            return tokens

        await self.ctx.update(record, apply)
        return added

    async def remove(self, record: CacheKey, keys: Iterable[CacheKey]) -> list[CacheKey]:
        """Remove keys; deletes the record once it is empty.

        Returns the keys actually removed.
        """
        doomed = {key.token(): key for key in keys}
        removed: list[CacheKey] = []

        def apply(current: Any) -> Any:
            tokens = _tokens(current)
            removed.clear()
            removed.extend(doomed[t] for t in tokens if t in doomed)
            kept = [t for t in tokens if t not in doomed]
            return kept if kept else MISSING

        await self.ctx.update(record, apply)
        return removed

    async def drop(self, record: CacheKey) -> None:
        await self.ctx.remove(record)
