"""Version registry: coexisting versions of one logical key.

Each base key owns three kinds of records:

- ``Version(base, n)``: the stored value of version ``n``
- ``VersionSet(base)``: sorted list of registered version numbers
- ``VersionPointer(base)``: the latest version number

The set replaces store-side pattern scans, so counting and listing
versions works on any store adapter.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from typing import TYPE_CHECKING, Any

from cachegraph.index.records import version_numbers
from cachegraph.keys import CacheKey
from cachegraph.store.base import MISSING

if TYPE_CHECKING:
    from cachegraph.context import CacheContext

logger = logging.getLogger(__name__)


class VersionRegistry:
    """Stores, finds and promotes versions of base keys."""

    def __init__(self, ctx: CacheContext) -> None:
        self.ctx = ctx

    # -------------------------------------------------------------------------
    # Registration
    # -------------------------------------------------------------------------

    async def _register(self, base: str, version: int) -> None:
        await self.ctx.update(
            CacheKey.version_set(base),
            lambda current: sorted(set(version_numbers(current)) | {version}),
        )

        def advance(current: Any) -> int:
            if isinstance(current, int) and current >= version:
                return current
            return version

        await self.ctx.update(CacheKey.version_pointer(base), advance)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def versions(self, base: str) -> list[int]:
        """Registered version numbers, ascending."""
        return version_numbers(await self.ctx.read(CacheKey.version_set(base)))

    async def count_versions(self, base: str) -> int:
        return len(await self.versions(base))

    async def version_keys(self, base: str) -> list[CacheKey]:
        return [CacheKey.versioned(base, v) for v in await self.versions(base)]

    async def latest_version(self, base: str) -> int:
        """Latest version number, 0 when the base key has no versions."""
        pointer = await self.ctx.read(CacheKey.version_pointer(base))
        if isinstance(pointer, int) and pointer >= 1:
            return pointer
        versions = await self.versions(base)
        return versions[-1] if versions else 0

    async def get_with_version(
        self,
        base: str,
        version: int,
        fallback_version: int | None = None,
    ) -> Any:
        """Value at ``version``, else at ``fallback_version``, else ``MISSING``."""
        value = await self.ctx.fetch(CacheKey.versioned(base, version))
        if value is MISSING and fallback_version is not None:
            value = await self.ctx.fetch(CacheKey.versioned(base, fallback_version))
        return value

    async def get_first_available_version(self, base: str, versions: Iterable[int]) -> Any:
        """First present value among ``versions``, in the given order."""
        for version in versions:
            value = await self.ctx.fetch(CacheKey.versioned(base, version))
            if value is not MISSING:
                return value
        return MISSING

    async def time_to_live_version(self, base: str, version: int) -> int | None:
        return await self.ctx.ttl(CacheKey.versioned(base, version))

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def set_with_version(
        self,
        base: str,
        value: Any,
        version: int,
        ttl: int | None = None,
    ) -> CacheKey:
        """Store ``value`` as ``version`` of ``base``.

        Registers the version and advances the latest pointer when
        ``version`` is newer than the current one.
        """
        key = CacheKey.versioned(base, version)
        await self.ctx.put(key, value, ttl)
        await self._register(base, version)
        return key

    async def delete_version(self, base: str, version: int) -> None:
        await self.ctx.drop(CacheKey.versioned(base, version))

    async def update_version_ttl(
        self,
        base: str,
        version: int,
        ttl: int,
        update_meta: bool = False,
    ) -> bool:
        """Give a stored version a new lifetime.

        With ``update_meta`` the write is stamped in the version's metadata
        (update time and expiration); otherwise metadata is left alone.

        Returns:
            False if the version is missing
        """
        key = CacheKey.versioned(base, version)
        if update_meta:
            return await self.ctx.retime(key, ttl)

        value = await self.ctx.read(key)
        if value is MISSING:
            return False
        await self.ctx.write(key, value, ttl)
        return True

    async def recompute_with_fallback(
        self,
        base: str,
        producer: Callable[[], Any],
        max_version: int,
        ttl: int | None = None,
    ) -> Any:
        """Newest present value from ``max_version`` down to 1.

        When no version is present, computes one with ``producer()`` and
        stores it at ``max_version``.
        """
        for version in range(max_version, 0, -1):
            value = await self.ctx.fetch(CacheKey.versioned(base, version))
            if value is not MISSING:
                return value

        value = await self.ctx.compute(producer, operation="recompute_with_fallback")
        await self.set_with_version(base, value, max_version, ttl)
        return value

    async def recompute_versioned_fallback(
        self,
        pairs: Mapping[str, int],
        producer: Callable[[str, int], Any],
        ttl: int | None = None,
    ) -> dict[CacheKey, Any]:
        """Fill every missing version ``max..1`` of each base key.

        Args:
            pairs: Base key to highest version
            producer: Called as ``producer(base, version)`` for missing versions

        Returns:
            Value of every version in range, present or recomputed
        """
        result: dict[CacheKey, Any] = {}
        for base, max_version in pairs.items():
            for version in range(max_version, 0, -1):
                key = CacheKey.versioned(base, version)
                value = await self.ctx.read(key)
                if value is MISSING:
                    value = await self.ctx.compute(
                        producer, base, version, operation="recompute_versioned_fallback"
                    )
                    await self.set_with_version(base, value, version, ttl)
                result[key] = value
        return result

    async def promote_version(self, base: str, version: int, ttl: int | None = None) -> int | None:
        """Make the value of ``version`` the latest one.

        The value is copied into a new version ``latest + 1`` and the latest
        pointer moves to it, so the pointer always names the promoted value.
        Promoting the current latest version, or a version whose value the
        latest version already holds, is a no-op.

        Returns:
            The latest version after promotion, or None if ``version`` is missing
        """
        value = await self.ctx.read(CacheKey.versioned(base, version))
        if value is MISSING:
            logger.debug(f"Nothing to promote: {base} has no version {version}")
            return None

        latest = await self.latest_version(base)
        if version == latest:
            return latest
        if await self.ctx.read(CacheKey.versioned(base, latest)) == value:
            logger.debug(f"{base} v{latest} already holds the value of v{version}")
            return latest

        promoted = latest + 1
        await self.set_with_version(base, value, promoted, ttl)
        logger.info(f"Promoted {base} v{version} to v{promoted}")
        return promoted

    async def promote_most_accessed_version(self, base: str) -> int | None:
        """Promote the version with the highest access count."""
        best: int | None = None
        best_access = -1
        for version in await self.versions(base):
            access = await self.ctx.metadata.access_count(CacheKey.versioned(base, version))
            if access > best_access:
                best, best_access = version, access
        if best is None:
            return None
        return await self.promote_version(base, best)

    async def archive_old_versions(self, base: str, keep_latest: int) -> list[int]:
        """Delete versions ``1 .. latest - keep_latest``, bounds inclusive.

        Only versions above ``latest - keep_latest`` survive: with latest 5
        and ``keep_latest=2``, versions 1, 2 and 3 are deleted.

        Returns:
            The deleted version numbers
        """
        latest = await self.latest_version(base)
        cutoff = max(0, latest - keep_latest)
        doomed = [v for v in await self.versions(base) if v <= cutoff]
        for version in doomed:
            await self.ctx.drop(CacheKey.versioned(base, version))
        return doomed

    async def clear_versions_older_than(self, base: str, timestamp: float) -> list[int]:
        """Delete versions created before ``timestamp``."""
        doomed = []
        for version in await self.versions(base):
            meta = await self.ctx.metadata.get(CacheKey.versioned(base, version))
            if meta is not None and meta.created is not None and meta.created < timestamp:
                doomed.append(version)
        for version in doomed:
            await self.ctx.drop(CacheKey.versioned(base, version))
        return doomed

    async def clear(self, base: str) -> None:
        """Delete every version and the registry records of ``base``."""
        for version in await self.versions(base):
            await self.ctx.drop(CacheKey.versioned(base, version))
        await self.ctx.remove(CacheKey.version_set(base))
        await self.ctx.remove(CacheKey.version_pointer(base))
