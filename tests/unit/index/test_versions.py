"""Tests for the version registry."""

import pytest

from cachegraph.clock import ManualClock
from cachegraph.facade import GraphCache
from cachegraph.keys import CacheKey
from cachegraph.store.base import MISSING


class TestVersionRegistration:
    """Tests for storing and listing versions."""

    @pytest.mark.asyncio
    async def test_set_with_version_registers(self, cache: GraphCache) -> None:
        key = await cache.versions.set_with_version("r", "v1", 1)

        assert key == CacheKey.versioned("r", 1)
        assert await cache.versions.versions("r") == [1]
        assert await cache.versions.latest_version("r") == 1

    @pytest.mark.asyncio
    async def test_older_version_keeps_pointer(self, cache: GraphCache) -> None:
        """Writing an older version does not move the latest pointer back."""
        await cache.versions.set_with_version("r", "v3", 3)
        await cache.versions.set_with_version("r", "v1", 1)

        assert await cache.versions.latest_version("r") == 3
        assert await cache.versions.versions("r") == [1, 3]
        assert await cache.versions.count_versions("r") == 2

    @pytest.mark.asyncio
    async def test_no_versions(self, cache: GraphCache) -> None:
        assert await cache.versions.latest_version("none") == 0
        assert await cache.versions.version_keys("none") == []

    @pytest.mark.asyncio
    async def test_time_to_live_version(self, cache: GraphCache) -> None:
        await cache.versions.set_with_version("r", "v1", 1, ttl=120)
        assert await cache.versions.time_to_live_version("r", 1) == 120

    @pytest.mark.asyncio
    async def test_delete_version_moves_pointer(self, cache: GraphCache) -> None:
        await cache.versions.set_with_version("r", "v1", 1)
        await cache.versions.set_with_version("r", "v2", 2)

        await cache.versions.delete_version("r", 2)

        assert await cache.versions.latest_version("r") == 1
        assert await cache.versions.versions("r") == [1]

    @pytest.mark.asyncio
    async def test_clear(self, cache: GraphCache) -> None:
        await cache.versions.set_with_version("r", "v1", 1)
        await cache.versions.set_with_version("r", "v2", 2)

        await cache.versions.clear("r")

        assert await cache.versions.versions("r") == []
        assert await cache.versions.latest_version("r") == 0
        assert await cache.versions.get_with_version("r", 1) is MISSING


class TestVersionFallback:
    """Tests for fallback reads and recompute."""

    @pytest.mark.asyncio
    async def test_get_with_fallback(self, cache: GraphCache) -> None:
        """A missing version reads through to the fallback version."""
        await cache.versions.set_with_version("r", "v1", 1)

        assert await cache.versions.get_with_version("r", 2, fallback_version=1) == "v1"
        assert await cache.versions.get_with_version("r", 2) is MISSING

    @pytest.mark.asyncio
    async def test_fallback_missing_too(self, cache: GraphCache) -> None:
        """Both the requested and the fallback version are absent."""
        assert await cache.versions.get_with_version("r", 3, fallback_version=1) is MISSING

    @pytest.mark.asyncio
    async def test_fallback_after_expiry(self, cache: GraphCache, clock: ManualClock) -> None:
        await cache.versions.set_with_version("r", "v1", 1, ttl=1000)
        await cache.versions.set_with_version("r", "v2", 2, ttl=10)
        clock.advance(20)

        assert await cache.versions.get_with_version("r", 2, fallback_version=1) == "v1"

    @pytest.mark.asyncio
    async def test_get_first_available_version(self, cache: GraphCache) -> None:
        await cache.versions.set_with_version("r", "v2", 2)
        assert await cache.versions.get_first_available_version("r", [3, 2, 1]) == "v2"
        assert await cache.versions.get_first_available_version("r", [5]) is MISSING

    @pytest.mark.asyncio
    async def test_recompute_with_fallback_prefers_newest(self, cache: GraphCache) -> None:
        await cache.versions.set_with_version("r", "v1", 1)
        await cache.versions.set_with_version("r", "v2", 2)

        value = await cache.versions.recompute_with_fallback("r", lambda: "new", max_version=3)

        assert value == "v2"
        assert await cache.versions.versions("r") == [1, 2]

    @pytest.mark.asyncio
    async def test_recompute_with_fallback_computes(self, cache: GraphCache) -> None:
        """With no version present the producer fills max_version."""
        value = await cache.versions.recompute_with_fallback("r", lambda: "new", max_version=3)

        assert value == "new"
        assert await cache.versions.get_with_version("r", 3) == "new"

    @pytest.mark.asyncio
    async def test_recompute_versioned_fallback_fills_gaps(self, cache: GraphCache) -> None:
        await cache.versions.set_with_version("r", "kept", 2)
        calls: list[tuple[str, int]] = []

        def produce(base: str, version: int) -> str:
            calls.append((base, version))
            return f"{base}{version}"

        result = await cache.versions.recompute_versioned_fallback({"r": 3}, produce)

        assert calls == [("r", 3), ("r", 1)]
        assert result[CacheKey.versioned("r", 2)] == "kept"
        assert await cache.versions.versions("r") == [1, 2, 3]


class TestVersionPromotion:
    """Tests for promotion and cleanup."""

    @pytest.mark.asyncio
    async def test_promote_version(self, cache: GraphCache) -> None:
        """Promotion copies the value into a new latest version."""
        await cache.versions.set_with_version("r", "v1", 1)
        await cache.versions.set_with_version("r", "v2", 2)

        assert await cache.versions.promote_version("r", 1) == 3

        assert await cache.versions.latest_version("r") == 3
        assert await cache.versions.get_with_version("r", 3) == "v1"

    @pytest.mark.asyncio
    async def test_promote_latest_is_noop(self, cache: GraphCache) -> None:
        await cache.versions.set_with_version("r", "v1", 1)
        assert await cache.versions.promote_version("r", 1) == 1
        assert await cache.versions.versions("r") == [1]

    @pytest.mark.asyncio
    async def test_promote_missing(self, cache: GraphCache) -> None:
        assert await cache.versions.promote_version("r", 4) is None

    @pytest.mark.asyncio
    async def test_promote_most_accessed(self, cache: GraphCache) -> None:
        await cache.versions.set_with_version("r", "v1", 1)
        await cache.versions.set_with_version("r", "v2", 2)
        for _ in range(3):
            await cache.versions.get_with_version("r", 1)

        assert await cache.versions.promote_most_accessed_version("r") == 3
        assert await cache.versions.get_with_version("r", 3) == "v1"

    @pytest.mark.asyncio
    async def test_repeated_promotion_adds_one_version(self, cache: GraphCache) -> None:
        """Once the latest version holds the promoted value, promoting again is a no-op."""
        await cache.versions.set_with_version("r", "v1", 1)
        await cache.versions.set_with_version("r", "v2", 2)
        for _ in range(3):
            await cache.versions.get_with_version("r", 1)

        for _ in range(5):
            assert await cache.versions.promote_most_accessed_version("r") == 3

        assert await cache.versions.count_versions("r") == 3
        assert await cache.versions.promote_version("r", 1) == 3

    @pytest.mark.asyncio
    async def test_archive_old_versions(self, cache: GraphCache) -> None:
        for v in range(1, 6):
            await cache.versions.set_with_version("r", f"v{v}", v)

        assert await cache.versions.archive_old_versions("r", keep_latest=2) == [1, 2, 3]

        assert await cache.versions.versions("r") == [4, 5]
        assert await cache.versions.latest_version("r") == 5

    @pytest.mark.asyncio
    async def test_clear_versions_older_than(self, cache: GraphCache, clock: ManualClock) -> None:
        await cache.versions.set_with_version("r", "old", 1)
        cutoff = clock.now() + 10
        clock.advance(20)
        await cache.versions.set_with_version("r", "new", 2)

        assert await cache.versions.clear_versions_older_than("r", cutoff) == [1]
        assert await cache.versions.versions("r") == [2]


class TestVersionBookkeeping:
    """Tests that deleting version keys by any path keeps the registry current."""

    @pytest.mark.asyncio
    async def test_plain_delete_unregisters(self, cache: GraphCache) -> None:
        await cache.versions.set_with_version("r", "v1", 1)
        await cache.versions.set_with_version("r", "v2", 2)

        await cache.delete(CacheKey.versioned("r", 2))

        assert await cache.versions.versions("r") == [1]
        assert await cache.versions.latest_version("r") == 1

    @pytest.mark.asyncio
    async def test_tag_clear_unregisters(self, cache: GraphCache) -> None:
        for v in range(1, 4):
            key = await cache.versions.set_with_version("r", f"v{v}", v)
            await cache.tags.tag(key, "t")

        await cache.tags.clear_tag("t")

        assert await cache.versions.count_versions("r") == 0
        assert await cache.versions.latest_version("r") == 0

    @pytest.mark.asyncio
    async def test_percentile_eviction_unregisters(self, cache: GraphCache) -> None:
        await cache.tags.set_with_tags("r", "plain", ttl=100, tags="t")
        for v in range(1, 4):
            await cache.versions.set_with_version("r", f"v{v}", v, ttl=10 * v)

        evicted = await cache.maintenance.clear_below_percentile_ttl(tags=["t"], percentile=100)

        assert len(evicted) == 4
        assert await cache.versions.count_versions("r") == 0
        assert await cache.versions.latest_version("r") == 0


class TestVersionTTL:
    """Tests for update_version_ttl."""

    @pytest.mark.asyncio
    async def test_without_metadata(self, cache: GraphCache, clock: ManualClock) -> None:
        await cache.versions.set_with_version("r", "v1", 1, ttl=60)
        before = await cache.ctx.metadata.get(CacheKey.versioned("r", 1))
        clock.advance(5)

        assert await cache.versions.update_version_ttl("r", 1, 500) is True

        assert await cache.versions.time_to_live_version("r", 1) == 500
        assert await cache.ctx.metadata.get(CacheKey.versioned("r", 1)) == before

    @pytest.mark.asyncio
    async def test_with_metadata(self, cache: GraphCache, clock: ManualClock) -> None:
        await cache.versions.set_with_version("r", "v1", 1, ttl=60)
        clock.advance(5)

        assert await cache.versions.update_version_ttl("r", 1, 500, update_meta=True) is True

        meta = await cache.ctx.metadata.get(CacheKey.versioned("r", 1))
        assert meta is not None
        assert meta.updated == clock.now()
        assert meta.expiration == 500

    @pytest.mark.asyncio
    async def test_missing_version(self, cache: GraphCache) -> None:
        assert await cache.versions.update_version_ttl("r", 9, 500) is False
