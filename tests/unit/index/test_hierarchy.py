"""Tests for the hierarchy index."""

import pytest

from cachegraph.clock import ManualClock
from cachegraph.errors import CycleDetectedError, TraversalLimitError
from cachegraph.facade import GraphCache
from cachegraph.keys import CacheKey
from cachegraph.store.base import MISSING


def entries(*names: str) -> list[CacheKey]:
    return [CacheKey.entry(n) for n in names]


class TestHierarchyMembership:
    """Tests for parent/child registration."""

    @pytest.mark.asyncio
    async def test_store_under_parent(self, cache: GraphCache) -> None:
        await cache.hierarchy.store_under_parent("p", "c1", 1)
        await cache.hierarchy.store_under_parent("p", "c2", 2)

        assert await cache.hierarchy.children("p") == entries("c1", "c2")
        assert await cache.get("c2") == 2

    @pytest.mark.asyncio
    async def test_add_children_idempotent(self, cache: GraphCache) -> None:
        assert await cache.hierarchy.add_children("p", ["a", "b"]) == entries("a", "b")
        assert await cache.hierarchy.add_children("p", ["b", "c"]) == entries("c")
        assert await cache.hierarchy.children("p") == entries("a", "b", "c")

    @pytest.mark.asyncio
    async def test_child_with_several_parents(self, cache: GraphCache) -> None:
        await cache.hierarchy.add_children("p1", ["c"])
        await cache.hierarchy.add_children("p2", ["c"])
        assert await cache.hierarchy.children("p1") == await cache.hierarchy.children("p2")

    @pytest.mark.asyncio
    async def test_store_child_with_version(self, cache: GraphCache) -> None:
        key = await cache.hierarchy.store_child_with_version("p", "c", "v2", 2)

        assert key == CacheKey.versioned("c", 2)
        assert await cache.hierarchy.children("p") == [key]
        assert await cache.versions.latest_version("c") == 2

    @pytest.mark.asyncio
    async def test_descendants_nearest_first(self, cache: GraphCache) -> None:
        await cache.hierarchy.add_children("root", ["a", "b"])
        await cache.hierarchy.add_children("a", ["a1"])

        descendants = await cache.hierarchy.descendants("root")

        assert set(descendants) == set(entries("a", "b", "a1"))
        assert descendants.index(CacheKey.entry("a")) < descendants.index(CacheKey.entry("a1"))

    @pytest.mark.asyncio
    async def test_descendants_detects_cycle(self, cache: GraphCache) -> None:
        await cache.hierarchy.add_children("a", ["b"])
        await cache.hierarchy.add_children("b", ["a"])

        with pytest.raises(CycleDetectedError):
            await cache.hierarchy.descendants("a")

    @pytest.mark.asyncio
    async def test_descendants_bounded(self, cache: GraphCache) -> None:
        """A subtree larger than max_traversal raises."""
        await cache.hierarchy.add_children("root", [f"c{i}" for i in range(150)])

        with pytest.raises(TraversalLimitError):
            await cache.hierarchy.descendants("root")


class TestHierarchyClearing:
    """Tests for clearing parents."""

    @pytest.mark.asyncio
    async def test_clear_parent_removes_every_child(self, cache: GraphCache) -> None:
        """After clear_parent no registered child is readable."""
        for i in range(5):
            await cache.hierarchy.store_under_parent("p", f"c{i}", i)

        assert await cache.hierarchy.clear_parent("p") == 5

        for i in range(5):
            assert await cache.get(f"c{i}") is MISSING
        assert await cache.hierarchy.children("p") == []

    @pytest.mark.asyncio
    async def test_clear_parent_keeps_parent_entry(self, cache: GraphCache) -> None:
        await cache.set("p", "parent")
        await cache.hierarchy.store_under_parent("p", "c", 1)
        await cache.hierarchy.clear_parent("p")
        assert await cache.get("p") == "parent"

    @pytest.mark.asyncio
    async def test_clear_parents(self, cache: GraphCache) -> None:
        await cache.hierarchy.store_under_parent("p1", "a", 1)
        await cache.hierarchy.store_under_parent("p2", "b", 1)
        assert await cache.hierarchy.clear_parents(["p1", "p2"]) == 2

    @pytest.mark.asyncio
    async def test_clear_children_ttl_below(self, cache: GraphCache) -> None:
        await cache.hierarchy.store_under_parent("p", "short", 1, ttl=5)
        await cache.hierarchy.store_under_parent("p", "long", 1, ttl=500)

        assert await cache.hierarchy.clear_children_ttl_below(["p"], 60) == entries("short")
        assert await cache.get("long") == 1

    @pytest.mark.asyncio
    async def test_prune(self, cache: GraphCache, clock: ManualClock) -> None:
        await cache.hierarchy.store_under_parent("p", "short", 1, ttl=5)
        await cache.hierarchy.store_under_parent("p", "long", 1, ttl=500)
        clock.advance(10)

        assert await cache.hierarchy.prune("p") == entries("short")
        assert await cache.hierarchy.children("p") == entries("long")


class TestHierarchyRecompute:
    """Tests for recomputing children."""

    @pytest.mark.asyncio
    async def test_recompute_children(self, cache: GraphCache) -> None:
        await cache.hierarchy.store_under_parent("p", "a", 0)
        await cache.hierarchy.store_under_parent("p", "b", 0)

        written = await cache.hierarchy.recompute_children("p", lambda k: f"new-{k.name}")

        assert written == entries("a", "b")
        assert await cache.get("a") == "new-a"

    @pytest.mark.asyncio
    async def test_recompute_children_async_producer(self, cache: GraphCache) -> None:
        await cache.hierarchy.add_children("p", ["a"])

        async def produce(key: CacheKey) -> str:
            return key.name.upper()

        await cache.hierarchy.recompute_children("p", produce)
        assert await cache.get("a") == "A"

    @pytest.mark.asyncio
    async def test_recompute_recursively_visits_each_once(self, cache: GraphCache) -> None:
        """Shared grandchildren are recomputed once."""
        await cache.hierarchy.add_children("root", ["a", "b"])
        await cache.hierarchy.add_children("a", ["shared"])
        await cache.hierarchy.add_children("b", ["shared"])
        calls: list[str] = []

        def produce(key: CacheKey) -> int:
            calls.append(key.name)
            return 1

        await cache.hierarchy.recompute_children_recursively(["root"], produce)

        assert sorted(calls) == ["a", "b", "shared"]

    @pytest.mark.asyncio
    async def test_recompute_recursively_cycle_writes_nothing(self, cache: GraphCache) -> None:
        """A cycle aborts before any child is rewritten."""
        await cache.hierarchy.add_children("a", ["b"])
        await cache.hierarchy.add_children("b", ["a"])
        calls: list[CacheKey] = []

        with pytest.raises(CycleDetectedError):
            await cache.hierarchy.recompute_children_recursively(["a"], calls.append)
        assert calls == []

    @pytest.mark.asyncio
    async def test_refresh_children_if(self, cache: GraphCache) -> None:
        """Missing children and those matching the condition are refreshed."""
        await cache.hierarchy.store_under_parent("p", "stale", {"stale": True})
        await cache.hierarchy.store_under_parent("p", "fresh", {"stale": False})
        await cache.hierarchy.add_children("p", ["missing"])

        written = await cache.hierarchy.refresh_children_if(
            "p", lambda k: {"stale": False}, lambda v: v["stale"]
        )

        assert written == entries("stale", "missing")

    @pytest.mark.asyncio
    async def test_refresh_children_if_ttl_below(self, cache: GraphCache) -> None:
        await cache.hierarchy.store_under_parent("p", "short", 0, ttl=5)
        await cache.hierarchy.store_under_parent("p", "long", 0, ttl=500)

        written = await cache.hierarchy.refresh_children_if_ttl_below("p", lambda k: 1, 60, ttl=500)

        assert written == entries("short")
        assert await cache.time_to_live("short") == 500

    @pytest.mark.asyncio
    async def test_refresh_parents_if_any_child_low(self, cache: GraphCache) -> None:
        """All children of a parent with one low child are refreshed."""
        await cache.hierarchy.store_under_parent("p1", "a", 0, ttl=5)
        await cache.hierarchy.store_under_parent("p1", "b", 0, ttl=500)
        await cache.hierarchy.store_under_parent("p2", "c", 0, ttl=500)

        written = await cache.hierarchy.refresh_parents_if_any_child_ttl_below(
            ["p1", "p2"], lambda k: 1, 60
        )

        assert written == entries("a", "b")

    @pytest.mark.asyncio
    async def test_recompute_if_parent_low_ttl(self, cache: GraphCache) -> None:
        await cache.set("p", "parent", ttl=10)
        await cache.hierarchy.store_under_parent("p", "a", 0)

        assert await cache.hierarchy.recompute_children_if_parent_low_ttl(
            "p", 60, lambda k: 1
        ) == entries("a")
        assert await cache.hierarchy.recompute_children_if_parent_low_ttl(
            "p", 5, lambda k: 1
        ) == []

    @pytest.mark.asyncio
    async def test_recompute_if_parent_missing_does_nothing(self, cache: GraphCache) -> None:
        await cache.hierarchy.add_children("p", ["a"])
        assert await cache.hierarchy.recompute_children_if_parent_low_ttl(
            "p", 60, lambda k: 1
        ) == []
