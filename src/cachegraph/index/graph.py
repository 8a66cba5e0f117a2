"""Bounded, cycle-checked traversal of index relations."""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable, Iterator

from cachegraph.errors import CycleDetectedError, TraversalLimitError
from cachegraph.keys import CacheKey

Neighbours = Callable[[CacheKey], Awaitable[list[CacheKey]]]


async def postorder(
    roots: Iterable[CacheKey],
    neighbours: Neighbours,
    limit: int,
) -> list[CacheKey]:
    """Depth-first walk from ``roots``, returning keys in postorder.

    Every key appears after everything reachable from it, so the reversed
    result is a topological order. The walk is iterative; nothing is
    mutated, which lets callers validate a whole closure before acting.

    Raises:
        CycleDetectedError: If a key can reach itself
        TraversalLimitError: If more than ``limit`` keys are reachable
    """
    order: list[CacheKey] = []
    done: set[CacheKey] = set()

    for root in roots:
        if root in done:
            continue

        path = [root]
        on_path = {root}
        stack: list[tuple[CacheKey, Iterator[CacheKey]]] = [(root, iter(await neighbours(root)))]

        while stack:
            node, pending = stack[-1]
            nxt = next(pending, None)

            if nxt is None:
                stack.pop()
                path.pop()
                on_path.discard(node)
                done.add(node)
                order.append(node)
                continue

            if nxt in on_path:
                raise CycleDetectedError(path[path.index(nxt) :] + [nxt])
            if nxt in done:
                continue
            if len(done) + len(on_path) >= limit:
                raise TraversalLimitError(root, limit)

            path.append(nxt)
            on_path.add(nxt)
            stack.append((nxt, iter(await neighbours(nxt))))

    return order


async def reaches(
    start: CacheKey,
    target: CacheKey,
    neighbours: Neighbours,
    limit: int,
) -> list[CacheKey] | None:
    """Path from ``start`` to ``target``, or None if unreachable.

    Breadth-first with a visited set; used to reject an edge before it
    closes a cycle.
    """
    if start == target:
        return [start]

    parents: dict[CacheKey, CacheKey | None] = {start: None}
    frontier = [start]

    while frontier:
        next_frontier: list[CacheKey] = []
        for node in frontier:
            for nxt in await neighbours(node):
                if nxt in parents:
                    continue
                parents[nxt] = node
                if nxt == target:
                    path = [nxt]
                    back = parents[nxt]
                    while back is not None:
                        path.append(back)
                        back = parents[back]
                    return list(reversed(path))
                if len(parents) > limit:
                    raise TraversalLimitError(start, limit)
                next_frontier.append(nxt)
        frontier = next_frontier

    return None
