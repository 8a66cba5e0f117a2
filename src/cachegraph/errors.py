"""Exceptions raised by cachegraph.

Absence of a key is never an error: reads return the ``MISSING`` sentinel.
Producer exceptions are not wrapped; they reach the caller unchanged.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any


class CacheGraphError(Exception):
    """Base exception for cachegraph errors."""

    pass


class ConfigurationError(CacheGraphError):
    """Invalid or unsupported configuration."""

    pass


class CycleDetectedError(CacheGraphError):
    """A dependency or hierarchy relation would loop back on itself."""

    def __init__(self, path: Sequence[Any]):
        self.path = list(path)
        rendered = " -> ".join(str(node) for node in self.path)
        super().__init__(f"Cycle detected: {rendered}")


class TraversalLimitError(CacheGraphError):
    """A graph traversal visited more keys than the configured bound."""

    def __init__(self, root: Any, limit: int):
        self.root = root
        self.limit = limit
        super().__init__(f"Traversal from {root} exceeded {limit} keys")


class ConcurrentUpdateError(CacheGraphError):
    """Compare-and-swap kept losing against concurrent writers."""

    def __init__(self, key: Any, attempts: int):
        self.key = key
        self.attempts = attempts
        super().__init__(f"Gave up updating {key} after {attempts} conflicting attempts")
