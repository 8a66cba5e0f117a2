"""Global pytest configuration and fixtures.

Every cache fixture runs on the in-memory store driven by a manual clock,
so tests simulate expiry by advancing time instead of sleeping.
"""

from __future__ import annotations

import pytest

from cachegraph.clock import ManualClock
from cachegraph.config import Settings
from cachegraph.facade import GraphCache
from cachegraph.store.memory import MemoryStore


@pytest.fixture
def clock() -> ManualClock:
    """Clock frozen at a fixed timestamp."""
    return ManualClock(start=1_700_000_000.0)


@pytest.fixture
def settings() -> Settings:
    """Settings independent of the environment's defaults."""
    return Settings(
        store_backend="memory",
        key_prefix="test",
        default_ttl=3600,
        max_traversal=100,
        cas_max_retries=3,
        access_history_limit=5,
        refresh_margin=60,
    )


@pytest.fixture
def store(clock: ManualClock) -> MemoryStore:
    return MemoryStore(clock)


@pytest.fixture
def cache(store: MemoryStore, settings: Settings, clock: ManualClock) -> GraphCache:
    return GraphCache(store, settings=settings, clock=clock)
