"""Cache factory for cachegraph."""

from __future__ import annotations

from cachegraph.clock import Clock
from cachegraph.config import Settings
from cachegraph.config import settings as default_settings
from cachegraph.errors import ConfigurationError
from cachegraph.facade import GraphCache
from cachegraph.store.base import StoreAdapter
from cachegraph.store.markers import MarkerStore, MemoryMarkerStore, RedisMarkerStore
from cachegraph.store.memory import MemoryStore
from cachegraph.store.redis import RedisStore, get_redis


async def create_stores(
    settings: Settings | None = None,
    clock: Clock | None = None,
) -> tuple[StoreAdapter, MarkerStore]:
    """Build the store adapter and marker store selected by ``store_backend``.

    Raises:
        ConfigurationError: If the backend is unknown
    """
    config = settings or default_settings
    backend = config.store_backend.lower()

    if backend == "memory":
        return MemoryStore(clock), MemoryMarkerStore()
    if backend == "redis":
        client = await get_redis(config.redis_url)
        return RedisStore(client), RedisMarkerStore(client, f"{config.key_prefix}-markers")

    raise ConfigurationError(
        f"Unsupported store_backend {config.store_backend!r}. Supported values: memory, redis."
    )


async def create_cache(
    settings: Settings | None = None,
    clock: Clock | None = None,
) -> GraphCache:
    """Return a GraphCache wired to the configured backend."""
    config = settings or default_settings
    store, markers = await create_stores(config, clock)
    return GraphCache(store, settings=config, clock=clock, markers=markers)
