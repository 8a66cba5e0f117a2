"""Store adapters for cachegraph.

The store is the primitive expiring key-value backend; the marker store is
the separate durable space used for persistent keys.
"""

from cachegraph.store.base import MISSING, NO_EXPIRATION, Stamp, StoreAdapter
from cachegraph.store.markers import MarkerStore, MemoryMarkerStore, RedisMarkerStore
from cachegraph.store.memory import MemoryStore
from cachegraph.store.redis import RedisStore, close_redis, get_redis

__all__ = [
    "MISSING",
    "NO_EXPIRATION",
    "Stamp",
    "StoreAdapter",
    "MemoryStore",
    "RedisStore",
    "get_redis",
    "close_redis",
    "MarkerStore",
    "MemoryMarkerStore",
    "RedisMarkerStore",
]
