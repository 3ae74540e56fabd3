"""Shared key-value store -- Redis in production, in-memory for local runs."""

from onramp.config import StoreSettings
from onramp.store.base import KeyValueStore
from onramp.store.memory_store import MemoryStore
from onramp.store.redis_store import RedisStore


def create_store(settings: StoreSettings) -> KeyValueStore:
    """Build the store selected by StoreSettings.backend."""
    if settings.backend == "memory":
        return MemoryStore()
    return RedisStore(settings)


__all__ = ["KeyValueStore", "MemoryStore", "RedisStore", "create_store"]
