# Stores package init
"""
RequestGuard — Guard State Stores
==================================

Store Inventory:
    - StateStore (abstract): Atomic read-modify-write contract for guard records
    - MemoryStore: Bounded LRU + TTL table, single process
    - RedisStore: Shared table for multi-worker / multi-instance deployments

Which one:
    Chosen by REQUESTGUARD_STORE_BACKEND via build_store().
"""

from requestguard.stores.base import StateStore, StoreWrite
from requestguard.stores.memory import MemoryStore


def build_store(config) -> StateStore:
    """Construct the configured store backend."""
    if config.store_backend == "redis":
        # Imported lazily so memory-only deployments never open a socket
        from requestguard.stores.redis_store import RedisStore

        return RedisStore.from_url(config.redis_url)
    return MemoryStore(capacity=config.store_capacity)


__all__ = ["StateStore", "StoreWrite", "MemoryStore", "build_store"]
