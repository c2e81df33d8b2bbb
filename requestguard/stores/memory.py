"""
RequestGuard — Bounded In-Memory State Store
=============================================

What:  Process-local StateStore with per-entry expiry and an LRU capacity cap.
Why:   A plain dict keyed by IP grows forever: every scanner that ever touched
       the API leaves a record behind. Bounding by both time and size keeps
       memory flat under hostile traffic.
How:   OrderedDict in access order. Reads and writes move the key to the end;
       inserts past capacity pop from the front (least recently used).
       Expired entries are dropped when touched and by purge_expired(), which
       walks only the requested namespace via a per-namespace key index.
       get() hands out a copy; only update() sees the stored record.

Thread Safety:
    One RLock guards the whole table, held across each update() callback.
    Guards finish in microseconds, so a single lock is not a bottleneck for
    a single process. For multiple workers use RedisStore instead.
"""

import logging
import threading
from collections import OrderedDict
from typing import Dict, Optional, Set, Tuple, Type

from requestguard.stores.base import Mutator, R, StateStore, StoreWrite, T

logger = logging.getLogger(__name__)


class _Entry:
    __slots__ = ("record", "expires_at")

    def __init__(self, record, expires_at: int):
        self.record = record
        self.expires_at = expires_at


class MemoryStore(StateStore):
    """
    LRU + TTL bounded store.

    Args:
        capacity: Maximum number of live records across all namespaces.
    """

    backend = "memory"

    def __init__(self, capacity: int = 100_000):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._entries: "OrderedDict[Tuple[str, str], _Entry]" = OrderedDict()
        self._keys: Dict[str, Set[str]] = {}
        self._lock = threading.RLock()
        self.evictions = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _live(self, slot: Tuple[str, str], now: int) -> Optional[_Entry]:
        entry = self._entries.get(slot)
        if entry is None:
            return None
        if entry.expires_at <= now:
            self._drop(slot)
            return None
        self._entries.move_to_end(slot)
        return entry

    def get(self, namespace: str, key: str, model: Type[R], now: int) -> Optional[R]:
        with self._lock:
            entry = self._live((namespace, key), now)
            return entry.record.model_copy() if entry else None

    def update(
        self,
        namespace: str,
        key: str,
        model: Type[R],
        mutator: Mutator,
        now: int,
    ) -> T:
        slot = (namespace, key)
        with self._lock:
            entry = self._live(slot, now)
            write: StoreWrite = mutator(entry.record if entry else None)

            if write.record is None:
                self._drop(slot)
                return write.result

            if entry is None:
                self._entries[slot] = _Entry(write.record, write.expires_at)
                self._keys.setdefault(namespace, set()).add(key)
                self._evict_overflow()
            else:
                entry.record = write.record
                entry.expires_at = write.expires_at
            return write.result

    def delete(self, namespace: str, key: str) -> None:
        with self._lock:
            self._drop((namespace, key))

    def purge_expired(self, namespace: str, now: int) -> int:
        with self._lock:
            expired = [
                (namespace, key) for key in self._keys.get(namespace, ())
                if self._entries[(namespace, key)].expires_at <= now
            ]
            for slot in expired:
                self._drop(slot)
        if expired:
            logger.debug("Purged %d expired %s records", len(expired), namespace)
        return len(expired)

    def namespace_sizes(self) -> Dict[str, int]:
        """Record count per namespace (expired-but-untouched entries included)."""
        with self._lock:
            return {namespace: len(keys) for namespace, keys in self._keys.items() if keys}

    def _evict_overflow(self) -> None:
        while len(self._entries) > self.capacity:
            slot = next(iter(self._entries))
            self._drop(slot)
            self.evictions += 1
            logger.debug("Evicted least recently used record %s:%s", *slot)

    def _drop(self, slot: Tuple[str, str]) -> None:
        if self._entries.pop(slot, None) is None:
            return
        keys = self._keys.get(slot[0])
        if keys is not None:
            keys.discard(slot[1])
            if not keys:
                del self._keys[slot[0]]
