"""
RequestGuard — Abstract State Store Interface
==============================================

What:  Abstract base class defining how guards persist per-identity records.
Why:   Guard logic must not care whether its table lives in process memory or
       in a Redis shared by every worker. This is the Strategy design pattern:
       guards talk to StateStore, deployments pick the concrete class.
How:   Concrete stores implement get/update/delete/purge_expired.
Who:   Called by the rate limiter, brute-force tracker and CSRF protector.

Design Decision:
    The central operation is `update()`, an atomic read-modify-write. A plain
    get-then-set API would let two concurrent requests from the same identity
    both read count=99 and both write count=100, letting one request through
    for free. Each store guarantees atomicity its own way:
        - MemoryStore: holds a lock across the callback
        - RedisStore:  WATCH/MULTI optimistic transaction, retried on conflict

    The callback therefore MUST be free of side effects other than mutating
    the record it was handed: the Redis store may call it more than once.
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, NamedTuple, Optional, Type, TypeVar

from pydantic import BaseModel

R = TypeVar("R", bound=BaseModel)
T = TypeVar("T")


class StoreWrite(NamedTuple):
    """
    Result of an update callback.

    record:     New record to store, or None to delete the key
    expires_at: Epoch-millis after which the record is treated as absent
    result:     Value handed back to the caller of update()
    """

    record: Optional[BaseModel]
    expires_at: int
    result: Any


Mutator = Callable[[Optional[R]], StoreWrite]


class StateStore(ABC):
    """
    Abstract interface for guard state storage.

    Contract:
        - Keys are (namespace, key) pairs; namespaces isolate guard tables
        - Records whose expires_at <= now are never returned
        - update() is atomic per key
        - Stores raise StoreError on backend failure; they never swallow it
    """

    backend = "abstract"

    @abstractmethod
    def get(self, namespace: str, key: str, model: Type[R], now: int) -> Optional[R]:
        """Return the live record for a key, or None."""
        ...

    @abstractmethod
    def update(
        self,
        namespace: str,
        key: str,
        model: Type[R],
        mutator: Mutator,
        now: int,
    ) -> T:
        """
        Atomically read, transform and write one record.

        Args:
            mutator: Receives the current live record (or None) and returns a
                     StoreWrite describing what to store and what to return.
        Returns:
            The mutator's `result`.
        """
        ...

    @abstractmethod
    def delete(self, namespace: str, key: str) -> None:
        """Remove a key if present."""
        ...

    @abstractmethod
    def purge_expired(self, namespace: str, now: int) -> int:
        """
        Drop every expired record in a namespace.

        Returns:
            Number of records removed. Stores with native expiry return 0.
        """
        ...

    def ping(self) -> bool:
        """Whether the backend is reachable. In-process stores always are."""
        return True

    def close(self) -> None:
        """Release backend connections. No-op for in-process stores."""
