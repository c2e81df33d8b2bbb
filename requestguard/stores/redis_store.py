"""
RequestGuard — Redis-Backed State Store
========================================

What:  StateStore shared by every worker and instance behind a load balancer.
Why:   With MemoryStore each process keeps its own tables, so an attacker
       spread across N workers gets N times the rate limit and N times the
       login attempts. A shared store closes that gap.
How:   One Redis string per record holding the record's JSON, with a PX
       expiry so Redis evicts stale identities on its own.
       update() runs as a WATCH/MULTI transaction: if another worker writes
       the same key between our read and our EXEC, redis-py retries the
       callback against the fresh value.

Resilience:
    Connection and timeout errors are retried with tenacity (exponential
    backoff + jitter, a handful of attempts). After that a StoreError is
    raised; the middleware turns it into a 500 rather than letting the
    request through unguarded.

Key layout:
    {prefix}:{namespace}:{key}   e.g. requestguard:rate:general:203.0.113.7
"""

import logging
from typing import Optional, Type

import redis
from pydantic import ValidationError as PydanticValidationError
from tenacity import (
    RetryError,
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from requestguard.exceptions import StoreError
from requestguard.stores.base import Mutator, R, StateStore, StoreWrite, T

logger = logging.getLogger(__name__)

_TRANSIENT = (redis.exceptions.ConnectionError, redis.exceptions.TimeoutError)

_redis_retry = retry(
    retry=retry_if_exception_type(_TRANSIENT),
    stop=stop_after_attempt(3),
    # initial, max, exp_base, jitter (seconds)
    wait=wait_exponential_jitter(0.05, 0.5, 2, 0.05),
    before_sleep=before_sleep_log(logger, logging.WARNING),
)


class RedisStore(StateStore):
    """
    Redis implementation of StateStore.

    Args:
        client: A synchronous `redis.Redis` client. Guards run synchronously
                inside the request path, so the sync client is used on purpose.
        prefix: Key prefix, lets several apps share one Redis database.
    """

    backend = "redis"

    def __init__(self, client: "redis.Redis", prefix: str = "requestguard"):
        self._client = client
        self.prefix = prefix

    @classmethod
    def from_url(cls, url: str, prefix: str = "requestguard") -> "RedisStore":
        client = redis.Redis.from_url(url, socket_timeout=1.0, socket_connect_timeout=1.0)
        logger.info("RedisStore configured for %s", url.rsplit("@", 1)[-1])
        return cls(client, prefix=prefix)

    def _key(self, namespace: str, key: str) -> str:
        return f"{self.prefix}:{namespace}:{key}"

    @staticmethod
    def _decode(model: Type[R], raw) -> Optional[R]:
        if raw is None:
            return None
        try:
            return model.model_validate_json(raw)
        except PydanticValidationError as e:
            raise StoreError(
                message="Corrupt security record",
                context={"model": model.__name__, "error": str(e)},
            ) from e

    def get(self, namespace: str, key: str, model: Type[R], now: int) -> Optional[R]:
        raw = self._call(self._client.get, self._key(namespace, key))
        return self._decode(model, raw)

    def update(
        self,
        namespace: str,
        key: str,
        model: Type[R],
        mutator: Mutator,
        now: int,
    ) -> T:
        rkey = self._key(namespace, key)

        def _transaction(pipe) -> T:
            current = self._decode(model, pipe.get(rkey))
            write: StoreWrite = mutator(current)
            pipe.multi()
            if write.record is None:
                pipe.delete(rkey)
            else:
                ttl_ms = max(1, write.expires_at - now)
                pipe.set(rkey, write.record.model_dump_json(), px=ttl_ms)
            return write.result

        return self._call(
            self._client.transaction, _transaction, rkey, value_from_callable=True
        )

    def delete(self, namespace: str, key: str) -> None:
        self._call(self._client.delete, self._key(namespace, key))

    def purge_expired(self, namespace: str, now: int) -> int:
        # Redis expires keys natively via PX
        return 0

    def ping(self) -> bool:
        try:
            return bool(self._call(self._client.ping))
        except StoreError:
            return False

    def close(self) -> None:
        self._client.close()

    def _call(self, fn, *args, **kwargs):
        """Run one Redis operation with retries; translate failures to StoreError."""
        try:
            return _redis_retry(fn)(*args, **kwargs)
        except RetryError as e:
            last = e.last_attempt.exception() if e.last_attempt else None
            logger.error("Redis unavailable after retries: %s", last)
            raise StoreError(context={"error": str(last)}) from e
        except redis.exceptions.RedisError as e:
            logger.error("Redis operation failed: %s", e)
            raise StoreError(context={"error": str(e)}) from e
