"""
RequestGuard — Fixed-Window Rate Limiter
=========================================

What:  Per-identity request ceiling with block-on-exceed semantics.
Why:   Throttles scrapers and credential stuffers before any business logic
       (or database query) runs.
How:   One RateWindowRecord per IP: a counter and the time the window opened.

Algorithm: Fixed Window Counter
    1. No record          → create {count=1, window_start=now}; allow
    2. now - start > W    → reset {count=1, window_start=now}; allow
    3. blocked            → deny, retry after W - (now - start)
    4. count += 1
       count > ceiling    → blocked=True; deny (same retry_after)
       otherwise          → allow

    Why fixed window (not sliding log):
        O(1) memory per identity regardless of ceiling, and a single record
        that Redis can store as one small JSON value. The known weakness
        (a burst of 2x ceiling straddling a window boundary) is acceptable
        for the ceilings used here.

Atomicity:
    Steps 1-4 run inside StateStore.update(), so two concurrent requests from
    the same IP can never both observe the same count.
"""

import logging
from typing import Optional

from requestguard.config import GuardOptions
from requestguard.exceptions import RateLimitExceededError
from requestguard.guards.base import ALLOW, Verdict, seconds_until
from requestguard.identity import ClientIdentity
from requestguard.models.records import RateWindowRecord
from requestguard.stores.base import StateStore, StoreWrite

logger = logging.getLogger(__name__)


class FixedWindowRateLimiter:
    """
    Fixed-window limiter keyed by `identity.rate_key`.

    Args:
        max_requests: Ceiling C; the (C+1)-th request in a window is denied
        window_ms:    Window duration W in milliseconds
        store:        Where records live
        name:         Namespace suffix; separate limiters never share counters
        message:      Client-facing denial message
    """

    def __init__(
        self,
        max_requests: int,
        window_ms: int,
        store: StateStore,
        name: str = "general",
        message: Optional[str] = None,
    ):
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if window_ms < 1:
            raise ValueError("window_ms must be positive")
        self.max_requests = max_requests
        self.window_ms = window_ms
        self.store = store
        self.name = name
        self.namespace = f"rate:{name}"
        self.message = message or "Too many requests. Please try again later."

    @classmethod
    def from_options(cls, options, store: StateStore, name: str = "general") -> "FixedWindowRateLimiter":
        """Build from a GuardOptions or a `{"windowMs": ..., "maxRequests": ...}` mapping."""
        opts = GuardOptions.coerce(options)
        return cls(opts.max_requests, opts.window_ms, store, name=name)

    def check(self, identity: ClientIdentity, now: int) -> Verdict:
        key = identity.rate_key

        def _apply(record: Optional[RateWindowRecord]) -> StoreWrite:
            if record is None or now - record.window_start > self.window_ms:
                fresh = RateWindowRecord(count=1, window_start=now, blocked=False)
                return StoreWrite(fresh, self._expiry(fresh), None)

            remaining = self.window_ms - (now - record.window_start)
            if record.blocked:
                return StoreWrite(record, self._expiry(record), remaining)

            record.count += 1
            if record.count > self.max_requests:
                record.blocked = True
                return StoreWrite(record, self._expiry(record), remaining)
            return StoreWrite(record, self._expiry(record), None)

        remaining_ms = self.store.update(
            self.namespace, key, RateWindowRecord, _apply, now
        )
        if remaining_ms is None:
            return ALLOW

        retry_after = seconds_until(remaining_ms)
        logger.info(
            "Rate limit '%s' exceeded for %s (%d/%dms), retry in %ds",
            self.name,
            key,
            self.max_requests,
            self.window_ms,
            retry_after,
        )
        return Verdict.deny(
            RateLimitExceededError(
                retry_after=retry_after,
                message=self.message,
                context={"limiter": self.name, "ip": key},
            )
        )

    def peek(self, identity: ClientIdentity, now: int) -> Optional[RateWindowRecord]:
        """Current record without counting a request (diagnostics and tests)."""
        return self.store.get(self.namespace, identity.rate_key, RateWindowRecord, now)

    def _expiry(self, record: RateWindowRecord) -> int:
        # A record is equivalent to "absent" once now - start > W
        return record.window_start + self.window_ms + 1
