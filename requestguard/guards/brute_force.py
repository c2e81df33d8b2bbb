"""
RequestGuard — Brute-Force Lockout Tracker
===========================================

What:  Locks an identity out of a route group after repeated failed responses.
Why:   Rate limits slow guessing down; lockout stops it. Five wrong passwords
       in a row should not be followed by a sixth attempt for a while.
How:   Two-phase, because the outcome of a request is only known after the
       handler ran:
           check_locked()   before the handler → deny while locked
           record_outcome() after the handler  → count failures, reset on success

State Machine (per identity, per tracker):
    attempts < max          → requests allowed
    attempts >= max         → LOCKED, denied with retry_after = reset_time - now
    now > reset_time        → attempts reset to 0 (lock expires)
    outcome status < 400    → attempts reset to 0
    outcome status >= 400   → attempts += 1; reaching max pushes reset_time to
                              now + window so a lock always lasts one window

One tracker per protected route group (login, OTP, ...). A failed OTP
should not lock someone out of the login form.
"""

import logging
from typing import Optional

from requestguard.config import GuardOptions
from requestguard.exceptions import LockedOutError
from requestguard.guards.base import ALLOW, Verdict, seconds_until
from requestguard.identity import ClientIdentity
from requestguard.models.records import BruteForceRecord
from requestguard.stores.base import StateStore, StoreWrite

logger = logging.getLogger(__name__)


class BruteForceTracker:
    """
    Consecutive-failure lockout keyed by `identity.subject_key`.

    Args:
        max_attempts: Failures that trigger the lock
        window_ms:    Reset interval and lock duration
        store:        Where records live
        name:         Namespace suffix (one per route group)
    """

    def __init__(
        self,
        max_attempts: int,
        window_ms: int,
        store: StateStore,
        name: str = "auth",
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if window_ms < 1:
            raise ValueError("window_ms must be positive")
        self.max_attempts = max_attempts
        self.window_ms = window_ms
        self.store = store
        self.name = name
        self.namespace = f"bruteforce:{name}"

    @classmethod
    def from_options(cls, options, store: StateStore, name: str = "auth") -> "BruteForceTracker":
        opts = GuardOptions.coerce(options)
        return cls(opts.max_auth_attempts, opts.window_ms, store, name=name)

    def check_locked(self, identity: ClientIdentity, now: int) -> Verdict:
        key = identity.subject_key

        def _apply(record: Optional[BruteForceRecord]) -> StoreWrite:
            if record is None or now > record.reset_time:
                fresh = BruteForceRecord(attempts=0, reset_time=now + self.window_ms)
                return StoreWrite(fresh, self._expiry(fresh), None)
            if record.attempts >= self.max_attempts:
                return StoreWrite(record, self._expiry(record), record.reset_time - now)
            return StoreWrite(record, self._expiry(record), None)

        remaining_ms = self.store.update(
            self.namespace, key, BruteForceRecord, _apply, now
        )
        if remaining_ms is None:
            return ALLOW

        retry_after = seconds_until(remaining_ms)
        logger.info(
            "Brute-force lock '%s' active for %s, retry in %ds",
            self.name,
            key,
            retry_after,
        )
        return Verdict.deny(
            LockedOutError(
                retry_after=retry_after,
                context={"tracker": self.name, "subject": key},
            )
        )

    def record_outcome(self, identity: ClientIdentity, status_code: int, now: int) -> None:
        key = identity.subject_key
        failed = status_code >= 400

        def _apply(record: Optional[BruteForceRecord]) -> StoreWrite:
            if record is None or now > record.reset_time:
                record = BruteForceRecord(attempts=0, reset_time=now + self.window_ms)
            if not failed:
                record.attempts = 0
                return StoreWrite(record, self._expiry(record), record.attempts)

            record.attempts += 1
            if record.attempts == self.max_attempts:
                record.reset_time = now + self.window_ms
            return StoreWrite(record, self._expiry(record), record.attempts)

        attempts = self.store.update(self.namespace, key, BruteForceRecord, _apply, now)
        if failed and attempts == self.max_attempts:
            logger.warning(
                "Identity %s locked by '%s' after %d consecutive failures",
                key,
                self.name,
                attempts,
            )

    def attempts(self, identity: ClientIdentity, now: int) -> int:
        record = self.store.get(
            self.namespace, identity.subject_key, BruteForceRecord, now
        )
        return record.attempts if record else 0

    @staticmethod
    def _expiry(record: BruteForceRecord) -> int:
        return record.reset_time + 1
