"""
RequestGuard — CSRF Token Store & Validator
============================================

What:  Issues per-identity anti-forgery tokens and checks them on
       state-changing requests.
Why:   A browser will happily attach cookies to a form post from a hostile
       site. The hostile site cannot read our token, so requiring it on every
       POST/PUT/PATCH/DELETE blocks the forged request.
How:   issue()    → random 32-byte hex token stored under identity.subject_key
       validate() → safe methods pass; everything else must present the
                    stored token (header X-CSRF-Token or body field _csrf)
                    within its TTL

Lifecycle:
    - Issuing overwrites the identity's previous token (one live token each)
    - Issuing also sweeps expired tokens from the store (opportunistic GC)
    - Expiry is checked again at validation time; a swept-late token is
      still rejected once `now - created_at > ttl`

Security Note:
    Comparison uses hmac.compare_digest so response timing does not reveal
    how many leading characters of a guessed token were right.
"""

import hmac
import logging
import secrets
from typing import Iterable, Optional

from requestguard.config import GuardOptions
from requestguard.exceptions import CSRFValidationError
from requestguard.guards.base import ALLOW, SAFE_METHODS, Verdict
from requestguard.identity import ClientIdentity
from requestguard.models.records import CSRFTokenRecord
from requestguard.stores.base import StateStore, StoreWrite

logger = logging.getLogger(__name__)

CSRF_HEADER = "x-csrf-token"
CSRF_BODY_FIELD = "_csrf"
TOKEN_BYTES = 32


class CSRFProtector:
    """
    CSRF token issuance and validation.

    Args:
        ttl_ms:        Token lifetime; valid while now - created_at <= ttl_ms
        store:         Where tokens live
        safe_methods:  Methods that never need a token
        exempt_paths:  Substrings of paths that skip validation (webhooks carry
                       their own provider signature)
    """

    namespace = "csrf"

    def __init__(
        self,
        ttl_ms: int,
        store: StateStore,
        safe_methods: Iterable[str] = SAFE_METHODS,
        exempt_paths: Iterable[str] = ("/webhook",),
    ):
        if ttl_ms < 1:
            raise ValueError("ttl_ms must be positive")
        self.ttl_ms = ttl_ms
        self.store = store
        self.safe_methods = frozenset(m.upper() for m in safe_methods)
        self.exempt_paths = tuple(exempt_paths)

    @classmethod
    def from_options(cls, options, store: StateStore) -> "CSRFProtector":
        return cls(ttl_ms=GuardOptions.coerce(options).csrf_ttl_ms, store=store)

    def issue(self, identity: ClientIdentity, now: int) -> str:
        """Generate, store and return a fresh token for this identity."""
        token = secrets.token_hex(TOKEN_BYTES)
        record = CSRFTokenRecord(token=token, created_at=now)

        self.store.update(
            self.namespace,
            identity.subject_key,
            CSRFTokenRecord,
            lambda _current: StoreWrite(record, self._expiry(record), None),
            now,
        )
        purged = self.store.purge_expired(self.namespace, now)
        if purged:
            logger.debug("Swept %d expired CSRF tokens", purged)
        return token

    def is_exempt(self, method: str, path: str = "") -> bool:
        if method.upper() in self.safe_methods:
            return True
        return any(fragment in path for fragment in self.exempt_paths)

    def validate(
        self,
        identity: ClientIdentity,
        method: str,
        presented: Optional[str],
        now: int,
        path: str = "",
    ) -> Verdict:
        if self.is_exempt(method, path):
            return ALLOW

        context = {"subject": identity.subject_key, "path": path}
        stored = self.store.get(self.namespace, identity.subject_key, CSRFTokenRecord, now)
        if stored is None:
            return Verdict.deny(CSRFValidationError(context={**context, "reason": "no_token"}))
        if not presented:
            return Verdict.deny(CSRFValidationError(context={**context, "reason": "missing"}))
        if now - stored.created_at > self.ttl_ms:
            return Verdict.deny(CSRFValidationError(context={**context, "reason": "expired"}))
        # Tokens are hex; anything else (including lone surrogates) cannot match
        if not presented.isascii() or not hmac.compare_digest(
            stored.token.encode("ascii"), presented.encode("ascii")
        ):
            return Verdict.deny(CSRFValidationError(context={**context, "reason": "mismatch"}))
        return ALLOW

    @staticmethod
    def token_from(headers, body) -> Optional[str]:
        """Presented token: header first, then the `_csrf` body field."""
        token = headers.get(CSRF_HEADER)
        if token:
            return token
        if isinstance(body, dict):
            value = body.get(CSRF_BODY_FIELD)
            if isinstance(value, str) and value:
                return value
        return None

    def _expiry(self, record: CSRFTokenRecord) -> int:
        return record.created_at + self.ttl_ms + 1
