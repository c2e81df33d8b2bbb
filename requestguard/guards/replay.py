"""
RequestGuard — Replay Guard
============================

What:  Rejects mutating requests whose signed envelope is missing or stale.
Why:   A captured "book this room" or "pay this invoice" request must not be
       re-submittable an hour later.
How:   Clients send two headers on every non-read request:
           X-Request-Timestamp: epoch milliseconds when the request was signed
           X-Request-Signature: signature over the request
       The timestamp must be within the freshness window of server time.

Two Modes:
    Lenient (default): signature presence + timestamp freshness only. This is
        the contract existing clients were built against.
    Hardened (verify_signature=True + secret): additionally recomputes
        HMAC-SHA256 over a canonical string and compares in constant time.

Canonical signing string (hardened mode):
    METHOD + "\\n" + path + "\\n" + sha256_hex(body) + "\\n" + timestamp

    Why hash the body: keeps the signing string small and fixed-shape no
    matter how large the upload is.
"""

import hashlib
import hmac
from typing import Dict, Iterable, Optional

from requestguard.config import GuardOptions
from requestguard.exceptions import (
    InvalidSecurityHeadersError,
    InvalidSignatureError,
    MissingSecurityHeadersError,
    RequestExpiredError,
)
from requestguard.guards.base import ALLOW, SAFE_METHODS, Verdict
from requestguard.identity import now_ms
from requestguard.models.records import SignedRequestEnvelope

SIGNATURE_HEADER = "x-request-signature"
TIMESTAMP_HEADER = "x-request-timestamp"


def canonical_string(method: str, path: str, body: bytes, timestamp: str) -> str:
    body_hash = hashlib.sha256(body or b"").hexdigest()
    return "\n".join([method.upper(), path, body_hash, str(timestamp)])


def compute_signature(secret: str, method: str, path: str, body: bytes, timestamp: str) -> str:
    message = canonical_string(method, path, body, timestamp)
    return hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()


def sign_request(
    secret: str,
    method: str,
    path: str,
    body: bytes = b"",
    timestamp: Optional[int] = None,
) -> Dict[str, str]:
    """
    Build the two envelope headers for a request.

    Used by first-party clients and the test suite.
    """
    if timestamp is None:
        timestamp = now_ms()
    ts = str(int(timestamp))
    return {
        "X-Request-Timestamp": ts,
        "X-Request-Signature": compute_signature(secret, method, path, body, ts),
    }


class ReplayGuard:
    """
    Signature/timestamp freshness check for non-read methods.

    Args:
        freshness_ms:     Maximum |now - timestamp| accepted (inclusive)
        safe_methods:     Methods that bypass the guard entirely
        signing_secret:   Shared HMAC secret (hardened mode only)
        verify_signature: Turn on HMAC verification
    """

    def __init__(
        self,
        freshness_ms: int = 5 * 60 * 1000,
        safe_methods: Iterable[str] = SAFE_METHODS,
        signing_secret: Optional[str] = None,
        verify_signature: bool = False,
    ):
        if verify_signature and not signing_secret:
            raise ValueError("verify_signature requires a signing_secret")
        self.freshness_ms = freshness_ms
        self.safe_methods = frozenset(m.upper() for m in safe_methods)
        self.signing_secret = signing_secret
        self.verify_signature = verify_signature

    @classmethod
    def from_options(cls, options, verify_signature: bool = False) -> "ReplayGuard":
        opts = GuardOptions.coerce(options)
        return cls(
            freshness_ms=opts.freshness_window_ms,
            signing_secret=opts.signing_secret,
            verify_signature=verify_signature,
        )

    @staticmethod
    def envelope_from_headers(headers) -> SignedRequestEnvelope:
        return SignedRequestEnvelope(
            signature=headers.get(SIGNATURE_HEADER) or None,
            timestamp=headers.get(TIMESTAMP_HEADER) or None,
        )

    def verify(
        self,
        envelope: SignedRequestEnvelope,
        method: str,
        now: int,
        path: str = "",
        body: bytes = b"",
    ) -> Verdict:
        if method.upper() in self.safe_methods:
            return ALLOW

        if not envelope.signature or not envelope.timestamp:
            return Verdict.deny(MissingSecurityHeadersError(context={"path": path}))

        try:
            timestamp = int(envelope.timestamp.strip())
        except ValueError:
            return Verdict.deny(
                InvalidSecurityHeadersError(context={"path": path, "reason": "timestamp"})
            )

        skew = abs(now - timestamp)
        if skew > self.freshness_ms:
            return Verdict.deny(
                RequestExpiredError(context={"path": path, "skew_ms": skew})
            )

        if self.verify_signature:
            expected = compute_signature(
                self.signing_secret, method, path, body, envelope.timestamp.strip()
            )
            presented = envelope.signature.strip().lower()
            if not presented.isascii() or not hmac.compare_digest(
                expected.encode("ascii"), presented.encode("ascii")
            ):
                return Verdict.deny(InvalidSignatureError(context={"path": path}))

        return ALLOW
