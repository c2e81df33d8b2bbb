"""
RequestGuard — Guard Primitives
================================

What:  The two values every guard speaks: GuardContext in, Verdict out.
Why:   Guards never see Starlette objects. The middleware parses the request
       once into a GuardContext, so each guard can be unit-tested by building
       a context by hand with an explicit `now`.
"""

import math
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from requestguard.exceptions import RequestGuardError
from requestguard.identity import ClientIdentity

SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})


@dataclass(frozen=True)
class Verdict:
    """
    Outcome of one guard evaluation.

    A Verdict with no error is an Allow; otherwise the error says why the
    request was denied and how to render the response.
    """

    error: Optional[RequestGuardError] = None

    @property
    def allowed(self) -> bool:
        return self.error is None

    @classmethod
    def deny(cls, error: RequestGuardError) -> "Verdict":
        return cls(error=error)


ALLOW = Verdict()


@dataclass
class GuardContext:
    """
    Everything a guard may look at for one request.

    headers: lower-cased header names
    query:   parsed query string (lists collapsed when single-valued)
    body:    parsed JSON / form body, or None when not parseable
    raw_path: path as sent, before percent-decoding
    now:     epoch milliseconds, captured once per request
    """

    identity: ClientIdentity
    method: str
    path: str
    now: int
    headers: Mapping[str, str] = field(default_factory=dict)
    query: Dict[str, Any] = field(default_factory=dict)
    body: Any = None
    raw_body: bytes = b""
    raw_path: str = ""

    @property
    def is_safe_method(self) -> bool:
        return self.method.upper() in SAFE_METHODS


def seconds_until(remaining_ms: int) -> int:
    """Milliseconds remaining → whole seconds for Retry-After (at least 1)."""
    return max(1, math.ceil(remaining_ms / 1000))
