"""
RequestGuard — Client Identity & Clock
=======================================

What:  Derives the key under which stateful guards track a caller.
Why:   Every guard needs the same answer to "who is this?" for a request;
       computing it once keeps the rate limiter, lockout tracker and CSRF
       store consistent with each other.
How:   IP from the ASGI client tuple (or the first X-Forwarded-For hop when
       the deployment sits behind a trusted proxy), plus the authenticated
       user id when an upstream auth layer put one on `request.state`.

Key selection:
    rate_key    = ip                      (limits raw traffic per address)
    subject_key = user_id if set else ip  (lockout and CSRF follow the account)

Caveat:
    IP is best-effort and spoofable. It is a throttling key, not an
    authentication boundary.
"""

import time
from typing import Callable, Optional

from pydantic import BaseModel
from starlette.requests import Request

UNKNOWN_IP = "unknown"

UserIdResolver = Callable[[Request], Optional[str]]


class ClientIdentity(BaseModel):
    """Caller identity for one request. Computed fresh, never persisted."""

    ip: str = UNKNOWN_IP
    user_id: Optional[str] = None

    model_config = {"frozen": True}

    @property
    def rate_key(self) -> str:
        return self.ip

    @property
    def subject_key(self) -> str:
        if self.user_id:
            return f"user:{self.user_id}"
        return f"ip:{self.ip}"


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def client_ip(request: Request, trust_proxy: bool = False) -> str:
    """
    Best-effort client address.

    Why getattr: request.client is None under some test transports.
    """
    if trust_proxy:
        forwarded = request.headers.get("x-forwarded-for", "")
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
    if request.client and getattr(request.client, "host", None):
        return request.client.host
    return UNKNOWN_IP


def extract_identity(
    request: Request,
    trust_proxy: bool = False,
    user_id_resolver: Optional[UserIdResolver] = None,
) -> ClientIdentity:
    """
    Build a ClientIdentity from a request. Never raises.

    Args:
        trust_proxy:      Honour X-Forwarded-For (only behind a proxy that rewrites it).
        user_id_resolver: Optional callable returning the authenticated user id;
                          falls back to `request.state.user_id`.
    """
    user_id = None
    if user_id_resolver is not None:
        user_id = user_id_resolver(request)
    if user_id is None:
        user_id = getattr(request.state, "user_id", None)
    return ClientIdentity(
        ip=client_ip(request, trust_proxy),
        user_id=str(user_id) if user_id else None,
    )
