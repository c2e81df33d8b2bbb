"""
RequestGuard — Access Log Middleware
====================================

What:  One access log line per HTTP request, with status and duration.
Why:   The audit log records WHY a request was denied; the access log shows
       the overall traffic shape around it (latency, 4xx/5xx ratios).
How:   Times the downstream call, then logs on `requestguard.access` with the
       level chosen from the status code.

Caller identity:
    Taken from `request.state.client_identity`, which SecurityMiddleware sets
    further down the stack. That is the same identity the guards and the
    audit log use, so both logs name the same caller when `trust_proxy` is on.
    Requests that never reach SecurityMiddleware fall back to the socket peer.

Log Fields (in `extra`):
    request_id, method, path, status, duration_ms, client_ip, user_id

What we log vs what we DON'T log (privacy):
    ✅ Log: method, path, status, duration, IP, user id, request ID
    ❌ Don't log: request body, CSRF tokens, signatures, auth headers
"""

import logging
import time
from typing import Optional, Tuple

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from requestguard.identity import UNKNOWN_IP
from requestguard.middleware.request_id import request_id_var

logger = logging.getLogger("requestguard.access")

# Probed every few seconds by orchestrators
_QUIET_PATHS = {"/health"}


def _level_for(status: int) -> int:
    if status >= 500:
        return logging.ERROR
    if status >= 400:
        # every guard denial lands here
        return logging.WARNING
    return logging.INFO


def _caller(request: Request) -> Tuple[str, Optional[str]]:
    identity = getattr(request.state, "client_identity", None)
    if identity is not None:
        return identity.ip, identity.user_id
    return (request.client.host if request.client else UNKNOWN_IP), None


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs method, path, status, duration and caller for each request."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if request.url.path in _QUIET_PATHS:
            return await call_next(request)

        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = round((time.perf_counter() - started) * 1000, 2)

        client_ip, user_id = _caller(request)
        fields = {
            "request_id": request_id_var.get(""),
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "duration_ms": elapsed_ms,
            "client_ip": client_ip,
            "user_id": user_id,
        }
        logger.log(
            _level_for(response.status_code),
            "%(method)s %(path)s %(status)d %(duration_ms).1fms [%(request_id)s] from %(client_ip)s",
            fields,
            extra=fields,
        )
        return response
