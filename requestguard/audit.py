"""
RequestGuard — Security Audit Log
==================================

What:  One structured log line per denied request.
Why:   Denials are the signal security review cares about: who was refused,
       by which guard, on which route, and when.
How:   Standard logging on the `requestguard.audit` logger with the fields in
       `extra`, so a JSON formatter or log shipper can index them.

Severity:
    WARNING: pattern attacks, CSRF failures, replay/signature failures.
             These mean someone sent something they should not have.
    INFO:    rate limit and lockout denials. Expected under normal abusive
             traffic; logging them at WARNING would drown the real alerts.

What we log vs what we DON'T log:
    ✅ Log: stage, error code, matched rule/category, IP, user id, method, path, time
    ❌ Don't log: request body, header values, tokens, signatures
"""

import logging
from datetime import datetime, timezone

from requestguard.exceptions import LockedOutError, RateLimitExceededError, RequestGuardError
from requestguard.guards.base import GuardContext
from requestguard.middleware.request_id import request_id_var

logger = logging.getLogger("requestguard.audit")

_LOW_SEVERITY = (RateLimitExceededError, LockedOutError)


def log_denial(context: GuardContext, stage: str, error: RequestGuardError) -> None:
    level = logging.INFO if isinstance(error, _LOW_SEVERITY) else logging.WARNING
    rid = request_id_var.get("")
    timestamp = datetime.fromtimestamp(context.now / 1000, tz=timezone.utc).isoformat()
    detail = ",".join(
        f"{k}={v}" for k, v in sorted(error.context.items())
        if k in ("category", "rule", "location", "reason", "limiter", "tracker")
    )

    logger.log(
        level,
        "Denied %s %s at %s stage: %s [%s] from %s %s",
        context.method,
        context.path,
        stage,
        error.error,
        rid,
        context.identity.ip,
        detail,
        extra={
            "request_id": rid,
            "stage": stage,
            "error_code": error.error,
            "status": error.status_code,
            "client_ip": context.identity.ip,
            "user_id": context.identity.user_id,
            "method": context.method,
            "path": context.path,
            "denied_at": timestamp,
            "details": dict(error.context),
        },
    )
