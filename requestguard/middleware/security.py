"""
RequestGuard — Security Pipeline Middleware
============================================

What:  Runs the SecurityPipeline in front of every route.
Why:   Guards must see every request before business logic does, and the
       brute-force tracker must see every response status after it.
How:   1. Capture `now` and the client identity once
       2. Refuse bodies over max_body_bytes (413), then read and parse the
          body (JSON or urlencoded form) for scanning
       3. pipeline.evaluate() → deny: JSON error response, handler never runs
       4. allow: call the handler, then pipeline.record_outcome(status)
Who:   Applied to every request via Starlette middleware.
When:  Right after RequestIDMiddleware, so denials carry a request ID.

Store access:
    Guards call the state store synchronously (a Redis round trip for
    RedisStore), so evaluate() and record_outcome() run in the threadpool.

Body handling:
    Starlette caches a body read inside BaseHTTPMiddleware and replays it to
    the route, so reading it here does not starve the handler.
    Content types scanned: application/json (and +json), form-urlencoded,
    and bodies with no content type at all (parsed as JSON if possible).
    Multipart uploads are not scanned; file bytes are not text fields.
    Unparseable bodies are treated as "no fields"; never a crash.
    Size: a declared Content-Length over the limit is refused before any
    byte is read; a chunked body is measured once buffered.

Response on deny:
    {
        "success": false,
        "error": "csrf_validation_failed",
        "message": "Invalid security token. Please refresh and try again.",
        "request_id": "a1b2c3d4"
    }
    429 denials add "retryAfter" and a Retry-After header.
"""

import json
import logging
from typing import Any, Dict, Optional
from urllib.parse import parse_qs

from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from requestguard.audit import log_denial
from requestguard.exceptions import RequestGuardError, RequestTooLargeError
from requestguard.guards.base import GuardContext
from requestguard.identity import UserIdResolver, extract_identity, now_ms
from requestguard.middleware.request_id import request_id_var
from requestguard.pipeline import SecurityPipeline

logger = logging.getLogger(__name__)

_BODYLESS_METHODS = {"GET", "HEAD", "OPTIONS"}

# Checked here, before the body is buffered, rather than as a pipeline stage
STAGE_BODY_SIZE = "body_size"


def collapse_multi(pairs) -> Dict[str, Any]:
    """[(k, v), (k, v2), (j, w)] → {k: [v, v2], j: w}"""
    collapsed: Dict[str, Any] = {}
    for key, value in pairs:
        if key in collapsed:
            existing = collapsed[key]
            if isinstance(existing, list):
                existing.append(value)
            else:
                collapsed[key] = [existing, value]
        else:
            collapsed[key] = value
    return collapsed


def parse_body(raw: bytes, content_type: str) -> Optional[Any]:
    """Parse a request body into fields for scanning. Never raises."""
    if not raw:
        return None
    media_type = content_type.split(";")[0].strip().lower()

    if not media_type or media_type == "application/json" or media_type.endswith("+json"):
        try:
            return json.loads(raw)
        except (ValueError, RecursionError):
            return None

    if media_type == "application/x-www-form-urlencoded":
        parsed = parse_qs(raw.decode("utf-8", errors="replace"), keep_blank_values=True)
        return {k: v[0] if len(v) == 1 else v for k, v in parsed.items()}

    return None


def error_response(error: RequestGuardError) -> JSONResponse:
    content = error.to_payload()
    content["request_id"] = request_id_var.get("")
    return JSONResponse(
        status_code=error.status_code,
        content=content,
        headers=error.headers(),
    )


class SecurityMiddleware(BaseHTTPMiddleware):
    """
    Starlette adapter for SecurityPipeline.

    Args:
        pipeline:         Built once at startup (see build_pipeline)
        trust_proxy:      Take the client IP from X-Forwarded-For
        user_id_resolver: Optional callable returning the authenticated user id
        max_body_bytes:   Body size ceiling; None disables the check
    """

    def __init__(
        self,
        app,
        pipeline: SecurityPipeline,
        trust_proxy: bool = False,
        user_id_resolver: Optional[UserIdResolver] = None,
        max_body_bytes: Optional[int] = None,
    ):
        super().__init__(app)
        self.pipeline = pipeline
        self.trust_proxy = trust_proxy
        self.user_id_resolver = user_id_resolver
        self.max_body_bytes = max_body_bytes

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        identity = extract_identity(request, self.trust_proxy, self.user_id_resolver)
        request.state.client_identity = identity

        path = request.url.path
        if self.pipeline.is_exempt(path):
            return await call_next(request)

        try:
            context = await self._build_context(request, identity)
        except RequestTooLargeError as e:
            denied = GuardContext(
                identity=identity, method=request.method.upper(), path=path, now=now_ms()
            )
            log_denial(denied, STAGE_BODY_SIZE, e)
            return error_response(e)

        try:
            decision = await run_in_threadpool(self.pipeline.evaluate, context)
        except RequestGuardError as e:
            # Store failures: refuse rather than let the request through unguarded
            logger.error("Security pipeline failed: %s | Context: %s", e.message, e.context)
            return error_response(e)

        if not decision.allowed:
            return error_response(decision.error)

        request.state.security_decision = decision
        response = await call_next(request)

        try:
            await run_in_threadpool(
                self.pipeline.record_outcome, context, decision, response.status_code
            )
        except RequestGuardError as e:
            # The handler already ran; its response stands
            logger.error(
                "Could not record outcome for %s: %s", identity.subject_key, e.message,
                exc_info=True,
            )
        return response

    async def _build_context(self, request: Request, identity) -> GuardContext:
        raw_body = b""
        body = None
        if request.method.upper() not in _BODYLESS_METHODS:
            self._check_declared_length(request)
            raw_body = await request.body()
            if self.max_body_bytes is not None and len(raw_body) > self.max_body_bytes:
                raise RequestTooLargeError(
                    context={"received": len(raw_body), "limit": self.max_body_bytes}
                )
            body = parse_body(raw_body, request.headers.get("content-type", ""))

        raw_path = request.scope.get("raw_path") or b""
        return GuardContext(
            identity=identity,
            method=request.method.upper(),
            path=request.url.path,
            now=now_ms(),
            headers={k.lower(): v for k, v in request.headers.items()},
            query=collapse_multi(request.query_params.multi_items()),
            body=body,
            raw_body=raw_body,
            raw_path=raw_path.decode("latin-1"),
        )

    def _check_declared_length(self, request: Request) -> None:
        if self.max_body_bytes is None:
            return
        try:
            declared = int(request.headers.get("content-length", ""))
        except ValueError:
            return
        if declared > self.max_body_bytes:
            raise RequestTooLargeError(
                context={"declared": declared, "limit": self.max_body_bytes}
            )
