"""
RequestGuard — Security Route Handlers
=======================================

What:  GET /api/security/csrf-token issues an anti-forgery token.
Why:   Browsers must fetch a token before any POST/PUT/PATCH/DELETE; the
       pipeline rejects state-changing requests that do not echo it back.
How:   Delegates to the pipeline's CSRFProtector under the caller's identity,
       returns the token in the body and in the X-CSRF-Token header.

Caching:
    Tokens are per-identity secrets: Cache-Control no-store, always.

Threading:
    issue() is a blocking store round trip, so the handler is a plain `def`
    and FastAPI runs it in the threadpool.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from requestguard.identity import extract_identity, now_ms
from requestguard.pipeline import SecurityPipeline, get_pipeline
from requestguard.schemas.security import CsrfTokenResponse, ErrorResponse

logger = logging.getLogger(__name__)

# ── Router Configuration ──────────────────────────────────────────────────
router = APIRouter(prefix="/api/security", tags=["Security"])


@router.get(
    "/csrf-token",
    response_model=CsrfTokenResponse,
    response_model_by_alias=True,
    responses={
        200: {"description": "A fresh CSRF token", "model": CsrfTokenResponse},
        404: {"description": "CSRF protection is disabled"},
        429: {"description": "Rate limit exceeded", "model": ErrorResponse},
    },
    summary="Issue a CSRF token",
    description=(
        "Issues a new anti-forgery token bound to the caller (user id when "
        "authenticated, otherwise client IP). Any previous token for the caller "
        "is replaced. Send it back as the X-CSRF-Token header or a `_csrf` body "
        "field on state-changing requests."
    ),
)
def issue_csrf_token(
    request: Request,
    response: Response,
    pipeline: SecurityPipeline = Depends(get_pipeline),
) -> CsrfTokenResponse:
    if pipeline.csrf is None:
        raise HTTPException(status_code=404, detail="CSRF protection is disabled")

    # Set by SecurityMiddleware; recomputed if the app runs without it
    identity = getattr(request.state, "client_identity", None) or extract_identity(request)
    token = pipeline.csrf.issue(identity, now_ms())
    logger.debug("Issued CSRF token for %s", identity.subject_key)

    response.headers["X-CSRF-Token"] = token
    response.headers["Cache-Control"] = "no-store"
    return CsrfTokenResponse(
        csrf_token=token,
        expires_in=pipeline.csrf.ttl_ms // 1000,
    )
