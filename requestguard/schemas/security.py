"""
RequestGuard — Pydantic Response Schemas
=========================================

What:  Response models for the security endpoints and the denial body.
Why:   FastAPI generates the OpenAPI contract from these, so clients can see
       the exact shape of a 429 or a CSRF token response.
How:   Denials are rendered by middleware (not by a route), so ErrorResponse
       is referenced in route `responses=` metadata rather than returned.
"""

from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class ErrorResponse(BaseModel):
    """
    What:  Body of every guard denial and every RequestGuardError.
    Who:   Returned by SecurityMiddleware and the global exception handlers.
    """

    model_config = ConfigDict(populate_by_name=True)

    success: bool = Field(default=False, description="Always false for errors")
    error: str = Field(description="Machine-readable error code, e.g. rate_limit_exceeded")
    message: str = Field(description="Human-readable explanation, safe to show users")
    retry_after: Optional[int] = Field(
        default=None,
        alias="retryAfter",
        description="Seconds until the caller may retry (429 responses only)",
    )
    request_id: str = Field(default="", description="Correlation ID for support requests")


class CsrfTokenResponse(BaseModel):
    """
    What:  A freshly issued anti-forgery token.
    Who:   Returned by GET /api/security/csrf-token.
    When:  Client calls it on page load and after any csrf_validation_failed.

    The same token is also sent in the X-CSRF-Token response header.
    """

    success: bool = True
    csrf_token: str = Field(alias="csrfToken", description="64-character hex token")
    expires_in: int = Field(alias="expiresIn", description="Token lifetime in seconds")

    model_config = ConfigDict(populate_by_name=True)


class HealthResponse(BaseModel):
    """
    What:  Service status plus the state store's reachability.
    Who:   Returned by GET /health for load balancer probes.

    A service whose Redis store is down cannot enforce any stateful guard,
    so it reports unhealthy rather than silently running unguarded.
    """

    status: str = Field(description="Overall service status: healthy, unhealthy")
    version: str = Field(description="Application version")
    store: str = Field(description="State store backend and status, e.g. memory:ok")
    guards: Dict[str, bool] = Field(description="Which optional pipeline stages are enabled")
    uptime_seconds: float = Field(description="Seconds since service started")
