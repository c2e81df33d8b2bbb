"""
RequestGuard — Denial & Error Hierarchy
========================================

What:  Defines one exception class per reason a request can be refused.
Why:   Each denial kind maps to exactly one HTTP status and one machine-readable
       error code. Keeping that mapping on the class means guards, middleware,
       and route handlers all render the same JSON for the same problem.
How:   Each class carries a message (safe for the client) and a context dict
       (logged server-side, never returned). Guards do NOT raise these; they
       wrap an instance in a Verdict. Route handlers MAY raise them and the
       global handlers in main.py render them.
Who:   Created by guards and the pipeline; rendered by SecurityMiddleware.

Exception Hierarchy:
    RequestGuardError (base)                 → 500
    ├── RateLimitExceededError               → 429 (retry after N seconds)
    ├── LockedOutError                       → 429 (retry after N seconds)
    ├── MissingSecurityHeadersError          → 401
    ├── InvalidSecurityHeadersError          → 401
    ├── RequestExpiredError                  → 401
    ├── InvalidSignatureError                → 401
    ├── PatternAttackDetectedError           → 400 (generic message)
    ├── CSRFValidationError                  → 401
    ├── RequestTooLargeError                 → 413
    └── StoreError                           → 500

Wire format (every denial):
    {
        "success": false,
        "error": "rate_limit_exceeded",
        "message": "Too many requests. Please try again later.",
        "retryAfter": 10
    }
"""

from typing import Any, Dict, Optional


class RequestGuardError(Exception):
    """
    Base exception for all request-defense errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info (logged but NOT returned to client)
    """

    status_code = 500
    error = "server_error"

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)

    @property
    def retry_after(self) -> Optional[int]:
        return None

    def to_payload(self) -> Dict[str, Any]:
        """
        Render the client-facing JSON body.

        Why not include context: context may hold the matched rule, the
        offending field, or the client IP; none of that belongs on the wire.
        """
        payload: Dict[str, Any] = {
            "success": False,
            "error": self.error,
            "message": self.message,
        }
        if self.retry_after is not None:
            payload["retryAfter"] = self.retry_after
        return payload

    def headers(self) -> Dict[str, str]:
        if self.retry_after is not None:
            return {"Retry-After": str(self.retry_after)}
        return {}


class _RetryableDenial(RequestGuardError):
    """Shared behaviour for denials that tell the client when to come back."""

    status_code = 429

    def __init__(
        self,
        message: str,
        retry_after: int,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["retry_after"] = retry_after
        super().__init__(message=message, context=ctx)
        self._retry_after = retry_after

    @property
    def retry_after(self) -> Optional[int]:
        return self._retry_after


class RateLimitExceededError(_RetryableDenial):
    """
    Raised when an identity exceeds its fixed-window request ceiling.

    HTTP:     429 Too Many Requests
    Recovery: Caller may retry after `retry_after` seconds; never fatal.
    """

    error = "rate_limit_exceeded"

    def __init__(
        self,
        retry_after: int = 60,
        message: str = "Too many requests. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, retry_after=retry_after, context=context)


class LockedOutError(_RetryableDenial):
    """
    Raised when an identity accumulated too many consecutive failures.

    HTTP:     429 Too Many Requests
    Recovery: Locked until the tracker's reset time, regardless of whether the
              next attempt would have succeeded.
    """

    error = "locked_out"

    def __init__(
        self,
        retry_after: int = 900,
        context: Optional[Dict[str, Any]] = None,
    ):
        minutes = max(1, -(-retry_after // 60))
        unit = "minute" if minutes == 1 else "minutes"
        message = f"Account temporarily locked. Try again in {minutes} {unit}."
        super().__init__(message=message, retry_after=retry_after, context=context)


class MissingSecurityHeadersError(RequestGuardError):
    """
    Raised when a mutating request lacks the signature/timestamp envelope.

    HTTP:     401 Unauthorized
    Recovery: Client must resend with X-Request-Signature and X-Request-Timestamp.
    """

    status_code = 401
    error = "missing_security_headers"

    def __init__(self, context: Optional[Dict[str, Any]] = None):
        super().__init__(message="Missing security headers", context=context)


class InvalidSecurityHeadersError(RequestGuardError):
    """
    Raised when the envelope is present but malformed (non-numeric timestamp).

    HTTP:     401 Unauthorized
    """

    status_code = 401
    error = "invalid_security_headers"

    def __init__(self, context: Optional[Dict[str, Any]] = None):
        super().__init__(message="Invalid security headers", context=context)


class RequestExpiredError(RequestGuardError):
    """
    Raised when the envelope timestamp is outside the freshness window.

    HTTP:     401 Unauthorized
    Recovery: Client must re-sign with a fresh timestamp; a replayed request
              can never become valid again.
    """

    status_code = 401
    error = "request_expired"

    def __init__(self, context: Optional[Dict[str, Any]] = None):
        super().__init__(message="Request expired", context=context)


class InvalidSignatureError(RequestGuardError):
    """
    Raised in hardened mode when the HMAC does not match the request.

    HTTP:     401 Unauthorized
    """

    status_code = 401
    error = "invalid_signature"

    def __init__(self, context: Optional[Dict[str, Any]] = None):
        super().__init__(message="Invalid request signature", context=context)


class PatternAttackDetectedError(RequestGuardError):
    """
    Raised when query, body or path matches a known attack signature.

    HTTP:     400 Bad Request
    Security Note:
        The message is deliberately generic. Telling the client WHICH rule
        matched lets an attacker tune payloads until they slip through.
        The rule name and category go to the audit log via `context`.
    """

    status_code = 400
    error = "invalid_request_data"

    def __init__(self, context: Optional[Dict[str, Any]] = None):
        super().__init__(message="Invalid request data", context=context)


class CSRFValidationError(RequestGuardError):
    """
    Raised when a state-changing request has no valid anti-forgery token.

    HTTP:     401 Unauthorized
    Recovery: Client must fetch a new token from /api/security/csrf-token.
    """

    status_code = 401
    error = "csrf_validation_failed"

    def __init__(self, context: Optional[Dict[str, Any]] = None):
        super().__init__(
            message="Invalid security token. Please refresh and try again.",
            context=context,
        )


class RequestTooLargeError(RequestGuardError):
    """
    Raised when a request body is larger than the configured ceiling.

    HTTP:     413 Payload Too Large
    When:     Declared Content-Length over the limit (body never read), or
              the buffered body turns out larger than it.
    """

    status_code = 413
    error = "request_too_large"

    def __init__(self, context: Optional[Dict[str, Any]] = None):
        super().__init__(message="Request too large", context=context)


class StoreError(RequestGuardError):
    """
    Raised when the guard state store cannot be read or written.

    HTTP:     500 Internal Server Error
    When:     Redis unreachable after retries, corrupt record payload.
    """

    def __init__(
        self,
        message: str = "Security state store is unavailable",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)
