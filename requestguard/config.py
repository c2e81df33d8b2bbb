"""
RequestGuard — Application Configuration
=========================================

What:  Centralized configuration for every guard in the request-defense pipeline.
Why:   Type-safe environment variable loading with validation on startup.
       A typo in a window size should fail at boot, not silently disable a guard.
How:   Pydantic Settings reads REQUESTGUARD_* environment variables (or .env),
       validates types/ranges, and provides a singleton `settings` object.
Who:   Imported by the app factory and by `build_pipeline()`.
When:  Loaded once at module import time; validated before app starts.

Units:
    Every duration in this module is in MILLISECONDS. The guards work on
    epoch-millis timestamps, and the client signs requests with epoch-millis,
    so keeping one unit everywhere avoids a whole class of off-by-1000 bugs.
    Only `retryAfter` in responses is expressed in seconds (HTTP convention).
"""

from typing import Any, List, Mapping, Optional, Union

from pydantic import AliasChoices, BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

MINUTE_MS = 60 * 1000
HOUR_MS = 60 * MINUTE_MS


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings have sensible defaults for development.
    Production deployments SHOULD set a signing secret and, when running more
    than one worker, switch the store backend to Redis.

    Attributes are grouped by guard for readability.
    """

    # ── General Rate Limiting ─────────────────────────────────────────────
    # What: Fixed-window limit applied to every non-exempt path
    # Why 100 / 15 min: Comfortable for a browsing user, hostile to scrapers
    rate_limit_window_ms: int = Field(default=15 * MINUTE_MS, ge=1000, le=24 * HOUR_MS)
    rate_limit_max_requests: int = Field(default=100, ge=1, le=100_000)

    # ── Route Group Limits ────────────────────────────────────────────────
    # What: Tighter ceilings for sensitive route groups
    # Why: Login, OTP and payment endpoints are the usual abuse targets
    auth_rate_limit_max_requests: int = Field(default=5, ge=1, le=10_000)
    payment_rate_limit_max_requests: int = Field(default=3, ge=1, le=10_000)
    otp_rate_limit_window_ms: int = Field(default=HOUR_MS, ge=1000, le=24 * HOUR_MS)
    otp_rate_limit_max_requests: int = Field(default=5, ge=1, le=10_000)
    upload_rate_limit_window_ms: int = Field(default=HOUR_MS, ge=1000, le=24 * HOUR_MS)
    upload_rate_limit_max_requests: int = Field(default=30, ge=1, le=10_000)
    booking_rate_limit_window_ms: int = Field(default=HOUR_MS, ge=1000, le=24 * HOUR_MS)
    booking_rate_limit_max_requests: int = Field(default=30, ge=1, le=10_000)

    # ── Brute-Force Lockout ───────────────────────────────────────────────
    # What: Consecutive failed responses before an identity is locked out
    # Trade-off: Lower = safer against guessing, more friction for typos
    max_auth_attempts: int = Field(default=5, ge=1, le=100)
    brute_force_window_ms: int = Field(default=15 * MINUTE_MS, ge=1000, le=24 * HOUR_MS)

    # ── Replay Guard ──────────────────────────────────────────────────────
    # What: Maximum clock distance between client timestamp and server time
    replay_protection_enabled: bool = Field(default=True)
    freshness_window_ms: int = Field(default=5 * MINUTE_MS, ge=1000, le=HOUR_MS)

    # What: Shared secret for HMAC-SHA256 request signatures
    # When empty: signatures are only checked for presence (lenient mode)
    signing_secret: str = Field(default="")
    verify_signatures: bool = Field(default=False)

    # ── CSRF ──────────────────────────────────────────────────────────────
    csrf_protection_enabled: bool = Field(default=True)
    csrf_ttl_ms: int = Field(default=HOUR_MS, ge=1000, le=24 * HOUR_MS)

    # ── Request Size ──────────────────────────────────────────────────────
    # What: Largest body the pipeline will buffer and scan; bigger gets 413
    max_body_bytes: int = Field(default=10 * 1024 * 1024, ge=1024, le=1024 * 1024 * 1024)

    # ── Identity ──────────────────────────────────────────────────────────
    # What: Use the first X-Forwarded-For hop as the client IP
    # Why off by default: The header is client-controlled unless a proxy rewrites it
    trust_proxy: bool = Field(default=False)

    # ── State Store ───────────────────────────────────────────────────────
    # What: Where guard records live
    # memory: single process; redis: shared across workers/instances
    store_backend: str = Field(default="memory")
    redis_url: str = Field(default="")
    store_capacity: int = Field(default=100_000, ge=100, le=10_000_000)

    @field_validator("store_backend")
    @classmethod
    def validate_store_backend(cls, v: str) -> str:
        """Ensures the store backend is one we know how to build."""
        valid = {"memory", "redis"}
        lower = v.lower()
        if lower not in valid:
            raise ValueError(f"Invalid store_backend '{v}'. Must be one of: {valid}")
        return lower

    # ── CORS ──────────────────────────────────────────────────────────────
    cors_origins: str = Field(default="http://localhost:3000,http://localhost:5173")

    @property
    def cors_origins_list(self) -> List[str]:
        """Splits comma-separated CORS origins into a list."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    # ── Server ────────────────────────────────────────────────────────────
    backend_host: str = Field(default="0.0.0.0")
    backend_port: int = Field(default=8000, ge=1024, le=65535)
    log_level: str = Field(default="INFO")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensures log level is a valid Python logging level name."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper = v.upper()
        if upper not in valid_levels:
            raise ValueError(f"Invalid log_level '{v}'. Must be one of: {valid_levels}")
        return upper

    model_config = SettingsConfigDict(
        env_prefix="REQUESTGUARD_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    def validate_required_for_production(self) -> None:
        """
        What:  Validates that combinations of settings make sense.
        When:  Called during app startup (lifespan).
        Why:   Hardened signature checking without a secret would reject every
               mutating request; Redis without a URL cannot connect.
        """
        errors = []
        if self.verify_signatures and not self.signing_secret:
            errors.append(
                "REQUESTGUARD_VERIFY_SIGNATURES is enabled but "
                "REQUESTGUARD_SIGNING_SECRET is empty."
            )
        if self.store_backend == "redis" and not self.redis_url:
            errors.append(
                "REQUESTGUARD_STORE_BACKEND=redis requires REQUESTGUARD_REDIS_URL."
            )
        if errors:
            raise ValueError(
                "Configuration validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
            )


class GuardOptions(BaseModel):
    """
    Per-instance guard options.

    What:  The option bag a single guard is constructed with.
    Why:   Lets callers build one-off guards (e.g. a stricter limiter for a
           single router) with the same camelCase keys the frontend config uses.
    """

    window_ms: int = Field(
        default=15 * MINUTE_MS, ge=1,
        validation_alias=AliasChoices("windowMs", "window_ms"),
    )
    max_requests: int = Field(
        default=100, ge=1,
        validation_alias=AliasChoices("maxRequests", "max_requests"),
    )
    max_auth_attempts: int = Field(
        default=5, ge=1,
        validation_alias=AliasChoices("maxAuthAttempts", "max_auth_attempts"),
    )
    freshness_window_ms: int = Field(
        default=5 * MINUTE_MS, ge=1,
        validation_alias=AliasChoices("freshnessWindowMs", "freshness_window_ms"),
    )
    csrf_ttl_ms: int = Field(
        default=HOUR_MS, ge=1,
        validation_alias=AliasChoices("csrfTtlMs", "csrf_ttl_ms"),
    )
    signing_secret: Optional[str] = Field(default=None)

    @classmethod
    def coerce(cls, options: Union["GuardOptions", Mapping[str, Any], None]) -> "GuardOptions":
        """Accept a GuardOptions, a plain mapping (camelCase or snake_case), or None."""
        if options is None:
            return cls()
        if isinstance(options, cls):
            return options
        return cls.model_validate(dict(options))


# Singleton instance, imported by the app factory
settings = Settings()
