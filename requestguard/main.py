"""
RequestGuard — FastAPI Application Factory
===========================================

What:  Creates the reference FastAPI application with the security pipeline.
Why:   Centralizes store construction, pipeline wiring, middleware order,
       exception handlers and route mounting in one place.
How:   Factory pattern: create_app() returns a configured FastAPI instance.
Who:   Called by uvicorn to start the server (uvicorn requestguard.main:app).
When:  Once at server startup; the returned app handles all subsequent requests.

Application Architecture:
    ┌─────────────────────────────────────────────────────────┐
    │                      FastAPI App                        │
    │                                                         │
    │  Middleware Chain (outermost first):                    │
    │  CORS → Request ID → Logging → Security Headers         │
    │       → Security Pipeline                               │
    │                                                         │
    │  Security Pipeline stages:                              │
    │  rate_limit → brute_force → replay → pattern → csrf     │
    │                                                         │
    │  Routes:                                                │
    │  GET /api/security/csrf-token     GET /health           │
    └─────────────────────────────────────────────────────────┘

Lifecycle:
    create_app():
    1. Build the state store (memory or Redis) and the pipeline
    2. Attach the pipeline to app.state and to SecurityMiddleware
    Startup:
    1. Initialize structured logging
    2. Validate configuration (logged, not fatal)
    Shutdown:
    1. Close the state store's connections
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from requestguard import __version__
from requestguard.config import Settings, settings
from requestguard.exceptions import RequestGuardError, StoreError
from requestguard.middleware.logging import RequestLoggingMiddleware
from requestguard.middleware.request_id import RequestIDMiddleware, request_id_var
from requestguard.middleware.security import SecurityMiddleware, error_response
from requestguard.middleware.security_headers import SecurityHeadersMiddleware
from requestguard.pipeline import SecurityPipeline, build_pipeline
from requestguard.routes import health, security
from requestguard.stores import build_store

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Structured Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging(level: Optional[str] = None) -> None:
    """
    Configure logging for the entire application.

    Format: %(asctime)s [%(levelname)s] %(name)s: %(message)s

    Loggers worth routing separately:
        requestguard.access  one line per request
        requestguard.audit   one line per denial (fields in `extra`)
    """
    logging.basicConfig(
        level=getattr(logging, level or settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[
            logging.StreamHandler(sys.stdout),  # Docker captures stdout
        ],
        force=True,
    )

    # Reduce noise from third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan (Startup & Shutdown)
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Startup: logging, configuration validation, startup banner.
    Shutdown: close the state store.

    The store and pipeline are NOT built here: the middleware stack needs the
    pipeline when the app is assembled, which happens before lifespan runs.
    """
    # ── Startup ───────────────────────────────────────────────────────────
    config: Settings = app.state.settings
    setup_logging(config.log_level)
    logger.info("=" * 60)
    logger.info("RequestGuard %s starting up...", __version__)

    try:
        config.validate_required_for_production()
    except ValueError as e:
        logger.error("Configuration error: %s", str(e))
        logger.error("Fix the configuration and restart the server.")

    pipeline: SecurityPipeline = app.state.pipeline
    logger.info(
        "State store: %s | trust_proxy=%s",
        pipeline.store.backend if pipeline.store is not None else "none",
        config.trust_proxy,
    )
    logger.info("Server ready at http://%s:%d", config.backend_host, config.backend_port)
    logger.info("=" * 60)

    yield

    # ── Shutdown ──────────────────────────────────────────────────────────
    logger.info("RequestGuard shutting down...")
    if pipeline.store is not None:
        pipeline.store.close()
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def register_exception_handlers(app: FastAPI) -> None:
    """
    Render exceptions raised by route code in the same shape as guard denials.

    Handler hierarchy:
        StoreError              → 500, generic message, details logged
        RequestGuardError       → its own status / error code / Retry-After
        Exception (fallback)    → 500, stack trace logged server-side only
    """

    @app.exception_handler(StoreError)
    async def handle_store_error(request: Request, exc: StoreError):
        rid = request_id_var.get("")
        logger.error("[%s] Store error: %s | Context: %s", rid, exc.message, exc.context)
        return error_response(exc)

    @app.exception_handler(RequestGuardError)
    async def handle_guard_error(request: Request, exc: RequestGuardError):
        rid = request_id_var.get("")
        logger.warning("[%s] %s raised in route: %s", rid, type(exc).__name__, exc.message)
        return error_response(exc)

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        rid = request_id_var.get("")
        logger.error("[%s] Unexpected error: %s", rid, str(exc), exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "error": "internal_server_error",
                "message": "An unexpected error occurred. Please try again or contact support.",
                "request_id": rid,
            },
        )


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app(
    config: Optional[Settings] = None,
    pipeline: Optional[SecurityPipeline] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        config:   Settings to use; defaults to the environment-loaded singleton
        pipeline: Pre-built pipeline (tests inject one with small ceilings);
                  defaults to build_pipeline(config, build_store(config))
    """
    config = config or settings
    if pipeline is None:
        pipeline = build_pipeline(config, build_store(config))

    app = FastAPI(
        title="RequestGuard API",
        description=(
            "Composable request-defense pipeline: rate limiting, brute-force "
            "lockout, replay protection, attack-pattern detection and CSRF."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.settings = config
    app.state.pipeline = pipeline

    # ── Register Middleware ───────────────────────────────────────────────
    # Middleware executes in REVERSE order of addition: the last added is
    # outermost. Security pipeline is added first so it sits innermost.
    app.add_middleware(
        SecurityMiddleware,
        pipeline=pipeline,
        trust_proxy=config.trust_proxy,
        max_body_bytes=config.max_body_bytes,
    )
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)

    # CORS outermost so preflights never reach the guards
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[
            "X-Request-ID",
            "X-CSRF-Token",
            "Retry-After",
        ],
    )

    # ── Register Exception Handlers ───────────────────────────────────────
    register_exception_handlers(app)

    # ── Register Routes ───────────────────────────────────────────────────
    app.include_router(security.router)
    app.include_router(health.router)

    return app


# ── Application Instance ─────────────────────────────────────────────────
# uvicorn expects `requestguard.main:app` to be importable
app = create_app()
