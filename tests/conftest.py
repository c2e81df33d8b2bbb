"""
RequestGuard — Test Configuration (conftest.py)
================================================

What:  Shared pytest fixtures for the entire test suite.
Why:   Guards are tested with an explicit `now`, so fixtures hand out fresh
       stores and identities instead of patching the clock.
How:   pytest auto-discovers conftest.py and makes fixtures available to all tests.

Fixture Hierarchy (all function-scoped):
    ├── memory_store:  Fresh bounded MemoryStore
    ├── identity:      ClientIdentity for 1.2.3.4, anonymous
    ├── make_context:  Factory for GuardContext with sensible defaults
    ├── test_config:   Settings with small ceilings for HTTP tests
    └── test_client:   HTTPX AsyncClient over the full middleware stack,
                       with a fake /api/auth/login route
"""

import os
from urllib.parse import parse_qs

# Override settings for testing BEFORE any requestguard imports
os.environ["REQUESTGUARD_LOG_LEVEL"] = "WARNING"
os.environ["REQUESTGUARD_STORE_BACKEND"] = "memory"

import pytest
import pytest_asyncio
from fastapi import Request
from fastapi.responses import JSONResponse
from httpx import ASGITransport, AsyncClient

from requestguard.config import Settings
from requestguard.guards.base import GuardContext
from requestguard.identity import ClientIdentity
from requestguard.stores.memory import MemoryStore

# test_middleware.py signs requests with the same values
TEST_SECRET = "test-signing-secret"
CORRECT_PASSWORD = "correct-horse"


# ══════════════════════════════════════════════════════════════════════════
# Guard-level Fixtures
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def memory_store():
    """A fresh store per test; no state leaks between tests."""
    return MemoryStore(capacity=1000)


@pytest.fixture
def identity():
    return ClientIdentity(ip="1.2.3.4")


@pytest.fixture
def make_context(identity):
    """
    Factory for GuardContext.

    Usage:
        ctx = make_context("POST", "/api/bookings", now=1000, body={"name": "Alice"})
    """

    def _make(method="GET", path="/api/rooms", now=0, **kwargs):
        kwargs.setdefault("identity", identity)
        return GuardContext(method=method, path=path, now=now, **kwargs)

    return _make


# ══════════════════════════════════════════════════════════════════════════
# HTTP Fixtures
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def test_config():
    """
    Settings with ceilings small enough to hit in a test.

    Replay protection is on in hardened mode; requests are signed with
    TEST_SECRET via `sign_request`.
    """
    return Settings(
        rate_limit_max_requests=50,
        auth_rate_limit_max_requests=20,
        max_auth_attempts=3,
        replay_protection_enabled=True,
        verify_signatures=True,
        signing_secret=TEST_SECRET,
        csrf_protection_enabled=True,
        store_backend="memory",
        store_capacity=1000,
    )


@pytest.fixture
def app_factory(test_config):
    """Builds an app over the full middleware stack plus a fake login route."""
    from requestguard.main import create_app
    from requestguard.pipeline import build_pipeline

    def _build(config=None):
        config = config or test_config
        app = create_app(config, build_pipeline(config, MemoryStore(capacity=1000)))

        @app.post("/api/auth/login")
        async def fake_login(request: Request):
            payload = await request.json()
            if payload.get("password") != CORRECT_PASSWORD:
                return JSONResponse(status_code=401, content={"success": False})
            return {"success": True}

        @app.post("/api/bookings")
        async def fake_booking(request: Request):
            if request.headers.get("content-type", "").startswith("application/json"):
                booking = await request.json()
            else:
                raw = (await request.body()).decode("utf-8")
                booking = {k: v[0] for k, v in parse_qs(raw).items()}
            return {"success": True, "booking": booking}

        @app.post("/webhook/payments")
        async def fake_webhook():
            return {"received": True}

        return app

    return _build


@pytest_asyncio.fixture
async def test_client(app_factory):
    """
    HTTPX AsyncClient routed straight into the ASGI app.

    Usage:
        async def test_health(test_client):
            response = await test_client.get("/health")
            assert response.status_code == 200
    """
    app = app_factory()
    transport = ASGITransport(app=app, client=("1.2.3.4", 50000))
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
