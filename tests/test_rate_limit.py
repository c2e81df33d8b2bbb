"""
RequestGuard — Fixed-Window Rate Limiter Tests
===============================================

What we test:
    ✅ Ceiling C allows exactly C requests per window, denies C+1
    ✅ A request at window_start + W + 1ms opens a fresh window
    ✅ Once blocked, every request in the window is denied
    ✅ retry_after is the rest of the window in whole seconds
    ✅ Identities are counted independently
"""

import pytest

from requestguard.exceptions import RateLimitExceededError
from requestguard.guards.rate_limit import FixedWindowRateLimiter
from requestguard.identity import ClientIdentity


class TestFixedWindowRateLimiter:
    """Counting, blocking and window reset."""

    @pytest.fixture(autouse=True)
    def _limiter(self, memory_store):
        self.store = memory_store
        self.limiter = FixedWindowRateLimiter(3, 1000, memory_store, name="test")

    def test_allows_up_to_ceiling_then_denies(self, identity):
        """C allowed requests, then the (C+1)-th in the same window is denied."""
        for t in (0, 100, 200):
            assert self.limiter.check(identity, t).allowed
        verdict = self.limiter.check(identity, 300)
        assert not verdict.allowed
        assert isinstance(verdict.error, RateLimitExceededError)
        assert verdict.error.status_code == 429

    def test_window_resets_after_w_plus_one_ms(self, identity):
        """At window_start + W + 1ms the count starts over at 1."""
        for t in (0, 1, 2, 3):
            self.limiter.check(identity, t)
        assert not self.limiter.check(identity, 1000).allowed  # now - start == W, same window

        assert self.limiter.check(identity, 1001).allowed
        record = self.limiter.peek(identity, 1001)
        assert record.count == 1
        assert record.window_start == 1001
        assert record.blocked is False

    def test_blocked_stays_blocked_for_window(self, identity):
        for t in range(4):
            self.limiter.check(identity, t)
        for t in (10, 500, 999):
            assert not self.limiter.check(identity, t).allowed

    def test_count_does_not_grow_while_blocked(self, identity):
        for t in range(10):
            self.limiter.check(identity, t)
        assert self.limiter.peek(identity, 10).count == 4

    def test_identities_are_independent(self, identity):
        other = ClientIdentity(ip="5.6.7.8")
        for t in range(4):
            self.limiter.check(identity, t)
        assert self.limiter.check(other, 5).allowed

    def test_rate_key_ignores_user_id(self):
        """Two accounts behind one address share the address's ceiling."""
        alice = ClientIdentity(ip="9.9.9.9", user_id="alice")
        bob = ClientIdentity(ip="9.9.9.9", user_id="bob")
        for t in range(3):
            self.limiter.check(alice, t)
        assert not self.limiter.check(bob, 3).allowed

    def test_rejects_invalid_configuration(self, memory_store):
        with pytest.raises(ValueError):
            FixedWindowRateLimiter(0, 1000, memory_store)
        with pytest.raises(ValueError):
            FixedWindowRateLimiter(5, 0, memory_store)


class TestRateLimitScenario:
    """Ceiling 5 per 60s for 1.2.3.4."""

    def test_sixth_request_denied_with_retry_after_ten(self, memory_store, identity):
        limiter = FixedWindowRateLimiter(5, 60_000, memory_store)
        for t in (0, 10_000, 20_000, 30_000, 40_000):
            assert limiter.check(identity, t).allowed

        verdict = limiter.check(identity, 50_000)
        assert not verdict.allowed
        assert verdict.error.retry_after == 10
        assert verdict.error.to_payload()["retryAfter"] == 10
        assert verdict.error.headers() == {"Retry-After": "10"}

    def test_retry_after_is_at_least_one_second(self, memory_store, identity):
        limiter = FixedWindowRateLimiter(1, 60_000, memory_store)
        limiter.check(identity, 0)
        verdict = limiter.check(identity, 59_999)
        assert verdict.error.retry_after == 1


class TestFromOptions:
    """camelCase option names build the same limiter."""

    def test_camel_case_mapping(self, memory_store):
        limiter = FixedWindowRateLimiter.from_options(
            {"windowMs": 60_000, "maxRequests": 5}, memory_store, name="api"
        )
        assert limiter.window_ms == 60_000
        assert limiter.max_requests == 5
        assert limiter.namespace == "rate:api"

    def test_defaults_when_options_missing(self, memory_store):
        limiter = FixedWindowRateLimiter.from_options(None, memory_store)
        assert limiter.window_ms == 15 * 60 * 1000
        assert limiter.max_requests == 100
