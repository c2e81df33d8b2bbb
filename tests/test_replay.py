"""
RequestGuard — Replay Guard Tests
==================================

What we test:
    ✅ Freshness boundary: 299s old passes, 301s old is expired
    ✅ GET/HEAD/OPTIONS bypass even with no headers
    ✅ Missing or malformed envelope is denied, never a crash
    ✅ Hardened mode: correct HMAC passes, tampered body/path/method fails
"""

import pytest

from requestguard.exceptions import (
    InvalidSecurityHeadersError,
    InvalidSignatureError,
    MissingSecurityHeadersError,
    RequestExpiredError,
)
from requestguard.guards.replay import (
    ReplayGuard,
    canonical_string,
    sign_request,
)
from requestguard.models.records import SignedRequestEnvelope

NOW = 1_700_000_000_000
SECRET = "s3cret"


def envelope(timestamp, signature="sig"):
    return SignedRequestEnvelope(
        signature=signature,
        timestamp=None if timestamp is None else str(timestamp),
    )


class TestFreshness:
    """Presence + timestamp contract (signatures not verified)."""

    def setup_method(self):
        self.guard = ReplayGuard(freshness_ms=300_000)

    def test_expired_after_five_minutes(self):
        verdict = self.guard.verify(envelope(NOW - 301_000), "POST", NOW)
        assert isinstance(verdict.error, RequestExpiredError)
        assert verdict.error.status_code == 401

    def test_fresh_within_five_minutes(self):
        assert self.guard.verify(envelope(NOW - 299_000), "POST", NOW).allowed

    def test_boundary_is_inclusive(self):
        assert self.guard.verify(envelope(NOW - 300_000), "POST", NOW).allowed

    def test_future_timestamps_use_absolute_skew(self):
        assert self.guard.verify(envelope(NOW + 299_000), "PUT", NOW).allowed
        assert not self.guard.verify(envelope(NOW + 301_000), "PUT", NOW).allowed

    @pytest.mark.parametrize("method", ["GET", "HEAD", "OPTIONS", "get"])
    def test_safe_methods_bypass(self, method):
        """No headers at all, still allowed for reads."""
        empty = SignedRequestEnvelope(signature=None, timestamp=None)
        assert self.guard.verify(empty, method, NOW).allowed

    def test_missing_signature_denied(self):
        verdict = self.guard.verify(envelope(NOW, signature=None), "POST", NOW)
        assert isinstance(verdict.error, MissingSecurityHeadersError)
        assert verdict.error.message == "Missing security headers"

    def test_missing_timestamp_denied(self):
        verdict = self.guard.verify(envelope(None), "DELETE", NOW)
        assert isinstance(verdict.error, MissingSecurityHeadersError)

    @pytest.mark.parametrize("bad", ["yesterday", "12.5", "1e12", "0x10"])
    def test_malformed_timestamp_denied(self, bad):
        verdict = self.guard.verify(envelope(bad), "POST", NOW)
        assert isinstance(verdict.error, InvalidSecurityHeadersError)

    def test_envelope_from_headers_treats_blank_as_missing(self):
        env = ReplayGuard.envelope_from_headers(
            {"x-request-signature": "", "x-request-timestamp": str(NOW)}
        )
        assert env.signature is None
        assert isinstance(self.guard.verify(env, "POST", NOW).error, MissingSecurityHeadersError)


class TestHardenedSignatures:
    """HMAC-SHA256 over METHOD, path, body hash and timestamp."""

    def setup_method(self):
        self.guard = ReplayGuard(signing_secret=SECRET, verify_signature=True)

    def _verify(self, headers, method="POST", path="/api/bookings", body=b'{"room": 7}'):
        env = ReplayGuard.envelope_from_headers(
            {k.lower(): v for k, v in headers.items()}
        )
        return self.guard.verify(env, method, NOW, path=path, body=body)

    def test_correct_signature_passes(self):
        headers = sign_request(SECRET, "POST", "/api/bookings", b'{"room": 7}', timestamp=NOW)
        assert self._verify(headers).allowed

    def test_tampered_body_fails(self):
        headers = sign_request(SECRET, "POST", "/api/bookings", b'{"room": 7}', timestamp=NOW)
        verdict = self._verify(headers, body=b'{"room": 8}')
        assert isinstance(verdict.error, InvalidSignatureError)

    def test_tampered_path_and_method_fail(self):
        headers = sign_request(SECRET, "POST", "/api/bookings", b'{"room": 7}', timestamp=NOW)
        assert not self._verify(headers, path="/api/payments").allowed
        assert not self._verify(headers, method="PUT").allowed

    def test_wrong_secret_fails(self):
        headers = sign_request("other", "POST", "/api/bookings", b'{"room": 7}', timestamp=NOW)
        assert not self._verify(headers).allowed

    def test_non_ascii_signature_denied_not_raised(self):
        headers = {"X-Request-Timestamp": str(NOW), "X-Request-Signature": "ünïcode"}
        assert isinstance(self._verify(headers).error, InvalidSignatureError)

    def test_lone_surrogate_signature_denied_not_raised(self):
        headers = {"X-Request-Timestamp": str(NOW), "X-Request-Signature": "\ud800"}
        assert isinstance(self._verify(headers).error, InvalidSignatureError)

    def test_freshness_checked_before_signature(self):
        headers = sign_request(SECRET, "POST", "/api/bookings", b'{"room": 7}',
                               timestamp=NOW - 301_000)
        assert isinstance(self._verify(headers).error, RequestExpiredError)

    def test_requires_secret(self):
        with pytest.raises(ValueError):
            ReplayGuard(verify_signature=True)

    def test_canonical_string_layout(self):
        lines = canonical_string("post", "/x", b"", "123").split("\n")
        assert lines[0] == "POST"
        assert lines[1] == "/x"
        # sha256 of the empty body
        assert lines[2] == "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
        assert lines[3] == "123"
