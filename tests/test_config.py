"""
RequestGuard — Configuration & Identity Tests
==============================================

What we test:
    ✅ Defaults match the marketplace's documented ceilings
    ✅ REQUESTGUARD_ environment variables override defaults
    ✅ Invalid values are rejected at load time
    ✅ Cross-field validation for hardened mode and Redis
    ✅ GuardOptions accepts camelCase and snake_case keys
    ✅ Client identity extraction, with and without proxy trust
"""

import pytest
from pydantic import ValidationError
from starlette.requests import Request

from requestguard.config import GuardOptions, Settings
from requestguard.identity import UNKNOWN_IP, ClientIdentity, extract_identity


class TestSettings:

    def test_defaults(self):
        config = Settings(_env_file=None)
        assert config.rate_limit_window_ms == 15 * 60 * 1000
        assert config.rate_limit_max_requests == 100
        assert config.auth_rate_limit_max_requests == 5
        assert config.payment_rate_limit_max_requests == 3
        assert config.max_auth_attempts == 5
        assert config.freshness_window_ms == 5 * 60 * 1000
        assert config.csrf_ttl_ms == 60 * 60 * 1000
        assert config.verify_signatures is False

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("REQUESTGUARD_RATE_LIMIT_MAX_REQUESTS", "250")
        monkeypatch.setenv("REQUESTGUARD_TRUST_PROXY", "true")
        config = Settings(_env_file=None)
        assert config.rate_limit_max_requests == 250
        assert config.trust_proxy is True

    @pytest.mark.parametrize(
        "overrides",
        [
            {"rate_limit_max_requests": 0},
            {"freshness_window_ms": 10},
            {"store_backend": "memcached"},
            {"log_level": "LOUD"},
        ],
    )
    def test_invalid_values_rejected(self, overrides):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, **overrides)

    def test_backend_and_log_level_normalized(self):
        config = Settings(_env_file=None, store_backend="REDIS", log_level="debug")
        assert config.store_backend == "redis"
        assert config.log_level == "DEBUG"

    def test_cors_origins_list(self):
        config = Settings(_env_file=None, cors_origins="https://a.example, https://b.example,")
        assert config.cors_origins_list == ["https://a.example", "https://b.example"]

    def test_hardened_mode_requires_secret(self):
        config = Settings(_env_file=None, verify_signatures=True, signing_secret="")
        with pytest.raises(ValueError, match="SIGNING_SECRET"):
            config.validate_required_for_production()

    def test_redis_requires_url(self):
        config = Settings(_env_file=None, store_backend="redis", redis_url="")
        with pytest.raises(ValueError, match="REDIS_URL"):
            config.validate_required_for_production()

    def test_valid_configuration_passes(self):
        Settings(
            _env_file=None, verify_signatures=True, signing_secret="x"
        ).validate_required_for_production()


class TestGuardOptions:

    def test_camel_case_aliases(self):
        opts = GuardOptions.coerce(
            {
                "windowMs": 60_000,
                "maxRequests": 10,
                "maxAuthAttempts": 3,
                "freshnessWindowMs": 120_000,
                "csrfTtlMs": 1_800_000,
            }
        )
        assert (opts.window_ms, opts.max_requests, opts.max_auth_attempts) == (60_000, 10, 3)
        assert opts.freshness_window_ms == 120_000
        assert opts.csrf_ttl_ms == 1_800_000

    def test_snake_case_accepted(self):
        assert GuardOptions.coerce({"max_requests": 7}).max_requests == 7

    def test_instance_passthrough(self):
        opts = GuardOptions(maxRequests=2)
        assert GuardOptions.coerce(opts) is opts

    def test_rejects_non_positive(self):
        with pytest.raises(ValidationError):
            GuardOptions.coerce({"windowMs": 0})


def make_request(client=("203.0.113.7", 5000), headers=None, user_id=None):
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "client": client,
        "state": {},
    }
    if user_id is not None:
        scope["state"]["user_id"] = user_id
    return Request(scope)


class TestIdentity:

    def test_ip_from_socket(self):
        identity = extract_identity(make_request())
        assert identity.ip == "203.0.113.7"
        assert identity.user_id is None
        assert identity.subject_key == "ip:203.0.113.7"

    def test_forwarded_for_ignored_without_proxy_trust(self):
        request = make_request(headers={"X-Forwarded-For": "1.1.1.1"})
        assert extract_identity(request).ip == "203.0.113.7"

    def test_forwarded_for_first_hop_with_proxy_trust(self):
        request = make_request(headers={"X-Forwarded-For": "1.1.1.1, 10.0.0.2"})
        assert extract_identity(request, trust_proxy=True).ip == "1.1.1.1"

    def test_missing_client_is_unknown(self):
        assert extract_identity(make_request(client=None)).ip == UNKNOWN_IP

    def test_user_id_from_request_state(self):
        identity = extract_identity(make_request(user_id=42))
        assert identity.user_id == "42"
        assert identity.subject_key == "user:42"
        assert identity.rate_key == "203.0.113.7"

    def test_resolver_takes_precedence(self):
        identity = extract_identity(
            make_request(user_id="state-user"), user_id_resolver=lambda r: "resolved"
        )
        assert identity.user_id == "resolved"

    def test_identity_is_immutable(self):
        identity = ClientIdentity(ip="1.2.3.4")
        with pytest.raises(ValidationError):
            identity.ip = "5.6.7.8"
