"""
RequestGuard — Pipeline Orchestrator
=====================================

What:  Composes the guards into one allow/deny decision per request.
Why:   Guard ORDER is a security property. Rate limiting must run before the
       expensive regex scan; lockout must run before anything that could
       leak whether a credential was right. Encoding the order in one place
       means no route can accidentally run them differently.
How:   evaluate() walks the fixed stage list; the first denial stops the walk.
       After the handler runs, record_outcome() feeds the response status to
       the route group's brute-force tracker.

State Machine (per request):
    unchecked
      → rate_limit   ─deny→ denied(rate_limit)
      → brute_force  ─deny→ denied(brute_force)
      → replay       ─deny→ denied(replay)
      → pattern      ─deny→ denied(pattern)
      → csrf         ─deny→ denied(csrf)
      → allowed-to-handler
      → [handler] → record_outcome(status)

    Each guard evaluates exactly once; there is no retry inside the pipeline.

Route Groups:
    The first group whose prefix matches the path supplies the rate limiters
    and the brute-force tracker. Login and OTP get their own trackers, so a
    failed OTP cannot lock someone out of password login.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence, Tuple

from starlette.requests import Request

from requestguard import audit
from requestguard.exceptions import RequestGuardError
from requestguard.guards.base import GuardContext, Verdict
from requestguard.guards.brute_force import BruteForceTracker
from requestguard.guards.csrf import CSRFProtector
from requestguard.guards.patterns import PatternAttackDetector
from requestguard.guards.rate_limit import FixedWindowRateLimiter
from requestguard.guards.replay import ReplayGuard
from requestguard.stores.base import StateStore

logger = logging.getLogger(__name__)

STAGE_RATE_LIMIT = "rate_limit"
STAGE_BRUTE_FORCE = "brute_force"
STAGE_REPLAY = "replay"
STAGE_PATTERN = "pattern"
STAGE_CSRF = "csrf"

STAGES = (STAGE_RATE_LIMIT, STAGE_BRUTE_FORCE, STAGE_REPLAY, STAGE_PATTERN, STAGE_CSRF)

# Health checks and API docs are never guarded
DEFAULT_EXEMPT_PATHS = ("/health", "/docs", "/redoc", "/openapi.json")


@dataclass
class RouteGroup:
    """Guards that apply to one family of routes."""

    name: str
    prefixes: Tuple[str, ...] = ()
    rate_limiters: Tuple[FixedWindowRateLimiter, ...] = ()
    brute_force: Optional[BruteForceTracker] = None

    def matches(self, path: str) -> bool:
        return any(path.startswith(prefix) for prefix in self.prefixes)


@dataclass(frozen=True)
class Decision:
    """
    Terminal state of one evaluation.

    allowed: error is None and the request may reach the handler
    denied:  stage names the guard that refused; error renders the response
    """

    group: Optional[RouteGroup] = None
    stage: Optional[str] = None
    error: Optional[RequestGuardError] = None
    exempt: bool = False

    @property
    def allowed(self) -> bool:
        return self.error is None


@dataclass
class SecurityPipeline:
    """
    Fixed-order guard composition.

    Args:
        default_group: Used when no entry in `groups` matches the path
        groups:        Ordered, first match wins
        replay_guard:  None disables the replay stage
        detector:      None disables the pattern stage
        csrf:          None disables the CSRF stage
        exempt_paths:  Exact paths that bypass every guard
    """

    default_group: RouteGroup
    groups: List[RouteGroup] = field(default_factory=list)
    replay_guard: Optional[ReplayGuard] = None
    detector: Optional[PatternAttackDetector] = None
    csrf: Optional[CSRFProtector] = None
    exempt_paths: Tuple[str, ...] = DEFAULT_EXEMPT_PATHS
    store: Optional[StateStore] = None

    def group_for(self, path: str) -> RouteGroup:
        for group in self.groups:
            if group.matches(path):
                return group
        return self.default_group

    def is_exempt(self, path: str) -> bool:
        return path in self.exempt_paths

    def evaluate(self, context: GuardContext) -> Decision:
        """Run every stage in order; return the first denial or an allow."""
        if self.is_exempt(context.path):
            return Decision(exempt=True)

        group = self.group_for(context.path)
        for stage in STAGES:
            verdict = self._run_stage(stage, group, context)
            if not verdict.allowed:
                audit.log_denial(context, stage, verdict.error)
                return Decision(group=group, stage=stage, error=verdict.error)
        return Decision(group=group)

    def record_outcome(self, context: GuardContext, decision: Decision, status_code: int) -> None:
        """Feed the handler's response status to the group's lockout tracker."""
        if not decision.allowed or decision.exempt or decision.group is None:
            return
        tracker = decision.group.brute_force
        if tracker is not None:
            tracker.record_outcome(context.identity, status_code, context.now)

    def _run_stage(self, stage: str, group: RouteGroup, context: GuardContext) -> Verdict:
        identity, now = context.identity, context.now

        if stage == STAGE_RATE_LIMIT:
            for limiter in group.rate_limiters:
                verdict = limiter.check(identity, now)
                if not verdict.allowed:
                    return verdict

        elif stage == STAGE_BRUTE_FORCE and group.brute_force is not None:
            return group.brute_force.check_locked(identity, now)

        elif stage == STAGE_REPLAY and self.replay_guard is not None:
            envelope = ReplayGuard.envelope_from_headers(context.headers)
            return self.replay_guard.verify(
                envelope, context.method, now, path=context.path, body=context.raw_body
            )

        elif stage == STAGE_PATTERN and self.detector is not None:
            return self.detector.scan_request(
                query=context.query,
                body=context.body,
                path=context.path,
                raw_path=context.raw_path,
            )

        elif stage == STAGE_CSRF and self.csrf is not None:
            presented = CSRFProtector.token_from(context.headers, context.body)
            return self.csrf.validate(
                identity, context.method, presented, now, path=context.path
            )

        return Verdict()


def _limiter_group(
    name: str,
    prefixes: Sequence[str],
    limiter: FixedWindowRateLimiter,
    general: FixedWindowRateLimiter,
    brute_force: Optional[BruteForceTracker] = None,
) -> RouteGroup:
    return RouteGroup(
        name=name,
        prefixes=tuple(prefixes),
        rate_limiters=(limiter, general),
        brute_force=brute_force,
    )


def build_pipeline(
    config,
    store: StateStore,
    exempt_paths: Iterable[str] = DEFAULT_EXEMPT_PATHS,
) -> SecurityPipeline:
    """
    Construct the default marketplace pipeline from settings.

    Route groups (first match wins, every group also counts against general):
        otp      /api/auth/send-otp, /api/auth/verify-otp   otp limiter + OTP lockout
        auth     /api/auth/login, /api/auth/register       auth limiter + login lockout
        payment  /api/payments                             payment limiter
        upload   /api/uploads                              upload limiter
        booking  /api/bookings                             booking limiter
        general  everything else                           general limiter
    """
    window = config.rate_limit_window_ms

    general = FixedWindowRateLimiter(
        config.rate_limit_max_requests, window, store, name="general",
        message="Too many requests. Please slow down.",
    )
    auth = FixedWindowRateLimiter(
        config.auth_rate_limit_max_requests, window, store, name="auth",
        message="Too many authentication attempts. Please try again in 15 minutes.",
    )
    otp = FixedWindowRateLimiter(
        config.otp_rate_limit_max_requests, config.otp_rate_limit_window_ms, store,
        name="otp", message="Too many OTP requests. Please try again in 1 hour.",
    )
    payment = FixedWindowRateLimiter(
        config.payment_rate_limit_max_requests, window, store, name="payment",
        message="Too many payment attempts. Please try again later.",
    )
    upload = FixedWindowRateLimiter(
        config.upload_rate_limit_max_requests, config.upload_rate_limit_window_ms, store,
        name="upload", message="Too many upload attempts. Please try again later.",
    )
    booking = FixedWindowRateLimiter(
        config.booking_rate_limit_max_requests, config.booking_rate_limit_window_ms, store,
        name="booking", message="Too many booking requests. Please try again later.",
    )

    login_lockout = BruteForceTracker(
        config.max_auth_attempts, config.brute_force_window_ms, store, name="login"
    )
    otp_lockout = BruteForceTracker(
        config.max_auth_attempts, config.brute_force_window_ms, store, name="otp"
    )

    groups = [
        _limiter_group(
            "otp", ("/api/auth/send-otp", "/api/auth/verify-otp"), otp, general, otp_lockout
        ),
        _limiter_group(
            "auth", ("/api/auth/login", "/api/auth/register"), auth, general, login_lockout
        ),
        _limiter_group("payment", ("/api/payments",), payment, general),
        _limiter_group("upload", ("/api/uploads",), upload, general),
        _limiter_group("booking", ("/api/bookings",), booking, general),
    ]

    replay_guard = None
    if config.replay_protection_enabled:
        replay_guard = ReplayGuard(
            freshness_ms=config.freshness_window_ms,
            signing_secret=config.signing_secret or None,
            verify_signature=config.verify_signatures,
        )

    csrf = None
    if config.csrf_protection_enabled:
        csrf = CSRFProtector(ttl_ms=config.csrf_ttl_ms, store=store)

    logger.info(
        "Security pipeline built: %d route groups, replay=%s (hmac=%s), csrf=%s",
        len(groups) + 1,
        replay_guard is not None,
        config.verify_signatures,
        csrf is not None,
    )

    return SecurityPipeline(
        default_group=RouteGroup(name="general", rate_limiters=(general,)),
        groups=groups,
        replay_guard=replay_guard,
        detector=PatternAttackDetector(),
        csrf=csrf,
        exempt_paths=tuple(exempt_paths),
        store=store,
    )


def get_pipeline(request: Request) -> SecurityPipeline:
    """FastAPI dependency: the pipeline built by create_app()."""
    return request.app.state.pipeline
