# Guards package init
"""
RequestGuard — Guards
======================

What:  The individual checks the pipeline runs, one class per concern.
Why:   Each guard is independently constructible and testable; the pipeline
       only decides ORDER, never WHAT a guard checks.

Guard Inventory (pipeline order):
    1. FixedWindowRateLimiter  (rate_limit.py)   → 429
    2. BruteForceTracker       (brute_force.py)  → 429
    3. ReplayGuard             (replay.py)       → 401
    4. PatternAttackDetector   (patterns.py)     → 400
    5. CSRFProtector           (csrf.py)         → 401

Contract:
    Guards take plain values (identity, method, now, ...) and return a Verdict.
    They never raise on malformed input; a missing header is a denial reason.
"""

from requestguard.guards.base import ALLOW, GuardContext, Verdict
from requestguard.guards.brute_force import BruteForceTracker
from requestguard.guards.csrf import CSRFProtector
from requestguard.guards.patterns import AttackSignature, PatternAttackDetector
from requestguard.guards.rate_limit import FixedWindowRateLimiter
from requestguard.guards.replay import ReplayGuard, sign_request

__all__ = [
    "ALLOW",
    "AttackSignature",
    "BruteForceTracker",
    "CSRFProtector",
    "FixedWindowRateLimiter",
    "GuardContext",
    "PatternAttackDetector",
    "ReplayGuard",
    "Verdict",
    "sign_request",
]
