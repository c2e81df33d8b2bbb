"""
RequestGuard — Guard State Records
===================================

What:  Pydantic models for the per-identity records each stateful guard keeps.
Why:   One typed definition per record shape serves both stores. The memory
       store keeps the model instance itself; the Redis store round-trips it
       through `model_dump_json()` / `model_validate_json()`.
Who:   Created and mutated by guards inside `StateStore.update()`.

Timestamps are integer epoch milliseconds throughout.
"""

from typing import Optional

from pydantic import BaseModel, Field


class RateWindowRecord(BaseModel):
    """
    One fixed-window counter for one identity.

    Invariant:
        window_start only moves forward, and only when
        `now - window_start > window`; at that moment count resets to 1 and
        blocked resets to False.
    """

    count: int = Field(default=1, ge=0)
    window_start: int
    blocked: bool = False


class BruteForceRecord(BaseModel):
    """
    Consecutive-failure counter for one identity.

    Invariant:
        attempts grows only on a failing (>= 400) outcome, drops to 0 on a
        successful outcome, and drops to 0 once `now > reset_time`.
    """

    attempts: int = Field(default=0, ge=0)
    reset_time: int


class CSRFTokenRecord(BaseModel):
    """Anti-forgery token issued to one identity."""

    token: str
    created_at: int


class SignedRequestEnvelope(BaseModel):
    """
    Signature/timestamp pair as sent by the client.

    Kept as raw header strings: parsing happens in the replay guard so a
    malformed timestamp becomes a denial instead of a validation crash.
    """

    signature: Optional[str] = None
    timestamp: Optional[str] = None
