"""
RequestGuard — Application Package Initializer
===============================================

What: Marks the `requestguard` directory as a Python package.
Why:  Enables module imports like `from requestguard.config import settings`.
Who:  Used implicitly by Python's import system and explicitly by pytest and uvicorn.

Architecture Note:
    The request-defense pipeline is layered the same way the rest of the
    backend is:

    ┌─────────────────────────────────────┐
    │      Middleware / Routes (HTTP)     │  ← request parsing, JSON responses
    ├─────────────────────────────────────┤
    │       Pipeline (Orchestration)      │  ← fixed guard order, route groups
    ├─────────────────────────────────────┤
    │          Guards (Decisions)         │  ← rate, lockout, replay, patterns, CSRF
    ├─────────────────────────────────────┤
    │        Stores (Guard State)         │  ← bounded memory or shared Redis
    └─────────────────────────────────────┘

    Guards never touch HTTP objects; they receive a GuardContext and return a
    Verdict. That keeps every guard testable with a plain `now` value and no
    running server.
"""

__version__ = "1.0.0"
