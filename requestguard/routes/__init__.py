# Routes package init
"""
RequestGuard — API Routes Package
==================================

Route Inventory:
    - security.py:  GET /api/security/csrf-token   (issue anti-forgery token)
    - health.py:    GET /health                    (store reachability, enabled stages)

Routes stay THIN: guarding happens in middleware before any handler runs.
"""
