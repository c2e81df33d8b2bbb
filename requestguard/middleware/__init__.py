# Middleware package init
"""
RequestGuard — Middleware Package
==================================

What:  ASGI adapters that put the security pipeline in front of every route.
Why:   Guards are plain Python objects; middleware is where they meet HTTP.

Middleware Chain (outermost first):
    Request → [CORS] → [Request ID] → [Logging] → [Security Headers]
            → [Security Pipeline] → Route Handler

    Why this order:
    1. CORS outermost: preflight requests are answered without touching guards
    2. Request ID: every later log line and error body carries the same ID
    3. Logging: sees the final status, including guard denials
    4. Security Headers: applied to denials as well as handler responses
    5. Security Pipeline: innermost, so a denial short-circuits only the handler

Imports are left to the modules themselves; `requestguard.audit` imports
request_id_var from here and must not pull in the pipeline.
"""
