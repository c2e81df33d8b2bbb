"""
RequestGuard — Health Check Route
==================================

What:  Health check endpoint for load balancer probes.
Why:   With a Redis store, an instance that cannot reach Redis cannot enforce
       rate limits, lockouts or CSRF. It should be taken out of rotation.
How:   Pings the state store and reports which pipeline stages are enabled.
       A plain `def` route, so FastAPI runs the blocking ping in its threadpool.
When:  Periodically (e.g., every 30 seconds by Docker, every 10 seconds by LB).

Status levels:
    - healthy:   store reachable (HTTP 200)
    - unhealthy: store unreachable (HTTP 503, stop routing traffic)

/health is exempt from every guard, so probes are never rate limited.
"""

import logging
import time

from fastapi import APIRouter, Depends, Response

from requestguard import __version__
from requestguard.pipeline import SecurityPipeline, get_pipeline
from requestguard.schemas.security import HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

_start_time = time.time()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health check",
    description=(
        "Returns the health of the service and its guard state store. "
        "Used by Docker health checks and load balancers."
    ),
)
def health_check(
    response: Response,
    pipeline: SecurityPipeline = Depends(get_pipeline),
) -> HealthResponse:
    store = pipeline.store
    backend = store.backend if store is not None else "none"
    reachable = store is None or store.ping()

    overall = "healthy"
    if not reachable:
        overall = "unhealthy"
        response.status_code = 503
        logger.warning("Health check: %s store unreachable", backend)

    return HealthResponse(
        status=overall,
        version=__version__,
        store=f"{backend}:{'ok' if reachable else 'unreachable'}",
        guards={
            "replay": pipeline.replay_guard is not None,
            "pattern": pipeline.detector is not None,
            "csrf": pipeline.csrf is not None,
        },
        uptime_seconds=round(time.time() - _start_time, 2),
    )
