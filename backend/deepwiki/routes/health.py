"""
DeepWiki Backend — Health Check Route
=======================================

What:  Liveness/readiness probe for Docker and load balancers.
How:   Pings the database through the retrying client and asks the storage
       backend whether it is reachable.

Status levels:
    - healthy:   database and storage OK (HTTP 200)
    - degraded:  storage down, database OK (HTTP 200)
    - unhealthy: database down (HTTP 503)
"""

import logging
import time

from fastapi import APIRouter, Request, Response

from deepwiki import __version__
from deepwiki.schemas.common import HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

_start_time = time.time()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health check",
)
async def health_check(request: Request, response: Response) -> HealthResponse:
    overall = "healthy"

    database = request.app.state.database
    db_ok = await database.ping()
    if not db_ok:
        overall = "unhealthy"
        response.status_code = 503

    storage = request.app.state.storage
    try:
        storage_ok = await storage.health_check()
    except Exception as e:
        logger.warning("Health check: storage unreachable: %s", str(e))
        storage_ok = False
    if not storage_ok and overall == "healthy":
        overall = "degraded"

    return HealthResponse(
        status=overall,
        version=__version__,
        database="connected" if db_ok else "disconnected",
        storage="available" if storage_ok else "unavailable",
        uptime_seconds=round(time.time() - _start_time, 2),
    )
