"""
apihost — Health Check Route
============================

What:  Health check endpoint for monitoring and load balancer health checks.
How:   Reports the host version and environment; when the host has a
       database capability, runs ``SELECT 1`` in a scoped session.

Status levels:
    - healthy:   host up, database reachable (or no database)  → 200
    - unhealthy: database unreachable                          → 503
"""

import logging
import time
from typing import TYPE_CHECKING

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from apihost import __version__
from apihost.schemas import HealthResponse
from apihost.storage import DEFAULT_PATH_PREFIX

if TYPE_CHECKING:
    from apihost.host import ApiHost

logger = logging.getLogger(__name__)


def create_health_router(host: "ApiHost") -> APIRouter:
    """Build the health router bound to ``host``."""
    router = APIRouter(tags=["Health"])
    started_at = time.time()

    @router.get(
        "/health",
        response_model=HealthResponse,
        summary="Host health check",
    )
    async def health_check():
        db_status = None
        overall = "healthy"

        if host.has_database:
            try:
                await host.with_database(lambda db: db.execute("SELECT 1"))
                db_status = "connected"
            except Exception as e:
                db_status = "disconnected"
                overall = "unhealthy"
                logger.warning("Health check: database unreachable: %s", str(e))

        report = HealthResponse(
            status=overall,
            version=__version__,
            environment=host.settings.app_env or DEFAULT_PATH_PREFIX,
            database=db_status,
            uptime_seconds=round(time.time() - started_at, 2),
        )
        return JSONResponse(
            status_code=200 if overall == "healthy" else 503,
            content=report.model_dump(),
        )

    return router
