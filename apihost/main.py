"""
apihost — Entry Point
=====================

What:  Builds a default host and serves it until the process is told to stop.
How:   create_host() wires the health route (and a database capability when
       DB_HOST is configured); run() sets up logging and drives the host
       lifecycle on an asyncio event loop.
Who:   ``apihost`` console script, or ``python -m apihost.main``.

Lifecycle:
    Startup:
    1. Resolve settings (environment / .env) once
    2. Initialize structured logging
    3. initialize() the host, start() it on APP_PORT (default 80)

    Shutdown (SIGINT / SIGTERM):
    1. uvicorn stops accepting connections and drains open ones
    2. stop() the host
"""

import asyncio
import logging
import sys
from typing import Optional

from fastapi import APIRouter, FastAPI

from apihost.config import Settings
from apihost.exceptions import BindError
from apihost.host import ApiHost, create_database_host
from apihost.routes.health import create_health_router

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging(settings: Settings) -> None:
    """
    Configure logging for the whole process.

    Format: %(asctime)s [%(levelname)s] %(name)s: %(message)s
    Called once by run(); library users configure logging themselves.
    """
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[
            logging.StreamHandler(sys.stdout),
        ],
        force=True,
    )

    # Reduce noise from third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Host Factory
# ══════════════════════════════════════════════════════════════════════════

def create_host(settings: Optional[Settings] = None) -> ApiHost:
    """
    Create the default host.

    The error handler is enabled; the health route is mounted at
    /api/health. A database capability is attached when DB_HOST is set.
    """
    settings = settings if settings is not None else Settings()

    if settings.db_host:
        host = create_database_host(settings)
    else:
        host = ApiHost(settings)

    def register_routes(app: FastAPI, root: APIRouter) -> None:
        root.include_router(create_health_router(host))

    host.set_route_registrar(register_routes)
    host.set_error_handler(True)
    return host


async def serve(settings: Optional[Settings] = None) -> None:
    host = create_host(settings)
    await host.initialize()
    await host.start()

    logger.info("=" * 60)
    logger.info("Serving on port %d (environment: %s)", host.port, host.settings.app_env or "prod")
    logger.info("Health check: /api/health")
    logger.info("=" * 60)

    try:
        await host.wait_closed()
    finally:
        await host.stop()
        logger.info("Shutdown complete.")


def run() -> None:
    settings = Settings()
    setup_logging(settings)
    try:
        asyncio.run(serve(settings))
    except BindError as e:
        logger.error("Startup failed: %s", e.message)
        sys.exit(1)
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
