"""
Paarth Server Application Entry Point

This module defines the FastAPI application instance, registers all routers,
configures logging and global exception handling, and owns the startup and
shutdown order of the background maintenance tasks.

Startup order
-------------
1. Validate configuration (fail fast on a missing API key)
2. Load the corpus and wire the service container
3. Initialize the vector index (embed verses that lack an embedding)
4. Start the idle-session sweeper and the heartbeat probe

Shutdown order
--------------
1. Stop the background tasks
2. Notify and close every live session
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional

from fastapi import FastAPI

from .config import Settings, get_settings
from .container import Services, build_services
from .core.errors import unhandled_exception_handler
from .prompts import SHUTDOWN_TEXT

from .api import (
    chat_routes,
    health_routes,
    search_routes,
    stats_routes,
    verse_routes,
    ws_routes,
)


logger = logging.getLogger("paarth.app")


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def _fail_fast(task: asyncio.Task) -> None:
    """Terminate the process if a maintenance task dies unexpectedly."""
    if task.cancelled():
        return
    exc = task.exception()
    if exc is None:
        return
    logger.critical(
        "Background task %s crashed: %r; shutting down", task.get_name(), exc
    )
    os.kill(os.getpid(), signal.SIGTERM)


def _start_maintenance(services: Services) -> List[asyncio.Task]:
    registry = services.registry
    cfg = services.settings

    tasks = [
        asyncio.create_task(
            registry.run_sweeper(cfg.sweep_interval_seconds), name="session-sweeper"
        ),
        asyncio.create_task(
            registry.run_heartbeat(cfg.heartbeat_interval_seconds), name="session-heartbeat"
        ),
    ]
    for task in tasks:
        task.add_done_callback(_fail_fast)
    return tasks


# ---------------------------------------------------------------------
# Application Factory (Test-Friendly)
# ---------------------------------------------------------------------

def create_app(
    services: Optional[Services] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Parameters
    ----------
    services : Optional[Services]
        Prebuilt service container. When given, startup skips configuration
        validation and corpus loading; tests pass containers built on fakes.

    settings : Optional[Settings]
        Settings used to build the container at startup. Defaults to the
        environment-derived settings.

    Returns
    -------
    FastAPI
        Fully configured FastAPI application.
    """
    cfg = settings or (services.settings if services is not None else get_settings())

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info("Starting paarth-server")

        if getattr(app.state, "services", None) is None:
            if not cfg.gemini_api_key.get_secret_value():
                raise RuntimeError("PAARTH_GEMINI_API_KEY is not configured")
            app.state.services = build_services(cfg)
            await app.state.services.index.initialize()

        svc: Services = app.state.services
        app.state.started_at = time.monotonic()
        logger.info("Knowledge base ready: %s", svc.index.stats())

        tasks = _start_maintenance(svc)
        try:
            yield
        finally:
            logger.info("Shutting down paarth-server")
            for task in tasks:
                task.remove_done_callback(_fail_fast)
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            await svc.registry.close_all({"type": "server_shutdown", "message": SHUTDOWN_TEXT})

    app = FastAPI(
        title="paarth-server",
        version="2.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.services = services
    app.state.started_at = time.monotonic()

    # --------------------------------------------------------------
    # Global Exception Handling
    # --------------------------------------------------------------

    app.add_exception_handler(Exception, unhandled_exception_handler)

    # --------------------------------------------------------------
    # Router Registration
    # --------------------------------------------------------------

    app.include_router(health_routes.router)
    app.include_router(search_routes.router)
    app.include_router(verse_routes.router)
    app.include_router(chat_routes.router)
    app.include_router(stats_routes.router)
    app.include_router(ws_routes.router)

    return app


# ---------------------------------------------------------------------
# Default Application Instance (for Uvicorn)
# ---------------------------------------------------------------------

configure_logging(get_settings().log_level)
app = create_app()
