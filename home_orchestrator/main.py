"""Home Orchestrator FastAPI application.

Exposes the orchestration core over HTTP: intents in, aggregated results out,
plus health and backend status for operators.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from pythonjsonlogger import jsonlogger

from home_orchestrator.config.settings import get_settings
from home_orchestrator.container import OrchestrationContainer, build_container
from home_orchestrator.routers import health, intents


def setup_logging(log_level: str = "INFO") -> None:
    """Configure structured JSON logging.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    formatter = jsonlogger.JsonFormatter(  # type: ignore[attr-defined]
        "%(asctime)s %(name)s %(levelname)s %(message)s",
        rename_fields={"asctime": "timestamp", "levelname": "level", "name": "logger"},
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(log_level.upper())

    # Reduce noise from httpx
    logging.getLogger("httpx").setLevel(logging.WARNING)


def create_app(container: OrchestrationContainer | None = None) -> FastAPI:
    """Create the application.

    Args:
        container: Prebuilt components (built from settings at startup if None)
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        active = container
        if active is None:
            settings = get_settings()
            setup_logging(settings.log_level)
            active = build_container(settings)
        logger = logging.getLogger(__name__)

        logger.info("Home Orchestrator starting up")
        await active.start()
        app.state.container = active

        yield

        logger.info("Home Orchestrator shutting down")
        await active.shutdown()

    app = FastAPI(
        title="Home Orchestrator",
        description="Intent orchestration core for home assistants",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.include_router(intents.router, tags=["intents"])
    app.include_router(health.router)

    @app.get("/")
    async def root() -> dict[str, str]:
        return {
            "message": "Home Orchestrator",
            "version": "0.1.0",
            "docs": "/docs",
        }

    return app


app = create_app()
