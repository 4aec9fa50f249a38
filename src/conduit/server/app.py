"""FastAPI application for the conduit control API."""

from __future__ import annotations

import structlog
from fastapi import FastAPI

from conduit import __version__
from conduit.config import ConduitConfig
from conduit.server.api import router as api_router
from conduit.server.config import ServerSettings
from conduit.workflow.engine import WorkflowEngine

logger = structlog.get_logger()


def create_app(engine: WorkflowEngine | None = None, settings: ServerSettings | None = None) -> FastAPI:
    """Create the FastAPI application.

    Args:
        engine: Engine to expose. If not provided, one is built from the
            config file named by ``CONDUIT_CONFIG`` (or the defaults).
        settings: Optional server settings. If not provided, loads from env.

    Returns:
        Configured FastAPI application.
    """
    if settings is None:
        settings = ServerSettings()

    if engine is None:
        config = ConduitConfig.load(settings.config_path) if settings.config_path else ConduitConfig.default()
        engine = WorkflowEngine.from_config(config)

    app = FastAPI(
        title="Conduit",
        description="Control API for conduit pipeline runs",
        version=__version__,
        docs_url="/api/docs",
        redoc_url=None,
    )

    app.state.settings = settings
    app.state.engine = engine

    app.include_router(api_router, prefix="/api")

    logger.debug("Created app", pipelines=len(engine.list_pipelines()))
    return app
