"""FastAPI application factory and main app.

This module creates the FastAPI application with all routers and
dependency injection configured. Routes are thin proxies to core APIs.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from release_pipeline import __version__
from release_pipeline.config import get_settings
from release_pipeline.db import create_all_tables, get_engine, get_session_factory
from web.routers import artifacts, config, health, runs


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan context manager.

    Initializes database tables on startup. The pipeline engine is created
    on first use, so the API starts without a pipeline definition.
    """
    settings = get_settings()
    engine = get_engine(settings.db_url)
    create_all_tables(engine)
    app.state.settings = settings
    app.state.session_factory = get_session_factory(engine)
    app.state.pipeline_engine = None
    yield
    engine.dispose()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application.
    """
    application = FastAPI(
        title="Release Pipeline API",
        description="HTTP API for submitting release builds and inspecting runs",
        version=__version__,
        lifespan=lifespan,
    )

    # Include routers
    application.include_router(health.router, tags=["health"])
    application.include_router(config.router, prefix="/config", tags=["config"])
    application.include_router(runs.router, prefix="/runs", tags=["runs"])
    application.include_router(
        artifacts.router, prefix="/artifacts", tags=["artifacts"]
    )

    return application


# Create the default application instance
app = create_app()
