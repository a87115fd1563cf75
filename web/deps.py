"""FastAPI dependencies: database sessions and the pipeline engine.

Request sessions commit when the handler returns and roll back when it
raises. The pipeline engine is built lazily from settings the first time
a submit endpoint needs it, so the API can serve run history without a
pipeline definition.
"""

from __future__ import annotations

import threading
from collections.abc import Generator

import yaml
from fastapi import Depends, HTTPException, Request
from fastapi import status as http_status
from sqlalchemy.orm import Session, sessionmaker

from release_pipeline.config import Settings, get_settings
from release_pipeline.db import get_session
from release_pipeline.pipeline.engine import PipelineEngine, create_pipeline_engine

_engine_lock = threading.Lock()


def get_session_factory(request: Request) -> sessionmaker[Session]:
    factory: sessionmaker[Session] = request.app.state.session_factory
    return factory


def get_app_settings(request: Request) -> Settings:
    """Get settings from app state, falling back to the environment."""
    settings: Settings | None = getattr(request.app.state, "settings", None)
    return settings or get_settings()


def get_db(
    session_factory: sessionmaker[Session] = Depends(get_session_factory),
) -> Generator[Session, None, None]:
    """Yield a session scoped to one request."""
    with get_session(session_factory) as session:
        yield session


def get_pipeline_engine(
    request: Request,
    settings: Settings = Depends(get_app_settings),
    session_factory: sessionmaker[Session] = Depends(get_session_factory),
) -> PipelineEngine:
    """Get the pipeline engine, creating it from settings on first use.

    Raises:
        HTTPException: 503 if the pipeline definition cannot be loaded.
    """
    with _engine_lock:
        engine: PipelineEngine | None = getattr(
            request.app.state, "pipeline_engine", None
        )
        if engine is None:
            try:
                engine = create_pipeline_engine(
                    settings, session_factory=session_factory
                )
            except (OSError, ValueError, yaml.YAMLError) as e:
                raise HTTPException(
                    status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE,
                    detail={
                        "code": "pipeline_unavailable",
                        "message": f"Cannot load pipeline definition: {e}",
                    },
                ) from None
            request.app.state.pipeline_engine = engine
    return engine


def get_optional_pipeline_engine(request: Request) -> PipelineEngine | None:
    """Get the pipeline engine if one has been created."""
    return getattr(request.app.state, "pipeline_engine", None)
