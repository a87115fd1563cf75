"""Health check endpoints."""

from typing import Any

from fastapi import APIRouter, Depends

from release_pipeline import __version__
from release_pipeline.pipeline.engine import PipelineEngine
from web.deps import get_optional_pipeline_engine

router = APIRouter()


@router.get("/health")
def health(
    engine: PipelineEngine | None = Depends(get_optional_pipeline_engine),
) -> dict[str, Any]:
    """Health check endpoint.

    Returns:
        Health status with version and cache health, if a pipeline
        engine is configured.
    """
    cache_healthy = engine.cache_store.is_healthy() if engine is not None else None
    return {
        "status": "ok" if cache_healthy is not False else "degraded",
        "version": __version__,
        "cache_healthy": cache_healthy,
    }


@router.get("/")
def root() -> dict[str, str]:
    """Root endpoint.

    Returns:
        API name and version.
    """
    return {"name": "Release Pipeline API", "version": __version__}

