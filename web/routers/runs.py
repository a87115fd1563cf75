"""Build run endpoints.

- POST /runs - Submit a trigger event and build it
- POST /runs/push - Git-hosting push webhook (tag pushes only)
- GET /runs - List build runs
- GET /runs/stats - Run counts by status and error code
- GET /runs/{id} - Get build run by ID
"""

from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Query
from fastapi import status as http_status
from sqlalchemy.orm import Session

from release_pipeline.errors import InvalidTriggerError, RunNotFoundError
from release_pipeline.pipeline.engine import PipelineEngine
from release_pipeline.pipeline.service import get_run, list_runs, run_stats
from release_pipeline.pipeline.triggers import (
    TriggerEventSchema,
    event_from_push_payload,
)
from release_pipeline.types import BuildStatus, TriggerEvent
from web.deps import get_db, get_pipeline_engine

router = APIRouter()


def _invalid_trigger(e: InvalidTriggerError) -> HTTPException:
    return HTTPException(
        status_code=http_status.HTTP_400_BAD_REQUEST,
        detail={"code": e.code, "message": str(e)},
    )


def _submit(engine: PipelineEngine, event: TriggerEvent) -> dict[str, Any]:
    try:
        result = engine.submit(event)
    except InvalidTriggerError as e:
        raise _invalid_trigger(e) from None
    return result.to_dict()


@router.post("")
def submit_run_endpoint(
    request: TriggerEventSchema,
    engine: PipelineEngine = Depends(get_pipeline_engine),
) -> dict[str, Any]:
    """Submit a trigger event and run its build to completion.

    Args:
        request: Trigger event.
        engine: Pipeline engine.

    Returns:
        Build run result (succeeded with artifact, or failed with reason).

    Raises:
        HTTPException: 400 if the trigger is not a release tag push.
    """
    return _submit(engine, request.to_event())


@router.post("/push")
def push_webhook_endpoint(
    payload: dict[str, Any] = Body(...),
    engine: PipelineEngine = Depends(get_pipeline_engine),
) -> dict[str, Any]:
    """Handle a git-hosting push webhook.

    Only tag pushes are accepted; the payload's ``ref`` must be
    ``refs/tags/<tag>`` and ``after`` the pushed commit.
    """
    try:
        event = event_from_push_payload(payload)
    except InvalidTriggerError as e:
        raise _invalid_trigger(e) from None
    return _submit(engine, event)


@router.get("")
def list_runs_endpoint(
    status: str | None = Query(None, description="Filter by status"),
    ref: str | None = Query(None, description="Filter by release tag"),
    limit: int = Query(100, ge=1, le=1000, description="Maximum results"),
    db: Session = Depends(get_db),
) -> list[dict[str, Any]]:
    """List build runs, newest first."""
    status_filter: BuildStatus | None = None
    if status:
        try:
            status_filter = BuildStatus(status)
        except ValueError:
            raise HTTPException(
                status_code=http_status.HTTP_400_BAD_REQUEST,
                detail={
                    "code": "invalid_status",
                    "message": f"Invalid status: {status}. "
                    "Valid values: pending, running, succeeded, failed",
                },
            ) from None

    runs = list_runs(db, status=status_filter, ref=ref, limit=limit)
    return [r.to_dict() for r in runs]


@router.get("/stats")
def run_stats_endpoint(db: Session = Depends(get_db)) -> dict[str, Any]:
    """Get run counts by status and failed-run counts by error code."""
    return run_stats(db).to_dict()


@router.get("/{run_id}")
def get_run_endpoint(
    run_id: int,
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    """Get a build run by ID.

    Raises:
        HTTPException: If the run is not found.
    """
    try:
        return get_run(db, run_id).to_dict()
    except RunNotFoundError as e:
        raise HTTPException(
            status_code=http_status.HTTP_404_NOT_FOUND,
            detail={"code": e.code, "message": str(e)},
        ) from None
