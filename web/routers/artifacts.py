"""Published artifact endpoints.

- GET /artifacts - List published artifacts
"""

from typing import Any

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from release_pipeline.artifacts.sink import list_published
from web.deps import get_db

router = APIRouter()


@router.get("")
def list_artifacts_endpoint(
    release: str | None = Query(None, description="Filter by release tag"),
    limit: int = Query(100, ge=1, le=1000, description="Maximum results"),
    db: Session = Depends(get_db),
) -> list[dict[str, Any]]:
    """List published artifacts, newest first."""
    return [a.to_dict() for a in list_published(db, release=release, limit=limit)]
