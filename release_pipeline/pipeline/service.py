"""Build run queries.

Read-only access to BuildRun records for the CLI and HTTP API:
- get_run() / get_run_or_none()
- list_runs() with status and ref filters
- run_stats(): counts by status and by error code
"""

from __future__ import annotations

from dataclasses import dataclass, field

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from release_pipeline.builds.models import BuildRun
from release_pipeline.errors import RunNotFoundError
from release_pipeline.types import BuildStatus


@dataclass
class RunStats:
    """Aggregate counts over all build runs.

    Attributes:
        total: Number of runs.
        by_status: Run count per status.
        by_error: Failed run count per error code.
    """

    total: int = 0
    by_status: dict[str, int] = field(default_factory=dict)
    by_error: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, object]:
        return {
            "total": self.total,
            "by_status": dict(self.by_status),
            "by_error": dict(self.by_error),
        }


def get_run(session: Session, run_id: int) -> BuildRun:
    """Get a build run by ID.

    Args:
        session: Database session.
        run_id: Build run ID.

    Returns:
        BuildRun instance.

    Raises:
        RunNotFoundError: If the run does not exist.
    """
    run = session.get(BuildRun, run_id)
    if run is None:
        raise RunNotFoundError(run_id)
    return run


def get_run_or_none(session: Session, run_id: int) -> BuildRun | None:
    """Get a build run by ID, or None if not found."""
    return session.get(BuildRun, run_id)


def list_runs(
    session: Session,
    status: BuildStatus | None = None,
    ref: str | None = None,
    limit: int = 100,
) -> list[BuildRun]:
    """List build runs, newest first.

    Args:
        session: Database session.
        status: Filter by status.
        ref: Filter by release tag.
        limit: Maximum results to return.

    Returns:
        List of BuildRun instances.
    """
    stmt = select(BuildRun)

    if status is not None:
        stmt = stmt.where(BuildRun.status == status.value)
    if ref is not None:
        stmt = stmt.where(BuildRun.ref == ref)

    stmt = stmt.order_by(BuildRun.id.desc()).limit(limit)

    return list(session.execute(stmt).scalars().all())


def run_stats(session: Session) -> RunStats:
    """Count build runs by status and failed runs by error code."""
    stats = RunStats()

    status_rows = session.execute(
        select(BuildRun.status, func.count()).group_by(BuildRun.status)
    ).all()
    for status, count in status_rows:
        stats.by_status[status] = count
        stats.total += count

    error_rows = session.execute(
        select(BuildRun.error_type, func.count())
        .where(BuildRun.status == BuildStatus.FAILED.value)
        .group_by(BuildRun.error_type)
    ).all()
    for error_type, count in error_rows:
        stats.by_error[error_type or "unknown"] = count

    return stats


__all__ = [
    "RunStats",
    "get_run",
    "get_run_or_none",
    "list_runs",
    "run_stats",
]
