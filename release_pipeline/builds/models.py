"""Build run ORM model.

A BuildRun records one accepted trigger event and walks the state machine
pending -> running -> succeeded | failed. Each status is entered at most
once and a terminal run is never re-entered.
"""

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import DateTime, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from release_pipeline.db import Base
from release_pipeline.errors import InvalidTransitionError
from release_pipeline.types import BuildStatus

# Allowed status transitions
_TRANSITIONS: dict[str, set[str]] = {
    BuildStatus.PENDING.value: {BuildStatus.RUNNING.value},
    BuildStatus.RUNNING.value: {
        BuildStatus.SUCCEEDED.value,
        BuildStatus.FAILED.value,
    },
    BuildStatus.SUCCEEDED.value: set(),
    BuildStatus.FAILED.value: set(),
}


class BuildRun(Base):
    """ORM model for build runs.

    Attributes:
        id: Primary key.
        ref: Release tag that triggered the run.
        commit_hash: Commit being built.
        triggered_at: Timestamp carried by the trigger event.
        status: Run status (pending, running, succeeded, failed).
        cache_key: Build-environment cache key.
        cache_status: Whether the environment came from the cache (hit, miss).
        provision_attempts: Provisioning attempts made for this run.
        requested_at: When the run was accepted.
        started_at: When the run started executing.
        finished_at: When the run reached a terminal status.
        artifact_name: Published artifact name.
        artifact_url: Published artifact location.
        artifact_sha256: SHA-256 of the published artifact.
        error_type: Error code if the run failed.
        error_message: Human-readable diagnostic if the run failed.
    """

    __tablename__ = "build_runs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Trigger
    ref: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    commit_hash: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    triggered_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    # Status and timing
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=BuildStatus.PENDING.value, index=True
    )
    requested_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now()
    )
    started_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    # Cache
    cache_key: Mapped[str | None] = mapped_column(
        String(128), nullable=True, index=True
    )
    cache_status: Mapped[str | None] = mapped_column(String(10), nullable=True)
    provision_attempts: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )

    # Published artifact
    artifact_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    artifact_url: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    artifact_sha256: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # Error tracking
    error_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (Index("ix_build_runs_ref_status", "ref", "status"),)

    def __repr__(self) -> str:
        """Return string representation of BuildRun."""
        return (
            f"<BuildRun(id={self.id}, ref='{self.ref}', "
            f"status='{self.status}', cache_key='{(self.cache_key or '')[:16]}...')>"
        )

    def _transition(self, target: BuildStatus) -> None:
        if target.value not in _TRANSITIONS.get(self.status, set()):
            raise InvalidTransitionError(self.id, self.status, target.value)
        self.status = target.value

    def mark_running(self) -> None:
        """Mark this run as running."""
        self._transition(BuildStatus.RUNNING)
        self.started_at = datetime.now(timezone.utc)

    def mark_succeeded(
        self, artifact_name: str, artifact_url: str, artifact_sha256: str
    ) -> None:
        """Mark this run as succeeded with its published artifact."""
        self._transition(BuildStatus.SUCCEEDED)
        self.finished_at = datetime.now(timezone.utc)
        self.artifact_name = artifact_name
        self.artifact_url = artifact_url
        self.artifact_sha256 = artifact_sha256

    def mark_failed(
        self, error_type: str | None = None, message: str | None = None
    ) -> None:
        """Mark this run as failed.

        Args:
            error_type: Error code.
            message: Diagnostic details.
        """
        self._transition(BuildStatus.FAILED)
        self.finished_at = datetime.now(timezone.utc)
        if error_type:
            self.error_type = error_type
        if message:
            self.error_message = message

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dictionary."""
        return {
            "id": self.id,
            "ref": self.ref,
            "commit_hash": self.commit_hash,
            "status": self.status,
            "cache_key": self.cache_key,
            "cache_status": self.cache_status,
            "provision_attempts": self.provision_attempts,
            "requested_at": _isoformat(self.requested_at),
            "started_at": _isoformat(self.started_at),
            "finished_at": _isoformat(self.finished_at),
            "artifact_name": self.artifact_name,
            "artifact_url": self.artifact_url,
            "artifact_sha256": self.artifact_sha256,
            "error_type": self.error_type,
            "error_message": self.error_message,
        }


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


__all__ = ["BuildRun"]
