"""Shared type definitions for release_pipeline.

This module contains dataclasses and enums shared across subpackages
to avoid circular imports.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class BuildStatus(str, Enum):
    """Status of a build run."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class CacheStatus(str, Enum):
    """Whether a run found a cached build environment."""

    HIT = "hit"
    MISS = "miss"


class FailureReason(str, Enum):
    """Reporting category of a failed run."""

    INVALID_TRIGGER = "invalid_trigger"
    BUILD_DEFINITION_ERROR = "build_definition_error"
    PROVISIONING_FAILED = "provisioning_failed"
    CACHE_KEY_COLLISION = "cache_key_collision"
    BUILD_COMMAND_FAILED = "build_command_failed"
    DUPLICATE_PUBLISH = "duplicate_publish"
    INTERNAL_ERROR = "internal_error"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class TriggerEvent:
    """A version-tag push delivered by the source-control collaborator."""

    ref: str
    commit_hash: str
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True)
class CacheEntry:
    """An immutable build-environment snapshot stored under a cache key."""

    key: str
    blob: bytes
    created_at: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True)
class Artifact:
    """Bytes produced by a successful build."""

    name: str
    data: bytes
    source_commit: str
    release: str = ""


@dataclass(frozen=True)
class ArtifactRef:
    """Reference to a published artifact."""

    name: str
    source_commit: str
    release: str
    url: str
    sha256: str
    size_bytes: int


@dataclass
class BuildRunResult:
    """Terminal outcome of one submit() call.

    Either succeeded with an artifact reference, or failed with a reason
    and a human-readable diagnostic. ``error_code`` keeps the distinct
    error code (e.g. ``build_timeout``) when the reason groups several.
    """

    run_id: int | None
    status: BuildStatus
    cache_key: str | None = None
    cache_status: CacheStatus | None = None
    artifact_ref: ArtifactRef | None = None
    reason: FailureReason | None = None
    error_code: str | None = None
    diagnostic: str | None = None

    @property
    def succeeded(self) -> bool:
        """Check if the run succeeded."""
        return self.status == BuildStatus.SUCCEEDED

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dictionary."""
        return {
            "run_id": self.run_id,
            "status": self.status.value,
            "cache_key": self.cache_key,
            "cache_status": self.cache_status.value if self.cache_status else None,
            "artifact": asdict(self.artifact_ref) if self.artifact_ref else None,
            "reason": self.reason.value if self.reason else None,
            "error_code": self.error_code,
            "diagnostic": self.diagnostic,
        }

    @classmethod
    def success(
        cls,
        run_id: int,
        artifact_ref: ArtifactRef,
        cache_key: str,
        cache_status: CacheStatus,
    ) -> "BuildRunResult":
        """Build a Succeeded result."""
        return cls(
            run_id=run_id,
            status=BuildStatus.SUCCEEDED,
            cache_key=cache_key,
            cache_status=cache_status,
            artifact_ref=artifact_ref,
        )

    @classmethod
    def failure(
        cls,
        run_id: int | None,
        reason: FailureReason,
        diagnostic: str,
        error_code: str | None = None,
        cache_key: str | None = None,
        cache_status: CacheStatus | None = None,
    ) -> "BuildRunResult":
        """Build a Failed result."""
        return cls(
            run_id=run_id,
            status=BuildStatus.FAILED,
            cache_key=cache_key,
            cache_status=cache_status,
            reason=reason,
            error_code=error_code or reason.value,
            diagnostic=diagnostic,
        )


__all__ = [
    "Artifact",
    "ArtifactRef",
    "BuildRunResult",
    "BuildStatus",
    "CacheEntry",
    "CacheStatus",
    "FailureReason",
    "TriggerEvent",
]
