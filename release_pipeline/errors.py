"""Error definitions for release_pipeline.

Every error carries a stable ``code`` for programmatic handling, and a
``reason`` naming the category it is reported under when it ends a run.
"""

from __future__ import annotations

from release_pipeline.types import FailureReason

# Error code constants
INVALID_TRIGGER = "invalid_trigger"
BUILD_DEFINITION_ERROR = "build_definition_error"
PROVISIONING_FAILED = "provisioning_failed"
CACHE_KEY_COLLISION = "cache_key_collision"
BUILD_COMMAND_FAILED = "build_command_failed"
BUILD_TIMEOUT = "build_timeout"
BUILD_CANCELLED = "build_cancelled"
DUPLICATE_PUBLISH = "duplicate_publish"
INVALID_TRANSITION = "invalid_transition"
RUN_NOT_FOUND = "run_not_found"
INTERNAL_ERROR = "internal_error"


class PipelineError(Exception):
    """Base error for pipeline operations."""

    reason: FailureReason = FailureReason.INTERNAL_ERROR

    def __init__(self, message: str, code: str = INTERNAL_ERROR) -> None:
        super().__init__(message)
        self.code = code


class InvalidTriggerError(PipelineError):
    """Raised when a trigger event is not a release tag push."""

    reason = FailureReason.INVALID_TRIGGER

    def __init__(self, message: str, ref: str | None = None) -> None:
        super().__init__(message, code=INVALID_TRIGGER)
        self.ref = ref


class BuildDefinitionError(PipelineError):
    """Raised when build-definition inputs cannot be read."""

    reason = FailureReason.BUILD_DEFINITION_ERROR

    def __init__(self, message: str) -> None:
        super().__init__(message, code=BUILD_DEFINITION_ERROR)


class ProvisioningFailedError(PipelineError):
    """Raised when an isolated environment could not be created.

    Infrastructure-level; callers may retry with backoff.
    """

    reason = FailureReason.PROVISIONING_FAILED

    def __init__(self, message: str, exit_code: int | None = None) -> None:
        super().__init__(message, code=PROVISIONING_FAILED)
        self.exit_code = exit_code


class CacheKeyCollisionError(PipelineError):
    """Raised when a cache key is stored twice with different content."""

    reason = FailureReason.CACHE_KEY_COLLISION

    def __init__(self, cache_key: str) -> None:
        super().__init__(
            f"Cache key collision: {cache_key} already holds different content",
            code=CACHE_KEY_COLLISION,
        )
        self.cache_key = cache_key


class BuildCommandFailedError(PipelineError):
    """Raised when the build command fails. Never retried automatically."""

    reason = FailureReason.BUILD_COMMAND_FAILED

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        output_tail: str = "",
        code: str = BUILD_COMMAND_FAILED,
    ) -> None:
        super().__init__(message, code=code)
        self.exit_code = exit_code
        self.output_tail = output_tail

    @property
    def diagnostic(self) -> str:
        """Error message followed by the captured output tail."""
        if not self.output_tail:
            return str(self)
        return f"{self}\n--- output tail ---\n{self.output_tail}"


class BuildTimeoutError(BuildCommandFailedError):
    """Raised when the build exceeds its wall-clock bound."""

    def __init__(self, timeout: float, output_tail: str = "") -> None:
        super().__init__(
            f"Build timed out after {timeout:g} seconds",
            exit_code=-1,
            output_tail=output_tail,
            code=BUILD_TIMEOUT,
        )
        self.timeout = timeout


class BuildCancelledError(BuildCommandFailedError):
    """Raised when a build is cancelled through its cancellation token."""

    def __init__(self, output_tail: str = "") -> None:
        super().__init__(
            "Build cancelled",
            exit_code=-1,
            output_tail=output_tail,
            code=BUILD_CANCELLED,
        )


class DuplicatePublishError(PipelineError):
    """Raised when an artifact would be overwritten with different bytes."""

    reason = FailureReason.DUPLICATE_PUBLISH

    def __init__(self, name: str, source_commit: str) -> None:
        super().__init__(
            f"Artifact {name} for commit {source_commit} is already published "
            "with different content",
            code=DUPLICATE_PUBLISH,
        )
        self.name = name
        self.source_commit = source_commit


class InvalidTransitionError(PipelineError):
    """Raised on an illegal build run status transition."""

    def __init__(self, run_id: int | None, current: str, target: str) -> None:
        super().__init__(
            f"Build run {run_id} cannot move from {current} to {target}",
            code=INVALID_TRANSITION,
        )
        self.run_id = run_id
        self.current = current
        self.target = target


class RunNotFoundError(PipelineError):
    """Raised when a build run is not found."""

    def __init__(self, run_id: int) -> None:
        super().__init__(f"Build run not found: {run_id}", code=RUN_NOT_FOUND)
        self.run_id = run_id


__all__ = [
    "BUILD_CANCELLED",
    "BUILD_COMMAND_FAILED",
    "BUILD_DEFINITION_ERROR",
    "BUILD_TIMEOUT",
    "CACHE_KEY_COLLISION",
    "DUPLICATE_PUBLISH",
    "INTERNAL_ERROR",
    "INVALID_TRANSITION",
    "INVALID_TRIGGER",
    "PROVISIONING_FAILED",
    "RUN_NOT_FOUND",
    "BuildCancelledError",
    "BuildCommandFailedError",
    "BuildDefinitionError",
    "BuildTimeoutError",
    "CacheKeyCollisionError",
    "DuplicatePublishError",
    "InvalidTransitionError",
    "InvalidTriggerError",
    "PipelineError",
    "ProvisioningFailedError",
    "RunNotFoundError",
]
