"""Trigger event validation.

A trigger is accepted only for release tags (semantic-version tags such
as v1.2.3, v2.0.0-rc.1 or v1.0.0+build.5) and a hexadecimal commit hash.
Invalid triggers are rejected before any resource is used.
"""

from __future__ import annotations

import fnmatch
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from release_pipeline.errors import InvalidTriggerError
from release_pipeline.types import TriggerEvent

# Both patterns are applied with fullmatch
RELEASE_TAG_PATTERN = re.compile(
    r"v(0|[1-9]\d*)\.(0|[1-9]\d*)\.(0|[1-9]\d*)"
    r"(?:-([0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?"
    r"(?:\+([0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?"
)
COMMIT_HASH_PATTERN = re.compile(r"[0-9a-fA-F]{6,64}")

TAG_REF_PREFIX = "refs/tags/"


@dataclass(frozen=True)
class ReleaseVersion:
    """Parsed release tag."""

    major: int
    minor: int
    patch: int
    prerelease: str | None = None
    build: str | None = None

    def to_tag(self) -> str:
        tag = f"v{self.major}.{self.minor}.{self.patch}"
        if self.prerelease:
            tag += f"-{self.prerelease}"
        if self.build:
            tag += f"+{self.build}"
        return tag

    @property
    def is_prerelease(self) -> bool:
        return self.prerelease is not None


def parse_release_tag(tag: str) -> ReleaseVersion | None:
    """Parse a release tag, returning None if it is not one.

    Args:
        tag: Tag name, with or without the refs/tags/ prefix.
    """
    m = RELEASE_TAG_PATTERN.fullmatch(tag.removeprefix(TAG_REF_PREFIX))
    if m is None:
        return None
    return ReleaseVersion(
        major=int(m.group(1)),
        minor=int(m.group(2)),
        patch=int(m.group(3)),
        prerelease=m.group(4),
        build=m.group(5),
    )


def validate_trigger(
    event: TriggerEvent,
    tag_glob: str | None = None,
) -> ReleaseVersion:
    """Check that a trigger event may start a release build.

    Args:
        event: Trigger event.
        tag_glob: Optional glob the tag must also match (e.g. 'v*.*.*').

    Returns:
        The parsed release version.

    Raises:
        InvalidTriggerError: If the ref is not a release tag or the commit
            hash is malformed.
    """
    version = parse_release_tag(event.ref)
    if version is None:
        raise InvalidTriggerError(
            f"Ref {event.ref!r} is not a release tag (expected e.g. v1.2.3)",
            ref=event.ref,
        )
    tag = event.ref.removeprefix(TAG_REF_PREFIX)
    if tag_glob is not None and not fnmatch.fnmatchcase(tag, tag_glob):
        raise InvalidTriggerError(
            f"Ref {event.ref!r} does not match tag pattern {tag_glob!r}",
            ref=event.ref,
        )
    if not COMMIT_HASH_PATTERN.fullmatch(event.commit_hash):
        raise InvalidTriggerError(
            f"Commit hash {event.commit_hash!r} is not a hexadecimal hash",
            ref=event.ref,
        )
    return version


class TriggerEventSchema(BaseModel):
    """Schema for a trigger event submitted over HTTP or from a file."""

    model_config = ConfigDict(extra="forbid")

    ref: str = Field(description="Release tag, e.g. v1.2.3")
    commit_hash: str = Field(description="Commit to build")
    timestamp: datetime | None = Field(
        default=None, description="Push time (defaults to now)"
    )

    def to_event(self) -> TriggerEvent:
        """Convert to a TriggerEvent."""
        return TriggerEvent(
            ref=self.ref.removeprefix(TAG_REF_PREFIX),
            commit_hash=self.commit_hash,
            timestamp=self.timestamp or datetime.now(timezone.utc),
        )


def event_from_push_payload(payload: dict[str, Any]) -> TriggerEvent:
    """Build a trigger event from a git-hosting push webhook payload.

    Uses the payload's ``ref`` (refs/tags/<tag>) and ``after`` commit.

    Raises:
        InvalidTriggerError: If the push is not a tag push.
    """
    ref = payload.get("ref")
    commit_hash = payload.get("after")
    if not isinstance(ref, str) or not ref.startswith(TAG_REF_PREFIX):
        raise InvalidTriggerError(f"Push of {ref!r} is not a tag push", ref=ref)
    if not isinstance(commit_hash, str):
        raise InvalidTriggerError("Push payload has no commit", ref=ref)
    return TriggerEvent(
        ref=ref.removeprefix(TAG_REF_PREFIX),
        commit_hash=commit_hash,
        timestamp=datetime.now(timezone.utc),
    )


__all__ = [
    "COMMIT_HASH_PATTERN",
    "RELEASE_TAG_PATTERN",
    "ReleaseVersion",
    "TriggerEventSchema",
    "event_from_push_payload",
    "parse_release_tag",
    "validate_trigger",
]
