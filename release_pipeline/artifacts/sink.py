"""Artifact publication.

This module handles:
- Delegating durable storage to a backend with a put(name, data) -> url
  contract
- Exactly-once publication per (name, source_commit)
- Writing a release manifest next to each artifact

Publishing identical bytes twice returns the existing reference;
publishing different bytes under the same (name, source_commit) raises
DuplicatePublishError.
"""

from __future__ import annotations

import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path, PurePosixPath
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from release_pipeline.artifacts.manifest import (
    MANIFEST_SUFFIX,
    compute_sha256,
    generate_manifest,
    render_manifest,
)
from release_pipeline.artifacts.models import PublishedArtifact
from release_pipeline.db import get_session
from release_pipeline.errors import DuplicatePublishError
from release_pipeline.types import Artifact, ArtifactRef

logger = logging.getLogger(__name__)


class StorageBackend(ABC):
    """Durable storage for artifact bytes."""

    @abstractmethod
    def put(self, name: str, data: bytes) -> str:
        """Store data under name and return its URL."""


class LocalStorageBackend(StorageBackend):
    """Store artifacts as files under a root directory.

    Args:
        root: Root directory for stored files.
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def _resolve(self, name: str) -> Path:
        rel = PurePosixPath(name)
        if rel.is_absolute() or ".." in rel.parts or not rel.parts:
            raise ValueError(f"Invalid storage name: {name}")
        return self.root.joinpath(*rel.parts)

    def put(self, name: str, data: bytes) -> str:
        path = self._resolve(name)
        path.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

        logger.debug("Stored %s (%d bytes)", path, len(data))
        return path.resolve().as_uri()


def storage_name(artifact: Artifact, sha256: str) -> str:
    """Storage name of an artifact; unique per content."""
    return f"{artifact.source_commit}/{sha256[:16]}/{artifact.name}"


class ArtifactSink:
    """Durable, exactly-once publication target for artifacts.

    Args:
        backend: Storage backend receiving the bytes.
        session_factory: Session factory for publication records.
        write_manifests: Also store a JSON manifest next to each artifact.
    """

    def __init__(
        self,
        backend: StorageBackend,
        session_factory: sessionmaker[Session],
        write_manifests: bool = True,
    ) -> None:
        self.backend = backend
        self.session_factory = session_factory
        self.write_manifests = write_manifests
        self._lock = threading.Lock()

    def get(self, name: str, source_commit: str) -> ArtifactRef | None:
        """Return the published reference for (name, source_commit), if any."""
        with get_session(self.session_factory) as session:
            record = _find_published(session, name, source_commit)
            return record.to_ref() if record is not None else None

    def publish(
        self,
        artifact: Artifact,
        run_id: int | None = None,
        cache_key: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> ArtifactRef:
        """Publish an artifact.

        Args:
            artifact: Artifact to publish.
            run_id: Optional build run ID recorded in the manifest.
            cache_key: Optional cache key recorded in the manifest.
            metadata: Optional extra fields recorded in the manifest.

        Returns:
            ArtifactRef of the (new or existing) publication.

        Raises:
            DuplicatePublishError: If different bytes are already published
                under the same (name, source_commit).
        """
        sha256 = compute_sha256(artifact.data)

        with self._lock:
            try:
                return self._publish_locked(
                    artifact, sha256, run_id, cache_key, metadata
                )
            except IntegrityError:
                # Another process committed the same (name, source_commit) first
                logger.debug("Concurrent publish of %s, re-checking", artifact.name)
                existing = self.get(artifact.name, artifact.source_commit)
                if existing is None:
                    raise
                return self._existing_or_raise(artifact, existing, sha256)

    def _publish_locked(
        self,
        artifact: Artifact,
        sha256: str,
        run_id: int | None,
        cache_key: str | None,
        metadata: dict[str, Any] | None,
    ) -> ArtifactRef:
        with get_session(self.session_factory) as session:
            record = _find_published(session, artifact.name, artifact.source_commit)
            if record is not None:
                return self._existing_or_raise(artifact, record.to_ref(), sha256)

            name = storage_name(artifact, sha256)
            url = self.backend.put(name, artifact.data)

            record = PublishedArtifact(
                name=artifact.name,
                source_commit=artifact.source_commit,
                release=artifact.release,
                url=url,
                sha256=sha256,
                size_bytes=len(artifact.data),
            )
            session.add(record)
            session.flush()
            ref = record.to_ref()

            if self.write_manifests:
                manifest = generate_manifest(
                    ref, run_id=run_id, cache_key=cache_key, extra_metadata=metadata
                )
                self.backend.put(name + MANIFEST_SUFFIX, render_manifest(manifest))

        logger.info("Published %s for %s at %s", ref.name, ref.release, ref.url)
        return ref

    def _existing_or_raise(
        self, artifact: Artifact, existing: ArtifactRef, sha256: str
    ) -> ArtifactRef:
        if existing.sha256 != sha256:
            raise DuplicatePublishError(artifact.name, artifact.source_commit)
        logger.info(
            "Artifact %s for %s already published, reusing",
            artifact.name,
            artifact.source_commit[:12],
        )
        return existing


def _find_published(
    session: Session, name: str, source_commit: str
) -> PublishedArtifact | None:
    stmt = select(PublishedArtifact).where(
        PublishedArtifact.name == name,
        PublishedArtifact.source_commit == source_commit,
    )
    return session.execute(stmt).scalar_one_or_none()


def list_published(
    session: Session,
    release: str | None = None,
    limit: int = 100,
) -> list[PublishedArtifact]:
    """List published artifacts, newest first.

    Args:
        session: Database session.
        release: Filter by release tag.
        limit: Maximum results to return.

    Returns:
        List of PublishedArtifact instances.
    """
    stmt = select(PublishedArtifact)
    if release is not None:
        stmt = stmt.where(PublishedArtifact.release == release)
    stmt = stmt.order_by(PublishedArtifact.id.desc()).limit(limit)
    return list(session.execute(stmt).scalars().all())


__all__ = [
    "ArtifactSink",
    "LocalStorageBackend",
    "StorageBackend",
    "list_published",
    "storage_name",
]
