"""Published artifact ORM model.

One row per (name, source_commit); the unique constraint is what makes
publication exactly-once across processes.
"""

from dataclasses import asdict
from datetime import datetime
from typing import Any

from sqlalchemy import BigInteger, DateTime, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from release_pipeline.db import Base
from release_pipeline.types import ArtifactRef


class PublishedArtifact(Base):
    """ORM model for published artifacts.

    Attributes:
        id: Primary key.
        name: Artifact name.
        source_commit: Commit the artifact was built from.
        release: Release tag it was first published under.
        url: Location returned by the storage backend.
        sha256: SHA-256 of the artifact bytes.
        size_bytes: Artifact size.
        published_at: Publication time.
    """

    __tablename__ = "published_artifacts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    source_commit: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    release: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    url: Mapped[str] = mapped_column(String(1000), nullable=False)
    sha256: Mapped[str] = mapped_column(String(64), nullable=False)
    size_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False)
    published_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("name", "source_commit", name="uq_artifact_name_commit"),
    )

    def __repr__(self) -> str:
        """Return string representation of PublishedArtifact."""
        return (
            f"<PublishedArtifact(id={self.id}, name='{self.name}', "
            f"commit='{self.source_commit[:12]}', size={self.size_bytes})>"
        )

    def to_ref(self) -> ArtifactRef:
        """Convert to an ArtifactRef."""
        return ArtifactRef(
            name=self.name,
            source_commit=self.source_commit,
            release=self.release,
            url=self.url,
            sha256=self.sha256,
            size_bytes=self.size_bytes,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dictionary."""
        data: dict[str, Any] = {"id": self.id, **asdict(self.to_ref())}
        data["published_at"] = (
            self.published_at.isoformat() if self.published_at else None
        )
        return data


__all__ = ["PublishedArtifact"]
