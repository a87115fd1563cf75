"""Artifact publication module.

This module handles:
- Storage backends (put(name, data) -> url)
- Exactly-once publication records
- Release manifests
"""

from release_pipeline.artifacts.models import PublishedArtifact

__all__ = ["PublishedArtifact"]
