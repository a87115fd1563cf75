"""Artifact checksums and release manifests.

A manifest is written next to every published artifact, recording what
was built, from which commit, and with which build environment.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any

from release_pipeline.types import ArtifactRef

MANIFEST_VERSION = "1.0"
MANIFEST_SUFFIX = ".manifest.json"


def compute_sha256(data: bytes) -> str:
    """Compute the SHA-256 hex digest of artifact bytes."""
    return hashlib.sha256(data).hexdigest()


def generate_manifest(
    ref: ArtifactRef,
    run_id: int | None = None,
    cache_key: str | None = None,
    extra_metadata: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Generate a release manifest for a published artifact.

    Args:
        ref: Reference of the published artifact.
        run_id: Optional build run ID.
        cache_key: Optional build-environment cache key.
        extra_metadata: Optional additional metadata.

    Returns:
        Manifest dictionary suitable for JSON serialization.
    """
    manifest: dict[str, Any] = {
        "version": MANIFEST_VERSION,
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "artifact": asdict(ref),
    }
    if run_id is not None:
        manifest["run_id"] = run_id
    if cache_key:
        manifest["cache_key"] = cache_key
    if extra_metadata:
        manifest["metadata"] = extra_metadata
    return manifest


def render_manifest(manifest: dict[str, Any]) -> bytes:
    """Serialize a manifest to JSON bytes."""
    return json.dumps(manifest, indent=2, sort_keys=True).encode("utf-8")


__all__ = [
    "MANIFEST_SUFFIX",
    "MANIFEST_VERSION",
    "compute_sha256",
    "generate_manifest",
    "render_manifest",
]
