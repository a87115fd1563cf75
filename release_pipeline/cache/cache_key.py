"""Cache key computation for build environments.

This module handles:
- Digesting the build-definition files (e.g. a Dockerfile)
- Canonical input snapshot creation from a pipeline definition
- Deterministic hash computation over normalized inputs

Identical build-definition content always produces an identical key, so a
key can address an environment snapshot in the cache.
"""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

from release_pipeline.errors import BuildDefinitionError

if TYPE_CHECKING:
    from release_pipeline.pipeline.definition import PipelineDefinition

logger = logging.getLogger(__name__)

# Schema version for cache key format; bump when cache key format changes
CACHE_KEY_SCHEMA_VERSION = "1"

HASH_CHUNK_SIZE = 64 * 1024


@dataclass
class BuildDefinitionInputs:
    """Canonical representation of everything that shapes the environment.

    Attributes:
        schema_version: Version of cache key schema.
        namespace: Cache namespace (e.g. 'docker-centos7').
        file_digests: SHA-256 of each build-definition file, by relative path.
        build_options: Options that change the provisioned environment.
    """

    schema_version: str = CACHE_KEY_SCHEMA_VERSION
    namespace: str = ""
    file_digests: dict[str, str] = field(default_factory=dict)
    build_options: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return asdict(self)


def digest_file(path: Path, chunk_size: int = HASH_CHUNK_SIZE) -> str:
    """Compute the SHA-256 hex digest of a file's content.

    Args:
        path: File to digest.
        chunk_size: Size of chunks for streaming hash.

    Returns:
        SHA-256 hex digest.
    """
    sha256 = hashlib.sha256()
    with path.open("rb") as f:
        while chunk := f.read(chunk_size):
            sha256.update(chunk)
    return sha256.hexdigest()


def collect_file_digests(root: Path, paths: list[str]) -> dict[str, str]:
    """Digest each build-definition file under a root directory.

    Args:
        root: Directory the paths are relative to.
        paths: Relative paths of build-definition files.

    Returns:
        Mapping of normalized relative path to content digest.

    Raises:
        BuildDefinitionError: If a file is missing, unreadable, or escapes root.
    """
    root_resolved = root.resolve()
    digests: dict[str, str] = {}

    for rel in paths:
        path = (root / rel).resolve()
        try:
            normalized = path.relative_to(root_resolved).as_posix()
        except ValueError:
            raise BuildDefinitionError(
                f"Build definition file {rel} is outside {root}"
            ) from None

        if not path.is_file():
            raise BuildDefinitionError(f"Build definition file not found: {rel}")

        try:
            digests[normalized] = digest_file(path)
        except OSError as e:
            raise BuildDefinitionError(
                f"Failed to read build definition file {rel}: {e}"
            ) from e

    return dict(sorted(digests.items()))


def compute_cache_key(inputs: BuildDefinitionInputs) -> str:
    """Compute a cache key from build-definition inputs.

    The cache key is a SHA-256 hash of the canonical JSON representation
    of the inputs.

    Args:
        inputs: BuildDefinitionInputs instance.

    Returns:
        Cache key as hex string (sha256:...).
    """
    canonical_json = json.dumps(
        inputs.to_dict(),
        sort_keys=True,
        separators=(",", ":"),
    )
    hash_hex = hashlib.sha256(canonical_json.encode("utf-8")).hexdigest()
    return f"sha256:{hash_hex}"


def create_build_inputs(
    definition: PipelineDefinition,
    root: Path,
) -> BuildDefinitionInputs:
    """Create canonical inputs from a pipeline definition.

    Only the fields that shape the provisioned environment are included;
    the build command and artifact location do not affect the cache.

    Args:
        definition: Pipeline definition.
        root: Directory the build-definition paths are relative to.

    Returns:
        BuildDefinitionInputs instance.
    """
    return BuildDefinitionInputs(
        schema_version=CACHE_KEY_SCHEMA_VERSION,
        namespace=definition.cache_namespace,
        file_digests=collect_file_digests(root, definition.build_definition),
        build_options={"provision_command": list(definition.provision_command)},
    )


def compute_cache_key_from_definition(
    definition: PipelineDefinition,
    root: Path,
) -> tuple[str, BuildDefinitionInputs]:
    """Convenience function to compute a cache key directly from a definition.

    Args:
        definition: Pipeline definition.
        root: Directory the build-definition paths are relative to.

    Returns:
        Tuple of (cache_key, BuildDefinitionInputs).
    """
    inputs = create_build_inputs(definition, root)
    cache_key = compute_cache_key(inputs)
    logger.debug(
        "Computed cache key %s for namespace %s", cache_key[:23], inputs.namespace
    )
    return cache_key, inputs


__all__ = [
    "CACHE_KEY_SCHEMA_VERSION",
    "HASH_CHUNK_SIZE",
    "BuildDefinitionInputs",
    "collect_file_digests",
    "compute_cache_key",
    "compute_cache_key_from_definition",
    "create_build_inputs",
    "digest_file",
]
