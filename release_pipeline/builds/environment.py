"""Isolated build environments and environment snapshots.

This module handles:
- Creating a disposable environment directory per build, torn down on
  every exit path
- Packing a provisioned environment into a deterministic snapshot
- Materializing a cached snapshot into a fresh environment
"""

from __future__ import annotations

import gzip
import io
import logging
import shutil
import tarfile
import tempfile
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from release_pipeline.errors import ProvisioningFailedError

logger = logging.getLogger(__name__)

ENV_DIRNAME = "env"
WORKSPACE_DIRNAME = "workspace"
LOG_FILENAME = "build.log"


@dataclass(frozen=True)
class IsolatedEnvironment:
    """Directories of one disposable build environment.

    Attributes:
        root: Top-level directory, removed on teardown.
        env_dir: Provisioned environment (the cacheable layer).
        workspace: Source checkout and build working directory.
        log_path: Build output log.
    """

    root: Path
    env_dir: Path
    workspace: Path
    log_path: Path


@contextmanager
def isolated_environment(
    parent: Path | None = None,
) -> Iterator[IsolatedEnvironment]:
    """Create a fresh environment and remove it when the block exits.

    Every call yields a new, empty directory tree, so no state leaks
    between builds.

    Args:
        parent: Directory to create the environment in (system temp if None).

    Yields:
        IsolatedEnvironment for the duration of the block.

    Raises:
        ProvisioningFailedError: If the environment cannot be created.
    """
    try:
        if parent is not None:
            parent.mkdir(parents=True, exist_ok=True)
        root = Path(
            tempfile.mkdtemp(prefix=f"relpipe_{uuid.uuid4().hex[:8]}_", dir=parent)
        )
    except OSError as e:
        raise ProvisioningFailedError(
            f"Failed to create isolated environment: {e}"
        ) from e

    env = IsolatedEnvironment(
        root=root,
        env_dir=root / ENV_DIRNAME,
        workspace=root / WORKSPACE_DIRNAME,
        log_path=root / LOG_FILENAME,
    )
    try:
        env.env_dir.mkdir()
        env.workspace.mkdir()
        logger.debug("Created isolated environment %s", root)
        yield env
    finally:
        shutil.rmtree(root, ignore_errors=True)
        logger.debug("Removed isolated environment %s", root)


def _normalize_tarinfo(info: tarfile.TarInfo) -> tarfile.TarInfo:
    info.mtime = 0
    info.uid = 0
    info.gid = 0
    info.uname = ""
    info.gname = ""
    return info


def snapshot_environment(env_dir: Path) -> bytes:
    """Pack an environment directory into a deterministic tar.gz.

    Entries are added in sorted order with zeroed timestamps and owners,
    so identical trees produce identical bytes. Symlinks pointing outside
    the tree are skipped.

    Args:
        env_dir: Directory to pack.

    Returns:
        Compressed snapshot bytes.
    """
    env_resolved = env_dir.resolve()
    raw = io.BytesIO()

    with gzip.GzipFile(fileobj=raw, mode="wb", mtime=0) as gz:
        with tarfile.open(fileobj=gz, mode="w", format=tarfile.PAX_FORMAT) as tar:
            for path in sorted(env_dir.rglob("*")):
                rel_path = path.relative_to(env_dir).as_posix()

                if path.is_symlink():
                    target = path.resolve()
                    try:
                        target.relative_to(env_resolved)
                    except ValueError:
                        logger.warning(
                            "Skipping symlink %s pointing outside environment",
                            rel_path,
                        )
                        continue

                tar.add(
                    path,
                    arcname=rel_path,
                    recursive=False,
                    filter=_normalize_tarinfo,
                )

    return raw.getvalue()


def materialize_snapshot(blob: bytes, dest_dir: Path) -> None:
    """Unpack a snapshot into an environment directory.

    Args:
        blob: Snapshot bytes produced by snapshot_environment().
        dest_dir: Empty environment directory.

    Raises:
        ProvisioningFailedError: If the snapshot is unreadable or unsafe.
    """
    dest_dir.mkdir(parents=True, exist_ok=True)

    try:
        with tarfile.open(fileobj=io.BytesIO(blob), mode="r:gz") as tar:
            for member in tar.getmembers():
                member_path = Path(member.name)
                if member_path.is_absolute() or ".." in member_path.parts:
                    raise ProvisioningFailedError(
                        f"Refusing to extract {member.name}: path traversal detected"
                    )
            tar.extractall(dest_dir, filter="data")
    except (tarfile.TarError, OSError, EOFError) as e:
        raise ProvisioningFailedError(
            f"Failed to materialize cached environment: {e}"
        ) from e

    logger.debug("Materialized cached environment into %s", dest_dir)


__all__ = [
    "ENV_DIRNAME",
    "LOG_FILENAME",
    "WORKSPACE_DIRNAME",
    "IsolatedEnvironment",
    "isolated_environment",
    "materialize_snapshot",
    "snapshot_environment",
]
