"""Source checkout into a build workspace.

Source control is an external collaborator that supplies immutable commit
references; these adapters only materialize one commit's tree into the
isolated workspace.
"""

from __future__ import annotations

import io
import logging
import shutil
import subprocess
import tarfile
from abc import ABC, abstractmethod
from pathlib import Path

from release_pipeline.errors import ProvisioningFailedError

logger = logging.getLogger(__name__)


class SourceCheckout(ABC):
    """Materializes the source tree of a commit."""

    @abstractmethod
    def checkout(self, commit_hash: str, dest: Path) -> None:
        """Write the tree of commit_hash into dest.

        Raises:
            ProvisioningFailedError: If the source cannot be obtained.
        """


class GitArchiveCheckout(SourceCheckout):
    """Export a commit from a local git repository with `git archive`.

    Args:
        repo_dir: Path to the git repository (working copy or bare).
        timeout: Timeout for the git command in seconds.
    """

    def __init__(self, repo_dir: Path, timeout: int = 600) -> None:
        self.repo_dir = Path(repo_dir)
        self.timeout = timeout

    def checkout(self, commit_hash: str, dest: Path) -> None:
        cmd = ["git", "-C", str(self.repo_dir), "archive", "--format=tar", commit_hash]
        logger.info("Checking out %s from %s", commit_hash[:12], self.repo_dir)

        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                timeout=self.timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            raise ProvisioningFailedError(
                f"git archive timed out after {self.timeout}s"
            ) from e
        except OSError as e:
            raise ProvisioningFailedError(f"Failed to run git archive: {e}") from e

        if result.returncode != 0:
            stderr = result.stderr.decode("utf-8", errors="replace").strip()
            raise ProvisioningFailedError(
                f"git archive failed for {commit_hash}: {stderr}",
                exit_code=result.returncode,
            )

        try:
            with tarfile.open(fileobj=io.BytesIO(result.stdout), mode="r:") as tar:
                tar.extractall(dest, filter="data")
        except tarfile.TarError as e:
            raise ProvisioningFailedError(
                f"Failed to extract source of {commit_hash}: {e}"
            ) from e


class DirectoryCheckout(SourceCheckout):
    """Copy a prepared source directory (already at the requested commit).

    Args:
        source_dir: Directory holding the source tree.
    """

    def __init__(self, source_dir: Path) -> None:
        self.source_dir = Path(source_dir)

    def checkout(self, commit_hash: str, dest: Path) -> None:
        if not self.source_dir.is_dir():
            raise ProvisioningFailedError(
                f"Source directory not found: {self.source_dir}"
            )

        logger.info("Copying source for %s from %s", commit_hash[:12], self.source_dir)
        try:
            shutil.copytree(
                self.source_dir,
                dest,
                dirs_exist_ok=True,
                ignore=shutil.ignore_patterns(".git"),
            )
        except OSError as e:
            raise ProvisioningFailedError(
                f"Failed to copy source directory {self.source_dir}: {e}"
            ) from e


__all__ = ["DirectoryCheckout", "GitArchiveCheckout", "SourceCheckout"]
