"""Build executor for running one release build in isolation.

This module handles:
- Provisioning an environment, or materializing it from a cache entry
- Checking out the commit into a fresh workspace
- Executing the build command with stdout/stderr captured to a log file
- Enforcing the build timeout and honoring a cancellation token
- Collecting the artifact bytes, or a structured failure

The environment is torn down on every exit path.
"""

from __future__ import annotations

import logging
import os
import shlex
import signal
import subprocess
import tempfile
import threading
import time
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from release_pipeline.builds.checkout import SourceCheckout
from release_pipeline.builds.environment import (
    IsolatedEnvironment,
    isolated_environment,
    materialize_snapshot,
    snapshot_environment,
)
from release_pipeline.errors import (
    BuildCancelledError,
    BuildCommandFailedError,
    BuildTimeoutError,
    ProvisioningFailedError,
)
from release_pipeline.types import Artifact, CacheEntry, CacheStatus

logger = logging.getLogger(__name__)

# Poll interval while waiting on provisioning and build commands (seconds)
POLL_INTERVAL = 0.1


@dataclass
class BuildOutcome:
    """Result of a successful build execution.

    Attributes:
        artifact: The produced artifact.
        cache_status: Whether the environment came from the cache.
        snapshot: Snapshot of the freshly provisioned environment (miss only).
        provisioning_calls: Times the provisioner ran for this build.
        exit_code: Build command exit code.
        command: The command that was executed.
        started_at: Build start time.
        finished_at: Build finish time.
    """

    artifact: Artifact
    cache_status: CacheStatus
    snapshot: bytes | None
    provisioning_calls: int
    exit_code: int
    command: str
    started_at: datetime
    finished_at: datetime


class Provisioner(ABC):
    """Creates a build environment from scratch."""

    @abstractmethod
    def provision(
        self, env_dir: Path, cancel_token: threading.Event | None = None
    ) -> None:
        """Populate env_dir with a complete build environment.

        Raises:
            ProvisioningFailedError: If the environment cannot be created.
            BuildCancelledError: If cancel_token is set while provisioning.
        """


class CommandProvisioner(Provisioner):
    """Provision by running a setup command inside the environment directory.

    The command runs in its own process group, so everything it starts is
    killed on timeout or cancellation before the environment is removed.
    An empty command provisions an empty environment.

    Args:
        command: Setup command as an argument list.
        timeout: Timeout in seconds (None = no timeout).
        env_override: Extra environment variables.
    """

    def __init__(
        self,
        command: list[str],
        timeout: float | None = None,
        env_override: dict[str, str] | None = None,
    ) -> None:
        self.command = list(command)
        self.timeout = timeout
        self.env_override = dict(env_override or {})

    def provision(
        self, env_dir: Path, cancel_token: threading.Event | None = None
    ) -> None:
        if not self.command:
            return

        cmd_str = shlex.join(self.command)
        logger.info("Provisioning environment: %s", cmd_str)

        env = dict(os.environ)
        env.update(self.env_override)
        env["RELPIPE_ENV_DIR"] = str(env_dir)

        # Output goes outside env_dir so it never lands in the snapshot
        with tempfile.TemporaryFile() as output:
            try:
                proc = subprocess.Popen(
                    self.command,
                    cwd=env_dir,
                    stdout=output,
                    stderr=subprocess.STDOUT,
                    env=env,
                    start_new_session=True,
                )
            except OSError as e:
                raise ProvisioningFailedError(
                    f"Failed to run provisioning: {e}"
                ) from e

            try:
                returncode = wait_for_exit(proc, self.timeout, cancel_token)
            except subprocess.TimeoutExpired as e:
                _kill_process_group(proc)
                raise ProvisioningFailedError(
                    f"Provisioning timed out after {self.timeout} seconds"
                ) from e
            except BaseException:
                _kill_process_group(proc)
                raise

            if returncode != 0:
                output.seek(0)
                stderr = output.read().decode("utf-8", errors="replace")
                raise ProvisioningFailedError(
                    f"Provisioning failed with exit code {returncode}: "
                    f"{stderr.strip()[-500:]}",
                    exit_code=returncode,
                )


def read_output_tail(log_path: Path, lines: int) -> str:
    """Return the last lines of a build log.

    Args:
        log_path: Path to the log file.
        lines: Number of lines to keep.

    Returns:
        Tail of the log, or an empty string if it does not exist.
    """
    if not log_path.exists():
        return ""
    with log_path.open(encoding="utf-8", errors="replace") as f:
        return "".join(deque(f, maxlen=lines)).rstrip("\n")


def _kill_process_group(proc: subprocess.Popen[bytes]) -> None:
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass
    proc.wait()


def check_cancelled(cancel_token: threading.Event | None, stage: str) -> None:
    """Raise BuildCancelledError if cancellation was requested."""
    if cancel_token is not None and cancel_token.is_set():
        logger.warning("Build cancelled %s", stage)
        raise BuildCancelledError()


def wait_for_exit(
    proc: subprocess.Popen[bytes],
    timeout: float | None,
    cancel_token: threading.Event | None,
) -> int:
    """Poll a process until it exits.

    The process is left running when this raises; callers kill its
    process group.

    Args:
        proc: Process started with its own session.
        timeout: Wall-clock bound in seconds (None = no bound).
        cancel_token: Checked between polls.

    Returns:
        The process exit code.

    Raises:
        subprocess.TimeoutExpired: If the process outlives timeout.
        BuildCancelledError: If cancel_token is set first.
    """
    deadline = None if timeout is None else time.monotonic() + timeout
    while True:
        try:
            return proc.wait(timeout=POLL_INTERVAL)
        except subprocess.TimeoutExpired:
            pass

        check_cancelled(cancel_token, f"while process {proc.pid} was running")

        if deadline is not None and time.monotonic() >= deadline:
            raise subprocess.TimeoutExpired(proc.args, timeout)


class BuildExecutor:
    """Runs builds, each in its own isolated environment.

    The build command receives the workspace as its working directory and
    RELPIPE_COMMIT, RELPIPE_CACHE_KEY, RELPIPE_ENV_DIR and RELPIPE_WORKSPACE
    in its environment. It must leave the artifact at artifact_path,
    relative to the workspace.

    Args:
        provisioner: Creates environments on a cache miss.
        checkout: Materializes the commit's source tree.
        build_command: Build command as an argument list.
        artifact_path: Artifact location relative to the workspace.
        artifact_name: Published artifact name (defaults to the file name).
        timeout: Wall-clock bound for the build command (None = no bound).
        tmp_dir: Parent directory for environments (system temp if None).
        env_override: Extra environment variables for the build command.
        output_tail_lines: Log lines kept in failure diagnostics.
    """

    def __init__(
        self,
        provisioner: Provisioner,
        checkout: SourceCheckout,
        build_command: list[str],
        artifact_path: str,
        artifact_name: str | None = None,
        timeout: float | None = None,
        tmp_dir: Path | None = None,
        env_override: dict[str, str] | None = None,
        output_tail_lines: int = 50,
    ) -> None:
        self.provisioner = provisioner
        self.checkout = checkout
        self.build_command = list(build_command)
        self.artifact_path = artifact_path
        self.artifact_name = artifact_name or Path(artifact_path).name
        self.timeout = timeout
        self.tmp_dir = tmp_dir
        self.env_override = dict(env_override or {})
        self.output_tail_lines = output_tail_lines

    def run(
        self,
        commit_hash: str,
        cache_key: str,
        cache_entry: CacheEntry | None = None,
        cancel_token: threading.Event | None = None,
    ) -> BuildOutcome:
        """Execute one build.

        Args:
            commit_hash: Commit to build.
            cache_key: Key of the build environment.
            cache_entry: Cached environment snapshot, or None on a cold cache.
            cancel_token: Set to request cancellation.

        Returns:
            BuildOutcome with the artifact and, on a cache miss, the
            snapshot the caller should store.

        Raises:
            ProvisioningFailedError: If the environment cannot be set up.
            BuildCommandFailedError: If the build fails or produces no artifact.
            BuildTimeoutError: If the build exceeds the timeout.
            BuildCancelledError: If cancel_token is set at any stage.
        """
        check_cancelled(cancel_token, "before the environment was set up")
        with isolated_environment(self.tmp_dir) as env:
            snapshot: bytes | None = None
            provisioning_calls = 0

            if cache_entry is not None:
                logger.info("Cache hit for %s, reusing environment", cache_key[:23])
                materialize_snapshot(cache_entry.blob, env.env_dir)
                cache_status = CacheStatus.HIT
            else:
                logger.info("Cache miss for %s, provisioning", cache_key[:23])
                provisioning_calls += 1
                self.provisioner.provision(env.env_dir, cancel_token=cancel_token)
                snapshot = snapshot_environment(env.env_dir)
                cache_status = CacheStatus.MISS
            check_cancelled(cancel_token, "after the environment was set up")

            self.checkout.checkout(commit_hash, env.workspace)
            check_cancelled(cancel_token, "after checkout")

            started_at = datetime.now(timezone.utc)
            try:
                exit_code = self._execute(env, commit_hash, cache_key, cancel_token)
            except BuildCommandFailedError as e:
                if not e.output_tail:
                    e.output_tail = read_output_tail(
                        env.log_path, self.output_tail_lines
                    )
                raise
            finished_at = datetime.now(timezone.utc)
            check_cancelled(cancel_token, "after the build command exited")

            tail = read_output_tail(env.log_path, self.output_tail_lines)
            if exit_code != 0:
                logger.error(
                    "Build of %s failed with exit code %d", commit_hash[:12], exit_code
                )
                raise BuildCommandFailedError(
                    f"Build failed with exit code {exit_code}",
                    exit_code=exit_code,
                    output_tail=tail,
                )

            data = self._collect_artifact(env, tail)
            logger.info(
                "Build of %s produced %s (%d bytes)",
                commit_hash[:12],
                self.artifact_name,
                len(data),
            )

            return BuildOutcome(
                artifact=Artifact(
                    name=self.artifact_name,
                    data=data,
                    source_commit=commit_hash,
                ),
                cache_status=cache_status,
                snapshot=snapshot,
                provisioning_calls=provisioning_calls,
                exit_code=exit_code,
                command=shlex.join(self.build_command),
                started_at=started_at,
                finished_at=finished_at,
            )

    def _execute(
        self,
        env: IsolatedEnvironment,
        commit_hash: str,
        cache_key: str,
        cancel_token: threading.Event | None,
    ) -> int:
        """Run the build command and return its exit code."""
        cmd_str = shlex.join(self.build_command)
        logger.info("Executing build: %s", cmd_str)
        logger.debug("Working directory: %s", env.workspace)

        run_env = dict(os.environ)
        run_env.update(self.env_override)
        run_env.update(
            {
                "RELPIPE_COMMIT": commit_hash,
                "RELPIPE_CACHE_KEY": cache_key,
                "RELPIPE_ENV_DIR": str(env.env_dir),
                "RELPIPE_WORKSPACE": str(env.workspace),
            }
        )

        started_at = datetime.now(timezone.utc)
        with env.log_path.open("w") as log_file:
            log_file.write(f"# Command: {cmd_str}\n")
            log_file.write(f"# Started: {started_at.isoformat()}\n")
            log_file.write(f"# Commit: {commit_hash}\n")
            log_file.write("# " + "=" * 70 + "\n")
            log_file.flush()

            try:
                proc = subprocess.Popen(
                    self.build_command,
                    cwd=env.workspace,
                    stdout=log_file,
                    stderr=subprocess.STDOUT,
                    env=run_env,
                    start_new_session=True,
                )
            except OSError as e:
                raise BuildCommandFailedError(
                    f"Failed to execute build: {e}",
                    exit_code=None,
                ) from e

            try:
                exit_code = wait_for_exit(proc, self.timeout, cancel_token)
            except subprocess.TimeoutExpired:
                _kill_process_group(proc)
                logger.error("Build timed out after %s seconds", self.timeout)
                raise BuildTimeoutError(self.timeout) from None
            except BaseException:
                _kill_process_group(proc)
                raise

        return exit_code

    def _collect_artifact(self, env: IsolatedEnvironment, tail: str) -> bytes:
        workspace = env.workspace.resolve()
        artifact_file = (env.workspace / self.artifact_path).resolve()

        try:
            artifact_file.relative_to(workspace)
        except ValueError:
            raise BuildCommandFailedError(
                f"Artifact path {self.artifact_path} is outside the workspace",
                exit_code=0,
                output_tail=tail,
            ) from None

        if not artifact_file.is_file():
            raise BuildCommandFailedError(
                f"Build did not produce artifact at {self.artifact_path}",
                exit_code=0,
                output_tail=tail,
            )

        return artifact_file.read_bytes()


__all__ = [
    "POLL_INTERVAL",
    "BuildExecutor",
    "BuildOutcome",
    "CommandProvisioner",
    "Provisioner",
    "check_cancelled",
    "read_output_tail",
    "wait_for_exit",
]
