"""Tests for builds/environment.py module.

Tests environment isolation, teardown and deterministic snapshots.
"""

import io
import tarfile
from pathlib import Path

import pytest

from release_pipeline.builds.environment import (
    isolated_environment,
    materialize_snapshot,
    snapshot_environment,
)
from release_pipeline.errors import ProvisioningFailedError


class TestIsolatedEnvironment:
    def test_creates_layout(self, tmp_path: Path) -> None:
        with isolated_environment(tmp_path) as env:
            assert env.root.parent == tmp_path
            assert env.env_dir.is_dir()
            assert env.workspace.is_dir()
            assert not env.log_path.exists()

    def test_removed_after_block(self, tmp_path: Path) -> None:
        with isolated_environment(tmp_path) as env:
            (env.workspace / "file").write_text("x")
        assert not env.root.exists()

    def test_removed_after_error(self, tmp_path: Path) -> None:
        with pytest.raises(RuntimeError):
            with isolated_environment(tmp_path) as env:
                raise RuntimeError("build crashed")
        assert not env.root.exists()
        assert list(tmp_path.iterdir()) == []

    def test_fresh_per_call(self, tmp_path: Path) -> None:
        with isolated_environment(tmp_path) as first:
            (first.env_dir / "state").write_text("leftover")
            with isolated_environment(tmp_path) as second:
                assert second.root != first.root
                assert list(second.env_dir.iterdir()) == []

    def test_unusable_parent_is_provisioning_failure(self, tmp_path: Path) -> None:
        parent = tmp_path / "file"
        parent.write_text("not a directory")
        with pytest.raises(ProvisioningFailedError):
            with isolated_environment(parent):
                pass


def _populate(env_dir: Path) -> None:
    (env_dir / "bin").mkdir()
    (env_dir / "bin" / "tool").write_text("#!/bin/sh\necho tool\n")
    (env_dir / "bin" / "tool").chmod(0o755)
    (env_dir / "config.txt").write_text("java=1.8\n")


class TestSnapshots:
    def test_snapshot_is_deterministic(self, tmp_path: Path) -> None:
        first = tmp_path / "first"
        second = tmp_path / "second"
        first.mkdir()
        second.mkdir()
        _populate(first)
        _populate(second)

        assert snapshot_environment(first) == snapshot_environment(second)

    def test_snapshot_changes_with_content(self, tmp_path: Path) -> None:
        _populate(tmp_path)
        before = snapshot_environment(tmp_path)
        (tmp_path / "config.txt").write_text("java=11\n")
        assert snapshot_environment(tmp_path) != before

    def test_materialize_restores_tree(self, tmp_path: Path) -> None:
        source = tmp_path / "source"
        dest = tmp_path / "dest"
        source.mkdir()
        _populate(source)

        materialize_snapshot(snapshot_environment(source), dest)

        assert (dest / "config.txt").read_text() == "java=1.8\n"
        assert (dest / "bin" / "tool").stat().st_mode & 0o100

    def test_symlink_outside_tree_skipped(self, tmp_path: Path) -> None:
        env_dir = tmp_path / "env"
        env_dir.mkdir()
        (tmp_path / "outside").write_text("secret")
        (env_dir / "link").symlink_to(tmp_path / "outside")

        dest = tmp_path / "dest"
        materialize_snapshot(snapshot_environment(env_dir), dest)
        assert not (dest / "link").exists()

    def test_materialize_corrupt_blob(self, tmp_path: Path) -> None:
        with pytest.raises(ProvisioningFailedError):
            materialize_snapshot(b"not a tarball", tmp_path / "dest")

    def test_materialize_rejects_traversal(self, tmp_path: Path) -> None:
        raw = io.BytesIO()
        with tarfile.open(fileobj=raw, mode="w:gz") as tar:
            data = b"evil"
            info = tarfile.TarInfo("../escape")
            info.size = len(data)
            tar.addfile(info, io.BytesIO(data))

        with pytest.raises(ProvisioningFailedError, match="traversal"):
            materialize_snapshot(raw.getvalue(), tmp_path / "dest")
        assert not (tmp_path / "escape").exists()
