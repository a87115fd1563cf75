"""Tests for cache/cache_key.py module.

Tests deterministic cache key computation from build-definition content.
"""

from pathlib import Path

import pytest

from release_pipeline.cache.cache_key import (
    CACHE_KEY_SCHEMA_VERSION,
    BuildDefinitionInputs,
    collect_file_digests,
    compute_cache_key,
    compute_cache_key_from_definition,
    digest_file,
)
from release_pipeline.errors import BuildDefinitionError
from release_pipeline.pipeline.definition import PipelineDefinition


@pytest.fixture
def definition_root(tmp_path: Path) -> Path:
    """Create a directory with a build-definition file."""
    (tmp_path / "dev" / "centos7").mkdir(parents=True)
    (tmp_path / "dev" / "centos7" / "Dockerfile").write_text(
        "FROM centos:7\nRUN yum install -y java-1.8.0-openjdk\n"
    )
    return tmp_path


def make_definition(**overrides) -> PipelineDefinition:
    data = {
        "name": "uniffle-worker",
        "cache_namespace": "docker-centos7",
        "build_definition": ["dev/centos7/Dockerfile"],
        "provision_command": ["true"],
        "build_command": ["./release.sh"],
        "artifact_path": "target-docker/release/uniffle-worker",
    }
    data.update(overrides)
    return PipelineDefinition(**data)


class TestDigestFile:
    def test_digest_matches_content(self, tmp_path: Path) -> None:
        a = tmp_path / "a"
        b = tmp_path / "b"
        a.write_bytes(b"same")
        b.write_bytes(b"same")
        assert digest_file(a) == digest_file(b)
        assert len(digest_file(a)) == 64

    def test_chunking_does_not_change_digest(self, tmp_path: Path) -> None:
        path = tmp_path / "big"
        path.write_bytes(b"x" * 10_000)
        assert digest_file(path, chunk_size=7) == digest_file(path)


class TestCollectFileDigests:
    def test_sorted_by_path(self, tmp_path: Path) -> None:
        (tmp_path / "b.txt").write_text("b")
        (tmp_path / "a.txt").write_text("a")

        digests = collect_file_digests(tmp_path, ["b.txt", "a.txt"])
        assert list(digests) == ["a.txt", "b.txt"]

    def test_paths_are_normalized(self, tmp_path: Path) -> None:
        (tmp_path / "sub").mkdir()
        (tmp_path / "sub" / "f").write_text("x")

        digests = collect_file_digests(tmp_path, ["./sub/../sub/f"])
        assert list(digests) == ["sub/f"]

    def test_missing_file_raises(self, tmp_path: Path) -> None:
        with pytest.raises(BuildDefinitionError, match="not found"):
            collect_file_digests(tmp_path, ["Dockerfile"])

    def test_path_outside_root_raises(self, tmp_path: Path) -> None:
        root = tmp_path / "root"
        root.mkdir()
        (tmp_path / "secret").write_text("x")

        with pytest.raises(BuildDefinitionError, match="outside"):
            collect_file_digests(root, ["../secret"])


class TestComputeCacheKey:
    def test_format(self) -> None:
        key = compute_cache_key(BuildDefinitionInputs(namespace="ns"))
        assert key.startswith("sha256:")
        assert len(key) == len("sha256:") + 64

    def test_deterministic(self) -> None:
        inputs = BuildDefinitionInputs(
            namespace="ns",
            file_digests={"a": "1", "b": "2"},
            build_options={"provision_command": ["make", "env"]},
        )
        reordered = BuildDefinitionInputs(
            namespace="ns",
            file_digests={"b": "2", "a": "1"},
            build_options={"provision_command": ["make", "env"]},
        )
        assert compute_cache_key(inputs) == compute_cache_key(reordered)

    def test_namespace_changes_key(self) -> None:
        assert compute_cache_key(
            BuildDefinitionInputs(namespace="a")
        ) != compute_cache_key(BuildDefinitionInputs(namespace="b"))

    def test_schema_version_in_inputs(self) -> None:
        inputs = BuildDefinitionInputs()
        assert inputs.to_dict()["schema_version"] == CACHE_KEY_SCHEMA_VERSION


class TestComputeCacheKeyFromDefinition:
    def test_identical_content_identical_key(self, definition_root: Path) -> None:
        key1, _ = compute_cache_key_from_definition(make_definition(), definition_root)
        key2, _ = compute_cache_key_from_definition(make_definition(), definition_root)
        assert key1 == key2

    def test_same_content_elsewhere_identical_key(
        self, definition_root: Path, tmp_path_factory: pytest.TempPathFactory
    ) -> None:
        other = tmp_path_factory.mktemp("other")
        (other / "dev" / "centos7").mkdir(parents=True)
        (other / "dev" / "centos7" / "Dockerfile").write_bytes(
            (definition_root / "dev" / "centos7" / "Dockerfile").read_bytes()
        )

        key1, _ = compute_cache_key_from_definition(make_definition(), definition_root)
        key2, _ = compute_cache_key_from_definition(make_definition(), other)
        assert key1 == key2

    def test_content_change_changes_key(self, definition_root: Path) -> None:
        key1, _ = compute_cache_key_from_definition(make_definition(), definition_root)
        dockerfile = definition_root / "dev" / "centos7" / "Dockerfile"
        dockerfile.write_text("FROM centos:8\n")
        key2, _ = compute_cache_key_from_definition(make_definition(), definition_root)
        assert key1 != key2

    def test_build_command_does_not_change_key(self, definition_root: Path) -> None:
        key1, _ = compute_cache_key_from_definition(make_definition(), definition_root)
        key2, _ = compute_cache_key_from_definition(
            make_definition(build_command=["make", "dist"]), definition_root
        )
        assert key1 == key2

    def test_provision_command_changes_key(self, definition_root: Path) -> None:
        key1, _ = compute_cache_key_from_definition(make_definition(), definition_root)
        key2, _ = compute_cache_key_from_definition(
            make_definition(provision_command=["docker", "build", "."]),
            definition_root,
        )
        assert key1 != key2

    def test_inputs_returned(self, definition_root: Path) -> None:
        _, inputs = compute_cache_key_from_definition(
            make_definition(), definition_root
        )
        assert inputs.namespace == "docker-centos7"
        assert list(inputs.file_digests) == ["dev/centos7/Dockerfile"]
