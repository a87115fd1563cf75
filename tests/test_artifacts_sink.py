"""Tests for artifacts/sink.py and artifacts/manifest.py modules.

Tests exactly-once publication and release manifests.
"""

import json
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from urllib.parse import urlparse

import pytest

from release_pipeline.artifacts.manifest import (
    MANIFEST_SUFFIX,
    compute_sha256,
    generate_manifest,
)
from release_pipeline.artifacts.sink import (
    ArtifactSink,
    LocalStorageBackend,
    StorageBackend,
    list_published,
)
from release_pipeline.errors import DuplicatePublishError
from release_pipeline.types import Artifact


class CountingBackend(StorageBackend):
    """In-memory backend recording every put."""

    def __init__(self) -> None:
        self.objects: dict[str, bytes] = {}
        self.puts = 0

    def put(self, name: str, data: bytes) -> str:
        self.puts += 1
        self.objects[name] = data
        return f"mem://{name}"


def make_artifact(data: bytes = b"worker-bytes", **overrides) -> Artifact:
    fields = {
        "name": "uniffle-worker",
        "data": data,
        "source_commit": "abc123",
        "release": "v1.2.3",
    }
    fields.update(overrides)
    return Artifact(**fields)


def url_path(url: str) -> Path:
    return Path(urlparse(url).path)


class TestLocalStorageBackend:
    def test_put_returns_file_url(self, tmp_path: Path) -> None:
        backend = LocalStorageBackend(tmp_path)
        url = backend.put("abc123/worker", b"data")

        assert url.startswith("file://")
        assert url_path(url).read_bytes() == b"data"

    @pytest.mark.parametrize("name", ["../escape", "/abs/path", ""])
    def test_rejects_invalid_names(self, tmp_path: Path, name: str) -> None:
        with pytest.raises(ValueError):
            LocalStorageBackend(tmp_path).put(name, b"data")


class TestArtifactSink:
    def test_publish_returns_ref(self, tmp_path: Path, session_factory) -> None:
        sink = ArtifactSink(LocalStorageBackend(tmp_path), session_factory)

        ref = sink.publish(make_artifact(), run_id=7, cache_key="sha256:aa")

        assert ref.name == "uniffle-worker"
        assert ref.release == "v1.2.3"
        assert ref.source_commit == "abc123"
        assert ref.sha256 == compute_sha256(b"worker-bytes")
        assert ref.size_bytes == len(b"worker-bytes")
        assert url_path(ref.url).read_bytes() == b"worker-bytes"

    def test_manifest_written(self, tmp_path: Path, session_factory) -> None:
        sink = ArtifactSink(LocalStorageBackend(tmp_path), session_factory)
        ref = sink.publish(make_artifact(), run_id=7, cache_key="sha256:aa")

        manifest_path = Path(str(url_path(ref.url)) + MANIFEST_SUFFIX)
        manifest = json.loads(manifest_path.read_text())
        assert manifest["run_id"] == 7
        assert manifest["cache_key"] == "sha256:aa"
        assert manifest["artifact"]["sha256"] == ref.sha256
        assert manifest["artifact"]["release"] == "v1.2.3"

    def test_manifests_can_be_disabled(self, session_factory) -> None:
        backend = CountingBackend()
        sink = ArtifactSink(backend, session_factory, write_manifests=False)
        sink.publish(make_artifact())
        assert backend.puts == 1

    def test_identical_publish_returns_existing(self, session_factory) -> None:
        backend = CountingBackend()
        sink = ArtifactSink(backend, session_factory)

        first = sink.publish(make_artifact())
        puts_after_first = backend.puts
        second = sink.publish(make_artifact(release="v1.2.3-rc.1"))

        assert second == first
        assert backend.puts == puts_after_first

    def test_different_bytes_raise_duplicate(self, session_factory) -> None:
        backend = CountingBackend()
        sink = ArtifactSink(backend, session_factory)
        first = sink.publish(make_artifact())

        with pytest.raises(DuplicatePublishError) as exc_info:
            sink.publish(make_artifact(data=b"rebuilt-differently"))

        assert exc_info.value.code == "duplicate_publish"
        assert sink.get("uniffle-worker", "abc123") == first
        assert b"rebuilt-differently" not in backend.objects.values()

    def test_other_commit_is_separate(self, session_factory) -> None:
        sink = ArtifactSink(CountingBackend(), session_factory)
        a = sink.publish(make_artifact())
        b = sink.publish(make_artifact(data=b"other", source_commit="def456"))
        assert a.url != b.url

    def test_get_unknown(self, session_factory) -> None:
        sink = ArtifactSink(CountingBackend(), session_factory)
        assert sink.get("uniffle-worker", "abc123") is None

    def test_concurrent_identical_publish(self, session_factory) -> None:
        sink = ArtifactSink(CountingBackend(), session_factory)
        with ThreadPoolExecutor(max_workers=4) as pool:
            refs = list(pool.map(lambda _: sink.publish(make_artifact()), range(8)))
        assert len(set(refs)) == 1

    def test_list_published(self, session_factory, session) -> None:
        sink = ArtifactSink(CountingBackend(), session_factory)
        sink.publish(make_artifact())
        sink.publish(make_artifact(source_commit="def456", release="v1.3.0"))

        assert len(list_published(session)) == 2
        records = list_published(session, release="v1.3.0")
        assert [r.source_commit for r in records] == ["def456"]


class TestManifest:
    def test_optional_fields_omitted(self, session_factory) -> None:
        ref = ArtifactSink(CountingBackend(), session_factory).publish(
            make_artifact()
        )
        manifest = generate_manifest(ref)
        assert "run_id" not in manifest
        assert "cache_key" not in manifest
        assert manifest["version"] == "1.0"
