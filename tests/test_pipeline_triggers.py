"""Tests for pipeline/triggers.py module."""

import pytest

from release_pipeline.errors import InvalidTriggerError
from release_pipeline.pipeline.triggers import (
    TriggerEventSchema,
    event_from_push_payload,
    parse_release_tag,
    validate_trigger,
)
from release_pipeline.types import TriggerEvent

SHA = "0123456789abcdef0123456789abcdef01234567"


class TestParseReleaseTag:
    def test_plain_version(self) -> None:
        version = parse_release_tag("v1.2.3")
        assert version is not None
        assert (version.major, version.minor, version.patch) == (1, 2, 3)
        assert not version.is_prerelease

    def test_prerelease_and_build(self) -> None:
        version = parse_release_tag("v2.0.0-rc.1+build.5")
        assert version is not None
        assert version.prerelease == "rc.1"
        assert version.build == "build.5"
        assert version.is_prerelease
        assert version.to_tag() == "v2.0.0-rc.1+build.5"

    def test_ref_prefix_accepted(self) -> None:
        assert parse_release_tag("refs/tags/v0.9.0") is not None

    @pytest.mark.parametrize(
        "tag",
        [
            "main",
            "1.2.3",
            "v1.2",
            "v01.2.3",
            "v1.2.3.4",
            "release-1.2.3",
            "",
            "v1.2.3\n",
            "refs/tags/v1.2.3\n",
        ],
    )
    def test_not_release_tags(self, tag: str) -> None:
        assert parse_release_tag(tag) is None


class TestValidateTrigger:
    def test_valid(self) -> None:
        version = validate_trigger(TriggerEvent(ref="v1.2.3", commit_hash="abc123"))
        assert version.to_tag() == "v1.2.3"

    def test_branch_rejected(self) -> None:
        with pytest.raises(InvalidTriggerError) as exc_info:
            validate_trigger(TriggerEvent(ref="main", commit_hash=SHA))
        assert exc_info.value.code == "invalid_trigger"
        assert exc_info.value.ref == "main"

    @pytest.mark.parametrize(
        "commit", ["", "xyz123", "abc12", "a" * 65, "abc 123", "abc123\n", "\nabc123"]
    )
    def test_bad_commit_hash_rejected(self, commit: str) -> None:
        with pytest.raises(InvalidTriggerError, match="Commit hash"):
            validate_trigger(TriggerEvent(ref="v1.2.3", commit_hash=commit))

    def test_trailing_newline_in_ref_rejected(self) -> None:
        with pytest.raises(InvalidTriggerError, match="not a release tag"):
            validate_trigger(TriggerEvent(ref="v1.2.3\n", commit_hash="abc123"))

    def test_full_sha_accepted(self) -> None:
        validate_trigger(TriggerEvent(ref="v1.2.3", commit_hash=SHA))

    def test_tag_glob(self) -> None:
        event = TriggerEvent(ref="v1.2.3-rc.1", commit_hash=SHA)
        validate_trigger(event, tag_glob="v*.*.*")
        with pytest.raises(InvalidTriggerError, match="tag pattern"):
            validate_trigger(event, tag_glob="v2.*")


class TestTriggerEventSchema:
    def test_to_event(self) -> None:
        event = TriggerEventSchema(ref="refs/tags/v1.2.3", commit_hash=SHA).to_event()
        assert event.ref == "v1.2.3"
        assert event.commit_hash == SHA
        assert event.timestamp is not None

    def test_extra_fields_forbidden(self) -> None:
        with pytest.raises(ValueError):
            TriggerEventSchema(ref="v1.2.3", commit_hash=SHA, branch="main")


class TestPushPayload:
    def test_tag_push(self) -> None:
        event = event_from_push_payload({"ref": "refs/tags/v1.2.3", "after": SHA})
        assert event.ref == "v1.2.3"
        assert event.commit_hash == SHA

    def test_branch_push_rejected(self) -> None:
        with pytest.raises(InvalidTriggerError, match="not a tag push"):
            event_from_push_payload({"ref": "refs/heads/main", "after": SHA})

    def test_missing_commit_rejected(self) -> None:
        with pytest.raises(InvalidTriggerError):
            event_from_push_payload({"ref": "refs/tags/v1.2.3"})
