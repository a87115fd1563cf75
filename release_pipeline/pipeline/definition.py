"""Pipeline definition schema and loading.

A pipeline definition (relpipe.yaml) declares how a release is built:
which files define the build environment, how to provision it, the build
command, and where the artifact ends up. Paths are relative to the
directory holding the definition file.

Example::

    name: uniffle-worker
    tag_pattern: "v*.*.*"
    cache_namespace: docker-centos7
    build_definition:
      - dev/centos7/Dockerfile
    provision_command: ["docker", "build", "-t", "builder", "dev/centos7"]
    build_command: ["./release.sh"]
    artifact_path: target-docker/release/uniffle-worker
"""

from __future__ import annotations

import shlex
from pathlib import Path, PurePosixPath
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_PIPELINE_FILE = "relpipe.yaml"


def _split_command(v: Any) -> Any:
    if isinstance(v, str):
        return shlex.split(v)
    return v


class PipelineDefinition(BaseModel):
    """Schema for a release pipeline definition.

    Attributes:
        name: Pipeline name.
        tag_pattern: Optional glob release tags must match (e.g. 'v*.*.*').
        cache_namespace: Namespace mixed into the environment cache key.
        build_definition: Files whose content defines the build environment.
        provision_command: Command creating the environment on a cache miss.
        build_command: Command building the release.
        artifact_path: Artifact location relative to the build workspace.
        artifact_name: Published artifact name (defaults to the file name).
        environment: Extra environment variables for provisioning and build.
        source_type: How the commit is checked out ('git' or 'directory').
        source_path: Repository or source directory.
        build_timeout: Optional override of the configured build timeout.
    """

    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1, description="Pipeline name")
    tag_pattern: str | None = Field(
        default=None, description="Glob release tags must match"
    )
    cache_namespace: str = Field(
        default="default", min_length=1, description="Cache key namespace"
    )
    build_definition: list[str] = Field(
        default_factory=list,
        description="Files hashed into the environment cache key",
    )
    provision_command: list[str] = Field(
        default_factory=list, description="Environment setup command"
    )
    build_command: list[str] = Field(min_length=1, description="Build command")
    artifact_path: str = Field(description="Artifact path in the workspace")
    artifact_name: str | None = Field(default=None, description="Artifact name")
    environment: dict[str, str] = Field(default_factory=dict)
    source_type: Literal["git", "directory"] = Field(default="git")
    source_path: str = Field(default=".", description="Repository path")
    build_timeout: int | None = Field(default=None, ge=1)

    @field_validator("provision_command", "build_command", mode="before")
    @classmethod
    def split_command(cls, v: Any) -> Any:
        """Accept commands written as a single shell-style string."""
        return _split_command(v)

    @field_validator("artifact_path")
    @classmethod
    def validate_artifact_path(cls, v: str) -> str:
        """Validate the artifact path stays inside the workspace."""
        path = PurePosixPath(v)
        if not v or path.is_absolute() or ".." in path.parts:
            raise ValueError(
                "artifact_path must be a relative path inside the workspace"
            )
        return v

    @field_validator("build_definition")
    @classmethod
    def validate_build_definition(cls, v: list[str]) -> list[str]:
        """Validate build-definition paths are relative."""
        for item in v:
            if PurePosixPath(item).is_absolute():
                raise ValueError(f"build_definition path must be relative: {item}")
        return v

    @property
    def effective_artifact_name(self) -> str:
        return self.artifact_name or PurePosixPath(self.artifact_path).name


def load_yaml(path: Path) -> dict[str, Any]:
    """Load a YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: If the file does not exist.
        yaml.YAMLError: If the file is not valid YAML.
        ValueError: If the content is not a mapping.
    """
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Expected a YAML mapping, got {type(data).__name__}")
    return data


def load_pipeline_definition(path: Path) -> PipelineDefinition:
    """Load and validate a pipeline definition from a YAML file.

    Args:
        path: Path to the YAML file.

    Returns:
        Validated PipelineDefinition.

    Raises:
        FileNotFoundError: If the file does not exist.
        yaml.YAMLError: If the file is not valid YAML.
        pydantic.ValidationError: If data does not match the schema.
    """
    return PipelineDefinition.model_validate(load_yaml(path))


__all__ = [
    "DEFAULT_PIPELINE_FILE",
    "PipelineDefinition",
    "load_pipeline_definition",
    "load_yaml",
]
