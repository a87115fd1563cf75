"""Runtime settings for the release pipeline.

Values come from RELPIPE_* environment variables (or a .env file) and
fall back to per-user defaults under ~/.cache and ~/.local/share. What a
release build does is declared separately, in the pipeline definition
file named by ``pipeline_file``.
"""

from pathlib import Path
from typing import Literal, Self

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

APP_NAME = "release-pipeline"


def _data_home() -> Path:
    return Path.home() / ".local" / "share" / APP_NAME


def _default_cache_dir() -> Path:
    return Path.home() / ".cache" / APP_NAME / "environments"


def _default_artifacts_dir() -> Path:
    return _data_home() / "artifacts"


def _default_db_url() -> str:
    return f"sqlite:///{_data_home() / 'db.sqlite'}"


class Settings(BaseSettings):
    """Settings loaded from RELPIPE_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="RELPIPE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Paths
    cache_dir: Path = Field(
        default_factory=_default_cache_dir,
        description="Root directory for build-environment cache entries",
    )
    artifacts_dir: Path = Field(
        default_factory=_default_artifacts_dir,
        description="Root directory for published artifacts",
    )
    db_url: str = Field(
        default_factory=_default_db_url,
        description="Database connection URL",
    )
    tmp_dir: Path | None = Field(
        default=None,
        description="Parent directory for isolated build environments "
        "(uses system default if not set)",
    )
    pipeline_file: Path = Field(
        default=Path("relpipe.yaml"),
        description="Pipeline definition file",
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Concurrency
    max_concurrent_builds: int = Field(
        default=2,
        ge=1,
        le=10,
        description="Maximum concurrent build runs",
    )
    hot_cache_entries: int = Field(
        default=8,
        ge=0,
        description="Environment snapshots kept in memory by the hybrid cache",
    )

    # Timeouts (in seconds)
    build_timeout: int = Field(
        default=3600,
        ge=1,
        description="Wall-clock bound for the build command",
    )
    provision_timeout: int = Field(
        default=1800,
        ge=1,
        description="Wall-clock bound for environment provisioning",
    )

    # Provisioning retries
    provision_max_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts before a provisioning failure is final",
    )
    provision_backoff_base: float = Field(
        default=2.0,
        ge=0,
        description="Initial backoff between provisioning attempts (seconds)",
    )
    provision_backoff_cap: float = Field(
        default=60.0,
        ge=0,
        description="Maximum backoff between provisioning attempts (seconds)",
    )

    # Diagnostics
    output_tail_lines: int = Field(
        default=50,
        ge=1,
        description="Build output lines kept in a failure diagnostic",
    )

    @model_validator(mode="after")
    def check_backoff_bounds(self) -> Self:
        """Reject a backoff cap below the initial backoff."""
        if self.provision_backoff_cap < self.provision_backoff_base:
            raise ValueError(
                "provision_backoff_cap must not be lower than provision_backoff_base"
            )
        return self


def get_settings() -> Settings:
    """Load settings from the current environment."""
    return Settings()


def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        JSON string of effective settings.
    """
    if settings is None:
        settings = get_settings()
    return settings.model_dump_json(indent=2)


__all__ = ["Settings", "get_settings", "print_settings_json"]
