"""Configuration management for branchtime."""

import re
from pathlib import Path
from typing import Any, Literal

from pydantic import AliasChoices, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from branchtime.errors import ConfigurationError

REPOSITORY_PATTERN = re.compile(r"^[a-zA-Z0-9_.-]+/[a-zA-Z0-9_.-]+$")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # GitHub Authentication
    github_token: str = Field(
        default="",
        validation_alias=AliasChoices("github_stats_token", "github_token"),
        description="GitHub access token used to list pull request commits",
    )

    # Code host
    github_repository: str = Field(
        default="",
        description="Repository on the code host (owner/repo format)",
    )
    github_api_url: str = Field(
        default="https://api.github.com",
        description="GitHub API base URL (override for GitHub Enterprise)",
    )

    # Output
    output_dir: str = Field(
        default="/tmp",
        description="Directory the report file is written into",
    )

    # Concurrency
    max_workers: int = Field(
        default=4,
        description="Number of concurrent pull request lookups",
        ge=1,
        le=16,
    )

    # API behaviour
    request_timeout: int = Field(
        default=30,
        description="Per-request timeout for GitHub API calls in seconds",
        ge=1,
    )
    api_min_delay: float = Field(
        default=0.1,
        description="Minimum delay between GitHub API calls in seconds",
        ge=0,
    )
    retry_attempts: int = Field(
        default=3,
        description="Attempts per pull request lookup on network errors",
        ge=1,
        le=10,
    )

    # Runtime flags
    strict: bool = Field(
        default=False,
        description="Abort the run when any pull request lookup fails",
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )
    log_format: Literal["text", "json"] = Field(
        default="text",
        description="Log output format: 'text' for human-readable, 'json' for structured",
    )

    @field_validator("output_dir")
    @classmethod
    def expand_output_dir(cls, v: str) -> str:
        """Expand ~ in the output directory."""
        return str(Path(v).expanduser())

    @field_validator("github_repository")
    @classmethod
    def validate_repo_format(cls, v: str) -> str:
        """Validate repository format is owner/repo."""
        v = v.strip()
        if v and not REPOSITORY_PATTERN.match(v):
            raise ValueError(f"Invalid repository format: {v}. Must be owner/repo format.")
        return v

    @field_validator("github_api_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    def require_credentials(self) -> None:
        """Check everything a report run needs is present.

        Raises:
            ConfigurationError: If the token or repository is missing.
        """
        missing = []
        if not self.github_token:
            missing.append("GITHUB_STATS_TOKEN (or GITHUB_TOKEN)")
        if not self.github_repository:
            missing.append("github repository (owner/repo)")
        if missing:
            raise ConfigurationError(f"Missing required configuration: {', '.join(missing)}")


def load_settings(**overrides: Any) -> Settings:
    """Load and return application settings.

    Args:
        **overrides: Values taking precedence over the environment. ``None``
            values are ignored so unset CLI options fall through.

    Returns:
        Settings instance with values from environment and overrides.

    Raises:
        ConfigurationError: If a value fails validation.
    """
    values = {key: value for key, value in overrides.items() if value is not None}
    try:
        return Settings(**values)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e
