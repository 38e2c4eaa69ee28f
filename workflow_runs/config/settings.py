"""
Configuration system using Pydantic for type-safe settings management.

This module provides the settings that tune the lifecycle engine: where the
file-backed run store keeps its records, how hard retry identifier generation
probes for a free id, and how issue-triage runs identify themselves.
"""

from __future__ import annotations

import os
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, SecretStr, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from workflow_runs.exceptions import ConfigurationError

ENV_REFERENCE = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}")


class StoreConfig(BaseModel):
    """File-backed run store configuration."""

    state_directory: str = Field(default=".workflow-runs/state", description="Directory for run records")


class RetryConfig(BaseModel):
    """Retry engine configuration."""

    max_identifier_probes: int = Field(
        default=100, ge=1, description="Candidate ids probed before falling back to the bare candidate"
    )
    id_conflict_attempts: int = Field(
        default=3, ge=1, description="Create attempts when a generated run id is taken concurrently"
    )


class IssueTriageConfig(BaseModel):
    """Issue-triage posting configuration."""

    workflow_name: str = Field(default="issue_triage", description="Workflow name that enables posting")
    auto_approver_id: str = Field(
        default="issue_bot_auto_approver", description="Actor id recorded on auto-approved posts"
    )


class GitHubConfig(BaseModel):
    """GitHub REST API access used to post issue-triage responses."""

    api_url: str = Field(default="https://api.github.com", description="GitHub API base URL")
    token: SecretStr | None = Field(default=None, description="Token allowed to comment on issues")
    timeout: float = Field(default=10.0, gt=0, description="Request timeout in seconds")
    max_retries: int = Field(default=2, ge=0, description="Retries for rate limits, 5xx and transport errors")
    retry_base_delay: float = Field(default=0.2, ge=0, description="First retry delay in seconds, doubled per retry")


class LifecycleSettings(BaseSettings):
    """Main lifecycle engine settings.

    Every section has defaults, so ``LifecycleSettings()`` is usable as-is.
    Values can be overridden through ``WORKFLOW_RUNS_*`` environment variables
    (``WORKFLOW_RUNS_RETRY__ID_CONFLICT_ATTEMPTS=5``) or loaded from YAML.
    """

    model_config = SettingsConfigDict(
        env_prefix="WORKFLOW_RUNS_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    store: StoreConfig = Field(default_factory=StoreConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    issue_triage: IssueTriageConfig = Field(default_factory=IssueTriageConfig)
    github: GitHubConfig = Field(default_factory=GitHubConfig)
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"

    @property
    def state_dir(self) -> Path:
        """Get state directory as Path object."""
        return Path(self.store.state_directory)

    @classmethod
    def from_yaml(cls, config_path: str | Path) -> LifecycleSettings:
        """Load settings from a YAML file.

        ``${VAR}`` and ``${VAR:-default}`` references are expanded from the
        environment before parsing. Sections left out of the file keep their
        defaults.

        Raises:
            ConfigurationError: If the file is missing or unreadable, references
                an unset variable, is not a YAML mapping, or fails validation
        """
        path = Path(config_path)
        data = read_config_file(path)
        try:
            return cls(**data)
        except ValidationError as e:
            problems = "; ".join(_describe_error(error) for error in e.errors())
            raise ConfigurationError(f"Failed to validate configuration file {path}: {problems}") from e
        except TypeError as e:
            raise ConfigurationError(f"Configuration keys in {path} must be strings") from e


def expand_env_references(text: str) -> str:
    """Replace ``${VAR}`` / ``${VAR:-default}`` outside YAML comment lines.

    Raises:
        ConfigurationError: Naming every referenced variable that is unset and
            has no default
    """
    missing: list[str] = []

    def substitute(match: re.Match[str]) -> str:
        name, default = match.group(1), match.group(2)
        value = os.environ.get(name, default)
        if value is None:
            missing.append(name)
            return match.group(0)
        return value

    lines = [
        line if line.lstrip().startswith("#") else ENV_REFERENCE.sub(substitute, line) for line in text.split("\n")
    ]
    if missing:
        names = ", ".join(dict.fromkeys(missing))
        raise ConfigurationError(f"Configuration references unset environment variables: {names}")
    return "\n".join(lines)


def read_config_file(path: Path) -> dict[str, Any]:
    """Read, expand and parse a YAML configuration file into a mapping."""
    if not path.is_file():
        raise ConfigurationError(f"Configuration file not found: {path}")
    try:
        text = path.read_text()
    except OSError as e:
        raise ConfigurationError(f"Cannot read configuration file {path}: {e}") from e

    try:
        data = yaml.safe_load(expand_env_references(text))
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML syntax in {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Configuration in {path} must be a YAML object, not a list or scalar")
    return data


def _describe_error(error: Mapping[str, Any]) -> str:
    location = ".".join(str(part) for part in error.get("loc", ())) or "settings"
    return f"{location}: {error.get('msg', 'invalid value')}"
