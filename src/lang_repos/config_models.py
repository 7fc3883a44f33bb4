"""
Pydantic models for YAML configuration validation.
Provides schema validation with clear error messages for crawler configurations.
"""

from __future__ import annotations

import os
from datetime import date
from typing import List, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from lang_repos.fetch.windows import GITHUB_EPOCH
from lang_repos.http.policies import RetryPolicy

TIMEOUT_ENV_VAR = "LANG_REPOS_TIMEOUT"


class RetryConfig(BaseModel):
    """Backoff settings for transient API failures."""
    max_attempts: int = Field(5, ge=1, le=50, description="Attempts before a transient failure becomes fatal")
    base_delay_s: float = Field(10.0, ge=0, description="Delay before the first retry, doubled each attempt")
    max_delay_s: float = Field(640.0, ge=0, description="Upper bound for a single backoff delay")
    jitter_s: float = Field(1.0, ge=0, description="Random extra delay added to each backoff")

    def to_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_attempts,
            base_delay_s=self.base_delay_s,
            max_delay_s=self.max_delay_s,
            jitter_s=self.jitter_s,
        )


class ScheduleConfig(BaseModel):
    """Configuration for scheduled execution."""
    enabled: bool = Field(False, description="Whether scheduling is enabled")
    interval_hours: int = Field(24, ge=1, le=168, description="Interval between runs in hours")


class CrawlerConfig(BaseModel):
    """Root configuration model for the crawler."""
    language: str = Field("Rust", min_length=1, description="Language filter passed to the search API")
    marker_files: List[str] = Field(
        default_factory=lambda: ["Cargo.toml", "Cargo.lock"],
        description="The two files whose presence is recorded per repository",
    )
    include_forks: bool = Field(False, description="Include forked repositories in the search")
    query_qualifiers: List[str] = Field(default_factory=list, description="Extra search qualifiers, e.g. 'stars:>10'")
    page_size: int = Field(100, ge=1, le=100, description="Repositories per search page")
    split_by_created: bool = Field(
        True, description="Search in creation-date windows so no single query hits the 1000 result cap"
    )
    created_since: date = Field(GITHUB_EPOCH, description="Creation date the first window starts at")
    api_url: str = Field("https://api.github.com/graphql", description="GitHub GraphQL endpoint")
    raw_url: str = Field("https://raw.githubusercontent.com", description="Raw file host used for marker checks")
    user_agent: str = Field("lang-repos (https://github.com/lang-repos/lang-repos)", description="User-Agent header")
    http_timeout_s: int = Field(30, ge=1, le=600, description="Timeout per HTTP request in seconds")
    delay_ms: int = Field(0, ge=0, le=60000, description="Minimum delay between requests in milliseconds")
    retry: RetryConfig = Field(default_factory=RetryConfig)
    max_runtime_s: Optional[int] = Field(None, ge=1, description="Stop between pages once this many seconds have passed")
    recheck_known: bool = Field(True, description="Re-run marker checks for repositories already in the dataset")
    dataset_filename: str = Field("github.csv", description="Dataset file name inside the data directory")
    checkpoint_filename: str = Field("state.json", description="Checkpoint file name inside the data directory")
    logging_config: str = Field("configs/logging.yaml", description="Path to a logging dictConfig YAML file")
    schedule: ScheduleConfig = Field(default_factory=ScheduleConfig)

    @field_validator('marker_files')
    @classmethod
    def validate_marker_files(cls, v):
        if len(v) != 2:
            raise ValueError('marker_files must list exactly two paths')
        if any(not p.strip() or p.startswith('/') for p in v):
            raise ValueError('marker_files must be non-empty paths relative to the repository root')
        if v[0] == v[1]:
            raise ValueError('marker_files must be two different paths')
        return v

    @field_validator('api_url', 'raw_url')
    @classmethod
    def validate_url(cls, v):
        if not v.startswith(('http://', 'https://')):
            raise ValueError('must be a valid HTTP/HTTPS URL')
        return v

    @field_validator('dataset_filename', 'checkpoint_filename')
    @classmethod
    def validate_filename(cls, v):
        if not v or os.path.basename(v) != v:
            raise ValueError('must be a plain file name without directories')
        return v


def load_and_validate_config(config_path: Optional[str] = None) -> CrawlerConfig:
    """
    Load and validate a crawler configuration from YAML file.

    Args:
        config_path: Path to the YAML configuration file, or None for defaults

    Returns:
        Validated CrawlerConfig object

    Raises:
        ValueError: If configuration is invalid or YAML is malformed
        FileNotFoundError: If config file doesn't exist
    """
    import yaml

    raw_config = {}
    if config_path:
        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                raw_config = yaml.safe_load(f) or {}
        except FileNotFoundError:
            raise FileNotFoundError(f"Configuration file not found: {config_path}")
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in {config_path}: {e}")

    if not isinstance(raw_config, dict):
        raise ValueError(f"Configuration in {config_path} must be a mapping")

    timeout = os.environ.get(TIMEOUT_ENV_VAR)
    if timeout:
        try:
            raw_config['max_runtime_s'] = int(timeout)
        except ValueError:
            raise ValueError(f"failed to parse {TIMEOUT_ENV_VAR}: {timeout!r} is not an integer")

    try:
        return CrawlerConfig(**raw_config)
    except ValidationError as e:
        # Format validation errors nicely
        error_messages = []
        for error in e.errors():
            field_path = '.'.join(str(loc) for loc in error['loc'])
            error_messages.append(f"  {field_path}: {error['msg']}")

        raise ValueError(
            f"Configuration validation failed for {config_path or '<defaults>'}:\n" +
            '\n'.join(error_messages)
        ) from e
