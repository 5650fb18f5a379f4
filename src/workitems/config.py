"""Configuration management with pydantic-settings for the work item client.

- pydantic-settings v2 for type-safe configuration
- Automatic .env file loading with proper precedence
- AZURE_DEVOPS_ environment variable prefix
- SecretStr for the Personal Access Token
- Frozen config (immutable after load)

Components never reach for the singleton on their own: the client and
provider take an ``AzureDevOpsConfig`` at construction, so several
differently-credentialed clients can live in one process.
"""

import json
import logging
from functools import lru_cache
from typing import Annotated

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

logger = logging.getLogger("ado_workitems.config")

__all__ = [
    "DEFAULT_API_VERSION",
    "DEFAULT_HOST",
    "AzureDevOpsConfig",
    "get_config",
    "reset_config",
]

DEFAULT_API_VERSION = "7.1-preview.3"
DEFAULT_HOST = "dev.azure.com"


class AzureDevOpsConfig(BaseSettings):
    """Configuration for the Azure DevOps work item client.

    Loads from (in order of precedence):
    1. Constructor keyword arguments
    2. Environment variables (AZURE_DEVOPS_*)
    3. .env file in the working directory
    4. Default values

    Attributes:
        organization: Azure DevOps organization name
        project: Project name inside the organization
        pat: Personal Access Token (SecretStr)
        api_version: REST API version appended to every URL
        base_url: Organization base URL (default https://dev.azure.com/{organization})
        max_concurrent: Maximum simultaneously in-flight requests
        requests_per_second: Local pacing ceiling
        respect_headers: Throttle on x-ratelimit-* response headers
        batch_size: Ids per batch fetch request (server maximum 200)
        batch_max_concurrency: Chunks fetched concurrently
        comment_concurrency: Per-id comment fetches in flight during batch_get_comments
        retry_max_attempts: Attempts per transport call (1 disables retries)
        retry_base_delay: First backoff delay in seconds
        retry_max_delay: Backoff ceiling in seconds
        retry_backoff_factor: Exponential backoff base
        circuit_breaker_threshold: Consecutive transient failures before a circuit opens
        circuit_breaker_reset: Seconds before an open circuit allows a probe
        request_timeout: httpx read timeout in seconds
        default_assignees: Assignee filter applied when a query names none
        log_level: Logging level
        log_format: json (production) or text (development)
    """

    model_config = SettingsConfigDict(
        env_prefix="AZURE_DEVOPS_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
        case_sensitive=False,
        validate_default=True,
        frozen=True,
        extra="ignore",
    )

    # Credentials
    organization: str = Field(default="", description="Azure DevOps organization")
    project: str = Field(default="", description="Azure DevOps project")
    pat: SecretStr = Field(
        default=SecretStr(""),
        description="Personal Access Token (Work Items read & write scope)",
    )
    api_version: str = Field(
        default=DEFAULT_API_VERSION,
        min_length=1,
        description="REST API version appended as api-version",
    )
    base_url: str | None = Field(
        default=None,
        description="Organization base URL. Defaults to https://dev.azure.com/{organization}",
    )

    # Rate limiting
    max_concurrent: int = Field(
        default=10, ge=1, le=100, description="Maximum in-flight requests"
    )
    requests_per_second: float = Field(
        default=5.0, gt=0.0, le=1000.0, description="Local pacing ceiling"
    )
    respect_headers: bool = Field(
        default=True, description="Throttle on x-ratelimit-* response headers"
    )

    # Batching
    batch_size: int = Field(
        default=200, ge=1, le=200, description="Ids per batch request (API max 200)"
    )
    batch_max_concurrency: int = Field(
        default=3, ge=1, le=20, description="Batch chunks fetched concurrently"
    )
    comment_concurrency: int = Field(
        default=10, ge=1, le=50, description="Comment fetches in flight"
    )

    # Retry policy (connection-level faults only)
    retry_max_attempts: int = Field(default=3, ge=1, le=10)
    retry_base_delay: float = Field(default=0.5, ge=0.0, le=60.0)
    retry_max_delay: float = Field(default=5.0, ge=0.0, le=300.0)
    retry_backoff_factor: float = Field(default=2.0, ge=1.0, le=10.0)

    # Circuit breaker
    circuit_breaker_threshold: int = Field(default=5, ge=1, le=50)
    circuit_breaker_reset: int = Field(default=30, ge=1, le=600)

    # Transport
    request_timeout: float = Field(default=30.0, gt=0.0, le=300.0)

    # Replaces the old process-wide assignee email list
    default_assignees: Annotated[list[str], NoDecode] = Field(
        default_factory=list,
        description="Assignees applied when a query has no assigned_to filter",
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
        description="Log level: DEBUG, INFO, WARNING, ERROR, CRITICAL",
    )
    log_format: str = Field(
        default="json",
        pattern="^(json|text)$",
        description="Log format: json (production), text (development)",
    )

    @field_validator("organization", "project", mode="before")
    @classmethod
    def strip_names(cls, v):
        """Trim whitespace from organization and project names."""
        if isinstance(v, str):
            return v.strip()
        return v

    @field_validator("base_url", mode="before")
    @classmethod
    def strip_base_url(cls, v):
        """Drop trailing slashes; treat blank as unset."""
        if isinstance(v, str):
            v = v.strip().rstrip("/")
            return v or None
        return v

    @field_validator("default_assignees", mode="before")
    @classmethod
    def parse_default_assignees(cls, v):
        """Parse comma-separated assignees from an environment variable."""
        if isinstance(v, str):
            if v.startswith("["):
                return json.loads(v)
            return [a.strip() for a in v.split(",") if a.strip()]
        return v

    def get_base_url(self) -> str:
        """Organization base URL, defaulting to the hosted service."""
        return self.base_url or f"https://{DEFAULT_HOST}/{self.organization}"


@lru_cache(maxsize=1)
def get_config() -> AzureDevOpsConfig:
    """Get configuration singleton loaded from the environment.

    First call loads from environment + .env file, subsequent calls return
    the cached instance. Only entry points (scripts, the sync runner) should
    call this; library components receive their config explicitly.

    Raises:
        pydantic.ValidationError: If configuration values are invalid.
    """
    return AzureDevOpsConfig()


def reset_config() -> None:
    """Reset configuration singleton for testing."""
    get_config.cache_clear()
