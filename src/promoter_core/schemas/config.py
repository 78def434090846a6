"""Coordinator configuration schemas.

This module defines the Pydantic v2 schemas for registry access, config store
access, resilience tuning, webhooks, and the top-level CoordinatorConfig that
is loaded from ``promoter.yaml``.

Key Components:
    RetryConfig: Exponential backoff settings for transient failures
    CircuitBreakerConfig: Registry availability circuit breaker
    RegistryConfig: OCI registry location, credentials and timeouts
    StoreConfig: Versioned config store backend and timeouts
    MutatorConfig: Optimistic concurrency retry bounds and history retention
    WebhookConfig: Outbound notification endpoints
    CoordinatorConfig: Everything above, rooted at the ``promoter`` key

Example YAML:

    promoter:
      registry:
        uri: oci://registry.example.com/apps
        auth:
          type: basic
          username_env: REGISTRY_USERNAME
          password_env: REGISTRY_PASSWORD
      store:
        backend: filesystem
        path: ./deploy/values
      mutator:
        max_conflict_retries: 5
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from promoter_core.errors import ConfigurationError

# =============================================================================
# Resilience Schemas
# =============================================================================


class RetryConfig(BaseModel):
    """Retry policy configuration for transient failures.

    Uses exponential backoff with optional jitter to prevent thundering herd.

    Examples:
        >>> config = RetryConfig(max_attempts=5, initial_delay_ms=500)
        >>> config.initial_delay_ms
        500
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    max_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Maximum number of attempts (first try included)",
    )
    initial_delay_ms: int = Field(
        default=1000,
        ge=0,
        description="Initial delay between retries in milliseconds",
    )
    backoff_multiplier: float = Field(
        default=2.0,
        ge=1.0,
        le=5.0,
        description="Multiplier for exponential backoff",
    )
    max_delay_ms: int = Field(
        default=30000,
        ge=0,
        description="Maximum delay cap in milliseconds",
    )
    jitter: bool = Field(
        default=True,
        description="Add random jitter to delays to prevent thundering herd",
    )


class CircuitBreakerConfig(BaseModel):
    """Circuit breaker configuration for registry availability.

    State transitions:
    - CLOSED -> OPEN: After failure_threshold consecutive failures
    - OPEN -> HALF_OPEN: After recovery_timeout_ms
    - HALF_OPEN -> CLOSED: On successful probe
    - HALF_OPEN -> OPEN: On failed probe
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    enabled: bool = Field(default=True, description="Enable circuit breaker pattern")
    failure_threshold: int = Field(
        default=5,
        ge=1,
        description="Number of consecutive failures before opening circuit",
    )
    recovery_timeout_ms: int = Field(
        default=60000,
        ge=0,
        description="Time in OPEN state before transitioning to HALF_OPEN",
    )
    half_open_requests: int = Field(
        default=1,
        ge=1,
        description="Number of probe requests allowed in HALF_OPEN state",
    )


class ResilienceConfig(BaseModel):
    """Resilience configuration combining retry and circuit breaker.

    Examples:
        >>> config = ResilienceConfig()
        >>> config.retry.max_attempts
        3
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    retry: RetryConfig = Field(default_factory=RetryConfig)
    circuit_breaker: CircuitBreakerConfig = Field(default_factory=CircuitBreakerConfig)


# =============================================================================
# Registry Schemas
# =============================================================================


class AuthType(str, Enum):
    """Authentication types for the artifact registry."""

    ANONYMOUS = "anonymous"
    BASIC = "basic"
    TOKEN = "token"


class RegistryAuth(BaseModel):
    """Registry authentication.

    Credentials are supplied out-of-band: the config names the environment
    variables that hold them, never the secrets themselves.

    Examples:
        >>> auth = RegistryAuth(
        ...     type=AuthType.BASIC,
        ...     username_env="REGISTRY_USERNAME",
        ...     password_env="REGISTRY_PASSWORD",
        ... )
        >>> auth.type
        <AuthType.BASIC: 'basic'>
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    type: AuthType = Field(default=AuthType.ANONYMOUS)
    username_env: str | None = Field(
        default=None,
        description="Environment variable holding the registry username",
    )
    password_env: str | None = Field(
        default=None,
        description="Environment variable holding the registry password or token",
    )

    @model_validator(mode="after")
    def validate_credential_sources(self) -> RegistryAuth:
        """Require the credential variables the auth type needs."""
        if self.type == AuthType.BASIC and not (self.username_env and self.password_env):
            raise ValueError("basic auth requires username_env and password_env")
        if self.type == AuthType.TOKEN and not self.password_env:
            raise ValueError("token auth requires password_env")
        if self.type == AuthType.ANONYMOUS and (self.username_env or self.password_env):
            raise ValueError("anonymous auth must not name credential variables")
        return self


class RegistryConfig(BaseModel):
    """Artifact registry configuration.

    Examples:
        >>> config = RegistryConfig(uri="oci://registry.example.com/apps")
        >>> config.timeout_seconds
        30.0
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    uri: str = Field(
        ...,
        min_length=1,
        pattern=r"^oci://[a-zA-Z0-9][a-zA-Z0-9.:-]*[a-zA-Z0-9](/[a-zA-Z0-9._-]+)*$",
        description="Registry URI (e.g., oci://myregistry.azurecr.io/apps)",
        examples=["oci://myregistry.azurecr.io/apps", "oci://localhost:5000/apps"],
    )
    backend: Literal["oras", "memory"] = Field(
        default="oras",
        description="Registry backend implementation",
    )
    auth: RegistryAuth = Field(default_factory=RegistryAuth)
    tls_verify: bool = Field(
        default=True,
        description="Verify TLS certificates (disable only for local testing)",
    )
    timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Upper bound for a single registry call",
    )
    resilience: ResilienceConfig = Field(default_factory=ResilienceConfig)


# =============================================================================
# Config Store Schemas
# =============================================================================


class StoreBackend(str, Enum):
    """Versioned config store backends."""

    MEMORY = "memory"
    FILESYSTEM = "filesystem"


class StoreConfig(BaseModel):
    """Versioned config store configuration.

    Examples:
        >>> StoreConfig(backend=StoreBackend.FILESYSTEM, path=Path("deploy/values")).path
        PosixPath('deploy/values')
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    backend: StoreBackend = Field(default=StoreBackend.MEMORY)
    path: Path | None = Field(
        default=None,
        description="Directory holding one values document per config record",
    )
    timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Upper bound for a single store read or write",
    )
    retry: RetryConfig = Field(
        default_factory=lambda: RetryConfig(max_attempts=3, initial_delay_ms=200),
        description="Backoff for store unavailability",
    )

    @model_validator(mode="after")
    def validate_path(self) -> StoreConfig:
        """Filesystem stores need a directory."""
        if self.backend == StoreBackend.FILESYSTEM and self.path is None:
            raise ValueError("filesystem store requires 'path'")
        return self


class MutatorConfig(BaseModel):
    """Config mutator tuning.

    Examples:
        >>> MutatorConfig().max_conflict_retries
        5
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    max_conflict_retries: int = Field(
        default=5,
        ge=0,
        le=50,
        description="Read-modify-write retries after a version conflict",
    )
    conflict_backoff_ms: int = Field(
        default=50,
        ge=0,
        description="Base delay before re-reading after a conflict",
    )
    history_limit: int = Field(
        default=100,
        ge=1,
        description="Maximum revisions retained per config record",
    )


# =============================================================================
# Webhook Schemas
# =============================================================================

VALID_WEBHOOK_EVENTS = frozenset({"promotion.succeeded", "promotion.failed", "rollback"})
"""Event types a webhook may subscribe to."""


class WebhookConfig(BaseModel):
    """Webhook notification configuration.

    Examples:
        >>> config = WebhookConfig(
        ...     url="https://hooks.example.com/deploys",
        ...     events=["promotion.succeeded"],
        ... )
        >>> config.timeout_seconds
        30
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    url: str = Field(..., min_length=1, description="Webhook endpoint URL")
    events: list[str] = Field(..., min_length=1, description="Event types to notify")
    headers: dict[str, str] | None = Field(default=None)
    timeout_seconds: int = Field(default=30, ge=1, le=300)
    retry_count: int = Field(default=3, ge=0, le=10)

    @model_validator(mode="after")
    def validate_events(self) -> WebhookConfig:
        """Validate all events are known event types."""
        invalid = set(self.events) - VALID_WEBHOOK_EVENTS
        if invalid:
            raise ValueError(
                f"Invalid event types: {sorted(invalid)}. "
                f"Valid types: {sorted(VALID_WEBHOOK_EVENTS)}"
            )
        return self


# =============================================================================
# Top-level
# =============================================================================


class CoordinatorConfig(BaseModel):
    """Complete coordinator configuration (the ``promoter`` section)."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    registry: RegistryConfig
    store: StoreConfig = Field(default_factory=StoreConfig)
    mutator: MutatorConfig = Field(default_factory=MutatorConfig)
    webhooks: list[WebhookConfig] = Field(default_factory=list)


def load_config(path: str | Path) -> CoordinatorConfig:
    """Load CoordinatorConfig from a YAML file.

    Relative store paths are resolved against the config file's directory.

    Args:
        path: Path to ``promoter.yaml``.

    Returns:
        Validated CoordinatorConfig.

    Raises:
        ConfigurationError: If the file is missing, unparsable, lacks the
            ``promoter`` section, or fails validation.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise ConfigurationError(f"Config file not found: {config_path}")

    try:
        with config_path.open() as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Failed to parse config YAML: {e}") from e

    if not isinstance(data, dict) or "promoter" not in data:
        raise ConfigurationError(f"Missing 'promoter' section in config: {config_path}")

    raw_section = data["promoter"] or {}
    if not isinstance(raw_section, dict):
        raise ConfigurationError(
            f"'promoter' section must be a mapping, got {type(raw_section).__name__}: {config_path}"
        )
    section: dict[str, Any] = dict(raw_section)
    store = section.get("store")
    if isinstance(store, dict) and store.get("path"):
        store_path = Path(store["path"])
        if not store_path.is_absolute():
            section["store"] = {**store, "path": str(config_path.parent / store_path)}

    try:
        return CoordinatorConfig.model_validate(section)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid promoter configuration: {e}") from e


__all__ = [
    "AuthType",
    "CircuitBreakerConfig",
    "CoordinatorConfig",
    "MutatorConfig",
    "RegistryAuth",
    "RegistryConfig",
    "ResilienceConfig",
    "RetryConfig",
    "StoreBackend",
    "StoreConfig",
    "VALID_WEBHOOK_EVENTS",
    "WebhookConfig",
    "load_config",
]
