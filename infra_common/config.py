"""
infra-common Configuration Management Module

This module provides configuration models for every infrastructure service wired by
the package, plus an environment-backed ``Settings`` class built on Pydantic Settings.

- CassandraOptions: contact points, local data center, timeouts, reconnect policy
- MinioOptions: endpoint and credentials for the S3-compatible object store
- RedisOptions: connection URL, timeouts and connect retry parameters

Options models are immutable. They accept configuration trees keyed either by the
PascalCase names used in service configuration files (``ContactPoints``, ``LocalDc``,
``AccessKey``) or by their snake_case field names. Durations accept a number of
seconds or an ``HH:MM:SS`` string.

Every section on ``Settings`` is optional so that the registration functions can
detect an absent section and fail fast with ``ConfigurationError``.
"""

from collections.abc import Mapping
from datetime import timedelta
from functools import lru_cache
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_pascal
from pydantic_settings import BaseSettings, SettingsConfigDict

from infra_common.errors import ConfigurationError


OptionsT = TypeVar("OptionsT", bound="ServiceOptions")


class ServiceOptions(BaseModel):
    """Base class for immutable per-service connection options."""

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_pascal,
        populate_by_name=True,
        extra="ignore",
    )


# =========================================================================
# Cassandra
# =========================================================================


class CassandraOptions(ServiceOptions):
    """
    Connection options for a Cassandra-compatible cluster.

    Zero durations mean "use the driver default" for connect timeout and
    "no statement timeout" for the health check.
    """

    contact_points: list[str] = Field(
        default_factory=list, description="Seed addresses used to discover the cluster"
    )

    local_dc: str = Field(default="", description="Local data center for DC-aware routing")

    port: int = Field(default=9042, description="Native protocol port", ge=1, le=65535)

    keyspace: str | None = Field(default=None, description="Keyspace bound to the session")

    username: str | None = Field(default=None, description="Plain-text auth username")

    password: str | None = Field(default=None, description="Plain-text auth password")

    socket_connect_timeout: timedelta = Field(default=timedelta(0))

    exponential_reconnect_policy: bool = Field(
        default=False, description="Use exponential backoff between reconnection attempts"
    )

    exponential_reconnect_policy_base_delay: timedelta = Field(default=timedelta(0))

    exponential_reconnect_policy_max_delay: timedelta = Field(default=timedelta(0))

    health_timeout: timedelta = Field(default=timedelta(0))

    @field_validator("contact_points", mode="before")
    @classmethod
    def split_contact_points(cls, v: str | list[str]) -> list[str]:
        """Parse contact points from a comma-separated string if provided as string."""
        if isinstance(v, str):
            return [point.strip() for point in v.split(",") if point.strip()]
        return v


# =========================================================================
# MinIO / S3
# =========================================================================


class MinioOptions(ServiceOptions):
    """Endpoint and credentials for the MinIO (S3-compatible) object store."""

    endpoint: str = Field(description="host:port of the MinIO server, or a full URL")

    access_key: str = Field(description="Access key ID")

    secret: str = Field(description="Secret access key")

    secure: bool = Field(default=False, description="Use HTTPS when endpoint has no scheme")

    region: str = Field(default="us-east-1", description="Region used for request signing")

    @property
    def endpoint_url(self) -> str:
        """Endpoint as a URL, adding the scheme implied by ``secure`` when missing."""
        if "://" in self.endpoint:
            return self.endpoint
        scheme = "https" if self.secure else "http"
        return f"{scheme}://{self.endpoint}"


# =========================================================================
# Redis
# =========================================================================


class RedisOptions(ServiceOptions):
    """Connection options for Redis."""

    url: str = Field(default="redis://localhost:6379", description="Redis connection URL")

    client_name: str | None = Field(default=None, description="CLIENT SETNAME value")

    decode_responses: bool = Field(default=True)

    socket_connect_timeout: float = Field(default=5.0, gt=0)

    socket_timeout: float = Field(default=5.0, gt=0)

    connect_retries: int = Field(default=3, ge=1)

    retry_base_delay: float = Field(default=1.0, ge=0)


# =========================================================================
# Binding helpers
# =========================================================================


def bind_options(
    config: Mapping[str, Any] | ServiceOptions | None,
    options_type: type[OptionsT],
    section: str,
) -> OptionsT:
    """
    Bind a configuration section to an options model, failing fast when absent.

    Args:
        config: Raw configuration mapping, an already-built options instance, or None.
        options_type: Options model to validate against.
        section: Human-readable section name used in error messages.

    Returns:
        The validated, immutable options instance.

    Raises:
        ConfigurationError: If the section is absent, empty, or fails validation.
    """
    if config is None:
        raise ConfigurationError(f"{section} is not configured.")

    if isinstance(config, options_type):
        return config

    if isinstance(config, ServiceOptions):
        raise ConfigurationError(
            f"{section} configuration must be {options_type.__name__}, "
            f"got {type(config).__name__}"
        )

    if not config:
        raise ConfigurationError(f"{section} is not configured.")

    try:
        return options_type.model_validate(dict(config))
    except ValidationError as e:
        raise ConfigurationError(f"{section} configuration is invalid: {e}") from e


# =========================================================================
# Settings
# =========================================================================


class Settings(BaseSettings):
    """
    Environment-backed settings for applications using infra-common.

    Sections are read from nested environment variables using ``__`` as the
    delimiter, for example ``MINIO__ENDPOINT=localhost:9000`` or
    ``CASSANDRA__CONTACT_POINTS='["10.0.0.1","10.0.0.2"]'``. List values in
    nested sections are JSON encoded.

    Example usage:
        ```python
        from infra_common.config import get_settings
        from infra_common.core.storage import add_minio
        from infra_common.registry import ServiceRegistry

        settings = get_settings()
        registry = add_minio(ServiceRegistry(), settings.minio)
        ```
    """

    app_env: str = Field(
        default="development",
        description="Application environment (development, staging, production, testing)",
    )

    log_level: str = Field(
        default="info", description="Logging level (debug, info, warning, error, critical)"
    )

    json_logs: bool = Field(default=True, description="Emit JSON formatted log records")

    cassandra: CassandraOptions | None = None

    minio: MinioOptions | None = None

    redis: RedisOptions | None = None

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate that log_level is a valid logging level."""
        valid_levels = {"debug", "info", "warning", "error", "critical"}
        normalized = v.lower()
        if normalized not in valid_levels:
            raise ValueError(f"Invalid log_level '{v}'. Must be one of: {', '.join(valid_levels)}")
        return normalized

    @field_validator("app_env")
    @classmethod
    def validate_app_env(cls, v: str) -> str:
        """Validate that app_env is a valid environment name."""
        valid_envs = {"development", "staging", "production", "testing"}
        normalized = v.lower()
        if normalized not in valid_envs:
            raise ValueError(f"Invalid app_env '{v}'. Must be one of: {', '.join(valid_envs)}")
        return normalized

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env == "production"


@lru_cache
def get_settings() -> Settings:
    """
    Get the global Settings instance.

    Configuration is loaded once from environment variables and the ``.env``
    file; subsequent calls return the cached instance.
    """
    return Settings()


__all__ = [
    "CassandraOptions",
    "MinioOptions",
    "RedisOptions",
    "ServiceOptions",
    "Settings",
    "bind_options",
    "get_settings",
]
