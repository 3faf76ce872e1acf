"""Configuration management for docgen services.

This module provides centralized configuration using Pydantic Settings.
Both the worker and the intake API build one immutable Settings instance at
startup and pass it (or one of its groups) into the components they create.

All configuration is loaded from environment variables with the DOCGEN_
prefix. Nested settings use double underscore as delimiter
(e.g., DOCGEN_BROKER__HOST).

Example:
    export DOCGEN_BROKER__HOST=rabbit
    export DOCGEN_GATEWAY__URL=http://gotenberg:3000
    export DOCGEN_WORKER__MAX_JOBS=100
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Annotated, Any, Self
from urllib.parse import quote, urlsplit

from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_NAME = "documentgenerator_create"

# 24 hours
DEFAULT_MESSAGE_TTL_MS = 86_400_000


class Environment(str, Enum):
    """Deployment environment.

    Production environment has additional constraints.
    """

    DEV = "dev"
    STAGING = "staging"
    PRODUCTION = "production"


class BrokerSettings(BaseSettings):
    """RabbitMQ connection and queue settings.

    The queue is declared durable with a message TTL by both the worker and
    the intake API, so the declaration arguments must match on both sides.
    """

    model_config = SettingsConfigDict(
        env_prefix="DOCGEN_BROKER__",
        extra="ignore",
        frozen=True,
    )

    host: str = Field(
        default="rabbit",
        description="RabbitMQ hostname",
    )
    port: Annotated[int, Field(ge=1, le=65535)] = Field(
        default=5672,
        description="RabbitMQ AMQP port",
    )
    username: str = Field(
        default="guest",
        description="RabbitMQ username",
    )
    password: SecretStr = Field(
        default=SecretStr("guest"),
        description="RabbitMQ password",
    )
    virtual_host: str = Field(
        default="/",
        description="RabbitMQ virtual host",
    )
    queue: str = Field(
        default=DEFAULT_QUEUE_NAME,
        description="Name of the durable conversion queue",
    )
    message_ttl_ms: Annotated[int, Field(ge=1)] = Field(
        default=DEFAULT_MESSAGE_TTL_MS,
        description="Per-queue message TTL in milliseconds (x-message-ttl)",
    )
    prefetch_count: Annotated[int, Field(ge=1)] = Field(
        default=1,
        description="Maximum unacknowledged deliveries per consumer",
    )
    retry_delay: Annotated[float, Field(gt=0)] = Field(
        default=5.0,
        description="Seconds to wait after the first failed connection attempt",
    )
    retry_max_delay: Annotated[float, Field(gt=0)] = Field(
        default=5.0,
        description="Upper bound for the wait between connection attempts",
    )

    @field_validator("queue")
    @classmethod
    def validate_queue_name(cls, v: str) -> str:
        """Queue names must be non-empty and fit in an AMQP short string."""
        if not v:
            msg = "Queue name cannot be empty"
            raise ValueError(msg)
        if len(v.encode()) > 255:
            msg = "Queue name must be at most 255 bytes"
            raise ValueError(msg)
        return v

    @model_validator(mode="after")
    def validate_retry_bounds(self) -> Self:
        """The backoff cap cannot be lower than the initial delay."""
        if self.retry_max_delay < self.retry_delay:
            msg = (
                f"retry_max_delay ({self.retry_max_delay}) must be >= "
                f"retry_delay ({self.retry_delay})"
            )
            raise ValueError(msg)
        return self

    @property
    def url(self) -> str:
        """AMQP URL with credentials and virtual host percent-encoded."""
        user = quote(self.username, safe="")
        password = quote(self.password.get_secret_value(), safe="")
        vhost = quote(self.virtual_host, safe="")
        return f"amqp://{user}:{password}@{self.host}:{self.port}/{vhost}"


class GatewaySettings(BaseSettings):
    """Gotenberg conversion gateway settings."""

    model_config = SettingsConfigDict(
        env_prefix="DOCGEN_GATEWAY__",
        extra="ignore",
        frozen=True,
    )

    url: str = Field(
        default="http://gotenberg:3000",
        description="Base URL of the conversion gateway",
    )
    convert_path: str = Field(
        default="/forms/libreoffice/convert",
        description="Path of the office-document conversion endpoint",
    )


class WorkerSettings(BaseSettings):
    """Worker process settings."""

    model_config = SettingsConfigDict(
        env_prefix="DOCGEN_WORKER__",
        extra="ignore",
        frozen=True,
    )

    max_jobs: Annotated[int, Field(ge=1)] = Field(
        default=100,
        description="Messages handled before the worker exits for a supervised restart",
    )
    request_timeout: Annotated[float, Field(gt=0, le=3600)] = Field(
        default=300.0,
        description="Total time budget in seconds for each outbound HTTP call",
    )
    scratch_dir: str | None = Field(
        default=None,
        description="Directory for scratch files (system temp dir when unset)",
    )


class APISettings(BaseSettings):
    """Intake API settings."""

    model_config = SettingsConfigDict(
        env_prefix="DOCGEN_API__",
        extra="ignore",
        frozen=True,
    )

    host: str = Field(
        default="127.0.0.1",
        description="API server bind address",
    )
    port: Annotated[int, Field(ge=1, le=65535)] = Field(
        default=8000,
        description="API server port",
    )
    security_token: SecretStr | None = Field(
        default=None,
        description="Shared secret expected in the ?token= query parameter",
    )


class Settings(BaseSettings):
    """Main docgen configuration container.

    Example environment variables:
        DOCGEN_ENVIRONMENT=production
        DOCGEN_LOG_LEVEL=DEBUG
        DOCGEN_BROKER__PASSWORD=secret
        DOCGEN_API__SECURITY_TOKEN=changeme
    """

    model_config = SettingsConfigDict(
        env_prefix="DOCGEN_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        validate_default=True,
        frozen=True,
    )

    environment: Environment = Field(
        default=Environment.DEV,
        description="Deployment environment (dev, staging, production)",
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode (never in production)",
    )
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )

    broker: BrokerSettings = Field(default_factory=BrokerSettings)
    gateway: GatewaySettings = Field(default_factory=GatewaySettings)
    worker: WorkerSettings = Field(default_factory=WorkerSettings)
    api: APISettings = Field(default_factory=APISettings)

    app_version: str = Field(
        default="0.1.0",
        description="Application version",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Normalize and check the log level name."""
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in allowed:
            msg = f"Log level must be one of: {', '.join(sorted(allowed))}"
            raise ValueError(msg)
        return v.upper()

    @model_validator(mode="after")
    def validate_production_constraints(self) -> Self:
        """Enforce production environment constraints."""
        if self.environment == Environment.PRODUCTION:
            if self.debug:
                msg = "Debug mode is not allowed in production environment"
                raise ValueError(msg)
            if self.api.security_token is None:
                logger.warning(
                    "Intake API has no security token in production. "
                    "Anyone who can reach it can enqueue conversions."
                )
        return self

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == Environment.PRODUCTION

    def get_snapshot(self) -> dict[str, Any]:
        """Return non-sensitive configuration values for startup logging."""
        return {
            "environment": self.environment.value,
            "broker": {
                "host": self.broker.host,
                "port": self.broker.port,
                "queue": self.broker.queue,
                "prefetch_count": self.broker.prefetch_count,
            },
            "gateway": {"url": self.gateway.url},
            "worker": {
                "max_jobs": self.worker.max_jobs,
                "request_timeout": self.worker.request_timeout,
            },
            "api": {
                "host": self.api.host,
                "port": self.api.port,
                "token_required": self.api.security_token is not None,
            },
            "app_version": self.app_version,
        }


class ConfigValidationError(Exception):
    """Raised when configuration validation fails.

    This exception should cause fast failure at startup to prevent
    running with invalid configuration.
    """

    def __init__(self, message: str, field: str | None = None) -> None:
        """Initialize with error details.

        Args:
            message: Human-readable error description.
            field: Optional field name that failed validation.
        """
        self.message = message
        self.field = field
        super().__init__(message)


def validate_settings(settings: Settings) -> None:
    """Perform runtime validation that cannot be expressed declaratively.

    Args:
        settings: Settings instance to validate.

    Raises:
        ConfigValidationError: If validation fails.
    """
    gateway = urlsplit(settings.gateway.url)
    if gateway.scheme not in ("http", "https") or not gateway.netloc:
        raise ConfigValidationError(
            f"Gateway URL must be an absolute http(s) URL, got {settings.gateway.url!r}. "
            "Set DOCGEN_GATEWAY__URL.",
            field="gateway.url",
        )

    if not settings.gateway.convert_path.startswith("/"):
        raise ConfigValidationError(
            "Gateway convert path must start with '/'.",
            field="gateway.convert_path",
        )

    if not settings.broker.host:
        raise ConfigValidationError(
            "Broker host is required. Set DOCGEN_BROKER__HOST.",
            field="broker.host",
        )
