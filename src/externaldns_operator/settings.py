"""Centralized operator settings using pydantic-settings.

This module provides a single source of truth for all operator configuration
loaded from environment variables. Uses pydantic for automatic validation,
type coercion, and documentation.

Settings are built once at startup and handed to the operator context;
nothing in the package reads them from a module-level instance.
"""

import re

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from externaldns_operator.constants import (
    DEFAULT_OPERAND_NAMESPACE,
    DEFAULT_OPERATOR_NAMESPACE,
    DEFAULT_QUEUE_SIZE,
    DEFAULT_RETRY_BASE_DELAY,
    DEFAULT_RETRY_MAX_DELAY,
    DEFAULT_WORKERS,
    PLATFORM_KUBERNETES,
    PLATFORM_OPENSHIFT,
)

_DNS_LABEL = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$")


class Settings(BaseSettings):
    """Operator configuration loaded from environment variables.

    All settings have sensible defaults for production use. Override via
    environment variables as documented per field.
    """

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Namespaces
    operator_namespace: str = Field(
        default=DEFAULT_OPERATOR_NAMESPACE,
        description="Namespace where the operator runs and source objects live",
        validation_alias="OPERATOR_NAMESPACE",
    )
    operand_namespace: str = Field(
        default=DEFAULT_OPERAND_NAMESPACE,
        description="Namespace where ExternalDNS instances and mirrored objects live",
        validation_alias="OPERAND_NAMESPACE",
    )

    # Mirrors
    trusted_ca_configmap_name: str = Field(
        default="",
        description=(
            "Name of the config map in the operator namespace holding CA(s) "
            "trusted by ExternalDNS containers (empty = trusted CA mirror disabled)"
        ),
        validation_alias="TRUSTED_CA_CONFIGMAP_NAME",
    )
    platform: str = Field(
        default=PLATFORM_KUBERNETES,
        description="Platform the operator runs on (kubernetes, openshift)",
        validation_alias="PLATFORM",
    )

    # Logging configuration
    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    json_logs: bool = Field(
        default=True,
        validation_alias="JSON_LOGS",
        description="Enable JSON formatted logging for structured log aggregation",
    )
    correlation_ids: bool = Field(
        default=True,
        validation_alias="CORRELATION_IDS",
        description="Enable correlation IDs in logs for request tracing",
    )

    # Metrics and observability
    metrics_port: int = Field(
        default=8081,
        validation_alias="METRICS_PORT",
        description="Port for Prometheus metrics endpoint",
    )
    metrics_host: str = Field(
        default="0.0.0.0",
        validation_alias="METRICS_HOST",
        description="Host address to bind metrics server",
    )
    tracing_enabled: bool = Field(
        default=False,
        validation_alias="OTEL_TRACING_ENABLED",
        description="Export OpenTelemetry traces for reconciliations",
    )
    tracing_endpoint: str = Field(
        default="http://localhost:4317",
        validation_alias="OTEL_EXPORTER_OTLP_ENDPOINT",
        description="OTLP gRPC collector endpoint",
    )
    tracing_sample_rate: float = Field(
        default=1.0,
        ge=0.0,
        le=1.0,
        validation_alias="OTEL_TRACES_SAMPLER_ARG",
        description="Fraction of root spans to sample",
    )

    # Work queue
    workers: int = Field(
        default=DEFAULT_WORKERS,
        gt=0,
        validation_alias="MIRROR_WORKERS",
        description="Number of concurrent mirror reconciliation workers",
    )
    queue_size: int = Field(
        default=DEFAULT_QUEUE_SIZE,
        gt=0,
        validation_alias="MIRROR_QUEUE_SIZE",
        description="Capacity of the buffer between watch events and workers",
    )
    retry_base_delay_seconds: float = Field(
        default=DEFAULT_RETRY_BASE_DELAY,
        gt=0,
        validation_alias="MIRROR_RETRY_BASE_DELAY_SECONDS",
        description="First retry delay after a failed reconciliation",
    )
    retry_max_delay_seconds: float = Field(
        default=DEFAULT_RETRY_MAX_DELAY,
        gt=0,
        validation_alias="MIRROR_RETRY_MAX_DELAY_SECONDS",
        description="Upper bound for the exponential retry delay",
    )

    @field_validator("operator_namespace", "operand_namespace")
    @classmethod
    def validate_namespace(cls, value: str) -> str:
        if not value or len(value) > 63 or not _DNS_LABEL.match(value):
            raise ValueError(f"'{value}' is not a valid namespace name")
        return value

    @field_validator("platform")
    @classmethod
    def validate_platform(cls, value: str) -> str:
        value = value.lower()
        if value not in (PLATFORM_KUBERNETES, PLATFORM_OPENSHIFT):
            raise ValueError(
                f"platform must be '{PLATFORM_KUBERNETES}' or '{PLATFORM_OPENSHIFT}'"
            )
        return value

    @model_validator(mode="after")
    def validate_retry_bounds(self) -> "Settings":
        if self.retry_max_delay_seconds < self.retry_base_delay_seconds:
            raise ValueError(
                "MIRROR_RETRY_MAX_DELAY_SECONDS must not be lower than "
                "MIRROR_RETRY_BASE_DELAY_SECONDS"
            )
        return self

    @property
    def is_openshift(self) -> bool:
        return self.platform == PLATFORM_OPENSHIFT

    @property
    def trusted_ca_enabled(self) -> bool:
        """Whether the trusted CA config map should be mirrored."""
        return bool(self.trusted_ca_configmap_name)
