# src/registry_metrics/config/settings.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Registry Metrics Configuration (Pydantic Settings, v2)

Summary:
    Typed, validated process configuration for the registry metrics service.
    Environment variables (or a ``.env`` file) feed :class:`Settings`, which
    projects the metrics-related fields into a :class:`MetricsConfig` for the
    plugin.

Design:
    - Pydantic v2 BaseSettings with `extra='forbid'` to catch unknown env.
    - Complex values (exclusion list, package groups) are JSON in env.
      JSON objects keep key order, so package group order is preserved.
    - Singleton accessor `get_settings()` with LRU cache.
    - Safe, structured logging (no secrets).
"""

from __future__ import annotations

import logging
from enum import Enum
from functools import lru_cache

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from registry_metrics.config.features.metrics import (
    DEFAULT_METRICS_PATH,
    DefaultMetricsConfig,
    MetricsConfig,
    PackageMetricsConfig,
    RequestMetricsConfig,
)

logger = logging.getLogger(__name__)


class Environment(str, Enum):
    """Logical deployment environment."""

    DEVELOPMENT = "development"
    TEST = "test"
    STAGING = "staging"
    PRODUCTION = "production"


class Settings(BaseSettings):
    """Typed application configuration for the registry metrics service."""

    # ---------------------------
    # Core environment
    # ---------------------------
    environment: Environment = Field(
        default=Environment.DEVELOPMENT,
        description="Logical deployment environment.",
        validation_alias="ENVIRONMENT",
    )
    service_name: str = Field(
        default="registry-metrics",
        description="Logical service name for logging.",
        validation_alias="SERVICE_NAME",
    )
    service_version: str | None = Field(
        default=None,
        description="Service version reported at startup.",
        validation_alias="SERVICE_VERSION",
    )

    # ---------------------------
    # Logging
    # ---------------------------
    log_level: str | None = Field(
        default=None,
        description="Override log level (e.g., 'DEBUG', 'INFO'). If not set, defaults are used.",
        validation_alias="LOG_LEVEL",
    )

    # ---------------------------
    # Metrics endpoint
    # ---------------------------
    metrics_path: str = Field(
        default=DEFAULT_METRICS_PATH,
        description="Path of the Prometheus scrape endpoint. Always excluded from request metrics.",
        validation_alias="METRICS_PATH",
    )
    default_metrics_enabled: bool = Field(
        default=False,
        description="Register process, platform and GC collectors.",
        validation_alias="DEFAULT_METRICS_ENABLED",
    )

    # ---------------------------
    # Request metrics
    # ---------------------------
    request_metrics_enabled: bool = Field(
        default=False,
        description="Count every non-excluded HTTP request.",
        validation_alias="REQUEST_METRICS_ENABLED",
    )
    request_metrics_name: str | None = Field(
        default=None,
        description="Counter name override for request metrics.",
        validation_alias="REQUEST_METRICS_NAME",
    )
    request_metrics_path_exclusions: list[str] | None = Field(
        default=None,
        description="JSON list of exclusion regexes. Unset selects the built-in set.",
        validation_alias="REQUEST_METRICS_PATH_EXCLUSIONS",
    )

    # ---------------------------
    # Package download metrics
    # ---------------------------
    package_metrics_enabled: bool = Field(
        default=False,
        description="Count GET requests for package tarballs.",
        validation_alias="PACKAGE_METRICS_ENABLED",
    )
    package_metrics_name: str | None = Field(
        default=None,
        description="Counter name override for package download metrics.",
        validation_alias="PACKAGE_METRICS_NAME",
    )
    package_metrics_groups: dict[str, str] | None = Field(
        default=None,
        description="JSON object mapping grouping regex to label, first match wins.",
        validation_alias="PACKAGE_METRICS_GROUPS",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="forbid",
        case_sensitive=False,
    )

    def metrics_config(self) -> MetricsConfig:
        """Project the metrics fields into the plugin configuration.

        Returns:
            MetricsConfig: Plugin configuration built from these settings.
        """
        return MetricsConfig(
            metrics_path=self.metrics_path,
            default_metrics=DefaultMetricsConfig(enabled=self.default_metrics_enabled),
            request_metrics=RequestMetricsConfig(
                enabled=self.request_metrics_enabled,
                metric_name=self.request_metrics_name,
                path_exclusions=(
                    tuple(self.request_metrics_path_exclusions)
                    if self.request_metrics_path_exclusions is not None
                    else None
                ),
            ),
            package_metrics=PackageMetricsConfig(
                enabled=self.package_metrics_enabled,
                metric_name=self.package_metrics_name,
                package_groups=self.package_metrics_groups or {},
            ),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached singleton `Settings` instance.

    Returns:
        Settings: Validated application settings.

    Raises:
        RuntimeError: If configuration is invalid.
    """
    try:
        settings = Settings()
        logger.info(
            "Settings initialized",
            extra={
                "extra": {
                    "environment": settings.environment.value,
                    "metrics_path": settings.metrics_path,
                    "metrics": {
                        "default": settings.default_metrics_enabled,
                        "request": settings.request_metrics_enabled,
                        "package": settings.package_metrics_enabled,
                        "package_group_count": len(settings.package_metrics_groups or {}),
                    },
                }
            },
        )
        return settings
    except ValidationError as exc:
        logger.exception("Invalid application configuration")
        raise RuntimeError(f"Invalid configuration: {exc}") from exc
