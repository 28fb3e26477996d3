# src/registry_metrics/config/features/metrics.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""
Metrics Plugin Configuration

Summary:
    Typed view of the metrics plugin section of a registry configuration.
    Accepts both snake_case field names and the camelCase keys used in
    registry YAML/JSON config files:

        metricsPath: /-/metrics
        defaultMetrics:
          enabled: true
        requestMetrics:
          enabled: true
          metricName: registry_http_requests
          pathExclusions: ['^/$', '^/[-]/ping']
        packageMetrics:
          enabled: 'true'
          metricName: registry_package_downloads
          packageGroups:
            '@scoped/.*': scoped
            '.*': other

Notes:
    • ``enabled`` accepts booleans and the strings ``"true"``/``"false"``.
    • ``packageGroups`` keeps declaration order; it is normalized into a tuple
      of ``(pattern, label)`` pairs so first-match-wins is well defined.
    • Regex validity is checked when the plugin compiles the rules.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

__all__ = [
    "DEFAULT_METRICS_PATH",
    "DefaultMetricsConfig",
    "RequestMetricsConfig",
    "PackageMetricsConfig",
    "MetricsConfig",
]

DEFAULT_METRICS_PATH = "/-/metrics"


class _Section(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True, frozen=True)


class DefaultMetricsConfig(_Section):
    """Process-wide runtime metrics (process, platform, GC)."""

    enabled: bool = Field(default=False)


class RequestMetricsConfig(_Section):
    """Per-request counter.

    Attributes:
        enabled: Create the counter and install the middleware.
        metric_name: Counter name override.
        path_exclusions: Exclusion regexes; ``None`` selects the built-in set.
    """

    enabled: bool = Field(default=False)
    metric_name: str | None = Field(default=None, alias="metricName")
    path_exclusions: tuple[str, ...] | None = Field(default=None, alias="pathExclusions")


class PackageMetricsConfig(_Section):
    """Package download counter.

    Attributes:
        enabled: Create the counter and install the middleware.
        metric_name: Counter name override.
        package_groups: Ordered ``(pattern, label)`` grouping rules.
    """

    enabled: bool = Field(default=False)
    metric_name: str | None = Field(default=None, alias="metricName")
    package_groups: tuple[tuple[str, str], ...] = Field(default=(), alias="packageGroups")

    @field_validator("package_groups", mode="before")
    @classmethod
    def _groups_as_pairs(cls, value: Any) -> Any:
        """Turn a ``{pattern: label}`` mapping into ordered pairs."""
        if value is None:
            return ()
        if isinstance(value, Mapping):
            return tuple(value.items())
        return value


class MetricsConfig(_Section):
    """Root metrics plugin configuration."""

    metrics_path: str = Field(default=DEFAULT_METRICS_PATH, alias="metricsPath")
    default_metrics: DefaultMetricsConfig = Field(
        default_factory=DefaultMetricsConfig, alias="defaultMetrics"
    )
    request_metrics: RequestMetricsConfig = Field(
        default_factory=RequestMetricsConfig, alias="requestMetrics"
    )
    package_metrics: PackageMetricsConfig = Field(
        default_factory=PackageMetricsConfig, alias="packageMetrics"
    )

    @field_validator("metrics_path")
    @classmethod
    def _path_is_absolute(cls, value: str) -> str:
        if not value or not value.startswith("/"):
            raise ValueError("metricsPath must start with '/'")
        return value

    @property
    def any_enabled(self) -> bool:
        """True if at least one metric kind is enabled."""
        return (
            self.default_metrics.enabled
            or self.request_metrics.enabled
            or self.package_metrics.enabled
        )
