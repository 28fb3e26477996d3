# src/registry_metrics/plugin.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""
Registry Metrics Plugin

Synopsis:
    Host-facing entry point. A plugin is constructed with a
    :class:`MetricsConfig` and installed into a FastAPI application
    exactly once. When enabled it adds:

        1. A metrics endpoint at a configurable path (``/-/metrics``).
        2. Package tarball download counters (``GET *.tgz``).
        3. Per-request counters for every non-excluded path.
        4. Default process/platform/GC collectors.

Design:
    • Construction validates and compiles every rule; an invalid regex fails
      here, before the application accepts traffic.
    • The metrics path is always appended to the exclusion rules so scrape
      traffic is never counted.
    • Each plugin owns its own :class:`MetricsSink` (and registry); there is
      no module-level plugin registry.

Usage:
    plugin = MetricsPlugin(MetricsConfig.model_validate(raw_config))
    plugin.install(app)
"""

from __future__ import annotations

import re

from fastapi import FastAPI

from registry_metrics.adapters.routers.metrics_router import build_metrics_router
from registry_metrics.config.features.metrics import MetricsConfig
from registry_metrics.domain.exceptions.metrics import MetricsConfigError
from registry_metrics.domain.services.path_classifier import (
    DEFAULT_EXCLUDED_PATHS,
    ExclusionRules,
    GroupingRules,
    compile_groups,
    compile_rules,
)
from registry_metrics.infrastructure.logging.logger import get_json_logger
from registry_metrics.infrastructure.middleware.request_metrics import (
    PackageMetricsMiddleware,
    RequestMetricsMiddleware,
)
from registry_metrics.infrastructure.observability.metrics import MetricsSink

__all__ = ["MetricsPlugin"]

logger = get_json_logger(__name__)


class MetricsPlugin:
    """Registry metrics plugin.

    Attributes:
        config: Validated plugin configuration.
        metrics_path: Scrape endpoint path.
        path_exclusions: Compiled request exclusion rules, metrics path last.
        package_groups: Compiled package grouping rules in declaration order.
        sink: Counters owner; ``None`` until :meth:`install` enables metrics.
    """

    def __init__(self, config: MetricsConfig | None = None) -> None:
        self.config = config if config is not None else MetricsConfig()
        self.metrics_path = self.config.metrics_path
        self.default_metrics_enabled = self.config.default_metrics.enabled
        self.request_metrics_enabled = self.config.request_metrics.enabled
        self.package_metrics_enabled = self.config.package_metrics.enabled

        exclusions = self.config.request_metrics.path_exclusions
        self.path_exclusions: ExclusionRules = compile_rules(
            exclusions if exclusions is not None else DEFAULT_EXCLUDED_PATHS,
            flags=re.IGNORECASE,
        ) + compile_rules([f"^{re.escape(self.metrics_path)}$"])
        self.package_groups: GroupingRules = compile_groups(
            self.config.package_metrics.package_groups
        )

        self.sink: MetricsSink | None = None
        self._installed = False

    def _section_summary(self) -> dict[str, object]:
        return self.config.model_dump(
            include={"default_metrics", "request_metrics", "package_metrics"},
            by_alias=True,
        )

    def install(self, app: FastAPI) -> None:
        """Install middleware and the metrics route into ``app``.

        Must be called before the application starts serving.

        Args:
            app: FastAPI application.

        Raises:
            MetricsConfigError: If called twice or if counters cannot be registered.
        """
        if self._installed:
            raise MetricsConfigError("Metrics plugin is already installed")
        self._installed = True

        if not self.config.any_enabled:
            logger.warning(
                "metrics: [install] metrics are disabled",
                extra={"extra": self._section_summary()},
            )
            return

        self.sink = MetricsSink(
            request_metrics_enabled=self.request_metrics_enabled,
            package_metrics_enabled=self.package_metrics_enabled,
            default_metrics_enabled=self.default_metrics_enabled,
            request_metric_name=self.config.request_metrics.metric_name,
            package_metric_name=self.config.package_metrics.metric_name,
        )
        logger.info(
            "metrics: [install] metrics are enabled and exposed at '%s'",
            self.metrics_path,
            extra={"extra": self._section_summary()},
        )

        if self.request_metrics_enabled:
            app.add_middleware(
                RequestMetricsMiddleware, sink=self.sink, exclusions=self.path_exclusions
            )
        if self.package_metrics_enabled:
            app.add_middleware(PackageMetricsMiddleware, sink=self.sink, groups=self.package_groups)

        app.include_router(build_metrics_router(self.sink, self.metrics_path))
