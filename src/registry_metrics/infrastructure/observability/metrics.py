# src/registry_metrics/infrastructure/observability/metrics.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Prometheus metrics sink (per-instance registry).

Summary:
    Owns the request and package download counters and the registry they are
    rendered from. Each sink has its own ``CollectorRegistry``, so several
    plugin instances (or tests) never collide on the process-wide default.

Design:
    * Counters are created exactly once, at construction, with a fixed
      label schema. Label values come from the label dataclasses, whose
      ``as_dict()`` keys equal the schema by construction.
    * A disabled metric kind has no counter; incrementing it is a no-op.
    * Default runtime collectors (process, platform, GC) are opt-in.
    * The exposition carries one sample line per label set: the client's
      ``<name>_created`` series is switched off process-wide on import, and
      counters are exposed as ``<name>_total``.
    * Construction errors (invalid or colliding names) raise
      :class:`MetricsConfigError`; increments never raise to callers
      through the middleware, which logs and drops failures.

Example:
    sink = MetricsSink(request_metrics_enabled=True)
    sink.increment_request(labels)
    body = sink.render()
"""

from __future__ import annotations

import threading
from typing import Final

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    GCCollector,
    PlatformCollector,
    ProcessCollector,
    disable_created_metrics,
    generate_latest,
)

from registry_metrics.domain.entities.metric_context import (
    PACKAGE_LABEL_NAMES,
    REQUEST_LABEL_NAMES,
    PackageLabels,
    RequestLabels,
)
from registry_metrics.domain.exceptions.metrics import MetricsConfigError
from registry_metrics.infrastructure.logging.logger import get_json_logger

__all__ = [
    "CONTENT_TYPE_METRICS",
    "DEFAULT_METRIC_NAME_REQUESTS",
    "DEFAULT_METRIC_NAME_PACKAGE_DOWNLOADS",
    "MetricsSink",
]

_log = get_json_logger(__name__)

DEFAULT_METRIC_NAME_REQUESTS: Final[str] = "registry_http_requests"
DEFAULT_METRIC_NAME_PACKAGE_DOWNLOADS: Final[str] = "registry_package_downloads"
CONTENT_TYPE_METRICS: Final[str] = CONTENT_TYPE_LATEST

_REQUEST_HELP: Final[str] = "Count of HTTP requests made to the registry"
_PACKAGE_HELP: Final[str] = "Count of package downloads from the registry"

disable_created_metrics()


def _create_counter(
    name: str,
    help_text: str,
    labelnames: tuple[str, ...],
    registry: CollectorRegistry,
) -> Counter:
    """Register a labeled counter on ``registry``.

    Args:
        name: Metric name (a trailing ``_total`` is implied by the client).
        help_text: Human-readable description.
        labelnames: Fixed label schema.
        registry: Target registry.

    Returns:
        Counter: Bound to ``registry``.

    Raises:
        MetricsConfigError: If the name is invalid or already registered.
    """
    try:
        return Counter(name, help_text, labelnames, registry=registry)
    except ValueError as exc:
        raise MetricsConfigError(
            f"Cannot register counter {name!r}: {exc}",
            details={"metric": name},
        ) from exc


class MetricsSink:
    """Counters for one metrics plugin instance.

    Args:
        request_metrics_enabled: Create the per-request counter.
        package_metrics_enabled: Create the package download counter.
        default_metrics_enabled: Register process/platform/GC collectors.
        request_metric_name: Override for the request counter name.
        package_metric_name: Override for the package counter name.
        registry: Registry to bind to; a fresh one is created when omitted.
    """

    def __init__(
        self,
        *,
        request_metrics_enabled: bool = False,
        package_metrics_enabled: bool = False,
        default_metrics_enabled: bool = False,
        request_metric_name: str | None = None,
        package_metric_name: str | None = None,
        registry: CollectorRegistry | None = None,
    ) -> None:
        self.registry = registry if registry is not None else CollectorRegistry()
        self._lock = threading.Lock()
        self._request_counter: Counter | None = None
        self._package_counter: Counter | None = None

        if default_metrics_enabled:
            ProcessCollector(registry=self.registry)
            PlatformCollector(registry=self.registry)
            GCCollector(registry=self.registry)

        if request_metrics_enabled:
            self._request_counter = _create_counter(
                request_metric_name or DEFAULT_METRIC_NAME_REQUESTS,
                _REQUEST_HELP,
                REQUEST_LABEL_NAMES,
                self.registry,
            )
        if package_metrics_enabled:
            self._package_counter = _create_counter(
                package_metric_name or DEFAULT_METRIC_NAME_PACKAGE_DOWNLOADS,
                _PACKAGE_HELP,
                PACKAGE_LABEL_NAMES,
                self.registry,
            )

        _log.debug(
            "metrics: [MetricsSink] counters registered",
            extra={
                "extra": {
                    "request_counter": self._request_counter is not None,
                    "package_counter": self._package_counter is not None,
                    "default_metrics": default_metrics_enabled,
                }
            },
        )

    @property
    def content_type(self) -> str:
        """Content type of :meth:`render` output."""
        return CONTENT_TYPE_METRICS

    @property
    def request_counter(self) -> Counter | None:
        return self._request_counter

    @property
    def package_counter(self) -> Counter | None:
        return self._package_counter

    def increment_request(self, labels: RequestLabels) -> None:
        """Add one to the request counter for ``labels`` (no-op when disabled)."""
        if self._request_counter is None:
            return
        with self._lock:
            self._request_counter.labels(**labels.as_dict()).inc()

    def increment_package(self, labels: PackageLabels) -> None:
        """Add one to the package download counter for ``labels`` (no-op when disabled)."""
        if self._package_counter is None:
            return
        with self._lock:
            self._package_counter.labels(**labels.as_dict()).inc()

    def render(self) -> bytes:
        """Render every collector on this sink's registry in text exposition format."""
        return generate_latest(self.registry)
