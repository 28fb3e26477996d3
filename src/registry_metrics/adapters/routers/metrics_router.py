# src/registry_metrics/adapters/routers/metrics_router.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Prometheus scrape endpoint (``/-/metrics`` by default).

Exposes the text-format rendering of a single :class:`MetricsSink`. The
route is built per sink rather than declared at import time, so the path is
configurable and each plugin instance serves its own registry.

Layer:
    adapters/routers
"""

from __future__ import annotations

from fastapi import APIRouter, Response

from registry_metrics.infrastructure.logging.logger import get_json_logger
from registry_metrics.infrastructure.observability.metrics import MetricsSink

__all__ = ["build_metrics_router"]

logger = get_json_logger(__name__)


def build_metrics_router(sink: MetricsSink, path: str) -> APIRouter:
    """Return a router serving ``GET <path>`` from ``sink``.

    Args:
        sink: Metrics sink to render.
        path: Route path, e.g. ``/-/metrics``.

    Returns:
        APIRouter: Router with a single, schema-hidden GET route.
    """
    router = APIRouter()

    @router.get(path, include_in_schema=False)
    async def metrics_probe() -> Response:
        """Expose Prometheus metrics for this sink."""
        logger.debug("metrics: [metrics_probe] providing metrics response")
        return Response(content=sink.render(), media_type=sink.content_type, status_code=200)

    return router
