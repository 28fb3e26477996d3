# src/registry_metrics/main.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""
Application Entry

Synopsis:
    FastAPI bootstrap for running the metrics plugin in front of a registry
    application. Provides an application factory (`create_app`) that wires
    JSON logging, a health endpoint and the metrics plugin from environment
    settings.

Design:
    • Bootstrap only: configuration → logging → plugin install.
    • Registry routes are mounted by the host; this factory only supplies the
      health endpoint the default exclusions expect (``/-/ping``).
"""

from __future__ import annotations

import os

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from registry_metrics import __version__
from registry_metrics.config.settings import Settings, get_settings
from registry_metrics.infrastructure.logging.logger import (
    configure_root_logging,
    get_json_logger,
)
from registry_metrics.plugin import MetricsPlugin

logger = get_json_logger(__name__)


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Explicit settings; defaults to :func:`get_settings`.

    Returns:
        FastAPI: Application with the metrics plugin installed.
    """
    settings = settings if settings is not None else get_settings()
    configure_root_logging(settings.log_level)

    service_version = settings.service_version or __version__
    app = FastAPI(title="Registry Metrics", version=service_version)

    @app.get("/-/ping", include_in_schema=False)
    async def ping() -> JSONResponse:
        """Lightweight health endpoint (excluded from request metrics by default)."""
        return JSONResponse({})

    plugin = MetricsPlugin(settings.metrics_config())
    plugin.install(app)
    app.state.metrics_plugin = plugin

    logger.info(
        "service_startup",
        extra={
            "extra": {
                "service": settings.service_name,
                "env": settings.environment.value,
                "version": service_version,
                "metrics_path": plugin.metrics_path,
            }
        },
    )
    return app


if __name__ == "__main__":  # pragma: no cover
    import uvicorn

    uvicorn.run(
        "registry_metrics.main:create_app",
        factory=True,
        host="127.0.0.1",
        port=int(os.getenv("PORT", "4873")),
    )
