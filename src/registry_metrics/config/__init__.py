"""
Config package export.

Keeps import sites clean and stable:
    from registry_metrics.config import get_settings, Settings, MetricsConfig
"""

from __future__ import annotations

from .features.metrics import MetricsConfig
from .settings import Settings, get_settings

__all__ = ["MetricsConfig", "Settings", "get_settings"]
