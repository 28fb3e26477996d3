"""Prometheus request and package download metrics for package-registry servers."""

from __future__ import annotations

__version__ = "0.1.0"
