# src/registry_metrics/domain/exceptions/metrics.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""
Metrics configuration exceptions.

Summary:
    Errors raised while turning operator configuration into counters and
    classification rules. They surface at startup, before any request is
    accepted; nothing on the request path raises them.

Layer:
    domain/exceptions
"""

from __future__ import annotations

from registry_metrics.domain.exceptions.base import DomainError


class MetricsConfigError(DomainError):
    """Raised when metrics configuration is unusable.

    Covers invalid regular expressions, invalid or colliding metric names,
    and installing the same plugin twice.
    """

    code: str = "METRICS_CONFIG_ERROR"
