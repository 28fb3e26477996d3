# src/registry_metrics/infrastructure/middleware/request_metrics.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Registry request metrics middleware (pure ASGI, deferred finalization).

Summary:
    Two ASGI middlewares that count registry traffic into the
    :class:`MetricsSink`:

    * :class:`RequestMetricsMiddleware` counts every HTTP request whose
      decoded path is not excluded.
    * :class:`PackageMetricsMiddleware` counts ``GET`` requests for package
      tarballs (``*.tgz``), grouped by the configured grouping rules.

Lifecycle per request:
    ARRIVED -> EXCLUDED            (passed through untouched)
    ARRIVED -> OBSERVING           (context built, nothing counted yet)
    OBSERVING -> FINALIZED         (final body sent: labels built, +1 once)
    OBSERVING -> FINALIZED(500)    (handler raised before http.response.start)

    The status code is only final once the response is sent, so the counter
    is incremented after the last ``http.response.body`` message (or
    ``http.response.pathsend``) has been forwarded to the server. A response
    that starts but never completes (client disconnect, truncated body) is
    not counted. A handler that raises before starting a response is counted
    as 500, the status the outer Starlette error middleware answers with.

Design:
    * Arrival builds an immutable :class:`RequestMetricContext`; completion
      calls ``finalize_*`` on it. :class:`ResponseCompletion` tracks the
      one-shot completion event and is usable without an event loop.
    * Header parsing never raises; any unexpected failure while building the
      context degrades to the ``UNKNOWN`` facts.
    * Errors in metrics code never impact request flow.

Usage:
    app.add_middleware(RequestMetricsMiddleware, sink=sink, exclusions=rules)
    app.add_middleware(PackageMetricsMiddleware, sink=sink, groups=groups)
"""

from __future__ import annotations

import re
from typing import Any, ClassVar, Final

from starlette.datastructures import Headers
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from registry_metrics.domain.entities.metric_context import RequestMetricContext
from registry_metrics.domain.services.header_parsers import derive_client, derive_identity
from registry_metrics.domain.services.path_classifier import (
    ExclusionRules,
    GroupingRules,
    classify_group,
    decode_path,
    first_exclusion,
)
from registry_metrics.infrastructure.logging.logger import get_json_logger
from registry_metrics.infrastructure.observability.metrics import MetricsSink

__all__ = [
    "PACKAGE_DOWNLOAD_PATH_RE",
    "ResponseCompletion",
    "build_context",
    "RequestMetricsMiddleware",
    "PackageMetricsMiddleware",
]

_logger = get_json_logger(__name__)

PACKAGE_DOWNLOAD_PATH_RE: Final[re.Pattern[str]] = re.compile(r".*[.]tgz$", re.IGNORECASE)

_FINAL_MESSAGE_TYPES: Final[frozenset[str]] = frozenset(
    {"http.response.body", "http.response.pathsend"}
)


def _request_path(scope: Scope) -> str:
    """Return the percent-decoded request path.

    ``raw_path`` is decoded here exactly once. Without it, the server's
    ``path`` is already decoded and is returned as-is.
    """
    raw = scope.get("raw_path")
    if not isinstance(raw, (bytes, bytearray)):
        return str(scope.get("path", "/"))
    raw = bytes(raw).split(b"?", 1)[0]
    try:
        return decode_path(raw.decode("utf-8"))
    except UnicodeDecodeError:
        return raw.decode("latin-1")


def build_context(
    http_method: str,
    decoded_path: str,
    *,
    authorization: str | None,
    user_agent: str | None,
    groups: GroupingRules | None = None,
) -> RequestMetricContext:
    """Build the arrival-phase context for one request.

    Args:
        http_method: Uppercased HTTP method.
        decoded_path: Percent-decoded request path.
        authorization: Raw ``authorization`` header, if any.
        user_agent: Raw ``user-agent`` header, if any.
        groups: Package grouping rules; ``None`` for request metrics.

    Returns:
        RequestMetricContext: Immutable context; facts default to ``UNKNOWN``
        if anything unexpected fails.
    """
    try:
        identity = derive_identity(authorization)
        client = derive_client(user_agent)
        group = classify_group(decoded_path, groups) if groups else None
    except Exception:
        _logger.debug(
            "metrics: [build_context] header or path classification failed", exc_info=True
        )
        return RequestMetricContext(http_method, decoded_path, user_agent=user_agent)
    return RequestMetricContext(
        http_method,
        decoded_path,
        identity=identity,
        client=client,
        group=group,
        user_agent=user_agent,
    )


class ResponseCompletion:
    """One-shot tracker for an ASGI response.

    Feed every outgoing message to :meth:`observe`; it returns ``True``
    exactly once, for the message that completes the response. The status
    code seen on ``http.response.start`` is kept on :attr:`status_code`.
    """

    __slots__ = ("status_code", "completed")

    def __init__(self) -> None:
        self.status_code: int | None = None
        self.completed = False

    def observe(self, message: Message) -> bool:
        msg_type = message.get("type")
        if msg_type == "http.response.start":
            self.status_code = int(message.get("status", 200))
            return False
        if self.completed or self.status_code is None or msg_type not in _FINAL_MESSAGE_TYPES:
            return False
        if msg_type == "http.response.body" and message.get("more_body", False):
            return False
        self.completed = True
        return True


class _DeferredCounterMiddleware:
    """Shared ASGI plumbing: arrival check, deferred one-shot finalization."""

    metrics_type: ClassVar[str] = ""

    def __init__(self, app: ASGIApp, *, sink: MetricsSink) -> None:
        self.app = app
        self.sink = sink

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        context = self.arrive(scope)
        if context is None:
            await self.app(scope, receive, send)
            return

        completion = ResponseCompletion()

        async def send_wrapper(message: Message) -> None:
            await send(message)
            if completion.observe(message) and completion.status_code is not None:
                self._finalize(context, completion.status_code)

        try:
            await self.app(scope, receive, send_wrapper)
        except Exception:
            # Starlette's outer error middleware still answers 500.
            if completion.status_code is None and not completion.completed:
                self._finalize(context, 500)
            raise

    def arrive(self, scope: Scope) -> RequestMetricContext | None:
        """Return the context to observe, or ``None`` to pass the request through."""
        raise NotImplementedError

    def record(self, context: RequestMetricContext, status_code: int) -> dict[str, Any]:
        """Increment the counter for ``context``; return the labels used."""
        raise NotImplementedError

    def _finalize(self, context: RequestMetricContext, status_code: int) -> None:
        try:
            labels = self.record(context, status_code)
        except Exception:
            # Never allow metrics to impact request flow.
            _logger.debug(
                "metrics: [%s] counter increment failed", type(self).__name__, exc_info=True
            )
            return
        _logger.info(
            "metrics: [%s] %s metrics collected",
            type(self).__name__,
            self.metrics_type,
            extra={"extra": {"metricsType": self.metrics_type, **context.log_fields(), **labels}},
        )


class RequestMetricsMiddleware(_DeferredCounterMiddleware):
    """Count every non-excluded HTTP request by user, agent, status and method.

    Args:
        app: Inner ASGI application.
        sink: Metrics sink owning the request counter.
        exclusions: Compiled exclusion rules (case-insensitive), in order.
    """

    metrics_type = "request"

    def __init__(self, app: ASGIApp, *, sink: MetricsSink, exclusions: ExclusionRules = ()) -> None:
        super().__init__(app, sink=sink)
        self.exclusions = exclusions

    def arrive(self, scope: Scope) -> RequestMetricContext | None:
        decoded_path = _request_path(scope)
        rule = first_exclusion(decoded_path, self.exclusions)
        if rule is not None:
            _logger.debug(
                "metrics: [RequestMetricsMiddleware] path '%s' is excluded",
                decoded_path,
                extra={"extra": {"decodedPath": decoded_path, "rule": rule.pattern}},
            )
            return None

        headers = Headers(scope=scope)
        return build_context(
            str(scope.get("method", "GET")).upper(),
            decoded_path,
            authorization=headers.get("authorization"),
            user_agent=headers.get("user-agent"),
        )

    def record(self, context: RequestMetricContext, status_code: int) -> dict[str, Any]:
        labels = context.finalize_request(status_code)
        self.sink.increment_request(labels)
        return labels.as_dict()


class PackageMetricsMiddleware(_DeferredCounterMiddleware):
    """Count package tarball downloads by user, agent, status and package group.

    Only ``GET`` requests are observed; the method is checked before any
    parsing so other traffic pays nothing. ``HEAD`` requests for tarballs
    are never counted.

    Args:
        app: Inner ASGI application.
        sink: Metrics sink owning the package download counter.
        groups: Compiled ``(pattern, label)`` grouping rules, in order.
    """

    metrics_type = "package"

    def __init__(self, app: ASGIApp, *, sink: MetricsSink, groups: GroupingRules = ()) -> None:
        super().__init__(app, sink=sink)
        self.groups = groups

    def arrive(self, scope: Scope) -> RequestMetricContext | None:
        if str(scope.get("method", "")).upper() != "GET":
            return None
        decoded_path = _request_path(scope)
        if not PACKAGE_DOWNLOAD_PATH_RE.match(decoded_path):
            return None

        headers = Headers(scope=scope)
        return build_context(
            "GET",
            decoded_path,
            authorization=headers.get("authorization"),
            user_agent=headers.get("user-agent"),
            groups=self.groups,
        )

    def record(self, context: RequestMetricContext, status_code: int) -> dict[str, Any]:
        labels = context.finalize_package(status_code)
        self.sink.increment_package(labels)
        return labels.as_dict()
