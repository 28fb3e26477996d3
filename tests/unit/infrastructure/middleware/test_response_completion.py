from __future__ import annotations

from typing import Any

import pytest
from starlette.types import Message, Receive, Scope, Send

from registry_metrics.domain.entities.metric_context import UNKNOWN, RequestLabels
from registry_metrics.infrastructure.middleware.request_metrics import (
    PackageMetricsMiddleware,
    RequestMetricsMiddleware,
    ResponseCompletion,
    build_context,
)


def _scope(path: str = "/pkg", method: str = "GET", **extra: Any) -> Scope:
    scope: dict[str, Any] = {
        "type": "http",
        "asgi": {"version": "3.0"},
        "http_version": "1.1",
        "method": method,
        "path": path,
        "raw_path": path.encode("latin-1"),
        "query_string": b"",
        "headers": [],
    }
    scope.update(extra)
    return scope


async def _receive() -> Message:
    return {"type": "http.request", "body": b"", "more_body": False}


class _Recorder:
    def __init__(self) -> None:
        self.messages: list[Message] = []

    async def __call__(self, message: Message) -> None:
        self.messages.append(message)


# ---------------------------------------------------------------------------
# ResponseCompletion
# ---------------------------------------------------------------------------


def test_completion_fires_once_on_final_body() -> None:
    c = ResponseCompletion()
    assert c.observe({"type": "http.response.start", "status": 201, "headers": []}) is False
    assert c.observe({"type": "http.response.body", "body": b"a", "more_body": True}) is False
    assert c.observe({"type": "http.response.body", "body": b"b"}) is True
    assert c.observe({"type": "http.response.body", "body": b""}) is False
    assert c.status_code == 201
    assert c.completed is True


def test_completion_accepts_pathsend() -> None:
    c = ResponseCompletion()
    c.observe({"type": "http.response.start", "status": 200})
    assert c.observe({"type": "http.response.pathsend", "path": "/tmp/pkg.tgz"}) is True


def test_completion_ignores_body_without_start() -> None:
    c = ResponseCompletion()
    assert c.observe({"type": "http.response.body", "body": b""}) is False
    assert c.completed is False


def test_completion_ignores_unrelated_messages() -> None:
    c = ResponseCompletion()
    c.observe({"type": "http.response.start", "status": 200})
    assert c.observe({"type": "http.response.trailers", "headers": []}) is False
    assert c.completed is False


# ---------------------------------------------------------------------------
# build_context
# ---------------------------------------------------------------------------


def test_build_context_without_groups_has_no_group() -> None:
    ctx = build_context("GET", "/pkg/-/pkg-1.0.0.tgz", authorization=None, user_agent=None)
    assert ctx.group is None
    assert ctx.identity.username == UNKNOWN
    assert ctx.client.agent_name == UNKNOWN


# ---------------------------------------------------------------------------
# Raw ASGI lifecycles
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_streamed_response_counts_after_last_chunk(fake_sink: Any) -> None:
    seen_at_chunk: list[int] = []

    async def app(scope: Scope, receive: Receive, send: Send) -> None:
        await send({"type": "http.response.start", "status": 200, "headers": []})
        for chunk in (b"a", b"b"):
            await send({"type": "http.response.body", "body": chunk, "more_body": True})
            seen_at_chunk.append(len(fake_sink.requests))
        await send({"type": "http.response.body", "body": b""})

    mw = RequestMetricsMiddleware(app, sink=fake_sink)
    await mw(_scope(), _receive, _Recorder())

    assert seen_at_chunk == [0, 0]
    assert fake_sink.requests == [RequestLabels(UNKNOWN, UNKNOWN, 200, "GET")]


@pytest.mark.asyncio
async def test_response_that_never_completes_is_not_counted(fake_sink: Any) -> None:
    async def app(scope: Scope, receive: Receive, send: Send) -> None:
        await send({"type": "http.response.start", "status": 200, "headers": []})
        await send({"type": "http.response.body", "body": b"partial", "more_body": True})

    await RequestMetricsMiddleware(app, sink=fake_sink)(_scope(), _receive, _Recorder())
    assert fake_sink.requests == []


@pytest.mark.asyncio
async def test_handler_crash_before_response_counts_as_500(fake_sink: Any) -> None:
    async def app(scope: Scope, receive: Receive, send: Send) -> None:
        raise RuntimeError("handler crashed")

    with pytest.raises(RuntimeError):
        await RequestMetricsMiddleware(app, sink=fake_sink)(_scope(), _receive, _Recorder())
    with pytest.raises(RuntimeError):
        await PackageMetricsMiddleware(app, sink=fake_sink)(
            _scope("/pkg/-/pkg-1.0.0.tgz"), _receive, _Recorder()
        )

    assert fake_sink.requests == [RequestLabels(UNKNOWN, UNKNOWN, 500, "GET")]
    assert [labels.status_code for labels in fake_sink.packages] == [500]


@pytest.mark.asyncio
async def test_handler_crash_after_response_start_is_not_counted(fake_sink: Any) -> None:
    async def app(scope: Scope, receive: Receive, send: Send) -> None:
        await send({"type": "http.response.start", "status": 200, "headers": []})
        raise RuntimeError("crashed mid-stream")

    with pytest.raises(RuntimeError):
        await RequestMetricsMiddleware(app, sink=fake_sink)(_scope(), _receive, _Recorder())
    assert fake_sink.requests == []


@pytest.mark.asyncio
async def test_client_disconnect_during_send_is_not_counted(fake_sink: Any) -> None:
    async def app(scope: Scope, receive: Receive, send: Send) -> None:
        await send({"type": "http.response.start", "status": 200, "headers": []})
        await send({"type": "http.response.body", "body": b"done"})

    async def disconnected_send(message: Message) -> None:
        if message["type"] == "http.response.body":
            raise OSError("connection reset")

    with pytest.raises(OSError):
        await RequestMetricsMiddleware(app, sink=fake_sink)(_scope(), _receive, disconnected_send)
    assert fake_sink.requests == []


@pytest.mark.asyncio
async def test_lifespan_scope_passes_through(fake_sink: Any) -> None:
    received: list[str] = []

    async def app(scope: Scope, receive: Receive, send: Send) -> None:
        received.append(scope["type"])

    await RequestMetricsMiddleware(app, sink=fake_sink)({"type": "lifespan"}, _receive, _Recorder())
    await PackageMetricsMiddleware(app, sink=fake_sink)({"type": "lifespan"}, _receive, _Recorder())

    assert received == ["lifespan", "lifespan"]
    assert fake_sink.requests == [] and fake_sink.packages == []


@pytest.mark.asyncio
async def test_path_falls_back_when_raw_path_is_absent(fake_sink: Any) -> None:
    async def app(scope: Scope, receive: Receive, send: Send) -> None:
        await send({"type": "http.response.start", "status": 200, "headers": []})
        await send({"type": "http.response.body", "body": b""})

    scope = _scope("/pkg/-/pkg-1.0.0.tgz")
    del scope["raw_path"]
    await PackageMetricsMiddleware(app, sink=fake_sink)(scope, _receive, _Recorder())

    assert len(fake_sink.packages) == 1


async def _ok_app(scope: Scope, receive: Receive, send: Send) -> None:
    await send({"type": "http.response.start", "status": 200, "headers": []})
    await send({"type": "http.response.body", "body": b""})


@pytest.mark.asyncio
async def test_decoded_path_fallback_is_not_decoded_twice(fake_sink: Any) -> None:
    # Without raw_path the server's path is already decoded ("%25" -> "%").
    scope = _scope("/a%25b/-/a-1.0.0.tgz")
    del scope["raw_path"]
    await PackageMetricsMiddleware(_ok_app, sink=fake_sink)(scope, _receive, _Recorder())

    assert len(fake_sink.packages) == 1

    mw = RequestMetricsMiddleware(_ok_app, sink=fake_sink)
    assert mw.arrive(scope).decoded_path == "/a%25b/-/a-1.0.0.tgz"  # type: ignore[union-attr]


def test_raw_path_is_decoded_once(fake_sink: Any) -> None:
    mw = RequestMetricsMiddleware(_ok_app, sink=fake_sink)
    scope = _scope("/a%2525b", raw_path=b"/a%2525b?x=1")

    assert mw.arrive(scope).decoded_path == "/a%25b"  # type: ignore[union-attr]


def test_raw_utf8_bytes_are_kept_intact(fake_sink: Any) -> None:
    mw = RequestMetricsMiddleware(_ok_app, sink=fake_sink)
    scope = _scope("/café", raw_path="/café".encode())

    assert mw.arrive(scope).decoded_path == "/café"  # type: ignore[union-attr]


def test_raw_non_utf8_bytes_fall_back_to_raw_string(fake_sink: Any) -> None:
    mw = RequestMetricsMiddleware(_ok_app, sink=fake_sink)
    scope = _scope("/x", raw_path=b"/caf\xe9")

    assert mw.arrive(scope).decoded_path == "/caf\xe9"  # type: ignore[union-attr]
