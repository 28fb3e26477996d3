# tests/conftest.py
from __future__ import annotations

import base64
import json
import os
from collections.abc import Callable, Generator, Iterator
from contextlib import AbstractContextManager, contextmanager

import pytest
from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse
from fastapi.testclient import TestClient

from registry_metrics.config.settings import get_settings
from registry_metrics.domain.entities.metric_context import PackageLabels, RequestLabels


class FakeSink:
    """Records increments instead of touching Prometheus."""

    def __init__(self) -> None:
        self.requests: list[RequestLabels] = []
        self.packages: list[PackageLabels] = []

    def increment_request(self, labels: RequestLabels) -> None:
        self.requests.append(labels)

    def increment_package(self, labels: PackageLabels) -> None:
        self.packages.append(labels)


def make_bearer(username: str) -> str:
    payload = base64.b64encode(json.dumps({"name": username}).encode()).decode()
    return f"Bearer eyJhbGciOiJIUzI1NiJ9.{payload}.c2lnbmF0dXJl"


def make_basic(username: str, password: str = "s3cret") -> str:
    return "Basic " + base64.b64encode(f"{username}:{password}".encode()).decode()


def make_registry_app() -> FastAPI:
    """A stand-in registry: every path answers 200 unless the test says otherwise."""
    app = FastAPI()

    @app.get("/-/missing/{name}")
    async def missing(name: str) -> PlainTextResponse:
        return PlainTextResponse("not found", status_code=404)

    @app.api_route("/{full_path:path}", methods=["GET", "HEAD", "POST", "PUT", "DELETE"])
    async def anything(full_path: str, request: Request) -> PlainTextResponse:
        return PlainTextResponse(f"{request.method} {full_path}")

    return app


def client_without_user_agent(app: FastAPI) -> TestClient:
    """TestClient sends ``user-agent: testclient`` by default; drop it."""
    client = TestClient(app)
    del client.headers["user-agent"]
    return client


@pytest.fixture
def fake_sink() -> FakeSink:
    return FakeSink()


@pytest.fixture
def bearer_auth() -> Callable[[str], str]:
    return make_bearer


@pytest.fixture
def basic_auth() -> Callable[..., str]:
    return make_basic


@pytest.fixture
def registry_app() -> FastAPI:
    return make_registry_app()


@pytest.fixture
def no_ua_client() -> Callable[[FastAPI], TestClient]:
    return client_without_user_agent


@contextmanager
def _env(**pairs: str | None) -> Iterator[None]:
    old = {k: os.environ.get(k) for k in pairs}
    try:
        for k, v in pairs.items():
            if v is None:
                os.environ.pop(k, None)
            else:
                os.environ[k] = v
        # Ensure get_settings() re-reads env for this block
        get_settings.cache_clear()
        yield
    finally:
        for k, v in old.items():
            if v is None:
                os.environ.pop(k, None)
            else:
                os.environ[k] = v
        get_settings.cache_clear()


@pytest.fixture
def env() -> Callable[..., AbstractContextManager[None]]:
    """Context manager factory that sets env vars and resets the settings cache."""
    return _env


@pytest.fixture(autouse=True)
def _reset_settings_cache() -> Generator[None, None, None]:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
