from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from registry_metrics.domain.entities.metric_context import UNKNOWN, PackageLabels
from registry_metrics.domain.services.path_classifier import compile_groups
from registry_metrics.infrastructure.middleware.request_metrics import (
    PACKAGE_DOWNLOAD_PATH_RE,
    PackageMetricsMiddleware,
)

GROUPS = compile_groups(
    {
        "@scoped/test-package[^/]*9[.]1[.]x": "A",
        "@scoped/test-package": "B",
        "non-scoped": "C",
    }
)


@pytest.fixture
def app(registry_app: FastAPI, fake_sink: Any) -> FastAPI:
    registry_app.add_middleware(PackageMetricsMiddleware, sink=fake_sink, groups=GROUPS)
    return registry_app


@pytest.mark.parametrize(
    "path, matches",
    [
        ("/pkg/-/pkg-1.0.0.tgz", True),
        ("/pkg/-/pkg-1.0.0.TGZ", True),
        ("/pkg", False),
        ("/pkg/-/pkg-1.0.0.tgz.sig", False),
    ],
)
def test_package_download_path_pattern(path: str, matches: bool) -> None:
    assert bool(PACKAGE_DOWNLOAD_PATH_RE.match(path)) is matches


def test_tarball_get_is_counted_with_group(
    app: FastAPI, fake_sink: Any, basic_auth: Callable[..., str]
) -> None:
    TestClient(app).get(
        "/@scoped/test-package/-/test-package-1.0.0.tgz",
        headers={"authorization": basic_auth("user_basic"), "user-agent": "pnpm/6.0.0"},
    )
    assert fake_sink.packages == [PackageLabels("user_basic", "pnpm", 200, "B")]


def test_first_matching_group_wins(app: FastAPI, fake_sink: Any) -> None:
    TestClient(app).get("/@scoped/test-package-x9.1.x/-/test-package-x9.1.x-1.0.0.tgz")
    assert fake_sink.packages[0].package_group == "A"


def test_encoded_scope_separator_is_grouped_like_decoded(app: FastAPI, fake_sink: Any) -> None:
    client = TestClient(app)
    client.get("/@scoped%2Ftest-package/-/test-package-1.0.0.tgz")
    client.get("/@scoped/test-package/-/test-package-1.0.0.tgz")

    assert [labels.package_group for labels in fake_sink.packages] == ["B", "B"]


def test_unmatched_group_is_none(
    app: FastAPI, fake_sink: Any, no_ua_client: Callable[[FastAPI], TestClient]
) -> None:
    no_ua_client(app).get("/lodash/-/lodash-4.17.21.tgz")
    assert fake_sink.packages == [PackageLabels(UNKNOWN, UNKNOWN, 200, None)]


def test_head_and_other_methods_are_not_counted(app: FastAPI, fake_sink: Any) -> None:
    client = TestClient(app)
    client.head("/pkg/-/pkg-1.0.0.tgz")
    client.put("/pkg/-/pkg-1.0.0.tgz")
    assert fake_sink.packages == []


def test_non_tarball_get_is_not_counted(app: FastAPI, fake_sink: Any) -> None:
    TestClient(app).get("/@scoped/test-package")
    assert fake_sink.packages == []


def test_failed_download_keeps_status(app: FastAPI, fake_sink: Any) -> None:
    TestClient(app).get("/-/missing/pkg-1.0.0.tgz")
    assert fake_sink.packages[0].status_code == 404
