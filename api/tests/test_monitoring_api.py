from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from conftest import FakeClock
from laborline.core.config import Settings, get_settings
from laborline.main import app
from laborline.services.metrics import REQUEST_METRICS, UNMATCHED_PATH, RequestMetrics, route_template

CLIENT = {"x-forwarded-for": "203.0.113.7"}


@pytest.fixture
def production_client(api_client: TestClient) -> TestClient:
    app.dependency_overrides[get_settings] = lambda: Settings(
        environment="production",
        monitoring_api_key="monitoring-secret",
    )
    return api_client


def test_metrics_open_outside_production(api_client: TestClient) -> None:
    api_client.get("/healthz")

    response = api_client.get("/monitoring/metrics")

    assert response.status_code == 200
    assert response.headers["cache-control"] == "no-cache, no-store, must-revalidate"
    body = response.json()
    assert body["environment"] == "test"
    assert "/healthz" in {item["path"] for item in body["paths"]}


def test_metrics_require_key_in_production(production_client: TestClient) -> None:
    response = production_client.get("/monitoring/metrics", headers=CLIENT)

    assert response.status_code == 401
    assert response.headers["www-authenticate"] == "ApiKey"
    assert response.headers["x-ratelimit-limit"] == "5"
    assert response.headers["x-ratelimit-remaining"] == "4"
    assert response.headers["x-ratelimit-reset"].endswith("Z")
    assert "retry-after" not in response.headers


def test_metrics_accept_valid_key_in_production(production_client: TestClient) -> None:
    response = production_client.get(
        "/monitoring/metrics",
        headers={**CLIENT, "x-monitoring-key": "monitoring-secret"},
    )
    assert response.status_code == 200


def test_sixth_failed_attempt_is_rate_limited(production_client: TestClient, clock: FakeClock) -> None:
    for _ in range(5):
        response = production_client.get("/monitoring/metrics", headers={**CLIENT, "x-monitoring-key": "wrong"})
        assert response.status_code == 401

    blocked = production_client.get(
        "/monitoring/metrics",
        headers={**CLIENT, "x-monitoring-key": "monitoring-secret"},
    )
    assert blocked.status_code == 429
    assert blocked.headers["retry-after"] == "900"
    assert blocked.headers["x-ratelimit-remaining"] == "0"

    other_client = production_client.get(
        "/monitoring/metrics",
        headers={"x-forwarded-for": "198.51.100.20", "x-monitoring-key": "monitoring-secret"},
    )
    assert other_client.status_code == 200

    clock.advance(900)
    recovered = production_client.get(
        "/monitoring/metrics",
        headers={**CLIENT, "x-monitoring-key": "monitoring-secret"},
    )
    assert recovered.status_code == 200


def test_request_metrics_counts_server_errors() -> None:
    metrics = RequestMetrics()
    metrics.record("/labor-requests", 201, 0.012)
    metrics.record("/labor-requests", 503, 0.030)
    metrics.record("/healthz", 200, 0.001)

    snapshot = {item["path"]: item for item in metrics.snapshot()}

    assert snapshot["/labor-requests"] == {
        "path": "/labor-requests",
        "total_requests": 2,
        "error_requests": 1,
        "error_rate": 0.5,
        "avg_duration_ms": 21.0,
    }
    assert snapshot["/healthz"]["error_requests"] == 0
    assert metrics.registry.get_sample_value(
        "laborline_http_requests_total",
        {"path": "/labor-requests", "status_code": "503"},
    ) == 1.0
    metrics.reset()
    assert metrics.snapshot() == []


def test_middleware_records_route_templates(api_client: TestClient) -> None:
    REQUEST_METRICS.reset()

    api_client.post("/labor-requests/notifications/abc/view")

    paths = {item["path"] for item in REQUEST_METRICS.snapshot()}
    assert "/labor-requests/notifications/{notification_id}/view" in paths


def test_middleware_keeps_router_prefixes_apart(api_client: TestClient) -> None:
    REQUEST_METRICS.reset()

    api_client.get("/monitoring/metrics")
    api_client.post("/labor-requests/notifications/abc/archive")
    api_client.get("/no-such-route")

    paths = {item["path"] for item in REQUEST_METRICS.snapshot()}
    assert "/monitoring/metrics" in paths
    assert "/labor-requests/notifications/{notification_id}/archive" in paths
    assert UNMATCHED_PATH in paths
    assert "/metrics" not in paths


class _Route:
    def __init__(self, path: str) -> None:
        self.path = path


@pytest.mark.parametrize(
    ("scope", "expected"),
    [
        ({"route": _Route("/labor-requests/success"), "root_path": ""}, "/labor-requests/success"),
        (
            {"route": _Route("/{notification_id}/view"), "root_path": "/labor-requests/notifications"},
            "/labor-requests/notifications/{notification_id}/view",
        ),
        ({"route": _Route("/labor-requests/success"), "root_path": "/labor-requests"}, "/labor-requests/success"),
        ({"root_path": ""}, UNMATCHED_PATH),
    ],
)
def test_route_template_includes_mount_prefix(scope: dict, expected: str) -> None:
    assert route_template(scope) == expected
