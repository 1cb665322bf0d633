from __future__ import annotations

from typing import cast

from _pytest.monkeypatch import MonkeyPatch
from fastapi.testclient import TestClient

from mindhit.api.v1 import health as health_module
from mindhit.api.v1.health import DependencyStatus


def test_health_ok_when_dependencies_ok(client: TestClient, monkeypatch: MonkeyPatch) -> None:
    monkeypatch.setattr(
        health_module, "_check_redis", lambda *, timeout_s: DependencyStatus(status="ok", latency_ms=1)
    )

    resp = client.get("/v1/health")
    assert resp.status_code == 200
    body = cast(dict[str, object], resp.json())
    assert body["status"] == "ok"

    deps = cast(dict[str, dict[str, object]], body["dependencies"])
    assert deps["db"]["status"] == "ok"
    assert deps["redis"]["status"] == "ok"
    assert deps["worker"] == {"status": "ok", "latency_ms": None, "detail": None, "mode": "eager"}


def test_health_degraded_when_redis_down(client: TestClient, monkeypatch: MonkeyPatch) -> None:
    monkeypatch.setattr(
        health_module,
        "_check_redis",
        lambda *, timeout_s: DependencyStatus(status="error", latency_ms=2, detail="ConnectionError"),
    )

    resp = client.get("/v1/health")
    assert resp.status_code == 200
    body = cast(dict[str, object], resp.json())
    assert body["status"] == "degraded"
    deps = cast(dict[str, dict[str, object]], body["dependencies"])
    assert deps["redis"]["detail"] == "ConnectionError"


def test_metrics_endpoint_exposes_prometheus_text(client: TestClient, auth: dict[str, str]) -> None:
    assert client.post("/v1/sessions/start", headers=auth).status_code == 201

    resp = client.get("/metrics")
    assert resp.status_code == 200
    assert "mindhit_sessions_created_total" in resp.text
