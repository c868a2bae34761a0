from __future__ import annotations

import time
from collections.abc import Iterator

import httpx
import pytest
from fastapi.testclient import TestClient

from embedded_host_runtime.api import dependencies
from embedded_host_runtime.api.dependencies import get_host_registry, get_runtime, get_settings
from embedded_host_runtime.bootstrap import build_runtime
from embedded_host_runtime.config import Settings
from embedded_host_runtime.infrastructure.backend import BackendClient
from embedded_host_runtime.infrastructure.host import HostGlobalRegistry
from embedded_host_runtime.main import create_app


class FakeBackend:
    """MockTransport handler standing in for the record and operation endpoints."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.query_status = 200

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path.startswith("/api/records/"):
            if self.query_status != 200:
                return httpx.Response(status_code=self.query_status, json={"detail": "denied"})
            return httpx.Response(
                status_code=200,
                json={"items": [{"sys_id": "inc-1"}, {"sys_id": "inc-2"}], "total": 2},
            )
        if request.method == "POST" and path == "/api/operations/install":
            return httpx.Response(
                status_code=202,
                json={"operationId": "op-1", "status": "running"},
            )
        if path == "/api/operations/op-1/progress":
            return httpx.Response(
                status_code=200,
                json={"status": "running", "progressFraction": 0.5},
            )
        return httpx.Response(status_code=404, json={"detail": "not found"})


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def client(monkeypatch: pytest.MonkeyPatch, backend: FakeBackend) -> Iterator[TestClient]:
    monkeypatch.setenv("EHR_READINESS_POLL_INTERVAL_SECONDS", "0.01")
    monkeypatch.setenv("EHR_READINESS_MAX_ATTEMPTS", "30")
    monkeypatch.setenv("EHR_OPERATION_POLL_INTERVAL_SECONDS", "0.01")
    monkeypatch.setenv("EHR_OPERATION_CHECKPOINT_DEBOUNCE_SECONDS", "0")

    def _build_with_fake_backend(
        settings: Settings,
        registry: HostGlobalRegistry | None = None,
    ) -> object:
        backend_client = BackendClient(
            base_url=settings.backend_base_url,
            transport=httpx.MockTransport(backend),
            token_provider=lambda: registry.get(settings.host_session_token_global)
            if registry is not None
            else None,
        )
        return build_runtime(settings, registry=registry, backend_client=backend_client)

    monkeypatch.setattr(dependencies, "build_runtime", _build_with_fake_backend)
    get_settings.cache_clear()
    get_host_registry.cache_clear()
    get_runtime.cache_clear()

    with TestClient(create_app()) as test_client:
        yield test_client

    get_settings.cache_clear()
    get_host_registry.cache_clear()
    get_runtime.cache_clear()


def _wait_booted(client: TestClient) -> dict[str, object]:
    deadline = time.monotonic() + 2.0
    while True:
        body = client.get("/readiness").json()
        if body["booted"] or time.monotonic() > deadline:
            return body
        time.sleep(0.01)


def _inject_host_state(client: TestClient) -> None:
    client.put("/host/globals/sessionToken", json="token-1")
    client.put(
        "/host/globals/hostContext",
        json={"userId": "u-1", "displayName": "Beth Anglin", "roles": "itil,admin"},
    )
    client.post("/host/loaded")


def test_healthz(client: TestClient) -> None:
    response = client.get("/healthz")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_readiness_resolves_ready_once_host_state_is_injected(client: TestClient) -> None:
    _inject_host_state(client)

    body = _wait_booted(client)

    assert body["status"] == "READY"
    assert body["missingSignals"] == []
    assert body["degraded"] is False
    assert body["recoveryOffers"] == []


def test_readiness_is_forced_when_host_never_injects(client: TestClient) -> None:
    body = _wait_booted(client)

    assert body["booted"] is True
    assert body["status"] == "FORCED"
    assert body["degraded"] is True
    assert body["missingSignals"] == ["sessionToken", "hostContext"]


def test_host_injection_reports_defined_flag(client: TestClient) -> None:
    defined = client.put("/host/globals/enhancedData", json={"counts": {"incident": 4}})
    undefined = client.put("/host/globals/featureFlags", json=None)

    assert defined.json() == {"name": "enhancedData", "defined": True}
    assert undefined.json() == {"name": "featureFlags", "defined": False}


def test_immediate_serves_injected_context(client: TestClient) -> None:
    _inject_host_state(client)

    response = client.get("/data/immediate")

    assert response.status_code == 200
    body = response.json()
    assert body["displayName"] == "Beth Anglin"
    assert body["roles"] == ["itil", "admin"]
    assert body["provenance"] == "immediate"


def test_immediate_serves_fallback_without_host_context(client: TestClient) -> None:
    response = client.get("/data/immediate")

    assert response.status_code == 200
    assert response.json()["provenance"] == "fallback"
    assert response.json()["displayName"] == "User"


def test_enhanced_returns_204_when_not_injected(client: TestClient) -> None:
    response = client.get("/data/enhanced")

    assert response.status_code == 204


def test_dynamic_query_is_cached_and_invalidated(
    client: TestClient,
    backend: FakeBackend,
) -> None:
    _inject_host_state(client)
    query = {"recordType": "incident", "filters": {"active": True}}

    first = client.post("/data/query", json=query)
    second = client.post("/data/query", json=query)
    invalidated = client.post("/data/invalidate", json={"recordType": "incident"})
    count = client.get("/data/counts/incident", params={"recordType": "incident"})

    assert first.status_code == 200
    assert first.json()["total"] == 2
    assert first.json()["isStale"] is False
    assert second.json()["items"] == first.json()["items"]
    record_requests = [r for r in backend.requests if r.url.path.startswith("/api/records/")]
    assert len(record_requests) == 1
    assert record_requests[0].headers["Authorization"] == "Bearer token-1"
    assert invalidated.json() == {"invalidated": 1}
    assert count.status_code == 200


def test_dynamic_query_maps_authorization_failure_to_401(
    client: TestClient,
    backend: FakeBackend,
) -> None:
    backend.query_status = 401

    response = client.post("/data/query", json={"recordType": "incident"})

    assert response.status_code == 401
    assert "denied" in response.json()["detail"]


def test_invalidate_requires_key_or_record_type(client: TestClient) -> None:
    response = client.post("/data/invalidate", json={})

    assert response.status_code == 422


def test_count_without_any_tier_reports_fallback(client: TestClient) -> None:
    response = client.get("/data/counts/incident")

    assert response.status_code == 200
    assert response.json()["tier"] == "fallback"
    assert response.json()["value"] is None


def test_operation_lifecycle_over_http(client: TestClient) -> None:
    _inject_host_state(client)

    started = client.post("/operations/install/start", json={"parameters": {"packageId": "p"}})
    duplicate = client.post("/operations/install/start")
    state = client.get("/operations/install/state")
    cancelled = client.post("/operations/install/cancel-tracking")
    cancelled_again = client.post("/operations/install/cancel-tracking")

    assert started.status_code == 202
    assert started.json()["state"] == "POLLING"
    assert started.json()["operationId"] == "op-1"
    assert duplicate.status_code == 409
    assert state.json()["operationId"] == "op-1"
    assert cancelled.json()["state"] == "IDLE"
    assert cancelled_again.status_code == 409


def test_unsupported_operation_kind_returns_400(client: TestClient) -> None:
    response = client.get("/operations/defragment/state")

    assert response.status_code == 400


def test_operations_list_covers_supported_kinds(client: TestClient) -> None:
    response = client.get("/operations")

    assert response.status_code == 200
    kinds = [item["kind"] for item in response.json()]
    assert kinds == sorted(kinds)
    assert "install" in kinds
    assert all(item["state"] == "IDLE" for item in response.json())


def test_recoverable_is_empty_on_fresh_store(client: TestClient) -> None:
    response = client.get("/operations/recoverable", params={"refresh": True})

    assert response.status_code == 200
    assert response.json() == []
