"""Tests for the plan service HTTP routes."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from src.plan_service.main import create_app
from src.plan_service.service import PlanCoordinationService
from tests.fixtures import NS, FakeRegistry


@pytest.fixture
def service(registry: FakeRegistry, workspace: Path) -> PlanCoordinationService:
    return PlanCoordinationService(registry, AsyncMock(), workspace)


@pytest.fixture
def client(service: PlanCoordinationService):
    with TestClient(create_app(service, run_loop=False)) as test_client:
        yield test_client


class TestHealth:
    def test_healthy(self, client: TestClient) -> None:
        resp = client.get("/api/health")
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "healthy"
        assert body["service_name"] == "plan-coordination"
        assert body["details"]["state"] == "idle"
        assert body["details"]["queued"] == 0

    def test_degraded_while_paused(self, client: TestClient) -> None:
        client.post("/api/signals/pause")
        assert client.get("/api/health").json()["status"] == "degraded"

    def test_trace_id_echoed(self, client: TestClient) -> None:
        resp = client.get("/api/health", headers={"X-Trace-ID": "trace-123"})
        assert resp.headers["X-Trace-ID"] == "trace-123"


class TestPlanRequest:
    def test_signal_accepted(self, client: TestClient, service: PlanCoordinationService) -> None:
        resp = client.post(
            "/api/signals/plan-request",
            json={"package_name": f"{NS}logger", "requester_id": "build-1", "priority": "low"},
        )
        assert resp.status_code == 202
        assert resp.json() == {"accepted": True, "queued": 1}
        queued = service.queue.snapshot()[0]
        assert queued.package_name == f"{NS}logger"
        assert queued.priority.value == "high"

    def test_duplicate_signal(self, client: TestClient) -> None:
        client.post("/api/signals/plan-request", json={"package_name": f"{NS}logger"})
        resp = client.post("/api/signals/plan-request", json={"package_name": f"{NS}logger"})
        assert resp.json() == {"accepted": False, "queued": 1}

    def test_blank_name_rejected(self, client: TestClient) -> None:
        resp = client.post("/api/signals/plan-request", json={"package_name": "   "})
        assert resp.status_code == 422
        assert resp.json() == {"detail": "package_name must not be blank"}

    def test_missing_name_rejected(self, client: TestClient) -> None:
        assert client.post("/api/signals/plan-request", json={}).status_code == 422

    def test_unknown_priority_rejected(self, client: TestClient) -> None:
        resp = client.post(
            "/api/signals/plan-request",
            json={"package_name": f"{NS}logger", "priority": "urgent"},
        )
        assert resp.status_code == 422

    def test_stopping_service_refuses_signals(self, client: TestClient, service: PlanCoordinationService) -> None:
        service.stop()
        resp = client.post("/api/signals/plan-request", json={"package_name": f"{NS}logger"})
        assert resp.status_code == 503
        assert resp.json() == {"detail": "plan service is shutting down"}
        assert len(service.queue) == 0


class TestQueueControl:
    def test_pause_and_resume(self, client: TestClient, service: PlanCoordinationService) -> None:
        assert client.post("/api/signals/pause").status_code == 202
        assert service.paused is True
        assert client.post("/api/signals/resume").status_code == 202
        assert service.paused is False

    def test_queue_listing_in_serving_order(self, client: TestClient, service: PlanCoordinationService) -> None:
        client.post("/api/signals/plan-request", json={"package_name": f"{NS}a"})
        client.post("/api/signals/plan-request", json={"package_name": f"{NS}b"})
        entries = client.get("/api/queue").json()
        assert [e["package_name"] for e in entries] == [f"{NS}a", f"{NS}b"]
        assert {e["priority"] for e in entries} == {"high"}
