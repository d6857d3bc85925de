"""Tests for the FastAPI API endpoints."""

import logging

import pytest
from fastapi.testclient import TestClient

from chat_kernel.api.app import create_app
from chat_kernel.models.execution import OperationResult
from chat_kernel.models.operation import EntityType
from chat_kernel.orchestrator.master import ChatEntityOrchestrator
from chat_kernel.settings import Settings


def _failing_adapter(operation):
    raise ConnectionError("journal service unavailable")


@pytest.fixture
def kernel():
    """A fresh orchestrator per test."""
    orchestrator = ChatEntityOrchestrator()
    yield orchestrator
    orchestrator.shutdown()


@pytest.fixture
def client(kernel):
    app = create_app(orchestrator=kernel, settings=Settings(log_level="WARNING"))
    return TestClient(app)


def _send(client, message, user_id="u1", **extra):
    response = client.post("/chat/messages", json={
        "message": message, "user_id": user_id, **extra,
    })
    assert response.status_code == 200
    return response.json()


class TestChatEndpoints:
    def test_process_message(self, client):
        data = _send(client, "create habit Morning Run daily")
        assert data["success"] is True
        assert data["operation"]["entity_type"] == "habit"
        assert data["operation"]["parameters"]["name"] == "Morning Run"
        assert data["result"]["attempts"] == 1
        assert data["metadata"]["request_id"].startswith("req_")

    def test_parsing_error(self, client):
        data = _send(client, "hello there")
        assert data["success"] is False
        assert data["error"]["type"] == "Parsing"
        assert data["suggestions"]

    def test_disambiguation_round_trip(self, client):
        _send(client, "create habit Morning Meditation")
        _send(client, "create habit Evening Meditation")

        asked = _send(client, "complete meditation")
        assert asked["needs_disambiguation"] is True
        assert [o["index"] for o in asked["disambiguation_options"]] == [1, 2]

        chosen = _send(client, "2")
        assert chosen["success"] is True
        assert chosen["operation"]["parameters"]["name"] == "Evening Meditation"

    def test_missing_fields_rejected(self, client):
        response = client.post("/chat/messages", json={"message": "hi"})
        assert response.status_code == 422

    def test_batch(self, client):
        response = client.post("/chat/batch", json={"items": [
            {"id": "a", "request": {"message": "create habit Read", "user_id": "u1"}},
            {"id": "b", "request": {"message": "i feel great", "user_id": "u2"}},
        ]})
        assert response.status_code == 200
        data = response.json()
        assert [r["id"] for r in data["results"]] == ["a", "b"]
        assert data["summary"]["successful_requests"] == 2


class TestMetricsEndpoints:
    def test_metrics_and_reset(self, client):
        _send(client, "create habit Read")
        _send(client, "hello there")
        metrics = client.get("/metrics").json()
        assert metrics["total_operations"] == 2
        assert metrics["error_rate"] == pytest.approx(0.5)

        assert client.post("/metrics/reset").json() == {"status": "reset"}
        assert client.get("/metrics").json()["total_operations"] == 0

    def test_health(self, client):
        data = client.get("/health").json()
        assert data["status"] == "healthy"
        assert "metrics" in data["details"]

    def test_error_analytics(self, client):
        _send(client, "hello there")
        data = client.get("/errors/analytics").json()
        assert data["total_errors"] == 1
        assert data["errors_by_type"]["Parsing"] == 1
        assert data["user_error_patterns"][0]["user_id"] == "u1"


class TestConfigEndpoints:
    def test_get_config(self, client):
        data = client.get("/config").json()
        assert data["disambiguation"]["confidence_threshold"] == 0.75
        assert data["integrations"]["journal"]["fallback_strategy"] == "degrade"

    def test_update_config(self, client):
        response = client.put("/config", json={
            "updates": {"disambiguation": {"confidence_threshold": 0.6}}
        })
        assert response.status_code == 200
        assert response.json()["disambiguation"]["confidence_threshold"] == 0.6

    def test_integrations_are_read_only(self, client):
        response = client.put("/config", json={
            "updates": {"integrations": {"habit": {"timeout_ms": 10}}}
        })
        assert response.status_code == 400

    def test_invalid_update(self, client):
        response = client.put("/config", json={
            "updates": {"disambiguation": {"confidence_threshold": 3}}
        })
        assert response.status_code == 400


class TestContextEndpoints:
    def test_unknown_context(self, client):
        assert client.get("/contexts/nobody").status_code == 404

    def test_context_summary(self, client):
        _send(client, "create habit Read", session_id="s1")
        data = client.get("/contexts/u1", params={"session_id": "s1"}).json()
        assert data["context_id"] == "u1::s1"
        assert data["message_count"] == 1
        assert data["state"] == "idle"

    def test_suggestions_and_prediction(self, client):
        _send(client, "create habit Read")
        _send(client, "complete read")

        suggestions = client.get("/contexts/u1/suggestions").json()
        assert suggestions[0]["text"] == 'Continue with habit "Read"'
        assert suggestions[0]["kind"] == "recent_activity"

        prediction = client.get("/contexts/u1/prediction").json()
        assert prediction["entity_type"] == "habit"

    def test_suggestions_for_unknown_context(self, client):
        assert client.get("/contexts/nobody/suggestions").status_code == 404
        assert client.get("/contexts/nobody/prediction").status_code == 404


class TestMaintenanceEndpoints:
    def test_cleanup(self, client):
        _send(client, "create habit Read")
        data = client.post("/maintenance/cleanup").json()
        assert data["handles_dropped"] == 1
        assert data["contexts_evicted"] == 0

    def test_degraded_operations(self, kernel, client):
        kernel.register_adapter(EntityType.JOURNAL, _failing_adapter)
        data = _send(client, "write journal entry Slept well")
        assert data["success"] is True
        assert data["result"]["degraded"] is True

        queued = client.get("/degraded").json()
        assert len(queued) == 1
        assert queued[0]["operation"]["entity_type"] == "journal"
        assert "unavailable" in queued[0]["reason"]


class TestLifespan:
    def test_logging_configured_on_startup_only(self, kernel, monkeypatch):
        calls = []
        monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: calls.append(kwargs))

        app = create_app(orchestrator=kernel, settings=Settings(log_level="WARNING"))
        assert calls == []

        with TestClient(app):
            assert [c["level"] for c in calls] == ["WARNING"]

    def test_sweeper_runs_with_app(self, kernel):
        app = create_app(orchestrator=kernel, settings=Settings(log_level="WARNING"))
        with TestClient(app) as client:
            assert _send(client, "create habit Read")["success"] is True
        assert kernel.contexts.status == "stopped"

    def test_settings_shape_default_config(self):
        settings = Settings(confidence_threshold=0.6, default_timeout_ms=1500)
        kernel = ChatEntityOrchestrator(config=settings.to_config())
        try:
            assert kernel.config.disambiguation.confidence_threshold == 0.6
            assert kernel.config.integration_for(EntityType.GOAL).timeout_ms == 1500
        finally:
            kernel.shutdown()

    def test_custom_adapter_result(self, kernel, client):
        kernel.register_adapter(
            EntityType.GOAL,
            lambda op: OperationResult(success=True, message="stubbed", data={"ok": 1}),
        )
        data = _send(client, "show my goals")
        assert data["result"]["message"] == "stubbed"
        assert data["result"]["data"] == {"ok": 1}
