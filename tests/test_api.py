"""Tests for the FastAPI endpoints."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from careconnect.orchestrator import WebhookOutcome
from careconnect.server import app
from careconnect.services.storage import BOOKING_COOLDOWNS, SESSIONS, InMemoryDocumentStore


@pytest.fixture
def mock_orchestrator():
    """Create a mock orchestrator and attach it to app state (mirrors the lifespan)."""
    orchestrator = MagicMock()
    orchestrator.handle = AsyncMock(return_value=WebhookOutcome.OK)
    app.state.orchestrator = orchestrator
    yield orchestrator
    app.state.orchestrator = None


@pytest.fixture
def client(mock_orchestrator):
    """FastAPI test client with the mock orchestrator wired up."""
    return TestClient(app)


class TestHealthEndpoint:
    def test_health_returns_ok(self, client):
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "service": "careconnect"}


class TestWebhookEndpoint:
    def test_outcome_is_returned_as_plain_text(self, client, mock_orchestrator, make_payload):
        payload = make_payload("안녕하세요")
        response = client.post("/api/webhook/channeltalk", json=payload)
        assert response.status_code == 200
        assert response.text == "ok"
        mock_orchestrator.handle.assert_awaited_once_with(payload)

    def test_handled_duplicates_are_acknowledged_with_200(self, client, mock_orchestrator, make_payload):
        mock_orchestrator.handle.return_value = WebhookOutcome.ALREADY_PROCESSED
        response = client.post("/api/webhook/channeltalk", json=make_payload())
        assert response.status_code == 200
        assert response.text == "already_processed"

    def test_non_json_body(self, client, mock_orchestrator):
        response = client.post(
            "/api/webhook/channeltalk", content=b"not json", headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 200
        assert response.text == "ignored: missing data"
        mock_orchestrator.handle.assert_not_awaited()

    def test_non_object_body(self, client, mock_orchestrator):
        response = client.post("/api/webhook/channeltalk", json=["a", "b"])
        assert response.text == "ignored: missing data"
        mock_orchestrator.handle.assert_not_awaited()

    def test_unexpected_error_returns_500_without_details(self, client, mock_orchestrator, make_payload):
        mock_orchestrator.handle.side_effect = RuntimeError("secret internal detail")
        response = client.post("/api/webhook/channeltalk", json=make_payload())
        assert response.status_code == 500
        assert response.text == "server_error"
        assert "secret" not in response.text

    def test_response_includes_request_id_header(self, client, make_payload):
        response = client.post("/api/webhook/channeltalk", json=make_payload())
        assert "X-Request-ID" in response.headers

    def test_client_supplied_request_id_is_echoed(self, client, make_payload):
        response = client.post(
            "/api/webhook/channeltalk", json=make_payload(), headers={"X-Request-ID": "trace-123"},
        )
        assert response.headers["X-Request-ID"] == "trace-123"


class TestOrchestratorNotReady:
    def test_returns_503_when_orchestrator_not_initialised(self, make_payload):
        """If the orchestrator hasn't been set via lifespan, return 503."""
        with TestClient(app) as tc:
            app.state.orchestrator = None
            response = tc.post("/api/webhook/channeltalk", json=make_payload())
            assert response.status_code == 503
            assert "starting up" in response.json()["detail"].lower()


class TestStatusEndpoint:
    def test_status_lists_human_mode_and_pending_bookings(self, client):
        app.state.store = InMemoryDocumentStore(seed={
            SESSIONS: {
                "u1": {"id": "u1", "mode": "HUMAN_MODE", "last_updated_at": "2020-01-01T00:00:00+00:00"},
                "u2": {"id": "u2", "mode": "AI_MODE",
                       "booking_state": {"step": "awaiting_info", "proposed_time": "2025-01-16T14:00:00"}},
                "u3": {"id": "u3", "mode": "AI_MODE", "booking_state": {"step": "confirmed"}},
            },
            BOOKING_COOLDOWNS: {"u3": {"id": "u3", "user_id": "u3"}},
        })
        try:
            response = client.get("/api/status")
        finally:
            app.state.store = None

        assert response.status_code == 200
        data = response.json()
        assert [u["user_id"] for u in data["human_mode_users"]] == ["u1"]
        assert data["human_mode_needing_timeout"] == 1
        assert data["pending_bookings"] == [{
            "user_id": "u2", "step": "awaiting_info",
            "selected_time": "2025-01-16T14:00:00", "minutes_ago": None,
        }]
        assert data["cooldown_users"] == 1

    def test_status_storage_error_returns_500(self, client):
        broken = MagicMock()
        broken.scan = AsyncMock(side_effect=RuntimeError("down"))
        app.state.store = broken
        try:
            response = client.get("/api/status")
        finally:
            app.state.store = None
        assert response.status_code == 500
        assert response.json()["detail"] == "An internal error occurred."

    def test_status_without_store_returns_503(self, client):
        app.state.store = None
        assert client.get("/api/status").status_code == 503


class TestRootEndpoint:
    def test_root_returns_service_info(self, client):
        response = client.get("/")
        assert response.status_code == 200
        data = response.json()
        assert data["service"] == "CareConnect AI"
        assert data["webhook"] == "/api/webhook/channeltalk"
