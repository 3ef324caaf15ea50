"""Tests for the FastAPI endpoints."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient
from langchain_core.messages import AIMessage

from coverage_agent.agent import create_conversation_agent
from coverage_agent.api.webhook import WebhookHandler
from coverage_agent.server import app
from coverage_agent.services.chatwoot_client import ChatwootAPIError
from coverage_agent.services.conversation_store import ConversationStore
from coverage_agent.tools.catalog import get_catalog
from coverage_agent.tools.results import ToolResult

INCOMING = {
    "event": "message_created",
    "message_type": "incoming",
    "content": "2023 Honda Civic",
    "conversation": {"id": 42, "sender": {"id": 9}, "meta": {"assignee": None}},
    "account": {"id": 7},
}


@pytest.fixture
def store():
    return ConversationStore()


@pytest.fixture
def chatwoot():
    return MagicMock()


@pytest.fixture
def llm():
    """Completion backend: one tool round, then a text answer."""
    mock = MagicMock()
    mock.invoke.side_effect = [
        AIMessage(
            content="",
            tool_calls=[{"id": "c1", "name": "get_vehicle_makes", "args": {"year": "2023"}}],
        ),
        AIMessage(content="Honda is available for 2023. Which model?"),
    ]
    return mock


@pytest.fixture
def handler(store, chatwoot, llm):
    """Real handler and agent; only the external systems are mocked.

    Attached to app state the same way the lifespan does.
    """
    dispatcher = MagicMock()
    dispatcher.catalog = get_catalog("lookup")
    dispatcher.profile = "lookup"
    dispatcher.dispatch.return_value = ToolResult.success(["Honda"])

    with patch("coverage_agent.agent._build_llm", return_value=llm):
        agent = create_conversation_agent(store, dispatcher)
    handler = WebhookHandler(
        agent, chatwoot, bot_sender_id=1, typing_indicator=True, auto_open=False,
    )
    app.state.webhook_handler = handler
    yield handler
    app.state.webhook_handler = None


@pytest.fixture
def client(handler):
    return TestClient(app)


class TestHealthEndpoint:
    def test_health_returns_healthy(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert "timestamp" in data

    def test_root_describes_service(self, client):
        data = client.get("/").json()
        assert data["webhook"] == "/api/chatwoot"


class TestChatwootWebhook:
    def test_incoming_message_is_answered_once(self, client, chatwoot, store, llm):
        response = client.post("/api/chatwoot", json=INCOMING)

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "message": "Webhook received, processing asynchronously",
        }
        # Background task has run by the time TestClient returns
        chatwoot.send_message.assert_called_once()
        account_id, conversation_id, content = chatwoot.send_message.call_args[0]
        assert (account_id, conversation_id) == (7, 42)
        assert content == "Honda is available for 2023. Which model?"
        assert llm.invoke.call_count == 2

        turns = store.read(42)
        assert turns[0].role == "user"
        assert turns[0].content == "2023 Honda Civic"
        assert [t.role for t in turns] == ["user", "assistant", "tool", "assistant"]

    def test_reply_echo_id_matches_request_id(self, client, chatwoot):
        response = client.post(
            "/api/chatwoot", json=INCOMING, headers={"X-Request-ID": "cw_fixed"},
        )
        assert response.headers["X-Request-ID"] == "cw_fixed"
        assert chatwoot.send_message.call_args[1]["echo_id"] == "cw_fixed"

    def test_request_id_is_generated(self, client):
        response = client.get("/health")
        assert response.headers["X-Request-ID"].startswith("cw_")

    def test_assigned_conversation_is_acknowledged_without_reply(self, client, chatwoot, llm):
        payload = {
            **INCOMING,
            "conversation": {"id": 42, "meta": {"assignee": {"id": 3, "name": "Sam"}}},
        }
        response = client.post("/api/chatwoot", json=payload)

        assert response.status_code == 200
        assert response.json()["message"] == "Webhook received, no reply needed"
        llm.invoke.assert_not_called()
        chatwoot.send_message.assert_not_called()

    def test_other_events_are_acknowledged(self, client, chatwoot):
        response = client.post(
            "/api/chatwoot", json={"event": "conversation_status_changed"},
        )
        assert response.status_code == 200
        assert response.json()["success"] is True
        chatwoot.send_message.assert_not_called()

    def test_send_failure_still_acknowledged(self, client, chatwoot):
        chatwoot.send_message.side_effect = ChatwootAPIError("Server error 500", status_code=500)
        response = client.post("/api/chatwoot", json=INCOMING)
        assert response.status_code == 200
        assert response.json()["success"] is True

    def test_not_ready_returns_503(self, client):
        app.state.webhook_handler = None
        response = client.post("/api/chatwoot", json=INCOMING)
        assert response.status_code == 503

    @pytest.mark.parametrize(
        "payload",
        [
            {"event": "conversation_updated", "conversation": None},
            {"event": "message_created", "content": {"x": 1}},
            {"event": "message_created", "conversation": "42"},
            ["not", "an", "object"],
        ],
    )
    def test_malformed_payloads_are_acknowledged(self, client, chatwoot, llm, payload):
        response = client.post("/api/chatwoot", json=payload)

        assert response.status_code == 200
        assert response.json() == {"success": True, "message": "Webhook received, no reply needed"}
        llm.invoke.assert_not_called()
        chatwoot.send_message.assert_not_called()

    def test_non_json_body_is_acknowledged(self, client, chatwoot):
        response = client.post(
            "/api/chatwoot", content=b"not json", headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 200
        assert response.json()["success"] is True
        chatwoot.send_message.assert_not_called()

    def test_null_account_is_acknowledged_without_reply(self, client, chatwoot):
        response = client.post("/api/chatwoot", json={**INCOMING, "account": None})
        assert response.status_code == 200
        chatwoot.send_message.assert_not_called()


class TestLifespan:
    @patch("coverage_agent.server.close_coveragex_client")
    @patch("coverage_agent.server.ChatwootClient")
    @patch("coverage_agent.server.create_conversation_agent")
    def test_clients_closed_on_shutdown(self, mock_create, mock_chatwoot_cls, mock_close_cx):
        with TestClient(app) as client:
            assert client.get("/health").status_code == 200
            assert isinstance(app.state.webhook_handler, WebhookHandler)
            mock_close_cx.assert_not_called()

        mock_chatwoot_cls.return_value.close.assert_called_once()
        mock_close_cx.assert_called_once()
        assert app.state.webhook_handler is None
