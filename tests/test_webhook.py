"""Tests for webhook eligibility and the background reply flow."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from coverage_agent.api.schemas import WebhookEvent
from coverage_agent.api.webhook import WebhookHandler, should_respond
from coverage_agent.services.chatwoot_client import ChatwootAPIError


def _event(**overrides) -> WebhookEvent:
    payload = {
        "event": "message_created",
        "message_type": "incoming",
        "content": "2023 Honda Civic",
        "conversation": {"id": 42, "sender": {"id": 9}, "meta": {"assignee": None}},
        "account": {"id": 7},
    }
    payload.update(overrides)
    return WebhookEvent.model_validate(payload)


# ── Eligibility ──────────────────────────────────────────────────────


class TestShouldRespond:
    def test_incoming_unassigned_message(self):
        assert should_respond(_event(), bot_sender_id=1)

    def test_other_event_types_are_skipped(self):
        assert not should_respond(_event(event="conversation_updated"), bot_sender_id=1)

    def test_outgoing_from_human_agent_is_skipped(self):
        assert not should_respond(_event(message_type="outgoing"), bot_sender_id=1)

    def test_outgoing_from_bot_sender_is_answered(self):
        event = _event(
            message_type="outgoing",
            conversation={"id": 42, "sender": {"id": "1"}, "meta": {}},
        )
        assert should_respond(event, bot_sender_id=1)

    def test_assigned_conversation_is_skipped(self):
        event = _event(
            conversation={"id": 42, "sender": {"id": 9}, "meta": {"assignee": {"id": 3}}},
        )
        assert not should_respond(event, bot_sender_id=1)

    def test_missing_meta_counts_as_unassigned(self):
        assert should_respond(_event(conversation={"id": 42}), bot_sender_id=1)

    def test_unknown_fields_are_ignored(self):
        event = WebhookEvent.model_validate({
            "event": "message_created",
            "message_type": "incoming",
            "content": "hi",
            "inbox": {"id": 5},
            "conversation": {"id": 42, "status": "pending", "meta": {"assignee": None}},
        })
        assert should_respond(event, bot_sender_id=1)


# ── Reply flow ───────────────────────────────────────────────────────


@pytest.fixture
def agent():
    mock = MagicMock()
    mock.reply.return_value = "Which trim is your Civic?"
    return mock


@pytest.fixture
def chatwoot():
    return MagicMock()


def _handler(agent, chatwoot, **kwargs) -> WebhookHandler:
    kwargs.setdefault("typing_indicator", True)
    kwargs.setdefault("auto_open", False)
    return WebhookHandler(agent, chatwoot, bot_sender_id=1, **kwargs)


class TestWebhookHandler:
    def test_reply_is_sent_once(self, agent, chatwoot):
        _handler(agent, chatwoot).process(_event(), "cw_req1")

        agent.reply.assert_called_once_with(42, "2023 Honda Civic", request_id="cw_req1")
        chatwoot.send_message.assert_called_once_with(
            7, 42, "Which trim is your Civic?", echo_id="cw_req1",
        )

    def test_typing_indicator_wraps_generation(self, agent, chatwoot):
        _handler(agent, chatwoot).process(_event(), "cw_req1")
        assert [c[0][2] for c in chatwoot.set_typing.call_args_list] == [True, False]

    def test_typing_indicator_disabled(self, agent, chatwoot):
        _handler(agent, chatwoot, typing_indicator=False).process(_event(), "cw_req1")
        chatwoot.set_typing.assert_not_called()

    def test_typing_failure_is_not_fatal(self, agent, chatwoot):
        chatwoot.set_typing.side_effect = ChatwootAPIError("Client error 404", status_code=404)
        _handler(agent, chatwoot).process(_event(), "cw_req1")
        chatwoot.send_message.assert_called_once()

    def test_agent_failure_sends_nothing(self, agent, chatwoot):
        agent.reply.side_effect = RuntimeError("backend down")
        _handler(agent, chatwoot).process(_event(), "cw_req1")
        chatwoot.send_message.assert_not_called()
        # Indicator still switched off
        assert chatwoot.set_typing.call_args[0][2] is False

    def test_send_failure_is_logged_not_raised(self, agent, chatwoot):
        chatwoot.send_message.side_effect = ChatwootAPIError("Server error 500", status_code=500)
        log = MagicMock()
        _handler(agent, chatwoot, interaction_log=log).process(_event(), "cw_req1")
        log.record.assert_not_called()

    def test_empty_reply_is_not_sent(self, agent, chatwoot):
        agent.reply.return_value = "   "
        _handler(agent, chatwoot).process(_event(), "cw_req1")
        chatwoot.send_message.assert_not_called()

    @pytest.mark.parametrize(
        "overrides",
        [
            {"content": "   "},
            {"content": None},
            {"account": {}},
            {"conversation": {"sender": {"id": 9}}},
        ],
    )
    def test_skips_unusable_events(self, agent, chatwoot, overrides):
        _handler(agent, chatwoot).process(_event(**overrides), "cw_req1")
        agent.reply.assert_not_called()
        chatwoot.send_message.assert_not_called()

    def test_auto_open_after_reply(self, agent, chatwoot):
        _handler(agent, chatwoot, auto_open=True).process(_event(), "cw_req1")
        chatwoot.toggle_status.assert_called_once_with(7, 42, "open")

    def test_auto_open_failure_is_not_fatal(self, agent, chatwoot):
        chatwoot.toggle_status.side_effect = ChatwootAPIError("Client error 403", status_code=403)
        log = MagicMock()
        _handler(agent, chatwoot, auto_open=True, interaction_log=log).process(_event(), "cw_req1")
        log.record.assert_called_once()

    def test_interaction_is_recorded(self, agent, chatwoot):
        log = MagicMock()
        _handler(agent, chatwoot, interaction_log=log).process(_event(), "cw_req1")

        kwargs = log.record.call_args[1]
        assert kwargs["request_id"] == "cw_req1"
        assert kwargs["conversation_id"] == 42
        assert kwargs["user_message"] == "2023 Honda Civic"
        assert kwargs["ai_response"] == "Which trim is your Civic?"
