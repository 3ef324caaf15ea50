"""Chatwoot webhook handling: eligibility filter and background reply flow."""

from __future__ import annotations

import logging
import time

from coverage_agent.agent import ConversationAgent
from coverage_agent.api.schemas import WebhookEvent
from coverage_agent.config import (
    AUTO_OPEN_CONVERSATION,
    CHATWOOT_BOT_SENDER_ID,
    TYPING_INDICATOR,
)
from coverage_agent.services.chatwoot_client import ChatwootAPIError, ChatwootClient
from coverage_agent.services.interaction_log import InteractionLog

logger = logging.getLogger(__name__)


def should_respond(event: WebhookEvent, bot_sender_id: int | str | None) -> bool:
    """Decide whether an inbound event warrants a reply.

    Replies go to new incoming messages, and to outgoing messages sent by the
    designated bot sender (echo / testing flows), but never to a conversation
    a human agent has been assigned to.
    """
    if event.event != "message_created":
        return False

    sender = event.conversation.sender
    from_bot = (
        event.message_type == "outgoing"
        and sender is not None
        and sender.id is not None
        and bot_sender_id is not None
        and str(sender.id) == str(bot_sender_id)
    )
    if event.message_type != "incoming" and not from_bot:
        return False

    meta = event.conversation.meta
    return meta is None or meta.assignee is None


class WebhookHandler:
    """Generates and delivers the reply for one eligible webhook event."""

    def __init__(
        self,
        agent: ConversationAgent,
        chatwoot: ChatwootClient,
        *,
        bot_sender_id: int | str | None = CHATWOOT_BOT_SENDER_ID,
        typing_indicator: bool = TYPING_INDICATOR,
        auto_open: bool = AUTO_OPEN_CONVERSATION,
        interaction_log: InteractionLog | None = None,
    ) -> None:
        self._agent = agent
        self._chatwoot = chatwoot
        self.bot_sender_id = bot_sender_id
        self._typing_indicator = typing_indicator
        self._auto_open = auto_open
        self._interaction_log = interaction_log

    def is_eligible(self, event: WebhookEvent) -> bool:
        return should_respond(event, self.bot_sender_id)

    def _set_typing(self, request_id: str, account_id, conversation_id, on: bool) -> None:
        if not self._typing_indicator:
            return
        try:
            self._chatwoot.set_typing(account_id, conversation_id, on)
        except ChatwootAPIError as exc:
            logger.warning("[%s] Could not toggle typing indicator: %s", request_id, exc)

    def process(self, event: WebhookEvent, request_id: str) -> None:
        """Run the agent and post its reply.  Never raises."""
        start = time.perf_counter()
        conversation_id = event.conversation.id
        account_id = event.account.id
        content = (event.content or "").strip()

        if conversation_id is None or account_id is None:
            logger.warning(
                "[%s] Missing conversation or account id, cannot reply", request_id,
            )
            return
        if not content:
            logger.info("[%s] Skipping message without text content", request_id)
            return

        logger.info(
            "[%s] Processing user message: %r",
            request_id, content[:50] + ("..." if len(content) > 50 else ""),
        )

        self._set_typing(request_id, account_id, conversation_id, True)
        try:
            reply = self._agent.reply(conversation_id, content, request_id=request_id)
        except Exception:
            logger.exception("[%s] Failed to generate a reply", request_id)
            return
        finally:
            self._set_typing(request_id, account_id, conversation_id, False)

        if not reply.strip():
            logger.warning("[%s] Model returned an empty reply, nothing sent", request_id)
            return

        try:
            self._chatwoot.send_message(account_id, conversation_id, reply, echo_id=request_id)
        except ChatwootAPIError:
            logger.exception(
                "[%s] Failed to send reply to conversation %s", request_id, conversation_id,
            )
            return
        logger.info("[%s] Reply sent to conversation %s", request_id, conversation_id)

        if self._auto_open:
            try:
                self._chatwoot.toggle_status(account_id, conversation_id, "open")
            except ChatwootAPIError as exc:
                logger.warning("[%s] Could not reopen conversation: %s", request_id, exc)

        elapsed_ms = (time.perf_counter() - start) * 1000
        if self._interaction_log is not None:
            self._interaction_log.record(
                request_id=request_id,
                conversation_id=conversation_id,
                user_message=content,
                ai_response=reply,
                processing_ms=elapsed_ms,
            )
        logger.info("[%s] Request completed in %.0fms", request_id, elapsed_ms)
