"""FastAPI route definitions for the CoverageX quote agent."""

from __future__ import annotations

import logging

from fastapi import APIRouter, BackgroundTasks, HTTPException, Request
from pydantic import ValidationError

from coverage_agent.api.schemas import HealthResponse, WebhookAck, WebhookEvent
from coverage_agent.api.webhook import WebhookHandler

logger = logging.getLogger(__name__)

router = APIRouter()

NO_REPLY_MESSAGE = "Webhook received, no reply needed"


def _get_handler(request: Request) -> WebhookHandler:
    """Retrieve the webhook handler built during the FastAPI lifespan."""
    handler = getattr(request.app.state, "webhook_handler", None)
    if handler is None:
        raise HTTPException(
            status_code=503,
            detail="The agent is still starting up. Please try again in a moment.",
        )
    return handler


# ── Endpoints ────────────────────────────────────────────────────────


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse()


@router.post("/api/chatwoot", response_model=WebhookAck)
async def chatwoot_webhook(background_tasks: BackgroundTasks, http_request: Request):
    """Acknowledge a Chatwoot delivery and answer it in the background.

    The model and tool calls can take many seconds; Chatwoot only needs to
    know the delivery arrived, so the reply is generated after the response
    has been sent (``BackgroundTasks`` runs the sync handler on the thread
    pool).  Downstream failures are logged, never returned, and a payload
    that does not parse is acknowledged like any other ignored event.
    """
    handler = _get_handler(http_request)
    request_id = getattr(http_request.state, "request_id", "?")

    try:
        event = WebhookEvent.model_validate(await http_request.json())
    except (ValueError, ValidationError) as exc:
        logger.warning(
            "[%s] Ignoring unparseable webhook payload (%s)", request_id, type(exc).__name__,
        )
        return WebhookAck(message=NO_REPLY_MESSAGE)

    logger.info(
        "[%s] Chatwoot %s event, message type: %s",
        request_id, event.event, event.message_type,
    )
    if not handler.is_eligible(event):
        sender = event.conversation.sender
        logger.info(
            "[%s] Skipping event: %s, %s, sender: %s, assigned: %s",
            request_id, event.event, event.message_type,
            sender.id if sender else None,
            bool(event.conversation.meta and event.conversation.meta.assignee),
        )
        return WebhookAck(message=NO_REPLY_MESSAGE)

    background_tasks.add_task(handler.process, event, request_id)
    return WebhookAck(message="Webhook received, processing asynchronously")
