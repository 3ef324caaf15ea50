"""Pydantic schemas for the FastAPI endpoints.

Chatwoot webhook payloads carry many more fields than the agent reads; the
models below declare only what is used and ignore the rest.  Every field is
optional so that an unexpected event shape is skipped rather than rejected.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator


class Sender(BaseModel):
    id: int | str | None = None


class ConversationMeta(BaseModel):
    assignee: Any = None


class Conversation(BaseModel):
    id: int | str | None = None
    sender: Sender | None = None
    meta: ConversationMeta | None = None


class Account(BaseModel):
    id: int | str | None = None


class WebhookEvent(BaseModel):
    """Inbound Chatwoot webhook delivery."""

    event: str | None = None
    message_type: str | None = None
    content: str | None = None
    conversation: Conversation = Field(default_factory=Conversation)
    account: Account = Field(default_factory=Account)

    @field_validator("conversation", "account", mode="before")
    @classmethod
    def _null_as_empty(cls, value: Any) -> Any:
        return {} if value is None else value


class WebhookAck(BaseModel):
    """Immediate acknowledgement returned to Chatwoot."""

    success: bool = True
    message: str


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "healthy"
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
