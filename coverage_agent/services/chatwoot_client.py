"""HTTP client for the Chatwoot application API.

All calls are scoped to one account and conversation and authenticated with
the ``api_access_token`` header.

API docs: https://www.chatwoot.com/developers/api/
"""

from __future__ import annotations

from typing import Any

from coverage_agent.config import CHATWOOT_API_KEY, CHATWOOT_BASE_URL, HTTP_TIMEOUT_SECONDS
from coverage_agent.services.http_client import JSONServiceClient, UpstreamAPIError


class ChatwootAPIError(UpstreamAPIError):
    """Raised when a Chatwoot API call fails after all retries."""


class ChatwootClient(JSONServiceClient):
    """Posts replies and toggles conversation state in Chatwoot."""

    service = "chatwoot"
    error_class = ChatwootAPIError

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        *,
        timeout: float = HTTP_TIMEOUT_SECONDS,
    ):
        super().__init__(
            base_url or CHATWOOT_BASE_URL,
            {"api_access_token": api_key or CHATWOOT_API_KEY},
            timeout=timeout,
        )

    @staticmethod
    def _conversation_path(account_id: int | str, conversation_id: int | str) -> str:
        return f"/api/v1/accounts/{account_id}/conversations/{conversation_id}"

    def send_message(
        self,
        account_id: int | str,
        conversation_id: int | str,
        content: str,
        *,
        echo_id: str | None = None,
    ) -> Any:
        """Post a public outgoing message to the conversation."""
        payload: dict[str, Any] = {
            "content": content,
            "message_type": "outgoing",
            "private": False,
        }
        if echo_id:
            payload["echo_id"] = echo_id
        return self._request(
            "POST", f"{self._conversation_path(account_id, conversation_id)}/messages",
            operation="send_message", json_body=payload,
        )

    def set_typing(
        self,
        account_id: int | str,
        conversation_id: int | str,
        on: bool,
    ) -> Any:
        """Switch the typing indicator on or off."""
        return self._request(
            "POST", f"{self._conversation_path(account_id, conversation_id)}/toggle_typing_status",
            operation="toggle_typing_status",
            json_body={"typing_status": "on" if on else "off"},
            idempotent=True,
        )

    def toggle_status(
        self,
        account_id: int | str,
        conversation_id: int | str,
        status: str = "open",
    ) -> Any:
        """Set the conversation status (``open``, ``resolved``, ``pending``)."""
        return self._request(
            "POST", f"{self._conversation_path(account_id, conversation_id)}/toggle_status",
            operation="toggle_status", json_body={"status": status},
            idempotent=True,
        )
