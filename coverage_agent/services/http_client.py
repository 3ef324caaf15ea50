"""Shared JSON-over-HTTP client with retry logic and timeout handling.

Both upstream services (CoverageX and Chatwoot) speak JSON over HTTPS and
fail in the same ways, so the request/retry loop lives here and the service
clients only describe their endpoints.

Retry policy
------------
* ``httpx.ConnectError`` is retried for every call: the request never
  reached the server.
* Timeouts and 5xx responses are retried only for idempotent calls, so a
  payment or contract POST is never submitted twice.
* 4xx responses are never retried.
"""

from __future__ import annotations

import logging
import time
from typing import Any

import httpx

from coverage_agent.services.metrics import metrics

logger = logging.getLogger(__name__)

MAX_RETRIES = 3
INITIAL_BACKOFF_SECONDS = 1.0
REQUEST_TIMEOUT_SECONDS = 15.0


class UpstreamAPIError(Exception):
    """Raised when an upstream call fails (network error or non-2xx)."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        body: Any = None,
    ):
        self.status_code = status_code
        self.body = body
        super().__init__(message)


class JSONServiceClient:
    """Base class for the upstream API clients."""

    #: Name used for metrics and log lines
    service = "upstream"
    #: Subclasses narrow this so callers can catch per-service errors
    error_class: type[UpstreamAPIError] = UpstreamAPIError

    def __init__(
        self,
        base_url: str,
        headers: dict[str, str],
        *,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
    ):
        self._base_url = base_url.rstrip("/")
        self._client = httpx.Client(
            base_url=self._base_url,
            headers={"Content-Type": "application/json", **headers},
            timeout=timeout,
        )

    def close(self) -> None:
        self._client.close()

    @staticmethod
    def _parse_body(response: Any) -> Any:
        """Return the decoded JSON body, the raw text, or ``{}`` when empty."""
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            return response.text

    def _request(
        self,
        method: str,
        path: str,
        *,
        operation: str,
        params: dict[str, Any] | None = None,
        json_body: Any = None,
        idempotent: bool | None = None,
    ) -> Any:
        """Execute an HTTP request with exponential-backoff retries.

        ``idempotent`` defaults to ``True`` for GET/PUT/DELETE.
        """
        if idempotent is None:
            idempotent = method.upper() in {"GET", "PUT", "DELETE"}

        last_error: Exception | None = None
        for attempt in range(1, MAX_RETRIES + 1):
            backoff = INITIAL_BACKOFF_SECONDS * (2 ** (attempt - 1))
            try:
                with metrics.track(self.service, operation):
                    response = self._client.request(
                        method, path, params=params, json=json_body,
                    )
                    if response.status_code >= 400:
                        kind = "Server" if response.status_code >= 500 else "Client"
                        raise self.error_class(
                            f"{kind} error {response.status_code}: {response.text}",
                            status_code=response.status_code,
                            body=self._parse_body(response),
                        )
                return self._parse_body(response)

            except httpx.ConnectError as exc:
                last_error = exc
            except httpx.TimeoutException as exc:
                if not idempotent:
                    raise self.error_class(
                        f"{self.service} {operation} timed out: {exc}"
                    ) from exc
                last_error = exc
            except UpstreamAPIError as exc:
                if not (idempotent and exc.status_code and exc.status_code >= 500):
                    raise
                last_error = exc
            except httpx.HTTPError as exc:
                raise self.error_class(f"{self.service} {operation} failed: {exc}") from exc

            if attempt < MAX_RETRIES:
                logger.warning(
                    "%s %s attempt %d/%d failed (%s). Retrying in %.1fs…",
                    self.service, operation, attempt, MAX_RETRIES,
                    type(last_error).__name__, backoff,
                )
                time.sleep(backoff)

        status_code = getattr(last_error, "status_code", None)
        raise self.error_class(
            f"{self.service} {operation} failed after {MAX_RETRIES} attempts: {last_error}",
            status_code=status_code,
            body=getattr(last_error, "body", None),
        )
