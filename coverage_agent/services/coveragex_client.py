"""HTTP client for the CoverageX quoting, vehicle-data and deal-manager APIs.

Every lookup is scoped by a ``ref`` query parameter.  Account-level lookups
use the configured account ref; year/state pricing sessions use a session
ref issued by :meth:`CoverageXClient.create_session`.  Contracts are saved
through the deal-manager API, a sibling of the quoting API.
"""

from __future__ import annotations

import logging
import threading
from typing import Any
from urllib.parse import quote

from coverage_agent.config import (
    COVERAGEX_API_BASE,
    COVERAGEX_API_REF,
    COVERAGEX_API_TOKEN,
    COVERAGEX_DEAL_MANAGER_BASE,
    HTTP_TIMEOUT_SECONDS,
)
from coverage_agent.services.http_client import JSONServiceClient, UpstreamAPIError

logger = logging.getLogger(__name__)


class CoverageXAPIError(UpstreamAPIError):
    """Raised when a CoverageX API call fails after all retries."""


def _segment(value: str) -> str:
    """Percent-encode a single path segment (``Land Rover`` → ``Land%20Rover``)."""
    return quote(str(value), safe="")


class CoverageXClient(JSONServiceClient):
    """Thin wrapper around the CoverageX REST endpoints."""

    service = "coveragex"
    error_class = CoverageXAPIError

    def __init__(
        self,
        api_ref: str | None = None,
        base_url: str | None = None,
        *,
        token: str | None = None,
        deal_manager_url: str | None = None,
        timeout: float = HTTP_TIMEOUT_SECONDS,
    ):
        self._api_ref = api_ref or COVERAGEX_API_REF
        token = token or COVERAGEX_API_TOKEN
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        super().__init__(base_url or COVERAGEX_API_BASE, headers, timeout=timeout)
        self._deal_manager_url = (deal_manager_url or COVERAGEX_DEAL_MANAGER_BASE).rstrip("/")

    # ── Vehicle lookups ──────────────────────────────────────────────

    def get_makes(
        self,
        year: str,
        *,
        ref: str | None = None,
        state: str | None = None,
    ) -> Any:
        """List vehicle makes available for *year*."""
        params = {"ref": ref or self._api_ref}
        if state:
            params["state"] = state
        return self._request(
            "GET", f"/years/{_segment(year)}/makes",
            operation="get_makes", params=params,
        )

    def get_models(
        self,
        year: str,
        make: str,
        *,
        ref: str | None = None,
        state: str | None = None,
    ) -> Any:
        """List models for *make* in *year*."""
        params = {"ref": ref or self._api_ref}
        if state:
            params["state"] = state
        return self._request(
            "GET", f"/years/{_segment(year)}/makes/{_segment(make)}/models",
            operation="get_models", params=params,
        )

    # ── Pricing session ──────────────────────────────────────────────

    def create_session(self, year: str, state: str) -> str:
        """Issue a session ref scoping later lookups to *year* and *state*."""
        data = self._request(
            "GET", f"/years/{_segment(year)}/states/{_segment(state)}/ref",
            operation="create_session", params={"ref": self._api_ref},
        )
        session_ref = data.get("ref") if isinstance(data, dict) else None
        if not session_ref:
            raise CoverageXAPIError(
                f"CoverageX returned no session ref for {year}/{state}", body=data,
            )
        logger.info("Issued CoverageX session ref for %s/%s", year, state)
        return session_ref

    def get_plan(
        self,
        ref: str,
        *,
        year: str,
        make: str,
        model: str,
        vehicle_class: str,
        vin_pattern: str,
        odometer: int,
        trim: str | None = None,
    ) -> Any:
        """Fetch the priced protection plan for one vehicle."""
        params: dict[str, Any] = {
            "ref": ref,
            "class": vehicle_class,
            "vin": vin_pattern,
            "odometer": odometer,
        }
        if trim:
            params["trim"] = trim
        return self._request(
            "GET",
            f"/years/{_segment(year)}/makes/{_segment(make)}/models/{_segment(model)}/plans",
            operation="get_plan", params=params,
        )

    # ── Contract flow ────────────────────────────────────────────────

    def submit_quote(self, ref: str, payload: dict[str, Any]) -> Any:
        """Create or replace the quote attached to session *ref*."""
        return self._request(
            "PUT", f"/quotes/{_segment(ref)}",
            operation="submit_quote", json_body=payload,
        )

    def process_deposit(self, ref: str, payload: dict[str, Any]) -> Any:
        """Charge the deposit for the quote attached to session *ref*."""
        return self._request(
            "POST", f"/quotes/{_segment(ref)}/deposit",
            operation="process_deposit", json_body=payload,
        )

    def save_contract(self, payload: dict[str, Any]) -> Any:
        """Finalize the contract through the deal-manager API."""
        return self._request(
            "POST", f"{self._deal_manager_url}/contracts",
            operation="save_contract", json_body=payload,
        )


_client: CoverageXClient | None = None
_client_lock = threading.Lock()


def get_coveragex_client() -> CoverageXClient:
    """Return a module-level CoverageXClient singleton."""
    global _client
    if _client is None:
        with _client_lock:
            if _client is None:
                _client = CoverageXClient()
    return _client


def close_coveragex_client() -> None:
    """Close and forget the singleton, if one was created."""
    global _client
    with _client_lock:
        if _client is not None:
            _client.close()
            _client = None
