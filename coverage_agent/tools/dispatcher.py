"""Tool dispatcher: turns one model-issued tool call into CoverageX calls.

Responsibilities
----------------
* Validate the call's arguments with the tool's pydantic argument model.
* Manage the CoverageX pricing session per conversation: year/state scoped
  lookups obtain a session ref first, later calls reuse it, and a ref the
  upstream rejects as expired is replaced transparently (once).
* Run the contract flow (submit quote → process deposit → save contract),
  stopping at the first failed step.
* Always return a :class:`ToolResult`; nothing raises out of
  :meth:`ToolDispatcher.dispatch`, because every outcome goes back to the
  model as a tool message.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from datetime import date
from typing import Any

from pydantic import ValidationError

from coverage_agent.services.conversation_store import (
    ConversationId,
    ConversationStore,
    QuoteSnapshot,
    SessionContext,
)
from coverage_agent.services.coveragex_client import CoverageXAPIError, CoverageXClient
from coverage_agent.tools import results
from coverage_agent.tools.catalog import FULL, ToolArgs, get_catalog, tool_name, tool_names
from coverage_agent.tools.results import ToolResult

logger = logging.getLogger(__name__)

# Upstream answers a stale or unknown session ref with one of these
SESSION_EXPIRED_STATUSES = frozenset({401, 403, 410})

# RFC 5322-ish pattern, good enough for catching typos in chat
_EMAIL_RE = re.compile(
    r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+"
    r"@[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?"
    r"(?:\.[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)+$"
)
# 17 characters, no I, O or Q
_VIN_RE = re.compile(r"^[A-HJ-NPR-Z0-9]{17}$")
_EXPIRY_RE = re.compile(r"^(0[1-9]|1[0-2])/(\d{2}|\d{4})$")


class ToolInputError(Exception):
    """A tool call that cannot proceed; becomes an error result, not a crash."""

    def __init__(self, kind: str, detail: str, **extra: Any) -> None:
        self.kind = kind
        self.detail = detail
        self.extra = extra
        super().__init__(detail)

    def to_result(self) -> ToolResult:
        return ToolResult.failure(self.kind, self.detail, **self.extra)


# ── Argument handling ────────────────────────────────────────────────


def _describe(errors: list[dict[str, Any]]) -> str:
    parts = []
    for err in errors:
        field = ".".join(str(p) for p in err["loc"]) or "arguments"
        parts.append(f"{field}: {err['msg']}")
    return "; ".join(parts)


def prepare_arguments(args_model: type[ToolArgs], args: Any) -> dict[str, Any]:
    """Validate *args* against the tool's argument model and return kwargs."""
    try:
        parsed = args_model.model_validate({} if args is None else args)
    except ValidationError as exc:
        errors = exc.errors(include_url=False)
        missing = [str(err["loc"][0]) for err in errors if err["type"] == "missing"]
        if missing and len(missing) == len(errors):
            raise ToolInputError(
                results.INVALID_ARGUMENTS,
                f"Missing required argument(s): {', '.join(missing)}.",
                missing=missing,
            ) from None
        raise ToolInputError(
            results.INVALID_ARGUMENTS,
            f"Invalid argument(s): {_describe(errors)}.",
            fields=sorted({str(err["loc"][0]) for err in errors if err["loc"]}),
            missing=missing,
        ) from None
    return parsed.model_dump()


def _validate_contract_fields(
    email: str, vin: str, card_number: str, card_expiry: str, card_cvv: str,
) -> str:
    """Raise on the first invalid field; return the normalized card number."""
    if not _EMAIL_RE.match(email):
        raise ToolInputError(
            results.INVALID_ARGUMENTS,
            f'"{email}" does not look like a valid email address. '
            "Please ask the customer to double-check it.",
            field="email",
        )
    if not _VIN_RE.match(vin.upper()):
        raise ToolInputError(
            results.INVALID_ARGUMENTS,
            "The VIN must be 17 letters and digits (no I, O or Q).",
            field="vin",
        )
    digits = re.sub(r"[\s-]", "", card_number)
    if not digits.isdigit() or not 13 <= len(digits) <= 19:
        raise ToolInputError(
            results.INVALID_ARGUMENTS, "The card number is not valid.", field="card_number",
        )
    match = _EXPIRY_RE.match(card_expiry)
    if not match:
        raise ToolInputError(
            results.INVALID_ARGUMENTS, "Card expiry must be MM/YY.", field="card_expiry",
        )
    month, year = int(match.group(1)), int(match.group(2))
    year = year + 2000 if year < 100 else year
    today = date.today()
    if (year, month) < (today.year, today.month):
        raise ToolInputError(
            results.INVALID_ARGUMENTS, "The card has expired.", field="card_expiry",
        )
    if not (card_cvv.isdigit() and len(card_cvv) in (3, 4)):
        raise ToolInputError(
            results.INVALID_ARGUMENTS, "The card security code must be 3 or 4 digits.",
            field="card_cvv",
        )
    return digits


# ── Dispatcher ───────────────────────────────────────────────────────


class ToolDispatcher:
    """Maps tool names from the model to CoverageX adapter calls."""

    def __init__(
        self,
        client: CoverageXClient,
        store: ConversationStore,
        profile: str = FULL,
    ) -> None:
        self._client = client
        self._store = store
        self.profile = profile
        self.catalog = get_catalog(profile)

        handlers: dict[str, Callable[..., Any]] = {
            "get_vehicle_makes": self.get_vehicle_makes,
            "get_vehicle_models": self.get_vehicle_models,
            "get_quote": self.get_quote,
            "create_contract": self.create_contract,
        }
        unknown = [name for name in tool_names(self.catalog) if name not in handlers]
        if unknown:
            raise ValueError(f"No handler for declared tool(s): {unknown}")
        self._arg_models = {tool_name(tool): tool for tool in self.catalog}
        self._handlers = {name: handlers[name] for name in self._arg_models}

    # ── Entry point ──────────────────────────────────────────────────

    def dispatch(
        self,
        conversation_id: ConversationId,
        name: str,
        args: Any,
    ) -> ToolResult:
        """Run one tool call and describe the outcome as a ToolResult."""
        args_model = self._arg_models.get(name)
        if args_model is None:
            logger.warning("Model requested unknown tool %r", name)
            return ToolResult.failure(results.UNKNOWN_TOOL, f"Unknown function: {name}")

        try:
            kwargs = prepare_arguments(args_model, args)
            # Argument names only: contract calls carry card data
            logger.info(
                "Conversation %s: calling %s(%s)",
                conversation_id, name,
                ", ".join(sorted(k for k, v in kwargs.items() if v is not None)),
            )
            outcome = self._handlers[name](conversation_id, **kwargs)
        except ToolInputError as exc:
            logger.info("Conversation %s: %s rejected (%s)", conversation_id, name, exc.kind)
            return exc.to_result()
        except CoverageXAPIError as exc:
            logger.error("Conversation %s: %s failed: %s", conversation_id, name, exc)
            return ToolResult.failure(
                results.UPSTREAM_ERROR, str(exc), status=exc.status_code,
            )
        except Exception:
            logger.exception("Conversation %s: %s crashed", conversation_id, name)
            return ToolResult.failure(
                results.INTERNAL_ERROR, f"{name} failed unexpectedly. Please try again.",
            )

        if isinstance(outcome, ToolResult):
            return outcome
        return ToolResult.success(outcome)

    # ── Session handling ─────────────────────────────────────────────

    def _session_for(
        self,
        conversation_id: ConversationId,
        year: str | None,
        state: str | None,
    ) -> tuple[SessionContext, bool]:
        """Return ``(session, reused)``, issuing a new session ref if needed."""
        session = self._store.get_session(conversation_id)
        if (
            session is not None
            and (year is None or year == session.year)
            and (state is None or state == session.state)
        ):
            return session, True

        year = year or (session.year if session else None)
        state = state or (session.state if session else None)
        if not year or not state:
            raise ToolInputError(
                results.MISSING_SESSION,
                "No pricing session yet. Ask for the vehicle year and registration "
                "state, then call get_vehicle_makes.",
            )

        session = SessionContext(ref=self._client.create_session(year, state), year=year, state=state)
        self._store.set_session(conversation_id, session)
        return session, False

    def _with_session(
        self,
        conversation_id: ConversationId,
        year: str | None,
        state: str | None,
        call: Callable[[SessionContext], Any],
    ) -> tuple[Any, SessionContext]:
        """Run *call* with a session ref, replacing an expired cached ref once."""
        session, reused = self._session_for(conversation_id, year, state)
        try:
            return call(session), session
        except CoverageXAPIError as exc:
            if not reused or exc.status_code not in SESSION_EXPIRED_STATUSES:
                raise
            logger.info(
                "Conversation %s: session ref rejected (%s), requesting a new one",
                conversation_id, exc.status_code,
            )
        self._store.set_session(conversation_id, None)
        session, _ = self._session_for(conversation_id, session.year, session.state)
        return call(session), session

    # ── Tools ────────────────────────────────────────────────────────

    def get_vehicle_makes(
        self,
        conversation_id: ConversationId,
        year: str,
        state: str | None = None,
    ) -> Any:
        if state is None:
            return self._client.get_makes(year)
        makes, _ = self._with_session(
            conversation_id, year, state.upper(),
            lambda s: self._client.get_makes(s.year, ref=s.ref, state=s.state),
        )
        return makes

    def get_vehicle_models(
        self,
        conversation_id: ConversationId,
        make: str,
        year: str | None = None,
        state: str | None = None,
    ) -> Any:
        state = state.upper() if state else None
        if state is None and self._store.get_session(conversation_id) is None:
            if not year:
                raise ToolInputError(
                    results.INVALID_ARGUMENTS, "The vehicle year is required to list models.",
                )
            return self._client.get_models(year, make)

        models, _ = self._with_session(
            conversation_id, year, state,
            lambda s: self._client.get_models(s.year, make, ref=s.ref, state=s.state),
        )
        return models

    def get_quote(
        self,
        conversation_id: ConversationId,
        state: str,
        year: str,
        make: str,
        model: str,
        vehicle_class: str,
        vin_pattern: str,
        odometer: int,
        trim: str | None = None,
    ) -> Any:
        state = state.upper()
        plan, session = self._with_session(
            conversation_id, year, state,
            lambda s: self._client.get_plan(
                s.ref,
                year=year,
                make=make,
                model=model,
                vehicle_class=vehicle_class,
                vin_pattern=vin_pattern,
                odometer=odometer,
                trim=trim,
            ),
        )
        snapshot = QuoteSnapshot(
            state=state,
            year=year,
            make=make,
            model=model,
            trim=trim,
            vehicle_class=vehicle_class,
            vin_pattern=vin_pattern,
            odometer=odometer,
            plan=plan,
        )
        self._store.set_session(
            conversation_id,
            SessionContext(ref=session.ref, year=session.year, state=session.state, quote=snapshot),
        )
        logger.info("Conversation %s: quote stored for %s %s %s", conversation_id, year, make, model)
        return plan

    def create_contract(
        self,
        conversation_id: ConversationId,
        first_name: str,
        last_name: str,
        email: str,
        phone: str,
        address: str,
        city: str,
        state: str,
        zip_code: str,
        vin: str,
        card_number: str,
        card_expiry: str,
        card_cvv: str,
        cardholder_name: str | None = None,
    ) -> ToolResult:
        session = self._store.get_session(conversation_id)
        if session is None or session.quote is None:
            return ToolResult.failure(
                results.NO_ACTIVE_QUOTE,
                "There is no active quote for this conversation. "
                "Collect the vehicle details and call get_quote first.",
            )

        card_digits = _validate_contract_fields(email, vin, card_number, card_expiry, card_cvv)
        quote = session.quote
        vin = vin.upper()
        customer = {
            "first_name": first_name,
            "last_name": last_name,
            "email": email,
            "phone": phone,
            "address": {
                "street": address,
                "city": city,
                "state": state.upper(),
                "zip": zip_code,
            },
        }

        def step(name: str, call: Callable[[], Any]) -> tuple[Any, ToolResult | None]:
            try:
                return call(), None
            except CoverageXAPIError as exc:
                logger.error(
                    "Conversation %s: contract step %s failed: %s", conversation_id, name, exc,
                )
                return None, ToolResult.failure(
                    results.UPSTREAM_ERROR, str(exc), step=name, status=exc.status_code,
                )

        submitted, failed = step("submit_quote", lambda: self._client.submit_quote(
            session.ref,
            {
                "customer": customer,
                "vehicle": {
                    "year": quote.year,
                    "make": quote.make,
                    "model": quote.model,
                    "trim": quote.trim,
                    "class": quote.vehicle_class,
                    "vin": vin,
                    "odometer": quote.odometer,
                },
                "plan": quote.plan,
            },
        ))
        if failed:
            return failed
        quote_id = submitted.get("id") if isinstance(submitted, dict) else None

        deposit, failed = step("process_deposit", lambda: self._client.process_deposit(
            session.ref,
            {
                "quote_id": quote_id,
                "card": {
                    "number": card_digits,
                    "expiry": card_expiry,
                    "cvv": card_cvv,
                    "name": cardholder_name or f"{first_name} {last_name}",
                },
            },
        ))
        if failed:
            return failed
        deposit_id = deposit.get("id") if isinstance(deposit, dict) else None

        contract, failed = step("save_contract", lambda: self._client.save_contract(
            {
                "ref": session.ref,
                "quote_id": quote_id,
                "deposit_id": deposit_id,
                "customer": customer,
                "vin": vin,
            },
        ))
        if failed:
            return failed

        # The quote is spent; a second contract needs a fresh get_quote
        self._store.set_session(
            conversation_id,
            SessionContext(ref=session.ref, year=session.year, state=session.state),
        )
        logger.info("Conversation %s: contract saved (quote %s)", conversation_id, quote_id)
        return ToolResult.success(
            {"status": "completed", "quote_id": quote_id, "deposit_id": deposit_id, "contract": contract},
        )
