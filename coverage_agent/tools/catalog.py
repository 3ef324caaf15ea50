"""Tool declarations shown to the model, grouped by deployment profile.

Each tool is a pydantic argument model: its title is the tool name and its
docstring the description.  ``ChatAnthropic.bind_tools`` reads the JSON
schema off the class, and the dispatcher validates incoming arguments with
the same class, so what the model is told and what is accepted never drift
apart.
"""

from __future__ import annotations

from typing import Annotated, Any

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    PlainSerializer,
    StringConstraints,
    model_validator,
)

LOOKUP = "lookup"
QUOTE = "quote"
FULL = "full"


def _strip_thousands(value: Any) -> Any:
    if isinstance(value, str):
        return value.replace(",", "").replace("_", "").strip()
    return value


Text = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]

# Sent to CoverageX as a path segment, so dumped back to a plain "2023"
ModelYear = Annotated[
    int,
    Field(ge=1900, le=2100, description="The vehicle model year (e.g. 2023)."),
    PlainSerializer(lambda year: str(year), return_type=str),
]
UsState = Annotated[
    str,
    StringConstraints(strip_whitespace=True, to_upper=True, pattern=r"^[A-Za-z]{2}$"),
    Field(description="Two-letter US state where the vehicle is registered (e.g. 'CA')."),
]
Make = Annotated[Text, Field(description="The vehicle make (e.g. 'Honda', 'Toyota').")]
Odometer = Annotated[
    int,
    BeforeValidator(_strip_thousands),
    Field(ge=0, le=2_000_000, description="Current odometer reading in miles (approximate is fine)."),
]


class ToolArgs(BaseModel):
    """Base for tool argument models."""

    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    @model_validator(mode="before")
    @classmethod
    def _drop_blank(cls, data: Any) -> Any:
        # Models often send "" for a value they do not know yet
        if isinstance(data, dict):
            return {
                k: v for k, v in data.items()
                if v is not None and not (isinstance(v, str) and not v.strip())
            }
        return data


# ── lookup profile: account-scoped lookups ───────────────────────────


class LookupMakes(ToolArgs):
    """Get all available vehicle makes for a specific year. Use this when the customer provides a year."""

    model_config = ConfigDict(title="get_vehicle_makes")

    year: ModelYear


class LookupModels(ToolArgs):
    """Get all available models for a vehicle make and year. Use this after the customer provides both year and make."""

    model_config = ConfigDict(title="get_vehicle_models")

    year: ModelYear
    make: Make


# ── quote profile: session-scoped lookups and pricing ────────────────


class SessionMakes(ToolArgs):
    """Start a pricing session for a year and state and list the vehicle makes available. Call this once you know the vehicle year and registration state."""

    model_config = ConfigDict(title="get_vehicle_makes")

    year: ModelYear
    state: UsState


class SessionModels(ToolArgs):
    """List the models available for a make in the current pricing session. Year and state may be omitted when get_vehicle_makes was already called."""

    model_config = ConfigDict(title="get_vehicle_models")

    make: Make
    year: ModelYear | None = None
    state: UsState | None = None


class GetQuote(ToolArgs):
    """Price a protection plan for the customer's vehicle. Use this once year, make, model, vehicle class, VIN pattern, odometer and state are known."""

    model_config = ConfigDict(title="get_quote")

    state: UsState
    year: ModelYear
    make: Make
    model: Annotated[Text, Field(description="The vehicle model (e.g. 'Civic').")]
    vehicle_class: Annotated[Text, Field(description="Vehicle class code returned with the model list.")]
    vin_pattern: Annotated[
        Text, Field(description="VIN pattern returned with the model list (first 8-10 VIN characters).")
    ]
    odometer: Odometer
    trim: Annotated[Text | None, Field(description="Optional trim level (e.g. 'EX-L').")] = None


# ── full profile: contract creation ──────────────────────────────────


class CreateContract(ToolArgs):
    """Purchase the most recently quoted plan: submits the quote, charges the deposit and saves the contract. Only call this after get_quote and after the customer has confirmed every detail."""

    model_config = ConfigDict(title="create_contract")

    first_name: Annotated[Text, Field(description="Customer first name.")]
    last_name: Annotated[Text, Field(description="Customer last name.")]
    email: Annotated[Text, Field(description="Customer email address.")]
    phone: Annotated[Text, Field(description="Customer phone number.")]
    address: Annotated[Text, Field(description="Street address.")]
    city: Annotated[Text, Field(description="City.")]
    state: UsState
    zip_code: Annotated[Text, Field(description="ZIP code.")]
    vin: Annotated[Text, Field(description="Full 17-character vehicle identification number.")]
    card_number: Annotated[Text, Field(description="Payment card number.")]
    card_expiry: Annotated[Text, Field(description="Card expiry as MM/YY.")]
    card_cvv: Annotated[Text, Field(description="Card security code.")]
    cardholder_name: Annotated[
        Text | None, Field(description="Name on the card, if different from the customer."),
    ] = None


PROFILES: dict[str, list[type[ToolArgs]]] = {
    LOOKUP: [LookupMakes, LookupModels],
    QUOTE: [SessionMakes, SessionModels, GetQuote],
    FULL: [SessionMakes, SessionModels, GetQuote, CreateContract],
}


def get_catalog(profile: str) -> list[type[ToolArgs]]:
    """Return the tool argument models for *profile*."""
    try:
        return PROFILES[profile]
    except KeyError:
        raise ValueError(
            f"Unknown agent profile {profile!r}; expected one of {sorted(PROFILES)}"
        ) from None


def tool_name(tool: type[ToolArgs]) -> str:
    return tool.model_config["title"]


def tool_names(catalog: list[type[ToolArgs]]) -> list[str]:
    return [tool_name(tool) for tool in catalog]
