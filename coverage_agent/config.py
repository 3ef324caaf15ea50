"""Centralized configuration for the CoverageX quote agent.

Secret resolution order (per variable):
  1. Environment variable / ``.env`` file  (local dev)
  2. AWS SSM Parameter Store SecureString  (when ``AWS_EXECUTION_ENV`` is set)

The SSM paths follow the convention ``/coverage-agent/<VARIABLE_NAME>``.
Secrets have no compiled-in fallbacks: a missing one stops the process at
import time with a :class:`ConfigurationError`.
"""

from __future__ import annotations

import logging
import os

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

_ON_AWS = bool(os.getenv("AWS_EXECUTION_ENV"))
_SSM_PREFIX = "/coverage-agent"


class ConfigurationError(OSError):
    """Raised when a required configuration value is absent."""


# ── Secret resolution ────────────────────────────────────────────────

def _get_ssm_parameter(name: str) -> str | None:
    """Fetch a SecureString from SSM Parameter Store, or ``None``."""
    try:
        import boto3  # noqa: PLC0415 — lazy import keeps boto3 out of local runs

        ssm = boto3.client("ssm")
        resp = ssm.get_parameter(Name=f"{_SSM_PREFIX}/{name}", WithDecryption=True)
        return resp["Parameter"]["Value"]
    except Exception:
        logger.debug("SSM lookup for %s failed", name)
        return None


def _require_env(name: str) -> str:
    """Return a config value from env-var or SSM, or raise a clear error."""
    value = os.getenv(name)
    if value and not value.startswith("your_"):
        return value

    if _ON_AWS:
        ssm_value = _get_ssm_parameter(name)
        if ssm_value:
            return ssm_value

    raise ConfigurationError(
        f"Missing required configuration: {name}. "
        f"Set it in .env (local) or SSM Parameter Store {_SSM_PREFIX}/{name} (AWS)."
    )


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


# ── LLM ─────────────────────────────────────────────────────────────
ANTHROPIC_API_KEY: str = _require_env("ANTHROPIC_API_KEY")
MODEL_NAME: str = os.getenv("MODEL_NAME", "claude-sonnet-4-5")
TEMPERATURE: float = _env_float("TEMPERATURE", 0.7)
MAX_TOKENS: int = _env_int("MAX_TOKENS", 1000)

# Upper bound on model-requested tool rounds for a single inbound message
MAX_TOOL_ROUNDS: int = _env_int("MAX_TOOL_ROUNDS", 8)

# Deployment variant: "lookup", "quote" or "full"
AGENT_PROFILE: str = os.getenv("AGENT_PROFILE", "full")

# Optional override of the built-in instruction text (see prompts.py)
SYSTEM_PROMPT: str | None = os.getenv("SYSTEM_PROMPT") or None

# ── CoverageX ───────────────────────────────────────────────────────
COVERAGEX_API_REF: str = _require_env("COVERAGEX_API_REF")
COVERAGEX_API_TOKEN: str | None = os.getenv("COVERAGEX_API_TOKEN") or None
COVERAGEX_API_BASE: str = os.getenv("COVERAGEX_API_BASE", "https://coveragex.com/api")
COVERAGEX_DEAL_MANAGER_BASE: str = os.getenv(
    "COVERAGEX_DEAL_MANAGER_BASE", "https://coveragex.com/dealmanager/api",
)

# ── Chatwoot ────────────────────────────────────────────────────────
CHATWOOT_API_KEY: str = _require_env("CHATWOOT_API_KEY")
CHATWOOT_BASE_URL: str = os.getenv("CHATWOOT_BASE_URL", "https://app.chatwoot.com")
# Outgoing messages from this sender are answered too (echo / testing flows)
CHATWOOT_BOT_SENDER_ID: int = _env_int("CHATWOOT_BOT_SENDER_ID", 1)
AUTO_OPEN_CONVERSATION: bool = _env_bool("AUTO_OPEN_CONVERSATION", False)
TYPING_INDICATOR: bool = _env_bool("TYPING_INDICATOR", True)

# ── Outbound HTTP ───────────────────────────────────────────────────
HTTP_TIMEOUT_SECONDS: float = _env_float("HTTP_TIMEOUT_SECONDS", 15.0)

# ── Interaction log ─────────────────────────────────────────────────
ENABLE_INTERACTION_LOG: bool = _env_bool("ENABLE_INTERACTION_LOG", False)
INTERACTION_LOG_DIR: str = os.getenv("INTERACTION_LOG_DIR", "logs")

# ── Server ──────────────────────────────────────────────────────────
SERVER_HOST: str = os.getenv("SERVER_HOST", "0.0.0.0")
SERVER_PORT: int = _env_int("SERVER_PORT", 3004)
CORS_ORIGINS: list[str] = os.getenv("CORS_ORIGINS", "*").split(",")
