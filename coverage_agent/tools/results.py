"""Tagged result type returned by every tool dispatch.

A result is either ``{"ok": payload}`` or ``{"error": {"kind": ..., "detail":
..., **extra}}``.  It stays a Python value until :meth:`ToolResult.to_json`
turns it into the tool-message content the model reads.
"""

from __future__ import annotations

import json
from typing import Any

# Error kinds the model may see
INVALID_ARGUMENTS = "invalid_arguments"
UNKNOWN_TOOL = "unknown_tool"
MISSING_SESSION = "missing_session"
NO_ACTIVE_QUOTE = "no_active_quote"
UPSTREAM_ERROR = "upstream_error"
INTERNAL_ERROR = "internal_error"


class ToolResult:
    """Outcome of one tool call."""

    __slots__ = ("payload", "error")

    def __init__(self, payload: Any = None, error: dict[str, Any] | None = None) -> None:
        self.payload = payload
        self.error = error

    @classmethod
    def success(cls, payload: Any) -> ToolResult:
        return cls(payload=payload)

    @classmethod
    def failure(cls, kind: str, detail: str, **extra: Any) -> ToolResult:
        return cls(error={"kind": kind, "detail": detail, **extra})

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def kind(self) -> str | None:
        return self.error["kind"] if self.error else None

    def to_dict(self) -> dict[str, Any]:
        if self.error is not None:
            return {"error": self.error}
        return {"ok": self.payload}

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str, ensure_ascii=False)

    def __repr__(self) -> str:
        return f"ToolResult({'ok' if self.ok else self.kind})"
