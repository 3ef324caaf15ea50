"""Thread-safe in-memory conversation store.

Design decisions
────────────────
• One :class:`ConversationState` per conversation id holds the bounded turn
  log *and* the :class:`SessionContext` produced by tool calls, so all
  per-conversation data sits behind one key.
• Turn logs are ``deque(maxlen=20)``: appending past the cap drops the
  oldest turn first.
• ``threading.Lock`` makes each individual operation atomic.  A second,
  per-conversation lock (see :meth:`ConversationStore.locked`) serializes a
  whole request's read-modify-write, so two webhook deliveries for the same
  conversation cannot interleave while different conversations still run in
  parallel.
• Purely ephemeral: state lives for the process lifetime and is never
  evicted.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any, Literal

from langchain_core.messages import AIMessage, AnyMessage, HumanMessage, ToolMessage
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

MAX_TURNS = 20

ConversationId = int | str | None


def _now() -> datetime:
    return datetime.now(UTC)


# ── Turns ────────────────────────────────────────────────────────────


class ToolCall(BaseModel):
    """One tool invocation requested by the model."""

    id: str
    name: str
    args: dict[str, Any] = Field(default_factory=dict)


class Turn(BaseModel):
    """One replayable unit of a conversation."""

    role: Literal["user", "assistant", "tool"]
    content: str = ""
    timestamp: datetime = Field(default_factory=_now)
    tool_calls: list[ToolCall] = Field(default_factory=list)
    tool_call_id: str | None = None
    name: str | None = None

    @classmethod
    def user(cls, content: str) -> Turn:
        return cls(role="user", content=content)

    @classmethod
    def assistant(cls, content: str, tool_calls: list[ToolCall] | None = None) -> Turn:
        return cls(role="assistant", content=content, tool_calls=tool_calls or [])

    @classmethod
    def tool_result(cls, tool_call_id: str, name: str, content: str) -> Turn:
        return cls(role="tool", content=content, tool_call_id=tool_call_id, name=name)

    def to_message(self) -> AnyMessage:
        """Convert to the LangChain message replayed to the model."""
        if self.role == "user":
            return HumanMessage(content=self.content)
        if self.role == "tool":
            return ToolMessage(
                content=self.content, tool_call_id=self.tool_call_id, name=self.name,
            )
        return AIMessage(
            content=self.content,
            tool_calls=[
                {"id": call.id, "name": call.name, "args": call.args}
                for call in self.tool_calls
            ],
        )


# ── Session data owned by the tool dispatcher ────────────────────────


class QuoteSnapshot(BaseModel):
    """The vehicle and priced plan a contract will be written against."""

    state: str
    year: str
    make: str
    model: str
    trim: str | None = None
    vehicle_class: str
    vin_pattern: str
    odometer: int
    plan: Any = None


class SessionContext(BaseModel):
    """CoverageX pricing session for one conversation."""

    ref: str
    year: str | None = None
    state: str | None = None
    quote: QuoteSnapshot | None = None


class ConversationState:
    """Everything the agent remembers about one conversation."""

    def __init__(self, max_turns: int = MAX_TURNS) -> None:
        self.turns: deque[Turn] = deque(maxlen=max_turns)
        self.session: SessionContext | None = None


# ── Store ────────────────────────────────────────────────────────────


class ConversationStore:
    """Conversation-keyed store of :class:`ConversationState` objects."""

    def __init__(self, max_turns: int = MAX_TURNS) -> None:
        self._max_turns = max_turns
        self._states: dict[str, ConversationState] = {}
        self._lock = threading.Lock()
        self._key_locks: dict[str, threading.Lock] = {}

    @staticmethod
    def _key(conversation_id: ConversationId) -> str | None:
        if conversation_id is None:
            return None
        key = str(conversation_id).strip()
        return key or None

    def _state(self, key: str) -> ConversationState:
        """Return (creating lazily) the state for *key*.  Caller holds ``_lock``."""
        state = self._states.get(key)
        if state is None:
            state = self._states[key] = ConversationState(self._max_turns)
        return state

    # ── Turns ────────────────────────────────────────────────────────

    def append(self, conversation_id: ConversationId, turn: Turn) -> None:
        """Append *turn*, evicting the oldest turns beyond the cap."""
        key = self._key(conversation_id)
        if key is None:
            return
        with self._lock:
            self._state(key).turns.append(turn)

    def read(self, conversation_id: ConversationId) -> list[Turn]:
        """Return the conversation's turns, oldest first."""
        key = self._key(conversation_id)
        if key is None:
            return []
        with self._lock:
            state = self._states.get(key)
            return list(state.turns) if state else []

    # ── Session context ──────────────────────────────────────────────

    def get_session(self, conversation_id: ConversationId) -> SessionContext | None:
        key = self._key(conversation_id)
        if key is None:
            return None
        with self._lock:
            state = self._states.get(key)
            return state.session if state else None

    def set_session(
        self, conversation_id: ConversationId, session: SessionContext | None,
    ) -> None:
        """Replace the conversation's session context (never merged)."""
        key = self._key(conversation_id)
        if key is None:
            return
        with self._lock:
            self._state(key).session = session

    # ── Per-conversation serialization ───────────────────────────────

    @contextmanager
    def locked(self, conversation_id: ConversationId) -> Iterator[None]:
        """Hold the conversation's lock for the duration of the block."""
        key = self._key(conversation_id)
        if key is None:
            yield
            return
        with self._lock:
            key_lock = self._key_locks.setdefault(key, threading.Lock())
        with key_lock:
            yield

    # ── Introspection ────────────────────────────────────────────────

    @property
    def conversation_count(self) -> int:
        return len(self._states)

    def clear(self, conversation_id: ConversationId = None) -> None:
        """Forget one conversation, or every conversation when no id is given."""
        with self._lock:
            if conversation_id is None:
                self._states.clear()
                return
            key = self._key(conversation_id)
            if key is not None:
                self._states.pop(key, None)
