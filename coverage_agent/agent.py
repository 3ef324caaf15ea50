"""LangGraph tool-calling loop for the CoverageX quote agent.

Architecture:
  The loop is a LangGraph StateGraph with two nodes:

    1. **chatbot** — invokes the completion backend with the instruction
                     text, the replayed history and the new user turn.
    2. **tools**   — runs every tool call of the last assistant message
                     through the :class:`ToolDispatcher`.

  Routing:
    chatbot → (has tool calls?) → tools → chatbot (loop)
            → (no tool calls?)  → END

  Every assistant and tool message produced by the loop is also written to
  the :class:`ConversationStore`, so the next webhook for the conversation
  replays the complete exchange including tool-call linkage.

  Termination:
    A completion that still asks for tools after ``MAX_TOOL_ROUNDS`` rounds
    raises :class:`ToolLoopLimitError`; ``ConversationAgent.reply`` answers
    with :data:`FALLBACK_REPLY` instead.
"""

from __future__ import annotations

import logging
from typing import Annotated, Any

from langchain_anthropic import ChatAnthropic
from langchain_core.messages import AnyMessage, HumanMessage, SystemMessage, ToolMessage
from langgraph.errors import GraphRecursionError
from langgraph.graph import END, StateGraph
from langgraph.graph.message import add_messages
from typing_extensions import TypedDict

from coverage_agent.config import (
    AGENT_PROFILE,
    ANTHROPIC_API_KEY,
    HTTP_TIMEOUT_SECONDS,
    MAX_TOKENS,
    MAX_TOOL_ROUNDS,
    MODEL_NAME,
    TEMPERATURE,
)
from coverage_agent.prompts import get_system_prompt
from coverage_agent.services.conversation_store import (
    ConversationId,
    ConversationStore,
    ToolCall,
    Turn,
)
from coverage_agent.services.coveragex_client import get_coveragex_client
from coverage_agent.services.metrics import metrics
from coverage_agent.tools.catalog import ToolArgs, tool_names
from coverage_agent.tools.dispatcher import ToolDispatcher

logger = logging.getLogger(__name__)

FALLBACK_REPLY = (
    "I'm sorry, I wasn't able to finish that request. "
    "Could you please try again in a moment?"
)


class ToolLoopLimitError(RuntimeError):
    """The model kept requesting tools past the configured round limit."""


# ── State schema ─────────────────────────────────────────────────────


class AgentState(TypedDict):
    """The state that flows through the graph.

    ``messages`` is the working sequence sent to the model (history + new
    turn + everything produced in this request); ``rounds`` counts completed
    tool rounds.
    """

    messages: Annotated[list[AnyMessage], add_messages]
    conversation_id: ConversationId
    rounds: int


# ── Helpers ──────────────────────────────────────────────────────────


def message_text(message: Any) -> str:
    """Return the plain text of a model message (string or content blocks)."""
    content = getattr(message, "content", message)
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and block.get("type") == "text":
                parts.append(block.get("text", ""))
        return "".join(parts)
    return "" if content is None else str(content)


def replay_messages(turns: list[Turn]) -> list[AnyMessage]:
    """Convert stored turns to messages, starting at the first user turn.

    Eviction drops the oldest turns first, which can leave tool results whose
    assistant turn is gone; those cannot be replayed.
    """
    start = next((i for i, turn in enumerate(turns) if turn.role == "user"), len(turns))
    return [turn.to_message() for turn in turns[start:]]


def _build_llm(catalog: list[type[ToolArgs]]):
    """Build the completion backend bound to the tool argument models."""
    llm = ChatAnthropic(
        model=MODEL_NAME,
        api_key=ANTHROPIC_API_KEY,
        temperature=TEMPERATURE,
        max_tokens=MAX_TOKENS,
        timeout=HTTP_TIMEOUT_SECONDS,
    )
    return llm.bind_tools(catalog, tool_choice="auto")


# ── Nodes ────────────────────────────────────────────────────────────


def _make_chatbot_node(llm, store: ConversationStore, instructions: str, max_rounds: int):
    """Create the node that asks the completion backend for the next step."""

    def chatbot_node(state: AgentState) -> dict:
        conversation_id = state["conversation_id"]
        system = SystemMessage(content=instructions)
        with metrics.track("anthropic", "llm_invoke"):
            response = llm.invoke([system] + state["messages"])

        if response.tool_calls and state["rounds"] >= max_rounds:
            raise ToolLoopLimitError(
                f"Conversation {conversation_id}: still requesting tools after "
                f"{max_rounds} rounds"
            )

        store.append(
            conversation_id,
            Turn.assistant(
                message_text(response),
                [
                    ToolCall(id=call["id"], name=call["name"], args=call["args"])
                    for call in response.tool_calls
                ],
            ),
        )
        logger.debug(
            "Conversation %s: completion with %d tool call(s)",
            conversation_id, len(response.tool_calls),
        )
        return {"messages": [response]}

    return chatbot_node


def _make_tools_node(dispatcher: ToolDispatcher, store: ConversationStore):
    """Create the node that executes the requested tool calls in order."""

    def tools_node(state: AgentState) -> dict:
        conversation_id = state["conversation_id"]
        tool_calls = state["messages"][-1].tool_calls
        logger.info(
            "Conversation %s: processing %d tool call(s)", conversation_id, len(tool_calls),
        )

        outputs: list[ToolMessage] = []
        for call in tool_calls:
            result = dispatcher.dispatch(conversation_id, call["name"], call["args"])
            content = result.to_json()
            store.append(conversation_id, Turn.tool_result(call["id"], call["name"], content))
            outputs.append(
                ToolMessage(content=content, tool_call_id=call["id"], name=call["name"])
            )
        return {"messages": outputs, "rounds": state["rounds"] + 1}

    return tools_node


# ── Conditional edge ─────────────────────────────────────────────────


def should_use_tools(state: AgentState) -> str:
    """Route to the tools node while the last message requests tools."""
    last_message = state["messages"][-1]
    if getattr(last_message, "tool_calls", None):
        return "tools"
    return END


# ── Graph assembly ───────────────────────────────────────────────────


def build_graph(
    llm,
    dispatcher: ToolDispatcher,
    store: ConversationStore,
    instructions: str,
    max_rounds: int = MAX_TOOL_ROUNDS,
):
    """Compile the chatbot ↔ tools graph."""
    graph = StateGraph(AgentState)
    graph.add_node("chatbot", _make_chatbot_node(llm, store, instructions, max_rounds))
    graph.add_node("tools", _make_tools_node(dispatcher, store))
    graph.set_entry_point("chatbot")
    graph.add_conditional_edges("chatbot", should_use_tools, {"tools": "tools", END: END})
    graph.add_edge("tools", "chatbot")
    return graph.compile()


class ConversationAgent:
    """Answers one inbound message for one conversation."""

    def __init__(self, graph, store: ConversationStore, *, max_rounds: int = MAX_TOOL_ROUNDS):
        self._graph = graph
        self._store = store
        self._max_rounds = max_rounds

    @property
    def store(self) -> ConversationStore:
        return self._store

    def reply(
        self,
        conversation_id: ConversationId,
        text: str,
        *,
        request_id: str = "-",
    ) -> str:
        """Run the tool loop and return the assistant's final text.

        Holds the conversation's lock for the whole exchange.  Completion
        backend errors propagate to the caller.
        """
        with self._store.locked(conversation_id):
            history = self._store.read(conversation_id)
            logger.info(
                "[%s] Retrieved %d previous turn(s) for conversation %s",
                request_id, len(history), conversation_id,
            )
            self._store.append(conversation_id, Turn.user(text))

            try:
                result = self._graph.invoke(
                    {
                        "messages": replay_messages(history) + [HumanMessage(content=text)],
                        "conversation_id": conversation_id,
                        "rounds": 0,
                    },
                    config={"recursion_limit": 2 * self._max_rounds + 3},
                )
            except (ToolLoopLimitError, GraphRecursionError) as exc:
                logger.error("[%s] Tool loop aborted: %s", request_id, exc)
                self._store.append(conversation_id, Turn.assistant(FALLBACK_REPLY))
                return FALLBACK_REPLY

        return message_text(result["messages"][-1])


def create_conversation_agent(
    store: ConversationStore | None = None,
    dispatcher: ToolDispatcher | None = None,
    *,
    profile: str = AGENT_PROFILE,
    max_rounds: int = MAX_TOOL_ROUNDS,
) -> ConversationAgent:
    """Wire store, dispatcher, completion backend and graph together."""
    if store is None:
        store = ConversationStore()
    if dispatcher is None:
        dispatcher = ToolDispatcher(get_coveragex_client(), store, profile)

    catalog = dispatcher.catalog
    graph = build_graph(
        _build_llm(catalog),
        dispatcher,
        store,
        get_system_prompt(tool_names(catalog)),
        max_rounds,
    )
    logger.debug(
        "Conversation agent compiled — model: %s, profile: %s, tools: %s",
        MODEL_NAME, dispatcher.profile, ", ".join(tool_names(catalog)),
    )
    return ConversationAgent(graph, store, max_rounds=max_rounds)
