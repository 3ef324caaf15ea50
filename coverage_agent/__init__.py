"""CoverageX Quote Agent — a Chatwoot bot that quotes vehicle protection plans.

Architecture Overview
=====================

A Chatwoot webhook delivers each customer message.  The server acknowledges
it immediately and answers in the background:

1. **Eligibility filter** — only new incoming messages (or outgoing messages
   from the designated bot sender) in conversations without a human
   assignee are answered.
2. **Conversation agent** — a LangGraph loop (``chatbot`` ↔ ``tools``) sends
   the instruction text, the stored history and the new message to Claude.
   Tool calls are executed by the dispatcher and fed back until the model
   replies in plain text, with a hard cap on tool rounds.
3. **Tool dispatcher** — maps tool calls onto the CoverageX API: vehicle
   makes/models lookups, priced quotes and the three-step contract flow
   (quote → deposit → contract), keeping the pricing session ref per
   conversation.
4. **Delivery** — the reply is posted back to the Chatwoot conversation.

Key Design Decisions
--------------------
- **Memory**: an in-process ``ConversationStore`` keeps the last 20 turns and
  the pricing session of every conversation; work on one conversation is
  serialized by a per-conversation lock.
- **Errors as data**: tool failures become ``{"error": {kind, detail}}``
  payloads the model can explain to the customer; completion-backend
  failures abort the request.
- **Resilience**: HTTP clients retry connection failures, and timeouts/5xx
  on idempotent calls, with exponential backoff.  Payment POSTs are never
  retried after they may have reached the server.
- **Profiles**: ``lookup``, ``quote`` and ``full`` select which tools the
  model sees; one loop serves all of them.

Package Structure
-----------------
- ``coverage_agent/agent.py`` — LangGraph loop and ``ConversationAgent``
- ``coverage_agent/config.py`` — configuration from environment / SSM
- ``coverage_agent/prompts.py`` — instruction text
- ``coverage_agent/server.py`` — FastAPI application
- ``coverage_agent/main.py`` — CLI chat interface
- ``coverage_agent/services/`` — HTTP clients, conversation store, metrics
- ``coverage_agent/tools/`` — tool catalog, results and dispatcher
- ``coverage_agent/api/`` — routes, webhook handling and schemas
"""
