"""FastAPI server for the CoverageX quote agent.

Run with:
    uv run uvicorn coverage_agent.server:app --host 0.0.0.0 --port 3004
"""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from coverage_agent.agent import create_conversation_agent
from coverage_agent.api.routes import router
from coverage_agent.api.webhook import WebhookHandler
from coverage_agent.config import (
    CORS_ORIGINS,
    ENABLE_INTERACTION_LOG,
    INTERACTION_LOG_DIR,
    SERVER_HOST,
    SERVER_PORT,
)
from coverage_agent.services.chatwoot_client import ChatwootClient
from coverage_agent.services.coveragex_client import close_coveragex_client
from coverage_agent.services.interaction_log import InteractionLog

# ── Logging ──────────────────────────────────────────────────────────
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)


# ── Lifespan: initialise / tear-down shared resources ────────────────
@asynccontextmanager
async def lifespan(application: FastAPI):
    """Build the agent and webhook handler once and store them in app state."""
    logger.info("Compiling conversation agent…")
    chatwoot = ChatwootClient()
    application.state.webhook_handler = WebhookHandler(
        create_conversation_agent(),
        chatwoot,
        interaction_log=InteractionLog(INTERACTION_LOG_DIR, enabled=ENABLE_INTERACTION_LOG),
    )
    logger.info("Agent ready. Webhook endpoint: /api/chatwoot")
    yield
    application.state.webhook_handler = None
    chatwoot.close()
    close_coveragex_client()


# ── FastAPI application ──────────────────────────────────────────────
app = FastAPI(
    title="CoverageX Quote Agent",
    description=(
        "Chatwoot webhook bot that quotes and sells CoverageX vehicle "
        "protection plans through LLM tool calling."
    ),
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Request-ID middleware ────────────────────────────────────────────
@app.middleware("http")
async def add_request_id(request: Request, call_next) -> Response:
    """Attach a request ID for log correlation and echo it as ``X-Request-ID``.

    The same ID becomes the ``echo_id`` of the reply posted to Chatwoot.
    """
    request_id = request.headers.get("X-Request-ID", f"cw_{uuid.uuid4().hex[:12]}")
    request.state.request_id = request_id
    logger.info("[%s] %s %s", request_id, request.method, request.url.path)
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


app.include_router(router)


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "service": "CoverageX Quote Agent",
        "version": "1.0.0",
        "webhook": "/api/chatwoot",
        "health": "/health",
    }


if __name__ == "__main__":
    logger.info("Starting CoverageX agent server on %s:%d", SERVER_HOST, SERVER_PORT)
    uvicorn.run("coverage_agent.server:app", host=SERVER_HOST, port=SERVER_PORT)
