"""
Estate Assistant — FastAPI application entry point.
Lifespan: build the Gemini client once → build the agents around it.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from estate_assistant import __version__
from estate_assistant.config import settings
from estate_assistant.errors import ChatError
from estate_assistant.routers import chat, health
from estate_assistant.services.gemini import GeminiClient
from estate_assistant.services.router import Agents

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Application lifespan handler.
    Credentials are read once here; the client and agents are immutable
    afterwards and shared by all requests.
    """
    logger.info("Starting Estate Assistant (env=%s, policy=%s)", settings.app_env, settings.router_policy)

    try:
        client = GeminiClient(settings.google_api_key, settings.gemini_model)
    except ValueError as exc:
        logger.error("Gemini client not initialised: %s", exc)
    else:
        app.state.client = client
        app.state.agents = Agents.from_client(client, settings)
        logger.info("Gemini client ready (model=%s).", settings.gemini_model)

    yield

    logger.info("Shutting down Estate Assistant.")


app = FastAPI(
    title="Estate Assistant",
    description="Streams property-issue analysis and tenancy answers from Gemini.",
    version=__version__,
    lifespan=lifespan,
)

# ── CORS ─────────────────────────────────────────────────────────────────────

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── Routers ──────────────────────────────────────────────────────────────────

app.include_router(health.router)
app.include_router(chat.router)


# ── Exception handlers ───────────────────────────────────────────────────────

@app.exception_handler(ChatError)
async def chat_error_handler(request: Request, exc: ChatError) -> JSONResponse:
    """Render a pre-stream ChatError as {"error": {"message", "details"}}."""
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.details)
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Return a machine-readable error for any unhandled exception."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url)
    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "message": "An unexpected error occurred processing your request.",
                "details": str(exc),
            }
        },
    )
