"""
Chat endpoint — POST /api/chat.

Per request: Parsing → Routing → Streaming → Closed | Errored.

Anything that fails while parsing, routing or starting the provider stream
is raised as a ChatError and rendered as a JSON error by the handler in
main.py. Once the StreamingResponse has started, a failure can only abort
the connection; the client treats an abnormal close as an error.
"""

from __future__ import annotations

import logging
from typing import Optional, Union

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask

from estate_assistant.config import settings
from estate_assistant.errors import ProviderError
from estate_assistant.schemas.chat import ChatReply, ErrorResponse
from estate_assistant.services.decoder import decode_request
from estate_assistant.services.router import Agents, route
from estate_assistant.services.stream_bridge import bridge, collect_text

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["chat"])

_ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "No content, malformed body or invalid history"},
    413: {"model": ErrorResponse, "description": "Image too large"},
    415: {"model": ErrorResponse, "description": "Unsupported content type"},
    500: {"model": ErrorResponse, "description": "Provider or unexpected failure before streaming"},
}


def get_agents(request: Request) -> Optional[Agents]:
    """FastAPI dependency: the agents built at startup, or None if unconfigured."""
    return getattr(request.app.state, "agents", None)


@router.post("/chat", response_model=None, responses=_ERROR_RESPONSES)
async def chat(
    request: Request,
    stream: bool = Query(default=True, description="Stream plain text; false returns {reply}"),
    agents: Optional[Agents] = Depends(get_agents),
) -> Union[StreamingResponse, ChatReply]:
    """
    Route a chat message to the issue-detection or tenancy-FAQ agent.

    Streams `text/plain; charset=utf-8` with no end-of-message sentinel:
    the reply is complete when the stream closes normally.
    """
    normalized = await decode_request(request)

    if agents is None:
        raise ProviderError(
            "The model provider is not configured.",
            details="GOOGLE_API_KEY is missing or the client failed to initialise",
        )

    source = await route(normalized, agents, settings.router_policy)
    # Surface start-up failures while a JSON error is still possible.
    await source.prime()

    if not stream:
        return ChatReply(reply=await collect_text(source))

    return StreamingResponse(
        bridge(source),
        media_type="text/plain; charset=utf-8",
        headers={
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",
        },
        # Runs after the response even if the body was never iterated.
        background=BackgroundTask(source.close),
    )
