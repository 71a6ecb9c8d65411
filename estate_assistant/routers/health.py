"""Health check endpoints — used by load balancers and uptime monitoring."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from estate_assistant import __version__

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health")
async def health() -> dict:
    """Liveness probe — returns 200 if the process is running."""
    return {"status": "ok", "version": __version__}


@router.get("/ready")
async def ready(request: Request) -> JSONResponse:
    """
    Readiness probe — checks that the generation client exists and that the
    configured model is reachable.
    Returns 200 with {"provider": "ok"} when ready, 503 with "error" otherwise.
    """
    client = getattr(request.app.state, "client", None)
    if client is None:
        return JSONResponse(content={"provider": "error"}, status_code=503)

    try:
        ok = await client.check()
    except Exception as exc:
        logger.warning("Provider check failed: %s", exc)
        ok = False

    return JSONResponse(
        content={"provider": "ok" if ok else "error"},
        status_code=200 if ok else 503,
    )
