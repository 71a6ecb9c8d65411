"""
Stream bridge — turns an agent's ChunkStream into UTF-8 bytes for HTTP.

The bridge is an async generator driven by its consumer: Starlette's
StreamingResponse pulls the next item only after the previous one has been
sent, so the source is never polled faster than the network drains it.

Per pull:
  chunk is None          → stop (normal end)
  chunk.blocked          → log only; never shown to the user, never ends the stream
  chunk.text_delta       → yield its UTF-8 bytes (whole characters, arrival order)
  chunk.terminal         → stop after emitting its delta
  poll() raises          → StreamReadError; the transport aborts the connection

The source is closed in every case, including a client disconnect.
"""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator

from estate_assistant.errors import StreamReadError
from estate_assistant.services.chunks import ChunkStream

logger = logging.getLogger(__name__)


async def bridge(source: ChunkStream) -> AsyncIterator[bytes]:
    """Yield the source's text deltas as bytes until it is exhausted."""
    emitted = 0
    try:
        while True:
            try:
                chunk = await source.poll()
            except StreamReadError:
                raise
            except Exception as exc:
                logger.error(
                    "Stream from %s failed after %d chunks: %s", source.label, emitted, exc
                )
                raise StreamReadError(
                    "The response stream was interrupted.", details=str(exc)
                ) from exc

            if chunk is None:
                break
            if chunk.blocked:
                logger.warning("%s output blocked by provider: %s", source.label, chunk.blocked)
            if chunk.text_delta:
                emitted += 1
                yield chunk.text_delta.encode("utf-8")
            if chunk.terminal:
                break

        logger.info("Stream from %s completed (%d chunks)", source.label, emitted)
    except (asyncio.CancelledError, GeneratorExit):
        logger.info("Client left %s stream after %d chunks", source.label, emitted)
        raise
    finally:
        await source.close()


async def collect_text(source: ChunkStream) -> str:
    """Drain the source completely; used by the non-streaming reply."""
    parts = [data async for data in bridge(source)]
    return b"".join(parts).decode("utf-8")
