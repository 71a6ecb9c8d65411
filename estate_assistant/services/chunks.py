"""
Chunk source — explicit pull interface over a provider's lazy output.

A ChunkStream wraps any async iterator of ResponseChunk and exposes:

  poll()          → next chunk, or None once exhausted or closed
  close()         → release the underlying iterator (idempotent)
  prime()         → pull the first chunk early so start-up failures surface
                    before the HTTP response is committed
  followed_by(c)  → a new stream that yields c after this one is exhausted
  single(text)    → a one-chunk terminal stream (used by the fallback responder)

Chunks are handed out one at a time in arrival order; nothing is buffered
except the single chunk held by prime().
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import AsyncIterator, Optional

from estate_assistant.errors import ProviderError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResponseChunk:
    """
    One unit of model output. Every field may be absent:
    a chunk can carry only a block signal, only a finish marker, or nothing.
    """

    text_delta: Optional[str] = None
    blocked: Optional[str] = None
    terminal: bool = False


_UNSET = object()


class ChunkStream:
    """Pull-based sequence of ResponseChunk with explicit cancellation."""

    def __init__(self, chunks: AsyncIterator[ResponseChunk], label: str = "agent") -> None:
        self._chunks = chunks
        self._label = label
        self._primed: object = _UNSET
        self._exhausted = False
        self._closed = False

    @property
    def label(self) -> str:
        return self._label

    @property
    def closed(self) -> bool:
        return self._closed

    async def poll(self) -> Optional[ResponseChunk]:
        """Return the next chunk, or None when the source has nothing more."""
        if self._primed is not _UNSET:
            chunk, self._primed = self._primed, _UNSET
            return chunk  # type: ignore[return-value]
        if self._closed or self._exhausted:
            return None
        try:
            return await self._chunks.__anext__()
        except StopAsyncIteration:
            self._exhausted = True
            return None

    async def prime(self) -> None:
        """
        Pull the first chunk now and hold it for the next poll().

        Any failure here means the provider never produced output, so it is
        raised as ProviderError while a JSON error can still be returned.
        """
        if self._primed is not _UNSET:
            return
        try:
            self._primed = await self.poll()
        except ProviderError:
            await self.close()
            raise
        except Exception as exc:
            await self.close()
            raise ProviderError(
                f"The {self._label} failed to start generating a response.",
                details=str(exc),
            ) from exc

    async def close(self) -> None:
        """Release the underlying iterator. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        self._primed = _UNSET
        aclose = getattr(self._chunks, "aclose", None)
        if aclose is not None:
            try:
                await aclose()
            except Exception as exc:
                # Best effort: the provider may not support cancellation.
                logger.debug("Closing %s source raised: %s", self._label, exc)

    def followed_by(self, chunk: ResponseChunk) -> "ChunkStream":
        """Return a stream that yields this stream's chunks, then `chunk`."""
        return ChunkStream(_append(self, chunk), label=self._label)

    @classmethod
    def single(cls, text: str, label: str = "fallback") -> "ChunkStream":
        """A stream of exactly one terminal chunk carrying `text`."""
        return cls(_one(ResponseChunk(text_delta=text, terminal=True)), label=label)


async def _one(chunk: ResponseChunk) -> AsyncIterator[ResponseChunk]:
    yield chunk


async def _append(source: ChunkStream, tail: ResponseChunk) -> AsyncIterator[ResponseChunk]:
    try:
        while True:
            chunk = await source.poll()
            if chunk is None:
                break
            if chunk.terminal:
                # The tail is now the last chunk; drop the early finish marker.
                yield ResponseChunk(text_delta=chunk.text_delta, blocked=chunk.blocked)
                break
            yield chunk
        yield tail
    finally:
        await source.close()
