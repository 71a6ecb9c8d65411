"""
Gemini service — wraps Google Generative AI streaming calls.

The client is constructed once at process start (see main.lifespan) and
handed to the agents; nothing here is a module-level singleton.

Provider chunks are decomposed into ResponseChunk defensively: the SDK's
`chunk.text` accessor raises when a chunk has no text part (for example a
safety block), so text, block reason and finish reason are read from the
underlying candidate structure and any of them may be missing.
"""

from __future__ import annotations

import asyncio
import base64
import logging
from typing import Any, AsyncIterator, Optional, Protocol

import google.generativeai as genai

from estate_assistant.errors import ProviderError
from estate_assistant.schemas.chat import PromptEnvelope
from estate_assistant.services.chunks import ChunkStream, ResponseChunk

logger = logging.getLogger(__name__)

# Finish reasons that mean the candidate was cut off by a safety filter
_BLOCKING_FINISH_REASONS = {
    "SAFETY",
    "RECITATION",
    "BLOCKLIST",
    "PROHIBITED_CONTENT",
    "SPII",
}

# Provider error substrings that indicate quota exhaustion
_QUOTA_INDICATORS = ("RESOURCE_EXHAUSTED", "429", "quota", "rate limit")


class GenerationClient(Protocol):
    """The narrow provider capability the agents depend on."""

    async def generate_stream(self, envelope: PromptEnvelope, label: str = "agent") -> ChunkStream:
        ...


def _is_quota_error(exc: Exception) -> bool:
    """Return True if the exception looks like a quota / rate-limit error."""
    msg = str(exc).lower()
    return any(indicator.lower() in msg for indicator in _QUOTA_INDICATORS)


def _enum_name(value: Any) -> Optional[str]:
    """Name of a proto enum value, or None when unset / unspecified."""
    if value is None:
        return None
    try:
        if int(value) == 0:
            return None
    except (TypeError, ValueError):
        pass
    name = getattr(value, "name", None) or str(value)
    return name.rsplit(".", 1)[-1]


def to_response_chunk(raw: Any) -> ResponseChunk:
    """Decompose one SDK response chunk into a ResponseChunk."""
    text_parts: list[str] = []
    blocked: Optional[str] = None
    terminal = False

    feedback = getattr(raw, "prompt_feedback", None)
    if feedback is not None:
        blocked = _enum_name(getattr(feedback, "block_reason", None))

    candidates = getattr(raw, "candidates", None) or []
    if candidates:
        candidate = candidates[0]
        content = getattr(candidate, "content", None)
        for part in getattr(content, "parts", None) or []:
            text = getattr(part, "text", None)
            if text:
                text_parts.append(text)

        finish = _enum_name(getattr(candidate, "finish_reason", None))
        if finish:
            terminal = True
            if finish in _BLOCKING_FINISH_REASONS and blocked is None:
                blocked = finish

    return ResponseChunk(
        text_delta="".join(text_parts) or None,
        blocked=blocked,
        terminal=terminal,
    )


def build_contents(envelope: PromptEnvelope) -> list[dict[str, Any]]:
    """
    Convert a PromptEnvelope into the SDK's `contents` list.

    History is kept in order; adjacent turns with the same role are merged
    into one content entry because the API expects roles to alternate.
    """
    contents: list[dict[str, Any]] = []

    def _append(role: str, parts: list[Any]) -> None:
        if contents and contents[-1]["role"] == role:
            contents[-1]["parts"].extend(parts)
        else:
            contents.append({"role": role, "parts": parts})

    for turn in envelope.history:
        _append(turn.role, [turn.text])

    current = envelope.current_turn
    parts: list[Any] = []
    if current.text:
        parts.append(current.text)
    if current.image:
        parts.append(
            {
                "mime_type": current.image_mime or "image/jpeg",
                "data": base64.b64decode(current.image),
            }
        )
    _append("user", parts)
    return contents


async def _iterate(response: Any) -> AsyncIterator[ResponseChunk]:
    """Yield ResponseChunks from an async SDK streaming response as they arrive."""
    async for raw in response:
        yield to_response_chunk(raw)


class GeminiClient:
    """Streaming generation against a single Gemini model."""

    def __init__(self, api_key: str, model_name: str) -> None:
        if not api_key:
            raise ValueError("GOOGLE_API_KEY is not configured")
        # The SDK only takes credentials process-wide; the app builds one client.
        genai.configure(api_key=api_key)
        self.model_name = model_name

    def _model(self, envelope: PromptEnvelope) -> genai.GenerativeModel:
        options = envelope.options
        config = genai.GenerationConfig(
            temperature=options.temperature,
            max_output_tokens=options.max_output_tokens,
        )
        return genai.GenerativeModel(
            self.model_name,
            system_instruction=envelope.system_preamble,
            generation_config=config,
        )

    async def generate_stream(self, envelope: PromptEnvelope, label: str = "agent") -> ChunkStream:
        """
        Start one streamed generation and return its chunks lazily.

        Raises ProviderError if the request cannot be started. Errors raised
        while iterating later chunks propagate unchanged to the caller.
        """
        contents = build_contents(envelope)
        logger.debug(
            "Gemini %s prompt (%s): preamble=%r history=%d image=%s",
            label,
            self.model_name,
            envelope.system_preamble,
            len(envelope.history),
            bool(envelope.current_turn.image),
        )
        try:
            response = await self._model(envelope).generate_content_async(
                contents, stream=True
            )
        except Exception as exc:
            if _is_quota_error(exc):
                logger.error("Gemini model '%s' quota exhausted: %s", self.model_name, exc)
            else:
                logger.exception("Gemini model '%s' failed to start streaming", self.model_name)
            raise ProviderError(
                f"The {label} could not reach the model provider.",
                details=str(exc),
            ) from exc

        return ChunkStream(_iterate(response), label=label)

    async def check(self) -> bool:
        """Return True if the configured model can be described by the provider."""
        try:
            await asyncio.to_thread(genai.get_model, f"models/{self.model_name}")
            return True
        except Exception as exc:
            logger.warning("Gemini readiness check failed: %s", exc)
            return False
