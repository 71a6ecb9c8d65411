"""Tenancy-FAQ agent — text-only tenancy-law questions."""

from __future__ import annotations

import logging
from typing import Sequence

from estate_assistant.config import Settings, settings as default_settings
from estate_assistant.schemas.chat import CurrentTurn, GenerationOptions, PromptEnvelope, Turn
from estate_assistant.services.chunks import ChunkStream, ResponseChunk
from estate_assistant.services.gemini import GenerationClient
from estate_assistant.utils.prompts import LEGAL_DISCLAIMER, TENANCY_FAQ_PREAMBLE

logger = logging.getLogger(__name__)


class TenancyFAQAgent:
    """
    Answers tenancy questions. Every answer ends with a fixed disclaimer
    chunk appended after the model's own output.
    """

    label = "tenancy-FAQ agent"

    def __init__(self, client: GenerationClient, config: Settings = default_settings) -> None:
        self._client = client
        self._options = GenerationOptions(
            temperature=config.faq_temperature,
            max_output_tokens=config.faq_max_output_tokens,
        )

    def build_envelope(self, text: str, history: Sequence[Turn]) -> PromptEnvelope:
        return PromptEnvelope(
            system_preamble=TENANCY_FAQ_PREAMBLE,
            history=tuple(history),
            current_turn=CurrentTurn(text=text),
            options=self._options,
        )

    async def stream(self, text: str, history: Sequence[Turn]) -> ChunkStream:
        envelope = self.build_envelope(text, history)
        logger.info("Tenancy FAQ: history=%d", len(envelope.history))
        source = await self._client.generate_stream(envelope, label=self.label)
        return source.followed_by(ResponseChunk(text_delta=LEGAL_DISCLAIMER, terminal=True))
