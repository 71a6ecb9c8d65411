"""
Issue-detection agent — multimodal prompt for photos of property problems.

The model is asked to answer in two markdown sections headed by
**Issues:** and **Suggestions:**. The client only renders them; nothing
parses the sections structurally.
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence

from estate_assistant.schemas.chat import CurrentTurn, PromptEnvelope, Turn
from estate_assistant.services.chunks import ChunkStream
from estate_assistant.services.gemini import GenerationClient
from estate_assistant.utils.prompts import ISSUE_DETECTION_PREAMBLE, build_issue_turn_text

logger = logging.getLogger(__name__)


class IssueDetectionAgent:
    """Analyses one image (plus an optional user note) for visible issues."""

    label = "issue-detection agent"

    def __init__(self, client: GenerationClient) -> None:
        self._client = client

    def build_envelope(
        self,
        image: str,
        image_mime: Optional[str],
        text: Optional[str],
        history: Sequence[Turn],
    ) -> PromptEnvelope:
        return PromptEnvelope(
            system_preamble=ISSUE_DETECTION_PREAMBLE,
            history=tuple(history),
            current_turn=CurrentTurn(
                text=build_issue_turn_text(text),
                image=image,
                image_mime=image_mime,
            ),
        )

    async def stream(
        self,
        image: str,
        image_mime: Optional[str],
        text: Optional[str],
        history: Sequence[Turn],
    ) -> ChunkStream:
        envelope = self.build_envelope(image, image_mime, text, history)
        logger.info(
            "Issue detection: image=%s note=%s history=%d",
            image_mime,
            bool(text),
            len(envelope.history),
        )
        return await self._client.generate_stream(envelope, label=self.label)
