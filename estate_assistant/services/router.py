"""
Intent router — picks exactly one agent for a NormalizedRequest.

Decision order (first match wins):
  1. image present → issue-detection agent (text is never inspected)
  2. text present  → tenancy-FAQ agent
                     ("keyword" policy: only when a tenancy keyword matches)
  3. otherwise     → fallback responder (single fixed clarification chunk)

select_agent() is pure. route() dispatches to the chosen agent, which is
the only place the model is called.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Literal, Optional

from estate_assistant.config import Settings, settings as default_settings
from estate_assistant.schemas.chat import NormalizedRequest
from estate_assistant.services.chunks import ChunkStream
from estate_assistant.services.gemini import GenerationClient
from estate_assistant.services.issue_detection import IssueDetectionAgent
from estate_assistant.services.tenancy_faq import TenancyFAQAgent
from estate_assistant.utils.prompts import FALLBACK_MESSAGE, TENANCY_PATTERN

logger = logging.getLogger(__name__)

RouterPolicy = Literal["unconditional", "keyword"]


class AgentKind(str, enum.Enum):
    ISSUE = "issue_detection"
    FAQ = "tenancy_faq"
    FALLBACK = "fallback"


def is_tenancy_question(text: str) -> bool:
    """Light-weight keyword check used by the "keyword" policy."""
    return TENANCY_PATTERN.search(text) is not None


def select_agent(
    text: Optional[str],
    image: Optional[str],
    policy: RouterPolicy = "unconditional",
) -> AgentKind:
    """Pure routing decision; history never influences it."""
    if image:
        return AgentKind.ISSUE
    if text:
        if policy == "unconditional" or is_tenancy_question(text):
            return AgentKind.FAQ
    return AgentKind.FALLBACK


def fallback_stream() -> ChunkStream:
    """Fallback responder: one terminal chunk with the clarification prompt."""
    return ChunkStream.single(FALLBACK_MESSAGE)


@dataclass(frozen=True)
class Agents:
    """The agents available to route(), sharing one generation client."""

    issue: IssueDetectionAgent
    faq: TenancyFAQAgent

    @classmethod
    def from_client(cls, client: GenerationClient, config: Settings = default_settings) -> "Agents":
        return cls(issue=IssueDetectionAgent(client), faq=TenancyFAQAgent(client, config))


async def route(
    request: NormalizedRequest,
    agents: Agents,
    policy: RouterPolicy = "unconditional",
) -> ChunkStream:
    """Dispatch the request to its agent and return the agent's chunk stream."""
    kind = select_agent(request.text, request.image, policy)
    logger.info("Routing to %s (policy=%s)", kind.value, policy)

    if kind is AgentKind.ISSUE:
        return await agents.issue.stream(
            request.image, request.image_mime, request.text, request.history
        )
    if kind is AgentKind.FAQ:
        return await agents.faq.stream(request.text, request.history)
    return fallback_stream()
