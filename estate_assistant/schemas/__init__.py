"""Pydantic schemas package."""

from estate_assistant.schemas.chat import (
    ChatReply,
    CurrentTurn,
    ErrorDetail,
    ErrorResponse,
    GenerationOptions,
    NormalizedRequest,
    PromptEnvelope,
    Turn,
)

__all__ = [
    "ChatReply", "CurrentTurn", "ErrorDetail", "ErrorResponse",
    "GenerationOptions", "NormalizedRequest", "PromptEnvelope", "Turn",
]
