"""Pydantic schemas for the chat endpoint and the prompt pipeline."""

from __future__ import annotations

from typing import Literal, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator

# The client stores its own turns as "bot"; the provider calls them "model".
_ROLE_ALIASES = {"bot": "model", "assistant": "model"}


class Turn(BaseModel):
    """A single turn in the conversation history."""

    model_config = ConfigDict(frozen=True)

    role: Literal["user", "model"]
    text: str

    @field_validator("role", mode="before")
    @classmethod
    def _normalise_role(cls, value: object) -> object:
        if isinstance(value, str):
            value = value.strip().lower()
            return _ROLE_ALIASES.get(value, value)
        return value


class NormalizedRequest(BaseModel):
    """
    One decoded inbound chat call.
    Built once by the decoder and never mutated afterwards.
    """

    model_config = ConfigDict(frozen=True)

    text: Optional[str] = None
    image: Optional[str] = None          # base64
    image_mime: Optional[str] = None
    history: tuple[Turn, ...] = ()


class CurrentTurn(BaseModel):
    """The user turn being answered, with an optional inline image."""

    model_config = ConfigDict(frozen=True)

    text: str = ""
    image: Optional[str] = None          # base64
    image_mime: Optional[str] = None


class GenerationOptions(BaseModel):
    """Per-agent sampling options; None leaves the provider default."""

    model_config = ConfigDict(frozen=True)

    temperature: Optional[float] = None
    max_output_tokens: Optional[int] = None


class PromptEnvelope(BaseModel):
    """Everything the provider needs for one streamed generation."""

    model_config = ConfigDict(frozen=True)

    system_preamble: str
    history: tuple[Turn, ...] = ()
    current_turn: CurrentTurn
    options: GenerationOptions = Field(default_factory=GenerationOptions)


class ChatReply(BaseModel):
    """Body of the non-streaming POST /api/chat response."""

    reply: str


class ErrorDetail(BaseModel):
    message: str
    details: str


class ErrorResponse(BaseModel):
    """Body of every pre-stream error response."""

    error: ErrorDetail
