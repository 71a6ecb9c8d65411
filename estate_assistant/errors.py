"""
Chat error hierarchy.

Every error carries the HTTP status it maps to when it is raised before the
first response byte. After streaming has started no error can be reported
as JSON; the transport connection is aborted instead.
"""

from __future__ import annotations


class ChatError(Exception):
    """Base error rendered as {"error": {"message", "details"}}."""

    status_code: int = 500

    def __init__(self, message: str, details: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details if details is not None else message

    def to_payload(self) -> dict:
        return {"error": {"message": self.message, "details": self.details}}


class UnsupportedMediaType(ChatError):
    """Request content-type is neither multipart/form-data nor JSON."""

    status_code = 415


class EmptyPayload(ChatError):
    """Neither text nor image was supplied."""

    status_code = 400


class MalformedPayload(ChatError):
    """Body could not be parsed (bad JSON, bad base64, bad form field)."""

    status_code = 400


class InvalidHistory(ChatError):
    """Conversation history has an unknown role or an oversized turn."""

    status_code = 400


class PayloadTooLarge(ChatError):
    """Attached image exceeds MAX_IMAGE_BYTES."""

    status_code = 413


class ProviderError(ChatError):
    """The generation provider failed before producing its first chunk."""

    status_code = 500


class StreamReadError(ChatError):
    """Pulling a later chunk from the provider failed."""

    status_code = 500
