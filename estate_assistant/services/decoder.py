"""
Request decoder — turns an inbound POST /api/chat body into a NormalizedRequest.

Accepted bodies:
  multipart/form-data  text?, image? (file), history? (JSON array string)
  application/json     {text?, image? (base64 or data: URL), image_mime?, history?}

The body is consumed exactly once. Nothing is sent to the model here.
"""

from __future__ import annotations

import base64
import json
import logging
from typing import Any, Optional

from fastapi import Request
from pydantic import TypeAdapter, ValidationError
from starlette.datastructures import UploadFile

from estate_assistant.config import Settings, settings as default_settings
from estate_assistant.errors import (
    EmptyPayload,
    InvalidHistory,
    MalformedPayload,
    PayloadTooLarge,
    UnsupportedMediaType,
)
from estate_assistant.schemas.chat import NormalizedRequest, Turn
from estate_assistant.utils.images import decode_base64, resolve_image_mime, split_data_url

logger = logging.getLogger(__name__)

_TURNS = TypeAdapter(list[Turn])


def _media_type(content_type: str) -> str:
    return content_type.split(";", 1)[0].strip().lower()


def _clean_text(value: Any) -> Optional[str]:
    """Whitespace-only text counts as absent."""
    if not isinstance(value, str):
        return None
    return value if value.strip() else None


def parse_history(raw: Any, config: Settings) -> tuple[Turn, ...]:
    """
    Validate caller-supplied history and bound it before it reaches a prompt.

    Unknown roles are rejected. Turns with no text (image-only sends) carry
    nothing the model can use and are dropped, only the most recent
    MAX_HISTORY_TURNS turns are kept, and each kept turn is cut to
    MAX_TURN_CHARS so a long earlier reply never blocks the next send.
    """
    if raw is None or raw == "":
        return ()
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise MalformedPayload("History is not valid JSON.", details=str(exc)) from exc
    if not isinstance(raw, list):
        raise InvalidHistory("History must be a JSON array of {role, text} objects.")

    try:
        turns = _TURNS.validate_python(raw)
    except ValidationError as exc:
        raise InvalidHistory("History contains an invalid turn.", details=str(exc)) from exc

    turns = [t for t in turns if t.text.strip()]
    if len(turns) > config.max_history_turns:
        logger.debug(
            "Dropping %d oldest history turns (limit %d)",
            len(turns) - config.max_history_turns,
            config.max_history_turns,
        )
        turns = turns[-config.max_history_turns:]

    bounded = []
    for turn in turns:
        if len(turn.text) > config.max_turn_chars:
            logger.debug(
                "Trimming %s history turn from %d to %d characters",
                turn.role,
                len(turn.text),
                config.max_turn_chars,
            )
            turn = turn.model_copy(update={"text": turn.text[: config.max_turn_chars]})
        bounded.append(turn)
    return tuple(bounded)


def _check_image_size(size: int, config: Settings) -> None:
    if size > config.max_image_bytes:
        raise PayloadTooLarge(
            "Image is too large.",
            details=f"{size} bytes (limit {config.max_image_bytes})",
        )


async def _read_multipart(request: Request, config: Settings) -> dict[str, Any]:
    try:
        form = await request.form()
    except Exception as exc:
        raise MalformedPayload("Could not parse multipart form data.", details=str(exc)) from exc

    image_b64: Optional[str] = None
    image_mime: Optional[str] = None
    image = form.get("image")
    if isinstance(image, UploadFile):
        data = await image.read()
        if data:
            _check_image_size(len(data), config)
            image_b64 = base64.b64encode(data).decode("ascii")
            image_mime = resolve_image_mime(data, image.content_type)
    elif isinstance(image, str) and image.strip():
        image_b64, image_mime = _decode_inline_image(image, None, config)

    return {
        "text": _clean_text(form.get("text")),
        "image": image_b64,
        "image_mime": image_mime,
        "history": parse_history(form.get("history"), config),
    }


def _decode_inline_image(value: str, declared_mime: Optional[str], config: Settings) -> tuple[str, str]:
    payload, url_mime = split_data_url(value.strip())
    data = decode_base64(payload)
    if data is None:
        raise MalformedPayload("Image is not valid base64.")
    _check_image_size(len(data), config)
    return (
        base64.b64encode(data).decode("ascii"),
        resolve_image_mime(data, declared_mime or url_mime),
    )


async def _read_json(request: Request, config: Settings) -> dict[str, Any]:
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise MalformedPayload("Request body is not valid JSON.", details=str(exc)) from exc
    if not isinstance(body, dict):
        raise MalformedPayload("Request body must be a JSON object.")

    image_b64: Optional[str] = None
    image_mime: Optional[str] = None
    image = body.get("image")
    if isinstance(image, str) and image.strip():
        declared = body.get("image_mime") if isinstance(body.get("image_mime"), str) else None
        image_b64, image_mime = _decode_inline_image(image, declared, config)

    return {
        "text": _clean_text(body.get("text")),
        "image": image_b64,
        "image_mime": image_mime,
        "history": parse_history(body.get("history"), config),
    }


async def decode_request(request: Request, config: Settings = default_settings) -> NormalizedRequest:
    """
    Parse the request body into a NormalizedRequest.

    Raises UnsupportedMediaType (415), EmptyPayload (400), MalformedPayload
    (400), InvalidHistory (400) or PayloadTooLarge (413).
    """
    content_type = request.headers.get("content-type", "")
    media_type = _media_type(content_type)

    if media_type == "multipart/form-data":
        fields = await _read_multipart(request, config)
    elif media_type == "application/json":
        fields = await _read_json(request, config)
    else:
        logger.warning("Unsupported content type: %s", content_type or "(none)")
        raise UnsupportedMediaType(f"Unsupported content type: {content_type or '(none)'}")

    if not fields["text"] and not fields["image"]:
        logger.warning("API call with no content")
        raise EmptyPayload("No content provided (text or image required)")

    return NormalizedRequest(**fields)
