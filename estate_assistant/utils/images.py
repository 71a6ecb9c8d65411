"""Helpers for inbound image payloads: base64 decoding and MIME sniffing."""

from __future__ import annotations

import base64
import binascii
from typing import Optional

DEFAULT_IMAGE_MIME = "image/jpeg"


def sniff_image_mime(data: bytes) -> Optional[str]:
    """Guess image mime type from magic bytes for common formats."""
    if not data or len(data) < 12:
        return None
    if data.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if data[:3] == b"\xff\xd8\xff":
        return "image/jpeg"
    if data.startswith(b"GIF87a") or data.startswith(b"GIF89a"):
        return "image/gif"
    # RIFF....WEBP
    if data.startswith(b"RIFF") and data[8:12] == b"WEBP":
        return "image/webp"
    if b"ftypheic" in data[:64] or b"ftypheif" in data[:64]:
        return "image/heic"
    return None


def split_data_url(value: str) -> tuple[str, Optional[str]]:
    """
    Accept either bare base64 or a `data:<mime>;base64,<payload>` URL.
    Returns (payload, declared_mime).
    """
    if not value.startswith("data:"):
        return value, None
    header, _, payload = value.partition(",")
    mime = header[5:].split(";", 1)[0] or None
    return payload, mime


def decode_base64(value: str) -> Optional[bytes]:
    """Strictly decode base64, tolerating whitespace and missing padding."""
    cleaned = "".join(value.split())
    padding = len(cleaned) % 4
    if padding:
        cleaned += "=" * (4 - padding)
    try:
        return base64.b64decode(cleaned, validate=True)
    except (binascii.Error, ValueError):
        return None


def resolve_image_mime(data: bytes, declared: Optional[str] = None) -> str:
    """Prefer a declared image/* type, then sniffed bytes, then JPEG."""
    if declared and declared.lower().startswith("image/"):
        return declared.lower()
    return sniff_image_mime(data) or DEFAULT_IMAGE_MIME
