"""
Client reassembler — reads POST /api/chat incrementally and rebuilds the reply.

ChatSession keeps the visible conversation as a list of ChatMessage:
  - the user message is created on send
  - the bot message is created when the first chunk arrives and is then
    updated in place, always looked up by its fixed id
  - an abnormally closed stream appends "⚠️ Error: ..." to the bot message

HistoryStore is the local-storage equivalent: one JSON file holding the
`chatMessages` key, rewritten after every exchange, never containing image
references.
"""

from __future__ import annotations

import json
import logging
import mimetypes
import os
import tempfile
import uuid
from pathlib import Path
from typing import Callable, Literal, Optional

import httpx
from pydantic import BaseModel, Field, TypeAdapter, ValidationError

logger = logging.getLogger(__name__)

STORAGE_KEY = "chatMessages"
_PERSISTED_FIELDS = {"role", "text", "id"}


class ChatMessage(BaseModel):
    """One rendered message. Bot messages are mutated as chunks arrive."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    role: Literal["user", "bot"]
    text: str = ""
    image_ref: Optional[str] = None      # local path of an attached image; never persisted


INITIAL_MESSAGE = ChatMessage(
    id="initial-bot-message",
    role="bot",
    text=(
        "Hello! How can I help you with your property today? "
        "Upload a photo of an issue or ask a tenancy question."
    ),
)

_MESSAGES = TypeAdapter(list[ChatMessage])


class ChatBusyError(RuntimeError):
    """A second message was sent while a reply is still streaming."""


class ChatRequestError(Exception):
    """The server rejected the request before streaming started."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message


class HistoryStore:
    """JSON-file key/value store standing in for browser local storage."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)

    def _read_all(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.error("Failed to read %s: %s", self.path, exc)
            return {}
        return data if isinstance(data, dict) else {}

    def _write_all(self, data: dict) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=".history-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh, ensure_ascii=False, indent=2)
            os.replace(tmp, self.path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    def load(self) -> list[ChatMessage]:
        """Return stored messages, or the greeting when nothing usable is stored."""
        data = self._read_all()
        stored = data.get(STORAGE_KEY)
        if stored is None:
            return [INITIAL_MESSAGE.model_copy()]
        try:
            return _MESSAGES.validate_python(stored)
        except ValidationError as exc:
            logger.error("Failed to parse messages from %s: %s", self.path, exc)
            self.clear()
            return [INITIAL_MESSAGE.model_copy()]

    def save(self, messages: list[ChatMessage]) -> None:
        """Overwrite the stored conversation; image references are stripped."""
        data = self._read_all()
        data[STORAGE_KEY] = [m.model_dump(include=_PERSISTED_FIELDS) for m in messages]
        self._write_all(data)

    def clear(self) -> None:
        data = self._read_all()
        if STORAGE_KEY in data:
            del data[STORAGE_KEY]
            self._write_all(data)


def _error_message(response: httpx.Response) -> str:
    """Pull error.message out of a pre-stream JSON error body."""
    fallback = f"HTTP error! status: {response.status_code}"
    try:
        payload = response.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return fallback
    error = payload.get("error") if isinstance(payload, dict) else None
    if isinstance(error, dict) and isinstance(error.get("message"), str):
        return error["message"]
    if isinstance(error, str):
        return error
    return fallback


class ChatSession:
    """
    One conversation against a running Estate Assistant server.

    `on_update` is the rendering hook; it receives the bot message after
    every appended chunk.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        store: Optional[HistoryStore] = None,
        on_update: Optional[Callable[[ChatMessage], None]] = None,
        endpoint: str = "/api/chat",
    ) -> None:
        self._client = client
        self._store = store
        self._on_update = on_update
        self._endpoint = endpoint
        self._in_flight = False
        self.messages: list[ChatMessage] = store.load() if store else [INITIAL_MESSAGE.model_copy()]

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def _find(self, message_id: str) -> Optional[ChatMessage]:
        for message in self.messages:
            if message.id == message_id:
                return message
        return None

    def _history_payload(self) -> list[dict[str, str]]:
        # The greeting is UI chrome, not part of the conversation.
        return [
            {"role": m.role, "text": m.text}
            for m in self.messages
            if m.id != INITIAL_MESSAGE.id
        ]

    def _request_kwargs(
        self,
        text: Optional[str],
        image: Optional[bytes],
        image_name: str,
        history: list[dict[str, str]],
    ) -> dict:
        if image:
            data = {"history": json.dumps(history)}
            if text:
                data["text"] = text
            mime = mimetypes.guess_type(image_name)[0] or "application/octet-stream"
            return {"data": data, "files": {"image": (image_name, image, mime)}}
        return {"json": {"text": text, "history": history}}

    async def send(
        self,
        text: Optional[str] = None,
        image: Optional[bytes] = None,
        image_ref: Optional[str] = None,
    ) -> Optional[ChatMessage]:
        """
        Send one message and stream the reply into a bot message.

        Returns the bot message, or None when there was nothing to send.
        Raises ChatBusyError if a reply is still streaming.
        """
        if self._in_flight:
            raise ChatBusyError("A reply is still streaming.")
        if not (text and text.strip()) and not image:
            return None

        self._in_flight = True
        history = self._history_payload()
        self.messages.append(ChatMessage(role="user", text=text or "", image_ref=image_ref))
        bot_id = str(uuid.uuid4())
        image_name = Path(image_ref).name if image_ref else "image"

        try:
            async with self._client.stream(
                "POST",
                self._endpoint,
                **self._request_kwargs(text, image, image_name, history),
            ) as response:
                if response.status_code != 200:
                    await response.aread()
                    raise ChatRequestError(response.status_code, _error_message(response))

                async for piece in response.aiter_text():
                    if not piece:
                        continue
                    self._append(bot_id, piece)
        except (httpx.HTTPError, ChatRequestError) as exc:
            logger.error("API call or stream processing failed: %s", exc)
            message = exc.message if isinstance(exc, ChatRequestError) else str(exc) or type(exc).__name__
            self._append(bot_id, f"⚠️ Error: {message}", separator="\n\n")
        finally:
            self._in_flight = False
            if self._store is not None:
                self._store.save(self.messages)

        return self._find(bot_id)

    def _append(self, bot_id: str, piece: str, separator: str = "") -> None:
        message = self._find(bot_id)
        if message is None:
            message = ChatMessage(id=bot_id, role="bot")
            self.messages.append(message)
        message.text = f"{message.text}{separator}{piece}" if message.text else piece
        if self._on_update is not None:
            self._on_update(message)

    def clear(self) -> None:
        """Forget the conversation, locally and in the store."""
        self.messages = [INITIAL_MESSAGE.model_copy()]
        if self._store is not None:
            self._store.clear()
