"""
cli.py — terminal chat client for a running Estate Assistant server.

Usage:
    estate-assistant-chat "My landlord won't return my deposit"
    estate-assistant-chat --image leak.jpg "What is this stain?"
    estate-assistant-chat                      # interactive, one message per line
    estate-assistant-chat --clear              # forget the stored conversation
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

import httpx

from estate_assistant.client import ChatMessage, ChatSession, HistoryStore

logging.basicConfig(
    level=logging.WARNING,
    format="%(asctime)s [%(levelname)s] %(message)s",
)
logger = logging.getLogger(__name__)

DEFAULT_HISTORY_FILE = Path.home() / ".estate_assistant" / "history.json"


class _TerminalRenderer:
    """Prints only the part of the bot message that has not been printed yet."""

    def __init__(self) -> None:
        self._printed: dict[str, int] = {}

    def __call__(self, message: ChatMessage) -> None:
        done = self._printed.get(message.id, 0)
        sys.stdout.write(message.text[done:])
        sys.stdout.flush()
        self._printed[message.id] = len(message.text)


async def _send_one(session: ChatSession, text: Optional[str], image_path: Optional[Path]) -> None:
    image = image_path.read_bytes() if image_path else None
    reply = await session.send(
        text=text,
        image=image,
        image_ref=str(image_path) if image_path else None,
    )
    if reply is None:
        print("Nothing to send: give a message or --image.", file=sys.stderr)
    else:
        sys.stdout.write("\n")


async def run_chat(
    url: str,
    history_file: Path,
    text: Optional[str],
    image_path: Optional[Path],
    clear: bool,
) -> None:
    store = HistoryStore(history_file)
    async with httpx.AsyncClient(base_url=url, timeout=httpx.Timeout(10.0, read=None)) as client:
        session = ChatSession(client, store=store, on_update=_TerminalRenderer())
        if clear:
            session.clear()
            print("Conversation cleared.")
            return

        if text or image_path:
            await _send_one(session, text, image_path)
            return

        print("Type a message and press Enter (Ctrl-D to quit).")
        while True:
            try:
                line = await asyncio.to_thread(input, "> ")
            except EOFError:
                break
            if line.strip():
                await _send_one(session, line, None)


def main() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(description="Chat with the Estate Assistant.")
    parser.add_argument("text", nargs="*", help="Message text (omit for interactive mode)")
    parser.add_argument("--url", default="http://localhost:8000", help="Server base URL")
    parser.add_argument("--image", type=Path, help="Photo of a property issue to attach")
    parser.add_argument("--history-file", type=Path, default=DEFAULT_HISTORY_FILE,
                        help="Where the conversation is kept between runs")
    parser.add_argument("--clear", action="store_true", help="Clear the stored conversation")
    args = parser.parse_args()

    asyncio.run(
        run_chat(
            url=args.url,
            history_file=args.history_file,
            text=" ".join(args.text) or None,
            image_path=args.image,
            clear=args.clear,
        )
    )


if __name__ == "__main__":
    main()
