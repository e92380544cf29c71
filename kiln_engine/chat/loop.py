"""Interactive chat loop wrapper."""

from __future__ import annotations

import asyncio
import time
from typing import Callable

from ..cli_progress import format_duration
from ..errors import InferenceError
from .commands import help_lines
from .intent_parser import parse_intent
from .session import ChatSession

PROMPT = "you> "


class ChatLoop:
    """Reads lines, dispatches slash commands, and sends everything else.

    A failed turn is reported and the loop keeps going with the history
    untouched, so the user can simply retry.
    """

    def __init__(
        self,
        session: ChatSession,
        read_line: Callable[[str], str] = input,
        write: Callable[[str], None] = print,
    ) -> None:
        self.session = session
        self.read_line = read_line
        self.write = write

    async def run(self) -> None:
        self.write("Interactive chat is ready.")
        self.write("Type your message and press Enter.")
        self.write("Commands: /help, /clear, /history, /exit, /quit")
        self.write("")
        while True:
            try:
                line = await asyncio.to_thread(self.read_line, PROMPT)
            except (EOFError, KeyboardInterrupt):
                self.write("\nExiting.")
                break
            intent = parse_intent(line)
            if intent.action == "noop":
                continue
            if intent.action == "exit":
                self.write("Exiting.")
                break
            if intent.action == "help":
                for entry in help_lines():
                    self.write(entry)
                continue
            if intent.action == "clear":
                self.session.clear()
                self.write("History cleared.")
                continue
            if intent.action == "history":
                self.write(f"History: {len(self.session.history)} turns.")
                continue
            if intent.action == "unknown":
                self.write(f"Unknown command /{intent.command_args.get('command')}. Type /help for commands.")
                continue
            await self._send(intent.message or "")

    async def _send(self, message: str) -> None:
        start = time.monotonic()
        try:
            reply = await self.session.send(message)
        except InferenceError as exc:
            self.write(f"Chat turn failed ({exc.kind}): {exc}")
            return
        self.write(f"assistant> {reply}")
        self.write(f"(latency: {format_duration(time.monotonic() - start)})")
        self.write("")
