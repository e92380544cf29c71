"""Parse chat input lines into intents."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

from .commands import COMMAND_MAP

_SLASH_PATTERN = re.compile(r"^/(\w+)(?:\s+(.*))?$")


@dataclass
class Intent:
    action: str
    raw: str
    message: str | None = None
    command_args: dict[str, Any] = field(default_factory=dict)


def parse_intent(text: str) -> Intent:
    raw = text.strip()
    if not raw:
        return Intent(action="noop", raw=text)
    match = _SLASH_PATTERN.match(raw)
    if match:
        command = match.group(1).lower()
        arg = (match.group(2) or "").strip()
        if command in COMMAND_MAP:
            return Intent(action=COMMAND_MAP[command], raw=text)
        return Intent(action="unknown", raw=text, command_args={"command": command, "arg": arg})
    return Intent(action="send", raw=text, message=raw)
