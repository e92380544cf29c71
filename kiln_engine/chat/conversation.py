"""Conversation turns and the append-only conversation log."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterator


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class ConversationTurn:
    role: Role
    text: str


class ConversationLog:
    """Ordered turns replayed into every request.

    Only appends and a full clear are exposed; turns are never edited or
    removed individually.
    """

    def __init__(self) -> None:
        self._turns: list[ConversationTurn] = []

    def append(self, turn: ConversationTurn) -> None:
        self._turns.append(turn)

    def append_exchange(self, user_text: str, assistant_text: str) -> None:
        self._turns.extend(
            (
                ConversationTurn(role=Role.USER, text=user_text),
                ConversationTurn(role=Role.ASSISTANT, text=assistant_text),
            )
        )

    def clear(self) -> None:
        self._turns.clear()

    def snapshot(self) -> tuple[ConversationTurn, ...]:
        return tuple(self._turns)

    def __iter__(self) -> Iterator[ConversationTurn]:
        return iter(tuple(self._turns))

    def __len__(self) -> int:
        return len(self._turns)
