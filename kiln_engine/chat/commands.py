"""Slash command registry for the chat loop."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class CommandSpec:
    command: str
    action: str
    description: str


COMMAND_SPECS: tuple[CommandSpec, ...] = (
    CommandSpec("help", "help", "Show this help"),
    CommandSpec("clear", "clear", "Clear chat history"),
    CommandSpec("history", "history", "Show how many turns are in the history"),
    CommandSpec("exit", "exit", "Quit"),
    CommandSpec("quit", "exit", "Quit"),
)

COMMAND_MAP = {spec.command: spec.action for spec in COMMAND_SPECS}

COMMANDS = {f"/{spec.command}": spec.description for spec in COMMAND_SPECS}


def help_lines() -> list[str]:
    width = max(len(name) for name in COMMANDS)
    return ["Commands:"] + [f"  {name.ljust(width)}  {desc}" for name, desc in COMMANDS.items()]
