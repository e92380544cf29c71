from kiln_engine.chat.commands import COMMANDS, help_lines
from kiln_engine.chat.intent_parser import parse_intent


def test_parse_intent_plain_message():
    intent = parse_intent("  what is a castle?  ")
    assert intent.action == "send"
    assert intent.message == "what is a castle?"


def test_parse_intent_empty_line():
    assert parse_intent("   ").action == "noop"
    assert parse_intent("").action == "noop"


def test_parse_intent_clear():
    assert parse_intent("/clear").action == "clear"


def test_parse_intent_history():
    assert parse_intent("/history").action == "history"


def test_parse_intent_exit_and_quit():
    assert parse_intent("/exit").action == "exit"
    assert parse_intent("/QUIT").action == "exit"


def test_parse_intent_help():
    assert parse_intent(" /help ").action == "help"


def test_parse_intent_unknown_command():
    intent = parse_intent("/summon dragons now")
    assert intent.action == "unknown"
    assert intent.command_args["command"] == "summon"
    assert intent.command_args["arg"] == "dragons now"


def test_help_lists_every_command():
    lines = help_lines()
    assert lines[0] == "Commands:"
    for name in COMMANDS:
        assert any(name in line for line in lines[1:])
