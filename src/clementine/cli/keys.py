"""Translate raw key presses into session commands."""

from __future__ import annotations

from enum import Enum
from typing import Any


class Command(str, Enum):
    SUBMIT = "submit"
    APPROVE = "approve"
    REJECT = "reject"
    BACKSPACE = "backspace"
    APPEND = "append"
    EXIT = "exit"


# prompt_toolkit key names
_ENTER = frozenset({"c-m", "c-j", "enter"})
_ESCAPE = frozenset({"escape"})
_ERASE = frozenset({"c-h", "backspace", "delete"})
_CTRL_C = frozenset({"c-c"})


def _key_name(key: Any) -> str:
    # prompt_toolkit's Keys is a str Enum whose hash differs from its value's
    return key.value if isinstance(key, Enum) else str(key)


def translate_key(
    key: Any,
    data: str = "",
    *,
    awaiting_approval: bool,
    is_loading: bool = False,
) -> Command | None:
    """Map one key press to a command, or None when the key means nothing in this state."""
    name = _key_name(key)
    char = data or (name if len(name) == 1 else "")

    if name in _CTRL_C:
        return Command.EXIT

    if awaiting_approval:
        if name in _ENTER or char.lower() == "y":
            return Command.APPROVE
        if name in _ESCAPE or char.lower() == "n":
            return Command.REJECT
        return None

    if name in _ENTER:
        return None if is_loading else Command.SUBMIT
    if name in _ERASE:
        return Command.BACKSPACE
    if char and char.isprintable():
        return Command.APPEND
    return None
