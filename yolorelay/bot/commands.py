"""Built-in command parsing.

A message is a built-in command only if it is exactly ``/help`` or ``/start``,
optionally addressed as ``/help@botname``. Anything else, including a
built-in followed by arguments, is a free-form prompt.
"""

from dataclasses import dataclass
from typing import Optional, Union

from yolorelay.core.prompts import HELP_TEXT, START_TEXT


@dataclass(frozen=True)
class Help:
    reply = HELP_TEXT


@dataclass(frozen=True)
class Start:
    reply = START_TEXT


@dataclass(frozen=True)
class FreeformPrompt:
    text: str


CommandIntent = Union[Help, Start, FreeformPrompt]

BUILTINS = {"help": Help, "start": Start}


def parse_command(text: str, bot_username: Optional[str] = None) -> CommandIntent:
    stripped = text.strip()
    if not stripped.startswith("/"):
        return FreeformPrompt(text)

    parts = stripped[1:].split(maxsplit=1)
    if len(parts) != 1:
        return FreeformPrompt(text)

    name, _, target = parts[0].partition("@")
    if target and bot_username and target.lower() != bot_username.lower():
        return FreeformPrompt(text)

    intent = BUILTINS.get(name)
    if intent is None:
        return FreeformPrompt(text)
    return intent()
