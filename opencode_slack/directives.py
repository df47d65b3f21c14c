"""Parsing of inbound message text: commands, ``dir:`` directive, mentions."""

import os
import re
from dataclasses import dataclass

COMMANDS = ("init", "models", "agents")

_COMMAND = re.compile(r"^!(init|models|agents)(?:\s+(.*))?$", re.DOTALL)
_DIRECTORY = re.compile(r"^dir:(\S+)\s*")
_MENTION = re.compile(r"<@[A-Z0-9]+>")


@dataclass
class Directives:
    """What an inbound message asks for."""

    message: str | None
    directory: str | None = None
    command: str | None = None
    command_args: str | None = None


def strip_mentions(text: str) -> str:
    """Remove ``<@U123>`` user mentions and surrounding whitespace."""
    return _MENTION.sub("", text or "").strip()


def resolve_directory(raw: str) -> str:
    return os.path.abspath(os.path.expanduser(raw))


def parse_directives(text: str) -> Directives:
    """Split message text into a command, a directory override and a message.

    ``!models gpt`` -> command "models", args "gpt", no message.
    ``dir:~/src/app fix the build`` -> directory "/home/.../src/app",
    message "fix the build".
    """
    text = text.strip()

    command_match = _COMMAND.match(text)
    if command_match:
        args = (command_match.group(2) or "").strip()
        return Directives(
            message=None,
            command=command_match.group(1),
            command_args=args or None,
        )

    directory = None
    message = text
    dir_match = _DIRECTORY.match(text)
    if dir_match:
        directory = resolve_directory(dir_match.group(1))
        message = text[dir_match.end() :].strip()

    return Directives(message=message or None, directory=directory)
