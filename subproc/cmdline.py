"""Command lines and environment blocks in the form Windows expects."""

from __future__ import annotations

import re
from collections.abc import Iterable

_SPECIAL = frozenset(' \t\n\v"')
_BACKSLASHES_BEFORE_QUOTE = re.compile(r'(\\*)"')
_TRAILING_BACKSLASHES = re.compile(r"(\\+)\Z")


def should_escape(argument: str) -> bool:
    """Return whether ``argument`` has to be quoted on a command line."""
    return any(char in _SPECIAL for char in argument)


def escape_argument(argument: str) -> str:
    """Quote ``argument`` so the child's command-line parser reads it back whole."""
    if not should_escape(argument):
        return argument
    body = _BACKSLASHES_BEFORE_QUOTE.sub(
        lambda match: "\\" * (2 * len(match.group(1)) + 1) + '"', argument
    )
    body = _TRAILING_BACKSLASHES.sub(
        lambda match: "\\" * (2 * len(match.group(1))), body
    )
    return f'"{body}"'


def join_arguments(argv: Iterable[str]) -> str:
    """Join ``argv`` into one space separated, escaped command line."""
    return " ".join(escape_argument(argument) for argument in argv)


def join_environment(env: Iterable[str]) -> str:
    """Join entries into a block of NUL terminated strings ending in an extra NUL."""
    return "".join(f"{entry}\0" for entry in env) + "\0"