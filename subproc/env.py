"""Environment blocks for child processes."""

from __future__ import annotations

import itertools
import os
from collections.abc import Iterable, Mapping, Sequence
from typing import Union

from .errors import InvalidArgument
from .options import EnvBehavior

EnvEntries = Union[Mapping[str, str], Sequence[str], None]


def concat(parent: Iterable[str] | None, extra: Iterable[str] | None) -> list[str]:
    """Return the entries of ``parent`` followed by those of ``extra``.

    Either side may be ``None``, which counts as empty.
    """
    return list(itertools.chain(parent or (), extra or ()))


def _entries(extra: EnvEntries) -> list[str]:
    if extra is None:
        return []
    if isinstance(extra, Mapping):
        return [f"{name}={value}" for name, value in extra.items()]
    if isinstance(extra, (str, bytes)):
        raise InvalidArgument("extra environment must be a mapping or a sequence")
    entries = list(extra)
    for entry in entries:
        if not isinstance(entry, str) or "=" not in entry:
            raise InvalidArgument(f"environment entry {entry!r} is not NAME=VALUE")
    return entries


def build_environment(behavior: EnvBehavior, extra: EnvEntries) -> list[str]:
    """Return the ``NAME=VALUE`` entries a child process starts with.

    With ``EnvBehavior.EXTEND`` the entries of the current environment come
    first; the ``extra`` entries always follow, in the order given.
    """
    try:
        behavior = EnvBehavior(behavior)
    except ValueError as exc:
        raise InvalidArgument(f"unknown environment behavior {behavior!r}") from exc
    parent = (
        None
        if behavior == EnvBehavior.EMPTY
        else [f"{name}={value}" for name, value in os.environ.items()]
    )
    return concat(parent, _entries(extra))


def to_utf16(string: str | bytes) -> bytes:
    """Encode ``string`` as little-endian UTF-16.

    Bytes are decoded as strict UTF-8 first; embedded NUL characters are kept.
    Raises ``InvalidArgument`` when the bytes are not valid UTF-8.
    """
    if isinstance(string, (bytes, bytearray, memoryview)):
        try:
            string = bytes(string).decode("utf-8")
        except UnicodeDecodeError as exc:
            raise InvalidArgument(f"not valid UTF-8: {exc.reason}") from exc
    elif not isinstance(string, str):
        raise InvalidArgument(f"cannot encode value of type {type(string).__name__}")
    try:
        return string.encode("utf-16-le")
    except UnicodeEncodeError as exc:
        raise InvalidArgument(f"cannot encode as UTF-16: {exc.reason}") from exc