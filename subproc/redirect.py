"""Set up the handles a child process uses for its standard streams."""

from __future__ import annotations

import os
import sys
from typing import IO, Any, Optional, Union

from . import pipe as _pipe
from .errors import BrokenPipe, InvalidArgument
from .options import Redirect, RedirectType, Stream
from .pipe import Pipe

Handle = Union[int, Pipe]

_OPEN_FLAGS = getattr(os, "O_CLOEXEC", 0) | getattr(os, "O_BINARY", 0)


def _stream(stream: Stream | int) -> Stream:
    try:
        return Stream(stream)
    except ValueError as exc:
        raise InvalidArgument(f"unknown stream {stream!r}") from exc


def parent_handle(stream: Stream | int) -> int:
    """Return the descriptor of the parent's own ``stream``.

    Raises ``BrokenPipe`` when the parent has no such stream.
    """
    stream = _stream(stream)
    file = {
        Stream.IN: sys.__stdin__,
        Stream.OUT: sys.__stdout__,
        Stream.ERR: sys.__stderr__,
    }[stream]
    if file is None:
        raise BrokenPipe(f"the parent has no std{stream.name.lower()}")
    try:
        return file.fileno()
    except (AttributeError, OSError, ValueError) as exc:
        raise BrokenPipe(f"the parent std{stream.name.lower()} is closed") from exc


def path_handle(stream: Stream | int, path: str | os.PathLike[str]) -> int:
    """Open ``path`` for the child's ``stream``, creating it if needed.

    stdin opens the file for reading, stdout and stderr for writing.
    """
    stream = _stream(stream)
    if path is None:
        raise InvalidArgument("a path is required")
    mode = os.O_RDONLY if stream == Stream.IN else os.O_WRONLY
    return os.open(path, mode | os.O_CREAT | _OPEN_FLAGS, 0o640)


def discard_handle(stream: Stream | int) -> int:
    """Open the null device for the child's ``stream``."""
    return path_handle(stream, os.devnull)


def file_handle(file: IO[Any]) -> int:
    """Return the descriptor behind an open file object."""
    if file is None:
        raise InvalidArgument("a file is required")
    try:
        return file.fileno()
    except (AttributeError, OSError, ValueError) as exc:
        raise InvalidArgument("the file has no operating system handle") from exc


def _open_pipe(stream: Stream, nonblocking: bool) -> tuple[Pipe, Pipe]:
    read, write = _pipe.create()
    parent, child = (write, read) if stream == Stream.IN else (read, write)
    try:
        _pipe.set_nonblocking(parent, nonblocking)
    except OSError:
        _pipe.close(read)
        _pipe.close(write)
        raise
    return parent, child


def open_redirect(
    stream: Stream | int,
    redirect: Redirect,
    nonblocking: bool,
    out: Optional[Handle],
) -> tuple[Optional[Pipe], Handle]:
    """Create the endpoints for one redirected stream.

    Returns ``(parent, child)``: ``parent`` is the pipe the parent keeps, or
    ``None`` when the stream is not a pipe, and ``child`` is the handle the
    child process receives. ``out`` is the child's stdout handle, used when
    stderr is redirected to stdout.
    """
    stream = _stream(stream)
    try:
        kind = RedirectType(redirect.type)
    except ValueError as exc:
        raise InvalidArgument(f"unknown redirect type {redirect.type!r}") from exc

    if kind == RedirectType.DEFAULT:
        raise InvalidArgument("redirect type must be resolved before use")
    if kind == RedirectType.PIPE:
        return _open_pipe(stream, nonblocking)
    if kind == RedirectType.PARENT:
        try:
            return None, parent_handle(stream)
        except BrokenPipe:
            # The parent stream is closed, so there is nothing to share.
            return None, discard_handle(stream)
    if kind == RedirectType.DISCARD:
        return None, discard_handle(stream)
    if kind == RedirectType.HANDLE:
        if redirect.handle is None:
            raise InvalidArgument("a handle redirect needs a handle")
        return None, redirect.handle
    if kind == RedirectType.FILE:
        return None, file_handle(redirect.file)
    if kind == RedirectType.STDOUT:
        if stream != Stream.ERR:
            raise InvalidArgument("only stderr can be redirected to stdout")
        if out is None:
            raise InvalidArgument("stdout has no handle to share")
        return None, out
    return None, path_handle(stream, redirect.path)


def close_redirect(child: Optional[Handle], type: RedirectType | int) -> None:
    """Close ``child`` if this package opened it; return ``None``.

    Handles borrowed from the parent, a file or the caller are left open.
    """
    if child is None:
        return None
    try:
        kind = RedirectType(type)
    except ValueError as exc:
        raise InvalidArgument(f"unknown redirect type {type!r}") from exc
    if kind == RedirectType.DEFAULT:
        raise InvalidArgument("redirect type must be resolved before use")
    if kind == RedirectType.PIPE:
        _pipe.close(child)
    elif kind in (RedirectType.DISCARD, RedirectType.PATH):
        os.close(child)
    return None