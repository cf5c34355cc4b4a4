"""Drain a child's output, feed its input and run a process to completion."""

from __future__ import annotations

import dataclasses
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, Optional

from .errors import BrokenPipe, InvalidArgument, TimedOut, WouldBlock
from .options import INFINITE, Event, Options, Stream
from .reproc import EventSource, Process, poll

DEFAULT_BUFSIZE = 4096

Sink = Callable[[Stream, bytes], Any]
Filler = Callable[[int], "tuple[bytes, bool]"]


@dataclass
class StringSink:
    """A sink that appends everything it receives to ``data``."""

    data: bytearray = field(default_factory=bytearray)
    encoding: str = "utf-8"

    def __call__(self, stream: Stream, data: bytes) -> int:
        self.data += data
        return 0

    @property
    def text(self) -> str:
        """The collected output decoded as text."""
        return self.data.decode(self.encoding, errors="replace")


def _null_sink(stream: Stream, data: bytes) -> int:
    return 0


def sink_discard() -> Sink:
    """Return a sink that throws its output away."""
    return _null_sink


def _check_bufsize(bufsize: int) -> None:
    if isinstance(bufsize, bool) or not isinstance(bufsize, int) or bufsize <= 0:
        raise InvalidArgument("buffer size must be a positive integer")


def drain(
    process: Process,
    out: Optional[Sink] = None,
    err: Optional[Sink] = None,
    bufsize: int = DEFAULT_BUFSIZE,
) -> Any:
    """Read the child's stdout and stderr until both are closed.

    Both sinks are first called with ``Stream.IN`` and no data; each is called
    with no data once its stream closes. A ``None`` sink discards its stream.
    When a sink returns a truthy value, draining stops and that value is
    returned; otherwise 0 is returned once both streams are closed. Raises
    ``TimedOut`` when the process deadline expires.
    """
    if process is None:
        raise InvalidArgument("a process is required")
    _check_bufsize(bufsize)
    out = out or _null_sink
    err = err or _null_sink

    for sink in (out, err):
        result = sink(Stream.IN, b"")
        if result:
            return result

    while True:
        source = EventSource(process, Event.OUT | Event.ERR)
        try:
            poll([source], INFINITE)
        except BrokenPipe:
            return 0
        if source.events & Event.DEADLINE:
            raise TimedOut("the process deadline expired")
        if source.events & Event.OUT:
            stream, sink = Stream.OUT, out
        elif source.events & Event.ERR:
            stream, sink = Stream.ERR, err
        else:
            continue
        try:
            data = process.read(stream, bufsize)
        except BrokenPipe:
            data = b""
        result = sink(stream, data)
        if result:
            return result


def filler_buffer(data: bytes) -> Filler:
    """Return a filler that hands out ``data`` in pieces until it is used up."""
    view = memoryview(bytes(data))
    offset = 0

    def filler(size: int) -> tuple[bytes, bool]:
        nonlocal offset
        chunk = bytes(view[offset:offset + size])
        offset += len(chunk)
        return chunk, offset < len(view)

    return filler


def _write_all(process: Process, data: bytes) -> None:
    view = memoryview(data)
    while view:
        try:
            written = process.write(view)
        except WouldBlock:
            source = EventSource(process, Event.IN)
            poll([source], INFINITE)
            if source.events & Event.DEADLINE:
                raise TimedOut("the process deadline expired") from None
            continue
        view = view[written:]


def fill(
    process: Process,
    filler: Filler,
    bufsize: int = DEFAULT_BUFSIZE,
) -> int:
    """Write what ``filler`` produces to the child's stdin until it has no more.

    ``filler`` is called with the buffer size and returns ``(data, more)``.
    The stdin stream is left open. Raises ``TimedOut`` when the process
    deadline expires while waiting to write.
    """
    if process is None or filler is None:
        raise InvalidArgument("a process and a filler are required")
    _check_bufsize(bufsize)
    more = True
    while more:
        data, more = filler(bufsize)
        if len(data) > bufsize:
            raise InvalidArgument("filler returned more data than requested")
        _write_all(process, data)
    return 0


def run(argv: Sequence[Any], options: Optional[Options] = None) -> int:
    """Run ``argv`` with its streams shared with the parent; return its exit status.

    The streams go to the parent unless ``discard``, ``file`` or ``path``
    is set.
    """
    options = options or Options()
    if not options.discard and options.file is None and options.path is None:
        options = dataclasses.replace(options, parent=True)
    return run_ex(argv, options, None, None)


def run_ex(
    argv: Sequence[Any],
    options: Optional[Options] = None,
    out: Optional[Sink] = None,
    err: Optional[Sink] = None,
) -> int:
    """Start ``argv``, drain its output into the sinks, stop it and return its exit status."""
    options = options or Options()
    if options.fork:
        raise InvalidArgument("fork cannot be used with run")
    with Process() as process:
        process.start(argv, options)
        drain(process, out, err)
        return process.stop(options.stop)