"""Anonymous pipes used to talk to child processes.

On POSIX systems a pipe is a file descriptor. On Windows a connected socket
pair stands in for a pipe so that every endpoint can be polled.
"""

from __future__ import annotations

import os
import select
import socket
import time
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Optional, Union

from .errors import BrokenPipe, InvalidArgument, WouldBlock

Pipe = Union[int, socket.socket]

_WINDOWS = os.name == "nt"

EVENT_IN: int = getattr(select, "POLLIN", 0x0001)
EVENT_OUT: int = getattr(select, "POLLOUT", 0x0004)


@dataclass
class PipeEvent:
    """A pipe to poll, the events wanted and, after polling, the events seen.

    A ``pipe`` of ``None`` is skipped by ``poll`` and always reports no events.
    """

    pipe: Optional[Pipe]
    interests: int
    events: int = 0


def _translated(exc: OSError) -> OSError:
    if isinstance(exc, BlockingIOError):
        return WouldBlock(exc.errno, exc.strerror)
    if isinstance(exc, BrokenPipeError):
        return BrokenPipe(exc.errno, exc.strerror)
    return exc


def create() -> tuple[Pipe, Pipe]:
    """Create a pipe and return its ``(read, write)`` endpoints.

    Neither endpoint is inherited by child processes.
    """
    if not _WINDOWS:
        read, write = os.pipe()
        return read, write

    read, write = socket.socketpair()
    try:
        read.set_inheritable(False)
        write.set_inheritable(False)
        # Make the connection one-way so it behaves like a pipe.
        read.shutdown(socket.SHUT_WR)
        write.shutdown(socket.SHUT_RD)
    except OSError:
        read.close()
        write.close()
        raise
    return read, write


def set_nonblocking(pipe: Pipe, enable: bool) -> None:
    """Switch ``pipe`` into or out of nonblocking mode."""
    if isinstance(pipe, socket.socket):
        pipe.setblocking(not enable)
    else:
        os.set_blocking(pipe, not enable)


def read_from(pipe: Pipe, size: int) -> bytes:
    """Read up to ``size`` bytes from ``pipe``.

    Raises ``BrokenPipe`` when the other end has been closed and
    ``WouldBlock`` when a nonblocking pipe has nothing to read.
    """
    if pipe is None:
        raise InvalidArgument("cannot read from a closed pipe")
    if size <= 0:
        raise InvalidArgument("read size must be positive")
    try:
        if isinstance(pipe, socket.socket):
            data = pipe.recv(size)
        else:
            data = os.read(pipe, size)
    except OSError as exc:
        raise _translated(exc) from exc
    if not data:
        raise BrokenPipe("the other end of the pipe was closed")
    return data


def write_to(pipe: Pipe, data: bytes) -> int:
    """Write as much of ``data`` to ``pipe`` as it accepts; return the count.

    Raises ``BrokenPipe`` when the reading end has been closed and
    ``WouldBlock`` when a nonblocking pipe is full.
    """
    if pipe is None:
        raise InvalidArgument("cannot write to a closed pipe")
    try:
        if isinstance(pipe, socket.socket):
            return pipe.send(data)
        return os.write(pipe, data)
    except OSError as exc:
        raise _translated(exc) from exc


def poll(sources: Sequence[PipeEvent], timeout: int) -> int:
    """Wait for events on ``sources`` and return how many pipes have events.

    ``timeout`` is in milliseconds; a negative value waits indefinitely. The
    ``events`` field of every source is overwritten.
    """
    for source in sources:
        source.events = 0
    if _WINDOWS:
        return _poll_sockets(sources, timeout)

    poller = select.poll()
    by_fd: dict[int, list[PipeEvent]] = {}
    for source in sources:
        if source.pipe is None:
            continue
        fd = source.pipe
        mask = source.interests
        if fd in by_fd:
            mask |= by_fd[fd][0].interests
            poller.modify(fd, mask)
        else:
            poller.register(fd, mask)
        by_fd.setdefault(fd, []).append(source)

    ready = poller.poll(None if timeout < 0 else timeout)
    for fd, revents in ready:
        for source in by_fd.get(fd, ()):
            source.events = revents & (
                source.interests | select.POLLHUP | select.POLLERR | select.POLLNVAL
            )
    return sum(1 for source in sources if source.events)


def _poll_sockets(sources: Sequence[PipeEvent], timeout: int) -> int:
    valid = [source for source in sources if source.pipe is not None]
    if not valid:
        if timeout < 0:
            raise InvalidArgument("nothing to poll")
        time.sleep(timeout / 1000)
        return 0
    readers = [s.pipe for s in valid if s.interests & EVENT_IN]
    writers = [s.pipe for s in valid if s.interests & EVENT_OUT]
    errors = [s.pipe for s in valid]
    readable, writable, failed = select.select(
        readers, writers, errors, None if timeout < 0 else timeout / 1000
    )
    for source in valid:
        events = 0
        if source.pipe in readable and source.interests & EVENT_IN:
            events |= EVENT_IN
        if source.pipe in writable and source.interests & EVENT_OUT:
            events |= EVENT_OUT
        if source.pipe in failed:
            events |= EVENT_IN
        source.events = events
    return sum(1 for source in sources if source.events)


def shutdown(pipe: Optional[Pipe]) -> None:
    """Stop sending on ``pipe``; only socket-backed pipes need this."""
    if isinstance(pipe, socket.socket):
        pipe.shutdown(socket.SHUT_WR)


def close(pipe: Optional[Pipe]) -> None:
    """Close ``pipe`` if it is open and return ``None`` to store in its place."""
    if pipe is None:
        return None
    if isinstance(pipe, socket.socket):
        pipe.close()
    else:
        os.close(pipe)
    return None