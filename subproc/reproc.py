"""Child processes with redirected standard streams, deadlines and polling."""

from __future__ import annotations

import os
import time
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Optional

from . import pipe as _pipe
from . import process as _process
from .errors import BrokenPipe, InvalidArgument, TimedOut, WouldBlock
from .options import (
    DEADLINE,
    INFINITE,
    Event,
    Options,
    RedirectType,
    Stop,
    StopActions,
    Stream,
)
from .redirect import close_redirect, open_redirect

_WINDOWS = os.name == "nt"

_NOT_STARTED = -1
_IN_PROGRESS = -2
_IN_CHILD = -3

_PIPES_PER_SOURCE = 4


def _now() -> int:
    return int(time.monotonic() * 1000)


def _expiry(timeout: int, deadline: int) -> int:
    """Return how long to wait given a timeout and an absolute deadline."""
    if timeout == INFINITE and deadline == INFINITE:
        return INFINITE
    if deadline == INFINITE:
        return timeout
    now = _now()
    if now >= deadline:
        return DEADLINE
    remaining = deadline - now
    if timeout == INFINITE:
        return remaining
    return min(timeout, remaining)


class Process:
    """A child process together with the pipes connected to it.

    Use as a context manager to make sure the process is stopped and every
    pipe is closed.
    """

    def __init__(self) -> None:
        self._handle: Optional[int] = None
        self._in: Optional[_pipe.Pipe] = None
        self._out: Optional[_pipe.Pipe] = None
        self._err: Optional[_pipe.Pipe] = None
        self._exit: Optional[_pipe.Pipe] = None
        self._status = _NOT_STARTED
        self._stop = StopActions()
        self._deadline = INFINITE
        self._nonblocking = False
        self._child_out: Optional[_pipe.Pipe] = None
        self._child_err: Optional[_pipe.Pipe] = None
        self._destroyed = False

    def _check_usable(self, *, started: bool = True) -> None:
        if self._status == _IN_CHILD:
            raise InvalidArgument("not available in the forked child")
        if started and self._status == _NOT_STARTED:
            raise InvalidArgument("the process has not been started")

    def start(self, argv: Optional[Sequence[Any]], options: Optional[Options] = None) -> int:
        """Start ``argv`` and return the child's process id.

        With the ``fork`` option the call returns 0 in the forked child.
        """
        if self._status != _NOT_STARTED:
            raise InvalidArgument("the process was already started")
        options = (options or Options()).resolve(argv)

        child_in = child_out = child_err = child_exit = None
        pid: Optional[int] = None
        ok = False
        try:
            self._in, child_in = open_redirect(
                Stream.IN, options.stdin, options.nonblocking, None
            )
            self._out, child_out = open_redirect(
                Stream.OUT, options.stdout, options.nonblocking, None
            )
            self._err, child_err = open_redirect(
                Stream.ERR, options.stderr, options.nonblocking, child_out
            )
            self._exit, child_exit = _pipe.create()
            self._setup_input(options.input)
            pid = _process.start(
                None if options.fork else list(argv),
                _process.ProcessOptions(
                    env_behavior=options.env,
                    env_extra=options.env_extra,
                    working_directory=options.working_directory,
                    stdin=child_in,
                    stdout=child_out,
                    stderr=child_err,
                    exit=child_exit,
                ),
            )
            ok = True
        finally:
            close_redirect(child_in, options.stdin.type)
            # On Windows, socket handles given to the child are kept open until
            # the child exits so no output is lost; see ``poll``.
            keep = _WINDOWS and ok
            if not (keep and options.stdout.type == RedirectType.PIPE):
                child_out = close_redirect(child_out, options.stdout.type)
            if not (keep and options.stderr.type == RedirectType.PIPE):
                child_err = close_redirect(child_err, options.stderr.type)
            _pipe.close(child_exit)
            if not ok:
                self._close_pipes()

        if pid == 0:
            # The fork already closed the parent's pipes in the child.
            self._handle = None
            self._in = self._out = self._err = self._exit = None
            self._status = _IN_CHILD
            return 0

        self._handle = pid
        self._stop = options.stop
        if options.deadline != INFINITE:
            self._deadline = _now() + options.deadline
        self._nonblocking = options.nonblocking
        self._child_out = child_out
        self._child_err = child_err
        self._status = _IN_PROGRESS
        return pid

    def _setup_input(self, data: Optional[bytes]) -> None:
        if data is None:
            return
        # Nonblocking so input larger than the pipe fails instead of hanging.
        _pipe.set_nonblocking(self._in, True)
        view = memoryview(data)
        written = 0
        while written < len(view):
            written += _pipe.write_to(self._in, view[written:])
        self._in = _pipe.close(self._in)

    def _close_pipes(self) -> None:
        self._in = _pipe.close(self._in)
        self._out = _pipe.close(self._out)
        self._err = _pipe.close(self._err)
        self._exit = _pipe.close(self._exit)

    def pid(self) -> int:
        """Return the process id of the child."""
        self._check_usable()
        return self._handle

    def read(self, stream: Stream, size: int = 4096) -> bytes:
        """Read up to ``size`` bytes from the child's stdout or stderr.

        Raises ``BrokenPipe`` once the stream is closed and all its data read,
        and ``WouldBlock`` in nonblocking mode when nothing is available.
        """
        self._check_usable(started=False)
        try:
            stream = Stream(stream)
        except ValueError as exc:
            raise InvalidArgument(f"unknown stream {stream!r}") from exc
        if stream == Stream.IN:
            raise InvalidArgument("cannot read from stdin")

        current = self._out if stream == Stream.OUT else self._err
        child = self._child_out if stream == Stream.OUT else self._child_err
        if current is None:
            raise BrokenPipe(f"std{stream.name.lower()} is closed")

        if child is not None:
            # Polling closes the handles kept open for the child once it exits;
            # reading directly could block forever on them.
            event = Event.OUT if stream == Stream.OUT else Event.ERR
            count = poll([EventSource(self, event)], 0 if self._nonblocking else INFINITE)
            if count == 0:
                raise WouldBlock(f"no data on std{stream.name.lower()}")

        try:
            return _pipe.read_from(current, size)
        except BrokenPipe:
            if stream == Stream.OUT:
                self._out = _pipe.close(self._out)
            else:
                self._err = _pipe.close(self._err)
            raise

    def write(self, data: Optional[bytes]) -> int:
        """Write as much of ``data`` to the child's stdin as it accepts."""
        self._check_usable(started=False)
        if data is None:
            return 0
        if self._in is None:
            raise BrokenPipe("stdin is closed")
        try:
            return _pipe.write_to(self._in, data)
        except BrokenPipe:
            self._in = _pipe.close(self._in)
            raise

    def close(self, stream: Stream) -> None:
        """Close the parent's end of one of the child's standard streams."""
        self._check_usable(started=False)
        try:
            stream = Stream(stream)
        except ValueError as exc:
            raise InvalidArgument(f"unknown stream {stream!r}") from exc
        if stream == Stream.IN:
            self._in = _pipe.close(self._in)
        elif stream == Stream.OUT:
            self._out = _pipe.close(self._out)
        else:
            self._err = _pipe.close(self._err)

    def wait(self, timeout: int = INFINITE) -> int:
        """Wait up to ``timeout`` milliseconds for the child and return its exit status.

        ``INFINITE`` waits forever and ``DEADLINE`` waits until the deadline.
        Raises ``TimedOut`` when the child is still running.
        """
        self._check_usable()
        if self._status >= 0:
            return self._status
        if timeout == DEADLINE:
            timeout = _expiry(INFINITE, self._deadline)
            if timeout == DEADLINE:
                timeout = 0
        if self._exit is None:
            raise InvalidArgument("the process has been destroyed")

        source = _pipe.PipeEvent(self._exit, _pipe.EVENT_IN)
        if _pipe.poll([source], timeout) == 0:
            raise TimedOut("the process is still running")

        status = _process.wait(self._handle)
        self._exit = _pipe.close(self._exit)
        self._status = status
        return status

    def terminate(self) -> None:
        """Ask the child to stop; does nothing once it has exited."""
        self._check_usable()
        if self._status >= 0:
            return
        _process.terminate(self._handle)

    def kill(self) -> None:
        """Stop the child at once; does nothing once it has exited."""
        self._check_usable()
        if self._status >= 0:
            return
        _process.kill(self._handle)

    def stop(self, stop: Optional[StopActions] = None) -> int:
        """Run the stop steps in order and return the exit status.

        Each step acts, then waits its timeout; the next step runs only if the
        wait timed out. Defaults to the steps given when starting.
        """
        self._check_usable()
        steps = (self._stop if stop is None else stop).normalized()

        status = 0
        timed_out = False
        for step in steps:
            if step.action == Stop.NOOP:
                status, timed_out = 0, False
                continue
            if step.action == Stop.TERMINATE:
                self.terminate()
            elif step.action == Stop.KILL:
                self.kill()
            elif step.action != Stop.WAIT:
                raise InvalidArgument(f"unknown stop action {step.action!r}")
            try:
                return self.wait(step.timeout)
            except TimedOut:
                timed_out = True
        if timed_out:
            raise TimedOut("the process is still running")
        return status

    def destroy(self) -> None:
        """Stop the child with its stop steps if running and close every pipe."""
        if self._destroyed:
            return
        self._destroyed = True
        if self._status == _IN_PROGRESS:
            try:
                self.stop(self._stop)
            except OSError:
                pass
        self._close_pipes()
        self._child_out = _pipe.close(self._child_out)
        self._child_err = _pipe.close(self._child_err)

    def __enter__(self) -> Process:
        return self

    def __exit__(self, *args: object) -> None:
        self.destroy()


@dataclass
class EventSource:
    """A process to poll, the events wanted and, after polling, the events seen.

    Sources whose ``process`` is ``None`` are ignored.
    """

    process: Optional[Process]
    interests: Event
    events: Event = Event(0)


def _earliest_deadline(sources: Sequence[EventSource]) -> int:
    earliest = 0
    smallest = INFINITE
    for index, source in enumerate(sources):
        if source.process is None:
            continue
        current = _expiry(INFINITE, source.process._deadline)
        if current == DEADLINE:
            return index
        if current == INFINITE:
            continue
        if smallest == INFINITE or current < smallest:
            earliest, smallest = index, current
    return earliest


def poll(sources: Sequence[EventSource], timeout: int = INFINITE) -> int:
    """Wait for events on ``sources`` and return how many processes have events.

    ``timeout`` is in milliseconds; returns 0 when it expires. An expired
    process deadline is reported as ``Event.DEADLINE`` on that source. Raises
    ``BrokenPipe`` when none of the sources has a pipe left to poll.
    """
    if not sources:
        raise InvalidArgument("no event sources given")

    earliest = _earliest_deadline(sources)
    owner = sources[earliest].process
    deadline = INFINITE if owner is None else owner._deadline
    first = _expiry(timeout, deadline)

    if first == DEADLINE:
        for source in sources:
            source.events = Event(0)
        sources[earliest].events = Event.DEADLINE
        return 1

    pipes: list[_pipe.PipeEvent] = []
    for source in sources:
        process = source.process
        if process is None:
            pipes.extend(
                _pipe.PipeEvent(None, _pipe.EVENT_IN) for _ in range(_PIPES_PER_SOURCE)
            )
            continue
        interests = Event(source.interests)
        wants_exit = (
            bool(interests & Event.EXIT)
            or (bool(interests & Event.OUT) and process._child_out is not None)
            or (bool(interests & Event.ERR) and process._child_err is not None)
        )
        pipes.append(
            _pipe.PipeEvent(process._in if interests & Event.IN else None, _pipe.EVENT_OUT)
        )
        pipes.append(
            _pipe.PipeEvent(process._out if interests & Event.OUT else None, _pipe.EVENT_IN)
        )
        pipes.append(
            _pipe.PipeEvent(process._err if interests & Event.ERR else None, _pipe.EVENT_IN)
        )
        pipes.append(_pipe.PipeEvent(process._exit if wants_exit else None, _pipe.EVENT_IN))

    if all(entry.pipe is None for entry in pipes):
        raise BrokenPipe("no pipes left to poll")

    ready = _pipe.poll(pipes, first)

    for source in sources:
        source.events = Event(0)

    if ready == 0:
        if first != timeout:
            # A deadline expiring is an event; a timeout is not.
            sources[earliest].events = Event.DEADLINE
            return 1
        return 0

    for index, entry in enumerate(pipes):
        if entry.pipe is not None and entry.events:
            owner_source = sources[index // _PIPES_PER_SOURCE]
            owner_source.events |= Event(1 << (index % _PIPES_PER_SOURCE))

    again = False
    for source in sources:
        if not source.events & Event.EXIT:
            continue
        process = source.process
        if process._child_out is None and process._child_err is None:
            continue
        # The child exited: release the handles kept for it so the output
        # pipes report their end.
        _pipe.shutdown(process._child_out)
        _pipe.shutdown(process._child_err)
        process._child_out = _pipe.close(process._child_out)
        process._child_err = _pipe.close(process._child_err)
        again = True

    if again:
        return poll(sources, timeout)

    return sum(1 for source in sources if source.events)