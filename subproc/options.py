"""Options that control how a child process is started and stopped."""

from __future__ import annotations

import dataclasses
import enum
import os
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import IO, Any, Iterator, Union

from .errors import InvalidArgument

SIGKILL = 128 + 9
SIGTERM = 128 + 15

INFINITE = -1
DEADLINE = -2


class Stream(enum.IntEnum):
    """Standard stream of a child process."""

    IN = 0
    OUT = 1
    ERR = 2


class RedirectType(enum.IntEnum):
    """Where a standard stream of the child process goes."""

    DEFAULT = 0
    PIPE = 1
    PARENT = 2
    DISCARD = 3
    STDOUT = 4
    HANDLE = 5
    FILE = 6
    PATH = 7


class Stop(enum.IntEnum):
    """Action taken by one step of stopping a process."""

    NOOP = 0
    WAIT = 1
    TERMINATE = 2
    KILL = 3


class EnvBehavior(enum.IntEnum):
    """Whether the child starts from the parent environment or an empty one."""

    EXTEND = 0
    EMPTY = 1


class Event(enum.IntFlag):
    """Events reported when polling processes."""

    IN = 1 << 0
    OUT = 1 << 1
    ERR = 1 << 2
    EXIT = 1 << 3
    DEADLINE = 1 << 4


@dataclass(frozen=True)
class Redirect:
    """Where to send one standard stream of the child process.

    At most one of ``handle``, ``file`` and ``path`` may be set; when one is,
    ``type`` must be unset or match it.
    """

    type: RedirectType = RedirectType.DEFAULT
    handle: int | None = None
    file: IO[Any] | None = None
    path: str | os.PathLike[str] | None = None

    def _resolved(self, stream: Stream) -> Redirect:
        targets = [
            (RedirectType.HANDLE, self.handle),
            (RedirectType.FILE, self.file),
            (RedirectType.PATH, self.path),
        ]
        given = [kind for kind, value in targets if value is not None]
        if len(given) > 1:
            raise InvalidArgument(
                f"{stream.name} redirect sets more than one of handle, file and path"
            )
        kind = self.type
        if given:
            if kind not in (RedirectType.DEFAULT, given[0]):
                raise InvalidArgument(
                    f"{stream.name} redirect type {kind.name} conflicts with "
                    f"{given[0].name.lower()}"
                )
            kind = given[0]
        elif kind in (RedirectType.HANDLE, RedirectType.FILE, RedirectType.PATH):
            raise InvalidArgument(
                f"{stream.name} redirect type {kind.name} needs a "
                f"{kind.name.lower()}"
            )
        if kind == RedirectType.STDOUT and stream != Stream.ERR:
            raise InvalidArgument("only stderr can be redirected to stdout")
        return dataclasses.replace(self, type=kind)

    @property
    def _is_set(self) -> bool:
        return (
            self.type != RedirectType.DEFAULT
            or self.handle is not None
            or self.file is not None
            or self.path is not None
        )


@dataclass(frozen=True)
class StopAction:
    """One step of stopping a process: an action and how long to wait after it."""

    action: Stop = Stop.NOOP
    timeout: int = 0


@dataclass(frozen=True)
class StopActions:
    """Up to three steps taken, in order, to stop a process."""

    first: StopAction = field(default_factory=StopAction)
    second: StopAction = field(default_factory=StopAction)
    third: StopAction = field(default_factory=StopAction)

    def __iter__(self) -> Iterator[StopAction]:
        return iter((self.first, self.second, self.third))

    def normalized(self) -> StopActions:
        """Return the steps to take; all no-ops mean wait for the deadline, then terminate."""
        if all(step.action == Stop.NOOP for step in self):
            return StopActions(
                StopAction(Stop.WAIT, DEADLINE),
                StopAction(Stop.TERMINATE, INFINITE),
                StopAction(Stop.NOOP, 0),
            )
        return self


EnvExtra = Union[Mapping[str, str], Sequence[str], None]


@dataclass(frozen=True)
class Options:
    """How to start a child process.

    ``deadline`` is in milliseconds; zero means no deadline. ``input`` is
    written to the stdin pipe before the process starts, after which the pipe
    is closed.
    """

    working_directory: str | os.PathLike[str] | None = None
    env: EnvBehavior = EnvBehavior.EXTEND
    env_extra: EnvExtra = None
    stdin: Redirect = field(default_factory=Redirect)
    stdout: Redirect = field(default_factory=Redirect)
    stderr: Redirect = field(default_factory=Redirect)
    parent: bool = False
    discard: bool = False
    file: IO[Any] | None = None
    path: str | os.PathLike[str] | None = None
    stop: StopActions = field(default_factory=StopActions)
    deadline: int = 0
    input: bytes | None = None
    fork: bool = False
    nonblocking: bool = False

    def resolve(self, argv: Sequence[str] | None) -> Options:
        """Check the options against ``argv`` and fill in every default.

        Returns a new ``Options`` in which every redirect has a concrete type,
        ``env_extra`` is a tuple of ``NAME=VALUE`` strings and ``deadline`` is
        ``INFINITE`` when no deadline was given. Raises ``InvalidArgument``
        when options conflict.
        """
        self._check_argv(argv)

        shorthands = [
            name
            for name, value in (
                ("parent", self.parent),
                ("discard", self.discard),
                ("file", self.file is not None),
                ("path", self.path is not None),
            )
            if value
        ]
        if len(shorthands) > 1:
            raise InvalidArgument(
                "only one of parent, discard, file and path may be set: "
                + ", ".join(shorthands)
            )
        if (self.file is not None or self.path is not None) and (
            self.stdout._is_set or self.stderr._is_set
        ):
            raise InvalidArgument(
                "file and path shorthands cannot be combined with stdout or "
                "stderr redirects"
            )
        if self.input is not None and self.stdin._is_set:
            raise InvalidArgument("input cannot be combined with a stdin redirect")

        if self.deadline < 0:
            raise InvalidArgument("deadline must not be negative")

        return dataclasses.replace(
            self,
            env_extra=_normalize_env(self.env_extra),
            stdin=self._default_redirect(Stream.IN, self.stdin),
            stdout=self._default_redirect(Stream.OUT, self.stdout),
            stderr=self._default_redirect(Stream.ERR, self.stderr),
            deadline=INFINITE if self.deadline == 0 else self.deadline,
        )

    def _check_argv(self, argv: Sequence[str] | None) -> None:
        if self.fork:
            if os.name == "nt":
                raise InvalidArgument("fork is not supported on this platform")
            if argv is not None:
                raise InvalidArgument("argv must be None when fork is enabled")
            return
        if argv is None or isinstance(argv, (str, bytes)):
            raise InvalidArgument("argv must be a sequence of arguments")
        if len(argv) == 0:
            raise InvalidArgument("argv must name a program to run")
        if any(argument is None for argument in argv):
            raise InvalidArgument("argv must not contain None")
        if not argv[0]:
            raise InvalidArgument("the program name must not be empty")

    def _default_redirect(self, stream: Stream, redirect: Redirect) -> Redirect:
        if stream == Stream.IN and self.input is not None:
            return Redirect(RedirectType.PIPE)
        resolved = redirect._resolved(stream)
        if resolved.type != RedirectType.DEFAULT:
            return resolved
        if self.parent:
            return Redirect(RedirectType.PARENT)
        if self.discard:
            return Redirect(RedirectType.DISCARD)
        if stream != Stream.IN:
            if self.file is not None:
                return Redirect(RedirectType.FILE, file=self.file)
            if self.path is not None:
                return Redirect(RedirectType.PATH, path=self.path)
        if stream == Stream.ERR:
            return Redirect(RedirectType.PARENT)
        return Redirect(RedirectType.PIPE)


def _normalize_env(extra: EnvExtra) -> tuple[str, ...]:
    if extra is None:
        return ()
    if isinstance(extra, Mapping):
        return tuple(f"{name}={value}" for name, value in extra.items())
    if isinstance(extra, (str, bytes)):
        raise InvalidArgument("env_extra must be a mapping or a sequence of strings")
    entries = tuple(extra)
    for entry in entries:
        if not isinstance(entry, str) or "=" not in entry:
            raise InvalidArgument(f"environment entry {entry!r} is not NAME=VALUE")
    return entries