"""Exceptions raised while starting and managing child processes."""

from __future__ import annotations

import errno as _errno
import os


class ReprocError(OSError):
    """Base class of every error reported by this package."""

    default_errno: int | None = None

    def __init__(self, *args: object) -> None:
        code = self.default_errno
        if code is not None:
            if not args:
                args = (code, os.strerror(code))
            elif len(args) == 1 and isinstance(args[0], str):
                args = (code, args[0])
        super().__init__(*args)


class InvalidArgument(ReprocError, ValueError):
    """An invalid argument or option was passed."""

    default_errno = _errno.EINVAL


class TimedOut(ReprocError, TimeoutError):
    """A timeout or deadline expired."""

    default_errno = _errno.ETIMEDOUT


class BrokenPipe(ReprocError, BrokenPipeError):
    """The child process closed one of its streams."""

    default_errno = _errno.EPIPE


class WouldBlock(ReprocError, BlockingIOError):
    """A nonblocking read or write would have blocked."""

    default_errno = _errno.EAGAIN


def strerror(error: int | BaseException | type[BaseException]) -> str:
    """Return a human readable description of ``error``.

    ``error`` may be an exception, an exception class of this package or an
    error number; negative numbers are treated as negated errno values.
    """
    if isinstance(error, type) and issubclass(error, ReprocError):
        error = error()
    if isinstance(error, BaseException):
        code = getattr(error, "errno", None)
        if code is None:
            return str(error) or type(error).__name__
        return os.strerror(code)
    if isinstance(error, bool) or not isinstance(error, int):
        raise TypeError(f"cannot describe error of type {type(error).__name__}")
    return os.strerror(abs(error))