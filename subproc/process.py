"""Start child processes, wait for them and send them signals.

On POSIX systems the child is created with ``fork`` and ``exec``: signal
handlers and the signal mask are reset in the child, every file descriptor
that is not explicitly handed over is closed, and errors that happen in the
child before ``exec`` are reported back to the parent through a pipe.
"""

from __future__ import annotations

import errno as _errno
import os
import signal
import socket
import struct
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Optional, Union

from .cmdline import join_arguments
from .env import EnvEntries, build_environment
from .errors import InvalidArgument
from .options import SIGKILL as _KILLED_STATUS
from .options import SIGTERM as _TERMINATED_STATUS
from .options import EnvBehavior

_WINDOWS = os.name == "nt"

MAX_FD_LIMIT = 1024 * 1024
_INT_MAX = 2**31 - 1
_ERRNO = struct.Struct("=i")
# Exit code of a process stopped by a console CTRL-BREAK event.
_CTRL_BREAK_EXIT = 3221225786

Handle = Union[int, socket.socket, Any]

_children: dict[int, subprocess.Popen] = {}


@dataclass(frozen=True)
class ProcessOptions:
    """How to start one child process.

    ``stdin``, ``stdout`` and ``stderr`` become the child's standard streams;
    a value of ``None`` leaves that stream closed. ``exit`` is inherited by
    the child as is, so its other end sees the child exit.
    """

    env_behavior: EnvBehavior = EnvBehavior.EXTEND
    env_extra: EnvEntries = None
    working_directory: Optional[Union[str, os.PathLike]] = None
    stdin: Optional[Handle] = None
    stdout: Optional[Handle] = None
    stderr: Optional[Handle] = None
    exit: Optional[Handle] = None


def path_is_relative(path: Union[str, bytes, os.PathLike]) -> bool:
    """Return whether ``path`` is relative and contains a slash after its first character.

    Bare program names are not relative: they are looked up in ``PATH``.
    """
    path = os.fspath(path)
    slash = b"/" if isinstance(path, bytes) else "/"
    return len(path) > 0 and path[:1] != slash and slash in path[1:]


def path_prepend_cwd(path: Union[str, bytes, os.PathLike]) -> Union[str, bytes]:
    """Return ``path`` prefixed with the current working directory."""
    path = os.fspath(path)
    if isinstance(path, bytes):
        cwd, slash = os.getcwdb(), b"/"
    else:
        cwd, slash = os.getcwd(), "/"
    if not cwd.endswith(slash):
        cwd += slash
    return cwd + path


def parse_status(status: int) -> int:
    """Turn a wait status into an exit status; a signal ``n`` gives ``128 + n``."""
    if os.WIFEXITED(status):
        return os.WEXITSTATUS(status)
    return os.WTERMSIG(status) + 128


def _fd(handle: Optional[Handle]) -> Optional[int]:
    if handle is None:
        return None
    if isinstance(handle, bool):
        raise InvalidArgument("a handle must be a descriptor or have fileno()")
    if isinstance(handle, int):
        return handle
    try:
        return handle.fileno()
    except (AttributeError, OSError, ValueError) as exc:
        raise InvalidArgument("a handle must be a descriptor or have fileno()") from exc


def _env_mapping(entries: Sequence[str]) -> dict[str, str]:
    mapping: dict[str, str] = {}
    for entry in entries:
        name, _, value = entry.partition("=")
        mapping[name] = value
    return mapping


def _arguments(argv: Optional[Sequence[Any]]) -> Optional[list]:
    if argv is None:
        return None
    if isinstance(argv, (str, bytes)):
        raise InvalidArgument("argv must be a sequence of arguments")
    args = [os.fspath(argument) for argument in argv]
    if not args or not args[0]:
        raise InvalidArgument("argv must name a program to run")
    return args


def start(argv: Optional[Sequence[Any]], options: ProcessOptions) -> int:
    """Start a child process running ``argv`` and return its process id.

    With ``argv`` of ``None`` the process is forked without ``exec``: the
    call returns 0 in the child and the child's id in the parent. Errors in
    the child before ``exec`` are raised in the parent as ``OSError``.
    """
    args = _arguments(argv)
    env = _env_mapping(build_environment(options.env_behavior, options.env_extra))
    working_directory = (
        None
        if options.working_directory is None
        else os.fspath(options.working_directory)
    )
    if _WINDOWS:
        if args is None:
            raise InvalidArgument("fork is not supported on this platform")
        return _windows_start(args, options, env, working_directory)

    program = None
    if args is not None:
        program = args[0]
        # Resolve relative programs against our directory, not the child's.
        if working_directory is not None and path_is_relative(program):
            program = path_prepend_cwd(program)

    redirect = [_fd(options.stdin), _fd(options.stdout), _fd(options.stderr)]
    exit_fd = _fd(options.exit)

    read_end, write_end = os.pipe()
    keep = {fd for fd in (*redirect, exit_fd, read_end, write_end) if fd is not None}

    # Parent signal handlers must not run in the child before it resets them.
    old_mask = signal.pthread_sigmask(signal.SIG_SETMASK, signal.valid_signals())
    try:
        pid = os.fork()
    except OSError:
        signal.pthread_sigmask(signal.SIG_SETMASK, old_mask)
        os.close(read_end)
        os.close(write_end)
        raise

    if pid == 0:
        _child(program, args, env, working_directory, redirect, exit_fd, keep,
               read_end, write_end)
        return 0

    signal.pthread_sigmask(signal.SIG_SETMASK, old_mask)
    os.close(write_end)
    try:
        report = _read_all(read_end)
    finally:
        os.close(read_end)

    if len(report) >= _ERRNO.size:
        (code,) = _ERRNO.unpack_from(report)
        if code > 0:
            os.waitpid(pid, 0)
            raise OSError(code, os.strerror(code))
    return pid


def _read_all(fd: int) -> bytes:
    chunks = []
    while chunk := os.read(fd, 64):
        chunks.append(chunk)
    return b"".join(chunks)


def _max_fd() -> int:
    import resource

    soft, _ = resource.getrlimit(resource.RLIMIT_NOFILE)
    if soft == resource.RLIM_INFINITY or soft > _INT_MAX:
        return _INT_MAX
    return soft - 1


def _close_all_except(keep: set[int], max_fd: int) -> None:
    low = 0
    for fd in sorted(fd for fd in keep if 0 <= fd < max_fd):
        if fd > low:
            os.closerange(low, fd)
        low = max(low, fd + 1)
    if low < max_fd:
        os.closerange(low, max_fd)


def _reset_signals() -> None:
    for signum in range(1, 32):
        try:
            signal.signal(signum, signal.SIG_DFL)
        except ValueError:
            continue
        except OSError as exc:
            if exc.errno != _errno.EINVAL:
                raise


def _child(program, args, env, working_directory, redirect, exit_fd, keep,
           read_end, write_end) -> None:
    """Prepare the forked child; exec or return, exit on any failure."""
    try:
        _reset_signals()
        signal.pthread_sigmask(signal.SIG_SETMASK, ())

        max_fd = _max_fd()
        if max_fd > MAX_FD_LIMIT:
            raise OSError(_errno.EMFILE, os.strerror(_errno.EMFILE))
        _close_all_except(keep, max_fd)

        for target, fd in enumerate(redirect):
            if fd is None:
                continue
            os.dup2(fd, target)
            if fd != target:
                os.set_inheritable(fd, False)
            else:
                os.set_inheritable(target, True)

        if exit_fd is not None:
            os.set_inheritable(exit_fd, True)

        if working_directory is not None:
            os.chdir(working_directory)

        if args is not None:
            os.execvpe(program, args, env)

        os.environ.clear()
        os.environ.update(env)
    except BaseException as exc:  # noqa: BLE001 - the child must never return
        code = getattr(exc, "errno", None)
        if not isinstance(code, int) or code <= 0:
            code = _errno.EINVAL
        try:
            os.write(write_end, _ERRNO.pack(code))
        finally:
            os._exit(1)

    os.close(read_end)
    os.close(write_end)


def _windows_stream(handle: Optional[Handle], opened: list[int]) -> Any:
    if handle is None:
        return subprocess.DEVNULL
    if isinstance(handle, socket.socket):
        import msvcrt

        fd = msvcrt.open_osfhandle(handle.dup().detach(), 0)
        opened.append(fd)
        return fd
    return _fd(handle)


def _windows_start(args: list, options: ProcessOptions, env: dict[str, str],
                   working_directory: Optional[str]) -> int:
    opened: list[int] = []
    inherit: list[int] = []
    if options.exit is not None:
        if isinstance(options.exit, socket.socket):
            exit_handle = options.exit.fileno()
        else:
            import msvcrt

            exit_handle = msvcrt.get_osfhandle(_fd(options.exit))
        os.set_handle_inheritable(exit_handle, True)
        inherit.append(exit_handle)

    startupinfo = subprocess.STARTUPINFO(lpAttributeList={"handle_list": inherit})
    startupinfo.dwFlags |= subprocess.STARTF_USESHOWWINDOW
    startupinfo.wShowWindow = subprocess.SW_HIDE
    try:
        child = subprocess.Popen(
            join_arguments(args),
            stdin=_windows_stream(options.stdin, opened),
            stdout=_windows_stream(options.stdout, opened),
            stderr=_windows_stream(options.stderr, opened),
            cwd=working_directory,
            env=env,
            close_fds=True,
            startupinfo=startupinfo,
            creationflags=subprocess.CREATE_NEW_PROCESS_GROUP,
        )
    finally:
        for fd in opened:
            os.close(fd)
    _children[child.pid] = child
    return child.pid


def wait(pid: int) -> int:
    """Wait for the child ``pid`` to exit and return its exit status."""
    if _WINDOWS:
        child = _children.pop(pid, None)
        if child is None:
            raise ChildProcessError(_errno.ECHILD, os.strerror(_errno.ECHILD))
        status = child.wait()
        return _TERMINATED_STATUS if status == _CTRL_BREAK_EXIT else status
    _, status = os.waitpid(pid, 0)
    return parse_status(status)


def terminate(pid: int) -> None:
    """Ask the child ``pid`` to stop (``SIGTERM``, or ``CTRL-BREAK`` on Windows)."""
    if _WINDOWS:
        os.kill(pid, signal.CTRL_BREAK_EVENT)
    else:
        os.kill(pid, signal.SIGTERM)


def kill(pid: int) -> None:
    """Stop the child ``pid`` at once; its exit status becomes ``128 + 9``."""
    if _WINDOWS:
        # Any other value makes Windows terminate with that exit code.
        os.kill(pid, _KILLED_STATUS)
    else:
        os.kill(pid, signal.SIGKILL)