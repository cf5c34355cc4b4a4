# subproc

A library for running child processes with full control over their
standard streams, their environment, their deadline and how they are
stopped.

## Features

- Redirect each of stdin, stdout and stderr to a pipe, the parent's own
  stream, the null device, an open file object, an operating-system handle
  or a path (`RedirectType` in `subproc.options`). stderr can also be sent
  to the child's stdout.
- Start the child with the parent's environment plus extra variables
  (`EnvBehavior.EXTEND`), or with only the extra variables
  (`EnvBehavior.EMPTY`).
- Set a working directory and a deadline in milliseconds.
- Write a block of `input` to stdin before the child starts.
- Put the parent's pipe ends in nonblocking mode.
- On POSIX systems, fork without running a program (`fork=True`, `argv`
  of `None`): `Process.start` then returns 0 in the child.
- Poll several processes at once for writable stdin, readable stdout or
  stderr, exit and deadline expiry.
- Stop a process in up to three steps (wait, terminate, kill), each with its
  own timeout.
- Drain all output into sinks, or feed stdin from a filler, with one call.

## Installation

```
pip install subproc
```

## Running a command

`run` starts a command with its streams shared with the parent (unless
`discard`, `file` or `path` is set in the options), waits for it to stop
and returns its exit status:

```python
from subproc.run import run
from subproc.options import Options

status = run(["git", "status"], Options())
```

## Capturing output

`run_ex` takes a sink for stdout and one for stderr. A sink is any callable
taking `(stream, data)`; if it returns a truthy value, draining stops.
`StringSink` collects everything it receives in its `data` bytearray and
offers it decoded as `text`. `sink_discard()` returns a sink that throws
output away; passing `None` does the same.

```python
from subproc.run import run_ex, StringSink
from subproc.options import Options

output = StringSink()
status = run_ex(["echo", "hello"], Options(), output, output)
print(output.text)
```

`drain(process, out, err, bufsize)` and `fill(process, filler, bufsize)`
work on an already started `Process`. A filler is called with the buffer
size and returns `(data, more)`; `filler_buffer(data)` makes one from a
bytes object.

## Options

`subproc.options.Options` is a frozen dataclass:

| Field | Meaning |
| --- | --- |
| `working_directory` | directory the child runs in |
| `env`, `env_extra` | `EnvBehavior` and extra variables, as a mapping or `NAME=VALUE` strings |
| `stdin`, `stdout`, `stderr` | a `Redirect(type, handle, file, path)` for each stream |
| `parent`, `discard`, `file`, `path` | shorthands applied to streams left unset |
| `stop` | `StopActions` used when the process is stopped on leaving its block |
| `deadline` | milliseconds the child may run; 0 means none |
| `input` | bytes written to stdin before the child starts; stdin is then closed |
| `fork` | fork without running a program (POSIX only) |
| `nonblocking` | nonblocking pipes |

By default stdin and stdout are pipes and stderr goes to the parent's
stderr. Conflicting options raise `InvalidArgument`.

`StopActions(first, second, third)` holds `StopAction(action, timeout)`
steps with `Stop.NOOP`, `Stop.WAIT`, `Stop.TERMINATE` or `Stop.KILL`. When
all three are no-ops, the process is waited on until its deadline (or
forever without one), then terminated and waited on forever.

Timeouts are in milliseconds; `INFINITE` (-1) waits forever and `DEADLINE`
(-2) makes `Process.wait` wait until the deadline. A child killed by a
signal `n` reports exit status `128 + n`.

## Working with a process directly

`subproc.reproc.Process` is a context manager. On leaving the block it
stops a running child with the stop actions from its options and closes
every pipe.

```python
from subproc.reproc import Process
from subproc.options import Options, Stream

with Process() as process:
    process.start(["cat"], Options())
    process.write(b"some input\n")
    process.close(Stream.IN)
    data = process.read(Stream.OUT, 4096)
    status = process.wait(-1)
```

`Process` also has `pid()`, `terminate()`, `kill()`, `stop(stop)` and
`destroy()`.

## Polling

`poll` waits on several processes at once and fills in the events that
occurred on each `EventSource`. It returns the number of processes with
events, 0 when the timeout expires, and raises `BrokenPipe` when there is
nothing left to poll.

```python
from subproc.reproc import EventSource, poll
from subproc.options import Event

sources = [EventSource(process, Event.OUT | Event.EXIT)]
poll(sources, 1000)
if sources[0].events & Event.EXIT:
    ...
```

## Errors

Errors are raised as subclasses of `subproc.errors.ReprocError`:
`TimedOut` when a timeout or deadline expires, `BrokenPipe` when a stream is
closed, `WouldBlock` when a nonblocking read or write cannot go ahead, and
`InvalidArgument` when a call or option is not allowed. Operating-system
failures are raised as `OSError`. `subproc.errors.strerror` describes an
error, an error class or an error number.

## What this package does not do

It is a library only: it installs no command-line tool.

## Running the tests

```
pip install -e .[test]
pytest
```