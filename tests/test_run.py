import sys

import pytest

from subproc.errors import InvalidArgument, TimedOut
from subproc.options import Options, Redirect, RedirectType, Stream
from subproc.reproc import Process
from subproc.run import (
    StringSink,
    drain,
    fill,
    filler_buffer,
    run,
    run_ex,
    sink_discard,
)

PY = sys.executable


def test_string_sink_collects_data():
    sink = StringSink()
    assert sink(Stream.IN, b"") == 0
    sink(Stream.OUT, b"ab")
    sink(Stream.ERR, b"cd")
    assert bytes(sink.data) == b"abcd"
    assert sink.text == "abcd"


def test_sink_discard_continues():
    sink = sink_discard()
    assert sink(Stream.OUT, b"anything") == 0


def test_filler_buffer_hands_out_pieces():
    filler = filler_buffer(b"hello")
    assert filler(3) == (b"hel", True)
    assert filler(3) == (b"lo", False)


def test_filler_buffer_empty():
    filler = filler_buffer(b"")
    assert filler(10) == (b"", False)


def test_filler_buffer_round_trip():
    data = bytes(range(256)) * 3
    filler = filler_buffer(data)
    pieces = []
    more = True
    while more:
        chunk, more = filler(100)
        assert len(chunk) <= 100
        pieces.append(chunk)
    assert b"".join(pieces) == data


def test_drain_collects_stdout_and_stderr():
    code = "import sys; sys.stdout.write('out'); sys.stderr.write('err')"
    out, err = StringSink(), StringSink()
    with Process() as process:
        process.start([PY, "-c", code], Options(stderr=Redirect(RedirectType.PIPE)))
        assert drain(process, out, err) == 0
        assert process.wait() == 0
    assert out.text == "out"
    assert err.text == "err"


def test_drain_call_sequence():
    calls = []

    def sink(stream, data):
        calls.append((stream, bytes(data)))
        return 0

    with Process() as process:
        process.start([PY, "-c", "print('x', end='')"])
        assert drain(process, sink, sink) == 0
    assert calls[0] == (Stream.IN, b"")
    assert calls[1] == (Stream.IN, b"")
    assert calls[-1] == (Stream.OUT, b"")
    assert b"".join(data for stream, data in calls if stream == Stream.OUT) == b"x"


def test_drain_stops_on_sink_result():
    def sink(stream, data):
        return 7 if data else 0

    with Process() as process:
        process.start([PY, "-c", "print('data')"])
        assert drain(process, sink, None) == 7


def test_drain_rejects_bad_bufsize():
    with Process() as process:
        process.start([PY, "-c", "pass"])
        with pytest.raises(InvalidArgument):
            drain(process, None, None, 0)


def test_drain_deadline_times_out():
    with Process() as process:
        process.start([PY, "-c", "import time; time.sleep(10)"], Options(deadline=100))
        with pytest.raises(TimedOut):
            drain(process, None, None)


def test_fill_feeds_stdin():
    code = "import sys; sys.stdout.write(sys.stdin.read())"
    payload = b"line one\nline two\n" * 50
    out = StringSink()
    with Process() as process:
        process.start([PY, "-c", code])
        assert fill(process, filler_buffer(payload), 64) == 0
        process.close(Stream.IN)
        drain(process, out, None)
        assert process.wait() == 0
    assert bytes(out.data) == payload


def test_fill_rejects_bad_bufsize():
    with Process() as process:
        process.start([PY, "-c", "pass"])
        with pytest.raises(InvalidArgument):
            fill(process, filler_buffer(b"x"), -1)


def test_run_returns_exit_status():
    assert run([PY, "-c", "raise SystemExit(3)"], Options(discard=True)) == 3


def test_run_default_options():
    assert run([PY, "-c", "pass"]) == 0


def test_run_ex_collects_output():
    out = StringSink()
    status = run_ex([PY, "-c", "print('hi', end='')"], Options(), out, None)
    assert status == 0
    assert out.text == "hi"


def test_run_ex_rejects_fork():
    with pytest.raises(InvalidArgument):
        run_ex(None, Options(fork=True), None, None)