import pytest

from subproc import pipe
from subproc.errors import BrokenPipe, InvalidArgument, WouldBlock
from subproc.pipe import EVENT_IN, EVENT_OUT, PipeEvent


@pytest.fixture
def endpoints():
    read, write = pipe.create()
    state = {"read": read, "write": write}
    yield state
    pipe.close(state["read"])
    pipe.close(state["write"])


def test_round_trip(endpoints):
    written = pipe.write_to(endpoints["write"], b"hello")
    assert written == 5
    assert pipe.read_from(endpoints["read"], 100) == b"hello"


def test_read_limited_by_size(endpoints):
    pipe.write_to(endpoints["write"], b"abcdef")
    first = pipe.read_from(endpoints["read"], 2)
    rest = pipe.read_from(endpoints["read"], 100)
    assert first == b"ab"
    assert first + rest == b"abcdef"


def test_read_after_writer_closed_raises_broken_pipe(endpoints):
    pipe.write_to(endpoints["write"], b"x")
    endpoints["write"] = pipe.close(endpoints["write"])
    assert pipe.read_from(endpoints["read"], 10) == b"x"
    with pytest.raises(BrokenPipe):
        pipe.read_from(endpoints["read"], 10)


def test_write_after_reader_closed_raises_broken_pipe(endpoints):
    endpoints["read"] = pipe.close(endpoints["read"])
    with pytest.raises(BrokenPipe):
        pipe.write_to(endpoints["write"], b"data")


def test_nonblocking_read_would_block(endpoints):
    pipe.set_nonblocking(endpoints["read"], True)
    with pytest.raises(WouldBlock):
        pipe.read_from(endpoints["read"], 10)


def test_nonblocking_can_be_disabled_again(endpoints):
    pipe.set_nonblocking(endpoints["read"], True)
    pipe.set_nonblocking(endpoints["read"], False)
    pipe.write_to(endpoints["write"], b"z")
    assert pipe.read_from(endpoints["read"], 1) == b"z"


def test_read_rejects_non_positive_size(endpoints):
    with pytest.raises(InvalidArgument):
        pipe.read_from(endpoints["read"], 0)


def test_close_none_returns_none():
    assert pipe.close(None) is None


def test_close_returns_none(endpoints):
    endpoints["read"] = pipe.close(endpoints["read"])
    assert endpoints["read"] is None


def test_read_from_closed_marker_is_invalid():
    with pytest.raises(InvalidArgument):
        pipe.read_from(None, 1)


def test_poll_reports_readable(endpoints):
    pipe.write_to(endpoints["write"], b"ready")
    source = PipeEvent(endpoints["read"], EVENT_IN)
    assert pipe.poll([source], 1000) == 1
    assert source.events & EVENT_IN


def test_poll_times_out_without_data(endpoints):
    source = PipeEvent(endpoints["read"], EVENT_IN)
    assert pipe.poll([source], 0) == 0
    assert source.events == 0


def test_poll_reports_writable(endpoints):
    source = PipeEvent(endpoints["write"], EVENT_OUT)
    assert pipe.poll([source], 1000) == 1
    assert source.events & EVENT_OUT


def test_poll_reports_closed_writer(endpoints):
    endpoints["write"] = pipe.close(endpoints["write"])
    source = PipeEvent(endpoints["read"], EVENT_IN)
    assert pipe.poll([source], 1000) == 1
    assert source.events > 0


def test_poll_skips_invalid_sources(endpoints):
    pipe.write_to(endpoints["write"], b"!")
    skipped = PipeEvent(None, EVENT_IN, events=7)
    source = PipeEvent(endpoints["read"], EVENT_IN)
    assert pipe.poll([skipped, source], 1000) == 1
    assert skipped.events == 0
    assert source.events & EVENT_IN


def test_poll_counts_each_ready_source(endpoints):
    pipe.write_to(endpoints["write"], b"both")
    sources = [
        PipeEvent(endpoints["read"], EVENT_IN),
        PipeEvent(endpoints["write"], EVENT_OUT),
    ]
    assert pipe.poll(sources, 1000) == 2
    assert all(source.events for source in sources)