import os

import pytest

from subproc.env import build_environment, concat, to_utf16
from subproc.errors import InvalidArgument
from subproc.options import EnvBehavior


def test_concat_keeps_order():
    assert concat(["A=1", "B=2"], ["C=3"]) == ["A=1", "B=2", "C=3"]


def test_concat_none_sides():
    assert concat(None, None) == []
    assert concat(["A=1"], None) == ["A=1"]
    assert concat(None, ["B=2"]) == ["B=2"]


def test_concat_keeps_duplicates():
    assert concat(["A=1"], ["A=2"]) == ["A=1", "A=2"]


def test_empty_environment_only_extra():
    assert build_environment(EnvBehavior.EMPTY, {"PROJECT": "REPROC"}) == [
        "PROJECT=REPROC"
    ]


def test_empty_environment_without_extra():
    assert build_environment(EnvBehavior.EMPTY, None) == []


def test_extend_starts_with_parent(monkeypatch):
    monkeypatch.setenv("SUBPROC_TEST_VAR", "value")
    result = build_environment(EnvBehavior.EXTEND, ["EXTRA=1"])
    assert "SUBPROC_TEST_VAR=value" in result
    assert result[-1] == "EXTRA=1"
    assert len(result) == len(os.environ) + 1


def test_sequence_extra_kept_in_order():
    extra = ["B=2", "A=1"]
    assert build_environment(EnvBehavior.EMPTY, extra) == extra


def test_bad_entry_rejected():
    with pytest.raises(InvalidArgument):
        build_environment(EnvBehavior.EMPTY, ["NOEQUALS"])


def test_string_extra_rejected():
    with pytest.raises(InvalidArgument):
        build_environment(EnvBehavior.EMPTY, "A=1")


def test_unknown_behavior_rejected():
    with pytest.raises(InvalidArgument):
        build_environment(7, None)


def test_to_utf16_ascii():
    assert to_utf16("hi") == b"h\x00i\x00"


@pytest.mark.parametrize("text", ["", "A=1\0B=2\0\0", "caf\u00e9", "\U0001f600"])
def test_to_utf16_round_trip(text):
    assert to_utf16(text).decode("utf-16-le") == text
    assert to_utf16(text.encode("utf-8")) == to_utf16(text)


def test_to_utf16_rejects_invalid_utf8():
    with pytest.raises(InvalidArgument):
        to_utf16(b"\xff\xfe")


def test_to_utf16_rejects_other_types():
    with pytest.raises(InvalidArgument):
        to_utf16(42)