import pytest

from subproc.cmdline import (
    escape_argument,
    join_arguments,
    join_environment,
    should_escape,
)


def _parse(command_line):
    """Split a command line with the Windows runtime's rules."""
    args = []
    current = []
    in_arg = False
    quoted = False
    position = 0
    while position < len(command_line):
        char = command_line[position]
        if char == "\\":
            count = 0
            while position < len(command_line) and command_line[position] == "\\":
                count += 1
                position += 1
            if position < len(command_line) and command_line[position] == '"':
                current.append("\\" * (count // 2))
                if count % 2:
                    current.append('"')
                    position += 1
            else:
                current.append("\\" * count)
            in_arg = True
            continue
        if char == '"':
            quoted = not quoted
            in_arg = True
        elif char in " \t" and not quoted:
            if in_arg:
                args.append("".join(current))
                current = []
                in_arg = False
        else:
            current.append(char)
            in_arg = True
        position += 1
    if in_arg:
        args.append("".join(current))
    return args


@pytest.mark.parametrize("argument", ["a b", "a\tb", "a\nb", "a\vb", 'a"b'])
def test_should_escape_special(argument):
    assert should_escape(argument) is True


@pytest.mark.parametrize("argument", ["", "abc", "C:\\path\\to", "-DX=1"])
def test_should_not_escape_plain(argument):
    assert should_escape(argument) is False


@pytest.mark.parametrize("argument", ["abc", "C:\\dir\\", ""])
def test_plain_argument_unchanged(argument):
    assert escape_argument(argument) == argument


def test_escape_space():
    assert escape_argument("a b") == '"a b"'


def test_escape_quote():
    assert escape_argument('a"b') == '"a\\"b"'


def test_escape_trailing_backslash():
    assert escape_argument("a b\\") == '"a b\\\\"'


@pytest.mark.parametrize(
    "argument",
    [
        "a b",
        'say "hi"',
        'back\\"slash',
        'two\\\\"slashes',
        "end with \\",
        "end with \\\\",
        '"',
        'x\\ y\\\\ "z"\\',
        "tab\there",
    ],
)
def test_escape_round_trip(argument):
    assert _parse(escape_argument(argument)) == [argument]


def test_join_round_trip():
    argv = ["cmake", "-G", "Ninja Build", 'quote"d', "C:\\dir with space\\"]
    assert _parse(join_arguments(argv)) == argv


def test_join_single_space_between_plain():
    assert join_arguments(["cmake", "-G", "Ninja"]) == "cmake -G Ninja"


def test_join_environment_layout():
    assert join_environment(["A=1", "B=2"]) == "A=1\0B=2\0\0"


def test_join_environment_empty():
    assert join_environment([]) == "\0"


def test_join_environment_splits_back():
    env = ["IP=127.0.0.1", "PORT=8080"]
    block = join_environment(env)
    assert block.endswith("\0\0")
    assert block[:-2].split("\0") == env