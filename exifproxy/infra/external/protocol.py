"""Module: protocol.py

Date: 2026-10-19

Line protocol spoken with exiftool.

In stay-open mode ('-stay_open True -@ -') exiftool reads one argument per
line from stdin, runs the request when it sees '-execute' and terminates its
output with a '{ready}' line. In single-use mode the arguments are passed on
the command line and the output ends when the process exits.

Nothing here interprets tag names or values.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence

STAY_OPEN_ARGS = ("-stay_open", "True")
ARGFILE_STDIN_ARGS = ("-@", "-")
EXECUTE_COMMAND = "-execute"
READY_SENTINEL = "{ready}"
STAY_OPEN_FALSE_COMMAND = "-stay_open\nFalse\n"
VERSION_ARG = "-ver"


def build_keep_alive_command(exiftool_path: str, base_args: Sequence[str] = ()) -> list[str]:
    """argv for a resident exiftool reading requests from stdin."""
    return [exiftool_path, *STAY_OPEN_ARGS, *base_args, *ARGFILE_STDIN_ARGS]


def build_single_use_command(
    exiftool_path: str, base_args: Sequence[str], args: Sequence[str]
) -> list[str]:
    """argv for a one-shot exiftool run."""
    return [exiftool_path, *base_args, *args]


def encode_request(args: Iterable[str]) -> str:
    """Encode one request block: one argument per line plus '-execute'.

    Raises:
        ValueError: If an argument contains a line break; it would split into
            two arguments on the wire.

    """
    lines = []
    for arg in args:
        text = str(arg)
        if "\n" in text or "\r" in text:
            raise ValueError(f"Argument contains a line break: {text!r}")
        lines.append(text)
    lines.append(EXECUTE_COMMAND)
    return "\n".join(lines) + "\n"


def strip_line_ending(line: str) -> str:
    """Remove the trailing newline (and a CR left by Windows builds)."""
    return line.rstrip("\r\n")


def is_ready_line(line: str) -> bool:
    return line == READY_SENTINEL


def is_error_line(line: str) -> bool:
    """exiftool convention: stderr lines starting with 'error' fail the call."""
    return line.lower().startswith("error")


def first_error_line(lines: Iterable[str]) -> str | None:
    """Return the first line following the error convention, if any."""
    for line in lines:
        if is_error_line(line):
            return line
    return None


class EndOfStream(Exception):
    """Raised by read_response when output ends before the sentinel."""

    def __init__(self, lines: list[str]) -> None:
        super().__init__("end of stream before sentinel")
        self.lines = lines


def read_response(
    read_line: Callable[[], str | None],
    keep_alive: bool,
    on_line: Callable[[str], None] | None = None,
) -> list[str]:
    """Collect one response batch.

    Args:
        read_line: Returns the next raw line, or '' / None at end of stream.
        keep_alive: Stop at the sentinel (True) or at end of stream (False).
        on_line: Optional hook called for each collected line.

    Returns:
        Lines in arrival order, line endings removed, sentinel excluded.

    Raises:
        EndOfStream: keep_alive is True and the stream ended first. The
            lines collected so far are attached.

    """
    lines: list[str] = []
    while True:
        raw = read_line()
        if not raw:
            if keep_alive:
                raise EndOfStream(lines)
            return lines
        line = strip_line_ending(raw)
        if keep_alive and is_ready_line(line):
            return lines
        if on_line is not None:
            on_line(line)
        lines.append(line)
