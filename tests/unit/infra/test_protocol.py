"""
Tests for the exiftool line protocol helpers.

Date: 2026-10-19
"""

from __future__ import annotations

import pytest

from exifproxy.infra.external import protocol


def _reader(lines):
    """read_line callable over a list of raw lines, then end of stream."""
    it = iter(lines)
    return lambda: next(it, None)


class TestCommandLines:
    """Tests for launch argv construction."""

    def test_keep_alive_command(self) -> None:
        """Stay-open flags come first, the stdin argfile last."""
        cmd = protocol.build_keep_alive_command("/usr/bin/exiftool", ["-use", "MWG"])
        assert cmd == ["/usr/bin/exiftool", "-stay_open", "True", "-use", "MWG", "-@", "-"]

    def test_single_use_command(self) -> None:
        cmd = protocol.build_single_use_command("exiftool", ["-use", "MWG"], ["-ver"])
        assert cmd == ["exiftool", "-use", "MWG", "-ver"]


class TestEncodeRequest:
    """Tests for request encoding."""

    def test_one_argument_per_line_then_execute(self) -> None:
        block = protocol.encode_request(["-n", "-S", "-FileSize", "img.jpg"])
        assert block == "-n\n-S\n-FileSize\nimg.jpg\n-execute\n"

    def test_empty_request_is_just_execute(self) -> None:
        assert protocol.encode_request([]) == "-execute\n"

    @pytest.mark.parametrize("bad", ["a\nb", "a\rb"])
    def test_line_break_in_argument_rejected(self, bad: str) -> None:
        """An embedded newline would split one argument into two."""
        with pytest.raises(ValueError, match="line break"):
            protocol.encode_request(["-Comment=" + bad])


class TestErrorConvention:
    """Tests for the stderr error convention."""

    @pytest.mark.parametrize("line", ["Error: bad tag", "error: x", "ERROR"])
    def test_error_lines(self, line: str) -> None:
        assert protocol.is_error_line(line)

    @pytest.mark.parametrize("line", ["Warning: deprecated", "  Error later", "No errors"])
    def test_non_error_lines(self, line: str) -> None:
        assert not protocol.is_error_line(line)

    def test_first_error_line(self) -> None:
        lines = ["Warning: deprecated", "Error: bad tag", "Error: second"]
        assert protocol.first_error_line(lines) == "Error: bad tag"
        assert protocol.first_error_line(["Warning: only"]) is None


class TestReadResponse:
    """Tests for response decoding."""

    @pytest.mark.parametrize("count", [0, 1, 5])
    def test_stops_at_sentinel_and_excludes_it(self, count: int) -> None:
        """Batches of 0, 1 and N lines end exactly at {ready}."""
        body = [f"Tag{i}: {i}\n" for i in range(count)]
        raw = [*body, "{ready}\n", "next batch\n"]
        lines = protocol.read_response(_reader(raw), keep_alive=True)
        assert lines == [f"Tag{i}: {i}" for i in range(count)]

    def test_sentinel_must_match_exactly(self) -> None:
        raw = ["{ready} \n", "x{ready}\n", "{ready}\r\n"]
        lines = protocol.read_response(_reader(raw), keep_alive=True)
        assert lines == ["{ready} ", "x{ready}"]

    def test_single_use_reads_to_end_of_stream(self) -> None:
        raw = ["FileSize: 1024\n", "{ready}\n", "ImageWidth: 640\n"]
        lines = protocol.read_response(_reader(raw), keep_alive=False)
        assert lines == ["FileSize: 1024", "{ready}", "ImageWidth: 640"]

    def test_empty_string_is_end_of_stream(self) -> None:
        raw = iter(["a\n", ""])
        lines = protocol.read_response(lambda: next(raw), keep_alive=False)
        assert lines == ["a"]

    def test_end_of_stream_before_sentinel(self) -> None:
        """Keep-alive output ending early raises with the partial batch."""
        with pytest.raises(protocol.EndOfStream) as exc_info:
            protocol.read_response(_reader(["a\n", "b\n"]), keep_alive=True)
        assert exc_info.value.lines == ["a", "b"]

    def test_on_line_hook_sees_every_line(self) -> None:
        seen: list[str] = []
        protocol.read_response(_reader(["a\n", "b\n", "{ready}\n"]), True, on_line=seen.append)
        assert seen == ["a", "b"]

    def test_example_scenario(self) -> None:
        lines = protocol.read_response(_reader(["FileSize: 1024\n", "{ready}\n"]), True)
        assert lines == ["FileSize: 1024"]
