"""Module: errors.py

Date: 2026-10-19

Error kinds raised by the exiftool process proxies.

Callers receive either a response batch or exactly one of these:

- LaunchFailed: the OS could not start the process
- ChannelClosed: I/O on a closed (or concurrently closed) process handle
- CallTimedOut: the per-call watchdog closed the handle (a ChannelClosed)
- ToolReportedError: exiftool wrote an "error..." line on stderr
- ProtocolViolation: stdout ended before the {ready} sentinel
- RetriesExhausted: the keep-alive attempt budget ran out
- ShuttingDown: the proxy was shut down
- UnsupportedFeatureError: the installed exiftool is too old for a feature
"""

from __future__ import annotations

from collections.abc import Sequence


class ExifToolError(RuntimeError):
    """Base class for all exifproxy errors.

    Attributes:
        args_list: Argument list of the call that failed, if known.
        lines: Response lines read before the failure.

    """

    def __init__(
        self,
        message: str,
        *,
        args_list: Sequence[str] | None = None,
        lines: Sequence[str] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.args_list: list[str] = list(args_list) if args_list is not None else []
        self.lines: list[str] = list(lines) if lines is not None else []


class LaunchFailed(ExifToolError):
    """The exiftool process could not be started."""

    def __init__(self, command: Sequence[str], cause: BaseException) -> None:
        self.command = list(command)
        self.cause = cause
        tool = self.command[0] if self.command else "<empty>"
        super().__init__(
            f"Unable to start exiftool using the command {self.command!r}: {cause}. "
            f"Ensure exiftool is installed and runs using the command path '{tool}'.",
            args_list=self.command,
        )


class ChannelClosed(ExifToolError):
    """Read or write attempted on a closed process handle."""

    def __init__(self, message: str = "Stream closed", **kwargs) -> None:
        super().__init__(message, **kwargs)


class CallTimedOut(ChannelClosed):
    """The watchdog closed the process because the call ran too long."""

    def __init__(self, timeout_ms: int, **kwargs) -> None:
        self.timeout_ms = timeout_ms
        super().__init__(f"Process ran too long, closed after {timeout_ms} ms", **kwargs)


class ToolReportedError(ExifToolError):
    """exiftool reported an error for this request on stderr."""

    def __init__(self, error_line: str, **kwargs) -> None:
        self.error_line = error_line
        lines = kwargs.get("lines") or []
        args_list = kwargs.get("args_list") or []
        super().__init__(
            f"{error_line}. {len(lines)} lines were read {list(lines)!r} "
            f"for exiftool with args {list(args_list)!r}.",
            **kwargs,
        )


class ProtocolViolation(ExifToolError):
    """Output stream ended without the {ready} sentinel in stay-open mode."""


class RetriesExhausted(ExifToolError):
    """The keep-alive proxy ran out of attempts."""

    def __init__(self, attempts: int, **kwargs) -> None:
        self.attempts = attempts
        super().__init__(f"Ran out of attempts ({attempts})", **kwargs)


class ShuttingDown(ExifToolError):
    """The proxy is shutting down and no longer accepts calls."""

    def __init__(self, message: str = "Shutting down", **kwargs) -> None:
        super().__init__(message, **kwargs)


class UnsupportedFeatureError(ExifToolError):
    """The installed exiftool version does not support a requested feature."""

    def __init__(self, feature: object, installed: object, required: object) -> None:
        self.feature = feature
        self.installed = installed
        self.required = required
        super().__init__(
            f"Use of feature {feature} requires exiftool version {required} or higher, "
            f"installed version is {installed}"
        )
