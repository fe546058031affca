"""Module: exiftool_process.py

Date: 2026-10-19

One running exiftool process plus its line channel.

Works for both modes:
- keep-alive: started with '-stay_open True -@ -', requests are streamed on
  stdin and each response ends with the {ready} sentinel.
- single-use: arguments on the command line, response ends at process exit.

Handles are created and owned by a proxy. They register with the process
registry on spawn so they are closed at interpreter exit even if the owner
never calls close().
"""

from __future__ import annotations

import contextlib
import itertools
import subprocess
import threading
import time
from collections.abc import Sequence

from exifproxy.config import (
    EXIFTOOL_CHARSET,
    EXIFTOOL_DRAIN_JOIN_WAIT_S,
    EXIFTOOL_EOF_EXIT_WAIT_S,
    EXIFTOOL_STDERR_QUEUE_SIZE,
)
from exifproxy.infra.external import protocol
from exifproxy.infra.external.errors import (
    CallTimedOut,
    ChannelClosed,
    LaunchFailed,
    ProtocolViolation,
    ToolReportedError,
)
from exifproxy.infra.external.line_channel import LineChannel
from exifproxy.infra.external.process_registry import ProcessRegistry, get_process_registry
from exifproxy.infra.external.version import VersionNumber
from exifproxy.utils.logging.logger_factory import get_cached_logger

logger = get_cached_logger(__name__)

_handle_ids = itertools.count(1)


class ExifToolProcess:
    """Process handle: spawn, send/await, close.

    Public I/O methods are serialized on an internal lock (one in-flight
    call per handle). close() does not take that lock, so a watchdog can
    close the handle while a call is blocked reading.

    Attributes:
        keep_alive: Started in stay-open mode.
        command: argv used to start the process.
        identity: Unique name used in logs and by the process registry.
        created_at: time.time() at spawn.

    """

    def __init__(
        self,
        command: Sequence[str],
        keep_alive: bool,
        charset: str = EXIFTOOL_CHARSET,
        registry: ProcessRegistry | None = None,
        stderr_capacity: int = EXIFTOOL_STDERR_QUEUE_SIZE,
    ) -> None:
        """Spawn the process.

        Raises:
            LaunchFailed: The OS could not start the command.

        """
        self.keep_alive = keep_alive
        self.command = list(command)
        self.created_at = time.time()
        self._io_lock = threading.RLock()
        self._timed_out_ms: int | None = None
        self._registry = registry if registry is not None else get_process_registry()

        logger.info("[ExifToolProcess] Starting: %s", " ".join(self.command))
        try:
            self.process: subprocess.Popen[str] = subprocess.Popen(
                self.command,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding=charset,
                errors="replace",
                bufsize=1,  # line buffered
            )
        except (OSError, ValueError) as e:
            logger.error("[ExifToolProcess] Launch failed for %s: %s", self.command, e)
            raise LaunchFailed(self.command, e) from e

        self.identity = f"exiftool-{self.process.pid}-{next(_handle_ids)}"
        self.channel = LineChannel(self.process, self.identity, stderr_capacity)
        if not keep_alive:
            # arguments are on argv; stdin is never read
            self.channel.close_write_end()
        self._registry.register(self)
        logger.debug(
            "[ExifToolProcess] %s started (keep_alive=%s)",
            self.identity,
            keep_alive,
            extra={"dev_only": True},
        )

    @classmethod
    def start_keep_alive(
        cls,
        exiftool_path: str,
        base_args: Sequence[str] = (),
        charset: str = EXIFTOOL_CHARSET,
        registry: ProcessRegistry | None = None,
    ) -> ExifToolProcess:
        """Start a resident exiftool reading requests from stdin."""
        return cls(
            protocol.build_keep_alive_command(exiftool_path, base_args),
            keep_alive=True,
            charset=charset,
            registry=registry,
        )

    @property
    def pid(self) -> int | None:
        return self.process.pid

    @property
    def closed(self) -> bool:
        return self.channel.closed

    def is_alive(self) -> bool:
        """True while the handle is open and the OS process still runs."""
        return not self.channel.closed and self.process.poll() is None

    def mark_timed_out(self, timeout_ms: int) -> None:
        """Called by a watchdog right before it closes this handle."""
        self._timed_out_ms = timeout_ms

    @property
    def timed_out(self) -> bool:
        return self._timed_out_ms is not None

    def send_and_await(self, args: Sequence[str]) -> list[str]:
        """Send one request to a stay-open process and read its response.

        Raises:
            ChannelClosed: The handle is (or became) closed, stdin broke, or
                the process exited before the sentinel.
            CallTimedOut: A watchdog closed the handle during the call.
            ProtocolViolation: stdout ended before the sentinel while the
                process kept running.
            ToolReportedError: exiftool wrote an error line on stderr.

        """
        if not self.keep_alive:
            raise ChannelClosed("Not a keep-alive process", args_list=args)
        with self._io_lock:
            self._check_open(args)
            stale = self.channel.take_error_lines()
            if stale:
                logger.debug(
                    "[ExifToolProcess] %s: discarding stale stderr %s",
                    self.identity,
                    stale,
                    extra={"dev_only": True},
                )
            block = protocol.encode_request(args)
            logger.info("[ExifToolProcess] exiftool %s", " ".join(args))
            try:
                self.channel.write(block)
            except ChannelClosed as e:
                self._on_channel_failure()
                raise self._closed_error(args, []) from e
            return self.read_response(args)

    def read_response(self, args: Sequence[str] = ()) -> list[str]:
        """Read one response batch from stdout.

        Keep-alive handles stop at the sentinel; single-use handles read until
        the process closes stdout. stderr is inspected afterwards.
        """
        with self._io_lock:
            self._check_open(args)
            logger.debug(
                "[ExifToolProcess] %s: reading response",
                self.identity,
                extra={"dev_only": True},
            )
            lines: list[str] = []
            try:
                lines = protocol.read_response(
                    self.channel.read_line, self.keep_alive, on_line=lines.append
                )
            except ChannelClosed as e:
                raise self._closed_error(args, lines) from e
            except protocol.EndOfStream as e:
                if self.closed:
                    raise self._closed_error(args, e.lines) from e
                returncode = self._wait_for_exit(EXIFTOOL_EOF_EXIT_WAIT_S)
                self._on_channel_failure()
                if returncode is not None:
                    # the process died; the supervisor may restart it
                    raise ChannelClosed(
                        f"exiftool exited with code {returncode} before "
                        f"{protocol.READY_SENTINEL}",
                        args_list=args,
                        lines=e.lines,
                    ) from e
                raise ProtocolViolation(
                    f"exiftool output ended without {protocol.READY_SENTINEL} "
                    f"after {len(e.lines)} lines",
                    args_list=args,
                    lines=e.lines,
                ) from e

            if not self.keep_alive and self.channel.drain is not None:
                # process is exiting, let the drain see the rest of stderr
                with contextlib.suppress(subprocess.TimeoutExpired):
                    self.process.wait(timeout=EXIFTOOL_DRAIN_JOIN_WAIT_S)
                self.channel.drain.join(EXIFTOOL_DRAIN_JOIN_WAIT_S)

            self._check_errors(args, lines)
            return lines

    def read_line(self) -> str | None:
        """Read a single line, without its line ending (None at end of stream)."""
        with self._io_lock:
            self._check_open(())
            try:
                raw = self.channel.read_line()
            except ChannelClosed as e:
                raise self._closed_error((), []) from e
            return protocol.strip_line_ending(raw) if raw is not None else None

    def _wait_for_exit(self, timeout: float) -> int | None:
        """Return code once the process has exited, None if still running."""
        try:
            return self.process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            return None

    def _check_open(self, args: Sequence[str]) -> None:
        if self.channel.closed:
            raise self._closed_error(args, [])

    def _closed_error(self, args: Sequence[str], lines: Sequence[str]) -> ChannelClosed:
        if self._timed_out_ms is not None:
            return CallTimedOut(self._timed_out_ms, args_list=args, lines=lines)
        return ChannelClosed(args_list=args, lines=lines)

    def _check_errors(self, args: Sequence[str], lines: list[str]) -> None:
        errors = self.channel.take_error_lines()
        if not errors:
            return
        error_line = protocol.first_error_line(errors)
        if error_line is not None:
            raise ToolReportedError(error_line, args_list=args, lines=lines)
        logger.debug(
            "[ExifToolProcess] %s: stderr: %s",
            self.identity,
            " ".join(errors),
            extra={"dev_only": True},
        )

    def _on_channel_failure(self) -> None:
        try:
            self.close()
        except Exception as e:
            logger.debug("[ExifToolProcess] %s: close after failure raised: %s", self.identity, e)

    def close(self) -> None:
        """Close streams, stop the process and unregister. Idempotent."""
        try:
            performed = self.channel.close(
                protocol.STAY_OPEN_FALSE_COMMAND if self.keep_alive else None
            )
        finally:
            self._registry.unregister(self)
        if performed:
            logger.debug(
                "[ExifToolProcess] %s closed (returncode=%s)",
                self.identity,
                self.process.returncode,
                extra={"dev_only": True},
            )

    def __enter__(self) -> ExifToolProcess:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def __repr__(self) -> str:
        state = "closed" if self.closed else "open"
        return f"ExifToolProcess({self.identity}, keep_alive={self.keep_alive}, {state})"

    @staticmethod
    def execute_to_results(
        exiftool_path: str,
        args: Sequence[str],
        charset: str = EXIFTOOL_CHARSET,
        registry: ProcessRegistry | None = None,
    ) -> list[str]:
        """Run exiftool once with args and return its output lines."""
        command = protocol.build_single_use_command(exiftool_path, (), args)
        with ExifToolProcess(command, keep_alive=False, charset=charset, registry=registry) as proc:
            return proc.read_response(args)

    @staticmethod
    def read_version(
        exiftool_path: str,
        charset: str = EXIFTOOL_CHARSET,
        registry: ProcessRegistry | None = None,
    ) -> VersionNumber:
        """Read the installed exiftool version with '-ver'."""
        lines = ExifToolProcess.execute_to_results(
            exiftool_path, [protocol.VERSION_ARG], charset=charset, registry=registry
        )
        first = next((line for line in lines if line.strip()), "")
        try:
            return VersionNumber.parse(first)
        except ValueError as e:
            raise ValueError(
                f"Unable to check version number of exiftool {exiftool_path!r}: got {first!r}"
            ) from e
