"""Module: line_channel.py

Date: 2026-10-19

Text line transport over a spawned process's standard streams.

One write end (stdin) for request lines, one read end (stdout) for response
lines and a StderrDrain thread that keeps reading stderr into a small bounded
buffer. stderr has to be drained continuously: once its pipe buffer fills,
exiftool blocks on a diagnostic write and the stdout exchange deadlocks.
"""

from __future__ import annotations

import contextlib
import subprocess
import threading
from collections import deque
from typing import IO

from exifproxy.config import (
    EXIFTOOL_CLOSE_GRACEFUL_WAIT_S,
    EXIFTOOL_CLOSE_KILL_WAIT_S,
    EXIFTOOL_CLOSE_TERMINATE_WAIT_S,
    EXIFTOOL_DRAIN_JOIN_WAIT_S,
    EXIFTOOL_STDERR_QUEUE_SIZE,
)
from exifproxy.infra.external.errors import ChannelClosed
from exifproxy.utils.logging.logger_factory import get_cached_logger

logger = get_cached_logger(__name__)


class StderrDrain(threading.Thread):
    """Daemon thread reading stderr lines into a bounded buffer.

    Lines are trimmed and blank lines dropped. When the buffer is full the
    oldest line is discarded; the thread itself never blocks on the buffer.
    """

    def __init__(
        self,
        stream: IO[str],
        name: str = "exiftool-stderr-drain",
        capacity: int = EXIFTOOL_STDERR_QUEUE_SIZE,
    ) -> None:
        super().__init__(name=name, daemon=True)
        self._stream = stream
        self._lines: deque[str] = deque(maxlen=capacity)
        self._lock = threading.Lock()
        self.dropped = 0

    def run(self) -> None:
        try:
            for raw in iter(self._stream.readline, ""):
                line = raw.strip()
                if line:
                    self._append(line)
        except (OSError, ValueError) as e:
            # stream closed underneath us during teardown
            logger.debug("[StderrDrain] %s stopped: %s", self.name, e, extra={"dev_only": True})

    def _append(self, line: str) -> None:
        with self._lock:
            if len(self._lines) == self._lines.maxlen:
                self.dropped += 1
            self._lines.append(line)

    def has_lines(self) -> bool:
        with self._lock:
            return bool(self._lines)

    def take_lines(self) -> list[str]:
        """Remove and return every buffered line (empty list if none)."""
        with self._lock:
            lines = list(self._lines)
            self._lines.clear()
            return lines

    def close(self, timeout: float = EXIFTOOL_DRAIN_JOIN_WAIT_S) -> None:
        """Wait for the thread to see end-of-stream, then close the stream."""
        if self.is_alive() and self is not threading.current_thread():
            self.join(timeout)
        if self.is_alive():
            logger.debug(
                "[StderrDrain] %s still running after %.2fs",
                self.name,
                timeout,
                extra={"dev_only": True},
            )
            return
        with contextlib.suppress(OSError, ValueError):
            self._stream.close()


class LineChannel:
    """Line-oriented I/O on a subprocess.Popen opened in text mode.

    write_line/read_line fail fast with ChannelClosed once close() has run,
    and a read blocked in another thread is released by close() because the
    process is stopped before the read end is closed.
    """

    def __init__(
        self,
        process: subprocess.Popen,
        name: str = "exiftool",
        stderr_capacity: int = EXIFTOOL_STDERR_QUEUE_SIZE,
    ) -> None:
        self.process = process
        self.name = name
        self._writer: IO[str] | None = process.stdin
        self._reader: IO[str] | None = process.stdout
        self._closed = False
        self._close_lock = threading.Lock()
        self.drain: StderrDrain | None = None
        if process.stderr is not None:
            self.drain = StderrDrain(process.stderr, f"{name}-err-reader", stderr_capacity)
            self.drain.start()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def writable(self) -> bool:
        return self._writer is not None

    def write_line(self, text: str) -> None:
        """Write text plus a newline and flush."""
        self.write(text + "\n")

    def write(self, block: str) -> None:
        """Write a pre-encoded block of lines and flush."""
        # close() may reset _writer from another thread at any point
        writer = self._writer
        if self._closed:
            raise ChannelClosed()
        if writer is None:
            raise ChannelClosed("Write end not available (single-use process)")
        try:
            writer.write(block)
            writer.flush()
        except (BrokenPipeError, OSError, ValueError) as e:
            raise ChannelClosed(f"Stream closed while writing: {e}") from e

    def read_line(self) -> str | None:
        """Blocking read of one raw line.

        Returns:
            The line including its line ending, or None at end of stream.

        """
        reader = self._reader
        if self._closed or reader is None:
            raise ChannelClosed()
        try:
            line = reader.readline()
        except (OSError, ValueError) as e:
            if self._closed:
                raise ChannelClosed() from e
            raise
        if self._closed:
            raise ChannelClosed()
        return line or None

    def take_error_lines(self) -> list[str]:
        return self.drain.take_lines() if self.drain is not None else []

    def close_write_end(self) -> None:
        """Close stdin so a one-shot process never waits on it."""
        writer, self._writer = self._writer, None
        if writer is not None:
            with contextlib.suppress(OSError, ValueError):
                writer.close()

    def close(
        self,
        shutdown_command: str | None = None,
        *,
        graceful_wait_s: float = EXIFTOOL_CLOSE_GRACEFUL_WAIT_S,
        terminate_wait_s: float = EXIFTOOL_CLOSE_TERMINATE_WAIT_S,
        kill_wait_s: float = EXIFTOOL_CLOSE_KILL_WAIT_S,
    ) -> bool:
        """Tear the channel and its process down. Idempotent.

        Every step runs even if an earlier one failed. The read end is closed
        only after the process has been stopped: a reader blocked in another
        thread holds the stream lock until it sees end-of-stream.

        Args:
            shutdown_command: Text written before closing stdin, giving the
                process a chance to exit by itself.
            graceful_wait_s: Max seconds to wait for a voluntary exit.
            terminate_wait_s: Max seconds to wait after terminate().
            kill_wait_s: Max seconds to wait after kill().

        Returns:
            True if this call performed the close, False if already closed.

        """
        with self._close_lock:
            if self._closed:
                return False
            self._closed = True

        proc = self.process

        writer = self._writer
        if shutdown_command and writer is not None:
            try:
                writer.write(shutdown_command)
                writer.flush()
                logger.debug(
                    "[LineChannel] %s: shutdown command sent", self.name, extra={"dev_only": True}
                )
            except (BrokenPipeError, OSError, ValueError) as e:
                logger.debug(
                    "[LineChannel] %s: shutdown command failed: %s",
                    self.name,
                    e,
                    extra={"dev_only": True},
                )

        self.close_write_end()

        self._stop_process(
            proc, shutdown_command is not None, graceful_wait_s, terminate_wait_s, kill_wait_s
        )

        reader, self._reader = self._reader, None
        if reader is not None:
            with contextlib.suppress(OSError, ValueError):
                reader.close()

        if self.drain is not None:
            try:
                self.drain.close()
            except Exception as e:
                logger.debug("[LineChannel] %s: drain close failed: %s", self.name, e)

        logger.debug("[LineChannel] %s closed", self.name, extra={"dev_only": True})
        return True

    def _stop_process(
        self,
        proc: subprocess.Popen,
        graceful: bool,
        graceful_wait_s: float,
        terminate_wait_s: float,
        kill_wait_s: float,
    ) -> None:
        if proc.poll() is not None:
            return

        if graceful:
            try:
                proc.wait(timeout=graceful_wait_s)
                logger.debug(
                    "[LineChannel] %s: process exited gracefully",
                    self.name,
                    extra={"dev_only": True},
                )
                return
            except subprocess.TimeoutExpired:
                logger.debug(
                    "[LineChannel] %s: graceful exit timed out (%.2fs)",
                    self.name,
                    graceful_wait_s,
                    extra={"dev_only": True},
                )

        with contextlib.suppress(OSError):
            proc.terminate()
        try:
            proc.wait(timeout=terminate_wait_s)
            return
        except subprocess.TimeoutExpired:
            logger.debug(
                "[LineChannel] %s: terminate timed out (%.2fs)",
                self.name,
                terminate_wait_s,
                extra={"dev_only": True},
            )

        with contextlib.suppress(OSError):
            proc.kill()
        try:
            proc.wait(timeout=kill_wait_s)
        except subprocess.TimeoutExpired:
            logger.error("[LineChannel] %s: process %s did not die after kill", self.name, proc.pid)
