"""Module: keep_alive_proxy.py

Date: 2026-10-19

Keeps one exiftool process resident ('-stay_open True') and shares it
between callers.

- Calls are serialized: one request on the wire at a time.
- A process that died between calls is replaced transparently; a call is
  attempted at most max_attempts times.
- An optional per-call watchdog closes the process when a response does not
  arrive in time. Timed-out calls are not retried.
- An idle sweep closes the process after a period without calls. The proxy
  survives and starts a new process on the next call.
- shutdown() is final: later calls fail with ShuttingDown and never spawn.

Usage:
    with KeepAliveExifProxy("exiftool") as proxy:
        lines = proxy.execute(0, ["-n", "-S", "-FileSize", "img.jpg"])
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Sequence
from typing import Any

from exifproxy.config import (
    EXIFTOOL_CHARSET,
    EXIFTOOL_IDLE_SWEEP_INTERVAL_MS,
    EXIFTOOL_MAX_ATTEMPTS,
    EXIFTOOL_PATH,
    EXIFTOOL_PROCESS_CLEANUP_DELAY_MS,
)
from exifproxy.infra.external import protocol
from exifproxy.infra.external.errors import (
    CallTimedOut,
    ChannelClosed,
    ExifToolError,
    RetriesExhausted,
    ShuttingDown,
)
from exifproxy.infra.external.exiftool_process import ExifToolProcess
from exifproxy.infra.external.process_registry import ProcessRegistry
from exifproxy.infra.external.scheduler import ScheduledTask, TaskScheduler
from exifproxy.infra.external.single_use_proxy import CLEANUP_THREAD_NAME
from exifproxy.utils.logging.logger_factory import get_cached_logger

logger = get_cached_logger(__name__)

ProcessFactory = Callable[..., ExifToolProcess]


class KeepAliveExifProxy:
    """Supervisor for one long-lived exiftool process."""

    def __init__(
        self,
        exiftool_path: str = EXIFTOOL_PATH,
        base_args: Sequence[str] = (),
        inactivity_timeout_ms: int = EXIFTOOL_PROCESS_CLEANUP_DELAY_MS,
        charset: str = EXIFTOOL_CHARSET,
        registry: ProcessRegistry | None = None,
        max_attempts: int = EXIFTOOL_MAX_ATTEMPTS,
        idle_sweep_interval_ms: int = EXIFTOOL_IDLE_SWEEP_INTERVAL_MS,
        process_factory: ProcessFactory | None = None,
    ) -> None:
        """Configure the proxy. No process is started until first use.

        Args:
            exiftool_path: exiftool command or absolute path.
            base_args: Arguments placed between '-stay_open True' and '-@ -'.
            inactivity_timeout_ms: Close the process after this long without
                a call (0 or less: never).
            charset: Encoding of the process streams.
            registry: Process registry (defaults to the global one).
            max_attempts: Attempts per call before RetriesExhausted.
            idle_sweep_interval_ms: Upper bound for the idle check period.
            process_factory: Callable building a handle, called as
                factory(command, keep_alive=True, charset=..., registry=...).

        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.exiftool_path = exiftool_path
        self.base_args = list(base_args)
        self.inactivity_timeout_ms = inactivity_timeout_ms
        self.idle_sweep_interval_ms = idle_sweep_interval_ms
        self.charset = charset
        self.max_attempts = max_attempts
        self.command = protocol.build_keep_alive_command(exiftool_path, self.base_args)
        self._registry = registry
        self._process_factory: ProcessFactory = process_factory or ExifToolProcess

        self._process: ExifToolProcess | None = None
        self._state_lock = threading.RLock()
        self._call_lock = threading.Lock()
        self._shutting_down = threading.Event()
        self._scheduler = TaskScheduler(CLEANUP_THREAD_NAME)
        self._idle_task: ScheduledTask | None = None

        self.last_call_start = 0.0
        self._consecutive_failures = 0
        self._last_error: str | None = None

    # -- lifecycle ---------------------------------------------------------

    def startup(self) -> None:
        """Start the resident process now instead of on the first call.

        Raises:
            ShuttingDown: shutdown() was already called.
            LaunchFailed: exiftool could not be started.

        """
        self._ensure_process()

    @property
    def shutting_down(self) -> bool:
        return self._shutting_down.is_set()

    def is_running(self) -> bool:
        process = self._process
        return process is not None and not process.closed

    def shutdown(self) -> None:
        """Close the process and refuse further calls. Idempotent."""
        if not self._shutting_down.is_set():
            logger.info("[KeepAliveExifProxy] Shutting down")
        self._shutting_down.set()
        with self._state_lock:
            process, self._process = self._process, None
            idle_task, self._idle_task = self._idle_task, None
        if idle_task is not None:
            idle_task.cancel()
        if process is not None:
            process.close()
        self._scheduler.shutdown(wait=False)

    close = shutdown

    def __enter__(self) -> KeepAliveExifProxy:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()

    # -- calls -------------------------------------------------------------

    def execute(self, run_timeout_ms: int, args: Sequence[str]) -> list[str]:
        """Send one request to the resident process.

        Args:
            run_timeout_ms: Per-attempt watchdog (0 or less: no limit).
            args: Request arguments, one per line on the wire.

        Returns:
            Output lines without the {ready} sentinel.

        Raises:
            ShuttingDown: The proxy is (or became) shut down.
            RetriesExhausted: Every attempt failed with a closed channel.
            CallTimedOut: The watchdog fired.
            ToolReportedError: exiftool reported an error on stderr.
            ProtocolViolation: Output ended without the sentinel.
            LaunchFailed: exiftool could not be started.

        """
        args = list(args)
        if self._shutting_down.is_set():
            raise ShuttingDown(args_list=args)
        self.last_call_start = time.time()

        with self._call_lock:
            attempts = 0
            last_error: ChannelClosed | None = None
            while attempts < self.max_attempts and not self._shutting_down.is_set():
                attempts += 1
                process = self._ensure_process()
                watchdog = self._arm_watchdog(process, run_timeout_ms)
                try:
                    logger.debug(
                        "[KeepAliveExifProxy] Streaming arguments to %s (attempt %d)",
                        process.identity,
                        attempts,
                        extra={"dev_only": True},
                    )
                    lines = process.send_and_await(args)
                except CallTimedOut as e:
                    self._record_failure(e)
                    raise
                except ChannelClosed as e:
                    if self._shutting_down.is_set():
                        break
                    logger.warning(
                        "[KeepAliveExifProxy] Caught %r on attempt %d/%d, will restart exiftool",
                        e.message,
                        attempts,
                        self.max_attempts,
                    )
                    self._record_failure(e)
                    self._discard(process)
                    last_error = e
                    continue
                except ExifToolError as e:
                    self._record_failure(e)
                    raise
                finally:
                    if watchdog is not None:
                        watchdog.cancel()

                self._consecutive_failures = 0
                return lines

        if self._shutting_down.is_set():
            raise ShuttingDown(args_list=args)
        logger.error(
            "[KeepAliveExifProxy] Giving up after %d attempts for args %s", attempts, args
        )
        raise RetriesExhausted(attempts, args_list=args) from last_error

    def _ensure_process(self) -> ExifToolProcess:
        process = self._process
        if process is not None and process.is_alive():
            return process

        with self._state_lock:
            if self._shutting_down.is_set():
                raise ShuttingDown()
            process = self._process
            if process is not None and process.is_alive():
                return process
            if process is not None:
                if not process.closed:
                    logger.warning(
                        "[KeepAliveExifProxy] exiftool %s exited unexpectedly, restarting",
                        process.identity,
                    )
                process.close()
                self._process = None

            logger.debug(
                "[KeepAliveExifProxy] Starting daemon exiftool process",
                extra={"dev_only": True},
            )
            process = self._process_factory(
                self.command, keep_alive=True, charset=self.charset, registry=self._registry
            )
            self._process = process
            self._start_idle_sweep()
            return process

    def _discard(self, process: ExifToolProcess) -> None:
        with self._state_lock:
            if self._process is process:
                self._process = None
        process.close()

    def _record_failure(self, error: ExifToolError) -> None:
        self._consecutive_failures += 1
        self._last_error = str(error)

    # -- timers ------------------------------------------------------------

    def _arm_watchdog(self, process: ExifToolProcess, run_timeout_ms: int) -> ScheduledTask | None:
        if run_timeout_ms <= 0:
            return None

        def _on_timeout() -> None:
            if not process.closed:
                logger.warning(
                    "[KeepAliveExifProxy] Process ran too long, closing (max %d ms)",
                    run_timeout_ms,
                )
                process.mark_timed_out(run_timeout_ms)
                process.close()

        try:
            return self._scheduler.schedule_once(
                run_timeout_ms / 1000.0, _on_timeout, name=f"watchdog-{process.identity}"
            )
        except RuntimeError as e:
            # scheduler stopped by a concurrent shutdown()
            if self._shutting_down.is_set():
                raise ShuttingDown() from e
            raise

    def _start_idle_sweep(self) -> None:
        """Schedule the idle check once; caller holds the state lock."""
        if self._idle_task is not None or self.inactivity_timeout_ms <= 0:
            return
        interval_ms = self.inactivity_timeout_ms
        if self.idle_sweep_interval_ms > 0:
            interval_ms = min(interval_ms, self.idle_sweep_interval_ms)
        self._idle_task = self._scheduler.schedule_repeating(
            interval_ms / 1000.0, self._close_if_idle, name="idle-sweep"
        )

    def _close_if_idle(self) -> None:
        process = self._process
        if process is None or process.closed:
            return
        idle_since = max(self.last_call_start, process.created_at)
        idle_ms = (time.time() - idle_since) * 1000.0
        if idle_ms <= self.inactivity_timeout_ms:
            return
        # a call in flight is not idle
        if not self._call_lock.acquire(blocking=False):
            return
        try:
            with self._state_lock:
                if self._process is not process:
                    return
                self._process = None
            logger.info(
                "[KeepAliveExifProxy] Closing idle exiftool %s after %.0f ms",
                process.identity,
                idle_ms,
            )
            process.close()
        finally:
            self._call_lock.release()

    # -- diagnostics -------------------------------------------------------

    def health_check(self) -> dict[str, Any]:
        process = self._process
        running = process is not None and process.is_alive()
        return {
            "running": running,
            "pid": process.pid if running and process is not None else None,
            "shutting_down": self._shutting_down.is_set(),
            "last_call_start": self.last_call_start,
            "consecutive_failures": self._consecutive_failures,
            "last_error": self._last_error,
        }

    def __repr__(self) -> str:
        return (
            f"KeepAliveExifProxy({self.exiftool_path!r}, running={self.is_running()}, "
            f"shutting_down={self.shutting_down})"
        )
