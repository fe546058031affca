"""Module: single_use_proxy.py

Date: 2026-10-19

Runs one exiftool process per call.

No state is shared between calls and nothing is retried: the process is
spawned with the request on its command line, read to end of stream and
always closed afterwards, success or failure.
"""

from __future__ import annotations

from collections.abc import Sequence

from exifproxy.config import EXIFTOOL_CHARSET, EXIFTOOL_PATH
from exifproxy.infra.external import protocol
from exifproxy.infra.external.exiftool_process import ExifToolProcess
from exifproxy.infra.external.process_registry import ProcessRegistry
from exifproxy.infra.external.scheduler import ScheduledTask, TaskScheduler
from exifproxy.utils.logging.logger_factory import get_cached_logger

logger = get_cached_logger(__name__)

CLEANUP_THREAD_NAME = "ExifTool Cleanup Thread"


class SingleUseExifProxy:
    """Fire-and-forget exiftool execution.

    Usage:
        with SingleUseExifProxy("exiftool") as proxy:
            lines = proxy.execute(5000, ["-ver"])
    """

    def __init__(
        self,
        exiftool_path: str = EXIFTOOL_PATH,
        base_args: Sequence[str] = (),
        charset: str = EXIFTOOL_CHARSET,
        registry: ProcessRegistry | None = None,
    ) -> None:
        self.exiftool_path = exiftool_path
        self.base_args = list(base_args)
        self.charset = charset
        self._registry = registry
        self._scheduler = TaskScheduler(CLEANUP_THREAD_NAME)

    def startup(self) -> None:
        """Nothing to start; each call spawns its own process."""

    def is_running(self) -> bool:
        return False

    def execute(self, run_timeout_ms: int, args: Sequence[str]) -> list[str]:
        """Run exiftool once and return its output lines.

        Args:
            run_timeout_ms: Close the process if it runs longer than this
                (0 or less: no limit).
            args: Request arguments, appended after the base arguments.

        Raises:
            LaunchFailed: exiftool could not be started.
            CallTimedOut: The watchdog closed the process.
            ToolReportedError: exiftool reported an error on stderr.

        """
        args = list(args)
        command = protocol.build_single_use_command(self.exiftool_path, self.base_args, args)
        process = ExifToolProcess(
            command, keep_alive=False, charset=self.charset, registry=self._registry
        )
        watchdog: ScheduledTask | None = None
        try:
            watchdog = self._arm_watchdog(process, run_timeout_ms)
            return process.read_response(args)
        finally:
            if watchdog is not None:
                watchdog.cancel()
            process.close()

    def _arm_watchdog(self, process: ExifToolProcess, run_timeout_ms: int) -> ScheduledTask | None:
        if run_timeout_ms <= 0:
            return None

        def _on_timeout() -> None:
            if not process.closed:
                logger.warning(
                    "[SingleUseExifProxy] Process ran too long, closing (max %d ms)",
                    run_timeout_ms,
                )
                process.mark_timed_out(run_timeout_ms)
                process.close()

        return self._scheduler.schedule_once(
            run_timeout_ms / 1000.0, _on_timeout, name=f"watchdog-{process.identity}"
        )

    def shutdown(self) -> None:
        """Stop the watchdog thread.

        Calls in flight lose their watchdog but otherwise finish normally. The
        proxy stays usable; a later call starts a new watchdog thread.
        """
        scheduler, self._scheduler = self._scheduler, TaskScheduler(CLEANUP_THREAD_NAME)
        scheduler.shutdown(wait=False)

    close = shutdown

    def __enter__(self) -> SingleUseExifProxy:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()
