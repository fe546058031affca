"""Module: process_registry.py

Date: 2026-10-19

Process-wide registry of live exiftool processes.

Every ExifToolProcess registers itself on spawn and unregisters on close.
install() hooks close_all() and force_cleanup_orphans() into interpreter exit
so a host application that forgets to shut its proxies down does not leave
exiftool daemons behind.
force_cleanup_orphans() is the last-resort sweep for children that escaped
the registry (e.g. a handle object lost before close()).

Lifecycle:
    registry = get_process_registry()   # created and installed on first use
    ...
    registry.close_all()                # explicit teardown (also runs at exit)
    registry.uninstall()
"""

from __future__ import annotations

import atexit
import contextlib
import os
import threading
import time
from typing import TYPE_CHECKING, ClassVar

import psutil

from exifproxy.utils.logging.logger_factory import get_cached_logger

if TYPE_CHECKING:
    from exifproxy.infra.external.exiftool_process import ExifToolProcess

logger = get_cached_logger(__name__)


class ProcessRegistry:
    """Tracks open process handles and closes leftovers at shutdown."""

    _instance: ClassVar[ProcessRegistry | None] = None
    _instance_lock: ClassVar[threading.Lock] = threading.Lock()

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._handles: dict[str, ExifToolProcess] = {}
        self._installed = False

    @classmethod
    def instance(cls) -> ProcessRegistry:
        """Get the global registry, installing its exit hook on first access."""
        with cls._instance_lock:
            if cls._instance is None:
                cls._instance = cls()
                cls._instance.install()
            return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Drop the global registry (useful for testing)."""
        with cls._instance_lock:
            if cls._instance is not None:
                cls._instance.uninstall()
            cls._instance = None

    def install(self) -> None:
        """Run close_all() and then the orphan sweep at interpreter exit."""
        with self._lock:
            if self._installed:
                return
            atexit.register(self._on_exit)
            self._installed = True
        logger.debug("[ProcessRegistry] Exit hook installed", extra={"dev_only": True})

    def uninstall(self) -> None:
        """Remove the exit hook; tracked handles are left untouched."""
        with self._lock:
            if not self._installed:
                return
            atexit.unregister(self._on_exit)
            self._installed = False

    @property
    def installed(self) -> bool:
        return self._installed

    def register(self, handle: ExifToolProcess) -> None:
        with self._lock:
            self._handles[handle.identity] = handle
        logger.debug("[ProcessRegistry] Registered %s", handle.identity, extra={"dev_only": True})

    def unregister(self, handle: ExifToolProcess) -> bool:
        with self._lock:
            removed = self._handles.pop(handle.identity, None) is not None
        if removed:
            logger.debug(
                "[ProcessRegistry] Unregistered %s", handle.identity, extra={"dev_only": True}
            )
        return removed

    def __contains__(self, handle: object) -> bool:
        identity = getattr(handle, "identity", None)
        with self._lock:
            return identity in self._handles

    def __len__(self) -> int:
        with self._lock:
            return len(self._handles)

    def live_identities(self) -> list[str]:
        with self._lock:
            return sorted(self._handles)

    def tracked_pids(self) -> set[int]:
        with self._lock:
            return {h.pid for h in self._handles.values() if h.pid is not None}

    def close_all(self) -> int:
        """Close every handle still registered.

        Returns:
            Number of handles that were closed.

        """
        with self._lock:
            handles = list(self._handles.values())

        if not handles:
            return 0

        logger.info(
            "[ProcessRegistry] Closing %d exiftool process(es) left open: %s",
            len(handles),
            [h.identity for h in handles],
        )
        closed = 0
        for handle in handles:
            try:
                handle.close()
                closed += 1
            except Exception:
                logger.exception("[ProcessRegistry] Failed to close %s", handle.identity)
            finally:
                self.unregister(handle)
        return closed

    def force_cleanup_orphans(
        self,
        *,
        max_scan_s: float = 0.5,
        graceful_wait_s: float = 0.5,
    ) -> int:
        """Terminate stay-open exiftool children this registry does not track.

        Only direct children of the current process are considered, so other
        applications' exiftool daemons are never touched. The scan and the
        wait are time-bounded.

        Args:
            max_scan_s: Maximum time to spend scanning processes.
            graceful_wait_s: Maximum time to wait for terminate() before kill().

        Returns:
            Number of orphaned processes found.

        """
        tracked = self.tracked_pids()
        orphans: list[psutil.Process] = []
        scan_start = time.perf_counter()

        try:
            children = psutil.Process(os.getpid()).children(recursive=False)
        except (psutil.NoSuchProcess, psutil.AccessDenied) as e:
            logger.debug("[ProcessRegistry] Cannot list child processes: %s", e)
            return 0

        for proc in children:
            if (time.perf_counter() - scan_start) > max_scan_s:
                logger.debug(
                    "[ProcessRegistry] Process scan time limit reached (%.2fs)",
                    max_scan_s,
                    extra={"dev_only": True},
                )
                break
            try:
                if proc.pid in tracked:
                    continue
                cmdline = " ".join(proc.cmdline()).lower()
                if "exiftool" in cmdline and "-stay_open" in cmdline:
                    orphans.append(proc)
            except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
                pass

        if not orphans:
            logger.debug(
                "[ProcessRegistry] No orphaned exiftool processes found",
                extra={"dev_only": True},
            )
            return 0

        logger.warning("[ProcessRegistry] Found %d orphaned exiftool processes", len(orphans))

        for proc in orphans:
            with contextlib.suppress(psutil.NoSuchProcess, psutil.AccessDenied):
                proc.terminate()

        _, alive = psutil.wait_procs(orphans, timeout=max(0.0, graceful_wait_s))

        for proc in alive:
            logger.warning("[ProcessRegistry] Force-killing exiftool process PID %d", proc.pid)
            with contextlib.suppress(psutil.NoSuchProcess, psutil.AccessDenied):
                proc.kill()

        return len(orphans)

    def _on_exit(self) -> None:
        """Exit hook: close tracked handles, then sweep untracked children."""
        self.close_all()
        try:
            self.force_cleanup_orphans()
        except Exception:
            logger.exception("[ProcessRegistry] Orphan sweep failed at exit")


def get_process_registry() -> ProcessRegistry:
    """Get the global process registry instance."""
    return ProcessRegistry.instance()
