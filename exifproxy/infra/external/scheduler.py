"""Module: scheduler.py

Date: 2026-10-19

Single-thread scheduler for the proxies' watchdogs and idle sweeps.

Each proxy owns one TaskScheduler. Tasks are kept in a heap ordered by
deadline and run on one daemon thread, started on first use. Cancellation
and firing are decided under the same lock, so once cancel() returns the
action is guaranteed not to start (again).

Usage:
    scheduler = TaskScheduler("ExifTool Cleanup Thread")
    task = scheduler.schedule_once(1.5, handle.close)
    ...
    task.cancel()
    scheduler.shutdown()
"""

from __future__ import annotations

import heapq
import itertools
import threading
import time
from collections.abc import Callable
from enum import Enum

from exifproxy.utils.logging.logger_factory import get_cached_logger

logger = get_cached_logger(__name__)


class TaskState(Enum):
    """Lifecycle of a scheduled task."""

    PENDING = "pending"
    RUNNING = "running"
    DONE = "done"
    CANCELLED = "cancelled"


class ScheduledTask:
    """Handle returned by TaskScheduler.schedule_once / schedule_repeating."""

    def __init__(
        self,
        scheduler: TaskScheduler,
        action: Callable[[], None],
        name: str,
        interval: float | None = None,
    ) -> None:
        self._scheduler = scheduler
        self.action = action
        self.name = name
        self.interval = interval
        self.state = TaskState.PENDING
        self.run_count = 0
        self._cancel_requested = False
        self._finished = threading.Event()

    @property
    def repeating(self) -> bool:
        return self.interval is not None

    @property
    def fired(self) -> bool:
        """True once the action has started at least once."""
        return self.run_count > 0

    def cancel(self) -> bool:
        """Prevent any future run of the action.

        Returns:
            True if the action was still pending and will not start; False
            if it is running now or already finished.

        """
        return self._scheduler._cancel(self)

    def wait(self, timeout: float | None = None) -> bool:
        """Block until a one-shot task finished or was cancelled."""
        return self._finished.wait(timeout)

    def __repr__(self) -> str:
        return f"ScheduledTask({self.name!r}, state={self.state.value})"


class TaskScheduler:
    """Runs delayed and periodic actions on one background thread."""

    def __init__(self, name: str = "ExifTool Cleanup Thread") -> None:
        self.name = name
        self._cond = threading.Condition(threading.Lock())
        self._queue: list[tuple[float, int, ScheduledTask]] = []
        self._sequence = itertools.count()
        self._thread: threading.Thread | None = None
        self._stopped = False

    def schedule_once(
        self, delay: float, action: Callable[[], None], name: str = "task"
    ) -> ScheduledTask:
        """Run action once after delay seconds."""
        task = ScheduledTask(self, action, name)
        self._push(task, delay)
        return task

    def schedule_repeating(
        self, interval: float, action: Callable[[], None], name: str = "periodic"
    ) -> ScheduledTask:
        """Run action every interval seconds until cancelled."""
        if interval <= 0:
            raise ValueError("interval must be positive")
        task = ScheduledTask(self, action, name, interval=interval)
        self._push(task, interval)
        return task

    def shutdown(self, wait: bool = True, timeout: float = 1.0) -> None:
        """Cancel every pending task and stop the worker thread."""
        with self._cond:
            if self._stopped:
                return
            self._stopped = True
            for _, _, task in self._queue:
                if task.state is TaskState.PENDING:
                    task.state = TaskState.CANCELLED
                    task._finished.set()
            self._queue.clear()
            self._cond.notify_all()
            thread = self._thread

        if wait and thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        logger.debug("[TaskScheduler] %s stopped", self.name, extra={"dev_only": True})

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive() and not self._stopped

    def pending_count(self) -> int:
        with self._cond:
            return sum(1 for _, _, t in self._queue if t.state is TaskState.PENDING)

    def _push(self, task: ScheduledTask, delay: float) -> None:
        with self._cond:
            if self._stopped:
                raise RuntimeError(f"Scheduler {self.name!r} has been shut down")
            deadline = time.monotonic() + max(0.0, delay)
            heapq.heappush(self._queue, (deadline, next(self._sequence), task))
            if self._thread is None:
                self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
                self._thread.start()
            self._cond.notify()

    def _cancel(self, task: ScheduledTask) -> bool:
        with self._cond:
            if task.state is TaskState.PENDING:
                task.state = TaskState.CANCELLED
                task._finished.set()
                self._cond.notify()
                return True
            if task.state is TaskState.RUNNING:
                task._cancel_requested = True
            return False

    def _next_due(self) -> ScheduledTask | None:
        """Wait for the next due task; caller holds the lock."""
        while not self._stopped:
            if not self._queue:
                self._cond.wait()
                continue
            deadline, _, task = self._queue[0]
            if task.state is not TaskState.PENDING:
                heapq.heappop(self._queue)
                continue
            remaining = deadline - time.monotonic()
            if remaining > 0:
                self._cond.wait(remaining)
                continue
            heapq.heappop(self._queue)
            task.state = TaskState.RUNNING
            task.run_count += 1
            return task
        return None

    def _run(self) -> None:
        while True:
            with self._cond:
                task = self._next_due()
            if task is None:
                return

            try:
                task.action()
            except Exception:
                logger.exception("[TaskScheduler] Task %s failed", task.name)

            with self._cond:
                if task.repeating and not task._cancel_requested and not self._stopped:
                    task.state = TaskState.PENDING
                    deadline = time.monotonic() + (task.interval or 0.0)
                    heapq.heappush(self._queue, (deadline, next(self._sequence), task))
                else:
                    task.state = TaskState.CANCELLED if task._cancel_requested else TaskState.DONE
                    task._finished.set()
