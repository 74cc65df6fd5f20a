"""
Background worker pool with support for fixed-delay recurring tasks.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from logging import Logger
from typing import Any

__all__ = [
    "DEFAULT_MAX_WORKERS",
    "Scheduler",
    "ScheduledTask",
]

DEFAULT_MAX_WORKERS = 8


class ScheduledTask:
    """
    Handle to a recurring task. The next run is armed only after the
    previous one finishes, so runs never overlap.
    """

    _scheduler: Scheduler
    _fn: Callable[[], Any]
    _delay: float
    _timer: threading.Timer | None
    _cancelled: bool
    _lock: threading.Lock

    def __init__(self, scheduler: Scheduler, fn: Callable[[], Any], delay: float):
        self._scheduler = scheduler
        self._fn = fn
        self._delay = delay
        self._timer = None
        self._cancelled = False
        self._lock = threading.Lock()

    @property
    def delay(self) -> float:
        return self._delay

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self):
        """
        Cancel pending runs. A run already in progress is not interrupted.
        """
        with self._lock:
            self._cancelled = True
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def _arm(self, delay: float):
        with self._lock:
            if self._cancelled:
                return
            self._timer = threading.Timer(delay, self._dispatch)
            self._timer.daemon = True
            self._timer.start()

    def _dispatch(self):
        if self._cancelled:
            return
        try:
            self._scheduler.submit(self._run)
        except RuntimeError:
            # pool was shut down
            self.cancel()

    def _run(self):
        if self._cancelled:
            return
        try:
            self._fn()
        except Exception:
            self._scheduler._logger.exception(f"Recurring task {self._fn} failed")
        finally:
            self._arm(self._delay)


class Scheduler:
    """
    Bounded worker pool executing one-shot and recurring tasks off the
    caller's thread.
    """

    _executor: ThreadPoolExecutor
    _tasks: set[ScheduledTask]
    _lock: threading.Lock
    _logger: Logger

    def __init__(
        self,
        max_workers: int = DEFAULT_MAX_WORKERS,
        *,
        name: str = "haystack-link",
        logger: Logger | None = None,
    ):
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix=name
        )
        self._tasks = set()
        self._lock = threading.Lock()
        self._logger = logger or logging.getLogger("haystack-link")

    def submit[T](self, fn: Callable[..., T], *args, **kwargs) -> Future[T]:
        """
        Run `fn` on the pool.
        """
        return self._executor.submit(fn, *args, **kwargs)

    def schedule_with_fixed_delay(
        self,
        fn: Callable[[], Any],
        delay: float,
        initial_delay: float | None = None,
    ) -> ScheduledTask:
        """
        Run `fn` repeatedly, waiting `delay` seconds between the end of one
        run and the start of the next.
        """
        task = ScheduledTask(self, fn, delay)

        with self._lock:
            self._tasks = {t for t in self._tasks if not t.cancelled}
            self._tasks.add(task)

        task._arm(delay if initial_delay is None else initial_delay)
        return task

    def shutdown(self):
        """
        Cancel recurring tasks and discard the pool without waiting for
        running tasks.
        """
        with self._lock:
            tasks = list(self._tasks)
            self._tasks.clear()

        for task in tasks:
            task.cancel()

        self._executor.shutdown(wait=False, cancel_futures=True)
