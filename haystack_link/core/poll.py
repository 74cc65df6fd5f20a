"""
Periodic polling of the active watch, reconciling changed rows into the
bound nodes.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from logging import Logger
from typing import TYPE_CHECKING

from .grid import Row
from .scheduler import ScheduledTask, Scheduler
from .tree import LifecycleNode, encode_name
from .values import to_value

if TYPE_CHECKING:
    from .client import Watch
    from .subscriptions import SubscriptionRegistry

__all__ = [
    "IDENTITY_COLUMNS",
    "PollLoop",
    "reconcile",
]

IDENTITY_COLUMNS = frozenset({"id"})
"""
Columns identifying the entity; never materialized or removed by a poll.
"""


def reconcile(node: LifecycleNode, row: Row):
    """
    Make the children of `node` mirror the columns of `row`: existing
    children are updated in place, missing ones created as non-serializable
    and children without a corresponding column removed.
    """
    children = node.children
    stale = set(children.keys())

    for name, val in row.items():
        encoded = encode_name(name)
        stale.discard(encoded)

        if name in IDENTITY_COLUMNS:
            continue

        value = to_value(val)
        child = children.get(encoded)

        if child is None:
            child = node.create_child(encoded, serializable=False)

        child.value_type = value.type
        child.value = value

    for name in stale:
        node.remove_child(name)


class PollLoop:
    """
    Recurring poll of the registry's watch. Only one poll task is scheduled
    at a time and cycles never overlap, even across restarts. If polling
    raises, the task cancels itself and the watch is dropped until the next
    connect.
    """

    _registry: SubscriptionRegistry
    _scheduler: Scheduler
    _on_failure: Callable[[Watch], None] | None
    _task: ScheduledTask | None
    _lock: threading.Lock
    _cycle_lock: threading.Lock
    _logger: Logger

    def __init__(
        self,
        registry: SubscriptionRegistry,
        scheduler: Scheduler,
        *,
        on_failure: Callable[[Watch], None] | None = None,
        logger: Logger | None = None,
    ):
        self._registry = registry
        self._scheduler = scheduler
        self._on_failure = on_failure
        self._task = None
        self._lock = threading.Lock()
        self._cycle_lock = threading.Lock()
        self._logger = logger or logging.getLogger("haystack-link")

    @property
    def running(self) -> bool:
        task = self._task
        return task is not None and not task.cancelled

    @property
    def interval(self) -> float | None:
        task = self._task
        return task.delay if task is not None else None

    def start(self, interval: float):
        """
        (Re)arm the poll task, cancelling any pending one.
        """
        with self._lock:
            if self._task is not None:
                self._task.cancel()

            self._task = self._scheduler.schedule_with_fixed_delay(
                self._run, interval
            )

        self._logger.debug(f"Polling every {interval}s")

    def stop(self):
        """
        Cancel the poll task without waiting for a poll in progress.
        """
        with self._lock:
            if self._task is not None:
                self._task.cancel()
                self._task = None

    def poll(self, watch: Watch | None = None) -> int:
        """
        Run a single poll cycle. Returns the number of rows applied.
        """
        watch = watch or self._registry.watch

        if watch is None or not len(self._registry):
            return 0

        grid = watch.poll_changes()
        if grid is None or grid.is_empty:
            return 0

        applied = 0

        for row in grid:
            ref = row.id
            if ref is None:
                continue

            node = self._registry.lookup(ref)
            if node is None:
                # unsubscribed since the poll was issued
                self._logger.debug(f"Ignoring poll row for unbound {ref}")
                continue

            reconcile(node, row)
            applied += 1

        return applied

    def _run(self):
        # a cycle of a replaced task may still be running
        if not self._cycle_lock.acquire(blocking=False):
            self._logger.debug("Skipping poll, previous cycle still running")
            return

        try:
            self._cycle()
        finally:
            self._cycle_lock.release()

    def _cycle(self):
        task = self._task
        watch = self._registry.watch

        try:
            self.poll(watch)
        except Exception as e:
            self._logger.warning(f"Poll of {watch} failed, dropping watch: {e}")

            # only cancel ourselves, a reconnect may have re-armed already
            with self._lock:
                if task is not None:
                    task.cancel()
                if self._task is task:
                    self._task = None

            if watch is not None and self._registry.invalidate_watch(watch):
                if self._on_failure is not None:
                    self._on_failure(watch)
