"""
Bindings of remote entities to local nodes, kept consistent with the
server-side watch across reconnects.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from logging import Logger
from typing import Literal

import requests

from .client import Watch
from .exceptions import HaystackError
from .kinds import Ref
from .poll import PollLoop
from .scheduler import Scheduler
from .tree import LifecycleNode

__all__ = [
    "DEFAULT_POLL_RATE",
    "WatchState",
    "SubscriptionRegistry",
]

__rollup__ = [
    "SubscriptionRegistry",
]

DEFAULT_POLL_RATE = 5.0
"""
Default poll interval in seconds.
"""


@dataclass(frozen=True)
class WatchState:
    """
    Snapshot of the connection as seen by the registry: either connected
    with a watch, or disconnected.
    """

    watch: Watch | None = None

    @property
    def connected(self) -> bool:
        return self.watch is not None


DISCONNECTED = WatchState()


class SubscriptionRegistry:
    """
    Maintains the mapping of entity ref to bound node and forwards
    subscription changes to the active watch.

    Bindings are recorded regardless of connectivity; when a new watch is
    installed, every binding is replayed to it.
    """

    _bindings: dict[str, LifecycleNode]
    _state: WatchState
    _poll_rate: float
    _poll_loop: PollLoop
    _scheduler: Scheduler
    _lock: threading.Lock
    _logger: Logger

    def __init__(
        self,
        scheduler: Scheduler,
        poll_rate: float = DEFAULT_POLL_RATE,
        *,
        on_poll_failure: Callable[[Watch], None] | None = None,
        logger: Logger | None = None,
    ):
        """
        :param scheduler: Pool on which remote requests and polling run
        :param poll_rate: Poll interval in seconds
        :param on_poll_failure: Invoked with the failed watch after polling it raised
        :param logger: Logger to use, or `None` to use default logger
        """
        if poll_rate <= 0:
            raise ValueError(f"Invalid poll rate: {poll_rate}")

        self._bindings = {}
        self._state = DISCONNECTED
        self._poll_rate = poll_rate
        self._scheduler = scheduler
        self._lock = threading.Lock()
        self._logger = logger or logging.getLogger("haystack-link")

        self._poll_loop = PollLoop(
            self,
            scheduler,
            on_failure=on_poll_failure,
            logger=self._logger,
        )

    def __len__(self) -> int:
        return len(self._bindings)

    def __contains__(self, ref: object) -> bool:
        if not isinstance(ref, (Ref, str)):
            return False
        return _key(ref) in self._bindings

    @property
    def state(self) -> WatchState:
        return self._state

    @property
    def watch(self) -> Watch | None:
        """
        Currently active watch, or `None` if disconnected.
        """
        return self._state.watch

    @property
    def poll_rate(self) -> float:
        return self._poll_rate

    @property
    def poll_loop(self) -> PollLoop:
        return self._poll_loop

    @property
    def refs(self) -> list[str]:
        """
        Snapshot of bound entity refs.
        """
        with self._lock:
            return list(self._bindings.keys())

    def lookup(self, ref: Ref | str) -> LifecycleNode | None:
        """
        Get node bound to the given ref, if any.
        """
        with self._lock:
            return self._bindings.get(_key(ref))

    def subscribe(self, ref: Ref | str, node: LifecycleNode):
        """
        Bind `ref` to `node`, replacing any existing binding, and add it to
        the active watch if connected.
        """
        key = _key(ref)

        with self._lock:
            self._bindings[key] = node

        self._logger.debug(f"Subscribed @{key} -> {node.path}")

        watch = self._state.watch
        if watch is not None:
            self._dispatch(watch, "sub", key)

    def unsubscribe(self, ref: Ref | str):
        """
        Remove binding of `ref` and remove it from the active watch if
        connected.
        """
        key = _key(ref)

        with self._lock:
            self._bindings.pop(key, None)

        self._logger.debug(f"Unsubscribed @{key}")

        watch = self._state.watch
        if watch is not None:
            self._dispatch(watch, "unsub", key)

    def on_connected(self, watch: Watch):
        """
        Install a new watch, replay all bindings to it and start polling.
        """
        with self._lock:
            self._state = WatchState(watch)
            keys = list(self._bindings.keys())

        self._logger.info(f"Watch opened, restoring {len(keys)} subscriptions")

        for key in keys:
            self._dispatch(watch, "sub", key)

        self._poll_loop.start(self._poll_rate)

    def on_disconnected(self):
        """
        Stop polling and drop the watch. Bindings are kept for replay.
        """
        self._poll_loop.stop()

        with self._lock:
            self._state = DISCONNECTED

    def invalidate_watch(self, watch: Watch) -> bool:
        """
        Drop `watch` if it's still the active one. Returns whether it was.
        """
        with self._lock:
            if self._state.watch is not watch:
                return False
            self._state = DISCONNECTED

        return True

    def reconfigure(self, poll_rate: float):
        """
        Set a new poll interval, restarting the poll schedule if connected.
        """
        if poll_rate <= 0:
            raise ValueError(f"Invalid poll rate: {poll_rate}")
        self._poll_rate = poll_rate

        if self._state.connected:
            self._poll_loop.start(poll_rate)

    def clear(self):
        """
        Stop polling and remove all bindings.
        """
        self._poll_loop.stop()

        with self._lock:
            self._bindings.clear()
            self._state = DISCONNECTED

    def _dispatch(self, watch: Watch, op: Literal["sub", "unsub"], key: str):
        try:
            self._scheduler.submit(self._update_watch, watch, op, key)
        except RuntimeError:
            self._logger.debug(f"Dropped {op} of @{key}: scheduler shut down")

    def _update_watch(self, watch: Watch, op: Literal["sub", "unsub"], key: str):
        if self._state.watch is not watch:
            # superseded; replay on next connect covers it
            self._logger.debug(f"Dropped {op} of @{key}: watch no longer active")
            return

        ref = Ref(key)

        try:
            if op == "sub":
                watch.sub([ref])
            else:
                watch.unsub([ref])
        except (requests.RequestException, HaystackError) as e:
            self._logger.warning(f"Failed to {op} @{key} on {watch}: {e}")


def _key(ref: Ref | str) -> str:
    if isinstance(ref, Ref):
        return ref.val
    return ref[1:] if ref.startswith("@") else ref
