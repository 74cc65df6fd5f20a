"""
Implementation of connector functionality.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from concurrent.futures import Future
from logging import Logger
from typing import Any

from .client import HaystackClient
from .connection import ClientFactory, ConnectionHelper
from .grid import Grid
from .kinds import Number, Ref
from .navigation import DEFAULT_DEPTH, NavigationCrawler
from .scheduler import DEFAULT_MAX_WORKERS, Scheduler
from .subscriptions import DEFAULT_POLL_RATE, SubscriptionRegistry
from .tree import LifecycleNode

__all__ = [
    "DEFAULT_LEASE",
    "Connector",
]

__rollup__ = [
    "Connector",
]

DEFAULT_LEASE = 60.0
"""
Requested watch lease in seconds.
"""

NAV_NODE = "nav"
"""
Name of the child under which the nav tree is mounted.
"""


class Connector:
    """
    Interface to one Haystack server, mirroring it into the tree under its
    server node.

    Owns the worker pool, connection, subscription registry (and with it,
    the poll loop) and navigation crawler. Remote calls are dispatched
    through the connection and return futures.

    Can be used as a context manager, in which case it's started on entry
    and destroyed on exit.
    """

    _node: LifecycleNode
    _scheduler: Scheduler
    _connection: ConnectionHelper
    _registry: SubscriptionRegistry
    _crawler: NavigationCrawler
    _logger: Logger

    def __init__(
        self,
        node: LifecycleNode,
        url: str,
        user: str | None = None,
        password: str | None = None,
        *,
        poll_rate: float = DEFAULT_POLL_RATE,
        lease: float | None = DEFAULT_LEASE,
        depth: int = DEFAULT_DEPTH,
        max_workers: int = DEFAULT_MAX_WORKERS,
        client_factory: ClientFactory = HaystackClient,
        scheduler: Scheduler | None = None,
        logger: Logger | None = None,
    ):
        """
        :param node: Server node under which the remote tree is mounted
        :param url: Base url of the Haystack API
        :param user: Username, if authentication is required
        :param password: Password, if authentication is required
        :param poll_rate: Watch poll interval in seconds
        :param lease: Requested watch lease in seconds
        :param depth: Levels fetched per navigation expansion
        :param max_workers: Size of the worker pool
        :param client_factory: Callable creating clients, for custom transports
        :param scheduler: Scheduler to use instead of creating one
        :param logger: Logger to use, or `None` to use default logger
        """
        self._node = node
        self._logger = logger or logging.getLogger("haystack-link")
        self._scheduler = scheduler or Scheduler(
            max_workers, name=f"haystack-link-{node.name}", logger=self._logger
        )

        self._registry = SubscriptionRegistry(
            self._scheduler,
            poll_rate,
            on_poll_failure=self._on_poll_failure,
            logger=self._logger,
        )

        self._connection = ConnectionHelper(
            url,
            user,
            password,
            self._scheduler,
            on_connected=self._registry.on_connected,
            on_disconnected=self._registry.on_disconnected,
            lease=lease,
            watch_dis=f"haystack-link {node.name}",
            client_factory=client_factory,
            logger=self._logger,
        )

        self._crawler = NavigationCrawler(
            self._connection, self._registry, depth=depth, logger=self._logger
        )

    def __repr__(self):
        return f"Connector({self._node.path!r}, {self._connection.url!r})"

    def __enter__(self):
        self._logger.debug(f"Entering context: {self}")
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, traceback):
        if exc_type:
            self._logger.error(f"Exiting context with error: {self}")
        else:
            self._logger.debug(f"Exiting context: {self}")

        self.destroy()

    @property
    def node(self) -> LifecycleNode:
        return self._node

    @property
    def url(self) -> str:
        return self._connection.url

    @property
    def scheduler(self) -> Scheduler:
        return self._scheduler

    @property
    def connection(self) -> ConnectionHelper:
        return self._connection

    @property
    def registry(self) -> SubscriptionRegistry:
        return self._registry

    @property
    def crawler(self) -> NavigationCrawler:
        return self._crawler

    def start(self):
        """
        Connect in the background. Subscriptions are restored and polling
        starts once connected.
        """
        self._connection.open()

    def mount(self) -> LifecycleNode:
        """
        Create the nav node under the server node, which expands the nav
        root when listed.
        """
        nav = self._node.get_child(NAV_NODE)
        if nav is None:
            nav = self._node.create_child(NAV_NODE, serializable=False)
            self._crawler.attach(nav)
        return nav

    def submit[T](self, fn: Callable[[HaystackClient], T]) -> Future[T]:
        """
        Run `fn` with a connected client.
        """
        return self._connection.submit(fn)

    def call(self, op: str, grid: Grid | None = None) -> Future[Grid]:
        return self.submit(lambda client: client.call(op, grid))

    def read(self, filter: str, limit: int | None = None) -> Future[Grid]:
        return self.submit(lambda client: client.read_all(filter, limit))

    def eval(self, expr: str) -> Future[Grid]:
        return self.submit(lambda client: client.eval(expr))

    def his_read(self, ref: Ref, range: str) -> Future[Grid]:
        return self.submit(lambda client: client.his_read(ref, range))

    def invoke_action(
        self, ref: Ref, action: str, args: dict[str, Any] | None = None
    ) -> Future[Grid]:
        return self.submit(lambda client: client.invoke_action(ref, action, args))

    def point_write(
        self,
        ref: Ref,
        level: int,
        who: str | None = None,
        val: Any = None,
        duration: Number | None = None,
    ) -> Future[Grid]:
        return self.submit(
            lambda client: client.point_write(ref, level, who, val, duration)
        )

    def navigate(
        self,
        node: LifecycleNode,
        nav_id: str | None = None,
        depth: int | None = None,
    ) -> Future[int]:
        return self._crawler.navigate(node, nav_id, depth)

    def edit_connection(
        self,
        url: str,
        user: str | None,
        password: str | None,
        poll_rate: float,
    ):
        """
        Update connection parameters and poll rate. Subscriptions are kept
        and restored upon reconnecting.
        """
        self._logger.info(f"Editing connection: {url}, poll rate {poll_rate}s")
        self._registry.reconfigure(poll_rate)
        self._connection.edit_connection(url, user, password)

    def stop(self):
        """
        Stop polling and disconnect. Requests fail with
        {obj}`ConnectionClosedError` until started again.
        """
        self._connection.close()

    def destroy(self):
        """
        Stop and discard the worker pool and all subscriptions.
        """
        self.stop()
        self._scheduler.shutdown()
        self._registry.clear()

    def _on_poll_failure(self, watch):
        self._connection.invalidate(watch.client)
