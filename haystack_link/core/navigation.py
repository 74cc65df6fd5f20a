"""
Lazy discovery of the server's navigation tree.
"""

from __future__ import annotations

import logging
from concurrent.futures import Future
from logging import Logger
from typing import Any

from .client import HaystackClient
from .connection import ConnectionHelper
from .exceptions import ConnectionClosedError, UnsupportedNavError
from .grid import PLACEHOLDER_DIS, Row
from .kinds import Ref, Uri
from .poll import IDENTITY_COLUMNS
from .subscriptions import SubscriptionRegistry
from .tree import LifecycleNode, NodeHandler, encode_name
from .values import to_value

__all__ = [
    "DEFAULT_DEPTH",
    "NavigationCrawler",
]

__rollup__ = [
    "NavigationCrawler",
]

DEFAULT_DEPTH = 2
"""
Number of levels fetched per expansion. With 2, the children of each new
child are fetched as well, so nodes appear populated upon first listing.
"""


class NavigationCrawler:
    """
    Materializes nav rows as nodes on demand.

    Each expansion fetches up to `depth` levels; every node with a nav id
    also gets an "on list" hook which re-expands it when observed. Nodes
    whose row carries an `id` get an `id` leaf whose subscribe/unsubscribe
    hooks bind the node in the {obj}`SubscriptionRegistry`.

    Children are keyed by encoded display name: expanding a node again
    reuses existing children rather than duplicating them.
    """

    _connection: ConnectionHelper
    _registry: SubscriptionRegistry
    _depth: int
    _logger: Logger

    def __init__(
        self,
        connection: ConnectionHelper,
        registry: SubscriptionRegistry,
        *,
        depth: int = DEFAULT_DEPTH,
        logger: Logger | None = None,
    ):
        if depth < 1:
            raise ValueError(f"Invalid depth: {depth}")

        self._connection = connection
        self._registry = registry
        self._depth = depth
        self._logger = logger or logging.getLogger("haystack-link")

    @property
    def depth(self) -> int:
        return self._depth

    def attach(self, node: LifecycleNode, nav_id: str | None = None):
        """
        Expand `node` from `nav_id` (or the nav root) whenever it's listed.
        """
        node.add_on_list_handler(self._list_handler(nav_id))

    def navigate(
        self,
        node: LifecycleNode,
        nav_id: str | None = None,
        depth: int | None = None,
    ) -> Future[int]:
        """
        Expand `node` in the background. The returned future resolves to
        the number of children populated; it's 0 if the server rejected
        the request.

        :param node: Node to populate
        :param nav_id: Nav id to expand, or `None` for the nav root
        :param depth: Levels to fetch, or `None` for the crawler's default
        """
        levels = depth if depth is not None else self._depth
        return self._connection.submit(
            lambda client: self._expand(client, node, nav_id, levels)
        )

    def _expand(
        self,
        client: HaystackClient,
        node: LifecycleNode,
        nav_id: str | None,
        depth: int,
    ) -> int:
        if nav_id is None:
            self._logger.info("Navigating root")
        else:
            self._logger.info(f"Navigating: {nav_id} ({node.path})")

        try:
            grid = client.nav(nav_id)
        except UnsupportedNavError as e:
            self._logger.debug(f"Nav of {nav_id} not supported: {e}")
            return 0

        count = 0

        for row in grid:
            name = _get_name(row)
            if name is None:
                continue

            child = node.get_child(name)
            created = child is None
            if child is None:
                child = node.create_child(name)

            child_nav_id = _get_nav_id(row)
            if child_nav_id is not None:
                if created:
                    self.attach(child, child_nav_id)
                if depth > 1:
                    self._expand(client, child, child_nav_id, depth - 1)

            self._populate(child, row)
            count += 1

        return count

    def _populate(self, node: LifecycleNode, row: Row):
        """
        Create value leaves for the row's columns and wire up the identity
        leaf.
        """
        ref = row.id
        if ref is not None:
            leaf = node.get_child("id")
            if leaf is None:
                leaf = node.create_child("id")
                self._wire_identity(leaf, node, ref)
            _set_value(leaf, ref)

        for name, val in row.items():
            if name in IDENTITY_COLUMNS:
                continue
            _set_value(node.create_child(encode_name(name)), val)

    def _wire_identity(self, leaf: LifecycleNode, node: LifecycleNode, ref: Ref):
        def on_subscribe(_: LifecycleNode):
            self._registry.subscribe(ref, node)

        def on_unsubscribe(_: LifecycleNode):
            self._registry.unsubscribe(ref)

        leaf.add_on_subscribe_handler(on_subscribe)
        leaf.add_on_unsubscribe_handler(on_unsubscribe)

    def _list_handler(self, nav_id: str | None) -> NodeHandler:
        def handler(node: LifecycleNode):
            future = self.navigate(node, nav_id)
            future.add_done_callback(self._log_failure)

        return handler

    def _log_failure(self, future: Future[int]):
        if future.cancelled() or (e := future.exception()) is None:
            return

        if isinstance(e, ConnectionClosedError):
            self._logger.debug(f"Not navigating: {e}")
        else:
            self._logger.error(f"Navigation failed: {e}")


def _get_name(row: Row) -> str | None:
    """
    Get encoded node name for a row, or `None` if it has no usable display
    name.
    """
    dis = row.dis().strip()
    if not dis or dis == PLACEHOLDER_DIS:
        return None
    return encode_name(dis)


def _get_nav_id(row: Row) -> str | None:
    val: Any = row.get("navId")
    match val:
        case None:
            return None
        case Uri() | Ref():
            return val.val
        case str():
            return val
    return str(val)


def _set_value(leaf: LifecycleNode, val: Any):
    value = to_value(val)
    leaf.value_type = value.type
    leaf.value = value
