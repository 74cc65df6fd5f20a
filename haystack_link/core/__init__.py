"""
This module implements synchronization of a local node tree with a Haystack
server: subscriptions, watch polling and lazy navigation.
"""

from pyrollup import rollup

from . import (
    actions,
    client,
    connection,
    connector,
    exceptions,
    grid,
    kinds,
    navigation,
    poll,
    scheduler,
    subscriptions,
    tree,
    values,
)
from .actions import *  # noqa
from .client import *  # noqa
from .connection import *  # noqa
from .connector import *  # noqa
from .exceptions import *  # noqa
from .grid import *  # noqa
from .kinds import *  # noqa
from .navigation import *  # noqa
from .poll import *  # noqa
from .scheduler import *  # noqa
from .subscriptions import *  # noqa
from .tree import *  # noqa
from .values import *  # noqa

__all__ = rollup(
    connector,
    subscriptions,
    navigation,
    connection,
    client,
    actions,
    tree,
    values,
    grid,
    kinds,
    exceptions,
)

__canonical_children__ = [
    "connector",
    "subscriptions",
    "poll",
    "navigation",
    "connection",
    "client",
    "actions",
    "tree",
    "values",
    "grid",
    "kinds",
    "scheduler",
    "exceptions",
]
