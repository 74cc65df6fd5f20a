"""
Host tree interface consumed by the synchronization engine, and an in-memory
implementation of it.

The engine only depends on {obj}`LifecycleNode`; {obj}`Node` is used by the
CLI and may be replaced by any host providing the same capabilities.
"""

from __future__ import annotations

import re
import threading
from collections.abc import Callable, Generator
from typing import Protocol, Self, runtime_checkable

from .values import Value, ValueType

__all__ = [
    "BANNED_CHARS",
    "LifecycleNode",
    "Node",
    "NodeHandler",
    "ValueListener",
    "encode_name",
    "decode_name",
]

__rollup__ = [
    "LifecycleNode",
    "Node",
    "encode_name",
    "decode_name",
]

BANNED_CHARS = "%./\\?*:|<>$@,'\""
"""
Characters which can't appear in a path segment. `%` is included as it's
the escape character.
"""

_ESCAPE_PATTERN = re.compile(r"%([0-9A-F]{2})")

type NodeHandler = Callable[["LifecycleNode"], None]
type ValueListener = Callable[["Node", Value | None], None]


def encode_name(name: str) -> str:
    """
    Encode an arbitrary display name into a name usable as a path segment.
    """
    return "".join(f"%{ord(c):02X}" if c in BANNED_CHARS else c for c in name)


def decode_name(name: str) -> str:
    """
    Reverse of {obj}`encode_name`.
    """
    return _ESCAPE_PATTERN.sub(lambda m: chr(int(m.group(1), 16)), name)


@runtime_checkable
class LifecycleNode(Protocol):
    """
    Tree node with lifecycle hooks, as provided by the host.
    """

    @property
    def name(self) -> str:
        ...

    @property
    def path(self) -> str:
        ...

    @property
    def children(self) -> dict[str, Self]:
        """
        Snapshot of children keyed by (encoded) name.
        """
        ...

    def get_child(self, name: str) -> Self | None:
        ...

    def create_child(self, name: str, *, serializable: bool = True) -> Self:
        ...

    def remove_child(self, name: str) -> Self | None:
        ...

    def clear_children(self):
        ...

    value: Value | None
    value_type: ValueType
    serializable: bool

    def add_on_list_handler(self, handler: NodeHandler):
        ...

    def add_on_subscribe_handler(self, handler: NodeHandler):
        ...

    def add_on_unsubscribe_handler(self, handler: NodeHandler):
        ...


class Node:
    """
    In-memory node. Observers attach using {obj}`Node.list` and
    {obj}`Node.subscribe`, which fire the corresponding hooks.
    """

    _name: str
    _parent: Node | None
    _children: dict[str, Node]
    _lock: threading.RLock

    _value: Value | None
    value_type: ValueType
    serializable: bool
    display_name: str | None

    _on_list: list[NodeHandler]
    _on_subscribe: list[NodeHandler]
    _on_unsubscribe: list[NodeHandler]
    _listeners: list[ValueListener]

    def __init__(
        self,
        name: str,
        parent: Node | None = None,
        *,
        serializable: bool = True,
        display_name: str | None = None,
    ):
        self._name = name
        self._parent = parent
        self._children = {}
        self._lock = threading.RLock()

        self._value = None
        self.value_type = ValueType.DYNAMIC
        self.serializable = serializable
        self.display_name = display_name

        self._on_list = []
        self._on_subscribe = []
        self._on_unsubscribe = []
        self._listeners = []

    def __repr__(self):
        return f"Node({self.path!r})"

    @property
    def name(self) -> str:
        return self._name

    @property
    def parent(self) -> Node | None:
        return self._parent

    @property
    def path(self) -> str:
        if self._parent is None:
            return f"/{self._name}" if self._name else ""
        return f"{self._parent.path}/{self._name}"

    @property
    def children(self) -> dict[str, Node]:
        with self._lock:
            return dict(self._children)

    def get_child(self, name: str) -> Node | None:
        with self._lock:
            return self._children.get(name)

    def create_child(self, name: str, *, serializable: bool = True) -> Node:
        """
        Create a child, or return the existing child with this name.
        """
        with self._lock:
            child = self._children.get(name)
            if child is None:
                child = Node(name, self, serializable=serializable)
                self._children[name] = child
            return child

    def remove_child(self, name: str) -> Node | None:
        with self._lock:
            child = self._children.pop(name, None)

        if child is not None:
            child._parent = None

        return child

    def clear_children(self):
        with self._lock:
            children = list(self._children.values())
            self._children.clear()

        for child in children:
            child._parent = None

    @property
    def value(self) -> Value | None:
        return self._value

    @value.setter
    def value(self, value: Value | None):
        self._value = value

        for listener in list(self._listeners):
            listener(self, value)

    def add_on_list_handler(self, handler: NodeHandler):
        self._on_list.append(handler)

    def add_on_subscribe_handler(self, handler: NodeHandler):
        self._on_subscribe.append(handler)

    def add_on_unsubscribe_handler(self, handler: NodeHandler):
        self._on_unsubscribe.append(handler)

    def list(self) -> dict[str, Node]:
        """
        Observe this node's children, firing "on list" hooks first.
        """
        for handler in list(self._on_list):
            handler(self)
        return self.children

    def subscribe(self, listener: ValueListener):
        """
        Observe this node's value. The first observer fires "on subscribe"
        hooks.
        """
        with self._lock:
            first = not self._listeners
            self._listeners.append(listener)

        if first:
            for handler in list(self._on_subscribe):
                handler(self)

    def unsubscribe(self, listener: ValueListener):
        """
        Stop observing this node's value. The last observer fires "on
        unsubscribe" hooks.
        """
        with self._lock:
            if listener not in self._listeners:
                return
            self._listeners.remove(listener)
            last = not self._listeners

        if last:
            for handler in list(self._on_unsubscribe):
                handler(self)

    @property
    def is_subscribed(self) -> bool:
        return bool(self._listeners)

    def walk(self) -> Generator[Node, None, None]:
        """
        Yield this node and all descendants, depth first.
        """
        yield self
        for child in self.children.values():
            yield from child.walk()
