import threading

import requests
from pytest import fixture

from haystack_link import *
from haystack_link.core.poll import reconcile
from haystack_link.core.values import ValueType

URL = "http://localhost:8080/api/demo"


def children_values(node: Node) -> dict:
    return {name: child.value.value for name, child in node.children.items()}


@fixture
def node() -> Node:
    node = Node("point")
    for name, val in [("a", 1.0), ("b", 2.0), ("c", 3.0)]:
        node.create_child(name).value = to_value(Number(val))
    return node


@fixture
def watch(server):
    return server.factory(URL).watch_open("w")


@fixture
def failures() -> list:
    return []


@fixture
def registry(scheduler, failures: list) -> SubscriptionRegistry:
    return SubscriptionRegistry(scheduler, 5.0, on_poll_failure=failures.append)


def test_reconcile_diff(node: Node):
    reconcile(node, Row({"a": Number(1.0), "b": Number(5.0)}))

    assert children_values(node) == {"a": 1.0, "b": 5.0}


def test_reconcile_idempotent(node: Node):
    row = Row({"a": Number(1.0), "b": Number(5.0), "d": "new"})

    reconcile(node, row)
    children = node.children
    values = children_values(node)

    reconcile(node, row)

    assert node.children == children
    assert all(node.children[n] is c for n, c in children.items())
    assert children_values(node) == values


def test_reconcile_types(node: Node):
    reconcile(
        node,
        Row(
            {
                "a": Number(72.0, "°F"),
                "enabled": True,
                "point": MARKER,
                "dis": "Zone Temp",
            }
        ),
    )

    a = node.get_child("a")
    assert a.value_type is ValueType.NUMBER
    assert a.value.unit == "°F"

    # existing children are updated in place
    assert a.serializable

    # new children are ephemeral
    enabled = node.get_child("enabled")
    assert enabled.value_type is ValueType.BOOL
    assert not enabled.serializable
    assert not node.get_child("point").serializable
    assert node.get_child("dis").value.value == "Zone Temp"

    assert node.get_child("b") is None
    assert node.get_child("c") is None


def test_reconcile_identity():
    node = Node("point")
    id_leaf = node.create_child("id")
    id_leaf.value = to_value(Ref("p1"))

    reconcile(node, Row({"id": Ref("p1"), "curVal": Number(1.0)}))

    # identity leaf neither updated nor removed
    assert node.get_child("id") is id_leaf
    assert id_leaf.serializable
    assert sorted(node.children) == ["curVal", "id"]

    # not created by polling either
    other = Node("other")
    reconcile(other, Row({"id": Ref("p2"), "curVal": Number(1.0)}))
    assert sorted(other.children) == ["curVal"]


def test_reconcile_encoded_names():
    node = Node("point")
    stale = node.create_child(encode_name("sp/min"))

    reconcile(node, Row({"sp/min": Number(60.0), "a.b": "x"}))

    # column with same encoded name as a leftover child survives
    assert node.get_child("sp%2Fmin") is stale
    assert stale.value.value == 60.0
    assert node.get_child("a%2Eb").value.value == "x"


def test_poll(registry: SubscriptionRegistry, watch, node: Node):
    other = Node("other")

    registry.subscribe("p1", node)
    registry.subscribe("p2", other)
    registry.on_connected(watch)

    watch.queue.append(
        Grid(
            cols=["id", "a", "b"],
            rows=[
                {"id": Ref("p1"), "a": Number(1.0), "b": Number(5.0)},
                {"id": Ref("p2"), "a": Number(9.0)},
                # unbound and identity-less rows are ignored
                {"id": Ref("p3"), "a": Number(0.0)},
                {"a": Number(0.0)},
            ],
        )
    )

    assert registry.poll_loop.poll() == 2
    assert children_values(node) == {"a": 1.0, "b": 5.0}
    assert children_values(other) == {"a": 9.0}

    # empty poll changes nothing
    assert registry.poll_loop.poll() == 0
    assert children_values(node) == {"a": 1.0, "b": 5.0}


def test_poll_without_bindings(registry: SubscriptionRegistry, watch):
    assert registry.poll_loop.poll() == 0

    registry.on_connected(watch)
    assert registry.poll_loop.poll() == 0
    assert watch.polls == 0


def test_poll_unsubscribed_race(registry: SubscriptionRegistry, watch, node):
    registry.subscribe("p1", node)
    registry.on_connected(watch)
    registry.unsubscribe("p1")
    registry.subscribe("p2", Node("other"))

    watch.queue.append(Grid(rows=[{"id": Ref("p1"), "a": Number(7.0)}]))

    assert registry.poll_loop.poll() == 0
    assert children_values(node)["a"] == 1.0


def test_scheduled_poll(
    registry: SubscriptionRegistry, watch, node: Node, scheduler
):
    registry.subscribe("p1", node)
    registry.on_connected(watch)

    watch.queue.append(Grid(rows=[{"id": Ref("p1"), "temp": Number(21.5)}]))

    scheduler.run_tasks()

    assert children_values(node) == {"temp": 21.5}
    assert watch.polls == 1


def test_poll_failure(
    registry: SubscriptionRegistry, watch, node: Node, scheduler, failures
):
    registry.subscribe("p1", node)
    registry.on_connected(watch)
    task = scheduler.active_tasks[0]

    watch.queue.append(requests.ConnectionError("refused"))

    scheduler.run_tasks()

    # schedule cancelled and watch dropped until next connect
    assert task.cancelled
    assert not registry.poll_loop.running
    assert registry.watch is None
    assert failures == [watch]

    # binding kept for replay
    assert registry.lookup("p1") is node


def test_poll_resumes_after_reconnect(
    registry: SubscriptionRegistry, server, node: Node, scheduler, failures
):
    client = server.factory(URL)
    watch1 = client.watch_open("w1")

    registry.subscribe("p1", node)
    registry.on_connected(watch1)

    watch1.queue.append(requests.ConnectionError("refused"))
    scheduler.run_tasks()
    assert failures == [watch1]

    watch2 = client.watch_open("w2")
    registry.on_connected(watch2)
    assert len(scheduler.active_tasks) == 1

    watch2.queue.append(Grid(rows=[{"id": Ref("p1"), "temp": Number(20.0)}]))
    scheduler.run_tasks()

    assert children_values(node) == {"temp": 20.0}
    assert watch1.polls == 1


class BlockingWatch:
    """
    Watch whose poll blocks until released, tracking concurrent polls.
    """

    def __init__(self):
        self.entered = threading.Event()
        self.release = threading.Event()
        self.lock = threading.Lock()
        self.active = 0
        self.max_active = 0
        self.polls = 0

    def sub(self, refs: list[Ref]) -> Grid:
        return Grid()

    def poll_changes(self) -> Grid:
        with self.lock:
            self.active += 1
            self.polls += 1
            self.max_active = max(self.max_active, self.active)

        self.entered.set()
        self.release.wait(timeout=5)

        with self.lock:
            self.active -= 1

        return Grid()


def test_restart_during_blocked_poll(
    registry: SubscriptionRegistry, scheduler
):
    watch = BlockingWatch()
    registry.subscribe("p1", Node("p1"))
    registry.on_connected(watch)

    [old_task] = scheduler.active_tasks

    thread = threading.Thread(target=old_task.run)
    thread.start()
    assert watch.entered.wait(timeout=5)

    registry.reconfigure(0.5)
    [new_task] = scheduler.active_tasks
    assert new_task is not old_task

    # previous cycle still blocked, so this one is skipped
    new_task.run()
    assert watch.polls == 1

    watch.release.set()
    thread.join(timeout=5)

    new_task.run()

    assert watch.polls == 2
    assert watch.max_active == 1
