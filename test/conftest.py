import logging
import time
from collections.abc import Callable
from concurrent.futures import Future
from typing import Any, Generator

from pytest import fixture

from haystack_link import *
from haystack_link.core.exceptions import CallError, UnsupportedNavError

logging.basicConfig(level=logging.WARNING)

URL = "http://localhost:8080/api/demo"


class FakeTask:
    """
    Recurring task which only runs when triggered by the test.
    """

    def __init__(self, fn: Callable[[], Any], delay: float):
        self.fn = fn
        self.delay = delay
        self.cancelled = False
        self.runs = 0

    def cancel(self):
        self.cancelled = True

    def run(self):
        if not self.cancelled:
            self.runs += 1
            self.fn()


class ImmediateScheduler:
    """
    Scheduler running submitted work inline on the caller's thread.
    """

    def __init__(self):
        self.tasks: list[FakeTask] = []
        self.submitted = 0
        self.is_shutdown = False
        self._logger = logging.getLogger("haystack-link")

    def submit(self, fn, *args, **kwargs) -> Future:
        if self.is_shutdown:
            raise RuntimeError("cannot schedule new futures after shutdown")

        self.submitted += 1
        future: Future = Future()
        future.set_running_or_notify_cancel()

        try:
            result = fn(*args, **kwargs)
        except Exception as e:
            future.set_exception(e)
        else:
            future.set_result(result)

        return future

    def schedule_with_fixed_delay(
        self, fn, delay: float, initial_delay: float | None = None
    ) -> FakeTask:
        task = FakeTask(fn, delay)
        self.tasks.append(task)
        return task

    @property
    def active_tasks(self) -> list[FakeTask]:
        return [t for t in self.tasks if not t.cancelled]

    def run_tasks(self):
        for task in self.active_tasks:
            task.run()

    def shutdown(self):
        self.is_shutdown = True
        for task in self.tasks:
            task.cancel()


class FakeWatch:
    def __init__(self, client: "FakeClient", dis: str, lease: float | None):
        self.client = client
        self.dis = dis
        self.lease = lease
        self.id = f"w-{len(client.server.watches)}"
        self.subs: list[Ref] = []
        self.unsubs: list[Ref] = []
        self.queue: list[Grid | Exception] = []
        self.polls = 0
        self.closed = False

    def __repr__(self):
        return f"FakeWatch({self.id})"

    @property
    def is_open(self) -> bool:
        return not self.closed

    def sub(self, refs: list[Ref]) -> Grid:
        self.subs += refs
        records = self.client.server.records
        return Grid(rows=[records[r.val] for r in refs if r.val in records])

    def unsub(self, refs: list[Ref]):
        self.unsubs += refs

    def poll_changes(self) -> Grid:
        self.polls += 1
        if not self.queue:
            return Grid()

        result = self.queue.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    def close(self):
        self.closed = True


class FakeClient:
    """
    Client answering from the state of a {obj}`FakeServer`.
    """

    def __init__(self, server: "FakeServer", url: str, user, password):
        self.server = server
        self.url = url
        self.user = user
        self.password = password
        self.closed = False

    def about(self) -> Row:
        if self.server.connect_error is not None:
            raise self.server.connect_error
        return self.server.about

    def watch_open(self, dis: str, lease: float | None = None) -> FakeWatch:
        watch = FakeWatch(self, dis, lease)
        self.server.watches.append(watch)
        return watch

    def close(self):
        self.closed = True

    def call(self, op: str, grid: Grid | None = None) -> Grid:
        return self._respond(op, grid)

    def read_all(self, filter: str, limit: int | None = None) -> Grid:
        return self._respond("read", filter, limit)

    def read_by_id(self, ref: Ref) -> Row:
        self.server.requests.append(("readById", (ref,)))
        if ref.val not in self.server.records:
            raise CallError(f"Unknown record: {ref}")
        return self.server.records[ref.val]

    def eval(self, expr: str) -> Grid:
        return self._respond("eval", expr)

    def nav(self, nav_id: str | None = None) -> Grid:
        self.server.requests.append(("nav", (nav_id,)))

        result = self.server.nav_grids.get(nav_id)
        if result is None:
            raise UnsupportedNavError(f"Unknown navId: {nav_id}")
        if isinstance(result, Exception):
            raise result
        return result

    def invoke_action(self, ref: Ref, action: str, args=None) -> Grid:
        return self._respond("invokeAction", ref, action, args)

    def point_write(self, ref, level, who=None, val=None, duration=None) -> Grid:
        return self._respond("pointWrite", ref, level, who, val, duration)

    def point_write_array(self, ref: Ref) -> Grid:
        return self._respond("pointWriteArray", ref)

    def his_read(self, ref: Ref, range: str) -> Grid:
        return self._respond("hisRead", ref, range)

    def _respond(self, op: str, *args) -> Grid:
        self.server.requests.append((op, args))

        result = self.server.results.get(op)
        if isinstance(result, Exception):
            raise result
        if callable(result):
            return result(*args)
        return result if result is not None else Grid()


class FakeServer:
    """
    In-memory stand-in for a Haystack server; serves as client factory.
    """

    def __init__(self):
        self.about = Row(
            {"productName": "Fake Haystack", "productVersion": "3.1.0"}
        )
        self.connect_error: Exception | None = None
        self.records: dict[str, Row] = {}
        self.nav_grids: dict[str | None, Grid | Exception] = {}
        self.results: dict[str, Any] = {}
        self.requests: list[tuple[str, tuple]] = []
        self.clients: list[FakeClient] = []
        self.watches: list[FakeWatch] = []

    def factory(self, url, user=None, password=None, *, logger=None):
        client = FakeClient(self, url, user, password)
        self.clients.append(client)
        return client

    @property
    def watch(self) -> FakeWatch:
        return self.watches[-1]

    def ops(self, op: str) -> list[tuple]:
        return [args for name, args in self.requests if name == op]


class Observer:
    """
    Value listener recording the values it receives.
    """

    def __init__(self):
        self.values: list[Value | None] = []

    def __call__(self, node: Node, value: Value | None):
        self.values.append(value)


def wait_for(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@fixture
def server() -> FakeServer:
    return FakeServer()


@fixture
def scheduler() -> Generator[ImmediateScheduler, None, None]:
    scheduler = ImmediateScheduler()
    yield scheduler
    scheduler.shutdown()


@fixture
def root() -> Node:
    return Node("demo")


@fixture
def connector(
    root: Node, server: FakeServer, scheduler: ImmediateScheduler
) -> Generator[Connector, None, None]:
    """
    Connector using the fake server, not yet started.
    """
    connector = Connector(
        root,
        URL,
        poll_rate=5.0,
        client_factory=server.factory,
        scheduler=scheduler,
    )
    yield connector
    connector.destroy()


@fixture
def fakes():
    """
    Access to test doubles from test modules.
    """

    class Fakes:
        Scheduler = ImmediateScheduler
        Server = FakeServer
        Observer = Observer
        wait_for = staticmethod(wait_for)
        url = URL

    return Fakes
