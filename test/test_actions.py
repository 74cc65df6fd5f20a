import requests
from pytest import fixture, mark, raises

from haystack_link import *
from haystack_link.core import actions
from haystack_link.core.exceptions import ActionError, CallError


def priority_array(level: int | None = None, val=None, who="tester") -> Grid:
    return Grid(
        cols=["level", "levelDis", "val", "who"],
        rows=[
            {
                "level": Number(i),
                "levelDis": f"Level {i}",
                "val": val if i == level else None,
                "who": who if i == level else None,
            }
            for i in range(1, 18)
        ],
    )


@fixture
def point_write(server):
    """
    Server-side point write which echoes the written level.
    """

    def write(ref, level, who, val, duration):
        return priority_array(level, val, who)

    server.results["pointWrite"] = write


def test_read(connector: Connector, server):
    server.results["read"] = Grid(
        cols=["id", "dis", "site"],
        rows=[{"id": Ref("s1", "Site 1"), "dis": "Site 1", "site": MARKER}],
    )

    table = actions.read(connector, "site")

    assert server.ops("read") == [("site", 1)]
    assert table.columns == ["id", "dis", "site"]
    assert table.as_dicts() == [{"id": "@s1", "dis": "Site 1", "site": True}]
    assert len(table) == 1

    actions.read(connector, "point", None)
    assert server.ops("read")[-1] == ("point", None)

    with raises(ActionError):
        actions.read(connector, "")


def test_eval(connector: Connector, server):
    server.results["eval"] = Grid(
        cols=["val", "missing"], rows=[{"val": Number(3.0)}]
    )

    table = actions.eval(connector, "1 + 2")

    assert server.ops("eval") == [("1 + 2",)]
    assert table.rows == [[Value(3.0, ValueType.NUMBER), None]]


def test_his_read(connector: Connector, server):
    actions.his_read(connector, "@p1", "yesterday")
    assert server.ops("hisRead") == [(Ref("p1"), "yesterday")]

    with raises(ActionError, match="Missing ID"):
        actions.his_read(connector, " ", "yesterday")

    with raises(ActionError):
        actions.his_read(connector, "p1", "")


def test_call_error(connector: Connector, server):
    server.results["eval"] = CallError("Unknown func: foo")

    with raises(ActionError, match="Unknown func: foo"):
        actions.eval(connector, "foo()")


def test_transport_error(connector: Connector, server):
    server.results["eval"] = requests.ConnectionError("refused")

    with raises(ActionError, match="Request failed"):
        actions.eval(connector, "now()")


def test_timeout(connector: Connector, server):
    server.connect_error = requests.ConnectionError("refused")

    with raises(ActionError, match="Failed to retrieve data"):
        actions.eval(connector, "now()", timeout=0.05)


def test_invoke(connector: Connector, server):
    actions.invoke(
        connector,
        "ahu1",
        "setMode",
        {"str": "occupied", "bool": True, "number": 5},
    )

    [(ref, action, args)] = server.ops("invokeAction")
    assert ref == Ref("ahu1")
    assert action == "setMode"
    assert args == {"str": "occupied", "bool": True, "number": Number(5.0)}

    # unset arguments are omitted
    actions.invoke(connector, "ahu1", "reset", {"str": None})
    assert server.ops("invokeAction")[-1][2] == {}


@mark.parametrize(
    "args",
    [
        {"unknown": "x"},
        {"bool": "true"},
        {"number": "5"},
        {"number": True},
        {"str": 5},
    ],
)
def test_invoke_invalid(connector: Connector, server, args):
    with raises(ActionError):
        actions.invoke(connector, "ahu1", "setMode", args)

    assert server.ops("invokeAction") == []


def test_invoke_missing(connector: Connector):
    with raises(ActionError, match="Missing ID"):
        actions.invoke(connector, "", "reset")

    with raises(ActionError, match="Missing action"):
        actions.invoke(connector, "ahu1", "")


def test_point_write(connector: Connector, server, point_write):
    table = actions.point_write(
        connector,
        "@p1",
        8,
        "72.5",
        "number",
        "°F",
        who="tester",
        duration=30,
        duration_unit="min",
    )

    [(ref, level, who, val, duration)] = server.ops("pointWrite")
    assert ref == Ref("p1")
    assert level == 8
    assert who == "tester"
    assert val == Number(72.5, "°F")
    assert duration == Number(30, "min")

    assert table.columns == ["level", "levelDis", "val", "who"]
    assert table.as_dicts() == [
        {"level": 8.0, "levelDis": "Level 8", "val": 72.5, "who": "tester"}
    ]


@mark.parametrize(
    "value,value_type,expected",
    [
        ("TRUE", "bool", True),
        ("false", "bool", False),
        ("on", "bool", False),
        ("hello", "str", "hello"),
        ("1e3", "number", Number(1000.0)),
    ],
)
def test_point_write_values(
    connector: Connector, server, point_write, value, value_type, expected
):
    actions.point_write(connector, "p1", "10", value, value_type)

    [(_, level, _, val, duration)] = server.ops("pointWrite")
    assert level == 10
    assert val == expected
    assert duration is None


def test_point_write_release(connector: Connector, server, point_write):
    table = actions.point_write(connector, "p1", 8)

    [(_, _, _, val, _)] = server.ops("pointWrite")
    assert val is None
    assert table.as_dicts() == [{"level": 8.0, "levelDis": "Level 8"}]


def test_point_write_array_fallback(connector: Connector, server):
    # server acknowledges the write without returning the priority array
    server.results["pointWriteArray"] = priority_array(17, Number(1.0))

    table = actions.point_write(connector, "p1", 17, "1", "number")

    assert server.ops("pointWriteArray") == [(Ref("p1"),)]
    assert table.as_dicts()[0]["val"] == 1.0


@mark.parametrize(
    "kwargs,match",
    [
        ({"level": 0}, "Invalid level"),
        ({"level": 18}, "Invalid level"),
        ({"level": "high"}, "Invalid level"),
        ({"value": "1"}, "Missing value type"),
        ({"value": "1", "value_type": "int"}, "Unknown type"),
        ({"value": "x", "value_type": "number"}, "Invalid number"),
        ({"duration": 5}, "Missing duration unit"),
        ({"duration": 5, "duration_unit": "fortnight"}, "Unknown duration"),
        ({"id": ""}, "Missing ID"),
    ],
)
def test_point_write_invalid(connector: Connector, server, kwargs, match):
    kwargs = {"id": "p1"} | kwargs

    with raises(ActionError, match=match):
        actions.point_write(connector, **kwargs)

    assert server.ops("pointWrite") == []


def test_subscribe_stream(connector: Connector, server, scheduler):
    server.records["p1"] = Row({"id": Ref("p1"), "curVal": Number(20.0)})
    changes: list[Table] = []

    stream = SubscribeStream(connector, "@p1", changes.append, 1000)
    assert stream.ref == Ref("p1")

    stream.start().result(timeout=1)

    # dedicated watch, separate from the connector's
    watch = server.watch
    assert watch is not connector.registry.watch
    assert watch.subs == [Ref("p1")]

    assert len(changes) == 1
    assert changes[0].as_dicts() == [{"id": "@p1", "curVal": 20.0}]

    [task] = [t for t in scheduler.active_tasks if t.delay == 1.0]

    watch.queue.append(Grid(rows=[{"id": Ref("p1"), "curVal": Number(21.0)}]))
    task.run()

    # no change
    task.run()

    assert [c.as_dicts()[0]["curVal"] for c in changes] == [20.0, 21.0]

    stream.stop()

    assert task.cancelled
    assert watch.closed


def test_subscribe_stream_invalid(connector: Connector):
    with raises(ActionError):
        SubscribeStream(connector, "p1", print, 0)

    with raises(ActionError, match="Missing ID"):
        SubscribeStream(connector, "", print)
