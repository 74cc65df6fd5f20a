import datetime
import math

from pytest import mark, raises

from haystack_link import *
from haystack_link.core.kinds import Coord, XStr, decode_val, encode_val


@mark.parametrize(
    "raw,expected",
    [
        ("s:hello", "hello"),
        ("plain", "plain"),
        ("m:", MARKER),
        ("z:", NA_VAL),
        ("n:21.5 °F", Number(21.5, "°F")),
        ("n:42", Number(42.0)),
        ("u:http://example.com", Uri("http://example.com")),
        ("d:2024-03-01", datetime.date(2024, 3, 1)),
        ("h:12:30:00", datetime.time(12, 30)),
        ("c:37.5,-77.4", Coord(37.5, -77.4)),
        ("x:Span:today", XStr("Span", "today")),
        (True, True),
        (None, None),
    ],
)
def test_decode(raw, expected):
    assert decode_val(raw) == expected


def test_decode_ref():
    ref = decode_val("r:p:demo:r:1eeaf Main Elec Meter")

    assert ref == Ref("p:demo:r:1eeaf")
    assert ref.dis == "Main Elec Meter"
    assert ref.display == "Main Elec Meter"
    assert str(ref) == "@p:demo:r:1eeaf"

    ref = decode_val("r:abc")
    assert ref.dis is None
    assert ref.display == "abc"


def test_decode_special_numbers():
    assert decode_val("n:INF").val == math.inf
    assert decode_val("n:-INF").val == -math.inf
    assert math.isnan(decode_val("n:NaN").val)


def test_decode_datetime():
    val = decode_val("t:2024-03-01T12:00:00-05:00 New_York")

    assert isinstance(val, datetime.datetime)
    assert val.utcoffset() == datetime.timedelta(hours=-5)

    val = decode_val("t:2024-03-01T17:00:00Z UTC")
    assert val.utcoffset() == datetime.timedelta(0)


def test_decode_nested():
    val = decode_val({"dis": "s:Site", "site": "m:", "tags": ["n:1", "s:x"]})

    assert isinstance(val, Row)
    assert val["dis"] == "Site"
    assert val["site"] is MARKER
    assert val["tags"] == [Number(1.0), "x"]


def test_encode():
    assert encode_val("hello") == "s:hello"
    assert encode_val(MARKER) == "m:"
    assert encode_val(Number(21.5, "°F")) == "n:21.5 °F"
    assert encode_val(Number(17)) == "n:17"
    assert encode_val(5) == "n:5"
    assert encode_val(Ref("abc")) == "r:abc"
    assert encode_val(Ref("abc", "Abc")) == "r:abc Abc"
    assert encode_val(Uri("nav:1")) == "u:nav:1"
    assert encode_val(False) is False
    assert encode_val(datetime.date(2024, 3, 1)) == "d:2024-03-01"


def test_encode_invalid():
    with raises(TypeError):
        encode_val(object())


def test_ref_make():
    assert Ref.make("@abc").val == "abc"
    assert Ref.make("abc").val == "abc"
    assert Ref("abc", "x") == Ref("abc", "y")
    assert len({Ref("abc", "x"), Ref("abc")}) == 1


def test_grid_from_json():
    grid = Grid.from_json(
        {
            "meta": {"ver": "3.0", "watchId": "s:w-1"},
            "cols": [{"name": "id"}, {"name": "curVal", "unit": "s:°F"}],
            "rows": [
                {"id": "r:p1 Temp", "curVal": "n:72 °F"},
                {"id": "r:p2"},
            ],
        }
    )

    assert grid.meta == {"watchId": "w-1"}
    assert grid.col_names == ["id", "curVal"]
    assert grid.cols[1].meta == {"unit": "°F"}
    assert len(grid) == 2
    assert grid.row(0).id == Ref("p1")
    assert grid.row(0)["curVal"] == Number(72.0, "°F")
    assert not grid.row(1).has("curVal")
    assert not grid.is_error


def test_grid_error():
    grid = Grid.from_json(
        {
            "meta": {"ver": "3.0", "err": "m:", "dis": "s:Not found"},
            "cols": [{"name": "empty"}],
            "rows": [],
        }
    )

    assert grid.is_error
    assert grid.is_empty


def test_grid_to_json():
    grid = Grid.make(id=Ref("p1"), level=Number(8), who=None)

    assert grid.to_json() == {
        "meta": {"ver": "3.0"},
        "cols": [{"name": "id"}, {"name": "level"}, {"name": "who"}],
        "rows": [{"id": "r:p1", "level": "n:8"}],
    }

    # empty grids still need a column
    assert Grid().to_json()["cols"] == [{"name": "empty"}]


def test_row_dis():
    assert Row({"dis": "Site A", "id": Ref("s1", "Other")}).dis() == "Site A"
    assert Row({"id": Ref("s1", "Site B")}).dis() == "Site B"
    assert Row({"id": Ref("s1")}).dis() == "s1"
    assert Row({"area": Number(100.0)}).dis() == "????"
