"""
Haystack value kinds and their JSON (Haystack 3.0) encoding.

Strings, booleans, dates, times and datetimes map to the corresponding
Python types. The remaining kinds are represented by the classes below.
"""

from __future__ import annotations

import datetime
import math
from dataclasses import dataclass
from typing import Any

__all__ = [
    "Marker",
    "Remove",
    "NA",
    "MARKER",
    "REMOVE",
    "NA_VAL",
    "Ref",
    "Number",
    "Uri",
    "Coord",
    "XStr",
    "Bin",
    "decode_val",
    "encode_val",
]

__rollup__ = [
    "MARKER",
    "REMOVE",
    "NA_VAL",
    "Ref",
    "Number",
    "Uri",
]


class _Singleton:
    _instance = None
    _code: str

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self):
        return f"{type(self).__name__}()"

    def __str__(self):
        return self._code


class Marker(_Singleton):
    """
    Marker tag: presence of a tag with no value.
    """

    _code = "✓"


class Remove(_Singleton):
    """
    Indicates removal of a tag in a diff.
    """

    _code = "remove"


class NA(_Singleton):
    """
    Not available.
    """

    _code = "NA"


MARKER = Marker()
REMOVE = Remove()
NA_VAL = NA()


@dataclass(frozen=True)
class Ref:
    """
    Reference to an entity. Equality only considers `val`.
    """

    val: str
    dis: str | None = None

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Ref) and other.val == self.val

    def __hash__(self) -> int:
        return hash(self.val)

    def __str__(self):
        return f"@{self.val}"

    @property
    def display(self) -> str:
        """
        Display string: `dis` if set, otherwise the id itself.
        """
        return self.dis if self.dis else self.val

    @classmethod
    def make(cls, val: str, dis: str | None = None) -> Ref:
        """
        Create a ref, stripping a leading `@` if present.
        """
        return cls(val[1:] if val.startswith("@") else val, dis)


@dataclass(frozen=True)
class Number:
    val: float
    unit: str | None = None

    def __str__(self):
        return f"{self.num_str}{self.unit}" if self.unit else self.num_str

    @property
    def num_str(self) -> str:
        """
        Numeric part as encoded on the wire, without unit.
        """
        if math.isinf(self.val):
            return "INF" if self.val > 0 else "-INF"
        if math.isnan(self.val):
            return "NaN"
        if self.val == int(self.val):
            return str(int(self.val))
        return repr(self.val)


@dataclass(frozen=True)
class Uri:
    val: str

    def __str__(self):
        return self.val


@dataclass(frozen=True)
class Coord:
    lat: float
    lng: float

    def __str__(self):
        return f"C({self.lat},{self.lng})"


@dataclass(frozen=True)
class XStr:
    type: str
    val: str

    def __str__(self):
        return f"{self.type}({self.val!r})"


@dataclass(frozen=True)
class Bin:
    mime: str

    def __str__(self):
        return f"Bin({self.mime!r})"


def decode_val(raw: Any) -> Any:
    """
    Decode a JSON value into a Haystack value.
    """
    from .grid import Grid, Row

    if raw is None or isinstance(raw, bool):
        return raw

    if isinstance(raw, (int, float)):
        # not produced by conforming servers, but harmless to accept
        return Number(float(raw))

    if isinstance(raw, list):
        return [decode_val(v) for v in raw]

    if isinstance(raw, dict):
        if "cols" in raw and "rows" in raw:
            return Grid.from_json(raw)
        return Row({k: decode_val(v) for k, v in raw.items()})

    assert isinstance(raw, str)

    if len(raw) < 2 or raw[1] != ":":
        return raw

    code, body = raw[0], raw[2:]

    match code:
        case "s":
            return body
        case "m":
            return MARKER
        case "-":
            return REMOVE
        case "z":
            return NA_VAL
        case "n":
            return _decode_number(body)
        case "r":
            val, _, dis = body.partition(" ")
            return Ref(val, dis or None)
        case "u":
            return Uri(body)
        case "d":
            return datetime.date.fromisoformat(body)
        case "h":
            return datetime.time.fromisoformat(body)
        case "t":
            # timezone name follows the ISO timestamp; offset is sufficient
            stamp = body.split(" ", 1)[0]
            if stamp.endswith("Z"):
                stamp = stamp[:-1] + "+00:00"
            return datetime.datetime.fromisoformat(stamp)
        case "c":
            lat, lng = body.split(",", 1)
            return Coord(float(lat), float(lng))
        case "x":
            type_, _, val = body.partition(":")
            return XStr(type_, val)
        case "b":
            return Bin(body)

    # unknown type code: keep raw string
    return raw


def encode_val(val: Any) -> Any:
    """
    Encode a Haystack value as JSON.
    """
    from .grid import Grid, Row

    if val is None or isinstance(val, bool):
        return val

    if isinstance(val, str):
        return f"s:{val}"

    if isinstance(val, (int, float)):
        val = Number(float(val))

    match val:
        case Marker():
            return "m:"
        case Remove():
            return "-:"
        case NA():
            return "z:"
        case Number():
            if val.unit:
                return f"n:{val.num_str} {val.unit}"
            return f"n:{val.num_str}"
        case Ref():
            return f"r:{val.val} {val.dis}" if val.dis else f"r:{val.val}"
        case Uri():
            return f"u:{val.val}"
        case datetime.datetime():
            return f"t:{val.isoformat()}"
        case datetime.date():
            return f"d:{val.isoformat()}"
        case datetime.time():
            return f"h:{val.isoformat()}"
        case Coord():
            return f"c:{val.lat},{val.lng}"
        case XStr():
            return f"x:{val.type}:{val.val}"
        case Bin():
            return f"b:{val.mime}"
        case Grid():
            return val.to_json()
        case Row():
            return {k: encode_val(v) for k, v in val.items()}
        case list():
            return [encode_val(v) for v in val]
        case dict():
            return {k: encode_val(v) for k, v in val.items()}

    raise TypeError(f"Cannot encode value of type {type(val)}: {val!r}")


def _decode_number(body: str) -> Number:
    num, _, unit = body.partition(" ")
    match num:
        case "INF":
            value = math.inf
        case "-INF":
            value = -math.inf
        case "NaN":
            value = math.nan
        case _:
            value = float(num)
    return Number(value, unit or None)
