"""
Mapping of Haystack values to values of the local tree.
"""

from __future__ import annotations

import datetime
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any

from .grid import Grid, Row
from .kinds import Marker, Number, Ref, Uri

__all__ = [
    "ValueType",
    "Value",
    "to_value",
]


class ValueType(Enum):
    """
    Declared type of a node's value.
    """

    NUMBER = auto()
    BOOL = auto()
    STRING = auto()
    TIME = auto()
    MAP = auto()
    ARRAY = auto()
    DYNAMIC = auto()

    def __str__(self) -> str:
        return self.name.lower()


@dataclass(frozen=True)
class Value:
    """
    Typed value held by a tree node.
    """

    value: Any
    type: ValueType
    unit: str | None = None

    def __str__(self):
        if self.unit:
            return f"{self.value} {self.unit}"
        return str(self.value)


def to_value(val: Any) -> Value:
    """
    Convert a Haystack value to a local {obj}`Value`.
    """
    match val:
        case bool():
            return Value(val, ValueType.BOOL)
        case Number():
            return Value(val.val, ValueType.NUMBER, val.unit)
        case str():
            return Value(val, ValueType.STRING)
        case Marker():
            return Value(True, ValueType.BOOL)
        case Ref():
            return Value(str(val), ValueType.STRING)
        case Uri():
            return Value(val.val, ValueType.STRING)
        case datetime.date() | datetime.time():
            # covers datetime.datetime as well
            return Value(val.isoformat(), ValueType.TIME)
        case Row():
            return Value(
                {k: to_value(v).value for k, v in val.items()}, ValueType.MAP
            )
        case list():
            return Value([to_value(v).value for v in val], ValueType.ARRAY)
        case Grid():
            return Value(str(val), ValueType.DYNAMIC)
        case None:
            return Value(None, ValueType.DYNAMIC)

    return Value(str(val), ValueType.DYNAMIC)
