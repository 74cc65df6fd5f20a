"""
Haystack rows and grids.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any

from .kinds import MARKER, Ref, decode_val, encode_val

__all__ = [
    "PLACEHOLDER_DIS",
    "Col",
    "Row",
    "Grid",
]

__rollup__ = [
    "Row",
    "Grid",
]

PLACEHOLDER_DIS = "????"
"""
Display string of a row with neither `dis` nor `id`.
"""


class Row(Mapping[str, Any]):
    """
    Immutable mapping of column names to non-null values, in column order.
    """

    _vals: dict[str, Any]

    def __init__(self, vals: Mapping[str, Any] | None = None):
        self._vals = {k: v for k, v in (vals or {}).items() if v is not None}

    def __getitem__(self, name: str) -> Any:
        return self._vals[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._vals)

    def __len__(self) -> int:
        return len(self._vals)

    def __repr__(self):
        return f"Row({self._vals!r})"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Row):
            return self._vals == other._vals
        return NotImplemented

    __hash__ = None  # type: ignore[assignment]

    @property
    def id(self) -> Ref | None:
        """
        Entity reference from the `id` column, if any.
        """
        val = self._vals.get("id")
        return val if isinstance(val, Ref) else None

    def has(self, name: str) -> bool:
        return name in self._vals

    def dis(self) -> str:
        """
        Display string: the `dis` tag, else the display of `id`, else
        {obj}`PLACEHOLDER_DIS`.
        """
        dis = self._vals.get("dis")
        if isinstance(dis, str):
            return dis

        ref = self.id
        if ref is not None:
            return ref.display

        return PLACEHOLDER_DIS


@dataclass(frozen=True)
class Col:
    name: str
    meta: dict[str, Any] = field(default_factory=dict)


class Grid:
    """
    Two-dimensional table of values with grid-level and column metadata.
    """

    meta: dict[str, Any]
    cols: list[Col]
    rows: list[Row]

    def __init__(
        self,
        cols: list[Col] | list[str] | None = None,
        rows: list[Row] | list[dict[str, Any]] | None = None,
        meta: dict[str, Any] | None = None,
    ):
        self.meta = dict(meta or {})
        self.rows = [r if isinstance(r, Row) else Row(r) for r in rows or []]

        # default to columns present in any row
        if cols is None:
            cols = list(dict.fromkeys(name for row in self.rows for name in row))

        self.cols = [c if isinstance(c, Col) else Col(c) for c in cols]

    def __iter__(self) -> Iterator[Row]:
        return iter(self.rows)

    def __len__(self) -> int:
        return len(self.rows)

    def __repr__(self):
        return f"Grid(cols={self.col_names}, rows={len(self.rows)})"

    @property
    def col_names(self) -> list[str]:
        return [c.name for c in self.cols]

    @property
    def is_empty(self) -> bool:
        return not self.rows

    @property
    def is_error(self) -> bool:
        return self.meta.get("err") is MARKER

    def row(self, index: int) -> Row:
        return self.rows[index]

    @classmethod
    def make(cls, **vals: Any) -> Grid:
        """
        Build a single-row request grid, e.g. `Grid.make(id=ref)`.
        """
        return cls(cols=list(vals.keys()), rows=[vals])

    @classmethod
    def from_json(cls, obj: Mapping[str, Any]) -> Grid:
        """
        Decode a grid from its Haystack JSON representation.
        """
        meta = {
            k: decode_val(v)
            for k, v in (obj.get("meta") or {}).items()
            if k != "ver"
        }

        cols: list[Col] = []
        for col in obj.get("cols") or []:
            col_meta = {k: decode_val(v) for k, v in col.items() if k != "name"}
            cols.append(Col(col["name"], col_meta))

        rows = [
            Row({k: decode_val(v) for k, v in row.items()})
            for row in obj.get("rows") or []
        ]

        return cls(cols=cols, rows=rows, meta=meta)

    def to_json(self) -> dict[str, Any]:
        """
        Encode this grid as Haystack JSON.
        """
        meta = {"ver": "3.0"} | {k: encode_val(v) for k, v in self.meta.items()}

        cols = [
            {"name": c.name} | {k: encode_val(v) for k, v in c.meta.items()}
            for c in self.cols
        ]

        # empty grid is still required to have a column
        if not cols:
            cols = [{"name": "empty"}]

        rows = [
            {name: encode_val(row[name]) for name in row}
            for row in self.rows
        ]

        return {"meta": meta, "cols": cols, "rows": rows}
