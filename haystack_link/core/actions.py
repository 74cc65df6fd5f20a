"""
User-facing actions: marshal parameters into remote calls and results into
tables.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FuturesTimeoutError
from dataclasses import dataclass, field
from logging import Logger
from typing import Any

import requests

from .client import HaystackClient, Watch
from .connector import Connector
from .exceptions import ActionError, CallError, HaystackError
from .grid import Grid
from .kinds import Number, Ref
from .scheduler import ScheduledTask
from .values import Value, to_value

__all__ = [
    "ACTION_TIMEOUT",
    "LEVELS",
    "VALUE_TYPES",
    "DURATION_UNITS",
    "INVOKE_ARG_TYPES",
    "Table",
    "SubscribeStream",
    "read",
    "eval",
    "his_read",
    "invoke",
    "point_write",
    "parse_ref",
]

__rollup__ = [
    "Table",
    "SubscribeStream",
]

ACTION_TIMEOUT = 10.0
"""
Seconds to wait for the server before an action fails.
"""

LEVELS = range(1, 18)
"""
Valid point write levels.
"""

VALUE_TYPES = ("bool", "number", "str")
"""
Supported value types for point writes.
"""

DURATION_UNITS = ("ms", "sec", "min", "hr", "day", "wk", "mo", "yr")
"""
Supported units of point write durations.
"""

INVOKE_ARG_TYPES: dict[str, type] = {
    "str": str,
    "bool": bool,
    "number": float,
}
"""
Supported arguments of invoked actions and their types.
"""

POINT_WRITE_COLUMNS = ["level", "levelDis", "val", "who"]


@dataclass
class Table:
    """
    Tabular action result.
    """

    columns: list[str] = field(default_factory=list)
    rows: list[list[Value | None]] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.rows)

    @classmethod
    def from_grid(cls, grid: Grid) -> Table:
        columns = grid.col_names
        rows = [
            [to_value(row[c]) if c in row else None for c in columns]
            for row in grid
        ]
        return cls(columns, rows)

    def as_dicts(self) -> list[dict[str, Any]]:
        """
        Rows as mappings of column to raw value, omitting empty cells.
        """
        return [
            {c: v.value for c, v in zip(self.columns, row) if v is not None}
            for row in self.rows
        ]


def parse_ref(id: str | None) -> Ref:
    """
    Parse a user-provided id, with or without leading `@`.
    """
    if id is None or not id.strip():
        raise ActionError("Missing ID")
    return Ref.make(id.strip())


def read(
    connector: Connector,
    filter: str,
    limit: int | None = 1,
    *,
    timeout: float = ACTION_TIMEOUT,
) -> Table:
    """
    Read records matching a filter.
    """
    if not filter:
        raise ActionError("Missing filter")
    return Table.from_grid(_result(connector.read(filter, limit), timeout))


def eval(
    connector: Connector, expr: str, *, timeout: float = ACTION_TIMEOUT
) -> Table:
    """
    Evaluate an Axon expression.
    """
    if not expr:
        raise ActionError("Missing expression")
    return Table.from_grid(_result(connector.eval(expr), timeout))


def his_read(
    connector: Connector,
    id: str,
    range: str,
    *,
    timeout: float = ACTION_TIMEOUT,
) -> Table:
    """
    Read history of a point over a range, e.g. `yesterday` or
    `2024-01-01,2024-01-31`.
    """
    ref = parse_ref(id)
    if not range:
        raise ActionError("Missing range")
    return Table.from_grid(_result(connector.his_read(ref, range), timeout))


def invoke(
    connector: Connector,
    id: str,
    action: str,
    args: Mapping[str, Any] | None = None,
    *,
    timeout: float = ACTION_TIMEOUT,
) -> Table:
    """
    Invoke an action on an entity. Supported arguments are given by
    {obj}`INVOKE_ARG_TYPES`; unset (`None`) arguments are omitted.
    """
    ref = parse_ref(id)
    if not action:
        raise ActionError("Missing action")

    hargs: dict[str, Any] = {}

    for name, val in (args or {}).items():
        if name not in INVOKE_ARG_TYPES:
            raise ActionError(f"Unsupported argument: {name}")
        if val is None:
            continue

        arg_type = INVOKE_ARG_TYPES[name]
        if arg_type is float:
            if isinstance(val, bool) or not isinstance(val, (int, float)):
                raise ActionError(f"Argument '{name}' must be a number")
            hargs[name] = Number(float(val))
        else:
            if not isinstance(val, arg_type):
                raise ActionError(
                    f"Argument '{name}' must be of type {arg_type.__name__}"
                )
            hargs[name] = val

    grid = _result(connector.invoke_action(ref, action, hargs), timeout)
    return Table.from_grid(grid)


def point_write(
    connector: Connector,
    id: str,
    level: int | str = 17,
    value: str | None = None,
    value_type: str | None = None,
    unit: str | None = None,
    who: str | None = None,
    duration: float | None = None,
    duration_unit: str | None = None,
    *,
    timeout: float = ACTION_TIMEOUT,
) -> Table:
    """
    Write a value to a level of a point's priority array, or release the
    level if no value is given. Returns the resulting state of that level.

    :param id: Point id
    :param level: Level from 1-17
    :param value: Value to write as a string, parsed according to `value_type`
    :param value_type: One of {obj}`VALUE_TYPES`
    :param unit: Unit, only used for numbers
    :param who: User performing the write
    :param duration: Duration after which the level reverts to auto (level 8)
    :param duration_unit: One of {obj}`DURATION_UNITS`
    """
    ref = parse_ref(id)
    level_num = _parse_level(level)
    val = _parse_value(value, value_type, unit)

    dur: Number | None = None
    if duration is not None:
        if duration_unit is None:
            raise ActionError("Missing duration unit")
        if duration_unit not in DURATION_UNITS:
            raise ActionError(f"Unknown duration unit: {duration_unit}")
        dur = Number(int(duration), duration_unit)

    grid = _result(
        connector.point_write(ref, level_num, who, val, dur), timeout
    )

    # some servers don't return the priority array from a write
    if len(grid) < level_num:
        grid = _result(
            connector.submit(lambda client: client.point_write_array(ref)),
            timeout,
        )

    if len(grid) < level_num:
        raise ActionError(f"Priority array of {ref} has no level {level_num}")

    row = grid.row(level_num - 1)

    return Table(
        columns=list(POINT_WRITE_COLUMNS),
        rows=[
            [to_value(row[c]) if c in row else None for c in POINT_WRITE_COLUMNS]
        ],
    )


class SubscribeStream:
    """
    Stream of changes to a single entity, polled on a dedicated watch
    independently of the connector's subscriptions.
    """

    _connector: Connector
    _ref: Ref
    _poll_rate: float
    _on_change: Callable[[Table], None]
    _watch: Watch | None
    _task: ScheduledTask | None
    _logger: Logger

    def __init__(
        self,
        connector: Connector,
        id: str,
        on_change: Callable[[Table], None],
        poll_rate_ms: int = 5000,
        *,
        logger: Logger | None = None,
    ):
        """
        :param connector: Connector to the server
        :param id: Entity id
        :param on_change: Invoked with the changed rows
        :param poll_rate_ms: Poll interval in milliseconds
        """
        if poll_rate_ms <= 0:
            raise ActionError(f"Invalid poll rate: {poll_rate_ms}")

        self._connector = connector
        self._ref = parse_ref(id)
        self._poll_rate = poll_rate_ms / 1000
        self._on_change = on_change
        self._watch = None
        self._task = None
        self._logger = logger or logging.getLogger("haystack-link")

    @property
    def ref(self) -> Ref:
        return self._ref

    def start(self) -> Future[None]:
        """
        Open the watch, emit the entity's current state and start polling.
        """
        return self._connector.submit(self._open)

    def stop(self):
        if self._task is not None:
            self._task.cancel()
            self._task = None

        watch, self._watch = self._watch, None
        if watch is not None:
            self._connector.scheduler.submit(self._close, watch)

    def _open(self, client: HaystackClient):
        watch = client.watch_open(f"haystack-link stream {self._ref}")
        grid = watch.sub([self._ref])

        self._watch = watch
        if not grid.is_empty:
            self._on_change(Table.from_grid(grid))

        self._task = self._connector.scheduler.schedule_with_fixed_delay(
            self._poll, self._poll_rate
        )

    def _poll(self):
        watch = self._watch
        if watch is None:
            return

        grid = watch.poll_changes()
        if not grid.is_empty:
            self._on_change(Table.from_grid(grid))

    def _close(self, watch: Watch):
        try:
            watch.close()
        except (requests.RequestException, HaystackError) as e:
            self._logger.debug(f"Failed to close {watch}: {e}")


def _parse_level(level: int | str) -> int:
    try:
        level_num = int(level)
    except (TypeError, ValueError):
        raise ActionError(f"Invalid level: {level}")

    if level_num not in LEVELS:
        raise ActionError(f"Invalid level: {level}")

    return level_num


def _parse_value(
    value: str | None, value_type: str | None, unit: str | None
) -> Any:
    if value is None:
        return None

    if value_type is None:
        raise ActionError("Missing value type")

    match value_type:
        case "bool":
            return value.strip().lower() == "true"
        case "number":
            try:
                num = float(value)
            except ValueError:
                raise ActionError(f"Invalid number: {value}")
            return Number(num, unit or None)
        case "str":
            return value

    raise ActionError(f"Unknown type: {value_type}")


def _result(future: Future[Grid], timeout: float) -> Grid:
    try:
        return future.result(timeout=timeout)
    except FuturesTimeoutError:
        future.cancel()
        raise ActionError("Failed to retrieve data")
    except CallError as e:
        raise ActionError(e.dis) from e
    except requests.RequestException as e:
        raise ActionError(f"Request failed: {e}") from e
