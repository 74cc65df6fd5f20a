"""
Client for the Haystack REST API.
"""

from __future__ import annotations

import logging
import threading
from logging import Logger
from typing import Any

import requests

from .exceptions import CallError, UnsupportedNavError
from .grid import Grid, Row
from .kinds import MARKER, Number, Ref, Uri

__all__ = [
    "REQUEST_TIMEOUT",
    "HaystackClient",
    "Watch",
]

__rollup__ = [
    "HaystackClient",
    "Watch",
]

REQUEST_TIMEOUT = 30.0
"""
Timeout for each request, in seconds.
"""

_HEADERS = {
    "Accept": "application/json",
    "Content-Type": "application/json",
}


class HaystackClient:
    """
    Synchronous client for a single Haystack server, exchanging grids
    encoded as Haystack JSON.

    Transport errors are raised as `requests.RequestException`, error grids
    as {obj}`CallError`.
    """

    _url: str
    _auth: tuple[str, str] | None
    _timeout: float
    _http: requests.Session
    _logger: Logger

    def __init__(
        self,
        url: str,
        user: str | None = None,
        password: str | None = None,
        *,
        timeout: float = REQUEST_TIMEOUT,
        http: requests.Session | None = None,
        logger: Logger | None = None,
    ):
        """
        :param url: Base url of the Haystack API, e.g. `http://host/api/demo`
        :param user: Username for basic authentication
        :param password: Password for basic authentication
        :param timeout: Request timeout in seconds
        :param http: Session to use, or `None` to create one
        :param logger: Logger to use, or `None` to use default logger
        """
        self._url = url.rstrip("/")
        self._auth = (user, password or "") if user else None
        self._timeout = timeout
        self._http = http or requests.Session()
        self._logger = logger or logging.getLogger("haystack-link")

    def __repr__(self):
        return f"HaystackClient({self._url!r})"

    @property
    def url(self) -> str:
        return self._url

    def close(self):
        self._http.close()

    def call(self, op: str, grid: Grid | None = None) -> Grid:
        """
        Invoke an operation by name.

        :param op: Operation name, e.g. `read`
        :param grid: Request grid, or `None` for an empty grid
        """
        request = grid if grid is not None else Grid()

        self._logger.debug(f"Calling '{op}' on {self._url}: {request}")

        response = self._http.post(
            f"{self._url}/{op}",
            json=request.to_json(),
            headers=_HEADERS,
            auth=self._auth,
            timeout=self._timeout,
        )
        response.raise_for_status()

        result = Grid.from_json(response.json())

        if result.is_error:
            dis = result.meta.get("dis")
            trace = result.meta.get("errTrace")
            raise CallError(
                dis if isinstance(dis, str) else f"'{op}' failed",
                trace if isinstance(trace, str) else None,
            )

        return result

    def about(self) -> Row:
        grid = self.call("about")
        assert len(grid), "Empty response to 'about'"
        return grid.row(0)

    def read_all(self, filter: str, limit: int | None = None) -> Grid:
        """
        Read all records matching a filter.
        """
        vals: dict[str, Any] = {"filter": filter}
        if limit is not None:
            vals["limit"] = Number(limit)
        return self.call("read", Grid.make(**vals))

    def read_by_id(self, ref: Ref) -> Row:
        """
        Read a single record by id.
        """
        grid = self.call("read", Grid.make(id=ref))

        if not len(grid) or grid.row(0).id is None:
            raise CallError(f"Unknown record: {ref}")

        return grid.row(0)

    def eval(self, expr: str) -> Grid:
        return self.call("eval", Grid.make(expr=expr))

    def nav(self, nav_id: str | None = None) -> Grid:
        """
        Get children of a navigation node, or of the root if `nav_id` is
        `None`.

        :raises UnsupportedNavError: Server rejected the request
        """
        grid = Grid.make(navId=Uri(nav_id)) if nav_id is not None else Grid()

        try:
            return self.call("nav", grid)
        except CallError as e:
            raise UnsupportedNavError(e.dis, e.trace) from e

    def invoke_action(
        self, ref: Ref, action: str, args: dict[str, Any] | None = None
    ) -> Grid:
        args = args or {}
        grid = Grid(
            cols=list(args.keys()),
            rows=[args],
            meta={"id": ref, "action": action},
        )
        return self.call("invokeAction", grid)

    def point_write(
        self,
        ref: Ref,
        level: int,
        who: str | None = None,
        val: Any = None,
        duration: Number | None = None,
    ) -> Grid:
        """
        Write to a level of a writable point's priority array. Passing
        `val = None` releases the level back to auto.
        """
        vals: dict[str, Any] = {
            "id": ref,
            "level": Number(level),
            "who": who,
            "val": val,
        }
        if duration is not None:
            vals["duration"] = duration
        return self.call("pointWrite", Grid.make(**vals))

    def point_write_array(self, ref: Ref) -> Grid:
        """
        Read the priority array of a writable point.
        """
        return self.call("pointWrite", Grid.make(id=ref))

    def his_read(self, ref: Ref, range: str) -> Grid:
        return self.call("hisRead", Grid.make(id=ref, range=range))

    def watch_open(self, dis: str, lease: float | None = None) -> Watch:
        """
        Create a watch. The watch is opened on the server upon the first
        {obj}`Watch.sub`.

        :param dis: Display name of the watch
        :param lease: Requested lease in seconds
        """
        return Watch(self, dis, lease)

    def _watch_sub(self, watch: Watch, refs: list[Ref]) -> Grid:
        meta: dict[str, Any] = {}
        if watch.id is None:
            meta["watchDis"] = watch.dis
        else:
            meta["watchId"] = watch.id
        if watch.lease is not None:
            meta["lease"] = Number(watch.lease, "s")

        grid = Grid(cols=["id"], rows=[{"id": r} for r in refs], meta=meta)
        result = self.call("watchSub", grid)

        watch_id = result.meta.get("watchId")
        if isinstance(watch_id, str):
            watch._id = watch_id

        return result

    def _watch_unsub(self, watch: Watch, refs: list[Ref], close: bool):
        meta: dict[str, Any] = {"watchId": watch.id}
        if close:
            meta["close"] = MARKER

        grid = Grid(cols=["id"], rows=[{"id": r} for r in refs], meta=meta)
        self.call("watchUnsub", grid)

    def _watch_poll(self, watch: Watch, refresh: bool) -> Grid:
        meta: dict[str, Any] = {"watchId": watch.id}
        if refresh:
            meta["refresh"] = MARKER

        return self.call("watchPoll", Grid(meta=meta))


class Watch:
    """
    Server-side subscription to a set of entities. Polling returns only the
    rows which changed since the previous poll.
    """

    _client: HaystackClient
    _dis: str
    _lease: float | None
    _id: str | None
    _closed: bool
    _open_lock: threading.Lock

    def __init__(self, client: HaystackClient, dis: str, lease: float | None):
        self._client = client
        self._dis = dis
        self._lease = lease
        self._id = None
        self._closed = False
        self._open_lock = threading.Lock()

    def __repr__(self):
        return f"Watch(dis={self._dis!r}, id={self._id!r})"

    @property
    def client(self) -> HaystackClient:
        return self._client

    @property
    def dis(self) -> str:
        return self._dis

    @property
    def lease(self) -> float | None:
        return self._lease

    @property
    def id(self) -> str | None:
        """
        Watch id assigned by the server, or `None` if not yet opened.
        """
        return self._id

    @property
    def is_open(self) -> bool:
        return self._id is not None and not self._closed

    def sub(self, refs: list[Ref]) -> Grid:
        """
        Add entities to this watch. Returns their current state.
        """
        assert not self._closed, f"Attempt to use closed watch {self}"

        if self._id is None:
            # only one sub may open the watch, others wait and reuse its id
            with self._open_lock:
                if self._id is None:
                    return self._client._watch_sub(self, refs)

        return self._client._watch_sub(self, refs)

    def unsub(self, refs: list[Ref]):
        """
        Remove entities from this watch.
        """
        if self._id is None or self._closed:
            return
        self._client._watch_unsub(self, refs, close=False)

    def poll_changes(self) -> Grid:
        """
        Get rows changed since the last poll.
        """
        return self._poll(refresh=False)

    def poll_refresh(self) -> Grid:
        """
        Get current state of all entities in this watch.
        """
        return self._poll(refresh=True)

    def close(self):
        if self._id is not None and not self._closed:
            self._client._watch_unsub(self, [], close=True)
        self._closed = True

    def _poll(self, refresh: bool) -> Grid:
        assert not self._closed, f"Attempt to use closed watch {self}"

        # nothing subscribed yet
        if self._id is None:
            return Grid()

        return self._client._watch_poll(self, refresh)
