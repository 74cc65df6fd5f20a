"""
Connection management: supplies connected clients asynchronously and
reconnects in the background.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from concurrent.futures import Future
from logging import Logger

import requests

from .client import HaystackClient, Watch
from .exceptions import ConnectionClosedError, HaystackError
from .scheduler import Scheduler

__all__ = [
    "ConnectionHelper",
    "ClientCallback",
    "ClientFactory",
]

__rollup__ = [
    "ConnectionHelper",
]

type ClientCallback = Callable[[HaystackClient], None]
type ClientFactory = Callable[..., HaystackClient]

DEFAULT_RETRY_DELAY = 1.0
DEFAULT_MAX_RETRY_DELAY = 60.0


class ConnectionHelper:
    """
    Owns the client of one server. Callbacks passed to
    {obj}`ConnectionHelper.get_client` run on the worker pool once a client
    is connected, immediately if already connected.

    Connect and disconnect events are delivered at most once per
    transition. Upon connecting, a fresh watch is opened and passed to the
    connect handler.
    """

    _url: str
    _user: str | None
    _password: str | None
    _lease: float | None
    _watch_dis: str

    _scheduler: Scheduler
    _on_connected: Callable[[Watch], None]
    _on_disconnected: Callable[[], None]
    _client_factory: ClientFactory
    _logger: Logger

    _client: HaystackClient | None = None
    _watch: Watch | None = None
    _pending: list[ClientCallback]
    _connecting: bool = False
    _closed: bool = False
    _generation: int = 0

    _retry_delay: float
    _max_retry_delay: float
    _next_delay: float
    _retry_timer: threading.Timer | None = None
    _lock: threading.RLock

    def __init__(
        self,
        url: str,
        user: str | None,
        password: str | None,
        scheduler: Scheduler,
        *,
        on_connected: Callable[[Watch], None],
        on_disconnected: Callable[[], None],
        lease: float | None = None,
        watch_dis: str = "haystack-link",
        retry_delay: float = DEFAULT_RETRY_DELAY,
        max_retry_delay: float = DEFAULT_MAX_RETRY_DELAY,
        client_factory: ClientFactory = HaystackClient,
        logger: Logger | None = None,
    ):
        self._url = url
        self._user = user
        self._password = password
        self._lease = lease
        self._watch_dis = watch_dis

        self._scheduler = scheduler
        self._on_connected = on_connected
        self._on_disconnected = on_disconnected
        self._client_factory = client_factory
        self._logger = logger or logging.getLogger("haystack-link")

        self._pending = []
        self._retry_delay = retry_delay
        self._max_retry_delay = max_retry_delay
        self._next_delay = retry_delay
        self._lock = threading.RLock()

    def __repr__(self):
        return f"ConnectionHelper({self._url!r})"

    @property
    def url(self) -> str:
        return self._url

    @property
    def connected(self) -> bool:
        return self._client is not None

    @property
    def watch(self) -> Watch | None:
        return self._watch

    @property
    def closed(self) -> bool:
        return self._closed

    def open(self):
        """
        Start connecting, also after {obj}`ConnectionHelper.close`.
        """
        with self._lock:
            self._closed = False

        self.get_client()

    def get_client(self, callback: ClientCallback | None = None):
        """
        Run `callback` with a connected client. If not connected, the
        callback is queued and a connection attempt is started.

        :raises ConnectionClosedError: Connection was closed
        """
        with self._lock:
            if self._closed:
                raise ConnectionClosedError(f"Connection to {self._url} closed")

            client = self._client

            if client is None:
                if callback is not None:
                    self._pending.append(callback)

                start = not self._connecting
                self._connecting = True
                generation = self._generation

        try:
            if client is not None:
                if callback is not None:
                    self._scheduler.submit(self._run_callback, client, callback)
            elif start:
                self._scheduler.submit(self._connect, generation)
        except RuntimeError as e:
            raise ConnectionClosedError(
                f"Connection to {self._url} shut down"
            ) from e

    def submit[T](self, fn: Callable[[HaystackClient], T]) -> Future[T]:
        """
        Run `fn` with a connected client and return a future for its
        result. A transport error raised by `fn` also invalidates the
        client. Once closed, the future fails with
        {obj}`ConnectionClosedError`.
        """
        future: Future[T] = Future()

        def callback(client: HaystackClient):
            if not future.set_running_or_notify_cancel():
                return

            try:
                result = fn(client)
            except Exception as e:
                future.set_exception(e)
                if isinstance(e, requests.RequestException):
                    raise
            else:
                future.set_result(result)

        try:
            self.get_client(callback)
        except ConnectionClosedError as e:
            future.set_exception(e)

        return future

    def invalidate(self, client: HaystackClient | None = None):
        """
        Drop the current client, e.g. after a request on it failed, and
        reconnect in the background. If `client` is passed, only drop it if
        it's still the current client.
        """
        with self._lock:
            if self._client is None or (
                client is not None and client is not self._client
            ):
                return

            old_client = self._client
            self._client = None
            self._watch = None
            self._connecting = True
            generation = self._generation

        self._logger.warning(f"Connection to {self._url} lost, reconnecting")

        old_client.close()
        self._fire(self._on_disconnected)
        self._schedule_retry(generation)

    def edit_connection(
        self, url: str, user: str | None, password: str | None
    ):
        """
        Update connection parameters and reconnect.
        """
        self.close()

        with self._lock:
            self._url = url
            self._user = user
            self._password = password
            self._next_delay = self._retry_delay

        self.open()

    def close(self):
        """
        Close the watch and client, and stop reconnecting. Queued callbacks
        are kept, but no new ones are accepted until
        {obj}`ConnectionHelper.open`.
        """
        with self._lock:
            self._closed = True
            self._generation += 1
            self._connecting = False

            client, watch = self._client, self._watch
            self._client = None
            self._watch = None

            if self._retry_timer is not None:
                self._retry_timer.cancel()
                self._retry_timer = None

        if watch is not None:
            try:
                watch.close()
            except (requests.RequestException, HaystackError) as e:
                self._logger.debug(f"Failed to close watch {watch}: {e}")

        if client is not None:
            client.close()
            self._logger.info(f"Disconnected from {self._url}")
            self._fire(self._on_disconnected)

    def _connect(self, generation: int):
        with self._lock:
            if generation != self._generation or self._closed:
                return
            url, user, password = self._url, self._user, self._password

        client = self._client_factory(url, user, password, logger=self._logger)

        try:
            about = client.about()
            watch = client.watch_open(self._watch_dis, self._lease)
        except (requests.RequestException, HaystackError) as e:
            client.close()
            self._logger.warning(f"Failed to connect to {url}: {e}")
            self._schedule_retry(generation)
            return

        with self._lock:
            if generation != self._generation or self._closed:
                # closed or edited while connecting
                client.close()
                return

            self._client = client
            self._watch = watch
            self._connecting = False
            self._next_delay = self._retry_delay

            pending = self._pending
            self._pending = []

        server = about.get("productName") or about.get("serverName") or url
        self._logger.info(f"Connected to {url} ({server})")

        self._fire(self._on_connected, watch)

        for callback in pending:
            self._scheduler.submit(self._run_callback, client, callback)

    def _schedule_retry(self, generation: int):
        with self._lock:
            if generation != self._generation or self._closed:
                return

            delay = self._next_delay
            self._next_delay = min(delay * 2, self._max_retry_delay)

            self._retry_timer = threading.Timer(
                delay, self._submit_connect, args=(generation,)
            )
            self._retry_timer.daemon = True
            self._retry_timer.start()

        self._logger.debug(f"Reconnecting to {self._url} in {delay}s")

    def _submit_connect(self, generation: int):
        try:
            self._scheduler.submit(self._connect, generation)
        except RuntimeError:
            self._logger.debug(f"Not reconnecting to {self._url}: shut down")

    def _run_callback(self, client: HaystackClient, callback: ClientCallback):
        try:
            callback(client)
        except requests.RequestException as e:
            self._logger.warning(f"Request to {self._url} failed: {e}")
            self.invalidate(client)
        except Exception:
            self._logger.exception(f"Client callback {callback} failed")

    def _fire(self, handler: Callable, *args):
        try:
            handler(*args)
        except Exception:
            self._logger.exception(f"Connection event handler {handler} failed")
