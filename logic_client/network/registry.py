"""
Connection Registry Module

Keeps one connection per host and lets any number of callers ask for it.
Requests that arrive while a connection is still being opened are queued
on the same record, so concurrent requests for one host share a single
socket.

Record lifecycle:
    CONNECTING -> CONNECTED      version handshake finished, callbacks run
    CONNECTING -> FAILED         connect or handshake failed, errbacks run
    any        -> (removed)      on failure or disconnect, so the next
                                 request starts over
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from ..config.settings import settings
from ..protocol.errors import LogicClientError, LogicConnectionError
from .client import LogicClient

logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILED = "failed"


@dataclass
class ConnectionRecord:
    """
    Registry entry for one host.

    Attributes:
        host: Host name exactly as requested
        state: Current ConnectionState
        client: The LogicClient (usable once CONNECTED)
        callbacks: Success continuations waiting for the connection
        errbacks: Failure continuations waiting for the connection
    """
    host: str
    state: ConnectionState = ConnectionState.CONNECTING
    client: Optional[LogicClient] = None
    callbacks: List[Callable[[LogicClient], Any]] = field(default_factory=list)
    errbacks: List[Callable[[], Any]] = field(default_factory=list)
    task: Optional[asyncio.Task] = None

    @property
    def connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED


class ConnectionRegistry:
    """
    Directory of logic system connections keyed by host name.

    Usage:
        registry = ConnectionRegistry()
        registry.get_connection('localhost', on_client, on_error)

        # or, from a coroutine
        client = await registry.connect('localhost')
    """

    def __init__(
            self,
            port: int = None,
            timeout: float = None,
            client_factory: Callable[..., LogicClient] = LogicClient,
    ):
        """
        Args:
            port: Port for new connections (default from settings)
            timeout: Command timeout for new clients (default from settings)
            client_factory: Builds clients; called as
                            client_factory(host=..., port=..., timeout=...)
        """
        self.port = port if port is not None else settings.PORT
        self.timeout = timeout if timeout is not None else settings.COMMAND_TIMEOUT
        self.client_factory = client_factory
        self._connections: Dict[str, ConnectionRecord] = {}

    def __contains__(self, host: str) -> bool:
        return host in self._connections

    def __len__(self) -> int:
        return len(self._connections)

    def get_record(self, host: str) -> Optional[ConnectionRecord]:
        return self._connections.get(host)

    def get_client(self, host: str) -> Optional[LogicClient]:
        """Return the client for an established connection to host, or None."""
        record = self._connections.get(host)
        if record is None or not record.connected:
            return None
        return record.client

    def get_connection(
            self,
            host: str,
            callback: Callable[[LogicClient], Any],
            errback: Callable[[], Any] = None,
    ) -> ConnectionRecord:
        """
        Call callback with a connected client for host.

        If the connection already exists the callback runs immediately.
        Otherwise the callbacks are queued until the connection (opened now
        if needed) succeeds or fails. Error callbacks take no arguments.

        Raises:
            ValueError: If no success callback is given
            RuntimeError: If no event loop is running
        """
        if callback is None:
            raise ValueError("A success callback is required for get_connection")
        loop = asyncio.get_running_loop()

        record = self._connections.get(host)
        if record is None:
            record = ConnectionRecord(host=host)
            self._connections[host] = record
            logger.debug(f"Opening connection to {host}")
            record.task = loop.create_task(self._establish(record))

        if record.connected:
            callback(record.client)
        else:
            record.callbacks.append(callback)
            if errback is not None:
                record.errbacks.append(errback)

        return record

    async def connect(self, host: str) -> LogicClient:
        """
        Coroutine form of get_connection().

        Raises:
            LogicConnectionError: If the connection could not be made
        """
        future = asyncio.get_running_loop().create_future()

        def on_success(client):
            if not future.done():
                future.set_result(client)

        def on_failure():
            if not future.done():
                future.set_exception(LogicConnectionError(f"Connection to {host} failed"))

        self.get_connection(host, on_success, on_failure)
        return await future

    async def _establish(self, record: ConnectionRecord) -> None:
        client = self.client_factory(host=record.host, port=self.port, timeout=self.timeout)
        record.client = client

        try:
            await client.connect()
        except LogicClientError as exc:
            logger.warning(f"Connection to {record.host} failed: {exc}")
            self._fail(record)
            return
        except asyncio.CancelledError:
            logger.debug(f"Connection attempt to {record.host} cancelled")
            await client.abort()
            self._fail(record)
            raise
        except Exception:
            logger.exception(f"Unexpected error connecting to {record.host}")
            await client.abort()
            self._fail(record)
            return

        if self._connections.get(record.host) is not record or not client.connected:
            self._fail(record)
            return

        client.add_close_callback(lambda _client: self._forget(record))
        record.state = ConnectionState.CONNECTED

        callbacks = record.callbacks
        record.callbacks = []
        record.errbacks = []
        for callback in callbacks:
            self._run(callback, client)

    def _fail(self, record: ConnectionRecord) -> None:
        record.state = ConnectionState.FAILED
        self._forget(record)

        errbacks = record.errbacks
        record.callbacks = []
        record.errbacks = []
        for errback in errbacks:
            self._run(errback)

    def _forget(self, record: ConnectionRecord) -> None:
        if self._connections.get(record.host) is record:
            del self._connections[record.host]
            logger.debug(f"Removed connection record for {record.host}")

    def _run(self, continuation, *args) -> None:
        try:
            continuation(*args)
        except Exception:
            logger.exception("Error in connection callback")

    async def close_all(self) -> None:
        """Close every established connection and cancel attempts still in progress."""
        for record in list(self._connections.values()):
            if record.connected:
                await record.client.close()
            elif record.task is not None and not record.task.done():
                record.task.cancel()
                await asyncio.gather(record.task, return_exceptions=True)
                if record.state == ConnectionState.CONNECTING:
                    # Cancelled before the attempt started running
                    self._fail(record)
