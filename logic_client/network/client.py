"""
Logic System Client Module

This module implements the asyncio client for the logic system control
protocol. One LogicClient owns one TCP connection and matches responses to
commands purely by order: the protocol has no request IDs, so every OK or
ERR line belongs to the oldest command still waiting for an answer.

Protocol flow:
    >> lstk
    << OK - 2
    << objid=1 index=0 type=int value=5 ...
    << objid=1 index=1 type=float value=0.5 ...

After an OK line the command may claim the next N text lines (lstk, subs,
...) or the next N raw bytes (download). While bytes are owed the reader
switches from line framing to binary framing and reads exactly that many
bytes before switching back.
"""

import asyncio
import logging
import re
from collections import deque
from enum import Enum, auto
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional, Tuple

from ..config.settings import settings
from ..protocol import kvp
from ..protocol.commands import Command
from ..protocol.errors import (
    LogicClientError,
    LogicConnectionError,
    ProtocolDesyncError,
    UnsupportedTypeError,
)
from ..protocol.export import Export
from ..protocol.types import string_to_type, to_int
from .batch import BatchSetter
from .subscription import Subscription

logger = logging.getLogger(__name__)

VERSION_PATTERN = re.compile(r"[0-9]+\.[0-9]+\.[0-9]+")

# Graph info fields that are reported as integers
INFO_INT_FIELDS = ("id", "numobjs", "period", "avg")


class FramingMode(Enum):
    """How incoming bytes are currently interpreted."""
    LINE = auto()
    BINARY = auto()


def parse_info(message: str) -> Dict[str, Any]:
    """
    Parse the message of an inf response into a dictionary.

    Known numeric fields are converted to integers and 'revision' to a
    (major, minor) tuple. Fields that cannot be converted stay strings.
    """
    info: Dict[str, Any] = kvp.parse_line(message)

    for key in INFO_INT_FIELDS:
        if key in info:
            info[key] = to_int(info[key])

    revision = info.get("revision")
    if revision is not None:
        parts = revision.split(".", 1)
        if len(parts) == 2:
            info["revision"] = tuple(to_int(part) for part in parts)

    return info


def parse_value(message: str):
    """Parse the '<type> - <value>' message of a get response."""
    type_name, _, value = message.partition(" - ")
    return string_to_type(value, type_name)


class LogicClient:
    """
    Asynchronous client for one logic system connection.

    Commands are written immediately and queued in submission order. A
    single reader task consumes responses and resolves the queued commands
    in that same order.

    Usage:
        async with LogicClient('localhost') as client:
            exports = await client.get_exports()
            await client.set(1, 0, 42)

    Attributes:
        host: Server host name
        port: Server port (default 14309)
        timeout: Per-command deadline in seconds
        version_string: Raw message returned by the ver command
        version: 'X.Y.Z' version extracted from version_string, or None
        mode: Current FramingMode of the reader
    """

    def __init__(
            self,
            host: str = None,
            port: int = None,
            timeout: float = None,
            connect_timeout: float = None,
            on_close: Callable[["LogicClient"], Any] = None,
    ):
        """
        Initialize the client. No connection is made until connect().

        Args:
            host: Server host (default from settings)
            port: Server port (default from settings)
            timeout: Per-command timeout in seconds (default from settings)
            connect_timeout: TCP connect timeout in seconds (default from settings)
            on_close: Called with the client once the connection is gone
        """
        self.host = host if host is not None else settings.HOST
        self.port = port if port is not None else settings.PORT
        self.timeout = timeout if timeout is not None else settings.COMMAND_TIMEOUT
        self.connect_timeout = connect_timeout if connect_timeout is not None else settings.CONNECT_TIMEOUT

        self.version_string = ""
        self.version: Optional[str] = None

        # Framing state
        self.mode = FramingMode.LINE
        self._binary_remaining = 0

        # Command state
        self._commands: Deque[Command] = deque()
        self._active_command: Optional[Command] = None
        self._subscriptions: Dict[Tuple[int, int], Subscription] = {}

        # Connection state
        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._read_task: Optional[asyncio.Task] = None
        self._connected = False
        self._closed = False
        self._close_callbacks: List[Callable[["LogicClient"], Any]] = [on_close] if on_close else []

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    @property
    def connected(self) -> bool:
        return self._connected and not self._closed

    @property
    def pending(self) -> int:
        """Number of commands still waiting for a response."""
        return len(self._commands) + (1 if self._active_command is not None else 0)

    async def connect(self) -> "LogicClient":
        """
        Open the connection and exchange protocol versions.

        Returns:
            This client, once the server has answered the ver command.

        Raises:
            LogicConnectionError: If the socket cannot be opened or the
                version handshake fails
        """
        if self._closed:
            raise LogicConnectionError("Client has already been closed")

        try:
            self._reader, self._writer = await asyncio.wait_for(
                asyncio.open_connection(self.host, self.port, limit=settings.READ_BUFFER_SIZE),
                timeout=self.connect_timeout,
            )
        except (OSError, ValueError, asyncio.TimeoutError) as exc:
            # ValueError covers host names the resolver cannot encode
            self._closed = True
            raise LogicConnectionError(f"Could not connect to {self.host}:{self.port}: {exc}") from exc

        self._connected = True
        logger.debug(f"Connected to {self.host}:{self.port}")
        self._read_task = asyncio.create_task(self._read_loop())

        command = self.get_version(callback=self._set_version)
        try:
            await command
        except LogicClientError as exc:
            logger.error(f"Version handshake with {self.host} failed: {exc}")
            await self.abort()
            raise LogicConnectionError(f"Version handshake with {self.host} failed: {exc}") from exc

        logger.info(f"Connected to logic system at {self.host}:{self.port} (version {self.version})")
        return self

    def _set_version(self, message: str) -> None:
        self.version_string = message
        match = VERSION_PATTERN.search(message)
        self.version = match.group(0) if match else None

    async def close(self) -> None:
        """Send bye, wait for its answer, then close the connection."""
        if not self.connected:
            await self.abort()
            return

        try:
            await self.do_command("bye")
        except LogicClientError as exc:
            logger.debug(f"bye to {self.host} failed: {exc}")

        await self.abort()

    async def abort(self) -> None:
        """Close the connection immediately, failing any queued commands."""
        self._connection_lost(LogicConnectionError(f"Connection to {self.host} closed by client"))

        task = self._read_task
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        if self._writer is not None:
            try:
                await self._writer.wait_closed()
            except (ConnectionError, OSError):
                pass

    def add_close_callback(self, callback: Callable[["LogicClient"], Any]) -> None:
        """Register a callback to run once the connection is gone."""
        if self._closed:
            callback(self)
        else:
            self._close_callbacks.append(callback)

    def _connection_lost(self, error: LogicClientError) -> None:
        if self._closed:
            return
        self._closed = True
        was_connected = self._connected
        self._connected = False

        # Fail everything still waiting, oldest first
        waiting = list(self._commands)
        if self._active_command is not None:
            waiting.insert(0, self._active_command)
        self._commands.clear()
        self._active_command = None
        self.mode = FramingMode.LINE
        self._binary_remaining = 0

        if waiting:
            logger.debug(f"Failing {len(waiting)} pending command(s) on {self.host}")
        for command in waiting:
            command.fail(str(error), error)

        if self._writer is not None:
            self._writer.close()

        if was_connected:
            logger.info(f"Disconnected from {self.host}:{self.port}")

        callbacks, self._close_callbacks = self._close_callbacks, []
        for callback in callbacks:
            try:
                callback(self)
            except Exception:
                logger.exception(f"Error in close callback for {self.host}")

    async def __aenter__(self) -> "LogicClient":
        return await self.connect()

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Input
    # ------------------------------------------------------------------

    async def _read_loop(self) -> None:
        """Read lines or binary chunks until the connection ends."""
        error: LogicClientError = LogicConnectionError(f"Connection to {self.host} closed by server")

        try:
            while True:
                if self.mode == FramingMode.BINARY:
                    size = min(self._binary_remaining, settings.READ_BUFFER_SIZE)
                    chunk = await self._reader.read(size)
                    if not chunk:
                        break
                    self.receive_data(chunk)
                    continue

                data = await self._reader.readline()
                if not data:
                    break
                self.receive_line(data.decode(settings.ENCODING, errors="replace").rstrip("\r\n"))

        except ProtocolDesyncError as exc:
            logger.error(f"Protocol error on {self.host}, closing connection: {exc}")
            error = LogicConnectionError(f"Connection to {self.host} closed: {exc}")
        except (ConnectionError, OSError) as exc:
            logger.warning(f"Connection to {self.host} lost: {exc}")
            error = LogicConnectionError(f"Connection to {self.host} lost: {exc}")
        except ValueError as exc:
            # Raised by readline() when a line exceeds the buffer limit
            logger.error(f"Unreadable data from {self.host}, closing connection: {exc}")
            error = LogicConnectionError(f"Connection to {self.host} closed: {exc}")
        finally:
            self._connection_lost(error)

    def receive_line(self, line: str) -> None:
        """
        Process one line received in line framing mode.

        Raises:
            ProtocolDesyncError: On OK/ERR with no command waiting
        """
        logger.debug(f"<< {line}")

        if self._active_command is not None:
            if self._active_command.on_line(line):
                self._active_command = None
            return

        response_type, _, message = line.partition(" - ")

        if response_type == "OK":
            command = self._next_command(line)
            if not command.on_status_line(message):
                self._active_command = command
                if command.want_data:
                    self.mode = FramingMode.BINARY
                    self._binary_remaining = command.data_size
        elif response_type == "ERR":
            self._next_command(line).on_error_line(message)
        elif response_type == "SUB":
            self._handle_subscription(message)
        else:
            logger.warning(f"Unknown response from {self.host}: {line!r}")

    def receive_data(self, data: bytes) -> None:
        """
        Process a chunk of bytes received in binary framing mode.

        Raises:
            ProtocolDesyncError: If no command is waiting for data or more
                bytes arrived than were announced
        """
        command = self._active_command
        if command is None or not command.want_data:
            raise ProtocolDesyncError("Received binary data for a command not expecting it")

        self._binary_remaining -= len(data)
        if command.on_data(data):
            self._active_command = None
            self.mode = FramingMode.LINE
            self._binary_remaining = 0

    def _next_command(self, line: str) -> Command:
        if not self._commands:
            raise ProtocolDesyncError(f"Received {line!r} when no command was waiting")
        return self._commands.popleft()

    def _handle_subscription(self, message: str) -> None:
        fields = kvp.parse_line(message)
        key = Subscription.parse_key(fields)
        subscription = self._subscriptions.get(key) if key else None
        if subscription is None or "value" not in fields:
            logger.debug(f"Ignoring unmatched subscription message: {message!r}")
            return

        value: Any = fields["value"]
        if "type" in fields:
            try:
                value = string_to_type(value, fields["type"])
            except UnsupportedTypeError as exc:
                logger.warning(f"Ignoring subscription update for {key}: {exc}")
                return

        subscription.update(value)

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def submit(self, command: Command) -> Command:
        """
        Queue a command and write it to the server.

        A command submitted on a closed connection fails immediately.
        """
        if not self.connected:
            command.fail(f"Not connected to {self.host}", LogicConnectionError(f"Not connected to {self.host}"))
            return command

        logger.debug(f">> {command}")
        self._commands.append(command)
        self._writer.write(f"{command}\n".encode(settings.ENCODING))
        return command

    async def drain(self) -> None:
        """Wait until buffered commands have been handed to the socket."""
        if self._writer is not None and self.connected:
            await self._writer.drain()

    def do_command(self, command, *args, callback: Callable[[Command], Any] = None) -> Command:
        """
        Submit a command by name (or a prebuilt Command).

        Args:
            command: Command name or Command object
            *args: Arguments when a name is given
            callback: Called with the Command on success

        Returns:
            The submitted Command.
        """
        if not isinstance(command, Command):
            command = Command(command, *args, timeout=self.timeout)
        if callback is not None:
            command.add_callback(callback)
        return self.submit(command)

    def _request(self, name: str, *args, shaper=None, callback=None) -> Command:
        command = Command(name, *args, shaper=shaper, timeout=self.timeout)
        if callback is not None:
            command.add_callback(lambda cmd: callback(cmd.result))
        return self.submit(command)

    def get_version(self, callback: Callable[[str], Any] = None) -> Command:
        """Request the server's version message."""
        return self._request("ver", shaper=lambda cmd: cmd.message, callback=callback)

    def get_subscriptions(self, callback: Callable[[List[str]], Any] = None) -> Command:
        """Request the list of subscriptions, one raw line per entry."""
        return self._request("subs", shaper=lambda cmd: list(cmd.lines), callback=callback)

    def get_exports(self, callback: Callable[[List[Export]], Any] = None) -> Command:
        """Request the list of exported parameters as Export objects."""
        return self._request(
            "lstk",
            shaper=lambda cmd: [Export.from_line(line) for line in cmd.lines],
            callback=callback,
        )

    def get_info(self, callback: Callable[[Dict[str, Any]], Any] = None) -> Command:
        """Request information about the running graph as a dictionary."""
        return self._request("inf", shaper=lambda cmd: parse_info(cmd.message), callback=callback)

    def get(self, objid: int, index: int, callback: Callable[[Any], Any] = None) -> Command:
        """Request the current value of one parameter."""
        return self._request("get", objid, index, shaper=lambda cmd: parse_value(cmd.message), callback=callback)

    def set(self, objid: int, index: int, value: Any, callback: Callable[[Command], Any] = None) -> Command:
        """Set one parameter. The callback receives the Command on success."""
        return self._request("set", objid, index, value, callback=callback)

    def set_multi(self, entries: Iterable, callback: Callable[[int, list], Any] = None) -> Optional[Command]:
        """
        Set several parameters one after another.

        See BatchSetter for details. Returns the first set Command, or None
        if there was nothing to set.
        """
        return BatchSetter(self, entries, callback).start()

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, objid: int, index: int, callback: Callable[[int, int, Any], Any]) -> Subscription:
        """Watch a parameter for SUB notifications from the server."""
        subscription = Subscription(objid, index, callback)
        self._subscriptions[subscription.key] = subscription
        return subscription

    def unsubscribe(self, objid: int, index: int) -> Optional[Subscription]:
        return self._subscriptions.pop((int(objid), int(index)), None)

    def __repr__(self) -> str:
        state = "connected" if self.connected else "closed" if self._closed else "new"
        return f"<LogicClient {self.host}:{self.port} {state} pending={self.pending}>"
