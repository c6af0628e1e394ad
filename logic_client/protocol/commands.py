"""
Protocol Command Definitions

This module defines the Command object that tracks one request sent to the
logic system, from submission until its response is complete.

Response shapes:
    OK - <message>          Command succeeded, no payload follows
    OK - <count>            <count> text lines follow (stats, subs, lst, lstk, help)
    OK - <count> bytes      <count> raw bytes follow (download)
    ERR - <message>         Command failed
"""

import asyncio
import logging
import re
import time
from enum import Enum, auto
from typing import Any, Callable, Dict, List, Optional

from ..config.settings import settings
from .errors import CommandFailedError, CommandTimeoutError, ProtocolDesyncError
from .types import to_int

logger = logging.getLogger(__name__)


class ResponseKind(Enum):
    """What follows a command's OK line."""
    NO_PAYLOAD = auto()
    LINE_COUNT = auto()
    BYTE_COUNT = auto()


class CommandStatus(Enum):
    """Lifecycle states of a command."""
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed out"


# Command name -> payload that follows its OK line
RESPONSE_KINDS: Dict[str, ResponseKind] = {
    "stats": ResponseKind.LINE_COUNT,
    "subs": ResponseKind.LINE_COUNT,
    "lst": ResponseKind.LINE_COUNT,
    "lstk": ResponseKind.LINE_COUNT,
    "help": ResponseKind.LINE_COUNT,
    "download": ResponseKind.BYTE_COUNT,
}

DIGITS = re.compile(r"\d+")

Continuation = Callable[["Command"], Any]


class Command:
    """
    A single request to the logic system and its eventual response.

    The command starts out pending. The Client feeds it the status line and
    any payload lines or bytes; the first terminal transition (success,
    failure or timeout) wins and later ones are ignored.

    Callers can register continuations with add_callback()/add_errback(),
    or simply await the command:

        cmd = client.get_exports()
        exports = await cmd

    Attributes:
        name: Command name sent on the wire (e.g. 'lstk')
        args: Positional arguments, joined with commas on the wire
        kind: ResponseKind describing the payload after OK
        status: Current CommandStatus
        message: Message from the OK/ERR line
        lines: Text lines received after OK
        data: Raw bytes received after OK (download only)
        result: Value produced by the shaper on success
        error: Exception describing a failure or timeout
    """

    def __init__(
            self,
            name: str,
            *args: Any,
            kind: Optional[ResponseKind] = None,
            shaper: Optional[Callable[["Command"], Any]] = None,
            timeout: Optional[float] = None,
    ):
        """
        Create a command and start its deadline.

        Args:
            name: Command name
            *args: Command arguments
            kind: Payload kind (looked up from RESPONSE_KINDS by default)
            shaper: Called with the command on success; its return value
                    becomes the command's result
            timeout: Seconds to wait for completion (default from settings)

        The deadline timer is only armed when an event loop is running.
        """
        self.name = name
        self.args = args
        self.kind = kind if kind is not None else RESPONSE_KINDS.get(name, ResponseKind.NO_PAYLOAD)
        self.shaper = shaper
        self.timeout = timeout if timeout is not None else settings.COMMAND_TIMEOUT
        self.deadline = time.monotonic() + self.timeout

        self.status = CommandStatus.PENDING
        self.message = ""
        self.lines: List[str] = []
        self.data: Optional[bytes] = None
        self.line_count = 0
        self.data_size = 0
        self.result: Any = None
        self.error: Optional[Exception] = None

        self._callbacks: List[Continuation] = []
        self._errbacks: List[Continuation] = []
        self._waiter: Optional[asyncio.Future] = None
        self._timer: Optional[asyncio.TimerHandle] = None

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
        if loop is not None and self.timeout > 0:
            self._timer = loop.call_later(self.timeout, self._expire)

    # ------------------------------------------------------------------
    # Wire format
    # ------------------------------------------------------------------

    @property
    def argstring(self) -> str:
        """Arguments as sent on the wire, including the leading space."""
        if not self.args:
            return ""
        parts = ["" if arg is None else str(arg).replace(",", "") for arg in self.args]
        return " " + ",".join(parts)

    def __str__(self) -> str:
        return f"{self.name}{self.argstring}"

    def __repr__(self) -> str:
        n_data = len(self.data) if self.data is not None else None
        return f"<Command: cmd={self.name} n_lines={len(self.lines)} n_data={n_data}>"

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def done(self) -> bool:
        return self.status != CommandStatus.PENDING

    @property
    def success(self) -> Optional[bool]:
        """True if succeeded, False if failed or timed out, None if pending."""
        if self.status == CommandStatus.PENDING:
            return None
        return self.status == CommandStatus.SUCCEEDED

    @property
    def want_data(self) -> bool:
        """Whether this command is still waiting for binary payload."""
        return self.data_size > 0

    # ------------------------------------------------------------------
    # Input from the Client
    # ------------------------------------------------------------------

    def on_status_line(self, message: str) -> bool:
        """
        Handle the OK line for this command.

        Args:
            message: Text after 'OK - '

        Returns:
            True if the command is complete, False if payload follows.
        """
        self.message = message

        if self.kind == ResponseKind.LINE_COUNT:
            self.line_count = max(to_int(message), 0)
        elif self.kind == ResponseKind.BYTE_COUNT:
            match = DIGITS.search(message)
            self.data_size = int(match.group(0)) if match else 0

        if self.line_count == 0 and self.data_size == 0:
            self.succeed()
            return True

        return False

    def on_error_line(self, message: str) -> None:
        """Handle the ERR line for this command."""
        self.message = message
        self.fail(message)

    def on_line(self, line: str) -> bool:
        """
        Add one payload line.

        Returns:
            True once every expected line has arrived.
        """
        self.lines.append(line)
        self.line_count -= 1
        if self.line_count == 0:
            self.succeed()
        return self.line_count <= 0

    def on_data(self, data: bytes) -> bool:
        """
        Add a chunk of binary payload.

        Returns:
            True once every expected byte has arrived.

        Raises:
            ProtocolDesyncError: If more bytes arrived than were announced
        """
        self.data = (self.data or b"") + bytes(data)
        self.data_size -= len(data)
        if self.data_size == 0:
            self.succeed()
        elif self.data_size < 0:
            raise ProtocolDesyncError(
                f"{self.name} received {-self.data_size} more bytes than announced"
            )
        return self.data_size <= 0

    # ------------------------------------------------------------------
    # Terminal transitions
    # ------------------------------------------------------------------

    def succeed(self) -> bool:
        """
        Mark the command as succeeded and run its success continuations.

        If a shaper was given and raises, the command fails instead.

        Returns:
            False if the command had already finished.
        """
        if self.done:
            return False

        if self.shaper is not None:
            try:
                self.result = self.shaper(self)
            except Exception as exc:
                logger.warning(f"Could not process response to '{self}': {exc}")
                self.message = str(exc)
                return self._finish(CommandStatus.FAILED, CommandFailedError(self, str(exc)))
        else:
            self.result = self

        return self._finish(CommandStatus.SUCCEEDED)

    def fail(self, message: str, error: Optional[Exception] = None) -> bool:
        """
        Mark the command as failed and run its failure continuations.

        Args:
            message: Failure description
            error: Exception to raise from await (CommandFailedError by default)

        Returns:
            False if the command had already finished.
        """
        if self.done:
            return False
        self.message = message
        return self._finish(CommandStatus.FAILED, error or CommandFailedError(self, message))

    def _expire(self) -> None:
        self._timer = None
        if not self.done:
            logger.warning(f"Command '{self}' timed out after {self.timeout} seconds")
            self._finish(CommandStatus.TIMED_OUT, CommandTimeoutError(self, self.timeout))

    def _finish(self, status: CommandStatus, error: Optional[Exception] = None) -> bool:
        self.status = status
        self.error = error

        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

        if self._waiter is not None and not self._waiter.done():
            self._waiter.set_result(None)

        continuations = self._callbacks if status == CommandStatus.SUCCEEDED else self._errbacks
        self._callbacks = []
        self._errbacks = []
        for continuation in continuations:
            self._run(continuation)
        return True

    def _run(self, continuation: Continuation) -> None:
        try:
            continuation(self)
        except Exception:
            logger.exception(f"Error in continuation for '{self}'")

    # ------------------------------------------------------------------
    # Continuations
    # ------------------------------------------------------------------

    def add_callback(self, continuation: Continuation) -> "Command":
        """Call continuation(command) on success, immediately if already succeeded."""
        if self.status == CommandStatus.SUCCEEDED:
            self._run(continuation)
        elif not self.done:
            self._callbacks.append(continuation)
        return self

    def add_errback(self, continuation: Continuation) -> "Command":
        """Call continuation(command) on failure or timeout, immediately if already failed."""
        if self.status in (CommandStatus.FAILED, CommandStatus.TIMED_OUT):
            self._run(continuation)
        elif not self.done:
            self._errbacks.append(continuation)
        return self

    def add_both(self, continuation: Continuation) -> "Command":
        """Call continuation(command) once the command finishes either way."""
        self.add_callback(continuation)
        self.add_errback(continuation)
        return self

    async def wait(self) -> Any:
        """
        Wait for the command to finish.

        Returns:
            The shaped result on success.

        Raises:
            CommandFailedError: On an ERR response
            CommandTimeoutError: When the deadline passed
            LogicConnectionError / ProtocolDesyncError: When the connection dropped
        """
        if not self.done:
            if self._waiter is None:
                self._waiter = asyncio.get_running_loop().create_future()
            await self._waiter

        if self.status == CommandStatus.SUCCEEDED:
            return self.result
        raise self.error

    def __await__(self):
        return self.wait().__await__()
