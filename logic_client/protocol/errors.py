"""
Logic Client Error Definitions

Every failure the client reports is a subclass of LogicClientError.
Command-level failures are delivered to the caller that issued the command;
connection-level failures close the connection and fail everything queued.
"""

from typing import Optional


class LogicClientError(Exception):
    """Base class for all logic client errors."""


class LogicConnectionError(LogicClientError):
    """The connection could not be established or is no longer open."""


class ProtocolDesyncError(LogicClientError):
    """The server sent something that cannot be matched to a queued command."""


class CommandFailedError(LogicClientError):
    """
    The server answered a command with an ERR line.

    Attributes:
        command: The Command that failed
        message: The error message sent by the server
    """

    def __init__(self, command, message: str = ""):
        super().__init__(f"{command.name} failed: {message}")
        self.command = command
        self.message = message


class CommandTimeoutError(LogicClientError):
    """No terminal response arrived before the command's deadline."""

    def __init__(self, command, timeout: Optional[float] = None):
        super().__init__(f"{command.name} timed out after {timeout} seconds")
        self.command = command
        self.timeout = timeout


class UnsupportedTypeError(LogicClientError):
    """A value of a type that cannot be converted was encountered."""
