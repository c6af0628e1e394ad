"""Protocol module for the logic client."""

from . import kvp
from .commands import Command, CommandStatus, ResponseKind, RESPONSE_KINDS
from .errors import (
    CommandFailedError,
    CommandTimeoutError,
    LogicClientError,
    LogicConnectionError,
    ProtocolDesyncError,
    UnsupportedTypeError,
)
from .export import Export
from .types import string_to_type

__all__ = [
    "kvp",
    "Command",
    "CommandStatus",
    "ResponseKind",
    "RESPONSE_KINDS",
    "CommandFailedError",
    "CommandTimeoutError",
    "LogicClientError",
    "LogicConnectionError",
    "ProtocolDesyncError",
    "UnsupportedTypeError",
    "Export",
    "string_to_type",
]
