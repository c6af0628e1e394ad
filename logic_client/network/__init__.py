"""Network module for the logic client."""

from .batch import BatchSetter, SetEntry
from .client import FramingMode, LogicClient
from .registry import ConnectionRecord, ConnectionRegistry, ConnectionState
from .subscription import Subscription

__all__ = [
    "BatchSetter",
    "SetEntry",
    "FramingMode",
    "LogicClient",
    "ConnectionRecord",
    "ConnectionRegistry",
    "ConnectionState",
    "Subscription",
]
