"""
Logic Client: Control Protocol Client

An asyncio client for the line-oriented control protocol of a running
logic graph: list exported parameters, read and write values, set values
in batches and fetch graph information.
"""

from .network import ConnectionRegistry, LogicClient
from .protocol import Command, Export

__version__ = "1.0.0"

__all__ = ["ConnectionRegistry", "LogicClient", "Command", "Export"]
