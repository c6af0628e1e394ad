"""
Pytest Configuration and Fixtures

This module provides shared fixtures and configuration for all tests,
including a scripted stand-in for the logic system server.
"""

import asyncio
import socket
import pytest
import pytest_asyncio
from contextlib import closing
from typing import AsyncGenerator, Callable, Dict, List, Union

from logic_client.network.client import LogicClient
from logic_client.network.registry import ConnectionRegistry


def find_free_port() -> int:
    """Find an available port for testing."""
    with closing(socket.socket(socket.AF_INET, socket.SOCK_STREAM)) as s:
        s.bind(('', 0))
        s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        return s.getsockname()[1]


EXPORT_LINES = [
    'objid=1 index=0 type=int value=5 min=0 max=10 def=0 obj_name=osc '
    'param_name=freq hide_in_ui=false read_only=false',
    'objid=1 index=1 type=string value="sine wave" min="" max="" def="sine" '
    'obj_name="osc" param_name="shape" hide_in_ui=true read_only=true',
]

INFO_LINE = 'id=3 numobjs=12 period=1000000 avg=250 revision=2.7 name="main graph"'

# Reply that makes the fake server hang up instead of answering
CLOSE = object()

Reply = Union[bytes, Callable[[str], bytes], object]


# ============================================================================
# Fake Logic System Server
# ============================================================================

class FakeLogicServer:
    """
    Scripted logic system server for testing.

    Replies are looked up by the exact request line first, then by command
    name. An empty reply means "never answer", CLOSE closes the connection
    and unknown commands get an ERR line.

    Usage:
        fake_server.replies["lstk"] = b"OK - 0\\n"
        fake_server.replies["set 1,0,5"] = b"ERR - Read only\\n"
    """

    def __init__(self, host: str = '127.0.0.1', port: int = None):
        self.host = host
        self.port = port if port is not None else find_free_port()
        self.replies: Dict[str, Reply] = {
            "ver": b"OK - Nitrogen Logic System 1.4.2\n",
            "bye": b"OK - Goodbye\n",
            "set": b"OK - Value set\n",
            "lstk": ("OK - %d\n" % len(EXPORT_LINES)).encode() + "".join(
                line + "\n" for line in EXPORT_LINES
            ).encode(),
            "inf": f"OK - {INFO_LINE}\n".encode(),
        }
        self.received: List[str] = []
        self.connections = 0
        self.writers: List[asyncio.StreamWriter] = []
        self._server = None

    async def handle_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self.connections += 1
        self.writers.append(writer)
        try:
            while True:
                data = await reader.readline()
                if not data:
                    break

                line = data.decode().rstrip('\r\n')
                self.received.append(line)
                name = line.split(' ', 1)[0]

                reply = self.replies.get(line, self.replies.get(name))
                if reply is None:
                    reply = f"ERR - Unknown command '{name}'\n".encode()
                if reply is CLOSE:
                    break
                if callable(reply):
                    reply = reply(line)
                if reply:
                    writer.write(reply)
                    await writer.drain()
                if name == "bye":
                    break
        except ConnectionResetError:
            pass
        finally:
            writer.close()

    async def send(self, data: bytes) -> None:
        """Push unsolicited data to every connected client."""
        for writer in self.writers:
            if not writer.is_closing():
                writer.write(data)
                await writer.drain()

    async def start(self) -> None:
        self._server = await asyncio.start_server(self.handle_client, self.host, self.port)

    async def stop(self) -> None:
        if self._server is not None:
            self._server.close()
            for writer in self.writers:
                writer.close()
            await self._server.wait_closed()
            self._server = None


# ============================================================================
# Server Fixtures
# ============================================================================

@pytest.fixture
def server_port() -> int:
    """Get a free port for server testing."""
    return find_free_port()


@pytest_asyncio.fixture
async def fake_server(server_port: int) -> AsyncGenerator[FakeLogicServer, None]:
    """Create and start a scripted logic system server."""
    srv = FakeLogicServer(port=server_port)
    await srv.start()

    yield srv

    await srv.stop()


# ============================================================================
# Client Fixtures
# ============================================================================

@pytest_asyncio.fixture
async def client(fake_server: FakeLogicServer) -> AsyncGenerator[LogicClient, None]:
    """A LogicClient connected to the fake server."""
    c = LogicClient(fake_server.host, fake_server.port, timeout=2.0)
    await c.connect()

    yield c

    await c.abort()


@pytest.fixture
def registry(server_port: int) -> ConnectionRegistry:
    """A registry whose connections go to the fake server's port."""
    return ConnectionRegistry(port=server_port, timeout=2.0)


async def wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll until predicate() is true or fail the test."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            pytest.fail("condition not met in time")
        await asyncio.sleep(0.01)


# ============================================================================
# Pytest Configuration
# ============================================================================

def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
