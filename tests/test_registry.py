"""
Tests for the connection registry

These tests verify the ConnectionRegistry class:
- Concurrent requests for one host share one connection
- Failures reach every waiting caller and allow a fresh retry
- Disconnected hosts are forgotten

Run with: python -m pytest tests/test_registry.py -v
"""

import asyncio
import pytest
from logic_client.network.client import LogicClient
from logic_client.network.registry import ConnectionRegistry, ConnectionState
from logic_client.protocol.errors import LogicConnectionError

from tests.conftest import FakeLogicServer, wait_for


class BrokenClient:
    """Client whose connect() fails with an error that is not a LogicClientError."""

    def __init__(self, host, port, timeout):
        self.host = host
        self.connected = False

    async def connect(self):
        raise RuntimeError("resolver exploded")

    async def abort(self):
        pass


@pytest.mark.asyncio
class TestGetConnection:
    """Test callback-style connection requests."""

    async def test_concurrent_requests_share_connection(self, registry, fake_server):
        clients = []

        record = registry.get_connection(fake_server.host, clients.append)
        same = registry.get_connection(fake_server.host, clients.append)
        assert record is same
        assert record.state == ConnectionState.CONNECTING

        await wait_for(lambda: len(clients) == 2)

        assert clients[0] is clients[1]
        assert isinstance(clients[0], LogicClient)
        assert fake_server.connections == 1
        assert record.state == ConnectionState.CONNECTED

        await registry.close_all()

    async def test_callbacks_fire_in_request_order(self, registry, fake_server):
        order = []
        registry.get_connection(fake_server.host, lambda c: order.append("first"))
        registry.get_connection(fake_server.host, lambda c: order.append("second"))

        await wait_for(lambda: len(order) == 2)
        assert order == ["first", "second"]

        await registry.close_all()

    async def test_connected_host_calls_back_immediately(self, registry, fake_server):
        client = await registry.connect(fake_server.host)

        seen = []
        registry.get_connection(fake_server.host, seen.append)
        assert seen == [client]
        assert fake_server.connections == 1

        await registry.close_all()

    async def test_failure_calls_every_errback(self, registry):
        failures = []
        successes = []

        registry.get_connection("127.0.0.1", successes.append, lambda: failures.append(1))
        registry.get_connection("127.0.0.1", successes.append, lambda: failures.append(2))

        await wait_for(lambda: len(failures) == 2)
        assert failures == [1, 2]
        assert successes == []
        assert "127.0.0.1" not in registry

    async def test_retry_after_failure(self, registry, server_port):
        failures = []
        registry.get_connection("127.0.0.1", lambda c: None, lambda: failures.append(True))
        await wait_for(lambda: failures)

        srv = FakeLogicServer(port=server_port)
        await srv.start()
        try:
            client = await registry.connect("127.0.0.1")
            assert client.connected
            assert srv.connections == 1
            await registry.close_all()
        finally:
            await srv.stop()

    async def test_handshake_failure_is_connection_failure(self, registry, fake_server):
        fake_server.replies["ver"] = b"ERR - busy\n"
        failures = []
        registry.get_connection(fake_server.host, lambda c: None, lambda: failures.append(True))

        await wait_for(lambda: failures)
        assert registry.get_client(fake_server.host) is None
        assert fake_server.host not in registry

    async def test_success_callback_required(self, registry):
        with pytest.raises(ValueError):
            registry.get_connection("127.0.0.1", None)

    async def test_malformed_host_fails(self, registry):
        host = "a" * 64 + ".example"
        failures = []
        registry.get_connection(host, lambda c: None, lambda: failures.append(True))

        await wait_for(lambda: failures)
        assert failures == [True]
        assert host not in registry

    async def test_unexpected_connect_error_fails(self, server_port):
        registry = ConnectionRegistry(port=server_port, client_factory=BrokenClient)
        failures = []
        registry.get_connection("broken", lambda c: None, lambda: failures.append(True))

        await wait_for(lambda: failures)
        assert "broken" not in registry
        with pytest.raises(LogicConnectionError):
            await registry.connect("broken")

    async def test_close_all_cancels_pending_attempt(self, registry, fake_server):
        fake_server.replies["ver"] = b""
        failures = []
        record = registry.get_connection(fake_server.host, lambda c: None, lambda: failures.append(True))
        await wait_for(lambda: "ver" in fake_server.received)

        await registry.close_all()

        assert record.task.done()
        assert failures == [True]
        assert fake_server.host not in registry

    async def test_close_all_before_attempt_starts(self, registry, fake_server):
        failures = []
        record = registry.get_connection(fake_server.host, lambda c: None, lambda: failures.append(True))

        await registry.close_all()

        assert record.task.done()
        assert failures == [True]
        assert len(registry) == 0


class TestRequiresLoop:
    """Test use outside an event loop."""

    def test_no_running_loop(self):
        with pytest.raises(RuntimeError):
            ConnectionRegistry().get_connection("localhost", lambda c: None)


@pytest.mark.asyncio
class TestRegistryLookup:
    """Test get_client, connect() and disconnect handling."""

    async def test_get_client_before_and_after(self, registry, fake_server):
        assert registry.get_client(fake_server.host) is None

        registry.get_connection(fake_server.host, lambda c: None)
        assert registry.get_client(fake_server.host) is None

        client = await registry.connect(fake_server.host)
        assert registry.get_client(fake_server.host) is client

        await registry.close_all()

    async def test_connect_failure_raises(self, registry):
        with pytest.raises(LogicConnectionError):
            await registry.connect("127.0.0.1")

    async def test_concurrent_connect_coroutines(self, registry, fake_server):
        first, second = await asyncio.gather(
            registry.connect(fake_server.host),
            registry.connect(fake_server.host),
        )
        assert first is second
        assert fake_server.connections == 1

        await registry.close_all()

    async def test_disconnect_forgets_host(self, registry, fake_server):
        client = await registry.connect(fake_server.host)
        assert fake_server.host in registry

        await client.close()

        assert fake_server.host not in registry
        assert registry.get_client(fake_server.host) is None

        again = await registry.connect(fake_server.host)
        assert again is not client
        assert fake_server.connections == 2

        await registry.close_all()

    async def test_independent_registries(self, server_port, fake_server):
        one = ConnectionRegistry(port=server_port)
        two = ConnectionRegistry(port=server_port)

        a = await one.connect(fake_server.host)
        b = await two.connect(fake_server.host)

        assert a is not b
        assert fake_server.connections == 2

        await one.close_all()
        await two.close_all()
