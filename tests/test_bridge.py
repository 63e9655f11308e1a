"""
Tests for the port-forward bridge and local port helpers.
"""

import asyncio
import errno
from typing import Any, List, Tuple
from unittest.mock import AsyncMock, Mock, patch

import pytest

from conftest import get_free_port, wait_until
from ssm_tunnel.core.domain.events import OutputLevel
from ssm_tunnel.core.domain.exceptions import LocalBindError, TransportClosed
from ssm_tunnel.core.domain.messages import MessageType
from ssm_tunnel.infrastructure.config.models import BridgeConfig
from ssm_tunnel.infrastructure.services.bridge import (
    PortForwardBridge,
    check_local_port_availability,
    in_use_message,
    normalize_port_error,
    permission_denied_message,
)


@pytest.fixture
def channel() -> Mock:
    data_channel = Mock()
    data_channel.send = AsyncMock(return_value=0)
    data_channel.is_ready = True
    return data_channel


@pytest.fixture
async def bridge(channel: Mock) -> Any:
    port_bridge = PortForwardBridge(channel, BridgeConfig(buffer_size=1024))
    await port_bridge.listen(0)
    yield port_bridge
    await port_bridge.stop()


async def occupy_port() -> Tuple[asyncio.AbstractServer, int]:
    server = await asyncio.start_server(lambda r, w: None, "127.0.0.1", 0)
    return server, server.sockets[0].getsockname()[1]


class TestListen:
    """Binding the local listener."""

    async def test_listen_on_loopback(self, channel: Mock) -> None:
        port_bridge = PortForwardBridge(channel)
        output: List[Tuple[str, OutputLevel]] = []
        port_bridge.add_callback("output", lambda text, level: output.append((text, level)))

        await port_bridge.listen(0)
        try:
            assert port_bridge.is_listening
            assert port_bridge.local_port
            assert port_bridge.local_address == f"127.0.0.1:{port_bridge.local_port}"
            assert output == [
                (f"Port {port_bridge.local_port} opened on 127.0.0.1", OutputLevel.SUCCESS),
                ("Waiting for connections...", OutputLevel.INFO),
            ]
        finally:
            await port_bridge.stop()

    async def test_port_in_use(self, channel: Mock) -> None:
        server, port = await occupy_port()
        try:
            with pytest.raises(LocalBindError) as exc_info:
                await PortForwardBridge(channel).listen(port)
        finally:
            server.close()
            await server.wait_closed()

        assert exc_info.value.reason == LocalBindError.IN_USE
        assert exc_info.value.port == port
        assert exc_info.value.message == in_use_message(port)

    async def test_permission_denied(self, channel: Mock) -> None:
        error = PermissionError(errno.EACCES, "Permission denied")
        with patch("ssm_tunnel.infrastructure.services.bridge.asyncio.start_server",
                   new=AsyncMock(side_effect=error)):
            with pytest.raises(LocalBindError) as exc_info:
                await PortForwardBridge(channel).listen(80)

        assert exc_info.value.reason == LocalBindError.PERMISSION_DENIED
        assert "above 1024" in exc_info.value.message

    async def test_listen_twice_rejected(self, bridge: PortForwardBridge) -> None:
        with pytest.raises(RuntimeError):
            await bridge.listen(0)


class TestForwarding:
    """Moving bytes between local sockets and the channel."""

    async def test_local_bytes_sent_as_input_frames(self, bridge: PortForwardBridge, channel: Mock) -> None:
        reader, writer = await asyncio.open_connection("127.0.0.1", bridge.local_port)
        writer.write(b"ping")
        await writer.drain()

        await wait_until(lambda: channel.send.await_count == 1)

        channel.send.assert_awaited_once_with(MessageType.INPUT_STREAM_DATA, b"ping")
        writer.close()

    async def test_deliver_fans_out_to_every_connection(self, bridge: PortForwardBridge) -> None:
        clients = [await asyncio.open_connection("127.0.0.1", bridge.local_port) for _ in range(2)]
        await wait_until(lambda: len(bridge.connections) == 2)

        delivered = await bridge.deliver(b"pong")

        assert delivered == 2
        for reader, writer in clients:
            assert await asyncio.wait_for(reader.readexactly(4), 2) == b"pong"
            writer.close()

    async def test_deliver_waits_for_drain(self, bridge: PortForwardBridge) -> None:
        reader, writer = await asyncio.open_connection("127.0.0.1", bridge.local_port)
        await wait_until(lambda: len(bridge.connections) == 1)
        connection = next(iter(bridge.connections.values()))
        release = asyncio.Event()

        with patch.object(connection.writer, "drain", new=AsyncMock(side_effect=release.wait)):
            delivery = asyncio.create_task(bridge.deliver(b"slow"))
            await asyncio.sleep(0.05)
            assert not delivery.done()

            release.set()
            assert await asyncio.wait_for(delivery, 2) == 1

        assert await asyncio.wait_for(reader.readexactly(4), 2) == b"slow"
        writer.close()

    async def test_deliver_without_connections_drops(self, bridge: PortForwardBridge) -> None:
        assert await bridge.deliver(b"nobody listening") == 0

        health = await bridge.check_health()
        assert health["details"]["dropped_payloads"] == 1

    async def test_not_ready_closes_connection(self, channel: Mock) -> None:
        port_bridge = PortForwardBridge(channel, should_forward=lambda: False)
        await port_bridge.listen(0)
        try:
            reader, writer = await asyncio.open_connection("127.0.0.1", port_bridge.local_port)
            writer.write(b"too early")
            await writer.drain()

            assert await asyncio.wait_for(reader.read(), 2) == b""
            channel.send.assert_not_awaited()
            writer.close()
        finally:
            await port_bridge.stop()

    async def test_channel_closed_releases_connection(self, bridge: PortForwardBridge, channel: Mock) -> None:
        channel.send.side_effect = TransportClosed("gone")
        reader, writer = await asyncio.open_connection("127.0.0.1", bridge.local_port)
        writer.write(b"data")
        await writer.drain()

        assert await asyncio.wait_for(reader.read(), 2) == b""
        await wait_until(lambda: not bridge.connections)
        writer.close()

    async def test_client_disconnect_releases_connection(self, bridge: PortForwardBridge) -> None:
        reader, writer = await asyncio.open_connection("127.0.0.1", bridge.local_port)
        await wait_until(lambda: len(bridge.connections) == 1)

        writer.close()
        await wait_until(lambda: not bridge.connections)

        health = await bridge.check_health()
        assert health["details"]["accepted_total"] == 1


class TestStop:
    """Stopping the bridge."""

    async def test_stop_closes_connections_and_listener(self, channel: Mock) -> None:
        port_bridge = PortForwardBridge(channel)
        await port_bridge.listen(0)
        port = port_bridge.local_port
        reader, writer = await asyncio.open_connection("127.0.0.1", port)
        await wait_until(lambda: len(port_bridge.connections) == 1)

        await port_bridge.stop()
        await port_bridge.stop()

        assert not port_bridge.is_listening
        assert await asyncio.wait_for(reader.read(), 2) == b""
        assert (await check_local_port_availability(port)).available
        writer.close()

    async def test_stop_without_listen(self, channel: Mock) -> None:
        await PortForwardBridge(channel).stop()


class TestPortHelpers:
    """Preflight check and error normalisation."""

    async def test_free_port_available(self) -> None:
        result = await check_local_port_availability(get_free_port())
        assert result.available
        assert result.error is None

    async def test_occupied_port_unavailable(self) -> None:
        server, port = await occupy_port()
        try:
            result = await check_local_port_availability(str(port))
        finally:
            server.close()
            await server.wait_closed()

        assert not result.available
        assert result.reason == LocalBindError.IN_USE
        assert result.error == in_use_message(port)

    @pytest.mark.parametrize("value", [0, 70000, "abc", None, True])
    async def test_invalid_port(self, value: Any) -> None:
        result = await check_local_port_availability(value)
        assert not result.available
        assert "Invalid local port" in (result.error or "")

    def test_normalize_port_error(self) -> None:
        assert normalize_port_error("listen EADDRINUSE: address already in use", 8080) == in_use_message(8080)
        assert normalize_port_error("Port 8080 is already in use", 8080) == in_use_message(8080)
        assert normalize_port_error("bind EACCES", 80) == permission_denied_message(80)
        assert normalize_port_error("something else", 80) == "something else"
        assert normalize_port_error(None, 80) == "Failed to start session"
