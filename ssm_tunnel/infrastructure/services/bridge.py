"""
Port-forward bridge.

Owns the loopback TCP listener and every accepted local connection, and
shuttles bytes between those sockets and the data channel.
"""

import asyncio
import errno
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from ...core.domain.events import OutputLevel
from ...core.domain.exceptions import LocalBindError, TransportClosed
from ...core.domain.messages import MessageType
from ...core.interfaces.lifecycle import IHealthCheckable, IStoppable
from ..clients.data_channel import DataChannel
from ..config.models import LOOPBACK_HOST, BridgeConfig

logger = logging.getLogger(__name__)

BRIDGE_EVENTS = ("output",)


def in_use_message(port: int) -> str:
    return f"Local port {port} is already in use. Choose a different local port, then try again."


def permission_denied_message(port: int) -> str:
    return (
        f"Local port {port} requires elevated permissions. "
        f"Choose a port above 1024 or run with appropriate privileges."
    )


def normalize_port_error(error_message: Any, local_port: int) -> str:
    """
    Turn a raw bind error text into an actionable message.

    Args:
        error_message: Error text from a failed bind
        local_port: Port that was being bound

    Returns:
        Human-readable explanation
    """
    message = str(error_message or "")
    lowered = message.lower()

    if (
        "eaddrinuse" in lowered
        or "address already in use" in lowered
        or ("port" in lowered and "already in use" in lowered)
    ):
        return in_use_message(local_port)

    if "eacces" in lowered or "permission denied" in lowered:
        return permission_denied_message(local_port)

    return message or "Failed to start session"


def bind_error_from_os_error(error: OSError, local_port: int) -> LocalBindError:
    """Classify a bind OSError by its errno."""
    if error.errno == errno.EADDRINUSE:
        return LocalBindError(in_use_message(local_port), local_port, LocalBindError.IN_USE, str(error))
    if error.errno in (errno.EACCES, errno.EPERM):
        return LocalBindError(
            permission_denied_message(local_port), local_port, LocalBindError.PERMISSION_DENIED, str(error))

    message = normalize_port_error(str(error), local_port)
    reason = LocalBindError.OTHER
    if message == in_use_message(local_port):
        reason = LocalBindError.IN_USE
    elif message == permission_denied_message(local_port):
        reason = LocalBindError.PERMISSION_DENIED
    return LocalBindError(message, local_port, reason, str(error))


@dataclass
class PortAvailability:
    """Result of a local port preflight check."""
    available: bool
    error: Optional[str] = None
    reason: Optional[str] = None


async def check_local_port_availability(local_port: Any, host: str = LOOPBACK_HOST) -> PortAvailability:
    """
    Try to bind ``local_port`` on loopback and release it straight away.

    Returns:
        PortAvailability describing whether the port can be bound
    """
    if isinstance(local_port, bool) or not str(local_port).isdigit() \
            or not 1 <= int(local_port) <= 65535:
        return PortAvailability(False, "Invalid local port (must be between 1 and 65535)")

    port = int(local_port)
    try:
        server = await asyncio.start_server(lambda r, w: None, host, port)
    except OSError as e:
        bind_error = bind_error_from_os_error(e, port)
        return PortAvailability(False, bind_error.message, bind_error.reason)

    server.close()
    await server.wait_closed()
    return PortAvailability(True)


@dataclass
class LocalConnection:
    """One accepted local client socket."""
    connection_id: str
    reader: asyncio.StreamReader
    writer: asyncio.StreamWriter
    peer: Optional[str] = None
    created_at: float = field(default_factory=time.time)
    bytes_in: int = 0
    bytes_out: int = 0
    closed: bool = False


class PortForwardBridge(IStoppable, IHealthCheckable):
    """
    Multiplexes local TCP connections onto one data channel.

    Bytes read from any local socket go out as INPUT_STREAM_DATA frames.
    Payload arriving from the channel is written to every open local
    socket, since the channel carries no per-connection identifier.
    """

    def __init__(
        self,
        channel: DataChannel,
        config: Optional[BridgeConfig] = None,
        should_forward: Optional[Callable[[], bool]] = None
    ):
        self._channel = channel
        self._config = config or BridgeConfig()
        self._should_forward = should_forward or (lambda: channel.is_ready)

        self._server: Optional[asyncio.AbstractServer] = None
        self._connections: Dict[str, LocalConnection] = {}
        self._callbacks: Dict[str, List[Callable[..., Any]]] = {}
        self._local_port: Optional[int] = None

        self._accepted_total = 0
        self._bytes_to_channel = 0
        self._bytes_to_local = 0
        self._dropped_payloads = 0

    @property
    def is_listening(self) -> bool:
        return self._server is not None

    @property
    def local_port(self) -> Optional[int]:
        return self._local_port

    @property
    def local_address(self) -> Optional[str]:
        if self._local_port is None:
            return None
        return f"{self._config.bind_host}:{self._local_port}"

    @property
    def connections(self) -> Dict[str, LocalConnection]:
        return dict(self._connections)

    def add_callback(self, event: str, callback: Callable[..., Any]) -> None:
        if event not in BRIDGE_EVENTS:
            raise ValueError(f"Unknown bridge event: {event}")
        self._callbacks.setdefault(event, []).append(callback)

    async def listen(self, local_port: int) -> None:
        """
        Bind the listener on loopback.

        Raises:
            LocalBindError: If the port cannot be bound
        """
        if self._server is not None:
            raise RuntimeError(f"Bridge already listening on {self.local_address}")

        try:
            self._server = await asyncio.start_server(
                self._handle_client, self._config.bind_host, local_port)
        except OSError as e:
            bind_error = bind_error_from_os_error(e, local_port)
            logger.error(f"Failed to bind {self._config.bind_host}:{local_port}: {e}")
            raise bind_error from e

        sockets = self._server.sockets or ()
        self._local_port = sockets[0].getsockname()[1] if sockets else local_port
        logger.info(f"Listening on {self.local_address}")
        self._emit_output(f"Port {self._local_port} opened on {self._config.bind_host}", OutputLevel.SUCCESS)
        self._emit_output("Waiting for connections...", OutputLevel.INFO)

    async def _handle_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        """Read one local client until it closes."""
        peername = writer.get_extra_info("peername")
        connection = LocalConnection(
            connection_id=uuid.uuid4().hex[:12],
            reader=reader,
            writer=writer,
            peer=f"{peername[0]}:{peername[1]}" if peername else None,
        )
        self._connections[connection.connection_id] = connection
        self._accepted_total += 1

        logger.info(f"Connection {connection.connection_id} accepted from {connection.peer}")
        self._emit_output("Connection accepted from client", OutputLevel.SUCCESS)

        try:
            while True:
                data = await reader.read(self._config.buffer_size)
                if not data:
                    logger.debug(f"Connection {connection.connection_id}: local closed (EOF)")
                    break
                if not self._should_forward():
                    logger.warning(
                        f"Connection {connection.connection_id}: channel not ready, closing")
                    break

                await self._channel.send(MessageType.INPUT_STREAM_DATA, data)
                connection.bytes_in += len(data)
                self._bytes_to_channel += len(data)
        except TransportClosed as e:
            logger.warning(f"Connection {connection.connection_id}: {e}")
        except (ConnectionError, OSError) as e:
            logger.debug(f"Connection {connection.connection_id} error: {e}")
        finally:
            await self._release(connection)
            logger.info(
                f"Connection {connection.connection_id} closed "
                f"(in={connection.bytes_in} out={connection.bytes_out})")

    async def deliver(self, payload: bytes) -> int:
        """
        Write channel payload to the local side.

        Every open local connection receives the bytes. Each write is
        drained before returning, so a slow socket holds up the caller.

        Returns:
            Number of connections written to
        """
        # TODO: demultiplex by connection once the channel carries a connection id
        targets = [c for c in self._connections.values() if not c.closed]
        if not targets:
            self._dropped_payloads += 1
            logger.debug(f"No local connection for {len(payload)} bytes, dropping")
            return 0

        delivered = 0
        for connection in targets:
            try:
                connection.writer.write(payload)
                await connection.writer.drain()
            except (ConnectionError, OSError) as e:
                logger.debug(f"Connection {connection.connection_id} write failed: {e}")
                await self._release(connection)
                continue
            connection.bytes_out += len(payload)
            delivered += 1

        self._bytes_to_local += len(payload) * delivered
        return delivered

    async def _release(self, connection: LocalConnection) -> None:
        if connection.closed:
            return
        connection.closed = True
        self._connections.pop(connection.connection_id, None)

        connection.writer.close()
        try:
            await connection.writer.wait_closed()
        except (ConnectionError, OSError) as e:
            logger.debug(f"Connection {connection.connection_id} close error: {e}")

    async def stop(self) -> None:
        """Close every local socket, then the listener. Idempotent."""
        server, self._server = self._server, None

        try:
            for connection in list(self._connections.values()):
                try:
                    await self._release(connection)
                except Exception as e:
                    logger.warning(f"Failed to close connection {connection.connection_id}: {e}")
        finally:
            if server is not None:
                server.close()
                try:
                    await asyncio.wait_for(server.wait_closed(), timeout=5.0)
                except asyncio.TimeoutError:
                    logger.warning(f"Listener on {self.local_address} slow to close")
                logger.info(f"Stopped listening on {self.local_address}")

    async def check_health(self) -> Dict[str, Any]:
        return {
            'healthy': self.is_listening,
            'status': 'listening' if self.is_listening else 'stopped',
            'details': {
                'address': self.local_address,
                'connections': len(self._connections),
                'accepted_total': self._accepted_total,
                'bytes_to_channel': self._bytes_to_channel,
                'bytes_to_local': self._bytes_to_local,
                'dropped_payloads': self._dropped_payloads,
            }
        }

    def _emit_output(self, text: str, level: OutputLevel) -> None:
        for callback in self._callbacks.get("output", []):
            try:
                callback(text, level)
            except Exception as e:
                logger.error(f"Callback error for event output: {e}")
