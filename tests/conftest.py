"""
Shared fixtures: an in-process session broker, an in-memory websocket and
port helpers.
"""

import asyncio
import json
import socket
from typing import Any, AsyncGenerator, Callable, Dict, List, Optional

import pytest
import websockets
from websockets.exceptions import ConnectionClosed

from ssm_tunnel.core.domain.config import SessionConfig
from ssm_tunnel.core.domain.messages import AgentMessage, MessageType, PayloadType
from ssm_tunnel.core.interfaces.control_plane import IControlPlane, SessionGrant
from ssm_tunnel.infrastructure.protocol import codec


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll ``predicate`` until it holds or fail the test."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            pytest.fail("Condition not met within timeout")
        await asyncio.sleep(0.01)


def get_free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]  # type: ignore[no-any-return]


class FakeWebSocket:
    """In-memory stand-in for a client websocket connection."""

    def __init__(self) -> None:
        self.sent: List[Any] = []
        self.incoming: "asyncio.Queue[Any]" = asyncio.Queue()
        self.closed = False
        self.connect_kwargs: Dict[str, Any] = {}

    async def send(self, data: Any) -> None:
        self.sent.append(data)

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self.incoming.put_nowait(None)

    def feed(self, data: Any) -> None:
        self.incoming.put_nowait(data)

    def end(self) -> None:
        self.incoming.put_nowait(None)

    def frames(self) -> List[AgentMessage]:
        return [codec.decode(item) for item in self.sent if isinstance(item, bytes)]

    def __aiter__(self) -> "FakeWebSocket":
        return self

    async def __anext__(self) -> Any:
        item = await self.incoming.get()
        if isinstance(item, BaseException):
            raise item
        if item is None:
            raise StopAsyncIteration
        return item


class SessionBroker:
    """Loopback websocket server speaking the broker side of the data channel."""

    def __init__(self, complete_handshake: bool = True) -> None:
        self.complete_handshake = complete_handshake
        self.handshakes: List[Dict[str, Any]] = []
        self.frames: List[AgentMessage] = []
        self.connection: Optional[Any] = None
        self.url = ""
        self._server: Optional[Any] = None
        self._sequence = 0

    async def start(self) -> None:
        self._server = await websockets.serve(self._handler, "127.0.0.1", 0)
        port = list(self._server.sockets)[0].getsockname()[1]
        self.url = f"ws://127.0.0.1:{port}/data-channel"

    async def stop(self) -> None:
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()

    async def _handler(self, ws: Any, *args: Any) -> None:
        self.connection = ws
        try:
            self.handshakes.append(json.loads(await ws.recv()))
            if self.complete_handshake:
                await self.send(MessageType.OUTPUT_STREAM_DATA, b"{}", PayloadType.HANDSHAKE_COMPLETE)
            async for raw in ws:
                if isinstance(raw, bytes):
                    self.frames.append(codec.decode(raw))
        except ConnectionClosed:
            pass

    async def send(
        self,
        message_type: MessageType,
        payload: bytes,
        payload_type: PayloadType = PayloadType.OUTPUT
    ) -> None:
        assert self.connection is not None
        frame = codec.encode(message_type, payload, self._sequence, payload_type)
        self._sequence += 1
        await self.connection.send(frame)

    async def disconnect(self) -> None:
        assert self.connection is not None
        await self.connection.close()

    def of_type(self, message_type: MessageType) -> List[AgentMessage]:
        return [f for f in self.frames if f.message_type == message_type]


class StubControlPlane(IControlPlane):
    """Control plane that hands out grants for a SessionBroker."""

    def __init__(self, stream_url: str = "ws://127.0.0.1:1/unused", session_id: str = "sess-1") -> None:
        self.stream_url = stream_url
        self.session_id = session_id
        self.started: List[Dict[str, Any]] = []
        self.terminated: List[str] = []
        self.start_error: Optional[Exception] = None
        self.terminate_error: Optional[Exception] = None
        self.delay = 0.0

    async def start_session(
        self,
        target: str,
        document_name: str,
        parameters: Dict[str, List[str]]
    ) -> SessionGrant:
        self.started.append({
            "target": target,
            "document_name": document_name,
            "parameters": parameters,
        })
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.start_error is not None:
            raise self.start_error
        return SessionGrant(self.session_id, self.stream_url, "token-value")

    async def terminate_session(self, session_id: str) -> None:
        self.terminated.append(session_id)
        if self.terminate_error is not None:
            raise self.terminate_error


def make_session_config(local_port: int, **overrides: Any) -> SessionConfig:
    values: Dict[str, Any] = {
        "target": "i-0123456789abcdef0",
        "host": "db.internal.example.com",
        "port_number": 5432,
        "local_port_number": local_port,
        "region": "us-east-1",
        "profile": "default",
    }
    values.update(overrides)
    return SessionConfig(**values)


@pytest.fixture
async def broker() -> AsyncGenerator[SessionBroker, None]:
    server = SessionBroker()
    await server.start()
    yield server
    await server.stop()


@pytest.fixture
async def silent_broker() -> AsyncGenerator[SessionBroker, None]:
    """Broker that never completes the handshake."""
    server = SessionBroker(complete_handshake=False)
    await server.start()
    yield server
    await server.stop()


@pytest.fixture
async def fake_ws() -> FakeWebSocket:
    return FakeWebSocket()


@pytest.fixture
def free_port() -> int:
    return get_free_port()
