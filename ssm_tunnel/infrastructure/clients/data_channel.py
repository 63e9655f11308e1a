"""
Data channel client.

The data channel is the single encrypted websocket stream between the
engine and the session broker. It performs the opening handshake, numbers
every outbound frame, acknowledges every inbound frame, and hands
forwarded payload to whoever registered for it.
"""

import asyncio
import inspect
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional

import websockets
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK, WebSocketException

from ...core.domain.events import OutputLevel
from ...core.domain.exceptions import HandshakeTimeout, ProtocolError, TransportClosed
from ...core.domain.messages import AgentMessage, MessageType, PayloadType
from ...core.domain.session import ChannelState
from ...core.interfaces.lifecycle import IHealthCheckable, IStoppable
from ..config.models import DataChannelConfig
from ..protocol import codec

logger = logging.getLogger(__name__)

Connector = Callable[..., Awaitable[Any]]

# Events that can be subscribed to with add_callback()
CHANNEL_EVENTS = ("payload", "output", "closed", "state")


class DataChannel(IStoppable, IHealthCheckable):
    """
    Duplex frame channel over a websocket.

    Callbacks:
        payload(data: bytes): forwarded bytes for the local side; awaited
            by the reader loop, so a slow consumer slows reading
        output(text: str, level: OutputLevel): informational text
        closed(error: TransportClosed): the transport went away on its own
        state(old: ChannelState, new: ChannelState): state transitions
    """

    def __init__(
        self,
        config: Optional[DataChannelConfig] = None,
        connector: Optional[Connector] = None,
        name: Optional[str] = None
    ):
        self._config = config or DataChannelConfig()
        self._connector: Connector = connector or websockets.connect
        self._name = name or "data-channel"

        self._state = ChannelState.IDLE
        self._ws: Optional[Any] = None
        self._reader_task: Optional[asyncio.Task[None]] = None
        self._ready = asyncio.Event()
        self._callbacks: Dict[str, List[Callable[..., Any]]] = {}
        self._closing = False
        self._lost: Optional[TransportClosed] = None

        # Outbound sequence counter, post-incremented per frame sent
        self._next_sequence = 0

        self._frames_sent = 0
        self._frames_received = 0
        self._raw_payloads = 0
        self._acks_sent = 0
        self._acks_received = 0
        self._connected_at: Optional[float] = None

    @property
    def state(self) -> ChannelState:
        return self._state

    @property
    def next_sequence_number(self) -> int:
        return self._next_sequence

    @property
    def is_ready(self) -> bool:
        return self._state == ChannelState.READY

    def add_callback(self, event: str, callback: Callable[..., Any]) -> None:
        """Register a callback for one of CHANNEL_EVENTS."""
        if event not in CHANNEL_EVENTS:
            raise ValueError(f"Unknown data channel event: {event}")
        self._callbacks.setdefault(event, []).append(callback)

    def remove_callback(self, event: str, callback: Callable[..., Any]) -> None:
        """Remove a previously registered callback."""
        if event in self._callbacks:
            try:
                self._callbacks[event].remove(callback)
            except ValueError:
                logger.warning(f"Callback not found for event {event}")

    async def connect(self, stream_url: str, token_value: str) -> None:
        """
        Open the transport and complete the handshake.

        The whole sequence is bounded by ``connect_timeout``; expiry is
        terminal for this channel.

        Raises:
            HandshakeTimeout: If the channel is not ready in time
            TransportClosed: If the transport fails or closes first
        """
        if self._state != ChannelState.IDLE:
            raise TransportClosed(
                f"Data channel cannot connect from state {self._state.value}")

        self._set_state(ChannelState.CONNECTING)
        timeout = self._config.connect_timeout

        try:
            await asyncio.wait_for(self._open_and_handshake(stream_url, token_value), timeout)
        except asyncio.TimeoutError:
            logger.error(f"{self._name}: handshake not complete after {timeout}s")
            await self._fail()
            raise HandshakeTimeout(timeout)
        except TransportClosed:
            await self._fail()
            raise
        except (OSError, WebSocketException) as e:
            logger.error(f"{self._name}: failed to open data channel: {e}")
            await self._fail()
            raise TransportClosed(f"Failed to open data channel: {e}")

        self._connected_at = time.time()
        logger.info(f"{self._name}: data channel ready")

    async def _open_and_handshake(self, stream_url: str, token_value: str) -> None:
        self._ws = await self._connector(
            stream_url,
            max_size=self._config.max_frame_size,
            ping_interval=self._config.ping_interval,
            close_timeout=self._config.close_timeout,
        )
        logger.debug(f"{self._name}: transport open, sending handshake")

        await self._ws.send(codec.build_handshake(token_value))
        self._set_state(ChannelState.HANDSHAKING)

        self._reader_task = asyncio.create_task(self._reader_loop(self._ws))

        ready_waiter = asyncio.create_task(self._ready.wait())
        try:
            done, _ = await asyncio.wait(
                {ready_waiter, self._reader_task},
                return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            if not ready_waiter.done():
                ready_waiter.cancel()

        if ready_waiter not in done:
            raise self._lost or TransportClosed("Data channel closed during handshake")

    async def send(
        self,
        message_type: MessageType,
        payload: bytes,
        payload_type: PayloadType = PayloadType.OUTPUT
    ) -> int:
        """
        Encode and write one frame.

        Returns:
            The sequence number the frame was sent with

        Raises:
            ProtocolError: If message_type is not a MessageType
            TransportClosed: If the transport is not open
        """
        ws = self._ws
        if ws is None or self._state not in (ChannelState.HANDSHAKING, ChannelState.READY):
            raise TransportClosed(f"Data channel is not open (state: {self._state.value})")

        # No await between numbering and handing the frame to the transport
        sequence_number = self._next_sequence
        frame = codec.encode(message_type, payload, sequence_number, payload_type)
        self._next_sequence += 1

        try:
            await ws.send(frame)
        except ConnectionClosed as e:
            raise TransportClosed(
                f"Data channel closed while sending: {e}",
                graceful=isinstance(e, ConnectionClosedOK)
            )

        self._frames_sent += 1
        return sequence_number

    async def on_frame(self, raw: bytes) -> Optional[AgentMessage]:
        """
        Handle one inbound binary message.

        Returns:
            The decoded message, or None when the bytes were forwarded raw
        """
        self._frames_received += 1

        try:
            message = codec.decode(raw)
        except ProtocolError as e:
            # Not a frame: forwarded bytes travel unframed once the pipe is up
            self._raw_payloads += 1
            logger.debug(f"{self._name}: forwarding {len(raw)} unframed bytes ({e})")
            await self._trigger_callback("payload", bytes(raw))
            return None

        if not codec.verify_digest(message):
            logger.warning(
                f"{self._name}: payload digest mismatch on {message.message_type.value} "
                f"seq={message.sequence_number}")

        if message.message_type == MessageType.ACKNOWLEDGE:
            self._acks_received += 1
            logger.debug(f"{self._name}: acknowledge received seq={message.sequence_number}")
            return message

        await self._dispatch(message)
        await self._acknowledge(message)

        if message.message_type == MessageType.CHANNEL_CLOSED:
            await self._handle_transport_lost(
                TransportClosed("Remote closed the data channel", graceful=True))

        return message

    async def _dispatch(self, message: AgentMessage) -> None:
        if message.message_type == MessageType.OUTPUT_STREAM_DATA:
            await self._handle_output(message)
        elif message.message_type == MessageType.CHANNEL_CLOSED:
            text = message.payload_text().strip()
            await self._emit_output(
                f"Channel closed by remote: {text}" if text else "Channel closed by remote",
                OutputLevel.INFO)
        else:
            logger.info(
                f"{self._name}: received {message.message_type.value} "
                f"seq={message.sequence_number} ({message.payload_length} bytes)")

    async def _handle_output(self, message: AgentMessage) -> None:
        payload_type = message.payload_type

        if payload_type == PayloadType.OUTPUT:
            await self._trigger_callback("payload", message.payload)
        elif payload_type == PayloadType.HANDSHAKE_REQUEST:
            await self._emit_output("Handshake requested by remote agent", OutputLevel.INFO)
            await self.send(
                MessageType.INPUT_STREAM_DATA,
                codec.build_handshake_response(),
                PayloadType.HANDSHAKE_RESPONSE
            )
        elif payload_type == PayloadType.HANDSHAKE_COMPLETE:
            if self._state == ChannelState.HANDSHAKING:
                self._set_state(ChannelState.READY)
            self._ready.set()
            await self._emit_output("Handshake complete", OutputLevel.SUCCESS)
        elif payload_type == PayloadType.ERROR:
            await self._emit_output(message.payload_text().strip(), OutputLevel.ERROR)
        else:
            await self._emit_output(message.payload_text().strip(), OutputLevel.INFO)

    async def _acknowledge(self, message: AgentMessage) -> None:
        try:
            await self.send(MessageType.ACKNOWLEDGE, codec.build_acknowledge(message))
        except TransportClosed as e:
            logger.warning(
                f"{self._name}: could not acknowledge seq={message.sequence_number}: {e}")
            return
        self._acks_sent += 1

    async def _reader_loop(self, ws: Any) -> None:
        """Read until the transport closes; one task per channel."""
        error: Optional[TransportClosed] = None

        try:
            async for message in ws:
                if isinstance(message, str):
                    text = message.strip()
                    if text:
                        await self._emit_output(text, OutputLevel.INFO)
                    continue

                await self.on_frame(message)
                if self._closing or self._lost is not None:
                    return
        except TransportClosed as e:
            error = e
        except ConnectionClosed as e:
            error = TransportClosed(
                f"Data channel lost: {e}", graceful=isinstance(e, ConnectionClosedOK))
        except (OSError, WebSocketException) as e:
            logger.error(f"{self._name}: transport error: {e}")
            error = TransportClosed(f"Data channel transport error: {e}")

        if error is None:
            error = TransportClosed("Data channel closed by remote", graceful=True)
        await self._handle_transport_lost(error)

    async def _handle_transport_lost(self, error: TransportClosed) -> None:
        if self._closing or self._lost is not None:
            return

        self._lost = error
        await self._close_transport()
        self._set_state(ChannelState.CLOSED if error.graceful else ChannelState.ERROR)

        level = OutputLevel.INFO if error.graceful else OutputLevel.ERROR
        await self._emit_output(error.message, level)
        await self._trigger_callback("closed", error)

    async def close(self) -> None:
        """Close the channel. Safe to call repeatedly and from any state."""
        if self._closing:
            return
        self._closing = True

        if not self._state.is_terminal:
            self._set_state(ChannelState.CLOSING)

        task = self._reader_task
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        await self._close_transport()

        if self._state != ChannelState.ERROR:
            self._set_state(ChannelState.CLOSED)
        logger.info(f"{self._name}: data channel closed")

    async def stop(self) -> None:
        await self.close()

    async def _fail(self) -> None:
        self._set_state(ChannelState.ERROR)
        await self.close()

    async def _close_transport(self) -> None:
        ws, self._ws = self._ws, None
        if ws is None:
            return
        try:
            await asyncio.wait_for(ws.close(), self._config.close_timeout)
        except (asyncio.TimeoutError, OSError, WebSocketException) as e:
            logger.debug(f"{self._name}: error closing transport: {e}")

    async def check_health(self) -> Dict[str, Any]:
        """Report channel state and counters."""
        return {
            'healthy': self._state in (ChannelState.HANDSHAKING, ChannelState.READY),
            'status': self._state.value,
            'details': {
                'next_sequence_number': self._next_sequence,
                'frames_sent': self._frames_sent,
                'frames_received': self._frames_received,
                'raw_payloads': self._raw_payloads,
                'acks_sent': self._acks_sent,
                'acks_received': self._acks_received,
                'connected_at': self._connected_at,
                'last_error': self._lost.message if self._lost and not self._lost.graceful else None,
            }
        }

    def _set_state(self, state: ChannelState) -> None:
        old_state = self._state
        if old_state == state:
            return
        self._state = state
        logger.debug(f"{self._name} state changed: {old_state.value} -> {state.value}")

        for callback in self._callbacks.get("state", []):
            try:
                callback(old_state, state)
            except Exception as e:
                logger.error(f"State callback error: {e}")

    async def _emit_output(self, text: str, level: OutputLevel) -> None:
        if text:
            await self._trigger_callback("output", text, level)

    async def _trigger_callback(self, event: str, *args: Any) -> None:
        """Trigger event callbacks."""
        for callback in self._callbacks.get(event, []):
            try:
                result = callback(*args)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Callback error for event {event}: {e}")
