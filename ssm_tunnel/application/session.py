"""
Session controller.

Drives one forwarding session end to end: validation, negotiation with the
control plane, data channel handshake, local listener, duration timer and
teardown. All state transitions go through a single lock; no network call
is made while holding it.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from ..core.domain.config import SessionConfig
from ..core.domain.events import OutputLevel, OutputLine, SessionStatusEvent, StatusChange
from ..core.domain.exceptions import (
    LocalBindError,
    NegotiationError,
    SessionActiveError,
    TransportClosed,
    TunnelError,
    ValidationError,
)
from ..core.domain.session import Session, SessionState, SessionStatus, StartResult, StopResult
from ..core.interfaces.control_plane import IControlPlane
from ..core.interfaces.lifecycle import IHealthCheckable
from ..core.services.notifications import NotificationStream
from ..infrastructure.clients.data_channel import DataChannel
from ..infrastructure.config.models import ApplicationConfig
from ..infrastructure.services.bridge import PortForwardBridge, check_local_port_availability

logger = logging.getLogger(__name__)

ChannelFactory = Callable[[], DataChannel]

_STATUS_EVENTS = {
    SessionState.CONNECTING: SessionStatusEvent.CONNECTING,
    SessionState.CONNECTED: SessionStatusEvent.CONNECTED,
    SessionState.DISCONNECTING: SessionStatusEvent.DISCONNECTING,
    SessionState.DISCONNECTED: SessionStatusEvent.DISCONNECTED,
    SessionState.ERROR: SessionStatusEvent.ERROR,
}

_LOG_LEVELS = {
    OutputLevel.INFO: logging.INFO,
    OutputLevel.SUCCESS: logging.INFO,
    OutputLevel.ERROR: logging.ERROR,
}


class SessionController(IHealthCheckable):
    """
    Caller-facing API of the engine.

    ``start``, ``stop`` and ``status`` drive and inspect the session;
    ``output`` and ``status_events`` are the two notification streams.
    """

    def __init__(
        self,
        control_plane: IControlPlane,
        config: Optional[ApplicationConfig] = None,
        channel_factory: Optional[ChannelFactory] = None
    ):
        self._control_plane = control_plane
        self._config = config or ApplicationConfig()
        self._channel_factory = channel_factory or (lambda: DataChannel(self._config.data_channel))

        self._lock = asyncio.Lock()
        self._state = SessionState.IDLE
        self._session: Optional[Session] = None
        self._local_port: Optional[int] = None
        self._channel: Optional[DataChannel] = None
        self._bridge: Optional[PortForwardBridge] = None
        self._timer_task: Optional[asyncio.Task[None]] = None
        self._connect_loss: Optional[TransportClosed] = None
        self._background: Set[asyncio.Task[Any]] = set()

        self.output: NotificationStream[OutputLine] = NotificationStream("output")
        self.status_events: NotificationStream[StatusChange] = NotificationStream("status")

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def channel(self) -> Optional[DataChannel]:
        return self._channel

    @property
    def bridge(self) -> Optional[PortForwardBridge]:
        return self._bridge

    def status(self) -> SessionStatus:
        """Current state and session id, for polling callers."""
        return SessionStatus(
            connected=self._state == SessionState.CONNECTED,
            session_id=self._session.session_id if self._session else None,
            state=self._state,
            local_port=self._local_port,
        )

    async def start(self, config: SessionConfig) -> StartResult:
        """
        Negotiate a session and start forwarding.

        Returns:
            StartResult with the session id and local URL, or the failure
        """
        async with self._lock:
            if self._state in (SessionState.CONNECTING, SessionState.CONNECTED,
                               SessionState.DISCONNECTING):
                error = SessionActiveError()
                self.log(error.message, OutputLevel.ERROR)
                return self._failure(error)

            self._session = None
            self._local_port = None
            self._connect_loss = None
            self._transition(SessionState.CONNECTING)

        try:
            return await self._start(config)
        except TunnelError as e:
            return await self._fail_start(e)
        except Exception as e:
            logger.exception("Unexpected error starting session")
            return await self._fail_start(e)

    async def _start(self, config: SessionConfig) -> StartResult:
        config = config.validate()
        local_port = int(config.local_port_number)
        duration = config.session_duration or self._config.session.session_duration

        self.log("Starting port forwarding session...")
        self.log(f"Profile: {config.profile}")
        self.log(f"Region: {config.region}")
        self.log(f"Target: {config.target}")
        self.log(f"Host: {config.host}")
        self.log(f"Port: {config.port_number} → localhost:{local_port}")
        self.log(f"Session timeout: {duration / 60:g} minutes")

        availability = await check_local_port_availability(local_port, self._config.bridge.bind_host)
        if not availability.available:
            raise LocalBindError(
                availability.error or "Local port unavailable", local_port,
                availability.reason or LocalBindError.OTHER)

        grant = await self._negotiate(config)
        session = Session(grant.session_id, grant.stream_url, grant.token_value)

        async with self._lock:
            if self._state != SessionState.CONNECTING:
                self._spawn(self._terminate_remote(session.session_id))
                return self._cancelled()
            self._session = session
            self._local_port = local_port

        self.log(f"Session started: {session.session_id}", OutputLevel.SUCCESS)

        channel = self._channel_factory()
        channel.add_callback("output", self.log)
        channel.add_callback("closed", self._on_transport_closed)
        self._channel = channel
        await channel.connect(session.stream_url, session.token_value)

        bridge = PortForwardBridge(channel, self._config.bridge, should_forward=self._is_forwarding)
        bridge.add_callback("output", self.log)
        channel.add_callback("payload", self._deliver)
        self._bridge = bridge
        await bridge.listen(local_port)

        async with self._lock:
            if self._state != SessionState.CONNECTING:
                # stop() ran while connecting; whatever it could not see is ours to close
                if self._bridge is bridge:
                    self._bridge = None
                if self._channel is channel:
                    self._channel = None
                self._spawn(self._discard(bridge, channel))
                return self._cancelled()
            if not channel.is_ready:
                # Lost after the handshake; _fail_start releases bridge and channel
                raise self._connect_loss or TransportClosed("Data channel closed before the session was ready")
            session.state = SessionState.CONNECTED
            self._transition(SessionState.CONNECTED)
            self._arm_timer(duration)

        self.log("Ready! Waiting for connections...", OutputLevel.SUCCESS)
        return StartResult(
            success=True,
            session_id=session.session_id,
            local_url=f"https://localhost:{local_port}",
            local_address=bridge.local_address,
        )

    async def _negotiate(self, config: SessionConfig) -> Any:
        timeout = self._config.control_plane.request_timeout
        try:
            return await asyncio.wait_for(
                self._control_plane.start_session(
                    config.target,
                    self._config.session.document_name,
                    config.to_parameters()
                ),
                timeout
            )
        except asyncio.TimeoutError:
            raise NegotiationError(f"StartSession timed out after {timeout:g}s")

    async def _fail_start(self, error: BaseException) -> StartResult:
        if self._state != SessionState.CONNECTING:
            # stop() closed the channel under us and owns the teardown
            logger.debug(f"Start interrupted by stop: {error}")
            await self._release_resources()
            return self._cancelled()

        message = error.message if isinstance(error, TunnelError) else str(error)
        if isinstance(error, ValidationError):
            self.log(f"Validation failed: {message}", OutputLevel.ERROR)
        else:
            self.log(f"Failed to start session: {message}", OutputLevel.ERROR)

        await self._release_resources()

        async with self._lock:
            if self._state == SessionState.CONNECTING:
                self._session = None
                self._transition(SessionState.ERROR)
        return self._failure(error)

    async def stop(self) -> StopResult:
        """
        Stop the session. Safe from any state; repeated or concurrent calls
        are no-ops.
        """
        async with self._lock:
            if self._state in (SessionState.IDLE, SessionState.DISCONNECTING,
                               SessionState.DISCONNECTED):
                return StopResult(success=True)
            self._transition(SessionState.DISCONNECTING)

        self.log("Stopping session...")
        await self._release_resources()

        async with self._lock:
            self._session = None
            self._transition(SessionState.DISCONNECTED)

        self.log("Session stopped", OutputLevel.SUCCESS)
        return StopResult(success=True)

    def _arm_timer(self, duration: float) -> None:
        self.log(f"Session will auto-close in {duration / 60:g} minutes")
        self._timer_task = asyncio.create_task(self._session_timer(duration))

    async def _session_timer(self, duration: float) -> None:
        await asyncio.sleep(duration)
        self.log("Session timeout reached. Closing session...")
        await self.stop()

    def _on_transport_closed(self, error: TransportClosed) -> None:
        """Channel reported the transport gone on its own."""
        if self._state == SessionState.CONNECTING:
            # start() is still running and fails the session itself
            self._connect_loss = error
            return
        if self._state != SessionState.CONNECTED:
            return
        task = asyncio.create_task(self._handle_transport_closed(error))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _handle_transport_closed(self, error: TransportClosed) -> None:
        if error.graceful:
            self.log("Session ended by remote")
            await self.stop()
            return

        async with self._lock:
            if self._state != SessionState.CONNECTED:
                return
            self._transition(SessionState.ERROR)

        self.log(f"Session lost: {error.message}", OutputLevel.ERROR)
        await self._release_resources()

    def _spawn(self, coro: Awaitable[Any]) -> None:
        """Run cleanup outside the lock; the task is kept until it finishes."""
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _discard(self, bridge: PortForwardBridge, channel: DataChannel) -> None:
        try:
            await bridge.stop()
        finally:
            await channel.close()

    async def _release_resources(self) -> None:
        """
        Tear down whatever the session currently holds.

        Each resource is detached before it is released, so overlapping
        calls never release the same resource twice.
        """
        timer, self._timer_task = self._timer_task, None
        if timer is not None and timer is not asyncio.current_task() and not timer.done():
            timer.cancel()

        bridge, self._bridge = self._bridge, None
        if bridge is not None:
            try:
                await bridge.stop()
            except Exception as e:
                logger.error(f"Error stopping bridge: {e}")

        channel, self._channel = self._channel, None
        if channel is not None:
            try:
                await channel.close()
            except Exception as e:
                logger.error(f"Error closing data channel: {e}")

        session = self._session
        if session is not None and not session.terminated:
            session.terminated = True
            await self._terminate_remote(session.session_id)

    async def _terminate_remote(self, session_id: str) -> None:
        """Best effort; failures are logged and never raised."""
        try:
            await asyncio.wait_for(
                self._control_plane.terminate_session(session_id),
                self._config.control_plane.request_timeout
            )
        except Exception as e:
            logger.warning(f"Failed to terminate session {session_id}: {e}")
            self.log(f"Could not terminate remote session {session_id}: {e}", OutputLevel.ERROR)
            return
        self.log(f"Remote session {session_id} terminated")

    async def _deliver(self, payload: bytes) -> None:
        bridge = self._bridge
        if bridge is None or not self._is_forwarding():
            logger.debug(f"Dropping {len(payload)} bytes received while not connected")
            return
        await bridge.deliver(payload)

    def _is_forwarding(self) -> bool:
        channel = self._channel
        return (
            self._state in (SessionState.CONNECTING, SessionState.CONNECTED)
            and channel is not None
            and channel.is_ready
        )

    def _transition(self, state: SessionState) -> None:
        """Change state. Callers hold the lock."""
        old_state = self._state
        if old_state == state:
            return
        self._state = state
        if self._session is not None and state != SessionState.DISCONNECTED:
            self._session.state = state
        logger.debug(f"Session state changed: {old_state.value} -> {state.value}")

        event = _STATUS_EVENTS.get(state)
        if event is not None:
            self.status_events.publish(StatusChange(
                event, self._session.session_id if self._session else None))

    def log(self, message: str, level: OutputLevel = OutputLevel.INFO) -> None:
        """Publish an output line and mirror it to the log."""
        line = OutputLine(message, level)
        self.output.publish(line)
        logger.log(_LOG_LEVELS[level], message)

    def _failure(self, error: BaseException) -> StartResult:
        if isinstance(error, TunnelError):
            return StartResult(success=False, error=error.message, error_kind=error.code.name)
        return StartResult(success=False, error=str(error) or error.__class__.__name__)

    def _cancelled(self) -> StartResult:
        self.log("Session start cancelled", OutputLevel.ERROR)
        return StartResult(success=False, error="Session start cancelled")

    async def check_health(self) -> Dict[str, Any]:
        channel_health = await self._channel.check_health() if self._channel else None
        bridge_health = await self._bridge.check_health() if self._bridge else None
        return {
            'healthy': self._state in (SessionState.IDLE, SessionState.CONNECTING,
                                       SessionState.CONNECTED, SessionState.DISCONNECTED),
            'status': self._state.value,
            'details': {
                'session_id': self._session.session_id if self._session else None,
                'uptime': self._session.uptime if self._session else None,
                'data_channel': channel_health,
                'bridge': bridge_health,
            }
        }

    async def close(self) -> None:
        """Stop any session and end both notification streams."""
        await self.stop()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        self.output.close()
        self.status_events.close()
