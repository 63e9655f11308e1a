"""
Session state models and caller-facing result types.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class SessionState(Enum):
    """Session controller lifecycle states."""
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTING = "disconnecting"
    DISCONNECTED = "disconnected"
    ERROR = "error"


class ChannelState(Enum):
    """Data channel lifecycle states."""
    IDLE = "idle"
    CONNECTING = "connecting"
    HANDSHAKING = "handshaking"
    READY = "ready"
    CLOSING = "closing"
    CLOSED = "closed"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (ChannelState.CLOSED, ChannelState.ERROR)


@dataclass
class Session:
    """
    One negotiated forwarding arrangement.

    Created by the controller after a successful StartSession call and
    discarded on stop, timeout or error.
    """
    session_id: str
    stream_url: str
    token_value: str
    state: SessionState = SessionState.CONNECTING
    started_at: float = field(default_factory=time.time)
    terminated: bool = False

    @property
    def uptime(self) -> float:
        return time.time() - self.started_at


@dataclass
class StartResult:
    """Outcome of SessionController.start()."""
    success: bool
    session_id: Optional[str] = None
    local_url: Optional[str] = None
    local_address: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        if self.success:
            return {
                "success": True,
                "sessionId": self.session_id,
                "localUrl": self.local_url,
                "localAddress": self.local_address,
            }
        return {"success": False, "error": self.error, "errorKind": self.error_kind}


@dataclass
class StopResult:
    """Outcome of SessionController.stop()."""
    success: bool = True


@dataclass
class SessionStatus:
    """Snapshot returned by SessionController.status()."""
    connected: bool
    session_id: Optional[str]
    state: SessionState
    local_port: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "connected": self.connected,
            "sessionId": self.session_id,
            "state": self.state.value,
            "localPort": self.local_port,
        }
