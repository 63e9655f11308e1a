"""
SSM Tunnel - session data-channel engine for remote port forwarding.

Negotiates a forwarding session with the fleet-management control plane,
runs the framed data channel over a websocket and bridges it to a TCP
listener on loopback.
"""

__version__ = "0.1.0"

# Public API exports
from .core.domain.config import SessionConfig
from .core.domain.events import OutputLevel, OutputLine, SessionStatusEvent, StatusChange
from .core.domain.session import SessionState, SessionStatus, StartResult, StopResult
from .core.interfaces.control_plane import IControlPlane, SessionGrant
from .application.session import SessionController

__all__ = [
    "SessionConfig",
    "OutputLevel",
    "OutputLine",
    "SessionStatusEvent",
    "StatusChange",
    "SessionState",
    "SessionStatus",
    "StartResult",
    "StopResult",
    "IControlPlane",
    "SessionGrant",
    "SessionController",
]
