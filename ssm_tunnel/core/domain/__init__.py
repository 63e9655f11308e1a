"""
Domain models for the tunnel engine.
"""

from .config import SessionConfig
from .events import OutputLevel, OutputLine, SessionStatusEvent, StatusChange
from .exceptions import (
    ErrorCode,
    HandshakeTimeout,
    LocalBindError,
    NegotiationError,
    ProtocolError,
    SessionActiveError,
    TransportClosed,
    TunnelError,
    ValidationError,
)
from .messages import AgentMessage, MessageType, PayloadType
from .session import ChannelState, Session, SessionState, SessionStatus, StartResult, StopResult

__all__ = [
    "SessionConfig",
    "OutputLevel",
    "OutputLine",
    "SessionStatusEvent",
    "StatusChange",
    "ErrorCode",
    "HandshakeTimeout",
    "LocalBindError",
    "NegotiationError",
    "ProtocolError",
    "SessionActiveError",
    "TransportClosed",
    "TunnelError",
    "ValidationError",
    "AgentMessage",
    "MessageType",
    "PayloadType",
    "ChannelState",
    "Session",
    "SessionState",
    "SessionStatus",
    "StartResult",
    "StopResult",
]
