"""
Error types for the tunnel engine.

Every failure the engine surfaces to a caller is one of the classes below,
each tagged with an ErrorCode so results can carry a stable error kind.
"""

from enum import Enum
from typing import Any, Optional


class ErrorCode(Enum):
    """Error kinds surfaced by the engine."""
    VALIDATION_ERROR = 20001
    NEGOTIATION_ERROR = 20002
    HANDSHAKE_TIMEOUT = 20003
    PROTOCOL_ERROR = 20004
    TRANSPORT_CLOSED = 20005
    LOCAL_BIND_ERROR = 20006
    SESSION_ACTIVE = 20007


class TunnelError(Exception):
    """Base class for engine errors."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: Optional[Any] = None
    ):
        self.code = code
        self.message = message
        self.details = details
        super().__init__(message)


class ValidationError(TunnelError):
    """Malformed configuration field. Raised before any network action."""

    def __init__(self, errors: list):
        self.errors = list(errors)
        super().__init__(ErrorCode.VALIDATION_ERROR, "; ".join(self.errors), self.errors)


class NegotiationError(TunnelError):
    """The control plane rejected or timed out the session request."""

    def __init__(self, message: str, details: Any = None):
        super().__init__(ErrorCode.NEGOTIATION_ERROR, message, details)


class HandshakeTimeout(TunnelError):
    """The data channel did not become ready within the connect deadline."""

    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(
            ErrorCode.HANDSHAKE_TIMEOUT,
            f"Data channel handshake did not complete within {timeout:g} seconds",
            {"timeout": timeout}
        )


class ProtocolError(TunnelError):
    """A frame could not be encoded or parsed."""

    def __init__(self, message: str, details: Any = None):
        super().__init__(ErrorCode.PROTOCOL_ERROR, message, details)


class TransportClosed(TunnelError):
    """The data channel transport is gone."""

    def __init__(self, message: str, graceful: bool = False, details: Any = None):
        self.graceful = graceful
        super().__init__(ErrorCode.TRANSPORT_CLOSED, message, details)


class LocalBindError(TunnelError):
    """The local listener could not bind its port."""

    IN_USE = "in_use"
    PERMISSION_DENIED = "permission_denied"
    OTHER = "other"

    def __init__(self, message: str, port: int, reason: str = OTHER, details: Any = None):
        self.port = port
        self.reason = reason
        super().__init__(ErrorCode.LOCAL_BIND_ERROR, message, details)


class SessionActiveError(TunnelError):
    """start() was called while a session is still running."""

    def __init__(self) -> None:
        super().__init__(ErrorCode.SESSION_ACTIVE, "A session is already active")
