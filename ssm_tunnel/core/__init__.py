"""
Core module containing domain models, service interfaces and shared services.

This module is independent of the transport, socket and HTTP libraries used
by the infrastructure layer.
"""

from .domain.config import SessionConfig
from .domain.messages import AgentMessage, MessageType, PayloadType
from .interfaces.control_plane import IControlPlane, SessionGrant
from .interfaces.lifecycle import IHealthCheckable, IStoppable
from .services.notifications import NotificationStream

__all__ = [
    "SessionConfig",
    "AgentMessage",
    "MessageType",
    "PayloadType",
    "IControlPlane",
    "SessionGrant",
    "IHealthCheckable",
    "IStoppable",
    "NotificationStream",
]
