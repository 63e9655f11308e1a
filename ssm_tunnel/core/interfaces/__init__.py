"""
Interfaces between the engine core and its collaborators.
"""

from .control_plane import PORT_FORWARDING_DOCUMENT, IControlPlane, SessionGrant
from .lifecycle import IHealthCheckable, IStoppable

__all__ = [
    "PORT_FORWARDING_DOCUMENT",
    "IControlPlane",
    "SessionGrant",
    "IHealthCheckable",
    "IStoppable",
]
