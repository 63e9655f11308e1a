"""
Clients for the remote services the engine talks to.
"""

from .control_plane import HttpControlPlane
from .data_channel import DataChannel

__all__ = [
    "HttpControlPlane",
    "DataChannel",
]
