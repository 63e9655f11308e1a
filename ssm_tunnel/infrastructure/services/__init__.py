"""
Local network services.
"""

from .bridge import LocalConnection, PortAvailability, PortForwardBridge, check_local_port_availability

__all__ = [
    "LocalConnection",
    "PortAvailability",
    "PortForwardBridge",
    "check_local_port_availability",
]
