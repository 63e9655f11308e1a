"""
Infrastructure layer containing transport, sockets, HTTP and configuration.

This layer handles all external concerns: the data channel websocket, the
local TCP listener, the control plane HTTP API, configuration and logging.
"""

from .config.loader import ConfigLoader
from .logging.setup import setup_logging

__all__ = [
    "ConfigLoader",
    "setup_logging",
]
