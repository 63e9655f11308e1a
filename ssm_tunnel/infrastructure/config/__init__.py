"""
Configuration management infrastructure.

This module provides configuration models and loading from files and
environment variables.
"""

from .loader import ConfigLoader
from .models import (
    ApplicationConfig,
    BridgeConfig,
    ControlPlaneConfig,
    DataChannelConfig,
    LoggingConfig,
    SessionDefaults,
)

__all__ = [
    "ConfigLoader",
    "ApplicationConfig",
    "BridgeConfig",
    "ControlPlaneConfig",
    "DataChannelConfig",
    "LoggingConfig",
    "SessionDefaults",
]
