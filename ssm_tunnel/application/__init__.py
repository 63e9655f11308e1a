"""
Application layer: the session controller that wires the engine together.
"""

from .session import SessionController

__all__ = [
    "SessionController",
]
