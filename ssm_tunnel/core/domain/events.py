"""
Notification event models.

The session controller publishes two ordered feeds: human-readable output
lines and status transitions. These are the items carried on them.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class OutputLevel(Enum):
    """Severity of an output line."""
    INFO = "info"
    SUCCESS = "success"
    ERROR = "error"

    @property
    def prefix(self) -> str:
        if self is OutputLevel.ERROR:
            return "✗"
        if self is OutputLevel.SUCCESS:
            return "✓"
        return "→"


class SessionStatusEvent(Enum):
    """Status values published on the status feed."""
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTING = "disconnecting"
    DISCONNECTED = "disconnected"
    ERROR = "error"


@dataclass(frozen=True)
class OutputLine:
    """One line of operator-visible progress text."""

    message: str
    """Line text without prefix or timestamp."""

    level: OutputLevel = OutputLevel.INFO
    """Severity."""

    timestamp: float = field(default_factory=time.time)
    """Unix timestamp when the line was produced."""

    def __post_init__(self) -> None:
        if not isinstance(self.level, OutputLevel):
            raise ValueError("Level must be an OutputLevel enum value")

    def format(self) -> str:
        """Render as ``[HH:MM:SS] <prefix> message``."""
        clock = datetime.fromtimestamp(self.timestamp).strftime("%H:%M:%S")
        return f"[{clock}] {self.level.prefix} {self.message}"

    def __str__(self) -> str:
        return self.format()


@dataclass(frozen=True)
class StatusChange:
    """A session status transition."""

    status: SessionStatusEvent
    session_id: Optional[str] = None
    timestamp: float = field(default_factory=time.time)
