"""
Control plane interface.

The control plane issues session credentials and a stream endpoint for a
target, and tears the session record down afterwards. It is treated as a
slow, fallible external service.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List

PORT_FORWARDING_DOCUMENT = "AWS-StartPortForwardingSessionToRemoteHost"


@dataclass(frozen=True)
class SessionGrant:
    """What StartSession hands back."""
    session_id: str
    stream_url: str
    token_value: str


class IControlPlane(ABC):
    """Interface for the remote session control plane."""

    @abstractmethod
    async def start_session(
        self,
        target: str,
        document_name: str,
        parameters: Dict[str, List[str]]
    ) -> SessionGrant:
        """
        Request a new session.

        Raises:
            NegotiationError: If the request is rejected or fails
        """
        pass

    @abstractmethod
    async def terminate_session(self, session_id: str) -> None:
        """
        Terminate a session record.

        Raises:
            NegotiationError: If the request is rejected or fails
        """
        pass
