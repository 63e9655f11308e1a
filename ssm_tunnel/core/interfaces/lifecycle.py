"""
Lifecycle interfaces for engine components.

Every long-lived engine component can be stopped and can report its health
in a common shape.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict


class IStoppable(ABC):
    """Interface for components that hold releasable resources."""

    @abstractmethod
    async def stop(self) -> None:
        """
        Release the component's resources.

        Must be idempotent: calling it on an already stopped component
        is a no-op.
        """
        pass


class IHealthCheckable(ABC):
    """Interface for components that can report their health status."""

    @abstractmethod
    async def check_health(self) -> Dict[str, Any]:
        """
        Check the health status of the component.

        Returns:
            Dict containing at least:
            - 'healthy': bool indicating if component is healthy
            - 'status': str describing current status
            - 'details': Dict with additional health details

        Example:
            {
                'healthy': True,
                'status': 'ready',
                'details': {
                    'frames_sent': 12,
                    'connections': 1
                }
            }
        """
        pass
