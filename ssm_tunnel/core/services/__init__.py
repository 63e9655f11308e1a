"""
Core services shared by engine components.
"""

from .notifications import NotificationStream, Subscription

__all__ = [
    "NotificationStream",
    "Subscription",
]
