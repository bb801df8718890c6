"""Per-node transport: connection, request correlation and notification routing."""

from .client import NodeClient
from .correlator import Correlator
from .router import Notification, NotificationRouter, PoolSink

__all__ = [
    "Correlator",
    "NodeClient",
    "Notification",
    "NotificationRouter",
    "PoolSink",
]
