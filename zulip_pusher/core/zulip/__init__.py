from .client import ZulipClient
from .events import CancellationToken, EventQueueHandle, EventType, QueueState, ZulipCredentials, ZulipUser
from .exceptions import (
    AuthenticationError,
    QueueExpiredError,
    QueueNotRegisteredError,
    ZulipApiError,
    ZulipConnectionError,
    ZulipError,
)
from .session import ConnectionState, NotificationSession, Notifier, SessionContext

__all__ = [
    "AuthenticationError",
    "CancellationToken",
    "ConnectionState",
    "EventQueueHandle",
    "EventType",
    "NotificationSession",
    "Notifier",
    "QueueExpiredError",
    "QueueNotRegisteredError",
    "QueueState",
    "SessionContext",
    "ZulipApiError",
    "ZulipClient",
    "ZulipConnectionError",
    "ZulipCredentials",
    "ZulipError",
    "ZulipUser",
]
