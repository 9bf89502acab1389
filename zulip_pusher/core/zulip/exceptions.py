"""Zulip client exceptions."""

from __future__ import annotations

BAD_EVENT_QUEUE_ID = "BAD_EVENT_QUEUE_ID"


class ZulipError(Exception):
    """Base exception for chat-server communication."""

    pass


class ZulipConnectionError(ZulipError):
    """Raised when the server cannot be reached or the request times out."""

    pass


class ZulipApiError(ZulipError):
    """Raised for a non-success response from the Zulip API."""

    def __init__(self, message: str, status_code: int | None = None, code: str | None = None):
        self.status_code = status_code
        self.code = code
        super().__init__(message)


class AuthenticationError(ZulipApiError):
    """Raised when the server rejects the credentials."""

    pass


class QueueExpiredError(ZulipApiError):
    """Raised when the event queue is unknown to the server (expired or garbage-collected)."""

    pass


class QueueNotRegisteredError(ZulipError):
    """Raised when polling before an event queue has been registered."""

    def __init__(self) -> None:
        super().__init__("No event queue registered, call register_queue() first")
