"""Web Push exceptions."""


class WebPushError(Exception):
    """Base exception for building or sending a push message."""

    pass


class InvalidKeyError(WebPushError):
    """Raised when a subscriber or VAPID key cannot be decoded."""

    pass


class PayloadTooLargeError(WebPushError):
    """Raised when the padded payload does not fit in one push record."""

    def __init__(self, size: int, limit: int):
        self.size = size
        self.limit = limit
        super().__init__(f"Padded payload of {size} bytes exceeds the {limit} byte limit")
