from .exceptions import InvalidKeyError, PayloadTooLargeError, WebPushError
from .formatter import NotificationData, build_push_payload, format_notification
from .vapid import VapidKeyPair, ensure_vapid_keys
from .webpush import PushCodec, PushEnvelope, PushResult, PushStatus, encrypt

__all__ = [
    "InvalidKeyError",
    "NotificationData",
    "PayloadTooLargeError",
    "PushCodec",
    "PushEnvelope",
    "PushResult",
    "PushStatus",
    "VapidKeyPair",
    "WebPushError",
    "build_push_payload",
    "encrypt",
    "ensure_vapid_keys",
    "format_notification",
]
