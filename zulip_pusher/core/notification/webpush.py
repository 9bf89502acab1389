"""
Web Push message encryption and delivery.

Payloads are encrypted with the ``aesgcm`` content encoding: an ephemeral
P-256 key agreement with the subscriber key, an HKDF chain keyed by the
subscription's auth secret, and a single AES-128-GCM record. Senders are
identified to the push service with a VAPID JWT.
"""

from __future__ import annotations

import logging
import os
import secrets
import struct
from dataclasses import dataclass
from enum import StrEnum

import httpx
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from zulip_pusher.core.notification.exceptions import InvalidKeyError, PayloadTooLargeError, WebPushError
from zulip_pusher.core.notification.vapid import VapidKeyPair, b64url_decode, b64url_encode

logger = logging.getLogger(__name__)

MAX_RECORD_SIZE = 4078
MAX_PADDING = 16
SALT_LENGTH = 16
AUTH_SECRET_LENGTH = 16
DEFAULT_TTL = 86400

AUTH_INFO = b"Content-Encoding: auth\x00"
NONCE_INFO = b"Content-Encoding: nonce\x00"
CEK_INFO = b"Content-Encoding: aesgcm\x00"
CURVE_LABEL = b"P-256\x00"


@dataclass(frozen=True, slots=True)
class PushEnvelope:
    """An encrypted push body plus the values the receiver needs to decrypt it."""

    ciphertext: bytes
    salt: bytes
    local_public_key: bytes

    def headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/octet-stream",
            "Content-Encoding": "aesgcm",
            "Encryption": f"salt={b64url_encode(self.salt)}",
            "Crypto-Key": f"dh={b64url_encode(self.local_public_key)}",
        }


def _hkdf(ikm: bytes, salt: bytes, info: bytes, length: int) -> bytes:
    return HKDF(algorithm=hashes.SHA256(), length=length, salt=salt, info=info).derive(ikm)


def _public_bytes(key: ec.EllipticCurvePublicKey) -> bytes:
    return key.public_bytes(serialization.Encoding.X962, serialization.PublicFormat.UncompressedPoint)


def load_subscriber_key(p256dh: str) -> ec.EllipticCurvePublicKey:
    raw = b64url_decode(p256dh)
    try:
        return ec.EllipticCurvePublicKey.from_encoded_point(ec.SECP256R1(), raw)
    except ValueError as e:
        raise InvalidKeyError(f"Invalid subscriber p256dh key: {e}") from e


def key_context(subscriber_key: bytes, local_key: bytes) -> bytes:
    """``"P-256\\0" || len(ua) || ua || len(as) || as`` with 16-bit big-endian lengths."""
    return (
        CURVE_LABEL
        + struct.pack(">H", len(subscriber_key))
        + subscriber_key
        + struct.pack(">H", len(local_key))
        + local_key
    )


def derive_content_keys(
    shared_secret: bytes, auth_secret: bytes, salt: bytes, context: bytes
) -> tuple[bytes, bytes]:
    """Return ``(content_encryption_key, nonce)`` for one message."""
    prk = _hkdf(shared_secret, auth_secret, AUTH_INFO, 32)
    cek = _hkdf(prk, salt, CEK_INFO + context, 16)
    nonce = _hkdf(prk, salt, NONCE_INFO + context, 12)
    return cek, nonce


def pad_payload(payload: bytes, padding_length: int | None = None) -> bytes:
    """
    Prefix the payload with a 2-byte padding length and that many zero bytes.

    Random padding (0..16) is capped so the padded record stays within
    :data:`MAX_RECORD_SIZE`.

    Raises:
        PayloadTooLargeError: If the payload cannot fit even without padding
    """
    room = MAX_RECORD_SIZE - 2 - len(payload)
    if room < 0:
        raise PayloadTooLargeError(len(payload) + 2, MAX_RECORD_SIZE)

    if padding_length is None:
        padding_length = min(secrets.randbelow(MAX_PADDING + 1), room)
    elif padding_length < 0 or padding_length > room:
        raise PayloadTooLargeError(len(payload) + 2 + padding_length, MAX_RECORD_SIZE)

    return struct.pack(">H", padding_length) + b"\x00" * padding_length + payload


def encrypt(
    payload: bytes,
    p256dh: str,
    auth: str,
    *,
    salt: bytes | None = None,
    local_private_key: ec.EllipticCurvePrivateKey | None = None,
    padding_length: int | None = None,
) -> PushEnvelope:
    """
    Encrypt a payload for one push subscription.

    Args:
        payload: Plaintext bytes (usually UTF-8 JSON)
        p256dh: Subscriber public key, URL-safe base64 (65-byte uncompressed point)
        auth: Subscriber auth secret, URL-safe base64 (16 bytes)
        salt: Fixed 16-byte salt, random when omitted
        local_private_key: Fixed ephemeral key, generated when omitted
        padding_length: Fixed padding, random when omitted

    Raises:
        InvalidKeyError: If the subscriber keys cannot be decoded
        PayloadTooLargeError: If the payload is too large for one record
    """
    padded = pad_payload(payload, padding_length)

    subscriber_key = load_subscriber_key(p256dh)
    auth_secret = b64url_decode(auth)
    if len(auth_secret) != AUTH_SECRET_LENGTH:
        raise InvalidKeyError(f"Auth secret must be {AUTH_SECRET_LENGTH} bytes, got {len(auth_secret)}")

    salt = salt if salt is not None else os.urandom(SALT_LENGTH)
    if len(salt) != SALT_LENGTH:
        raise WebPushError(f"Salt must be {SALT_LENGTH} bytes")

    local_private_key = local_private_key or ec.generate_private_key(ec.SECP256R1())
    local_public = _public_bytes(local_private_key.public_key())
    shared_secret = local_private_key.exchange(ec.ECDH(), subscriber_key)

    context = key_context(_public_bytes(subscriber_key), local_public)
    cek, nonce = derive_content_keys(shared_secret, auth_secret, salt, context)

    ciphertext = AESGCM(cek).encrypt(nonce, padded, None)
    return PushEnvelope(ciphertext=ciphertext, salt=salt, local_public_key=local_public)


class PushStatus(StrEnum):
    DELIVERED = "delivered"
    GONE = "gone"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class PushResult:
    status: PushStatus
    status_code: int | None = None
    detail: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == PushStatus.DELIVERED

    @property
    def gone(self) -> bool:
        return self.status == PushStatus.GONE

    @classmethod
    def from_status_code(cls, status_code: int, detail: str | None = None) -> PushResult:
        if 200 <= status_code < 300:
            return cls(PushStatus.DELIVERED, status_code)
        if status_code in (404, 410):
            return cls(PushStatus.GONE, status_code, detail)
        return cls(PushStatus.FAILED, status_code, detail)


class PushCodec:
    """Builds and sends VAPID-authenticated, aesgcm-encrypted push requests."""

    def __init__(self, vapid: VapidKeyPair, subject: str, ttl: int = DEFAULT_TTL):
        self.vapid = vapid
        self.subject = subject
        self.ttl = ttl

    def build_request(self, endpoint: str, p256dh: str, auth: str, payload: bytes) -> httpx.Request:
        """
        Build the HTTP request delivering *payload* to a push endpoint.

        Raises:
            WebPushError: If the payload cannot be encrypted for this subscription
        """
        envelope = encrypt(payload, p256dh, auth)
        headers = envelope.headers()
        headers["TTL"] = str(self.ttl)
        headers["Authorization"] = self.vapid.authorization_header(endpoint, self.subject)
        return httpx.Request("POST", endpoint, headers=headers, content=envelope.ciphertext)

    async def send(
        self, client: httpx.AsyncClient, endpoint: str, p256dh: str, auth: str, payload: bytes
    ) -> PushResult:
        """
        Encrypt and deliver one push message.

        Transport errors are reported as a failed result; encoding errors raise.
        """
        request = self.build_request(endpoint, p256dh, auth, payload)
        try:
            response = await client.send(request)
        except httpx.HTTPError as e:
            logger.warning("Push to %s... failed: %s", endpoint[:50], e)
            return PushResult(PushStatus.FAILED, None, str(e))

        result = PushResult.from_status_code(response.status_code, response.text[:200] or None)
        if result.gone:
            logger.info("Push endpoint gone (%s): %s...", response.status_code, endpoint[:50])
        elif not result.ok:
            logger.warning("Push rejected (%s): %s", response.status_code, result.detail)
        return result
