"""VAPID key handling and JWT signing for Web Push sender authentication."""

from __future__ import annotations

import base64
import binascii
import logging
import time
from urllib.parse import urlparse

import jwt
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from zulip_pusher.configs import configs
from zulip_pusher.core.notification.exceptions import InvalidKeyError

logger = logging.getLogger(__name__)

JWT_LIFETIME_SECS = 12 * 60 * 60


def b64url_encode(data: bytes) -> str:
    """URL-safe base64 without padding."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def b64url_decode(value: str) -> bytes:
    """Decode URL-safe base64, tolerating missing padding and standard alphabet."""
    value = value.strip().replace("+", "-").replace("/", "_")
    try:
        return base64.urlsafe_b64decode(value + "=" * (-len(value) % 4))
    except (binascii.Error, ValueError) as e:
        raise InvalidKeyError(f"Invalid base64url value: {e}") from e


def audience_for(endpoint: str) -> str:
    """Return ``scheme://host`` of a push endpoint (the JWT ``aud`` claim)."""
    parsed = urlparse(endpoint)
    if not parsed.scheme or not parsed.netloc:
        raise InvalidKeyError(f"Push endpoint is not an absolute URL: {endpoint[:60]}")
    return f"{parsed.scheme}://{parsed.netloc}"


class VapidKeyPair:
    """ES256 (P-256) key pair identifying this server to push services."""

    def __init__(self, private_key: ec.EllipticCurvePrivateKey):
        self._private_key = private_key

    @classmethod
    def generate(cls) -> VapidKeyPair:
        return cls(ec.generate_private_key(ec.SECP256R1()))

    @classmethod
    def from_base64(cls, private_key: str, public_key: str | None = None) -> VapidKeyPair:
        """
        Load a key pair from URL-safe base64 raw keys.

        Args:
            private_key: 32-byte raw private scalar
            public_key: Optional 65-byte uncompressed public point, checked against the private key

        Raises:
            InvalidKeyError: If the keys cannot be decoded or do not match
        """
        raw = b64url_decode(private_key)
        if len(raw) != 32:
            raise InvalidKeyError(f"VAPID private key must be 32 bytes, got {len(raw)}")
        try:
            pair = cls(ec.derive_private_key(int.from_bytes(raw, "big"), ec.SECP256R1()))
        except ValueError as e:
            raise InvalidKeyError(f"Invalid VAPID private key: {e}") from e

        if public_key and b64url_decode(public_key) != pair.public_key_bytes:
            raise InvalidKeyError("VAPID public key does not match the private key")
        return pair

    @property
    def private_key(self) -> ec.EllipticCurvePrivateKey:
        return self._private_key

    @property
    def public_key_bytes(self) -> bytes:
        return self._private_key.public_key().public_bytes(
            serialization.Encoding.X962, serialization.PublicFormat.UncompressedPoint
        )

    @property
    def public_key_b64(self) -> str:
        return b64url_encode(self.public_key_bytes)

    @property
    def private_key_b64(self) -> str:
        return b64url_encode(self._private_key.private_numbers().private_value.to_bytes(32, "big"))

    def sign(self, audience: str, subject: str, now: float | None = None) -> str:
        """Create the VAPID JWT for *audience* (``scheme://host`` of the endpoint)."""
        issued = int(now if now is not None else time.time())
        claims = {"aud": audience, "exp": issued + JWT_LIFETIME_SECS, "sub": subject}
        return jwt.encode(claims, self._private_key, algorithm="ES256", headers={"typ": "JWT"})

    def authorization_header(self, endpoint: str, subject: str, now: float | None = None) -> str:
        token = self.sign(audience_for(endpoint), subject, now=now)
        return f"vapid t={token}, k={self.public_key_b64}"


def ensure_vapid_keys() -> VapidKeyPair | None:
    """Load the configured VAPID key pair.

    Returns ``None`` (Web Push disabled) when the keys are missing or invalid.
    """
    vapid = configs.Vapid

    if not vapid.configured:
        logger.warning("VAPID keys not configured, Web Push disabled")
        return None

    try:
        pair = VapidKeyPair.from_base64(vapid.PrivateKey, vapid.PublicKey)
    except InvalidKeyError as e:
        logger.error("VAPID keys invalid, Web Push disabled: %s", e)
        return None

    logger.info("VAPID keys ready (public=%s...)", pair.public_key_b64[:20])
    return pair
