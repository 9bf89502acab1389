"""
Credential vault for stored Zulip credentials.

Credentials are encrypted with AES-256-GCM under a key derived per
subscription: PBKDF2-HMAC-SHA256 over the master secret, salted with the
subscription id (the push endpoint). A stored blob is
``base64(iv || ciphertext || tag)`` and only decrypts under the subscription
it was created for.
"""

import base64
import binascii
import json
import os
from dataclasses import dataclass
from functools import lru_cache

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

KDF_ITERATIONS = 100_000
KDF_SALT_PREFIX = "zulip-pusher-v1:"
IV_LENGTH = 12
KEY_CACHE_SIZE = 1024


class VaultError(Exception):
    """Raised when a credential blob cannot be decrypted or parsed."""

    pass


@dataclass(frozen=True, slots=True)
class StoredCredentials:
    email: str
    api_key: str

    def __repr__(self) -> str:
        return f"StoredCredentials(email={self.email!r}, api_key='***')"


class CredentialVault:
    """Encrypts and decrypts chat credentials with per-subscription keys."""

    def __init__(
        self,
        master_secret: str,
        iterations: int = KDF_ITERATIONS,
        key_cache_size: int = KEY_CACHE_SIZE,
    ):
        if not master_secret:
            raise ValueError("master_secret is required")
        self._secret = master_secret.encode("utf-8")
        self._iterations = iterations
        self._derive_key = lru_cache(maxsize=key_cache_size)(self._derive_uncached)

    def _derive_uncached(self, subscription_id: str) -> bytes:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=f"{KDF_SALT_PREFIX}{subscription_id}".encode("utf-8"),
            iterations=self._iterations,
        )
        return kdf.derive(self._secret)

    def encrypt(self, subscription_id: str, email: str, api_key: str) -> str:
        """
        Encrypt credentials for storage.

        Args:
            subscription_id: Identifier the key is bound to (push endpoint)
            email: Zulip account email
            api_key: Zulip API key

        Returns:
            Base64 blob containing IV and ciphertext
        """
        aes = AESGCM(self._derive_key(subscription_id))
        iv = os.urandom(IV_LENGTH)
        plaintext = json.dumps({"email": email, "apiKey": api_key}).encode("utf-8")
        return base64.b64encode(iv + aes.encrypt(iv, plaintext, None)).decode("ascii")

    def decrypt(self, subscription_id: str, blob: str) -> StoredCredentials:
        """
        Decrypt a stored credential blob.

        Raises:
            VaultError: If the blob is malformed, forged, or bound to another subscription
        """
        try:
            combined = base64.b64decode(blob, validate=True)
        except (binascii.Error, ValueError) as e:
            raise VaultError("Credential blob is not valid base64") from e

        if len(combined) <= IV_LENGTH:
            raise VaultError("Credential blob is truncated")

        aes = AESGCM(self._derive_key(subscription_id))
        try:
            plaintext = aes.decrypt(combined[:IV_LENGTH], combined[IV_LENGTH:], None)
        except InvalidTag as e:
            raise VaultError("Credential blob failed authentication") from e

        try:
            data = json.loads(plaintext)
            return StoredCredentials(email=data["email"], api_key=data["apiKey"])
        except (ValueError, KeyError, TypeError) as e:
            raise VaultError("Credential blob has unexpected contents") from e
