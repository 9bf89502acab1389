from pydantic import BaseModel, Field


class VapidConfig(BaseModel):
    """VAPID (Web Push sender identity) configuration.

    Keys are URL-safe base64 without padding: the public key is the 65-byte
    uncompressed P-256 point, the private key the 32-byte raw scalar. Generate
    a pair with ``zulip-pusher generate-vapid-keys`` and set them through
    ``PUSHER_VAPID_PUBLICKEY`` / ``PUSHER_VAPID_PRIVATEKEY``.
    """

    PublicKey: str = Field(default="", description="VAPID public key (URL-safe base64, 65-byte EC point)")
    PrivateKey: str = Field(default="", description="VAPID private key (URL-safe base64, 32-byte scalar)")
    Subject: str = Field(default="mailto:admin@example.com", description="VAPID subject (mailto: or https: URL)")

    @property
    def configured(self) -> bool:
        return bool(self.PublicKey and self.PrivateKey)
