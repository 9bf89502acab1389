"""Cloud push subscription record."""

import logging
import time

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from zulip_pusher.core.filters import FilterSettings
from zulip_pusher.core.zulip.events import EventQueueHandle

logger = logging.getLogger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


class PushKeys(BaseModel):
    p256dh: str = Field(min_length=1, description="Subscriber P-256 ECDH public key (base64url)")
    auth: str = Field(min_length=1, description="Subscriber auth secret (base64url)")


class Subscription(BaseModel):
    """Browser push subscription paired with encrypted chat credentials, keyed by endpoint."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    endpoint: str = Field(description="Browser Push Service URL")
    keys: PushKeys
    zulip_server_url: str = Field(alias="zulipServerUrl")
    encrypted_credentials: str = Field(alias="encryptedCredentials")
    user_id: int | None = Field(default=None, alias="userId", description="Zulip user id, for muting own messages")
    filters: FilterSettings = Field(default_factory=FilterSettings)
    queue_id: str | None = Field(default=None, alias="queueId")
    last_event_id: int = Field(default=-1, alias="lastEventId")
    failures: int = Field(default=0, ge=0)
    created_at: int = Field(default_factory=now_ms, alias="createdAt")
    updated_at: int = Field(default_factory=now_ms, alias="updatedAt")

    @field_validator("filters", mode="before")
    @classmethod
    def _lenient_filters(cls, value: object) -> FilterSettings:
        if isinstance(value, FilterSettings):
            return value
        return FilterSettings.from_stored(value)

    @property
    def handle(self) -> EventQueueHandle:
        return EventQueueHandle(queue_id=self.queue_id, last_event_id=self.last_event_id)

    def apply_handle(self, handle: EventQueueHandle) -> None:
        self.queue_id = handle.queue_id
        self.last_event_id = handle.last_event_id

    def touch(self) -> None:
        self.updated_at = now_ms()

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)

    @classmethod
    def from_json(cls, raw: str | bytes | None) -> "Subscription | None":
        """Parse a stored record; malformed records read as absent."""
        if raw is None:
            return None
        try:
            return cls.model_validate_json(raw)
        except ValidationError as e:
            logger.warning("Ignoring malformed subscription record (%d errors)", e.error_count())
            return None


def short_endpoint(endpoint: str) -> str:
    """Endpoint shortened for logging: push service host plus the tail of the token."""
    if len(endpoint) <= 60:
        return endpoint
    return f"{endpoint[:40]}...{endpoint[-8:]}"
