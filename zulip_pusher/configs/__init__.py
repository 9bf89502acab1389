from enum import Enum

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .client import ClientConfig
from .poller import PollerConfig
from .redis import RedisConfig
from .vapid import VapidConfig


class StoreBackend(str, Enum):
    """Subscription store backend options."""

    LOCAL = "local"
    REDIS = "redis"


class PusherConfig(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="PUSHER_",
        env_nested_delimiter="_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    Host: str = Field(default="0.0.0.0", description="HTTP bind host")
    Port: int = Field(default=8787, description="HTTP bind port")
    Debug: bool = Field(default=False, description="Enable auto-reload and debug logging")
    LogLevel: str = Field(default="INFO", description="Root log level")

    EncryptionSecret: str = Field(
        default="",
        description="Master secret from which per-subscription credential keys are derived",
    )
    Store: StoreBackend = Field(default=StoreBackend.REDIS, description="Subscription store backend")

    Redis: RedisConfig = Field(default_factory=lambda: RedisConfig(), description="Redis configuration")
    Vapid: VapidConfig = Field(default_factory=lambda: VapidConfig(), description="VAPID configuration")
    Poller: PollerConfig = Field(default_factory=lambda: PollerConfig(), description="Cloud scheduler tuning")
    Client: ClientConfig = Field(default_factory=lambda: ClientConfig(), description="Local long-poll defaults")


configs = PusherConfig()

__all__ = ["configs", "PusherConfig", "StoreBackend"]
