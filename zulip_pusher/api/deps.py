"""Shared FastAPI dependencies."""

import logging
from functools import lru_cache

import httpx
from fastapi import HTTPException, Request

from zulip_pusher import __version__
from zulip_pusher.configs import configs
from zulip_pusher.core.notification.vapid import ensure_vapid_keys
from zulip_pusher.core.notification.webpush import PushCodec
from zulip_pusher.core.vault import CredentialVault
from zulip_pusher.repos.subscription import SubscriptionRepository, get_subscription_repository

logger = logging.getLogger(__name__)


async def get_repository() -> SubscriptionRepository:
    return await get_subscription_repository()


@lru_cache(maxsize=1)
def _vault(secret: str) -> CredentialVault:
    return CredentialVault(secret)


def get_vault() -> CredentialVault:
    if not configs.EncryptionSecret:
        logger.error("EncryptionSecret is not configured")
        raise HTTPException(status_code=500, detail="encryption secret not configured")
    return _vault(configs.EncryptionSecret)


@lru_cache(maxsize=1)
def _codec() -> PushCodec | None:
    vapid = ensure_vapid_keys()
    if vapid is None:
        return None
    return PushCodec(vapid, configs.Vapid.Subject, ttl=configs.Poller.PushTTL)


def get_push_codec() -> PushCodec:
    codec = _codec()
    if codec is None:
        raise HTTPException(status_code=500, detail="vapid keys not configured")
    return codec


def get_http_client(request: Request) -> httpx.AsyncClient:
    """Process-wide outbound HTTP client, closed by the app lifespan."""
    client: httpx.AsyncClient | None = getattr(request.app.state, "http_client", None)
    if client is None:
        client = httpx.AsyncClient(
            headers={"User-Agent": f"ZulipWebPusher/{__version__}"},
            timeout=configs.Client.RequestTimeoutSecs,
        )
        request.app.state.http_client = client
    return client
