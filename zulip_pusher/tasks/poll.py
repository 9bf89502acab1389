"""Celery task driving the cloud subscription poller."""

import asyncio
import logging

import httpx

from zulip_pusher import __version__
from zulip_pusher.configs import configs
from zulip_pusher.core.celery_app import celery_app
from zulip_pusher.core.notification.vapid import ensure_vapid_keys
from zulip_pusher.core.notification.webpush import PushCodec
from zulip_pusher.core.poller import PollerContext, RoundStats, SubscriptionPoller
from zulip_pusher.core.vault import CredentialVault
from zulip_pusher.repos.subscription import SubscriptionRepository, get_subscription_repository

logger = logging.getLogger(__name__)


@celery_app.task(
    name="poll_subscriptions",
    ignore_result=True,
    soft_time_limit=configs.Poller.TriggerIntervalSecs,
)
def poll_subscriptions() -> None:
    """Run one poller invocation (sync wrapper)."""
    loop = asyncio.new_event_loop()
    try:
        loop.run_until_complete(run_poll_invocation())
    finally:
        loop.close()


async def run_poll_invocation() -> None:
    from zulip_pusher.infra.redis import close_redis_client

    try:
        await poll_subscriptions_async()
    finally:
        # The Redis client is bound to this task's event loop
        await close_redis_client()


async def poll_subscriptions_async(repository: SubscriptionRepository | None = None) -> RoundStats | None:
    """
    Run every round of one invocation against the configured store.

    Returns:
        Aggregated round statistics, or None when push is not configured
    """
    vapid = ensure_vapid_keys()
    if vapid is None:
        logger.error("Skipping poll: VAPID keys are not configured")
        return None
    if not configs.EncryptionSecret:
        logger.error("Skipping poll: EncryptionSecret is not configured")
        return None

    repository = repository or await get_subscription_repository()
    codec = PushCodec(vapid, configs.Vapid.Subject, ttl=configs.Poller.PushTTL)
    vault = CredentialVault(configs.EncryptionSecret)

    async with httpx.AsyncClient(
        headers={"User-Agent": f"ZulipWebPusher/{__version__}"},
        timeout=configs.Poller.RequestTimeoutSecs,
    ) as http_client:
        ctx = PollerContext.from_configs(repository, vault, codec, http_client)
        stats = await SubscriptionPoller(ctx).run()

    logger.info("Poll invocation finished: %s, %d push(es)", dict(stats.outcomes), stats.pushed)
    return stats
