"""Repository for cloud push subscriptions.

Records live in a key-value store keyed by push endpoint. Updates are plain
read-modify-write with last-writer-wins semantics: a filter change racing a
poll round may be overwritten by the poller's save.
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator

import redis.asyncio as redis

from zulip_pusher.configs import StoreBackend, configs
from zulip_pusher.models.subscription import Subscription, short_endpoint

logger = logging.getLogger(__name__)


class SubscriptionRepository(ABC):
    """CRUD operations for Subscription."""

    @abstractmethod
    async def get(self, endpoint: str) -> Subscription | None:
        """Load a subscription; missing and malformed records both return ``None``."""

    @abstractmethod
    async def save(self, sub: Subscription) -> Subscription: ...

    @abstractmethod
    async def delete(self, endpoint: str) -> bool: ...

    @abstractmethod
    def iter_endpoints(self) -> AsyncIterator[str]: ...

    async def list_endpoints(self) -> list[str]:
        return [endpoint async for endpoint in self.iter_endpoints()]

    async def list_all(self) -> list[Subscription]:
        subs = []
        for endpoint in await self.list_endpoints():
            sub = await self.get(endpoint)
            if sub is not None:
                subs.append(sub)
        return subs


class RedisSubscriptionRepository(SubscriptionRepository):
    def __init__(self, client: redis.Redis, key_prefix: str | None = None):
        self.client = client
        self.key_prefix = key_prefix if key_prefix is not None else configs.Redis.KeyPrefix

    def _key(self, endpoint: str) -> str:
        return f"{self.key_prefix}{endpoint}"

    async def get(self, endpoint: str) -> Subscription | None:
        return Subscription.from_json(await self.client.get(self._key(endpoint)))

    async def save(self, sub: Subscription) -> Subscription:
        sub.touch()
        await self.client.set(self._key(sub.endpoint), sub.to_json())
        return sub

    async def delete(self, endpoint: str) -> bool:
        deleted = await self.client.delete(self._key(endpoint))
        if deleted:
            logger.info(f"Subscription deleted: {short_endpoint(endpoint)}")
        return bool(deleted)

    async def iter_endpoints(self) -> AsyncIterator[str]:
        async for key in self.client.scan_iter(match=f"{self.key_prefix}*"):
            if isinstance(key, bytes):
                key = key.decode("utf-8")
            yield key[len(self.key_prefix) :]


class LocalSubscriptionRepository(SubscriptionRepository):
    """In-process store holding the same serialized records as Redis (dev and tests)."""

    def __init__(self) -> None:
        self.records: dict[str, str] = {}

    async def get(self, endpoint: str) -> Subscription | None:
        return Subscription.from_json(self.records.get(endpoint))

    async def save(self, sub: Subscription) -> Subscription:
        sub.touch()
        self.records[sub.endpoint] = sub.to_json()
        return sub

    async def delete(self, endpoint: str) -> bool:
        existed = self.records.pop(endpoint, None) is not None
        if existed:
            logger.info(f"Subscription deleted: {short_endpoint(endpoint)}")
        return existed

    async def iter_endpoints(self) -> AsyncIterator[str]:
        for endpoint in list(self.records):
            yield endpoint


_local_repository: LocalSubscriptionRepository | None = None


async def get_subscription_repository() -> SubscriptionRepository:
    """Repository for the configured store backend."""
    global _local_repository
    if configs.Store == StoreBackend.LOCAL:
        if _local_repository is None:
            _local_repository = LocalSubscriptionRepository()
            logger.warning("Using in-process subscription store; records are lost on restart")
        return _local_repository

    from zulip_pusher.infra.redis import get_redis_client

    return RedisSubscriptionRepository(await get_redis_client())
