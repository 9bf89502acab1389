"""
Cloud subscription poller.

One invocation (fired by the scheduler every ``TriggerIntervalSecs``) runs
``Rounds`` rounds spaced ``RoundIntervalSecs`` apart. Each round enumerates
every stored subscription and polls them in batches of ``BatchSize``: members
of a batch run concurrently, batches run one after another. Per subscription:

    decrypt credentials -> register queue if needed -> non-blocking poll
      -> filter each message -> push -> advance last_event_id -> save

Failures (registration, poll, push, undecryptable credentials, unexpected
errors) count towards ``MaxFailures``; reaching it deletes the subscription.
A successful poll resets the counter once its events are handled. A push
endpoint that answers 404/410 deletes the subscription immediately. Queue
expiry only clears the queue id so the next round registers a fresh queue.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import Counter
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

import httpx
from celery.exceptions import SoftTimeLimitExceeded

from zulip_pusher.configs import configs
from zulip_pusher.core.filters import message_from_zulip, should_notify
from zulip_pusher.core.notification.exceptions import WebPushError
from zulip_pusher.core.notification.formatter import build_push_payload
from zulip_pusher.core.notification.webpush import PushCodec
from zulip_pusher.core.vault import CredentialVault, VaultError
from zulip_pusher.core.zulip.client import ZulipClient
from zulip_pusher.core.zulip.events import EventType, ZulipCredentials
from zulip_pusher.core.zulip.exceptions import QueueExpiredError, ZulipError
from zulip_pusher.models.subscription import Subscription, short_endpoint
from zulip_pusher.repos.subscription import SubscriptionRepository

logger = logging.getLogger(__name__)


class PollOutcome(StrEnum):
    OK = "ok"
    MISSING = "missing"
    EXPIRED = "expired"
    FAILED = "failed"
    GONE = "gone"
    EVICTED = "evicted"
    ERROR = "error"


@dataclass
class PollerContext:
    """Collaborators and tuning for one poller invocation.

    Built per invocation; the poller keeps no module-level state.
    """

    repository: SubscriptionRepository
    vault: CredentialVault
    codec: PushCodec
    http_client: httpx.AsyncClient
    rounds: int = 4
    round_interval: float = 15.0
    batch_size: int = 40
    max_failures: int = 5
    request_timeout: float = 15.0
    clock: Callable[[], datetime] = datetime.now
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep

    @classmethod
    def from_configs(
        cls,
        repository: SubscriptionRepository,
        vault: CredentialVault,
        codec: PushCodec,
        http_client: httpx.AsyncClient,
    ) -> PollerContext:
        poller = configs.Poller
        return cls(
            repository=repository,
            vault=vault,
            codec=codec,
            http_client=http_client,
            rounds=poller.Rounds,
            round_interval=poller.RoundIntervalSecs,
            batch_size=poller.BatchSize,
            max_failures=poller.MaxFailures,
            request_timeout=poller.RequestTimeoutSecs,
        )


@dataclass
class RoundStats:
    outcomes: Counter[PollOutcome] = field(default_factory=Counter)
    pushed: int = 0

    def merge(self, other: RoundStats) -> None:
        self.outcomes.update(other.outcomes)
        self.pushed += other.pushed


class SubscriptionPoller:
    def __init__(self, ctx: PollerContext):
        self.ctx = ctx
        self._pushed = 0

    async def run(self) -> RoundStats:
        """Run every round of one invocation."""
        total = RoundStats()
        for round_no in range(self.ctx.rounds):
            stats = await self.poll_round()
            total.merge(stats)
            logger.info(
                "Round %d/%d: %s, %d push(es)",
                round_no + 1,
                self.ctx.rounds,
                dict(stats.outcomes),
                stats.pushed,
            )
            if round_no < self.ctx.rounds - 1:
                await self.ctx.sleep(self.ctx.round_interval)
        return total

    async def poll_round(self) -> RoundStats:
        """Poll every stored subscription once, one batch at a time."""
        stats = RoundStats()
        endpoints = await self.ctx.repository.list_endpoints()
        pushed_before = self._pushed

        for i in range(0, len(endpoints), self.ctx.batch_size):
            batch = endpoints[i : i + self.ctx.batch_size]
            outcomes = await asyncio.gather(*(self._poll_isolated(endpoint) for endpoint in batch))
            stats.outcomes.update(outcomes)

        stats.pushed = self._pushed - pushed_before
        return stats

    async def _poll_isolated(self, endpoint: str) -> PollOutcome:
        try:
            return await self.poll_subscription(endpoint)
        except SoftTimeLimitExceeded:
            raise
        except Exception:
            logger.exception("Poll error for %s", short_endpoint(endpoint))

        try:
            sub = await self.ctx.repository.get(endpoint)
            if sub is not None and await self._record_failure(sub) is PollOutcome.EVICTED:
                return PollOutcome.EVICTED
        except Exception:
            logger.exception("Cannot record failure for %s", short_endpoint(endpoint))
        return PollOutcome.ERROR

    async def poll_subscription(self, endpoint: str) -> PollOutcome:
        """Run one poll cycle for one subscription."""
        start = time.monotonic()
        sub = await self.ctx.repository.get(endpoint)
        if sub is None:
            return PollOutcome.MISSING

        try:
            creds = self.ctx.vault.decrypt(endpoint, sub.encrypted_credentials)
        except VaultError as e:
            logger.warning("Cannot decrypt credentials for %s: %s", short_endpoint(endpoint), e)
            return await self._record_failure(sub)

        client = ZulipClient(
            ZulipCredentials(sub.zulip_server_url, creds.email, creds.api_key),
            handle=sub.handle,
            http_client=self.ctx.http_client,
            timeout=self.ctx.request_timeout,
        )

        if not client.is_connected:
            try:
                sub.apply_handle(await client.register_queue())
            except ZulipError as e:
                logger.warning("Queue registration failed for %s: %s", short_endpoint(endpoint), e)
                return await self._record_failure(sub)
            await self.ctx.repository.save(sub)

        try:
            events = await client.get_events(dont_block=True)
        except QueueExpiredError:
            logger.info("Queue expired for %s, re-registering next round", short_endpoint(endpoint))
            sub.queue_id = None
            await self.ctx.repository.save(sub)
            return PollOutcome.EXPIRED
        except ZulipError as e:
            logger.warning("Poll failed for %s: %s", short_endpoint(endpoint), e)
            return await self._record_failure(sub)

        for event in events:
            if event.get("type") != EventType.MESSAGE or not event.get("message"):
                continue
            delivered = await self._dispatch(sub, event)
            if delivered is None:
                return PollOutcome.GONE
            if not delivered:
                sub.failures += 1
                if sub.failures >= self.ctx.max_failures:
                    return await self._evict(sub)

        sub.apply_handle(client.handle)
        sub.failures = 0
        await self.ctx.repository.save(sub)
        logger.debug("Polled %s in %.0fms", short_endpoint(endpoint), (time.monotonic() - start) * 1000)
        return PollOutcome.OK

    async def _dispatch(self, sub: Subscription, event: dict[str, Any]) -> bool | None:
        """Filter one message event and push it.

        Returns True when delivered or filtered out, False on a delivery
        failure, and None when the endpoint is gone (subscription deleted).
        """
        message = event["message"]
        try:
            filterable = message_from_zulip(message, event.get("flags"))
        except (TypeError, ValueError) as e:
            logger.warning("Skipping unparseable message %s: %s", message.get("id"), e)
            return True

        result = should_notify(sub.filters, filterable, sub.user_id, now=self.ctx.clock())
        if not result.notify:
            logger.debug("Message %s filtered: %s", message.get("id"), result.reason)
            return True

        try:
            outcome = await self.ctx.codec.send(
                self.ctx.http_client,
                sub.endpoint,
                sub.keys.p256dh,
                sub.keys.auth,
                build_push_payload(message),
            )
        except WebPushError as e:
            logger.error("Cannot encode push for %s: %s", short_endpoint(sub.endpoint), e)
            return False

        if outcome.gone:
            logger.info("Push endpoint gone, removing %s", short_endpoint(sub.endpoint))
            await self.ctx.repository.delete(sub.endpoint)
            return None
        if outcome.ok:
            self._pushed += 1
        return outcome.ok

    async def _record_failure(self, sub: Subscription) -> PollOutcome:
        sub.failures += 1
        if sub.failures >= self.ctx.max_failures:
            return await self._evict(sub)
        await self.ctx.repository.save(sub)
        return PollOutcome.FAILED

    async def _evict(self, sub: Subscription) -> PollOutcome:
        logger.warning("Removing %s after %d failures", short_endpoint(sub.endpoint), sub.failures)
        await self.ctx.repository.delete(sub.endpoint)
        return PollOutcome.EVICTED
