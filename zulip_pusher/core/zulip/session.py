"""
Device-local notification session.

One session per connected device: register once, then long-poll in a loop
with the user's keepalive as the server blocking timeout. Expired queues are
re-registered immediately; any other error backs off for a short fixed
interval. Presentation is delegated to a :class:`Notifier`.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Protocol

from zulip_pusher.core.filters import FilterSettings, message_from_zulip, should_notify
from zulip_pusher.core.notification.formatter import NotificationData, format_notification
from zulip_pusher.core.zulip.client import DEFAULT_ABORT_MARGIN, DEFAULT_KEEPALIVE, ZulipClient
from zulip_pusher.core.zulip.events import EventType, ZulipCredentials
from zulip_pusher.core.zulip.exceptions import AuthenticationError, QueueExpiredError, ZulipError

logger = logging.getLogger(__name__)

ERROR_BACKOFF_SECS = 2.0


class ConnectionState(StrEnum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


class Notifier(Protocol):
    """Platform notification surface."""

    async def show(self, notification: NotificationData) -> None: ...


@dataclass
class SessionContext:
    """Everything the filter needs for one session; owned by the session."""

    settings: FilterSettings = field(default_factory=FilterSettings)
    user_id: int | None = None
    keepalive_secs: int = DEFAULT_KEEPALIVE


class NotificationSession:
    """
    Long-poll loop for one account on one device.

    Attributes:
        state: Connection state exposed to the UI
        last_error: Human-readable description of the last failure
        context: Filter settings and user id for this session
    """

    def __init__(
        self,
        notifier: Notifier,
        context: SessionContext | None = None,
        *,
        backoff_secs: float = ERROR_BACKOFF_SECS,
        abort_margin: float = DEFAULT_ABORT_MARGIN,
        client_factory: Any = ZulipClient,
    ):
        self.notifier = notifier
        self.context = context or SessionContext()
        self.state = ConnectionState.DISCONNECTED
        self.last_error: str | None = None
        self.last_event_time: float | None = None

        self._backoff_secs = backoff_secs
        self._abort_margin = abort_margin
        self._client_factory = client_factory
        self._client: ZulipClient | None = None
        self._loop_task: asyncio.Task[None] | None = None
        self._stop = asyncio.Event()

    @property
    def client(self) -> ZulipClient | None:
        return self._client

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def connect(self, credentials: ZulipCredentials) -> bool:
        """
        Authenticate, register a queue, catch up on unread messages and start polling.

        Returns:
            True when connected; on failure the state is ``error`` and
            ``last_error`` describes why.
        """
        await self.disconnect()

        logger.info("Connecting to %s", credentials.base_url)
        self.state = ConnectionState.CONNECTING
        self.last_error = None
        client = self._client_factory(credentials, abort_margin=self._abort_margin)

        try:
            user = await client.test_connection()
            logger.info("Authenticated as %s (id: %s)", user.full_name, user.user_id)
            self.context.user_id = user.user_id
            await client.register_queue()
        except ZulipError as e:
            logger.error("Connection failed: %s", e)
            self.state = ConnectionState.ERROR
            self.last_error = str(e)
            await client.close()
            return False

        self._client = client
        self.state = ConnectionState.CONNECTED
        self.last_event_time = asyncio.get_running_loop().time()

        await self._catch_up_unread()

        self._stop.clear()
        self._loop_task = asyncio.create_task(self._poll_loop())
        return True

    async def disconnect(self) -> None:
        self._stop.set()
        client, self._client = self._client, None

        if client is not None:
            await client.disconnect()

        if self._loop_task is not None:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None

        if client is not None:
            await client.close()
            logger.info("Disconnected")

        self.state = ConnectionState.DISCONNECTED
        self.last_error = None

    async def wait_closed(self) -> None:
        """Block until the poll loop ends (disconnect or unrecoverable error)."""
        if self._loop_task is not None:
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass

    def update_settings(self, patch: dict[str, Any], keepalive_secs: int | None = None) -> FilterSettings:
        """Apply a filter patch; a keepalive change restarts the in-flight poll."""
        self.context.settings = self.context.settings.merge(patch)
        if keepalive_secs is not None and keepalive_secs != self.context.keepalive_secs:
            self.context.keepalive_secs = keepalive_secs
            if self._client is not None and self._client.is_connected:
                logger.info("Keepalive changed to %ss, restarting poll", keepalive_secs)
                self._client.abort_current_poll()
        return self.context.settings

    # -------------------------------------------------------------------------
    # Polling
    # -------------------------------------------------------------------------

    async def _poll_loop(self) -> None:
        logger.info("Starting poll loop")
        while not self._stop.is_set() and self._client is not None:
            client = self._client
            try:
                events = await client.get_events(timeout=self.context.keepalive_secs)
                self.last_event_time = asyncio.get_running_loop().time()
                await self.process_events(events)
            except QueueExpiredError:
                logger.warning("Queue expired, re-registering")
                try:
                    await client.register_queue()
                except ZulipError as e:
                    logger.error("Re-registration failed: %s", e)
                    self.state = ConnectionState.ERROR
                    self.last_error = "Failed to re-register event queue"
                    break
            except AuthenticationError as e:
                logger.error("Credentials rejected: %s", e)
                self.state = ConnectionState.ERROR
                self.last_error = str(e)
                break
            except ZulipError as e:
                logger.warning("Poll error: %s", e)
                self.last_error = str(e)
                await self._backoff()
        logger.info("Poll loop ended")

    async def _backoff(self) -> None:
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=self._backoff_secs)
        except asyncio.TimeoutError:
            pass

    async def process_events(self, events: list[dict[str, Any]]) -> int:
        """Filter and present message events; returns the number shown."""
        shown = 0
        for event in events:
            if event.get("type") != EventType.MESSAGE:
                logger.debug("Ignoring event type %s (id=%s)", event.get("type"), event.get("id"))
                continue
            message = event.get("message")
            if not message:
                continue
            if await self._handle_message(message, event.get("flags")):
                shown += 1
        return shown

    async def _handle_message(self, message: dict[str, Any], flags: list[str] | None) -> bool:
        try:
            filterable = message_from_zulip(message, flags)
        except (TypeError, ValueError) as e:
            logger.warning("Skipping unparseable message %s: %s", message.get("id"), e)
            return False

        result = should_notify(self.context.settings, filterable, self.context.user_id)
        if not result.notify:
            logger.debug("Message %s filtered: %s", message.get("id"), result.reason)
            return False

        await self.notifier.show(format_notification(message))
        return True

    async def _catch_up_unread(self) -> None:
        if self._client is None:
            return
        try:
            messages = await self._client.get_unread_messages()
        except ZulipError as e:
            logger.warning("Unread catch-up failed: %s", e)
            return

        logger.info("Catching up on %d unread message(s)", len(messages))
        for message in messages:
            await self._handle_message(message, None)
