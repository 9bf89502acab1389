"""
Zulip API client built around the event queue.

One client holds one event queue session:

    UNREGISTERED --register_queue()--> REGISTERED --get_events()--> POLLING
         ^                                 ^                          |
         |                                 +------- events / [] ------+
         |                                                            |
         +------ register_queue() <------ EXPIRED <-- BAD_EVENT_QUEUE_ID

Queues are registered for message events only with an empty narrow; all
filtering happens client-side in :mod:`zulip_pusher.core.filters`. The client
never retries on its own: expiry and transport errors are raised to the caller,
which owns the backoff policy.
"""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import suppress
from typing import Any

import httpx

from zulip_pusher import __version__
from zulip_pusher.core.zulip.events import (
    CancellationToken,
    EventQueueHandle,
    EventType,
    QueueState,
    ZulipCredentials,
    ZulipUser,
    event_ids,
)
from zulip_pusher.core.zulip.exceptions import (
    BAD_EVENT_QUEUE_ID,
    AuthenticationError,
    QueueExpiredError,
    QueueNotRegisteredError,
    ZulipApiError,
    ZulipConnectionError,
    ZulipError,
)

logger = logging.getLogger(__name__)


# ============================================================================
# Constants
# ============================================================================

API_BASE_PATH = "/api/v1"
DEFAULT_TIMEOUT = 15.0  # seconds, non-polling requests
DEFAULT_KEEPALIVE = 90  # seconds, server-side blocking timeout
DEFAULT_ABORT_MARGIN = 5.0  # seconds added on top of the blocking timeout
USER_AGENT = f"ZulipWebPusher/{__version__}"

UNREAD_CATCHUP_LIMIT = 50
TOPIC_SCAN_STREAMS = 10
TOPIC_SCAN_PER_STREAM = 20


class ZulipClient:
    """
    Async client for one Zulip account and its event queue.

    Attributes:
        credentials: Server URL, email and API key
        handle: Current queue id / last event id pair
        state: Event queue state
    """

    def __init__(
        self,
        credentials: ZulipCredentials,
        *,
        handle: EventQueueHandle | None = None,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        abort_margin: float = DEFAULT_ABORT_MARGIN,
    ):
        """
        Initialize the client.

        Args:
            credentials: Account credentials
            handle: Previously persisted queue handle to resume from
            http_client: Shared HTTP client; one is created (and owned) when omitted
            timeout: Timeout for non-polling requests in seconds
            abort_margin: Client-side abort margin over the server blocking timeout

        Raises:
            ValueError: If the server URL is empty
        """
        if not credentials.server_url:
            raise ValueError("server_url is required")

        self.credentials = credentials
        self.handle = handle or EventQueueHandle()
        self.state = QueueState.REGISTERED if self.handle.is_registered else QueueState.UNREGISTERED

        self._timeout = timeout
        self._abort_margin = abort_margin
        self._auth = httpx.BasicAuth(credentials.email, credentials.api_key)
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(headers={"User-Agent": USER_AGENT}, timeout=timeout)
        self._current_poll: CancellationToken | None = None

    async def __aenter__(self) -> ZulipClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    @property
    def is_connected(self) -> bool:
        """Whether an event queue is currently held."""
        return self.handle.is_registered

    # -------------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------------

    def _url(self, endpoint: str) -> str:
        return f"{self.credentials.base_url}{API_BASE_PATH}{endpoint}"

    async def _send(
        self,
        method: str,
        endpoint: str,
        *,
        params: dict[str, str] | None = None,
        data: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> httpx.Response:
        return await self._client.request(
            method,
            self._url(endpoint),
            params=params,
            data=data,
            auth=self._auth,
            timeout=timeout if timeout is not None else self._timeout,
        )

    async def _request(
        self,
        method: str,
        endpoint: str,
        *,
        params: dict[str, str] | None = None,
        data: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        logger.debug("%s %s", method, endpoint)
        try:
            response = await self._send(method, endpoint, params=params, data=data)
        except httpx.TimeoutException as e:
            raise ZulipConnectionError(f"{method} {endpoint} timed out: {e}") from e
        except httpx.HTTPError as e:
            raise ZulipConnectionError(f"Failed to reach {self.credentials.base_url}: {e}") from e
        return self._parse(method, endpoint, response)

    @staticmethod
    def _parse(method: str, endpoint: str, response: httpx.Response) -> dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            body = None

        if response.is_success and isinstance(body, dict):
            return body

        code = body.get("code") if isinstance(body, dict) else None
        msg = (body.get("msg") if isinstance(body, dict) else None) or response.text[:200]
        detail = f"Zulip API error {response.status_code} on {method} {endpoint}: {msg}"

        if code == BAD_EVENT_QUEUE_ID or BAD_EVENT_QUEUE_ID in response.text:
            raise QueueExpiredError(detail, status_code=response.status_code, code=BAD_EVENT_QUEUE_ID)
        if response.status_code in (401, 403):
            raise AuthenticationError(detail, status_code=response.status_code, code=code)
        if response.is_success:
            raise ZulipApiError(f"Invalid response body on {method} {endpoint}", status_code=response.status_code)
        raise ZulipApiError(detail, status_code=response.status_code, code=code)

    # -------------------------------------------------------------------------
    # Account
    # -------------------------------------------------------------------------

    async def test_connection(self) -> ZulipUser:
        """
        Verify the credentials by fetching the authenticated user.

        Returns:
            The authenticated user

        Raises:
            AuthenticationError: If the server rejects the credentials
            ZulipConnectionError: If the server cannot be reached
        """
        body = await self._request("GET", "/users/me")
        if body.get("result") != "success":
            raise AuthenticationError("Failed to authenticate with Zulip")
        return ZulipUser(user_id=int(body["user_id"]), email=body.get("email", ""), full_name=body.get("full_name", ""))

    # -------------------------------------------------------------------------
    # Event queue
    # -------------------------------------------------------------------------

    async def register_queue(self) -> EventQueueHandle:
        """
        Register a new event queue for message events.

        Returns:
            The new queue handle (also stored on the client)
        """
        body = await self._request(
            "POST",
            "/register",
            data={
                "event_types": json.dumps([EventType.MESSAGE.value]),
                "narrow": json.dumps([]),
                "apply_markdown": "false",
                "client_gravatar": "false",
            },
        )
        try:
            self.handle = EventQueueHandle(queue_id=str(body["queue_id"]), last_event_id=int(body["last_event_id"]))
        except (KeyError, TypeError, ValueError) as e:
            raise ZulipApiError(f"Malformed register response: {e}") from e

        self.state = QueueState.REGISTERED
        logger.info("Queue registered: %s (last_event_id=%s)", self.handle.queue_id, self.handle.last_event_id)
        return self.handle

    async def get_events(
        self,
        timeout: float = DEFAULT_KEEPALIVE,
        *,
        dont_block: bool = False,
        cancel: CancellationToken | None = None,
    ) -> list[dict[str, Any]]:
        """
        Fetch the next batch of events.

        Long-polls for up to *timeout* seconds, or returns immediately with
        ``dont_block``. Heartbeats are consumed here and never returned.
        Cancellation through *cancel* or :meth:`abort_current_poll`, and the
        client-side abort timeout of a long-poll, resolve to an empty batch.

        Args:
            timeout: Server-side blocking timeout in seconds
            dont_block: Return immediately instead of long-polling
            cancel: Token that resolves the poll early

        Returns:
            Non-heartbeat events, in server order

        Raises:
            QueueNotRegisteredError: If no queue is held
            QueueExpiredError: If the server no longer knows the queue
            ZulipConnectionError: On transport failures
            ZulipApiError: On any other error response
        """
        if not self.handle.is_registered:
            raise QueueNotRegisteredError()

        params = {"queue_id": str(self.handle.queue_id), "last_event_id": str(self.handle.last_event_id)}
        if dont_block:
            params["dont_block"] = "true"
            client_timeout = self._timeout
        else:
            params["blocking_timeout"] = str(int(timeout))
            client_timeout = timeout + self._abort_margin

        token = cancel or CancellationToken()
        self._current_poll = token
        self.state = QueueState.POLLING
        try:
            response = await self._send_cancellable(token, params=params, timeout=client_timeout)
        except httpx.ReadTimeout as e:
            if dont_block:
                raise ZulipConnectionError(f"GET /events timed out: {e}") from e
            logger.debug("Long-poll aborted after %.0fs without a response", client_timeout)
            return []
        except httpx.HTTPError as e:
            raise ZulipConnectionError(f"Failed to reach {self.credentials.base_url}: {e}") from e
        finally:
            if self._current_poll is token:
                self._current_poll = None
            if self.state is QueueState.POLLING:
                self.state = QueueState.REGISTERED

        if response is None:
            logger.debug("Poll cancelled")
            return []

        try:
            body = self._parse("GET", "/events", response)
        except QueueExpiredError:
            logger.warning("Event queue %s expired", self.handle.queue_id)
            self.handle.expire()
            self.state = QueueState.EXPIRED
            raise

        events = body.get("events") or []
        self.handle.advance(event_ids(events))
        return [e for e in events if e.get("type") != EventType.HEARTBEAT]

    async def _send_cancellable(
        self, token: CancellationToken, *, params: dict[str, str], timeout: float
    ) -> httpx.Response | None:
        """Race the poll request against *token*; ``None`` means cancelled."""
        if token.cancelled:
            return None

        request_task = asyncio.ensure_future(self._send("GET", "/events", params=params, timeout=timeout))
        cancel_task = asyncio.ensure_future(token.wait())
        try:
            done, _ = await asyncio.wait({request_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            request_task.cancel()
            raise
        finally:
            cancel_task.cancel()

        if request_task in done:
            return request_task.result()

        request_task.cancel()
        with suppress(asyncio.CancelledError, httpx.HTTPError):
            await request_task
        return None

    def abort_current_poll(self) -> None:
        """Resolve the in-flight long-poll, if any, with an empty batch."""
        if self._current_poll is not None:
            self._current_poll.cancel()

    async def disconnect(self) -> None:
        """Abort polling and delete the queue on the server (best effort)."""
        self.abort_current_poll()

        if self.handle.queue_id:
            try:
                await self._request("DELETE", "/events", params={"queue_id": self.handle.queue_id})
            except ZulipError as e:
                logger.debug("Ignoring queue delete failure: %s", e)

        self.handle.reset()
        self.state = QueueState.UNREGISTERED

    # -------------------------------------------------------------------------
    # Messages, streams and topics
    # -------------------------------------------------------------------------

    async def get_unread_messages(self) -> list[dict[str, Any]]:
        """Fetch recent unread DMs and mentions, for catch-up after connecting."""
        body = await self._request(
            "GET",
            "/messages",
            params={
                "anchor": "newest",
                "num_before": str(UNREAD_CATCHUP_LIMIT),
                "num_after": "0",
                "narrow": json.dumps([{"operator": "is", "operand": "unread"}]),
            },
        )
        return [
            m
            for m in body.get("messages", [])
            if m.get("type") == "private"
            or "mentioned" in (m.get("flags") or [])
            or "wildcard_mentioned" in (m.get("flags") or [])
        ]

    async def get_subscriptions(self) -> list[dict[str, Any]]:
        """Fetch subscribed streams as ``{name, stream_id, is_muted}``."""
        body = await self._request("GET", "/users/me/subscriptions")
        return [
            {"name": s["name"], "stream_id": s["stream_id"], "is_muted": bool(s.get("is_muted", False))}
            for s in body.get("subscriptions", [])
        ]

    async def get_stream_topics(self, stream_id: int) -> list[dict[str, Any]]:
        body = await self._request("GET", f"/users/me/{stream_id}/topics")
        return body.get("topics") or []

    async def get_all_topics(self) -> list[dict[str, str]]:
        """
        Collect topics across subscribed streams, for muted-topic pickers.

        Only the first streams and topics are scanned; failures for a single
        stream are skipped.
        """
        subscriptions = (await self.get_subscriptions())[:TOPIC_SCAN_STREAMS]

        async def _topics_for(sub: dict[str, Any]) -> list[dict[str, str]]:
            try:
                topics = await self.get_stream_topics(sub["stream_id"])
            except ZulipError as e:
                logger.debug("Skipping topics for stream %s: %s", sub["name"], e)
                return []
            return [{"stream_name": sub["name"], "topic": t["name"]} for t in topics[:TOPIC_SCAN_PER_STREAM]]

        results = await asyncio.gather(*(_topics_for(sub) for sub in subscriptions))
        return [topic for per_stream in results for topic in per_stream]
