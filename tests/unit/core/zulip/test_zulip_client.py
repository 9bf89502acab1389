"""Tests for the Zulip event queue client."""

import asyncio
import base64
import json
from urllib.parse import parse_qs

import httpx
import pytest

from zulip_pusher.core.zulip import (
    AuthenticationError,
    CancellationToken,
    EventQueueHandle,
    QueueExpiredError,
    QueueNotRegisteredError,
    QueueState,
    ZulipApiError,
    ZulipClient,
    ZulipConnectionError,
    ZulipCredentials,
)

CREDS = ZulipCredentials("https://chat.example.com/", "me@example.com", "secret-key")


def make_client(servers, **kwargs) -> ZulipClient:
    return ZulipClient(CREDS, http_client=servers.http_client(), **kwargs)


class TestCredentials:
    def test_repr_masks_api_key(self) -> None:
        assert "secret-key" not in repr(CREDS)
        assert CREDS.base_url == "https://chat.example.com"
        assert CREDS.account_id == "https://chat.example.com::me@example.com"

    def test_empty_server_rejected(self) -> None:
        with pytest.raises(ValueError):
            ZulipClient(ZulipCredentials("", "a", "b"))


class TestAccount:
    @pytest.mark.asyncio
    async def test_test_connection(self, servers) -> None:
        user = await make_client(servers).test_connection()
        assert user.user_id == 7
        assert user.full_name == "Me"

        request = servers.chat_requests("/users/me")[0]
        assert request.url == "https://chat.example.com/api/v1/users/me"
        assert request.headers["Authorization"] == "Basic " + base64.b64encode(b"me@example.com:secret-key").decode()

    @pytest.mark.asyncio
    async def test_bad_credentials(self, servers) -> None:
        servers.user_status = 401
        servers.user = {"result": "error", "code": "UNAUTHORIZED", "msg": "Invalid API key"}
        with pytest.raises(AuthenticationError) as exc_info:
            await make_client(servers).test_connection()
        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_transport_error(self) -> None:
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = ZulipClient(CREDS, http_client=httpx.AsyncClient(transport=httpx.MockTransport(refuse)))
        with pytest.raises(ZulipConnectionError):
            await client.test_connection()


class TestRegister:
    @pytest.mark.asyncio
    async def test_register_requests_messages_only(self, servers) -> None:
        servers.register_last_event_id = 12
        client = make_client(servers)
        handle = await client.register_queue()

        assert handle == EventQueueHandle(queue_id="queue-1", last_event_id=12)
        assert client.state is QueueState.REGISTERED
        assert client.is_connected

        form = parse_qs(servers.chat_requests("/register")[0].content.decode())
        assert json.loads(form["event_types"][0]) == ["message"]
        assert json.loads(form["narrow"][0]) == []
        assert form["apply_markdown"] == ["false"]
        assert form["client_gravatar"] == ["false"]

    @pytest.mark.asyncio
    async def test_malformed_register_response(self, servers) -> None:
        servers.register_responses.append(httpx.Response(200, json={"result": "success"}))
        with pytest.raises(ZulipApiError):
            await make_client(servers).register_queue()


class TestGetEvents:
    @pytest.mark.asyncio
    async def test_requires_registration(self, servers) -> None:
        with pytest.raises(QueueNotRegisteredError):
            await make_client(servers).get_events()

    @pytest.mark.asyncio
    async def test_last_event_id_is_max_not_last(self, servers, make_event) -> None:
        """Events [5, 7, 6] leave last_event_id at 7."""
        client = make_client(servers)
        await client.register_queue()
        servers.event_responses.append([make_event(5), make_event(7), make_event(6)])

        events = await client.get_events(timeout=30)
        assert [e["id"] for e in events] == [5, 7, 6]
        assert client.handle.last_event_id == 7

    @pytest.mark.asyncio
    async def test_heartbeats_dropped_but_advance(self, servers, make_event) -> None:
        client = make_client(servers)
        await client.register_queue()
        servers.event_responses.append([make_event(1), {"id": 2, "type": "heartbeat"}])

        events = await client.get_events()
        assert [e["id"] for e in events] == [1]
        assert client.handle.last_event_id == 2

    @pytest.mark.asyncio
    async def test_long_poll_params(self, servers) -> None:
        client = make_client(servers)
        await client.register_queue()
        await client.get_events(timeout=90)

        params = servers.chat_requests("/events", "GET")[0].url.params
        assert params["queue_id"] == "queue-1"
        assert params["last_event_id"] == "-1"
        assert params["blocking_timeout"] == "90"
        assert "dont_block" not in params

    @pytest.mark.asyncio
    async def test_dont_block_params(self, servers) -> None:
        client = make_client(servers)
        await client.register_queue()
        await client.get_events(dont_block=True)

        params = servers.chat_requests("/events", "GET")[0].url.params
        assert params["dont_block"] == "true"
        assert "blocking_timeout" not in params

    @pytest.mark.asyncio
    async def test_expiry_clears_queue_and_keeps_last_event_id(self, servers, make_event, expired_response) -> None:
        """Expiry drops the queue id without advancing; a new registration resumes polling."""
        servers.register_last_event_id = 3
        client = make_client(servers)
        await client.register_queue()
        servers.event_responses.append(expired_response())

        with pytest.raises(QueueExpiredError):
            await client.get_events()
        assert client.handle.queue_id is None
        assert client.handle.last_event_id == 3
        assert client.state is QueueState.EXPIRED

        servers.register_last_event_id = 40
        await client.register_queue()
        servers.event_responses.append([make_event(41)])
        events = await client.get_events()
        assert client.handle == EventQueueHandle(queue_id="queue-2", last_event_id=41)
        assert len(events) == 1

    @pytest.mark.asyncio
    async def test_other_400_is_not_expiry(self, servers) -> None:
        client = make_client(servers)
        await client.register_queue()
        servers.event_responses.append(
            httpx.Response(400, json={"result": "error", "code": "BAD_REQUEST", "msg": "Invalid last_event_id"})
        )

        with pytest.raises(ZulipApiError) as exc_info:
            await client.get_events()
        assert not isinstance(exc_info.value, QueueExpiredError)
        assert client.handle.queue_id == "queue-1"

    @pytest.mark.asyncio
    async def test_server_error_surfaces(self, servers) -> None:
        client = make_client(servers)
        await client.register_queue()
        servers.event_responses.append(httpx.Response(502, text="Bad gateway"))

        with pytest.raises(ZulipApiError) as exc_info:
            await client.get_events()
        assert exc_info.value.status_code == 502


class TestCancellation:
    @pytest.mark.asyncio
    async def test_abort_resolves_with_empty_batch(self, servers) -> None:
        servers.idle_poll_delay = 10
        client = make_client(servers)
        await client.register_queue()

        poll = asyncio.create_task(client.get_events(timeout=60))
        await asyncio.sleep(0.05)
        client.abort_current_poll()

        assert await asyncio.wait_for(poll, timeout=1) == []
        assert client.state is QueueState.REGISTERED

    @pytest.mark.asyncio
    async def test_pre_cancelled_token(self, servers) -> None:
        client = make_client(servers)
        await client.register_queue()
        token = CancellationToken()
        token.cancel()

        assert await client.get_events(cancel=token) == []
        assert servers.chat_requests("/events", "GET") == []

    @pytest.mark.asyncio
    async def test_client_timeout_resolves_with_empty_batch(self) -> None:
        """Hitting the client-side abort timeout ends a long-poll quietly."""

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/events"):
                raise httpx.ReadTimeout("timed out", request=request)
            return httpx.Response(200, json={"result": "success", "queue_id": "q", "last_event_id": 0})

        client = ZulipClient(CREDS, http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
        await client.register_queue()

        assert await client.get_events(timeout=1) == []
        with pytest.raises(ZulipConnectionError):
            await client.get_events(dont_block=True)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [httpx.ConnectTimeout, httpx.PoolTimeout])
    async def test_connect_timeout_is_connection_error(self, error: type[httpx.TimeoutException]) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/events"):
                raise error("timed out", request=request)
            return httpx.Response(200, json={"result": "success", "queue_id": "q", "last_event_id": 0})

        client = ZulipClient(CREDS, http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
        await client.register_queue()

        with pytest.raises(ZulipConnectionError):
            await client.get_events(timeout=1)
        assert client.state is QueueState.REGISTERED


class TestDisconnect:
    @pytest.mark.asyncio
    async def test_deletes_queue_and_resets(self, servers) -> None:
        client = make_client(servers)
        await client.register_queue()
        await client.disconnect()

        delete = servers.chat_requests("/events", "DELETE")[0]
        assert delete.url.params["queue_id"] == "queue-1"
        assert client.handle == EventQueueHandle()
        assert client.state is QueueState.UNREGISTERED

    @pytest.mark.asyncio
    async def test_delete_failure_ignored(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "DELETE":
                raise httpx.ConnectError("gone", request=request)
            return httpx.Response(200, json={"result": "success", "queue_id": "q", "last_event_id": 0})

        client = ZulipClient(CREDS, http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
        await client.register_queue()
        await client.disconnect()
        assert not client.is_connected


class TestMessagesAndTopics:
    @pytest.mark.asyncio
    async def test_unread_catch_up_keeps_dms_and_mentions(self, servers) -> None:
        servers.messages = [
            {"id": 1, "type": "private", "flags": []},
            {"id": 2, "type": "stream", "flags": ["mentioned"]},
            {"id": 3, "type": "stream", "flags": []},
            {"id": 4, "type": "stream", "flags": ["wildcard_mentioned"]},
        ]
        messages = await make_client(servers).get_unread_messages()
        assert [m["id"] for m in messages] == [1, 2, 4]

        params = servers.chat_requests("/messages")[0].url.params
        assert params["anchor"] == "newest"
        assert params["num_before"] == "50"
        assert json.loads(params["narrow"]) == [{"operator": "is", "operand": "unread"}]

    @pytest.mark.asyncio
    async def test_subscriptions(self, servers) -> None:
        servers.subscriptions = [{"name": "design", "stream_id": 3, "is_muted": True, "color": "#fff"}]
        assert await make_client(servers).get_subscriptions() == [
            {"name": "design", "stream_id": 3, "is_muted": True}
        ]

    @pytest.mark.asyncio
    async def test_all_topics_skips_failing_streams(self, servers) -> None:
        servers.subscriptions = [{"name": "design", "stream_id": 3}, {"name": "broken", "stream_id": 4}]
        servers.topics = {3: [{"name": f"t{i}", "max_id": i} for i in range(30)]}

        topics = await make_client(servers).get_all_topics()
        assert len(topics) == 20
        assert topics[0] == {"stream_name": "design", "topic": "t0"}
        assert all(t["stream_name"] == "design" for t in topics)
