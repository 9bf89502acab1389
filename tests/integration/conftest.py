from collections.abc import AsyncGenerator

import httpx
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from zulip_pusher.api.deps import get_http_client, get_push_codec, get_repository, get_vault
from zulip_pusher.core.notification import PushCodec
from zulip_pusher.main import app


@pytest_asyncio.fixture
async def async_client(servers, repository, vault, vapid_keys) -> AsyncGenerator[AsyncClient, None]:
    """API client wired to the in-process store and the fake chat/push servers."""
    outbound: httpx.AsyncClient = servers.http_client()
    codec = PushCodec(vapid_keys, "mailto:ops@example.com")

    async def _repository():
        return repository

    app.dependency_overrides[get_repository] = _repository
    app.dependency_overrides[get_vault] = lambda: vault
    app.dependency_overrides[get_push_codec] = lambda: codec
    app.dependency_overrides[get_http_client] = lambda: outbound

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
    await outbound.aclose()
