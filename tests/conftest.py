import asyncio
import base64
import os
import struct
from collections.abc import Callable
from typing import Any

import httpx
import pytest
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from zulip_pusher.core.notification.vapid import VapidKeyPair
from zulip_pusher.core.vault import CredentialVault
from zulip_pusher.repos.subscription import LocalSubscriptionRepository

ZULIP_URL = "https://chat.example.com"
PUSH_ENDPOINT = "https://push.example.com/wpush/v2/abcdefghijklmnopqrstuvwxyz0123456789"


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _unb64url(value: str) -> bytes:
    return base64.urlsafe_b64decode(value + "=" * (-len(value) % 4))


class BrowserKeys:
    """A push subscriber's key material, as a browser would hold it."""

    def __init__(self) -> None:
        self.private_key = ec.generate_private_key(ec.SECP256R1())
        self.public_bytes = self.private_key.public_key().public_bytes(
            serialization.Encoding.X962, serialization.PublicFormat.UncompressedPoint
        )
        self.auth_secret = os.urandom(16)

    @property
    def p256dh(self) -> str:
        return _b64url(self.public_bytes)

    @property
    def auth(self) -> str:
        return _b64url(self.auth_secret)

    def decrypt(self, body: bytes, salt: bytes, sender_public: bytes) -> bytes:
        """Decrypt an ``aesgcm`` push body the way a browser push client does."""
        sender_key = ec.EllipticCurvePublicKey.from_encoded_point(ec.SECP256R1(), sender_public)
        shared = self.private_key.exchange(ec.ECDH(), sender_key)

        def hkdf(ikm: bytes, salt_: bytes, info: bytes, length: int) -> bytes:
            return HKDF(algorithm=hashes.SHA256(), length=length, salt=salt_, info=info).derive(ikm)

        prk = hkdf(shared, self.auth_secret, b"Content-Encoding: auth\x00", 32)
        context = (
            b"P-256\x00"
            + struct.pack(">H", len(self.public_bytes))
            + self.public_bytes
            + struct.pack(">H", len(sender_public))
            + sender_public
        )
        key = hkdf(prk, salt, b"Content-Encoding: aesgcm\x00" + context, 16)
        nonce = hkdf(prk, salt, b"Content-Encoding: nonce\x00" + context, 12)

        padded = AESGCM(key).decrypt(nonce, body, None)
        padding = struct.unpack(">H", padded[:2])[0]
        return padded[2 + padding :]

    def decrypt_request(self, request: httpx.Request) -> bytes:
        salt = _unb64url(request.headers["Encryption"].removeprefix("salt="))
        sender_public = _unb64url(request.headers["Crypto-Key"].removeprefix("dh="))
        return self.decrypt(request.content, salt, sender_public)


@pytest.fixture
def browser_keys() -> BrowserKeys:
    return BrowserKeys()


@pytest.fixture(scope="session")
def vapid_keys() -> VapidKeyPair:
    return VapidKeyPair.generate()


@pytest.fixture
def vault() -> CredentialVault:
    # Low iteration count keeps the suite fast; the KDF itself is unchanged.
    return CredentialVault("test-master-secret", iterations=1_000)


@pytest.fixture
def repository() -> LocalSubscriptionRepository:
    return LocalSubscriptionRepository()


def zulip_error(status: int, code: str, msg: str) -> httpx.Response:
    return httpx.Response(status, json={"result": "error", "code": code, "msg": msg})


def message_event(
    event_id: int,
    *,
    message_id: int | None = None,
    kind: str = "stream",
    sender_id: int = 42,
    stream: str = "engineering",
    subject: str = "general",
    content: str = "<p>hello</p>",
    flags: list[str] | None = None,
) -> dict[str, Any]:
    message: dict[str, Any] = {
        "id": message_id or 1000 + event_id,
        "type": kind,
        "sender_id": sender_id,
        "sender_full_name": "Ada Lovelace",
        "sender_email": "ada@example.com",
        "content": content,
        "timestamp": 1_700_000_000,
    }
    if kind == "stream":
        message["display_recipient"] = stream
        message["subject"] = subject
    else:
        message["display_recipient"] = [{"id": sender_id}, {"id": 7}]
        message["subject"] = ""
    return {"id": event_id, "type": "message", "message": message, "flags": flags or []}


class FakeServers:
    """Zulip server and push service behind one ``httpx.MockTransport``.

    Queue responses are consumed first-in first-out; with nothing queued the
    fake answers like a healthy server.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.user: dict[str, Any] = {"result": "success", "user_id": 7, "email": "me@example.com", "full_name": "Me"}
        self.user_status = 200
        self.register_responses: list[httpx.Response] = []
        self.event_responses: list[httpx.Response | list[dict[str, Any]]] = []
        self.push_responses: list[httpx.Response] = []
        self.messages: list[dict[str, Any]] = []
        self.subscriptions: list[dict[str, Any]] = []
        self.topics: dict[int, list[dict[str, Any]]] = {}
        self.queues_registered = 0
        self.register_last_event_id = -1
        self.idle_poll_delay = 0.0

    # --- inspection ---

    def chat_requests(self, path_suffix: str, method: str | None = None) -> list[httpx.Request]:
        return [
            r
            for r in self.requests
            if r.url.host == "chat.example.com"
            and r.url.path.endswith(path_suffix)
            and (method is None or r.method == method)
        ]

    @property
    def pushes(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.host == "push.example.com"]

    # --- transport ---

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.host not in ("chat.example.com", "push.example.com"):
            raise httpx.ConnectError("name or service not known", request=request)
        if request.url.host == "push.example.com":
            return self.push_responses.pop(0) if self.push_responses else httpx.Response(201)
        if request.url.path.endswith("/events") and request.method == "GET" and not self.event_responses:
            # Nothing queued: behave like a quiet long-poll
            await asyncio.sleep(self.idle_poll_delay)
        return self._chat(request)

    def _chat(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path.removeprefix("/api/v1")

        if path == "/users/me":
            return httpx.Response(self.user_status, json=self.user)
        if path == "/register":
            if self.register_responses:
                return self.register_responses.pop(0)
            self.queues_registered += 1
            return httpx.Response(
                200,
                json={
                    "result": "success",
                    "queue_id": f"queue-{self.queues_registered}",
                    "last_event_id": self.register_last_event_id,
                },
            )
        if path == "/events" and request.method == "DELETE":
            return httpx.Response(200, json={"result": "success"})
        if path == "/events":
            item = self.event_responses.pop(0) if self.event_responses else []
            if isinstance(item, httpx.Response):
                return item
            return httpx.Response(200, json={"result": "success", "events": item})
        if path == "/messages":
            return httpx.Response(200, json={"result": "success", "messages": self.messages})
        if path == "/users/me/subscriptions":
            return httpx.Response(200, json={"result": "success", "subscriptions": self.subscriptions})
        if path.startswith("/users/me/") and path.endswith("/topics"):
            stream_id = int(path.split("/")[3])
            if stream_id not in self.topics:
                return zulip_error(400, "BAD_REQUEST", "Invalid stream ID")
            return httpx.Response(200, json={"result": "success", "topics": self.topics[stream_id]})
        return zulip_error(404, "NOT_FOUND", "Not found")

    def http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


@pytest.fixture
def servers() -> FakeServers:
    return FakeServers()


@pytest.fixture
def expired_response() -> Callable[[], httpx.Response]:
    return lambda: zulip_error(400, "BAD_EVENT_QUEUE_ID", "Bad event queue ID: queue-1")


@pytest.fixture
def make_event() -> Callable[..., dict[str, Any]]:
    return message_event
