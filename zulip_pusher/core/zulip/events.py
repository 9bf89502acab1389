"""Event queue state and the value types exchanged with the Zulip API."""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any


@dataclass(frozen=True, slots=True)
class ZulipCredentials:
    server_url: str
    email: str
    api_key: str

    @property
    def base_url(self) -> str:
        return self.server_url.rstrip("/")

    @property
    def account_id(self) -> str:
        """Unique identifier for an account (server + email)."""
        return f"{self.base_url}::{self.email}"

    def __repr__(self) -> str:
        return f"ZulipCredentials(server_url={self.server_url!r}, email={self.email!r}, api_key='***')"


@dataclass(frozen=True, slots=True)
class ZulipUser:
    user_id: int
    email: str
    full_name: str


class QueueState(StrEnum):
    UNREGISTERED = "unregistered"
    REGISTERED = "registered"
    POLLING = "polling"
    EXPIRED = "expired"


class EventType(StrEnum):
    MESSAGE = "message"
    HEARTBEAT = "heartbeat"


@dataclass(slots=True)
class EventQueueHandle:
    """Server-issued queue id paired with the highest event id consumed.

    ``last_event_id`` never moves backwards while a queue is held. On expiry
    the queue id is dropped; the old ``last_event_id`` is meaningless for the
    next queue, which is registered with a fresh one.
    """

    queue_id: str | None = None
    last_event_id: int = -1

    @property
    def is_registered(self) -> bool:
        return self.queue_id is not None

    def advance(self, event_ids: Iterable[int]) -> int:
        """Move ``last_event_id`` to the max of itself and *event_ids*."""
        self.last_event_id = max([self.last_event_id, *event_ids])
        return self.last_event_id

    def expire(self) -> None:
        self.queue_id = None

    def reset(self) -> None:
        self.queue_id = None
        self.last_event_id = -1


class CancellationToken:
    """Resolves an in-flight long-poll early with an empty batch."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


def event_ids(events: Iterable[dict[str, Any]]) -> list[int]:
    return [int(e["id"]) for e in events if "id" in e]
