from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Any


class ConversationKind(StrEnum):
    DIRECT = "private"
    STREAM = "stream"


@dataclass(frozen=True, slots=True)
class FilterableMessage:
    """The subset of a chat message the filter engine looks at."""

    sender_id: int
    kind: ConversationKind
    stream: str | None = None
    subject: str | None = None
    mentioned: bool = False
    wildcard_mentioned: bool = False

    @property
    def is_direct(self) -> bool:
        return self.kind is ConversationKind.DIRECT

    @property
    def is_mention(self) -> bool:
        return self.mentioned or self.wildcard_mentioned


def message_from_flags(
    sender_id: int,
    kind: ConversationKind | str,
    flags: list[str] | None,
    stream: str | None = None,
    subject: str | None = None,
) -> FilterableMessage:
    """Build a :class:`FilterableMessage` from Zulip message flags."""
    flags = flags or []
    return FilterableMessage(
        sender_id=sender_id,
        kind=ConversationKind(kind),
        stream=stream,
        subject=subject,
        mentioned="mentioned" in flags,
        wildcard_mentioned="wildcard_mentioned" in flags,
    )


def message_from_zulip(message: dict[str, Any], flags: list[str] | None = None) -> FilterableMessage:
    """Build a :class:`FilterableMessage` from a raw Zulip message dict.

    Message events carry their flags next to the message (``event["flags"]``);
    ``GET /messages`` results carry them inside it. *flags* wins when given.
    """
    kind = ConversationKind(message.get("type", ConversationKind.STREAM))
    recipient = message.get("display_recipient")
    stream = recipient if kind is ConversationKind.STREAM and isinstance(recipient, str) else None
    return message_from_flags(
        sender_id=int(message.get("sender_id", -1)),
        kind=kind,
        flags=flags if flags is not None else message.get("flags"),
        stream=stream,
        subject=message.get("subject") if kind is ConversationKind.STREAM else None,
    )
