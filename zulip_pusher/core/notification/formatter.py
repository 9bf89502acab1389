"""Turn raw Zulip messages into notification title/body text."""

from __future__ import annotations

import json
import re
import time
from dataclasses import asdict, dataclass
from typing import Any

LOCAL_BODY_LIMIT = 300
PUSH_BODY_LIMIT = 200

_HTML_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"<[^>]*>"), ""),
    (re.compile(r"&nbsp;"), " "),
    (re.compile(r"&lt;"), "<"),
    (re.compile(r"&gt;"), ">"),
    (re.compile(r"&amp;"), "&"),
]

_MD_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"\[([^\]]+)\]\([^)]+\)"), r"\1"),  # links
    (re.compile(r"@_\*\*"), "@**"),  # silent mentions
    (re.compile(r"\|\d+\*\*"), "**"),  # user ids in mentions
    (re.compile(r"```quote\s*\n?(.+?)\s*```\s*", re.DOTALL), '"\\1"\n'),  # quote blocks
    (re.compile(r"```\w*\s*\n?(.+?)\n?```", re.DOTALL), r"\1"),  # code blocks
    (re.compile(r"``([^`]+)``"), r'"\1"'),  # inline quotes
    (re.compile(r"^>+\s*", re.MULTILINE), ""),  # blockquote prefixes
    (re.compile(r"\n+"), "\n"),
    (re.compile(r"\*\*([^*]+)\*\*"), r"\1"),  # bold
    (re.compile(r"(?<!\*)\*([^*]+)\*(?!\*)"), r"\1"),  # italic
    (re.compile(r"`([^`]+)`"), r"\1"),  # inline code
]


def strip_html(html: str) -> str:
    if not html:
        return ""
    for pat, repl in _HTML_PATTERNS:
        html = pat.sub(repl, html)
    return re.sub(r"\s+", " ", html).strip()


def format_markdown(text: str) -> str:
    """Reduce Zulip markdown to plain text suitable for a notification."""
    for pat, repl in _MD_PATTERNS:
        text = pat.sub(repl, text)
    return text.strip()


def truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


@dataclass(frozen=True, slots=True)
class NotificationData:
    id: int
    title: str
    body: str
    conversation_key: str
    conversation_title: str | None
    sender_name: str
    timestamp: int


def _stream_name(message: dict[str, Any]) -> str:
    recipient = message.get("display_recipient")
    return recipient if isinstance(recipient, str) else ""


def conversation_key(message: dict[str, Any]) -> str:
    if message.get("type") == "private":
        return f"pm:{message.get('sender_id')}"
    return f"stream:{_stream_name(message)}::{message.get('subject', '')}"


def conversation_title(message: dict[str, Any]) -> str | None:
    if message.get("type") == "private":
        return None
    return f"#{_stream_name(message)} > {message.get('subject', '')}"


def format_notification(message: dict[str, Any], body_limit: int = LOCAL_BODY_LIMIT) -> NotificationData:
    sender = message.get("sender_full_name") or message.get("sender_email") or "Someone"
    body = truncate(format_markdown(strip_html(message.get("content", ""))), body_limit)

    if message.get("type") == "private":
        title = f"DM from {sender}"
    else:
        title = f"{sender} in #{_stream_name(message)} > {message.get('subject', '')}"

    return NotificationData(
        id=int(message.get("id", 0)),
        title=title,
        body=body,
        conversation_key=conversation_key(message),
        conversation_title=conversation_title(message),
        sender_name=sender,
        timestamp=int(message.get("timestamp") or time.time()),
    )


def build_push_payload(message: dict[str, Any]) -> bytes:
    """JSON payload delivered to the service worker for one message."""
    data = format_notification(message, body_limit=PUSH_BODY_LIMIT)
    return json.dumps(
        {"title": data.title, "body": data.body, "tag": f"zulip-{data.id}", "messageId": data.id},
        ensure_ascii=False,
    ).encode("utf-8")


def notification_to_dict(data: NotificationData) -> dict[str, Any]:
    return asdict(data)
