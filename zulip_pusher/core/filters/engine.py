"""Notification decision engine.

``should_notify`` is pure and total: it performs no I/O, never raises, and
always returns one of the :class:`FilterReason` values. Rules are evaluated in
a fixed order and the first match wins:

1. own message (when muted)        -> ``self_message``
2. inside quiet hours              -> ``quiet_hours``
3. on a quiet day                  -> ``quiet_day``
4. direct message                  -> ``dm`` / ``dm_disabled`` (terminal)
5. mention / other stream traffic  -> ``mention_disabled`` / ``other_disabled``
6. muted stream                    -> ``muted_channel``
7. muted topic                     -> ``muted_topic``
8. otherwise                       -> ``mention`` / ``other``
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum

from zulip_pusher.core.filters.message import FilterableMessage
from zulip_pusher.core.filters.settings import FilterSettings, parse_hhmm


class FilterReason(StrEnum):
    SELF_MESSAGE = "self_message"
    QUIET_HOURS = "quiet_hours"
    QUIET_DAY = "quiet_day"
    DM_DISABLED = "dm_disabled"
    MENTION_DISABLED = "mention_disabled"
    OTHER_DISABLED = "other_disabled"
    MUTED_CHANNEL = "muted_channel"
    MUTED_TOPIC = "muted_topic"
    DM = "dm"
    MENTION = "mention"
    OTHER = "other"


@dataclass(frozen=True, slots=True)
class FilterResult:
    notify: bool
    reason: FilterReason

    def to_dict(self) -> dict[str, object]:
        return {"notify": self.notify, "reason": str(self.reason)}


# ---------------------------------------------------------------------------
# Topic patterns
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class CompiledPattern:
    regex: re.Pattern[str]

    def matches(self, text: str) -> bool:
        return self.regex.search(text) is not None


@dataclass(frozen=True, slots=True)
class InvalidPattern:
    """A pattern that is not a valid regex; matched as a literal substring."""

    pattern: str
    error: str

    def matches(self, text: str) -> bool:
        return self.pattern.lower() in text.lower()


def compile_pattern(pattern: str) -> CompiledPattern | InvalidPattern:
    try:
        return CompiledPattern(re.compile(pattern, re.IGNORECASE))
    except re.error as e:
        return InvalidPattern(pattern, str(e))


# ---------------------------------------------------------------------------
# Individual rules
# ---------------------------------------------------------------------------


def _minutes_of_day(now: datetime) -> int:
    return now.hour * 60 + now.minute


def is_quiet_hours(settings: FilterSettings, now: datetime) -> bool:
    if not settings.quiet_hours_enabled:
        return False

    start = parse_hhmm(settings.quiet_hours_start)
    end = parse_hhmm(settings.quiet_hours_end)
    if start is None or end is None:
        return False

    current = _minutes_of_day(now)
    if start > end:
        # overnight window, e.g. 22:00 - 07:00
        return current >= start or current < end
    return start <= current < end


def weekday_index(now: datetime) -> int:
    """Weekday with 0=Sunday .. 6=Saturday."""
    return (now.weekday() + 1) % 7


def is_quiet_day(settings: FilterSettings, now: datetime) -> bool:
    if not settings.quiet_days_enabled or not settings.quiet_days:
        return False
    return weekday_index(now) in settings.quiet_days


def is_channel_muted(settings: FilterSettings, stream: str | None) -> bool:
    if not stream or not settings.muted_streams:
        return False
    stream_lower = stream.lower()
    return any(muted.lower() == stream_lower for muted in settings.muted_streams)


def is_topic_muted(settings: FilterSettings, topic: str | None) -> bool:
    if not topic or not settings.muted_topics:
        return False
    return any(compile_pattern(pattern).matches(topic) for pattern in settings.muted_topics)


# ---------------------------------------------------------------------------
# Decision
# ---------------------------------------------------------------------------


def should_notify(
    settings: FilterSettings,
    message: FilterableMessage,
    user_id: int | None = None,
    now: datetime | None = None,
) -> FilterResult:
    """Decide whether *message* should produce a notification for *user_id*.

    *now* is the local wall-clock time used for quiet hours/days; it defaults
    to :func:`datetime.now`.
    """
    if now is None:
        now = datetime.now()

    if settings.mute_self_messages and user_id is not None and message.sender_id == user_id:
        return FilterResult(False, FilterReason.SELF_MESSAGE)

    if is_quiet_hours(settings, now):
        return FilterResult(False, FilterReason.QUIET_HOURS)
    if is_quiet_day(settings, now):
        return FilterResult(False, FilterReason.QUIET_DAY)

    if message.is_direct:
        if settings.notify_on_dm:
            return FilterResult(True, FilterReason.DM)
        return FilterResult(False, FilterReason.DM_DISABLED)

    mention = message.is_mention
    if mention and not settings.notify_on_mention:
        return FilterResult(False, FilterReason.MENTION_DISABLED)
    if not mention and not settings.notify_on_other:
        return FilterResult(False, FilterReason.OTHER_DISABLED)

    if is_channel_muted(settings, message.stream):
        return FilterResult(False, FilterReason.MUTED_CHANNEL)
    if is_topic_muted(settings, message.subject):
        return FilterResult(False, FilterReason.MUTED_TOPIC)

    return FilterResult(True, FilterReason.MENTION if mention else FilterReason.OTHER)
