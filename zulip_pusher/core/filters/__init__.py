from .engine import (
    CompiledPattern,
    FilterReason,
    FilterResult,
    InvalidPattern,
    compile_pattern,
    should_notify,
)
from .message import ConversationKind, FilterableMessage, message_from_flags, message_from_zulip
from .settings import DEFAULT_FILTER_SETTINGS, FilterSettings

__all__ = [
    "CompiledPattern",
    "ConversationKind",
    "DEFAULT_FILTER_SETTINGS",
    "FilterReason",
    "FilterResult",
    "FilterSettings",
    "FilterableMessage",
    "InvalidPattern",
    "compile_pattern",
    "message_from_flags",
    "message_from_zulip",
    "should_notify",
]
