"""Zulip Web Pusher: filtered Zulip notifications over long-poll and Web Push."""

__version__ = "0.2.0"
