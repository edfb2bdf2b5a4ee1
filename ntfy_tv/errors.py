"""
Error taxonomy for the session core.

Topic validation failures are not exceptions: they are returned to the
caller as results (see ``topics.validate`` and ``session.ConnectResult``).
"""

from __future__ import annotations


class NtfyError(Exception):
    """Base class for all ntfy_tv errors."""


class TransportError(NtfyError):
    """Socket-level failure (handshake, I/O, heartbeat timeout, abnormal close)."""

    def __init__(self, message: str, code: int | None = None):
        super().__init__(message)
        self.code = code


class ParseError(NtfyError):
    """An inbound frame could not be decoded."""


class PersistenceError(NtfyError):
    """A store operation failed."""


class SubscriptionExistsError(PersistenceError):
    """A subscription for the topic already exists."""

    def __init__(self, topic: str):
        super().__init__(f"Subscription for topic '{topic}' already exists")
        self.topic = topic
