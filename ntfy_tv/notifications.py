"""
Notification routing for received messages.

Consumes the session's ``latest_message`` signal and decides, per message,
whether it becomes an on-screen overlay, a heads-up notification, or is
dropped. Rendering itself belongs to the sinks.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Protocol

import structlog

from .messages import NtfyMessage
from .signals import StateSignal

log = structlog.get_logger()

MAX_TITLE_LENGTH = 100
MAX_MESSAGE_LENGTH = 500
MAX_TAG_LENGTH = 50
MAX_TAGS_COUNT = 5


class Delivery(str, Enum):
    OVERLAY = "overlay"
    HEADS_UP = "heads_up"
    DROPPED = "dropped"
    SUPPRESSED = "suppressed"
    DUPLICATE = "duplicate"


def sanitize(text: str | None, max_length: int) -> str | None:
    """Trim, cap length, and flatten line breaks to single spaces."""
    if text is None:
        return None
    text = text.strip()[:max_length]
    return text.replace("\r\n", " ").replace("\r", " ").replace("\n", " ")


@dataclass(frozen=True)
class Alert:
    """What a sink shows for one message."""
    message_id: str
    topic: str
    title: str | None
    body: str | None
    priority: int
    tags: tuple[str, ...]
    display_seconds: int

    @classmethod
    def from_message(cls, message: NtfyMessage, display_seconds: int) -> Alert:
        tags = tuple(
            t for t in (sanitize(tag, MAX_TAG_LENGTH) for tag in (message.tags or ())[:MAX_TAGS_COUNT])
            if t
        )
        return cls(
            message_id=message.id,
            topic=message.topic,
            title=sanitize(message.title, MAX_TITLE_LENGTH) or None,
            body=sanitize(message.message, MAX_MESSAGE_LENGTH) or None,
            priority=message.priority or 3,
            tags=tags,
            display_seconds=display_seconds,
        )


class PermissionState(Protocol):
    def can_draw_overlay(self) -> bool: ...

    def can_post_notifications(self) -> bool: ...


@dataclass
class StaticPermissions:
    overlay: bool = False
    notifications: bool = True

    def can_draw_overlay(self) -> bool:
        return self.overlay

    def can_post_notifications(self) -> bool:
        return self.notifications


class NotificationSink(Protocol):
    def show(self, alert: Alert) -> None: ...


class LogSink:
    """Writes alerts to the log. Used by the headless service."""

    def __init__(self, kind: str):
        self._kind = kind

    def show(self, alert: Alert) -> None:
        log.info(
            "notification.shown",
            kind=self._kind,
            topic=alert.topic,
            title=alert.title,
            body=alert.body,
            priority=alert.priority,
            tags=list(alert.tags),
        )


class NotificationRouter:
    """
    Routes messages to the overlay or heads-up sink.

    - Overlay when overlay permission is granted, else heads-up when
      notification permission is granted, else dropped
    - Suppressed while a foreground UI has claimed alerts
    - The same message id is never routed twice in a row
    """

    def __init__(
        self,
        permissions: PermissionState,
        overlay: NotificationSink,
        heads_up: NotificationSink,
        display_seconds: int = 5,
    ):
        self._permissions = permissions
        self._overlay = overlay
        self._heads_up = heads_up
        self._display_seconds = display_seconds
        self._foreground_owner = False
        self._last_id: str | None = None
        self._unsubscribe: Callable[[], None] | None = None

    @property
    def foreground_owner(self) -> bool:
        return self._foreground_owner

    def set_foreground_owner(self, owns_alerts: bool) -> None:
        """A foreground UI that shows its own alerts sets this to avoid duplicates."""
        self._foreground_owner = owns_alerts

    def attach(self, latest_message: StateSignal[NtfyMessage | None]) -> None:
        self.detach()
        # The cached value was already delivered before we attached.
        current = latest_message.value
        if current is not None:
            self._last_id = current.id
        self._unsubscribe = latest_message.subscribe(self._on_latest, replay=False)

    def detach(self) -> None:
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None

    def _on_latest(self, message: NtfyMessage | None) -> None:
        if message is not None:
            self.route(message)

    def route(self, message: NtfyMessage) -> Delivery:
        if message.id == self._last_id:
            return Delivery.DUPLICATE
        self._last_id = message.id

        if self._foreground_owner:
            log.debug("notification.suppressed", message_id=message.id)
            return Delivery.SUPPRESSED

        alert = Alert.from_message(message, self._display_seconds)
        if self._permissions.can_draw_overlay():
            self._overlay.show(alert)
            return Delivery.OVERLAY
        if self._permissions.can_post_notifications():
            self._heads_up.show(alert)
            return Delivery.HEADS_UP

        log.warning("notification.no_permission", message_id=message.id, title=message.title)
        return Delivery.DROPPED
