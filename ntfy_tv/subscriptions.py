"""
Subscription management.

Adds, toggles and removes topic subscriptions, then brings the live
session in line with the new active set.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

import structlog

from .errors import PersistenceError, SubscriptionExistsError
from .session import ConnectOutcome, ConnectResult, SessionManager
from .state import MessageStore, Subscription, SubscriptionStore
from .topics import Invalid, validate

log = structlog.get_logger()


class AddStatus(str, Enum):
    ADDED = "added"
    ALREADY_EXISTS = "already_exists"
    INVALID = "invalid"
    ERROR = "error"


@dataclass(frozen=True)
class AddResult:
    status: AddStatus
    id: int | None = None
    reason: str | None = None
    connect: ConnectResult | None = None


class SubscriptionManager:
    """Manages topic subscriptions and keeps the session connected to the active ones."""

    def __init__(
        self,
        store: SubscriptionStore,
        messages: MessageStore,
        session: SessionManager,
    ) -> None:
        self._store = store
        self._messages = messages
        self._session = session

    async def add(self, topic: str, reconnect: bool = True) -> AddResult:
        topic = topic.strip()
        result = validate(topic)
        if isinstance(result, Invalid):
            log.warning("subscriptions.invalid_topic", topic=topic, reason=result.reason)
            return AddResult(AddStatus.INVALID, reason=result.reason)

        try:
            subscription_id = await self._store.insert(topic)
        except SubscriptionExistsError as exc:
            return AddResult(AddStatus.ALREADY_EXISTS, reason=str(exc))
        except PersistenceError as exc:
            log.error("subscriptions.add_failed", topic=topic, error=str(exc))
            return AddResult(AddStatus.ERROR, reason=str(exc))

        connect = await self._session.connect_to_active_subscriptions() if reconnect else None
        return AddResult(AddStatus.ADDED, id=subscription_id, connect=connect)

    async def set_active(self, subscription_id: int, is_active: bool) -> ConnectResult:
        await self._store.set_active(subscription_id, is_active)
        return await self._session.connect_to_active_subscriptions()

    async def remove(self, subscription: Subscription | int) -> ConnectResult:
        """Delete a subscription and every stored message for its topic."""
        if not isinstance(subscription, Subscription):
            found = await self._store.get_by_id(subscription)
            if found is None:
                log.warning("subscriptions.not_found", id=subscription)
                return await self._session.connect_to_active_subscriptions()
            subscription = found

        await self._messages.delete_by_topic(subscription.topic)
        await self._store.delete(subscription)
        log.info("subscriptions.removed", topic=subscription.topic)
        return await self._session.connect_to_active_subscriptions()

    async def ensure_and_connect(self, topic: str) -> ConnectResult:
        """Make sure a subscription exists for ``topic``, then reconnect."""
        if await self._store.get_by_topic(topic) is None:
            added = await self.add(topic, reconnect=False)
            if added.status is AddStatus.INVALID:
                return ConnectResult(ConnectOutcome.INVALID_TOPIC, added.reason, topic)
        return await self._session.connect_to_active_subscriptions()

    async def list_topics(self, active_only: bool = False) -> list[str]:
        subs = await (self._store.list_active() if active_only else self._store.list())
        return [s.topic for s in subs]

    async def seed(self, topics: list[str]) -> int:
        """Add any of ``topics`` that are missing. Returns how many were created."""
        created = 0
        for topic in topics:
            if await self._store.get_by_topic(topic) is not None:
                continue
            result = await self.add(topic, reconnect=False)
            if result.status is AddStatus.ADDED:
                created += 1
        return created
