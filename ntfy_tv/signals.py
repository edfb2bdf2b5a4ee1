"""
Last-value-cached observable state holders.

A ``StateSignal`` always has a current value. Setting a value that differs
from the current one dispatches it synchronously, in order, to every
subscriber. Subscribers that need edge-triggered behavior dedupe against
what they saw last.
"""

from __future__ import annotations

import asyncio
from typing import AsyncIterator, Callable, Generic, TypeVar

import structlog

log = structlog.get_logger()

T = TypeVar("T")

Subscriber = Callable[[T], None]


class StateSignal(Generic[T]):
    """Observable value holder with get / set / subscribe."""

    def __init__(self, initial: T, name: str = "signal"):
        self._value = initial
        self._name = name
        self._subscribers: list[Subscriber] = []

    @property
    def value(self) -> T:
        return self._value

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def set(self, value: T) -> bool:
        """Update the value. Returns True if subscribers were notified."""
        if value == self._value:
            return False
        self._value = value
        for subscriber in list(self._subscribers):
            try:
                subscriber(value)
            except Exception:
                log.exception("signal.subscriber_error", signal=self._name)
        return True

    def subscribe(self, subscriber: Subscriber, replay: bool = True) -> Callable[[], None]:
        """
        Register a callback. With ``replay`` the current value is delivered
        immediately. Returns a function that removes the subscription.
        """
        self._subscribers.append(subscriber)
        if replay:
            try:
                subscriber(self._value)
            except Exception:
                log.exception("signal.subscriber_error", signal=self._name, replay=True)

        def unsubscribe() -> None:
            try:
                self._subscribers.remove(subscriber)
            except ValueError:
                pass

        return unsubscribe

    async def watch(self) -> AsyncIterator[T]:
        """Yield the current value, then every update, until the consumer stops."""
        queue: asyncio.Queue = asyncio.Queue()
        unsubscribe = self.subscribe(queue.put_nowait)
        try:
            while True:
                yield await queue.get()
        finally:
            unsubscribe()

    def __repr__(self) -> str:
        return f"StateSignal({self._name}={self._value!r})"
