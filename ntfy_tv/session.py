"""
Relay session manager.

Owns the single WebSocket to the relay:
- Reconciles the socket with the desired topic set (no-op when unchanged)
- Validates every topic before any connect attempt
- Reconnects with exponential backoff, giving up after max_attempts
- Parses, persists, and publishes inbound frames in arrival order
- Exposes connection_state, messages, and latest_message signals

One instance is shared by everything that needs the connection; pass it
around explicitly. All methods must be called from the event loop that
owns the session.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Sequence

import structlog

from .errors import PersistenceError, TransportError
from .messages import NtfyMessage, parse_message
from .metrics import MetricsCollector
from .network import NetworkMonitor
from .signals import StateSignal
from .state import MessageStore, SubscriptionStore
from .topics import Invalid, validate
from .transport import NORMAL_CLOSURE, Transport, TransportHandle

log = structlog.get_logger()

DEFAULT_RELAY_URL = "wss://ntfy.sh"
MAX_SESSION_MESSAGES = 100


class Phase(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    BACKOFF = "backoff"


class ConnectOutcome(str, Enum):
    CONNECTING = "connecting"
    ALREADY_CONNECTED = "already_connected"
    IN_PROGRESS = "in_progress"
    NO_TOPICS = "no_topics"
    INVALID_TOPIC = "invalid_topic"
    NO_NETWORK = "no_network"
    FAILED = "failed"
    CANCELLED = "cancelled"
    CLOSED = "closed"


@dataclass(frozen=True)
class ConnectResult:
    outcome: ConnectOutcome
    reason: str | None = None
    topic: str | None = None

    @property
    def ok(self) -> bool:
        return self.outcome in (
            ConnectOutcome.CONNECTING,
            ConnectOutcome.ALREADY_CONNECTED,
            ConnectOutcome.IN_PROGRESS,
        )


@dataclass(frozen=True)
class ReconnectPolicy:
    base_delay_ms: int = 1000
    max_delay_ms: int = 60000
    max_attempts: int = 10

    def delay_ms(self, attempt: int) -> int:
        return min(self.base_delay_ms * (2 ** attempt), self.max_delay_ms)


def build_url(relay_url: str, topics: Sequence[str]) -> str:
    """wss://<relay-host>/<topic1>,<topic2>,.../ws"""
    return f"{relay_url.rstrip('/')}/{','.join(topics)}/ws"


class _SocketListener:
    """Binds transport callbacks to the connection generation that opened the socket."""

    def __init__(self, session: SessionManager, generation: int):
        self._session = session
        self._generation = generation

    def on_open(self) -> None:
        self._session._on_open(self._generation)

    def on_message(self, text: str) -> None:
        self._session._on_message(self._generation, text)

    def on_failure(self, error: Exception) -> None:
        self._session._on_failure(self._generation, error)

    def on_closing(self, code: int, reason: str) -> None:
        self._session._on_closing(self._generation, code, reason)

    def on_closed(self, code: int, reason: str) -> None:
        self._session._on_closed(self._generation, code, reason)


class SessionManager:
    """
    Connection/session manager for the relay WebSocket.
    """

    def __init__(
        self,
        subscriptions: SubscriptionStore,
        message_store: MessageStore,
        transport: Transport,
        relay_url: str = DEFAULT_RELAY_URL,
        network: NetworkMonitor | None = None,
        policy: ReconnectPolicy | None = None,
        max_messages: int = MAX_SESSION_MESSAGES,
        metrics: MetricsCollector | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self._subscriptions = subscriptions
        self._message_store = message_store
        self._transport = transport
        self._relay_url = relay_url
        self._network = network
        self._policy = policy or ReconnectPolicy()
        self._max_messages = max_messages
        self._metrics = metrics or MetricsCollector()
        self._clock = clock

        self.connection_state: StateSignal[bool] = StateSignal(False, "connection_state")
        self.messages: StateSignal[tuple[NtfyMessage, ...]] = StateSignal((), "messages")
        self.latest_message: StateSignal[NtfyMessage | None] = StateSignal(None, "latest_message")

        self._lock = asyncio.Lock()
        self._phase = Phase.DISCONNECTED
        self._backoff_attempt: int | None = None
        self._current_topics: tuple[str, ...] = ()
        self._attempts = 0
        self._gave_up = False
        self._generation = 0
        self._handle: TransportHandle | None = None
        self._reconnect_task: asyncio.Task | None = None
        self._frame_queue: asyncio.Queue | None = None
        self._frame_task: asyncio.Task | None = None
        self._closed = False

    # --- Introspection ---

    @property
    def phase(self) -> Phase:
        return self._phase

    @property
    def backoff_attempt(self) -> int | None:
        return self._backoff_attempt

    @property
    def connected(self) -> bool:
        return self.connection_state.value

    @property
    def current_topics(self) -> tuple[str, ...]:
        return self._current_topics

    @property
    def reconnect_attempts(self) -> int:
        return self._attempts

    @property
    def gave_up(self) -> bool:
        return self._gave_up

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    @property
    def closed(self) -> bool:
        return self._closed

    def status(self) -> dict[str, Any]:
        latest = self.latest_message.value
        return {
            "phase": self._phase.value,
            "connected": self.connection_state.value,
            "topics": list(self._current_topics),
            "reconnect_attempts": self._attempts,
            "reconnect_pending": self.reconnect_pending,
            "gave_up": self._gave_up,
            "messages_in_session": len(self.messages.value),
            "latest_message_id": latest.id if latest else None,
        }

    # --- Public API ---

    async def connect(self, topics: Sequence[str]) -> ConnectResult:
        """Connect to exactly these topics. Resets the reconnect cycle."""
        return await self._connect(tuple(topics), explicit=True)

    async def connect_to_active_subscriptions(self) -> ConnectResult:
        """Connect to every active subscription in the store. Resets the reconnect cycle."""
        return await self._connect(None, explicit=True)

    async def disconnect(self) -> None:
        """Close the socket, cancel pending reconnects, and forget the topic set."""
        self._cancel_reconnect()
        self._generation += 1
        self._stop_frame_pipeline()
        await self._close_socket("User disconnected")
        self._current_topics = ()
        self._set_phase(Phase.DISCONNECTED)
        self.connection_state.set(False)
        self._metrics.set_gauge("connected", 0)
        log.info("session.disconnected")

    async def close(self) -> None:
        """Tear down: disconnect and wait for every background task to finish."""
        if self._closed:
            return
        self._closed = True
        tasks = [t for t in (self._reconnect_task, self._frame_task) if t is not None]
        await self.disconnect()
        current = asyncio.current_task()
        pending = [t for t in tasks if t is not current and not t.done()]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        log.info("session.closed")

    # --- Connect sequence ---

    async def _connect(self, topics: tuple[str, ...] | None, explicit: bool) -> ConnectResult:
        if self._closed:
            return ConnectResult(ConnectOutcome.CLOSED)
        if self._lock.locked():
            log.debug("session.connect_in_progress")
            return ConnectResult(ConnectOutcome.IN_PROGRESS)

        async with self._lock:
            start_generation = self._generation

            if topics is None:
                topics = tuple(s.topic for s in await self._subscriptions.list_active())

            if not topics:
                log.warning("session.no_active_topics")
                if self._handle is not None or self._phase is not Phase.DISCONNECTED:
                    await self.disconnect()
                self.connection_state.set(False)
                return ConnectResult(ConnectOutcome.NO_TOPICS)

            for topic in topics:
                result = validate(topic)
                if isinstance(result, Invalid):
                    log.error("session.invalid_topic", topic=topic, reason=result.reason)
                    return ConnectResult(ConnectOutcome.INVALID_TOPIC, result.reason, topic)

            same_topics = set(topics) == set(self._current_topics)
            if same_topics and self.connection_state.value:
                log.debug("session.already_connected", topics=list(topics))
                return ConnectResult(ConnectOutcome.ALREADY_CONNECTED)
            if same_topics and self._phase is Phase.CONNECTING and self._handle is not None:
                log.debug("session.handshake_in_progress", topics=list(topics))
                return ConnectResult(ConnectOutcome.IN_PROGRESS)

            if explicit:
                self._cancel_reconnect()
                self._attempts = 0
                self._gave_up = False

            self._current_topics = topics

            if self._network is not None and not await self._network.is_available():
                log.warning("session.no_network", topics=list(topics))
                if self._generation == start_generation:
                    self._generation += 1
                    self._stop_frame_pipeline()
                    await self._close_socket("Network unavailable")
                self._set_phase(Phase.DISCONNECTED)
                self.connection_state.set(False)
                self._schedule_retry(consume_attempt=False)
                return ConnectResult(ConnectOutcome.NO_NETWORK)

            if self._closed or self._generation != start_generation:
                return ConnectResult(ConnectOutcome.CANCELLED)

            self._generation += 1
            generation = self._generation
            self._stop_frame_pipeline()
            await self._close_socket("Reconnecting")
            self.connection_state.set(False)

            self._start_frame_pipeline(generation)
            self._set_phase(Phase.CONNECTING)
            url = build_url(self._relay_url, topics)
            log.info("session.connecting", topics=list(topics), url=url, attempt=self._attempts)

            try:
                handle = await self._transport.open(url, _SocketListener(self, generation))
            except TransportError as exc:
                self._on_failure(generation, exc)
                return ConnectResult(ConnectOutcome.FAILED, str(exc))

            if generation == self._generation:
                self._handle = handle
            return ConnectResult(ConnectOutcome.CONNECTING)

    async def _close_socket(self, reason: str) -> None:
        handle, self._handle = self._handle, None
        if handle is None:
            return
        try:
            await self._transport.close(handle, NORMAL_CLOSURE, reason)
        except TransportError as exc:
            log.warning("session.close_failed", error=str(exc))

    # --- Backoff ---

    def _schedule_retry(self, consume_attempt: bool) -> None:
        if self._closed or not self._current_topics:
            return

        if consume_attempt:
            if self._attempts >= self._policy.max_attempts:
                log.error("session.giving_up", attempts=self._attempts)
                self._gave_up = True
                self._set_phase(Phase.DISCONNECTED)
                self._metrics.inc("reconnects_abandoned_total")
                return
            attempt = self._attempts
            self._attempts += 1
        else:
            attempt = self._attempts

        delay_ms = self._policy.delay_ms(attempt)
        self._cancel_reconnect()
        self._set_phase(Phase.BACKOFF, attempt)
        self._metrics.inc("reconnects_scheduled_total")
        log.info(
            "session.reconnect_scheduled",
            delay_ms=delay_ms,
            attempt=self._attempts,
            max_attempts=self._policy.max_attempts,
        )
        self._reconnect_task = asyncio.create_task(self._reconnect_after(delay_ms / 1000.0))

    async def _reconnect_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        if self._reconnect_task is asyncio.current_task():
            self._reconnect_task = None
        if self._closed:
            return
        if self.connection_state.value:
            log.debug("session.reconnect_skipped", reason="already connected")
            return
        result = await self._connect(self._current_topics, explicit=False)
        log.debug("session.reconnect_result", outcome=result.outcome.value)

    def _cancel_reconnect(self) -> None:
        task, self._reconnect_task = self._reconnect_task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    # --- Frame pipeline ---

    def _start_frame_pipeline(self, generation: int) -> None:
        queue: asyncio.Queue = asyncio.Queue()
        self._frame_queue = queue
        self._frame_task = asyncio.create_task(self._drain_frames(generation, queue))

    def _stop_frame_pipeline(self) -> None:
        task, self._frame_task = self._frame_task, None
        self._frame_queue = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _drain_frames(self, generation: int, queue: asyncio.Queue) -> None:
        while True:
            text = await queue.get()
            if generation != self._generation:
                return
            try:
                await self._process_frame(generation, text)
            except asyncio.CancelledError:
                raise
            except Exception:
                log.exception("session.frame_error")

    async def _process_frame(self, generation: int, text: str) -> None:
        self._metrics.inc("frames_received_total")
        message = parse_message(text, now=self._clock())
        if message is None:
            self._metrics.inc("frames_dropped_total")
            log.debug("session.frame_dropped", frame=text[:200])
            return

        try:
            await self._message_store.insert_with_cleanup(message)
        except PersistenceError as exc:
            self._metrics.inc("persist_errors_total")
            log.error(
                "session.persist_failed",
                message_id=message.id,
                topic=message.topic,
                error=str(exc),
            )

        if generation != self._generation or self._closed:
            return
        self._publish(message)

    def _publish(self, message: NtfyMessage) -> None:
        messages = self.messages.value + (message,)
        if len(messages) > self._max_messages:
            messages = messages[-self._max_messages:]
        self.messages.set(messages)
        self.latest_message.set(message)
        self._metrics.inc("messages_received_total", topic=message.topic)
        self._metrics.set_gauge("messages_in_session", len(messages))
        log.info(
            "session.message",
            message_id=message.id,
            topic=message.topic,
            title=message.title,
            priority=message.priority,
        )

    # --- Transport callbacks ---

    def _on_open(self, generation: int) -> None:
        if generation != self._generation:
            return
        self._cancel_reconnect()
        self._attempts = 0
        self._gave_up = False
        self._set_phase(Phase.CONNECTED)
        self.connection_state.set(True)
        self._metrics.inc("connections_opened_total")
        self._metrics.set_gauge("connected", 1)
        log.info("session.connected", topics=list(self._current_topics))

    def _on_message(self, generation: int, text: str) -> None:
        if generation != self._generation or self._frame_queue is None:
            return
        self._frame_queue.put_nowait(text)

    def _on_failure(self, generation: int, error: Exception) -> None:
        if generation != self._generation:
            return
        log.warning("session.transport_failure", error=str(error), topics=list(self._current_topics))
        self._handle = None
        self.connection_state.set(False)
        self._metrics.set_gauge("connected", 0)
        self._schedule_retry(consume_attempt=True)

    def _on_closing(self, generation: int, code: int, reason: str) -> None:
        if generation != self._generation:
            return
        log.info("session.closing", code=code, reason=reason)
        self.connection_state.set(False)
        self._metrics.set_gauge("connected", 0)

    def _on_closed(self, generation: int, code: int, reason: str) -> None:
        if generation != self._generation:
            return
        self._handle = None
        if code != NORMAL_CLOSURE:
            self._on_failure(
                generation,
                TransportError(f"connection closed abnormally ({code}) {reason}".strip(), code=code),
            )
            return
        log.info("session.closed_by_relay", code=code, reason=reason)
        self._set_phase(Phase.DISCONNECTED)
        self.connection_state.set(False)
        self._metrics.set_gauge("connected", 0)

    def _set_phase(self, phase: Phase, attempt: int | None = None) -> None:
        self._phase = phase
        self._backoff_attempt = attempt if phase is Phase.BACKOFF else None
