"""
Headless notification service.

Wires the stores, session, notification router, and health server together.
Handles lifecycle: startup, shutdown, signal handling.
"""

from __future__ import annotations

import asyncio
import signal

import structlog

from .config import AppConfig
from .health import HealthServer
from .metrics import MetricsCollector
from .network import RelayHealthProbe
from .notifications import LogSink, NotificationRouter, NotificationSink, StaticPermissions
from .session import ReconnectPolicy, SessionManager
from .state import Database, MessageStore, SubscriptionStore
from .subscriptions import SubscriptionManager
from .transport import Transport, WebSocketTransport

log = structlog.get_logger()

SHUTDOWN_TIMEOUT = 15.0
STATUS_INTERVAL = 30.0


class NtfyService:
    """
    Service process: owns the single session and routes its messages to notifications.
    """

    def __init__(
        self,
        config: AppConfig,
        transport: Transport | None = None,
        overlay: NotificationSink | None = None,
        heads_up: NotificationSink | None = None,
    ):
        self._config = config
        self._metrics = MetricsCollector()
        self._db = Database(config.state.db_path)
        self.subscription_store = SubscriptionStore(self._db)
        self.message_store = MessageStore(self._db)
        self._transport = transport or WebSocketTransport(config.relay.ping_interval_seconds)
        self._probe: RelayHealthProbe | None = None
        if config.relay.check_network:
            self._probe = RelayHealthProbe(
                config.relay.health_url,
                request_timeout=config.relay.request_timeout_seconds,
            )
        self.session = SessionManager(
            self.subscription_store,
            self.message_store,
            self._transport,
            relay_url=config.relay.url,
            network=self._probe,
            policy=ReconnectPolicy(
                base_delay_ms=config.reconnect.base_delay_ms,
                max_delay_ms=config.reconnect.max_delay_ms,
                max_attempts=config.reconnect.max_attempts,
            ),
            max_messages=config.session.max_messages,
            metrics=self._metrics,
        )
        self.subscriptions = SubscriptionManager(
            self.subscription_store, self.message_store, self.session
        )
        self.router = NotificationRouter(
            StaticPermissions(
                overlay=config.notifications.overlay_permission,
                notifications=config.notifications.notification_permission,
            ),
            overlay=overlay or LogSink("overlay"),
            heads_up=heads_up or LogSink("heads_up"),
            display_seconds=config.notifications.display_duration_seconds,
        )
        self._health = HealthServer(
            self.session,
            self._metrics,
            host=config.metrics.host,
            port=config.metrics.port,
            relay_reachable=lambda: self._probe.last_result if self._probe else None,
        )
        self._unsubscribe_state = None
        self._running = False
        self._shutdown_event = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Open storage, seed subscriptions, start routing, and connect."""
        log.info("service.starting", relay=self._config.relay.url)

        await self._db.open()
        if self._probe:
            await self._probe.open()

        seeded = await self.subscriptions.seed(self._config.subscriptions)
        if seeded:
            log.info("service.seeded_subscriptions", count=seeded)

        if self._config.metrics.enabled:
            try:
                await self._health.start()
                log.info(
                    "service.health_started",
                    host=self._config.metrics.host,
                    port=self._config.metrics.port,
                )
            except OSError as exc:
                log.warning("service.health_start_failed", error=str(exc))

        self.router.attach(self.session.latest_message)
        self._unsubscribe_state = self.session.connection_state.subscribe(
            self._on_connection_state, replay=False
        )

        result = await self.session.connect_to_active_subscriptions()
        log.info(
            "service.connect_requested",
            outcome=result.outcome.value,
            reason=result.reason,
        )

        self._running = True
        log.info("service.started")

    async def stop(self) -> None:
        """Graceful shutdown: close the session, stop routing, release resources."""
        if not self._running:
            return
        self._running = False
        log.info("service.stopping")

        await self.session.close()
        self.router.detach()
        if self._unsubscribe_state:
            self._unsubscribe_state()
            self._unsubscribe_state = None

        await self._transport.shutdown()
        await self._health.stop()
        if self._probe:
            await self._probe.close()
        await self._db.close()

        log.info("service.stopped")

    def request_shutdown(self) -> None:
        self._shutdown_event.set()

    async def run_forever(self) -> None:
        """Run until shutdown signal."""
        loop = asyncio.get_running_loop()

        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self.request_shutdown)

        await self.start()

        try:
            while not self._shutdown_event.is_set():
                self._log_status()
                try:
                    await asyncio.wait_for(
                        self._shutdown_event.wait(), timeout=STATUS_INTERVAL
                    )
                except asyncio.TimeoutError:
                    pass
        finally:
            await asyncio.wait_for(self.stop(), timeout=SHUTDOWN_TIMEOUT)

    def _on_connection_state(self, connected: bool) -> None:
        topics = self.session.current_topics
        if connected:
            if len(topics) == 1:
                detail = f"Listening to {topics[0]}"
            else:
                detail = f"Listening to {len(topics)} topics"
        else:
            detail = "Attempting to reconnect..." if self.session.reconnect_pending else "Not connected"
        log.info("service.connection_changed", connected=connected, detail=detail)

    def _log_status(self) -> None:
        status = self.session.status()
        log.info(
            "service.status",
            phase=status["phase"],
            topics=status["topics"],
            messages=status["messages_in_session"],
            reconnect_attempts=status["reconnect_attempts"],
        )
