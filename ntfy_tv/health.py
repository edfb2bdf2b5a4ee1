"""
Status HTTP surface for the headless service.

Routes:
- GET /health    session status; 503 once reconnecting has been abandoned
- GET /messages  messages currently held by the session, newest first
- GET /metrics   Prometheus text
"""

from __future__ import annotations

from typing import Any, Callable

from aiohttp import web

from .metrics import MetricsCollector
from .session import SessionManager


class HealthServer:
    """Reads live state from the session on every request."""

    def __init__(
        self,
        session: SessionManager,
        metrics: MetricsCollector,
        host: str = "127.0.0.1",
        port: int = 9090,
        relay_reachable: Callable[[], bool | None] | None = None,
    ):
        self._session = session
        self._metrics = metrics
        self._host = host
        self._port = port
        self._relay_reachable = relay_reachable or (lambda: None)
        self._runner: web.AppRunner | None = None

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/health", self._health)
        app.router.add_get("/messages", self._messages)
        app.router.add_get("/metrics", self._metrics_text)
        return app

    async def start(self) -> None:
        self._runner = web.AppRunner(self.build_app())
        await self._runner.setup()
        await web.TCPSite(self._runner, self._host, self._port).start()

    async def stop(self) -> None:
        if self._runner:
            await self._runner.cleanup()
            self._runner = None

    def snapshot(self) -> dict[str, Any]:
        status = self._session.status()
        if status["connected"]:
            state = "healthy"
        elif status["gave_up"]:
            state = "unhealthy"
        else:
            state = "degraded"
        return {
            "status": state,
            "session": status,
            "relay_reachable": self._relay_reachable(),
            "uptime_seconds": round(self._metrics.uptime, 1),
        }

    async def _health(self, request: web.Request) -> web.Response:
        body = self.snapshot()
        return web.json_response(body, status=503 if body["status"] == "unhealthy" else 200)

    async def _messages(self, request: web.Request) -> web.Response:
        try:
            limit = int(request.query.get("limit", "20"))
        except ValueError:
            raise web.HTTPBadRequest(text="limit must be an integer")
        recent = self._session.messages.value[::-1][:max(limit, 0)]
        return web.json_response([m.to_dict() for m in recent])

    async def _metrics_text(self, request: web.Request) -> web.Response:
        return web.Response(text=self._metrics.to_prometheus(), content_type="text/plain")
