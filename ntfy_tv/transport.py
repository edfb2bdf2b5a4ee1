"""
WebSocket transport for the relay.

The session manager talks to a ``Transport`` and receives callbacks on a
``TransportListener``. ``WebSocketTransport`` is the aiohttp implementation:
receive-only, no read timeout, liveness via the WebSocket heartbeat
(ping every ``ping_interval`` seconds, failure when the pong is missed).
"""

from __future__ import annotations

import asyncio
from typing import Protocol

import aiohttp
import structlog

from .errors import TransportError

log = structlog.get_logger()

NORMAL_CLOSURE = 1000
ABNORMAL_CLOSURE = 1006

DEFAULT_PING_INTERVAL = 30.0


class TransportListener(Protocol):
    def on_open(self) -> None: ...

    def on_message(self, text: str) -> None: ...

    def on_failure(self, error: Exception) -> None: ...

    def on_closing(self, code: int, reason: str) -> None: ...

    def on_closed(self, code: int, reason: str) -> None: ...


class TransportHandle(Protocol):
    url: str


class Transport(Protocol):
    async def open(self, url: str, listener: TransportListener) -> TransportHandle: ...

    async def close(self, handle: TransportHandle, code: int, reason: str) -> None: ...

    async def shutdown(self) -> None: ...


class WebSocketHandle:
    """A single socket opened by WebSocketTransport."""

    def __init__(self, url: str):
        self.url = url
        self.ws: aiohttp.ClientWebSocketResponse | None = None
        self.task: asyncio.Task | None = None
        self.closing = False

    def __repr__(self) -> str:
        return f"WebSocketHandle({self.url!r}, closing={self.closing})"


class WebSocketTransport:
    """aiohttp WebSocket client. ``open`` returns immediately; the handshake runs in a task."""

    def __init__(self, ping_interval: float = DEFAULT_PING_INTERVAL):
        self._ping_interval = ping_interval
        self._http: aiohttp.ClientSession | None = None

    async def open(self, url: str, listener: TransportListener) -> WebSocketHandle:
        if self._http is None or self._http.closed:
            self._http = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=None))
        handle = WebSocketHandle(url)
        handle.task = asyncio.create_task(self._run(handle, listener))
        return handle

    async def close(self, handle: WebSocketHandle, code: int = NORMAL_CLOSURE, reason: str = "") -> None:
        handle.closing = True
        if handle.ws is not None and not handle.ws.closed:
            try:
                await handle.ws.close(code=code, message=reason.encode())
            except (aiohttp.ClientError, ConnectionError) as exc:
                log.debug("transport.close_failed", url=handle.url, error=str(exc))
        task = handle.task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def shutdown(self) -> None:
        if self._http is not None:
            await self._http.close()
            self._http = None

    async def _run(self, handle: WebSocketHandle, listener: TransportListener) -> None:
        assert self._http
        try:
            async with self._http.ws_connect(
                handle.url,
                heartbeat=self._ping_interval,
                autoping=True,
                autoclose=True,
            ) as ws:
                handle.ws = ws
                listener.on_open()
                reason = ""
                while True:
                    msg = await ws.receive()
                    if msg.type is aiohttp.WSMsgType.TEXT:
                        listener.on_message(msg.data)
                    elif msg.type is aiohttp.WSMsgType.BINARY:
                        listener.on_message(msg.data.decode("utf-8", errors="replace"))
                    elif msg.type is aiohttp.WSMsgType.CLOSE:
                        reason = msg.extra or ""
                        listener.on_closing(msg.data, reason)
                        break
                    elif msg.type is aiohttp.WSMsgType.ERROR:
                        raise TransportError(str(ws.exception() or "websocket error"))
                    else:
                        # CLOSING / CLOSED
                        break
            code = ws.close_code if ws.close_code is not None else ABNORMAL_CLOSURE
            if not handle.closing:
                listener.on_closed(code, reason)
        except asyncio.CancelledError:
            raise
        except TransportError as exc:
            if not handle.closing:
                listener.on_failure(exc)
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as exc:
            if not handle.closing:
                listener.on_failure(TransportError(f"{type(exc).__name__}: {exc}"))
