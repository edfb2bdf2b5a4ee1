"""
Network reachability checks run before each connect attempt.
"""

from __future__ import annotations

from typing import Protocol

import httpx
import structlog

log = structlog.get_logger()


class NetworkMonitor(Protocol):
    async def is_available(self) -> bool: ...


class RelayHealthProbe:
    """Treats the network as available when the relay's health endpoint answers 200."""

    def __init__(self, health_url: str, request_timeout: float = 10.0):
        self._health_url = health_url
        self._request_timeout = request_timeout
        self._client: httpx.AsyncClient | None = None
        self.last_result: bool | None = None

    async def open(self) -> None:
        self._client = httpx.AsyncClient(timeout=httpx.Timeout(self._request_timeout))

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def is_available(self) -> bool:
        self.last_result = await self._check()
        return self.last_result

    async def _check(self) -> bool:
        if not self._client:
            await self.open()
        assert self._client
        try:
            resp = await self._client.get(self._health_url)
        except httpx.HTTPError as exc:
            log.warning("network.unreachable", url=self._health_url, error=str(exc))
            return False
        if resp.status_code != 200:
            log.warning("network.relay_unhealthy", url=self._health_url, status=resp.status_code)
            return False
        return True
