"""
Shared fixtures: stores on a temp SQLite file, a fake transport for the
session state machine, and a mock relay served by uvicorn for integration tests.
"""

import asyncio
import random

import pytest
import uvicorn

from ntfy_tv.session import ReconnectPolicy, SessionManager
from ntfy_tv.state import Database, MessageStore, SubscriptionStore

from .mock_servers import create_relay_app


class FakeHandle:
    def __init__(self, url, listener):
        self.url = url
        self.listener = listener
        self.closed_with = None


class FakeTransport:
    """Records every open/close; tests drive the listener callbacks by hand."""

    def __init__(self):
        self.opened: list[FakeHandle] = []
        self.closed: list[FakeHandle] = []
        self.shutdown_called = False

    @property
    def latest(self) -> FakeHandle:
        return self.opened[-1]

    async def open(self, url, listener):
        handle = FakeHandle(url, listener)
        self.opened.append(handle)
        return handle

    async def close(self, handle, code, reason):
        handle.closed_with = (code, reason)
        self.closed.append(handle)

    async def shutdown(self):
        self.shutdown_called = True


class FakeNetwork:
    def __init__(self, available: bool = True):
        self.available = available
        self.checks = 0

    async def is_available(self) -> bool:
        self.checks += 1
        await asyncio.sleep(0)
        return self.available


async def wait_for(predicate, timeout: float = 2.0) -> bool:
    deadline = asyncio.get_running_loop().time() + timeout
    while asyncio.get_running_loop().time() < deadline:
        if predicate():
            return True
        await asyncio.sleep(0.01)
    return predicate()


@pytest.fixture
async def db(tmp_path):
    database = Database(str(tmp_path / "ntfy.db"))
    await database.open()
    yield database
    await database.close()


@pytest.fixture
def subscription_store(db):
    return SubscriptionStore(db)


@pytest.fixture
def message_store(db):
    return MessageStore(db)


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def fast_policy():
    return ReconnectPolicy(base_delay_ms=1, max_delay_ms=4, max_attempts=10)


@pytest.fixture
async def session(subscription_store, message_store, transport, fast_policy):
    await subscription_store.insert("alerts")
    s = SessionManager(
        subscription_store,
        message_store,
        transport,
        relay_url="wss://relay.test",
        policy=fast_policy,
    )
    yield s
    await s.close()


class _UvicornServer:
    def __init__(self, app, host: str, port: int):
        self.config = uvicorn.Config(app, host=host, port=port, log_level="error")
        self.server = uvicorn.Server(self.config)
        self._task: asyncio.Task | None = None

    async def start(self):
        self._task = asyncio.create_task(self.server.serve())
        for _ in range(100):
            if self.server.started:
                return
            await asyncio.sleep(0.05)
        raise RuntimeError("Server did not start")

    async def stop(self):
        self.server.should_exit = True
        if self._task:
            try:
                await asyncio.wait_for(self._task, timeout=5)
            except (asyncio.TimeoutError, asyncio.CancelledError):
                self._task.cancel()


def _pick_port():
    return random.randint(19000, 19999)


@pytest.fixture
async def relay_server():
    port = _pick_port()
    srv = _UvicornServer(create_relay_app(), "127.0.0.1", port)
    await srv.start()
    yield f"http://127.0.0.1:{port}"
    await srv.stop()
