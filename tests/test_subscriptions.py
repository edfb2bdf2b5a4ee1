"""Tests for subscription management and session reconciliation."""

import pytest

from ntfy_tv.messages import NtfyMessage
from ntfy_tv.session import ConnectOutcome
from ntfy_tv.subscriptions import AddStatus, SubscriptionManager


@pytest.fixture
def manager(subscription_store, message_store, session):
    return SubscriptionManager(subscription_store, message_store, session)


async def test_add_connects_to_all_active(manager, transport):
    result = await manager.add("  news  ")

    assert result.status is AddStatus.ADDED
    assert result.id is not None
    assert result.connect.outcome is ConnectOutcome.CONNECTING
    assert transport.latest.url == "wss://relay.test/news,alerts/ws"


async def test_add_without_reconnect(manager, transport):
    result = await manager.add("news", reconnect=False)
    assert result.status is AddStatus.ADDED
    assert result.connect is None
    assert transport.opened == []


async def test_add_duplicate(manager):
    result = await manager.add("alerts")
    assert result.status is AddStatus.ALREADY_EXISTS
    assert "alerts" in result.reason


async def test_add_invalid(manager, subscription_store, transport):
    result = await manager.add("a/b")
    assert result.status is AddStatus.INVALID
    assert result.reason == "Topic cannot contain slashes (/)"
    assert await subscription_store.count() == 1
    assert transport.opened == []


async def test_set_active_reconnects_with_new_set(manager, subscription_store, transport):
    await manager.add("news")
    transport.latest.listener.on_open()

    alerts = await subscription_store.get_by_topic("alerts")
    result = await manager.set_active(alerts.id, False)

    assert result.outcome is ConnectOutcome.CONNECTING
    assert transport.latest.url == "wss://relay.test/news/ws"
    assert transport.opened[0].closed_with == (1000, "Reconnecting")


async def test_remove_deletes_messages_and_reconnects(
    manager, subscription_store, message_store, transport
):
    await manager.add("news")
    await message_store.insert_with_cleanup(
        NtfyMessage(id="n1", time=1, event="message", topic="news", message="hi")
    )

    news = await subscription_store.get_by_topic("news")
    result = await manager.remove(news.id)

    assert result.outcome is ConnectOutcome.CONNECTING
    assert await subscription_store.get_by_topic("news") is None
    assert await message_store.count("news") == 0
    assert transport.latest.url == "wss://relay.test/alerts/ws"


async def test_remove_last_subscription_disconnects(manager, subscription_store, transport):
    await manager.ensure_and_connect("alerts")
    transport.latest.listener.on_open()

    alerts = await subscription_store.get_by_topic("alerts")
    result = await manager.remove(alerts)

    assert result.outcome is ConnectOutcome.NO_TOPICS
    assert transport.latest.closed_with == (1000, "User disconnected")


async def test_remove_unknown_id(manager, subscription_store):
    await manager.remove(9999)
    assert await subscription_store.count() == 1


async def test_ensure_and_connect_creates_missing(manager, subscription_store, transport):
    result = await manager.ensure_and_connect("news")

    assert result.outcome is ConnectOutcome.CONNECTING
    assert await subscription_store.get_by_topic("news") is not None
    assert len(transport.opened) == 1


async def test_ensure_and_connect_invalid(manager, transport):
    result = await manager.ensure_and_connect("no way")
    assert result.outcome is ConnectOutcome.INVALID_TOPIC
    assert result.reason == "Topic cannot contain whitespace"
    assert transport.opened == []


async def test_list_topics(manager, subscription_store):
    await manager.add("news", reconnect=False)
    news = await subscription_store.get_by_topic("news")
    await subscription_store.set_active(news.id, False)

    assert await manager.list_topics() == ["news", "alerts"]
    assert await manager.list_topics(active_only=True) == ["alerts"]


async def test_seed_only_creates_missing(manager, subscription_store, transport):
    created = await manager.seed(["alerts", "news", "builds"])
    assert created == 2
    assert await subscription_store.count() == 3
    assert transport.opened == []
