"""Tests for SQLite subscription and message stores."""

import pytest

from ntfy_tv.errors import PersistenceError, SubscriptionExistsError
from ntfy_tv.messages import NtfyMessage
from ntfy_tv.state import MESSAGES_PER_TOPIC, MessageStore, SubscriptionStore


def make_message(id: str, topic: str = "alerts", time: int = 1000, **kwargs) -> NtfyMessage:
    return NtfyMessage(id=id, time=time, event="message", topic=topic, **kwargs)


async def collect(iterator):
    return [m async for m in iterator]


async def test_subscription_crud(subscription_store: SubscriptionStore):
    sub_id = await subscription_store.insert("alerts")
    sub = await subscription_store.get_by_topic("alerts")
    assert sub.id == sub_id
    assert sub.is_active is True
    assert (await subscription_store.get_by_id(sub_id)).topic == "alerts"

    await subscription_store.set_active(sub_id, False)
    assert (await subscription_store.get_by_id(sub_id)).is_active is False
    assert await subscription_store.list_active() == []
    assert [s.topic for s in await subscription_store.list()] == ["alerts"]

    await subscription_store.delete(sub_id)
    assert await subscription_store.get_by_topic("alerts") is None
    assert await subscription_store.count() == 0


async def test_duplicate_topic_rejected(subscription_store: SubscriptionStore):
    await subscription_store.insert("alerts")
    with pytest.raises(SubscriptionExistsError):
        await subscription_store.insert("alerts")
    # Topics are case-sensitive.
    await subscription_store.insert("Alerts")
    assert await subscription_store.count() == 2


async def test_list_newest_first(subscription_store: SubscriptionStore):
    for topic in ("first", "second", "third"):
        await subscription_store.insert(topic)
    assert [s.topic for s in await subscription_store.list()] == ["third", "second", "first"]


async def test_list_active_filters(subscription_store: SubscriptionStore):
    a = await subscription_store.insert("a")
    await subscription_store.insert("b")
    await subscription_store.set_active(a, False)
    assert [s.topic for s in await subscription_store.list_active()] == ["b"]


async def test_message_cap_per_topic(subscription_store, message_store: MessageStore):
    await subscription_store.insert("alerts")
    for i in range(1, MESSAGES_PER_TOPIC + 2):
        await message_store.insert_with_cleanup(make_message(f"m{i}", time=i))

    stored = await collect(message_store.by_topic("alerts"))
    assert len(stored) == MESSAGES_PER_TOPIC
    assert [m.time for m in stored] == list(range(MESSAGES_PER_TOPIC + 1, 1, -1))
    assert await message_store.count("alerts") == MESSAGES_PER_TOPIC


async def test_cap_evicts_by_timestamp_not_arrival(subscription_store, message_store):
    await subscription_store.insert("alerts")
    for i in range(2, 12):
        await message_store.insert_with_cleanup(make_message(f"m{i}", time=i))
    # Arrives last but is the oldest: evicted immediately.
    await message_store.insert_with_cleanup(make_message("late", time=1))
    ids = [m.id for m in await collect(message_store.by_topic("alerts"))]
    assert "late" not in ids
    assert len(ids) == MESSAGES_PER_TOPIC


async def test_caps_are_independent_per_topic(subscription_store, message_store):
    await subscription_store.insert("a")
    await subscription_store.insert("b")
    for i in range(12):
        await message_store.insert_with_cleanup(make_message(f"a{i}", topic="a", time=i))
    await message_store.insert_with_cleanup(make_message("b0", topic="b"))
    assert await message_store.count("a") == MESSAGES_PER_TOPIC
    assert await message_store.count("b") == 1


async def test_upsert_by_id(subscription_store, message_store):
    await subscription_store.insert("alerts")
    await message_store.insert_with_cleanup(make_message("same", title="one"))
    await message_store.insert_with_cleanup(make_message("same", title="two"))
    stored = await collect(message_store.by_topic("alerts"))
    assert len(stored) == 1
    assert stored[0].title == "two"


async def test_round_trips_optional_fields(subscription_store, message_store):
    await subscription_store.insert("alerts")
    msg = make_message("full", message="body", title="t", priority=5, tags=("a", "b"))
    await message_store.insert_with_cleanup(msg)
    assert await collect(message_store.by_topic("alerts")) == [msg]


async def test_message_without_subscription_rejected(message_store):
    with pytest.raises(PersistenceError):
        await message_store.insert_with_cleanup(make_message("orphan", topic="nobody"))


async def test_delete_subscription_cascades(subscription_store, message_store):
    sub_id = await subscription_store.insert("alerts")
    await subscription_store.insert("other")
    await message_store.insert_with_cleanup(make_message("1"))
    await message_store.insert_with_cleanup(make_message("2", topic="other"))

    sub = await subscription_store.get_by_id(sub_id)
    await subscription_store.delete(sub)

    assert await collect(message_store.by_topic("alerts")) == []
    assert await message_store.count("other") == 1


async def test_delete_by_topic_and_all(subscription_store, message_store):
    await subscription_store.insert("a")
    await subscription_store.insert("b")
    await message_store.insert_with_cleanup(make_message("1", topic="a", time=1))
    await message_store.insert_with_cleanup(make_message("2", topic="b", time=2))

    assert [m.id for m in await message_store.by_topics(["a", "b"])] == ["2", "1"]

    await message_store.delete_by_topic("a")
    assert [m.id for m in await message_store.all()] == ["2"]

    await message_store.delete_all()
    assert await message_store.all() == []
    assert await subscription_store.count() == 2


async def test_closed_database_raises(db, subscription_store):
    await db.close()
    with pytest.raises(PersistenceError):
        await subscription_store.list()


async def test_out_of_range_time_raises_persistence_error(subscription_store, message_store):
    await subscription_store.insert("alerts")
    with pytest.raises(PersistenceError):
        await message_store.insert_with_cleanup(make_message("big", time=2**70))
    assert await message_store.count("alerts") == 0


async def test_message_read_errors_are_wrapped(db, message_store):
    await db.conn.execute("DROP TABLE messages")
    with pytest.raises(PersistenceError):
        await message_store.all()
    with pytest.raises(PersistenceError):
        await message_store.count("alerts")
    with pytest.raises(PersistenceError):
        await message_store.by_topics(["alerts"])
    with pytest.raises(PersistenceError):
        await collect(message_store.by_topic("alerts"))
