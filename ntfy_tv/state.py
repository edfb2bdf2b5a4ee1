"""
SQLite persistence for subscriptions and received messages.

Stores:
- subscriptions: topic → active flag (unique topic)
- messages: latest messages per topic, foreign-keyed to subscriptions.topic
  with ON DELETE CASCADE, trimmed to MESSAGES_PER_TOPIC on every insert
"""

from __future__ import annotations

import json
import os
import time
from dataclasses import dataclass
from typing import AsyncIterator, Sequence

import aiosqlite
import structlog

from .errors import PersistenceError, SubscriptionExistsError
from .messages import NtfyMessage

log = structlog.get_logger()

MESSAGES_PER_TOPIC = 10

_SCHEMA = """
CREATE TABLE IF NOT EXISTS subscriptions (
    id         INTEGER PRIMARY KEY AUTOINCREMENT,
    topic      TEXT NOT NULL UNIQUE,
    is_active  INTEGER NOT NULL DEFAULT 1,
    created_at INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS messages (
    id       TEXT PRIMARY KEY NOT NULL,
    topic    TEXT NOT NULL,
    time     INTEGER NOT NULL,
    event    TEXT NOT NULL,
    message  TEXT,
    title    TEXT,
    priority INTEGER,
    tags     TEXT,
    FOREIGN KEY(topic) REFERENCES subscriptions(topic)
        ON DELETE CASCADE
        ON UPDATE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_messages_topic_time
    ON messages(topic, time);
"""


@dataclass(frozen=True)
class Subscription:
    id: int
    topic: str
    is_active: bool
    created_at: int

    @classmethod
    def from_row(cls, row: aiosqlite.Row) -> Subscription:
        return cls(
            id=row["id"],
            topic=row["topic"],
            is_active=bool(row["is_active"]),
            created_at=row["created_at"],
        )


class Database:
    """Owns the aiosqlite connection shared by both stores."""

    def __init__(self, db_path: str):
        self._db_path = db_path
        self._db: aiosqlite.Connection | None = None

    async def open(self) -> None:
        if self._db_path != ":memory:":
            os.makedirs(os.path.dirname(self._db_path) or ".", exist_ok=True)
        self._db = await aiosqlite.connect(self._db_path)
        self._db.row_factory = aiosqlite.Row
        await self._db.execute("PRAGMA foreign_keys = ON")
        await self._db.executescript(_SCHEMA)
        await self._db.commit()

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    @property
    def conn(self) -> aiosqlite.Connection:
        if self._db is None:
            raise PersistenceError("database is not open")
        return self._db


class SubscriptionStore:
    """Topic subscriptions. The session manager only reads the active subset."""

    def __init__(self, db: Database):
        self._db = db

    async def list(self) -> list[Subscription]:
        return await self._select(
            "SELECT * FROM subscriptions ORDER BY created_at DESC, id DESC"
        )

    async def list_active(self) -> list[Subscription]:
        return await self._select(
            "SELECT * FROM subscriptions WHERE is_active = 1 ORDER BY created_at DESC, id DESC"
        )

    async def get_by_id(self, subscription_id: int) -> Subscription | None:
        rows = await self._select(
            "SELECT * FROM subscriptions WHERE id = ?", (subscription_id,)
        )
        return rows[0] if rows else None

    async def get_by_topic(self, topic: str) -> Subscription | None:
        rows = await self._select(
            "SELECT * FROM subscriptions WHERE topic = ?", (topic,)
        )
        return rows[0] if rows else None

    async def insert(self, topic: str, is_active: bool = True) -> int:
        """Create a subscription and return its id. Raises SubscriptionExistsError on duplicates."""
        if await self.get_by_topic(topic) is not None:
            log.warning("subscriptions.already_exists", topic=topic)
            raise SubscriptionExistsError(topic)

        db = self._db.conn
        now = int(time.time() * 1000)
        try:
            cursor = await db.execute(
                "INSERT INTO subscriptions (topic, is_active, created_at) VALUES (?, ?, ?)",
                (topic, int(is_active), now),
            )
            await db.commit()
        except aiosqlite.IntegrityError as exc:
            await db.rollback()
            raise SubscriptionExistsError(topic) from exc
        except aiosqlite.Error as exc:
            await db.rollback()
            raise PersistenceError(f"failed to add subscription '{topic}': {exc}") from exc

        subscription_id = cursor.lastrowid
        log.info("subscriptions.added", topic=topic, id=subscription_id)
        return subscription_id

    async def set_active(self, subscription_id: int, is_active: bool) -> None:
        await self._write(
            "UPDATE subscriptions SET is_active = ? WHERE id = ?",
            (int(is_active), subscription_id),
        )
        log.info("subscriptions.toggled", id=subscription_id, active=is_active)

    async def delete(self, subscription: Subscription | int) -> None:
        """Delete a subscription; its stored messages go with it."""
        subscription_id = subscription.id if isinstance(subscription, Subscription) else subscription
        await self._write("DELETE FROM subscriptions WHERE id = ?", (subscription_id,))
        log.info("subscriptions.deleted", id=subscription_id)

    async def count(self) -> int:
        try:
            cursor = await self._db.conn.execute("SELECT COUNT(*) FROM subscriptions")
            row = await cursor.fetchone()
        except aiosqlite.Error as exc:
            raise PersistenceError(str(exc)) from exc
        return row[0]

    async def _select(self, sql: str, params: Sequence = ()) -> list[Subscription]:
        try:
            cursor = await self._db.conn.execute(sql, params)
            rows = await cursor.fetchall()
        except aiosqlite.Error as exc:
            raise PersistenceError(str(exc)) from exc
        return [Subscription.from_row(r) for r in rows]

    async def _write(self, sql: str, params: Sequence) -> None:
        db = self._db.conn
        try:
            await db.execute(sql, params)
            await db.commit()
        except aiosqlite.Error as exc:
            await db.rollback()
            raise PersistenceError(str(exc)) from exc


class MessageStore:
    """Durable per-topic ring buffer of received messages."""

    def __init__(self, db: Database, per_topic: int = MESSAGES_PER_TOPIC):
        self._db = db
        self._per_topic = per_topic

    async def insert_with_cleanup(self, message: NtfyMessage) -> None:
        """Upsert by id, then keep only the newest messages for the topic."""
        db = self._db.conn
        tags = json.dumps(list(message.tags)) if message.tags is not None else None
        try:
            await db.execute(
                """INSERT OR REPLACE INTO messages
                   (id, topic, time, event, message, title, priority, tags)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    message.id, message.topic, message.time, message.event,
                    message.message, message.title, message.priority, tags,
                ),
            )
            await db.execute(
                """DELETE FROM messages
                   WHERE topic = ?
                   AND id NOT IN (
                       SELECT id FROM messages
                       WHERE topic = ?
                       ORDER BY time DESC, rowid DESC
                       LIMIT ?
                   )""",
                (message.topic, message.topic, self._per_topic),
            )
            await db.commit()
        except (aiosqlite.Error, OverflowError, ValueError) as exc:
            await db.rollback()
            raise PersistenceError(
                f"failed to store message {message.id} for topic '{message.topic}': {exc}"
            ) from exc

    async def by_topic(self, topic: str) -> AsyncIterator[NtfyMessage]:
        """Newest first."""
        rows = await self._select(
            "SELECT * FROM messages WHERE topic = ? ORDER BY time DESC, rowid DESC LIMIT ?",
            (topic, self._per_topic),
        )
        for row in rows:
            yield NtfyMessage.from_row(row)

    async def by_topics(self, topics: Sequence[str]) -> list[NtfyMessage]:
        if not topics:
            return []
        placeholders = ",".join("?" for _ in topics)
        rows = await self._select(
            f"SELECT * FROM messages WHERE topic IN ({placeholders}) ORDER BY time DESC, rowid DESC",
            tuple(topics),
        )
        return [NtfyMessage.from_row(r) for r in rows]

    async def all(self) -> list[NtfyMessage]:
        rows = await self._select("SELECT * FROM messages ORDER BY time DESC, rowid DESC")
        return [NtfyMessage.from_row(r) for r in rows]

    async def count(self, topic: str) -> int:
        rows = await self._select("SELECT COUNT(*) FROM messages WHERE topic = ?", (topic,))
        return rows[0][0]

    async def delete_by_topic(self, topic: str) -> None:
        await self._write("DELETE FROM messages WHERE topic = ?", (topic,))

    async def delete_all(self) -> None:
        await self._write("DELETE FROM messages", ())

    async def _write(self, sql: str, params: Sequence) -> None:
        db = self._db.conn
        try:
            await db.execute(sql, params)
            await db.commit()
        except aiosqlite.Error as exc:
            await db.rollback()
            raise PersistenceError(str(exc)) from exc

    async def _select(self, sql: str, params: Sequence = ()) -> list[aiosqlite.Row]:
        try:
            cursor = await self._db.conn.execute(sql, params)
            return list(await cursor.fetchall())
        except aiosqlite.Error as exc:
            raise PersistenceError(str(exc)) from exc
