"""Local SQLite cache for chats, messages and participants"""
from pathlib import Path
from typing import List, Optional
import json
import logging

import aiosqlite

from sync_client.models import ClientChat, ClientMessage, ClientParticipant

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS chats (
    id INTEGER PRIMARY KEY,
    last_message_at INTEGER NOT NULL DEFAULT 0,
    payload TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS messages (
    guid TEXT PRIMARY KEY,
    chat_id INTEGER NOT NULL,
    created_at INTEGER NOT NULL,
    payload TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_messages_chat ON messages(chat_id, created_at);
CREATE TABLE IF NOT EXISTS participants (
    chat_id INTEGER PRIMARY KEY,
    payload TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS kv (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""


class LocalCache:
    """Upsert-only cache; rows are keyed by server ids so rewrites are idempotent."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._conn: Optional[aiosqlite.Connection] = None

    async def initialize(self) -> None:
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = await aiosqlite.connect(self.db_path)
        await self._conn.executescript(SCHEMA)
        await self._conn.commit()
        logger.info(f"Local cache ready at {self.db_path}")

    @property
    def conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError("Local cache not initialized. Call initialize() first.")
        return self._conn

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    async def cache_chats(self, chats: List[ClientChat]) -> None:
        await self.conn.executemany(
            "INSERT OR REPLACE INTO chats (id, last_message_at, payload) VALUES (?, ?, ?)",
            [(c.id, c.last_message_at, c.model_dump_json()) for c in chats],
        )
        await self.conn.commit()

    async def get_cached_chats(self) -> List[ClientChat]:
        async with self.conn.execute("SELECT payload FROM chats ORDER BY last_message_at DESC") as cursor:
            rows = await cursor.fetchall()
        return [ClientChat.model_validate_json(row[0]) for row in rows]

    async def cache_messages(self, chat_id: int, messages: List[ClientMessage]) -> None:
        """Store confirmed messages under the logical chat id. Placeholders are skipped."""
        confirmed = [m for m in messages if not m.is_optimistic]
        if not confirmed:
            return
        await self.conn.executemany(
            "INSERT OR REPLACE INTO messages (guid, chat_id, created_at, payload) VALUES (?, ?, ?, ?)",
            [(m.guid, chat_id, m.created_at, m.model_dump_json()) for m in confirmed],
        )
        await self.conn.commit()

    async def get_cached_messages(self, chat_id: int, limit: int = 100) -> List[ClientMessage]:
        async with self.conn.execute(
            "SELECT payload FROM messages WHERE chat_id = ? ORDER BY created_at DESC LIMIT ?",
            (chat_id, limit),
        ) as cursor:
            rows = await cursor.fetchall()
        return [ClientMessage.model_validate_json(row[0]) for row in reversed(rows)]

    async def delete_message(self, guid: str) -> None:
        await self.conn.execute("DELETE FROM messages WHERE guid = ?", (guid,))
        await self.conn.commit()

    async def cache_participants(self, chat_id: int, participants: List[ClientParticipant]) -> None:
        payload = json.dumps([p.model_dump() for p in participants])
        await self.conn.execute(
            "INSERT OR REPLACE INTO participants (chat_id, payload) VALUES (?, ?)",
            (chat_id, payload),
        )
        await self.conn.commit()

    async def get_cached_participants(self, chat_id: int) -> List[ClientParticipant]:
        async with self.conn.execute(
            "SELECT payload FROM participants WHERE chat_id = ?", (chat_id,)
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return []
        return [ClientParticipant.model_validate(p) for p in json.loads(row[0])]

    async def get_value(self, key: str) -> Optional[str]:
        async with self.conn.execute("SELECT value FROM kv WHERE key = ?", (key,)) as cursor:
            row = await cursor.fetchone()
        return row[0] if row else None

    async def set_value(self, key: str, value: str) -> None:
        await self.conn.execute("INSERT OR REPLACE INTO kv (key, value) VALUES (?, ?)", (key, value))
        await self.conn.commit()
