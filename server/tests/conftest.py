"""Shared test fixtures and configuration."""
import sys
import os
import sqlite3

import pytest
import pytest_asyncio

# Ensure the server package is importable
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Set environment variables BEFORE any application module is imported.
# Paths point nowhere real; fixtures build their own stores.
os.environ.setdefault("CHAT_DB_PATH", "/nonexistent/chat.db")
os.environ.setdefault("CURSOR_PATH", "/nonexistent/sync_cursor.json")
os.environ.setdefault("VERIFY_TIMEOUT_MS", "300")
os.environ.setdefault("VERIFY_POLL_MS", "10")
os.environ.setdefault("BRIDGE_POLL_INTERVAL_MS", "10")

from database.client import StoreConnection  # noqa: E402
from utils.timestamps import now_ms, unix_ms_to_apple  # noqa: E402


SCHEMA = """
CREATE TABLE handle (
    ROWID INTEGER PRIMARY KEY AUTOINCREMENT,
    id TEXT NOT NULL,
    service TEXT DEFAULT 'iMessage'
);
CREATE TABLE chat (
    ROWID INTEGER PRIMARY KEY AUTOINCREMENT,
    guid TEXT UNIQUE NOT NULL,
    chat_identifier TEXT,
    display_name TEXT,
    service_name TEXT DEFAULT 'iMessage',
    style INTEGER DEFAULT 45,
    is_archived INTEGER DEFAULT 0,
    last_read_message_timestamp INTEGER DEFAULT 0
);
CREATE TABLE message (
    ROWID INTEGER PRIMARY KEY AUTOINCREMENT,
    guid TEXT UNIQUE NOT NULL,
    text TEXT,
    attributedBody BLOB,
    handle_id INTEGER DEFAULT 0,
    service TEXT DEFAULT 'iMessage',
    is_from_me INTEGER DEFAULT 0,
    date INTEGER DEFAULT 0,
    date_read INTEGER DEFAULT 0,
    date_delivered INTEGER DEFAULT 0,
    date_retracted INTEGER,
    date_edited INTEGER,
    is_sent INTEGER DEFAULT 0,
    cache_has_attachments INTEGER DEFAULT 0,
    associated_message_type INTEGER DEFAULT 0,
    associated_message_guid TEXT,
    associated_message_emoji TEXT,
    thread_originator_guid TEXT,
    thread_originator_part TEXT,
    item_type INTEGER DEFAULT 0,
    group_action_type INTEGER DEFAULT 0,
    group_title TEXT,
    schedule_type INTEGER,
    schedule_state INTEGER,
    balloon_bundle_id TEXT
);
CREATE TABLE chat_message_join (chat_id INTEGER, message_id INTEGER);
CREATE TABLE chat_handle_join (chat_id INTEGER, handle_id INTEGER);
CREATE TABLE attachment (
    ROWID INTEGER PRIMARY KEY AUTOINCREMENT,
    guid TEXT,
    filename TEXT,
    mime_type TEXT,
    uti TEXT,
    transfer_name TEXT,
    total_bytes INTEGER,
    is_outgoing INTEGER DEFAULT 0,
    is_sticker INTEGER DEFAULT 0,
    hide_attachment INTEGER DEFAULT 0
);
CREATE TABLE message_attachment_join (message_id INTEGER, attachment_id INTEGER);
"""


class StoreWriter:
    """Writes fixture rows the way the owning process would."""

    def __init__(self, path: str):
        self.path = path
        self._counter = 0
        with self._connect() as conn:
            conn.executescript(SCHEMA)

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.path)

    def _execute(self, sql: str, params: tuple = ()) -> int:
        with self._connect() as conn:
            return conn.execute(sql, params).lastrowid

    def add_handle(self, identifier: str, service: str = "iMessage") -> int:
        return self._execute("INSERT INTO handle (id, service) VALUES (?, ?)", (identifier, service))

    def add_chat(self, guid: str, handles=(), style: int = 45, display_name=None, read_marker: int = 0) -> int:
        chat_id = self._execute(
            "INSERT INTO chat (guid, chat_identifier, display_name, style, last_read_message_timestamp) "
            "VALUES (?, ?, ?, ?, ?)",
            (guid, guid.split(";")[-1], display_name, style, read_marker),
        )
        for handle_id in handles:
            self._execute("INSERT INTO chat_handle_join (chat_id, handle_id) VALUES (?, ?)", (chat_id, handle_id))
        return chat_id

    def add_message(self, chat_id: int, text="hello", created_ms=None, **columns) -> int:
        self._counter += 1
        values = {
            "guid": f"MSG-{self._counter}",
            "text": text,
            "date": unix_ms_to_apple(created_ms or now_ms()),
        }
        values.update(columns)
        names = ", ".join(values)
        placeholders = ", ".join("?" for _ in values)
        seq = self._execute(f"INSERT INTO message ({names}) VALUES ({placeholders})", tuple(values.values()))
        self._execute("INSERT INTO chat_message_join (chat_id, message_id) VALUES (?, ?)", (chat_id, seq))
        return seq

    def add_attachment(self, message_seq: int, filename: str, hidden: bool = False) -> int:
        attachment_id = self._execute(
            "INSERT INTO attachment (guid, filename, mime_type, total_bytes, hide_attachment) VALUES (?, ?, ?, ?, ?)",
            (f"ATT-{filename}", filename, "image/png", 1024, int(hidden)),
        )
        self._execute(
            "INSERT INTO message_attachment_join (message_id, attachment_id) VALUES (?, ?)",
            (message_seq, attachment_id),
        )
        return attachment_id

    def update(self, table: str, rowid: int, **columns) -> None:
        assignments = ", ".join(f"{name} = ?" for name in columns)
        self._execute(f"UPDATE {table} SET {assignments} WHERE ROWID = ?", (*columns.values(), rowid))


@pytest.fixture
def store_writer(tmp_path):
    return StoreWriter(str(tmp_path / "chat.db"))


@pytest_asyncio.fixture
async def store(store_writer):
    connection = StoreConnection(store_writer.path)
    await connection.initialize()
    yield connection
    await connection.close()
