"""Read-only connection to the authoritative message store"""
from pathlib import Path
from typing import Optional
import aiosqlite
from config.settings import settings
import logging

logger = logging.getLogger(__name__)


class StoreConnection:
    """
    Async SQLite connection opened in read-only URI mode.

    The store is owned by another process; this side never writes to it.
    """

    def __init__(self, db_path: str):
        self._db_path = db_path
        self._conn: Optional[aiosqlite.Connection] = None

    @property
    def path(self) -> str:
        return self._db_path

    async def initialize(self) -> None:
        """Open the connection."""
        if not Path(self._db_path).exists():
            raise FileNotFoundError(f"Message store not found at {self._db_path}")

        uri = f"file:{Path(self._db_path).as_posix()}?mode=ro"
        self._conn = await aiosqlite.connect(uri, uri=True)
        self._conn.row_factory = aiosqlite.Row
        logger.info(f"✓ Message store opened read-only: {self._db_path}")

    @property
    def conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError("Store not initialized. Call initialize() first.")
        return self._conn

    async def fetch_all(self, sql: str, params: tuple = ()) -> list[aiosqlite.Row]:
        async with self.conn.execute(sql, params) as cursor:
            return list(await cursor.fetchall())

    async def fetch_one(self, sql: str, params: tuple = ()) -> Optional[aiosqlite.Row]:
        async with self.conn.execute(sql, params) as cursor:
            return await cursor.fetchone()

    async def close(self) -> None:
        if self._conn:
            await self._conn.close()
            self._conn = None
            logger.info("Message store closed")


_store: Optional[StoreConnection] = None


async def init_store(db_path: Optional[str] = None) -> StoreConnection:
    """Initialize the shared store connection"""
    global _store

    if _store is None:
        logger.info("Initializing message store connection...")
        store = StoreConnection(db_path or settings.CHAT_DB_PATH)
        await store.initialize()
        _store = store

    return _store


def get_store() -> StoreConnection:
    """Get the shared store connection"""
    if _store is None:
        raise RuntimeError("Store not initialized. Call init_store() first.")
    return _store


async def close_store() -> None:
    global _store
    if _store is not None:
        await _store.close()
        _store = None
