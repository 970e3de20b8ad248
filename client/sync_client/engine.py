"""Wires the store to the live connection and runs the client"""
from typing import Any, Optional
import asyncio
import logging

from pydantic import ValidationError

from sync_client import config
from sync_client.api import SyncApi
from sync_client.cache import LocalCache
from sync_client.connection import ConnectionManager
from sync_client.models import IncomingEvent
from sync_client.store import ClientSyncStore

logger = logging.getLogger(__name__)


class SyncEngine:
    def __init__(
        self,
        api: Optional[SyncApi] = None,
        cache: Optional[LocalCache] = None,
        reconnect_delay_s: Optional[float] = None,
    ):
        self.api = api or SyncApi()
        self.cache = cache
        self.store = ClientSyncStore(self.api, cache)
        self.connection = ConnectionManager(self.api, reconnect_delay_s)

        self.connection.on("connected", self._on_connected)
        self.connection.on("new-message", self._on_new_messages)
        self.connection.on("chat-read-state", self._on_read_state)

    async def start(self) -> None:
        if self.cache is not None:
            await self.cache.initialize()
            await self.store.load_cached_chats()
        self.connection.connect()

    async def stop(self) -> None:
        await self.connection.close()
        await self.api.close()
        if self.cache is not None:
            await self.cache.close()

    async def _on_connected(self, _data: Any) -> None:
        # Catch up on anything missed while disconnected
        await self.store.refresh_chat_list()
        if self.store.active_chat_id is not None:
            await self.store.load_chat(self.store.active_chat_id)

    async def _on_new_messages(self, data: Any) -> None:
        try:
            events = [IncomingEvent.model_validate(item) for item in data or []]
        except ValidationError as e:
            logger.warning(f"Ignoring malformed new-message batch: {e}")
            return
        await self.store.apply_incoming(events)

    async def _on_read_state(self, data: Any) -> None:
        chat_ids = (data or {}).get("chat_ids", [])
        await self.store.handle_read_state(chat_ids)


async def run() -> None:
    engine = SyncEngine(cache=LocalCache(config.SYNC_CACHE_PATH))
    await engine.start()
    logger.info(f"Sync client connected to {config.SYNC_SERVER_URL}")
    try:
        while True:
            await asyncio.sleep(3600)
    finally:
        await engine.stop()


def main():
    logging.basicConfig(
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        level=getattr(logging, config.LOG_LEVEL, logging.INFO),
    )
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        logger.info("Sync client stopped")


if __name__ == "__main__":
    main()
