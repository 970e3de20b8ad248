"""HTTP client for the sync server"""
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, List, Optional, Tuple
import logging

import httpx

from sync_client import config
from sync_client.models import ClientChat, ClientMessage, ClientParticipant

logger = logging.getLogger(__name__)


class SyncApi:
    """Thin async wrapper over the server's REST and event-stream endpoints."""

    def __init__(self, base_url: Optional[str] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url or config.SYNC_SERVER_URL
        self.client = httpx.AsyncClient(base_url=self.base_url, timeout=15.0, transport=transport)

    async def close(self) -> None:
        await self.client.aclose()

    async def get_chats(self) -> List[ClientChat]:
        response = await self.client.get("/chats")
        response.raise_for_status()
        return [ClientChat.model_validate(chat) for chat in response.json().get("chats", [])]

    async def get_messages(
        self, chat_ids: List[int], limit: int = config.PAGE_SIZE, offset: int = 0
    ) -> Tuple[List[ClientMessage], List[ClientParticipant]]:
        ids = ",".join(str(chat_id) for chat_id in chat_ids)
        response = await self.client.get(f"/messages/{ids}", params={"limit": limit, "offset": offset})
        response.raise_for_status()
        data = response.json()
        messages = [ClientMessage.model_validate(m) for m in data.get("messages", [])]
        participants = [ClientParticipant.model_validate(p) for p in data.get("participants", [])]
        return messages, participants

    async def unread_counts(self) -> Dict[int, int]:
        response = await self.client.get("/unread-counts")
        response.raise_for_status()
        return {int(k): v for k, v in response.json().get("counts", {}).items()}

    async def _post(self, path: str, payload: dict, timeout: float = 30.0) -> dict:
        # Actions wait for the store to confirm the effect, so allow longer than reads
        response = await self.client.post(path, json=payload, timeout=timeout)
        response.raise_for_status()
        return response.json()

    async def send(self, text: str, chat_guid: Optional[str] = None, handle: Optional[str] = None) -> dict:
        return await self._post("/send", {"text": text, "chat_guid": chat_guid, "handle": handle})

    async def react(self, chat_guid: str, message_guid: str, reaction_kind: int, part_index: int = 0) -> dict:
        return await self._post("/react", {
            "chat_guid": chat_guid,
            "message_guid": message_guid,
            "reaction_kind": reaction_kind,
            "part_index": part_index,
        })

    async def unsend(self, chat_guid: str, message_guid: str) -> dict:
        return await self._post("/unsend", {"chat_guid": chat_guid, "message_guid": message_guid})

    async def edit(self, chat_guid: str, message_guid: str, text: str, part_index: int = 0) -> dict:
        return await self._post("/edit", {
            "chat_guid": chat_guid,
            "message_guid": message_guid,
            "text": text,
            "part_index": part_index,
        })

    async def mark_read(self, chat_guid: str) -> dict:
        return await self._post("/mark-read", {"chat_guid": chat_guid})

    @asynccontextmanager
    async def stream_events(self) -> AsyncIterator[httpx.Response]:
        """Open the long-lived event stream. No read timeout."""
        timeout = httpx.Timeout(10.0, read=None)
        async with self.client.stream("GET", "/events", timeout=timeout) as response:
            response.raise_for_status()
            yield response
