"""Chat repository: conversation records, participants and unread counts."""
from typing import Dict, List, Optional
import logging

import aiosqlite

from core.archive_text import get_body_text
from database.client import StoreConnection
from database.repositories.message_repo import VISIBLE_ROW_FILTER
from models.chat import Chat, Participant
from models.message import Message
from utils.identifiers import canonical_identifier
from utils.timestamps import apple_to_unix_ms

logger = logging.getLogger(__name__)

UNREAD_COUNT_SQL = f"""
    (
        SELECT COUNT(*)
        FROM chat_message_join cmj_unread
        JOIN message m ON m.ROWID = cmj_unread.message_id
        WHERE cmj_unread.chat_id = c.ROWID
            AND m.is_from_me = 0
            AND m.associated_message_type = 0
            AND {VISIBLE_ROW_FILTER}
            AND m.date > COALESCE(c.last_read_message_timestamp, 0)
    ) AS unread_count
"""

# Pending "send later" rows never count as a chat's last message.
_LAST_MESSAGE_SQL = """
    SELECT cmj3.message_id
    FROM chat_message_join cmj3
    JOIN message m3 ON m3.ROWID = cmj3.message_id
    WHERE cmj3.chat_id = c.ROWID
        AND m3.associated_message_type = 0
        AND m3.item_type = 0
        AND COALESCE(m3.schedule_state, 0) != 2
    ORDER BY m3.date DESC
    LIMIT 1
"""

CHAT_SELECT = f"""
    SELECT
        c.ROWID AS id,
        c.guid,
        c.chat_identifier,
        c.display_name,
        c.service_name,
        c.style,
        c.is_archived,
        {UNREAD_COUNT_SQL},
        lm.ROWID AS last_seq,
        lm.guid AS last_guid,
        lm.text AS last_text,
        lm.attributedBody AS last_attributed_body,
        lm.date AS last_date,
        lm.is_from_me AS last_is_from_me,
        lm.service AS last_service
    FROM chat c
    LEFT JOIN message lm ON lm.ROWID = ({_LAST_MESSAGE_SQL})
"""


def _row_to_chat(row: aiosqlite.Row) -> Chat:
    last_message = None
    if row["last_seq"] is not None:
        last_message = Message(
            guid=row["last_guid"],
            seq=row["last_seq"],
            chat_id=row["id"],
            chat_guid=row["guid"],
            is_from_me=row["last_is_from_me"] == 1,
            service=row["last_service"] or "",
            text=row["last_text"],
            body=get_body_text(row["last_text"], row["last_attributed_body"]),
            created_at=apple_to_unix_ms(row["last_date"]),
        )

    return Chat(
        id=row["id"],
        guid=row["guid"],
        chat_identifier=row["chat_identifier"] or "",
        display_name=row["display_name"] or None,
        service_name=row["service_name"],
        style=row["style"] or 0,
        is_archived=row["is_archived"] == 1,
        unread_count=max(0, row["unread_count"] or 0),
        last_message=last_message,
    )


class ChatRepository:
    """Read-only chat queries."""

    def __init__(self, store: StoreConnection):
        self.store = store

    async def list_chats(self) -> List[Chat]:
        """Chats that have at least one visible message, newest activity first, with participants."""
        try:
            rows = await self.store.fetch_all(
                f"{CHAT_SELECT} WHERE lm.ROWID IS NOT NULL ORDER BY lm.date DESC"
            )
            chats = [_row_to_chat(row) for row in rows]
            participants = await self.participants_by_chat([chat.id for chat in chats])
            for chat in chats:
                chat.participants = participants.get(chat.id, [])
            return chats
        except Exception as e:
            logger.error(f"Error listing chats: {e}", exc_info=True)
            raise

    async def get_chat(self, chat_id: int) -> Optional[Chat]:
        row = await self.store.fetch_one(f"{CHAT_SELECT} WHERE c.ROWID = ?", (chat_id,))
        if row is None:
            return None
        chat = _row_to_chat(row)
        chat.participants = await self.get_participants(chat_id)
        return chat

    async def get_chat_by_guid(self, guid: str) -> Optional[Chat]:
        row = await self.store.fetch_one("SELECT ROWID AS id FROM chat WHERE guid = ?", (guid,))
        return await self.get_chat(row["id"]) if row else None

    async def get_participants(self, chat_id: int) -> List[Participant]:
        return (await self.participants_by_chat([chat_id])).get(chat_id, [])

    async def participants_by_chat(self, chat_ids: List[int]) -> Dict[int, List[Participant]]:
        if not chat_ids:
            return {}
        placeholders = ",".join("?" for _ in chat_ids)
        rows = await self.store.fetch_all(
            f"""
            SELECT chj.chat_id, h.ROWID AS handle_id, h.id AS identifier, h.service
            FROM handle h
            JOIN chat_handle_join chj ON h.ROWID = chj.handle_id
            WHERE chj.chat_id IN ({placeholders})
            ORDER BY h.ROWID ASC
            """,
            tuple(chat_ids),
        )
        result: Dict[int, List[Participant]] = {}
        for row in rows:
            result.setdefault(row["chat_id"], []).append(
                Participant(
                    handle_id=row["handle_id"],
                    identifier=row["identifier"],
                    display_name=row["identifier"],
                    service=row["service"],
                )
            )
        return result

    async def unread_counts(self) -> Dict[int, int]:
        rows = await self.store.fetch_all(f"SELECT c.ROWID AS id, {UNREAD_COUNT_SQL} FROM chat c")
        return {row["id"]: max(0, row["unread_count"] or 0) for row in rows}

    async def read_marker(self, chat_id: int) -> int:
        row = await self.store.fetch_one(
            "SELECT COALESCE(last_read_message_timestamp, 0) AS marker FROM chat WHERE ROWID = ?",
            (chat_id,),
        )
        return row["marker"] if row else 0

    async def find_direct_chat(self, identifier: str) -> Optional[Chat]:
        """Most recent direct chat whose sole handle names the same contact."""
        wanted = canonical_identifier(identifier)
        if not wanted:
            return None
        rows = await self.store.fetch_all(
            """
            SELECT c.ROWID AS id, h.id AS identifier
            FROM chat c
            JOIN chat_handle_join chj ON chj.chat_id = c.ROWID
            JOIN handle h ON h.ROWID = chj.handle_id
            WHERE c.style = 45
            ORDER BY c.ROWID DESC
            """
        )
        for row in rows:
            if canonical_identifier(row["identifier"]) == wanted:
                return await self.get_chat(row["id"])
        return None
