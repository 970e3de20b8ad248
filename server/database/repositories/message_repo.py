"""Message repository: change-feed and point queries against the read-only store."""
from typing import Dict, List, Optional, Sequence
import logging

import aiosqlite

from core.archive_text import get_body_text
from core.reactions import aggregate_reactions, classify_kind
from database.client import StoreConnection
from models.message import Attachment, Message, Reaction, ScheduleState
from utils.timestamps import apple_to_unix_ms, optional_ms, unix_ms_to_apple

logger = logging.getLogger(__name__)

SCHEDULED_SEND_TYPE = 2
_SCHEDULE_STATES = {2: ScheduleState.PENDING, 3: ScheduleState.CANCELED}

MESSAGE_COLUMNS = """
    m.ROWID AS seq,
    m.guid,
    m.text,
    m.attributedBody AS attributed_body,
    m.handle_id,
    m.service,
    m.is_from_me,
    m.date,
    m.date_read,
    m.date_delivered,
    COALESCE(m.date_retracted, 0) AS date_retracted,
    COALESCE(m.date_edited, 0) AS date_edited,
    m.is_sent,
    m.cache_has_attachments,
    m.associated_message_type,
    m.associated_message_guid,
    m.associated_message_emoji,
    m.thread_originator_guid,
    m.thread_originator_part,
    m.item_type,
    COALESCE(m.schedule_type, 0) AS schedule_type,
    COALESCE(m.schedule_state, 0) AS schedule_state,
    m.balloon_bundle_id,
    h.id AS handle_identifier
"""

# Hide bookkeeping rows (item_type set but neither a group action nor a rename)
VISIBLE_ROW_FILTER = "NOT (m.item_type != 0 AND m.group_action_type = 0 AND m.group_title IS NULL)"


def _schedule_state(schedule_type: int, schedule_state: int) -> ScheduleState:
    if schedule_type != SCHEDULED_SEND_TYPE:
        return ScheduleState.NONE
    return _SCHEDULE_STATES.get(schedule_state, ScheduleState.DELIVERED)


def row_to_message(row: aiosqlite.Row, chat_id: int = 0, chat_guid: Optional[str] = None) -> Message:
    """Map a store row to a Message, resolving body text and synthetic retraction."""
    keys = row.keys()
    if "chat_id" in keys and row["chat_id"] is not None:
        chat_id = row["chat_id"]
    if "chat_guid" in keys and row["chat_guid"] is not None:
        chat_guid = row["chat_guid"]

    body = get_body_text(row["text"], row["attributed_body"])
    associated_type = row["associated_message_type"] or 0
    is_from_me = row["is_from_me"] == 1
    date_retracted = row["date_retracted"] or 0
    date_edited = row["date_edited"] or 0

    # Some unsends only stamp the edit date and blank the body.
    synthetic_retraction = (
        date_retracted == 0
        and date_edited > 0
        and associated_type == 0
        and is_from_me
        and row["service"] == "iMessage"
        and not body.strip()
    )
    if synthetic_retraction:
        date_retracted, date_edited = date_edited, 0

    schedule_state = _schedule_state(row["schedule_type"], row["schedule_state"])
    created_at = apple_to_unix_ms(row["date"])

    return Message(
        guid=row["guid"],
        seq=row["seq"],
        chat_id=chat_id,
        chat_guid=chat_guid,
        handle_id=row["handle_id"] or 0,
        sender_id=None if is_from_me else row["handle_identifier"],
        is_from_me=is_from_me,
        service=row["service"] or "",
        text=row["text"],
        body=body,
        created_at=created_at,
        read_at=optional_ms(row["date_read"]),
        delivered_at=optional_ms(row["date_delivered"]),
        edited_at=optional_ms(date_edited),
        retracted_at=optional_ms(date_retracted),
        is_sent=row["is_sent"] == 1,
        kind=classify_kind(associated_type, row["item_type"] or 0),
        associated_type=associated_type,
        reaction_target_ref=row["associated_message_guid"],
        reaction_emoji=row["associated_message_emoji"],
        thread_originator_guid=row["thread_originator_guid"],
        thread_originator_part=row["thread_originator_part"],
        schedule_state=schedule_state,
        schedule_at=created_at if schedule_state != ScheduleState.NONE else None,
        has_attachments=row["cache_has_attachments"] == 1,
        app_bundle_id=row["balloon_bundle_id"],
    )


def _placeholders(values: Sequence) -> str:
    return ",".join("?" for _ in values)


class MessageRepository:
    """Read-only message queries. Every method re-reads the store."""

    def __init__(self, store: StoreConnection):
        self.store = store

    async def rows_since(self, seq: int) -> List[Message]:
        """All rows with sequence > seq, ascending."""
        try:
            rows = await self.store.fetch_all(
                f"""
                SELECT {MESSAGE_COLUMNS},
                    cmj.chat_id AS chat_id,
                    c.guid AS chat_guid
                FROM message m
                JOIN chat_message_join cmj ON m.ROWID = cmj.message_id
                JOIN chat c ON c.ROWID = cmj.chat_id
                LEFT JOIN handle h ON m.handle_id = h.ROWID
                WHERE m.ROWID > ?
                ORDER BY m.ROWID ASC
                """,
                (seq,),
            )
            return [row_to_message(row) for row in rows]
        except Exception as e:
            logger.error(f"Error reading rows since {seq}: {e}")
            raise

    async def max_seq(self) -> int:
        row = await self.store.fetch_one("SELECT MAX(ROWID) AS max_id FROM message")
        return (row["max_id"] if row else None) or 0

    async def read_state_snapshot(self) -> Dict[int, int]:
        """Map chat id -> last-read marker."""
        rows = await self.store.fetch_all(
            "SELECT ROWID AS chat_id, COALESCE(last_read_message_timestamp, 0) AS marker FROM chat"
        )
        return {row["chat_id"]: row["marker"] for row in rows}

    async def get_message_by_guid(self, guid: str) -> Optional[Message]:
        row = await self.store.fetch_one(
            f"""
            SELECT {MESSAGE_COLUMNS},
                cmj.chat_id AS chat_id,
                c.guid AS chat_guid
            FROM message m
            LEFT JOIN chat_message_join cmj ON m.ROWID = cmj.message_id
            LEFT JOIN chat c ON c.ROWID = cmj.chat_id
            LEFT JOIN handle h ON m.handle_id = h.ROWID
            WHERE m.guid = ?
            LIMIT 1
            """,
            (guid,),
        )
        return row_to_message(row) if row else None

    async def get_messages_by_chats(
        self, chat_ids: List[int], limit: int = 50, offset: int = 0
    ) -> List[Message]:
        """Page of visible normal messages for one or more chats, oldest first."""
        if not chat_ids:
            return []
        try:
            rows = await self.store.fetch_all(
                f"""
                SELECT {MESSAGE_COLUMNS},
                    cmj.chat_id AS chat_id,
                    c.guid AS chat_guid
                FROM message m
                JOIN chat_message_join cmj ON m.ROWID = cmj.message_id
                JOIN chat c ON c.ROWID = cmj.chat_id
                LEFT JOIN handle h ON m.handle_id = h.ROWID
                WHERE cmj.chat_id IN ({_placeholders(chat_ids)})
                    AND m.associated_message_type = 0
                    AND {VISIBLE_ROW_FILTER}
                ORDER BY m.date DESC
                LIMIT ? OFFSET ?
                """,
                (*chat_ids, limit, offset),
            )
            messages = [row_to_message(row) for row in rows]
            messages.reverse()
            return messages
        except Exception as e:
            logger.error(f"Error fetching messages for chats {chat_ids}: {e}")
            raise

    async def reaction_rows_by_chats(self, chat_ids: List[int]) -> List[Message]:
        """Reaction add/remove rows for the given chats in arrival order."""
        if not chat_ids:
            return []
        rows = await self.store.fetch_all(
            f"""
            SELECT {MESSAGE_COLUMNS},
                cmj.chat_id AS chat_id
            FROM message m
            JOIN chat_message_join cmj ON m.ROWID = cmj.message_id
            LEFT JOIN handle h ON m.handle_id = h.ROWID
            WHERE cmj.chat_id IN ({_placeholders(chat_ids)})
                AND m.associated_message_type BETWEEN 2000 AND 3006
            ORDER BY m.ROWID ASC
            """,
            tuple(chat_ids),
        )
        return [row_to_message(row) for row in rows]

    async def reactions_by_chats(self, chat_ids: List[int]) -> Dict[str, List[Reaction]]:
        return aggregate_reactions(await self.reaction_rows_by_chats(chat_ids))

    async def reactions_for_message(self, guid: str) -> List[Reaction]:
        """Active reactions on one target message."""
        rows = await self.store.fetch_all(
            f"""
            SELECT {MESSAGE_COLUMNS}
            FROM message m
            LEFT JOIN handle h ON m.handle_id = h.ROWID
            WHERE m.associated_message_type BETWEEN 2000 AND 3006
                AND (m.associated_message_guid = ? OR m.associated_message_guid LIKE ?)
            ORDER BY m.ROWID ASC
            """,
            (f"bp:{guid}", f"p:%/{guid}"),
        )
        return aggregate_reactions(row_to_message(row) for row in rows).get(guid, [])

    async def attachments_for_message(self, seq: int) -> List[Attachment]:
        rows = await self.store.fetch_all(
            """
            SELECT
                a.ROWID AS id,
                a.guid,
                a.filename,
                a.mime_type,
                a.uti,
                a.transfer_name,
                COALESCE(a.total_bytes, 0) AS total_bytes,
                a.is_outgoing,
                a.is_sticker
            FROM attachment a
            JOIN message_attachment_join maj ON a.ROWID = maj.attachment_id
            WHERE maj.message_id = ?
                AND COALESCE(a.hide_attachment, 0) = 0
            ORDER BY a.ROWID ASC
            """,
            (seq,),
        )
        return [
            Attachment(
                id=row["id"],
                guid=row["guid"],
                filename=row["filename"],
                mime_type=row["mime_type"],
                uti=row["uti"],
                transfer_name=row["transfer_name"],
                total_bytes=row["total_bytes"],
                is_outgoing=row["is_outgoing"] == 1,
                is_sticker=row["is_sticker"] == 1,
            )
            for row in rows
        ]

    async def replies_to(self, originator_guid: str, after_seq: int) -> List[Message]:
        """Self-authored rows newer than after_seq threaded under originator_guid."""
        rows = await self.store.fetch_all(
            f"""
            SELECT {MESSAGE_COLUMNS}
            FROM message m
            LEFT JOIN handle h ON m.handle_id = h.ROWID
            WHERE m.ROWID > ?
                AND m.is_from_me = 1
                AND m.thread_originator_guid = ?
            ORDER BY m.ROWID ASC
            """,
            (after_seq, originator_guid),
        )
        return [row_to_message(row) for row in rows]

    async def recent_own_messages(self, since_ms: int) -> List[Message]:
        """Self-authored normal rows created at or after since_ms."""
        since_apple = max(0, unix_ms_to_apple(since_ms))
        rows = await self.store.fetch_all(
            f"""
            SELECT {MESSAGE_COLUMNS}
            FROM message m
            LEFT JOIN handle h ON m.handle_id = h.ROWID
            WHERE m.is_from_me = 1
                AND m.associated_message_type = 0
                AND m.date >= ?
            ORDER BY m.date DESC
            """,
            (since_apple,),
        )
        return [row_to_message(row) for row in rows]
