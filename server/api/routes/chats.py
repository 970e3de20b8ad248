"""Chat list and message history routes"""
from fastapi import APIRouter, HTTPException, Query
from typing import List
import logging

from api.errors import http_error
from api.schemas.response_schemas import ChatListResponse, MessagePageResponse, UnreadCountsResponse
from core.dependencies import get_chat_repo, get_merger, get_message_repo
from core.errors import SyncError, ValidationFailure
from core.merger import merge_participants

logger = logging.getLogger(__name__)
router = APIRouter()


def parse_chat_ids(raw: str) -> List[int]:
    """`12` or `12,40` (all backing ids of a merged chat)."""
    try:
        ids = [int(part) for part in raw.split(",") if part.strip()]
    except ValueError:
        raise ValidationFailure(f"Invalid chat id list: {raw}")
    if not ids:
        raise ValidationFailure("At least one chat id is required")
    return list(dict.fromkeys(ids))


@router.get("/chats", response_model=ChatListResponse)
async def list_chats():
    """Merged chat list, pinned chats first, then by latest activity"""
    try:
        raw_chats = await get_chat_repo().list_chats()
        return ChatListResponse(chats=get_merger().merge(raw_chats))
    except Exception as e:
        logger.error(f"Error listing chats: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to list chats")


@router.get("/messages/{chat_id}", response_model=MessagePageResponse)
async def get_messages(
    chat_id: str,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    """Page of messages (oldest first) with active reactions attached"""
    try:
        chat_ids = parse_chat_ids(chat_id)
        message_repo = get_message_repo()

        messages = await message_repo.get_messages_by_chats(chat_ids, limit, offset)
        reactions = await message_repo.reactions_by_chats(chat_ids)
        for message in messages:
            message.reactions = reactions.get(message.guid, [])

        participants = []
        by_chat = await get_chat_repo().participants_by_chat(chat_ids)
        for chat_participants in by_chat.values():
            participants = merge_participants(participants, chat_participants)

        return MessagePageResponse(
            messages=messages,
            participants=participants,
            has_more=len(messages) == limit,
        )
    except SyncError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Error fetching messages for {chat_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to fetch messages")


@router.get("/unread-counts", response_model=UnreadCountsResponse)
async def unread_counts():
    try:
        return UnreadCountsResponse(counts=await get_chat_repo().unread_counts())
    except Exception as e:
        logger.error(f"Error reading unread counts: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to read unread counts")
