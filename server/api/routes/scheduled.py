"""Scheduled ("send later") message routes"""
from fastapi import APIRouter, HTTPException, Query, status
from typing import Optional
import logging

from api.errors import http_error
from api.schemas.request_schemas import ScheduleEditRequest, ScheduleRequest
from api.schemas.response_schemas import ScheduledListResponse
from core.actions import ActionResult
from core.dependencies import get_actions
from core.errors import SyncError

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("", response_model=ScheduledListResponse)
async def list_scheduled(chat_guid: Optional[str] = Query(None)):
    """Pending scheduled messages for one chat, or for all chats. Empty on bridge failure."""
    return ScheduledListResponse(data=await get_actions().list_scheduled(chat_guid))


@router.post("", response_model=ActionResult, status_code=status.HTTP_201_CREATED)
async def create_scheduled(request: ScheduleRequest):
    try:
        return await get_actions().schedule_message(request.chat_guid, request.text, request.scheduled_at)
    except SyncError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Schedule error: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to schedule message")


@router.put("/{guid}", response_model=ActionResult)
async def edit_scheduled(guid: str, request: ScheduleEditRequest):
    try:
        return await get_actions().edit_scheduled(
            guid, request.chat_guid, text=request.text, scheduled_at=request.scheduled_at
        )
    except SyncError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Scheduled edit error: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to edit scheduled message")


@router.delete("/{guid}", response_model=ActionResult)
async def cancel_scheduled(guid: str, chat_guid: str = Query(...)):
    try:
        return await get_actions().cancel_scheduled(guid, chat_guid)
    except SyncError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Scheduled cancel error: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to cancel scheduled message")
