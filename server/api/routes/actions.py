"""Mutating message actions: react, unsend, edit, reply, mark-read, send"""
from fastapi import APIRouter, HTTPException
import logging

from api.errors import http_error
from api.schemas.request_schemas import (
    EditRequest,
    MarkReadRequest,
    ReactRequest,
    ReplyRequest,
    SendRequest,
    UnsendRequest,
)
from api.schemas.response_schemas import EligibilityResponse
from core.actions import ActionResult
from core.dependencies import get_actions
from core.errors import SyncError

logger = logging.getLogger(__name__)
router = APIRouter()


async def _run(label: str, operation) -> ActionResult:
    try:
        return await operation
    except SyncError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"{label} error: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to {label}")


@router.post("/react", response_model=ActionResult)
async def react(request: ReactRequest):
    return await _run("react", get_actions().react(
        request.chat_guid, request.message_guid, request.reaction_kind, request.part_index
    ))


@router.post("/unsend", response_model=ActionResult)
async def unsend(request: UnsendRequest):
    """Undo Send. 409 when the bridge accepted it but no retraction appeared."""
    return await _run("unsend", get_actions().unsend(request.chat_guid, request.message_guid))


@router.post("/edit", response_model=ActionResult)
async def edit(request: EditRequest):
    return await _run("edit", get_actions().edit(
        request.chat_guid, request.message_guid, request.text, request.part_index
    ))


@router.post("/reply", response_model=ActionResult)
async def reply(request: ReplyRequest):
    return await _run("reply", get_actions().reply(
        request.chat_guid, request.message_guid, request.text, request.part_index
    ))


@router.post("/mark-read", response_model=ActionResult)
async def mark_read(request: MarkReadRequest):
    return await _run("mark read", get_actions().mark_read(request.chat_guid))


@router.post("/send", response_model=ActionResult)
async def send(request: SendRequest):
    return await _run("send message", get_actions().send_text(
        request.text, chat_guid=request.chat_guid, handle=request.handle, service=request.service
    ))


@router.get("/message-eligibility", response_model=EligibilityResponse)
async def message_eligibility():
    """Edit/unsend expiry times for recent sent messages"""
    try:
        return EligibilityResponse(data=await get_actions().eligibility())
    except Exception as e:
        logger.warning(f"Eligibility lookup failed: {e}")
        return EligibilityResponse(data={})
