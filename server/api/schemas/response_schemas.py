"""API response schemas"""
from pydantic import BaseModel
from typing import Dict, List

from core.actions import Eligibility
from models.action import ScheduledMessage
from models.chat import LogicalChat, Participant
from models.message import Message


class ChatListResponse(BaseModel):
    chats: List[LogicalChat]


class MessagePageResponse(BaseModel):
    messages: List[Message]
    participants: List[Participant]
    has_more: bool


class UnreadCountsResponse(BaseModel):
    counts: Dict[int, int]


class EligibilityResponse(BaseModel):
    data: Dict[str, Eligibility]


class ScheduledListResponse(BaseModel):
    data: List[ScheduledMessage]
