"""API request schemas"""
from pydantic import BaseModel, Field, model_validator
from typing import Literal, Optional


class ReactRequest(BaseModel):
    chat_guid: str
    message_guid: str
    reaction_kind: int = Field(..., ge=2000, le=3006)
    part_index: int = Field(default=0, ge=0)


class UnsendRequest(BaseModel):
    chat_guid: str
    message_guid: str


class EditRequest(BaseModel):
    chat_guid: str
    message_guid: str
    text: str
    part_index: int = Field(default=0, ge=0)


class ReplyRequest(BaseModel):
    chat_guid: str
    message_guid: str
    text: str
    part_index: int = Field(default=0, ge=0)


class MarkReadRequest(BaseModel):
    chat_guid: str


class SendRequest(BaseModel):
    """Send to an existing chat, or start a conversation with a bare handle."""
    text: str
    chat_guid: Optional[str] = None
    handle: Optional[str] = None
    service: Literal["iMessage", "SMS"] = "iMessage"

    @model_validator(mode="after")
    def _one_target(self) -> "SendRequest":
        if not self.chat_guid and not self.handle:
            raise ValueError("chat_guid or handle is required")
        return self


class ScheduleRequest(BaseModel):
    chat_guid: str
    text: str
    scheduled_at: int  # Unix ms


class ScheduleEditRequest(BaseModel):
    chat_guid: str
    text: Optional[str] = None
    scheduled_at: Optional[int] = None
