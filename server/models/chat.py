"""Chat data models"""
from enum import Enum
from pydantic import BaseModel, Field
from typing import Optional

from models.message import Message

DIRECT_CHAT_STYLE = 45


class ChatKind(str, Enum):
    DIRECT = "direct"
    GROUP = "group"


class Participant(BaseModel):
    """A chat member handle"""
    handle_id: int
    identifier: str
    display_name: Optional[str] = None
    service: Optional[str] = None


class Chat(BaseModel):
    """Raw conversation record as the store has it"""
    id: int
    guid: str
    chat_identifier: str = ""
    display_name: Optional[str] = None
    service_name: Optional[str] = None
    style: int = 0
    is_archived: bool = False
    participants: list[Participant] = Field(default_factory=list)
    unread_count: int = Field(default=0, ge=0)
    pin_rank: Optional[int] = None  # None = unpinned
    last_message: Optional[Message] = None

    @property
    def kind(self) -> ChatKind:
        if self.style:
            return ChatKind.DIRECT if self.style == DIRECT_CHAT_STYLE else ChatKind.GROUP
        return ChatKind.DIRECT if len(self.participants) <= 1 else ChatKind.GROUP

    @property
    def participant_ids(self) -> list[str]:
        return [p.identifier for p in self.participants]

    @property
    def last_message_at(self) -> int:
        return self.last_message.created_at if self.last_message else 0


class LogicalChat(Chat):
    """One or more raw chats that represent the same contact, merged for display"""
    backing_ids: list[int] = Field(default_factory=list)
    backing_guids: list[str] = Field(default_factory=list)

    @property
    def is_pinned(self) -> bool:
        return self.pin_rank is not None
