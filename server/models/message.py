"""Message data models"""
from enum import Enum
from pydantic import BaseModel, Field, model_validator
from typing import Optional


class MessageKind(str, Enum):
    """What a row in the message table represents."""
    NORMAL = "normal"
    REACTION_ADD = "reaction-add"
    REACTION_REMOVE = "reaction-remove"
    EDIT_MARKER = "edit-marker"
    SYSTEM = "system"


class ScheduleState(str, Enum):
    NONE = "none"
    PENDING = "pending"
    DELIVERED = "delivered"
    CANCELED = "canceled"


class Attachment(BaseModel):
    """Attachment metadata (the file itself is served elsewhere)"""
    id: int
    guid: str
    filename: Optional[str] = None
    mime_type: Optional[str] = None
    uti: Optional[str] = None
    transfer_name: Optional[str] = None
    total_bytes: int = 0
    is_outgoing: bool = False
    is_sticker: bool = False


class Reaction(BaseModel):
    """An active reaction on a target message (derived, never stored on its own)"""
    message_guid: str  # guid of the reaction-add row that created it
    target_guid: str
    part_index: int = 0
    kind: int  # base "add" kind, e.g. 2001 for a thumbs-up
    actor_id: Optional[str] = None  # None = self
    is_from_me: bool = False
    emoji: str = ""

    @property
    def actor_key(self) -> str:
        return "me" if self.is_from_me else (self.actor_id or "")


class Message(BaseModel):
    """Message model"""
    guid: str
    seq: int = 0  # store sequence number; negative for optimistic placeholders
    chat_id: int = 0
    chat_guid: Optional[str] = None
    handle_id: int = 0
    sender_id: Optional[str] = None  # None = self
    sender_name: Optional[str] = None
    is_from_me: bool = False
    service: str = "iMessage"
    text: Optional[str] = None
    body: str = ""
    created_at: int = 0  # Unix ms
    read_at: Optional[int] = None
    delivered_at: Optional[int] = None
    edited_at: Optional[int] = None
    retracted_at: Optional[int] = None
    is_sent: bool = False
    kind: MessageKind = MessageKind.NORMAL
    associated_type: int = 0
    reaction_target_ref: Optional[str] = None  # e.g. "p:0/<guid>" or "bp:<guid>"
    reaction_emoji: Optional[str] = None
    thread_originator_guid: Optional[str] = None
    thread_originator_part: Optional[str] = None
    schedule_state: ScheduleState = ScheduleState.NONE
    schedule_at: Optional[int] = None
    has_attachments: bool = False
    app_bundle_id: Optional[str] = None  # set for app/plugin balloons
    attachments: list[Attachment] = Field(default_factory=list)
    reactions: list[Reaction] = Field(default_factory=list)
    pending_confirmation: bool = False

    @model_validator(mode="after")
    def _retraction_clears_body(self) -> "Message":
        # A retracted message never carries text.
        if self.retracted_at:
            self.body = ""
            self.text = None
        return self

    @property
    def is_scheduled(self) -> bool:
        return self.schedule_state != ScheduleState.NONE


class NewMessageEvent(BaseModel):
    """Payload item of a `new-message` live event"""
    chat_id: int
    message: Message
