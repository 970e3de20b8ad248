"""Client-side shapes of the server's JSON payloads"""
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field


class ClientReaction(BaseModel):
    model_config = ConfigDict(extra="ignore")

    message_guid: str
    target_guid: str
    part_index: int = 0
    kind: int
    actor_id: Optional[str] = None
    is_from_me: bool = False
    emoji: str = ""


class ClientMessage(BaseModel):
    model_config = ConfigDict(extra="ignore")

    guid: str
    seq: int = 0  # negative for optimistic placeholders
    chat_id: int = 0
    sender_id: Optional[str] = None
    sender_name: Optional[str] = None
    is_from_me: bool = False
    service: str = "iMessage"
    text: Optional[str] = None
    body: str = ""
    created_at: int = 0
    read_at: Optional[int] = None
    delivered_at: Optional[int] = None
    edited_at: Optional[int] = None
    retracted_at: Optional[int] = None
    kind: str = "normal"
    associated_type: int = 0
    reaction_target_ref: Optional[str] = None
    reaction_emoji: Optional[str] = None
    thread_originator_guid: Optional[str] = None
    schedule_state: str = "none"
    schedule_at: Optional[int] = None
    attachments: List[dict] = Field(default_factory=list)
    reactions: List[ClientReaction] = Field(default_factory=list)
    pending_confirmation: bool = False

    @property
    def is_optimistic(self) -> bool:
        return self.seq < 0 or self.pending_confirmation

    @property
    def is_scheduled(self) -> bool:
        return self.schedule_state != "none"


class ClientParticipant(BaseModel):
    model_config = ConfigDict(extra="ignore")

    handle_id: int = 0
    identifier: str
    display_name: Optional[str] = None
    service: Optional[str] = None


class ClientChat(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    guid: str
    chat_identifier: str = ""
    display_name: Optional[str] = None
    style: int = 0
    participants: List[ClientParticipant] = Field(default_factory=list)
    unread_count: int = Field(default=0, ge=0)
    pin_rank: Optional[int] = None
    last_message: Optional[ClientMessage] = None
    backing_ids: List[int] = Field(default_factory=list)
    backing_guids: List[str] = Field(default_factory=list)

    @property
    def chat_ids(self) -> List[int]:
        """Raw chat ids this entry covers (itself when not merged)."""
        return self.backing_ids or [self.id]

    @property
    def last_message_at(self) -> int:
        return self.last_message.created_at if self.last_message else 0


class IncomingEvent(BaseModel):
    """One item of a `new-message` batch"""
    chat_id: int
    message: ClientMessage
