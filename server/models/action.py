"""Command bridge request/response models"""
from enum import Enum
from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Optional
from uuid import uuid4


class CommandAction(str, Enum):
    REACT = "react"
    UNSEND = "unsend"
    EDIT = "edit"
    REPLY = "reply"
    MARK_READ = "mark_read"
    DEBUG_UNSEND = "debug_unsend"


# Actions whose executor round-trip is slow enough to need the long timeout
LONG_RUNNING_ACTIONS = {CommandAction.REPLY, CommandAction.EDIT, CommandAction.MARK_READ}


class BridgeCommand(BaseModel):
    """One request written to the executor's command mailbox"""
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    action: CommandAction
    target_chat_id: str = Field(alias="targetChatId")
    target_message_id: Optional[str] = Field(default=None, alias="targetMessageId")
    text: Optional[str] = None
    reaction_kind: Optional[int] = Field(default=None, alias="reactionKind")
    part_index: Optional[int] = Field(default=None, alias="partIndex")
    schedule_at: Optional[int] = Field(default=None, alias="scheduleAt")

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class BridgeResponse(BaseModel):
    """Executor reply; action-specific fields are kept as extras"""
    model_config = ConfigDict(extra="allow")

    id: str
    success: bool
    error: Optional[str] = None


class ScheduledMessage(BaseModel):
    """A pending "send later" item as reported by the schedule bridge"""
    model_config = ConfigDict(populate_by_name=True)

    guid: str
    chat_guid: str = Field(alias="chatGuid")
    text: Optional[str] = None
    scheduled_at: int = Field(alias="scheduledAt")
    schedule_type: int = Field(default=2, alias="scheduleType")
    schedule_state: int = Field(default=0, alias="scheduleState")
