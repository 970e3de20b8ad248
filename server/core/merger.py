"""Merges raw conversation records that belong to the same contact into one logical chat."""
import logging
import math
from typing import Dict, List, Optional

from integrations.contacts.directory import ContactDirectory
from integrations.pinning.reader import PinningReader
from models.chat import DIRECT_CHAT_STYLE, Chat, ChatKind, LogicalChat, Participant
from utils.identifiers import canonical_identifier

logger = logging.getLogger(__name__)


def pin_candidates(chat: Chat) -> List[str]:
    """Identifiers a pin entry may use to refer to this chat."""
    out: List[str] = []

    def add(value: Optional[str]) -> None:
        trimmed = (value or "").strip()
        if trimmed and trimmed not in out:
            out.append(trimmed)

    add(chat.chat_identifier)
    add(chat.guid)

    # "any;-;<identifier>" guid format
    parts = chat.guid.split(";")
    if len(parts) >= 3:
        add(parts[-1])

    # Handle-based pins only ever refer to direct chats
    if chat.style == DIRECT_CHAT_STYLE:
        for participant in chat.participants:
            add(participant.identifier)

    return out


def merge_participants(existing: List[Participant], incoming: List[Participant]) -> List[Participant]:
    merged = {p.identifier.lower(): p for p in existing}
    for participant in incoming:
        merged.setdefault(participant.identifier.lower(), participant)
    return list(merged.values())


def _rank(chat: Chat) -> float:
    return chat.pin_rank if chat.pin_rank is not None else math.inf


class ConversationMerger:
    """
    Groups direct chats by the canonical identity of their sole participant.

    Group chats are never merged. Pin ranks are looked up per raw chat
    before merging when a pin reader is configured.
    """

    def __init__(
        self,
        contacts: Optional[ContactDirectory] = None,
        pinning: Optional[PinningReader] = None,
    ):
        self.contacts = contacts or ContactDirectory()
        self.pinning = pinning

    def merge_key(self, chat: Chat) -> str:
        if chat.kind == ChatKind.DIRECT and len(chat.participants) == 1:
            base = chat.participants[0].identifier
            keys = sorted(
                {
                    canonical_identifier(identifier)
                    for identifier in self.contacts.related_identifiers(base)
                }
                - {""}
            )
            if keys:
                return "direct:" + "|".join(keys)
        return f"chat:{chat.id}"

    def resolve_display_name(self, chat: Chat) -> Optional[str]:
        if chat.display_name:
            return chat.display_name
        if len(chat.participants) == 1:
            identifier = chat.participants[0].identifier
            return self.contacts.display_name(identifier) or identifier
        if chat.participants:
            names = [p.display_name or p.identifier for p in chat.participants]
            label = ", ".join(names[:3])
            if len(names) > 3:
                label += f" + {len(names) - 3}"
            return label
        return self.contacts.display_name(chat.chat_identifier) or chat.chat_identifier or None

    def _prepare(self, chat: Chat) -> Chat:
        chat = chat.model_copy(deep=True)
        for participant in chat.participants:
            participant.display_name = self.contacts.display_name(participant.identifier) or participant.identifier
        chat.display_name = self.resolve_display_name(chat)
        if self.pinning is not None:
            chat.pin_rank = self.pinning.rank_for(pin_candidates(chat))
        return chat

    def merge(self, raw_chats: List[Chat]) -> List[LogicalChat]:
        merged: Dict[str, LogicalChat] = {}

        for raw in raw_chats:
            chat = self._prepare(raw)
            key = self.merge_key(chat)
            existing = merged.get(key)

            if existing is None:
                merged[key] = LogicalChat(
                    **chat.model_dump(exclude={"participants", "last_message"}),
                    participants=list(chat.participants),
                    last_message=chat.last_message,
                    backing_ids=[chat.id],
                    backing_guids=[chat.guid],
                )
                continue

            existing.unread_count += chat.unread_count
            if _rank(chat) < _rank(existing):
                existing.pin_rank = chat.pin_rank
            existing.participants = merge_participants(existing.participants, chat.participants)
            if chat.id not in existing.backing_ids:
                existing.backing_ids.append(chat.id)
            if chat.guid not in existing.backing_guids:
                existing.backing_guids.append(chat.guid)

            # The most recently active record supplies the display fields
            if chat.last_message_at > existing.last_message_at:
                existing.id = chat.id
                existing.guid = chat.guid
                existing.chat_identifier = chat.chat_identifier
                existing.service_name = chat.service_name
                existing.style = chat.style
                existing.is_archived = chat.is_archived
                existing.display_name = chat.display_name
                existing.last_message = chat.last_message

        result = sorted(merged.values(), key=lambda c: (_rank(c), -c.last_message_at))
        logger.debug(f"Merged {len(raw_chats)} raw chats into {len(result)} logical chats")
        return result
