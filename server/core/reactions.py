"""Reaction kinds and aggregation of reaction-add/remove rows into active reaction sets."""
import re
from typing import Dict, Iterable, List, Optional, Tuple
from pydantic import BaseModel

from models.message import Message, MessageKind, Reaction

# Store kinds for "add" reactions and their default emoji.
# 2006 is a custom-emoji reaction: the store supplies the emoji itself.
REACTION_EMOJI: Dict[int, str] = {
    2000: "\u2764\ufe0f",  # love
    2001: "\U0001F44D",  # like
    2002: "\U0001F44E",  # dislike
    2003: "\U0001F602",  # laugh
    2004: "\u2757\u2757",  # emphasize
    2005: "\u2753",  # question
}
CUSTOM_EMOJI_KIND = 2006

# A "remove" kind sits at a fixed offset from its "add" counterpart.
REMOVE_TO_ADD_KIND: Dict[int, int] = {
    3000: 2000,
    3001: 2001,
    3002: 2002,
    3003: 2003,
    3004: 2004,
    3005: 2005,
    3006: 2006,
}
ADD_KINDS = frozenset(REMOVE_TO_ADD_KIND.values())
EDIT_MARKER_KIND = 1000

_TARGET_REF_RE = re.compile(r"^(?:bp:|p:(\d+)/)(.+)$")


class ReactionTarget(BaseModel):
    part_index: int = 0
    guid: str


def is_reaction_kind(associated_type: int) -> bool:
    return associated_type in ADD_KINDS or associated_type in REMOVE_TO_ADD_KIND


def is_reaction_removal(associated_type: int) -> bool:
    return associated_type in REMOVE_TO_ADD_KIND


def add_variant_of(associated_type: int) -> int:
    """Base "add" kind for either variant; non-reaction kinds pass through."""
    return REMOVE_TO_ADD_KIND.get(associated_type, associated_type)


def default_emoji(associated_type: int) -> Optional[str]:
    return REACTION_EMOJI.get(add_variant_of(associated_type))


def resolve_emoji(associated_type: int, custom: Optional[str]) -> str:
    """Store-supplied emoji wins; otherwise the fixed kind table."""
    return custom or default_emoji(associated_type) or ""


def classify_kind(associated_type: int, item_type: int = 0) -> MessageKind:
    if associated_type in REMOVE_TO_ADD_KIND:
        return MessageKind.REACTION_REMOVE
    if associated_type in ADD_KINDS:
        return MessageKind.REACTION_ADD
    if associated_type == EDIT_MARKER_KIND:
        return MessageKind.EDIT_MARKER
    if item_type != 0:
        return MessageKind.SYSTEM
    return MessageKind.NORMAL


def parse_target_ref(raw: Optional[str]) -> Optional[ReactionTarget]:
    """
    Parse a compact target reference.

    Formats are ``p:<part>/<guid>`` and ``bp:<guid>`` (part 0).
    """
    if not raw:
        return None
    match = _TARGET_REF_RE.match(raw)
    if not match:
        return None
    part = int(match.group(1)) if match.group(1) else 0
    return ReactionTarget(part_index=part, guid=match.group(2))


def reaction_key(is_from_me: bool, actor_id: Optional[str], kind: int) -> Tuple[str, int]:
    return ("me" if is_from_me else (actor_id or ""), add_variant_of(kind))


def apply_reaction(active: Dict[Tuple[str, int], Reaction], event: Message) -> None:
    """Fold one reaction row into an (actor, kind)-keyed map of active reactions."""
    target = parse_target_ref(event.reaction_target_ref)
    if target is None or not is_reaction_kind(event.associated_type):
        return

    key = reaction_key(event.is_from_me, event.sender_id, event.associated_type)
    if is_reaction_removal(event.associated_type):
        active.pop(key, None)
        return

    active[key] = Reaction(
        message_guid=event.guid,
        target_guid=target.guid,
        part_index=target.part_index,
        kind=event.associated_type,
        actor_id=event.sender_id,
        is_from_me=event.is_from_me,
        emoji=resolve_emoji(event.associated_type, event.reaction_emoji),
    )


def aggregate_reactions(events: Iterable[Message]) -> Dict[str, List[Reaction]]:
    """
    Replay reaction rows in arrival order and return the active reactions per target guid.

    At most one entry survives per (actor, kind) pair; an add followed by
    its matching remove leaves nothing behind.
    """
    per_target: Dict[str, Dict[Tuple[str, int], Reaction]] = {}
    for event in events:
        target = parse_target_ref(event.reaction_target_ref)
        if target is None:
            continue
        apply_reaction(per_target.setdefault(target.guid, {}), event)
    return {guid: list(active.values()) for guid, active in per_target.items() if active}
