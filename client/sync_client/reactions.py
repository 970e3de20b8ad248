"""Reaction bookkeeping on the client: target parsing and the (actor, kind) key rule."""
import re
from typing import Dict, List, Optional, Tuple

from sync_client.models import ClientMessage, ClientReaction

REACTION_EMOJI: Dict[int, str] = {
    2000: "\u2764\ufe0f",
    2001: "\U0001F44D",
    2002: "\U0001F44E",
    2003: "\U0001F602",
    2004: "\u2757\u2757",
    2005: "\u2753",
}

# Each "remove" kind paired with the "add" kind it cancels
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


def is_reaction_kind(kind: int) -> bool:
    return kind in ADD_KINDS or kind in REMOVE_TO_ADD_KIND


def is_reaction_removal(kind: int) -> bool:
    return kind in REMOVE_TO_ADD_KIND


def add_variant_of(kind: int) -> int:
    return REMOVE_TO_ADD_KIND.get(kind, kind)


def parse_target(ref: Optional[str]) -> Optional[Tuple[int, str]]:
    """``p:<part>/<guid>`` or ``bp:<guid>`` -> (part index, guid)."""
    if not ref:
        return None
    match = _TARGET_REF_RE.match(ref)
    if not match:
        return None
    return (int(match.group(1)) if match.group(1) else 0, match.group(2))


def reaction_key(is_from_me: bool, actor_id: Optional[str], kind: int) -> Tuple[str, int]:
    return ("me" if is_from_me else (actor_id or ""), add_variant_of(kind))


def apply_reaction_event(reactions: List[ClientReaction], event: ClientMessage) -> List[ClientReaction]:
    """
    Return the reaction list after one add/remove event.

    Adds overwrite any existing entry with the same key; removes delete it.
    """
    target = parse_target(event.reaction_target_ref)
    if target is None or not is_reaction_kind(event.associated_type):
        return list(reactions)

    active = {reaction_key(r.is_from_me, r.actor_id, r.kind): r for r in reactions}
    key = reaction_key(event.is_from_me, event.sender_id, event.associated_type)

    if is_reaction_removal(event.associated_type):
        active.pop(key, None)
    else:
        part_index, target_guid = target
        active[key] = ClientReaction(
            message_guid=event.guid,
            target_guid=target_guid,
            part_index=part_index,
            kind=event.associated_type,
            actor_id=event.sender_id,
            is_from_me=event.is_from_me,
            emoji=event.reaction_emoji or REACTION_EMOJI.get(event.associated_type, ""),
        )
    return list(active.values())
