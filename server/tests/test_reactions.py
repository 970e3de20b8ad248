"""Tests for reaction kinds and aggregation."""
from core.reactions import (
    aggregate_reactions,
    classify_kind,
    default_emoji,
    parse_target_ref,
    resolve_emoji,
)
from models.message import Message, MessageKind


def _make_reaction(guid, kind, target="T1", sender="+15551234567", is_from_me=False, emoji=None, part=0):
    return Message(
        guid=guid,
        associated_type=kind,
        reaction_target_ref=f"p:{part}/{target}",
        sender_id=None if is_from_me else sender,
        is_from_me=is_from_me,
        reaction_emoji=emoji,
    )


class TestKinds:
    def test_classify(self):
        assert classify_kind(0) == MessageKind.NORMAL
        assert classify_kind(2003) == MessageKind.REACTION_ADD
        assert classify_kind(3003) == MessageKind.REACTION_REMOVE
        assert classify_kind(1000) == MessageKind.EDIT_MARKER
        assert classify_kind(0, item_type=1) == MessageKind.SYSTEM

    def test_default_emoji_for_remove_kind(self):
        assert default_emoji(3001) == "\U0001F44D"
        assert default_emoji(2006) is None

    def test_custom_emoji_wins(self):
        assert resolve_emoji(2006, "\U0001F525") == "\U0001F525"
        assert resolve_emoji(2000, None) == "\u2764\ufe0f"


class TestParseTargetRef:
    def test_part_reference(self):
        target = parse_target_ref("p:1/ABC")
        assert target.part_index == 1
        assert target.guid == "ABC"

    def test_bubble_reference(self):
        target = parse_target_ref("bp:ABC")
        assert target.part_index == 0
        assert target.guid == "ABC"

    def test_invalid(self):
        assert parse_target_ref("ABC") is None
        assert parse_target_ref("") is None


class TestAggregate:
    def test_add_then_remove_leaves_nothing(self):
        result = aggregate_reactions([_make_reaction("r1", 2001), _make_reaction("r2", 3001)])
        assert result == {}

    def test_one_entry_per_actor_and_kind(self):
        result = aggregate_reactions([
            _make_reaction("r1", 2000),
            _make_reaction("r2", 2000),
            _make_reaction("r3", 2000, sender="bob@example.com"),
            _make_reaction("r4", 2003),
        ])
        reactions = result["T1"]
        assert len(reactions) == 3
        love = [r for r in reactions if r.kind == 2000 and r.actor_id == "+15551234567"]
        assert love[0].message_guid == "r2"

    def test_self_and_other_tracked_separately(self):
        result = aggregate_reactions([
            _make_reaction("r1", 2002, is_from_me=True),
            _make_reaction("r2", 2002),
            _make_reaction("r3", 3002, is_from_me=True),
        ])
        reactions = result["T1"]
        assert len(reactions) == 1
        assert reactions[0].actor_key == "+15551234567"

    def test_grouped_by_target(self):
        result = aggregate_reactions([
            _make_reaction("r1", 2001, target="A", part=1),
            _make_reaction("r2", 2001, target="B"),
        ])
        assert set(result) == {"A", "B"}
        assert result["A"][0].part_index == 1

    def test_unparseable_target_skipped(self):
        event = Message(guid="r1", associated_type=2001, reaction_target_ref="junk")
        assert aggregate_reactions([event]) == {}
