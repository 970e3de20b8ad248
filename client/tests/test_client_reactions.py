"""Tests for the client reaction key rule."""
from sync_client.models import ClientMessage, ClientReaction
from sync_client.reactions import apply_reaction_event, parse_target, reaction_key


def _reaction_event(guid, kind, sender="+15551234567", is_from_me=False, ref="p:0/target"):
    return ClientMessage(
        guid=guid,
        associated_type=kind,
        reaction_target_ref=ref,
        sender_id=sender,
        is_from_me=is_from_me,
    )


class TestParseTarget:
    def test_part_prefix(self):
        assert parse_target("p:2/ABC-123") == (2, "ABC-123")

    def test_bubble_prefix(self):
        assert parse_target("bp:ABC-123") == (0, "ABC-123")

    def test_garbage(self):
        assert parse_target("ABC-123") is None
        assert parse_target(None) is None


class TestReactionKey:
    def test_self_reactions_share_key(self):
        assert reaction_key(True, "+1555", 2000) == reaction_key(True, None, 3000)

    def test_remove_maps_to_add_kind(self):
        assert reaction_key(False, "bob", 3003) == ("bob", 2003)


class TestApplyReactionEvent:
    def test_add_sets_default_emoji(self):
        reactions = apply_reaction_event([], _reaction_event("r1", 2000))
        assert len(reactions) == 1
        assert reactions[0].emoji == "\u2764\ufe0f"
        assert reactions[0].target_guid == "target"

    def test_readding_same_kind_overwrites(self):
        reactions = apply_reaction_event([], _reaction_event("r1", 2001))
        reactions = apply_reaction_event(reactions, _reaction_event("r2", 2001))
        assert [r.message_guid for r in reactions] == ["r2"]

    def test_different_actors_coexist(self):
        reactions = apply_reaction_event([], _reaction_event("r1", 2001, sender="a"))
        reactions = apply_reaction_event(reactions, _reaction_event("r2", 2001, sender="b"))
        reactions = apply_reaction_event(reactions, _reaction_event("r3", 2001, is_from_me=True))
        assert len(reactions) == 3

    def test_remove_only_matching_actor(self):
        existing = [
            ClientReaction(message_guid="r1", target_guid="target", kind=2002, actor_id="a"),
            ClientReaction(message_guid="r2", target_guid="target", kind=2002, is_from_me=True),
        ]
        reactions = apply_reaction_event(existing, _reaction_event("r3", 3002, is_from_me=True))
        assert [r.message_guid for r in reactions] == ["r1"]

    def test_remove_without_add_is_noop(self):
        assert apply_reaction_event([], _reaction_event("r1", 3000)) == []

    def test_non_reaction_kind_ignored(self):
        existing = [ClientReaction(message_guid="r1", target_guid="target", kind=2000)]
        assert apply_reaction_event(existing, _reaction_event("e1", 1000)) == existing
