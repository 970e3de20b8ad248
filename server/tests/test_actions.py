"""Tests for MessageActions: preconditions, bridge commands and effect verification."""
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from core.actions import MessageActions, check_own_mutable
from core.errors import (
    BridgeNotRunning,
    NoEffect,
    NotFound,
    PreconditionFailure,
    Rejected,
    TransportFailure,
    ValidationFailure,
)
from core.polling import poll_until
from models.action import BridgeResponse, CommandAction
from models.chat import Chat
from models.message import Message, Reaction, ScheduleState
from utils.timestamps import now_ms

CHAT_GUID = "iMessage;-;+15551234567"


def _make_message(guid="MSG-1", **overrides):
    fields = dict(
        guid=guid, seq=10, chat_id=1, is_from_me=True, service="iMessage",
        body="hello", created_at=now_ms() - 5_000, is_sent=True,
    )
    fields.update(overrides)
    return Message(**fields)


@pytest.fixture
def messages():
    repo = MagicMock()
    repo.get_message_by_guid = AsyncMock(return_value=_make_message())
    repo.reactions_for_message = AsyncMock(return_value=[])
    repo.replies_to = AsyncMock(return_value=[])
    repo.max_seq = AsyncMock(return_value=10)
    repo.recent_own_messages = AsyncMock(return_value=[])
    return repo


@pytest.fixture
def chats():
    repo = MagicMock()
    repo.get_chat_by_guid = AsyncMock(return_value=Chat(id=1, guid=CHAT_GUID))
    repo.read_marker = AsyncMock(return_value=100)
    repo.unread_counts = AsyncMock(return_value={1: 3})
    return repo


@pytest.fixture
def bridge():
    bridge = MagicMock()
    bridge.send = AsyncMock(return_value=BridgeResponse(id="r", success=True))

    async def verify(predicate, timeout_ms=None, poll_ms=None):
        return await poll_until(predicate, timeout_ms, poll_ms)

    bridge.verify = verify
    return bridge


@pytest.fixture
def schedule_bridge():
    cli = MagicMock()
    cli.list = AsyncMock(return_value=[])
    cli.schedule = AsyncMock(return_value={"guid": "S1"})
    cli.edit_text = AsyncMock(return_value=None)
    cli.edit_time = AsyncMock(return_value=None)
    cli.cancel = AsyncMock(return_value=None)
    return cli


@pytest.fixture
def sender():
    sender = MagicMock()
    sender.send_to_chat = AsyncMock()
    sender.send_to_handle = AsyncMock()
    return sender


@pytest.fixture
def actions(messages, chats, bridge, schedule_bridge, sender):
    return MessageActions(
        messages, chats, bridge,
        schedule_bridge=schedule_bridge,
        sender=sender,
        verify_timeout_ms=60,
        verify_poll_ms=5,
    )


def _my_reaction(kind):
    return Reaction(message_guid="R1", target_guid="MSG-1", kind=kind, is_from_me=True)


# ---------------------------------------------------------------------------
# Preconditions
# ---------------------------------------------------------------------------

class TestCheckOwnMutable:
    def test_not_from_me(self):
        with pytest.raises(PreconditionFailure, match="did not send"):
            check_own_mutable(_make_message(is_from_me=False), 120, "unsend")

    def test_already_retracted(self):
        with pytest.raises(PreconditionFailure, match="already unsent"):
            check_own_mutable(_make_message(retracted_at=1), 120, "unsend")

    def test_outside_window(self):
        message = _make_message(created_at=1_000_000)
        with pytest.raises(PreconditionFailure, match="2-minute"):
            check_own_mutable(message, 120, "unsend", now=1_000_000 + 121_000)

    def test_pending_scheduled_exempt_from_window(self):
        message = _make_message(created_at=1_000, schedule_state=ScheduleState.PENDING)
        check_own_mutable(message, 120, "edit", now=10_000_000)


# ---------------------------------------------------------------------------
# React
# ---------------------------------------------------------------------------

class TestReact:
    @pytest.mark.asyncio
    async def test_verified_after_a_few_polls(self, actions, messages, bridge):
        # Snapshot before sending, then three polls
        messages.reactions_for_message.side_effect = [[], [], [], [_my_reaction(2001)]]
        actions.verify_timeout_ms = 1000
        result = await actions.react(CHAT_GUID, "MSG-1", 2001)
        assert result.success and result.verified
        assert messages.reactions_for_message.await_count == 4
        command = bridge.send.call_args.args[0]
        assert command.action == CommandAction.REACT
        assert command.reaction_kind == 2001

    @pytest.mark.asyncio
    async def test_never_reflected_is_no_effect(self, actions):
        with pytest.raises(NoEffect):
            await actions.react(CHAT_GUID, "MSG-1", 2001)

    @pytest.mark.asyncio
    async def test_removal_verified_by_absence(self, actions, messages):
        messages.reactions_for_message.side_effect = [[_my_reaction(2003)], []]
        result = await actions.react(CHAT_GUID, "MSG-1", 3003)
        assert result.action == "react"

    @pytest.mark.asyncio
    async def test_removing_absent_reaction_is_no_effect(self, actions, messages, bridge):
        messages.reactions_for_message.return_value = []
        with pytest.raises(NoEffect):
            await actions.react(CHAT_GUID, "MSG-1", 3003)
        bridge.send.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_re_adding_present_reaction_is_no_effect(self, actions, messages):
        messages.reactions_for_message.return_value = [_my_reaction(2001)]
        with pytest.raises(NoEffect):
            await actions.react(CHAT_GUID, "MSG-1", 2001)

    @pytest.mark.asyncio
    async def test_invalid_kind(self, actions, bridge):
        with pytest.raises(ValidationFailure):
            await actions.react(CHAT_GUID, "MSG-1", 1000)
        bridge.send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_target(self, actions, messages):
        messages.get_message_by_guid.return_value = None
        with pytest.raises(NotFound):
            await actions.react(CHAT_GUID, "nope", 2000)

    @pytest.mark.asyncio
    async def test_retracted_target(self, actions, messages, bridge):
        messages.get_message_by_guid.return_value = _make_message(retracted_at=5)
        with pytest.raises(PreconditionFailure):
            await actions.react(CHAT_GUID, "MSG-1", 2000)
        bridge.send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_transport_errors_propagate(self, actions, bridge):
        bridge.send.side_effect = BridgeNotRunning("down")
        with pytest.raises(TransportFailure) as exc_info:
            await actions.react(CHAT_GUID, "MSG-1", 2000)
        assert exc_info.value.retryable


# ---------------------------------------------------------------------------
# Unsend
# ---------------------------------------------------------------------------

class TestUnsend:
    @pytest.mark.asyncio
    async def test_precondition_checked_before_sending(self, actions, messages, bridge):
        messages.get_message_by_guid.return_value = _make_message(is_from_me=False)
        with pytest.raises(PreconditionFailure):
            await actions.unsend(CHAT_GUID, "MSG-1")
        bridge.send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_expired_window(self, actions, messages, bridge):
        messages.get_message_by_guid.return_value = _make_message(created_at=now_ms() - 200_000)
        with pytest.raises(PreconditionFailure):
            await actions.unsend(CHAT_GUID, "MSG-1")
        bridge.send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_verified_retraction(self, actions, messages):
        messages.get_message_by_guid.side_effect = [
            _make_message(),
            _make_message(),
            _make_message(retracted_at=now_ms()),
        ]
        result = await actions.unsend(CHAT_GUID, "MSG-1")
        assert result.message_guid == "MSG-1"

    @pytest.mark.asyncio
    async def test_no_effect_marker_in_rejection(self, actions, bridge):
        bridge.send.side_effect = Rejected("No unsend effect observed", action="unsend")
        with pytest.raises(NoEffect, match="Undo Send"):
            await actions.unsend(CHAT_GUID, "MSG-1")

    @pytest.mark.asyncio
    async def test_other_rejections_propagate(self, actions, bridge):
        bridge.send.side_effect = Rejected("chat not found", action="unsend")
        with pytest.raises(Rejected):
            await actions.unsend(CHAT_GUID, "MSG-1")

    @pytest.mark.asyncio
    async def test_unobserved_retraction_collects_diagnostics(self, actions, bridge):
        with pytest.raises(NoEffect):
            await actions.unsend(CHAT_GUID, "MSG-1")
        sent = [call.args[0].action for call in bridge.send.call_args_list]
        assert sent == [CommandAction.UNSEND, CommandAction.DEBUG_UNSEND]


# ---------------------------------------------------------------------------
# Edit / reply / mark-read
# ---------------------------------------------------------------------------

class TestEdit:
    @pytest.mark.asyncio
    async def test_verified_by_body_change(self, actions, messages, bridge):
        messages.get_message_by_guid.side_effect = [_make_message(), _make_message(body="hello!")]
        result = await actions.edit(CHAT_GUID, "MSG-1", "hello!")
        assert result.action == "edit"
        assert bridge.send.call_args.args[0].text == "hello!"

    @pytest.mark.asyncio
    async def test_empty_text_rejected(self, actions, bridge):
        with pytest.raises(ValidationFailure):
            await actions.edit(CHAT_GUID, "MSG-1", "   ")
        bridge.send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_outside_edit_window(self, actions, messages):
        messages.get_message_by_guid.return_value = _make_message(created_at=now_ms() - 16 * 60_000)
        with pytest.raises(PreconditionFailure, match="15-minute"):
            await actions.edit(CHAT_GUID, "MSG-1", "late")

    @pytest.mark.asyncio
    async def test_pending_scheduled_goes_to_schedule_bridge(self, actions, messages, bridge, schedule_bridge):
        pending = _make_message(schedule_state=ScheduleState.PENDING, schedule_at=now_ms() + 60_000)
        messages.get_message_by_guid.side_effect = [pending, pending, pending.model_copy(update={"body": "new"})]
        result = await actions.edit(CHAT_GUID, "MSG-1", "new")
        assert result.action == "edit_scheduled"
        schedule_bridge.edit_text.assert_awaited_once_with("MSG-1", CHAT_GUID, "new")
        bridge.send.assert_not_awaited()


class TestReply:
    @pytest.mark.asyncio
    async def test_verified_by_threaded_row(self, actions, messages):
        messages.replies_to.side_effect = [[], [_make_message("REPLY", seq=11)]]
        result = await actions.reply(CHAT_GUID, "MSG-1", "yes")
        assert result.action == "reply"
        messages.replies_to.assert_awaited_with("MSG-1", 10)


class TestMarkRead:
    @pytest.mark.asyncio
    async def test_verified_by_unread_count(self, actions, chats):
        chats.unread_counts.side_effect = [{1: 3}, {1: 0}]
        result = await actions.mark_read(CHAT_GUID)
        assert result.action == "mark_read"

    @pytest.mark.asyncio
    async def test_retries_once_after_transport_failure(self, actions, bridge, chats):
        bridge.send.side_effect = [BridgeNotRunning("restarting"), BridgeResponse(id="r", success=True)]
        chats.read_marker.side_effect = [100, 200]
        with patch("core.actions.MARK_READ_RETRY_DELAY_S", 0):
            await actions.mark_read(CHAT_GUID)
        assert bridge.send.await_count == 2

    @pytest.mark.asyncio
    async def test_unknown_chat(self, actions, chats):
        chats.get_chat_by_guid.return_value = None
        with pytest.raises(NotFound):
            await actions.mark_read("iMessage;-;nobody")


# ---------------------------------------------------------------------------
# Sends and scheduled messages
# ---------------------------------------------------------------------------

class TestSendText:
    @pytest.mark.asyncio
    async def test_send_to_chat_is_unverified(self, actions, sender):
        result = await actions.send_text("hi", chat_guid=CHAT_GUID)
        assert result.verified is False
        sender.send_to_chat.assert_awaited_once_with(CHAT_GUID, "hi")

    @pytest.mark.asyncio
    async def test_send_to_handle(self, actions, sender):
        await actions.send_text("hi", handle="+15551234567", service="SMS")
        sender.send_to_handle.assert_awaited_once_with("+15551234567", "hi", "SMS")

    @pytest.mark.asyncio
    async def test_needs_destination(self, actions):
        with pytest.raises(ValidationFailure):
            await actions.send_text("hi")


class TestScheduled:
    @pytest.mark.asyncio
    async def test_list_failure_returns_empty(self, actions, schedule_bridge):
        schedule_bridge.list.side_effect = BridgeNotRunning("missing")
        assert await actions.list_scheduled() == []

    @pytest.mark.asyncio
    async def test_schedule_requires_future_time(self, actions, schedule_bridge):
        with pytest.raises(ValidationFailure):
            await actions.schedule_message(CHAT_GUID, "hi", now_ms() - 1000)
        schedule_bridge.schedule.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_schedule(self, actions, schedule_bridge):
        result = await actions.schedule_message(CHAT_GUID, "hi", now_ms() + 60_000)
        assert result.data == {"guid": "S1"}

    @pytest.mark.asyncio
    async def test_cancel_confirmed_when_row_disappears(self, actions, messages, schedule_bridge):
        pending = _make_message(schedule_state=ScheduleState.PENDING)
        messages.get_message_by_guid.side_effect = [pending, None]
        result = await actions.cancel_scheduled("MSG-1", CHAT_GUID)
        assert result.action == "cancel_scheduled"
        schedule_bridge.cancel.assert_awaited_once_with("MSG-1", CHAT_GUID)

    @pytest.mark.asyncio
    async def test_cancel_delivered_item_rejected(self, actions, schedule_bridge):
        with pytest.raises(PreconditionFailure):
            await actions.cancel_scheduled("MSG-1", CHAT_GUID)
        schedule_bridge.cancel.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_edit_time(self, actions, messages, schedule_bridge):
        when = now_ms() + 120_000
        pending = _make_message(schedule_state=ScheduleState.PENDING, schedule_at=when - 60_000)
        messages.get_message_by_guid.side_effect = [pending, pending.model_copy(update={"schedule_at": when})]
        await actions.edit_scheduled("MSG-1", CHAT_GUID, scheduled_at=when)
        schedule_bridge.edit_time.assert_awaited_once_with("MSG-1", CHAT_GUID, when)
        schedule_bridge.edit_text.assert_not_awaited()


# ---------------------------------------------------------------------------
# Eligibility
# ---------------------------------------------------------------------------

class TestEligibility:
    @pytest.mark.asyncio
    async def test_filters_and_expiry(self, actions, messages):
        now = now_ms()
        messages.recent_own_messages.return_value = [
            _make_message("OK", created_at=now - 1000),
            _make_message("SMS", service="SMS"),
            _make_message("UNSENT", is_sent=False),
            _make_message("GONE", retracted_at=now),
            _make_message("APP", app_bundle_id="com.example.app"),
        ]
        result = await actions.eligibility(now=now)
        assert list(result) == ["OK"]
        assert result["OK"].edit_expires_at == now - 1000 + 900_000
        assert result["OK"].unsend_expires_at == now - 1000 + 120_000
        messages.recent_own_messages.assert_awaited_once_with(now - 900_000)
