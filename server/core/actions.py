"""
Mutating message actions.

Every action follows the same shape: validate the request, check
preconditions against the store, send one command through the bridge,
then poll the store until the effect shows up. The bridge's success reply
only means the request was accepted, so an unobserved effect is reported
as NoEffect rather than success.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pydantic import BaseModel

from config.settings import settings
from core.errors import (
    NoEffect,
    NotFound,
    PreconditionFailure,
    Rejected,
    SyncError,
    TransportFailure,
    ValidationFailure,
)
from core.reactions import add_variant_of, is_reaction_kind, is_reaction_removal
from database.repositories.chat_repo import ChatRepository
from database.repositories.message_repo import MessageRepository
from integrations.bridge.client import CommandBridge
from integrations.bridge.schedule_cli import ScheduleBridge
from integrations.bridge.scripting import ScriptingSender
from models.action import BridgeCommand, CommandAction, ScheduledMessage
from models.message import Message, ScheduleState
from utils.timestamps import now_ms

logger = logging.getLogger(__name__)

MARK_READ_RETRY_DELAY_S = 0.25

# Bridge errors that mean "accepted but nothing happened" rather than a fault
_NO_EFFECT_MARKERS = ("No unsend effect", "no retraction observed", "retractTimeout=")


class ActionResult(BaseModel):
    success: bool = True
    action: str
    message_guid: Optional[str] = None
    verified: bool = True
    data: Any = None


class Eligibility(BaseModel):
    edit_expires_at: int
    unsend_expires_at: int


def _require(value: Optional[str], name: str) -> str:
    trimmed = (value or "").strip()
    if not trimmed:
        raise ValidationFailure(f"{name} is required")
    return trimmed


def _require_future(scheduled_at: Optional[int], now: int) -> int:
    if not isinstance(scheduled_at, int) or scheduled_at <= now:
        raise ValidationFailure("scheduled_at must be a future Unix timestamp in ms")
    return scheduled_at


def check_own_mutable(target: Message, window_s: int, action: str, now: Optional[int] = None) -> None:
    """
    Self-authored, not retracted, and inside the window. Pending scheduled
    items are exempt from the window.
    """
    if not target.is_from_me:
        raise PreconditionFailure(f"Cannot {action} a message you did not send")
    if target.retracted_at:
        raise PreconditionFailure(f"Cannot {action} a message that was already unsent")
    if target.schedule_state == ScheduleState.PENDING:
        return

    age_ms = (now if now is not None else now_ms()) - target.created_at
    if age_ms > window_s * 1000:
        raise PreconditionFailure(
            f"Message is outside the {window_s // 60}-minute {action} window"
        )


class MessageActions:
    """React / unsend / edit / reply / mark-read / send, plus scheduled messages."""

    def __init__(
        self,
        messages: MessageRepository,
        chats: ChatRepository,
        bridge: CommandBridge,
        schedule_bridge: Optional[ScheduleBridge] = None,
        sender: Optional[ScriptingSender] = None,
        verify_timeout_ms: Optional[int] = None,
        verify_poll_ms: Optional[int] = None,
    ):
        self.messages = messages
        self.chats = chats
        self.bridge = bridge
        self.schedule_bridge = schedule_bridge or ScheduleBridge()
        self.sender = sender or ScriptingSender()
        self.verify_timeout_ms = verify_timeout_ms or settings.VERIFY_TIMEOUT_MS
        self.verify_poll_ms = verify_poll_ms or settings.VERIFY_POLL_MS

    # ------------------------------------------------------------------ #
    #  Shared helpers                                                      #
    # ------------------------------------------------------------------ #

    async def _target(self, message_guid: str) -> Message:
        target = await self.messages.get_message_by_guid(message_guid)
        if target is None:
            raise NotFound(f"Message {message_guid} not found")
        return target

    async def _confirm(
        self,
        action: str,
        predicate: Callable[[], Awaitable[bool]],
        detail: str,
    ) -> None:
        verified = await self.bridge.verify(predicate, self.verify_timeout_ms, self.verify_poll_ms)
        if not verified:
            logger.warning(f"[{action}] no effect observed: {detail}")
            raise NoEffect(detail, action=action)

    # ------------------------------------------------------------------ #
    #  Bridge-backed actions                                               #
    # ------------------------------------------------------------------ #

    async def react(
        self,
        chat_guid: str,
        message_guid: str,
        reaction_kind: int,
        part_index: int = 0,
    ) -> ActionResult:
        chat_guid = _require(chat_guid, "chat_guid")
        message_guid = _require(message_guid, "message_guid")
        if not is_reaction_kind(reaction_kind):
            raise ValidationFailure(f"Unsupported reaction kind {reaction_kind}")

        target = await self._target(message_guid)
        if target.retracted_at:
            raise PreconditionFailure("Cannot react to a message that was unsent")

        base_kind = add_variant_of(reaction_kind)
        removing = is_reaction_removal(reaction_kind)

        async def mine_present() -> bool:
            active = await self.messages.reactions_for_message(message_guid)
            return any(r.is_from_me and r.kind == base_kind for r in active)

        # The store must move from the opposite state, not merely sit in the requested one
        had_before = await mine_present()
        if had_before != removing:
            logger.info(f"[react] {message_guid} already in requested state for {reaction_kind}")

        async def reflected() -> bool:
            mine = await mine_present()
            if mine == had_before:
                return False
            return not mine if removing else mine

        await self.bridge.send(BridgeCommand(
            action=CommandAction.REACT,
            target_chat_id=chat_guid,
            target_message_id=message_guid,
            reaction_kind=reaction_kind,
            part_index=part_index,
        ))
        await self._confirm(
            "react", reflected,
            f"Reaction {reaction_kind} on {message_guid} did not appear in the store",
        )
        logger.info(f"[react] verified {reaction_kind} on {message_guid}")
        return ActionResult(action="react", message_guid=message_guid)

    async def unsend(self, chat_guid: str, message_guid: str) -> ActionResult:
        chat_guid = _require(chat_guid, "chat_guid")
        message_guid = _require(message_guid, "message_guid")

        target = await self._target(message_guid)
        check_own_mutable(target, settings.UNSEND_WINDOW_S, "unsend")
        logger.info(
            f"[unsend] target service={target.service} "
            f"age_s={max(0, (now_ms() - target.created_at) // 1000)}"
        )

        async def retracted() -> bool:
            current = await self.messages.get_message_by_guid(message_guid)
            return bool(current and current.retracted_at)

        try:
            await self.bridge.send(BridgeCommand(
                action=CommandAction.UNSEND,
                target_chat_id=chat_guid,
                target_message_id=message_guid,
            ))
        except Rejected as e:
            if any(marker in str(e) for marker in _NO_EFFECT_MARKERS):
                raise NoEffect(
                    "Undo Send is not available for this message on this chat/device state.",
                    action="unsend",
                ) from e
            raise

        if not await self.bridge.verify(retracted, self.verify_timeout_ms, self.verify_poll_ms):
            await self._log_unsend_diagnostics(chat_guid, message_guid)
            logger.warning(f"[unsend] no retraction observed for {message_guid}")
            raise NoEffect(
                "Undo Send was accepted but no retraction appeared. The message may be "
                "outside the unsend window or unsupported for this chat.",
                action="unsend",
            )

        logger.info(f"[unsend] verified retraction for {message_guid}")
        return ActionResult(action="unsend", message_guid=message_guid)

    async def _log_unsend_diagnostics(self, chat_guid: str, message_guid: str) -> None:
        try:
            response = await self.bridge.send(BridgeCommand(
                action=CommandAction.DEBUG_UNSEND,
                target_chat_id=chat_guid,
                target_message_id=message_guid,
                part_index=0,
            ))
            logger.warning(f"[unsend] diagnostics for {message_guid}: {response.model_extra}")
        except SyncError as e:
            logger.warning(f"[unsend] diagnostics failed for {message_guid}: {e}")

    async def edit(
        self,
        chat_guid: str,
        message_guid: str,
        text: str,
        part_index: int = 0,
    ) -> ActionResult:
        chat_guid = _require(chat_guid, "chat_guid")
        message_guid = _require(message_guid, "message_guid")
        text = _require(text, "text")

        target = await self._target(message_guid)
        check_own_mutable(target, settings.EDIT_WINDOW_S, "edit")

        if target.schedule_state == ScheduleState.PENDING:
            return await self.edit_scheduled(message_guid, chat_guid, text=text)

        before_edited = target.edited_at or 0
        before_body = target.body

        async def edited() -> bool:
            current = await self.messages.get_message_by_guid(message_guid)
            if current is None:
                return False
            return (current.edited_at or 0) > before_edited or current.body != before_body

        await self.bridge.send(BridgeCommand(
            action=CommandAction.EDIT,
            target_chat_id=chat_guid,
            target_message_id=message_guid,
            text=text,
            part_index=part_index,
        ))
        await self._confirm("edit", edited, f"Edit of {message_guid} did not appear in the store")
        logger.info(f"[edit] verified edit of {message_guid}")
        return ActionResult(action="edit", message_guid=message_guid)

    async def reply(
        self,
        chat_guid: str,
        message_guid: str,
        text: str,
        part_index: int = 0,
    ) -> ActionResult:
        chat_guid = _require(chat_guid, "chat_guid")
        message_guid = _require(message_guid, "message_guid")
        text = _require(text, "text")

        target = await self._target(message_guid)
        if target.retracted_at:
            raise PreconditionFailure("Cannot reply to a message that was unsent")
        after_seq = await self.messages.max_seq()

        async def replied() -> bool:
            return bool(await self.messages.replies_to(message_guid, after_seq))

        await self.bridge.send(BridgeCommand(
            action=CommandAction.REPLY,
            target_chat_id=chat_guid,
            target_message_id=message_guid,
            text=text,
            part_index=part_index,
        ))
        await self._confirm("reply", replied, f"Reply to {message_guid} did not appear in the store")
        return ActionResult(action="reply", message_guid=message_guid)

    async def mark_read(self, chat_guid: str) -> ActionResult:
        chat_guid = _require(chat_guid, "chat_guid")
        chat = await self.chats.get_chat_by_guid(chat_guid)
        if chat is None:
            raise NotFound(f"Chat {chat_guid} not found")
        before_marker = await self.chats.read_marker(chat.id)

        try:
            await self.bridge.send(BridgeCommand(action=CommandAction.MARK_READ, target_chat_id=chat_guid))
        except TransportFailure as e:
            # The bridge can be briefly unavailable while it restarts
            logger.info(f"[mark_read] retrying after transport failure: {e}")
            await asyncio.sleep(MARK_READ_RETRY_DELAY_S)
            await self.bridge.send(BridgeCommand(action=CommandAction.MARK_READ, target_chat_id=chat_guid))

        async def acknowledged() -> bool:
            if await self.chats.read_marker(chat.id) != before_marker:
                return True
            counts = await self.chats.unread_counts()
            return counts.get(chat.id, 0) == 0

        await self._confirm("mark_read", acknowledged, f"Read state of {chat_guid} did not change")
        return ActionResult(action="mark_read")

    # ------------------------------------------------------------------ #
    #  Plain sends                                                         #
    # ------------------------------------------------------------------ #

    async def send_text(
        self,
        text: str,
        chat_guid: Optional[str] = None,
        handle: Optional[str] = None,
        service: str = "iMessage",
    ) -> ActionResult:
        """
        Send a text message. Delivery is confirmed later by the change
        watcher, so this returns unverified.
        """
        text = _require(text, "text")
        if chat_guid and chat_guid.strip():
            await self.sender.send_to_chat(chat_guid.strip(), text)
        elif handle and handle.strip():
            if service not in ("iMessage", "SMS"):
                raise ValidationFailure(f"Unsupported service {service}")
            await self.sender.send_to_handle(handle.strip(), text, service)
        else:
            raise ValidationFailure("chat_guid or handle is required")
        return ActionResult(action="send", verified=False)

    # ------------------------------------------------------------------ #
    #  Scheduled messages                                                  #
    # ------------------------------------------------------------------ #

    async def list_scheduled(self, chat_guid: Optional[str] = None) -> List[ScheduledMessage]:
        try:
            return await self.schedule_bridge.list(chat_guid)
        except SyncError as e:
            logger.warning(f"Could not list scheduled messages: {e}")
            return []

    async def schedule_message(self, chat_guid: str, text: str, scheduled_at: int) -> ActionResult:
        chat_guid = _require(chat_guid, "chat_guid")
        text = _require(text, "text")
        scheduled_at = _require_future(scheduled_at, now_ms())

        data = await self.schedule_bridge.schedule(chat_guid, text, scheduled_at)
        logger.info(f"Scheduled message in {chat_guid} for {scheduled_at}")
        return ActionResult(action="schedule", verified=False, data=data)

    async def edit_scheduled(
        self,
        guid: str,
        chat_guid: str,
        text: Optional[str] = None,
        scheduled_at: Optional[int] = None,
    ) -> ActionResult:
        guid = _require(guid, "guid")
        chat_guid = _require(chat_guid, "chat_guid")
        if text is None and scheduled_at is None:
            raise ValidationFailure("text or scheduled_at is required")
        if text is not None:
            text = _require(text, "text")
        if scheduled_at is not None:
            scheduled_at = _require_future(scheduled_at, now_ms())

        target = await self._target(guid)
        if target.schedule_state != ScheduleState.PENDING:
            raise PreconditionFailure("Message is no longer pending delivery")

        if text is not None:
            await self.schedule_bridge.edit_text(guid, chat_guid, text)
        if scheduled_at is not None:
            await self.schedule_bridge.edit_time(guid, chat_guid, scheduled_at)

        changed = self._schedule_changed(target, compare_body=text is not None)
        await self._confirm("edit_scheduled", changed, f"Scheduled message {guid} did not change")
        return ActionResult(action="edit_scheduled", message_guid=guid)

    async def cancel_scheduled(self, guid: str, chat_guid: str) -> ActionResult:
        guid = _require(guid, "guid")
        chat_guid = _require(chat_guid, "chat_guid")

        target = await self._target(guid)
        if target.schedule_state != ScheduleState.PENDING:
            raise PreconditionFailure("Message is no longer pending delivery")

        await self.schedule_bridge.cancel(guid, chat_guid)
        await self._confirm(
            "cancel_scheduled",
            self._schedule_changed(target),
            f"Scheduled message {guid} was not canceled",
        )
        return ActionResult(action="cancel_scheduled", message_guid=guid)

    def _schedule_changed(
        self, before: Message, compare_body: bool = False
    ) -> Callable[[], Awaitable[bool]]:
        async def changed() -> bool:
            current = await self.messages.get_message_by_guid(before.guid)
            # A canceled item can vanish entirely instead of being retracted
            if current is None:
                return True
            if (
                current.schedule_at != before.schedule_at
                or current.schedule_state != before.schedule_state
                or bool(current.retracted_at) != bool(before.retracted_at)
            ):
                return True
            return compare_body and current.body != before.body

        return changed

    # ------------------------------------------------------------------ #
    #  Eligibility                                                         #
    # ------------------------------------------------------------------ #

    async def eligibility(self, now: Optional[int] = None) -> Dict[str, Eligibility]:
        """Edit/unsend expiry for recent self-authored messages still inside the edit window."""
        now = now if now is not None else now_ms()
        recent = await self.messages.recent_own_messages(now - settings.EDIT_WINDOW_S * 1000)

        result: Dict[str, Eligibility] = {}
        for message in recent:
            if (
                message.service != "iMessage"
                or not message.is_sent
                or message.retracted_at
                or message.app_bundle_id
            ):
                continue
            result[message.guid] = Eligibility(
                edit_expires_at=message.created_at + settings.EDIT_WINDOW_S * 1000,
                unsend_expires_at=message.created_at + settings.UNSEND_WINDOW_S * 1000,
            )
        return result
