"""
Client-side view of the conversation list and loaded message lists.

Live events, page loads and local optimistic edits all funnel through
``ClientSyncStore`` so that the in-memory state, the local cache and the
server stay consistent.
"""
from collections import OrderedDict
from typing import Awaitable, Dict, List, Optional
import logging
import re
import time
import uuid

import aiosqlite
import httpx

from sync_client import config
from sync_client.api import SyncApi
from sync_client.cache import LocalCache
from sync_client.models import ClientChat, ClientMessage, ClientParticipant, IncomingEvent
from sync_client.reactions import EDIT_MARKER_KIND, apply_reaction_event, is_reaction_kind, parse_target

logger = logging.getLogger(__name__)

OPTIMISTIC_WINDOW_MS = 120_000
SCHEDULED_OPTIMISTIC_WINDOW_MS = 10 * 60_000
SEEN_GUID_LIMIT = 2000


def now_ms() -> int:
    return int(time.time() * 1000)


def looks_unresolved(name: Optional[str]) -> bool:
    """True if a display name is a raw phone number or email rather than a contact name."""
    if not name:
        return True
    if re.match(r"^[+\d][\d\s()\-+.]+$", name):
        return True
    return "@" in name and "." in name


class ClientSyncStore:
    def __init__(self, api: SyncApi, cache: Optional[LocalCache] = None, page_size: int = config.PAGE_SIZE):
        self.api = api
        self.cache = cache
        self.page_size = page_size

        self.chats: List[ClientChat] = []
        self.source = "none"  # none | cache | server
        self.active_chat_id: Optional[int] = None
        self.has_more: Dict[int, bool] = {}

        self._messages: Dict[int, List[ClientMessage]] = {}
        self._participants: Dict[int, List[ClientParticipant]] = {}
        self._optimistic_counter = 0
        # Guids already applied from live events, oldest first
        self._seen_guids: "OrderedDict[str, None]" = OrderedDict()

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def messages_for(self, chat_id: int) -> List[ClientMessage]:
        return self._messages.get(chat_id, [])

    def participants_for(self, chat_id: int) -> List[ClientParticipant]:
        return self._participants.get(chat_id, [])

    def is_loaded(self, chat_id: int) -> bool:
        return chat_id in self._messages

    def get_chat(self, chat_id: int) -> Optional[ClientChat]:
        for chat in self.chats:
            if chat.id == chat_id:
                return chat
        return None

    def logical_chat_id(self, raw_chat_id: int) -> Optional[int]:
        """Map a raw store chat id to the list entry that covers it."""
        for chat in self.chats:
            if raw_chat_id in chat.chat_ids:
                return chat.id
        return None

    def _find(self, chat_id: int, guid: str) -> Optional[ClientMessage]:
        for message in self._messages.get(chat_id, []):
            if message.guid == guid:
                return message
        return None

    async def _persist(self, operation: Awaitable) -> None:
        try:
            await operation
        except aiosqlite.Error as e:
            logger.warning(f"Local cache write failed: {e}")

    # ------------------------------------------------------------------
    # Conversation list
    # ------------------------------------------------------------------

    async def load_cached_chats(self) -> None:
        """Show the cached list until the first server response arrives."""
        if self.cache is None or self.source != "none":
            return
        try:
            cached = await self.cache.get_cached_chats()
        except aiosqlite.Error as e:
            logger.warning(f"Could not read cached chats: {e}")
            return
        if cached:
            self.chats = cached
            self.source = "cache"
            logger.info(f"Loaded {len(cached)} chat(s) from local cache")

    def set_server_chats(self, chats: List[ClientChat]) -> None:
        """Replace the list, keeping a known contact name where the server only has a raw handle."""
        previous = {chat.id: chat for chat in self.chats}
        for chat in chats:
            old = previous.get(chat.id)
            if old is None or looks_unresolved(old.display_name):
                continue
            if looks_unresolved(chat.display_name):
                chat.display_name = old.display_name
        self.chats = list(chats)
        self.source = "server"

    async def refresh_chat_list(self) -> bool:
        try:
            chats = await self.api.get_chats()
        except httpx.HTTPError as e:
            logger.warning(f"Failed to refresh chat list: {e}")
            return False
        self.set_server_chats(chats)
        if self.cache is not None:
            await self._persist(self.cache.cache_chats(self.chats))
        return True

    def update_chat_last_message(self, chat_id: int, message: ClientMessage) -> None:
        chat = self.get_chat(chat_id)
        if chat is None:
            return
        chat.last_message = message
        self.chats.remove(chat)
        self.chats.insert(0, chat)

    def increment_unread(self, chat_id: int) -> None:
        chat = self.get_chat(chat_id)
        if chat is not None:
            chat.unread_count += 1

    def clear_unread(self, chat_id: int) -> None:
        chat = self.get_chat(chat_id)
        if chat is not None:
            chat.unread_count = 0

    # ------------------------------------------------------------------
    # Message lists
    # ------------------------------------------------------------------

    def append_message(self, chat_id: int, message: ClientMessage) -> bool:
        messages = self._messages.setdefault(chat_id, [])
        if any(m.guid == message.guid for m in messages):
            return False
        messages.append(message)
        return True

    def prepend_messages(self, chat_id: int, older: List[ClientMessage]) -> int:
        messages = self._messages.setdefault(chat_id, [])
        known = {m.guid for m in messages}
        fresh = [m for m in older if m.guid not in known]
        self._messages[chat_id] = fresh + messages
        return len(fresh)

    def remove_message(self, chat_id: int, guid: str) -> bool:
        messages = self._messages.get(chat_id, [])
        for index, message in enumerate(messages):
            if message.guid == guid:
                del messages[index]
                return True
        return False

    def update_message_body(self, chat_id: int, guid: str, body: str, edited_at: Optional[int] = None) -> bool:
        message = self._find(chat_id, guid)
        if message is None:
            return False
        message.body = body
        message.text = body
        message.edited_at = edited_at or now_ms()
        return True

    def mark_message_retracted(self, chat_id: int, guid: str, retracted_at: Optional[int] = None) -> bool:
        message = self._find(chat_id, guid)
        if message is None:
            return False
        message.body = ""
        message.text = None
        message.retracted_at = retracted_at or now_ms()
        return True

    def update_message_reactions(self, chat_id: int, event: ClientMessage) -> bool:
        """Fold a reaction add/remove into its target. Unloaded targets are skipped."""
        target = parse_target(event.reaction_target_ref)
        if target is None:
            return False
        message = self._find(chat_id, target[1])
        if message is None:
            return False
        message.reactions = apply_reaction_event(message.reactions, event)
        return True

    def match_optimistic(self, chat_id: int, incoming: ClientMessage) -> bool:
        """
        Drop the placeholder a confirmed self-authored message replaces.

        A candidate is still unconfirmed, has the same scheduled-ness and the
        same trimmed body, and was created within the window (ten minutes
        for scheduled sends, two for the rest). Only the first match goes.
        """
        if not incoming.is_from_me:
            return False
        body = incoming.body.strip()
        if not body:
            return False

        window = SCHEDULED_OPTIMISTIC_WINDOW_MS if incoming.is_scheduled else OPTIMISTIC_WINDOW_MS
        messages = self._messages.get(chat_id, [])
        for index, candidate in enumerate(messages):
            if not candidate.is_optimistic:
                continue
            if candidate.is_scheduled != incoming.is_scheduled:
                continue
            if candidate.body.strip() != body:
                continue
            if abs(incoming.created_at - candidate.created_at) > window:
                continue
            del messages[index]
            return True
        return False

    # ------------------------------------------------------------------
    # Local (optimistic) changes
    # ------------------------------------------------------------------

    def add_optimistic_message(self, chat_id: int, text: str, schedule_at: Optional[int] = None) -> ClientMessage:
        self._optimistic_counter += 1
        placeholder = ClientMessage(
            guid=f"temp-{uuid.uuid4().hex}",
            seq=-self._optimistic_counter,
            chat_id=chat_id,
            is_from_me=True,
            text=text,
            body=text,
            created_at=now_ms(),
            schedule_state="pending" if schedule_at else "none",
            schedule_at=schedule_at,
            pending_confirmation=True,
        )
        self.append_message(chat_id, placeholder)
        return placeholder

    def remove_optimistic_message(self, chat_id: int, guid: str) -> bool:
        return self.remove_message(chat_id, guid)

    def apply_local_edit(self, chat_id: int, guid: str, text: str) -> bool:
        return self.update_message_body(chat_id, guid, text)

    def apply_local_unsend(self, chat_id: int, guid: str) -> bool:
        return self.mark_message_retracted(chat_id, guid)

    # ------------------------------------------------------------------
    # Live events
    # ------------------------------------------------------------------

    async def apply_incoming(self, events: List[IncomingEvent]) -> None:
        """Apply one `new-message` batch in order."""
        needs_refresh = False
        to_cache: Dict[int, List[ClientMessage]] = {}

        for event in events:
            chat_id = self.logical_chat_id(event.chat_id)
            if chat_id is None:
                needs_refresh = True
                continue
            message = event.message

            if is_reaction_kind(message.associated_type):
                self.update_message_reactions(chat_id, message)
                continue

            if message.associated_type == EDIT_MARKER_KIND:
                target = parse_target(message.reaction_target_ref)
                if target is not None and message.body.strip():
                    self.update_message_body(chat_id, target[1], message.body, message.created_at or None)
                continue

            # A replayed row must leave the summary, unread count and cache untouched
            first_seen = self._mark_seen(message.guid)
            if first_seen:
                self.match_optimistic(chat_id, message)
            if self.is_loaded(chat_id):
                is_new = self.append_message(chat_id, message) and first_seen
            else:
                chat = self.get_chat(chat_id)
                is_new = first_seen and not (
                    chat is not None and chat.last_message is not None
                    and chat.last_message.guid == message.guid
                )
            if not is_new:
                logger.debug(f"Skipping already applied message {message.guid}")
                continue

            self.update_chat_last_message(chat_id, message)
            if not message.is_from_me and chat_id != self.active_chat_id:
                self.increment_unread(chat_id)
            to_cache.setdefault(chat_id, []).append(message)

        if self.cache is not None:
            for chat_id, messages in to_cache.items():
                await self._persist(self.cache.cache_messages(chat_id, messages))

        if needs_refresh:
            logger.info("New message for an unknown chat, refreshing chat list")
            await self.refresh_chat_list()

    def _mark_seen(self, guid: str) -> bool:
        """Record a live-event guid; False if it was already applied."""
        if guid in self._seen_guids:
            return False
        self._seen_guids[guid] = None
        if len(self._seen_guids) > SEEN_GUID_LIMIT:
            self._seen_guids.popitem(last=False)
        return True

    async def handle_read_state(self, chat_ids: List[int]) -> None:
        logger.debug(f"Read state changed for chats {chat_ids}")
        await self.refresh_chat_list()

    # ------------------------------------------------------------------
    # Page loads
    # ------------------------------------------------------------------

    async def load_chat(self, chat_id: int) -> None:
        """
        Open a conversation: cached messages first, then the server page.

        The server page is applied only if the chat is still the active one
        when it arrives. On failure the current messages are left as they are.
        """
        self.active_chat_id = chat_id
        self.clear_unread(chat_id)
        chat = self.get_chat(chat_id)
        chat_ids = chat.chat_ids if chat else [chat_id]

        if not self.is_loaded(chat_id) and self.cache is not None:
            try:
                cached = await self.cache.get_cached_messages(chat_id, self.page_size)
                participants = await self.cache.get_cached_participants(chat_id)
            except aiosqlite.Error as e:
                logger.warning(f"Could not read cached messages for chat {chat_id}: {e}")
            else:
                if cached:
                    self._messages[chat_id] = cached
                    self._participants[chat_id] = participants

        try:
            messages, participants = await self.api.get_messages(chat_ids, limit=self.page_size)
        except httpx.HTTPError as e:
            logger.warning(f"Failed to load messages for chat {chat_id}: {e}")
            return

        if self.active_chat_id != chat_id:
            logger.debug(f"Discarding page for chat {chat_id}, no longer active")
            return

        pending = [m for m in self._messages.get(chat_id, []) if m.is_optimistic]
        self._messages[chat_id] = messages + pending
        self._participants[chat_id] = participants
        self.has_more[chat_id] = len(messages) >= self.page_size

        if self.cache is not None:
            await self._persist(self.cache.cache_messages(chat_id, messages))
            await self._persist(self.cache.cache_participants(chat_id, participants))

    async def load_older_messages(self, chat_id: int) -> int:
        """Fetch the page before the oldest loaded message. Returns how many were added."""
        if not self.has_more.get(chat_id, True):
            return 0
        chat = self.get_chat(chat_id)
        chat_ids = chat.chat_ids if chat else [chat_id]
        offset = sum(1 for m in self._messages.get(chat_id, []) if not m.is_optimistic)

        try:
            older, _ = await self.api.get_messages(chat_ids, limit=self.page_size, offset=offset)
        except httpx.HTTPError as e:
            logger.warning(f"Failed to load older messages for chat {chat_id}: {e}")
            return 0

        self.has_more[chat_id] = len(older) >= self.page_size
        added = self.prepend_messages(chat_id, older)
        if self.cache is not None and older:
            await self._persist(self.cache.cache_messages(chat_id, older))
        return added
