"""
Change watcher: polls the store for new rows and read-state changes and
publishes them to live subscribers.
"""
import asyncio
import logging
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from config.settings import settings
from core.event_hub import EVENT_CHAT_READ_STATE, EVENT_NEW_MESSAGE, EventHub
from core.reactions import default_emoji
from database.cursor_store import CursorStore
from database.repositories.message_repo import MessageRepository
from integrations.contacts.directory import ContactDirectory
from models.message import Message, MessageKind, NewMessageEvent

logger = logging.getLogger(__name__)


class TickResult(BaseModel):
    """What one tick observed"""
    cursor: int
    new_messages: List[NewMessageEvent] = Field(default_factory=list)
    read_state_changed: List[int] = Field(default_factory=list)


def diff_read_state(previous: Dict[int, int], current: Dict[int, int]) -> List[int]:
    """Chat ids whose last-read marker changed, appeared or disappeared."""
    changed = [chat_id for chat_id, marker in current.items() if previous.get(chat_id) != marker]
    changed.extend(chat_id for chat_id in previous if chat_id not in current)
    return sorted(changed)


class ChangeWatcher:
    """
    Fixed-interval poller over the change feed.

    The cursor only moves forward. Ticks never overlap: the loop sleeps
    after a tick finishes, and ``tick`` itself is guarded by a lock.
    """

    def __init__(
        self,
        messages: MessageRepository,
        hub: EventHub,
        contacts: Optional[ContactDirectory] = None,
        cursor_store: Optional[CursorStore] = None,
        interval_s: Optional[float] = None,
    ):
        self.messages = messages
        self.hub = hub
        self.contacts = contacts or ContactDirectory()
        self.cursor_store = cursor_store
        self.interval_s = interval_s or settings.WATCHER_INTERVAL_S

        self._cursor: Optional[int] = None
        self._read_state: Optional[Dict[int, int]] = None
        self._tick_lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None

    @property
    def cursor(self) -> Optional[int]:
        return self._cursor

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def prime(self) -> None:
        """Resume from the persisted cursor, or start at the current head."""
        stored = self.cursor_store.load() if self.cursor_store else None
        if stored is not None:
            self._cursor = stored
            logger.info(f"Watcher resuming from persisted cursor {stored}")
        else:
            self._cursor = await self.messages.max_seq()
            logger.info(f"Watcher starting at head, cursor {self._cursor}")
        self._read_state = await self.messages.read_state_snapshot()

    async def tick(self) -> TickResult:
        async with self._tick_lock:
            if self._cursor is None:
                await self.prime()
            return await self._tick()

    async def _tick(self) -> TickResult:
        rows = await self.messages.rows_since(self._cursor)

        events: List[NewMessageEvent] = []
        for message in rows:
            await self._enrich(message)
            events.append(NewMessageEvent(chat_id=message.chat_id, message=message))

        # Rows are published before the cursor moves past them
        if events:
            delivered = self.hub.publish(EVENT_NEW_MESSAGE, events)
            logger.debug(f"Published {len(events)} new message(s) to {delivered} client(s)")
        if rows:
            self._advance(max(message.seq for message in rows))

        snapshot = await self.messages.read_state_snapshot()
        changed = diff_read_state(self._read_state or {}, snapshot) if self._read_state is not None else []
        self._read_state = snapshot

        if changed:
            self.hub.publish(EVENT_CHAT_READ_STATE, {"chat_ids": changed})

        return TickResult(cursor=self._cursor, new_messages=events, read_state_changed=changed)

    async def _enrich(self, message: Message) -> None:
        if not message.is_from_me and message.sender_id:
            message.sender_name = self.contacts.display_name(message.sender_id) or message.sender_id

        if message.has_attachments:
            message.attachments = await self.messages.attachments_for_message(message.seq)

        if message.kind in (MessageKind.REACTION_ADD, MessageKind.REACTION_REMOVE) and not message.reaction_emoji:
            message.reaction_emoji = default_emoji(message.associated_type)

    def _advance(self, seq: int) -> None:
        if self._cursor is not None and seq <= self._cursor:
            return
        self._cursor = seq
        if self.cursor_store is None:
            return
        try:
            self.cursor_store.save(seq)
        except OSError as e:
            logger.warning(f"Failed to persist watcher cursor {seq}: {e}")

    async def _run(self) -> None:
        while True:
            try:
                await self.tick()
            except Exception as e:
                logger.error(f"Watcher poll error: {e}", exc_info=True)
            await asyncio.sleep(self.interval_s)

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run())
        logger.info(f"Change watcher started (every {self.interval_s}s)")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Change watcher stopped")
