"""
Shared singleton dependencies for the application.

The store connection, command bridge, event hub and change watcher are
created once at startup and reused across requests. Repositories and
the action/merger services are thin wrappers and are built per request.
"""
import logging
from typing import Optional

from config.settings import settings
from core.actions import MessageActions
from core.event_hub import EventHub
from core.merger import ConversationMerger
from core.watcher import ChangeWatcher
from database.client import close_store, get_store, init_store
from database.cursor_store import CursorStore
from database.repositories.chat_repo import ChatRepository
from database.repositories.message_repo import MessageRepository
from integrations.bridge.client import CommandBridge
from integrations.bridge.schedule_cli import ScheduleBridge
from integrations.bridge.scripting import ScriptingSender
from integrations.contacts.directory import ContactDirectory
from integrations.pinning.reader import PinningReader

logger = logging.getLogger(__name__)

# Module-level singletons: initialized once via init_dependencies()
_event_hub: Optional[EventHub] = None
_bridge: Optional[CommandBridge] = None
_schedule_bridge: Optional[ScheduleBridge] = None
_sender: Optional[ScriptingSender] = None
_contacts: Optional[ContactDirectory] = None
_pinning: Optional[PinningReader] = None
_watcher: Optional[ChangeWatcher] = None


async def init_dependencies(start_watcher: bool = True) -> None:
    """
    Initialize all shared singletons. Called once at application startup.
    """
    global _event_hub, _bridge, _schedule_bridge, _sender, _contacts, _pinning, _watcher

    logger.info("Initializing shared dependencies...")

    store = await init_store()

    _event_hub = EventHub()
    _bridge = CommandBridge()
    _schedule_bridge = ScheduleBridge()
    _sender = ScriptingSender()
    _contacts = ContactDirectory()
    _pinning = PinningReader()

    _watcher = ChangeWatcher(
        messages=MessageRepository(store),
        hub=_event_hub,
        contacts=_contacts,
        cursor_store=CursorStore(settings.CURSOR_PATH),
    )
    if start_watcher:
        await _watcher.prime()
        _watcher.start()

    logger.info("Dependencies initialized")


async def shutdown_dependencies() -> None:
    """Clean up resources on shutdown."""
    global _watcher
    if _watcher:
        await _watcher.stop()
        _watcher = None
    await close_store()


def _require(value, name: str):
    if value is None:
        raise RuntimeError(f"{name} not initialized. Call init_dependencies() first.")
    return value


def get_event_hub() -> EventHub:
    return _require(_event_hub, "EventHub")


def get_bridge() -> CommandBridge:
    return _require(_bridge, "CommandBridge")


def get_watcher() -> ChangeWatcher:
    return _require(_watcher, "ChangeWatcher")


def get_message_repo() -> MessageRepository:
    return MessageRepository(get_store())


def get_chat_repo() -> ChatRepository:
    return ChatRepository(get_store())


def get_merger() -> ConversationMerger:
    return ConversationMerger(contacts=_contacts, pinning=_pinning)


def get_actions() -> MessageActions:
    """
    Build MessageActions over the shared bridge.

    WARNING: MessageActions and the repositories are created per request
    and MUST remain stateless. The FIFO ordering of bridge commands lives
    in the shared CommandBridge, not here.
    """
    return MessageActions(
        messages=get_message_repo(),
        chats=get_chat_repo(),
        bridge=get_bridge(),
        schedule_bridge=_require(_schedule_bridge, "ScheduleBridge"),
        sender=_require(_sender, "ScriptingSender"),
    )
