"""Event-stream connection with automatic reconnect"""
from collections import defaultdict
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterator, Callable, Dict, List, Optional
import asyncio
import inspect
import json
import logging

import httpx

from sync_client import config
from sync_client.api import SyncApi

logger = logging.getLogger(__name__)

Listener = Callable[[Any], Any]


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


@dataclass
class ServerEvent:
    type: str
    data: Any


async def iter_server_events(lines: AsyncIterator[str]) -> AsyncIterator[ServerEvent]:
    """Parse text/event-stream lines into events. Comment lines are keepalives."""
    event_type = "message"
    data_lines: List[str] = []

    async for line in lines:
        if line == "":
            if data_lines:
                raw = "\n".join(data_lines)
                try:
                    yield ServerEvent(event_type, json.loads(raw))
                except json.JSONDecodeError:
                    logger.warning(f"Dropping undecodable '{event_type}' event")
            event_type = "message"
            data_lines = []
            continue
        if line.startswith(":"):
            continue

        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "event":
            event_type = value
        elif field == "data":
            data_lines.append(value)


class ConnectionManager:
    """
    Keeps one subscription to the server's event stream open.

    Any error or end of stream drops the state to DISCONNECTED and a new
    attempt is made after a fixed delay, until ``close`` is called.
    """

    def __init__(self, api: SyncApi, reconnect_delay_s: Optional[float] = None):
        self.api = api
        self.reconnect_delay_s = config.RECONNECT_DELAY_S if reconnect_delay_s is None else reconnect_delay_s
        self._listeners: Dict[str, List[Listener]] = defaultdict(list)
        self._state_listeners: List[Callable[[ConnectionState], None]] = []
        self._state = ConnectionState.DISCONNECTED
        self._task: Optional[asyncio.Task] = None
        self._closed = False

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def closed(self) -> bool:
        return self._closed

    def on(self, event_type: str, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a function that unregisters it."""
        self._listeners[event_type].append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners[event_type]:
                self._listeners[event_type].remove(listener)

        return unsubscribe

    def on_state_change(self, listener: Callable[[ConnectionState], None]) -> None:
        self._state_listeners.append(listener)

    def _set_state(self, state: ConnectionState) -> None:
        if state == self._state:
            return
        self._state = state
        logger.info(f"Connection {state.value}")
        for listener in list(self._state_listeners):
            listener(state)

    def connect(self) -> None:
        if self._closed:
            logger.warning("connect() called on a closed connection manager")
            return
        if self._task is not None and not self._task.done():
            return
        self._task = asyncio.create_task(self._run())

    async def _run(self) -> None:
        while not self._closed:
            self._set_state(ConnectionState.CONNECTING)
            try:
                async with self.api.stream_events() as response:
                    async for event in iter_server_events(response.aiter_lines()):
                        await self._dispatch(event)
                logger.info("Event stream ended by server")
            except httpx.HTTPError as e:
                logger.warning(f"Event stream error: {e}")

            self._set_state(ConnectionState.DISCONNECTED)
            if self._closed:
                break
            logger.info(f"Reconnecting in {self.reconnect_delay_s}s")
            await asyncio.sleep(self.reconnect_delay_s)

    async def _dispatch(self, event: ServerEvent) -> None:
        if event.type == "connected":
            self._set_state(ConnectionState.CONNECTED)
        for listener in list(self._listeners.get(event.type, [])):
            try:
                result = listener(event.data)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Listener for '{event.type}' failed: {e}", exc_info=True)

    async def close(self) -> None:
        """Stop reconnecting and drop the stream. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._set_state(ConnectionState.DISCONNECTED)
