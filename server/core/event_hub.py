"""In-process fan-out of live events to server-sent-event subscribers."""
import json
import logging
from typing import Any, Callable, Dict
from uuid import uuid4

from pydantic_core import to_jsonable_python

logger = logging.getLogger(__name__)

EVENT_NEW_MESSAGE = "new-message"
EVENT_CHAT_READ_STATE = "chat-read-state"
EVENT_CONNECTED = "connected"

# A sink takes one encoded frame; raising means the subscriber is gone.
Sink = Callable[[str], None]


def format_event(event_type: str, payload: Any) -> str:
    """Encode one event in text/event-stream framing."""
    data = json.dumps(to_jsonable_python(payload), separators=(",", ":"))
    return f"event: {event_type}\ndata: {data}\n\n"


class EventHub:
    """
    Registry of subscriber sinks.

    ``publish`` writes synchronously to every sink. A sink that raises is
    dropped within the same call and never retried; there is no buffering.
    """

    def __init__(self):
        self._clients: Dict[str, Sink] = {}

    @property
    def client_count(self) -> int:
        return len(self._clients)

    def add_client(self, sink: Sink) -> str:
        client_id = uuid4().hex
        self._clients[client_id] = sink
        logger.info(f"SSE client {client_id} connected ({self.client_count} total)")
        return client_id

    def remove_client(self, client_id: str) -> bool:
        removed = self._clients.pop(client_id, None) is not None
        if removed:
            logger.info(f"SSE client {client_id} disconnected ({self.client_count} total)")
        return removed

    def send_to(self, client_id: str, event_type: str, payload: Any) -> bool:
        """Deliver an event to a single subscriber; False if it was dropped."""
        sink = self._clients.get(client_id)
        if sink is None:
            return False
        try:
            sink(format_event(event_type, payload))
            return True
        except Exception as e:
            logger.debug(f"Dropping SSE client {client_id}: {e!r}")
            self._clients.pop(client_id, None)
            return False

    def publish(self, event_type: str, payload: Any) -> int:
        """Write one event to all subscribers. Returns how many received it."""
        frame = format_event(event_type, payload)
        delivered = 0

        for client_id, sink in list(self._clients.items()):
            try:
                sink(frame)
                delivered += 1
            except Exception as e:
                logger.debug(f"Dropping SSE client {client_id}: {e!r}")
                self._clients.pop(client_id, None)

        return delivered
