"""Live-update stream (server-sent events)"""
import asyncio
import logging

from fastapi import APIRouter, Request
from fastapi.responses import StreamingResponse

from core.dependencies import get_event_hub
from core.event_hub import EVENT_CONNECTED

logger = logging.getLogger(__name__)
router = APIRouter()

# A subscriber that falls this far behind is dropped by the hub
SUBSCRIBER_QUEUE_SIZE = 256
KEEPALIVE_S = 15.0


@router.get("/events")
async def stream_events(request: Request):
    """
    Subscribe to `new-message` and `chat-read-state` events.

    The first frame is always `connected`, carrying this subscriber's id.
    """
    hub = get_event_hub()
    queue: asyncio.Queue[str] = asyncio.Queue(maxsize=SUBSCRIBER_QUEUE_SIZE)
    client_id = hub.add_client(queue.put_nowait)
    hub.send_to(client_id, EVENT_CONNECTED, {"client_id": client_id})

    async def frames():
        try:
            while not await request.is_disconnected():
                try:
                    yield await asyncio.wait_for(queue.get(), timeout=KEEPALIVE_S)
                except asyncio.TimeoutError:
                    yield ": keepalive\n\n"
        finally:
            hub.remove_client(client_id)

    return StreamingResponse(
        frames(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
