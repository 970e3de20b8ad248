"""Tests for the event-stream parser and ConnectionManager reconnect behaviour."""
import asyncio
import json
import pytest
import httpx

from sync_client.api import SyncApi
from sync_client.connection import ConnectionManager, ConnectionState, iter_server_events


async def _lines(items):
    for item in items:
        yield item


def _frame(event_type, payload):
    return f"event: {event_type}\ndata: {json.dumps(payload)}\n\n"


def _stream_api(handler):
    return SyncApi(base_url="http://sync.test", transport=httpx.MockTransport(handler))


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------

class TestIterServerEvents:
    @pytest.mark.asyncio
    async def test_parses_typed_frames(self):
        lines = ["event: connected", 'data: {"client_id":"abc"}', "", "event: chat-read-state", 'data: {"chat_ids":[1]}', ""]
        events = [e async for e in iter_server_events(_lines(lines))]
        assert [e.type for e in events] == ["connected", "chat-read-state"]
        assert events[1].data == {"chat_ids": [1]}

    @pytest.mark.asyncio
    async def test_skips_keepalive_comments(self):
        lines = [": keepalive", "", "event: new-message", "data: []", ""]
        events = [e async for e in iter_server_events(_lines(lines))]
        assert len(events) == 1
        assert events[0].data == []

    @pytest.mark.asyncio
    async def test_drops_undecodable_data(self):
        lines = ["event: new-message", "data: {not json", "", "event: connected", "data: {}", ""]
        events = [e async for e in iter_server_events(_lines(lines))]
        assert [e.type for e in events] == ["connected"]

    @pytest.mark.asyncio
    async def test_incomplete_trailing_frame_ignored(self):
        lines = ["event: connected", "data: {}"]
        assert [e async for e in iter_server_events(_lines(lines))] == []


# ---------------------------------------------------------------------------
# ConnectionManager
# ---------------------------------------------------------------------------

class TestConnectionManager:
    @pytest.mark.asyncio
    async def test_dispatches_and_reconnects(self):
        requests = []

        def handler(request):
            requests.append(request)
            body = _frame("connected", {"client_id": "c1"}) + _frame("new-message", [{"chat_id": 1}])
            return httpx.Response(200, content=body.encode(), headers={"content-type": "text/event-stream"})

        api = _stream_api(handler)
        manager = ConnectionManager(api, reconnect_delay_s=0.01)
        connected = []
        batches = []
        reconnected = asyncio.Event()

        def on_connected(data):
            connected.append(data)
            if len(connected) >= 2:
                reconnected.set()

        manager.on("connected", on_connected)
        manager.on("new-message", batches.append)

        manager.connect()
        await asyncio.wait_for(reconnected.wait(), timeout=2.0)
        await manager.close()
        await api.close()

        assert len(requests) >= 2
        assert requests[0].url.path == "/events"
        assert batches[0] == [{"chat_id": 1}]
        assert manager.state == ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_http_error_schedules_retry(self):
        attempts = []
        retried = asyncio.Event()

        def handler(request):
            attempts.append(request)
            if len(attempts) >= 2:
                retried.set()
            return httpx.Response(503)

        api = _stream_api(handler)
        manager = ConnectionManager(api, reconnect_delay_s=0.01)
        states = []
        manager.on_state_change(states.append)

        manager.connect()
        await asyncio.wait_for(retried.wait(), timeout=2.0)
        await manager.close()
        await api.close()

        assert ConnectionState.CONNECTING in states
        assert ConnectionState.CONNECTED not in states
        assert ConnectionState.DISCONNECTED in states

    @pytest.mark.asyncio
    async def test_listener_errors_do_not_break_dispatch(self):
        delivered = asyncio.Event()

        def handler(request):
            return httpx.Response(200, content=_frame("connected", {}).encode())

        def broken(_data):
            raise RuntimeError("boom")

        api = _stream_api(handler)
        manager = ConnectionManager(api, reconnect_delay_s=5)
        manager.on("connected", broken)
        manager.on("connected", lambda _data: delivered.set())

        manager.connect()
        await asyncio.wait_for(delivered.wait(), timeout=2.0)
        await manager.close()
        await api.close()

    @pytest.mark.asyncio
    async def test_close_is_idempotent_and_final(self):
        api = _stream_api(lambda request: httpx.Response(503))
        manager = ConnectionManager(api, reconnect_delay_s=5)
        manager.connect()
        await manager.close()
        await manager.close()
        manager.connect()
        assert manager.closed
        assert manager.state == ConnectionState.DISCONNECTED
        await api.close()

    def test_unsubscribe(self):
        manager = ConnectionManager(SyncApi(base_url="http://sync.test"))
        calls = []
        unsubscribe = manager.on("connected", calls.append)
        unsubscribe()
        unsubscribe()
        assert manager._listeners["connected"] == []
