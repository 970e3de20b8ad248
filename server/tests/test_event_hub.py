"""Tests for EventHub fan-out and event framing."""
import json

from core.event_hub import EVENT_NEW_MESSAGE, EventHub, format_event
from models.message import Message, NewMessageEvent


def _payload(frame: str):
    data_line = [line for line in frame.splitlines() if line.startswith("data: ")][0]
    return json.loads(data_line[len("data: "):])


class TestFormatEvent:
    def test_framing(self):
        frame = format_event("chat-read-state", {"chat_ids": [1, 2]})
        assert frame.startswith("event: chat-read-state\n")
        assert frame.endswith("\n\n")
        assert _payload(frame) == {"chat_ids": [1, 2]}

    def test_models_serialized(self):
        event = NewMessageEvent(chat_id=3, message=Message(guid="g1", body="hi"))
        payload = _payload(format_event(EVENT_NEW_MESSAGE, [event]))
        assert payload[0]["chat_id"] == 3
        assert payload[0]["message"]["body"] == "hi"


class TestEventHub:
    def test_publish_reaches_every_client(self):
        hub = EventHub()
        a, b = [], []
        hub.add_client(a.append)
        hub.add_client(b.append)
        assert hub.publish("new-message", []) == 2
        assert len(a) == 1 and len(b) == 1

    def test_failing_sink_is_dropped(self):
        hub = EventHub()
        good = []

        def broken(_frame):
            raise RuntimeError("closed")

        hub.add_client(broken)
        hub.add_client(good.append)
        assert hub.publish("new-message", []) == 1
        assert hub.client_count == 1
        hub.publish("new-message", [])
        assert len(good) == 2

    def test_remove_client(self):
        hub = EventHub()
        client_id = hub.add_client(lambda _frame: None)
        assert hub.remove_client(client_id) is True
        assert hub.remove_client(client_id) is False
        assert hub.publish("new-message", []) == 0

    def test_send_to_single_client(self):
        hub = EventHub()
        a, b = [], []
        client_id = hub.add_client(a.append)
        hub.add_client(b.append)
        assert hub.send_to(client_id, "connected", {"client_id": client_id}) is True
        assert len(a) == 1 and b == []
        assert hub.send_to("unknown", "connected", {}) is False
