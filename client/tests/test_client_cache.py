"""Tests for LocalCache against an in-memory SQLite database."""
import pytest
import pytest_asyncio

from sync_client.cache import LocalCache
from sync_client.models import ClientChat, ClientMessage, ClientParticipant


@pytest_asyncio.fixture
async def cache():
    cache = LocalCache(":memory:")
    await cache.initialize()
    yield cache
    await cache.close()


class TestLocalCache:
    @pytest.mark.asyncio
    async def test_chats_ordered_by_recency(self, cache):
        old = ClientChat(id=1, guid="g1", last_message=ClientMessage(guid="a", created_at=100))
        new = ClientChat(id=2, guid="g2", last_message=ClientMessage(guid="b", created_at=200))
        await cache.cache_chats([old, new])
        assert [c.id for c in await cache.get_cached_chats()] == [2, 1]

    @pytest.mark.asyncio
    async def test_message_upsert_by_guid(self, cache):
        await cache.cache_messages(1, [ClientMessage(guid="a", seq=1, body="first", created_at=1)])
        await cache.cache_messages(1, [ClientMessage(guid="a", seq=1, body="edited", created_at=1)])
        messages = await cache.get_cached_messages(1)
        assert len(messages) == 1
        assert messages[0].body == "edited"

    @pytest.mark.asyncio
    async def test_placeholders_not_cached(self, cache):
        await cache.cache_messages(1, [ClientMessage(guid="temp-1", seq=-1, body="x", pending_confirmation=True)])
        assert await cache.get_cached_messages(1) == []

    @pytest.mark.asyncio
    async def test_latest_page_oldest_first(self, cache):
        await cache.cache_messages(1, [ClientMessage(guid=f"m{i}", seq=i, created_at=i) for i in range(5)])
        page = await cache.get_cached_messages(1, limit=2)
        assert [m.guid for m in page] == ["m3", "m4"]

    @pytest.mark.asyncio
    async def test_participants_and_values(self, cache):
        await cache.cache_participants(1, [ClientParticipant(identifier="bob@example.com")])
        assert (await cache.get_cached_participants(1))[0].identifier == "bob@example.com"
        assert await cache.get_cached_participants(2) == []
        await cache.set_value("cursor", "42")
        assert await cache.get_value("cursor") == "42"
        assert await cache.get_value("missing") is None

    @pytest.mark.asyncio
    async def test_uninitialized_raises(self):
        with pytest.raises(RuntimeError):
            LocalCache(":memory:").conn
