"""Tests for protocol interfaces."""

from realtime_chat.adapters import HttpChatApi, SupabaseBackend
from realtime_chat.adapters.backend.supabase import SupabaseFeedChannel
from realtime_chat.models.subscription import FeedFilter
from tests.fakes import FakeBackend, FakeChannel, FakeFeed

BACKEND_METHODS = (
    "get_current_user",
    "fetch_conversations",
    "fetch_messages",
    "insert_message",
    "update_message",
    "delete_message",
)

API_METHODS = (
    "list_conversations",
    "create_conversation",
    "delete_conversation",
    "ask_assistant",
    "aclose",
)


class TestBackendProviderProtocol:
    """Test BackendProvider protocol compliance."""

    def test_fake_backend_implements_protocol(self, backend):
        """Test that the in-memory backend has every protocol method."""
        for name in BACKEND_METHODS:
            assert hasattr(backend, name), name

    def test_supabase_backend_implements_protocol(self):
        """Test that the Supabase adapter has every protocol method."""
        for name in BACKEND_METHODS:
            assert hasattr(SupabaseBackend, name), name

    async def test_fake_backend_fetch_messages(self, backend: FakeBackend):
        """Test that fetched rows come back newest first and limited."""
        backend.rows["c1"] = [
            {"id": f"r{i}", "created_at": f"2024-03-01T12:00:0{i}+00:00"} for i in range(5)
        ]

        rows = await backend.fetch_messages("c1", limit=2)

        assert [r["id"] for r in rows] == ["r4", "r3"]


class TestFeedProviderProtocol:
    """Test FeedProvider and FeedChannel protocol compliance."""

    def test_fake_feed_implements_protocol(self):
        """Test that the in-memory feed can open channels."""
        assert hasattr(FakeFeed(), "open_channel")
        assert hasattr(SupabaseBackend, "open_channel")

    def test_channels_implement_protocol(self):
        """Test that both channel implementations expose the channel surface."""
        channel = FakeChannel("messages:c1", FeedFilter())
        for obj in (channel, SupabaseFeedChannel):
            assert hasattr(obj, "topic")
            assert hasattr(obj, "events")
            assert hasattr(obj, "close")

    async def test_fake_channel_close_ends_events(self):
        """Test that closing a channel terminates its event stream."""
        channel = FakeChannel("messages:c1", FeedFilter())
        await channel.close()

        events = [event async for event in channel.events()]

        assert events == []
        assert channel.closed


class TestChatApiProtocol:
    """Test ChatApi protocol compliance."""

    def test_http_api_implements_protocol(self):
        """Test that the HTTP client has every protocol method."""
        for name in API_METHODS:
            assert hasattr(HttpChatApi, name), name
