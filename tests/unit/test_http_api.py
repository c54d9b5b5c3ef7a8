"""Tests for the HTTP chat API client."""

import json

import httpx
import pytest

from realtime_chat.adapters.api.http import HttpChatApi, parse_sources
from realtime_chat.config.schema import ApiConfig, RetryConfig
from realtime_chat.models.conversation import ConversationKind
from realtime_chat.utils.async_helpers import ApiError
from tests.fakes import BASE_TIME

CHANNEL_ROW = {
    "id": "c1",
    "type": "channel",
    "name": "general",
    "created_by": "u1",
    "created_at": "2024-03-01T12:00:00Z",
}
DM_ROW = {
    "id": "d1",
    "type": "dm",
    "name": None,
    "created_by": "u2",
    "created_at": "2024-03-01T12:00:00Z",
}


def make_api(handler, access_token: str | None = None) -> HttpChatApi:
    client = httpx.AsyncClient(
        transport=httpx.MockTransport(handler), base_url="http://chat.test"
    )
    return HttpChatApi(
        ApiConfig(base_url="http://chat.test"),
        RetryConfig(max_attempts=1),
        access_token=access_token,
        client=client,
    )


def stream_of(*chunks: str):
    async def body():
        for chunk in chunks:
            yield chunk.encode()

    return body()


class TestConversations:
    """Test the conversations route."""

    @pytest.mark.parametrize(
        "body",
        [
            {"channels": [CHANNEL_ROW], "dms": [DM_ROW]},
            {"data": [CHANNEL_ROW, DM_ROW]},
            [CHANNEL_ROW, DM_ROW],
        ],
    )
    async def test_list_accepts_response_shapes(self, body):
        """Grouped, wrapped and plain list responses are all understood."""
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json=body)

        api = make_api(handler, access_token="session-token")
        conversations = await api.list_conversations()

        assert [c.id for c in conversations] == ["c1", "d1"]
        assert conversations[1].kind is ConversationKind.DM
        assert requests[0].url.path == "/api/conversations"
        assert requests[0].headers["Authorization"] == "Bearer session-token"

    async def test_list_skips_malformed_rows(self):
        """Rows missing required fields are dropped."""
        api = make_api(lambda request: httpx.Response(200, json=[CHANNEL_ROW, {"id": "x"}]))
        conversations = await api.list_conversations()
        assert [c.id for c in conversations] == ["c1"]

    async def test_create_channel(self):
        """Creating a channel posts its type and name."""
        payloads = []

        def handler(request: httpx.Request) -> httpx.Response:
            payloads.append(json.loads(request.content))
            return httpx.Response(200, json=CHANNEL_ROW)

        api = make_api(handler)
        conversation = await api.create_conversation(ConversationKind.CHANNEL, name="general")

        assert payloads == [{"type": "channel", "name": "general", "recipient_id": None}]
        assert conversation.name == "general"
        assert conversation.created_at == BASE_TIME

    async def test_create_dm(self):
        """Creating a DM sends the recipient."""
        payloads = []

        def handler(request: httpx.Request) -> httpx.Response:
            payloads.append(json.loads(request.content))
            return httpx.Response(200, json=DM_ROW)

        api = make_api(handler)
        conversation = await api.create_conversation(ConversationKind.DM, recipient_id="u2")

        assert payloads[0]["recipient_id"] == "u2"
        assert conversation.kind is ConversationKind.DM

    @pytest.mark.parametrize(
        "kind,kwargs",
        [
            (ConversationKind.CHANNEL, {}),
            (ConversationKind.DM, {"name": "ignored"}),
            (ConversationKind.AI, {"name": "assistant"}),
        ],
    )
    async def test_create_validation(self, kind, kwargs):
        """Missing names or recipients are rejected before any request."""
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json=CHANNEL_ROW)

        api = make_api(handler)
        with pytest.raises(ValueError):
            await api.create_conversation(kind, **kwargs)
        assert requests == []

    async def test_delete_sends_type_and_id(self, dm_conversation):
        """Deleting passes the conversation as query parameters."""
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={"success": True})

        api = make_api(handler)
        await api.delete_conversation(dm_conversation)

        assert requests[0].method == "DELETE"
        assert requests[0].url.params["type"] == "dm"
        assert requests[0].url.params["id"] == "d1"

    async def test_error_status(self):
        """Error responses raise ApiError with the route's message."""
        api = make_api(
            lambda request: httpx.Response(403, json={"error": "You can only delete your own"})
        )
        with pytest.raises(ApiError, match="You can only delete your own") as exc_info:
            await api.list_conversations()
        assert exc_info.value.status_code == 403

    async def test_non_json_body(self):
        """A success status with a non-JSON body raises ApiError."""
        api = make_api(lambda request: httpx.Response(200, text="<html>maintenance</html>"))
        with pytest.raises(ApiError, match="Unexpected conversations payload"):
            await api.list_conversations()

    async def test_create_with_non_json_body(self):
        """A created conversation that cannot be read raises ApiError."""
        api = make_api(lambda request: httpx.Response(201, text="created"))
        with pytest.raises(ApiError, match="Unexpected conversation payload"):
            await api.create_conversation(ConversationKind.CHANNEL, name="general")

    async def test_network_error(self):
        """Transport failures raise ApiError without a status."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        api = make_api(handler)
        with pytest.raises(ApiError) as exc_info:
            await api.list_conversations()
        assert exc_info.value.status_code is None

    async def test_aclose(self):
        """Closing the API closes the HTTP client."""
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
        api = HttpChatApi(ApiConfig(), client=client)
        await api.aclose()
        assert client.is_closed


class TestAssistantStream:
    """Test the streamed AI answer."""

    async def collect(self, api: HttpChatApi) -> list:
        return [chunk async for chunk in api.ask_assistant("when is standup?", "ai-chat")]

    async def test_sources_then_text(self):
        """The header line yields citations, the rest yields text."""
        payloads = []
        header = json.dumps({"sources": [{"id": "vec-1", "content": "standup at 9"}]})

        def handler(request: httpx.Request) -> httpx.Response:
            payloads.append(json.loads(request.content))
            return httpx.Response(200, content=stream_of(header + "\nStandup ", "is at 9."))

        chunks = await self.collect(make_api(handler))

        sources, *text = chunks
        assert [s.content for s in sources] == ["standup at 9"]
        assert "".join(text) == "Standup is at 9."
        assert payloads == [{"query": "when is standup?", "conversation_id": "ai-chat"}]

    async def test_header_split_across_chunks(self):
        """A header arriving in pieces is reassembled."""
        header = json.dumps({"sources": [{"id": "vec-1", "content": "notes"}]})
        cut = len(header) // 2
        body = stream_of(header[:cut], header[cut:], "\n", "Answer")

        chunks = await self.collect(make_api(lambda request: httpx.Response(200, content=body)))

        assert [s.id for s in chunks[0]] == ["vec-1"]
        assert "".join(chunks[1:]) == "Answer"

    async def test_header_only(self):
        """A body without a newline is read as the header."""
        body = stream_of(json.dumps({"sources": []}))
        chunks = await self.collect(make_api(lambda request: httpx.Response(200, content=body)))
        assert chunks == [[]]

    async def test_error_status(self):
        """A failing route raises ApiError."""
        api = make_api(lambda request: httpx.Response(500, json={"error": "index offline"}))
        with pytest.raises(ApiError, match="index offline") as exc_info:
            await self.collect(api)
        assert exc_info.value.status_code == 500

    async def test_malformed_header(self):
        """A header that is not JSON raises ApiError."""
        body = stream_of("not json\nanswer")
        api = make_api(lambda request: httpx.Response(200, content=body))
        with pytest.raises(ApiError, match="Malformed sources header"):
            await self.collect(api)

    async def test_malformed_citation(self):
        """A citation without an id raises ApiError."""
        body = stream_of(json.dumps({"sources": [{"content": "x"}]}) + "\nhello")
        api = make_api(lambda request: httpx.Response(200, content=body))
        with pytest.raises(ApiError, match="Malformed source citation"):
            await self.collect(api)


class TestParseSources:
    """Test the sources header parser."""

    def test_missing_sources_key(self):
        """An object without sources means no citations."""
        assert parse_sources("{}") == []

    def test_non_object_rejected(self):
        """A JSON list is not a valid header."""
        with pytest.raises(ApiError):
            parse_sources("[1, 2]")

    @pytest.mark.parametrize(
        "sources",
        [[{"content": "x"}], [{"id": "vec-1", "score": "high"}], ["vec-1"]],
        ids=["missing-id", "bad-score", "not-an-object"],
    )
    def test_bad_citation_rejected(self, sources):
        """Citations that cannot be read raise ApiError."""
        with pytest.raises(ApiError, match="Malformed source citation"):
            parse_sources(json.dumps({"sources": sources}))
