"""In-memory stand-ins for the backend and live feed."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from datetime import UTC, datetime, timedelta
from typing import Any

from realtime_chat.models.conversation import Conversation, ConversationKind, Profile
from realtime_chat.models.message import Message, SourceCitation
from realtime_chat.models.subscription import FeedEvent, FeedFilter
from realtime_chat.utils.async_helpers import (
    ApiError,
    AuthenticationError,
    FeedError,
    SendError,
)

BASE_TIME = datetime(2024, 3, 1, 12, 0, tzinfo=UTC)

_CLOSED = object()


class FakeChannel:
    """In-memory feed channel; tests push events into it."""

    def __init__(self, topic: str, feed_filter: FeedFilter) -> None:
        self.topic = topic
        self.feed_filter = feed_filter
        self.closed = False
        self._queue: asyncio.Queue[Any] = asyncio.Queue()

    def push(self, event: FeedEvent) -> None:
        self._queue.put_nowait(event)

    def end(self) -> None:
        """End the event stream without closing the channel."""
        self._queue.put_nowait(_CLOSED)

    async def events(self) -> AsyncIterator[FeedEvent]:
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield item

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._queue.put_nowait(_CLOSED)


class FakeFeed:
    """FeedProvider that records every channel it opens."""

    def __init__(self) -> None:
        self.channels: list[FakeChannel] = []
        self.failures_remaining = 0

    async def open_channel(self, topic: str, feed_filter: FeedFilter) -> FakeChannel:
        if self.failures_remaining > 0:
            self.failures_remaining -= 1
            raise FeedError(f"cannot open {topic}")
        channel = FakeChannel(topic, feed_filter)
        self.channels.append(channel)
        return channel

    def opened(self, topic: str) -> list[FakeChannel]:
        return [c for c in self.channels if c.topic == topic]

    def latest(self, topic: str) -> FakeChannel:
        return self.opened(topic)[-1]


class FakeBackend:
    """BackendProvider holding message rows in memory."""

    def __init__(self, user: Profile) -> None:
        self.user: Profile | None = user
        self.conversations: list[Conversation] = []
        self.rows: dict[str, list[dict[str, Any]]] = {}
        self.inserted: list[dict[str, Any]] = []
        self.insert_error: str | None = None
        self.fetch_delay = 0.0
        self._next_id = 1

    async def get_current_user(self) -> Profile:
        if self.user is None:
            raise AuthenticationError("Not signed in")
        return self.user

    async def fetch_conversations(self) -> list[Conversation]:
        return list(self.conversations)

    async def fetch_messages(self, conversation_id: str, limit: int) -> list[dict[str, Any]]:
        if self.fetch_delay:
            await asyncio.sleep(self.fetch_delay)
        rows = sorted(
            self.rows.get(conversation_id, []), key=lambda r: r["created_at"], reverse=True
        )
        return rows[:limit]

    async def insert_message(self, row: dict[str, Any]) -> dict[str, Any]:
        if self.insert_error is not None:
            raise SendError(self.insert_error)
        stored = {**row, "id": f"srv-{self._next_id}"}
        self._next_id += 1
        self.inserted.append(stored)
        self.rows.setdefault(row["conversation_id"], []).append(stored)
        return stored

    async def update_message(self, server_id: str, changes: dict[str, Any]) -> dict[str, Any]:
        for rows in self.rows.values():
            for row in rows:
                if row["id"] == server_id:
                    row.update(changes)
                    return row
        raise SendError(f"Message {server_id} not found")

    async def delete_message(self, server_id: str) -> None:
        for cid, rows in self.rows.items():
            self.rows[cid] = [r for r in rows if r["id"] != server_id]


class FakeApi:
    """ChatApi that replays a scripted assistant answer."""

    def __init__(self, chunks: list[list[SourceCitation] | str] | None = None) -> None:
        self.conversations: list[Conversation] = []
        self.chunks = list(chunks or [])
        self.error: str | None = None
        self.interrupt: BaseException | None = None
        self.queries: list[tuple[str, str]] = []
        self.deleted: list[str] = []
        self.closed = False

    async def list_conversations(self) -> list[Conversation]:
        if self.error is not None:
            raise ApiError(self.error, status_code=500)
        return list(self.conversations)

    async def create_conversation(
        self,
        kind: ConversationKind,
        name: str | None = None,
        recipient_id: str | None = None,
    ) -> Conversation:
        conversation = Conversation(
            id=f"new-{len(self.conversations) + 1}",
            kind=kind,
            name=name or "",
            created_by="u1",
            created_at=BASE_TIME,
        )
        self.conversations.append(conversation)
        return conversation

    async def delete_conversation(self, conversation: Conversation) -> None:
        self.deleted.append(conversation.id)

    async def ask_assistant(
        self, query: str, conversation_id: str
    ) -> AsyncIterator[list[SourceCitation] | str]:
        self.queries.append((query, conversation_id))
        for chunk in self.chunks:
            yield chunk
        if self.interrupt is not None:
            raise self.interrupt
        if self.error is not None:
            raise ApiError(self.error, status_code=502)

    async def aclose(self) -> None:
        self.closed = True


def make_row(
    index: int,
    conversation_id: str = "c1",
    user_id: str = "u2",
    **overrides: Any,
) -> dict[str, Any]:
    """A ``messages`` row whose timestamp grows with ``index``."""
    row = {
        "id": f"srv-m{index}",
        "client_generated_id": f"cg-{index}",
        "conversation_id": conversation_id,
        "conversation_type": "channel",
        "user_id": user_id,
        "content": f"message {index}",
        "created_at": (BASE_TIME + timedelta(seconds=index)).isoformat(),
    }
    row.update(overrides)
    return row


def make_message(index: int, conversation_id: str = "c1", **overrides: Any) -> Message:
    """A confirmed message whose timestamp grows with ``index``."""
    return Message.from_row(make_row(index, conversation_id, **overrides))


