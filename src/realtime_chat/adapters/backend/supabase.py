"""Supabase adapter for auth, table access and live channels.

This module implements the BackendProvider and FeedProvider protocols on top
of the async Supabase client. Table calls go through PostgREST; live updates
go through Realtime channels, whose callbacks are turned into typed feed
events on a per-channel queue.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from typing import Any

import httpx
import structlog
from postgrest.exceptions import APIError
from realtime import RealtimeSubscribeStates
from supabase import AsyncClient, acreate_client

from ...config.schema import BackendConfig
from ...models.conversation import Conversation, Profile
from ...models.subscription import (
    ChangeEvent,
    ChangeType,
    FeedEvent,
    FeedFilter,
    LifecycleEvent,
    LifecycleKind,
    PresenceEvent,
    PresenceKind,
)
from ...utils.async_helpers import AuthenticationError, BackendError, FeedError, SendError

log = structlog.get_logger()

MESSAGE_COLUMNS = (
    "id, conversation_id, conversation_type, user_id, content, created_at, "
    "updated_at, client_generated_id, "
    "user:users!messages_user_id_fkey (id, email, full_name, avatar_url)"
)

_CLOSED = object()


def _error_message(error: Exception) -> str:
    if isinstance(error, APIError):
        return error.message or str(error)
    return str(error)


class SupabaseFeedChannel:
    """One Realtime channel exposed as an async stream of feed events."""

    def __init__(self, client: AsyncClient, channel: Any, feed_filter: FeedFilter) -> None:
        self._client = client
        self._channel = channel
        self._filter = feed_filter
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._closed = False
        self._track_task: asyncio.Task[None] | None = None

    @property
    def topic(self) -> str:
        """Channel topic, e.g. ``messages:c1``."""
        return str(getattr(self._channel, "topic", ""))

    async def events(self) -> AsyncIterator[FeedEvent]:
        """Yield queued events until the channel is closed."""
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield item

    async def close(self) -> None:
        """Remove the channel from the client. Safe to call twice."""
        if self._closed:
            return
        self._closed = True
        if self._track_task is not None and not self._track_task.done():
            self._track_task.cancel()
        try:
            await self._client.remove_channel(self._channel)
        except Exception as e:
            raise FeedError(f"Failed to remove channel {self.topic}: {e}") from e
        finally:
            self._queue.put_nowait(_CLOSED)

    def _push(self, event: FeedEvent) -> None:
        if not self._closed:
            self._queue.put_nowait(event)

    # Realtime callbacks -------------------------------------------------

    def on_subscribe_state(self, state: RealtimeSubscribeStates, error: Exception | None) -> None:
        """Translate a channel join state into a lifecycle event."""
        if state == RealtimeSubscribeStates.SUBSCRIBED:
            self._push(LifecycleEvent(LifecycleKind.SUBSCRIBED))
            if self._filter.presence_key and not self._closed:
                self._track_task = asyncio.ensure_future(self._track())
        elif state == RealtimeSubscribeStates.CHANNEL_ERROR:
            self._push(LifecycleEvent(LifecycleKind.ERROR, str(error) if error else None))
        elif state in (RealtimeSubscribeStates.TIMED_OUT, RealtimeSubscribeStates.CLOSED):
            self._push(LifecycleEvent(LifecycleKind.DISCONNECT, str(state)))

    def on_postgres_change(self, payload: dict[str, Any]) -> None:
        """Translate a postgres_changes payload into a change event."""
        event = parse_change_payload(payload)
        if event is None:
            log.warning("feed_payload_unrecognised", topic=self.topic)
            return
        self._push(event)

    def on_presence_sync(self) -> None:
        self._push(PresenceEvent(PresenceKind.SYNC, state=dict(self._channel.presence_state())))

    def on_presence_join(self, key: str, *_: Any) -> None:
        self._push(PresenceEvent(PresenceKind.JOIN, key=key))

    def on_presence_leave(self, key: str, *_: Any) -> None:
        self._push(PresenceEvent(PresenceKind.LEAVE, key=key))

    async def _track(self) -> None:
        try:
            await self._channel.track({"user_id": self._filter.presence_key, "online": True})
        except Exception as e:
            log.warning("presence_track_failed", topic=self.topic, error=str(e))


def parse_change_payload(payload: dict[str, Any]) -> ChangeEvent | None:
    """Build a change event from either Realtime payload shape.

    Older clients deliver ``{"data": {"type", "record", "old_record"}}``;
    newer ones deliver ``{"eventType", "new", "old"}``.
    """
    data = payload.get("data")
    if isinstance(data, dict):
        kind = data.get("type")
        new = data.get("record")
        old = data.get("old_record")
    else:
        kind = payload.get("eventType") or payload.get("type")
        new = payload.get("new")
        old = payload.get("old")

    try:
        event_type = ChangeType(str(kind).upper())
    except ValueError:
        return None
    return ChangeEvent(
        event_type=event_type,
        new=new if isinstance(new, dict) else {},
        old=old if isinstance(old, dict) else {},
    )


class SupabaseBackend:
    """Supabase implementation of the BackendProvider and FeedProvider protocols.

    Example:
        backend = await SupabaseBackend.create(config.backend)
        await backend.sign_in("ada@example.com", "secret")
        user = await backend.get_current_user()
        rows = await backend.fetch_messages("c1", 100)
    """

    def __init__(self, client: AsyncClient, config: BackendConfig) -> None:
        """Initialize the adapter.

        Args:
            client: An async Supabase client.
            config: Backend configuration.
        """
        self._client = client
        self._config = config
        self._user: Profile | None = None

    @classmethod
    async def create(cls, config: BackendConfig) -> SupabaseBackend:
        """Connect a new async client for the configured project."""
        client = await acreate_client(config.url, config.anon_key)
        return cls(client, config)

    @property
    def client(self) -> AsyncClient:
        """The underlying Supabase client."""
        return self._client

    def _table(self, name: str) -> Any:
        if self._config.schema_name != "public":
            return self._client.schema(self._config.schema_name).table(name)
        return self._client.table(name)

    # -- auth ---------------------------------------------------------------

    async def sign_in(self, email: str, password: str) -> Profile:
        """Sign in with email and password.

        Raises:
            AuthenticationError: If the credentials are rejected
        """
        try:
            await self._client.auth.sign_in_with_password({"email": email, "password": password})
        except Exception as e:
            log.warning("sign_in_failed", error=str(e))
            raise AuthenticationError(f"Sign-in failed: {e}") from e
        self._user = None
        return await self.get_current_user()

    async def access_token(self) -> str | None:
        """Bearer token of the current session, if signed in."""
        session = await self._client.auth.get_session()
        return session.access_token if session else None

    async def get_current_user(self) -> Profile:
        """Return the signed-in user's profile.

        Raises:
            AuthenticationError: If there is no valid session
        """
        if self._user is not None:
            return self._user

        try:
            response = await self._client.auth.get_user()
        except Exception as e:
            raise AuthenticationError(f"Could not resolve session: {e}") from e
        if response is None or response.user is None:
            raise AuthenticationError("Not signed in")

        auth_user = response.user
        try:
            result = await self._table("users").select("*").eq("id", auth_user.id).execute()
            rows = result.data or []
        except (APIError, httpx.HTTPError) as e:
            log.warning("profile_fetch_failed", user_id=auth_user.id, error=_error_message(e))
            rows = []

        if rows:
            self._user = Profile.from_dict(rows[0])
        else:
            metadata = auth_user.user_metadata or {}
            self._user = Profile(
                id=auth_user.id,
                email=auth_user.email or "",
                full_name=metadata.get("full_name") or "Unknown User",
                avatar_url=metadata.get("avatar_url"),
            )
        return self._user

    async def sign_out(self) -> None:
        """End the auth session and drop every open channel."""
        self._user = None
        try:
            await self._client.remove_all_channels()
            await self._client.auth.sign_out()
        except Exception as e:
            raise BackendError(f"Sign-out failed: {e}") from e

    # -- tables -------------------------------------------------------------

    async def fetch_conversations(self) -> list[Conversation]:
        """List channels plus the DMs the current user created.

        Raises:
            BackendError: If the query fails
        """
        user = await self.get_current_user()
        try:
            result = (
                await self._table(self._config.conversations_table)
                .select("id, name, type, description, created_at, created_by")
                .or_(f"type.eq.channel,and(type.eq.dm,created_by.eq.{user.id})")
                .order("created_at", desc=True)
                .execute()
            )
        except (APIError, httpx.HTTPError) as e:
            raise BackendError(f"Failed to fetch conversations: {_error_message(e)}") from e

        conversations = []
        for row in result.data or []:
            try:
                conversations.append(Conversation.from_row(row))
            except (KeyError, ValueError) as e:
                log.warning("conversation_row_skipped", row_id=row.get("id"), error=str(e))
        return conversations

    async def fetch_messages(self, conversation_id: str, limit: int) -> list[dict[str, Any]]:
        """Fetch the newest ``limit`` message rows with their authors.

        Raises:
            BackendError: If the query fails
        """
        try:
            result = (
                await self._table(self._config.messages_table)
                .select(MESSAGE_COLUMNS)
                .eq("conversation_id", conversation_id)
                .order("created_at", desc=True)
                .limit(limit)
                .execute()
            )
        except (APIError, httpx.HTTPError) as e:
            raise BackendError(
                f"Failed to fetch messages for {conversation_id}: {_error_message(e)}"
            ) from e
        return list(result.data or [])

    async def insert_message(self, row: dict[str, Any]) -> dict[str, Any]:
        """Insert a message row and return the stored row.

        Raises:
            SendError: If the insert is rejected or cannot be delivered
        """
        try:
            result = await self._table(self._config.messages_table).insert(row).execute()
        except (APIError, httpx.HTTPError) as e:
            raise SendError(_error_message(e)) from e

        if not result.data:
            raise SendError("Insert returned no row")
        return dict(result.data[0])

    async def update_message(self, server_id: str, changes: dict[str, Any]) -> dict[str, Any]:
        """Update columns of a stored message.

        Raises:
            BackendError: If the update fails or matches nothing
        """
        try:
            result = (
                await self._table(self._config.messages_table)
                .update(changes)
                .eq("id", server_id)
                .execute()
            )
        except (APIError, httpx.HTTPError) as e:
            raise BackendError(f"Failed to update message {server_id}: {_error_message(e)}") from e

        if not result.data:
            raise BackendError(f"Message {server_id} not found")
        return dict(result.data[0])

    async def delete_message(self, server_id: str) -> None:
        """Delete a stored message.

        Raises:
            BackendError: If the delete fails
        """
        try:
            await self._table(self._config.messages_table).delete().eq("id", server_id).execute()
        except (APIError, httpx.HTTPError) as e:
            raise BackendError(f"Failed to delete message {server_id}: {_error_message(e)}") from e

    # -- live feed ----------------------------------------------------------

    async def open_channel(self, topic: str, feed_filter: FeedFilter) -> SupabaseFeedChannel:
        """Create and join a Realtime channel for ``feed_filter``.

        Raises:
            FeedError: If the channel cannot be created or joined
        """
        params: dict[str, Any] = {}
        if feed_filter.presence_key:
            params = {"config": {"presence": {"key": feed_filter.presence_key}}}

        try:
            channel = self._client.channel(topic, params)
            wrapper = SupabaseFeedChannel(self._client, channel, feed_filter)

            if feed_filter.table:
                for change in feed_filter.events:
                    kwargs: dict[str, Any] = {
                        "table": feed_filter.table,
                        "schema": feed_filter.schema,
                    }
                    if feed_filter.predicate:
                        kwargs["filter"] = feed_filter.predicate
                    channel.on_postgres_changes(
                        change.value, wrapper.on_postgres_change, **kwargs
                    )

            if feed_filter.presence_key:
                channel.on_presence_sync(wrapper.on_presence_sync)
                channel.on_presence_join(wrapper.on_presence_join)
                channel.on_presence_leave(wrapper.on_presence_leave)

            await channel.subscribe(wrapper.on_subscribe_state)
        except Exception as e:
            log.warning("channel_open_failed", topic=topic, error=str(e))
            raise FeedError(f"Failed to open channel {topic}: {e}") from e

        log.debug("channel_opened", topic=topic, table=feed_filter.table or None)
        return wrapper
