"""Per-sign-in session that wires the cache, subscriptions and store together.

A ``ChatSession`` is created once when a user signs in and torn down with
``sign_out()``. It owns the message cache, the subscription registry and the
client store, so nothing in the package relies on module-level state.

Flow for a conversation view:
1. ``open_conversation`` serves cached messages, then fetches from the
   backend and repopulates the cache and store
2. A message subscription (and a presence subscription for DMs) is
   registered for the conversation
3. Feed events are deduplicated, merged into the cache and pushed into the
   store
4. ``send_message`` inserts optimistically and reconciles on confirmation
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import replace
from datetime import UTC, datetime
from types import TracebackType
from typing import TYPE_CHECKING, Any

import structlog

from realtime_chat.core.cache import BoundedConversationCache
from realtime_chat.core.registry import SubscriptionRegistry
from realtime_chat.core.store import ClientStore
from realtime_chat.core.subscription import ReconnectingSubscription
from realtime_chat.models.conversation import Conversation, ConversationKind, Profile
from realtime_chat.models.message import Message, MessageStatus, new_client_id
from realtime_chat.models.subscription import (
    ChangeEvent,
    ChangeType,
    FeedFilter,
    FeedKind,
    PresenceEvent,
    PresenceKind,
    SubscriptionStatus,
    subscription_id,
)
from realtime_chat.utils.async_helpers import (
    ApiError,
    BackendError,
    ChatError,
    ConfigurationError,
    TimeoutError,
    with_timeout,
)
from realtime_chat.utils.logging import LogEventNames, bind_context, clear_context

if TYPE_CHECKING:
    from realtime_chat.config.schema import ChatConfig
    from realtime_chat.interfaces.api import ChatApi
    from realtime_chat.interfaces.backend import BackendProvider
    from realtime_chat.interfaces.feed import FeedProvider

log = structlog.get_logger()

ASSISTANT_AUTHOR_ID = "assistant"


class SessionError(ChatError):
    """The session was used before sign-in or without a target."""


class ChatSession:
    """Everything one signed-in user's chat client needs.

    Example:
        session = ChatSession(config, backend, feed, api)
        await session.start()
        await session.open_conversation(conversation)
        await session.send_message("hello")
        ...
        await session.sign_out()
    """

    def __init__(
        self,
        config: ChatConfig,
        backend: BackendProvider,
        feed: FeedProvider,
        api: ChatApi | None = None,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        pump_events: bool = True,
    ) -> None:
        """Initialize the session.

        Args:
            config: Client configuration
            backend: Auth and table access
            feed: Live change feed and presence channels
            api: HTTP routes for conversations and the AI assistant
            sleep: Delay function used for reconnect backoff
            pump_events: Start a task per subscription that reads its channel.
                Disable to feed events by hand.
        """
        self._config = config
        self._backend = backend
        self._feed = feed
        self._api = api
        self._sleep = sleep
        self._pump_events = pump_events

        self.cache = BoundedConversationCache(
            max_conversations=config.cache.max_conversations,
            max_messages=config.cache.max_messages_per_conversation,
        )
        self.registry = SubscriptionRegistry()
        self.store = ClientStore(max_messages=config.cache.max_messages_per_conversation)

        self._user: Profile | None = None
        self._profiles: dict[str, Profile] = {}

    @property
    def user(self) -> Profile | None:
        """The signed-in user, once ``start()`` has run."""
        return self._user

    async def __aenter__(self) -> ChatSession:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.sign_out()

    # -- lifecycle --------------------------------------------------------

    async def start(self) -> Profile:
        """Resolve the signed-in user and load the conversation list.

        Raises:
            AuthenticationError: If there is no valid session
        """
        self._user = await self._backend.get_current_user()
        self._profiles[self._user.id] = self._user
        bind_context(user_id=self._user.id)
        log.info(LogEventNames.SESSION_STARTED)
        await self.refresh_conversations()
        return self._user

    async def sign_out(self) -> None:
        """Release every feed connection, close the API client and drop cached state."""
        removed = await self.registry.remove_all()
        self.cache.clear_all()
        self.store.reset()
        self._profiles.clear()
        self._user = None
        if self._api is not None:
            await self._api.aclose()
        log.info(LogEventNames.SESSION_SIGNED_OUT, subscriptions_removed=removed)
        clear_context()

    def _require_user(self) -> Profile:
        if self._user is None:
            raise SessionError("Session has not been started")
        return self._user

    # -- conversations ----------------------------------------------------

    async def refresh_conversations(self) -> list[Conversation]:
        """Reload the conversation list into the store.

        Failures are logged and leave the previous list in place.
        """
        try:
            if self._api is not None:
                conversations = await self._api.list_conversations()
            else:
                conversations = await self._backend.fetch_conversations()
        except (ApiError, BackendError) as e:
            log.warning("conversations_fetch_failed", error=str(e))
            return self.store.conversations

        self.store.set_conversations(conversations)
        return conversations

    async def create_conversation(
        self,
        kind: ConversationKind,
        name: str | None = None,
        recipient_id: str | None = None,
    ) -> Conversation:
        """Create a channel or DM through the API and list it.

        Raises:
            ConfigurationError: If no API client is configured
            ApiError: If the route rejects the request
        """
        api = self._require_api()
        conversation = await api.create_conversation(kind, name=name, recipient_id=recipient_id)
        self.store.add_conversation(conversation)
        return conversation

    async def delete_conversation(self, conversation: Conversation) -> None:
        """Delete a conversation and drop everything held for it.

        Raises:
            ConfigurationError: If no API client is configured
            ApiError: If the route rejects the request
        """
        api = self._require_api()
        await api.delete_conversation(conversation)
        await self.close_conversation(conversation.id)
        self.cache.clear_conversation(conversation.id)
        self.store.delete_conversation(conversation.id)

    def assistant_conversation(self) -> Conversation:
        """The AI assistant thread of the signed-in user."""
        user = self._require_user()
        return Conversation(
            id=self._config.api.ai_conversation_id,
            kind=ConversationKind.AI,
            name="AI Assistant",
            created_by=user.id,
            created_at=datetime.now(UTC),
        )

    def _is_current(self, conversation_id: str) -> bool:
        current = self.store.current_conversation
        return current is not None and current.id == conversation_id

    async def open_conversation(self, conversation: Conversation) -> list[Message]:
        """Focus a conversation, load its messages and subscribe to it.

        Subscriptions of the previously focused conversation are released.

        Cached messages are shown immediately. A failed or stalled fetch is
        recorded as ``store.load_error``; the subscription is opened either
        way so new messages still arrive.

        Returns:
            The messages now displayed, oldest first.
        """
        self._require_user()
        cid = conversation.id
        previous = self.store.current_conversation
        if previous is not None and previous.id != cid:
            await self.close_conversation(previous.id)
        self.store.select_conversation(conversation)
        log.info(LogEventNames.CONVERSATION_OPENED, conversation_id=cid, kind=conversation.kind.value)

        cached = self.cache.get_messages(cid)
        if cached:
            self.store.set_messages(cached)

        # The assistant thread is local only
        if conversation.kind is ConversationKind.AI:
            return self.store.messages

        await self._load_messages(cid, cached)

        await self._subscribe_messages(cid)
        if conversation.kind is ConversationKind.DM and self._config.subscription.presence_for_dms:
            await self._subscribe_presence(cid)

        return self.store.messages

    async def _load_messages(self, conversation_id: str, cached: list[Message]) -> None:
        self.store.set_loading(True)
        try:
            rows = await with_timeout(
                self._backend.fetch_messages(
                    conversation_id, self._config.runtime.fetch_limit
                ),
                self._config.runtime.fetch_timeout,
                f"Loading messages for {conversation_id} timed out",
            )
        except (BackendError, TimeoutError) as e:
            log.warning(
                LogEventNames.MESSAGES_FETCH_ERROR, conversation_id=conversation_id, error=str(e)
            )
            if self._is_current(conversation_id):
                self.store.set_loading(False, str(e))
            return

        fetched = self._parse_rows(rows)
        fetched_ids = {m.client_id for m in fetched}
        # Keep local messages the backend does not know about yet
        local = [m for m in cached if m.is_pending and m.client_id not in fetched_ids]
        self.cache.set_messages(conversation_id, [*fetched, *local])
        log.info(LogEventNames.MESSAGES_FETCHED, conversation_id=conversation_id, count=len(fetched))

        if self._is_current(conversation_id):
            self.store.set_messages(self.cache.get_messages(conversation_id))
            self.store.set_loading(False)

    def _parse_rows(self, rows: list[dict[str, Any]]) -> list[Message]:
        messages = []
        for row in rows:
            try:
                message = Message.from_row(row)
            except (KeyError, ValueError) as e:
                log.warning("message_row_skipped", row_id=row.get("id"), error=str(e))
                continue
            messages.append(self._with_author(message))
        return messages

    def _with_author(self, message: Message) -> Message:
        if message.author is not None:
            self._profiles[message.author_id] = message.author
            return message
        profile = self._profiles.get(message.author_id)
        if profile is None:
            return message
        return replace(message, author=profile)

    async def close_conversation(self, conversation_id: str) -> None:
        """Release a conversation's subscriptions; its cache entry stays."""
        for kind in (FeedKind.MESSAGES, FeedKind.PRESENCE):
            await self.registry.remove(subscription_id(kind, conversation_id))
        if self._is_current(conversation_id):
            self.store.select_conversation(None)
        log.info(LogEventNames.CONVERSATION_CLOSED, conversation_id=conversation_id)

    # -- subscriptions ----------------------------------------------------

    async def _subscribe_messages(self, conversation_id: str) -> ReconnectingSubscription:
        feed_filter = FeedFilter(
            table=self._config.backend.messages_table,
            schema=self._config.backend.schema_name,
            column="conversation_id",
            value=conversation_id,
        )

        async def on_change(event: ChangeEvent) -> None:
            await self.handle_change(conversation_id, event)

        def on_status(status: SubscriptionStatus) -> None:
            if self._is_current(conversation_id):
                self.store.set_connection_status(status)

        return await self._subscribe(
            FeedKind.MESSAGES,
            conversation_id,
            feed_filter,
            status_listener=on_status,
            on_change=on_change,
        )

    async def _subscribe_presence(self, conversation_id: str) -> ReconnectingSubscription:
        user = self._require_user()
        feed_filter = FeedFilter(presence_key=user.id)

        async def on_presence(event: PresenceEvent) -> None:
            self.handle_presence(conversation_id, event)

        return await self._subscribe(
            FeedKind.PRESENCE, conversation_id, feed_filter, on_presence=on_presence
        )

    async def _subscribe(
        self,
        kind: FeedKind,
        conversation_id: str,
        feed_filter: FeedFilter,
        status_listener: Callable[[SubscriptionStatus], None] | None = None,
        **handlers: Any,
    ) -> ReconnectingSubscription:
        sid = subscription_id(kind, conversation_id)

        async def open_channel() -> Any:
            return await self._feed.open_channel(sid, feed_filter)

        subscription = ReconnectingSubscription.from_config(
            sid,
            open_channel,
            self._config.subscription,
            sleep=self._sleep,
            **handlers,
        )
        if status_listener is not None:
            subscription.add_status_listener(status_listener)
        await self.registry.register(sid, subscription)
        await subscription.start(pump=self._pump_events)
        return subscription

    async def resubscribe(self, conversation_id: str) -> ReconnectingSubscription:
        """Start a fresh message subscription, e.g. after retries ran out."""
        return await self._subscribe_messages(conversation_id)

    # -- feed events ------------------------------------------------------

    async def handle_change(self, conversation_id: str, event: ChangeEvent) -> None:
        """Merge one row change from the feed into the cache and store."""
        if event.event_type is ChangeType.DELETE:
            server_id = event.old.get("id")
            if server_id is None:
                return
            self.cache.delete_message(conversation_id, str(server_id))
            if self._is_current(conversation_id):
                self.store.delete_message(str(server_id))
            log.debug(LogEventNames.MESSAGE_DELETED, conversation_id=conversation_id)
            return

        try:
            message = self._with_author(Message.from_row(event.new))
        except (KeyError, ValueError) as e:
            log.warning("feed_payload_invalid", conversation_id=conversation_id, error=str(e))
            return

        if event.event_type is ChangeType.UPDATE:
            self.cache.update_message(conversation_id, message)
            if self._is_current(conversation_id):
                self.store.apply_remote_update(message)
            log.debug(LogEventNames.MESSAGE_UPDATED, conversation_id=conversation_id)
            return

        if self.cache.has_seen(conversation_id, message.client_id):
            self._confirm_from_echo(conversation_id, message)
            return

        self.cache.add_message(conversation_id, message)
        if self._is_current(conversation_id):
            self.store.add_message(message)
        log.debug(
            LogEventNames.MESSAGE_RECEIVED,
            conversation_id=conversation_id,
            client_id=message.client_id,
        )

    def _confirm_from_echo(self, conversation_id: str, echoed: Message) -> None:
        # The echo can beat the insert response; it then confirms the send
        pending = self.cache.find_by_client_id(conversation_id, echoed.client_id)
        if pending is None or not pending.is_pending:
            log.debug(
                LogEventNames.MESSAGE_DUPLICATE_SKIPPED,
                conversation_id=conversation_id,
                client_id=echoed.client_id,
            )
            return

        confirmed = replace(
            pending.confirm(),
            server_id=echoed.server_id,
            created_at=echoed.created_at,
            updated_at=echoed.updated_at,
        )
        self.cache.update_message(conversation_id, confirmed)
        if self._is_current(conversation_id):
            self.store.update_message(confirmed)

    def handle_presence(self, conversation_id: str, event: PresenceEvent) -> None:
        """Reflect a presence change in the store."""
        if not self._is_current(conversation_id):
            return
        if event.kind is PresenceKind.SYNC:
            for user_id, presences in event.state.items():
                self.store.set_presence(user_id, bool(presences))
        elif event.key is not None:
            self.store.set_presence(event.key, event.kind is PresenceKind.JOIN)
        log.debug(LogEventNames.PRESENCE_CHANGED, conversation_id=conversation_id)

    # -- sending ----------------------------------------------------------

    async def send_message(self, body: str, conversation: Conversation | None = None) -> Message:
        """Send a message optimistically.

        The message shows as ``sending`` at once. It becomes ``sent`` when
        the backend confirms it, or ``error`` with a detail when the insert
        fails; failed messages stay visible.

        Raises:
            SessionError: If the session is not started or nothing is selected
            ValueError: If ``body`` is blank
        """
        user = self._require_user()
        conversation = conversation or self.store.current_conversation
        if conversation is None:
            raise SessionError("No conversation selected")
        text = body.strip()
        if not text:
            raise ValueError("Message body must not be blank")

        message = Message.pending(conversation.id, conversation.kind, user.id, text, author=user)
        self.cache.add_message(conversation.id, message)
        if self._is_current(conversation.id):
            self.store.add_message(message)

        return await self._deliver(message)

    async def retry_message(self, client_id: str) -> Message | None:
        """Resend a message that failed, keeping its client id.

        Returns:
            The message after the new attempt, or None if nothing failed
            with that id.
        """
        failed = self.store.find_message(client_id)
        if failed is None or failed.status is not MessageStatus.ERROR:
            return None

        sending = replace(failed, status=MessageStatus.SENDING, error_detail=None)
        self.cache.update_message(sending.conversation_id, sending)
        self.store.update_message(sending)
        return await self._deliver(sending)

    async def _deliver(self, message: Message) -> Message:
        cid = message.conversation_id
        log.info(LogEventNames.MESSAGE_SENDING, conversation_id=cid, client_id=message.client_id)
        try:
            row = await self._backend.insert_message(message.to_insert_row())
        except BackendError as e:
            failed = message.fail(str(e))
            self.cache.update_message(cid, failed)
            self.store.update_message(failed)
            log.warning(
                LogEventNames.MESSAGE_SEND_ERROR,
                conversation_id=cid,
                client_id=message.client_id,
                error=str(e),
            )
            return failed

        confirmed = message.confirm(row)
        self.cache.update_message(cid, confirmed)
        self.store.update_message(confirmed)
        log.info(
            LogEventNames.MESSAGE_SENT,
            conversation_id=cid,
            client_id=message.client_id,
            server_id=confirmed.server_id,
        )
        return confirmed

    # -- AI assistant -----------------------------------------------------

    async def ask_assistant(self, query: str) -> Message | None:
        """Ask the AI assistant and stream its answer into the store.

        Returns:
            The finished assistant message, or None if the request failed.

        Raises:
            ConfigurationError: If no API client is configured
            ValueError: If ``query`` is blank
        """
        user = self._require_user()
        api = self._require_api()
        text = query.strip()
        if not text:
            raise ValueError("Query must not be blank")

        cid = self._config.api.ai_conversation_id
        question = Message.pending(cid, ConversationKind.AI, user.id, text, author=user)
        self.cache.add_message(cid, question)
        if self._is_current(cid):
            self.store.add_message(question)

        self.store.begin_ai_stream()
        log.info(LogEventNames.AI_STREAM_START, conversation_id=cid)
        try:
            async for chunk in api.ask_assistant(text, cid):
                if isinstance(chunk, str):
                    self.store.append_ai_text(chunk)
                else:
                    self.store.set_ai_sources(chunk)
        except ApiError as e:
            self._abort_ai_stream(question, str(e))
            return None
        except BaseException:
            # Cancellation or a bug upstream; leave no stream open behind it
            self._abort_ai_stream(question, "Assistant request interrupted")
            raise

        finished = self.store.end_ai_stream()
        sent = question.confirm()
        self.cache.update_message(cid, sent)
        self.store.update_message(sent)

        answer = Message(
            conversation_id=cid,
            conversation_kind=ConversationKind.AI,
            author_id=ASSISTANT_AUTHOR_ID,
            body=finished.partial_text,
            created_at=datetime.now(UTC),
            client_id=new_client_id(),
            status=MessageStatus.SENT,
            sources=tuple(finished.partial_sources),
        )
        self.cache.add_message(cid, answer)
        if self._is_current(cid):
            self.store.add_message(answer)
        log.info(
            LogEventNames.AI_STREAM_COMPLETE,
            conversation_id=cid,
            sources=len(answer.sources),
            length=len(answer.body),
        )
        return answer

    def _abort_ai_stream(self, question: Message, error: str) -> None:
        self.store.end_ai_stream(error=error)
        failed = question.fail(error)
        self.cache.update_message(question.conversation_id, failed)
        self.store.update_message(failed)
        log.warning(
            LogEventNames.AI_STREAM_ERROR, conversation_id=question.conversation_id, error=error
        )

    def _require_api(self) -> ChatApi:
        if self._api is None:
            raise ConfigurationError("No HTTP API client configured")
        return self._api


async def create_session(config: ChatConfig, **kwargs: Any) -> ChatSession:
    """Factory function to create a ChatSession with its adapters.

    Signs in with the configured credentials when both are set, then hands
    the session's access token to the HTTP API client.

    Args:
        config: Client configuration
        **kwargs: Passed through to ``ChatSession``

    Returns:
        A session that has not been started yet

    Raises:
        AuthenticationError: If the configured credentials are rejected
    """
    # Import here to avoid loading the backend SDK for pure in-memory use
    from realtime_chat.adapters.api.http import HttpChatApi
    from realtime_chat.adapters.backend.supabase import SupabaseBackend

    backend = await SupabaseBackend.create(config.backend)
    if config.backend.email and config.backend.password:
        await backend.sign_in(config.backend.email, config.backend.password)

    api = HttpChatApi(config.api, config.retry, access_token=await backend.access_token())
    return ChatSession(config, backend, backend, api, **kwargs)
