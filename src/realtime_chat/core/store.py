"""Render-ready state container for the UI.

The store is the only thing views read from. Locally originated inserts and
edits are matched by client-generated id, since an optimistic message has no
server id yet; edits and deletes coming from the live feed are matched by
server id.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field

from realtime_chat.models.conversation import Conversation
from realtime_chat.models.message import Message, SourceCitation
from realtime_chat.models.subscription import SubscriptionStatus

Listener = Callable[["ClientStore"], None]


@dataclass
class AIStreamState:
    """Transient state of an AI answer being composed."""

    is_streaming: bool = False
    partial_text: str = ""
    partial_sources: list[SourceCitation] = field(default_factory=list)
    error: str | None = None


class ClientStore:
    """Current messages, conversations, selection and AI streaming state.

    Messages are kept in display order, oldest first, and trimmed to the
    newest ``max_messages`` when a cap is set. Every mutation notifies the
    registered listeners.
    """

    def __init__(self, max_messages: int | None = None) -> None:
        self.max_messages = max_messages
        self.messages: list[Message] = []
        self.conversations: list[Conversation] = []
        self.current_conversation: Conversation | None = None
        self.ai = AIStreamState()
        self.presence: dict[str, bool] = {}
        self.connection_status: SubscriptionStatus | None = None
        self.is_loading = False
        self.load_error: str | None = None
        self._listeners: list[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener`` after every mutation; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _changed(self) -> None:
        for listener in list(self._listeners):
            listener(self)

    # -- messages ---------------------------------------------------------

    def set_messages(self, messages: list[Message]) -> None:
        """Replace the displayed messages (any order in, oldest first out)."""
        self._settle(messages)
        self._changed()

    def add_message(self, message: Message) -> None:
        """Insert a message, or replace the one with the same client id."""
        for index, existing in enumerate(self.messages):
            if existing.client_id == message.client_id:
                self.messages[index] = message
                break
        else:
            self.messages.append(message)
        self._settle(self.messages)
        self._changed()

    def update_message(self, message: Message) -> None:
        """Replace the message with the same client id (local edits)."""
        self._settle([m if m.client_id != message.client_id else message for m in self.messages])
        self._changed()

    def apply_remote_update(self, message: Message) -> None:
        """Replace the message with the same server id (feed updates)."""
        if message.server_id is None:
            return
        self._settle([m if m.server_id != message.server_id else message for m in self.messages])
        self._changed()

    def delete_message(self, server_id: str) -> None:
        """Remove the message with the given server id."""
        self.messages = [m for m in self.messages if m.server_id != server_id]
        self._changed()

    def _settle(self, messages: list[Message]) -> None:
        ordered = sorted(messages, key=lambda m: m.created_at)
        if self.max_messages is not None and len(ordered) > self.max_messages:
            ordered = ordered[-self.max_messages :]
        self.messages = ordered

    def find_message(self, client_id: str) -> Message | None:
        """Return the displayed message with ``client_id``, if any."""
        for message in self.messages:
            if message.client_id == client_id:
                return message
        return None

    # -- conversations ----------------------------------------------------

    def set_conversations(self, conversations: list[Conversation]) -> None:
        self.conversations = list(conversations)
        self._changed()

    def add_conversation(self, conversation: Conversation) -> None:
        if all(c.id != conversation.id for c in self.conversations):
            self.conversations.append(conversation)
            self._changed()

    def update_conversation(self, conversation: Conversation) -> None:
        self.conversations = [
            conversation if c.id == conversation.id else c for c in self.conversations
        ]
        if self.current_conversation and self.current_conversation.id == conversation.id:
            self.current_conversation = conversation
        self._changed()

    def delete_conversation(self, conversation_id: str) -> None:
        """Remove a conversation; clears the selection and its messages if shown."""
        self.conversations = [c for c in self.conversations if c.id != conversation_id]
        if self.current_conversation and self.current_conversation.id == conversation_id:
            self.current_conversation = None
        self.messages = [m for m in self.messages if m.conversation_id != conversation_id]
        self._changed()

    def select_conversation(self, conversation: Conversation | None) -> None:
        """Focus a conversation; resets per-conversation transient state."""
        self.current_conversation = conversation
        self.messages = []
        self.presence = {}
        self.connection_status = None
        self.load_error = None
        self._changed()

    # -- status -----------------------------------------------------------

    def set_loading(self, loading: bool, error: str | None = None) -> None:
        self.is_loading = loading
        self.load_error = error
        self._changed()

    def set_connection_status(self, status: SubscriptionStatus) -> None:
        self.connection_status = status
        self._changed()

    def set_presence(self, user_id: str, online: bool) -> None:
        self.presence[user_id] = online
        self._changed()

    @property
    def is_offline(self) -> bool:
        """True when the live feed is not currently delivering updates."""
        return self.connection_status in (
            SubscriptionStatus.DISCONNECTED,
            SubscriptionStatus.ERROR,
        )

    # -- AI streaming -----------------------------------------------------

    def begin_ai_stream(self) -> None:
        self.ai = AIStreamState(is_streaming=True)
        self._changed()

    def set_ai_sources(self, sources: list[SourceCitation]) -> None:
        self.ai.partial_sources = list(sources)
        self._changed()

    def append_ai_text(self, text: str) -> None:
        self.ai.partial_text += text
        self._changed()

    def end_ai_stream(self, error: str | None = None) -> AIStreamState:
        """Finish the stream and return what was accumulated."""
        finished = self.ai
        finished.is_streaming = False
        finished.error = error
        self.ai = AIStreamState(error=error)
        self._changed()
        return finished

    def reset(self) -> None:
        """Return to the signed-out empty state."""
        self.messages = []
        self.conversations = []
        self.current_conversation = None
        self.ai = AIStreamState()
        self.presence = {}
        self.connection_status = None
        self.is_loading = False
        self.load_error = None
        self._changed()
