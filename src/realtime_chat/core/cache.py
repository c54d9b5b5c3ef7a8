"""Bounded, recency-ordered cache of per-conversation message lists.

The cache survives view remounts so a conversation can be shown again
without refetching. Capacity is counted in conversations; when it is
exceeded the least recently used conversation is dropped in full, together
with its deduplication set.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence

import structlog
from cachetools import LRUCache

from realtime_chat.models.message import Message
from realtime_chat.utils.logging import LogEventNames

log = structlog.get_logger()

DEFAULT_MAX_CONVERSATIONS = 50
DEFAULT_MAX_MESSAGES = 100


class DeduplicationIndex:
    """Client-generated message ids seen per conversation.

    Suppresses the second copy of a message that arrives both from an
    optimistic local write and from the live feed echo of the same insert.
    Entries are owned by ``BoundedConversationCache`` and dropped when their
    conversation is evicted, so memory follows the cache's bound.
    """

    def __init__(self) -> None:
        self._seen: dict[str, set[str]] = {}

    def has(self, conversation_id: str, client_id: str) -> bool:
        """Return True if ``client_id`` was recorded for the conversation."""
        return client_id in self._seen.get(conversation_id, ())

    def add(self, conversation_id: str, client_id: str) -> None:
        """Record ``client_id`` for the conversation."""
        self._seen.setdefault(conversation_id, set()).add(client_id)

    def add_many(self, conversation_id: str, client_ids: Iterable[str]) -> None:
        """Record several ids at once."""
        self._seen.setdefault(conversation_id, set()).update(client_ids)

    def discard_conversation(self, conversation_id: str) -> None:
        """Forget every id recorded for the conversation."""
        self._seen.pop(conversation_id, None)

    def clear(self) -> None:
        """Forget everything."""
        self._seen.clear()

    def size(self, conversation_id: str) -> int:
        """Number of ids recorded for the conversation."""
        return len(self._seen.get(conversation_id, ()))

    def __contains__(self, conversation_id: object) -> bool:
        return conversation_id in self._seen

    def __len__(self) -> int:
        return len(self._seen)


class _ConversationLRU(LRUCache):  # type: ignore[type-arg]
    """LRUCache that reports evicted keys."""

    def __init__(self, maxsize: int, on_evict: Callable[[str], None]) -> None:
        super().__init__(maxsize=maxsize)
        self._on_evict = on_evict

    def popitem(self) -> tuple[str, list[Message]]:
        key, value = super().popitem()
        self._on_evict(key)
        return key, value


def _newest_first(messages: Iterable[Message], limit: int) -> list[Message]:
    # sorted() is stable, so equal timestamps keep their incoming order
    return sorted(messages, key=lambda m: m.created_at, reverse=True)[:limit]


class BoundedConversationCache:
    """LRU cache mapping conversation ids to their newest messages.

    Messages are kept newest-first by ``created_at`` and truncated to
    ``max_messages`` on every mutation. Reads and writes both refresh a
    conversation's recency. Lookups for unknown conversations return empty
    results rather than raising.

    Example:
        cache = BoundedConversationCache(max_conversations=50, max_messages=100)
        cache.set_messages("c1", fetched)
        cache.add_message("c1", optimistic)
        cache.get_messages("c1")
    """

    def __init__(
        self,
        max_conversations: int = DEFAULT_MAX_CONVERSATIONS,
        max_messages: int = DEFAULT_MAX_MESSAGES,
        dedup: DeduplicationIndex | None = None,
    ) -> None:
        """Initialize the cache.

        Args:
            max_conversations: Number of conversations kept before eviction.
            max_messages: Number of messages kept per conversation.
            dedup: Index to use for client id tracking (a new one by default).
        """
        if max_conversations < 1:
            raise ValueError("max_conversations must be at least 1")
        if max_messages < 1:
            raise ValueError("max_messages must be at least 1")

        self._max_messages = max_messages
        self._dedup = dedup if dedup is not None else DeduplicationIndex()
        self._entries = _ConversationLRU(max_conversations, self._evicted)

    @property
    def max_conversations(self) -> int:
        """Conversation capacity."""
        return int(self._entries.maxsize)

    @property
    def max_messages(self) -> int:
        """Per-conversation message capacity."""
        return self._max_messages

    @property
    def dedup(self) -> DeduplicationIndex:
        """The deduplication index owned by this cache."""
        return self._dedup

    def _evicted(self, conversation_id: str) -> None:
        self._dedup.discard_conversation(conversation_id)
        log.debug(LogEventNames.CACHE_EVICTED, conversation_id=conversation_id)

    def get_messages(self, conversation_id: str) -> list[Message]:
        """Return the cached messages, newest first, or an empty list."""
        messages = self._entries.get(conversation_id)
        if messages is None:
            log.debug(LogEventNames.CACHE_MISS, conversation_id=conversation_id)
            return []
        log.debug(LogEventNames.CACHE_HIT, conversation_id=conversation_id, count=len(messages))
        return list(messages)

    def set_messages(self, conversation_id: str, messages: Sequence[Message]) -> None:
        """Replace a conversation's messages.

        The retained messages' client ids are recorded so that feed echoes
        of already-fetched rows are recognised as duplicates.
        """
        kept = _newest_first(messages, self._max_messages)
        self._entries[conversation_id] = kept
        self._dedup.add_many(conversation_id, (m.client_id for m in kept))

    def add_message(self, conversation_id: str, message: Message) -> bool:
        """Insert a message unless its client id was already seen.

        Returns:
            True if the message was inserted, False if it was a duplicate.
        """
        if self._dedup.has(conversation_id, message.client_id):
            return False

        current = self._entries.get(conversation_id) or []
        self._entries[conversation_id] = _newest_first([message, *current], self._max_messages)
        self._dedup.add(conversation_id, message.client_id)
        return True

    def update_message(self, conversation_id: str, message: Message) -> bool:
        """Replace the cached message with the same identity.

        A message carrying a server id replaces the entry with that server
        id, or the still-pending entry with the same client id. Unknown
        messages are ignored.

        Returns:
            True if an entry was replaced.
        """
        current = self._entries.get(conversation_id)
        if current is None:
            return False

        for index, cached in enumerate(current):
            if _same_message(cached, message):
                updated = list(current)
                updated[index] = message
                self._entries[conversation_id] = _newest_first(updated, self._max_messages)
                return True
        return False

    def delete_message(self, conversation_id: str, server_id: str) -> bool:
        """Remove the message with the given server id.

        Returns:
            True if a message was removed.
        """
        current = self._entries.get(conversation_id)
        if current is None:
            return False

        remaining = [m for m in current if m.server_id != server_id]
        if len(remaining) == len(current):
            return False
        self._entries[conversation_id] = remaining
        return True

    def find_by_client_id(self, conversation_id: str, client_id: str) -> Message | None:
        """Return the cached message with ``client_id``, if any."""
        for message in self._entries.get(conversation_id) or ():
            if message.client_id == client_id:
                return message
        return None

    def has_seen(self, conversation_id: str, client_id: str) -> bool:
        """Return True if ``client_id`` is recorded for the conversation."""
        return self._dedup.has(conversation_id, client_id)

    def clear_conversation(self, conversation_id: str) -> None:
        """Drop one conversation and its dedup set."""
        self._entries.pop(conversation_id, None)
        self._dedup.discard_conversation(conversation_id)

    def clear_all(self) -> None:
        """Drop everything, e.g. on sign-out."""
        # A fresh LRU avoids reporting every entry as evicted
        self._entries = _ConversationLRU(self.max_conversations, self._evicted)
        self._dedup.clear()

    def conversation_ids(self) -> list[str]:
        """Ids of the cached conversations."""
        return list(self._entries.keys())

    def __contains__(self, conversation_id: object) -> bool:
        return conversation_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)


def _same_message(cached: Message, incoming: Message) -> bool:
    if incoming.server_id is not None and cached.server_id == incoming.server_id:
        return True
    # Pending entry being confirmed, or a local edit before confirmation
    return cached.server_id is None and cached.client_id == incoming.client_id

