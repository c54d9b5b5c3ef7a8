"""Data models for live feed subscriptions and their events."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, StrEnum
from typing import Any


class SubscriptionStatus(StrEnum):
    """Connection health of a live feed subscription."""

    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"


class FeedKind(StrEnum):
    """What a subscription listens to."""

    MESSAGES = "messages"
    PRESENCE = "presence"


def subscription_id(kind: FeedKind | str, conversation_id: str) -> str:
    """Registry key for a conversation's feed, e.g. ``messages:c1``."""
    return f"{FeedKind(kind).value}:{conversation_id}"


@dataclass(frozen=True)
class SubscriptionState:
    """Snapshot of a subscription for status indicators."""

    subscription_id: str
    status: SubscriptionStatus
    last_connected: datetime | None
    retry_count: int


class ChangeType(Enum):
    """Row-level change kinds emitted by the feed."""

    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class LifecycleKind(Enum):
    """Channel-level notifications emitted by the feed."""

    SUBSCRIBED = "subscribed"
    DISCONNECT = "disconnect"
    ERROR = "error"


class PresenceKind(Enum):
    """Presence notifications emitted by the feed."""

    JOIN = "join"
    LEAVE = "leave"
    SYNC = "sync"


@dataclass(frozen=True)
class ChangeEvent:
    """A row insert, update or delete on a subscribed table."""

    event_type: ChangeType
    new: dict[str, Any] = field(default_factory=dict)
    old: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class LifecycleEvent:
    """A subscribed, disconnect or error notification."""

    kind: LifecycleKind
    detail: str | None = None


@dataclass(frozen=True)
class PresenceEvent:
    """A presence join, leave or sync.

    ``key`` is the user id for join/leave. ``state`` maps user ids to their
    tracked presences for sync.
    """

    kind: PresenceKind
    key: str | None = None
    state: dict[str, list[dict[str, Any]]] = field(default_factory=dict)


FeedEvent = ChangeEvent | LifecycleEvent | PresenceEvent


@dataclass(frozen=True)
class FeedFilter:
    """What a feed channel should deliver.

    ``column``/``value`` form an equality predicate on ``table``. An empty
    ``table`` means a presence-only channel.
    """

    table: str = ""
    column: str = ""
    value: str = ""
    schema: str = "public"
    events: tuple[ChangeType, ...] = (ChangeType.INSERT, ChangeType.UPDATE, ChangeType.DELETE)
    presence_key: str | None = None

    @property
    def predicate(self) -> str:
        """PostgREST-style filter expression, e.g. ``conversation_id=eq.c1``."""
        return f"{self.column}=eq.{self.value}" if self.column else ""
