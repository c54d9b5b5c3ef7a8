"""Data models and transfer objects."""

from .conversation import Conversation, ConversationKind, Profile
from .message import (
    ConfirmedId,
    Message,
    MessageIdentity,
    MessageStatus,
    PendingId,
    SourceCitation,
    new_client_id,
)
from .subscription import (
    ChangeEvent,
    ChangeType,
    FeedEvent,
    FeedFilter,
    FeedKind,
    LifecycleEvent,
    LifecycleKind,
    PresenceEvent,
    PresenceKind,
    SubscriptionState,
    SubscriptionStatus,
    subscription_id,
)

__all__ = [
    # Conversation models
    "ConversationKind",
    "Conversation",
    "Profile",
    # Message models
    "MessageStatus",
    "Message",
    "MessageIdentity",
    "PendingId",
    "ConfirmedId",
    "SourceCitation",
    "new_client_id",
    # Subscription models
    "SubscriptionStatus",
    "SubscriptionState",
    "FeedKind",
    "FeedFilter",
    "subscription_id",
    # Feed events
    "FeedEvent",
    "ChangeType",
    "ChangeEvent",
    "LifecycleKind",
    "LifecycleEvent",
    "PresenceKind",
    "PresenceEvent",
]
