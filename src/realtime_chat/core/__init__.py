"""Core cache, subscription and session logic."""

from .cache import BoundedConversationCache, DeduplicationIndex
from .registry import SubscriptionRegistry
from .session import ChatSession, SessionError
from .store import AIStreamState, ClientStore
from .subscription import ReconnectingSubscription, backoff_delay

__all__ = [
    "AIStreamState",
    "BoundedConversationCache",
    "ChatSession",
    "ClientStore",
    "DeduplicationIndex",
    "ReconnectingSubscription",
    "SessionError",
    "SubscriptionRegistry",
    "backoff_delay",
]
