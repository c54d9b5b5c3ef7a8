"""Protocol definitions for pluggable adapters."""

from .api import ChatApi
from .backend import BackendProvider
from .feed import FeedChannel, FeedProvider

__all__ = ["BackendProvider", "ChatApi", "FeedChannel", "FeedProvider"]
