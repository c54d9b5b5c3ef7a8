"""Abstract interface for live change feeds and presence channels."""

from collections.abc import AsyncIterator
from typing import Protocol

from ..models.subscription import FeedEvent, FeedFilter


class FeedChannel(Protocol):
    """One open connection on the live-update substrate."""

    @property
    def topic(self) -> str:
        """Channel topic, e.g. ``messages:c1``."""
        ...

    def events(self) -> AsyncIterator[FeedEvent]:
        """
        Yield lifecycle, change and presence events in delivery order.

        The iterator ends when the channel is closed.
        """
        ...

    async def close(self) -> None:
        """
        Tear down the connection.

        Closing an already-closed channel is a no-op.
        """
        ...


class FeedProvider(Protocol):
    """Factory for feed channels."""

    async def open_channel(self, topic: str, feed_filter: FeedFilter) -> FeedChannel:
        """
        Open and subscribe a new channel.

        The first events delivered are lifecycle notifications; a
        ``SUBSCRIBED`` event marks the channel as live.

        Raises:
            FeedError: If the channel cannot be created
        """
        ...
