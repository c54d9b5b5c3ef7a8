"""Directory of active live feed subscriptions."""

from __future__ import annotations

import structlog

from realtime_chat.core.subscription import ReconnectingSubscription
from realtime_chat.models.subscription import SubscriptionState
from realtime_chat.utils.logging import LogEventNames

log = structlog.get_logger()


class SubscriptionRegistry:
    """Active subscriptions keyed by subscription id.

    One registry belongs to one session. ``remove_all()`` releases every open
    feed connection, e.g. on sign-out. Lookups and removals of unknown ids
    are no-ops rather than errors.
    """

    def __init__(self) -> None:
        self._subscriptions: dict[str, ReconnectingSubscription] = {}

    async def register(self, subscription_id: str, subscription: ReconnectingSubscription) -> None:
        """Add a subscription, closing any previous one with the same id."""
        previous = self._subscriptions.get(subscription_id)
        self._subscriptions[subscription_id] = subscription
        if previous is not None and previous is not subscription:
            await previous.close()
            log.debug("subscription_replaced", subscription_id=subscription_id)

    def get(self, subscription_id: str) -> SubscriptionState | None:
        """Return the subscription's state snapshot, or None."""
        subscription = self._subscriptions.get(subscription_id)
        return subscription.state if subscription is not None else None

    def subscription(self, subscription_id: str) -> ReconnectingSubscription | None:
        """Return the subscription object itself, or None."""
        return self._subscriptions.get(subscription_id)

    async def remove(self, subscription_id: str) -> bool:
        """Tear down the subscription's feed connection and forget it.

        Returns:
            True if a subscription was removed.
        """
        subscription = self._subscriptions.get(subscription_id)
        if subscription is None:
            return False

        await subscription.close()
        # Only drop the entry if it was not re-registered while closing
        if self._subscriptions.get(subscription_id) is subscription:
            del self._subscriptions[subscription_id]
        log.debug(LogEventNames.SUBSCRIPTION_REMOVED, subscription_id=subscription_id)
        return True

    async def remove_all(self) -> int:
        """Remove every subscription present when the call started.

        Iterates over a snapshot so entries registered concurrently do not
        disturb the teardown.

        Returns:
            Number of subscriptions removed.
        """
        removed = 0
        for subscription_id in list(self._subscriptions):
            if await self.remove(subscription_id):
                removed += 1
        return removed

    def ids(self) -> list[str]:
        """Registered subscription ids."""
        return list(self._subscriptions)

    def __contains__(self, subscription_id: object) -> bool:
        return subscription_id in self._subscriptions

    def __len__(self) -> int:
        return len(self._subscriptions)
