"""Live feed subscription with status tracking and backoff reconnection.

A ``ReconnectingSubscription`` owns one feed channel at a time. It is driven
by typed feed events, either pumped from the channel by ``run()`` or handed
to ``handle_event()`` directly, and moves through::

    connecting -> connected -> disconnected -> connecting -> ...
                                            \\-> error (retries exhausted)
    connecting/connected -> error (channel error)

``error`` is terminal for an instance. Owners re-register a fresh instance
to try again.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import structlog

from realtime_chat.models.subscription import (
    ChangeEvent,
    FeedEvent,
    LifecycleEvent,
    LifecycleKind,
    PresenceEvent,
    SubscriptionState,
    SubscriptionStatus,
)
from realtime_chat.utils.async_helpers import FeedError
from realtime_chat.utils.logging import LogEventNames

if TYPE_CHECKING:
    from realtime_chat.config.schema import SubscriptionConfig
    from realtime_chat.interfaces.feed import FeedChannel

log = structlog.get_logger()

DEFAULT_MAX_RETRIES = 5
DEFAULT_INITIAL_DELAY = 1.0
DEFAULT_MAX_DELAY = 30.0

ChannelFactory = Callable[[], Awaitable["FeedChannel"]]
StatusListener = Callable[[SubscriptionStatus], None]
EventHandler = Callable[[Any], Awaitable[None] | None]


def backoff_delay(
    retry_count: int,
    initial_delay: float = DEFAULT_INITIAL_DELAY,
    max_delay: float = DEFAULT_MAX_DELAY,
) -> float:
    """Delay before the next reconnect: ``min(initial * 2**retry_count, max)``."""
    # Cap the exponent so large counts cannot overflow the float
    return min(initial_delay * (2 ** min(retry_count, 64)), max_delay)


class ReconnectingSubscription:
    """One resilient live feed subscription.

    Example:
        sub = ReconnectingSubscription(
            "messages:c1",
            lambda: feed.open_channel("messages:c1", feed_filter),
            on_change=handle_change,
        )
        sub.add_status_listener(lambda status: print(status))
        await sub.start()
        ...
        await sub.close()

    Tests inject ``sleep`` and ``clock`` to run the backoff without real
    timers.
    """

    def __init__(
        self,
        subscription_id: str,
        open_channel: ChannelFactory,
        *,
        max_retries: int = DEFAULT_MAX_RETRIES,
        initial_delay: float = DEFAULT_INITIAL_DELAY,
        max_delay: float = DEFAULT_MAX_DELAY,
        on_change: EventHandler | None = None,
        on_presence: EventHandler | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        """Initialize the subscription in ``connecting`` state.

        Args:
            subscription_id: Registry key, e.g. ``messages:<conversation>``.
            open_channel: Coroutine factory creating a new feed channel.
            max_retries: Automatic reconnects allowed before ``error``.
            initial_delay: First backoff delay in seconds.
            max_delay: Backoff cap in seconds.
            on_change: Handler for row change events.
            on_presence: Handler for presence events.
            sleep: Awaitable delay function.
            clock: Source of ``last_connected`` timestamps.
        """
        self._id = subscription_id
        self._open_channel = open_channel
        self._max_retries = max_retries
        self._initial_delay = initial_delay
        self._max_delay = max_delay
        self._on_change = on_change
        self._on_presence = on_presence
        self._sleep = sleep
        self._clock = clock

        self._status = SubscriptionStatus.CONNECTING
        self._retry_count = 0
        self._last_connected: datetime | None = None
        self._error_detail: str | None = None
        self._channel: FeedChannel | None = None
        self._listeners: list[StatusListener] = []
        self._task: asyncio.Task[None] | None = None
        self._closed = False

        self.delays: list[float] = []

    @classmethod
    def from_config(
        cls,
        subscription_id: str,
        open_channel: ChannelFactory,
        config: SubscriptionConfig,
        **kwargs: Any,
    ) -> ReconnectingSubscription:
        """Build a subscription using a ``SubscriptionConfig`` policy."""
        return cls(
            subscription_id,
            open_channel,
            max_retries=config.max_retries,
            initial_delay=config.initial_delay,
            max_delay=config.max_delay,
            **kwargs,
        )

    @property
    def subscription_id(self) -> str:
        """Registry key of this subscription."""
        return self._id

    @property
    def status(self) -> SubscriptionStatus:
        """Current status."""
        return self._status

    @property
    def retry_count(self) -> int:
        """Reconnect attempts since the last successful connection."""
        return self._retry_count

    @property
    def last_connected(self) -> datetime | None:
        """When the feed last acknowledged the subscription."""
        return self._last_connected

    @property
    def error_detail(self) -> str | None:
        """Why the subscription reached ``error``, if known."""
        return self._error_detail

    @property
    def channel(self) -> FeedChannel | None:
        """The current underlying channel."""
        return self._channel

    @property
    def closed(self) -> bool:
        """True once ``close()`` was called."""
        return self._closed

    @property
    def state(self) -> SubscriptionState:
        """Snapshot for status indicators."""
        return SubscriptionState(
            subscription_id=self._id,
            status=self._status,
            last_connected=self._last_connected,
            retry_count=self._retry_count,
        )

    def next_delay(self) -> float:
        """Delay the next disconnect would wait before reconnecting."""
        return backoff_delay(self._retry_count, self._initial_delay, self._max_delay)

    def add_status_listener(self, listener: StatusListener) -> Callable[[], None]:
        """Register a status-change callback.

        Returns:
            A callable that unregisters the listener.
        """
        self._listeners.append(listener)

        def remove() -> None:
            with contextlib.suppress(ValueError):
                self._listeners.remove(listener)

        return remove

    async def start(self, *, pump: bool = True) -> None:
        """Open the first channel and announce ``connecting``.

        Args:
            pump: Also start a task that feeds channel events to
                ``handle_event``. Pass False to drive events manually.
        """
        self._notify()
        try:
            self._channel = await self._open_channel()
        except FeedError as e:
            log.warning("subscription_open_failed", subscription_id=self._id, error=str(e))
            self._fail(str(e))
            return

        if pump:
            self._task = asyncio.create_task(self.run(), name=f"feed:{self._id}")

    async def run(self) -> None:
        """Consume events from the current channel until closed or terminal.

        A channel whose event stream ends on its own is treated as a
        disconnect. After a reconnect the loop moves on to the new channel.
        """
        while not self._closed and self._status is not SubscriptionStatus.ERROR:
            channel = self._channel
            if channel is None:
                return

            replaced = False
            async for event in channel.events():
                await self.handle_event(event)
                if self._closed or self._status is SubscriptionStatus.ERROR:
                    return
                if self._channel is not channel:
                    replaced = True
                    break

            if not replaced and not self._closed and self._channel is channel:
                await self.handle_event(LifecycleEvent(LifecycleKind.DISCONNECT, "stream ended"))

    async def handle_event(self, event: FeedEvent) -> None:
        """Apply one feed event to the state machine or payload handlers."""
        if self._closed or self._status is SubscriptionStatus.ERROR:
            return

        if isinstance(event, LifecycleEvent):
            await self._handle_lifecycle(event)
        elif isinstance(event, ChangeEvent):
            await _call(self._on_change, event)
        elif isinstance(event, PresenceEvent):
            await _call(self._on_presence, event)

    async def _handle_lifecycle(self, event: LifecycleEvent) -> None:
        if event.kind is LifecycleKind.SUBSCRIBED:
            if self._status is SubscriptionStatus.CONNECTING:
                self._retry_count = 0
                self._last_connected = self._clock()
                self._transition(SubscriptionStatus.CONNECTED)
        elif event.kind is LifecycleKind.ERROR:
            self._fail(event.detail or "channel error")
        elif event.kind is LifecycleKind.DISCONNECT:
            if self._status in (SubscriptionStatus.CONNECTED, SubscriptionStatus.CONNECTING):
                self._transition(SubscriptionStatus.DISCONNECTED)
                await self._reconnect()

    async def _reconnect(self) -> None:
        while True:
            if self._retry_count >= self._max_retries:
                log.warning(
                    LogEventNames.SUBSCRIPTION_EXHAUSTED,
                    subscription_id=self._id,
                    retries=self._retry_count,
                )
                self._fail(f"gave up after {self._retry_count} reconnect attempts")
                return

            delay = self.next_delay()
            self.delays.append(delay)
            log.info(
                LogEventNames.SUBSCRIPTION_RECONNECT_SCHEDULED,
                subscription_id=self._id,
                attempt=self._retry_count + 1,
                delay=delay,
            )
            await self._sleep(delay)
            if self._closed:
                return

            await self._close_channel()
            self._retry_count += 1
            try:
                self._channel = await self._open_channel()
            except FeedError as e:
                log.warning("subscription_reopen_failed", subscription_id=self._id, error=str(e))
                continue

            self._transition(SubscriptionStatus.CONNECTING)
            return

    async def close(self) -> None:
        """Tear down the channel and stop pumping. Safe to call twice."""
        if self._closed:
            return
        self._closed = True
        await self._close_channel()

        task = self._task
        self._task = None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def _close_channel(self) -> None:
        channel = self._channel
        self._channel = None
        if channel is None:
            return
        try:
            await channel.close()
        except FeedError as e:
            log.warning("subscription_channel_close_failed", subscription_id=self._id, error=str(e))

    def _fail(self, detail: str) -> None:
        self._error_detail = detail
        self._transition(SubscriptionStatus.ERROR)

    def _transition(self, status: SubscriptionStatus) -> None:
        self._status = status
        log.info(
            LogEventNames.SUBSCRIPTION_STATUS,
            subscription_id=self._id,
            status=status.value,
            retry_count=self._retry_count,
        )
        self._notify()

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self._status)
            except Exception:
                log.exception("status_listener_failed", subscription_id=self._id)


async def _call(handler: EventHandler | None, event: Any) -> None:
    if handler is None:
        return
    result = handler(event)
    if inspect.isawaitable(result):
        await result
