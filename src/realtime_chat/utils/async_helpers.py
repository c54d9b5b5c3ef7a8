"""Exceptions, retry and timeout helpers for network-facing calls.

Cache and registry lookups never raise for missing entries. Only the
network-facing operations (sending, fetching, opening feeds, HTTP routes)
raise, and always a ``ChatError`` subclass so callers can turn failures into
state.
"""

from __future__ import annotations

import asyncio
import builtins
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, ParamSpec, TypeVar

import httpx
import structlog
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

if TYPE_CHECKING:
    from realtime_chat.config.schema import RetryConfig

log = structlog.get_logger()

P = ParamSpec("P")
T = TypeVar("T")


# =============================================================================
# Exceptions
# =============================================================================


class ChatError(Exception):
    """Base exception for all realtime-chat errors."""


class ConfigurationError(ChatError):
    """Configuration is missing or inconsistent."""


class BackendError(ChatError):
    """A backend query or mutation failed."""


class AuthenticationError(BackendError):
    """No signed-in user, or the session was rejected."""


class SendError(BackendError):
    """A message insert was rejected or could not be delivered."""


class FeedError(ChatError):
    """A live feed channel could not be opened or failed."""


class ApiError(ChatError):
    """The application's HTTP API returned an error response.

    Attributes:
        status_code: HTTP status of the failed response, if any.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class TimeoutError(ChatError):
    """Operation timed out."""


# =============================================================================
# Retry and timeouts
# =============================================================================

# Transport failures only; HTTP error statuses are returned to the caller.
TRANSIENT_ERRORS: tuple[type[Exception], ...] = (httpx.TimeoutException, httpx.NetworkError)


def _log_retry(retry_state: RetryCallState) -> None:
    if retry_state.outcome is None:
        return

    exception = retry_state.outcome.exception()
    if exception:
        log.warning(
            "retrying_request",
            attempt=retry_state.attempt_number,
            error_type=type(exception).__name__,
            error=str(exception),
            wait=retry_state.next_action.sleep if retry_state.next_action else 0,
        )


def create_retry(
    max_attempts: int = 3,
    min_wait: float = 1.0,
    max_wait: float = 30.0,
    retry_on: tuple[type[Exception], ...] = TRANSIENT_ERRORS,
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """Build a retry decorator with exponential backoff between attempts.

    The last exception is re-raised once attempts run out.

    Example:
        send = create_retry(max_attempts=2)(client.request)
    """
    return retry(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=1, min=min_wait, max=max_wait),
        retry=retry_if_exception_type(retry_on),
        before_sleep=_log_retry,
        reraise=True,
    )


def retry_from_config(
    config: RetryConfig,
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """Retry decorator for the HTTP API using a ``RetryConfig`` policy."""
    return create_retry(
        max_attempts=config.max_attempts,
        min_wait=config.initial_delay,
        max_wait=config.max_delay,
    )


async def with_timeout(
    coro: Awaitable[T],
    timeout: float | None,
    error_message: str | None = None,
) -> T:
    """Await ``coro``, giving up after ``timeout`` seconds.

    A ``timeout`` of None waits indefinitely.

    Raises:
        TimeoutError: If the operation times out.
    """
    try:
        return await asyncio.wait_for(coro, timeout=timeout)
    except builtins.TimeoutError as e:
        msg = error_message or f"Operation timed out after {timeout}s"
        log.warning("operation_timeout", timeout=timeout, error=msg)
        raise TimeoutError(msg) from e
