"""structlog setup for the chat client.

Every entry passes through ``secret_sanitizer`` before rendering. Message
bodies and display names come from other users, so string values are also
stripped of terminal control sequences.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import MutableMapping
from enum import StrEnum
from functools import cache
from pathlib import Path
from typing import Any, cast

import structlog

from realtime_chat.utils.security import SecretRedactor, sanitize_for_logging


class LogFormat(StrEnum):
    """Log output format options."""

    JSON = "json"
    CONSOLE = "console"


class LogLevel(StrEnum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


@cache
def _redactor() -> SecretRedactor:
    return SecretRedactor()


def sanitize_log_value(value: Any) -> Any:
    """Redact secrets and control characters from a log value.

    Dicts, lists and tuples are walked recursively; other types pass through.
    """
    if isinstance(value, str):
        return _redactor().redact(sanitize_for_logging(value))
    if isinstance(value, dict):
        return {k: sanitize_log_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return type(value)(sanitize_log_value(v) for v in value)
    return value


def secret_sanitizer(
    logger: logging.Logger,
    method_name: str,
    event_dict: MutableMapping[str, Any],
) -> MutableMapping[str, Any]:
    """Structlog processor applying ``sanitize_log_value`` to the whole entry."""
    return cast(MutableMapping[str, Any], sanitize_log_value(event_dict))


def add_context_processor(
    logger: logging.Logger,
    method_name: str,
    event_dict: MutableMapping[str, Any],
) -> MutableMapping[str, Any]:
    """Tag entries with the service name and package version."""
    from realtime_chat._version import __version__

    event_dict.setdefault("service", "realtime-chat")
    event_dict.setdefault("version", __version__)
    return event_dict


def _processors(log_format: LogFormat) -> list[Any]:
    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        add_context_processor,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        secret_sanitizer,
        structlog.processors.format_exc_info,
    ]
    if log_format == LogFormat.JSON:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(
            structlog.dev.ConsoleRenderer(exception_formatter=structlog.dev.plain_traceback)
        )
    return processors


def _handlers(level: int, file_path: Path | None) -> list[logging.Handler]:
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if file_path is not None:
        try:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            handlers.append(logging.FileHandler(file_path))
        except OSError as e:
            # Console output still works; report through stdlib logging.
            logging.getLogger(__name__).warning("Could not open log file %s: %s", file_path, e)
    for handler in handlers:
        handler.setLevel(level)
    return handlers


def configure_logging(
    level: LogLevel | str = LogLevel.INFO,
    log_format: LogFormat | str = LogFormat.JSON,
    file_path: Path | str | None = None,
    file_enabled: bool = False,
) -> None:
    """Route structlog through stdlib logging to stderr and an optional file.

    Can be called again once the config file has been read; handlers are
    replaced.

    Example:
        configure_logging(level="DEBUG", log_format="console")
    """
    level = LogLevel(level.upper()) if isinstance(level, str) else level
    log_format = LogFormat(log_format.lower()) if isinstance(log_format, str) else log_format
    numeric_level = getattr(logging, level.value)

    structlog.configure(
        processors=_processors(log_format),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    log_file = Path(file_path) if file_enabled and file_path else None
    logging.basicConfig(
        format="%(message)s",
        level=numeric_level,
        handlers=_handlers(numeric_level, log_file),
        force=True,
    )


def bind_context(**kwargs: Any) -> None:
    """Attach key/values to every later entry in this context.

    Example:
        bind_context(user_id="u1")
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()


class LogEventNames:
    """Event names shared across the package."""

    # Session lifecycle
    SESSION_STARTED = "session_started"
    SESSION_SIGNED_OUT = "session_signed_out"

    # Conversation loading
    CONVERSATION_OPENED = "conversation_opened"
    CONVERSATION_CLOSED = "conversation_closed"
    MESSAGES_FETCHED = "messages_fetched"
    MESSAGES_FETCH_ERROR = "messages_fetch_error"

    # Sending
    MESSAGE_SENDING = "message_sending"
    MESSAGE_SENT = "message_sent"
    MESSAGE_SEND_ERROR = "message_send_error"

    # Feed events
    MESSAGE_RECEIVED = "message_received"
    MESSAGE_DUPLICATE_SKIPPED = "message_duplicate_skipped"
    MESSAGE_UPDATED = "message_updated"
    MESSAGE_DELETED = "message_deleted"
    PRESENCE_CHANGED = "presence_changed"

    # Subscription lifecycle
    SUBSCRIPTION_STATUS = "subscription_status"
    SUBSCRIPTION_RECONNECT_SCHEDULED = "subscription_reconnect_scheduled"
    SUBSCRIPTION_EXHAUSTED = "subscription_exhausted"
    SUBSCRIPTION_REMOVED = "subscription_removed"

    # Cache
    CACHE_HIT = "cache_hit"
    CACHE_MISS = "cache_miss"
    CACHE_EVICTED = "cache_evicted"

    # AI assistant
    AI_STREAM_START = "ai_stream_start"
    AI_STREAM_COMPLETE = "ai_stream_complete"
    AI_STREAM_ERROR = "ai_stream_error"
