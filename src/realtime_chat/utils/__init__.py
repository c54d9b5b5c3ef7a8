"""Utility functions and helpers.

- security: Secret redaction, URL validation, log-safe previews and masking
- async_helpers: Exceptions, retry, timeouts
- logging: Structured logging with secret sanitization
"""

from realtime_chat.utils.async_helpers import (
    ApiError,
    AuthenticationError,
    BackendError,
    ChatError,
    ConfigurationError,
    FeedError,
    SendError,
    TimeoutError,
    create_retry,
    retry_from_config,
    with_timeout,
)
from realtime_chat.utils.logging import (
    LogEventNames,
    LogFormat,
    LogLevel,
    bind_context,
    clear_context,
    configure_logging,
)
from realtime_chat.utils.security import (
    RedactionError,
    SecretRedactor,
    SecurityError,
    mask_config_value,
    masked_settings,
    preview_message,
    sanitize_for_logging,
    validate_backend_url,
)

__all__ = [
    # Errors
    "ApiError",
    "AuthenticationError",
    "BackendError",
    "ChatError",
    "ConfigurationError",
    "FeedError",
    # Logging
    "LogEventNames",
    "LogFormat",
    "LogLevel",
    # Security
    "RedactionError",
    "SecretRedactor",
    "SecurityError",
    "SendError",
    "TimeoutError",
    "bind_context",
    "clear_context",
    "configure_logging",
    "create_retry",
    "mask_config_value",
    "masked_settings",
    "preview_message",
    "retry_from_config",
    "sanitize_for_logging",
    "validate_backend_url",
    "with_timeout",
]
