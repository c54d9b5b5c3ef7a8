"""Configuration loading and validation."""

from .loader import load_config
from .schema import (
    ApiConfig,
    BackendConfig,
    CacheConfig,
    ChatConfig,
    LoggingConfig,
    RetryConfig,
    RuntimeConfig,
    SubscriptionConfig,
)

__all__ = [
    # Loader
    "load_config",
    # Root config
    "ChatConfig",
    # Sections
    "BackendConfig",
    "ApiConfig",
    "CacheConfig",
    "SubscriptionConfig",
    "RuntimeConfig",
    "RetryConfig",
    "LoggingConfig",
]
