"""Pydantic models for configuration schema."""

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class BackendConfig(BaseModel):
    """Supabase project configuration."""

    url: str
    anon_key: str
    schema_name: str = "public"
    messages_table: str = "messages"
    conversations_table: str = "conversations"
    allow_insecure: bool = False
    email: str | None = None
    password: str | None = None

    @field_validator("anon_key")
    @classmethod
    def validate_anon_key(cls, v: str) -> str:
        """Reject empty keys left behind by unset environment variables."""
        if not v.strip():
            raise ValueError("anon_key must not be empty")
        return v

    @model_validator(mode="after")
    def check_url(self) -> "BackendConfig":
        """Require an HTTPS project URL unless insecure is allowed."""
        from ..utils.security import validate_backend_url

        if not validate_backend_url(self.url, allow_insecure=self.allow_insecure):
            raise ValueError(
                f"Invalid backend URL: {self.url}. "
                f"Use https:// or set allow_insecure=true for local stacks."
            )
        return self


class ApiConfig(BaseModel):
    """The application's own HTTP routes."""

    base_url: str = "http://localhost:3000"
    timeout: float = Field(30.0, ge=1.0, le=300.0)
    ai_conversation_id: str = "ai-chat"


class CacheConfig(BaseModel):
    """Client-side message cache sizing."""

    max_conversations: int = Field(50, ge=1, le=1000)
    max_messages_per_conversation: int = Field(100, ge=1, le=10000)


class SubscriptionConfig(BaseModel):
    """Live feed reconnection policy."""

    max_retries: int = Field(5, ge=0, le=50)
    initial_delay: float = Field(1.0, ge=0.0, le=60.0)
    max_delay: float = Field(30.0, ge=0.0, le=600.0)
    presence_for_dms: bool = True

    @model_validator(mode="after")
    def check_delays(self) -> "SubscriptionConfig":
        """Ensure the backoff cap is not below the first delay."""
        if self.max_delay < self.initial_delay:
            raise ValueError("max_delay must be >= initial_delay")
        return self


class RuntimeConfig(BaseModel):
    """Runtime configuration."""

    fetch_timeout: float | None = Field(
        15.0, gt=0, description="Initial message fetch timeout in seconds"
    )
    fetch_limit: int = Field(100, ge=1, le=1000)


class RetryConfig(BaseModel):
    """Retry configuration for transient HTTP failures."""

    max_attempts: int = Field(3, ge=1, le=10)
    initial_delay: float = Field(1.0, ge=0.1, le=10.0)
    max_delay: float = Field(30.0, ge=1.0, le=300.0)


class FileLoggingConfig(BaseModel):
    """File logging configuration."""

    enabled: bool = False
    path: Path = Path("/var/log/realtime-chat/client.log")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    format: Literal["json", "console"] = "json"
    file: FileLoggingConfig = FileLoggingConfig()


class ChatConfig(BaseSettings):
    """Root configuration for the realtime chat client."""

    backend: BackendConfig
    api: ApiConfig = ApiConfig()
    cache: CacheConfig = CacheConfig()
    subscription: SubscriptionConfig = SubscriptionConfig()
    runtime: RuntimeConfig = RuntimeConfig()
    retry: RetryConfig = RetryConfig()
    logging: LoggingConfig = LoggingConfig()

    model_config = SettingsConfigDict(
        env_prefix="REALTIME_CHAT_",
        env_file=".env",
        env_nested_delimiter="__",
    )
