"""Keeping credentials and hostile text out of logs.

The client holds a Supabase anon key, a user session JWT and whatever other
users type. ``SecretRedactor`` fails closed: a pattern that cannot be
compiled or applied raises ``RedactionError`` rather than letting text
through.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any
from urllib.parse import urlparse

import structlog

if TYPE_CHECKING:
    from collections.abc import Sequence

log = structlog.get_logger()


class SecurityError(Exception):
    """Base exception for security-related errors."""


class RedactionError(SecurityError):
    """Raised when secret redaction fails."""


class SecretRedactor:
    """Replaces credentials in text with ``placeholder``.

    Example:
        SecretRedactor().redact("Authorization: Bearer eyJ...")
    """

    # (regex, label); Supabase anon keys, service keys and session tokens are JWTs
    DEFAULT_PATTERNS: tuple[tuple[str, str], ...] = (
        (
            r"(?i)(api[_-]?key|secret|token|password|credential)\s*[=:]\s*[\"']?[\w-]{16,}",
            "Generic secret",
        ),
        (r"eyJ[a-zA-Z0-9_-]*\.eyJ[a-zA-Z0-9_-]*\.[a-zA-Z0-9_-]*", "JWT"),
        (r"sbp_[a-f0-9]{40}", "Supabase access token"),
        (r"sb_(?:secret|publishable)_[\w-]{20,}", "Supabase API key"),
        (r"(?i)bearer\s+[\w.~+/-]{16,}=*", "Bearer token"),
        # Keys the server routes hold for the assistant
        (r"sk-[a-zA-Z0-9]{48}", "OpenAI legacy API key"),
        (r"sk-proj-[a-zA-Z0-9_-]{20,}", "OpenAI project API key"),
        (r"pcsk_[\w]{20,}", "Pinecone API key"),
        (
            r"(?i)(postgres(?:ql)?|mysql|redis)://[^:\s]+:[^@\s]+@[^\s]+",
            "Database connection string",
        ),
        (r"-----BEGIN (?:RSA |EC |OPENSSH )?PRIVATE KEY-----", "Private key header"),
    )

    def __init__(
        self,
        placeholder: str = "[REDACTED]",
        custom_patterns: Sequence[tuple[str, str]] | None = None,
    ) -> None:
        """Compile the default and custom patterns, raising RedactionError on a bad one."""
        self.placeholder = placeholder
        self._compiled: list[tuple[re.Pattern[str], str]] = []
        for source, label in (*self.DEFAULT_PATTERNS, *(custom_patterns or ())):
            try:
                self._compiled.append((re.compile(source), label))
            except re.error as e:
                log.error("pattern_compilation_failed", label=label, error=str(e))
                raise RedactionError(f"Invalid secret pattern {label!r}: {e}") from e

    @property
    def patterns(self) -> list[re.Pattern[str]]:
        return [pattern for pattern, _ in self._compiled]

    def redact(self, text: str) -> str:
        """Return ``text`` with every match replaced.

        Raises:
            RedactionError: If a substitution fails.
        """
        if not text:
            return text
        try:
            for pattern, _ in self._compiled:
                text = pattern.sub(self.placeholder, text)
        except Exception as e:
            log.error("redaction_failed", error=str(e))
            raise RedactionError(f"Redaction failed: {e}") from e
        return text

    def has_secrets(self, text: str) -> bool:
        return bool(text) and any(pattern.search(text) for pattern, _ in self._compiled)


def validate_backend_url(url: str, allow_insecure: bool = False) -> bool:
    """Check that a Supabase project URL is absolute and uses HTTPS.

    Plain HTTP is accepted only with ``allow_insecure`` (a local stack).
    """
    try:
        parsed = urlparse(url)
    except ValueError:
        return False

    if not parsed.hostname:
        return False
    if parsed.scheme == "https":
        return True
    return allow_insecure and parsed.scheme == "http"


_ANSI_ESCAPE = re.compile(r"\x1b\[[0-9;]*m")
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


def sanitize_for_logging(text: str) -> str:
    """Strip ANSI colour codes and control characters, keeping newlines and tabs."""
    if not text:
        return text
    return _CONTROL_CHARS.sub("", _ANSI_ESCAPE.sub("", text))


def preview_message(body: str, limit: int = 80) -> str:
    """A single-line excerpt of a message body for log output.

    Secrets are left to the log sanitizer.
    """
    flat = " ".join(sanitize_for_logging(body).split())
    if len(flat) > limit:
        flat = flat[: limit - 3] + "..."
    return flat


_SENSITIVE_KEY_PARTS = ("token", "key", "secret", "password", "credential")


def mask_config_value(key: str, value: str) -> str:
    """Mask ``value`` when ``key`` names a credential.

    Long values keep their first and last four characters.
    """
    if not any(part in key.lower() for part in _SENSITIVE_KEY_PARTS):
        return value
    if len(value) > 8:
        return f"{value[:4]}...{value[-4:]}"
    return "***"


def masked_settings(settings: Mapping[str, Any]) -> dict[str, Any]:
    """Copy a nested settings mapping with credential values masked."""
    masked: dict[str, Any] = {}
    for key, value in settings.items():
        if isinstance(value, Mapping):
            masked[key] = masked_settings(value)
        elif isinstance(value, str):
            masked[key] = mask_config_value(key, value)
        else:
            masked[key] = value
    return masked
