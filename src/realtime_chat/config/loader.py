"""Load ``ChatConfig`` from YAML.

``${NAME}`` references are expanded from the environment before parsing, so
keys never need to be written into the file. ``${NAME:-fallback}`` supplies a
value for variables that may be unset.
"""

import os
import re
from pathlib import Path

import yaml

from .schema import ChatConfig

CONFIG_PATH_ENV = "REALTIME_CHAT_CONFIG"

_ENV_REFERENCE = re.compile(r"\$\{(?P<name>[^}:]+)(?::-(?P<fallback>[^}]*))?\}")


def substitute_env_vars(text: str) -> str:
    """Expand ``${NAME}`` and ``${NAME:-fallback}`` references in ``text``.

    Raises:
        ValueError: If a variable without a fallback is unset
    """

    def expand(match: re.Match[str]) -> str:
        name = match.group("name")
        if name in os.environ:
            return os.environ[name]
        if match.group("fallback") is not None:
            return match.group("fallback")
        raise ValueError(f"Environment variable {name} not found")

    return _ENV_REFERENCE.sub(expand, text)


def resolve_config_path(path: Path | None = None) -> Path:
    """Pick the config file: an explicit path, then ``$REALTIME_CHAT_CONFIG``."""
    if path is not None:
        return path
    from_env = os.environ.get(CONFIG_PATH_ENV)
    if from_env:
        return Path(from_env)
    return Path("config/config.yaml")


def load_config(path: Path) -> ChatConfig:
    """Read, expand, parse and validate the YAML file at ``path``.

    Raises:
        FileNotFoundError: If the file is missing
        ValueError: If a variable is unset, the root is not a mapping, or
            sections disagree
        ValidationError: If a section does not match its schema
    """
    if not path.is_file():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    data = yaml.safe_load(substitute_env_vars(path.read_text())) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Configuration root must be a mapping: {path}")

    config = ChatConfig.model_validate(data)
    validate_config(config)
    return config


def validate_config(config: ChatConfig) -> None:
    """Reject combinations that each section accepts on its own."""
    problems = []
    if config.runtime.fetch_limit < config.cache.max_messages_per_conversation:
        problems.append(
            "runtime.fetch_limit must be at least cache.max_messages_per_conversation"
        )
    if not config.api.ai_conversation_id.strip():
        problems.append("api.ai_conversation_id must not be empty")

    if problems:
        raise ValueError("; ".join(problems))
