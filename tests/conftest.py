"""Shared test fixtures for the realtime chat client."""

from __future__ import annotations

from typing import Any

import pytest

from realtime_chat.config.schema import BackendConfig, ChatConfig
from realtime_chat.models.conversation import Conversation, ConversationKind, Profile
from tests.fakes import BASE_TIME, FakeBackend, FakeFeed


@pytest.fixture
def user() -> Profile:
    """The signed-in user."""
    return Profile(id="u1", email="ada@example.com", full_name="Ada Lovelace")


@pytest.fixture
def other_user() -> Profile:
    """Another member of the workspace."""
    return Profile(id="u2", email="grace@example.com", full_name="Grace Hopper")


@pytest.fixture
def channel_conversation(user: Profile) -> Conversation:
    return Conversation(
        id="c1",
        kind=ConversationKind.CHANNEL,
        name="general",
        created_by=user.id,
        created_at=BASE_TIME,
    )


@pytest.fixture
def dm_conversation(other_user: Profile) -> Conversation:
    return Conversation(
        id="d1",
        kind=ConversationKind.DM,
        name="",
        created_by=other_user.id,
        created_at=BASE_TIME,
    )


@pytest.fixture
def backend_config() -> BackendConfig:
    return BackendConfig(url="https://project.supabase.co", anon_key="anon-test-key")


@pytest.fixture
def chat_config(backend_config: BackendConfig) -> ChatConfig:
    """A configuration with default sizing and a short fetch timeout."""
    return ChatConfig(backend=backend_config, runtime={"fetch_timeout": 0.5})


@pytest.fixture
def feed() -> FakeFeed:
    return FakeFeed()


@pytest.fixture
def backend(user: Profile) -> FakeBackend:
    return FakeBackend(user)


@pytest.fixture
def sleeps() -> list[float]:
    """Delays requested from ``recorded_sleep``."""
    return []


@pytest.fixture
def recorded_sleep(sleeps: list[float]) -> Any:
    """Sleep replacement that records delays and returns immediately."""

    async def sleep(delay: float) -> None:
        sleeps.append(delay)

    return sleep
