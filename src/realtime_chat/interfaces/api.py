"""Abstract interface for the application's HTTP routes."""

from collections.abc import AsyncIterator
from typing import Protocol

from ..models.conversation import Conversation, ConversationKind
from ..models.message import SourceCitation


class ChatApi(Protocol):
    """Request/response access to conversation routes and the AI assistant."""

    async def list_conversations(self) -> list[Conversation]:
        """
        List channels and DMs through the conversations route.

        Raises:
            ApiError: If the route returns an error status
        """
        ...

    async def create_conversation(
        self,
        kind: ConversationKind,
        name: str | None = None,
        recipient_id: str | None = None,
    ) -> Conversation:
        """
        Create a named channel, or open (or reuse) a DM with ``recipient_id``.

        Raises:
            ApiError: If the route returns an error status
        """
        ...

    async def delete_conversation(self, conversation: Conversation) -> None:
        """
        Delete a conversation the current user created.

        Raises:
            ApiError: If the route returns an error status
        """
        ...

    def ask_assistant(
        self, query: str, conversation_id: str
    ) -> AsyncIterator[list[SourceCitation] | str]:
        """
        Stream an AI answer.

        Yields the source citation list first, then text fragments in order.

        Raises:
            ApiError: If the route returns an error status
        """
        ...

    async def aclose(self) -> None:
        """Release the underlying HTTP connection pool."""
        ...
