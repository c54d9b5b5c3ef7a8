"""Abstract interface for the backend-as-a-service data plane."""

from typing import Any, Protocol

from ..models.conversation import Conversation, Profile


class BackendProvider(Protocol):
    """Auth and relational access to the hosted backend.

    Rows are returned as plain dicts shaped like the ``messages`` table
    (``id``, ``conversation_id``, ``conversation_type``, ``user_id``,
    ``content``, ``created_at``, ``client_generated_id`` and an optional
    joined ``user``).
    """

    async def get_current_user(self) -> Profile:
        """
        Return the signed-in user's profile.

        Raises:
            AuthenticationError: If there is no valid session
        """
        ...

    async def fetch_conversations(self) -> list[Conversation]:
        """
        List the conversations visible to the current user.

        Raises:
            BackendError: If the query fails
        """
        ...

    async def fetch_messages(self, conversation_id: str, limit: int) -> list[dict[str, Any]]:
        """
        Fetch the most recent message rows of a conversation.

        Args:
            conversation_id: Conversation to read
            limit: Maximum number of rows, newest first

        Raises:
            BackendError: If the query fails
        """
        ...

    async def insert_message(self, row: dict[str, Any]) -> dict[str, Any]:
        """
        Insert a message row and return the stored row.

        The backend enforces uniqueness on ``client_generated_id``.

        Raises:
            SendError: If the insert is rejected or cannot be delivered
        """
        ...

    async def update_message(self, server_id: str, changes: dict[str, Any]) -> dict[str, Any]:
        """
        Update columns of a stored message and return the stored row.

        Raises:
            BackendError: If the update fails
        """
        ...

    async def delete_message(self, server_id: str) -> None:
        """
        Delete a stored message.

        Raises:
            BackendError: If the delete fails
        """
        ...
