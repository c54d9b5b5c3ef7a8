"""Data models for chat messages."""

import uuid
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from .conversation import ConversationKind, Profile, parse_timestamp


class MessageStatus(Enum):
    """Delivery status of a message."""

    SENDING = "sending"
    SENT = "sent"
    ERROR = "error"


@dataclass(frozen=True)
class SourceCitation:
    """A vector search hit attached to an AI answer.

    The ranking behind these is opaque; the fields are carried as returned.
    """

    id: str
    content: str
    score: float = 0.0
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SourceCitation":
        """Build a citation from a search result or route payload."""
        metadata = dict(data.get("metadata") or {})
        # Route payloads inline conversation and author details
        for key in ("created_at", "conversation_id", "conversation_type", "user"):
            if key in data and key not in metadata:
                metadata[key] = data[key]
        return cls(
            id=str(data["id"]),
            content=str(data.get("content") or metadata.get("content") or ""),
            score=float(data.get("score") or 0.0),
            metadata=metadata,
        )


@dataclass(frozen=True)
class PendingId:
    """Identity of a message the backend has not acknowledged yet."""

    client_id: str


@dataclass(frozen=True)
class ConfirmedId:
    """Identity of a message after the backend assigned its row id."""

    client_id: str
    server_id: str


MessageIdentity = PendingId | ConfirmedId


def new_client_id() -> str:
    """Mint a client-generated message identifier."""
    return str(uuid.uuid4())


@dataclass(frozen=True)
class Message:
    """A chat message in a channel, DM or AI conversation.

    ``client_id`` is minted by the sender and is stable from the optimistic
    insert through server confirmation. ``server_id`` stays None until the
    backend returns the stored row.
    """

    conversation_id: str
    conversation_kind: ConversationKind
    author_id: str
    body: str
    created_at: datetime
    client_id: str
    server_id: str | None = None
    updated_at: datetime | None = None
    status: MessageStatus = MessageStatus.SENT
    error_detail: str | None = None
    sources: tuple[SourceCitation, ...] = ()
    author: Profile | None = None

    @property
    def identity(self) -> MessageIdentity:
        """Two-phase identity of this message."""
        if self.server_id is None:
            return PendingId(self.client_id)
        return ConfirmedId(self.client_id, self.server_id)

    @property
    def is_pending(self) -> bool:
        """True while the message is an unconfirmed optimistic insert."""
        return isinstance(self.identity, PendingId)

    @classmethod
    def pending(
        cls,
        conversation_id: str,
        conversation_kind: ConversationKind,
        author_id: str,
        body: str,
        author: Profile | None = None,
        client_id: str | None = None,
        created_at: datetime | None = None,
    ) -> "Message":
        """Create an optimistic message in ``sending`` state."""
        return cls(
            conversation_id=conversation_id,
            conversation_kind=conversation_kind,
            author_id=author_id,
            body=body,
            created_at=created_at or datetime.now(UTC),
            client_id=client_id or new_client_id(),
            status=MessageStatus.SENDING,
            author=author,
        )

    def confirm(self, row: dict[str, Any] | None = None) -> "Message":
        """Return the ``sent`` version of this message, merging a stored row."""
        if not row:
            return replace(self, status=MessageStatus.SENT, error_detail=None)
        stored = Message.from_row(row)
        return replace(
            self,
            server_id=stored.server_id or self.server_id,
            created_at=stored.created_at,
            updated_at=stored.updated_at,
            body=stored.body,
            author=stored.author or self.author,
            status=MessageStatus.SENT,
            error_detail=None,
        )

    def fail(self, detail: str) -> "Message":
        """Return the ``error`` version of this message."""
        return replace(self, status=MessageStatus.ERROR, error_detail=detail)

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Message":
        """Build a message from a ``messages`` table row or feed payload.

        Raises:
            KeyError: If a required column is missing
            ValueError: If a column has an unparseable value
        """
        server_id = row.get("id")
        client_id = row.get("client_generated_id") or server_id
        if client_id is None:
            raise KeyError("client_generated_id")

        created_at = parse_timestamp(row["created_at"])
        if created_at is None:
            raise ValueError("created_at is empty")

        user = row.get("user")
        return cls(
            conversation_id=str(row["conversation_id"]),
            conversation_kind=ConversationKind.parse(row.get("conversation_type", "channel")),
            author_id=str(row.get("user_id", "")),
            body=row.get("content") or "",
            created_at=created_at,
            client_id=str(client_id),
            server_id=str(server_id) if server_id is not None else None,
            updated_at=parse_timestamp(row.get("updated_at")),
            status=MessageStatus.SENT,
            sources=tuple(SourceCitation.from_dict(s) for s in row.get("sources") or ()),
            author=Profile.from_dict(user) if isinstance(user, dict) else None,
        )

    def to_insert_row(self) -> dict[str, Any]:
        """Columns sent to the backend when inserting this message."""
        return {
            "conversation_id": self.conversation_id,
            "conversation_type": self.conversation_kind.value,
            "user_id": self.author_id,
            "content": self.body,
            "client_generated_id": self.client_id,
            "created_at": self.created_at.isoformat(),
        }
