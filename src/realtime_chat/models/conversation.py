"""Data models for conversations and user profiles."""

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any


def parse_timestamp(value: Any) -> datetime | None:
    """Parse a backend timestamp into an aware datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


class ConversationKind(Enum):
    """Kind of conversation a message belongs to."""

    CHANNEL = "channel"
    DM = "dm"
    AI = "ai"

    @classmethod
    def parse(cls, value: "str | ConversationKind") -> "ConversationKind":
        """Parse a kind, accepting the long-form aliases used by older rows."""
        if isinstance(value, ConversationKind):
            return value
        aliases = {"direct_message": cls.DM, "ai_assistant": cls.AI}
        return aliases.get(value) or cls(value)


@dataclass(frozen=True)
class Profile:
    """Public profile of a user."""

    id: str
    email: str = ""
    full_name: str = "Unknown User"
    avatar_url: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Profile":
        """Build a profile from a ``users`` row."""
        return cls(
            id=str(data["id"]),
            email=data.get("email") or "",
            full_name=data.get("full_name") or "Unknown User",
            avatar_url=data.get("avatar_url"),
        )


@dataclass(frozen=True)
class Conversation:
    """A channel, direct-message pair, or AI assistant thread."""

    id: str
    kind: ConversationKind
    name: str
    created_by: str
    created_at: datetime
    description: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Conversation":
        """Build a conversation from a ``conversations`` row."""
        created_at = parse_timestamp(row["created_at"])
        if created_at is None:
            raise ValueError("created_at is empty")
        return cls(
            id=str(row["id"]),
            kind=ConversationKind.parse(row.get("type", "channel")),
            name=row.get("name") or "",
            created_by=str(row.get("created_by", "")),
            created_at=created_at,
            description=row.get("description"),
        )

    def display_name_for(self, viewer_id: str, participants: list[Profile]) -> str:
        """Name shown to ``viewer_id`` in conversation lists.

        Channels use their own name. DMs are named after the counterparty.
        """
        if self.kind is not ConversationKind.DM:
            return self.name
        for profile in participants:
            if profile.id != viewer_id:
                return profile.full_name
        return self.name or "Direct message"
