"""Pydantic schemas for chat messages.

Two kinds of message exist:

    - Message: a user message, persisted by the MessageStore and purged by
      the RetentionSweeper once it is older than the TTL.
    - SystemMessage: a join/leave notice. It only ever exists on the wire.

Both serialize to plain dicts carrying a ``type`` discriminator
("user" or "system") with timestamps rendered as ISO-8601 UTC strings.
"""
import uuid
from datetime import datetime, timezone

from pydantic import BaseModel, Field

# =============================================================================
# Constants
# =============================================================================

# Room used when a client does not name one
DEFAULT_ROOM = "global"

MAX_MESSAGE_LENGTH = 1000
MAX_NICKNAME_LENGTH = 50

# Messages older than this are purged by the retention sweeper
MESSAGE_TTL_HOURS = 24


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Render *value* as ISO-8601 UTC with millisecond precision and a Z suffix."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")


class Message(BaseModel):
    """A persisted user message.

    Attributes:
        id: Unique message identifier (UUID string).
        content: Message text, stored exactly as submitted.
        senderNick: Client-asserted display name of the sender.
        roomId: Room this message belongs to.
        isGlobal: True when the message was written to the global room.
        createdAt: When the message was stored (UTC).
        updatedAt: Last mutation time; equal to createdAt since messages
            are never edited.
    """
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    content: str = Field(..., min_length=1, max_length=MAX_MESSAGE_LENGTH)
    senderNick: str = Field(..., min_length=1, max_length=MAX_NICKNAME_LENGTH)
    roomId: str = Field(default=DEFAULT_ROOM)
    isGlobal: bool = False
    createdAt: datetime = Field(default_factory=utcnow)
    updatedAt: datetime = Field(default_factory=utcnow)

    def serialize(self) -> dict:
        return {
            "id": self.id,
            "type": "user",
            "content": self.content,
            "senderNick": self.senderNick,
            "roomId": self.roomId,
            "isGlobal": self.isGlobal,
            "createdAt": format_timestamp(self.createdAt),
            "updatedAt": format_timestamp(self.updatedAt),
        }


class SystemMessage(BaseModel):
    """An ephemeral room notice such as "alice joined"."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    content: str = Field(..., min_length=1)
    roomId: str
    createdAt: datetime = Field(default_factory=utcnow)

    @classmethod
    def joined(cls, nick: str, room_id: str) -> "SystemMessage":
        return cls(content=f"{nick} joined", roomId=room_id)

    @classmethod
    def left(cls, nick: str, room_id: str) -> "SystemMessage":
        return cls(content=f"{nick} left", roomId=room_id)

    def serialize(self) -> dict:
        return {
            "id": self.id,
            "type": "system",
            "content": self.content,
            "roomId": self.roomId,
            "createdAt": format_timestamp(self.createdAt),
        }


def is_global_room(room_id: str) -> bool:
    return room_id == DEFAULT_ROOM
