"""Message persistence and retention."""

from .schemas import (
    DEFAULT_ROOM,
    MAX_MESSAGE_LENGTH,
    MAX_NICKNAME_LENGTH,
    MESSAGE_TTL_HOURS,
    Message,
    SystemMessage,
    format_timestamp,
    is_global_room,
)
from .store import MessageStore, MessageStoreError
from .retention import RetentionSweeper

__all__ = [
    "DEFAULT_ROOM",
    "MAX_MESSAGE_LENGTH",
    "MAX_NICKNAME_LENGTH",
    "MESSAGE_TTL_HOURS",
    "Message",
    "SystemMessage",
    "format_timestamp",
    "is_global_room",
    "MessageStore",
    "MessageStoreError",
    "RetentionSweeper",
]
