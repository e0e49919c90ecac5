"""In-process registry of online users.

The registry is the only owner of presence state. It is created by the
application lifespan, handed to the RoomSessionCoordinator and cleared on
shutdown. Nothing else mutates it.

All operations are synchronous in-memory updates: they never suspend and
never fail.
"""
import logging
from typing import List, Optional

from pydantic import BaseModel, Field

from roomchat.messages.schemas import DEFAULT_ROOM, MAX_NICKNAME_LENGTH

logger = logging.getLogger(__name__)


class OnlineUser(BaseModel):
    """A connection that has joined a room.

    Attributes:
        id: Transport connection id (unique per live connection).
        nick: Client-asserted display name.
        roomId: Room the connection is currently in.
    """
    id: str = Field(..., description="Connection id")
    nick: str = Field(..., min_length=1, max_length=MAX_NICKNAME_LENGTH)
    roomId: str = Field(default=DEFAULT_ROOM)


class PresenceRegistry:
    """Ordered set of OnlineUser entries keyed by connection id."""

    def __init__(self) -> None:
        # insertion-ordered; at most one entry per connection id
        self._users: List[OnlineUser] = []

    def add_user(self, user: OnlineUser) -> None:
        """Register *user*, replacing any existing entry for the same id."""
        replaced = self._pop(user.id)
        if replaced is not None:
            logger.info(
                "[Presence] Replaced entry for %s (%s in %s)",
                user.id,
                replaced.nick,
                replaced.roomId,
            )
        self._users.append(user)

    def remove_user(self, connection_id: str) -> Optional[OnlineUser]:
        """Remove and return the entry for *connection_id*, or None."""
        return self._pop(connection_id)

    def get_user(self, connection_id: str) -> Optional[OnlineUser]:
        for user in self._users:
            if user.id == connection_id:
                return user
        return None

    def get_users_by_room(self, room_id: str) -> List[OnlineUser]:
        """Users in *room_id*, in the order they joined."""
        return [u for u in self._users if u.roomId == room_id]

    def get_all_users(self) -> List[OnlineUser]:
        return list(self._users)

    def clear(self) -> None:
        self._users.clear()

    def __len__(self) -> int:
        return len(self._users)

    def _pop(self, connection_id: str) -> Optional[OnlineUser]:
        for index, user in enumerate(self._users):
            if user.id == connection_id:
                return self._users.pop(index)
        return None
