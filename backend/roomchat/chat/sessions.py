"""Room join/leave lifecycle.

A connection moves through ``Disconnected -> Joining -> Joined ->
Disconnected``. Joining registers presence, subscribes the connection to the
room, and then emits, in this order:

    1. user_list_update  -> every member of the room
    2. load_history      -> the joining connection only
    3. receive_message   -> every member (system "<nick> joined")

so a joiner always has its history snapshot before the notice announcing
its own arrival. Disconnecting reverses the registration and tells the
remaining members with a roster update and a "<nick> left" notice.
"""
import logging
from typing import Optional

from roomchat.messages.schemas import SystemMessage
from roomchat.messages.store import MessageStore, MessageStoreError

from .connections import ConnectionManager
from .presence import OnlineUser, PresenceRegistry
from .protocol import (
    DEFAULT_PAGE_SIZE,
    Ack,
    JoinRoomRequest,
    ServerEvent,
    ValidationFailure,
    validate_payload,
)

logger = logging.getLogger(__name__)


class RoomSessionCoordinator:
    """Owns the presence registry and drives join/disconnect."""

    def __init__(
        self,
        registry: PresenceRegistry,
        connections: ConnectionManager,
        store: MessageStore,
        history_page_size: int = DEFAULT_PAGE_SIZE,
        max_participants: int = 0,
    ) -> None:
        self._registry = registry
        self._connections = connections
        self._store = store
        self._history_page_size = history_page_size
        # 0 = no limit
        self._max_participants = max_participants

    async def join_room(self, connection_id: str, data: object) -> Ack:
        """Handle a ``join_room`` request from *connection_id*.

        Args:
            connection_id: The joining connection.
            data: Raw ``{nick, roomId}`` payload.

        Returns:
            Ack.success(), or Ack.failure() with a readable reason for
            validation and storage errors.
        """
        request = validate_payload(JoinRoomRequest, data)
        if isinstance(request, ValidationFailure):
            logger.info("[Rooms] Rejected join from %s: %s", connection_id, request.message)
            return Ack.failure(request.message)

        previous = self._registry.get_user(connection_id)
        if self._is_full(request.roomId, previous):
            logger.warning(
                "[Rooms] Room %s is full (%d participants), rejecting %s",
                request.roomId,
                self._max_participants,
                connection_id,
            )
            return Ack.failure(f"Room {request.roomId} is full")

        user = OnlineUser(id=connection_id, nick=request.nick, roomId=request.roomId)
        self._registry.add_user(user)

        # Rejoining into another room counts as leaving the old one
        if previous is not None and previous.roomId != user.roomId:
            self._connections.leave(connection_id, previous.roomId)
            await self._announce_departure(previous)

        self._connections.join(connection_id, user.roomId)
        logger.info("[Rooms] %s joined room %s as %s", connection_id, user.roomId, user.nick)

        await self._broadcast_roster(user.roomId)

        try:
            history = await self._store.fetch_page(user.roomId, self._history_page_size, 0)
        except MessageStoreError as exc:
            return Ack.failure(f"Failed to load history: {exc}")
        history.reverse()
        await self._connections.emit(
            connection_id,
            ServerEvent.LOAD_HISTORY,
            [message.serialize() for message in history],
        )

        notice = SystemMessage.joined(user.nick, user.roomId)
        await self._connections.broadcast(
            user.roomId, ServerEvent.RECEIVE_MESSAGE, notice.serialize()
        )
        return Ack.success()

    async def disconnect(self, connection_id: str) -> Optional[OnlineUser]:
        """Deregister *connection_id* after the transport closed.

        A connection that never joined is a no-op.

        Returns:
            The removed user, or None.
        """
        user = self._registry.remove_user(connection_id)
        if user is None:
            return None

        self._connections.leave(connection_id, user.roomId)
        logger.info("[Rooms] %s (%s) left room %s", connection_id, user.nick, user.roomId)
        await self._announce_departure(user)
        return user

    # -----------------------------------------------------------------------
    # Internal
    # -----------------------------------------------------------------------

    def _is_full(self, room_id: str, previous: Optional[OnlineUser]) -> bool:
        if self._max_participants <= 0:
            return False
        if previous is not None and previous.roomId == room_id:
            return False
        return len(self._registry.get_users_by_room(room_id)) >= self._max_participants

    async def _broadcast_roster(self, room_id: str) -> None:
        users = [u.model_dump() for u in self._registry.get_users_by_room(room_id)]
        await self._connections.broadcast(
            room_id, ServerEvent.USER_LIST_UPDATE, {"users": users}
        )

    async def _announce_departure(self, user: OnlineUser) -> None:
        await self._broadcast_roster(user.roomId)
        notice = SystemMessage.left(user.nick, user.roomId)
        await self._connections.broadcast(
            user.roomId, ServerEvent.RECEIVE_MESSAGE, notice.serialize()
        )
