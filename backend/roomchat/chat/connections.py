"""WebSocket connection registry and room-scoped fan-out.

Each accepted WebSocket gets a backend-generated connection id. Rooms are
broadcast groups of connection ids; a connection is subscribed to a room by
the RoomSessionCoordinator when it joins and unsubscribed when it leaves or
disconnects.

Broadcasting:
    - Uses asyncio.gather() for concurrent delivery to every room member
    - Connections whose send fails are dropped from the room's group
    - Every payload is checked by ``build_frame`` first; a malformed payload
      is never sent

Thread Safety:
    Designed for a single event loop. NOT thread-safe.
"""
import asyncio
import logging
import uuid
from typing import Any, Dict, List

from fastapi import WebSocket

from .protocol import ServerEvent, build_frame

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Maps connection ids to sockets and rooms to their subscribers."""

    def __init__(self) -> None:
        # connection id -> WebSocket
        self.connections: Dict[str, WebSocket] = {}

        # room_id -> connection ids subscribed to the room (join order)
        self.rooms: Dict[str, List[str]] = {}

    async def connect(self, websocket: WebSocket) -> str:
        """Accept *websocket* and return its new connection id."""
        await websocket.accept()
        connection_id = str(uuid.uuid4())
        self.register(connection_id, websocket)
        return connection_id

    def register(self, connection_id: str, websocket: Any) -> None:
        self.connections[connection_id] = websocket

    def disconnect(self, connection_id: str) -> None:
        """Forget *connection_id* and drop it from every room."""
        self.connections.pop(connection_id, None)
        for room_id in list(self.rooms):
            self.leave(connection_id, room_id)

    def join(self, connection_id: str, room_id: str) -> None:
        members = self.rooms.setdefault(room_id, [])
        if connection_id not in members:
            members.append(connection_id)

    def leave(self, connection_id: str, room_id: str) -> None:
        members = self.rooms.get(room_id)
        if not members:
            return
        if connection_id in members:
            members.remove(connection_id)
        if not members:
            del self.rooms[room_id]

    def room_members(self, room_id: str) -> List[str]:
        return list(self.rooms.get(room_id, []))

    def clear(self) -> None:
        self.connections.clear()
        self.rooms.clear()

    # -----------------------------------------------------------------------
    # Delivery
    # -----------------------------------------------------------------------

    async def emit(self, connection_id: str, event: ServerEvent, data: Any) -> bool:
        """Send an event privately to one connection.

        Returns:
            True if the frame was delivered.
        """
        frame = build_frame(event, data)
        if frame is None:
            return False
        websocket = self.connections.get(connection_id)
        if websocket is None:
            return False
        return await self._safe_send(websocket, frame)

    async def broadcast(self, room_id: str, event: ServerEvent, data: Any) -> int:
        """Send an event to every connection subscribed to *room_id*.

        Returns:
            Number of connections that received the frame.
        """
        frame = build_frame(event, data)
        if frame is None:
            return 0

        members = [cid for cid in self.room_members(room_id) if cid in self.connections]
        if not members:
            return 0

        results = await asyncio.gather(
            *[self._safe_send(self.connections[cid], frame) for cid in members],
            return_exceptions=True,
        )

        failed = [cid for cid, ok in zip(members, results) if ok is not True]
        for cid in failed:
            self.leave(cid, room_id)
            logger.debug("[Connections] Removed dead connection %s from room %s", cid, room_id)

        return len(members) - len(failed)

    async def _safe_send(self, websocket: Any, frame: Dict[str, Any]) -> bool:
        try:
            await websocket.send_json(frame)
            return True
        except Exception as e:
            logger.debug(f"Failed to send to connection: {e}")
            return False
