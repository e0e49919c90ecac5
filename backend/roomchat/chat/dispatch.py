"""Relay of user messages and on-demand history pages."""
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from roomchat.messages.schemas import Message, is_global_room
from roomchat.messages.store import MessageStore, MessageStoreError

from .connections import ConnectionManager
from .protocol import (
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    Ack,
    LoadMoreMessagesRequest,
    SendMessageRequest,
    ServerEvent,
    ValidationFailure,
    validate_payload,
)

logger = logging.getLogger(__name__)


@dataclass
class HistoryPage:
    """A slice of a room's history in chronological order."""
    messages: List[Message] = field(default_factory=list)
    has_more: bool = False

    def to_payload(self) -> dict:
        return {
            "messages": [m.serialize() for m in self.messages],
            "hasMore": self.has_more,
        }


class MessageDispatcher:
    """Validates, persists and fans out chat messages."""

    def __init__(
        self,
        connections: ConnectionManager,
        store: MessageStore,
        history_page_size: int = DEFAULT_PAGE_SIZE,
    ) -> None:
        self._connections = connections
        self._store = store
        self._history_page_size = history_page_size

    async def send_message(self, connection_id: str, data: object) -> Ack:
        """Persist a message and broadcast it to its room.

        The broadcast only reaches connections subscribed to the message's
        room, whether or not it is the global room.
        """
        request = validate_payload(SendMessageRequest, data)
        if isinstance(request, ValidationFailure):
            logger.info("[Dispatch] Rejected message from %s: %s", connection_id, request.message)
            return Ack.failure(request.message)

        try:
            message = await self._store.insert(
                request.content,
                request.senderNick,
                request.roomId,
                is_global_room(request.roomId),
            )
        except MessageStoreError as exc:
            return Ack.failure(f"Failed to save message: {exc}")

        delivered = await self._connections.broadcast(
            message.roomId, ServerEvent.RECEIVE_MESSAGE, message.serialize()
        )
        logger.info(
            "[Dispatch] Message %s from %s delivered to %d connections in room %s",
            message.id,
            message.senderNick,
            delivered,
            message.roomId,
        )
        return Ack.success()

    async def load_more_messages(self, connection_id: str, data: object) -> Ack:
        """Send an older page of history privately to *connection_id*."""
        request = validate_payload(LoadMoreMessagesRequest, data)
        if isinstance(request, ValidationFailure):
            return Ack.failure(request.message)

        try:
            page = await self.history_page(request.roomId, request.offset, request.limit)
        except MessageStoreError as exc:
            return Ack.failure(f"Failed to load messages: {exc}")

        await self._connections.emit(
            connection_id, ServerEvent.LOAD_MORE_MESSAGES_RESPONSE, page.to_payload()
        )
        return Ack.success()

    async def history_page(
        self, room_id: str, offset: int = 0, limit: Optional[int] = None
    ) -> HistoryPage:
        """Fetch *limit* messages starting *offset* records from the newest.

        One extra record is requested so ``has_more`` can be decided without
        a separate count query.
        """
        if limit is None:
            limit = self._history_page_size
        limit = max(1, min(limit, MAX_PAGE_SIZE))

        messages = await self._store.fetch_page(room_id, limit + 1, offset)
        has_more = len(messages) > limit
        messages = messages[:limit]
        messages.reverse()
        return HistoryPage(messages=messages, has_more=has_more)
