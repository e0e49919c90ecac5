"""Process-wide wiring of the chat components.

The application lifespan builds one ChatService and installs it with
``set_chat_service``; the router looks it up with ``get_chat_service``.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from roomchat.config import ChatSettings
from roomchat.messages.store import MessageStore

from .connections import ConnectionManager
from .dispatch import MessageDispatcher
from .presence import PresenceRegistry
from .sessions import RoomSessionCoordinator

logger = logging.getLogger(__name__)


@dataclass
class ChatService:
    registry: PresenceRegistry
    connections: ConnectionManager
    coordinator: RoomSessionCoordinator
    dispatcher: MessageDispatcher

    @classmethod
    def create(cls, store: MessageStore, settings: Optional[ChatSettings] = None) -> "ChatService":
        settings = settings or ChatSettings()
        registry = PresenceRegistry()
        connections = ConnectionManager()
        coordinator = RoomSessionCoordinator(
            registry,
            connections,
            store,
            history_page_size=settings.history_page_size,
            max_participants=settings.max_participants_per_room,
        )
        dispatcher = MessageDispatcher(
            connections, store, history_page_size=settings.history_page_size
        )
        return cls(registry, connections, coordinator, dispatcher)

    def shutdown(self) -> None:
        """Drop all presence and connection state."""
        logger.info(
            "[Chat] Shutting down with %d online users", len(self.registry)
        )
        self.registry.clear()
        self.connections.clear()


_chat_service: Optional[ChatService] = None


def get_chat_service() -> Optional[ChatService]:
    """Return the global ChatService, or None if not configured."""
    return _chat_service


def set_chat_service(service: Optional[ChatService]) -> None:
    """Set (or clear) the global ChatService."""
    global _chat_service
    _chat_service = service
