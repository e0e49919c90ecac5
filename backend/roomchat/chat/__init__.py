"""Real-time room chat: presence, sessions, dispatch and transport."""

from .connections import ConnectionManager
from .dispatch import HistoryPage, MessageDispatcher
from .presence import OnlineUser, PresenceRegistry
from .protocol import Ack, ClientEvent, ServerEvent, ValidationFailure, validate_payload
from .service import ChatService, get_chat_service, set_chat_service
from .sessions import RoomSessionCoordinator

__all__ = [
    "Ack",
    "ChatService",
    "ClientEvent",
    "ConnectionManager",
    "HistoryPage",
    "MessageDispatcher",
    "OnlineUser",
    "PresenceRegistry",
    "RoomSessionCoordinator",
    "ServerEvent",
    "ValidationFailure",
    "get_chat_service",
    "set_chat_service",
    "validate_payload",
]
