"""Wire protocol for the chat WebSocket.

Frames are JSON objects. Clients send::

    {"event": "join_room", "data": {...}, "ackId": 1}

and every frame carrying an ``ackId`` is answered exactly once with::

    {"event": "ack", "ackId": 1, "error": null}      # success
    {"event": "ack", "ackId": 1, "error": "nick: ..."}  # failure

Server pushes use the same envelope: ``{"event": <name>, "data": <payload>}``.

Inbound payloads are validated with ``validate_payload``, which returns either
the typed request or a ``ValidationFailure`` instead of raising. Outbound
payloads are checked by ``build_frame`` before emission; a payload that does
not match its schema is logged and suppressed rather than sent malformed.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Type, TypeVar, Union

from pydantic import (
    AfterValidator,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
)

from roomchat.messages.schemas import DEFAULT_ROOM, MAX_MESSAGE_LENGTH, MAX_NICKNAME_LENGTH

from .presence import OnlineUser

logger = logging.getLogger(__name__)

# Default page size for message history pagination
DEFAULT_PAGE_SIZE = 50

# Maximum page size to prevent abuse
MAX_PAGE_SIZE = 100


class ClientEvent(str, Enum):
    """Events a client may send."""
    JOIN_ROOM = "join_room"
    SEND_MESSAGE = "send_message"
    LOAD_MORE_MESSAGES = "load_more_messages"


class ServerEvent(str, Enum):
    """Events the server pushes to clients.

    Attributes:
        CONNECTED: Sent once on connect with the server-assigned connection id.
        USER_LIST_UPDATE: Room roster changed.
        LOAD_HISTORY: Initial history page, sent privately after a join.
        RECEIVE_MESSAGE: A user or system message for the room.
        LOAD_MORE_MESSAGES_RESPONSE: An older history page, sent privately.
        ACK: Outcome of a client frame that carried an ackId.
        ERROR: A malformed frame that could not be acknowledged.
    """
    CONNECTED = "connected"
    USER_LIST_UPDATE = "user_list_update"
    LOAD_HISTORY = "load_history"
    RECEIVE_MESSAGE = "receive_message"
    LOAD_MORE_MESSAGES_RESPONSE = "load_more_messages_response"
    ACK = "ack"
    ERROR = "error"


# =============================================================================
# Inbound requests
# =============================================================================


def _default_room(value: Any) -> Any:
    if value is None or value == "":
        return DEFAULT_ROOM
    return value


# Empty or null room ids fall back to the global room
RoomId = Annotated[str, BeforeValidator(_default_room)]


class JoinRoomRequest(BaseModel):
    """Payload of ``join_room``. The nickname is trimmed before validation."""
    model_config = ConfigDict(extra="forbid")

    nick: str = Field(..., min_length=1, max_length=MAX_NICKNAME_LENGTH)
    roomId: RoomId = DEFAULT_ROOM

    @field_validator("nick", mode="before")
    @classmethod
    def _strip_nick(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip()
        return value


class SendMessageRequest(BaseModel):
    """Payload of ``send_message``. Content is kept exactly as sent.

    ``isGlobal`` is accepted for compatibility with older clients but
    ignored: the server derives it from ``roomId``.
    """
    model_config = ConfigDict(extra="forbid")

    content: str = Field(..., min_length=1, max_length=MAX_MESSAGE_LENGTH)
    senderNick: str = Field(..., min_length=1, max_length=MAX_NICKNAME_LENGTH)
    roomId: RoomId = DEFAULT_ROOM
    isGlobal: Optional[bool] = None


class LoadMoreMessagesRequest(BaseModel):
    """Payload of ``load_more_messages``."""
    model_config = ConfigDict(extra="forbid")

    roomId: RoomId
    offset: int = Field(..., ge=0, strict=True)
    limit: Optional[int] = Field(default=None, ge=1, le=MAX_PAGE_SIZE, strict=True)


@dataclass(frozen=True)
class ValidationFailure:
    """Which field of a payload was rejected, and why."""
    field: str
    reason: str

    @property
    def message(self) -> str:
        return f"{self.field}: {self.reason}"


RequestT = TypeVar("RequestT", bound=BaseModel)


def validate_payload(
    model: Type[RequestT], data: Any
) -> Union[RequestT, ValidationFailure]:
    """Validate *data* against *model* without raising.

    Returns:
        The validated request, or a ValidationFailure naming the first
        offending field.
    """
    if not isinstance(data, dict):
        return ValidationFailure(field="payload", reason="expected an object")
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        error = exc.errors()[0]
        field = ".".join(str(part) for part in error["loc"]) or "payload"
        return ValidationFailure(field=field, reason=error["msg"])


# =============================================================================
# Acknowledgements
# =============================================================================


@dataclass(frozen=True)
class Ack:
    """The single outcome of a client-initiated operation."""
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls) -> "Ack":
        return cls()

    @classmethod
    def failure(cls, error: str) -> "Ack":
        return cls(error=error)

    def to_frame(self, ack_id: Any) -> Dict[str, Any]:
        return {"event": ServerEvent.ACK.value, "ackId": ack_id, "error": self.error}


# =============================================================================
# Outbound payloads
# =============================================================================


def _check_iso_timestamp(value: str) -> str:
    datetime.fromisoformat(value.replace("Z", "+00:00"))
    return value


IsoTimestamp = Annotated[str, AfterValidator(_check_iso_timestamp)]


class SerializedUserMessage(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    type: Literal["user"]
    content: str = Field(..., min_length=1, max_length=MAX_MESSAGE_LENGTH)
    senderNick: str = Field(..., min_length=1, max_length=MAX_NICKNAME_LENGTH)
    roomId: str
    isGlobal: bool
    createdAt: IsoTimestamp
    updatedAt: IsoTimestamp


class SerializedSystemMessage(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    type: Literal["system"]
    content: str = Field(..., min_length=1)
    roomId: str
    createdAt: IsoTimestamp


AnySerializedMessage = Annotated[
    Union[SerializedUserMessage, SerializedSystemMessage],
    Field(discriminator="type"),
]


class UserListUpdatePayload(BaseModel):
    users: List[OnlineUser]


class LoadMoreMessagesPayload(BaseModel):
    messages: List[AnySerializedMessage]
    hasMore: bool


class ConnectedPayload(BaseModel):
    id: str


_OUTBOUND_SCHEMAS: Dict[ServerEvent, TypeAdapter] = {
    ServerEvent.CONNECTED: TypeAdapter(ConnectedPayload),
    ServerEvent.USER_LIST_UPDATE: TypeAdapter(UserListUpdatePayload),
    ServerEvent.LOAD_HISTORY: TypeAdapter(List[AnySerializedMessage]),
    ServerEvent.RECEIVE_MESSAGE: TypeAdapter(AnySerializedMessage),
    ServerEvent.LOAD_MORE_MESSAGES_RESPONSE: TypeAdapter(LoadMoreMessagesPayload),
}


def build_frame(event: ServerEvent, data: Any) -> Optional[Dict[str, Any]]:
    """Wrap *data* in an event envelope after checking it against its schema.

    Returns:
        The frame, or None when the payload does not match the schema for
        *event* (the caller must then skip the emission).
    """
    adapter = _OUTBOUND_SCHEMAS.get(event)
    if adapter is not None:
        try:
            adapter.validate_python(data)
        except ValidationError as exc:
            logger.error("[Protocol] Suppressed malformed %s payload: %s", event.value, exc)
            return None
    return {"event": event.value, "data": data}
