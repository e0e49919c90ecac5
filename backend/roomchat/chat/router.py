"""Chat router providing WebSocket and HTTP endpoints.

This module provides:
    - WebSocket /ws/chat: Real-time room chat
    - GET /rooms/{room_id}/history: Paginated message history
    - GET /rooms/{room_id}/users: Current room roster

Protocol Flow:
    1. Client connects -> Server assigns a connection id
       -> Server sends: {event: "connected", data: {id}}
    2. Client sends: {event: "join_room", data: {nick, roomId}, ackId}
       -> Room receives: user_list_update, then the joiner receives
          load_history, then the room receives the "joined" notice
    3. Client sends: {event: "send_message", data: {content, senderNick, roomId}, ackId}
       -> Room receives: receive_message
    4. Client sends: {event: "load_more_messages", data: {roomId, offset, limit?}, ackId}
       -> Client receives: load_more_messages_response
    5. On disconnect -> Room receives: user_list_update + "left" notice

Every frame carrying an ackId is answered with exactly one ack frame.
"""
import json
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse

from roomchat.messages.store import MessageStoreError

from .protocol import MAX_PAGE_SIZE, Ack, ClientEvent, ServerEvent
from .service import ChatService, get_chat_service

logger = logging.getLogger(__name__)

router = APIRouter()

Handler = Callable[[str, Any], Awaitable[Ack]]


def _handlers(service: ChatService) -> Dict[str, Handler]:
    return {
        ClientEvent.JOIN_ROOM.value: service.coordinator.join_room,
        ClientEvent.SEND_MESSAGE.value: service.dispatcher.send_message,
        ClientEvent.LOAD_MORE_MESSAGES.value: service.dispatcher.load_more_messages,
    }


async def _dispatch(service: ChatService, connection_id: str, frame: dict) -> Ack:
    """Route one client frame to its handler and return its outcome."""
    event = frame.get("event")
    handler = _handlers(service).get(event)
    if handler is None:
        return Ack.failure(f"Unknown event: {event}")
    try:
        return await handler(connection_id, frame.get("data"))
    except Exception:
        logger.exception(f"[WS] Handler for {event} failed on {connection_id}")
        return Ack.failure("Internal server error")


async def _receive_frame(websocket: WebSocket) -> Any:
    """Read one client frame and decode it as JSON.

    Text and binary (UTF-8) frames are both accepted. Returns None when the
    frame is not valid JSON.

    Raises:
        WebSocketDisconnect: The client closed the connection.
    """
    message = await websocket.receive()
    if message["type"] == "websocket.disconnect":
        raise WebSocketDisconnect(message.get("code", 1000), message.get("reason"))

    raw = message.get("text")
    if raw is None:
        raw = message.get("bytes")
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        return None


def _service_unavailable() -> JSONResponse:
    logger.warning("[chat] Chat service not configured, returning 503")
    return JSONResponse({"error": "Chat service not configured"}, status_code=503)


@router.get("/rooms/{room_id}/history")
async def get_message_history(
    room_id: str,
    offset: int = Query(0, ge=0, description="Records to skip, counted from the newest"),
    limit: Optional[int] = Query(None, ge=1, le=MAX_PAGE_SIZE, description="Page size"),
) -> JSONResponse:
    """Get a page of a room's message history.

    Args:
        room_id: The room ID.
        offset: Number of newest messages to skip.
        limit: Page size (1-100, defaults to the configured page size).

    Returns:
        JSON with a chronological messages array and hasMore boolean.

    Example:
        GET /rooms/global/history?offset=50&limit=50
    """
    service = get_chat_service()
    if service is None:
        return _service_unavailable()
    try:
        page = await service.dispatcher.history_page(room_id, offset, limit)
    except MessageStoreError as exc:
        return JSONResponse({"error": str(exc)}, status_code=500)
    return JSONResponse(page.to_payload())


@router.get("/rooms/{room_id}/users")
async def get_room_users(room_id: str) -> JSONResponse:
    """Get the users currently present in a room."""
    service = get_chat_service()
    if service is None:
        return _service_unavailable()
    users = service.registry.get_users_by_room(room_id)
    return JSONResponse({"users": [u.model_dump() for u in users]})


@router.websocket("/ws/chat")
async def websocket_chat_endpoint(websocket: WebSocket) -> None:
    """WebSocket endpoint handling the full chat lifecycle of one client.

    Frames from one connection are handled strictly in arrival order; frames
    from different connections interleave at storage calls.
    """
    service = get_chat_service()
    if service is None:
        logger.error("[WS] Chat service not configured, refusing connection")
        await websocket.close(code=1011)
        return

    connection_id = await service.connections.connect(websocket)
    logger.info(f"[WS] Connection accepted: {connection_id}")
    await service.connections.emit(connection_id, ServerEvent.CONNECTED, {"id": connection_id})

    try:
        while True:
            frame = await _receive_frame(websocket)
            if not isinstance(frame, dict):
                logger.warning(f"[WS] Malformed frame from {connection_id}")
                await websocket.send_json({
                    "event": ServerEvent.ERROR.value,
                    "data": {"error": "Invalid frame: expected a JSON object"},
                })
                continue

            logger.debug("[WS] %s received: event=%s", connection_id, frame.get("event", "?"))
            ack = await _dispatch(service, connection_id, frame)

            if "ackId" in frame:
                await websocket.send_json(ack.to_frame(frame["ackId"]))
            elif not ack.ok:
                await websocket.send_json({
                    "event": ServerEvent.ERROR.value,
                    "data": {"error": ack.error},
                })

    except WebSocketDisconnect:
        logger.info(f"[WS] Client disconnected: {connection_id}")
    finally:
        await service.coordinator.disconnect(connection_id)
        service.connections.disconnect(connection_id)
