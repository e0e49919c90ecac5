"""End-to-end tests for the chat WebSocket and HTTP endpoints.

Each test runs the full application lifespan against an in-memory store.
"""
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from roomchat import config as config_module
from roomchat.chat.router import _dispatch
from roomchat.config import reset_config
from roomchat.main import app, create_app


def receive_connected(ws):
    """Helper to receive the backend-assigned connection id."""
    connected = ws.receive_json()
    assert connected["event"] == "connected"
    assert connected["data"]["id"]
    return connected["data"]["id"]


def send(ws, event, data, ack_id):
    ws.send_json({"event": event, "data": data, "ackId": ack_id})


def receive_until_ack(ws):
    """Collect pushed frames up to and including the next ack."""
    frames = []
    while True:
        frame = ws.receive_json()
        if frame["event"] == "ack":
            return frames, frame
        frames.append(frame)


def join(ws, nick, room_id="global", ack_id=1):
    send(ws, "join_room", {"nick": nick, "roomId": room_id}, ack_id)
    frames, ack = receive_until_ack(ws)
    assert ack == {"event": "ack", "ackId": ack_id, "error": None}
    return frames


def test_index(api_client):
    response = api_client.get("/")
    assert response.status_code == 200
    assert response.json() == {"message": "hello world!"}


def test_health(api_client):
    response = api_client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_two_clients_join_chat_and_leave(api_client):
    """alice and bob share a room; bob sees alice's message and her departure."""
    with api_client.websocket_connect("/ws/chat") as bob:
        bob_id = receive_connected(bob)

        with api_client.websocket_connect("/ws/chat") as alice:
            alice_id = receive_connected(alice)

            frames = join(alice, "alice")
            assert [f["event"] for f in frames] == [
                "user_list_update", "load_history", "receive_message",
            ]
            assert frames[0]["data"] == {
                "users": [{"id": alice_id, "nick": "alice", "roomId": "global"}]
            }
            assert frames[1]["data"] == []
            assert frames[2]["data"]["content"] == "alice joined"

            frames = join(bob, "bob")
            assert [f["event"] for f in frames] == [
                "user_list_update", "load_history", "receive_message",
            ]
            assert [u["id"] for u in frames[0]["data"]["users"]] == [alice_id, bob_id]
            assert frames[2]["data"]["content"] == "bob joined"

            roster = alice.receive_json()
            assert roster["event"] == "user_list_update"
            assert [u["nick"] for u in roster["data"]["users"]] == ["alice", "bob"]
            assert alice.receive_json()["data"]["content"] == "bob joined"

            send(alice, "send_message", {"content": "hi", "senderNick": "alice"}, 2)
            frames, ack = receive_until_ack(alice)
            assert ack["error"] is None
            [echo] = frames
            assert echo["event"] == "receive_message"
            assert echo["data"]["type"] == "user"
            assert echo["data"]["content"] == "hi"
            assert echo["data"]["isGlobal"] is True
            assert echo["data"]["createdAt"].endswith("Z")

            received = bob.receive_json()
            assert received == echo

        roster = bob.receive_json()
        assert roster["event"] == "user_list_update"
        assert roster["data"]["users"] == [{"id": bob_id, "nick": "bob", "roomId": "global"}]
        notice = bob.receive_json()
        assert notice["event"] == "receive_message"
        assert notice["data"]["type"] == "system"
        assert notice["data"]["content"] == "alice left"


def test_messages_stay_in_their_room(api_client):
    with api_client.websocket_connect("/ws/chat") as alice, \
         api_client.websocket_connect("/ws/chat") as carol:
        receive_connected(alice)
        receive_connected(carol)
        join(alice, "alice", "a")
        join(carol, "carol", "b")

        send(alice, "send_message", {"content": "for a", "senderNick": "alice", "roomId": "a"}, 2)
        receive_until_ack(alice)
        send(carol, "send_message", {"content": "for b", "senderNick": "carol", "roomId": "b"}, 2)
        frames, ack = receive_until_ack(carol)

        assert ack["error"] is None
        assert [f["data"]["content"] for f in frames] == ["for b"]


def test_history_on_join_and_load_more(api_client):
    with api_client.websocket_connect("/ws/chat") as alice:
        receive_connected(alice)
        join(alice, "alice", "lobby")
        for i in range(3):
            send(alice, "send_message", {"content": f"m{i}", "senderNick": "alice", "roomId": "lobby"}, 10 + i)
            receive_until_ack(alice)

        send(alice, "load_more_messages", {"roomId": "lobby", "offset": 1, "limit": 1}, 20)
        frames, ack = receive_until_ack(alice)

        assert ack["error"] is None
        [response] = frames
        assert response["event"] == "load_more_messages_response"
        assert [m["content"] for m in response["data"]["messages"]] == ["m1"]
        assert response["data"]["hasMore"] is True

    with api_client.websocket_connect("/ws/chat") as bob:
        receive_connected(bob)
        frames = join(bob, "bob", "lobby")
        history = frames[1]
        assert history["event"] == "load_history"
        assert [m["content"] for m in history["data"]] == ["m0", "m1", "m2"]


def test_validation_error_is_acked(api_client):
    with api_client.websocket_connect("/ws/chat") as ws:
        receive_connected(ws)

        send(ws, "join_room", {"nick": "x" * 51}, "j1")
        frames, ack = receive_until_ack(ws)

        assert frames == []
        assert ack["ackId"] == "j1"
        assert ack["error"].startswith("nick")


def test_unknown_event_is_acked_with_error(api_client):
    with api_client.websocket_connect("/ws/chat") as ws:
        receive_connected(ws)

        send(ws, "shout", {}, 5)

        assert ws.receive_json() == {"event": "ack", "ackId": 5, "error": "Unknown event: shout"}


def test_failure_without_ack_id_sends_error_event(api_client):
    with api_client.websocket_connect("/ws/chat") as ws:
        receive_connected(ws)

        ws.send_json({"event": "send_message", "data": {"content": ""}})
        frame = ws.receive_json()

        assert frame["event"] == "error"
        assert frame["data"]["error"].startswith("content")


@pytest.mark.parametrize("raw", ["not json", "[1, 2]", "42"])
def test_malformed_frame(api_client, raw):
    with api_client.websocket_connect("/ws/chat") as ws:
        receive_connected(ws)

        ws.send_text(raw)

        assert ws.receive_json() == {
            "event": "error",
            "data": {"error": "Invalid frame: expected a JSON object"},
        }


def test_binary_json_frame_is_handled(api_client):
    with api_client.websocket_connect("/ws/chat") as ws:
        receive_connected(ws)

        ws.send_bytes(b'{"event": "join_room", "data": {"nick": "alice"}, "ackId": 1}')
        frames, ack = receive_until_ack(ws)

        assert ack["error"] is None
        assert [f["event"] for f in frames] == [
            "user_list_update", "load_history", "receive_message",
        ]


@pytest.mark.parametrize("raw", [b"\xc3\x28", b"[1, 2]", b'{"event": "join_room"'])
def test_malformed_binary_frame_keeps_connection_open(api_client, raw):
    with api_client.websocket_connect("/ws/chat") as ws:
        receive_connected(ws)

        ws.send_bytes(raw)

        assert ws.receive_json() == {
            "event": "error",
            "data": {"error": "Invalid frame: expected a JSON object"},
        }
        send(ws, "shout", {}, 2)
        assert ws.receive_json()["ackId"] == 2


def test_history_endpoint(api_client):
    with api_client.websocket_connect("/ws/chat") as ws:
        receive_connected(ws)
        join(ws, "alice")
        for i in range(3):
            send(ws, "send_message", {"content": f"m{i}", "senderNick": "alice"}, 10 + i)
            receive_until_ack(ws)

    response = api_client.get("/rooms/global/history", params={"limit": 2})
    assert response.status_code == 200
    body = response.json()
    assert [m["content"] for m in body["messages"]] == ["m1", "m2"]
    assert body["hasMore"] is True

    response = api_client.get("/rooms/global/history", params={"offset": 2, "limit": 2})
    assert [m["content"] for m in response.json()["messages"]] == ["m0"]
    assert response.json()["hasMore"] is False


def test_history_endpoint_huge_offset_is_empty(api_client):
    response = api_client.get("/rooms/global/history", params={"offset": 10**30})

    assert response.status_code == 200
    assert response.json() == {"messages": [], "hasMore": False}


def test_history_endpoint_rejects_bad_limit(api_client):
    assert api_client.get("/rooms/global/history", params={"limit": 0}).status_code == 422
    assert api_client.get("/rooms/global/history", params={"limit": 101}).status_code == 422
    assert api_client.get("/rooms/global/history", params={"offset": -1}).status_code == 422


def test_users_endpoint(api_client):
    assert api_client.get("/rooms/global/users").json() == {"users": []}

    with api_client.websocket_connect("/ws/chat") as ws:
        connection_id = receive_connected(ws)
        join(ws, "alice")

        response = api_client.get("/rooms/global/users")

        assert response.json() == {
            "users": [{"id": connection_id, "nick": "alice", "roomId": "global"}]
        }


def test_endpoints_unavailable_without_lifespan():
    client = TestClient(app)

    assert client.get("/rooms/global/history").status_code == 503
    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect("/ws/chat"):
            pass


@pytest.mark.asyncio
async def test_handler_crash_becomes_internal_error_ack(chat):
    chat.dispatcher.send_message = AsyncMock(side_effect=RuntimeError("boom"))

    ack = await _dispatch(chat, "c1", {"event": "send_message", "data": {}})

    assert ack.error == "Internal server error"
    chat.dispatcher.send_message.assert_awaited_once_with("c1", {})


def test_create_app_does_not_read_settings():
    reset_config()

    create_app()

    assert config_module._config is None


def test_create_app_applies_cors_origins():
    client = TestClient(create_app(["http://chat.example"]))
    preflight = {"Access-Control-Request-Method": "GET"}

    allowed = client.options("/health", headers={"Origin": "http://chat.example", **preflight})
    denied = client.options("/health", headers={"Origin": "http://evil.example", **preflight})

    assert allowed.headers["access-control-allow-origin"] == "http://chat.example"
    assert denied.status_code == 400
