"""End-to-end tests for the realtime WebSocket endpoint and room HTTP endpoints.

Every test enters the TestClient (``api_client``) so all sockets share one
event loop and one coordinator built by the app lifespan.
"""
import pytest
from fastapi import WebSocketDisconnect

CONNECT_EVENTS = {"joined-room", "room-users", "clear-messages", "client-total", "room-history"}


def receive_frames(ws, count):
    """Receive ``count`` frames and index their payloads by event name."""
    frames = [ws.receive_json() for _ in range(count)]
    return {frame["event"]: frame["data"] for frame in frames}


def connect(client, token):
    return client.websocket_connect(f"/ws?token={token}")


class TestHandshake:
    def test_missing_token_is_rejected(self, api_client):
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with api_client.websocket_connect("/ws") as ws:
                ws.receive_json()
        assert exc_info.value.code == 1008

    def test_invalid_token_is_rejected(self, api_client):
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with connect(api_client, "forged") as ws:
                ws.receive_json()
        assert exc_info.value.code == 1008
        assert api_client.get("/rooms/general/users").json()["users"] == []

    def test_connect_places_user_in_general(self, api_client, token_service):
        with connect(api_client, token_service.issue("alice")) as ws:
            frames = receive_frames(ws, 5)

            assert set(frames) == CONNECT_EVENTS
            assert frames["joined-room"] == "general"
            assert frames["room-users"] == ["alice"]
            assert frames["client-total"] == 1
            assert frames["room-history"] == []
            assert frames["clear-messages"] is None

    def test_authorization_header(self, api_client, token_service):
        headers = {"Authorization": f"Bearer {token_service.issue('alice')}"}
        with api_client.websocket_connect("/ws", headers=headers) as ws:
            frames = receive_frames(ws, 5)
            assert frames["room-users"] == ["alice"]

    def test_login_token_opens_socket(self, api_client):
        api_client.post("/register", json={"username": "alice", "password": "pw"})
        token = api_client.post("/login", json={"username": "alice", "password": "pw"}).json()["token"]

        with connect(api_client, token) as ws:
            assert receive_frames(ws, 5)["joined-room"] == "general"


class TestRoomTraffic:
    def test_chat_between_two_clients(self, api_client, token_service):
        with connect(api_client, token_service.issue("alice")) as alice:
            receive_frames(alice, 5)
            with connect(api_client, token_service.issue("bob")) as bob:
                receive_frames(bob, 5)
                update = receive_frames(alice, 2)
                assert update["room-users"] == ["alice", "bob"]
                assert update["client-total"] == 2

                alice.send_json({"event": "send-message", "data": {"content": "hi bob"}})

                expected = {"event": "chat-message", "data": {"sender": "alice", "content": "hi bob"}}
                assert alice.receive_json() == expected
                assert bob.receive_json() == expected

                bob.send_json({"event": "send-feedback", "data": {"payload": "typing"}})
                assert alice.receive_json() == {
                    "event": "feedback", "data": {"sender": "bob", "payload": "typing"}
                }

    def test_join_room_and_disconnect(self, api_client, token_service):
        with connect(api_client, token_service.issue("alice")) as alice:
            receive_frames(alice, 5)
            with connect(api_client, token_service.issue("bob")) as bob:
                receive_frames(bob, 5)
                receive_frames(alice, 2)

                bob.send_json({"event": "join-room", "data": {"name": "dev"}})

                joined = receive_frames(bob, 5)
                assert joined["available-rooms"] == ["general", "dev"]
                assert joined["joined-room"] == "dev"
                assert joined["room-users"] == ["bob"]
                left = receive_frames(alice, 3)
                assert left["room-users"] == ["alice"]
                assert left["user-left"] == "bob"
                assert left["available-rooms"] == ["general", "dev"]

                assert api_client.get("/rooms").json() == {"rooms": ["general", "dev"]}
                assert api_client.get("/rooms/dev/users").json() == {"room": "dev", "users": ["bob"]}

            gone = receive_frames(alice, 2)
            assert gone["available-rooms"] == ["general"]
            assert gone["client-total"] == 1

    def test_delete_room_moves_members(self, api_client, token_service):
        with connect(api_client, token_service.issue("alice")) as alice:
            receive_frames(alice, 5)
            alice.send_json({"event": "join-room", "data": "dev"})
            receive_frames(alice, 5)

            alice.send_json({"event": "delete-room", "data": "dev"})

            frames = [alice.receive_json() for _ in range(7)]
            names = [frame["event"] for frame in frames if frame["event"] != "room-history"]
            assert names[-2:] == ["room-deleted", "available-rooms"]
            by_event = {frame["event"]: frame["data"] for frame in frames}
            assert by_event["joined-room"] == "general"
            assert by_event["room-deleted"] == "dev"
            assert by_event["available-rooms"] == ["general"]

        assert api_client.get("/rooms").json() == {"rooms": ["general"]}


class TestInvalidFrames:
    def test_errors_go_to_sender_and_connection_survives(self, api_client, token_service):
        with connect(api_client, token_service.issue("alice")) as ws:
            receive_frames(ws, 5)

            ws.send_text("not json")
            assert ws.receive_json() == {"event": "error", "data": {"error": "Invalid frame: not JSON"}}

            ws.send_json({"event": "send-message", "data": {"content": "  "}})
            error = ws.receive_json()
            assert error["event"] == "error"
            assert "content is required" in error["data"]["error"]

            ws.send_json({"event": "launch-rockets"})
            assert ws.receive_json()["event"] == "error"

            ws.send_json({"event": "list-rooms"})
            assert ws.receive_json() == {"event": "available-rooms", "data": ["general"]}


class TestHTTP:
    def test_health(self, api_client):
        assert api_client.get("/health").json() == {"status": "ok"}

    def test_unknown_room_users(self, api_client):
        response = api_client.get("/rooms/nowhere/users")
        assert response.status_code == 404

    def test_general_is_listed_without_clients(self, api_client):
        assert api_client.get("/rooms").json() == {"rooms": ["general"]}
