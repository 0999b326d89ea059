from fastapi.testclient import TestClient

from app import create_app
from conftest import emit, register


def test_register_replies_with_user_rooms(client):
    with client.websocket_connect("/ws") as ws:
        assert register(ws, "u1") == []


def test_create_room_and_exchange_messages(client):
    with client.websocket_connect("/ws") as ws1, client.websocket_connect("/ws") as ws2:
        register(ws1, "u1")
        register(ws2, "u2")

        emit(ws1, "create_room", {"roomId": "R1", "userIds": ["u1", "u2"]})
        for ws in (ws1, ws2):
            assert ws.receive_json() == {"event": "room_created", "data": {"id": "R1", "userCount": 2}}

        emit(ws1, "send_message", {"roomId": "R1", "userId": "u1", "message": "hi"})
        for ws in (ws1, ws2):
            reply = ws.receive_json()
            assert reply["event"] == "new_message"
            assert reply["data"]["roomId"] == "R1"
            assert reply["data"]["userId"] == "u1"
            assert reply["data"]["message"] == "hi"
            assert reply["data"]["id"]
            assert ws.receive_json() == {"event": "room_expiration", "data": 5}

        emit(ws2, "get_messages", "R1")
        reply = ws2.receive_json()
        assert reply["event"] == "room_messages"
        assert reply["data"]["roomId"] == "R1"
        assert [m["message"] for m in reply["data"]["messages"]] == ["hi"]
        assert reply["data"]["messages"][0]["userId"] == "u1"


def test_register_lists_existing_rooms(client):
    with client.websocket_connect("/ws") as ws1:
        register(ws1, "u1")
        emit(ws1, "create_room", {"roomId": "R1", "userIds": ["u1", "u2"]})
        ws1.receive_json()

        with client.websocket_connect("/ws") as ws2:
            assert register(ws2, "u2") == [{"id": "R1", "userCount": 2}]


def test_duplicate_room_error_goes_only_to_requester(client):
    with client.websocket_connect("/ws") as ws1, client.websocket_connect("/ws") as ws2:
        register(ws1, "u1")
        register(ws2, "u2")
        emit(ws1, "create_room", {"roomId": "R1", "userIds": ["u1", "u2"]})
        ws1.receive_json()
        ws2.receive_json()

        emit(ws2, "create_room", {"roomId": "R1", "userIds": ["u2"]})
        reply = ws2.receive_json()
        assert reply["event"] == "error"
        assert reply["data"]["kind"] == "already_exists"

        # The next frame ws1 sees is its own reply, not the other user's error
        emit(ws1, "get_room_expiration", "R1")
        assert ws1.receive_json() == {"event": "room_expiration", "data": 5}


def test_non_member_cannot_send(client):
    with client.websocket_connect("/ws") as ws1, client.websocket_connect("/ws") as ws2:
        register(ws1, "u1")
        register(ws2, "u2")
        emit(ws1, "create_room", {"roomId": "R1", "userIds": ["u1"]})
        ws1.receive_json()

        emit(ws2, "send_message", {"roomId": "R1", "userId": "u2", "message": "let me in"})
        reply = ws2.receive_json()
        assert reply == {"event": "error", "data": {"kind": "not_member", "detail": "You are not a member of this room"}}

        emit(ws1, "get_messages", "R1")
        assert ws1.receive_json()["data"]["messages"] == []


def test_join_room_replies_to_joining_client(client):
    with client.websocket_connect("/ws") as ws1, client.websocket_connect("/ws") as ws2:
        register(ws1, "u1")
        register(ws2, "u2")
        emit(ws1, "create_room", {"roomId": "R1", "userIds": ["u1"]})
        ws1.receive_json()

        emit(ws2, "join_room", {"roomId": "R1", "userId": "u2"})
        assert ws2.receive_json() == {"event": "room_joined", "data": {"id": "R1", "userCount": 2}}
        assert ws2.receive_json() == {"event": "room_expiration", "data": 5}
        assert ws2.receive_json() == {"event": "user_rooms", "data": [{"id": "R1", "userCount": 2}]}

        # Joining again changes nothing but is still accepted
        emit(ws2, "join_room", {"roomId": "R1", "userId": "u2"})
        assert ws2.receive_json()["data"] == {"id": "R1", "userCount": 2}


def test_join_missing_room(client):
    with client.websocket_connect("/ws") as ws:
        register(ws, "u1")
        emit(ws, "join_room", {"roomId": "ZZ99", "userId": "u1"})
        reply = ws.receive_json()
        assert reply["event"] == "error"
        assert reply["data"]["kind"] == "not_found"


def test_join_by_user_creates_then_reuses_room(client):
    with client.websocket_connect("/ws") as ws1, client.websocket_connect("/ws") as ws2:
        register(ws1, "u1")
        register(ws2, "u2")

        emit(ws1, "join_by_user", {"userId": "u2", "currentUserId": "u1"})
        created = ws1.receive_json()
        assert created["event"] == "room_created"
        assert created["data"]["userCount"] == 2
        room_id = created["data"]["id"]
        assert ws2.receive_json() == created

        emit(ws1, "join_by_user", {"userId": "u2", "currentUserId": "u1"})
        assert ws1.receive_json() == {"event": "room_joined", "data": {"id": room_id, "userCount": 2}}

        emit(ws2, "join_by_user", {"userId": "u1", "currentUserId": "u2"})
        assert ws2.receive_json() == {"event": "room_joined", "data": {"id": room_id, "userCount": 2}}

    assert client.get("/users/u1/rooms").json() == [{"id": room_id, "userCount": 2}]


def test_invalid_frames_report_errors(client):
    with client.websocket_connect("/ws") as ws:
        ws.send_text("not json")
        assert ws.receive_json()["data"]["kind"] == "invalid_json"

        emit(ws, "dance", {})
        assert ws.receive_json()["data"]["kind"] == "unknown_event"

        emit(ws, "create_room", {"roomId": "R1"})
        assert ws.receive_json()["data"]["kind"] == "invalid_payload"

        emit(ws, "register", "")
        assert ws.receive_json()["data"]["kind"] == "invalid_payload"

        ws.send_json(["register", "u1"])
        assert ws.receive_json()["data"]["kind"] == "invalid_payload"

        # The socket is still usable
        assert register(ws, "u1") == []


def test_get_messages_for_missing_room(client):
    with client.websocket_connect("/ws") as ws:
        emit(ws, "get_messages", "R404")
        assert ws.receive_json() == {"event": "error", "data": {"kind": "not_found", "detail": "Room not found"}}


def test_inactive_room_is_deleted_and_broadcast():
    with TestClient(create_app(ttl_seconds=0.2)) as client:
        with client.websocket_connect("/ws") as ws1, client.websocket_connect("/ws") as ws2:
            register(ws1, "u1")
            register(ws2, "bystander")

            emit(ws1, "create_room", {"roomId": "R1", "userIds": ["u1"]})
            assert ws1.receive_json()["event"] == "room_created"

            # Non-members hear about the deletion too
            assert ws1.receive_json() == {"event": "room_deleted", "data": "R1"}
            assert ws2.receive_json() == {"event": "room_deleted", "data": "R1"}

            emit(ws1, "send_message", {"roomId": "R1", "userId": "u1", "message": "anyone?"})
            assert ws1.receive_json()["data"]["kind"] == "not_found"

            emit(ws1, "join_room", {"roomId": "R1", "userId": "u1"})
            assert ws1.receive_json()["data"]["kind"] == "not_found"

        assert client.get("/health").json()["rooms"] == 0


def test_join_by_user_with_self_is_rejected(client):
    with client.websocket_connect("/ws") as ws:
        register(ws, "u1")
        for _ in range(3):
            emit(ws, "join_by_user", {"userId": "u1", "currentUserId": "u1"})
            reply = ws.receive_json()
            assert reply["event"] == "error"
            assert reply["data"]["kind"] == "invalid_pair"

    assert client.get("/health").json()["rooms"] == 0


def test_reregistering_moves_routing_to_new_user(client):
    with client.websocket_connect("/ws") as ws1, client.websocket_connect("/ws") as ws2:
        register(ws1, "u1")
        register(ws1, "u2")
        register(ws2, "u3")

        emit(ws2, "create_room", {"roomId": "R1", "userIds": ["u1", "u3"]})
        assert ws2.receive_json()["event"] == "room_created"

        emit(ws2, "create_room", {"roomId": "R2", "userIds": ["u2", "u3"]})
        assert ws2.receive_json()["data"]["id"] == "R2"

        # ws1 is u2 now, so the first frame it sees is R2 and not R1
        assert ws1.receive_json() == {"event": "room_created", "data": {"id": "R2", "userCount": 2}}


def test_user_with_two_connections_receives_on_both(client):
    with client.websocket_connect("/ws") as phone, client.websocket_connect("/ws") as laptop, \
            client.websocket_connect("/ws") as other:
        register(phone, "u1")
        register(laptop, "u1")
        register(other, "u2")

        emit(other, "create_room", {"roomId": "R1", "userIds": ["u1", "u2"]})
        for ws in (phone, laptop, other):
            assert ws.receive_json() == {"event": "room_created", "data": {"id": "R1", "userCount": 2}}

        emit(other, "send_message", {"roomId": "R1", "userId": "u2", "message": "both?"})
        for ws in (phone, laptop, other):
            assert ws.receive_json()["data"]["message"] == "both?"
            assert ws.receive_json()["event"] == "room_expiration"
