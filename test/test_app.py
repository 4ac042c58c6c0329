"""FastAPI 앱 통합 테스트 (TestClient).

사용법:
    pytest test/test_app.py
"""

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from callrelay.app import app
from callrelay.config import ServerConfig
from callrelay.routes import deps

OFFER = {"type": "offer", "sdp": "v=0 offer"}
ANSWER = {"type": "answer", "sdp": "v=0 answer"}


@pytest.fixture
def client():
    with TestClient(app) as test_client:
        yield test_client


def connect(ws):
    message = ws.receive_json()
    assert message["type"] == "peer_id"
    return message["data"]["peer_id"]


def join(ws, email, room):
    ws.send_json({"type": "room:join", "data": {"email": email, "room": room}})


def test_root(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json() == "Signaling relay working with /ws"


def test_ice_servers(client):
    response = client.get("/api/ice-servers")
    assert response.status_code == 200

    urls = [url for server in response.json()["iceServers"] for url in server["urls"]]
    assert "stun:stun.l.google.com:19302" in urls


def test_peer_id_and_join_echo(client):
    with client.websocket_connect("/ws") as ws:
        peer_id = connect(ws)
        assert peer_id

        join(ws, "alice@example.com", "echo-room")
        assert ws.receive_json() == {
            "type": "room:join",
            "data": {"email": "alice@example.com", "room": "echo-room"},
        }


def test_call_flow_through_relay(client):
    with client.websocket_connect("/ws") as ws_a, client.websocket_connect("/ws") as ws_b:
        id_a = connect(ws_a)
        id_b = connect(ws_b)

        join(ws_a, "alice@example.com", "call-room")
        ws_a.receive_json()  # echo

        join(ws_b, "bob@example.com", "call-room")
        assert ws_a.receive_json() == {
            "type": "user:joined",
            "data": {"email": "bob@example.com", "id": id_b},
        }
        assert ws_b.receive_json()["type"] == "room:join"

        ws_a.send_json({"type": "user:call", "data": {"to": id_b, "offer": OFFER}})
        assert ws_b.receive_json() == {"type": "incoming:call", "data": {"from": id_a, "offer": OFFER}}

        ws_b.send_json({"type": "call:accepted", "data": {"to": id_a, "ans": ANSWER}})
        assert ws_a.receive_json() == {"type": "call:accepted", "data": {"from": id_b, "ans": ANSWER}}

        ws_b.send_json({"type": "peer:nego:needed", "data": {"to": id_a, "offer": OFFER}})
        assert ws_a.receive_json() == {"type": "peer:nego:needed", "data": {"from": id_b, "offer": OFFER}}

        ws_a.send_json({"type": "peer:nego:done", "data": {"to": id_b, "ans": ANSWER}})
        assert ws_b.receive_json() == {"type": "peer:nego:final", "data": {"from": id_a, "ans": ANSWER}}


def test_malformed_frames_keep_socket_open(client):
    with client.websocket_connect("/ws") as ws:
        connect(ws)

        ws.send_bytes(b"\x00\x01")
        ws.send_text("not json")
        ws.send_json({"type": "no:such:event", "data": {}})
        ws.send_json({"type": "user:call", "data": {"offer": OFFER}})

        join(ws, "carol@example.com", "malformed-room")
        assert ws.receive_json()["type"] == "room:join"


def test_health_and_rooms(client):
    with client.websocket_connect("/ws") as ws:
        peer_id = connect(ws)
        join(ws, "dave@example.com", "listed-room")
        ws.receive_json()

        health = client.get("/api/health").json()
        assert health["status"] == "ok"
        assert health["connections"] >= 1
        assert health["rooms"] >= 1

        rooms = {room["room_id"]: room for room in client.get("/api/rooms").json()["rooms"]}
        assert rooms["listed-room"]["members"] == [{"id": peer_id, "email": "dave@example.com"}]


def test_token_required_when_password_set(client, monkeypatch):
    monkeypatch.setattr(deps, "server_config", ServerConfig(ACCESS_PASSWORD="secret"))

    with pytest.raises(WebSocketDisconnect) as excinfo:
        with client.websocket_connect("/ws"):
            pass
    assert excinfo.value.code == 4001

    with client.websocket_connect("/ws?token=secret") as ws:
        assert connect(ws)

    assert client.get("/api/rooms").status_code == 401
    assert client.get("/api/rooms", headers={"Authorization": "Bearer secret"}).status_code == 200
