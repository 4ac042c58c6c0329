"""SignalingClient 테스트.

로컬 websockets 서버를 릴레이 대신 띄워 채널 동작을 검증합니다.

사용법:
    pytest test/test_channel.py
"""

import asyncio
import json

import pytest
import websockets

from callrelay.modules.client import DISCONNECT_EVENT, SignalingClient
from callrelay.modules.shared import MessageValidationError
from callrelay.modules.signaling import UserJoined


def test_connect_emit_receive_and_disconnect():
    async def scenario():
        received = []

        async def relay(ws):
            await ws.send(json.dumps({"type": "peer_id", "data": {"peer_id": "p-1"}}))
            received.append(json.loads(await ws.recv()))
            await ws.send("not json")
            await ws.send(json.dumps({"type": "user:joined", "data": {"email": "b@x.io", "id": "p-2"}}))
            await ws.close()

        async with websockets.serve(relay, "127.0.0.1", 0) as server:
            port = server.sockets[0].getsockname()[1]
            client = SignalingClient(f"ws://127.0.0.1:{port}")

            joined = asyncio.Queue()
            disconnected = asyncio.Event()

            async def on_joined(message):
                await joined.put(message)

            async def on_disconnect(message):
                disconnected.set()

            assert await client.connect() == "p-1"
            client.on("user:joined", on_joined)
            client.on(DISCONNECT_EVENT, on_disconnect)

            await client.emit("room:join", {"email": "a@x.io", "room": "r1"})

            message = await asyncio.wait_for(joined.get(), timeout=5)
            await asyncio.wait_for(disconnected.wait(), timeout=5)
            await client.close()

        return received, message, client

    received, message, client = asyncio.run(scenario())

    assert received == [{"type": "room:join", "data": {"email": "a@x.io", "room": "r1"}}]
    assert isinstance(message, UserJoined)
    assert message.id == "p-2"
    assert not client.connected


def test_connect_rejects_unexpected_first_frame():
    async def scenario():
        async def relay(ws):
            await ws.send(json.dumps({"type": "user:joined", "data": {"email": "b@x.io", "id": "p-2"}}))
            await ws.wait_closed()

        async with websockets.serve(relay, "127.0.0.1", 0) as server:
            port = server.sockets[0].getsockname()[1]
            client = SignalingClient(f"ws://127.0.0.1:{port}")
            with pytest.raises(MessageValidationError):
                await client.connect()
            assert not client.connected

    asyncio.run(scenario())


def test_subscription_cancel_removes_handler():
    client = SignalingClient("ws://example.invalid/ws")

    async def handler(message):
        pass

    subscription = client.on("user:joined", handler)
    assert client.handlers["user:joined"] == [handler]

    subscription.cancel()
    subscription.cancel()
    assert "user:joined" not in client.handlers


def test_token_is_sent_as_query():
    client = SignalingClient("ws://localhost:8000/ws", token="secret")
    assert client.url == "ws://localhost:8000/ws?token=secret"


def test_emit_without_connection_is_dropped():
    client = SignalingClient("ws://localhost:8000/ws")
    asyncio.run(client.emit("room:join", {"email": "a@x.io", "room": "r1"}))
    assert not client.connected
