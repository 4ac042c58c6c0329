"""SignalingRouter 테스트.

전송 객체는 ``send_json``이 AsyncMock인 가짜 객체를 사용합니다.

사용법:
    pytest test/test_router.py
"""

import asyncio
from unittest.mock import AsyncMock

from callrelay.modules.signaling import ConnectionRegistry, SignalingRouter

OFFER = {"type": "offer", "sdp": "v=0 offer"}
ANSWER = {"type": "answer", "sdp": "v=0 answer"}


def make_router(*connection_ids, announce_departures=False):
    router = SignalingRouter(ConnectionRegistry(), announce_departures=announce_departures)
    transports = {}
    for connection_id in connection_ids:
        transports[connection_id] = AsyncMock()
        router.connect(connection_id, transports[connection_id])
    return router, transports


def sent(transport):
    """전송 객체가 받은 프레임 리스트."""
    return [call.args[0] for call in transport.send_json.await_args_list]


def join(router, connection_id, email, room="r1"):
    return router.dispatch(connection_id, {"type": "room:join", "data": {"email": email, "room": room}})


def test_join_acknowledges_only_the_joiner():
    router, transports = make_router("A")

    asyncio.run(join(router, "A", "a@x.io"))

    assert sent(transports["A"]) == [{"type": "room:join", "data": {"email": "a@x.io", "room": "r1"}}]
    assert router.registry.members_of("r1") == {"A"}


def test_join_broadcast_goes_to_existing_members_only():
    """user:joined는 기존 멤버에게만 전송되고, 입장한 본인은 echo만 받음."""
    router, transports = make_router("A", "B", "C")

    async def scenario():
        await join(router, "A", "a@x.io")
        await join(router, "C", "c@x.io", room="other")
        for transport in transports.values():
            transport.send_json.reset_mock()
        await join(router, "B", "b@x.io")

    asyncio.run(scenario())

    assert sent(transports["A"]) == [{"type": "user:joined", "data": {"email": "b@x.io", "id": "B"}}]
    assert sent(transports["B"]) == [{"type": "room:join", "data": {"email": "b@x.io", "room": "r1"}}]
    assert sent(transports["C"]) == []


def test_user_call_relayed_as_incoming_call():
    router, transports = make_router("A", "B")

    asyncio.run(router.dispatch("A", {"type": "user:call", "data": {"to": "B", "offer": OFFER}}))

    assert sent(transports["B"]) == [{"type": "incoming:call", "data": {"from": "A", "offer": OFFER}}]
    assert sent(transports["A"]) == []


def test_call_accepted_relayed_with_sender():
    router, transports = make_router("A", "B")

    asyncio.run(router.dispatch("B", {"type": "call:accepted", "data": {"to": "A", "ans": ANSWER}}))

    assert sent(transports["A"]) == [{"type": "call:accepted", "data": {"from": "B", "ans": ANSWER}}]


def test_renegotiation_relays():
    router, transports = make_router("A", "B")

    async def scenario():
        await router.dispatch("A", {"type": "peer:nego:needed", "data": {"to": "B", "offer": OFFER}})
        await router.dispatch("B", {"type": "peer:nego:done", "data": {"to": "A", "ans": ANSWER}})

    asyncio.run(scenario())

    assert sent(transports["B"]) == [{"type": "peer:nego:needed", "data": {"from": "A", "offer": OFFER}}]
    assert sent(transports["A"]) == [{"type": "peer:nego:final", "data": {"from": "B", "ans": ANSWER}}]


def test_session_description_is_passed_through_untouched():
    """offer 내용은 검사하지 않으므로 어떤 JSON 값도 그대로 전달."""
    router, transports = make_router("A", "B")
    opaque = {"anything": [1, 2, {"nested": None}]}

    asyncio.run(router.dispatch("A", {"type": "user:call", "data": {"to": "B", "offer": opaque}}))

    assert sent(transports["B"])[0]["data"]["offer"] == opaque


def test_routing_miss_is_dropped_silently():
    router, transports = make_router("A")

    asyncio.run(router.dispatch("A", {"type": "user:call", "data": {"to": "ghost", "offer": OFFER}}))

    assert sent(transports["A"]) == []


def test_malformed_messages_are_dropped():
    router, transports = make_router("A", "B")
    frames = [
        {"type": "unknown:event", "data": {}},
        {"type": "user:call", "data": {"offer": OFFER}},
        {"type": "room:join", "data": {"email": "a@x.io"}},
        {"type": "user:call", "data": "not-an-object"},
        ["not", "an", "object"],
        {"data": {"to": "B"}},
    ]

    async def scenario():
        for frame in frames:
            await router.dispatch("A", frame)

    asyncio.run(scenario())

    assert sent(transports["A"]) == []
    assert sent(transports["B"]) == []
    assert len(router.registry) == 0
    assert router.is_live("A")


def test_disconnect_removes_participant_and_is_idempotent():
    router, transports = make_router("A", "B")

    async def scenario():
        await join(router, "A", "a@x.io")
        await join(router, "B", "b@x.io")
        await router.disconnect("A")
        await router.disconnect("A")

    asyncio.run(scenario())

    assert router.registry.members_of("r1") == {"B"}
    assert router.registry.lookup_by_email("a@x.io") is None
    assert not router.is_live("A")
    assert router.connection_count == 1


def test_messages_to_departed_peer_are_dropped():
    router, transports = make_router("A", "B")

    async def scenario():
        await router.disconnect("B")
        await router.dispatch("A", {"type": "user:call", "data": {"to": "B", "offer": OFFER}})

    asyncio.run(scenario())

    assert sent(transports["B"]) == []


def test_departure_is_not_announced_by_default():
    router, transports = make_router("A", "B")

    async def scenario():
        await join(router, "A", "a@x.io")
        await join(router, "B", "b@x.io")
        transports["A"].send_json.reset_mock()
        await router.disconnect("B")

    asyncio.run(scenario())

    assert sent(transports["A"]) == []


def test_departure_announced_when_enabled():
    router, transports = make_router("A", "B", announce_departures=True)

    async def scenario():
        await join(router, "A", "a@x.io")
        await join(router, "B", "b@x.io")
        transports["A"].send_json.reset_mock()
        await router.disconnect("B")

    asyncio.run(scenario())

    assert sent(transports["A"]) == [{"type": "user:left", "data": {"email": "b@x.io", "id": "B"}}]


def test_room_leave_keeps_transport():
    router, transports = make_router("A")

    async def scenario():
        await join(router, "A", "a@x.io")
        await router.dispatch("A", {"type": "room:leave", "data": {}})

    asyncio.run(scenario())

    assert router.registry.members_of("r1") == set()
    assert router.is_live("A")


def test_send_failure_disconnects_target():
    router, transports = make_router("A", "B")
    transports["B"].send_json.side_effect = RuntimeError("socket gone")

    async def scenario():
        await join(router, "B", "b@x.io")

    asyncio.run(scenario())

    assert not router.is_live("B")
    assert router.registry.members_of("r1") == set()
