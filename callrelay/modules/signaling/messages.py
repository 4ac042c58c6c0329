"""시그널링 메시지 스키마.

릴레이가 주고받는 모든 메시지를 이벤트 이름으로 구분되는 닫힌 태그 유니온으로
정의합니다. 와이어 형식은 ``{"type": <이벤트 이름>, "data": {...}}`` 입니다.

offer/ans 페이로드는 협상 기능이 소유하는 불투명한 세션 디스크립션이므로
내용을 검사하지 않고 그대로 전달합니다.

Inbound (client → relay):
    room:join, room:leave, user:call, call:accepted, peer:nego:needed, peer:nego:done

Outbound (relay → client):
    peer_id, room:join (echo), user:joined, user:left, incoming:call,
    call:accepted, peer:nego:needed, peer:nego:final
"""

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from ..shared import MessageValidationError


class SignalingMessage(BaseModel):
    """모든 시그널링 메시지의 기본 클래스."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    type: str

    def to_wire(self) -> dict:
        """``{"type": ..., "data": {...}}`` 형식으로 직렬화합니다."""
        return {
            "type": self.type,
            "data": self.model_dump(by_alias=True, exclude={"type"}),
        }


# ============================================================
# Inbound (client → relay)
# ============================================================

class RoomJoin(SignalingMessage):
    type: Literal["room:join"] = "room:join"
    email: str
    room: str


class RoomLeave(SignalingMessage):
    type: Literal["room:leave"] = "room:leave"


class UserCall(SignalingMessage):
    type: Literal["user:call"] = "user:call"
    to: str
    offer: Any


class CallAccepted(SignalingMessage):
    type: Literal["call:accepted"] = "call:accepted"
    to: str
    ans: Any


class NegoNeeded(SignalingMessage):
    type: Literal["peer:nego:needed"] = "peer:nego:needed"
    to: str
    offer: Any


class NegoDone(SignalingMessage):
    type: Literal["peer:nego:done"] = "peer:nego:done"
    to: str
    ans: Any


InboundMessage = Annotated[
    Union[RoomJoin, RoomLeave, UserCall, CallAccepted, NegoNeeded, NegoDone],
    Field(discriminator="type"),
]


# ============================================================
# Outbound (relay → client)
# ============================================================

class PeerIdAssigned(SignalingMessage):
    type: Literal["peer_id"] = "peer_id"
    peer_id: str


class RoomJoinAck(SignalingMessage):
    type: Literal["room:join"] = "room:join"
    email: str
    room: str


class UserJoined(SignalingMessage):
    type: Literal["user:joined"] = "user:joined"
    email: str
    id: str


class UserLeft(SignalingMessage):
    type: Literal["user:left"] = "user:left"
    email: str
    id: str


class IncomingCall(SignalingMessage):
    type: Literal["incoming:call"] = "incoming:call"
    from_: str = Field(alias="from")
    offer: Any


class CallAcceptedRelay(SignalingMessage):
    type: Literal["call:accepted"] = "call:accepted"
    from_: str = Field(alias="from")
    ans: Any


class NegoNeededRelay(SignalingMessage):
    type: Literal["peer:nego:needed"] = "peer:nego:needed"
    from_: str = Field(alias="from")
    offer: Any


class NegoFinal(SignalingMessage):
    type: Literal["peer:nego:final"] = "peer:nego:final"
    from_: str = Field(alias="from")
    ans: Any


OutboundMessage = Annotated[
    Union[
        PeerIdAssigned, RoomJoinAck, UserJoined, UserLeft, IncomingCall,
        CallAcceptedRelay, NegoNeededRelay, NegoFinal,
    ],
    Field(discriminator="type"),
]

_inbound_adapter = TypeAdapter(InboundMessage)
_outbound_adapter = TypeAdapter(OutboundMessage)


def _parse(adapter: TypeAdapter, raw: Any):
    if not isinstance(raw, dict):
        raise MessageValidationError(f"frame must be a JSON object, got {type(raw).__name__}")

    event = raw.get("type")
    payload = raw.get("data")
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise MessageValidationError("'data' must be a JSON object", event=event)

    try:
        return adapter.validate_python({**payload, "type": event})
    except ValidationError as e:
        raise MessageValidationError(
            f"invalid '{event}' message: {e.error_count()} validation error(s)", event=event
        ) from e


def parse_inbound(raw: Any) -> SignalingMessage:
    """클라이언트가 보낸 프레임을 검증합니다.

    Args:
        raw: ``websocket.receive_json()``으로 받은 객체

    Returns:
        SignalingMessage: Inbound 메시지 인스턴스

    Raises:
        MessageValidationError: 알 수 없는 이벤트이거나 필드가 잘못된 경우
    """
    return _parse(_inbound_adapter, raw)


def parse_outbound(raw: Any) -> SignalingMessage:
    """릴레이가 보낸 프레임을 검증합니다 (클라이언트 측)."""
    return _parse(_outbound_adapter, raw)
