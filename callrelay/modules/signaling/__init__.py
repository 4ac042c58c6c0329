"""시그널링 릴레이 모듈.

참가자/룸 레지스트리, 메시지 스키마, 라우터를 제공합니다.

Classes:
    ConnectionRegistry: 참가자 신원과 룸 멤버십 인덱스
    Participant: 참가자 데이터 클래스
    SignalingRouter: 메시지 검증 및 릴레이
"""

from .registry import ConnectionRegistry, Participant
from .router import SignalingRouter, Transport
from .messages import (
    SignalingMessage,
    parse_inbound,
    parse_outbound,
    RoomJoin,
    RoomLeave,
    UserCall,
    CallAccepted,
    NegoNeeded,
    NegoDone,
    PeerIdAssigned,
    RoomJoinAck,
    UserJoined,
    UserLeft,
    IncomingCall,
    CallAcceptedRelay,
    NegoNeededRelay,
    NegoFinal,
)

__all__ = [
    "ConnectionRegistry",
    "Participant",
    "SignalingRouter",
    "Transport",
    "SignalingMessage",
    "parse_inbound",
    "parse_outbound",
    "RoomJoin",
    "RoomLeave",
    "UserCall",
    "CallAccepted",
    "NegoNeeded",
    "NegoDone",
    "PeerIdAssigned",
    "RoomJoinAck",
    "UserJoined",
    "UserLeft",
    "IncomingCall",
    "CallAcceptedRelay",
    "NegoNeededRelay",
    "NegoFinal",
]
