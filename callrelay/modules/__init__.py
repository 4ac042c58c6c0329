"""callrelay 기능 모듈.

서버 측(signaling)은 aiortc에 의존하지 않으므로 client 패키지는 여기서
가져오지 않습니다. 필요한 곳에서 ``callrelay.modules.client``를 직접
import 하세요.
"""

from .shared import SignalingError, MessageValidationError, CallSetupError, JoinTimeoutError
from .signaling import ConnectionRegistry, Participant, SignalingRouter
from .negotiation import NegotiationStateMachine, NegotiationState, NegotiationEvent

__all__ = [
    "SignalingError",
    "MessageValidationError",
    "CallSetupError",
    "JoinTimeoutError",
    "ConnectionRegistry",
    "Participant",
    "SignalingRouter",
    "NegotiationStateMachine",
    "NegotiationState",
    "NegotiationEvent",
]
