"""통화 클라이언트 모듈.

Classes:
    SignalingClient: 릴레이 WebSocket 채널 (websockets)
    PeerService: 원격 피어 하나에 대한 협상 기능 (aiortc)
    MediaProvider: 로컬 미디어 획득 (aiortc MediaPlayer)
    RoomSession: 룸 단위 통화 오케스트레이터
"""

from .channel import SignalingClient, Subscription, DISCONNECT_EVENT
from .media import LocalMedia, MediaProvider, ToggleableTrack
from .peer import PeerService, build_rtc_configuration
from .session import RoomSession

__all__ = [
    "SignalingClient",
    "Subscription",
    "DISCONNECT_EVENT",
    "LocalMedia",
    "MediaProvider",
    "ToggleableTrack",
    "PeerService",
    "build_rtc_configuration",
    "RoomSession",
]
