"""WebRTC 협상 기능 (aiortc).

RoomSession이 사용하는 세션 디스크립션 생성 기능을 aiortc
``RTCPeerConnection``으로 구현합니다. offer/answer는 ``{"sdp": ..., "type": ...}``
딕셔너리로 주고받으며, 릴레이는 이 내용을 해석하지 않습니다.

WebRTC Flow:
    발신 측: add_tracks() → get_offer() → (릴레이) → set_remote_description(answer)
    수신 측: add_tracks() → get_answer(offer) → (릴레이)

Note:
    - aiortc는 SDP rollback을 지원하지 않으므로 rollback()은 연결을 새로 생성함
    - 실패는 호출자에게 그대로 전파됨 (RoomSession이 CallSetupError로 변환)
"""
import logging
from typing import Awaitable, Callable, List, Optional, Sequence

from aiortc import (
    MediaStreamTrack,
    RTCConfiguration,
    RTCIceServer,
    RTCPeerConnection,
    RTCSessionDescription,
)

from ...config import ice_config

logger = logging.getLogger(__name__)

ConnectionCallback = Callable[[], Awaitable[None]]


def build_rtc_configuration(ice_servers: Optional[list] = None) -> RTCConfiguration:
    """ICE 서버 설정으로 ``RTCConfiguration``을 생성합니다.

    Args:
        ice_servers (Optional[list]): ``{"urls": [...], "username": ..., "credential": ...}``
            형식의 리스트. None이면 환경변수 기반 ice_config 사용

    Returns:
        RTCConfiguration: aiortc 연결 설정
    """
    if ice_servers is None:
        ice_servers = ice_config.as_ice_servers()

    servers = []
    for server in ice_servers:
        urls = server["urls"]
        servers.append(RTCIceServer(
            urls=urls if isinstance(urls, list) else [urls],
            username=server.get("username"),
            credential=server.get("credential"),
        ))
    return RTCConfiguration(iceServers=servers)


class PeerService:
    """원격 피어 하나와의 ``RTCPeerConnection``을 감싸는 협상 기능.

    Attributes:
        pc (RTCPeerConnection): 현재 피어 연결
        remote_tracks (List[MediaStreamTrack]): 수신한 원격 트랙
        on_connected (Optional[ConnectionCallback]): 전송 계층 연결 수립 시 호출
        on_closed (Optional[ConnectionCallback]): 연결 실패/종료 시 호출
    """

    def __init__(self, configuration: Optional[RTCConfiguration] = None):
        self.configuration = configuration or build_rtc_configuration()
        self.remote_tracks: List[MediaStreamTrack] = []
        self.on_connected: Optional[ConnectionCallback] = None
        self.on_closed: Optional[ConnectionCallback] = None
        self._local_tracks: List[MediaStreamTrack] = []
        self._closing = False
        self.pc = self._create_peer_connection()

    def _create_peer_connection(self) -> RTCPeerConnection:
        pc = RTCPeerConnection(configuration=self.configuration)

        @pc.on("connectionstatechange")
        async def on_connection_state_change():
            logger.info(f"[WebRTC] 연결 상태: {pc.connectionState}")
            if pc is not self.pc:
                return
            if pc.connectionState == "connected" and self.on_connected:
                await self.on_connected()
            elif pc.connectionState == "failed" and not self._closing and self.on_closed:
                await self.on_closed()

        @pc.on("track")
        def on_track(track: MediaStreamTrack):
            logger.info(f"[WebRTC] 원격 {track.kind} 트랙 수신")
            self.remote_tracks.append(track)

            @track.on("ended")
            async def on_ended():
                logger.info(f"[WebRTC] 원격 {track.kind} 트랙 종료")

        return pc

    @property
    def has_local_offer(self) -> bool:
        """응답받지 못한 로컬 offer가 적용되어 있는지."""
        return self.pc.signalingState == "have-local-offer"

    def add_tracks(self, tracks: Sequence[MediaStreamTrack]) -> None:
        """로컬 트랙을 연결에 추가합니다. 이미 추가된 트랙은 건너뜁니다."""
        for track in tracks:
            if track in self._local_tracks:
                continue
            self.pc.addTrack(track)
            self._local_tracks.append(track)
            logger.info(f"[WebRTC] 로컬 {track.kind} 트랙 추가")

    async def get_offer(self) -> dict:
        """offer를 생성하고 local description으로 설정합니다."""
        offer = await self.pc.createOffer()
        await self.pc.setLocalDescription(offer)
        return {"sdp": self.pc.localDescription.sdp, "type": self.pc.localDescription.type}

    async def get_answer(self, offer: dict) -> dict:
        """원격 offer를 적용하고 answer를 생성합니다.

        Args:
            offer (dict): ``{"sdp": ..., "type": "offer"}``

        Returns:
            dict: ``{"sdp": ..., "type": "answer"}``
        """
        await self.pc.setRemoteDescription(RTCSessionDescription(sdp=offer["sdp"], type=offer["type"]))
        answer = await self.pc.createAnswer()
        await self.pc.setLocalDescription(answer)
        return {"sdp": self.pc.localDescription.sdp, "type": self.pc.localDescription.type}

    async def set_remote_description(self, description: dict) -> None:
        await self.pc.setRemoteDescription(
            RTCSessionDescription(sdp=description["sdp"], type=description["type"])
        )

    async def rollback(self) -> None:
        """보류 중인 로컬 offer를 철회합니다 (glare에서 양보하는 쪽).

        aiortc는 ``type="rollback"`` 디스크립션을 지원하지 않으므로,
        로컬 offer 상태라면 같은 로컬 트랙으로 연결을 새로 생성합니다.
        """
        if not self.has_local_offer:
            return

        if self.pc.connectionState == "connected":
            # 기존 전송 계층이 끊기고 새 offer/answer로 다시 연결됨
            logger.warning("[WebRTC] 연결된 상태에서 rollback - 피어 연결을 새로 생성함")

        old = self.pc
        self.pc = self._create_peer_connection()
        for track in self._local_tracks:
            self.pc.addTrack(track)
        await old.close()
        logger.info("[WebRTC] 로컬 offer 철회 완료")

    async def close(self) -> None:
        """연결을 종료하고 원격 트랙을 정리합니다. 여러 번 호출해도 안전합니다."""
        self._closing = True
        for track in self.remote_tracks:
            track.stop()
        self.remote_tracks.clear()
        await self.pc.close()
        logger.info("[WebRTC] 피어 연결 종료")
