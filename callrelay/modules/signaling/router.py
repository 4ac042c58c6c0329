"""시그널링 라우터 모듈.

클라이언트가 보낸 메시지를 검증하고, 필요한 경우 레지스트리를 변경한 뒤,
정확히 의도된 수신자에게만 메시지를 전달합니다.

Protocol:
    room:join         → registry.join, 다른 멤버에게 user:joined, 본인에게 room:join 에코
    room:leave        → registry.leave
    user:call         → 대상에게 incoming:call
    call:accepted     → 대상에게 call:accepted
    peer:nego:needed  → 대상에게 peer:nego:needed
    peer:nego:done    → 대상에게 peer:nego:final

Error Policy:
    - 대상이 연결되어 있지 않으면 조용히 버림 (연결 종료 경쟁 상태)
    - 알 수 없는 이벤트/잘못된 페이로드는 로그만 남기고 버림
    - offer/ans 내용은 검사하지 않음

Examples:
    >>> router = SignalingRouter(ConnectionRegistry())
    >>> router.connect("conn-1", websocket)
    >>> await router.dispatch("conn-1", {"type": "room:join",
    ...                                  "data": {"email": "a@x.io", "room": "r1"}})
"""
import logging
from typing import Dict, Iterable, Optional, Protocol

from ..shared import MessageValidationError
from .registry import ConnectionRegistry
from .messages import (
    CallAccepted,
    CallAcceptedRelay,
    IncomingCall,
    NegoDone,
    NegoFinal,
    NegoNeeded,
    NegoNeededRelay,
    RoomJoin,
    RoomJoinAck,
    RoomLeave,
    SignalingMessage,
    UserCall,
    UserJoined,
    UserLeft,
    parse_inbound,
)

logger = logging.getLogger(__name__)


class Transport(Protocol):
    """릴레이 주소. FastAPI ``WebSocket``이 이 인터페이스를 만족합니다."""

    async def send_json(self, data: dict) -> None:
        ...


class SignalingRouter:
    """메시지 릴레이 프로토콜 구현.

    단일 이벤트 루프에서 동작하며 레지스트리를 단독으로 소유합니다.
    레지스트리의 읽기와 쓰기 사이에 await가 없도록 작성되어 있어 별도의
    락이 필요 없습니다.

    Attributes:
        registry (ConnectionRegistry): 주입된 연결 레지스트리
        transports (Dict[str, Transport]): 연결 ID → 살아있는 전송 객체
        announce_departures (bool): 퇴장 시 user:left 브로드캐스트 여부
    """

    def __init__(self, registry: ConnectionRegistry, announce_departures: bool = False):
        self.registry = registry
        self.transports: Dict[str, Transport] = {}
        self.announce_departures = announce_departures

    # ------------------------------------------------------------
    # 연결 수명주기
    # ------------------------------------------------------------

    def connect(self, connection_id: str, transport: Transport) -> None:
        """새 연결의 전송 객체를 등록합니다."""
        self.transports[connection_id] = transport
        logger.info(f"[Signaling] 연결 등록: {connection_id[:8]} (총 {len(self.transports)}개)")

    async def disconnect(self, connection_id: str) -> None:
        """전송 계층 연결 종료를 처리합니다.

        레지스트리에서 참가자를 제거하고 전송 객체를 잊습니다.
        같은 ID로 두 번 호출해도 한 번 호출한 것과 효과가 같습니다.

        Args:
            connection_id (str): 종료된 연결 ID
        """
        self.transports.pop(connection_id, None)
        await self._remove_participant(connection_id)

    async def leave(self, connection_id: str) -> None:
        """명시적 room:leave 처리. 전송 객체는 유지됩니다."""
        await self._remove_participant(connection_id)

    def is_live(self, connection_id: Optional[str]) -> bool:
        return connection_id is not None and connection_id in self.transports

    # ------------------------------------------------------------
    # 메시지 처리
    # ------------------------------------------------------------

    async def dispatch(self, sender_id: str, raw: dict) -> None:
        """수신 프레임 하나를 검증하고 라우팅합니다.

        검증 실패는 발신자에게 오류로 돌려주지 않고 로그만 남깁니다.

        Args:
            sender_id (str): 프레임을 보낸 연결 ID
            raw (dict): ``{"type": ..., "data": {...}}`` 형식의 프레임
        """
        try:
            message = parse_inbound(raw)
        except MessageValidationError as e:
            logger.warning(f"[Signaling] {sender_id[:8]}의 메시지 무시: {e}")
            return

        await self.handle(sender_id, message)

    async def handle(self, sender_id: str, message: SignalingMessage) -> None:
        """검증된 메시지를 프로토콜 표에 따라 처리합니다."""
        logger.debug(f"[Signaling] {message.type} 수신: {sender_id[:8]}")

        if isinstance(message, RoomJoin):
            await self._handle_room_join(sender_id, message)

        elif isinstance(message, RoomLeave):
            await self.leave(sender_id)

        elif isinstance(message, UserCall):
            await self.send_to(message.to, IncomingCall(from_=sender_id, offer=message.offer))

        elif isinstance(message, CallAccepted):
            await self.send_to(message.to, CallAcceptedRelay(from_=sender_id, ans=message.ans))

        elif isinstance(message, NegoNeeded):
            await self.send_to(message.to, NegoNeededRelay(from_=sender_id, offer=message.offer))

        elif isinstance(message, NegoDone):
            await self.send_to(message.to, NegoFinal(from_=sender_id, ans=message.ans))

        else:
            logger.warning(f"[Signaling] 처리할 수 없는 메시지 타입: {message.type}")

    async def _handle_room_join(self, sender_id: str, message: RoomJoin) -> None:
        # 브로드캐스트 대상은 join 이전의 멤버로 고정
        existing = self.registry.members_of(message.room) - {sender_id}
        self.registry.join(sender_id, message.email, message.room)

        await self.broadcast(existing, UserJoined(email=message.email, id=sender_id))
        await self.send_to(sender_id, RoomJoinAck(email=message.email, room=message.room))

    # ------------------------------------------------------------
    # 전송
    # ------------------------------------------------------------

    async def send_to(self, connection_id: str, message: SignalingMessage) -> bool:
        """단일 연결에 메시지를 전송합니다.

        대상이 살아있지 않으면 메시지를 조용히 버립니다. 전송 중 오류가 나면
        대상 연결을 끊어진 것으로 간주하고 정리합니다.

        Returns:
            bool: 전송 성공 여부
        """
        transport = self.transports.get(connection_id)
        if transport is None:
            logger.debug(f"[Signaling] 대상 {connection_id[:8]} 없음, {message.type} 버림")
            return False

        try:
            await transport.send_json(message.to_wire())
            return True
        except Exception as e:
            logger.error(f"[Signaling] {connection_id[:8]}에 {message.type} 전송 중 오류: {e}")
            await self.disconnect(connection_id)
            return False

    async def broadcast(self, connection_ids: Iterable[str], message: SignalingMessage) -> None:
        """여러 연결에 메시지를 전송합니다."""
        for connection_id in list(connection_ids):
            await self.send_to(connection_id, message)

    async def _remove_participant(self, connection_id: str) -> None:
        participant = self.registry.leave(connection_id)
        if participant is None or not self.announce_departures:
            return

        remaining = self.registry.members_of(participant.room_id)
        await self.broadcast(remaining, UserLeft(email=participant.email, id=connection_id))

    # ------------------------------------------------------------
    # 조회
    # ------------------------------------------------------------

    @property
    def connection_count(self) -> int:
        return len(self.transports)
