"""offer/answer 협상 상태 머신.

피어 관계(로컬 연결 ID, 원격 연결 ID)마다 하나씩 생성되며, 다음에 어떤
협상 단계가 유효한지 결정합니다. 연결 간 메시지 순서가 보장되지 않으므로
유효하지 않은 전이는 거부(로그 후 무시)합니다.

State Diagram:
    IDLE ──local_offer──▶ OFFER_SENT ──remote_answer──▶ CONNECTED
    IDLE ──remote_offer─▶ OFFER_RECEIVED ──local_answer──▶ ANSWERED
    ANSWERED ──transport_connected──▶ CONNECTED
    CONNECTED ──local_offer/remote_offer──▶ RENEGOTIATING
    RENEGOTIATING ──(matching answer)──▶ CONNECTED
    * ──close──▶ CLOSED (terminal)

Glare:
    연결 ID가 사전순으로 더 작은 쪽이 "polite"입니다. 자신의 offer가 응답을
    기다리는 중에 원격 offer가 도착하면 polite 쪽은 자신의 offer를 철회하고
    원격 offer를 받아들이며, impolite 쪽은 원격 offer를 무시합니다.
"""
import logging
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)


class NegotiationState(str, Enum):
    IDLE = "idle"
    OFFER_SENT = "offer_sent"
    OFFER_RECEIVED = "offer_received"
    ANSWERED = "answered"
    CONNECTED = "connected"
    RENEGOTIATING = "renegotiating"
    CLOSED = "closed"


class NegotiationEvent(str, Enum):
    LOCAL_OFFER = "local_offer"
    REMOTE_OFFER = "remote_offer"
    LOCAL_ANSWER = "local_answer"
    REMOTE_ANSWER = "remote_answer"
    TRANSPORT_CONNECTED = "transport_connected"
    OFFER_EXPIRED = "offer_expired"
    CLOSE = "close"


class Offerer(str, Enum):
    """진행 중인 offer를 누가 보냈는지."""
    LOCAL = "local"
    REMOTE = "remote"


S = NegotiationState
E = NegotiationEvent

# (현재 상태, 이벤트) -> (다음 상태, 진행 중인 offer의 주체)
# 주체가 필요한 전이(재협상, glare)는 _resolve()에서 따로 처리
_TRANSITIONS: Dict[Tuple[NegotiationState, NegotiationEvent], Tuple[NegotiationState, Optional[Offerer]]] = {
    (S.IDLE, E.LOCAL_OFFER): (S.OFFER_SENT, Offerer.LOCAL),
    (S.IDLE, E.REMOTE_OFFER): (S.OFFER_RECEIVED, Offerer.REMOTE),
    (S.OFFER_RECEIVED, E.LOCAL_ANSWER): (S.ANSWERED, None),
    (S.OFFER_SENT, E.REMOTE_ANSWER): (S.CONNECTED, None),
    (S.OFFER_SENT, E.OFFER_EXPIRED): (S.IDLE, None),
    (S.ANSWERED, E.TRANSPORT_CONNECTED): (S.CONNECTED, None),
    # 재협상 offer가 왔다는 것은 원격이 우리 answer를 적용했다는 뜻
    (S.ANSWERED, E.REMOTE_OFFER): (S.RENEGOTIATING, Offerer.REMOTE),
    (S.CONNECTED, E.LOCAL_OFFER): (S.RENEGOTIATING, Offerer.LOCAL),
    (S.CONNECTED, E.REMOTE_OFFER): (S.RENEGOTIATING, Offerer.REMOTE),
}

StateListener = Callable[["NegotiationStateMachine", NegotiationState, NegotiationState], None]


class NegotiationStateMachine:
    """한 방향 피어 관계의 협상 상태.

    양쪽 피어가 각자 하나씩 보유하며, 같은 순간에 두 머신의 상태가 같을
    필요는 없습니다.

    Attributes:
        local_id (str): 로컬 연결 ID
        remote_id (str): 원격 연결 ID
        state (NegotiationState): 현재 상태
        offerer (Optional[Offerer]): 진행 중인 offer의 주체 (없으면 None)
        history (List[Tuple[NegotiationState, NegotiationEvent, NegotiationState]]):
            적용된 전이 기록
    """

    def __init__(self, local_id: str, remote_id: str):
        self.local_id = local_id
        self.remote_id = remote_id
        self.state = NegotiationState.IDLE
        self.offerer: Optional[Offerer] = None
        self.history: List[Tuple[NegotiationState, NegotiationEvent, NegotiationState]] = []
        self._listeners: List[StateListener] = []

    @property
    def polite(self) -> bool:
        """glare 시 양보하는 쪽인지 여부 (연결 ID가 사전순으로 더 작은 쪽)."""
        return self.local_id < self.remote_id

    @property
    def is_closed(self) -> bool:
        return self.state is NegotiationState.CLOSED

    @property
    def is_connected(self) -> bool:
        return self.state is NegotiationState.CONNECTED

    @property
    def awaiting_answer(self) -> bool:
        """로컬 offer에 대한 원격 answer를 기다리는 중인지."""
        return (
            self.state in (NegotiationState.OFFER_SENT, NegotiationState.RENEGOTIATING)
            and self.offerer is Offerer.LOCAL
        )

    def add_listener(self, listener: StateListener) -> None:
        """상태 변경 리스너를 등록합니다. ``listener(machine, old, new)`` 형태로 호출됩니다."""
        self._listeners.append(listener)

    def can(self, event: NegotiationEvent) -> bool:
        """이벤트를 적용했을 때 상태가 바뀌는지 여부. 상태는 변경하지 않습니다."""
        return self._resolve(event) is not None

    def apply(self, event: NegotiationEvent) -> bool:
        """이벤트를 적용합니다.

        Args:
            event (NegotiationEvent): 적용할 이벤트

        Returns:
            bool: 전이가 일어났으면 True. 무시된 경우 False

        Note:
            - CLOSED 상태에서는 모든 이벤트가 무시됨 (오류 아님)
            - 유효하지 않은 전이는 WARNING 로그 후 무시됨
        """
        if self.is_closed:
            logger.debug(f"[Negotiation] {self._tag} 종료된 세션, {event.value} 무시")
            return False

        glare = self._is_glare(event)
        resolved = self._resolve(event)
        if resolved is None:
            if glare:
                logger.info(f"[Negotiation] {self._tag} glare - impolite 측, 원격 offer 무시")
            else:
                logger.warning(f"[Negotiation] {self._tag} 유효하지 않은 전이: "
                               f"{self.state.value} + {event.value}, 무시")
            return False

        old = self.state
        self.state, self.offerer = resolved
        self.history.append((old, event, self.state))

        if glare:
            logger.info(f"[Negotiation] {self._tag} glare - polite 측, 로컬 offer 철회 후 원격 offer 수락")
        logger.info(f"[Negotiation] {self._tag} {old.value} → {self.state.value} ({event.value})")

        for listener in list(self._listeners):
            listener(self, old, self.state)
        return True

    # ------------------------------------------------------------
    # 이름 있는 이벤트 헬퍼
    # ------------------------------------------------------------

    def send_offer(self) -> bool:
        return self.apply(NegotiationEvent.LOCAL_OFFER)

    def receive_offer(self) -> bool:
        return self.apply(NegotiationEvent.REMOTE_OFFER)

    def send_answer(self) -> bool:
        return self.apply(NegotiationEvent.LOCAL_ANSWER)

    def receive_answer(self) -> bool:
        return self.apply(NegotiationEvent.REMOTE_ANSWER)

    def mark_connected(self) -> bool:
        return self.apply(NegotiationEvent.TRANSPORT_CONNECTED)

    def expire_offer(self) -> bool:
        return self.apply(NegotiationEvent.OFFER_EXPIRED)

    def close(self) -> bool:
        return self.apply(NegotiationEvent.CLOSE)

    # ------------------------------------------------------------
    # 내부
    # ------------------------------------------------------------

    def _resolve(self, event: NegotiationEvent) -> Optional[Tuple[NegotiationState, Optional[Offerer]]]:
        state = self.state
        if state is NegotiationState.CLOSED:
            return None
        if event is NegotiationEvent.CLOSE:
            return NegotiationState.CLOSED, None

        if state is NegotiationState.RENEGOTIATING:
            if event is NegotiationEvent.REMOTE_ANSWER and self.offerer is Offerer.LOCAL:
                return NegotiationState.CONNECTED, None
            if event is NegotiationEvent.LOCAL_ANSWER and self.offerer is Offerer.REMOTE:
                return NegotiationState.CONNECTED, None
            if event is NegotiationEvent.OFFER_EXPIRED and self.offerer is Offerer.LOCAL:
                return NegotiationState.CONNECTED, None

        if self._is_glare(event):
            if not self.polite:
                return None
            if state is NegotiationState.OFFER_SENT:
                return NegotiationState.OFFER_RECEIVED, Offerer.REMOTE
            return NegotiationState.RENEGOTIATING, Offerer.REMOTE

        return _TRANSITIONS.get((state, event))

    def _is_glare(self, event: NegotiationEvent) -> bool:
        return event is NegotiationEvent.REMOTE_OFFER and self.awaiting_answer

    @property
    def _tag(self) -> str:
        return f"{self.local_id[:8]}→{self.remote_id[:8]}"

    def __repr__(self) -> str:
        return (f"NegotiationStateMachine(local={self.local_id!r}, remote={self.remote_id!r}, "
                f"state={self.state.value}, offerer={self.offerer and self.offerer.value})")
