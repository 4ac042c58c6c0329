"""룸 세션 (클라이언트 측 통화 오케스트레이터).

RoomSession은 하나의 룸에서 진행되는 통화를 관리합니다. 원격 피어마다
협상 상태 머신과 협상 기능(PeerService)을 하나씩 보유하고, 로컬 미디어
핸들과 릴레이 이벤트 구독 집합의 수명을 관리합니다.

Event Handling:
    - room:join         → join() 대기 해제
    - user:joined       → 원격 피어를 현재 통화 대상으로 기록
    - incoming:call     → 로컬 미디어 획득, answer 생성, call:accepted 전송
    - call:accepted     → 원격 answer 적용, CONNECTED
    - peer:nego:needed  → answer 생성, peer:nego:done 전송
    - peer:nego:final   → 원격 answer 적용, CONNECTED
    - user:left         → 해당 피어 종료 (릴레이가 퇴장 알림을 보낼 때만)
    - disconnect        → end_call()

Concurrency:
    - 피어별 asyncio.Lock으로 같은 피어에 대한 비동기 단계를 순서대로 처리
    - 모든 await 이후 상태 머신이 CLOSED이면 단계를 중단
    - end_call()/close_peer()는 락 없이 즉시 CLOSED로 전이하고 자원을 해제

Error Policy:
    - 로컬 미디어/협상 기능 실패는 CallSetupError로 로컬에만 보고되며,
      상태 머신은 전이하지 않고 아무 메시지도 전송하지 않음

Examples:
    >>> client = SignalingClient("ws://localhost:8000/ws")
    >>> peer_id = await client.connect()
    >>> async with RoomSession(client, peer_id) as session:
    ...     await session.join("alice@example.com", "r1")
    ...     await session.call()
"""
import asyncio
import logging
from functools import partial
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Sequence, Set

from ...config import negotiation_config
from ..negotiation import NegotiationEvent, NegotiationState, NegotiationStateMachine
from ..shared import CallSetupError, JoinTimeoutError, SignalingError
from ..signaling.messages import SignalingMessage
from .channel import DISCONNECT_EVENT
from .media import LocalMedia, MediaProvider
from .peer import PeerService

logger = logging.getLogger(__name__)


class SignalingChannel(Protocol):
    """RoomSession이 사용하는 릴레이 채널 인터페이스 (SignalingClient가 구현)."""

    def on(self, event: str, handler: Callable[[Optional[SignalingMessage]], Awaitable[None]]) -> Any:
        ...

    async def emit(self, event: str, data: Optional[Dict[str, Any]] = None) -> None:
        ...


class PeerCapability(Protocol):
    """원격 피어 하나에 대한 협상 기능 인터페이스 (PeerService가 구현)."""

    on_connected: Optional[Callable[[], Awaitable[None]]]
    on_closed: Optional[Callable[[], Awaitable[None]]]
    remote_tracks: list
    has_local_offer: bool

    def add_tracks(self, tracks: Sequence[Any]) -> None:
        ...

    async def get_offer(self) -> dict:
        ...

    async def get_answer(self, offer: dict) -> dict:
        ...

    async def set_remote_description(self, description: dict) -> None:
        ...

    async def rollback(self) -> None:
        ...

    async def close(self) -> None:
        ...


class RoomSession:
    """한 룸의 통화 수명주기를 소유하는 클라이언트 측 집합체.

    Attributes:
        channel (SignalingChannel): 릴레이 채널
        local_id (str): 릴레이가 부여한 로컬 연결 ID
        machines (Dict[str, NegotiationStateMachine]): 원격 피어 ID → 상태 머신
        peers (Dict[str, PeerCapability]): 원격 피어 ID → 협상 기능
        local_media (Optional[LocalMedia]): 지연 획득되는 로컬 미디어 핸들
        remote_peer_id (Optional[str]): 현재 통화 대상
        audio_enabled (bool): 로컬 오디오 전송 여부 (협상 상태와 독립)
        video_enabled (bool): 로컬 비디오 전송 여부 (협상 상태와 독립)
        on_error (Optional[Callable[[CallSetupError], None]]): 이벤트 처리 중 로컬 기능 실패 콜백
    """

    def __init__(
        self,
        channel: SignalingChannel,
        local_id: str,
        peer_factory: Callable[[], PeerCapability] = PeerService,
        media_provider: Optional[MediaProvider] = None,
        answer_timeout: Optional[float] = None,
    ):
        self.channel = channel
        self.local_id = local_id
        self.peer_factory = peer_factory
        self.media_provider = media_provider or MediaProvider()
        self.answer_timeout = (
            negotiation_config.ANSWER_TIMEOUT if answer_timeout is None else answer_timeout
        )

        self.email: Optional[str] = None
        self.room: Optional[str] = None
        self.remote_peer_id: Optional[str] = None

        self.machines: Dict[str, NegotiationStateMachine] = {}
        self.peers: Dict[str, PeerCapability] = {}
        self.local_media: Optional[LocalMedia] = None

        self.audio_enabled = True
        self.video_enabled = True

        self.on_error: Optional[Callable[[CallSetupError], None]] = None

        self.started = False
        self.ended = False

        self._subscriptions: List[Any] = []
        self._locks: Dict[str, asyncio.Lock] = {}
        self._media_lock = asyncio.Lock()
        self._answer_timers: Dict[str, asyncio.Task] = {}
        self._pending_renegotiation: Set[str] = set()
        self._tasks: Set[asyncio.Task] = set()
        self._join_future: Optional[asyncio.Future] = None

    # ------------------------------------------------------------
    # 수명주기
    # ------------------------------------------------------------

    def start(self) -> None:
        """룸 관련 릴레이 이벤트를 하나의 구독 집합으로 등록합니다."""
        if self.ended:
            raise SignalingError("session already ended")
        if self.started:
            return

        handlers = {
            "room:join": self._on_room_join,
            "user:joined": self._on_user_joined,
            "user:left": self._on_user_left,
            "incoming:call": self._on_incoming_call,
            "call:accepted": self._on_answer,
            "peer:nego:needed": self._on_nego_needed,
            "peer:nego:final": self._on_answer,
            DISCONNECT_EVENT: self._on_disconnect,
        }
        self._subscriptions = [self.channel.on(event, handler) for event, handler in handlers.items()]
        self.started = True
        logger.info(f"[Session] {self.local_id[:8]} 세션 시작 (구독 {len(self._subscriptions)}개)")

    async def __aenter__(self) -> "RoomSession":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.end_call()

    async def join(self, email: str, room: str, timeout: Optional[float] = None) -> None:
        """룸에 참가하고 릴레이의 room:join 에코를 기다립니다.

        Args:
            email (str): 표시용 email
            room (str): 참가할 룸 이름
            timeout (Optional[float]): 에코 대기 시간 (초). None이면 설정값 사용

        Raises:
            JoinTimeoutError: 제한 시간 내에 에코가 오지 않은 경우
        """
        self.start()
        timeout = negotiation_config.JOIN_TIMEOUT if timeout is None else timeout

        self._join_future = asyncio.get_running_loop().create_future()
        await self.channel.emit("room:join", {"email": email, "room": room})
        try:
            await asyncio.wait_for(self._join_future, timeout)
        except asyncio.TimeoutError as e:
            raise JoinTimeoutError(f"room:join for '{room}' not acknowledged within {timeout}s") from e
        finally:
            self._join_future = None

        self.email = email
        self.room = room
        logger.info(f"[Session] 룸 '{room}' 참가 완료 ({email})")

    async def end_call(self) -> None:
        """통화를 종료하고 모든 자원을 해제합니다.

        현재 상태와 관계없이 모든 상태 머신을 CLOSED로 전이하고, 로컬 미디어와
        원격 미디어(피어 연결)를 해제하며, 모든 릴레이 구독을 해제합니다.
        여러 번 호출해도 안전합니다.
        """
        if self.ended:
            return
        self.ended = True
        logger.info(f"[Session] {self.local_id[:8]} 통화 종료")

        try:
            for subscription in self._subscriptions:
                subscription.cancel()
            self._subscriptions.clear()

            for peer_id in list(set(self.machines) | set(self.peers)):
                try:
                    await self.close_peer(peer_id)
                except Exception as e:
                    logger.error(f"[Session] 피어 {peer_id[:8]} 정리 중 오류: {e}")
        finally:
            for task in list(self._tasks):
                if task is not asyncio.current_task():
                    task.cancel()
            self._tasks.clear()

            if self.local_media is not None:
                self.local_media.stop()
                self.local_media = None

            if self._join_future is not None and not self._join_future.done():
                self._join_future.cancel()

    async def close_peer(self, peer_id: str) -> None:
        """원격 피어 하나와의 협상을 종료합니다 (CLOSED 전이 + 자원 해제)."""
        machine = self.machines.pop(peer_id, None)
        if machine is not None:
            machine.close()

        self._cancel_answer_timer(peer_id)
        self._pending_renegotiation.discard(peer_id)
        self._locks.pop(peer_id, None)

        if self.remote_peer_id == peer_id:
            self.remote_peer_id = None

        peer = self.peers.pop(peer_id, None)
        if peer is not None:
            await peer.close()

    # ------------------------------------------------------------
    # 로컬 동작
    # ------------------------------------------------------------

    async def call(self, peer_id: Optional[str] = None) -> bool:
        """원격 피어에게 통화를 시작합니다 (user:call 전송).

        Args:
            peer_id (Optional[str]): 대상 연결 ID. None이면 마지막으로 입장한 피어

        Returns:
            bool: offer를 전송했으면 True. 현재 상태에서 허용되지 않으면 False

        Raises:
            CallSetupError: 대상이 없거나 로컬 미디어/협상 기능이 실패한 경우
        """
        self._ensure_active()
        target = peer_id or self.remote_peer_id
        if target is None:
            raise CallSetupError("no remote participant to call")

        async with self._lock(target):
            machine = self._machine_for(target)
            if not machine.can(NegotiationEvent.LOCAL_OFFER):
                logger.warning(f"[Session] {machine.state.value} 상태에서는 통화를 시작할 수 없음")
                return False

            offer = await self._create_offer(machine)
            if offer is None:
                return False

            machine.send_offer()
            self.remote_peer_id = target
            await self.channel.emit("user:call", {"to": target, "offer": offer})
            if not machine.is_closed:
                self._arm_answer_timer(target)
        return True

    async def renegotiate(self, peer_id: Optional[str] = None) -> bool:
        """연결된 피어와 재협상을 시작합니다 (peer:nego:needed 전송).

        이전 협상 단계가 아직 진행 중이면 요청을 보류했다가 CONNECTED가 되는
        즉시 실행합니다.

        Returns:
            bool: 지금 offer를 전송했으면 True. 보류되었거나 불가능하면 False
        """
        self._ensure_active()
        target = peer_id or self.remote_peer_id
        if target is None:
            logger.warning("[Session] 재협상 대상 없음")
            return False

        async with self._lock(target):
            machine = self.machines.get(target)
            if machine is None or machine.state in (NegotiationState.IDLE, NegotiationState.CLOSED):
                logger.warning(f"[Session] 진행 중인 통화 없음, 재협상 무시 ({target[:8]})")
                return False

            if not machine.is_connected:
                self._pending_renegotiation.add(target)
                logger.info(f"[Session] {machine.state.value} 상태 - 재협상 보류 ({target[:8]})")
                return False

            offer = await self._create_offer(machine)
            if offer is None:
                return False

            machine.send_offer()
            await self.channel.emit("peer:nego:needed", {"to": target, "offer": offer})
            if not machine.is_closed:
                self._arm_answer_timer(target)
        return True

    def toggle_audio(self) -> bool:
        self.audio_enabled = not self.audio_enabled
        if self.local_media is not None:
            self.local_media.set_audio_enabled(self.audio_enabled)
        return self.audio_enabled

    def toggle_video(self) -> bool:
        self.video_enabled = not self.video_enabled
        if self.local_media is not None:
            self.local_media.set_video_enabled(self.video_enabled)
        return self.video_enabled

    def state_of(self, peer_id: str) -> Optional[NegotiationState]:
        machine = self.machines.get(peer_id)
        return machine.state if machine else None

    @property
    def remote_tracks(self) -> list:
        return [track for peer in self.peers.values() for track in peer.remote_tracks]

    # ------------------------------------------------------------
    # 릴레이 이벤트 핸들러
    # ------------------------------------------------------------

    async def _on_room_join(self, message) -> None:
        if self._join_future is not None and not self._join_future.done():
            self._join_future.set_result(message)

    async def _on_user_joined(self, message) -> None:
        logger.info(f"[Session] '{message.email}' 입장 ({message.id[:8]})")
        self.remote_peer_id = message.id

    async def _on_user_left(self, message) -> None:
        logger.info(f"[Session] '{message.email}' 퇴장 ({message.id[:8]})")
        await self.close_peer(message.id)

    async def _on_disconnect(self, _message) -> None:
        logger.warning("[Session] 릴레이 연결 끊김")
        await self.end_call()

    async def _on_incoming_call(self, message) -> None:
        await self._answer_offer(message.from_, message.offer, reply_event="call:accepted")

    async def _on_nego_needed(self, message) -> None:
        await self._answer_offer(message.from_, message.offer, reply_event="peer:nego:done")

    async def _on_answer(self, message) -> None:
        """call:accepted / peer:nego:final 처리."""
        if self.ended:
            return
        peer_id = message.from_

        async with self._lock(peer_id):
            if self.ended:
                return
            machine = self._machine_for(peer_id)
            if not machine.can(NegotiationEvent.REMOTE_ANSWER):
                machine.receive_answer()  # 로그 후 무시
                return

            try:
                await self.peers[peer_id].set_remote_description(message.ans)
            except Exception as e:
                self._report(CallSetupError(f"failed to apply remote answer: {e}", peer_id=peer_id))
                return

            if machine.is_closed:
                return
            machine.receive_answer()

    async def _answer_offer(self, peer_id: str, offer: Any, reply_event: str) -> None:
        if self.ended:
            return

        async with self._lock(peer_id):
            if self.ended:
                return
            machine = self._machine_for(peer_id)
            if not machine.can(NegotiationEvent.REMOTE_OFFER):
                machine.receive_offer()  # 로그 후 무시 (CLOSED, impolite glare 포함)
                return

            glare = machine.awaiting_answer
            # 재협상 중 양보하면 자신의 재협상은 원격 라운드가 끝난 뒤 다시 시도
            requeue = glare and machine.state is NegotiationState.RENEGOTIATING
            try:
                peer = await self._prepare_peer(machine)
                if peer is None:
                    return
                if glare or peer.has_local_offer:
                    await peer.rollback()
                ans = await peer.get_answer(offer)
            except Exception as e:
                self._report(CallSetupError(f"failed to answer offer: {e}", peer_id=peer_id))
                return

            if machine.is_closed:
                return
            if requeue:
                self._pending_renegotiation.add(peer_id)
            machine.receive_offer()
            machine.send_answer()
            self.remote_peer_id = peer_id
            await self.channel.emit(reply_event, {"to": peer_id, "ans": ans})

    async def _on_transport_connected(self, peer_id: str) -> None:
        machine = self.machines.get(peer_id)
        if machine is not None and machine.can(NegotiationEvent.TRANSPORT_CONNECTED):
            machine.mark_connected()

    # ------------------------------------------------------------
    # 내부
    # ------------------------------------------------------------

    def _ensure_active(self) -> None:
        if self.ended:
            raise SignalingError("session already ended")
        if not self.started:
            raise SignalingError("session not started")

    def _lock(self, peer_id: str) -> asyncio.Lock:
        return self._locks.setdefault(peer_id, asyncio.Lock())

    def _machine_for(self, peer_id: str) -> NegotiationStateMachine:
        machine = self.machines.get(peer_id)
        if machine is None:
            machine = NegotiationStateMachine(self.local_id, peer_id)
            machine.add_listener(self._on_state_change)
            self.machines[peer_id] = machine
        return machine

    def _peer_for(self, peer_id: str) -> PeerCapability:
        peer = self.peers.get(peer_id)
        if peer is None:
            peer = self.peer_factory()
            peer.on_connected = partial(self._on_transport_connected, peer_id)
            peer.on_closed = partial(self.close_peer, peer_id)
            self.peers[peer_id] = peer
        return peer

    async def _ensure_media(self) -> LocalMedia:
        async with self._media_lock:
            if self.local_media is None:
                try:
                    media = await self.media_provider.acquire()
                except Exception as e:
                    raise CallSetupError(f"local media unavailable: {e}") from e

                if self.ended:
                    media.stop()
                    raise CallSetupError("session ended while acquiring media")

                media.set_audio_enabled(self.audio_enabled)
                media.set_video_enabled(self.video_enabled)
                self.local_media = media
            return self.local_media

    async def _prepare_peer(self, machine: NegotiationStateMachine) -> Optional[PeerCapability]:
        """로컬 미디어를 확보하고 트랙이 추가된 협상 기능을 반환합니다.

        대기 중 상태 머신이 닫혔으면 None을 반환합니다.
        """
        media = await self._ensure_media()
        if machine.is_closed:
            return None
        peer = self._peer_for(machine.remote_id)
        peer.add_tracks(media.tracks)
        return peer

    async def _create_offer(self, machine: NegotiationStateMachine) -> Optional[dict]:
        try:
            peer = await self._prepare_peer(machine)
            if peer is None:
                return None
            offer = await peer.get_offer()
        except CallSetupError as e:
            e.peer_id = e.peer_id or machine.remote_id
            raise
        except Exception as e:
            raise CallSetupError(f"failed to create offer: {e}", peer_id=machine.remote_id) from e

        if machine.is_closed:
            return None
        return offer

    def _on_state_change(self, machine: NegotiationStateMachine, old: NegotiationState,
                         new: NegotiationState) -> None:
        if not machine.awaiting_answer:
            self._cancel_answer_timer(machine.remote_id)

        if new is NegotiationState.CONNECTED and machine.remote_id in self._pending_renegotiation:
            self._pending_renegotiation.discard(machine.remote_id)
            self._spawn(self._run_pending_renegotiation(machine.remote_id))

    async def _run_pending_renegotiation(self, peer_id: str) -> None:
        try:
            await self.renegotiate(peer_id)
        except CallSetupError as e:
            self._report(e)
        except SignalingError:
            pass

    def _arm_answer_timer(self, peer_id: str) -> None:
        self._cancel_answer_timer(peer_id)
        if self.ended or not self.answer_timeout or self.answer_timeout <= 0:
            return
        self._answer_timers[peer_id] = self._spawn(self._expire_offer_after(peer_id, self.answer_timeout))

    def _cancel_answer_timer(self, peer_id: str) -> None:
        timer = self._answer_timers.pop(peer_id, None)
        if timer is not None and timer is not asyncio.current_task():
            timer.cancel()

    async def _expire_offer_after(self, peer_id: str, timeout: float) -> None:
        """answer 대기 시간이 지나면 로컬 offer를 철회하고 OFFER_EXPIRED를 적용합니다.

        최초 offer가 만료되면 협상 기능도 함께 rollback 합니다. 상태 머신만
        되돌리면 피어 연결이 로컬 offer 상태로 남아 원격 offer를 받을 수 없습니다.
        """
        await asyncio.sleep(timeout)
        async with self._lock(peer_id):
            machine = self.machines.get(peer_id)
            if machine is None or not machine.awaiting_answer:
                return
            logger.warning(f"[Session] {timeout}s 동안 answer 없음 ({peer_id[:8]}), offer 만료")

            # 재협상 offer는 연결을 유지하기 위해 그대로 두고, 원격 offer가 올 때 철회
            peer = self.peers.get(peer_id)
            if peer is not None and machine.state is NegotiationState.OFFER_SENT:
                try:
                    await peer.rollback()
                except Exception as e:
                    logger.error(f"[Session] 만료된 offer 철회 실패 ({peer_id[:8]}): {e}")

            if machine.is_closed:
                return
            machine.expire_offer()

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _report(self, error: CallSetupError) -> None:
        logger.error(f"[Session] {error}")
        if self.on_error is not None:
            self.on_error(error)
