"""시그널링 클라이언트 채널 (websockets).

릴레이 서버의 ``/ws`` 엔드포인트에 접속하여 이벤트를 보내고, 수신한
이벤트를 등록된 핸들러에 전달합니다.

Architecture:
    - connect(): 접속 후 서버가 보내는 peer_id를 기다려 로컬 연결 ID로 사용
    - on()/off(): 이벤트 이름별 핸들러 등록/해제 (Subscription 반환)
    - 수신 루프: 프레임마다 검증 후 핸들러를 태스크로 실행
    - 연결 종료 시 ``disconnect`` 이벤트를 핸들러에 전달

Examples:
    >>> client = SignalingClient("ws://localhost:8000/ws")
    >>> peer_id = await client.connect()
    >>> sub = client.on("user:joined", handle_user_joined)
    >>> await client.emit("room:join", {"email": "a@x.io", "room": "r1"})
    >>> sub.cancel()
    >>> await client.close()
"""
import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set
from urllib.parse import urlencode

import websockets
from websockets.exceptions import ConnectionClosed

from ..shared import MessageValidationError
from ..signaling.messages import PeerIdAssigned, SignalingMessage, parse_outbound

logger = logging.getLogger(__name__)

DISCONNECT_EVENT = "disconnect"

Handler = Callable[[Optional[SignalingMessage]], Awaitable[None]]


class Subscription:
    """``on()``으로 등록한 핸들러 하나. ``cancel()``로 해제합니다."""

    def __init__(self, channel: "SignalingClient", event: str, handler: Handler):
        self.channel = channel
        self.event = event
        self.handler = handler
        self.active = True

    def cancel(self) -> None:
        if self.active:
            self.channel.off(self.event, self.handler)
            self.active = False


class SignalingClient:
    """릴레이 서버와의 WebSocket 시그널링 채널.

    Attributes:
        url (str): 릴레이 WebSocket URL
        peer_id (Optional[str]): 서버가 부여한 연결 ID
        handlers (Dict[str, List[Handler]]): 이벤트 이름 → 핸들러 리스트
    """

    def __init__(self, url: str, token: Optional[str] = None, connect_timeout: float = 10.0):
        self.url = f"{url}?{urlencode({'token': token})}" if token else url
        self.connect_timeout = connect_timeout
        self.peer_id: Optional[str] = None
        self.handlers: Dict[str, List[Handler]] = {}
        self._ws = None
        self._receive_task: Optional[asyncio.Task] = None
        self._handler_tasks: Set[asyncio.Task] = set()

    @property
    def connected(self) -> bool:
        return self._ws is not None

    async def connect(self) -> str:
        """릴레이에 접속하고 서버가 부여한 연결 ID를 반환합니다."""
        self._ws = await websockets.connect(self.url, open_timeout=self.connect_timeout)
        raw = await asyncio.wait_for(self._ws.recv(), timeout=self.connect_timeout)
        message = parse_outbound(json.loads(raw))
        if not isinstance(message, PeerIdAssigned):
            await self._ws.close()
            self._ws = None
            raise MessageValidationError(f"expected peer_id, got '{message.type}'", event=message.type)

        self.peer_id = message.peer_id
        self._receive_task = asyncio.create_task(self._receive_loop())
        logger.info(f"[Channel] 릴레이 접속 완료: peer_id={self.peer_id[:8]}")
        return self.peer_id

    def on(self, event: str, handler: Handler) -> Subscription:
        self.handlers.setdefault(event, []).append(handler)
        return Subscription(self, event, handler)

    def off(self, event: str, handler: Handler) -> None:
        handlers = self.handlers.get(event)
        if handlers and handler in handlers:
            handlers.remove(handler)
            if not handlers:
                del self.handlers[event]

    async def emit(self, event: str, data: Optional[Dict[str, Any]] = None) -> None:
        """이벤트를 릴레이로 전송합니다. 연결이 없으면 경고 후 버립니다."""
        if self._ws is None:
            logger.warning(f"[Channel] 연결 없음, {event} 전송 불가")
            return
        await self._ws.send(json.dumps({"type": event, "data": data or {}}))

    async def close(self) -> None:
        ws, self._ws = self._ws, None
        if ws is not None:
            await ws.close()
        if self._receive_task and self._receive_task is not asyncio.current_task():
            self._receive_task.cancel()
        for task in list(self._handler_tasks):
            task.cancel()

    async def _receive_loop(self) -> None:
        try:
            async for raw in self._ws:
                try:
                    message = parse_outbound(json.loads(raw))
                except (ValueError, MessageValidationError) as e:
                    logger.warning(f"[Channel] 잘못된 프레임 무시: {e}")
                    continue
                self._dispatch(message.type, message)
        except ConnectionClosed as e:
            logger.info(f"[Channel] 릴레이 연결 종료: {e}")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"[Channel] 수신 루프 오류: {e}", exc_info=True)

        self._ws = None
        self._dispatch(DISCONNECT_EVENT, None)

    def _dispatch(self, event: str, message: Optional[SignalingMessage]) -> None:
        for handler in list(self.handlers.get(event, ())):
            task = asyncio.create_task(self._run_handler(event, handler, message))
            self._handler_tasks.add(task)
            task.add_done_callback(self._handler_tasks.discard)

    async def _run_handler(self, event: str, handler: Handler, message: Optional[SignalingMessage]) -> None:
        try:
            await handler(message)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"[Channel] {event} 핸들러 오류: {e}", exc_info=True)
