"""시그널링 WebSocket 라우터.

``/ws`` 엔드포인트에서 연결마다 ID를 부여하고, 수신 프레임을
SignalingRouter로 전달합니다. 연결이 끊기면 레지스트리에서 정리합니다.
"""

import json
import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from ..modules.signaling import PeerIdAssigned, SignalingRouter
from .deps import verify_ws_token

logger = logging.getLogger(__name__)

router = APIRouter()

# 글로벌 시그널링 라우터 참조 (app.py에서 설정됨)
_signaling: Optional[SignalingRouter] = None


def init_signaling(signaling: SignalingRouter) -> None:
    """SignalingRouter 인스턴스를 등록합니다.

    app.py에서 호출하여 글로벌 참조를 설정합니다.
    """
    global _signaling
    _signaling = signaling
    logger.info("[Signaling] 시그널링 라우터 초기화 완료")


def get_signaling() -> Optional[SignalingRouter]:
    return _signaling


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket, token: Optional[str] = Query(None)):
    """시그널링 WebSocket 엔드포인트.

    접속 직후 ``{"type": "peer_id", "data": {"peer_id": ...}}``를 보내고,
    이후 ``{"type": ..., "data": {...}}`` 프레임을 순서대로 처리합니다.

    처리하는 메시지 타입:
        - room:join, room:leave
        - user:call, call:accepted
        - peer:nego:needed, peer:nego:done

    Args:
        websocket: FastAPI WebSocket 연결 객체
        token: 인증 토큰 (쿼리 파라미터)
    """
    if _signaling is None:
        logger.error("[Signaling] 라우터가 초기화되지 않음")
        await websocket.close(code=1011, reason="Server not ready")
        return

    # 연결 수락 전 토큰 검증
    if not verify_ws_token(token):
        await websocket.close(code=4001, reason="Unauthorized")
        return

    await websocket.accept()

    connection_id = str(uuid.uuid4())
    logger.info(f"[Signaling] 피어 {connection_id} 연결됨")

    try:
        await websocket.send_json(PeerIdAssigned(peer_id=connection_id).to_wire())
        _signaling.connect(connection_id, websocket)

        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000), message.get("reason"))

            # 텍스트가 아니거나 JSON이 아닌 프레임은 버리고 연결은 유지
            text = message.get("text")
            if text is None:
                logger.warning(f"[Signaling] {connection_id[:8]}의 바이너리 프레임 무시")
                continue
            try:
                data = json.loads(text)
            except ValueError as e:
                logger.warning(f"[Signaling] {connection_id[:8]}의 잘못된 프레임 무시: {e}")
                continue
            await _signaling.dispatch(connection_id, data)

    except WebSocketDisconnect:
        logger.info(f"[Signaling] 피어 {connection_id} 연결 끊김")
    except Exception as e:
        logger.error(f"[Signaling] 피어 {connection_id}의 WebSocket 연결 중 오류: {e}", exc_info=True)
    finally:
        await _signaling.disconnect(connection_id)
        logger.info(f"[Signaling] 피어 {connection_id} 정리 완료")
