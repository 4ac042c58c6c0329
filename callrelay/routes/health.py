"""상태 확인 및 조회 API 라우터."""

from fastapi import APIRouter, Depends

from ..config import ice_config
from .deps import verify_auth_header
from .signaling import get_signaling

router = APIRouter(prefix="/api", tags=["health"])


@router.get("/health")
async def health_check():
    """릴레이 상태를 확인합니다.

    Returns:
        dict: ``{"status": "ok", "connections": n, "rooms": m}``
    """
    signaling = get_signaling()
    if signaling is None:
        return {"status": "not_initialized", "connections": 0, "rooms": 0}

    return {
        "status": "ok",
        "connections": signaling.connection_count,
        "rooms": len(signaling.registry.rooms),
    }


@router.get("/rooms")
async def get_rooms(_: bool = Depends(verify_auth_header)):
    """활성 룸 목록을 반환합니다."""
    signaling = get_signaling()
    return {"rooms": signaling.registry.rooms_list() if signaling else []}


@router.get("/ice-servers")
async def get_ice_servers(_: bool = Depends(verify_auth_header)):
    """클라이언트가 사용할 ICE 서버 목록을 반환합니다.

    STUN 기본 서버에 더해, ``TURN_SERVER_URL``/``TURN_USERNAME``/``TURN_CREDENTIAL``
    환경변수가 모두 설정된 경우 TURN 서버를 포함합니다.
    """
    return {"iceServers": ice_config.as_ice_servers()}
