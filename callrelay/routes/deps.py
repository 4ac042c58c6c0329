"""접근 제어 의존성.

``ACCESS_PASSWORD``가 설정된 경우에만 동작합니다. WebSocket은 ``token``
쿼리 파라미터로, HTTP 조회 API는 ``Authorization: Bearer`` 헤더로 검증합니다.
"""

from typing import Optional

from fastapi import Header, HTTPException

from ..config import server_config


def _auth_enabled() -> bool:
    return bool(server_config.ACCESS_PASSWORD)


def verify_ws_token(token: Optional[str]) -> bool:
    """WebSocket 연결 시 토큰을 검증합니다.

    Args:
        token: ``/ws?token=...`` 쿼리 파라미터

    Returns:
        bool: 인증이 꺼져 있거나 토큰이 일치하면 True
    """
    return not _auth_enabled() or token == server_config.ACCESS_PASSWORD


async def verify_auth_header(authorization: Optional[str] = Header(None)) -> bool:
    """조회 API의 Authorization 헤더를 검증합니다.

    Raises:
        HTTPException: 헤더가 없거나 형식/비밀번호가 틀린 경우 (401)
    """
    if not _auth_enabled():
        return True
    if not authorization:
        raise HTTPException(status_code=401, detail="Authorization header required")

    scheme, _, credential = authorization.partition(" ")
    if scheme.lower() != "bearer" or not credential:
        raise HTTPException(status_code=401, detail="Invalid authorization format")
    if credential != server_config.ACCESS_PASSWORD:
        raise HTTPException(status_code=401, detail="Invalid password")
    return True
