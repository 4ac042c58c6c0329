"""시그널링 서버 설정.

서버 포트, CORS, ICE 서버, 협상 타임아웃 등 환경변수 기반 설정.
"""

import os
import logging
from pathlib import Path
from dataclasses import dataclass, field
from typing import Optional, Tuple

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

_env_path = Path(__file__).parent.parent / "config" / ".env"
load_dotenv(_env_path)


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_list(name: str, default: str) -> Tuple[str, ...]:
    raw = os.getenv(name, default)
    return tuple(item.strip() for item in raw.split(",") if item.strip())


# ============================================================
# 서버 설정
# ============================================================

@dataclass(frozen=True)
class ServerConfig:
    """시그널링 서버 프로세스 설정."""

    HOST: str = field(default_factory=lambda: os.getenv("HOST", "0.0.0.0"))
    PORT: int = field(default_factory=lambda: int(os.getenv("PORT", "8000")))

    # CORS 허용 오리진 (콤마 구분)
    ALLOWED_ORIGINS: Tuple[str, ...] = field(
        default_factory=lambda: _env_list("ALLOWED_ORIGINS", "*")
    )

    LOG_LEVEL: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO").upper())

    # 비어 있으면 WebSocket 토큰 검증 비활성화
    ACCESS_PASSWORD: str = field(default_factory=lambda: os.getenv("ACCESS_PASSWORD", ""))

    # 연결 종료 시 같은 룸 참가자에게 user:left 알림 여부
    ANNOUNCE_DEPARTURES: bool = field(
        default_factory=lambda: _env_bool("ANNOUNCE_DEPARTURES", False)
    )


# ============================================================
# ICE Server 설정
# ============================================================

@dataclass(frozen=True)
class ICEServerConfig:
    """ICE 서버 설정."""

    # TURN 서버
    TURN_SERVER_URL: Optional[str] = field(default_factory=lambda: os.getenv("TURN_SERVER_URL"))
    TURN_USERNAME: Optional[str] = field(default_factory=lambda: os.getenv("TURN_USERNAME"))
    TURN_CREDENTIAL: Optional[str] = field(default_factory=lambda: os.getenv("TURN_CREDENTIAL"))

    # STUN 서버
    STUN_SERVER_URL: Optional[str] = field(default_factory=lambda: os.getenv("STUN_SERVER_URL"))

    # 기본 공개 STUN 서버 (fallback)
    DEFAULT_STUN_SERVERS: tuple = (
        "stun:stun.l.google.com:19302",
        "stun:global.stun.twilio.com:3478",
    )

    @property
    def has_turn_server(self) -> bool:
        """TURN 서버 설정 완료 여부."""
        return all([self.TURN_SERVER_URL, self.TURN_USERNAME, self.TURN_CREDENTIAL])

    def as_ice_servers(self) -> list:
        """브라우저/클라이언트용 iceServers 리스트를 반환합니다.

        Returns:
            list: ``{"urls": ..., "username": ..., "credential": ...}`` 형식의 딕셔너리 리스트
        """
        ice_servers = []
        if self.STUN_SERVER_URL:
            ice_servers.append({"urls": [self.STUN_SERVER_URL]})
        ice_servers.append({"urls": list(self.DEFAULT_STUN_SERVERS)})
        if self.has_turn_server:
            ice_servers.append({
                "urls": [self.TURN_SERVER_URL],
                "username": self.TURN_USERNAME,
                "credential": self.TURN_CREDENTIAL,
            })
        return ice_servers


# ============================================================
# 협상 설정
# ============================================================

@dataclass(frozen=True)
class NegotiationConfig:
    """offer/answer 협상 관련 설정."""

    # offer 전송 후 answer 대기 시간 (초)
    ANSWER_TIMEOUT: float = field(
        default_factory=lambda: float(os.getenv("ANSWER_TIMEOUT", "30"))
    )

    # room:join 에코 대기 시간 (초)
    JOIN_TIMEOUT: float = field(
        default_factory=lambda: float(os.getenv("JOIN_TIMEOUT", "10"))
    )


# ============================================================
# 싱글톤 인스턴스
# ============================================================

server_config = ServerConfig()
ice_config = ICEServerConfig()
negotiation_config = NegotiationConfig()


logger.info(f"[Config] .env 경로: {_env_path} (존재: {_env_path.exists()})")
logger.info(f"[Config] 허용 오리진: {', '.join(server_config.ALLOWED_ORIGINS)}")
logger.info(f"[Config] TURN 서버 설정 완료: {ice_config.has_turn_server}")
logger.info(f"[Config] 퇴장 알림: {server_config.ANNOUNCE_DEPARTURES}")
