"""FastAPI 시그널링 릴레이 서버.

1:1 오디오/비디오 통화를 위한 시그널링 서버입니다. 클라이언트는 같은
룸 이름으로 참가한 상대를 알게 되고, offer/answer 세션 디스크립션을
서버를 통해 교환한 뒤 미디어는 피어 간에 직접 주고받습니다.

주요 기능:
    - 룸 참가 및 참가자 입장 알림
    - 통화 요청/수락, 재협상 메시지 릴레이 (내용은 검사하지 않음)
    - ICE 서버 목록 제공
    - CORS 설정을 통한 크로스 오리진 요청 지원

Architecture:
    - ConnectionRegistry: 참가자 신원 및 룸 멤버십
    - SignalingRouter: 메시지 검증 및 대상 지정 전송
    - WebSocket: 연결마다 하나의 수신 루프
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import server_config
from .modules.signaling import ConnectionRegistry, SignalingRouter
from .routes import health_router, signaling_router, init_signaling

# 로그 설정
logging.basicConfig(
    level=getattr(logging, server_config.LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    handlers=[
        logging.StreamHandler(),  # 콘솔 출력
    ]
)
logger = logging.getLogger(__name__)
logger.info(f"로깅 초기화 완료: level={server_config.LOG_LEVEL}")


# 글로벌 인스턴스
registry = ConnectionRegistry()
signaling = SignalingRouter(registry, announce_departures=server_config.ANNOUNCE_DEPARTURES)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """FastAPI 앱의 생명주기를 관리하는 컨텍스트 매니저.

    Note:
        - 종료 시 남아 있는 모든 연결을 레지스트리에서 정리
    """
    logger.info("시그널링 서버 시작 중...")

    yield

    logger.info("서버 종료 중...")
    for connection_id in list(signaling.transports):
        await signaling.disconnect(connection_id)
    logger.info(f"연결 정리 완료 (남은 참가자 {len(registry)}명)")


app = FastAPI(title="Call Signaling Relay", lifespan=lifespan)

origins = list(server_config.ALLOWED_ORIGINS)
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials="*" not in origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

# 라우터 등록
app.include_router(health_router)
app.include_router(signaling_router)

# WebSocket 라우터에 시그널링 인스턴스 전달
init_signaling(signaling)


@app.get("/")
async def root():
    """서버 상태 확인 엔드포인트.

    Returns:
        str: 고정 상태 문자열

    Examples:
        >>> await root()
        'Signaling relay working with /ws'
    """
    return "Signaling relay working with /ws"


def main():
    import uvicorn
    uvicorn.run(app, host=server_config.HOST, port=server_config.PORT, log_level="info")


if __name__ == "__main__":
    main()
