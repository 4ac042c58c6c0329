"""FastAPI 라우터 모듈."""

from .health import router as health_router
from .signaling import router as signaling_router, init_signaling, get_signaling
from .deps import verify_auth_header, verify_ws_token

__all__ = [
    "health_router",
    "signaling_router",
    "init_signaling",
    "get_signaling",
    "verify_auth_header",
    "verify_ws_token",
]
