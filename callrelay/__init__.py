"""callrelay: 1:1 오디오/비디오 통화를 위한 시그널링 릴레이와 클라이언트."""

__version__ = "0.1.0"
