"""로컬 미디어 기능 모듈.

로컬 오디오/비디오 장치를 aiortc ``MediaPlayer``로 열고, 오디오/비디오
활성화 플래그에 따라 프레임을 그대로 전달하거나 무음/검은 화면으로
대체하는 트랙을 제공합니다.

Classes:
    ToggleableTrack: 활성화 여부에 따라 프레임을 가리는 릴레이 트랙
    LocalMedia: 획득한 로컬 미디어 핸들
    MediaProvider: 장치 설정을 받아 LocalMedia를 획득

Examples:
    >>> provider = MediaProvider(video_source="/dev/video0", video_format="v4l2")
    >>> media = await provider.acquire()
    >>> media.set_video_enabled(False)
    >>> media.stop()
"""
import logging
from typing import Dict, List, Optional

import numpy as np
from av import AudioFrame, VideoFrame
from aiortc import MediaStreamTrack
from aiortc.contrib.media import MediaPlayer

logger = logging.getLogger(__name__)


class ToggleableTrack(MediaStreamTrack):
    """원본 트랙의 프레임을 릴레이하며, 비활성화 시 무음/검은 프레임을 전송하는 트랙.

    협상 상태와 무관하게 오디오/비디오 전송을 끄고 켤 수 있게 합니다.
    트랙 자체는 연결에 남아 있으므로 재협상이 필요 없습니다.

    Attributes:
        kind (str): "audio" 또는 "video"
        track (MediaStreamTrack): 원본 트랙
        enabled (bool): False이면 프레임 내용을 가림
    """

    def __init__(self, track: MediaStreamTrack, enabled: bool = True):
        super().__init__()
        self.kind = track.kind
        self.track = track
        self.enabled = enabled

    async def recv(self):
        frame = await self.track.recv()
        if self.enabled:
            return frame

        if self.kind == "audio":
            muted = AudioFrame(format=frame.format.name, layout=frame.layout.name, samples=frame.samples)
            for plane in muted.planes:
                plane.update(bytes(plane.buffer_size))
            muted.sample_rate = frame.sample_rate
        else:
            muted = VideoFrame.from_ndarray(
                np.zeros((frame.height, frame.width, 3), dtype=np.uint8), format="rgb24"
            )
        muted.pts = frame.pts
        muted.time_base = frame.time_base
        return muted

    def stop(self):
        super().stop()
        self.track.stop()


class LocalMedia:
    """획득한 로컬 미디어 핸들.

    Attributes:
        audio (Optional[ToggleableTrack]): 로컬 오디오 트랙
        video (Optional[ToggleableTrack]): 로컬 비디오 트랙
    """

    def __init__(
        self,
        audio: Optional[MediaStreamTrack] = None,
        video: Optional[MediaStreamTrack] = None,
        players: Optional[List[MediaPlayer]] = None,
    ):
        self.audio = ToggleableTrack(audio) if audio is not None else None
        self.video = ToggleableTrack(video) if video is not None else None
        self.players = players or []
        self.stopped = False

    @property
    def tracks(self) -> List[MediaStreamTrack]:
        return [t for t in (self.audio, self.video) if t is not None]

    def set_audio_enabled(self, enabled: bool) -> None:
        if self.audio is not None:
            self.audio.enabled = enabled

    def set_video_enabled(self, enabled: bool) -> None:
        if self.video is not None:
            self.video.enabled = enabled

    def stop(self) -> None:
        """모든 로컬 트랙을 종료합니다. 여러 번 호출해도 안전합니다."""
        if self.stopped:
            return
        for track in self.tracks:
            track.stop()
        self.stopped = True
        logger.info("[Media] 로컬 미디어 해제")


class MediaProvider:
    """로컬 장치 설정으로 미디어를 획득하는 기능.

    ``source``/``format``은 FFmpeg 입력 지정 방식 그대로입니다
    (예: ``"/dev/video0"``/``"v4l2"``, ``"default"``/``"pulse"``, 또는 파일 경로).
    """

    def __init__(
        self,
        audio_source: Optional[str] = None,
        audio_format: Optional[str] = None,
        video_source: Optional[str] = None,
        video_format: Optional[str] = None,
        options: Optional[Dict[str, str]] = None,
    ):
        self.audio_source = audio_source
        self.audio_format = audio_format
        self.video_source = video_source
        self.video_format = video_format
        self.options = options

    async def acquire(self) -> LocalMedia:
        """장치를 열어 LocalMedia를 반환합니다.

        Raises:
            Exception: 장치를 열 수 없는 경우 (권한 거부 등) FFmpeg/av 예외가 전파됨
        """
        players = []
        audio = video = None

        if self.audio_source:
            player = MediaPlayer(self.audio_source, format=self.audio_format, options=self.options)
            players.append(player)
            audio = player.audio

        if self.video_source:
            player = MediaPlayer(self.video_source, format=self.video_format, options=self.options)
            players.append(player)
            video = player.video

        logger.info(f"[Media] 로컬 미디어 획득: audio={audio is not None}, video={video is not None}")
        return LocalMedia(audio=audio, video=video, players=players)
