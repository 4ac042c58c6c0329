"""aiortc 기반 미디어/협상 기능 테스트.

네트워크 없이 동작하도록 ICE 서버 없는 설정을 사용합니다.

사용법:
    pytest test/test_media_peer.py
"""

import asyncio

from aiortc.mediastreams import AudioStreamTrack, VideoStreamTrack

from callrelay.modules.client import LocalMedia, PeerService, ToggleableTrack, build_rtc_configuration


def local_peer():
    return PeerService(configuration=build_rtc_configuration([]))


def test_disabled_video_track_sends_black_frames():
    async def scenario():
        track = ToggleableTrack(VideoStreamTrack(), enabled=False)
        frame = await track.recv()
        track.stop()
        return frame

    frame = asyncio.run(scenario())

    assert frame.width == 640 and frame.height == 480
    assert not frame.to_ndarray(format="rgb24").any()
    assert frame.pts is not None


def test_disabled_audio_track_keeps_frame_shape():
    async def scenario():
        track = ToggleableTrack(AudioStreamTrack(), enabled=False)
        frame = await track.recv()
        track.stop()
        return frame

    frame = asyncio.run(scenario())

    assert frame.sample_rate == 8000
    assert frame.samples == 160


def test_local_media_toggles_and_stop():
    media = LocalMedia(audio=AudioStreamTrack(), video=VideoStreamTrack())
    assert len(media.tracks) == 2

    media.set_audio_enabled(False)
    media.set_video_enabled(False)
    assert not media.audio.enabled
    assert not media.video.enabled

    media.stop()
    media.stop()
    assert media.stopped
    assert all(track.readyState == "ended" for track in media.tracks)


def test_build_rtc_configuration():
    config = build_rtc_configuration([
        {"urls": "stun:stun.example.org:3478"},
        {"urls": ["turn:turn.example.org:3478"], "username": "u", "credential": "p"},
    ])

    assert [server.urls for server in config.iceServers] == [
        ["stun:stun.example.org:3478"],
        ["turn:turn.example.org:3478"],
    ]
    assert config.iceServers[1].username == "u"


def test_offer_answer_exchange():
    async def scenario():
        caller, callee = local_peer(), local_peer()
        caller.add_tracks([AudioStreamTrack()])
        callee.add_tracks([AudioStreamTrack()])

        offer = await caller.get_offer()
        answer = await callee.get_answer(offer)
        await caller.set_remote_description(answer)

        states = (caller.pc.signalingState, callee.pc.signalingState)
        kinds = (offer["type"], answer["type"])
        await caller.close()
        await callee.close()
        return states, kinds

    states, kinds = asyncio.run(scenario())

    assert states == ("stable", "stable")
    assert kinds == ("offer", "answer")


def test_rollback_recreates_connection_with_local_tracks():
    async def scenario():
        peer = local_peer()
        track = AudioStreamTrack()
        peer.add_tracks([track, track])

        await peer.get_offer()
        old = peer.pc
        await peer.rollback()

        result = (peer.pc is not old, peer.pc.signalingState, len(peer.pc.getSenders()))
        await peer.close()
        return result

    recreated, state, senders = asyncio.run(scenario())

    assert recreated
    assert state == "stable"
    assert senders == 1
