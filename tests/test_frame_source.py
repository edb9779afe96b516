"""Camera stream ownership, liveness and release."""

import pytest

from invigilator.data.frame_source import FrameSink, FrameSource, MediaStream
from invigilator.errors import ResourceUnavailable

from conftest import FakeTrack, make_frame, make_source


def test_liveness_without_stream():
    source = FrameSource()
    state = source.is_live()
    assert not state.has_stream
    assert not state.is_live
    assert source.current_frame() is None


def test_liveness_follows_track_flags():
    source, track = make_source()
    assert source.is_live().is_live

    track.muted = True
    assert source.is_live().track_muted
    assert not source.is_live().is_live
    assert source.current_frame() is None

    track.muted = False
    track.enabled = False
    assert not source.is_live().is_live

    track.enabled = True
    track.ended = True
    assert not source.is_live().is_live


def test_stream_without_video_track_is_not_live():
    source = FrameSource(stream=MediaStream([FakeTrack(kind="audio")]))
    state = source.is_live()
    assert state.has_stream
    assert not state.is_live


def test_liveness_check_never_raises():
    class BrokenStream(MediaStream):
        def video_tracks(self):
            raise RuntimeError("device gone")

    source = FrameSource(stream=BrokenStream())
    assert not source.is_live().is_live


@pytest.mark.asyncio
async def test_start_with_sync_and_async_openers():
    stream = MediaStream([FakeTrack()])

    source = FrameSource(opener=lambda: stream)
    assert await source.start() is stream

    async def open_async():
        return stream

    source = FrameSource(opener=open_async)
    assert await source.start() is stream


@pytest.mark.asyncio
async def test_start_failures_raise_resource_unavailable():
    with pytest.raises(ResourceUnavailable):
        await FrameSource().start()

    def denied():
        raise PermissionError("camera permission denied")

    with pytest.raises(ResourceUnavailable):
        await FrameSource(opener=denied).start()

    with pytest.raises(ResourceUnavailable):
        await FrameSource(opener=lambda: None).start()


def test_current_frame_is_latest_pushed():
    source, _ = make_source(with_frame=False)
    assert source.current_frame() is None

    first, second = make_frame(), make_frame(4, 4)
    source.push_frame(first)
    source.push_frame(second)
    assert source.current_frame() is second
    assert source.frames_received == 2


def test_release_stops_every_track_and_detaches_sinks():
    source, track = make_source()
    preview_track = FakeTrack()
    preview = FrameSink("preview", MediaStream([preview_track]))
    source.attach(preview)
    sampler = source.attach("identity")

    stopped = source.release()

    assert stopped == 2
    assert track.stop_calls == 1
    assert preview_track.stop_calls == 1
    assert preview.stream is None
    assert sampler.stream is None
    assert source.sinks == []
    assert source.stream is None
    assert source.current_frame() is None


def test_release_is_idempotent():
    source, track = make_source()
    source.attach("behavior")

    assert source.release() == 1
    assert source.release() == 0
    assert track.stop_calls == 1


def test_frames_after_release_are_dropped():
    source, _ = make_source(with_frame=False)
    source.release()
    source.push_frame(make_frame())
    assert source.frames_received == 0


def test_stats():
    source, _ = make_source()
    source.attach("identity")
    stats = source.get_stats()
    assert stats["frames_received"] == 1
    assert stats["sinks"] == ["identity"]
    assert stats["is_live"] is True
