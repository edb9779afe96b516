from __future__ import annotations
"""
Frame Source

Owns the candidate's camera stream. Samplers read frames and liveness
through it; only the termination coordinator releases it.
"""

import inspect
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Protocol, Union, runtime_checkable

import numpy as np

from invigilator.engine.results import FrameSourceState
from invigilator.errors import ResourceUnavailable
from invigilator.utils.logger import get_logger

logger = get_logger(__name__)


@runtime_checkable
class MediaTrack(Protocol):
    """A single camera track."""

    kind: str
    enabled: bool
    muted: bool
    ended: bool

    def stop(self) -> None:
        """Stop the track. Stopping a stopped track is a no-op."""
        ...


@dataclass
class MediaStream:
    """A bundle of tracks handed out by the capture device."""
    tracks: list = field(default_factory=list)
    stream_id: str = ""

    def video_tracks(self) -> list:
        return [t for t in self.tracks if getattr(t, "kind", "video") == "video"]

    def stop(self) -> int:
        """Stop every track still running. Returns the number stopped."""
        stopped = 0
        for track in self.tracks:
            if getattr(track, "ended", False):
                continue
            track.stop()
            stopped += 1
        return stopped


class FrameSink:
    """
    Anything holding a reference to the camera stream (preview element,
    sampler input). Attached to a FrameSource so release can detach it.
    """

    def __init__(self, name: str, stream: Optional[MediaStream] = None):
        self.name = name
        self.stream = stream

    def detach(self) -> None:
        self.stream = None

    def __repr__(self) -> str:
        return f"FrameSink({self.name!r}, attached={self.stream is not None})"


StreamOpener = Callable[[], Union[MediaStream, Awaitable[MediaStream]]]


class FrameSource:
    """
    Camera capability: ``start()``, ``current_frame()``, ``is_live()``,
    ``release()``.

    Frames are pushed in by whatever decodes the track (see
    ``LiveKitFrameSource``) and read out as the latest RGB frame.

    Example:
        >>> source = FrameSource(opener=open_camera)
        >>> await source.start()
        >>> source.is_live().is_live
        True
        >>> frame = source.current_frame()
        >>> source.release()
    """

    def __init__(self, opener: Optional[StreamOpener] = None, stream: Optional[MediaStream] = None):
        """
        Initialize frame source.

        Args:
            opener: Callable returning the stream (sync or async)
            stream: Already-open stream
        """
        self.opener = opener
        self.stream: Optional[MediaStream] = stream
        self.sinks: list[FrameSink] = []
        self.released = False

        self._latest: Optional[np.ndarray] = None
        self._frames_received = 0

    async def start(self) -> MediaStream:
        """
        Acquire the camera stream.

        Raises:
            ResourceUnavailable: If no stream can be opened
        """
        if self.stream is not None:
            return self.stream
        if self.opener is None:
            raise ResourceUnavailable("No camera stream and no opener configured")

        try:
            stream = self.opener()
            if inspect.isawaitable(stream):
                stream = await stream
        except ResourceUnavailable:
            raise
        except Exception as e:
            raise ResourceUnavailable(f"Camera could not be opened: {e}") from e

        if stream is None:
            raise ResourceUnavailable("Camera opener returned no stream")

        self.stream = stream
        self.released = False
        logger.info(f"📹 Camera stream acquired ({len(stream.tracks)} tracks)")
        return stream

    def attach(self, sink: Union[FrameSink, str]) -> FrameSink:
        """Register a consumer holding the stream."""
        if isinstance(sink, str):
            sink = FrameSink(sink, self.stream)
        elif sink.stream is None:
            sink.stream = self.stream
        self.sinks.append(sink)
        return sink

    def push_frame(self, frame: np.ndarray) -> None:
        """Store the most recent decoded RGB frame."""
        if self.released:
            return
        self._latest = frame
        self._frames_received += 1

    @property
    def frames_received(self) -> int:
        return self._frames_received

    def current_frame(self) -> Optional[np.ndarray]:
        """Latest frame, or None when the stream is not live."""
        if not self.is_live().is_live:
            return None
        return self._latest

    def is_live(self) -> FrameSourceState:
        """Check stream liveness. Never raises."""
        try:
            stream = self.stream
            if stream is None:
                return FrameSourceState()
            tracks = stream.video_tracks()
            if not tracks:
                return FrameSourceState(has_stream=True)
            track = tracks[0]
            return FrameSourceState(
                has_stream=True,
                track_enabled=bool(getattr(track, "enabled", False)),
                track_muted=bool(getattr(track, "muted", False)),
                track_ended=bool(getattr(track, "ended", True)),
            )
        except Exception as e:
            logger.warning(f"⚠️ Liveness check failed: {e}")
            return FrameSourceState()

    def release(self) -> int:
        """
        Stop every track on the stream and on every attached sink, detach
        the sinks and drop the handle. Safe to call repeatedly.

        Returns:
            Number of tracks stopped by this call
        """
        stopped = 0
        streams: list[MediaStream] = []
        if self.stream is not None:
            streams.append(self.stream)
        for sink in self.sinks:
            if sink.stream is not None and all(sink.stream is not s for s in streams):
                streams.append(sink.stream)

        for stream in streams:
            try:
                stopped += stream.stop()
            except Exception as e:
                logger.error(f"❌ Failed to stop stream tracks: {e}")

        for sink in self.sinks:
            sink.detach()
        self.sinks.clear()

        self.stream = None
        self._latest = None
        self.released = True
        return stopped

    def get_stats(self) -> dict[str, Any]:
        return {
            "frames_received": self._frames_received,
            "sinks": [s.name for s in self.sinks],
            **self.is_live().to_dict(),
        }
