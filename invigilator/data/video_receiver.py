from __future__ import annotations
"""
Video Receiver

Feeds a FrameSource from a LiveKit video track.
"""

import asyncio
from typing import Optional

import numpy as np

from invigilator.data.frame_source import FrameSource, MediaStream
from invigilator.utils.logger import get_logger

try:
    from livekit import rtc
    LIVEKIT_AVAILABLE = True
except ImportError:
    LIVEKIT_AVAILABLE = False

logger = get_logger(__name__)


class LiveKitVideoTrack:
    """MediaTrack view of a subscribed LiveKit video track."""

    kind = "video"

    def __init__(self, track: "rtc.Track"):
        self.track = track
        self.enabled = True
        self.ended = False
        self.video_stream: Optional["rtc.VideoStream"] = None

    @property
    def muted(self) -> bool:
        return bool(getattr(self.track, "muted", False))

    def stop(self) -> None:
        if self.ended:
            return
        self.ended = True
        self.enabled = False
        if self.video_stream is not None:
            try:
                asyncio.get_running_loop().create_task(self.video_stream.aclose())
            except RuntimeError:
                # No loop left to close on; the stream dies with the room
                pass
            self.video_stream = None


class LiveKitFrameSource(FrameSource):
    """
    Frame source decoding a LiveKit track into RGB numpy frames.

    Keeps only the newest frame; samplers pull it at their own cadence.

    Example:
        >>> source = LiveKitFrameSource(track, participant_id="candidate-1")
        >>> await source.start()
        >>> frame = source.current_frame()
    """

    def __init__(
        self,
        track: "rtc.Track",
        participant_id: str = "",
        target_width: int = 640,
        target_height: int = 480,
    ):
        """
        Initialize LiveKit frame source.

        Args:
            track: Subscribed LiveKit video track
            participant_id: ID of the candidate
            target_width: Target frame width
            target_height: Target frame height
        """
        if not LIVEKIT_AVAILABLE:
            raise ImportError("livekit package required: pip install livekit")

        super().__init__()
        self.track = track
        self.participant_id = participant_id
        self.target_width = target_width
        self.target_height = target_height

        self._media_track: Optional[LiveKitVideoTrack] = None
        self._task: Optional[asyncio.Task] = None

    async def start(self) -> MediaStream:
        if self.stream is not None:
            return self.stream

        self._media_track = LiveKitVideoTrack(self.track)
        self._media_track.video_stream = rtc.VideoStream(self.track)
        self.stream = MediaStream(tracks=[self._media_track], stream_id=self.participant_id)
        self.released = False

        self._task = asyncio.create_task(self._receive(self._media_track.video_stream))
        logger.info(f"📹 Receiving video for participant {self.participant_id}")
        return self.stream

    async def _receive(self, video_stream: "rtc.VideoStream") -> None:
        try:
            async for frame_event in video_stream:
                if self.released:
                    break

                frame_array = self._frame_to_numpy(frame_event.frame)
                if frame_array.shape[1] != self.target_width or frame_array.shape[0] != self.target_height:
                    frame_array = self._resize_frame(frame_array)

                self.push_frame(frame_array)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"❌ Video receive error for {self.participant_id}: {e}")
        finally:
            if self._media_track is not None and not self.released:
                # Publisher went away
                self._media_track.ended = True

    def _frame_to_numpy(self, frame: "rtc.VideoFrame") -> np.ndarray:
        """Convert LiveKit VideoFrame to numpy array."""
        buffer = frame.convert(rtc.VideoBufferType.RGB24)
        arr = np.frombuffer(buffer.data, dtype=np.uint8)
        return arr.reshape((buffer.height, buffer.width, 3))

    def _resize_frame(self, frame: np.ndarray) -> np.ndarray:
        """Resize frame to target dimensions."""
        import cv2
        return cv2.resize(frame, (self.target_width, self.target_height))

    def release(self) -> int:
        stopped = super().release()
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
        return stopped
