"""Shared fakes for the capability interfaces."""

from __future__ import annotations

import asyncio
from typing import Optional
from unittest.mock import AsyncMock, MagicMock

import numpy as np
import pytest

from invigilator.cfg import BehaviorConfig, IdentityConfig, RuleConfig, TerminationConfig
from invigilator.data.session_store import SessionStore
from invigilator.data.frame_source import FrameSource, MediaStream
from invigilator.engine.results import BehaviorSample
from invigilator.models.behavior import BehaviorSampler
from invigilator.models.identity import IdentitySampler
from invigilator.models.mediapipe import FACE_MESH_POINTS, Landmarks
from invigilator.service.proctoring import ProctoringSession


class FakeTrack:
    def __init__(self, kind: str = "video"):
        self.kind = kind
        self.enabled = True
        self.muted = False
        self.ended = False
        self.stop_calls = 0

    def stop(self) -> None:
        self.stop_calls += 1
        self.ended = True


def make_frame(height: int = 8, width: int = 8) -> np.ndarray:
    return np.zeros((height, width, 3), dtype=np.uint8)


def make_source(with_frame: bool = True) -> tuple[FrameSource, FakeTrack]:
    track = FakeTrack()
    source = FrameSource(stream=MediaStream([track], stream_id="cam"))
    if with_frame:
        source.push_frame(make_frame())
    return source, track


class FakeRecognizer:
    """Scripted face counts and comparison results."""

    def __init__(self, faces: int = 1, matched: bool = True, ready: bool = True):
        self.faces = faces
        self.matched = matched
        self.ready = ready
        self.compare_error: Optional[Exception] = None
        self.gate: Optional[asyncio.Event] = None
        self.compare_calls = 0

    def is_ready(self) -> bool:
        return self.ready

    async def detect_faces(self, frame) -> int:
        if self.gate is not None:
            await self.gate.wait()
        return self.faces

    async def embed(self, frame) -> list[float]:
        return [0.1, 0.2, 0.3]

    async def compare_to_registered(self, embedding) -> bool:
        self.compare_calls += 1
        if self.compare_error is not None:
            raise self.compare_error
        return self.matched


class FakeLandmarker:
    def __init__(self, landmarks: Optional[Landmarks] = None):
        self.landmarks = landmarks or Landmarks()
        self.error: Optional[Exception] = None

    def detect(self, frame) -> Landmarks:
        if self.error is not None:
            raise self.error
        return self.landmarks


class FakeAnalyzer:
    """Returns a fixed score regardless of landmarks."""

    def __init__(self, score: int = 0):
        self.score = score
        self.error: Optional[Exception] = None

    def analyze(self, landmarks, now) -> BehaviorSample:
        if self.error is not None:
            raise self.error
        return BehaviorSample(composite_behavior_score=self.score)

    def reset(self) -> None:
        pass


class FakeObjectDetector:
    def __init__(self, detected: bool = False):
        self.detected = detected
        self.error: Optional[Exception] = None

    async def detect(self, frame) -> bool:
        if self.error is not None:
            raise self.error
        return self.detected


class FakePlayback:
    def __init__(self, audio: bytes):
        self.audio = audio
        self.stopped = False
        self.released = 0
        self._done = asyncio.Event()

    def stop(self) -> None:
        self.stopped = True
        self._done.set()

    def release(self) -> None:
        self.released += 1

    def finish(self) -> None:
        self._done.set()

    async def wait(self) -> None:
        await self._done.wait()


class FakePlayer:
    def __init__(self):
        self.playbacks: list[FakePlayback] = []

    async def play(self, audio: bytes) -> FakePlayback:
        playback = FakePlayback(audio)
        self.playbacks.append(playback)
        return playback


class FakeSynthesizer:
    def __init__(self):
        self.calls: list[str] = []

    async def __call__(self, text: str, voice: str) -> bytes:
        self.calls.append(text)
        return text.encode()


class RecordingNavigator:
    def __init__(self):
        self.calls: list[tuple] = []

    def __call__(self, destination, reason) -> None:
        self.calls.append((destination, reason))


def face_points(**overrides) -> list[tuple[float, float, float]]:
    """Neutral, centered face mesh; override single indices with ``i=(x, y, z)``."""
    face = [(0.5, 0.5, 0.0)] * FACE_MESH_POINTS
    neutral = {
        4: (0.5, 0.5, 0.0),     # nose tip
        6: (0.5, 0.44, 0.0),    # nose bridge
        10: (0.5, 0.3, 0.0),    # forehead / top
        175: (0.5, 0.7, 0.0),   # chin / bottom
        159: (0.45, 0.42, 0.0),
        145: (0.45, 0.42, 0.0),
        386: (0.55, 0.42, 0.0),
        374: (0.55, 0.42, 0.0),
        234: (0.3, 0.5, 0.0),   # left edge
        454: (0.7, 0.5, 0.0),   # right edge
    }
    for index, point in neutral.items():
        face[index] = point
    for key, point in overrides.items():
        face[int(key.lstrip("i"))] = point
    return face


def hand_at(x: float, y: float) -> list[tuple[float, float, float]]:
    return [(x, y, 0.0)] * 21


@pytest.fixture
def identity_cfg() -> IdentityConfig:
    return IdentityConfig()


@pytest.fixture
def behavior_cfg() -> BehaviorConfig:
    return BehaviorConfig()


@pytest.fixture
def fast_rules() -> RuleConfig:
    return RuleConfig(tick_seconds=0.01, absence_stage_seconds=1, multi_face_seconds=1)


@pytest.fixture
def no_delay() -> TerminationConfig:
    return TerminationConfig(exit_delay_seconds=0, completion_exit_delay_seconds=0)


def make_session(termination_cfg, recognizer=None, score=0, detector=None, rule_cfg=None, source=None, body_language=None):
    """ProctoringSession over fakes, with mock reporter and narration."""
    if source is None:
        source, _ = make_source()
    recognizer = recognizer or FakeRecognizer()
    identity_cfg = IdentityConfig()
    behavior = BehaviorSampler(
        source,
        FakeLandmarker(),
        FakeAnalyzer(score=score),
        object_detector=detector or FakeObjectDetector(),
    )
    identity = IdentitySampler(
        source,
        recognizer,
        cfg=identity_cfg,
        behavior_status=lambda: behavior.status,
    )
    return ProctoringSession(
        session_id="sess-1",
        frame_source=source,
        identity=identity,
        behavior=behavior,
        store=SessionStore(),
        reporter=MagicMock(report=AsyncMock(return_value=True)),
        narration=MagicMock(),
        navigator=RecordingNavigator(),
        identity_cfg=identity_cfg,
        rule_cfg=rule_cfg or RuleConfig(),
        termination_cfg=termination_cfg,
        body_language=body_language,
    )
