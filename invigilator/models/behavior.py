from __future__ import annotations
"""
Behavior Sampler

Scores gaze, head pose, hand position and framing from face/hand
landmarks, and carries an independent prohibited-object flag.
"""

import asyncio
import time
from collections import deque
from typing import Callable, Optional, Protocol

import numpy as np

from invigilator.cfg import BehaviorConfig
from invigilator.engine.results import BehaviorSample, BehaviorStatus
from invigilator.models.mediapipe import Landmarks, Point
from invigilator.utils.logger import SessionLogger, get_logger

logger = get_logger(__name__)


# MediaPipe face mesh indices
NOSE_TIP = 4
NOSE_BRIDGE = 6
FOREHEAD_CENTER = 10
CHIN = 175
LEFT_EYE_TOP = 159
LEFT_EYE_BOTTOM = 145
RIGHT_EYE_TOP = 386
RIGHT_EYE_BOTTOM = 374
LEFT_FACE = 234
RIGHT_FACE = 454
TOP_FACE = 10
BOTTOM_FACE = 175

# MediaPipe hand indices
WRIST = 0
INDEX_TIP = 8
HAND_POINTS = 21

NEUTRAL_NOSE_POSITION = 0.35
PITCH_SCALE_DEG = 60


class BehaviorAnalyzer(Protocol):
    def analyze(self, landmarks: Landmarks, now: float) -> BehaviorSample:
        ...

    def reset(self) -> None:
        ...


def head_pitch(face: list[Point]) -> Optional[float]:
    """Approximate pitch in degrees; negative is looking down."""
    forehead = face[FOREHEAD_CENTER]
    chin = face[CHIN]
    bridge = face[NOSE_BRIDGE]

    face_height = abs(forehead[1] - chin[1])
    if face_height == 0:
        return None
    nose_position = (bridge[1] - forehead[1]) / face_height
    return (nose_position - NEUTRAL_NOSE_POSITION) * PITCH_SCALE_DEG


def is_gaze_down(face: list[Point], offset_threshold: float) -> bool:
    left = (face[LEFT_EYE_TOP][1] + face[LEFT_EYE_BOTTOM][1]) / 2
    right = (face[RIGHT_EYE_TOP][1] + face[RIGHT_EYE_BOTTOM][1]) / 2
    eye_y = (left + right) / 2
    return eye_y - face[NOSE_TIP][1] > offset_threshold


def is_hand_near_face(face: list[Point], hands: list[list[Point]], max_distance: float) -> bool:
    nose = np.asarray(face[NOSE_TIP], dtype=np.float32)
    for hand in hands:
        if len(hand) < HAND_POINTS:
            continue
        # Midpoint of wrist and index fingertip
        center = (np.asarray(hand[WRIST], dtype=np.float32) + np.asarray(hand[INDEX_TIP], dtype=np.float32)) / 2
        if float(np.linalg.norm(center - nose)) < max_distance:
            return True
    return False


def is_face_out_of_frame(face: list[Point], edge: float) -> bool:
    return (
        face[LEFT_FACE][0] < edge
        or face[RIGHT_FACE][0] > 1 - edge
        or face[TOP_FACE][1] < edge
        or face[BOTTOM_FACE][1] > 1 - edge
    )


def classify(score: int, object_detected: bool, cfg: BehaviorConfig) -> BehaviorStatus:
    if object_detected:
        return BehaviorStatus.SUSPICIOUS
    if score > cfg.distracted_score:
        return BehaviorStatus.DISTRACTED
    return BehaviorStatus.FOCUSED


class LandmarkBehaviorAnalyzer:
    """
    Composite behavior score from landmarks.

    Scoring (defaults):
        +30 gaze down for more than 1.5 s
        +20 head pitched below -15 degrees in 70% of the last 10 frames
        +20 hand near face in 70% of the last 10 frames
        +10 face within 10% of a frame edge

    Tracking resets whenever the face is lost.
    """

    def __init__(self, cfg: Optional[BehaviorConfig] = None):
        self.cfg = cfg or BehaviorConfig()
        self._gaze_down_since: Optional[float] = None
        self._pitch_history: deque[bool] = deque(maxlen=self.cfg.history_size)
        self._hand_history: deque[bool] = deque(maxlen=self.cfg.history_size)

    def reset(self) -> None:
        self._gaze_down_since = None
        self._pitch_history.clear()
        self._hand_history.clear()

    def _sustained(self, history: deque) -> bool:
        if len(history) < self.cfg.history_size:
            return False
        return sum(history) / self.cfg.history_size >= self.cfg.history_ratio

    def analyze(self, landmarks: Landmarks, now: float) -> BehaviorSample:
        if not landmarks.has_face:
            self.reset()
            return BehaviorSample()

        face = landmarks.face

        if is_gaze_down(face, self.cfg.gaze_offset_threshold):
            if self._gaze_down_since is None:
                self._gaze_down_since = now
            gaze_down_seconds = now - self._gaze_down_since
        else:
            self._gaze_down_since = None
            gaze_down_seconds = 0.0

        pitch = head_pitch(face)
        self._pitch_history.append(pitch is not None and pitch < self.cfg.head_pitch_down_deg)
        self._hand_history.append(is_hand_near_face(face, landmarks.hands, self.cfg.hand_near_face_distance))

        head_down = self._sustained(self._pitch_history)
        hand_near = self._sustained(self._hand_history)
        out_of_frame = is_face_out_of_frame(face, self.cfg.edge_threshold)

        score = 0
        if gaze_down_seconds > self.cfg.gaze_down_threshold_sec:
            score += self.cfg.score_gaze_down
        if head_down:
            score += self.cfg.score_head_pitch_down
        if hand_near:
            score += self.cfg.score_hand_near_face
        if out_of_frame:
            score += self.cfg.score_face_out_of_frame

        return BehaviorSample(
            gaze_down_seconds=round(gaze_down_seconds, 3),
            head_pitch_down=head_down,
            hand_near_face=hand_near,
            face_out_of_frame=out_of_frame,
            composite_behavior_score=min(score, 100),
        )


class BehaviorSampler:
    """
    Periodic behavior sample with an independent object flag.

    Only samples while the frame source is live. When the object detector
    fails, the previous object flag is carried forward so a detector outage
    cannot fabricate a new rising edge.

    Example:
        >>> sampler = BehaviorSampler(frame_source, landmarker, LandmarkBehaviorAnalyzer(), detector)
        >>> sample = await sampler.sample()
        >>> sample.status
        <BehaviorStatus.FOCUSED: 'Focused'>
    """

    def __init__(
        self,
        frame_source,
        landmarker,
        analyzer: BehaviorAnalyzer,
        object_detector=None,
        cfg: Optional[BehaviorConfig] = None,
        clock: Callable[[], float] = time.monotonic,
        session_id: Optional[str] = None,
        body_language=None,
    ):
        self.frame_source = frame_source
        self.landmarker = landmarker
        self.analyzer = analyzer
        self.object_detector = object_detector
        self.cfg = cfg or BehaviorConfig()
        self.clock = clock
        self.body_language = body_language
        self.log = SessionLogger(session_id)

        self.enabled = True
        self.in_flight = False
        self.last_sample: Optional[BehaviorSample] = None
        self._object_detected = False
        self._last_check: Optional[float] = None

    @property
    def status(self) -> Optional[BehaviorStatus]:
        return self.last_sample.status if self.last_sample else None

    def enable(self) -> None:
        self.enabled = True

    def disable(self) -> None:
        self.enabled = False

    def is_due(self, now: Optional[float] = None) -> bool:
        if not self.enabled or self.in_flight:
            return False
        if self._last_check is None:
            return True
        now = self.clock() if now is None else now
        return now - self._last_check >= self.cfg.sample_interval_ms / 1000.0

    async def sample(self, now: Optional[float] = None) -> Optional[BehaviorSample]:
        """
        Take one behavior sample.

        Returns:
            The sample, or None if disabled, busy, not live, or on a
            landmark failure
        """
        if not self.enabled:
            return None
        if self.in_flight:
            self.log.log_skipped("behavior", "previous sample in flight")
            return None
        if not self.frame_source.is_live().is_live:
            return None

        frame = self.frame_source.current_frame()
        if frame is None:
            return None

        self.in_flight = True
        now = self.clock() if now is None else now
        self._last_check = now
        started = time.perf_counter()

        try:
            sample = await self._evaluate(frame, now)
        finally:
            self.in_flight = False

        if sample is None or not self.enabled:
            return None

        self.last_sample = sample
        self.log.log_sample("behavior", sample.status.value, (time.perf_counter() - started) * 1000)
        return sample

    async def _evaluate(self, frame: np.ndarray, now: float) -> Optional[BehaviorSample]:
        try:
            landmarks = await asyncio.to_thread(self.landmarker.detect, frame)
        except Exception as e:
            logger.warning(f"⚠️ Behavior sample skipped: {e}")
            return None

        try:
            sample = self.analyzer.analyze(landmarks, now)
        except Exception as e:
            logger.warning(f"⚠️ Behavior analysis failed, sample skipped: {e}")
            return None

        if self.body_language is not None:
            try:
                self.body_language.observe(landmarks)
            except Exception as e:
                logger.warning(f"⚠️ Body-language scoring failed: {e}")

        if self.object_detector is not None:
            try:
                self._object_detected = bool(await self.object_detector.detect(frame))
            except Exception as e:
                logger.warning(f"⚠️ Object detection failed, keeping last flag: {e}")

        sample.object_detected = self._object_detected
        sample.status = classify(sample.composite_behavior_score, sample.object_detected, self.cfg)
        return sample


def score_breakdown(sample: BehaviorSample, cfg: BehaviorConfig) -> dict[str, int]:
    """Per-signal contribution to the composite score."""
    return {
        "gaze_down": cfg.score_gaze_down if sample.gaze_down_seconds > cfg.gaze_down_threshold_sec else 0,
        "head_pitch_down": cfg.score_head_pitch_down if sample.head_pitch_down else 0,
        "hand_near_face": cfg.score_hand_near_face if sample.hand_near_face else 0,
        "face_out_of_frame": cfg.score_face_out_of_frame if sample.face_out_of_frame else 0,
    }
