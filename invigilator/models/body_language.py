from __future__ import annotations
"""
Body Language Analyzer

Coaching scores (eye contact, engagement, attention, stability) and a
coarse facial expression from face/hand landmarks, aggregated over the
session for the backend's feedback report.
"""

import math
from collections import Counter
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from invigilator.models.behavior import (
    LEFT_EYE_BOTTOM,
    LEFT_EYE_TOP,
    LEFT_FACE,
    NOSE_TIP,
    RIGHT_EYE_BOTTOM,
    RIGHT_EYE_TOP,
    RIGHT_FACE,
    is_hand_near_face,
)
from invigilator.models.mediapipe import Landmarks, Point


# MediaPipe face mesh indices (eye corners and mouth)
LEFT_EYE_OUTER = 33
LEFT_EYE_INNER = 133
RIGHT_EYE_INNER = 362
RIGHT_EYE_OUTER = 263
MOUTH_LEFT = 61
MOUTH_RIGHT = 291
MOUTH_TOP = 13
MOUTH_BOTTOM = 14

EYES_CLOSED_EAR = 0.12
OPEN_EYE_EAR = 0.25
EYES_CLOSED_PENALTY = 0.8
EYES_CLOSED_CAP = 0.15

HEAD_CENTER_MAX_OFFSET = 0.3
ATTENTION_MOVEMENT = 0.05
HEAD_MOVEMENT = 0.1
HAND_MOVEMENT = 0.15

# Expression thresholds
HEAD_AWAY_OFFSET = 0.25
HEAD_POSE_AWAY = 0.6
HEAD_POSE_POOR = 0.4
HEAD_DOWN_Y = 0.51
MOUTH_TIGHT_RATIO = 0.22
DISTRACTED_SCORE = 25
NERVOUS_SCORE = 15


class Expression(str, Enum):
    CONFIDENT = "confident"
    NERVOUS = "nervous"
    DISTRACTED = "distracted"


# Backend vocabulary: happy, sad, nervous, neutral, shocked
BACKEND_EXPRESSIONS = {
    Expression.CONFIDENT: "happy",
    Expression.NERVOUS: "nervous",
    Expression.DISTRACTED: "sad",
}


def backend_expression(expression: Optional[Expression]) -> str:
    if expression is None:
        return "neutral"
    return BACKEND_EXPRESSIONS.get(expression, "neutral")


@dataclass
class BodyLanguageScores:
    """One frame's coaching scores, each 0..100."""
    eye_contact: int = 0
    engagement: int = 0
    attention: int = 0
    stability: int = 0
    expression: Optional[Expression] = None
    expression_confidence: int = 0
    face_detected: bool = False


@dataclass
class BodyLanguageSummary:
    """
    Averages over every frame with a face.

    Attributes:
        sample_count: Frames observed, with or without a face
        dominant_expression: Most frequent expression, None without a face
    """
    eye_contact: int = 0
    engagement: int = 0
    attention: int = 0
    stability: int = 0
    expression_confidence: int = 0
    dominant_expression: Optional[Expression] = None
    sample_count: int = 0

    def to_payload(self, session_id: str, timestamp_ms: int) -> dict:
        """Request body for the backend's body-language endpoint."""
        return {
            "sessionId": session_id,
            "eyeContact": self.eye_contact,
            "engagement": self.engagement,
            "attention": self.attention,
            "stability": self.stability,
            "expression": backend_expression(self.dominant_expression),
            "expressionConfidence": self.expression_confidence,
            "dominantExpression": backend_expression(self.dominant_expression),
            "sampleCount": self.sample_count,
            "timestamp": timestamp_ms,
        }


def _distance(a: Point, b: Point) -> float:
    return math.hypot(a[0] - b[0], a[1] - b[1])


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def _percent(value: float) -> int:
    return int(round(_clamp(value) * 100))


def eye_aspect_ratio(top: Point, bottom: Point, outer: Point, inner: Point) -> float:
    """Lid opening over eye width; about 0.25 open, under 0.12 closed."""
    width = _distance(outer, inner)
    if width == 0:
        return 0.0
    return _distance(top, bottom) / width


def average_ear(face: list[Point]) -> float:
    left = eye_aspect_ratio(face[LEFT_EYE_TOP], face[LEFT_EYE_BOTTOM], face[LEFT_EYE_OUTER], face[LEFT_EYE_INNER])
    right = eye_aspect_ratio(face[RIGHT_EYE_TOP], face[RIGHT_EYE_BOTTOM], face[RIGHT_EYE_INNER], face[RIGHT_EYE_OUTER])
    return (left + right) / 2


def mouth_aspect_ratio(face: list[Point]) -> Optional[float]:
    width = _distance(face[MOUTH_LEFT], face[MOUTH_RIGHT])
    if width == 0:
        return None
    return _distance(face[MOUTH_TOP], face[MOUTH_BOTTOM]) / width


def head_pose_score(face: list[Point]) -> float:
    """1.0 when the nose is centered in frame and between the face edges."""
    nose = face[NOSE_TIP]
    score_x = _clamp(1 - abs(nose[0] - 0.5) / HEAD_CENTER_MAX_OFFSET)
    score_y = _clamp(1 - abs(nose[1] - 0.5) / HEAD_CENTER_MAX_OFFSET)

    face_width = abs(face[RIGHT_FACE][0] - face[LEFT_FACE][0])
    if face_width == 0:
        return (score_x + score_y) / 2

    nose_position = (nose[0] - face[LEFT_FACE][0]) / face_width
    rotation = 1 - abs(nose_position - 0.5) * 2
    return _clamp(score_x * 0.3 + score_y * 0.3 + rotation * 0.4)


def gaze_score(face: list[Point]) -> float:
    left_width = abs(face[LEFT_EYE_INNER][0] - face[LEFT_EYE_OUTER][0])
    right_width = abs(face[RIGHT_EYE_OUTER][0] - face[RIGHT_EYE_INNER][0])
    if left_width == 0 or right_width == 0:
        return 0.5
    left_center = (face[LEFT_EYE_OUTER][0] + face[LEFT_EYE_INNER][0]) / 2
    right_center = (face[RIGHT_EYE_INNER][0] + face[RIGHT_EYE_OUTER][0]) / 2
    symmetry = ((1 - abs(left_center - 0.5)) + (1 - abs(right_center - 0.5))) / 2
    return _clamp(symmetry * 2)


def eye_contact_score(face: list[Point]) -> int:
    """Head pose 50%, gaze 30%, eye openness 20%; closed eyes cap the score."""
    pose = head_pose_score(face)
    gaze = gaze_score(face)
    ear = average_ear(face)

    if ear > EYES_CLOSED_EAR:
        return _percent(pose * 0.5 + gaze * 0.3 + _clamp(ear / OPEN_EYE_EAR) * 0.2)

    raw = pose * 0.5 * 0.3 + gaze * 0.3 * 0.2
    return _percent(min(raw * (1 - EYES_CLOSED_PENALTY), EYES_CLOSED_CAP))


def engagement_score(face: list[Point]) -> int:
    """Face present 20%, eye openness 40%, head pose 40%."""
    eye_open = _clamp(average_ear(face) / OPEN_EYE_EAR)
    return _percent(0.2 + eye_open * 0.4 + head_pose_score(face) * 0.4)


def attention_score(face: list[Point], previous_head: Optional[Point]) -> int:
    """Engagement 70%, head steadiness since the last frame 30%."""
    if previous_head is None:
        steadiness = 0.5
    else:
        steadiness = _clamp(1 - _distance(face[NOSE_TIP], previous_head) / ATTENTION_MOVEMENT)
    return _percent(engagement_score(face) / 100 * 0.7 + steadiness * 0.3)


def stability_score(
    head: Optional[Point],
    previous_head: Optional[Point],
    hands: list[Point],
    previous_hands: list[Point],
) -> int:
    """Head movement 60%, hand movement 40%; no hands scores neutral."""
    if head is None:
        head_stability = 0.0
    elif previous_head is None:
        head_stability = 1.0
    else:
        head_stability = _clamp(1 - _distance(head, previous_head) / HEAD_MOVEMENT)

    if not hands:
        hand_stability = 0.5
    elif not previous_hands:
        hand_stability = 1.0
    else:
        pairs = list(zip(hands, previous_hands))
        movement = sum(_distance(a, b) for a, b in pairs) / len(pairs)
        hand_stability = _clamp(1 - movement / HAND_MOVEMENT)

    return _percent(head_stability * 0.6 + hand_stability * 0.4)


def detect_expression(
    face: list[Point],
    hands: list[list[Point]],
    previous_head: Optional[Point],
    hand_distance: float,
) -> tuple[Expression, int]:
    """
    Classify the frame as confident, nervous or distracted.

    Distraction wins over nervousness; confident when neither scores.

    Returns:
        (expression, confidence 0..100)
    """
    nose = face[NOSE_TIP]
    pose = head_pose_score(face)
    eyes_open = average_ear(face) > EYES_CLOSED_EAR

    distraction = 0
    if max(abs(nose[0] - 0.5), abs(nose[1] - 0.5)) > HEAD_AWAY_OFFSET:
        distraction += 50
    if pose < HEAD_POSE_AWAY:
        distraction += 30
    if pose < HEAD_POSE_POOR:
        distraction += 30
    if not eyes_open:
        distraction += 20

    nervous = 0
    if is_hand_near_face(face, hands, hand_distance):
        nervous += 50
    if nose[1] > HEAD_DOWN_Y:
        nervous += 35
    mouth = mouth_aspect_ratio(face)
    # Tight lips alone stay under the nervous threshold
    if mouth is not None and mouth < MOUTH_TIGHT_RATIO:
        nervous += 10
    if previous_head is not None and 0.02 < _distance(nose, previous_head) < HEAD_MOVEMENT:
        nervous += 12

    if distraction > DISTRACTED_SCORE:
        return Expression.DISTRACTED, min(distraction, 100)
    if nervous > NERVOUS_SCORE:
        return Expression.NERVOUS, min(nervous, 100)
    return Expression.CONFIDENT, _percent(pose * (1.0 if eyes_open else 0.5))


class BodyLanguageAnalyzer:
    """
    Per-session coaching aggregate.

    Every observed frame counts toward ``sample_count``; only frames with
    a face contribute to the averages and the dominant expression.

    Example:
        >>> analyzer = BodyLanguageAnalyzer()
        >>> analyzer.observe(landmarks)
        >>> analyzer.summary().dominant_expression
        <Expression.CONFIDENT: 'confident'>
    """

    def __init__(self, hand_near_face_distance: float = 0.15):
        self.hand_near_face_distance = hand_near_face_distance
        self._previous_head: Optional[Point] = None
        self._previous_hands: list[Point] = []
        self._history: list[BodyLanguageScores] = []

    @property
    def sample_count(self) -> int:
        return len(self._history)

    def reset(self) -> None:
        self._previous_head = None
        self._previous_hands = []
        self._history.clear()

    def observe(self, landmarks: Landmarks) -> BodyLanguageScores:
        if not landmarks.has_face:
            self._previous_head = None
            scores = BodyLanguageScores()
            self._history.append(scores)
            return scores

        face = landmarks.face
        head = face[NOSE_TIP]
        hands = [point for hand in landmarks.hands for point in hand]

        expression, confidence = detect_expression(
            face, landmarks.hands, self._previous_head, self.hand_near_face_distance
        )
        scores = BodyLanguageScores(
            eye_contact=eye_contact_score(face),
            engagement=engagement_score(face),
            attention=attention_score(face, self._previous_head),
            stability=stability_score(head, self._previous_head, hands, self._previous_hands),
            expression=expression,
            expression_confidence=confidence,
            face_detected=True,
        )

        self._previous_head = head
        self._previous_hands = hands
        self._history.append(scores)
        return scores

    def summary(self) -> BodyLanguageSummary:
        valid = [s for s in self._history if s.face_detected]
        if not valid:
            return BodyLanguageSummary(sample_count=len(self._history))

        def mean(values) -> int:
            return int(round(sum(values) / len(valid)))

        counts = Counter(s.expression for s in valid)
        # Ties go to the expression listed first
        dominant = max(Expression, key=lambda e: counts.get(e, 0))

        return BodyLanguageSummary(
            eye_contact=mean(s.eye_contact for s in valid),
            engagement=mean(s.engagement for s in valid),
            attention=mean(s.attention for s in valid),
            stability=mean(s.stability for s in valid),
            expression_confidence=mean(s.expression_confidence for s in valid),
            dominant_expression=dominant,
            sample_count=len(self._history),
        )
