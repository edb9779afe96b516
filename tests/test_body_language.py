"""Coaching scores and the per-session body-language aggregate."""

import pytest

from invigilator.models.body_language import (
    BodyLanguageAnalyzer,
    Expression,
    average_ear,
    backend_expression,
    detect_expression,
    eye_contact_score,
    engagement_score,
    head_pose_score,
    stability_score,
)
from invigilator.models.mediapipe import Landmarks

from conftest import face_points, hand_at


OPEN_EYES = dict(
    i159=(0.45, 0.41, 0.0), i145=(0.45, 0.43, 0.0), i33=(0.41, 0.42, 0.0), i133=(0.49, 0.42, 0.0),
    i386=(0.55, 0.41, 0.0), i374=(0.55, 0.43, 0.0), i362=(0.51, 0.42, 0.0), i263=(0.59, 0.42, 0.0),
)
TURNED = dict(OPEN_EYES, i4=(0.68, 0.5, 0.0))
HEAD_DOWN = dict(OPEN_EYES, i4=(0.5, 0.55, 0.0))


def looking(**overrides) -> Landmarks:
    return Landmarks(face=face_points(**dict(OPEN_EYES, **overrides)))


# ============================================================================
# Frame scores
# ============================================================================

def test_centered_face_with_open_eyes_scores_full_marks():
    face = face_points(**OPEN_EYES)
    assert head_pose_score(face) == pytest.approx(1.0)
    assert average_ear(face) == pytest.approx(0.25)
    assert eye_contact_score(face) == 100
    assert engagement_score(face) == 100


def test_closed_eyes_cap_eye_contact():
    face = face_points()
    assert average_ear(face) == 0.0
    assert eye_contact_score(face) < 15
    assert engagement_score(face) == 60


def test_turned_head_lowers_pose():
    assert head_pose_score(face_points(**TURNED)) == pytest.approx(0.46)


def test_stability_from_head_and_hand_movement():
    head = (0.5, 0.5, 0.0)
    assert stability_score(None, None, [], []) == 20
    assert stability_score(head, None, [], []) == 80
    assert stability_score(head, (0.55, 0.5, 0.0), [], []) == 50
    assert stability_score(head, None, [(0.0, 0.0, 0.0)], [(0.15, 0.0, 0.0)]) == 60


# ============================================================================
# Expression
# ============================================================================

def test_steady_centered_face_is_confident():
    assert detect_expression(face_points(**OPEN_EYES), [], None, 0.15) == (Expression.CONFIDENT, 100)


def test_turned_head_is_distracted():
    assert detect_expression(face_points(**TURNED), [], None, 0.15) == (Expression.DISTRACTED, 30)


def test_hand_on_face_is_nervous():
    face = face_points(**OPEN_EYES)
    assert detect_expression(face, [hand_at(0.5, 0.55)], None, 0.15) == (Expression.NERVOUS, 50)


def test_head_down_is_nervous():
    assert detect_expression(face_points(**HEAD_DOWN), [], None, 0.15) == (Expression.NERVOUS, 35)


def test_distraction_outranks_nervousness():
    face = face_points(**TURNED)
    expression, _ = detect_expression(face, [hand_at(0.68, 0.55)], None, 0.15)
    assert expression is Expression.DISTRACTED


def test_closed_eyes_alone_stay_confident_at_half_confidence():
    assert detect_expression(face_points(), [], None, 0.15) == (Expression.CONFIDENT, 50)


def test_backend_expression_mapping():
    assert backend_expression(Expression.CONFIDENT) == "happy"
    assert backend_expression(Expression.NERVOUS) == "nervous"
    assert backend_expression(Expression.DISTRACTED) == "sad"
    assert backend_expression(None) == "neutral"


# ============================================================================
# Aggregate
# ============================================================================

def test_attention_rewards_a_steady_head():
    analyzer = BodyLanguageAnalyzer()
    assert analyzer.observe(looking()).attention == 85
    assert analyzer.observe(looking()).attention == 100


def test_summary_averages_face_frames_and_counts_every_frame():
    analyzer = BodyLanguageAnalyzer()
    analyzer.observe(looking())
    analyzer.observe(looking())
    analyzer.observe(Landmarks(face=face_points(**OPEN_EYES), hands=[hand_at(0.5, 0.55)]))
    analyzer.observe(Landmarks())

    summary = analyzer.summary()

    assert summary.sample_count == 4
    assert summary.eye_contact == 100
    assert summary.engagement == 100
    assert summary.attention == 95
    assert summary.stability == 87
    assert summary.expression_confidence == 83
    assert summary.dominant_expression is Expression.CONFIDENT


def test_summary_without_a_face():
    analyzer = BodyLanguageAnalyzer()
    analyzer.observe(Landmarks())

    summary = analyzer.summary()

    assert summary.sample_count == 1
    assert summary.dominant_expression is None
    assert summary.eye_contact == 0
    assert summary.to_payload("sess-1", 0)["dominantExpression"] == "neutral"


def test_dominant_expression_tie_goes_to_listing_order():
    analyzer = BodyLanguageAnalyzer()
    analyzer.observe(Landmarks(face=face_points(**TURNED)))
    analyzer.observe(Landmarks(face=face_points(**OPEN_EYES), hands=[hand_at(0.5, 0.55)]))

    assert analyzer.summary().dominant_expression is Expression.NERVOUS


def test_payload_uses_backend_vocabulary():
    analyzer = BodyLanguageAnalyzer()
    analyzer.observe(looking())

    payload = analyzer.summary().to_payload("sess-1", 1700000000000)

    assert payload == {
        "sessionId": "sess-1",
        "eyeContact": 100,
        "engagement": 100,
        "attention": 85,
        "stability": 80,
        "expression": "happy",
        "expressionConfidence": 100,
        "dominantExpression": "happy",
        "sampleCount": 1,
        "timestamp": 1700000000000,
    }


def test_reset_forgets_history():
    analyzer = BodyLanguageAnalyzer()
    analyzer.observe(looking())
    analyzer.reset()

    assert analyzer.sample_count == 0
    assert analyzer.observe(looking()).attention == 85
