"""
Invigilator Engine - Result Classes

Data classes for samples, violation records and the session status.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Union

from invigilator.utils.alerts import ExitReason, RuleId


def _utcnow() -> datetime:
    return datetime.utcnow()


@dataclass(frozen=True)
class FrameSourceState:
    """
    Liveness snapshot of the camera stream.

    Recomputed on every liveness check; never cached across checks.
    """
    has_stream: bool = False
    track_enabled: bool = False
    track_muted: bool = False
    track_ended: bool = False

    @property
    def is_live(self) -> bool:
        return (
            self.has_stream
            and self.track_enabled
            and not self.track_muted
            and not self.track_ended
        )

    def to_dict(self) -> dict:
        return {
            "has_stream": self.has_stream,
            "track_enabled": self.track_enabled,
            "track_muted": self.track_muted,
            "track_ended": self.track_ended,
            "is_live": self.is_live,
        }


class IdentityOutcome(str, Enum):
    """Classification of one identity sample."""
    MATCH = "match"
    PAUSED = "paused"
    MISMATCH = "mismatch"
    NO_FACE = "no_face"
    MULTI_FACE = "multi_face"
    SOURCE_UNAVAILABLE = "source_unavailable"
    TRANSIENT_ERROR = "transient_error"


@dataclass
class IdentitySample:
    """
    Raw identity observation.

    Attributes:
        faces_detected: Number of faces in the frame
        matched_registered_identity: Comparison result, None while paused
        captured_at: When the frame was sampled
    """
    faces_detected: int = 0
    matched_registered_identity: Optional[bool] = None
    captured_at: datetime = field(default_factory=_utcnow)


@dataclass
class IdentityResult:
    """Outcome of one identity tick as handed to the rule engine."""
    outcome: IdentityOutcome
    sample: Optional[IdentitySample] = None
    mismatch_count: int = 0
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "outcome": self.outcome.value,
            "faces_detected": self.sample.faces_detected if self.sample else None,
            "matched": self.sample.matched_registered_identity if self.sample else None,
            "mismatch_count": self.mismatch_count,
            "error": self.error,
        }


class BehaviorStatus(str, Enum):
    """Derived candidate state."""
    FOCUSED = "Focused"
    DISTRACTED = "Distracted"
    SUSPICIOUS = "Suspicious"


@dataclass
class BehaviorSample:
    """
    Behavior observation for one tick.

    Attributes:
        gaze_down_seconds: Continuous gaze-down duration
        head_pitch_down: Head pitched down over the sustained window
        hand_near_face: Hand near face over the sustained window
        face_out_of_frame: Face touching the frame margin
        object_detected: Prohibited object present (separate detector)
        composite_behavior_score: 0..100
    """
    gaze_down_seconds: float = 0.0
    head_pitch_down: bool = False
    hand_near_face: bool = False
    face_out_of_frame: bool = False
    object_detected: bool = False
    composite_behavior_score: int = 0
    status: BehaviorStatus = BehaviorStatus.FOCUSED
    captured_at: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict:
        return {
            "gaze_down_seconds": self.gaze_down_seconds,
            "head_pitch_down": self.head_pitch_down,
            "hand_near_face": self.hand_near_face,
            "face_out_of_frame": self.face_out_of_frame,
            "object_detected": self.object_detected,
            "composite_behavior_score": self.composite_behavior_score,
            "status": self.status.value,
        }


@dataclass(frozen=True)
class ViolationRecord:
    """
    One escalation stage transition. Append-only; never mutated.

    Attributes:
        rule_id: Rule that escalated
        stage: Stage entered (strike number for the object rule)
        action: Action taken, as reported to the backend
        reported_at: When the transition was committed
        evidence_frame: JPEG bytes, attached by the termination coordinator
        terminal: Whether this transition terminated the session
    """
    rule_id: RuleId
    stage: int
    action: str
    reported_at: datetime = field(default_factory=_utcnow)
    evidence_frame: Optional[bytes] = None
    terminal: bool = False

    def to_dict(self) -> dict:
        return {
            "rule_id": self.rule_id.value,
            "stage": self.stage,
            "action": self.action,
            "reported_at": self.reported_at.isoformat(),
            "has_evidence": self.evidence_frame is not None,
            "terminal": self.terminal,
        }


@dataclass(frozen=True)
class ActiveStatus:
    """No rule is warning."""

    @property
    def state(self) -> str:
        return "active"

    def to_dict(self) -> dict:
        return {"state": self.state}


@dataclass(frozen=True)
class WarningStatus:
    """A rule is escalating. ``seconds_remaining`` is None for count-based rules."""
    rule_id: RuleId
    stage: int
    seconds_remaining: Optional[int] = None

    @property
    def state(self) -> str:
        return "warning"

    def to_dict(self) -> dict:
        return {
            "state": self.state,
            "rule_id": self.rule_id.value,
            "stage": self.stage,
            "seconds_remaining": self.seconds_remaining,
        }


@dataclass(frozen=True)
class TerminatedStatus:
    """Absorbing state."""
    rule_id: RuleId
    reason: ExitReason

    @property
    def state(self) -> str:
        return "terminated"

    def to_dict(self) -> dict:
        return {
            "state": self.state,
            "rule_id": self.rule_id.value,
            "reason": self.reason.value,
        }


SessionProctorStatus = Union[ActiveStatus, WarningStatus, TerminatedStatus]
