from __future__ import annotations
"""
Rule Identifiers and Messages

Defines the proctoring rules, exit reasons, reported violation types and the
default candidate-facing messages a host may show for them.
"""

from enum import Enum
from dataclasses import dataclass


class RuleId(str, Enum):
    """Independent escalation rules owned by the rule engine."""
    IDENTITY_MISMATCH = "identity_mismatch"
    CAMERA_ABSENCE = "camera_absence"
    MULTIPLE_FACES = "multiple_faces"
    PROHIBITED_OBJECT = "prohibited_object"


class ExitReason(str, Enum):
    """Termination reasons surfaced to the host."""
    IDENTITY_MISMATCH = "IDENTITY_MISMATCH"
    CAMERA_OFF = "CAMERA_OFF"
    MULTIPLE_FACES = "MULTIPLE_FACES"
    PHONE_CHEATING = "PHONE_CHEATING"


class ViolationType(str, Enum):
    """Violation types understood by the reporting backend."""
    IDENTITY_MISMATCH = "IDENTITY_MISMATCH"
    CAMERA_OFF = "CAMERA_OFF"
    MULTIPLE_FACES = "MULTIPLE_FACES"
    PHONE_CHEATING = "PHONE_CHEATING"
    MOBILE_PHONE_DETECTED = "MOBILE_PHONE_DETECTED"


# Precedence when several rules become eligible for termination on one event
RULE_PRECEDENCE: tuple[RuleId, ...] = (
    RuleId.IDENTITY_MISMATCH,
    RuleId.PROHIBITED_OBJECT,
    RuleId.CAMERA_ABSENCE,
    RuleId.MULTIPLE_FACES,
)

EXIT_REASONS = {
    RuleId.IDENTITY_MISMATCH: ExitReason.IDENTITY_MISMATCH,
    RuleId.CAMERA_ABSENCE: ExitReason.CAMERA_OFF,
    RuleId.MULTIPLE_FACES: ExitReason.MULTIPLE_FACES,
    RuleId.PROHIBITED_OBJECT: ExitReason.PHONE_CHEATING,
}

ACTION_TERMINATED = "Session Terminated"
ACTION_FIRST_WARNING = "First Warning Issued"
ACTION_FINAL_WARNING = "Final Warning + Penalty Issued (10%)"
ACTION_STAGE_WARNING = "Warning Issued"


def exit_reason_for(rule_id: RuleId) -> ExitReason:
    """Map a terminating rule to its exit reason."""
    return EXIT_REASONS[rule_id]


def precedence_of(rule_id: RuleId) -> int:
    """Lower value wins when terminations compete."""
    return RULE_PRECEDENCE.index(rule_id)


@dataclass
class AlertMessage:
    """Candidate-facing message for each warning stage."""
    gentle: str
    serious: str
    final: str


WARNING_MESSAGES = {
    RuleId.CAMERA_ABSENCE: AlertMessage(
        gentle="We can't see you. Please make sure your camera is on and your face is visible.",
        serious="Final warning: the session will end if your camera stays off or you remain out of view.",
        final="Your camera has been off or you have been out of view for too long. The session has ended.",
    ),
    RuleId.MULTIPLE_FACES: AlertMessage(
        gentle="Multiple people detected. Please ensure you're alone in the room or the session will end.",
        serious="This interview requires you to be alone. Please ensure no one else is visible.",
        final="Multiple people remained visible. The session has ended.",
    ),
    RuleId.PROHIBITED_OBJECT: AlertMessage(
        gentle="A mobile phone was detected. Please put it away and focus on the interview.",
        serious="A mobile phone was detected again. A 10% score penalty has been applied.",
        final="A mobile phone was detected a third time. The session has ended.",
    ),
}

TERMINATION_MESSAGES = {
    ExitReason.IDENTITY_MISMATCH: "Security Protocol Violation: Unauthorized person detected. Session terminated.",
    ExitReason.CAMERA_OFF: "Security Protocol Violation: Camera connection lost or disabled. Session terminated.",
    ExitReason.MULTIPLE_FACES: "Security Protocol Violation: Multiple persons detected. Session terminated.",
    ExitReason.PHONE_CHEATING: "Security Protocol Violation: Mobile phone usage detected repeatedly. Session terminated.",
}


def get_warning_message(rule_id: RuleId, stage: int) -> str:
    """
    Get the warning message for a rule at a given stage.

    Args:
        rule_id: Rule that is warning
        stage: 1=gentle, 2=serious, 3+=final

    Returns:
        Message string
    """
    messages = WARNING_MESSAGES.get(rule_id)
    if not messages:
        return "Please maintain proper interview conduct."

    if stage <= 1:
        return messages.gentle
    elif stage == 2:
        return messages.serious
    else:
        return messages.final


def get_termination_message(reason: ExitReason) -> str:
    """Get the termination notice for an exit reason."""
    return TERMINATION_MESSAGES.get(reason, "Session terminated.")
