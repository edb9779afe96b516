"""
Invigilator Engine - Rule engine, countdowns, termination and result types.
"""

from invigilator.engine.results import (
    FrameSourceState,
    IdentityOutcome,
    IdentitySample,
    IdentityResult,
    BehaviorStatus,
    BehaviorSample,
    ViolationRecord,
    ActiveStatus,
    WarningStatus,
    TerminatedStatus,
    SessionProctorStatus,
)
from invigilator.engine.countdown import RuleTimers
from invigilator.engine.rules import (
    RuleEngine,
    EngineState,
    Transition,
    SampleReceived,
    TimerTick,
    ConditionCleared,
    ManualTerminate,
    reduce,
)
from invigilator.engine.termination import TerminationCoordinator

__all__ = [
    # Results
    "FrameSourceState",
    "IdentityOutcome",
    "IdentitySample",
    "IdentityResult",
    "BehaviorStatus",
    "BehaviorSample",
    "ViolationRecord",
    "ActiveStatus",
    "WarningStatus",
    "TerminatedStatus",
    "SessionProctorStatus",
    # Rule engine
    "RuleTimers",
    "RuleEngine",
    "EngineState",
    "Transition",
    "SampleReceived",
    "TimerTick",
    "ConditionCleared",
    "ManualTerminate",
    "reduce",
    # Termination
    "TerminationCoordinator",
]
