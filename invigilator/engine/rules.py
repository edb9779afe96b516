"""
Invigilator Engine - Rule engine

The session proctoring state machine. Four independent escalation rules are
reduced into one authoritative ``SessionProctorStatus``:

- identity mismatch: immediate termination
- camera/face absence: two timed warning stages, resettable
- multiple faces: one timed warning stage, resettable
- prohibited object: rising-edge strike counter, never resets

``reduce`` is pure: ``(state, event) -> Transition(state, effects)``.
``RuleEngine`` holds the current state and executes the effects
(timers, audit trail, termination hand-off).
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Callable, Optional, Union

from invigilator.cfg import RuleConfig
from invigilator.engine.countdown import RuleTimers
from invigilator.engine.results import (
    ActiveStatus,
    BehaviorSample,
    FrameSourceState,
    IdentityOutcome,
    IdentityResult,
    SessionProctorStatus,
    TerminatedStatus,
    ViolationRecord,
    WarningStatus,
)
from invigilator.utils.alerts import (
    ACTION_FINAL_WARNING,
    ACTION_FIRST_WARNING,
    ACTION_STAGE_WARNING,
    ACTION_TERMINATED,
    ExitReason,
    RuleId,
    exit_reason_for,
    precedence_of,
)
from invigilator.utils.logger import SessionLogger


# ============================================================================
# Events
# ============================================================================

Sample = Union[IdentityResult, BehaviorSample, FrameSourceState]


@dataclass(frozen=True)
class SampleReceived:
    """A sampler or liveness check produced a reading."""
    sample: Sample


@dataclass(frozen=True)
class TimerTick:
    """One second elapsed on a rule's countdown."""
    rule_id: RuleId


@dataclass(frozen=True)
class ConditionCleared:
    """A rule's triggering condition is known to be false."""
    rule_id: RuleId


@dataclass(frozen=True)
class ManualTerminate:
    """Host-requested termination."""
    rule_id: RuleId
    reason: Optional[ExitReason] = None


Event = Union[SampleReceived, TimerTick, ConditionCleared, ManualTerminate]


# ============================================================================
# Effects
# ============================================================================

@dataclass(frozen=True)
class StartTimer:
    rule_id: RuleId


@dataclass(frozen=True)
class CancelTimer:
    rule_id: RuleId


@dataclass(frozen=True)
class RecordViolation:
    record: ViolationRecord


@dataclass(frozen=True)
class Terminate:
    status: TerminatedStatus
    record: ViolationRecord


Effect = Union[StartTimer, CancelTimer, RecordViolation, Terminate]


# ============================================================================
# State
# ============================================================================

@dataclass(frozen=True)
class Countdown:
    """Progress of one timed rule. Stage 0 means idle."""
    stage: int = 0
    seconds_remaining: Optional[int] = None

    @property
    def running(self) -> bool:
        return self.stage > 0


@dataclass(frozen=True)
class EngineState:
    """Everything the rule engine knows between events."""
    absence: Countdown = field(default_factory=Countdown)
    multi_face: Countdown = field(default_factory=Countdown)

    # Conditions as last observed
    camera_off: bool = False
    no_face: bool = False
    multiple_faces: bool = False
    object_present: bool = False

    # Counters
    mismatch_count: int = 0
    object_strikes: int = 0
    object_warning_stage: int = 0

    terminated: Optional[TerminatedStatus] = None

    @property
    def absence_condition(self) -> bool:
        return self.camera_off or self.no_face

    def status(self) -> SessionProctorStatus:
        """Authoritative status, most urgent warning first."""
        if self.terminated is not None:
            return self.terminated

        warnings: list[WarningStatus] = []
        if self.object_warning_stage > 0:
            warnings.append(WarningStatus(RuleId.PROHIBITED_OBJECT, self.object_warning_stage))
        if self.absence.running:
            warnings.append(WarningStatus(RuleId.CAMERA_ABSENCE, self.absence.stage, self.absence.seconds_remaining))
        if self.multi_face.running:
            warnings.append(WarningStatus(RuleId.MULTIPLE_FACES, self.multi_face.stage, self.multi_face.seconds_remaining))

        if not warnings:
            return ActiveStatus()
        return min(warnings, key=lambda w: precedence_of(w.rule_id))


@dataclass(frozen=True)
class Transition:
    state: EngineState
    effects: tuple[Effect, ...] = ()


# ============================================================================
# Reducer
# ============================================================================

class _Draft:
    """Mutable scratchpad for building one transition."""

    def __init__(self, state: EngineState, cfg: RuleConfig):
        self.state = state
        self.cfg = cfg
        self.effects: list[Effect] = []
        self.candidates: list[tuple[RuleId, int, Optional[ExitReason]]] = []

    def update(self, **changes) -> None:
        self.state = replace(self.state, **changes)

    def record(self, rule_id: RuleId, stage: int, action: str) -> None:
        self.effects.append(RecordViolation(ViolationRecord(rule_id=rule_id, stage=stage, action=action)))

    def terminate_with(self, rule_id: RuleId, stage: int, reason: Optional[ExitReason] = None) -> None:
        self.candidates.append((rule_id, stage, reason))

    def grace(self, rule_id: RuleId) -> int:
        if rule_id is RuleId.CAMERA_ABSENCE:
            return self.cfg.absence_stage_seconds
        return self.cfg.multi_face_seconds

    def stages(self, rule_id: RuleId) -> int:
        if rule_id is RuleId.CAMERA_ABSENCE:
            return self.cfg.absence_stages
        return 1

    def countdown(self, rule_id: RuleId) -> Countdown:
        if rule_id is RuleId.CAMERA_ABSENCE:
            return self.state.absence
        return self.state.multi_face

    def set_countdown(self, rule_id: RuleId, countdown: Countdown) -> None:
        if rule_id is RuleId.CAMERA_ABSENCE:
            self.update(absence=countdown)
        else:
            self.update(multi_face=countdown)

    def condition(self, rule_id: RuleId) -> bool:
        if rule_id is RuleId.CAMERA_ABSENCE:
            return self.state.absence_condition
        return self.state.multiple_faces

    def sync(self, rule_id: RuleId) -> None:
        """Enter stage 1 on a raised condition, reset on a cleared one."""
        countdown = self.countdown(rule_id)
        if self.condition(rule_id) and not countdown.running:
            self.set_countdown(rule_id, Countdown(stage=1, seconds_remaining=self.grace(rule_id)))
            self.effects.append(StartTimer(rule_id))
            self.record(rule_id, 1, ACTION_STAGE_WARNING)
        elif not self.condition(rule_id) and countdown.running:
            self.reset(rule_id)

    def reset(self, rule_id: RuleId) -> None:
        self.set_countdown(rule_id, Countdown())
        self.effects.append(CancelTimer(rule_id))

    def finish(self) -> Transition:
        if self.candidates and self.state.terminated is None:
            rule_id, stage, reason = min(self.candidates, key=lambda c: precedence_of(c[0]))
            status = TerminatedStatus(rule_id=rule_id, reason=reason or exit_reason_for(rule_id))
            record = ViolationRecord(rule_id=rule_id, stage=stage, action=ACTION_TERMINATED, terminal=True)

            for timed in (RuleId.CAMERA_ABSENCE, RuleId.MULTIPLE_FACES):
                if self.countdown(timed).running:
                    self.effects.append(CancelTimer(timed))
            self.update(terminated=status)
            self.effects.append(Terminate(status=status, record=record))

        return Transition(state=self.state, effects=tuple(self.effects))


def _apply_liveness(draft: _Draft, liveness: FrameSourceState) -> None:
    if liveness.is_live:
        draft.update(camera_off=False)
    else:
        # Nothing can be observed without a stream
        draft.update(camera_off=True, multiple_faces=False)


def _apply_identity(draft: _Draft, result: IdentityResult) -> None:
    outcome = result.outcome

    if outcome is IdentityOutcome.TRANSIENT_ERROR:
        return
    if outcome is IdentityOutcome.SOURCE_UNAVAILABLE:
        draft.update(camera_off=True, multiple_faces=False)
        return

    # Every other outcome means a live frame was analyzed
    draft.update(
        camera_off=False,
        no_face=outcome is IdentityOutcome.NO_FACE,
        multiple_faces=outcome is IdentityOutcome.MULTI_FACE,
    )

    if outcome in (IdentityOutcome.MATCH, IdentityOutcome.MISMATCH):
        draft.update(mismatch_count=result.mismatch_count)

    if outcome is IdentityOutcome.MISMATCH:
        draft.terminate_with(RuleId.IDENTITY_MISMATCH, stage=max(result.mismatch_count, 1))


def _apply_behavior(draft: _Draft, sample: BehaviorSample) -> None:
    detected = sample.object_detected
    previously = draft.state.object_present

    if detected and not previously:
        strikes = draft.state.object_strikes + 1
        draft.update(object_strikes=strikes)

        if strikes >= draft.cfg.object_strike_limit:
            draft.terminate_with(RuleId.PROHIBITED_OBJECT, stage=strikes)
        else:
            draft.update(object_warning_stage=strikes)
            action = ACTION_FIRST_WARNING if strikes == 1 else ACTION_FINAL_WARNING
            draft.record(RuleId.PROHIBITED_OBJECT, strikes, action)
    elif not detected and previously:
        # Banner clears, strikes stay
        draft.update(object_warning_stage=0)

    draft.update(object_present=detected)


def _apply_tick(draft: _Draft, rule_id: RuleId) -> None:
    if rule_id not in (RuleId.CAMERA_ABSENCE, RuleId.MULTIPLE_FACES):
        return

    countdown = draft.countdown(rule_id)
    if not countdown.running:
        return
    if not draft.condition(rule_id):
        draft.reset(rule_id)
        return

    remaining = (countdown.seconds_remaining or 0) - 1
    if remaining > 0:
        draft.set_countdown(rule_id, replace(countdown, seconds_remaining=remaining))
        return

    if countdown.stage < draft.stages(rule_id):
        next_stage = countdown.stage + 1
        draft.set_countdown(rule_id, Countdown(stage=next_stage, seconds_remaining=draft.grace(rule_id)))
        draft.record(rule_id, next_stage, ACTION_STAGE_WARNING)
    else:
        draft.set_countdown(rule_id, replace(countdown, seconds_remaining=0))
        draft.terminate_with(rule_id, stage=countdown.stage)


def _apply_cleared(draft: _Draft, rule_id: RuleId) -> None:
    if rule_id is RuleId.CAMERA_ABSENCE:
        draft.update(camera_off=False, no_face=False)
    elif rule_id is RuleId.MULTIPLE_FACES:
        draft.update(multiple_faces=False)
    elif rule_id is RuleId.PROHIBITED_OBJECT:
        draft.update(object_present=False, object_warning_stage=0)


def reduce(state: EngineState, event: Event, cfg: Optional[RuleConfig] = None) -> Transition:
    """
    Apply one event to the engine state.

    Args:
        state: Current state
        event: Event to apply
        cfg: Escalation ladder configuration

    Returns:
        New state and the effects the driver must execute
    """
    if state.terminated is not None:
        return Transition(state=state)

    draft = _Draft(state, cfg or RuleConfig())

    if isinstance(event, SampleReceived):
        sample = event.sample
        if isinstance(sample, FrameSourceState):
            _apply_liveness(draft, sample)
        elif isinstance(sample, IdentityResult):
            _apply_identity(draft, sample)
        elif isinstance(sample, BehaviorSample):
            _apply_behavior(draft, sample)
        draft.sync(RuleId.CAMERA_ABSENCE)
        draft.sync(RuleId.MULTIPLE_FACES)
    elif isinstance(event, TimerTick):
        _apply_tick(draft, event.rule_id)
    elif isinstance(event, ConditionCleared):
        _apply_cleared(draft, event.rule_id)
        draft.sync(RuleId.CAMERA_ABSENCE)
        draft.sync(RuleId.MULTIPLE_FACES)
    elif isinstance(event, ManualTerminate):
        draft.terminate_with(event.rule_id, stage=0, reason=event.reason)

    return draft.finish()


# ============================================================================
# Driver
# ============================================================================

class RuleEngine:
    """
    Holds the engine state and executes reducer effects.

    The termination callback fires at most once per engine, no matter how
    many rules expire.

    Example:
        >>> engine = RuleEngine(on_terminate=coordinator_hook)
        >>> engine.dispatch(SampleReceived(identity_result))
        >>> engine.status
        WarningStatus(rule_id=<RuleId.CAMERA_ABSENCE: 'camera_absence'>, stage=1, seconds_remaining=10)
    """

    def __init__(
        self,
        cfg: Optional[RuleConfig] = None,
        timers: Optional[RuleTimers] = None,
        on_violation: Optional[Callable[[ViolationRecord], None]] = None,
        on_terminate: Optional[Callable[[TerminatedStatus, ViolationRecord], None]] = None,
        on_status: Optional[Callable[[SessionProctorStatus], None]] = None,
        session_id: Optional[str] = None,
    ):
        self.cfg = cfg or RuleConfig()
        self.timers = timers or RuleTimers(tick_seconds=self.cfg.tick_seconds)
        self.on_violation = on_violation
        self.on_terminate = on_terminate
        self.on_status = on_status
        self.log = SessionLogger(session_id)

        self.state = EngineState()
        self.records: list[ViolationRecord] = []
        self._termination_fired = False
        self._closed = False

    @property
    def status(self) -> SessionProctorStatus:
        return self.state.status()

    @property
    def terminated(self) -> bool:
        return self.state.terminated is not None

    @property
    def closed(self) -> bool:
        return self._closed

    def dispatch(self, event: Event) -> SessionProctorStatus:
        """Apply an event and run its effects. Discarded once closed or terminated."""
        if self._closed or self.terminated:
            return self.status

        previous = self.status
        transition = reduce(self.state, event, self.cfg)
        self.state = transition.state

        for effect in transition.effects:
            self._execute(effect)

        current = self.status
        if current != previous:
            self.log.log_transition(previous.state, current.state, _describe(current))
            if self.on_status:
                self.on_status(current)
        return current

    def _execute(self, effect: Effect) -> None:
        if isinstance(effect, StartTimer):
            rule_id = effect.rule_id
            self.timers.start(rule_id, lambda: self.dispatch(TimerTick(rule_id)))
        elif isinstance(effect, CancelTimer):
            self.timers.cancel(effect.rule_id)
        elif isinstance(effect, RecordViolation):
            self._append(effect.record)
        elif isinstance(effect, Terminate):
            if self._termination_fired:
                return
            self._termination_fired = True
            self.timers.cancel_all()
            self._append(effect.record)
            if self.on_terminate:
                self.on_terminate(effect.status, effect.record)

    def _append(self, record: ViolationRecord) -> None:
        self.records.append(record)
        self.log.log_violation(record.rule_id.value, record.stage, record.action)
        if self.on_violation:
            self.on_violation(record)

    def close(self) -> None:
        """Stop evaluating and cancel every countdown. Safe to call repeatedly."""
        self._closed = True
        self.timers.cancel_all()


def _describe(status: SessionProctorStatus) -> str:
    if isinstance(status, WarningStatus):
        return f"({status.rule_id.value} stage={status.stage} remaining={status.seconds_remaining})"
    if isinstance(status, TerminatedStatus):
        return f"({status.reason.value})"
    return ""
