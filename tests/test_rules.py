"""Escalation ladders, precedence and the fire-once termination guard."""

from __future__ import annotations

import asyncio
from dataclasses import replace

import pytest

from invigilator.cfg import RuleConfig
from invigilator.engine.results import (
    ActiveStatus,
    BehaviorSample,
    FrameSourceState,
    IdentityOutcome,
    IdentityResult,
    TerminatedStatus,
    WarningStatus,
)
from invigilator.engine.rules import (
    CancelTimer,
    ConditionCleared,
    EngineState,
    ManualTerminate,
    RecordViolation,
    RuleEngine,
    SampleReceived,
    StartTimer,
    Terminate,
    TimerTick,
    reduce,
)
from invigilator.utils.alerts import (
    ACTION_FINAL_WARNING,
    ACTION_FIRST_WARNING,
    ACTION_TERMINATED,
    ExitReason,
    RuleId,
    precedence_of,
)

LIVE = FrameSourceState(has_stream=True, track_enabled=True)
DEAD = FrameSourceState()


def identity(outcome: IdentityOutcome, mismatch_count: int = 0) -> SampleReceived:
    return SampleReceived(IdentityResult(outcome=outcome, mismatch_count=mismatch_count))


def behavior(object_detected: bool) -> SampleReceived:
    return SampleReceived(BehaviorSample(object_detected=object_detected))


def run(events, cfg=None, state=None):
    """Fold events through the reducer, collecting every effect."""
    state = state or EngineState()
    effects = []
    for event in events:
        transition = reduce(state, event, cfg)
        state = transition.state
        effects.extend(transition.effects)
    return state, effects


def terminations(effects):
    return [e for e in effects if isinstance(e, Terminate)]


def records(effects):
    return [e.record for e in effects if isinstance(e, RecordViolation)]


class FakeTimers:
    def __init__(self):
        self.started = []
        self.cancelled = []

    def start(self, rule_id, on_tick):
        self.started.append(rule_id)

    def cancel(self, rule_id):
        self.cancelled.append(rule_id)

    def cancel_all(self):
        self.cancelled.append("all")


# ============================================================================
# Identity mismatch
# ============================================================================

def test_mismatch_terminates_immediately():
    state, effects = run([identity(IdentityOutcome.MISMATCH, mismatch_count=1)])

    assert state.terminated == TerminatedStatus(RuleId.IDENTITY_MISMATCH, ExitReason.IDENTITY_MISMATCH)
    (terminate,) = terminations(effects)
    assert terminate.record.terminal
    assert terminate.record.action == ACTION_TERMINATED


def test_match_and_pause_never_terminate():
    state, effects = run([
        identity(IdentityOutcome.MATCH),
        identity(IdentityOutcome.PAUSED),
        identity(IdentityOutcome.MATCH),
    ])
    assert state.terminated is None
    assert state.status() == ActiveStatus()
    assert not terminations(effects)


def test_transient_error_changes_nothing():
    state, effects = run([identity(IdentityOutcome.TRANSIENT_ERROR)])
    assert state == EngineState()
    assert effects == []


# ============================================================================
# Camera / face absence
# ============================================================================

def test_absence_enters_stage_one_with_full_grace():
    cfg = RuleConfig(absence_stage_seconds=10)
    state, effects = run([SampleReceived(DEAD)], cfg)

    assert state.status() == WarningStatus(RuleId.CAMERA_ABSENCE, 1, 10)
    assert StartTimer(RuleId.CAMERA_ABSENCE) in effects
    assert [r.stage for r in records(effects)] == [1]


def test_absence_ladder_terminates_after_two_stages():
    cfg = RuleConfig(absence_stage_seconds=2)
    tick = TimerTick(RuleId.CAMERA_ABSENCE)

    state, effects = run([SampleReceived(DEAD), tick, tick], cfg)
    assert state.status() == WarningStatus(RuleId.CAMERA_ABSENCE, 2, 2)
    assert [r.stage for r in records(effects)] == [1, 2]

    state, effects = run([tick, tick], cfg, state)
    assert state.terminated.reason is ExitReason.CAMERA_OFF
    assert len(terminations(effects)) == 1


def test_no_face_counts_as_absence():
    state, _ = run([SampleReceived(LIVE), identity(IdentityOutcome.NO_FACE)])
    assert state.status().rule_id is RuleId.CAMERA_ABSENCE


def test_source_unavailable_counts_as_absence():
    state, _ = run([identity(IdentityOutcome.SOURCE_UNAVAILABLE)])
    assert state.camera_off
    assert state.absence.running


def test_absence_resets_on_clear_and_restarts_at_stage_one():
    cfg = RuleConfig(absence_stage_seconds=2)
    tick = TimerTick(RuleId.CAMERA_ABSENCE)

    state, _ = run([SampleReceived(DEAD), tick, tick, tick], cfg)
    assert state.absence.stage == 2

    state, effects = run([SampleReceived(LIVE)], cfg, state)
    assert not state.absence.running
    assert CancelTimer(RuleId.CAMERA_ABSENCE) in effects
    assert state.status() == ActiveStatus()

    state, _ = run([SampleReceived(DEAD)], cfg, state)
    assert state.status() == WarningStatus(RuleId.CAMERA_ABSENCE, 1, 2)


def test_absence_nine_seconds_then_clear_does_not_advance():
    tick = TimerTick(RuleId.CAMERA_ABSENCE)

    state, effects = run([SampleReceived(DEAD)] + [tick] * 9)
    assert state.status() == WarningStatus(RuleId.CAMERA_ABSENCE, 1, 1)

    state, cleared = run([SampleReceived(LIVE)], state=state)
    assert state.status() == ActiveStatus()
    assert [r.stage for r in records(effects + cleared)] == [1]


def test_absence_ten_continuous_seconds_advances_a_stage():
    tick = TimerTick(RuleId.CAMERA_ABSENCE)

    state, effects = run([SampleReceived(DEAD)] + [tick] * 10)

    assert state.status() == WarningStatus(RuleId.CAMERA_ABSENCE, 2, 10)
    assert [r.stage for r in records(effects)] == [1, 2]


def test_tick_after_condition_cleared_resets_instead_of_escalating():
    cfg = RuleConfig(absence_stage_seconds=1)
    state, _ = run([SampleReceived(DEAD)], cfg)
    # Condition flips without a sync, as if a stale tick raced the clear
    state = replace(state, camera_off=False)

    state, effects = run([TimerTick(RuleId.CAMERA_ABSENCE)], cfg, state)
    assert not state.absence.running
    assert not terminations(effects)


# ============================================================================
# Multiple faces
# ============================================================================

def test_multiple_faces_terminates_after_grace():
    cfg = RuleConfig(multi_face_seconds=5)
    tick = TimerTick(RuleId.MULTIPLE_FACES)

    state, _ = run([identity(IdentityOutcome.MULTI_FACE)] + [tick] * 4, cfg)
    assert state.status() == WarningStatus(RuleId.MULTIPLE_FACES, 1, 1)

    state, effects = run([tick], cfg, state)
    assert state.terminated.reason is ExitReason.MULTIPLE_FACES
    assert terminations(effects)[0].record.stage == 1


def test_multiple_faces_resets_when_one_face_returns():
    cfg = RuleConfig(multi_face_seconds=5)
    tick = TimerTick(RuleId.MULTIPLE_FACES)

    state, _ = run([identity(IdentityOutcome.MULTI_FACE), tick, tick, tick], cfg)
    state, _ = run([identity(IdentityOutcome.MATCH)], cfg, state)
    assert not state.multi_face.running

    state, _ = run([identity(IdentityOutcome.MULTI_FACE)], cfg, state)
    assert state.status() == WarningStatus(RuleId.MULTIPLE_FACES, 1, 5)


def test_lost_stream_clears_multiple_faces():
    state, effects = run([identity(IdentityOutcome.MULTI_FACE), SampleReceived(DEAD)])
    assert not state.multi_face.running
    assert CancelTimer(RuleId.MULTIPLE_FACES) in effects
    assert state.absence.running


# ============================================================================
# Prohibited object
# ============================================================================

def test_object_strikes_count_rising_edges_only():
    state, effects = run([behavior(True), behavior(True), behavior(True)])
    assert state.object_strikes == 1
    assert [r.action for r in records(effects)] == [ACTION_FIRST_WARNING]


def test_object_strikes_land_on_rising_edges_of_a_sequence():
    state = EngineState()
    struck_at = []
    for index, detected in enumerate([False, True, True, True, False, True]):
        before = state.object_strikes
        state, _ = run([behavior(detected)], state=state)
        if state.object_strikes > before:
            struck_at.append(index)

    assert state.object_strikes == 2
    assert struck_at == [1, 5]


def test_object_third_strike_terminates():
    state, effects = run([
        behavior(True), behavior(False),
        behavior(True), behavior(False),
        behavior(True),
    ])
    assert [r.action for r in records(effects)] == [ACTION_FIRST_WARNING, ACTION_FINAL_WARNING]
    assert state.object_strikes == 3
    assert state.terminated.reason is ExitReason.PHONE_CHEATING
    assert terminations(effects)[0].record.stage == 3


def test_object_strikes_never_reset():
    state, _ = run([behavior(True), behavior(False), ConditionCleared(RuleId.PROHIBITED_OBJECT)])
    assert state.object_strikes == 1
    assert state.status() == ActiveStatus()

    state, _ = run([behavior(True)], state=state)
    assert state.object_strikes == 2
    assert state.status() == WarningStatus(RuleId.PROHIBITED_OBJECT, 2)


def test_object_warning_clears_when_object_leaves():
    state, _ = run([behavior(True)])
    assert state.status() == WarningStatus(RuleId.PROHIBITED_OBJECT, 1)
    state, _ = run([behavior(False)], state=state)
    assert state.status() == ActiveStatus()


# ============================================================================
# Precedence and absorption
# ============================================================================

def test_precedence_order():
    ordered = sorted(RuleId, key=precedence_of)
    assert ordered == [
        RuleId.IDENTITY_MISMATCH,
        RuleId.PROHIBITED_OBJECT,
        RuleId.CAMERA_ABSENCE,
        RuleId.MULTIPLE_FACES,
    ]


def test_object_warning_outranks_absence_warning():
    state, _ = run([SampleReceived(DEAD), behavior(True)])
    assert state.absence.running
    assert state.status().rule_id is RuleId.PROHIBITED_OBJECT


def test_terminated_state_is_absorbing():
    state, _ = run([identity(IdentityOutcome.MISMATCH, 1)])
    for event in (
        SampleReceived(DEAD),
        behavior(True),
        TimerTick(RuleId.CAMERA_ABSENCE),
        ManualTerminate(RuleId.MULTIPLE_FACES),
    ):
        transition = reduce(state, event)
        assert transition.state is state
        assert transition.effects == ()


def test_termination_cancels_running_countdowns():
    state, effects = run([SampleReceived(DEAD), identity(IdentityOutcome.MISMATCH, 1)])
    # The mismatch sample also reports a live frame, which clears absence first
    assert state.terminated.rule_id is RuleId.IDENTITY_MISMATCH
    assert CancelTimer(RuleId.CAMERA_ABSENCE) in effects
    assert len(terminations(effects)) == 1


def test_manual_terminate_uses_given_reason():
    state, effects = run([ManualTerminate(RuleId.CAMERA_ABSENCE, ExitReason.PHONE_CHEATING)])
    assert state.terminated == TerminatedStatus(RuleId.CAMERA_ABSENCE, ExitReason.PHONE_CHEATING)
    assert terminations(effects)[0].record.stage == 0


# ============================================================================
# Driver
# ============================================================================

def test_engine_fires_terminate_once():
    fired = []
    engine = RuleEngine(timers=FakeTimers(), on_terminate=lambda status, record: fired.append(status))

    engine.dispatch(identity(IdentityOutcome.MISMATCH, 1))
    engine.dispatch(identity(IdentityOutcome.MISMATCH, 2))
    engine.dispatch(ManualTerminate(RuleId.CAMERA_ABSENCE))

    assert len(fired) == 1
    assert engine.terminated
    assert engine.records[-1].terminal


def test_engine_executes_timer_effects():
    timers = FakeTimers()
    engine = RuleEngine(timers=timers)

    engine.dispatch(SampleReceived(DEAD))
    assert timers.started == [RuleId.CAMERA_ABSENCE]

    engine.dispatch(SampleReceived(LIVE))
    assert RuleId.CAMERA_ABSENCE in timers.cancelled


def test_engine_reports_status_changes_only():
    seen = []
    engine = RuleEngine(timers=FakeTimers(), on_status=seen.append)

    engine.dispatch(SampleReceived(LIVE))
    engine.dispatch(SampleReceived(DEAD))
    engine.dispatch(SampleReceived(DEAD))

    assert seen == [WarningStatus(RuleId.CAMERA_ABSENCE, 1, 10)]


def test_closed_engine_discards_events():
    engine = RuleEngine(timers=FakeTimers())
    engine.close()
    assert engine.dispatch(SampleReceived(DEAD)) == ActiveStatus()
    assert engine.records == []


@pytest.mark.asyncio
async def test_countdown_runs_to_termination_on_real_timers(fast_rules):
    fired = []
    engine = RuleEngine(cfg=fast_rules, on_terminate=lambda status, record: fired.append(status))

    engine.dispatch(SampleReceived(DEAD))
    for _ in range(50):
        if fired:
            break
        await asyncio.sleep(0.01)

    assert fired == [TerminatedStatus(RuleId.CAMERA_ABSENCE, ExitReason.CAMERA_OFF)]
    assert engine.timers.active == set()
    assert [r.stage for r in engine.records] == [1, 2, 2]
