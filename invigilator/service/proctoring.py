from __future__ import annotations
"""
Proctoring Session

Owns the sampling cadence for one interview and wires samplers, rule
engine and termination coordinator together.
"""

import asyncio
import time
from typing import Any, Callable, Optional

from invigilator.cfg import IdentityConfig, RuleConfig, TerminationConfig
from invigilator.data.frame_source import FrameSource
from invigilator.engine.results import (
    SessionProctorStatus,
    TerminatedStatus,
    ViolationRecord,
    WarningStatus,
)
from invigilator.engine.rules import ConditionCleared, ManualTerminate, RuleEngine, SampleReceived
from invigilator.engine.termination import ExitNavigator, TerminationCoordinator
from invigilator.errors import ResourceUnavailable
from invigilator.models.behavior import BehaviorSampler
from invigilator.models.identity import IdentitySampler
from invigilator.utils.alerts import (
    ExitReason,
    RuleId,
    ViolationType,
    get_termination_message,
    get_warning_message,
)
from invigilator.utils.logger import get_logger

logger = get_logger(__name__)


class ProctoringSession:
    """
    Live proctoring for one candidate session.

    Every housekeeping tick (500 ms by default) checks liveness, then runs
    the behavior sample if due, then the identity sample if due, so the
    identity decision always sees this tick's behavior status. Each
    sampler is single-flight.

    Completion and a fatal verdict share one teardown.

    Example:
        >>> session = ProctoringSession("sess-1", frame_source, identity, behavior, store=store)
        >>> await session.start()
        >>> ...
        >>> await session.complete()
    """

    def __init__(
        self,
        session_id: str,
        frame_source: FrameSource,
        identity: IdentitySampler,
        behavior: BehaviorSampler,
        store: Any = None,
        reporter: Any = None,
        narration: Any = None,
        navigator: Optional[ExitNavigator] = None,
        identity_cfg: Optional[IdentityConfig] = None,
        rule_cfg: Optional[RuleConfig] = None,
        termination_cfg: Optional[TerminationConfig] = None,
        body_language: Any = None,
        on_status: Optional[Callable[[SessionProctorStatus], None]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize proctoring session.

        Args:
            session_id: Interview session ID
            frame_source: Camera capability
            identity: Identity sampler
            behavior: Behavior sampler
            store: SessionStore to finalize on teardown
            reporter: ViolationReporter
            narration: NarrationChannel to stop on teardown
            navigator: Host exit callback ``(destination, reason)``
            identity_cfg: Cadence configuration
            rule_cfg: Escalation ladder configuration
            termination_cfg: Teardown configuration
            body_language: BodyLanguagePublisher saved on teardown
            on_status: Called on every committed status change
            clock: Monotonic clock in seconds
        """
        self.session_id = session_id
        self.frame_source = frame_source
        self.identity = identity
        self.behavior = behavior
        self.reporter = reporter
        self.identity_cfg = identity_cfg or IdentityConfig()
        self.on_status = on_status
        self.clock = clock

        self.engine = RuleEngine(
            cfg=rule_cfg,
            on_violation=self._on_violation,
            on_terminate=self._on_terminate,
            on_status=self._on_status,
            session_id=session_id,
        )
        self.coordinator = TerminationCoordinator(
            session_id=session_id,
            frame_source=frame_source,
            samplers=[identity, behavior],
            rule_engine=self.engine,
            narration=narration,
            store=store,
            reporter=reporter,
            navigator=navigator,
            cfg=termination_cfg,
            body_language=body_language,
        )

        self.started = False
        self._loop_task: Optional[asyncio.Task] = None
        self._ticks: set[asyncio.Task] = set()
        self._teardown_task: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    @property
    def status(self) -> SessionProctorStatus:
        return self.engine.status

    @property
    def finished(self) -> bool:
        return self.coordinator.started

    @property
    def housekeeping_seconds(self) -> float:
        return self.identity_cfg.housekeeping_interval_ms / 1000.0

    def status_message(self) -> Optional[str]:
        """Host-facing text for the current status, if any."""
        status = self.status
        if isinstance(status, WarningStatus):
            return get_warning_message(status.rule_id, status.stage)
        if isinstance(status, TerminatedStatus):
            return get_termination_message(status.reason)
        return None

    def snapshot(self) -> dict[str, Any]:
        state = self.engine.state
        last_behavior = self.behavior.last_sample
        return {
            "session_id": self.session_id,
            "status": self.status.to_dict(),
            "message": self.status_message(),
            "mismatch_count": state.mismatch_count,
            "object_strikes": state.object_strikes,
            "camera": self.frame_source.is_live().to_dict(),
            "behavior": last_behavior.to_dict() if last_behavior else None,
            "violations": [r.to_dict() for r in self.engine.records],
            "finished": self.finished,
        }

    # ------------------------------------------------------------------
    # Engine callbacks
    # ------------------------------------------------------------------

    def _on_status(self, status: SessionProctorStatus) -> None:
        if self.on_status is not None:
            try:
                self.on_status(status)
            except Exception as e:
                logger.error(f"❌ Status listener failed for {self.session_id}: {e}")

    def _on_violation(self, record: ViolationRecord) -> None:
        # Object warnings are reported as they happen; terminal reports go through teardown
        if record.terminal or record.rule_id is not RuleId.PROHIBITED_OBJECT:
            return
        if self.reporter is not None:
            self.reporter.report_nowait(self.session_id, ViolationType.MOBILE_PHONE_DETECTED, record.action)

    def _on_terminate(self, status: TerminatedStatus, record: ViolationRecord) -> None:
        logger.warning(f"⛔ Session {self.session_id} terminated: {status.reason.value}")
        self._teardown_task = asyncio.create_task(self.coordinator.terminate(status, record))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Acquire the camera and begin sampling."""
        if self.started:
            return
        self.started = True

        try:
            await self.frame_source.start()
            self.frame_source.attach("identity")
            self.frame_source.attach("behavior")
        except ResourceUnavailable as e:
            # Absence countdown starts from the first liveness check
            logger.warning(f"⚠️ Camera unavailable at start for {self.session_id}: {e}")

        self._loop_task = asyncio.create_task(self._run())
        logger.info(f"🚀 Proctoring started for session {self.session_id}")

    async def _run(self) -> None:
        while not self.finished:
            task = asyncio.create_task(self.tick())
            self._ticks.add(task)
            task.add_done_callback(self._ticks.discard)
            await asyncio.sleep(self.housekeeping_seconds)

    async def tick(self, now: Optional[float] = None) -> SessionProctorStatus:
        """One housekeeping tick."""
        if self.finished:
            return self.status
        now = self.clock() if now is None else now

        self.engine.dispatch(SampleReceived(self.frame_source.is_live()))

        if self.behavior.is_due(now):
            sample = await self.behavior.sample(now)
            if sample is not None and not self.finished:
                self.engine.dispatch(SampleReceived(sample))

        if self.identity.is_due(now):
            result = await self.identity.sample(now)
            if result is not None and not self.finished:
                self.engine.dispatch(SampleReceived(result))

        return self.status

    def clear_condition(self, rule_id: RuleId) -> SessionProctorStatus:
        """Tell the engine a rule's trigger no longer holds, without waiting for a sample."""
        return self.engine.dispatch(ConditionCleared(rule_id))

    async def terminate(
        self,
        rule_id: RuleId = RuleId.IDENTITY_MISMATCH,
        reason: Optional[ExitReason] = None,
        wait: bool = True,
    ) -> bool:
        """
        Host-requested termination.

        Args:
            rule_id: Rule the termination is attributed to
            reason: Exit reason, defaults to the rule's own
            wait: Wait for the full teardown, including the exit delay

        Returns:
            True if this call terminated the session
        """
        if self.finished or self.engine.terminated:
            return False
        self.engine.dispatch(ManualTerminate(rule_id=rule_id, reason=reason))
        if wait:
            await self.wait_closed()
        return True

    async def complete(self) -> bool:
        """Normal completion; shares the termination teardown."""
        result = await self.coordinator.complete()
        await self._stop_loop()
        return result

    async def wait_closed(self) -> None:
        """Wait for teardown, whichever path started it."""
        if self._teardown_task is not None:
            await self._teardown_task
        if self.coordinator.started:
            await self.coordinator.wait()
        await self._stop_loop()

    async def _stop_loop(self) -> None:
        tasks = [t for t in (self._loop_task, *self._ticks) if t is not None and not t.done()]
        current = asyncio.current_task()
        for task in tasks:
            if task is not current:
                task.cancel()
        pending = [t for t in tasks if t is not current]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._loop_task = None


class SessionRegistry:
    """In-process index of running sessions, for the monitoring API."""

    def __init__(self):
        self._sessions: dict[str, ProctoringSession] = {}

    def register(self, session: ProctoringSession) -> ProctoringSession:
        self._sessions[session.session_id] = session
        return session

    def get(self, session_id: str) -> Optional[ProctoringSession]:
        return self._sessions.get(session_id)

    def remove(self, session_id: str) -> Optional[ProctoringSession]:
        return self._sessions.pop(session_id, None)

    def all(self) -> list[ProctoringSession]:
        return list(self._sessions.values())

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    async def shutdown(self) -> None:
        """Complete every session still running."""
        for session in self.all():
            if not session.finished:
                await session.complete()
        self._sessions.clear()
