"""
Invigilator Engine - Termination coordinator

The single teardown path shared by a fatal rule verdict and by normal
session completion. Runs at most once per session.
"""

from __future__ import annotations

import asyncio
import inspect
from typing import Any, Awaitable, Callable, Optional, Sequence, Union

import numpy as np

from invigilator.cfg import TerminationConfig
from invigilator.engine.results import TerminatedStatus, ViolationRecord
from invigilator.utils.alerts import ACTION_TERMINATED, ExitReason, ViolationType
from invigilator.utils.images import encode_jpeg
from invigilator.utils.logger import get_logger

logger = get_logger(__name__)

ExitNavigator = Callable[[str, Optional[ExitReason]], Union[Awaitable[None], None]]


class TerminationCoordinator:
    """
    Tears a proctored session down.

    Steps, each isolated so one failure cannot block the rest:
        1. disable samplers and cancel rule timers
        2. release the frame source (stop all tracks, detach all sinks)
        3. capture evidence for rules configured to carry it
        4. mark the persisted session completed
        5. submit the violation report
        6. save the body-language aggregate
        7. after a delay, tell the host to leave the assessment view

    Example:
        >>> coordinator = TerminationCoordinator(session_id, frame_source, [identity, behavior], ...)
        >>> await coordinator.terminate(status, record)
    """

    def __init__(
        self,
        session_id: str,
        frame_source: Any = None,
        samplers: Sequence[Any] = (),
        rule_engine: Any = None,
        narration: Any = None,
        store: Any = None,
        reporter: Any = None,
        navigator: Optional[ExitNavigator] = None,
        cfg: Optional[TerminationConfig] = None,
        body_language: Any = None,
    ):
        """
        Initialize coordinator.

        Args:
            session_id: Session being proctored
            frame_source: FrameSource to release
            samplers: Objects with ``disable()``
            rule_engine: RuleEngine to close
            narration: NarrationChannel to stop
            store: SessionStore to finalize
            reporter: ViolationReporter
            navigator: Host callback ``(destination, reason)``
            cfg: Termination configuration
            body_language: BodyLanguagePublisher saved before the exit
        """
        self.session_id = session_id
        self.frame_source = frame_source
        self.samplers = list(samplers)
        self.rule_engine = rule_engine
        self.narration = narration
        self.store = store
        self.reporter = reporter
        self.navigator = navigator
        self.cfg = cfg or TerminationConfig()
        self.body_language = body_language

        self.status: Optional[TerminatedStatus] = None
        self.evidence: Optional[bytes] = None
        self.report_sent = False
        self._started = False
        self._finished = asyncio.Event()

    @property
    def started(self) -> bool:
        return self._started

    async def wait(self) -> None:
        """Wait until the teardown, including the exit callback, has run."""
        await self._finished.wait()

    async def terminate(self, status: TerminatedStatus, record: Optional[ViolationRecord] = None) -> bool:
        """
        Tear down after a fatal verdict.

        Returns:
            True if this call performed the teardown, False if one already ran
        """
        return await self._teardown(status, record)

    async def complete(self) -> bool:
        """Tear down after the candidate answered every question."""
        return await self._teardown(None, None)

    async def _teardown(self, status: Optional[TerminatedStatus], record: Optional[ViolationRecord]) -> bool:
        if self._started:
            return False
        self._started = True
        self.status = status

        label = status.reason.value if status else "COMPLETED"
        logger.warning(f"🛑 Tearing down session {self.session_id}: {label}")

        try:
            self._step("disable samplers", self._disable_samplers)
            self._step("stop narration", self._stop_narration)

            last_frame = self._step("snapshot frame", self._snapshot)
            self._step("release frame source", self._release_media)

            if status is not None and self._wants_evidence(status):
                self.evidence = self._step("capture evidence", lambda: self._encode(last_frame))

            self._step("finalize session", self._finalize_store)

            if status is not None:
                await self._report(status, record)

            await self._save_body_language()
            await self._leave(status)
        finally:
            self._finished.set()

        return True

    def _step(self, name: str, fn: Callable[[], Any]) -> Any:
        try:
            return fn()
        except Exception as e:
            logger.error(f"❌ Teardown step '{name}' failed for {self.session_id}: {e}")
            return None

    def _disable_samplers(self) -> None:
        for sampler in self.samplers:
            sampler.disable()
        if self.rule_engine is not None:
            self.rule_engine.close()

    def _stop_narration(self) -> None:
        if self.narration is not None:
            self.narration.stop()

    def _snapshot(self) -> Optional[np.ndarray]:
        if self.frame_source is None:
            return None
        return self.frame_source.current_frame()

    def _release_media(self) -> None:
        if self.frame_source is not None:
            stopped = self.frame_source.release()
            logger.info(f"📹 Released camera for {self.session_id} ({stopped} tracks stopped)")

    def _wants_evidence(self, status: TerminatedStatus) -> bool:
        return status.rule_id.value in self.cfg.evidence_rules

    def _encode(self, frame: Optional[np.ndarray]) -> Optional[bytes]:
        if frame is None:
            logger.warning(f"⚠️ No frame available as evidence for {self.session_id}")
            return None
        return encode_jpeg(frame, quality=self.cfg.jpeg_quality)

    def _finalize_store(self) -> None:
        if self.store is not None:
            self.store.mark_completed(self.session_id)

    async def _report(self, status: TerminatedStatus, record: Optional[ViolationRecord]) -> None:
        if self.reporter is None:
            return
        try:
            await self.reporter.report(
                session_id=self.session_id,
                violation_type=ViolationType(status.reason.value),
                action=record.action if record else ACTION_TERMINATED,
                evidence=self.evidence,
            )
            self.report_sent = True
        except Exception as e:
            logger.error(f"❌ Violation report failed for {self.session_id}: {e}")

    async def _save_body_language(self) -> None:
        if self.body_language is None:
            return
        try:
            await self.body_language.save(self.session_id)
        except Exception as e:
            logger.error(f"❌ Body-language save failed for {self.session_id}: {e}")

    async def _leave(self, status: Optional[TerminatedStatus]) -> None:
        if status is not None:
            delay = self.cfg.exit_delay_seconds
            destination = self.cfg.exit_destination
        else:
            delay = self.cfg.completion_exit_delay_seconds
            destination = self.cfg.completion_destination

        if delay > 0:
            await asyncio.sleep(delay)

        if self.navigator is None:
            return
        try:
            result = self.navigator(destination, status.reason if status else None)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"❌ Exit navigation failed for {self.session_id}: {e}")
